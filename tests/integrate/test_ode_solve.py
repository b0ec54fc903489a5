import jax
import jax.numpy as jnp
import diffrax
import pytest

jax.config.update('jax_enable_x64', True)

from probpath.gaussian.mixture import GaussianMixture
from probpath.schedules.noise import LinearSchedule, CosineSchedule
from probpath.vector_field.drift import ConditionalDrift, MarginalDrift
from probpath.integrate.euler import conditional_positions, euler_trajectories
from probpath.integrate.ode_solve import ODESolverParams, ode_solve

class TestODESolverParams:
  """Solver configuration"""

  def test_defaults(self):
    params = ODESolverParams()
    assert isinstance(params.get_solver(), diffrax.Dopri5)
    assert isinstance(params.get_adjoint(), diffrax.RecursiveCheckpointAdjoint)
    assert isinstance(params.get_stepsize_controller(), diffrax.PIDController)
    assert not params.using_constant_step_size()

  def test_to_dict(self):
    d = ODESolverParams(solver='tsit5', max_steps=100).to_dict()
    assert d['solver'] == 'tsit5'
    assert d['max_steps'] == 100
    assert set(d.keys()) == {'rtol', 'atol', 'solver', 'adjoint', 'stepsize_controller', 'max_steps', 'throw'}

  def test_constant_step_size(self):
    params = ODESolverParams(solver='euler', stepsize_controller='constant')
    assert params.using_constant_step_size()
    assert isinstance(params.get_stepsize_controller(), diffrax.ConstantStepSize)

  def test_unknown_names(self):
    with pytest.raises(ValueError, match="Unknown solver"):
      ODESolverParams(solver='rk45').get_solver()
    with pytest.raises(ValueError, match="Unknown adjoint"):
      ODESolverParams(adjoint='backsolve').get_adjoint()
    with pytest.raises(ValueError, match="Unknown stepsize controller"):
      ODESolverParams(stepsize_controller='adaptive').get_stepsize_controller()

class TestODESolve:
  """Adaptive reference solutions"""

  def test_callable(self):
    save_times = jnp.linspace(0.0, 1.0, 6)
    traj = ode_solve(lambda x, t: -x, jnp.array([1.0, 2.0]), save_times)
    assert traj.points.shape == (6, 2)
    expected = jnp.exp(-save_times)[:, None]*jnp.array([1.0, 2.0])
    assert jnp.allclose(traj.points, expected, atol=1e-5)

  def test_conditional_flow(self):
    """The ODE of the conditional velocity moves along alpha(t) z + beta(t) x0"""
    schedule = CosineSchedule()
    z = jnp.array([1.0, 0.5])
    x0 = jnp.array([[0.3, -0.4], [-1.0, 1.0]])
    save_times = jnp.linspace(0.0, 0.9, 4)
    traj = ode_solve(ConditionalDrift(schedule, z), x0, save_times)
    assert traj.points.shape == (2, 4, 2)
    assert traj.batch_size == (2,)
    assert jnp.allclose(traj.final_point, conditional_positions(schedule, z, x0, 0.9), atol=1e-3)

  def test_agrees_with_euler(self):
    mixture = GaussianMixture(jnp.array([[-1.0, 0.0], [1.0, 0.5]]), jnp.ones(2), jnp.stack([0.1*jnp.eye(2)]*2))
    provider = MarginalDrift(LinearSchedule(), mixture)
    x0 = jnp.array([[0.2, 0.1], [-0.5, -0.3], [1.0, 1.0]])
    reference = ode_solve(provider, x0, jnp.array([0.0, 0.8]))
    euler = euler_trajectories(provider, x0, 2000, 0.0, 0.8)
    assert jnp.allclose(reference.final_point, euler.final_point, atol=5e-3)

  def test_constant_steps(self):
    params = ODESolverParams(solver='heun', stepsize_controller='none', max_steps=200)
    traj = ode_solve(lambda x, t: -x, jnp.array([1.0, 2.0]), jnp.array([0.0, 1.0]), params)
    assert jnp.allclose(traj.points[-1], jnp.exp(-1.0)*jnp.array([1.0, 2.0]), atol=1e-4)

  def test_bad_shape(self):
    with pytest.raises(ValueError):
      ode_solve(lambda x, t: -x, jnp.zeros(3), jnp.array([0.0, 1.0]))
