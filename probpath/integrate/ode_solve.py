import jax.numpy as jnp
import equinox as eqx
import diffrax
from typing import Callable, Tuple, Union
from jaxtyping import Array, Float, Scalar, PyTree
from probpath.vector_field.drift import AbstractDriftProvider, FunctionDrift
from probpath.integrate.trajectory import Trajectory

"""
Adaptive step reference solutions of the probability flow ODE using diffrax.

The fixed step Euler integrator in `probpath.integrate.euler` is what the
frame precomputation uses.  This module solves the same ODE to a tolerance,
which is useful to check the Euler paths and for callers that want accurate
end points rather than a fixed budget of drift evaluations.
"""

__all__ = ['ODESolverParams',
           'ode_solve']

class ODESolverParams(eqx.Module):
  """
  Configuration parameters for ODE solving with diffrax.

  Attributes:
    rtol: Relative tolerance for adaptive step size controllers
    atol: Absolute tolerance for adaptive step size controllers
    solver: Name of the diffrax solver to use ('dopri5', 'tsit5', 'heun', 'euler')
    adjoint: Method for computing gradients ('recursive_checkpoint', 'direct')
    stepsize_controller: Controller for step size ('pid', 'none', 'constant')
    max_steps: Maximum number of steps the solver is allowed to take
    throw: Whether to throw an exception if max_steps is exceeded
  """
  rtol: float = 1e-6
  atol: float = 1e-6
  solver: str = 'dopri5'
  adjoint: str = 'recursive_checkpoint'
  stepsize_controller: str = 'pid'
  max_steps: int = 4096
  throw: bool = True

  def to_dict(self) -> dict:
    return {
      "rtol": self.rtol,
      "atol": self.atol,
      "solver": self.solver,
      "adjoint": self.adjoint,
      "stepsize_controller": self.stepsize_controller,
      "max_steps": self.max_steps,
      "throw": self.throw
    }

  def using_constant_step_size(self) -> bool:
    return self.stepsize_controller == 'none' or self.stepsize_controller == 'constant' or self.stepsize_controller is None

  def get_solver(self) -> diffrax.AbstractSolver:
    """
    Get the diffrax solver object based on the configured solver name.

    Raises:
      ValueError: If the configured solver name is not recognized
    """
    if self.solver == 'dopri5':
      return diffrax.Dopri5()
    elif self.solver == 'tsit5':
      return diffrax.Tsit5()
    elif self.solver == 'heun':
      return diffrax.Heun()
    elif self.solver == 'euler':
      return diffrax.Euler()
    else:
      raise ValueError(f"Unknown solver: {self.solver}")

  def get_adjoint(self) -> diffrax.AbstractAdjoint:
    if self.adjoint == 'recursive_checkpoint':
      return diffrax.RecursiveCheckpointAdjoint()
    elif self.adjoint == 'direct':
      return diffrax.DirectAdjoint()
    else:
      raise ValueError(f"Unknown adjoint: {self.adjoint}")

  def get_stepsize_controller(self) -> diffrax.AbstractStepSizeController:
    """
    Get the diffrax step size controller based on the configured controller name.

    Raises:
      ValueError: If the configured controller name is not recognized
    """
    if self.stepsize_controller == 'pid':
      return diffrax.PIDController(rtol=self.rtol, atol=self.atol)
    elif self.using_constant_step_size():
      return diffrax.ConstantStepSize()
    else:
      raise ValueError(f"Unknown stepsize controller: {self.stepsize_controller}")

  def get_terms(self, provider: AbstractDriftProvider, batched: bool) -> Tuple[diffrax.AbstractTerm, PyTree]:
    """The wrapped drift and the array leaves of the provider (passed through
    diffrax as `args`)"""
    provider_params, provider_static = eqx.partition(provider, eqx.is_inexact_array)

    @diffrax.ODETerm
    def wrapped_drift(t, xt, provider_params):
      provider = eqx.combine(provider_params, provider_static)
      if batched:
        return provider.drift_batch(xt, t)
      return provider.drift(xt, t)

    return wrapped_drift, provider_params

################################################################################################################

def ode_solve(provider: Union[AbstractDriftProvider, Callable[[Float[Array, '2'], Scalar], Float[Array, '2']]],
              x0: Union[Float[Array, '2'], Float[Array, 'N 2']],
              save_times: Float[Array, 'T'],
              params: ODESolverParams = ODESolverParams()) -> Trajectory:
  """Solve dx/dt = u(x, t) and save the solution at `save_times`.

  **Arguments**:

  - provider: The drift u, either a drift provider or a function (x, t) -> u
  - x0: Initial position(s) at time save_times[0]
  - save_times: Increasing times at which to save the solution
  - params: Parameters for the ODE solver

  **Returns**:

  - Trajectory: The solution at the save times (batched if x0 is batched)
  """
  if not isinstance(provider, AbstractDriftProvider):
    provider = FunctionDrift(provider)

  x0 = jnp.asarray(x0, dtype=float)
  if x0.ndim not in (1, 2) or x0.shape[-1] != 2:
    raise ValueError(f"Expected x0 of shape (2,) or (N, 2), got {x0.shape}")
  batched = x0.ndim == 2

  save_times = jnp.asarray(save_times, dtype=float)
  t0, t1 = save_times[0], save_times[-1]

  if params.using_constant_step_size():
    dt0 = (t1 - t0)/params.max_steps
  else:
    dt0 = 0.01*jnp.sign(t1 - t0)

  terms, args = params.get_terms(provider, batched)
  sol = diffrax.diffeqsolve(terms,
                            params.get_solver(),
                            t0,
                            t1,
                            dt0=dt0,
                            y0=x0,
                            args=args,
                            saveat=diffrax.SaveAt(ts=save_times),
                            adjoint=params.get_adjoint(),
                            stepsize_controller=params.get_stepsize_controller(),
                            max_steps=params.max_steps + 1,
                            throw=params.throw)

  # diffrax puts time first, Trajectory puts it second to last
  points = jnp.moveaxis(sol.ys, 0, -2) if batched else sol.ys
  return Trajectory(save_times, points)
