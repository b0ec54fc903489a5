r"""
Fixed step integrators for the ODE $dx = u(x, t) dt$ and the SDE
$dx = f(x, t) dt + \sigma_t dW$ on a 2D domain, and the closed form
propagation of the conditional path.

Every integrator uses `num_steps` equal steps of size
$dt = (t_1 - t_0)/num\_steps$, evaluates the drift at the left end point of
each step and returns a `Trajectory` with `num_steps + 1` points.  When a
domain is given, a sample stops at the last point that was inside the domain
and the rest of its trajectory repeats that point.

SDE integrators consume pre-generated Brownian increments (see
`probpath.integrate.noise.brownian_increments`) instead of a random key, so
the same increments always produce the same paths.
"""
import jax
import jax.numpy as jnp
import equinox as eqx
from typing import Callable, Optional, Tuple
from jaxtyping import Array, PRNGKeyArray, Float, Int, Bool, Scalar
from probpath.schedules.noise import AbstractNoiseSchedule
from probpath.schedules.diffusion import AbstractDiffusionSchedule
from probpath.vector_field.drift import AbstractDriftProvider, SdeDrift
from probpath.integrate.trajectory import Trajectory
from probpath.integrate.noise import standard_normal_pairs

__all__ = ['euler_trajectory',
           'euler_trajectories',
           'euler_maruyama_trajectory',
           'euler_maruyama_trajectories',
           'marginal_sde_trajectories',
           'stabilized_conditional_sde_trajectories',
           'conditional_positions',
           'conditional_trajectories',
           'sample_conditional_path',
           'step_times']

Domain = Tuple[Tuple[float, float], Tuple[float, float]]

################################################################################################################

def step_times(num_steps: int, t0: float = 0.0, t1: float = 1.0) -> Float[Array, 'S+1']:
  if num_steps < 1:
    raise ValueError(f"num_steps must be at least 1, got {num_steps}")
  return t0 + (t1 - t0)*jnp.arange(num_steps + 1)/num_steps

def _make_domain(x_domain: Optional[Tuple[float, float]],
                 y_domain: Optional[Tuple[float, float]]) -> Optional[Domain]:
  if x_domain is None and y_domain is None:
    return None
  x_domain = x_domain if x_domain is not None else (-jnp.inf, jnp.inf)
  y_domain = y_domain if y_domain is not None else (-jnp.inf, jnp.inf)
  return ((min(x_domain), max(x_domain)), (min(y_domain), max(y_domain)))

def _inside(x: Float[Array, '2'], domain: Domain) -> Bool[Array, '']:
  (x0, x1), (y0, y1) = domain
  return (x[0] >= x0) & (x[0] <= x1) & (x[1] >= y0) & (x[1] <= y1)

def _integrate(step: Callable[[Float[Array, '2'], Scalar, Scalar, Float[Array, '2']], Float[Array, '2']],
               x0: Float[Array, '2'],
               times: Float[Array, 'S+1'],
               increments: Float[Array, 'S 2'],
               domain: Optional[Domain]) -> Tuple[Float[Array, 'S+1 2'], Int[Array, '']]:
  """Run `step(x, t, dt, dW)` over every interval of `times`.  A sample is
  frozen from the first step that takes it outside of `domain`."""

  def body(carry, inputs):
    x, alive, num_valid = carry
    t, dt, dW = inputs
    x_new = step(x, t, dt, dW)
    if domain is not None:
      alive = alive & _inside(x_new, domain)
    x = jnp.where(alive, x_new, x)
    num_valid = num_valid + alive.astype(num_valid.dtype)
    return (x, alive, num_valid), x

  x0 = jnp.asarray(x0, dtype=float)
  carry = (x0, jnp.array(True), jnp.array(1))
  (_, _, num_valid), xs = jax.lax.scan(body, carry, (times[:-1], jnp.diff(times), increments))
  points = jnp.concatenate([x0[None], xs], axis=0)
  return points, num_valid

################################################################################################################

def euler_trajectory(provider: AbstractDriftProvider,
                     x0: Float[Array, '2'],
                     num_steps: int,
                     t0: float = 0.0,
                     t1: float = 1.0,
                     x_domain: Optional[Tuple[float, float]] = None,
                     y_domain: Optional[Tuple[float, float]] = None) -> Trajectory:
  """Explicit Euler integration of dx = u(x, t) dt.

  **Arguments**:

  - provider: The drift u
  - x0: Initial position
  - num_steps: Number of Euler steps
  - t0: Start time
  - t1: End time
  - x_domain: Stop when the sample leaves this horizontal interval
  - y_domain: Stop when the sample leaves this vertical interval

  **Returns**:

  - Trajectory with num_steps + 1 points
  """
  times = step_times(num_steps, t0, t1)
  domain = _make_domain(x_domain, y_domain)

  def step(x, t, dt, dW):
    return x + provider.drift(x, t)*dt

  increments = jnp.zeros((num_steps, 2))
  points, num_valid = _integrate(step, x0, times, increments, domain)
  return Trajectory(times, points, num_valid)

@eqx.filter_jit
def euler_trajectories(provider: AbstractDriftProvider,
                       x0: Float[Array, 'N 2'],
                       num_steps: int,
                       t0: float = 0.0,
                       t1: float = 1.0,
                       x_domain: Optional[Tuple[float, float]] = None,
                       y_domain: Optional[Tuple[float, float]] = None) -> Trajectory:
  """Batched `euler_trajectory`"""
  def single(x):
    traj = euler_trajectory(provider, x, num_steps, t0, t1, x_domain, y_domain)
    return traj.points, traj.num_valid
  points, num_valid = jax.vmap(single)(x0)
  return Trajectory(step_times(num_steps, t0, t1), points, num_valid)

def euler_maruyama_trajectory(provider: AbstractDriftProvider,
                              x0: Float[Array, '2'],
                              increments: Float[Array, 'S 2'],
                              diffusion_schedule: AbstractDiffusionSchedule,
                              t0: float = 0.0,
                              t1: float = 1.0,
                              x_domain: Optional[Tuple[float, float]] = None,
                              y_domain: Optional[Tuple[float, float]] = None) -> Trajectory:
  """Euler-Maruyama integration of dx = f(x, t) dt + sigma(t) dW where f is
  `provider.drift` and the number of steps is the number of increments.  The
  increments must be N(0, dt) with dt = (t1 - t0)/num_steps."""
  num_steps = increments.shape[0]
  times = step_times(num_steps, t0, t1)
  domain = _make_domain(x_domain, y_domain)

  def step(x, t, dt, dW):
    return x + provider.drift(x, t)*dt + diffusion_schedule.diffusion(t)*dW

  points, num_valid = _integrate(step, x0, times, increments, domain)
  return Trajectory(times, points, num_valid)

@eqx.filter_jit
def euler_maruyama_trajectories(provider: AbstractDriftProvider,
                                x0: Float[Array, 'N 2'],
                                increments: Float[Array, 'N S 2'],
                                diffusion_schedule: AbstractDiffusionSchedule,
                                t0: float = 0.0,
                                t1: float = 1.0,
                                x_domain: Optional[Tuple[float, float]] = None,
                                y_domain: Optional[Tuple[float, float]] = None) -> Trajectory:
  """Batched `euler_maruyama_trajectory`, one row of increments per sample"""
  if increments.shape[0] != x0.shape[0]:
    raise ValueError(f"Got {x0.shape[0]} samples but {increments.shape[0]} rows of increments")

  def single(x, dW):
    traj = euler_maruyama_trajectory(provider, x, dW, diffusion_schedule, t0, t1, x_domain, y_domain)
    return traj.points, traj.num_valid
  points, num_valid = jax.vmap(single)(x0, increments)
  return Trajectory(step_times(increments.shape[1], t0, t1), points, num_valid)

def marginal_sde_trajectories(provider: AbstractDriftProvider,
                              x0: Float[Array, 'N 2'],
                              increments: Float[Array, 'N S 2'],
                              diffusion_schedule: AbstractDiffusionSchedule,
                              t0: float = 0.0,
                              t1: float = 1.0,
                              x_domain: Optional[Tuple[float, float]] = None,
                              y_domain: Optional[Tuple[float, float]] = None) -> Trajectory:
  """Simulate the SDE with drift u + sigma^2/2 * score, which has the same
  marginals as the ODE of `provider`.  `provider` must implement `score`."""
  sde_provider = SdeDrift(provider, diffusion_schedule)
  return euler_maruyama_trajectories(sde_provider, x0, increments, diffusion_schedule, t0, t1, x_domain, y_domain)

################################################################################################################

def _stabilized_update(x_prev: Float[Array, '2'],
                       mean_prev: Float[Array, '2'],
                       mean_curr: Float[Array, '2'],
                       beta: Scalar,
                       beta_dot: Scalar,
                       sigma: Scalar,
                       dt: Scalar,
                       eps: Float[Array, '2'],
                       variance_floor: float) -> Float[Array, '2']:
  # The deviation from the mean follows an Ornstein-Uhlenbeck process with rate K
  variance = jnp.maximum(beta**2, variance_floor)
  K = beta_dot/beta - sigma**2/(2*variance)
  decay = jnp.exp(K*dt)
  two_K_dt = 2*K*dt
  small = jnp.abs(two_K_dt) < 1e-4
  safe_K = jnp.where(small, 1.0, K)
  var_inc = sigma**2*jnp.expm1(jnp.where(small, 0.0, two_K_dt))/(2*safe_K)
  noise_scale = jnp.where(small, sigma*jnp.sqrt(dt), jnp.sqrt(jnp.maximum(0.0, var_inc)))
  return mean_curr + (x_prev - mean_prev)*decay + noise_scale*eps

@eqx.filter_jit
def stabilized_conditional_sde_trajectories(schedule: AbstractNoiseSchedule,
                                            z: Float[Array, '2'],
                                            x0: Float[Array, 'N 2'],
                                            increments: Float[Array, 'N S 2'],
                                            diffusion_schedule: AbstractDiffusionSchedule,
                                            beta_floor: float = 1e-4,
                                            variance_floor: float = 1e-6) -> Trajectory:
  """SDE paths of the conditional path towards the single point `z` on [0, 1].

  Instead of an Euler-Maruyama step, the deviation x - alpha(t) z is advanced
  by the exact solution of the Ornstein-Uhlenbeck process obtained by freezing
  the coefficients over a step.  This stays stable near t = 1 where the
  restoring force beta_dot/beta - sigma^2/(2 beta^2) becomes very stiff.
  """
  z = jnp.asarray(z, dtype=float)
  num_steps = increments.shape[1]
  times = step_times(num_steps)
  dt = 1.0/num_steps

  def body(x, inputs):
    t_prev, t, dW = inputs
    beta = jnp.maximum(schedule.beta(t), beta_floor)
    eps = dW/jnp.sqrt(dt)
    x_new = _stabilized_update(x,
                               schedule.alpha(t_prev)*z,
                               schedule.alpha(t)*z,
                               beta,
                               schedule.beta_dot(t),
                               diffusion_schedule.diffusion(t),
                               dt,
                               eps,
                               variance_floor)
    return x_new, x_new

  def single(x, dW):
    _, xs = jax.lax.scan(body, x, (times[:-1], times[1:], dW))
    return jnp.concatenate([x[None], xs], axis=0)

  points = jax.vmap(single)(jnp.asarray(x0, dtype=float), increments)
  return Trajectory(times, points)

################################################################################################################

def conditional_positions(schedule: AbstractNoiseSchedule,
                          z: Float[Array, '2'],
                          x0: Float[Array, 'N 2'],
                          t: Scalar) -> Float[Array, 'N 2']:
  """Closed form flow of the conditional path: x(t) = alpha(t) z + beta(t) x0"""
  z = jnp.asarray(z, dtype=float)
  return schedule.alpha(t)*z + schedule.beta(t)*jnp.asarray(x0)

def conditional_trajectories(schedule: AbstractNoiseSchedule,
                             z: Float[Array, '2'],
                             x0: Float[Array, 'N 2'],
                             num_steps: int,
                             t0: float = 0.0,
                             t1: float = 1.0) -> Trajectory:
  """Closed form conditional paths sampled at num_steps + 1 equally spaced times"""
  times = step_times(num_steps, t0, t1)
  z = jnp.asarray(z, dtype=float)
  alphas = jax.vmap(schedule.alpha)(times)
  betas = jax.vmap(schedule.beta)(times)
  points = alphas[None, :, None]*z[None, None, :] + betas[None, :, None]*jnp.asarray(x0)[:, None, :]
  return Trajectory(times, points)

def sample_conditional_path(key: PRNGKeyArray,
                            schedule: AbstractNoiseSchedule,
                            z: Float[Array, '2'],
                            num_samples: int,
                            t: Scalar) -> Float[Array, 'N 2']:
  """Samples of p_t(x | z) = N(alpha(t) z, beta(t)^2 I)"""
  x0 = standard_normal_pairs(key, num_samples)
  return conditional_positions(schedule, z, x0, t)
