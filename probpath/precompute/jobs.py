import functools
import jax.numpy as jnp
import numpy as np
from jax import random
import equinox as eqx
from typing import Callable, Generator, List, Optional, Tuple
from jaxtyping import Array, PRNGKeyArray, Bool, Float, Scalar
from probpath.config import EngineConfig
from probpath.scale import GridSpec
from probpath.schedules.noise import AbstractNoiseSchedule, get_noise_schedule
from probpath.schedules.diffusion import AbstractDiffusionSchedule, get_diffusion_schedule
from probpath.gaussian.mixture import GaussianMixture
from probpath.gaussian.density import ProbabilityGrid, evaluate_density_grid
from probpath.gaussian.contours import Contour, find_contours
from probpath.vector_field.drift import AbstractDriftProvider, ConditionalDrift, MarginalDrift, SdeDrift
from probpath.vector_field.field import ArrowField, arrow_field, global_max_magnitude
from probpath.integrate.noise import standard_normal_pairs, brownian_increments
from probpath.integrate.trajectory import Trajectory
from probpath.integrate.euler import (
  step_times,
  stabilized_conditional_sde_trajectories,
  conditional_positions,
  conditional_trajectories
)

"""
Chunkable jobs for `PrecomputeController`.

Every job is a generator: it yields once per unit of work (one frame, one
integration step) and returns its result.  Jobs compose with `yield from`, so
`view_job` regenerates every array a view needs from the top, one unit at a
time, and can be abandoned between any two units.
"""

__all__ = ['frame_times',
           'vector_field_frames_job',
           'DensityFrame',
           'density_frames_job',
           'trajectories_job',
           'sample_frames_job',
           'conditional_frames_job',
           'ViewInputs',
           'ViewResult',
           'view_job',
           'make_view_job']

def frame_times(num_frames: int) -> Float[Array, 'F']:
  """`num_frames` equally spaced times covering [0, 1]"""
  if num_frames < 2:
    raise ValueError(f"num_frames must be at least 2, got {num_frames}")
  return jnp.linspace(0.0, 1.0, num_frames)

################################################################################################################

def vector_field_frames_job(provider: AbstractDriftProvider,
                            grid: GridSpec,
                            times: Float[Array, 'F'],
                            global_max: Scalar,
                            config: EngineConfig = EngineConfig()) -> Generator[None, None, List[ArrowField]]:
  """One ArrowField per frame, all compressed against the same `global_max`"""
  nx, ny = config.vector_grid
  frames = []
  for t in times:
    frames.append(arrow_field(provider, grid, t, global_max,
                              nx=nx,
                              ny=ny,
                              min_px=config.min_arrow_px,
                              max_px=config.max_arrow_px,
                              min_raw_px=config.min_raw_arrow_px,
                              method=config.compression,
                              power=config.compression_power,
                              time_step=config.arrow_time_step))
    yield
  return frames

class DensityFrame(eqx.Module):
  prob_grid: ProbabilityGrid
  contours: List[Contour]

def density_frames_job(mixture: GaussianMixture,
                       schedule: AbstractNoiseSchedule,
                       grid: GridSpec,
                       times: Float[Array, 'F'],
                       config: EngineConfig = EngineConfig()) -> Generator[None, None, List[DensityFrame]]:
  """Density grid and contours of the probability path at every frame"""
  frames = []
  for t in times:
    prob_grid = evaluate_density_grid(mixture, grid, schedule, t,
                                      beta_sq_floor=config.beta_sq_floor,
                                      det_eps=config.det_eps)
    frames.append(DensityFrame(prob_grid, find_contours(prob_grid, config.contour_levels)))
    yield
  return frames

@eqx.filter_jit
def _advance(provider: AbstractDriftProvider,
             diffusion_schedule: Optional[AbstractDiffusionSchedule],
             x: Float[Array, 'N 2'],
             alive: Bool[Array, 'N'],
             t: Scalar,
             dt: Scalar,
             dW: Optional[Float[Array, 'N 2']],
             x_domain: Optional[Tuple[float, float]],
             y_domain: Optional[Tuple[float, float]]) -> Tuple[Float[Array, 'N 2'], Bool[Array, 'N']]:
  x_new = x + provider.drift_batch(x, t)*dt
  if dW is not None:
    x_new = x_new + diffusion_schedule.diffusion(t)*dW
  if x_domain is not None:
    alive = alive & (x_new[:, 0] >= min(x_domain)) & (x_new[:, 0] <= max(x_domain))
  if y_domain is not None:
    alive = alive & (x_new[:, 1] >= min(y_domain)) & (x_new[:, 1] <= max(y_domain))
  return jnp.where(alive[:, None], x_new, x), alive

def trajectories_job(provider: AbstractDriftProvider,
                     x0: Float[Array, 'N 2'],
                     num_steps: int,
                     increments: Optional[Float[Array, 'N S 2']] = None,
                     diffusion_schedule: Optional[AbstractDiffusionSchedule] = None,
                     x_domain: Optional[Tuple[float, float]] = None,
                     y_domain: Optional[Tuple[float, float]] = None) -> Generator[None, None, Trajectory]:
  """Euler (or, with increments and a diffusion schedule, Euler-Maruyama)
  integration over [0, 1] with one unit of work per step.  Produces the same
  paths as `euler_trajectories`/`euler_maruyama_trajectories`."""
  if (increments is None) != (diffusion_schedule is None):
    raise ValueError("increments and diffusion_schedule must be given together")
  if increments is not None and increments.shape[:2] != (x0.shape[0], num_steps):
    raise ValueError(f"Expected increments of shape {(x0.shape[0], num_steps, 2)}, got {increments.shape}")

  times = step_times(num_steps)
  x = jnp.asarray(x0, dtype=float)
  alive = jnp.ones(x.shape[0], dtype=bool)
  num_valid = jnp.ones(x.shape[0], dtype=int)
  points = [x]

  for k in range(num_steps):
    dW = None if increments is None else increments[:, k]
    x, alive = _advance(provider, diffusion_schedule, x, alive, times[k], times[k + 1] - times[k], dW,
                        x_domain, y_domain)
    num_valid = num_valid + alive.astype(int)
    points.append(x)
    yield
  return Trajectory(times, jnp.stack(points, axis=1), num_valid)

def sample_frames_job(key: PRNGKeyArray,
                      mixture: GaussianMixture,
                      schedule: AbstractNoiseSchedule,
                      times: Float[Array, 'F'],
                      num_samples: int,
                      beta_sq_floor: float = 1e-4) -> Generator[None, None, List[Float[Array, 'N 2']]]:
  """Samples of the probability path at every frame.  The same key is used
  for every frame so each sample moves continuously with t."""
  frames = []
  for t in times:
    if mixture.num_components == 0:
      frames.append(jnp.zeros((0, 2)))
    else:
      frames.append(mixture.sample_probability_path(key, num_samples, schedule, t, beta_sq_floor))
    yield
  return frames

def conditional_frames_job(schedule: AbstractNoiseSchedule,
                           z: Float[Array, '2'],
                           x0: Float[Array, 'N 2'],
                           times: Float[Array, 'F']) -> Generator[None, None, List[Float[Array, 'N 2']]]:
  """Positions alpha(t) z + beta(t) x0 of the conditional flow at every
  frame.  Using the trajectories' starting points puts every sample on its
  trajectory."""
  frames = []
  for t in times:
    frames.append(conditional_positions(schedule, z, x0, t))
    yield
  return frames

################################################################################################################

class ViewInputs(eqx.Module):
  """Everything a probability path view depends on.  Changing any field
  invalidates all precomputed frames.

  Attributes:
    mixture: Target distribution of the marginal path (ignored when `z` is set)
    z: Data point of the conditional path
    schedule: Noise schedule tag
    diffusion: Diffusion schedule tag
    max_sigma: Maximum of the diffusion coefficient
    num_steps: Integration steps of the trajectories
    num_frames: Number of animation frames
    num_samples: Number of samples and trajectories
    seed: Seed of every random draw of the view
  """
  mixture: Optional[GaussianMixture] = None
  z: Optional[Tuple[float, float]] = eqx.field(static=True, default=None)
  schedule: str = eqx.field(static=True, default='linear')
  diffusion: str = eqx.field(static=True, default='constant')
  max_sigma: float = eqx.field(static=True, default=0.8)
  num_steps: int = eqx.field(static=True, default=100)
  num_frames: int = eqx.field(static=True, default=60)
  num_samples: int = eqx.field(static=True, default=200)
  seed: int = eqx.field(static=True, default=0)

  def __check_init__(self):
    if self.mixture is None and self.z is None:
      raise ValueError("Either a mixture or a data point z is required")
    if self.num_steps < 1:
      raise ValueError(f"num_steps must be at least 1, got {self.num_steps}")
    if self.num_samples < 1:
      raise ValueError(f"num_samples must be at least 1, got {self.num_samples}")

  @property
  def is_conditional(self) -> bool:
    return self.z is not None

  def target_mixture(self) -> GaussianMixture:
    """The data distribution, a point mass for the conditional path"""
    if self.is_conditional:
      return GaussianMixture(jnp.array([self.z]), jnp.ones(1), jnp.zeros((1, 2, 2)))
    return self.mixture

  def cache_key(self) -> tuple:
    """Hashable summary used to detect changed inputs"""
    if self.mixture is None:
      mixture_key = None
    else:
      mixture_key = tuple(np.concatenate([np.asarray(self.mixture.means).ravel(),
                                          np.asarray(self.mixture.weights).ravel(),
                                          np.asarray(self.mixture.covariances).ravel()]).tolist())
    return (mixture_key, self.z, self.schedule, self.diffusion, self.max_sigma,
            self.num_steps, self.num_frames, self.num_samples, self.seed)

class ViewResult(eqx.Module):
  times: Float[Array, 'F']
  global_max: Scalar
  arrows: List[ArrowField]
  densities: List[DensityFrame]
  ode_trajectories: Trajectory
  sde_trajectories: Trajectory
  samples: List[Float[Array, 'N 2']]

def view_job(inputs: ViewInputs,
             config: EngineConfig = EngineConfig(),
             grid: Optional[GridSpec] = None) -> Generator[None, None, ViewResult]:
  """Regenerate every frame of a view for `inputs`"""
  if grid is None:
    grid = GridSpec.from_config(config)
  schedule = get_noise_schedule(inputs.schedule, fd_step=config.fd_step)
  diffusion = get_diffusion_schedule(inputs.diffusion, inputs.max_sigma)
  mixture = inputs.target_mixture()
  times = frame_times(inputs.num_frames)

  if inputs.is_conditional:
    provider = ConditionalDrift(schedule, jnp.array(inputs.z), config.beta_sq_floor, config.t_clamp)
  else:
    provider = MarginalDrift(schedule,
                             mixture,
                             beta_sq_floor=config.beta_sq_floor,
                             t_clamp=config.t_clamp,
                             det_eps=config.det_eps,
                             density_eps=config.density_eps)

  key = random.PRNGKey(inputs.seed)
  k_x0, k_dW, k_samples = random.split(key, 3)

  global_max = global_max_magnitude(provider, grid.vector_grid(*config.vector_grid), grid,
                                    config.global_max_time, config.arrow_time_step)
  yield

  arrows = yield from vector_field_frames_job(provider, grid, times, global_max, config)
  densities = yield from density_frames_job(mixture, schedule, grid, times, config)

  x0 = standard_normal_pairs(k_x0, inputs.num_samples)
  increments = brownian_increments(k_dW, inputs.num_samples, inputs.num_steps, 1.0/inputs.num_steps)

  if inputs.is_conditional:
    z = jnp.array(inputs.z, dtype=float)
    ode_trajectories = conditional_trajectories(schedule, z, x0, inputs.num_steps)
    yield
    sde_trajectories = stabilized_conditional_sde_trajectories(schedule, z, x0, increments, diffusion)
    yield
    samples = yield from conditional_frames_job(schedule, z, x0, times)
  else:
    ode_trajectories = yield from trajectories_job(provider, x0, inputs.num_steps)
    sde_trajectories = yield from trajectories_job(SdeDrift(provider, diffusion), x0, inputs.num_steps,
                                                   increments=increments,
                                                   diffusion_schedule=diffusion)
    samples = yield from sample_frames_job(k_samples, mixture, schedule, times, inputs.num_samples,
                                           config.beta_sq_floor)

  return ViewResult(times, global_max, arrows, densities, ode_trajectories, sde_trajectories, samples)

def make_view_job(config: EngineConfig = EngineConfig(),
                  grid: Optional[GridSpec] = None) -> Callable[[ViewInputs], Generator[None, None, ViewResult]]:
  """Job factory for a `PrecomputeController` whose states are ViewInputs"""
  return functools.partial(view_job, config=config, grid=grid)
