import equinox as eqx
from typing import Tuple

__all__ = ['EngineConfig',
           'DEFAULT_CONTOUR_LEVELS',
           'COMPRESSION_METHODS']

DEFAULT_CONTOUR_LEVELS = (0.1, 0.25, 0.5, 0.75, 0.9)
COMPRESSION_METHODS = ('log', 'power')

class EngineConfig(eqx.Module):
  """
  Tunable constants of the probability path engine.

  Every evaluator takes the individual values it needs as keyword arguments
  (so that it stays a pure function); this module just collects the defaults
  that a view uses to build those calls.

  Attributes:
    x_domain: Data space interval shown along the horizontal axis
    y_domain: Data space interval shown along the vertical axis
    canvas_width: Width of the pixel grid
    canvas_height: Height of the pixel grid
    beta_sq_floor: Lower bound on beta^2 when it is used as a variance
    det_eps: Components whose transformed covariance has |det| below this are skipped
    density_eps: Total mixture densities below this mean "no assignment"
    fd_step: Step of the centered finite differences for schedule derivatives
    t_clamp: Distance from the ends of [0,1] where beta_dot/beta is evaluated
    contour_levels: Relative iso-probability levels (fractions of the grid max)
    min_arrow_px: Shortest drawn arrow
    max_arrow_px: Longest drawn arrow
    min_raw_arrow_px: Arrows whose raw pixel length is below this are dropped
    arrow_time_step: Time span an arrow represents, its raw length is that of x -> x + dt*v
    compression: Arrow length compression, 'log' or 'power'
    compression_power: Exponent of the 'power' compression
    global_max_time: Time at which the global arrow scale is sampled
    vector_grid: Number of arrows along x and y
    num_frames: Number of precomputed animation frames
    chunk_size: Units of work between two cooperative yields
    num_ode_steps: Default step count of the ODE integrator
    num_sde_steps: Default step count of the SDE integrator
    max_sigma: Default maximum of the diffusion coefficient
  """
  x_domain: Tuple[float, float] = (-2.0, 2.0)
  y_domain: Tuple[float, float] = (-1.5, 1.5)
  canvas_width: int = 400
  canvas_height: int = 300

  beta_sq_floor: float = 1e-4
  det_eps: float = 1e-10
  density_eps: float = 1e-10
  fd_step: float = 1e-5
  t_clamp: float = 1e-3

  contour_levels: Tuple[float, ...] = DEFAULT_CONTOUR_LEVELS

  min_arrow_px: float = 3.0
  max_arrow_px: float = 10.0
  min_raw_arrow_px: float = 2.0
  arrow_time_step: float = 0.1
  compression: str = 'power'
  compression_power: float = 0.25
  global_max_time: float = 0.99
  vector_grid: Tuple[int, int] = (25, 19)

  num_frames: int = 60
  chunk_size: int = 10
  num_ode_steps: int = 100
  num_sde_steps: int = 100
  max_sigma: float = 0.8

  def __check_init__(self):
    if self.compression not in COMPRESSION_METHODS:
      raise ValueError(f"Unknown compression: {self.compression}")
    if self.chunk_size < 1:
      raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
    if self.num_frames < 2:
      raise ValueError(f"num_frames must be at least 2, got {self.num_frames}")
    if self.arrow_time_step <= 0:
      raise ValueError(f"arrow_time_step must be positive, got {self.arrow_time_step}")
    if self.max_sigma < 0:
      raise ValueError(f"max_sigma must be non-negative, got {self.max_sigma}")

  def to_dict(self) -> dict:
    """Convert the configuration to a dictionary.

    Returns:
      A dictionary containing all the configuration values.
    """
    return {
      "x_domain": self.x_domain,
      "y_domain": self.y_domain,
      "canvas_width": self.canvas_width,
      "canvas_height": self.canvas_height,
      "beta_sq_floor": self.beta_sq_floor,
      "det_eps": self.det_eps,
      "density_eps": self.density_eps,
      "fd_step": self.fd_step,
      "t_clamp": self.t_clamp,
      "contour_levels": self.contour_levels,
      "min_arrow_px": self.min_arrow_px,
      "max_arrow_px": self.max_arrow_px,
      "min_raw_arrow_px": self.min_raw_arrow_px,
      "arrow_time_step": self.arrow_time_step,
      "compression": self.compression,
      "compression_power": self.compression_power,
      "global_max_time": self.global_max_time,
      "vector_grid": self.vector_grid,
      "num_frames": self.num_frames,
      "chunk_size": self.chunk_size,
      "num_ode_steps": self.num_ode_steps,
      "num_sde_steps": self.num_sde_steps,
      "max_sigma": self.max_sigma
    }
