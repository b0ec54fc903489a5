import jax.numpy as jnp
import equinox as eqx
from typing import Optional
from jaxtyping import Array, Float, Bool, Scalar
from probpath.vector_field.drift import AbstractDriftProvider
from probpath.scale import GridSpec

"""
Sampling a drift provider on a grid of arrow positions and turning the
samples into drawable arrows.

Drift magnitudes vary over orders of magnitude along the path (the velocity
of a linear schedule blows up like 1/beta near t = 1), so arrow lengths are
compressed against a single global maximum sampled near the end of the path.
Using the same maximum for every frame keeps the arrow lengths comparable
across an animation.
"""

__all__ = ['VectorFieldSamples',
           'ArrowField',
           'sample_vector_field',
           'global_max_magnitude',
           'compress_magnitudes',
           'arrow_pixel_deltas',
           'arrow_deltas',
           'arrow_field']

class VectorFieldSamples(eqx.Module):
  """
  Attributes:
    origins: Sample positions in data coordinates
    vectors: Drift at every sample position
    magnitudes: Compressed data space length of every vector, in [0, 1]
    t: Time the field was sampled at
  """
  origins: Float[Array, 'N 2']
  vectors: Float[Array, 'N 2']
  magnitudes: Float[Array, 'N']
  t: Scalar

  @property
  def lengths(self) -> Float[Array, 'N']:
    return jnp.linalg.norm(self.vectors, axis=-1)

class ArrowField(eqx.Module):
  """
  Attributes:
    origins_px: Arrow tails in pixel coordinates
    deltas_px: Tail to head offsets in pixels, lengths in [min_px, max_px]
    magnitudes: Compressed magnitudes in [0, 1] (e.g. for coloring)
    keep: False for arrows that are too short to draw
  """
  origins_px: Float[Array, 'N 2']
  deltas_px: Float[Array, 'N 2']
  magnitudes: Float[Array, 'N']
  keep: Bool[Array, 'N']

  @property
  def num_drawn(self) -> int:
    return int(self.keep.sum())

################################################################################################################

def compress_magnitudes(lengths: Float[Array, '...'],
                        global_max: Scalar,
                        method: str = 'power',
                        power: float = 0.25) -> Float[Array, '...']:
  """Map vector lengths into [0, 1] relative to `global_max`.

  - 'log': log(1 + |v|)/log(1 + max)
  - 'power': |v|^p/max^p

  A non-positive maximum maps everything to 0.
  """
  lengths = jnp.asarray(lengths)
  valid = global_max > 0
  safe_max = jnp.where(valid, global_max, 1.0)
  if method == 'log':
    out = jnp.log1p(lengths)/jnp.log1p(safe_max)
  elif method == 'power':
    out = lengths**power/safe_max**power
  else:
    raise ValueError(f"Unknown compression: {method}")
  return jnp.where(valid, jnp.clip(out, 0.0, 1.0), jnp.zeros_like(out))

def sample_vector_field(provider: AbstractDriftProvider,
                        points: Float[Array, 'N 2'],
                        t: Scalar,
                        global_max: Optional[Scalar] = None,
                        method: str = 'power',
                        power: float = 0.25) -> VectorFieldSamples:
  """Evaluate the drift at `points` and compress the data space lengths against
  `global_max` (the largest sampled length if not given)."""
  vectors = provider.drift_batch(points, t)
  lengths = jnp.linalg.norm(vectors, axis=-1)
  if global_max is None:
    global_max = lengths.max()
  magnitudes = compress_magnitudes(lengths, global_max, method, power)
  return VectorFieldSamples(points, vectors, magnitudes, jnp.asarray(t, dtype=float))

def arrow_pixel_deltas(vectors: Float[Array, 'N 2'],
                       grid: GridSpec,
                       time_step: float = 0.1) -> Float[Array, 'N 2']:
  """Pixel offset from x to x + time_step*v, the displacement an arrow
  stands for before it is resized."""
  scale = jnp.array([grid.x_scale.pixels_per_unit, grid.y_scale.pixels_per_unit])
  return time_step*vectors*scale

def global_max_magnitude(provider: AbstractDriftProvider,
                         points: Float[Array, 'N 2'],
                         grid: GridSpec,
                         t: Scalar = 0.99,
                         time_step: float = 0.1) -> Scalar:
  """Largest raw arrow length in pixels over `points` at time `t`.  Computed
  once per configuration and shared by every frame."""
  vectors = provider.drift_batch(points, t)
  return jnp.linalg.norm(arrow_pixel_deltas(vectors, grid, time_step), axis=-1).max()

def arrow_deltas(samples: VectorFieldSamples,
                 grid: GridSpec,
                 global_max: Optional[Scalar] = None,
                 min_px: float = 3.0,
                 max_px: float = 10.0,
                 min_raw_px: float = 2.0,
                 method: str = 'power',
                 power: float = 0.25,
                 time_step: float = 0.1) -> ArrowField:
  """Turn vector field samples into pixel space arrows.

  Every sample stands for the displacement `time_step*v` drawn in pixel
  space.  Arrows whose raw pixel length is below `min_raw_px` are marked as
  not drawn.  The remaining ones keep their direction and are resized to
  `min_px + c*(max_px - min_px)` where `c` is the raw pixel length
  compressed against `global_max`.

  **Arguments**:

  - samples: Output of `sample_vector_field`
  - grid: Pixel grid that maps data to pixel coordinates
  - global_max: Largest raw arrow length in pixels (see `global_max_magnitude`).
                Defaults to the largest drawn arrow of `samples`.
  - min_px: Length of the shortest drawn arrow
  - max_px: Length of the longest drawn arrow
  - min_raw_px: Threshold below which an arrow is dropped
  - method: Compression method, 'log' or 'power'
  - power: Exponent of the power compression
  - time_step: Time span that an arrow represents

  **Returns**:

  - ArrowField
  """
  if min_px > max_px:
    raise ValueError(f"min_px ({min_px}) must not exceed max_px ({max_px})")
  raw_px = arrow_pixel_deltas(samples.vectors, grid, time_step)
  raw_px_length = jnp.linalg.norm(raw_px, axis=-1)
  keep = raw_px_length >= min_raw_px

  if global_max is None:
    global_max = jnp.where(keep, raw_px_length, 0.0).max()
  magnitudes = compress_magnitudes(raw_px_length, global_max, method, power)
  magnitudes = jnp.where(keep, magnitudes, 0.0)

  safe_length = jnp.where(raw_px_length > 0, raw_px_length, 1.0)
  direction = raw_px/safe_length[:, None]
  length_px = min_px + magnitudes*(max_px - min_px)
  deltas_px = jnp.where(keep[:, None], direction*length_px[:, None], 0.0)
  return ArrowField(grid.to_pixel(samples.origins), deltas_px, magnitudes, keep)

def arrow_field(provider: AbstractDriftProvider,
                grid: GridSpec,
                t: Scalar,
                global_max: Scalar,
                nx: int = 25,
                ny: int = 19,
                min_px: float = 3.0,
                max_px: float = 10.0,
                min_raw_px: float = 2.0,
                method: str = 'power',
                power: float = 0.25,
                time_step: float = 0.1) -> ArrowField:
  """Sample `provider` on the `nx` by `ny` arrow grid and build the arrows.
  `global_max` is in pixels, as returned by `global_max_magnitude`."""
  points = grid.vector_grid(nx, ny)
  samples = sample_vector_field(provider, points, t, None, method, power)
  return arrow_deltas(samples, grid, global_max, min_px, max_px, min_raw_px, method, power, time_step)
