import jax.numpy as jnp
import equinox as eqx
import einops
from typing import Tuple, Union
from jaxtyping import Array, Float, Scalar
from probpath.config import EngineConfig

__all__ = ['CoordinateScale',
           'GridSpec']

class CoordinateScale(eqx.Module):
  """Affine map between a data space interval and a pixel space interval.

  The range may be reversed (e.g. the vertical axis of a canvas where pixel
  rows grow downwards).
  """
  domain: Tuple[float, float] = eqx.field(static=True)
  range: Tuple[float, float] = eqx.field(static=True)

  def __check_init__(self):
    if self.domain[0] == self.domain[1]:
      raise ValueError(f"Degenerate domain: {self.domain}")
    if self.range[0] == self.range[1]:
      raise ValueError(f"Degenerate range: {self.range}")

  @property
  def pixels_per_unit(self) -> float:
    """Signed number of pixels per data unit"""
    (d0, d1), (r0, r1) = self.domain, self.range
    return (r1 - r0)/(d1 - d0)

  def forward(self, x: Union[Scalar, Float[Array, '...']]) -> Union[Scalar, Float[Array, '...']]:
    (d0, d1), (r0, r1) = self.domain, self.range
    return r0 + (x - d0)/(d1 - d0)*(r1 - r0)

  def inverse(self, y: Union[Scalar, Float[Array, '...']]) -> Union[Scalar, Float[Array, '...']]:
    (d0, d1), (r0, r1) = self.domain, self.range
    return d0 + (y - r0)/(r1 - r0)*(d1 - d0)

  def __call__(self, x):
    return self.forward(x)

################################################################################################################

class GridSpec(eqx.Module):
  """A pixel grid laid over a rectangular piece of data space.

  Pixel row 0 is the top of the data domain, so `y_scale` maps the data
  interval onto `(height, 0)`.
  """
  x_scale: CoordinateScale
  y_scale: CoordinateScale
  width: int = eqx.field(static=True)
  height: int = eqx.field(static=True)

  @classmethod
  def from_domain(cls,
                  x_domain: Tuple[float, float],
                  y_domain: Tuple[float, float],
                  width: int,
                  height: int) -> 'GridSpec':
    if width < 2 or height < 2:
      raise ValueError(f"Grid must be at least 2x2 pixels, got {width}x{height}")
    x_scale = CoordinateScale(tuple(x_domain), (0.0, float(width)))
    y_scale = CoordinateScale(tuple(y_domain), (float(height), 0.0))
    return cls(x_scale, y_scale, width, height)

  @classmethod
  def from_config(cls, config: EngineConfig) -> 'GridSpec':
    return cls.from_domain(config.x_domain, config.y_domain, config.canvas_width, config.canvas_height)

  @property
  def x_domain(self) -> Tuple[float, float]:
    return self.x_scale.domain

  @property
  def y_domain(self) -> Tuple[float, float]:
    return self.y_scale.domain

  def to_pixel(self, points: Float[Array, '... 2']) -> Float[Array, '... 2']:
    return jnp.stack([self.x_scale.forward(points[..., 0]), self.y_scale.forward(points[..., 1])], axis=-1)

  def to_data(self, pixels: Float[Array, '... 2']) -> Float[Array, '... 2']:
    return jnp.stack([self.x_scale.inverse(pixels[..., 0]), self.y_scale.inverse(pixels[..., 1])], axis=-1)

  def column_coordinates(self) -> Float[Array, 'W']:
    """Data space x coordinate of every pixel column center"""
    return self.x_scale.inverse(jnp.arange(self.width) + 0.5)

  def row_coordinates(self) -> Float[Array, 'H']:
    """Data space y coordinate of every pixel row center"""
    return self.y_scale.inverse(jnp.arange(self.height) + 0.5)

  def pixel_centers(self) -> Float[Array, 'H W 2']:
    xs, ys = jnp.meshgrid(self.column_coordinates(), self.row_coordinates(), indexing='xy')
    return jnp.stack([xs, ys], axis=-1)

  def vector_grid(self, nx: int, ny: int) -> Float[Array, 'N 2']:
    """Cell centered sample points of an `nx` by `ny` arrow grid"""
    (x0, x1), (y0, y1) = self.x_domain, self.y_domain
    xs = x0 + (jnp.arange(nx) + 0.5)*(x1 - x0)/nx
    ys = y0 + (jnp.arange(ny) + 0.5)*(y1 - y0)/ny
    X, Y = jnp.meshgrid(xs, ys, indexing='ij')
    points = jnp.stack([X, Y], axis=-1)
    return einops.rearrange(points, 'nx ny d -> (nx ny) d')

  def contains(self, points: Float[Array, '... 2']) -> Union[bool, Array]:
    (x0, x1), (y0, y1) = self.x_domain, self.y_domain
    x, y = points[..., 0], points[..., 1]
    return (x >= min(x0, x1)) & (x <= max(x0, x1)) & (y >= min(y0, y1)) & (y <= max(y0, y1))
