import jax
import jax.numpy as jnp
import numpy as np
import equinox as eqx
from typing import Union
from jaxtyping import Array, Float, Int, Scalar

__all__ = ['Trajectory']

class Trajectory(eqx.Module):
  """A (possibly batched) path sampled at fixed times.

  Integration can stop early (e.g. when a sample leaves the domain).  In that
  case only the first `num_valid` points are real and the remaining entries
  repeat the last valid point, so the arrays keep a fixed shape.

  Attributes:
    times: Sample times, shape (T,)
    points: Positions, shape (..., T, 2)
    num_valid: Number of valid points, shape (...)
  """
  times: Float[Array, 'T']
  points: Float[Array, '... T 2']
  num_valid: Int[Array, '...']

  def __init__(self,
               times: Float[Array, 'T'],
               points: Float[Array, '... T 2'],
               num_valid: Union[Int[Array, '...'], int, None] = None):
    self.times = jnp.asarray(times)
    self.points = jnp.asarray(points)
    if num_valid is None:
      num_valid = jnp.full(self.points.shape[:-2], self.times.shape[0], dtype=int)
    self.num_valid = jnp.asarray(num_valid)

  @property
  def batch_size(self):
    return self.points.shape[:-2] if self.points.ndim > 2 else None

  def __len__(self) -> int:
    return self.times.shape[0]

  def __getitem__(self, idx) -> 'Trajectory':
    if self.batch_size is None:
      raise ValueError("Cannot index an unbatched trajectory")
    return Trajectory(self.times, self.points[idx], self.num_valid[idx])

  @property
  def final_point(self) -> Float[Array, '... 2']:
    """Last valid point"""
    idx = jnp.maximum(self.num_valid - 1, 0)
    return jnp.take_along_axis(self.points, idx[..., None, None], axis=-2)[..., 0, :]

  @property
  def stopped_early(self) -> Union[bool, Array]:
    return self.num_valid < self.times.shape[0]

  def valid_points(self) -> np.ndarray:
    """The valid points of an unbatched trajectory as a numpy array"""
    if self.batch_size is not None:
      raise ValueError("valid_points needs an unbatched trajectory, index the batch first")
    return np.asarray(self.points[:int(self.num_valid)])

  def interpolate(self, t: Scalar) -> Float[Array, '... 2']:
    """Position at time `t`, linear between neighboring samples and held
    constant outside of [times[0], times[-1]] and after an early stop."""
    if self.batch_size is not None:
      flat_points = self.points.reshape((-1,) + self.points.shape[-2:])
      out = jax.vmap(self._interpolate_single, in_axes=(0, None))(flat_points, t)
      return out.reshape(self.batch_size + (2,))
    return self._interpolate_single(self.points, t)

  def _interpolate_single(self, points: Float[Array, 'T 2'], t: Scalar) -> Float[Array, '2']:
    return jnp.stack([jnp.interp(t, self.times, points[:, 0]),
                      jnp.interp(t, self.times, points[:, 1])], axis=-1)
