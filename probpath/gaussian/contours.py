import numpy as np
import jax.numpy as jnp
import equinox as eqx
from typing import Dict, List, Sequence, Tuple
from probpath.config import DEFAULT_CONTOUR_LEVELS
from probpath.gaussian.density import ProbabilityGrid
from probpath.scale import GridSpec

"""
Iso-probability contours of a ProbabilityGrid using marching squares.

The grid samples are the corners of the marching squares cells.  On every
cell edge whose end points lie on different sides of the threshold the
crossing point is found by linear interpolation, and the crossings of a cell
are connected into line segments.  Cells with fewer than two crossings are
skipped.  Saddle cells (four crossings) are resolved with the average of the
four corners.  The computation runs on the host with numpy because the number
of segments depends on the data.
"""

__all__ = ['Contour',
           'marching_squares',
           'find_contours',
           'stitch_segments']

# Edge order inside a cell: top, right, bottom, left
_TOP, _RIGHT, _BOTTOM, _LEFT = 0, 1, 2, 3

class Contour(eqx.Module):
  """
  Attributes:
    level: Absolute density threshold
    relative_level: Threshold as a fraction of the grid maximum
    segments: Line segments in data coordinates, shape (M, 2, 2)
  """
  level: float
  relative_level: float
  segments: np.ndarray

  @property
  def num_segments(self) -> int:
    return self.segments.shape[0]

  def polylines(self, tol: float = 1e-9) -> List[np.ndarray]:
    return stitch_segments(self.segments, tol=tol)

################################################################################################################

def _interpolate(a: np.ndarray, b: np.ndarray, threshold: float) -> np.ndarray:
  denom = b - a
  safe = np.where(denom == 0, 1.0, denom)
  return np.clip((threshold - a)/safe, 0.0, 1.0)

def marching_squares(values: np.ndarray, threshold: float) -> np.ndarray:
  """Segments of the `threshold` iso-line of a 2D array.

  **Arguments**:

  - values: Array of shape (H, W), row index first
  - threshold: Iso value

  **Returns**:

  - Segments of shape (M, 2, 2) whose points are (column, row) fractional
    indices into `values`
  """
  values = np.asarray(values, dtype=float)
  if values.ndim != 2:
    raise ValueError(f"Expected a 2D array, got shape {values.shape}")
  H, W = values.shape
  if H < 2 or W < 2:
    return np.zeros((0, 2, 2))

  tl, tr = values[:-1, :-1], values[:-1, 1:]
  bl, br = values[1:, :-1], values[1:, 1:]
  rows, cols = np.meshgrid(np.arange(H - 1, dtype=float), np.arange(W - 1, dtype=float), indexing='ij')

  above_tl, above_tr = tl >= threshold, tr >= threshold
  above_bl, above_br = bl >= threshold, br >= threshold

  crosses = np.stack([above_tl != above_tr,
                      above_tr != above_br,
                      above_bl != above_br,
                      above_tl != above_bl])

  f_top = _interpolate(tl, tr, threshold)
  f_right = _interpolate(tr, br, threshold)
  f_bottom = _interpolate(bl, br, threshold)
  f_left = _interpolate(tl, bl, threshold)
  points = np.stack([np.stack([cols + f_top, rows], axis=-1),
                     np.stack([cols + 1.0, rows + f_right], axis=-1),
                     np.stack([cols + f_bottom, rows + 1.0], axis=-1),
                     np.stack([cols, rows + f_left], axis=-1)])

  count = crosses.sum(axis=0)
  segments = []

  # Regular cells: connect the two crossed edges
  two = count == 2
  if np.any(two):
    c = crosses[:, two]
    p = points[:, two]
    first = np.argmax(c, axis=0)
    second = 3 - np.argmax(c[::-1], axis=0)
    idx = np.arange(p.shape[1])
    segments.append(np.stack([p[first, idx], p[second, idx]], axis=1))

  # Saddle cells
  four = count == 4
  if np.any(four):
    p = points[:, four]
    center = 0.25*(tl[four] + tr[four] + bl[four] + br[four])
    joined = (center >= threshold) == above_tl[four]
    # When the center agrees with the top left corner the tr and bl corners are cut off
    start_a = np.full(joined.shape, _TOP)
    end_a = np.where(joined, _RIGHT, _LEFT)
    start_b = np.where(joined, _BOTTOM, _RIGHT)
    end_b = np.where(joined, _LEFT, _BOTTOM)
    idx = np.arange(p.shape[1])
    segments.append(np.stack([p[start_a, idx], p[end_a, idx]], axis=1))
    segments.append(np.stack([p[start_b, idx], p[end_b, idx]], axis=1))

  if len(segments) == 0:
    return np.zeros((0, 2, 2))
  return np.concatenate(segments, axis=0)

def _index_to_data(segments: np.ndarray, grid: GridSpec) -> np.ndarray:
  # Index i is the center of pixel i
  xs = np.asarray(grid.x_scale.inverse(jnp.asarray(segments[..., 0] + 0.5)))
  ys = np.asarray(grid.y_scale.inverse(jnp.asarray(segments[..., 1] + 0.5)))
  return np.stack([xs, ys], axis=-1)

def find_contours(prob_grid: ProbabilityGrid,
                  relative_levels: Sequence[float] = DEFAULT_CONTOUR_LEVELS) -> List[Contour]:
  """Contours of a probability grid at fractions of its maximum.

  Returns an empty list for an all zero grid.  Levels that do not cross the
  grid produce a Contour without segments.
  """
  values = np.asarray(prob_grid.values)
  max_value = float(prob_grid.max_value)
  if max_value <= 0:
    return []
  contours = []
  for relative_level in relative_levels:
    level = relative_level*max_value
    segments = marching_squares(values, level)
    if segments.shape[0] > 0:
      segments = _index_to_data(segments, prob_grid.grid)
    contours.append(Contour(level=level, relative_level=float(relative_level), segments=segments))
  return contours

################################################################################################################

def stitch_segments(segments: np.ndarray, tol: float = 1e-9) -> List[np.ndarray]:
  """Join line segments that share end points into polylines.

  Marching squares emits the crossing on a shared edge once per neighboring
  cell with identical coordinates, so exact matching (up to `tol` rounding) is
  enough.  Closed contours come back with their first point repeated at the
  end.
  """
  segments = np.asarray(segments, dtype=float)
  if segments.shape[0] == 0:
    return []

  def key(p) -> Tuple[int, int]:
    return (int(round(p[0]/tol)), int(round(p[1]/tol))) if tol > 0 else (p[0], p[1])

  endpoints: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
  for i, seg in enumerate(segments):
    for end in (0, 1):
      endpoints.setdefault(key(seg[end]), []).append((i, end))

  used = np.zeros(segments.shape[0], dtype=bool)

  def walk(point, chain):
    while True:
      nxt = None
      for j, end in endpoints.get(key(point), []):
        if not used[j]:
          nxt = (j, end)
          break
      if nxt is None:
        return chain
      j, end = nxt
      used[j] = True
      point = segments[j][1 - end]
      chain.append(point)

  polylines = []
  for i in range(segments.shape[0]):
    if used[i]:
      continue
    used[i] = True
    forward = walk(segments[i][1], [segments[i][0], segments[i][1]])
    backward = walk(segments[i][0], [])
    polylines.append(np.array(backward[::-1] + forward))
  return polylines
