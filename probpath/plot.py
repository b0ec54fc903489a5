import math
import numpy as np
import matplotlib.pyplot as plt
from typing import List, Literal, Optional, Sequence
from probpath.gaussian.density import ProbabilityGrid
from probpath.gaussian.contours import Contour
from probpath.vector_field.field import ArrowField
from probpath.integrate.trajectory import Trajectory
from probpath.scale import GridSpec

__all__ = ['plot_probability_grid',
           'plot_contours',
           'plot_vector_field',
           'plot_trajectories']

# Quick-look plots of engine outputs.  Everything is drawn in data
# coordinates except the arrows, which live in pixel space.

def _calculate_alpha(batch_size: int,
                     min_alpha: float = 0.05,
                     max_alpha: float = 1.0,
                     alpha_scaling: Literal['linear', 'sqrt', 'log'] = 'sqrt') -> float:
  """Line transparency for `batch_size` overlapping trajectories"""
  if batch_size <= 1:
    return max_alpha

  if alpha_scaling == 'linear':
    alpha = max_alpha/batch_size
  elif alpha_scaling == 'sqrt':
    alpha = max_alpha/math.sqrt(batch_size)
  elif alpha_scaling == 'log':
    alpha = max_alpha/(1 + math.log(batch_size))
  else:
    alpha = (min_alpha + max_alpha)/2

  return max(min_alpha, min(max_alpha, alpha))

def _get_ax(ax: Optional[plt.Axes]) -> plt.Axes:
  if ax is None:
    _, ax = plt.subplots(figsize=(8, 6))
  return ax

def _data_extent(grid: GridSpec) -> List[float]:
  (x0, x1), (y0, y1) = grid.x_domain, grid.y_domain
  return [x0, x1, y0, y1]

################################################################################################################

def plot_probability_grid(prob_grid: ProbabilityGrid,
                          ax: Optional[plt.Axes] = None,
                          cmap: str = 'viridis') -> plt.Axes:
  """Show the normalized densities as an image (row 0 at the top)"""
  ax = _get_ax(ax)
  ax.imshow(np.asarray(prob_grid.normalized()),
            extent=_data_extent(prob_grid.grid),
            origin='upper',
            cmap=cmap,
            vmin=0.0,
            vmax=1.0,
            aspect='auto')
  return ax

def plot_contours(contours: Sequence[Contour],
                  ax: Optional[plt.Axes] = None,
                  color: str = 'white',
                  linewidth: float = 1.0) -> plt.Axes:
  ax = _get_ax(ax)
  for contour in contours:
    for polyline in contour.polylines():
      ax.plot(polyline[:, 0], polyline[:, 1], color=color, linewidth=linewidth,
              alpha=0.4 + 0.6*contour.relative_level)
  return ax

def plot_vector_field(arrows: ArrowField,
                      grid: GridSpec,
                      ax: Optional[plt.Axes] = None,
                      cmap: str = 'magma') -> plt.Axes:
  """Draw the arrows on a pixel space canvas of the grid's size"""
  ax = _get_ax(ax)
  keep = np.asarray(arrows.keep)
  origins = np.asarray(arrows.origins_px)[keep]
  deltas = np.asarray(arrows.deltas_px)[keep]
  colors = plt.get_cmap(cmap)(np.asarray(arrows.magnitudes)[keep])
  ax.quiver(origins[:, 0], origins[:, 1], deltas[:, 0], deltas[:, 1],
            color=colors,
            angles='xy',
            scale_units='xy',
            scale=1.0)
  ax.set_xlim(0, grid.width)
  ax.set_ylim(grid.height, 0)
  ax.set_aspect('equal')
  return ax

def plot_trajectories(trajectories: Trajectory,
                      ax: Optional[plt.Axes] = None,
                      color: str = 'tab:blue',
                      show_end_points: bool = True) -> plt.Axes:
  """Draw the valid part of every trajectory of a (possibly batched) Trajectory"""
  ax = _get_ax(ax)
  if trajectories.batch_size is None:
    paths = [trajectories.valid_points()]
  else:
    flat_points = np.asarray(trajectories.points).reshape((-1,) + trajectories.points.shape[-2:])
    flat_valid = np.asarray(trajectories.num_valid).reshape(-1)
    paths = [points[:n] for points, n in zip(flat_points, flat_valid)]

  alpha = _calculate_alpha(len(paths))
  for path in paths:
    ax.plot(path[:, 0], path[:, 1], color=color, alpha=alpha, linewidth=1.0)

  if show_end_points:
    ends = np.stack([path[-1] for path in paths])
    ax.scatter(ends[:, 0], ends[:, 1], color=color, s=6, zorder=3)
  return ax
