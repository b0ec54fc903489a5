import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import jax
import jax.numpy as jnp
from jax import random
import pytest

jax.config.update('jax_enable_x64', True)

from probpath.config import EngineConfig
from probpath.scale import GridSpec
from probpath.gaussian.mixture import GaussianMixture
from probpath.gaussian.density import evaluate_density_grid
from probpath.gaussian.contours import find_contours
from probpath.schedules.noise import LinearSchedule
from probpath.vector_field.drift import MarginalDrift
from probpath.vector_field.field import arrow_field, global_max_magnitude
from probpath.integrate.noise import standard_normal_pairs
from probpath.integrate.euler import euler_trajectories
from probpath.plot import (
  _calculate_alpha,
  plot_probability_grid,
  plot_contours,
  plot_vector_field,
  plot_trajectories
)

@pytest.fixture
def grid():
  return GridSpec.from_config(EngineConfig(canvas_width=80, canvas_height=60))

@pytest.fixture
def mixture():
  return GaussianMixture(jnp.array([[-1.0, 0.0], [1.0, 0.5]]), jnp.ones(2), jnp.stack([0.1*jnp.eye(2)]*2))

@pytest.fixture(autouse=True)
def close_figures():
  yield
  plt.close('all')

class TestPlots:
  """Smoke tests of the quick-look plots"""

  def test_alpha(self):
    assert _calculate_alpha(1) == 1.0
    assert _calculate_alpha(4) == 0.5
    assert _calculate_alpha(10**6) == 0.05

  def test_density_and_contours(self, grid, mixture):
    prob_grid = evaluate_density_grid(mixture, grid, LinearSchedule(), 0.8)
    ax = plot_probability_grid(prob_grid)
    ax = plot_contours(find_contours(prob_grid), ax=ax)
    assert len(ax.images) == 1
    assert len(ax.lines) > 0

  def test_vector_field(self, grid, mixture):
    provider = MarginalDrift(LinearSchedule(), mixture)
    points = grid.vector_grid(10, 8)
    arrows = arrow_field(provider, grid, 0.5, global_max_magnitude(provider, points, grid), nx=10, ny=8)
    ax = plot_vector_field(arrows, grid)
    assert ax.get_ylim() == (60.0, 0.0)

  def test_trajectories(self):
    mixture = GaussianMixture(jnp.array([[0.5, 0.5]]), jnp.ones(1), 0.1*jnp.eye(2)[None])
    provider = MarginalDrift(LinearSchedule(), mixture)
    x0 = standard_normal_pairs(random.PRNGKey(0), 5)
    traj = euler_trajectories(provider, x0, 10, x_domain=(-2.0, 2.0), y_domain=(-1.5, 1.5))
    ax = plot_trajectories(traj)
    assert len(ax.lines) == 5
    ax = plot_trajectories(traj[0], show_end_points=False)
    assert len(ax.lines) == 1
