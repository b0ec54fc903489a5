import jax
import jax.numpy as jnp
import pytest

jax.config.update('jax_enable_x64', True)

from probpath.config import EngineConfig
from probpath.scale import GridSpec
from probpath.gaussian.mixture import GaussianMixture
from probpath.schedules.noise import LinearSchedule
from probpath.vector_field.drift import ConditionalDrift, MarginalDrift, FunctionDrift
from probpath.vector_field.field import (
  VectorFieldSamples,
  compress_magnitudes,
  sample_vector_field,
  global_max_magnitude,
  arrow_pixel_deltas,
  arrow_deltas,
  arrow_field
)

@pytest.fixture
def grid():
  return GridSpec.from_config(EngineConfig())

class TestCompression:
  """Compressing drift lengths into [0, 1]"""

  def test_power(self):
    lengths = jnp.array([0.0, 1.0, 16.0])
    assert jnp.allclose(compress_magnitudes(lengths, 16.0, 'power', 0.25), jnp.array([0.0, 0.5, 1.0]))

  def test_log(self):
    lengths = jnp.array([0.0, 3.0, 7.0])
    expected = jnp.log1p(lengths)/jnp.log1p(7.0)
    assert jnp.allclose(compress_magnitudes(lengths, 7.0, 'log'), expected)

  @pytest.mark.parametrize("method", ['log', 'power'])
  def test_bounded_and_monotone(self, method):
    lengths = jnp.linspace(0.0, 20.0, 50)
    out = compress_magnitudes(lengths, 10.0, method)
    assert jnp.all(out >= 0.0) and jnp.all(out <= 1.0)
    assert jnp.all(jnp.diff(out) >= 0.0)
    # Lengths above the global maximum saturate
    assert jnp.allclose(out[lengths >= 10.0], 1.0)

  def test_non_positive_max(self):
    assert jnp.all(compress_magnitudes(jnp.array([0.0, 1.0]), 0.0) == 0.0)

  def test_unknown_method(self):
    with pytest.raises(ValueError, match="Unknown compression"):
      compress_magnitudes(jnp.ones(3), 1.0, 'sqrt')

class TestArrows:
  """Pixel space arrows"""

  def test_lengths_and_directions(self, grid):
    vectors = jnp.array([[0.001, 0.0], [1.0, 0.0], [0.0, 2.0]])
    lengths = jnp.linalg.norm(vectors, axis=-1)
    samples = VectorFieldSamples(jnp.zeros((3, 2)), vectors, compress_magnitudes(lengths, 2.0), 0.5)
    arrows = arrow_deltas(samples, grid)

    # Over 0.1 time units, 0.001 data units per unit time is 0.01 pixels
    assert jnp.array_equal(arrows.keep, jnp.array([False, True, True]))
    assert arrows.num_drawn == 2
    assert jnp.all(arrows.deltas_px[0] == 0.0)
    assert arrows.magnitudes[0] == 0.0
    # Raw lengths 10 and 20 px, compressed against the longest drawn arrow
    assert jnp.allclose(arrows.deltas_px[1], jnp.array([3.0 + 7.0*0.5**0.25, 0.0]))
    # Pixel rows grow downwards
    assert jnp.allclose(arrows.deltas_px[2], jnp.array([0.0, -10.0]))
    assert jnp.allclose(arrows.origins_px, jnp.array([200.0, 150.0]))

  def test_raw_pixel_deltas(self, grid):
    vectors = jnp.array([[1.0, 0.5]])
    assert jnp.allclose(arrow_pixel_deltas(vectors, grid), jnp.array([[10.0, -5.0]]))
    assert jnp.allclose(arrow_pixel_deltas(vectors, grid, time_step=1.0), jnp.array([[100.0, -50.0]]))

  def test_compression_uses_pixel_lengths(self, grid):
    vectors = jnp.array([[1.0, 0.0]])
    samples = VectorFieldSamples(jnp.zeros((1, 2)), vectors, jnp.ones(1), 0.5)
    arrows = arrow_deltas(samples, grid, global_max=10.0, method='log')
    assert jnp.allclose(arrows.deltas_px[0, 0], 10.0)
    arrows = arrow_deltas(samples, grid, global_max=20.0, method='log')
    assert jnp.allclose(arrows.magnitudes, jnp.log(11.0)/jnp.log(21.0))
    arrows = arrow_deltas(samples, grid, global_max=160.0, method='power')
    assert jnp.allclose(arrows.magnitudes, 0.5)

  def test_slow_field_is_not_drawn(self, grid):
    """A drift of 0.05 moves 0.5 px in 0.1 time units, below the 2 px threshold"""
    provider = FunctionDrift(lambda x, t: jnp.zeros_like(x).at[0].set(0.05))
    points = grid.vector_grid(25, 19)
    global_max = global_max_magnitude(provider, points, grid)
    assert jnp.allclose(global_max, 0.5)
    arrows = arrow_field(provider, grid, 0.5, global_max)
    assert arrows.num_drawn == 0
    assert jnp.all(arrows.deltas_px == 0.0)
    assert jnp.all(arrows.magnitudes == 0.0)

  def test_arrows_above_the_threshold_are_drawn(self, grid):
    provider = FunctionDrift(lambda x, t: jnp.zeros_like(x).at[0].set(0.25))
    points = grid.vector_grid(5, 4)
    arrows = arrow_field(provider, grid, 0.5, global_max_magnitude(provider, points, grid), nx=5, ny=4)
    assert arrows.num_drawn == 20
    assert jnp.allclose(jnp.linalg.norm(arrows.deltas_px, axis=-1), 10.0)

  def test_invalid_band(self, grid):
    samples = VectorFieldSamples(jnp.zeros((1, 2)), jnp.ones((1, 2)), jnp.ones(1), 0.5)
    with pytest.raises(ValueError):
      arrow_deltas(samples, grid, min_px=12.0, max_px=10.0)

  def test_arrow_field(self, grid):
    mixture = GaussianMixture(jnp.array([[-1.0, 0.0], [1.0, 0.5]]), jnp.ones(2), jnp.stack([0.1*jnp.eye(2)]*2))
    provider = MarginalDrift(LinearSchedule(), mixture)
    points = grid.vector_grid(25, 19)
    global_max = global_max_magnitude(provider, points, grid)
    arrows = arrow_field(provider, grid, 0.5, global_max)

    assert arrows.origins_px.shape == (25*19, 2)
    drawn = jnp.linalg.norm(arrows.deltas_px, axis=-1)[arrows.keep]
    assert jnp.all(drawn >= 3.0 - 1e-9)
    assert jnp.all(drawn <= 10.0 + 1e-9)
    assert jnp.all((arrows.magnitudes >= 0.0) & (arrows.magnitudes <= 1.0))

class TestSampling:
  """Sampling drift providers on arrow grids"""

  def test_default_max_is_the_largest_sample(self, grid):
    provider = ConditionalDrift(LinearSchedule(), jnp.array([1.0, 0.5]))
    points = grid.vector_grid(5, 4)
    samples = sample_vector_field(provider, points, 0.3)
    assert jnp.allclose(samples.magnitudes.max(), 1.0)
    assert jnp.allclose(samples.vectors, provider.drift_batch(points, 0.3))

  def test_global_max_near_the_end(self, grid):
    """The velocity of the linear schedule grows like 1/(1 - t)"""
    provider = ConditionalDrift(LinearSchedule(), jnp.array([1.0, 0.5]))
    points = grid.vector_grid(25, 19)
    global_max = global_max_magnitude(provider, points, grid)
    # 100 pixels per data unit along both axes, arrows span 0.1 time units
    expected = 10.0*jnp.linalg.norm(provider.drift_batch(points, 0.99), axis=-1).max()
    assert jnp.allclose(global_max, expected)
    arrows = arrow_field(provider, grid, 0.5, global_max)
    assert jnp.all(arrows.magnitudes < 1.0)
