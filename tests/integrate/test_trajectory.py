import jax
import jax.numpy as jnp
import numpy as np
import pytest

jax.config.update('jax_enable_x64', True)

from probpath.integrate.trajectory import Trajectory

@pytest.fixture
def trajectory():
  times = jnp.linspace(0.0, 1.0, 5)
  points = jnp.stack([times, 2*times], axis=-1)
  return Trajectory(times, points)

@pytest.fixture
def batched():
  times = jnp.linspace(0.0, 1.0, 5)
  line = jnp.stack([times, -times], axis=-1)
  stopped = jnp.concatenate([line[:3], jnp.repeat(line[2:3], 2, axis=0)], axis=0)
  return Trajectory(times, jnp.stack([line, stopped]), jnp.array([5, 3]))

class TestTrajectory:
  """Fixed time sampled paths"""

  def test_defaults(self, trajectory):
    assert len(trajectory) == 5
    assert trajectory.batch_size is None
    assert int(trajectory.num_valid) == 5
    assert not trajectory.stopped_early
    assert jnp.allclose(trajectory.final_point, jnp.array([1.0, 2.0]))

  def test_valid_points(self, trajectory, batched):
    assert isinstance(trajectory.valid_points(), np.ndarray)
    assert trajectory.valid_points().shape == (5, 2)
    assert batched[1].valid_points().shape == (3, 2)
    with pytest.raises(ValueError):
      batched.valid_points()

  def test_batched(self, batched):
    assert batched.batch_size == (2,)
    assert jnp.array_equal(batched.stopped_early, jnp.array([False, True]))
    assert jnp.allclose(batched.final_point, jnp.array([[1.0, -1.0], [0.5, -0.5]]))
    assert batched[0].points.shape == (5, 2)

  def test_index_unbatched(self, trajectory):
    with pytest.raises(ValueError):
      trajectory[0]

  def test_interpolate(self, trajectory, batched):
    assert jnp.allclose(trajectory.interpolate(0.3), jnp.array([0.3, 0.6]))
    # Held constant outside of the sampled times
    assert jnp.allclose(trajectory.interpolate(1.5), jnp.array([1.0, 2.0]))
    assert jnp.allclose(trajectory.interpolate(-1.0), jnp.array([0.0, 0.0]))
    out = batched.interpolate(0.9)
    assert out.shape == (2, 2)
    assert jnp.allclose(out, jnp.array([[0.9, -0.9], [0.5, -0.5]]))
