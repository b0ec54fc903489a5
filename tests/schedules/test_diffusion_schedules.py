import jax
import jax.numpy as jnp
import pytest

jax.config.update('jax_enable_x64', True)

from probpath.schedules.diffusion import (
  DiffusionScheduleKind,
  ConstantDiffusion,
  LinearDiffusion,
  LinearReverseDiffusion,
  SineBumpDiffusion,
  get_diffusion_schedule,
  as_diffusion_schedule,
  DIFFUSION_SCHEDULE_NAMES
)

class TestDiffusionSchedules:
  """Diffusion coefficient schedules"""

  def test_constant(self):
    """The default constant schedule is 0.8 everywhere"""
    schedule = ConstantDiffusion()
    ts = jnp.linspace(0.0, 1.0, 11)
    assert jnp.allclose(schedule.diffusion(ts), 0.8)
    assert schedule.max_value == 0.8

  @pytest.mark.parametrize("kind", list(DiffusionScheduleKind))
  def test_within_bounds(self, kind):
    schedule = get_diffusion_schedule(kind, max_sigma=1.3)
    ts = jnp.linspace(-0.5, 1.5, 101)
    sigma = schedule(ts)
    assert jnp.all(sigma >= 0.0)
    assert jnp.all(sigma <= schedule.max_value + 1e-12)
    assert DIFFUSION_SCHEDULE_NAMES[kind] == schedule.display_name

  def test_end_points(self):
    assert jnp.allclose(LinearDiffusion(max_sigma=2.0)(0.0), 0.0)
    assert jnp.allclose(LinearDiffusion(max_sigma=2.0)(1.0), 2.0)
    assert jnp.allclose(LinearReverseDiffusion(max_sigma=2.0)(0.0), 2.0)
    assert jnp.allclose(LinearReverseDiffusion(max_sigma=2.0)(1.0), 0.0)

  def test_sine_bump(self):
    schedule = SineBumpDiffusion(max_sigma=0.5)
    assert jnp.allclose(schedule(0.5), 0.5)
    assert jnp.allclose(schedule(0.0), 0.0, atol=1e-12)
    assert jnp.allclose(schedule(1.0), 0.0, atol=1e-12)

  def test_quadratic_and_sqrt(self):
    assert jnp.allclose(get_diffusion_schedule('quadratic', 1.0)(0.5), 0.25)
    assert jnp.allclose(get_diffusion_schedule('sqrt', 1.0)(0.25), 0.5)

  def test_zero_max_sigma(self):
    schedule = get_diffusion_schedule('sine_bump', 0.0)
    assert jnp.allclose(schedule(0.5), 0.0)

class TestDiffusionFactory:
  """Building diffusion schedules from tags"""

  def test_dashed_tags(self):
    assert isinstance(get_diffusion_schedule('linear-reverse'), LinearReverseDiffusion)

  def test_unknown_tag(self):
    with pytest.raises(ValueError, match="Unknown diffusion schedule"):
      get_diffusion_schedule('exponential')

  def test_negative_max_sigma(self):
    with pytest.raises(ValueError):
      get_diffusion_schedule('constant', max_sigma=-0.1)

  def test_as_diffusion_schedule(self):
    schedule = ConstantDiffusion(max_sigma=0.3)
    assert as_diffusion_schedule(schedule) is schedule
    assert isinstance(as_diffusion_schedule('linear'), LinearDiffusion)
