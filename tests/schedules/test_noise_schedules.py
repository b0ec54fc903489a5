import jax
import jax.numpy as jnp
import pytest

jax.config.update('jax_enable_x64', True)

from probpath.schedules.noise import (
  NoiseScheduleKind,
  AbstractNoiseSchedule,
  LinearSchedule,
  SqrtSchedule,
  CosineSchedule,
  LinearVarianceSchedule,
  CircularSchedule,
  SigmoidSchedule,
  get_noise_schedule,
  as_noise_schedule,
  NOISE_SCHEDULE_NAMES
)

ALL_KINDS = list(NoiseScheduleKind)
STANDARD_KINDS = ['linear', 'constant_variance', 'sqrt', 'inverse_sqrt', 'cosine']
NON_STANDARD_KINDS = ['circular', 'sigmoid']

@pytest.fixture
def ts():
  return jnp.linspace(0.0, 1.0, 201)

class TestBoundaryValues:
  """Values at the two ends of the path"""

  @pytest.mark.parametrize("kind", STANDARD_KINDS)
  def test_standard_families(self, kind):
    """Standard families go from pure noise to pure data"""
    schedule = get_noise_schedule(kind)
    assert jnp.allclose(schedule.alpha(0.0), 0.0, atol=1e-8)
    assert jnp.allclose(schedule.beta(0.0), 1.0, atol=1e-8)
    assert jnp.allclose(schedule.alpha(1.0), 1.0, atol=1e-8)
    assert jnp.allclose(schedule.beta(1.0), 0.0, atol=1e-8)
    assert schedule.is_standard()

  @pytest.mark.parametrize("kind", NON_STANDARD_KINDS)
  def test_non_standard_families(self, kind):
    """Circular and sigmoid only approach the boundary values"""
    schedule = get_noise_schedule(kind)
    assert not schedule.is_standard()
    assert schedule.alpha(0.0) > 0.0
    assert schedule.beta(1.0) > 0.0

  def test_linear_midpoint(self):
    schedule = LinearSchedule()
    assert jnp.allclose(schedule.alpha(0.5), 0.5)
    assert jnp.allclose(schedule.beta(0.5), 0.5)

  def test_circular_default_angles(self):
    schedule = CircularSchedule()
    assert jnp.allclose(schedule.alpha(0.0), jnp.sin(jnp.pi/12))
    assert jnp.allclose(schedule.beta(1.0), jnp.cos(5*jnp.pi/12))

  def test_linear_variance_has_no_noise_at_either_end(self):
    schedule = get_noise_schedule('linear_variance')
    assert isinstance(schedule, LinearVarianceSchedule)
    assert not schedule.is_standard()
    assert jnp.allclose(schedule.beta(0.0), 0.0)
    assert jnp.allclose(schedule.beta(1.0), 0.0)
    assert jnp.allclose(schedule.beta(0.5), 0.5)
    assert jnp.allclose(schedule.alpha(0.25), 0.25)

  def test_linear_variance_derivative_finite_at_ends(self):
    schedule = LinearVarianceSchedule()
    assert jnp.isfinite(schedule.beta_dot(0.0))
    assert jnp.isfinite(schedule.beta_dot(1.0))
    assert jnp.allclose(schedule.beta_dot(0.5), 0.0)

  def test_full_quarter_circle_is_the_cosine_schedule(self, ts):
    circular = CircularSchedule(start_angle=0.0, end_angle=0.5*jnp.pi)
    cosine = CosineSchedule()
    assert jnp.allclose(circular.alpha(ts), cosine.alpha(ts))
    assert jnp.allclose(circular.beta(ts), cosine.beta(ts))
    assert circular.is_standard()

  def test_time_is_clamped(self):
    """Times outside [0, 1] evaluate at the nearest end"""
    schedule = CosineSchedule()
    assert jnp.allclose(schedule.alpha(-0.5), schedule.alpha(0.0))
    assert jnp.allclose(schedule.beta(1.5), schedule.beta(1.0))

class TestShape:
  """Properties that hold on the whole interval"""

  @pytest.mark.parametrize("kind", ALL_KINDS)
  def test_beta_non_negative(self, kind, ts):
    schedule = get_noise_schedule(kind)
    assert jnp.all(schedule.beta(ts) >= 0.0)

  @pytest.mark.parametrize("kind", ALL_KINDS)
  def test_continuity(self, kind, ts):
    """No jumps between neighboring times"""
    schedule = get_noise_schedule(kind)
    assert jnp.max(jnp.abs(jnp.diff(schedule.alpha(ts)))) < 0.1
    assert jnp.max(jnp.abs(jnp.diff(schedule.beta(ts)))) < 0.1

  @pytest.mark.parametrize("kind", ['constant_variance', 'cosine', 'circular'])
  def test_variance_preserving(self, kind, ts):
    schedule = get_noise_schedule(kind)
    assert jnp.allclose(schedule.alpha(ts)**2 + schedule.beta(ts)**2, 1.0, atol=1e-8)

  @pytest.mark.parametrize("kind", ALL_KINDS)
  def test_derivatives_match_finite_differences(self, kind):
    """Analytic or finite difference derivatives agree with a reference difference quotient"""
    schedule = get_noise_schedule(kind)
    h = 1e-6
    for t in jnp.linspace(0.1, 0.9, 9):
      alpha_fd = (schedule.alpha(t + h) - schedule.alpha(t - h))/(2*h)
      beta_fd = (schedule.beta(t + h) - schedule.beta(t - h))/(2*h)
      assert jnp.allclose(schedule.alpha_dot(t), alpha_fd, rtol=1e-4, atol=1e-6)
      assert jnp.allclose(schedule.beta_dot(t), beta_fd, rtol=1e-4, atol=1e-6)

  def test_linear_derivatives(self, ts):
    schedule = LinearSchedule()
    assert jnp.allclose(schedule.alpha_dot(ts), 1.0)
    assert jnp.allclose(schedule.beta_dot(ts), -1.0)

  def test_sqrt_derivative_finite_at_ends(self):
    schedule = SqrtSchedule()
    assert jnp.isfinite(schedule.alpha_dot(0.0))
    assert jnp.isfinite(schedule.beta_dot(1.0))

  def test_sigmoid_symmetry(self, ts):
    schedule = SigmoidSchedule()
    assert jnp.allclose(schedule.alpha(ts) + schedule.beta(ts), 1.0)

class TestFloors:
  """Numerical floors used by the vector field"""

  def test_beta_squared_floor(self):
    schedule = LinearSchedule()
    assert jnp.allclose(schedule.beta_squared(1.0), 1e-4)
    assert jnp.allclose(schedule.beta_squared(0.5), 0.25)
    assert jnp.allclose(schedule.beta_squared(1.0, floor=1e-2), 1e-2)

  def test_beta_ratio_is_finite_at_the_data_end(self):
    """beta_dot/beta is evaluated at a clamped time with a floored beta"""
    schedule = LinearSchedule()
    ratio = schedule.beta_ratio(1.0)
    assert jnp.isfinite(ratio)
    # beta(0.999) = 1e-3 is below sqrt(1e-4) = 1e-2
    assert jnp.allclose(ratio, -100.0)

  def test_beta_ratio_in_the_interior(self):
    schedule = LinearSchedule()
    assert jnp.allclose(schedule.beta_ratio(0.5), -2.0)

class TestFactory:
  """Building schedules from tags"""

  @pytest.mark.parametrize("kind", ALL_KINDS)
  def test_every_kind_builds(self, kind):
    schedule = get_noise_schedule(kind)
    assert isinstance(schedule, AbstractNoiseSchedule)
    assert schedule.kind == kind
    assert NOISE_SCHEDULE_NAMES[kind] == schedule.display_name

  def test_aliases(self):
    assert isinstance(get_noise_schedule('ddpm'), SqrtSchedule)
    assert get_noise_schedule('smoothstep').kind == NoiseScheduleKind.CONSTANT_VARIANCE
    assert isinstance(get_noise_schedule('trigonometric'), CosineSchedule)

  def test_parameters_are_forwarded(self):
    schedule = get_noise_schedule('sigmoid', steepness=10.0)
    assert schedule.steepness == 10.0

  def test_unknown_tag(self):
    with pytest.raises(ValueError, match="Unknown noise schedule"):
      get_noise_schedule('not_a_schedule')

  def test_invalid_circular_angles(self):
    with pytest.raises(ValueError):
      CircularSchedule(start_angle=-0.1)
    with pytest.raises(ValueError):
      CircularSchedule(end_angle=2.0)

  def test_as_noise_schedule(self):
    schedule = CosineSchedule()
    assert as_noise_schedule(schedule) is schedule
    assert isinstance(as_noise_schedule('linear'), LinearSchedule)

  def test_deterministic(self):
    """Two schedules built from the same tag are interchangeable"""
    a, b = get_noise_schedule('inverse_sqrt'), get_noise_schedule('inverse_sqrt')
    assert jnp.array_equal(a.alpha(0.3), b.alpha(0.3))
    assert a == b
