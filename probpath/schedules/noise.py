r"""
Noise schedules of the probability path $x_t = \alpha(t) z + \beta(t) \epsilon$
that interpolates between standard noise $\epsilon \sim N(0, I)$ at $t = 0$ and
a data point $z$ at $t = 1$.

Every schedule is a small immutable equinox module that only carries its
numeric parameters.  Evaluation is pure and deterministic, so a view can
swap one family for another without touching anything downstream.  Families
that do not provide closed form derivatives fall back on centered finite
differences whose evaluation points are clamped to [0, 1].

The "standard" families satisfy alpha(0) = 0, beta(0) = 1, alpha(1) = 1 and
beta(1) = 0.  The circular and sigmoid families only approach these values,
and the linear variance family has no noise at either end.  Use
`is_standard` to find out which kind you are holding.
"""
import enum
import abc
import jax
import jax.numpy as jnp
import equinox as eqx
from typing import ClassVar, Dict, Type, Union
from jaxtyping import Array, Float, Scalar
from plum import dispatch
from probpath.util.misc import clamp01

__all__ = ['NoiseScheduleKind',
           'AbstractNoiseSchedule',
           'LinearSchedule',
           'ConstantVarianceSchedule',
           'SqrtSchedule',
           'InverseSqrtSchedule',
           'CosineSchedule',
           'LinearVarianceSchedule',
           'CircularSchedule',
           'SigmoidSchedule',
           'get_noise_schedule',
           'as_noise_schedule',
           'NOISE_SCHEDULE_NAMES']

TimeLike = Union[Scalar, Float[Array, '...'], float]

class NoiseScheduleKind(str, enum.Enum):
  LINEAR = 'linear'
  CONSTANT_VARIANCE = 'constant_variance'
  SQRT = 'sqrt'
  INVERSE_SQRT = 'inverse_sqrt'
  COSINE = 'cosine'
  LINEAR_VARIANCE = 'linear_variance'
  CIRCULAR = 'circular'
  SIGMOID = 'sigmoid'

################################################################################################################

class AbstractNoiseSchedule(eqx.Module, abc.ABC):
  """Interface of an (alpha, beta) schedule on t in [0, 1]."""

  kind: ClassVar[NoiseScheduleKind]
  display_name: ClassVar[str]

  fd_step: eqx.AbstractVar[float]

  @abc.abstractmethod
  def alpha(self, t: TimeLike) -> Scalar:
    pass

  @abc.abstractmethod
  def beta(self, t: TimeLike) -> Scalar:
    pass

  def _central_difference(self, fn, t: TimeLike) -> Scalar:
    t_plus = clamp01(t + self.fd_step)
    t_minus = clamp01(t - self.fd_step)
    return (fn(t_plus) - fn(t_minus))/(t_plus - t_minus)

  def alpha_dot(self, t: TimeLike) -> Scalar:
    return self._central_difference(self.alpha, t)

  def beta_dot(self, t: TimeLike) -> Scalar:
    return self._central_difference(self.beta, t)

  def beta_squared(self, t: TimeLike, floor: float = 1e-4) -> Scalar:
    """beta(t)^2 bounded below so that it can be used as a variance"""
    return jnp.maximum(self.beta(t)**2, floor)

  def beta_ratio(self, t: TimeLike, beta_sq_floor: float = 1e-4, t_clamp: float = 1e-3) -> Scalar:
    """beta_dot/beta evaluated at a time kept `t_clamp` away from both ends of
    [0, 1] and with beta bounded below by sqrt(beta_sq_floor).
    """
    tc = jnp.clip(t, t_clamp, 1.0 - t_clamp)
    beta = jnp.maximum(self.beta(tc), jnp.sqrt(beta_sq_floor))
    return self.beta_dot(tc)/beta

  def coefficients(self, t: TimeLike) -> Dict[str, Scalar]:
    """alpha, beta and their derivatives in one dictionary"""
    return dict(alpha=self.alpha(t),
                beta=self.beta(t),
                alpha_dot=self.alpha_dot(t),
                beta_dot=self.beta_dot(t))

  def is_standard(self, atol: float = 1e-6) -> bool:
    """Whether the schedule starts at pure noise and ends at pure data"""
    boundary = jnp.array([self.alpha(0.0), self.beta(0.0) - 1.0, self.alpha(1.0) - 1.0, self.beta(1.0)])
    return bool(jnp.all(jnp.abs(boundary) < atol))

################################################################################################################

class LinearSchedule(AbstractNoiseSchedule):
  kind = NoiseScheduleKind.LINEAR
  display_name = 'α(t) = t, β(t) = 1 - t'

  fd_step: float = 1e-5

  def alpha(self, t):
    return clamp01(t)

  def beta(self, t):
    return 1.0 - clamp01(t)

  def alpha_dot(self, t):
    return jnp.ones_like(jnp.asarray(t, dtype=float))

  def beta_dot(self, t):
    return -jnp.ones_like(jnp.asarray(t, dtype=float))

class ConstantVarianceSchedule(AbstractNoiseSchedule):
  """Smoothstep alpha with beta chosen so that alpha^2 + beta^2 = 1.  Uses
  finite difference derivatives."""
  kind = NoiseScheduleKind.CONSTANT_VARIANCE
  display_name = 'α(t) = 3t² - 2t³, β(t) = √(1 - α(t)²)'

  fd_step: float = 1e-5

  def alpha(self, t):
    t = clamp01(t)
    return t**2*(3.0 - 2.0*t)

  def beta(self, t):
    return jnp.sqrt(jnp.maximum(0.0, 1.0 - self.alpha(t)**2))

class SqrtSchedule(AbstractNoiseSchedule):
  kind = NoiseScheduleKind.SQRT
  display_name = 'α(t) = √t, β(t) = √(1 - t)'

  fd_step: float = 1e-5

  def alpha(self, t):
    return jnp.sqrt(clamp01(t))

  def beta(self, t):
    return jnp.sqrt(1.0 - clamp01(t))

  def alpha_dot(self, t):
    tc = jnp.maximum(self.fd_step, clamp01(t))
    return 0.5/jnp.sqrt(tc)

  def beta_dot(self, t):
    tc = jnp.minimum(1.0 - self.fd_step, clamp01(t))
    return -0.5/jnp.sqrt(1.0 - tc)

class InverseSqrtSchedule(AbstractNoiseSchedule):
  """Mirror image of the square root schedule: fast at the data end instead
  of the noise end.  Uses finite difference derivatives."""
  kind = NoiseScheduleKind.INVERSE_SQRT
  display_name = 'α(t) = 1 - √(1 - t), β(t) = 1 - √t'

  fd_step: float = 1e-5

  def alpha(self, t):
    return 1.0 - jnp.sqrt(1.0 - clamp01(t))

  def beta(self, t):
    return 1.0 - jnp.sqrt(clamp01(t))

class CosineSchedule(AbstractNoiseSchedule):
  kind = NoiseScheduleKind.COSINE
  display_name = 'α(t) = sin(πt/2), β(t) = cos(πt/2)'

  fd_step: float = 1e-5

  def alpha(self, t):
    return jnp.sin(0.5*jnp.pi*clamp01(t))

  def beta(self, t):
    return jnp.cos(0.5*jnp.pi*clamp01(t))

  def alpha_dot(self, t):
    return 0.5*jnp.pi*jnp.cos(0.5*jnp.pi*clamp01(t))

  def beta_dot(self, t):
    return -0.5*jnp.pi*jnp.sin(0.5*jnp.pi*clamp01(t))

class LinearVarianceSchedule(AbstractNoiseSchedule):
  """alpha = t with a noise variance that grows and shrinks linearly,
  beta^2 = t(1 - t).  beta vanishes at both ends, so the path starts at the
  origin instead of at pure noise.  The derivative of beta is evaluated at a
  time kept `fd_step` away from the ends where it diverges.
  """
  kind = NoiseScheduleKind.LINEAR_VARIANCE
  display_name = 'α(t) = t, β(t) = √(t(1 - t))'

  fd_step: float = 1e-5

  def alpha(self, t):
    return clamp01(t)

  def beta(self, t):
    t = clamp01(t)
    return jnp.sqrt(t*(1.0 - t))

  def alpha_dot(self, t):
    return jnp.ones_like(jnp.asarray(t, dtype=float))

  def beta_dot(self, t):
    tc = jnp.clip(t, self.fd_step, 1.0 - self.fd_step)
    return (1.0 - 2*tc)/(2*jnp.sqrt(tc*(1.0 - tc)))

class CircularSchedule(AbstractNoiseSchedule):
  """(alpha, beta) = (sin(theta), cos(theta)) where theta moves linearly from
  `start_angle` to `end_angle`.  Both angles must lie in [0, pi/2] so that beta
  stays non-negative.

  The default arc pi/12 to 5pi/12 is a synthetic choice that exercises a path
  which neither starts at pure noise nor ends at pure data.  The full quarter
  circle (angles 0 and pi/2) is the same path as `CosineSchedule`.
  """
  kind = NoiseScheduleKind.CIRCULAR
  display_name = 'α(t) = sin θ(t), β(t) = cos θ(t)'

  start_angle: float = jnp.pi/12
  end_angle: float = 5*jnp.pi/12
  fd_step: float = 1e-5

  def __check_init__(self):
    for angle in (self.start_angle, self.end_angle):
      if not (0.0 <= angle <= 0.5*jnp.pi):
        raise ValueError(f"Circular schedule angles must lie in [0, pi/2], got {angle}")

  def theta(self, t):
    return self.start_angle + (self.end_angle - self.start_angle)*clamp01(t)

  def alpha(self, t):
    return jnp.sin(self.theta(t))

  def beta(self, t):
    return jnp.cos(self.theta(t))

  def alpha_dot(self, t):
    return (self.end_angle - self.start_angle)*jnp.cos(self.theta(t))

  def beta_dot(self, t):
    return -(self.end_angle - self.start_angle)*jnp.sin(self.theta(t))

class SigmoidSchedule(AbstractNoiseSchedule):
  kind = NoiseScheduleKind.SIGMOID
  display_name = 'α(t) = s(k(t - ½)), β(t) = s(-k(t - ½))'

  steepness: float = 6.0
  fd_step: float = 1e-5

  def alpha(self, t):
    return jax.nn.sigmoid(self.steepness*(clamp01(t) - 0.5))

  def beta(self, t):
    return jax.nn.sigmoid(-self.steepness*(clamp01(t) - 0.5))

  def alpha_dot(self, t):
    s = self.alpha(t)
    return self.steepness*s*(1.0 - s)

  def beta_dot(self, t):
    s = self.beta(t)
    return -self.steepness*s*(1.0 - s)

################################################################################################################

_NOISE_SCHEDULES: Dict[NoiseScheduleKind, Type[AbstractNoiseSchedule]] = {
  NoiseScheduleKind.LINEAR: LinearSchedule,
  NoiseScheduleKind.CONSTANT_VARIANCE: ConstantVarianceSchedule,
  NoiseScheduleKind.SQRT: SqrtSchedule,
  NoiseScheduleKind.INVERSE_SQRT: InverseSqrtSchedule,
  NoiseScheduleKind.COSINE: CosineSchedule,
  NoiseScheduleKind.LINEAR_VARIANCE: LinearVarianceSchedule,
  NoiseScheduleKind.CIRCULAR: CircularSchedule,
  NoiseScheduleKind.SIGMOID: SigmoidSchedule,
}

_ALIASES = {
  'ddpm': NoiseScheduleKind.SQRT,
  'smoothstep': NoiseScheduleKind.CONSTANT_VARIANCE,
  'trigonometric': NoiseScheduleKind.COSINE,
}

NOISE_SCHEDULE_NAMES: Dict[NoiseScheduleKind, str] = {kind: cls.display_name for kind, cls in _NOISE_SCHEDULES.items()}

def get_noise_schedule(kind: Union[str, NoiseScheduleKind], **params) -> AbstractNoiseSchedule:
  """Build the schedule for a tag.  Call this once when the view is
  configured, not on every evaluation.

  **Arguments**:

  - kind: One of the `NoiseScheduleKind` values (or an alias such as 'ddpm')
  - params: Numeric parameters of the family (e.g. `steepness` for sigmoid)

  **Returns**:

  - The schedule object

  **Raises**:

  - ValueError: If the tag is not recognized
  """
  if isinstance(kind, str) and kind in _ALIASES:
    kind = _ALIASES[kind]
  try:
    kind = NoiseScheduleKind(kind)
  except ValueError:
    raise ValueError(f"Unknown noise schedule: {kind}") from None
  return _NOISE_SCHEDULES[kind](**params)

@dispatch
def as_noise_schedule(schedule: AbstractNoiseSchedule) -> AbstractNoiseSchedule:
  return schedule

@dispatch
def as_noise_schedule(kind: str) -> AbstractNoiseSchedule:
  return get_noise_schedule(kind)
