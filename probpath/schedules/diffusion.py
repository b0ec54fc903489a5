import enum
import abc
import jax.numpy as jnp
import equinox as eqx
from typing import ClassVar, Dict, Type, Union
from jaxtyping import Array, Float, Scalar
from plum import dispatch
from probpath.util.misc import clamp01

__all__ = ['DiffusionScheduleKind',
           'AbstractDiffusionSchedule',
           'ConstantDiffusion',
           'LinearDiffusion',
           'LinearReverseDiffusion',
           'QuadraticDiffusion',
           'SqrtDiffusion',
           'SineBumpDiffusion',
           'get_diffusion_schedule',
           'as_diffusion_schedule',
           'DIFFUSION_SCHEDULE_NAMES']

class DiffusionScheduleKind(str, enum.Enum):
  CONSTANT = 'constant'
  LINEAR = 'linear'
  LINEAR_REVERSE = 'linear_reverse'
  QUADRATIC = 'quadratic'
  SQRT = 'sqrt'
  SINE_BUMP = 'sine_bump'

################################################################################################################

class AbstractDiffusionSchedule(eqx.Module, abc.ABC):
  """Magnitude sigma(t) in [0, max_sigma] of the stochastic term of an SDE.
  Only SDE views construct one of these."""

  kind: ClassVar[DiffusionScheduleKind]
  display_name: ClassVar[str]

  max_sigma: float = 0.8

  def __check_init__(self):
    if self.max_sigma < 0:
      raise ValueError(f"max_sigma must be non-negative, got {self.max_sigma}")

  @abc.abstractmethod
  def shape(self, t: Union[Scalar, Float[Array, '...']]) -> Union[Scalar, Float[Array, '...']]:
    """Profile in [0, 1] that gets multiplied by max_sigma"""
    pass

  def diffusion(self, t: Union[Scalar, Float[Array, '...'], float]) -> Union[Scalar, Float[Array, '...']]:
    return self.max_sigma*self.shape(clamp01(t))

  def __call__(self, t):
    return self.diffusion(t)

  @property
  def max_value(self) -> float:
    """Upper bound of sigma(t), used to normalize plot scales"""
    return self.max_sigma

class ConstantDiffusion(AbstractDiffusionSchedule):
  kind = DiffusionScheduleKind.CONSTANT
  display_name = 'σ(t) = σ_max'

  def shape(self, t):
    return jnp.ones_like(jnp.asarray(t, dtype=float))

class LinearDiffusion(AbstractDiffusionSchedule):
  kind = DiffusionScheduleKind.LINEAR
  display_name = 'σ(t) = σ_max · t'

  def shape(self, t):
    return t

class LinearReverseDiffusion(AbstractDiffusionSchedule):
  kind = DiffusionScheduleKind.LINEAR_REVERSE
  display_name = 'σ(t) = σ_max · (1 - t)'

  def shape(self, t):
    return 1.0 - t

class QuadraticDiffusion(AbstractDiffusionSchedule):
  kind = DiffusionScheduleKind.QUADRATIC
  display_name = 'σ(t) = σ_max · t²'

  def shape(self, t):
    return t**2

class SqrtDiffusion(AbstractDiffusionSchedule):
  kind = DiffusionScheduleKind.SQRT
  display_name = 'σ(t) = σ_max · √t'

  def shape(self, t):
    return jnp.sqrt(t)

class SineBumpDiffusion(AbstractDiffusionSchedule):
  kind = DiffusionScheduleKind.SINE_BUMP
  display_name = 'σ(t) = σ_max · sin(πt)'

  def shape(self, t):
    return jnp.sin(jnp.pi*t)

################################################################################################################

_DIFFUSION_SCHEDULES: Dict[DiffusionScheduleKind, Type[AbstractDiffusionSchedule]] = {
  DiffusionScheduleKind.CONSTANT: ConstantDiffusion,
  DiffusionScheduleKind.LINEAR: LinearDiffusion,
  DiffusionScheduleKind.LINEAR_REVERSE: LinearReverseDiffusion,
  DiffusionScheduleKind.QUADRATIC: QuadraticDiffusion,
  DiffusionScheduleKind.SQRT: SqrtDiffusion,
  DiffusionScheduleKind.SINE_BUMP: SineBumpDiffusion,
}

DIFFUSION_SCHEDULE_NAMES: Dict[DiffusionScheduleKind, str] = {kind: cls.display_name for kind, cls in _DIFFUSION_SCHEDULES.items()}

def get_diffusion_schedule(kind: Union[str, DiffusionScheduleKind], max_sigma: float = 0.8) -> AbstractDiffusionSchedule:
  """Build the diffusion coefficient schedule for a tag.

  Raises:
    ValueError: If the tag is not recognized or max_sigma is negative
  """
  if isinstance(kind, str):
    kind = kind.replace('-', '_')
  try:
    kind = DiffusionScheduleKind(kind)
  except ValueError:
    raise ValueError(f"Unknown diffusion schedule: {kind}") from None
  return _DIFFUSION_SCHEDULES[kind](max_sigma=max_sigma)

@dispatch
def as_diffusion_schedule(schedule: AbstractDiffusionSchedule) -> AbstractDiffusionSchedule:
  return schedule

@dispatch
def as_diffusion_schedule(kind: str) -> AbstractDiffusionSchedule:
  return get_diffusion_schedule(kind)
