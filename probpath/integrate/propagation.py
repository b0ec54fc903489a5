import math
import warnings
import jax.numpy as jnp
import equinox as eqx
from typing import Hashable, Optional
from jaxtyping import Array, PRNGKeyArray, Float
from probpath.schedules.noise import AbstractNoiseSchedule
from probpath.vector_field.drift import AbstractDriftProvider
from probpath.integrate.noise import standard_normal_pairs
from probpath.integrate.euler import euler_trajectories

__all__ = ['SamplePropagationState',
           'init_propagation',
           'propagate_samples']

class SamplePropagationState(eqx.Module):
  """Samples pushed through the flow up to `last_t`.

  A view keeps one of these and replaces it with the output of
  `propagate_samples` every time its clock moves.  Moving forward in time
  continues from the cached samples, moving backward or changing the inputs
  restarts from `initial`.

  Attributes:
    initial: Samples at t = 0
    samples: Samples at `last_t`
    last_t: Time the samples were propagated to
    inputs_key: Identifies the drift inputs the samples were computed with
  """
  initial: Float[Array, 'N 2']
  samples: Float[Array, 'N 2']
  last_t: float = eqx.field(static=True)
  inputs_key: Optional[Hashable] = eqx.field(static=True, default=None)

  @property
  def num_samples(self) -> int:
    return self.initial.shape[0]

  def reset(self, inputs_key: Optional[Hashable] = None) -> 'SamplePropagationState':
    return SamplePropagationState(self.initial, self.initial, 0.0, inputs_key)

def init_propagation(key: PRNGKeyArray,
                     num_samples: int,
                     schedule: Optional[AbstractNoiseSchedule] = None,
                     inputs_key: Optional[Hashable] = None) -> SamplePropagationState:
  """Draw `num_samples` points from N(0, I) as the samples at t = 0.

  N(0, I) is only the t = 0 marginal when alpha(0) = 0 and beta(0) = 1, so a
  warning is emitted for schedules that do not start at pure noise.
  """
  if schedule is not None and not schedule.is_standard():
    warnings.warn(f"{type(schedule).__name__} does not start at pure noise "
                  f"(alpha(0)={float(schedule.alpha(0.0)):.3f}, beta(0)={float(schedule.beta(0.0)):.3f}); "
                  "samples initialized from N(0, I) do not follow its t = 0 marginal")
  x0 = standard_normal_pairs(key, num_samples)
  return SamplePropagationState(x0, x0, 0.0, inputs_key)

def propagate_samples(state: SamplePropagationState,
                      provider: AbstractDriftProvider,
                      t: float,
                      steps_per_unit_time: int = 100,
                      inputs_key: Optional[Hashable] = None) -> SamplePropagationState:
  """Euler step the samples of `state` to time `t`.

  **Arguments**:

  - state: The current propagation state
  - provider: Drift to integrate
  - t: Target time in [0, 1]
  - steps_per_unit_time: Step density, the interval [last_t, t] gets
                         ceil((t - last_t)*steps_per_unit_time) steps
  - inputs_key: Key of the current drift inputs.  A different key than the
                one stored in `state` restarts from the initial samples

  **Returns**:

  - The new state, `state` itself if nothing had to be done
  """
  if steps_per_unit_time < 1:
    raise ValueError(f"steps_per_unit_time must be at least 1, got {steps_per_unit_time}")
  t = min(max(float(t), 0.0), 1.0)

  if inputs_key != state.inputs_key or t < state.last_t:
    state = state.reset(inputs_key)

  if t == state.last_t:
    return state

  num_steps = max(1, math.ceil((t - state.last_t)*steps_per_unit_time))
  traj = euler_trajectories(provider, state.samples, num_steps, jnp.asarray(state.last_t), jnp.asarray(t))
  return SamplePropagationState(state.initial, traj.final_point, t, inputs_key)
