r"""
Drift ("velocity") and score providers for the probability path
$x_t = \alpha_t z + \beta_t \epsilon$.

For a single data point $z$ the conditional velocity is

$$u(x, t) = (\dot\alpha_t - \frac{\dot\beta_t}{\beta_t}\alpha_t) z + \frac{\dot\beta_t}{\beta_t} x$$

and for a Gaussian mixture with components $(w_k, \mu_k, \Sigma_k)$ the
marginal velocity replaces $z$ by the posterior weighted average of the
per-component denoised estimates

$$\hat z_k(x) = \mu_k + \alpha_t \Sigma_k S_k^{-1}(x - \alpha_t \mu_k), \quad S_k = \alpha_t^2 \Sigma_k + \beta_t^2 I.$$

The marginal score is $\sum_k \gamma_k(x) (-S_k^{-1}(x - \alpha_t \mu_k))$.

Integrators and precomputation only see the `AbstractDriftProvider`
interface, so a learned predictor can be dropped in with `FunctionDrift`.
"""
import abc
import jax
import jax.numpy as jnp
import equinox as eqx
from typing import Callable, Optional
from jaxtyping import Array, Float, Scalar
from probpath.schedules.noise import AbstractNoiseSchedule
from probpath.schedules.diffusion import AbstractDiffusionSchedule
from probpath.gaussian.mixture import GaussianMixture
from probpath.gaussian.density import inverse_2x2, responsibilities

__all__ = ['AbstractDriftProvider',
           'ConditionalDrift',
           'MarginalDrift',
           'FunctionDrift',
           'SdeDrift']

################################################################################################################

class AbstractDriftProvider(eqx.Module, abc.ABC):
  """(position, time) -> drift and, where available, score."""

  @abc.abstractmethod
  def drift(self, x: Float[Array, '2'], t: Scalar) -> Float[Array, '2']:
    pass

  def score(self, x: Float[Array, '2'], t: Scalar) -> Float[Array, '2']:
    raise NotImplementedError(f"{type(self).__name__} does not provide a score")

  def drift_batch(self, xs: Float[Array, 'N 2'], t: Scalar) -> Float[Array, 'N 2']:
    return jax.vmap(self.drift, in_axes=(0, None))(xs, t)

  def score_batch(self, xs: Float[Array, 'N 2'], t: Scalar) -> Float[Array, 'N 2']:
    return jax.vmap(self.score, in_axes=(0, None))(xs, t)

  def __call__(self, x: Float[Array, '2'], t: Scalar) -> Float[Array, '2']:
    return self.drift(x, t)

################################################################################################################

class ConditionalDrift(AbstractDriftProvider):
  """Velocity of the conditional path towards a single data point z"""
  schedule: AbstractNoiseSchedule
  z: Float[Array, '2']
  beta_sq_floor: float = 1e-4
  t_clamp: float = 1e-3

  def __init__(self,
               schedule: AbstractNoiseSchedule,
               z: Float[Array, '2'],
               beta_sq_floor: float = 1e-4,
               t_clamp: float = 1e-3):
    self.schedule = schedule
    self.z = jnp.asarray(z, dtype=float)
    self.beta_sq_floor = beta_sq_floor
    self.t_clamp = t_clamp

  def drift(self, x, t):
    B = self.schedule.beta_ratio(t, self.beta_sq_floor, self.t_clamp)
    A = self.schedule.alpha_dot(t) - B*self.schedule.alpha(t)
    return A*self.z + B*x

  def score(self, x, t):
    mean = self.schedule.alpha(t)*self.z
    return -(x - mean)/self.schedule.beta_squared(t, self.beta_sq_floor)

class MarginalDrift(AbstractDriftProvider):
  """Velocity and score of the marginal path towards a Gaussian mixture.
  Both are zero where the mixture has (numerically) no mass."""
  schedule: AbstractNoiseSchedule
  mixture: GaussianMixture
  beta_sq_floor: float = 1e-4
  t_clamp: float = 1e-3
  det_eps: float = 1e-10
  density_eps: float = 1e-10

  def _posterior_terms(self, x, t):
    alpha = self.schedule.alpha(t)
    marginal = self.mixture.at_time(self.schedule, t, self.beta_sq_floor)
    gamma = responsibilities(x, marginal, self.det_eps, self.density_eps)
    S_inv = jax.vmap(inverse_2x2, in_axes=(0, None))(marginal.covariances, self.det_eps)
    residual = x[None, :] - marginal.means
    precision_residual = jnp.einsum('kij,kj->ki', S_inv, residual)
    return alpha, gamma, precision_residual

  def drift(self, x, t):
    alpha, gamma, precision_residual = self._posterior_terms(x, t)
    z_hat = self.mixture.means + alpha*jnp.einsum('kij,kj->ki', self.mixture.covariances, precision_residual)
    z_bar = jnp.einsum('k,ki->i', gamma, z_hat)

    B = self.schedule.beta_ratio(t, self.beta_sq_floor, self.t_clamp)
    A = self.schedule.alpha_dot(t) - B*alpha
    u = A*z_bar + B*x
    return jnp.where(gamma.sum() > 0, u, jnp.zeros_like(u))

  def score(self, x, t):
    _, gamma, precision_residual = self._posterior_terms(x, t)
    return -jnp.einsum('k,ki->i', gamma, precision_residual)

class FunctionDrift(AbstractDriftProvider):
  """Wraps plain callables, e.g. a trained network's prediction"""
  drift_fn: Callable[[Float[Array, '2'], Scalar], Float[Array, '2']]
  score_fn: Optional[Callable[[Float[Array, '2'], Scalar], Float[Array, '2']]] = None

  def drift(self, x, t):
    return self.drift_fn(x, t)

  def score(self, x, t):
    if self.score_fn is None:
      raise NotImplementedError("score_fn is not defined in this FunctionDrift")
    return self.score_fn(x, t)

class SdeDrift(AbstractDriftProvider):
  r"""Drift of the SDE $dx = (u(x, t) + \frac{\sigma_t^2}{2} \nabla \log p_t(x)) dt + \sigma_t dW$
  that shares its marginals with the ODE of `provider`."""
  provider: AbstractDriftProvider
  diffusion_schedule: AbstractDiffusionSchedule

  def drift(self, x, t):
    sigma = self.diffusion_schedule.diffusion(t)
    return self.provider.drift(x, t) + 0.5*sigma**2*self.provider.score(x, t)

  def score(self, x, t):
    return self.provider.score(x, t)

  def diffusion(self, t: Scalar) -> Scalar:
    return self.diffusion_schedule.diffusion(t)
