import jax
import jax.numpy as jnp
from jax import random
import equinox as eqx
from typing import List, Optional, Sequence, Tuple
from jaxtyping import Array, PRNGKeyArray, Float, Scalar
from probpath.schedules.noise import AbstractNoiseSchedule

__all__ = ['GaussianComponent',
           'GaussianMixture',
           'axes_to_covariance',
           'covariance_to_axes']

################################################################################################################

def axes_to_covariance(major_axis: Float[Array, '2'], minor_axis: Float[Array, '2']) -> Float[Array, '2 2']:
  """Covariance whose principal axes are `major_axis` and `minor_axis`.  The
  length of each axis is the standard deviation along that direction."""
  major_axis, minor_axis = jnp.asarray(major_axis), jnp.asarray(minor_axis)
  return jnp.outer(major_axis, major_axis) + jnp.outer(minor_axis, minor_axis)

def covariance_to_axes(cov: Float[Array, '2 2']) -> Tuple[Float[Array, '2'], Float[Array, '2']]:
  """Inverse of `axes_to_covariance` (up to the sign of each axis)"""
  eigvals, eigvecs = jnp.linalg.eigh(cov)
  eigvals = jnp.maximum(eigvals, 0.0)
  minor_axis = jnp.sqrt(eigvals[0])*eigvecs[:, 0]
  major_axis = jnp.sqrt(eigvals[1])*eigvecs[:, 1]
  return major_axis, minor_axis

################################################################################################################

class GaussianComponent(eqx.Module):
  mean: Float[Array, '2']
  weight: Scalar
  covariance: Float[Array, '2 2']

  def __init__(self, mean, weight, covariance):
    self.mean = jnp.asarray(mean, dtype=float)
    self.weight = jnp.asarray(weight, dtype=float)
    self.covariance = jnp.asarray(covariance, dtype=float)

class GaussianMixture(eqx.Module):
  """
  A mixture of 2D Gaussians stored as stacked arrays.  The weights are
  renormalized on construction, so every edit (which builds a new mixture)
  leaves weights that sum to 1.  A mixture with zero total weight gets
  uniform weights.

  Attributes:
    means: Component means
    weights: Component weights, non-negative and summing to 1
    covariances: Symmetric positive semi-definite component covariances
  """
  means: Float[Array, 'K 2']
  weights: Float[Array, 'K']
  covariances: Float[Array, 'K 2 2']

  def __init__(self, means, weights, covariances):
    means = jnp.asarray(means, dtype=float).reshape((-1, 2))
    weights = jnp.asarray(weights, dtype=float).reshape((-1,))
    covariances = jnp.asarray(covariances, dtype=float).reshape((-1, 2, 2))
    if not (means.shape[0] == weights.shape[0] == covariances.shape[0]):
      raise ValueError(f"Inconsistent number of components: {means.shape[0]} means, "
                       f"{weights.shape[0]} weights, {covariances.shape[0]} covariances")
    self.means = means
    self.weights = _normalize_weights(weights)
    self.covariances = 0.5*(covariances + jnp.swapaxes(covariances, -1, -2))

  @classmethod
  def from_components(cls, components: Sequence[GaussianComponent]) -> 'GaussianMixture':
    if len(components) == 0:
      return cls.empty()
    means = jnp.stack([c.mean for c in components])
    weights = jnp.stack([c.weight for c in components])
    covariances = jnp.stack([c.covariance for c in components])
    return cls(means, weights, covariances)

  @classmethod
  def empty(cls) -> 'GaussianMixture':
    return cls(jnp.zeros((0, 2)), jnp.zeros((0,)), jnp.zeros((0, 2, 2)))

  @classmethod
  def isotropic(cls, num_components: int) -> 'GaussianMixture':
    """`num_components` unit Gaussians at the origin with equal weights"""
    if num_components < 0:
      raise ValueError(f"num_components must be >= 0, got {num_components}")
    means = jnp.zeros((num_components, 2))
    weights = jnp.ones((num_components,))
    covariances = jnp.broadcast_to(jnp.eye(2), (num_components, 2, 2))
    return cls(means, weights, covariances)

  @classmethod
  def random(cls,
             key: PRNGKeyArray,
             num_components: int,
             x_domain: Tuple[float, float] = (-2.0, 2.0),
             y_domain: Tuple[float, float] = (-1.5, 1.5),
             spread: float = 0.8) -> 'GaussianMixture':
    """Random means inside `spread` times the domain, randomly rotated
    elliptical covariances with axis variances in [0.1, 2.6] and random
    weights."""
    if num_components < 0:
      raise ValueError(f"num_components must be >= 0, got {num_components}")
    k_w, k_x, k_y, k_angle, k_major, k_minor = random.split(key, 6)
    K = num_components

    weights = random.uniform(k_w, (K,))
    cx, hx = 0.5*(x_domain[0] + x_domain[1]), 0.5*(x_domain[1] - x_domain[0])*spread
    cy, hy = 0.5*(y_domain[0] + y_domain[1]), 0.5*(y_domain[1] - y_domain[0])*spread
    means = jnp.stack([random.uniform(k_x, (K,), minval=cx - hx, maxval=cx + hx),
                       random.uniform(k_y, (K,), minval=cy - hy, maxval=cy + hy)], axis=-1)

    angle = random.uniform(k_angle, (K,), maxval=2*jnp.pi)
    cos, sin = jnp.cos(angle), jnp.sin(angle)
    major_scale = jnp.sqrt(0.1 + random.uniform(k_major, (K,))*2.5)
    minor_scale = jnp.sqrt(0.1 + random.uniform(k_minor, (K,))*2.5)
    major_axis = major_scale[:, None]*jnp.stack([cos, sin], axis=-1)
    minor_axis = minor_scale[:, None]*jnp.stack([-sin, cos], axis=-1)
    covariances = jax.vmap(axes_to_covariance)(major_axis, minor_axis)
    return cls(means, weights, covariances)

  @property
  def num_components(self) -> int:
    return self.means.shape[0]

  def __len__(self) -> int:
    return self.num_components

  def components(self) -> List[GaussianComponent]:
    return [GaussianComponent(self.means[k], self.weights[k], self.covariances[k]) for k in range(self.num_components)]

  def normalized(self) -> 'GaussianMixture':
    return GaussianMixture(self.means, self.weights, self.covariances)

  ##############################################################################################################
  # Editing.  Every edit returns a new mixture.

  def _check_index(self, index: int):
    if not (0 <= index < self.num_components):
      raise ValueError(f"Component index {index} out of range for a mixture with {self.num_components} components")

  def add_component(self,
                    mean: Float[Array, '2'],
                    covariance: Optional[Float[Array, '2 2']] = None,
                    weight: Optional[float] = None) -> 'GaussianMixture':
    """Append a component.  The existing weights are scaled down so that the
    new one receives `weight` (default: an equal share) of the total mass."""
    K = self.num_components
    if weight is None:
      weight = 1.0/(K + 1)
    if not (0.0 <= weight <= 1.0):
      raise ValueError(f"weight must lie in [0, 1], got {weight}")
    if covariance is None:
      covariance = jnp.eye(2)
    if K == 0:
      weight = 1.0
    means = jnp.concatenate([self.means, jnp.asarray(mean, dtype=float).reshape((1, 2))])
    weights = jnp.concatenate([self.weights*(1.0 - weight), jnp.array([weight], dtype=float)])
    covariances = jnp.concatenate([self.covariances, jnp.asarray(covariance, dtype=float).reshape((1, 2, 2))])
    return GaussianMixture(means, weights, covariances)

  def remove_component(self, index: int) -> 'GaussianMixture':
    self._check_index(index)
    keep = jnp.array([k for k in range(self.num_components) if k != index], dtype=int)
    return GaussianMixture(self.means[keep], self.weights[keep], self.covariances[keep])

  def set_mean(self, index: int, mean: Float[Array, '2']) -> 'GaussianMixture':
    self._check_index(index)
    return eqx.tree_at(lambda m: m.means, self, self.means.at[index].set(jnp.asarray(mean, dtype=float)))

  def set_covariance(self, index: int, covariance: Float[Array, '2 2']) -> 'GaussianMixture':
    self._check_index(index)
    covariance = jnp.asarray(covariance, dtype=float)
    return GaussianMixture(self.means, self.weights, self.covariances.at[index].set(covariance))

  def set_weight(self, index: int, weight: float, min_weight: float = 0.01) -> 'GaussianMixture':
    """Give component `index` the weight `weight` (clamped to
    [min_weight, 1]) and rescale every other component proportionally so
    that the total stays 1."""
    self._check_index(index)
    K = self.num_components
    if K == 1:
      return self
    target = min(max(float(weight), min_weight), 1.0)
    others = jnp.arange(K) != index
    others_total = float(jnp.sum(jnp.where(others, self.weights, 0.0)))
    if others_total > 0:
      rescaled = self.weights*(1.0 - target)/others_total
    else:
      rescaled = jnp.full((K,), (1.0 - target)/(K - 1))
    weights = jnp.where(others, rescaled, target)
    return GaussianMixture(self.means, weights, self.covariances)

  ##############################################################################################################

  def at_time(self, schedule: AbstractNoiseSchedule, t: Scalar, beta_sq_floor: float = 1e-4) -> 'GaussianMixture':
    """Mixture of x_t = alpha(t) x + beta(t) eps where x is drawn from this
    mixture and eps ~ N(0, I).  Means become alpha*mu_k and covariances
    alpha^2 Sigma_k + beta^2 I (beta^2 bounded below by `beta_sq_floor`)."""
    alpha = schedule.alpha(t)
    beta_sq = schedule.beta_squared(t, beta_sq_floor)
    means = alpha*self.means
    covariances = alpha**2*self.covariances + beta_sq*jnp.eye(2)
    # Bypass __init__, the weights are already normalized
    out = eqx.tree_at(lambda m: m.means, self, means)
    return eqx.tree_at(lambda m: m.covariances, out, covariances)

  def sample(self, key: PRNGKeyArray, num_samples: int) -> Float[Array, 'N 2']:
    """Draw samples from the mixture"""
    if self.num_components == 0:
      raise ValueError("Cannot sample from an empty mixture")
    k_choice, k_noise = random.split(key)
    idx = random.choice(k_choice, self.num_components, shape=(num_samples,), p=self.weights)
    major_axis, minor_axis = jax.vmap(covariance_to_axes)(self.covariances)
    z = random.normal(k_noise, (num_samples, 2))
    return self.means[idx] + major_axis[idx]*z[:, :1] + minor_axis[idx]*z[:, 1:]

  def sample_probability_path(self,
                              key: PRNGKeyArray,
                              num_samples: int,
                              schedule: AbstractNoiseSchedule,
                              t: Scalar,
                              beta_sq_floor: float = 1e-4) -> Float[Array, 'N 2']:
    """Draw samples of x_t = alpha(t) x_1 + beta(t) eps with x_1 from the mixture"""
    k_data, k_noise = random.split(key)
    x1 = self.sample(k_data, num_samples)
    eps = random.normal(k_noise, (num_samples, 2))
    return schedule.alpha(t)*x1 + jnp.sqrt(schedule.beta_squared(t, beta_sq_floor))*eps

################################################################################################################

def _normalize_weights(weights: Float[Array, 'K']) -> Float[Array, 'K']:
  K = weights.shape[0]
  if K == 0:
    return weights
  weights = jnp.maximum(weights, 0.0)
  total = weights.sum()
  safe_total = jnp.where(total > 0, total, 1.0)
  return jnp.where(total > 0, weights/safe_total, jnp.ones_like(weights)/K)
