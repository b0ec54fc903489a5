r"""
Density evaluation for (time transformed) Gaussian mixtures.

For a mixture $p(x) = \sum_k w_k N(x; \mu_k, \Sigma_k)$ this module evaluates
the density at arbitrary points, over a whole pixel grid and computes the
posterior (responsibility) weights
$\gamma_k(x) = w_k N(x; \mu_k, \Sigma_k) / \sum_j w_j N(x; \mu_j, \Sigma_j)$
that the marginal vector field needs.  Degenerate inputs are substituted
locally instead of raising:

- a component whose covariance has |det| < det_eps contributes zero density
- a point where the total density is below density_eps gets no assignment
  (all responsibilities zero)
"""
import jax
import jax.numpy as jnp
import equinox as eqx
import einops
from typing import Optional
from jaxtyping import Array, Float, Scalar
from probpath.gaussian.mixture import GaussianMixture
from probpath.schedules.noise import AbstractNoiseSchedule
from probpath.scale import GridSpec

__all__ = ['inverse_2x2',
           'gaussian_pdf',
           'component_densities',
           'mixture_density',
           'mixture_density_gradient',
           'responsibilities',
           'ProbabilityGrid',
           'evaluate_density_grid']

################################################################################################################

def inverse_2x2(mat: Float[Array, '2 2'], det_eps: float = 1e-10) -> Float[Array, '2 2']:
  """Closed form inverse of a 2x2 matrix.  Returns zeros when the matrix is
  (numerically) singular."""
  det = mat[0, 0]*mat[1, 1] - mat[0, 1]*mat[1, 0]
  valid = jnp.abs(det) >= det_eps
  safe_det = jnp.where(valid, det, 1.0)
  adj = jnp.array([[mat[1, 1], -mat[0, 1]],
                   [-mat[1, 0], mat[0, 0]]])
  return jnp.where(valid, adj/safe_det, jnp.zeros_like(mat))

def gaussian_pdf(x: Float[Array, '2'],
                 mean: Float[Array, '2'],
                 cov: Float[Array, '2 2'],
                 det_eps: float = 1e-10) -> Scalar:
  """Bivariate normal density.  Zero if |det(cov)| < det_eps."""
  det = cov[0, 0]*cov[1, 1] - cov[0, 1]*cov[1, 0]
  valid = det >= det_eps
  safe_det = jnp.where(valid, det, 1.0)
  dx = x - mean
  cov_inv = inverse_2x2(cov, det_eps)
  mahalanobis = jnp.vdot(dx, cov_inv@dx)
  pdf = jnp.exp(-0.5*mahalanobis)/(2*jnp.pi*jnp.sqrt(safe_det))
  return jnp.where(valid, pdf, 0.0)

def component_densities(x: Float[Array, '2'],
                        mixture: GaussianMixture,
                        det_eps: float = 1e-10) -> Float[Array, 'K']:
  """Unweighted density of every component at x"""
  return jax.vmap(gaussian_pdf, in_axes=(None, 0, 0, None))(x, mixture.means, mixture.covariances, det_eps)

def mixture_density(x: Float[Array, '2'],
                    mixture: GaussianMixture,
                    det_eps: float = 1e-10) -> Scalar:
  return jnp.sum(mixture.weights*component_densities(x, mixture, det_eps))

def mixture_density_gradient(x: Float[Array, '2'],
                             mixture: GaussianMixture,
                             det_eps: float = 1e-10) -> Float[Array, '2']:
  return jax.grad(mixture_density)(x, mixture, det_eps)

def responsibilities(x: Float[Array, '2'],
                     mixture: GaussianMixture,
                     det_eps: float = 1e-10,
                     density_eps: float = 1e-10) -> Float[Array, 'K']:
  """Posterior probability that x came from each component.  All zeros when
  the total density at x is below `density_eps`."""
  weighted = mixture.weights*component_densities(x, mixture, det_eps)
  total = weighted.sum()
  assigned = total >= density_eps
  safe_total = jnp.where(assigned, total, 1.0)
  return jnp.where(assigned, weighted/safe_total, jnp.zeros_like(weighted))

################################################################################################################

class ProbabilityGrid(eqx.Module):
  """
  Density samples at the center of every pixel of a grid.  A grid is never
  updated in place: a change of the mixture, the time or the schedule produces
  a new one.

  Attributes:
    values: Non-negative densities, row 0 is the top of the domain
    max_value: Largest entry of `values`
    grid: The pixel grid the values were sampled on
  """
  values: Float[Array, 'H W']
  max_value: Scalar
  grid: GridSpec

  @property
  def shape(self):
    return self.values.shape

  def normalized(self) -> Float[Array, 'H W']:
    """Values divided by the maximum (all zeros for an all zero grid)"""
    safe_max = jnp.where(self.max_value > 0, self.max_value, 1.0)
    return jnp.where(self.max_value > 0, self.values/safe_max, jnp.zeros_like(self.values))

@eqx.filter_jit
def _grid_values(mixture: GaussianMixture, grid: GridSpec, det_eps: float) -> Float[Array, 'H W']:
  points = einops.rearrange(grid.pixel_centers(), 'h w d -> (h w) d')
  values = jax.vmap(mixture_density, in_axes=(0, None, None))(points, mixture, det_eps)
  return einops.rearrange(values, '(h w) -> h w', h=grid.height, w=grid.width)

def evaluate_density_grid(mixture: GaussianMixture,
                          grid: GridSpec,
                          schedule: Optional[AbstractNoiseSchedule] = None,
                          t: Optional[Scalar] = None,
                          beta_sq_floor: float = 1e-4,
                          det_eps: float = 1e-10) -> ProbabilityGrid:
  """Evaluate the mixture density at every pixel center of `grid`.

  **Arguments**:

  - mixture: The data mixture
  - grid: Pixel grid (and the coordinate scales that map it to data space)
  - schedule: If given, evaluate the marginal of the probability path at time
              `t` instead of the data mixture itself
  - t: Time in [0, 1], required when `schedule` is given
  - beta_sq_floor: Lower bound on beta^2 in the time transform
  - det_eps: Components with |det| below this contribute zero

  **Returns**:

  - ProbabilityGrid: The densities and their maximum
  """
  if schedule is not None:
    if t is None:
      raise ValueError("A time t is required to evaluate the probability path")
    mixture = mixture.at_time(schedule, t, beta_sq_floor)
  if mixture.num_components == 0:
    values = jnp.zeros((grid.height, grid.width))
  else:
    values = _grid_values(mixture, grid, det_eps)
  return ProbabilityGrid(values, values.max(), grid)
