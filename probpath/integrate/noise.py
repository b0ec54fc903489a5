import jax.numpy as jnp
from jax import random
import einops
from jaxtyping import Array, PRNGKeyArray, Float, Scalar

__all__ = ['standard_normal_pairs',
           'brownian_increments',
           'brownian_motion_trajectory']

def standard_normal_pairs(key: PRNGKeyArray, num_pairs: int) -> Float[Array, 'N 2']:
  """Independent N(0, I) samples in 2D using the Box-Muller transform.

  **Arguments**:

  - key: JAX random key
  - num_pairs: Number of 2D samples

  **Returns**:

  - Array of shape (num_pairs, 2)
  """
  k1, k2 = random.split(key)
  # u1 in (0, 1] so that log(u1) is finite
  u1 = 1.0 - random.uniform(k1, (num_pairs,))
  u2 = random.uniform(k2, (num_pairs,))
  r = jnp.sqrt(-2.0*jnp.log(u1))
  theta = 2.0*jnp.pi*u2
  return jnp.stack([r*jnp.cos(theta), r*jnp.sin(theta)], axis=-1)

def brownian_increments(key: PRNGKeyArray,
                        num_samples: int,
                        num_steps: int,
                        dt: Scalar) -> Float[Array, 'N S 2']:
  """Pre-generate the Brownian increments dW ~ N(0, dt I) of `num_samples`
  paths with `num_steps` steps each.  Generating them up front makes SDE
  trajectories reproducible and independent of how the integration is
  chunked."""
  if num_steps < 1:
    raise ValueError(f"num_steps must be positive, got {num_steps}")
  eps = standard_normal_pairs(key, num_samples*num_steps)
  eps = einops.rearrange(eps, '(n s) d -> n s d', n=num_samples, s=num_steps)
  return jnp.sqrt(dt)*eps

def brownian_motion_trajectory(increments: Float[Array, 'S 2']) -> Float[Array, 'S+1 2']:
  """Path W_0 = 0, W_{k+1} = W_k + dW_k"""
  path = jnp.cumsum(increments, axis=0)
  return jnp.concatenate([jnp.zeros((1, increments.shape[-1])), path], axis=0)
