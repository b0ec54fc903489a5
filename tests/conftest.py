import jax.numpy as jnp
import pytest

def _empirical_mean_and_cov(xs):
  """Mean and (biased) covariance of a point cloud"""
  mu = xs.mean(axis=0)
  cov = jnp.einsum('bi,bj->ij', xs - mu, xs - mu)/xs.shape[0]
  return mu, cov

@pytest.fixture
def empirical_moments():
  return _empirical_mean_and_cov
