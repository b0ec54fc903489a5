import logging
import jax.numpy as jnp
from typing import Optional, Union
from jaxtyping import Array, Float, Scalar

__all__ = ['get_logger',
           'clamp01']

################################################################################################################

def get_logger(name: str = __name__, level: Optional[int] = None) -> logging.Logger:
  """Get a module level python logger.

  The library never installs handlers.  Applications decide where the
  records go (and at which level) through the standard logging config.
  """
  logger = logging.getLogger(name)
  if level is not None:
    logger.setLevel(level)
  return logger

################################################################################################################

def clamp01(t: Union[Scalar, Float[Array, '...']]) -> Union[Scalar, Float[Array, '...']]:
  return jnp.clip(t, 0.0, 1.0)
