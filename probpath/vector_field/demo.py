import jax.numpy as jnp
from jaxtyping import Array, Float, Scalar
from probpath.vector_field.drift import AbstractDriftProvider
from probpath.scale import GridSpec

__all__ = ['SwirlDrift']

# (x, y, strength, rotation) in units of the 200 x 150 reference frame
_EDDIES = jnp.array([[0.25*200, 0.3*150, 0.6, 1.0],
                     [0.6*200, 0.7*150, 0.5, -1.0],
                     [0.8*200, 0.2*150, 0.4, 1.0]])

class SwirlDrift(AbstractDriftProvider):
  """A time dependent decorative field with a base flow, three eddies, a
  whirl and two vertical currents.  It is not the velocity of any probability
  path and is meant to illustrate generic ODE/SDE integration.

  The field is defined on a 200 x 150 reference frame stretched over the
  pixel grid, so it looks the same for every domain.
  """
  grid: GridSpec

  def _reference_velocity(self, px: Scalar, py: Scalar, t: Scalar) -> Float[Array, '2']:
    phase = 2*jnp.pi*t
    width, height = 200.0, 150.0
    x = px/self.grid.width*width
    y = py/self.grid.height*height

    base = jnp.array([1.0 + 0.3*jnp.sin(0.4*phase),
                      0.2*jnp.sin(y/100 + 0.3*phase)])

    dx, dy = x - _EDDIES[:, 0], y - _EDDIES[:, 1]
    r = jnp.sqrt(dx**2 + dy**2)
    angle = jnp.arctan2(dy, dx)
    strength = _EDDIES[:, 2]*jnp.exp(-r/80)*(1 + 0.4*jnp.sin(phase + 2*angle))
    strength = jnp.where(r > 5, strength, 0.0)
    eddy = jnp.array([jnp.sum(-strength*jnp.sin(angle)*_EDDIES[:, 3]),
                      jnp.sum(strength*jnp.cos(angle)*_EDDIES[:, 3])])

    wdx, wdy = x - 0.45*width, y - 0.55*height
    wr = jnp.sqrt(wdx**2 + wdy**2)
    wangle = jnp.arctan2(wdy, wdx)
    force = 1.4*jnp.exp(-wr/70)*(1 + 0.6*jnp.sin(1.1*phase + wangle))
    force = jnp.where(wr > 8, force, 0.0)
    whirl = jnp.array([-force*jnp.sin(wangle), force*jnp.cos(wangle)])

    wave = jnp.array([0.8*jnp.sin(y/70 + 0.6*phase)*jnp.cos(x/90),
                      0.6*jnp.cos(x/80 + 0.5*phase)*jnp.sin(y/110)])

    dist1 = jnp.abs(x - 0.3*width)
    current1 = 1.2*jnp.exp(-dist1/60)*(1 + 0.5*jnp.sin(0.8*phase))*jnp.sin(y/50 + phase)
    dist2 = jnp.abs(x - 0.7*width)
    current2 = -0.9*jnp.exp(-dist2/50)*(1 + 0.3*jnp.cos(1.2*phase))*jnp.cos(y/60 + 1.5*phase)
    vertical = jnp.where(dist1 < 120, current1, 0.0) + jnp.where(dist2 < 100, current2, 0.0)

    v = base + eddy + whirl + wave + jnp.array([0.0, vertical])
    return 90*v*jnp.array([self.grid.width/width, self.grid.height/height])

  def drift(self, x, t):
    pixel = self.grid.to_pixel(x)
    # The reference frame has its y axis pointing up
    v = self._reference_velocity(pixel[0], self.grid.height - pixel[1], t)
    return jnp.array([v[0]/self.grid.x_scale.pixels_per_unit,
                      -v[1]/self.grid.y_scale.pixels_per_unit])
