from probpath.integrate.noise import *
from probpath.integrate.trajectory import *
from probpath.integrate.euler import *
from probpath.integrate.ode_solve import *
from probpath.integrate.propagation import *
