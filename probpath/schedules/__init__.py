from probpath.schedules.noise import *
from probpath.schedules.diffusion import *
