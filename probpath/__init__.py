from probpath.config import *
from probpath.scale import *
from probpath.schedules import *
from probpath.gaussian import *
from probpath.vector_field import *
from probpath.integrate import *
from probpath.precompute import *
