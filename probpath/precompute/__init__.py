from probpath.precompute.controller import *
from probpath.precompute.jobs import *
