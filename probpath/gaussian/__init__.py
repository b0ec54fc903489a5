from probpath.gaussian.mixture import *
from probpath.gaussian.density import *
from probpath.gaussian.contours import *
