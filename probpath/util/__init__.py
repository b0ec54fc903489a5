from probpath.util.misc import *
