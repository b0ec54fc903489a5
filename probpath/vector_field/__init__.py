from probpath.vector_field.drift import *
from probpath.vector_field.field import *
from probpath.vector_field.demo import *
