from .blackoil import *  # noqa
from .solvent import *  # noqa
