from .forward import *  # noqa
from .functions import *  # noqa
