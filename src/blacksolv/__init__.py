"""
*BLACKSOLV*

Fully implicit black-oil nonlinear solver core with automatic differentiation
and a Todd-Longstaff miscible solvent extension.
"""

from ._precision import *  # noqa
from .errors import *  # noqa
from .constants import *  # noqa
from .types import *  # noqa
from .config import *  # noqa
from .ad import *  # noqa
from .tables import *  # noqa
from .phases import *  # noqa
from .pvt import *  # noqa
from .properties import *  # noqa
from .miscibility import *  # noqa
from .relperm import *  # noqa
from .grid import *  # noqa
from .wells import *  # noqa
from .states import *  # noqa
from .extensions import *  # noqa
from .assembler import *  # noqa
from .updates import *  # noqa
from .linear import *  # noqa
from .solver import *  # noqa
from .restart import *  # noqa
from .serialization import *  # noqa
from .output import *  # noqa
