from .base import *  # noqa
from .connections import *  # noqa
from .density import *  # noqa
from .flux import *  # noqa
