"""
Floating point precision of the arrays created by blacksolv.

Residuals, Jacobian blocks and property tables are all created with the
dtype returned by `get_dtype`. The setting is held in a context variable so
that concurrent simulations (threads or asyncio tasks) can use different
precisions.
"""

from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np
import numpy.typing as npt

from blacksolv.errors import ValidationError

__all__ = [
    "get_dtype",
    "set_dtype",
    "with_precision",
    "get_floating_point_info",
]

_computation_dtype: ContextVar[npt.DTypeLike] = ContextVar(
    "_computation_dtype", default=np.float64
)


def _check_floating(dtype: npt.DTypeLike) -> np.dtype:
    resolved = np.dtype(dtype)
    if not np.issubdtype(resolved, np.floating):
        raise ValidationError(f"Computation dtype must be a floating point type, got {resolved}")
    return resolved


def get_dtype() -> npt.DTypeLike:
    """
    Current computation dtype, float64 unless changed.

    Mass balance tolerances are usually below float32 resolution, so
    fully-implicit runs should keep the default.
    """
    return _computation_dtype.get()


def set_dtype(dtype: npt.DTypeLike) -> None:
    """
    Set the computation dtype for the current context.

    :param dtype: A numpy floating point dtype.
    :raises ValidationError: If `dtype` is not a floating point type.
    """
    _computation_dtype.set(_check_floating(dtype).type)


@contextmanager
def with_precision(dtype: npt.DTypeLike):
    """Use `dtype` as computation dtype inside the `with` block only."""
    token = _computation_dtype.set(_check_floating(dtype).type)
    try:
        yield
    finally:
        _computation_dtype.reset(token)


def get_floating_point_info() -> np.finfo:
    """Machine limits of the current computation dtype."""
    return np.finfo(get_dtype())  # type: ignore
