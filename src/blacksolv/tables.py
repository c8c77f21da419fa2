import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np

from blacksolv._precision import get_dtype
from blacksolv.ad import ADArray
from blacksolv.errors import ValidationError
from blacksolv.types import ExtrapolationMode

__all__ = ["Tabulated1D", "constant_table"]


@numba.njit(cache=True)
def _interpolate_with_slope(
    x: np.ndarray, xs: np.ndarray, ys: np.ndarray, extrapolate: bool
) -> typing.Tuple[np.ndarray, np.ndarray]:
    n = xs.size
    values = np.empty(x.size, dtype=np.float64)
    slopes = np.empty(x.size, dtype=np.float64)
    for i in range(x.size):
        xi = x[i]
        if n == 1:
            values[i] = ys[0]
            slopes[i] = 0.0
            continue

        j = np.searchsorted(xs, xi, side="right") - 1
        if j < 0:
            j = 0
        elif j > n - 2:
            j = n - 2
        slope = (ys[j + 1] - ys[j]) / (xs[j + 1] - xs[j])

        if not extrapolate and xi <= xs[0]:
            values[i] = ys[0]
            slopes[i] = 0.0
        elif not extrapolate and xi >= xs[n - 1]:
            values[i] = ys[n - 1]
            slopes[i] = 0.0
        else:
            values[i] = ys[j] + slope * (xi - xs[j])
            slopes[i] = slope
    return values, slopes


@attrs.frozen
class Tabulated1D:
    """
    Piecewise-linear function defined by a table of (x, y) points.

    Accepts plain arrays or `ADArray`s. The derivative is the slope of the
    segment containing the argument (at a table point, the segment to its
    right). Outside the table the function is either held constant ("clamp")
    or continued along the end segments ("linear").
    """

    x: np.ndarray = attrs.field(converter=lambda v: np.asarray(v, dtype=np.float64))
    """Strictly increasing abscissas."""
    y: np.ndarray = attrs.field(converter=lambda v: np.asarray(v, dtype=np.float64))
    """Function values at `x`."""
    extrapolation: ExtrapolationMode = attrs.field(
        default="clamp", validator=attrs.validators.in_(("clamp", "linear"))
    )
    """Behaviour outside the tabulated range."""
    name: str = ""
    """Optional name used in error messages."""

    def __attrs_post_init__(self) -> None:
        if self.x.ndim != 1 or self.y.ndim != 1:
            raise ValidationError(f"Table {self.name!r} must be one-dimensional.")
        if self.x.size != self.y.size:
            raise ValidationError(
                f"Table {self.name!r} has {self.x.size} abscissas but {self.y.size} values."
            )
        if self.x.size == 0:
            raise ValidationError(f"Table {self.name!r} is empty.")
        if np.any(np.diff(self.x) <= 0):
            raise ValidationError(
                f"Abscissas of table {self.name!r} must be strictly increasing."
            )

    def evaluate(self, x) -> typing.Tuple[np.ndarray, np.ndarray]:
        """
        Evaluate the table and its slope at plain values.

        :param x: Arguments.
        :return: A tuple (values, slopes).
        """
        x = np.ascontiguousarray(np.atleast_1d(x), dtype=np.float64)
        values, slopes = _interpolate_with_slope(
            x, self.x, self.y, self.extrapolation == "linear"
        )
        dtype = get_dtype()
        return values.astype(dtype, copy=False), slopes.astype(dtype, copy=False)

    def __call__(self, x):
        if isinstance(x, ADArray):
            values, slopes = self.evaluate(x.val)
            return ADArray(values, (x * slopes).jac)
        values, _ = self.evaluate(x)
        return values

    def derivative(self, x) -> np.ndarray:
        return self.evaluate(x)[1]

    def inverse(self) -> "Tabulated1D":
        """Table of the inverse function. Requires strictly increasing values."""
        if np.any(np.diff(self.y) <= 0):
            raise ValidationError(
                f"Table {self.name!r} is not strictly increasing and cannot be inverted."
            )
        return Tabulated1D(
            x=self.y, y=self.x, extrapolation=self.extrapolation, name=f"{self.name}^-1"
        )


def constant_table(value: float, name: str = "") -> Tabulated1D:
    """Table of a constant function."""
    return Tabulated1D(x=[0.0], y=[value], name=name)
