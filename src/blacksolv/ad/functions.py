import typing

import numpy as np
import scipy.sparse as sps

from blacksolv._precision import get_dtype
from blacksolv.ad.forward import ADArray, value_of
from blacksolv.errors import ValidationError
from blacksolv.types import SelectorCriterion

__all__ = [
    "exp",
    "log",
    "power",
    "spdiag",
    "maximum",
    "minimum",
    "select",
    "Selector",
    "guarded_divide",
    "subset",
    "superset",
    "apply_matrix",
    "concatenate",
]

Operand = typing.Union[ADArray, np.ndarray, float]


def exp(x: Operand) -> Operand:
    if isinstance(x, ADArray):
        val = np.exp(x.val)
        return ADArray(val, [(sps.diags(val) @ block).tocsr() for block in x.jac])
    return np.exp(x)


def log(x: Operand) -> Operand:
    if isinstance(x, ADArray):
        inverse = 1.0 / x.val
        return ADArray(
            np.log(x.val), [(sps.diags(inverse) @ block).tocsr() for block in x.jac]
        )
    return np.log(x)


def power(x: Operand, exponent: Operand) -> Operand:
    if isinstance(x, ADArray):
        return x**exponent
    if isinstance(exponent, ADArray):
        return exponent.__rpow__(x)
    return np.power(x, exponent)


def spdiag(values: Operand) -> sps.csr_matrix:
    """Sparse diagonal matrix of the values of `values`."""
    return sps.diags(value_of(values)).tocsr()


def _row_mask(mask: np.ndarray, x: Operand, size: int) -> typing.List[sps.csr_matrix]:
    if not isinstance(x, ADArray) or not x.jac:
        return []
    # Zero diagonal entries are dropped on conversion, so rows that are not
    # selected never contribute, even when they hold non-finite values.
    D = sps.diags(mask.astype(x.val.dtype))
    if x.val.size != size:
        raise ValidationError(
            f"Selection operand of size {x.val.size} does not match condition of size {size}."
        )
    return [(D @ block).tocsr() for block in x.jac]


def select(condition, when_true: Operand, when_false: Operand) -> Operand:
    """
    Elementwise choice between two operands.

    Derivatives are taken from the chosen operand only.

    :param condition: Boolean array.
    :param when_true: Value used where `condition` holds.
    :param when_false: Value used elsewhere.
    :return: `ADArray` if any operand is one, otherwise a numpy array.
    """
    condition = np.asarray(condition, dtype=bool)
    size = condition.size
    val = np.where(condition, value_of(when_true), value_of(when_false)).astype(
        get_dtype(), copy=False
    )
    if not isinstance(when_true, ADArray) and not isinstance(when_false, ADArray):
        return val

    true_blocks = _row_mask(condition, when_true, size)
    false_blocks = _row_mask(~condition, when_false, size)
    if not true_blocks:
        return ADArray(val, false_blocks)
    if not false_blocks:
        return ADArray(val, true_blocks)
    return ADArray(val, [(a + b).tocsr() for a, b in zip(true_blocks, false_blocks)])


class Selector:
    """
    Elementwise selection built once from a reference value.

    `Selector(x, "zero").select(a, b)` picks `a` where `x == 0` and `b` elsewhere.
    `Selector(x, "greater_than_zero").select(a, b)` picks `a` where `x > 0`.
    """

    __slots__ = ("condition",)

    def __init__(self, values: Operand, criterion: SelectorCriterion = "zero") -> None:
        values = value_of(values)
        if criterion == "zero":
            self.condition = values == 0.0
        elif criterion == "greater_than_zero":
            self.condition = values > 0.0
        else:
            raise ValidationError(f"Unknown selector criterion {criterion!r}.")

    def select(self, when_true: Operand, when_false: Operand) -> Operand:
        return select(self.condition, when_true, when_false)


def guarded_divide(numerator: Operand, denominator: Operand, fallback: Operand = 0.0) -> Operand:
    """
    Divide `numerator` by `denominator`, using `fallback` wherever the denominator is exactly zero.

    The division itself is never evaluated at those entries: the denominator is
    replaced by one there before dividing, so neither the value nor the
    derivative of the result can contain NaN or Inf. The result's value and
    derivative at guarded entries are those of `fallback` (zero derivative for
    a plain number).

    :param numerator: Dividend.
    :param denominator: Divisor, possibly zero in some entries.
    :param fallback: Value used where `denominator == 0`.
    :return: The guarded quotient.
    """
    is_zero = value_of(denominator) == 0.0
    if not np.any(is_zero):
        return numerator / denominator
    safe_denominator = select(is_zero, np.ones_like(is_zero, dtype=get_dtype()), denominator)
    quotient = numerator / safe_denominator
    if not isinstance(fallback, ADArray):
        fallback = np.broadcast_to(
            np.asarray(fallback, dtype=get_dtype()), is_zero.shape
        )
    return select(is_zero, fallback, quotient)


def subset(x: Operand, indices) -> Operand:
    if isinstance(x, ADArray):
        return x[indices]
    return np.asarray(x)[indices]


def superset(x: Operand, indices, size: int) -> Operand:
    """Scatter `x` into a zero vector of length `size` at `indices`."""
    indices = np.asarray(indices, dtype=np.intp)
    if isinstance(x, ADArray):
        scatter = sps.csr_matrix(
            (np.ones(indices.size, dtype=x.val.dtype), (indices, np.arange(indices.size))),
            shape=(size, indices.size),
        )
        return apply_matrix(scatter, x)
    out = np.zeros(size, dtype=get_dtype())
    out[indices] = x
    return out


def apply_matrix(matrix, x: Operand) -> Operand:
    """Left-multiply `x` by a (sparse) matrix, propagating derivatives."""
    if isinstance(x, ADArray):
        return ADArray(matrix @ x.val, [(matrix @ block).tocsr() for block in x.jac])
    return matrix @ np.asarray(x)


def concatenate(parts: typing.Sequence[ADArray], block_sizes: typing.Sequence[int]) -> ADArray:
    """Stack AD values vertically, padding constants with zero blocks."""
    expanded = [part.with_block_sizes(block_sizes) for part in parts]
    val = np.concatenate([part.val for part in expanded])
    blocks = [
        sps.vstack([part.jac[i] for part in expanded], format="csr")
        for i in range(len(block_sizes))
    ]
    return ADArray(val, blocks)


def maximum(x: Operand, y: Operand) -> Operand:
    """Elementwise maximum; ties take `x`."""
    x_val = value_of(x)
    y_val = value_of(y)
    return select(np.broadcast_to(x_val >= y_val, np.broadcast(x_val, y_val).shape), x, _broadcast(y, x_val))


def minimum(x: Operand, y: Operand) -> Operand:
    """Elementwise minimum; ties take `x`."""
    x_val = value_of(x)
    y_val = value_of(y)
    return select(np.broadcast_to(x_val <= y_val, np.broadcast(x_val, y_val).shape), x, _broadcast(y, x_val))


def _broadcast(y: Operand, like: np.ndarray) -> Operand:
    if isinstance(y, ADArray):
        return y
    return np.broadcast_to(np.asarray(y, dtype=get_dtype()), np.broadcast(like, y).shape)
