"""
Forward-mode automatic differentiation on vectors.

An `ADArray` carries a value vector and one sparse Jacobian block per primary
variable group. Constants carry no blocks at all, so they combine with any
block layout.
"""

import typing

import numpy as np
import scipy.sparse as sps

from blacksolv._precision import get_dtype
from blacksolv.errors import ComputationError

__all__ = ["ADArray", "initialize_variables", "value_of"]


Blocks = typing.List[sps.csr_matrix]


def _diag(values: np.ndarray) -> sps.dia_matrix:
    return sps.diags(values)


def _scale_rows(blocks: Blocks, factor) -> Blocks:
    if not blocks:
        return []
    factor = np.asarray(factor)
    if factor.size == 1:
        scalar = factor.item()
        return [(block * scalar).tocsr() for block in blocks]
    D = _diag(factor)
    return [(D @ block).tocsr() for block in blocks]


def _add_blocks(left: Blocks, right: Blocks) -> Blocks:
    if not left:
        return list(right)
    if not right:
        return list(left)
    if len(left) != len(right):
        raise ComputationError(
            f"Cannot combine AD values with {len(left)} and {len(right)} derivative blocks."
        )
    blocks = []
    for a, b in zip(left, right):
        if a.shape != b.shape:
            raise ComputationError(
                f"Derivative block shapes differ: {a.shape} != {b.shape}."
            )
        blocks.append((a + b).tocsr())
    return blocks


class ADArray:
    """Vector value with exact block-sparse derivatives."""

    __slots__ = ("val", "jac")
    # Make numpy defer to the reflected operators below instead of
    # broadcasting over the object elementwise.
    __array_ufunc__ = None

    def __init__(self, val, jac: typing.Optional[Blocks] = None) -> None:
        self.val = np.atleast_1d(np.asarray(val, dtype=get_dtype()))
        self.jac: Blocks = list(jac) if jac is not None else []
        for block in self.jac:
            if block.shape[0] != self.val.size:
                raise ComputationError(
                    f"Derivative block has {block.shape[0]} rows for a value of size {self.val.size}."
                )

    @classmethod
    def constant(cls, val) -> "ADArray":
        return cls(np.array(val, dtype=get_dtype(), copy=True))

    @classmethod
    def variables(cls, *values) -> typing.List["ADArray"]:
        return initialize_variables(list(values))

    @property
    def value(self) -> np.ndarray:
        return self.val

    @property
    def derivatives(self) -> Blocks:
        return self.jac

    @property
    def size(self) -> int:
        return self.val.size

    def __len__(self) -> int:
        return self.val.size

    @property
    def is_constant(self) -> bool:
        return not self.jac

    @property
    def block_sizes(self) -> typing.List[int]:
        return [block.shape[1] for block in self.jac]

    def with_block_sizes(self, sizes: typing.Sequence[int]) -> "ADArray":
        """Return a copy whose derivative has explicit (possibly zero) blocks of the given sizes."""
        if self.jac:
            if self.block_sizes != list(sizes):
                raise ComputationError(
                    f"Block layout {self.block_sizes} does not match {list(sizes)}."
                )
            return self.copy()
        n = self.val.size
        return ADArray(
            self.val.copy(), [sps.csr_matrix((n, m), dtype=self.val.dtype) for m in sizes]
        )

    def jacobian(self) -> sps.csr_matrix:
        if not self.jac:
            raise ComputationError("A constant AD value has no Jacobian layout.")
        return sps.hstack(self.jac, format="csr")

    def copy(self) -> "ADArray":
        return ADArray(self.val.copy(), [block.copy() for block in self.jac])

    def __getitem__(self, index) -> "ADArray":
        index = np.atleast_1d(np.arange(self.val.size)[index])
        return ADArray(self.val[index], [block[index, :].tocsr() for block in self.jac])

    def __neg__(self) -> "ADArray":
        return ADArray(-self.val, [-block for block in self.jac])

    def __pos__(self) -> "ADArray":
        return self

    def __add__(self, other) -> "ADArray":
        if isinstance(other, ADArray):
            return ADArray(self.val + other.val, _add_blocks(self.jac, other.jac))
        return ADArray(self.val + other, self.jac)

    def __radd__(self, other) -> "ADArray":
        return self.__add__(other)

    def __sub__(self, other) -> "ADArray":
        if isinstance(other, ADArray):
            return ADArray(
                self.val - other.val,
                _add_blocks(self.jac, [-block for block in other.jac]),
            )
        return ADArray(self.val - other, self.jac)

    def __rsub__(self, other) -> "ADArray":
        return (-self).__add__(other)

    def __mul__(self, other) -> "ADArray":
        if isinstance(other, ADArray):
            return ADArray(
                self.val * other.val,
                _add_blocks(
                    _scale_rows(self.jac, other.val), _scale_rows(other.jac, self.val)
                ),
            )
        return ADArray(self.val * other, _scale_rows(self.jac, other))

    def __rmul__(self, other) -> "ADArray":
        return self.__mul__(other)

    def __truediv__(self, other) -> "ADArray":
        if isinstance(other, ADArray):
            inverse = 1.0 / other.val
            val = self.val / other.val
            return ADArray(
                val,
                _add_blocks(
                    _scale_rows(self.jac, inverse),
                    _scale_rows(other.jac, -val * inverse),
                ),
            )
        inverse = 1.0 / np.asarray(other, dtype=self.val.dtype)
        return ADArray(self.val / other, _scale_rows(self.jac, inverse))

    def __rtruediv__(self, other) -> "ADArray":
        inverse = 1.0 / self.val
        val = np.asarray(other, dtype=self.val.dtype) / self.val
        return ADArray(val, _scale_rows(self.jac, -val * inverse))

    def __pow__(self, other) -> "ADArray":
        if isinstance(other, ADArray):
            val = self.val**other.val
            return ADArray(
                val,
                _add_blocks(
                    _scale_rows(self.jac, other.val * self.val ** (other.val - 1)),
                    _scale_rows(other.jac, val * np.log(self.val)),
                ),
            )
        val = self.val**other
        return ADArray(val, _scale_rows(self.jac, other * self.val ** (other - 1)))

    def __rpow__(self, other) -> "ADArray":
        val = np.asarray(other, dtype=self.val.dtype) ** self.val
        return ADArray(val, _scale_rows(self.jac, val * np.log(other)))

    def __repr__(self) -> str:
        return f"ADArray(size={self.val.size}, blocks={self.block_sizes})"


def initialize_variables(values: typing.Sequence) -> typing.List[ADArray]:
    """
    Create primary variables with identity derivative blocks.

    Variable `i` gets an identity block in position `i` and zero blocks elsewhere.

    :param values: Initial values of each primary variable group.
    :return: One `ADArray` per group.
    """
    arrays = [np.atleast_1d(np.asarray(v, dtype=get_dtype())) for v in values]
    sizes = [a.size for a in arrays]
    variables = []
    for i, val in enumerate(arrays):
        n = sizes[i]
        blocks = [sps.csr_matrix((n, m), dtype=val.dtype) for m in sizes]
        blocks[i] = sps.identity(n, dtype=val.dtype, format="csr")
        variables.append(ADArray(val.copy(), blocks))
    return variables


def value_of(x) -> np.ndarray:
    """Plain numeric value of an `ADArray`, array or scalar."""
    if isinstance(x, ADArray):
        return x.val
    return np.asarray(x, dtype=get_dtype())
