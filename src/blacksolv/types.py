import enum
import typing

import numpy as np
from typing_extensions import TypeAlias


__all__ = [
    "Phase",
    "PhasePresence",
    "HydrocarbonState",
    "WellType",
    "ControlType",
    "MiscibilityModel",
    "LinearSolverName",
    "PreconditionerName",
    "SelectorCriterion",
    "ExtrapolationMode",
    "FloatArray",
    "IntArray",
    "GlobalReduction",
    "SegmentIntegrator",
]

T = typing.TypeVar("T")

FloatArray: TypeAlias = np.typing.NDArray[np.floating]
"""One-dimensional per-cell (or per-perforation) float data."""
IntArray: TypeAlias = np.typing.NDArray[np.integer]


class Phase(enum.IntEnum):
    """
    Canonical phase identifiers.

    The integer value is the canonical phase index; the position of an active
    phase in equations and variables is given by `PhaseUsage.position`.
    """

    WATER = 0
    OIL = 1
    GAS = 2
    SOLVENT = 3


class PhasePresence(enum.IntFlag):
    """Per-cell flags recording which phases are present."""

    NONE = 0
    FREE_WATER = 1
    FREE_OIL = 2
    FREE_GAS = 4


class HydrocarbonState(enum.IntEnum):
    """
    Primary-variable choice for the hydrocarbon slot of a cell.

    `GAS_AND_OIL` uses gas saturation, `OIL_ONLY` uses the dissolved gas
    ratio and `GAS_ONLY` uses the vaporized oil ratio.
    """

    GAS_AND_OIL = 0
    OIL_ONLY = 1
    GAS_ONLY = 2


class WellType(str, enum.Enum):
    PRODUCER = "producer"
    INJECTOR = "injector"


class ControlType(str, enum.Enum):
    BHP = "bhp"
    SURFACE_RATE = "surface_rate"


MiscibilityModel = typing.Literal["immiscible", "todd_longstaff"]
"""Miscibility model between solvent and hydrocarbon phases"""
LinearSolverName = typing.Literal["direct", "bicgstab", "gmres", "lgmres"]
PreconditionerName = typing.Literal["ilu", "amg", "diagonal"]
SelectorCriterion = typing.Literal["zero", "greater_than_zero"]
ExtrapolationMode = typing.Literal["clamp", "linear"]


@typing.runtime_checkable
class GlobalReduction(typing.Protocol):
    """
    Cross-domain reduction used for equation scaling.

    Implementations block until every domain has contributed.
    """

    @property
    def global_num_cells(self) -> int:
        """Number of cells owned by all domains together."""
        ...

    def global_sum(self, values: FloatArray) -> FloatArray:
        """Sum `values` elementwise over all domains."""
        ...


class SegmentIntegrator(typing.Protocol):
    """Integrates connection densities into per-perforation hydrostatic pressure differences."""

    def __call__(
        self,
        connection_offsets: IntArray,
        depths: FloatArray,
        reference_depths: FloatArray,
        densities: FloatArray,
        gravity: float,
    ) -> FloatArray: ...
