"""Well descriptions and the perforation topology derived from them."""

import logging
import typing

import attrs
import numba
import numpy as np
import scipy.sparse as sps

from blacksolv.errors import ValidationError
from blacksolv.grid import Grid
from blacksolv.phases import PhaseUsage
from blacksolv.types import ControlType, Phase, WellType

logger = logging.getLogger(__name__)

__all__ = ["WellControl", "Well", "Wells", "compute_well_index"]


@numba.njit(cache=True)
def compute_well_index(
    permeability: float,
    interval_thickness: float,
    wellbore_radius: float,
    cell_size_x: float,
    cell_size_y: float,
    skin_factor: float = 0.0,
) -> float:
    """
    Peaceman well index of a vertical perforation in an isotropic cell.

        WI = 2π k h / (ln(r_e / r_w) + s),  r_e = 0.14 √(Δx² + Δy²)

    :param permeability: Permeability of the perforated cell (m²).
    :param interval_thickness: Perforated thickness (m).
    :param wellbore_radius: Wellbore radius (m).
    :param cell_size_x: Cell extent in x (m).
    :param cell_size_y: Cell extent in y (m).
    :param skin_factor: Skin factor (dimensionless).
    :return: The well index (m³).
    """
    effective_radius = 0.14 * np.sqrt(cell_size_x**2 + cell_size_y**2)
    return (2.0 * np.pi * permeability * interval_thickness) / (
        np.log(effective_radius / wellbore_radius) + skin_factor
    )


@attrs.frozen
class WellControl:
    """
    A well control target.

    BHP controls fix the bottom-hole pressure. Surface rate controls fix the
    weighted sum of surface phase rates, weighted by `distribution`. Rate
    targets are magnitudes: injection is positive, production negative, and
    the sign is applied from the well type.
    """

    type: ControlType = attrs.field(converter=ControlType)
    """Kind of control."""
    target: float
    """Bottom-hole pressure (Pa) or surface rate magnitude (m³/s)."""
    distribution: typing.Tuple[float, ...] = attrs.field(default=(), converter=tuple)
    """Per active phase weights of a surface rate control."""

    def __attrs_post_init__(self) -> None:
        if self.type == ControlType.BHP and self.target <= 0:
            raise ValidationError(f"BHP target must be positive, got {self.target}")
        if self.type == ControlType.SURFACE_RATE and self.target < 0:
            raise ValidationError(
                f"Surface rate targets are magnitudes and must be non-negative, got {self.target}"
            )


@attrs.frozen
class Well:
    """A well with its perforations and controls."""

    name: str
    """Name of the well."""
    type: WellType = attrs.field(converter=WellType)
    """Producer or injector."""
    cells: np.ndarray = attrs.field(converter=lambda v: np.atleast_1d(np.asarray(v, dtype=np.intp)))
    """Perforated cells, ordered from the top of the well downwards."""
    well_index: np.ndarray = attrs.field(converter=lambda v: np.atleast_1d(np.asarray(v, dtype=np.float64)))
    """Connection transmissibility factor of each perforation (m³)."""
    controls: typing.Tuple[WellControl, ...] = attrs.field(converter=tuple)
    """Controls in priority order. The first one is active initially, the others act as limits."""
    reference_depth: typing.Optional[float] = None
    """Depth of the bottom-hole pressure reference. Defaults to the depth of the first perforation."""
    composition: typing.Tuple[float, ...] = attrs.field(default=(), converter=tuple)
    """Surface composition of the injected stream per active phase. Must sum to one for injectors."""
    solvent_fraction: float = attrs.field(default=0.0)
    """Fraction of the injected gas stream that is solvent."""
    is_active: bool = True
    """Whether the well is open."""

    def __attrs_post_init__(self) -> None:
        if self.cells.size == 0:
            raise ValidationError(f"Well {self.name!r} has no perforations")
        if self.well_index.size != self.cells.size:
            raise ValidationError(
                f"Well {self.name!r} needs one well index per perforation"
            )
        if np.any(self.well_index < 0):
            raise ValidationError(f"Well {self.name!r} has negative well indices")
        if not self.controls:
            raise ValidationError(f"Well {self.name!r} has no controls")
        if self.solvent_fraction < 0.0 or self.solvent_fraction > 1.0:
            raise ValidationError(
                f"Injected solvent fraction of well {self.name!r} must be in [0, 1]"
            )
        if self.type == WellType.INJECTOR:
            if not self.composition or not np.isclose(sum(self.composition), 1.0):
                raise ValidationError(
                    f"Injector {self.name!r} needs a composition summing to one"
                )

    @property
    def is_producer(self) -> bool:
        return self.type == WellType.PRODUCER


class Wells:
    """
    Active wells of a model and their perforation topology.

    Perforations of all wells are numbered consecutively, well by well;
    `connection_offsets[w]:connection_offsets[w + 1]` are the perforations of
    well `w`. Inactive wells are left out.
    """

    def __init__(self, wells: typing.Sequence[Well], grid: Grid, phase_usage: PhaseUsage) -> None:
        names = [well.name for well in wells]
        if len(set(names)) != len(names):
            raise ValidationError("Well names must be unique")

        self.wells: typing.Tuple[Well, ...] = tuple(well for well in wells if well.is_active)
        skipped = len(names) - len(self.wells)
        if skipped:
            logger.info(f"Skipping {skipped} inactive well(s)")
        self.phase_usage = phase_usage
        np_ = phase_usage.num_phases
        for well in self.wells:
            if np.any(well.cells < 0) or np.any(well.cells >= grid.num_cells):
                raise ValidationError(f"Well {well.name!r} perforates cells outside the grid")
            if well.composition and len(well.composition) != np_:
                raise ValidationError(
                    f"Well {well.name!r} composition needs {np_} entries"
                )
            for control in well.controls:
                if control.type == ControlType.SURFACE_RATE and len(control.distribution) != np_:
                    raise ValidationError(
                        f"Rate control of well {well.name!r} needs {np_} distribution entries"
                    )

        counts = [well.cells.size for well in self.wells]
        self.connection_offsets = np.concatenate(([0], np.cumsum(counts))).astype(np.intp)
        self.well_cells = (
            np.concatenate([well.cells for well in self.wells]) if self.wells else np.zeros(0, dtype=np.intp)
        )
        self.well_index = (
            np.concatenate([well.well_index for well in self.wells]) if self.wells else np.zeros(0)
        )
        self.perforation_depths = grid.depth[self.well_cells]
        self.reference_depths = np.array(
            [
                well.reference_depth if well.reference_depth is not None else grid.depth[well.cells[0]]
                for well in self.wells
            ],
            dtype=np.float64,
        )
        self.is_producer = np.array([well.is_producer for well in self.wells], dtype=bool)
        self.injected_solvent_fraction = np.array(
            [well.solvent_fraction for well in self.wells], dtype=np.float64
        )
        self.compositions = np.array(
            [
                well.composition if well.composition else _default_composition(phase_usage)
                for well in self.wells
            ],
            dtype=np.float64,
        ).reshape(len(self.wells), np_)

        nw, nperf = self.num_wells, self.num_perforations
        perforation_well = np.repeat(np.arange(nw), counts) if nw else np.zeros(0, dtype=np.intp)
        self.perforation_well = perforation_well
        self.w2p = sps.csr_matrix(
            (np.ones(nperf), (np.arange(nperf), perforation_well)), shape=(nperf, nw)
        )
        self.p2w = self.w2p.transpose().tocsr()
        logger.debug(f"Built {nw} wells with {nperf} perforations")

    @property
    def num_wells(self) -> int:
        return len(self.wells)

    @property
    def num_perforations(self) -> int:
        return int(self.connection_offsets[-1])

    def __len__(self) -> int:
        return self.num_wells

    def __iter__(self) -> typing.Iterator[Well]:
        return iter(self.wells)

    @property
    def perforation_is_producer(self) -> np.ndarray:
        """1.0 for perforations of producers, 0.0 for injectors."""
        return self.is_producer[self.perforation_well].astype(np.float64)

    @property
    def perforation_injected_solvent_fraction(self) -> np.ndarray:
        return self.injected_solvent_fraction[self.perforation_well]

    def names(self) -> typing.List[str]:
        return [well.name for well in self.wells]


def _default_composition(phase_usage: PhaseUsage) -> typing.Tuple[float, ...]:
    composition = [0.0] * phase_usage.num_phases
    composition[phase_usage.position(Phase.OIL)] = 1.0
    return tuple(composition)
