import logging
import typing

import attrs
import numpy as np

from blacksolv.ad import ADArray
from blacksolv.errors import ValidationError
from blacksolv.phases import PhaseUsage
from blacksolv.types import ControlType, HydrocarbonState, Phase
from blacksolv.wells.base import Wells

logger = logging.getLogger(__name__)

__all__ = ["ReservoirState", "WellState", "SolutionState"]


def _float_array(value) -> np.ndarray:
    return np.array(value, dtype=np.float64, copy=True)


@attrs.define
class ReservoirState:
    """
    Per-cell primary state owned by the caller.

    `saturation` holds one column per active real phase in canonical order.
    Together with `solvent_saturation` each row sums to one. The oil column is
    never updated directly, it is always recomputed from the others.
    """

    pressure: np.ndarray = attrs.field(converter=_float_array)
    """Oil pressure (Pa)."""
    temperature: np.ndarray = attrs.field(converter=_float_array)
    """Temperature (K)."""
    saturation: np.ndarray = attrs.field(converter=_float_array)
    """Phase saturations, `num_cells x num_phases`."""
    rs: np.ndarray = attrs.field(converter=_float_array)
    """Dissolved gas-oil ratio (sm³/sm³)."""
    rv: np.ndarray = attrs.field(converter=_float_array)
    """Vaporized oil-gas ratio (sm³/sm³)."""
    hydrocarbon_state: np.ndarray = attrs.field(
        converter=lambda v: np.array(v, dtype=np.int64, copy=True)
    )
    """`HydrocarbonState` of each cell."""
    solvent_saturation: np.ndarray = attrs.field(converter=_float_array)
    """Solvent saturation, zeros when solvent is not modelled."""

    def __attrs_post_init__(self) -> None:
        nc = self.pressure.size
        if self.saturation.ndim != 2 or self.saturation.shape[0] != nc:
            raise ValidationError(
                f"Saturation must have shape ({nc}, num_phases), got {self.saturation.shape}"
            )
        for name in ("temperature", "rs", "rv", "hydrocarbon_state", "solvent_saturation"):
            if getattr(self, name).size != nc:
                raise ValidationError(f"{name} must have one value per cell")

    @property
    def num_cells(self) -> int:
        return self.pressure.size

    @classmethod
    def initialize(
        cls,
        phase_usage: PhaseUsage,
        pressure,
        saturations: typing.Mapping[Phase, typing.Any],
        temperature=293.15,
        rs=0.0,
        rv=0.0,
        solvent_saturation=0.0,
    ) -> "ReservoirState":
        """
        Build a state from per-phase saturations.

        Oil saturation is computed from the others. The hydrocarbon state of a
        cell is GAS_AND_OIL where gas is present, OIL_ONLY otherwise (GAS_ONLY
        where oil is absent).

        :param phase_usage: Active phases.
        :param pressure: Oil pressure per cell (Pa).
        :param saturations: Water and gas saturations keyed by phase, scalars or per cell.
        :return: The initial `ReservoirState`.
        """
        pressure = np.atleast_1d(np.asarray(pressure, dtype=np.float64))
        nc = pressure.size

        def per_cell(value) -> np.ndarray:
            return np.broadcast_to(np.asarray(value, dtype=np.float64), (nc,)).copy()

        ss = per_cell(solvent_saturation)
        saturation = np.zeros((nc, phase_usage.num_phases))
        remaining = 1.0 - ss
        for phase in phase_usage.active_phases:
            if phase == Phase.OIL:
                continue
            column = per_cell(saturations.get(phase, 0.0))
            saturation[:, phase_usage.position(phase)] = column
            remaining = remaining - column
        if phase_usage.oil:
            saturation[:, phase_usage.position(Phase.OIL)] = remaining
        if np.any(saturation < 0.0):
            raise ValidationError("Initial saturations must be non-negative and sum to at most one")

        hydrocarbon_state = np.full(nc, HydrocarbonState.GAS_AND_OIL, dtype=np.int64)
        if phase_usage.gas and phase_usage.oil:
            sg = saturation[:, phase_usage.position(Phase.GAS)]
            so = saturation[:, phase_usage.position(Phase.OIL)]
            hydrocarbon_state[sg <= 0.0] = HydrocarbonState.OIL_ONLY
            hydrocarbon_state[(so <= 0.0) & (sg > 0.0)] = HydrocarbonState.GAS_ONLY

        return cls(
            pressure=pressure,
            temperature=per_cell(temperature),
            saturation=saturation,
            rs=per_cell(rs),
            rv=per_cell(rv),
            hydrocarbon_state=hydrocarbon_state,
            solvent_saturation=ss,
        )

    def copy(self) -> "ReservoirState":
        return attrs.evolve(self)


@attrs.define
class WellState:
    """Per-well and per-perforation state owned by the caller."""

    bhp: np.ndarray = attrs.field(converter=_float_array)
    """Bottom-hole pressure per well (Pa)."""
    well_rates: np.ndarray = attrs.field(converter=_float_array)
    """Surface phase rates per well, `num_wells x num_phases`, injection positive."""
    perf_phase_rates: np.ndarray = attrs.field(converter=_float_array)
    """Surface phase rates per perforation, `num_perforations x num_phases`."""
    perf_press: np.ndarray = attrs.field(converter=_float_array)
    """Well-bore pressure at each perforation (Pa)."""
    solvent_fraction: np.ndarray = attrs.field(converter=_float_array)
    """Injected solvent fraction of the gas stream per perforation."""
    current_controls: np.ndarray = attrs.field(
        converter=lambda v: np.array(v, dtype=np.int64, copy=True)
    )
    """Index of the active control of each well."""

    @property
    def num_wells(self) -> int:
        return self.bhp.size

    @classmethod
    def initialize(cls, wells: Wells, reservoir_state: ReservoirState) -> "WellState":
        """
        Initial well state from the well controls and the reservoir pressure.

        BHP-controlled wells start at their target. Other wells start slightly
        below (producers) or above (injectors) the pressure of their first
        perforated cell. Rate-controlled wells start at their target rate.
        """
        nw = wells.num_wells
        np_ = wells.phase_usage.num_phases
        bhp = np.zeros(nw)
        well_rates = np.zeros((nw, np_))
        for w, well in enumerate(wells):
            control = well.controls[0]
            cell_pressure = reservoir_state.pressure[well.cells[0]]
            if control.type == ControlType.BHP:
                bhp[w] = control.target
            else:
                bhp[w] = cell_pressure * (0.99 if well.is_producer else 1.01)
                if well.is_producer:
                    distribution = np.asarray(control.distribution, dtype=np.float64)
                    total = distribution.sum()
                    if total > 0.0:
                        well_rates[w] = -control.target * distribution / total
                else:
                    well_rates[w] = control.target * wells.compositions[w]

        if nw:
            logger.debug(f"Initial bottom-hole pressures: {bhp}")
        counts = np.diff(wells.connection_offsets)
        perf_phase_rates = np.zeros((wells.num_perforations, np_))
        for w in range(nw):
            start, end = wells.connection_offsets[w], wells.connection_offsets[w + 1]
            if counts[w] > 0:
                perf_phase_rates[start:end] = well_rates[w] / counts[w]

        return cls(
            bhp=bhp,
            well_rates=well_rates,
            perf_phase_rates=perf_phase_rates,
            perf_press=reservoir_state.pressure[wells.well_cells],
            solvent_fraction=wells.perforation_injected_solvent_fraction,
            current_controls=np.zeros(nw, dtype=np.int64),
        )

    def copy(self) -> "WellState":
        return attrs.evolve(self)


@attrs.define
class SolutionState:
    """
    Automatic-differentiation view of the primary and derived variables of one assembly pass.

    `saturation` is indexed by active phase position. Well quantities are
    `None` when the model has no wells.
    """

    pressure: ADArray
    temperature: ADArray
    saturation: typing.List[typing.Any]
    rs: typing.Any
    rv: typing.Any
    canonical_phase_pressures: typing.Dict[Phase, typing.Any]
    qs: typing.Optional[ADArray] = None
    bhp: typing.Optional[ADArray] = None
    solvent_saturation: typing.Optional[typing.Any] = None
