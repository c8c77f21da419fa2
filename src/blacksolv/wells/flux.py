"""
Perforation fluxes, well flux equations and well control equations.

Surface rates are positive for injection and negative for production. Well
rate variables `qs` are stored phase-major: `qs[phase * num_wells + well]`.
"""

import logging
import typing

import numpy as np

from blacksolv.ad import (
    Selector,
    apply_matrix,
    guarded_divide,
    select,
    subset,
    superset,
    value_of,
)
from blacksolv.types import ControlType, Phase
from blacksolv.wells.base import WellControl, Wells

if typing.TYPE_CHECKING:
    from blacksolv.states import WellState

logger = logging.getLogger(__name__)

__all__ = [
    "compute_well_flux",
    "well_flux_equations",
    "well_control_equations",
    "update_well_controls",
    "compute_perforation_rates_and_pressures",
    "signed_rate_target",
]


def signed_rate_target(control: WellControl, is_producer: bool) -> float:
    """Surface rate target with the sign convention of the rate variables."""
    return -control.target if is_producer else control.target


def _weighted_rate(control: WellControl, rates: np.ndarray) -> float:
    return float(np.dot(np.asarray(control.distribution, dtype=np.float64), rates))


def compute_well_flux(
    wells: Wells,
    pressure,
    bhp,
    qs,
    rs,
    rv,
    perforation_mobilities: typing.Sequence[typing.Any],
    perforation_reciprocal_fvfs: typing.Sequence[typing.Any],
    pressure_diffs: np.ndarray,
    has_disgas: bool = True,
    has_vapoil: bool = False,
) -> typing.List[typing.Any]:
    """
    Compute surface volume rates of every phase at every perforation.

    Producing perforations (cell pressure above the well-bore pressure) flow
    each phase with its own mobility. Injecting perforations flow the
    well-bore mixture with the total mobility. The mixture is the sum of what
    is injected at the surface and what flows into the well-bore from the
    producing perforations, or the well composition when the well is dead.

    :param wells: Well topology.
    :param pressure: Cell pressures.
    :param bhp: Bottom-hole pressure per well.
    :param qs: Well surface rates, phase-major.
    :param rs: Dissolved gas-oil ratio per cell.
    :param rv: Vaporized oil-gas ratio per cell.
    :param perforation_mobilities: Mobility of each phase at the perforated cells, by phase position.
    :param perforation_reciprocal_fvfs: Reciprocal FVF of each phase at the perforated cells.
    :param pressure_diffs: Hydrostatic pressure difference of each perforation from the BHP.
    :return: Surface rates of each phase position per perforation.
    """
    pu = wells.phase_usage
    np_ = pu.num_phases
    nw = wells.num_wells
    cells = wells.well_cells
    well_index = wells.well_index

    perforation_pressure = apply_matrix(wells.w2p, bhp) + pressure_diffs
    drawdown = subset(pressure, cells) - perforation_pressure
    drawdown_val = value_of(drawdown)
    producing = (drawdown_val > 0.0).astype(np.float64)
    injecting = (drawdown_val < 0.0).astype(np.float64)

    rs_perf = subset(rs, cells)
    rv_perf = subset(rv, cells)
    oil = pu.position(Phase.OIL) if pu.oil else None
    gas = pu.position(Phase.GAS) if pu.gas else None

    # Producing perforations
    cq_ps = []
    for pos in range(np_):
        cq_p = -(producing * well_index) * (perforation_mobilities[pos] * drawdown)
        cq_ps.append(perforation_reciprocal_fvfs[pos] * cq_p)
    if oil is not None and gas is not None:
        cq_ps_oil, cq_ps_gas = cq_ps[oil], cq_ps[gas]
        if has_disgas:
            cq_ps[gas] = cq_ps[gas] + rs_perf * cq_ps_oil
        if has_vapoil:
            cq_ps[oil] = cq_ps[oil] + rv_perf * cq_ps_gas

    # Injecting perforations, total reservoir volume rate
    total_mobility = perforation_mobilities[0]
    for pos in range(1, np_):
        total_mobility = total_mobility + perforation_mobilities[pos]
    cqt_i = -(injecting * well_index) * (total_mobility * drawdown)

    # Well-bore mixture at surface conditions
    compositions = wells.compositions
    wbq = []
    wbqt = np.zeros(nw)
    for pos in range(np_):
        q_ps = apply_matrix(wells.p2w, cq_ps[pos])
        q_s = subset(qs, np.arange(pos * nw, (pos + 1) * nw))
        injected = Selector(q_s, "greater_than_zero").select(q_s, np.zeros(nw))
        wbq.append(compositions[:, pos] * injected - q_ps)
        wbqt = wbqt + wbq[pos]

    cmix_s = [
        apply_matrix(wells.w2p, guarded_divide(wbq[pos], wbqt, compositions[:, pos]))
        for pos in range(np_)
    ]

    volume_ratio = np.zeros(wells.num_perforations)
    for pos in range(np_):
        tmp = cmix_s[pos]
        if oil is not None and gas is not None:
            d = 1.0 - rv_perf * rs_perf
            if pos == oil and has_vapoil:
                tmp = (cmix_s[oil] - rv_perf * cmix_s[gas]) / d
            elif pos == gas and has_disgas:
                tmp = (cmix_s[gas] - rs_perf * cmix_s[oil]) / d
        volume_ratio = volume_ratio + tmp / perforation_reciprocal_fvfs[pos]

    cqt_is = guarded_divide(cqt_i, volume_ratio, 0.0)
    return [cq_ps[pos] + cmix_s[pos] * cqt_is for pos in range(np_)]


def well_flux_equations(wells: Wells, qs, cq_s: typing.Sequence[typing.Any]):
    """Well rate variables minus the sum of their perforation rates, phase-major."""
    nw = wells.num_wells
    np_ = wells.phase_usage.num_phases
    residual = qs
    for pos in range(np_):
        residual = residual - superset(
            apply_matrix(wells.p2w, cq_s[pos]),
            np.arange(pos * nw, (pos + 1) * nw),
            nw * np_,
        )
    return residual


def well_control_equations(wells: Wells, well_state: "WellState", bhp, qs):
    """
    One control equation per well for its active control.

    BHP controls give `bhp - target`, surface rate controls give
    `Σ distribution[phase] qs[phase] - target` with the signed rate target.
    """
    nw = wells.num_wells
    np_ = wells.phase_usage.num_phases
    is_bhp = np.zeros(nw, dtype=bool)
    bhp_targets = np.zeros(nw)
    rate_targets = np.zeros(nw)
    distributions = np.zeros((nw, np_))
    for w, well in enumerate(wells):
        control = well.controls[well_state.current_controls[w]]
        if control.type == ControlType.BHP:
            is_bhp[w] = True
            bhp_targets[w] = control.target
        else:
            rate_targets[w] = signed_rate_target(control, well.is_producer)
            distributions[w] = control.distribution

    rate_sum = np.zeros(nw)
    for pos in range(np_):
        rate_sum = rate_sum + distributions[:, pos] * subset(
            qs, np.arange(pos * nw, (pos + 1) * nw)
        )
    return select(is_bhp, bhp - bhp_targets, rate_sum - rate_targets)


def _is_broken(control: WellControl, is_producer: bool, bhp: float, rates: np.ndarray) -> bool:
    if control.type == ControlType.BHP:
        return bhp < control.target if is_producer else bhp > control.target
    rate = _weighted_rate(control, rates)
    if is_producer:
        return -rate > control.target
    return rate > control.target


def update_well_controls(wells: Wells, well_state: "WellState") -> int:
    """
    Switch every well whose limits are violated to the first violated control.

    The well state is modified in place: the new control's target is imposed
    on the bottom-hole pressure or the surface rates.

    :return: Number of wells that switched control.
    """
    switched = 0
    for w, well in enumerate(wells):
        current = int(well_state.current_controls[w])
        for index, control in enumerate(well.controls):
            if index == current:
                continue
            if not _is_broken(control, well.is_producer, well_state.bhp[w], well_state.well_rates[w]):
                continue

            well_state.current_controls[w] = index
            switched += 1
            logger.info(
                f"Well {well.name!r} switched from control {current} "
                f"({well.controls[current].type.value}) to control {index} ({control.type.value})"
            )
            if control.type == ControlType.BHP:
                well_state.bhp[w] = control.target
            else:
                target = signed_rate_target(control, well.is_producer)
                current_rate = _weighted_rate(control, well_state.well_rates[w])
                if current_rate != 0.0:
                    well_state.well_rates[w] *= target / current_rate
                elif well.is_producer:
                    distribution = np.asarray(control.distribution, dtype=np.float64)
                    if distribution.sum() > 0.0:
                        well_state.well_rates[w] = target * distribution / distribution.sum()
                else:
                    well_state.well_rates[w] = target * wells.compositions[w]
            break
    return switched


def compute_perforation_rates_and_pressures(
    wells: Wells,
    cq_s: typing.Sequence[typing.Any],
    bhp,
    pressure_diffs: np.ndarray,
) -> typing.Tuple[np.ndarray, np.ndarray]:
    """
    Perforation surface rates and well-bore pressures of an assembled state.

    :return: Tuple of (`num_perforations x num_phases` surface rates, perforation pressures).
    """
    rates = np.column_stack([value_of(q) for q in cq_s])
    pressures = wells.w2p @ value_of(bhp) + pressure_diffs
    return rates, np.asarray(pressures, dtype=np.float64)
