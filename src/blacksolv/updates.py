"""
Newton update of the caller-owned reservoir and well states.

The increment `dx` solves `J dx = R`, so every primary variable is updated as
`x_new = x_old - dx`, subject to the relative and absolute change limits of
the model's `Config`.
"""

import logging
import typing

import numpy as np

from blacksolv.errors import ValidationError
from blacksolv.states import ReservoirState, WellState
from blacksolv.types import HydrocarbonState, Phase

if typing.TYPE_CHECKING:
    from blacksolv.assembler import BlackoilModel

logger = logging.getLogger(__name__)

__all__ = [
    "update_state",
    "update_blackoil_state",
    "close_saturations",
    "limit_relative_change",
]


def limit_relative_change(change: np.ndarray, old: np.ndarray, max_relative: float) -> np.ndarray:
    """Clip `change` to at most `max_relative * |old|` in magnitude, keeping its sign."""
    return np.sign(change) * np.minimum(np.abs(change), max_relative * np.abs(old))


def update_state(
    model: "BlackoilModel",
    dx: np.ndarray,
    reservoir_state: ReservoirState,
    well_state: WellState,
) -> None:
    """
    Apply a Newton increment to the reservoir and well states in place.

    The increment of the model's extra phases is split off first. The
    remainder updates pressure, saturations, rs/rv, hydrocarbon states and
    well variables. The extra phases are updated next, and finally the
    saturations are re-closed so that every cell sums to exactly one.

    :param model: The model that assembled the system solved for `dx`.
    :param dx: Newton increment, ordered like the model's primary variables.
    :param reservoir_state: Reservoir state, updated in place.
    :param well_state: Well state, updated in place.
    :raises ValidationError: If `dx` does not match the model's variables.
    """
    dx = np.asarray(dx, dtype=np.float64)
    expected = sum(model.block_sizes())
    if dx.shape != (expected,):
        raise ValidationError(f"Newton increment must have shape ({expected},), got {dx.shape}")

    nc = model.grid.num_cells
    num_phases = model.phase_usage.num_phases
    blackoil_dx, extra_dx = model.extension.split_increment(dx, nc, num_phases)
    update_blackoil_state(model, blackoil_dx, reservoir_state, well_state)
    model.extension.update_state(model, extra_dx, reservoir_state)
    close_saturations(model, reservoir_state)


def update_blackoil_state(
    model: "BlackoilModel",
    dx: np.ndarray,
    reservoir_state: ReservoirState,
    well_state: WellState,
) -> None:
    """
    Update pressure, water and gas saturations, rs, rv and the well variables.

    Saturation changes are scaled down together so that no saturation moves
    more than `ds_max`. Cells switch hydrocarbon state when the gas (or oil)
    phase vanishes or reappears.
    """
    config = model.config
    constants = config.constants
    pu = model.phase_usage
    pvt = model.properties.pvt
    nc = model.grid.num_cells
    nw = model.wells.num_wells
    zeros = np.zeros(nc)

    start = 0
    dp = dx[start : start + nc]
    start += nc
    dsw = zeros
    if pu.water:
        dsw = dx[start : start + nc]
        start += nc
    dxvar = zeros
    if pu.gas:
        dxvar = dx[start : start + nc]
        start += nc

    if nw:
        dqs = dx[start : start + pu.num_phases * nw]
        start += pu.num_phases * nw
        dbhp = dx[start : start + nw]
        start += nw
    if start != dx.size:
        raise ValidationError(
            f"Newton increment has {dx.size} black-oil entries, expected {start}"
        )

    # Pressure
    p_old = reservoir_state.pressure
    dp = limit_relative_change(dp, p_old, config.dp_max_rel)
    pressure = np.maximum(p_old - dp, constants.MINIMUM_PRESSURE)
    reservoir_state.pressure = pressure

    # Saturations
    saturation = reservoir_state.saturation
    hs = reservoir_state.hydrocarbon_state.copy()
    is_sg = (hs == HydrocarbonState.GAS_AND_OIL).astype(np.float64)
    is_rs = (hs == HydrocarbonState.OIL_ONLY).astype(np.float64)
    is_rv = (hs == HydrocarbonState.GAS_ONLY).astype(np.float64)

    dsg = is_sg * dxvar - is_rv * dsw if pu.gas else zeros
    dso = -dsw - dsg
    max_change = np.maximum(np.abs(dsw), np.maximum(np.abs(dsg), np.abs(dso)))
    step = config.ds_max / np.maximum(max_change, config.ds_max)

    sw = saturation[:, pu.position(Phase.WATER)] - step * dsw if pu.water else zeros
    sg = saturation[:, pu.position(Phase.GAS)] - step * dsg if pu.gas else zeros
    so = saturation[:, pu.position(Phase.OIL)] - step * dso

    # Dissolution ratios
    rs = reservoir_state.rs
    rv = reservoir_state.rv
    if model.has_disgas:
        rs_sat = pvt.rs_sat(pressure)
        drs = limit_relative_change(is_rs * dxvar, rs, config.dr_max_rel)
        rs = np.where(hs == HydrocarbonState.OIL_ONLY, np.maximum(rs - drs, 0.0), rs_sat)
    if model.has_vapoil:
        rv_sat = pvt.rv_sat(pressure)
        drv = limit_relative_change(is_rv * dxvar, rv, config.dr_max_rel)
        rv = np.where(hs == HydrocarbonState.GAS_ONLY, np.maximum(rv - drv, 0.0), rv_sat)

    # Hydrocarbon state switching
    if pu.gas:
        epsilon = constants.PHASE_SWITCH_SATURATION
        num_switched = 0
        if model.has_disgas:
            gas_vanished = (hs == HydrocarbonState.GAS_AND_OIL) & (sg <= 0.0)
            gas_reappears = (hs == HydrocarbonState.OIL_ONLY) & (rs > rs_sat)
            hs[gas_vanished] = HydrocarbonState.OIL_ONLY
            sg[gas_vanished] = 0.0
            hs[gas_reappears] = HydrocarbonState.GAS_AND_OIL
            rs[gas_reappears] = rs_sat[gas_reappears]
            sg[gas_reappears] = epsilon
            num_switched += int(gas_vanished.sum() + gas_reappears.sum())
        if model.has_vapoil:
            oil_vanished = (hs == HydrocarbonState.GAS_AND_OIL) & (so <= 0.0)
            oil_reappears = (hs == HydrocarbonState.GAS_ONLY) & (rv > rv_sat)
            hs[oil_vanished] = HydrocarbonState.GAS_ONLY
            rv[oil_vanished] = rv_sat[oil_vanished]
            hs[oil_reappears] = HydrocarbonState.GAS_AND_OIL
            rv[oil_reappears] = rv_sat[oil_reappears]
            sg[oil_reappears] = sg[oil_reappears] - epsilon
            num_switched += int(oil_vanished.sum() + oil_reappears.sum())
        if num_switched:
            logger.debug(f"{num_switched} cells switched hydrocarbon state")

    if pu.water:
        saturation[:, pu.position(Phase.WATER)] = np.maximum(sw, 0.0)
    if pu.gas:
        saturation[:, pu.position(Phase.GAS)] = np.maximum(sg, 0.0)
    reservoir_state.rs = rs
    reservoir_state.rv = rv
    reservoir_state.hydrocarbon_state = hs

    # Wells
    if nw:
        dqs = dqs.reshape(pu.num_phases, nw).T
        well_state.well_rates = well_state.well_rates - dqs
        bhp_old = well_state.bhp
        dbhp = limit_relative_change(dbhp, bhp_old, config.dbhp_max_rel)
        well_state.bhp = np.maximum(bhp_old - dbhp, constants.MINIMUM_PRESSURE)


def close_saturations(model: "BlackoilModel", reservoir_state: ReservoirState) -> None:
    """
    Recompute oil saturation so that every row of saturations sums to one.

    Water, gas and solvent saturations are clipped at zero and scaled down
    together where they sum to more than one.
    """
    pu = model.phase_usage
    saturation = reservoir_state.saturation
    nc = reservoir_state.num_cells

    columns = []
    for phase in (Phase.WATER, Phase.GAS):
        if pu.is_active(phase):
            columns.append(np.maximum(saturation[:, pu.position(phase)], 0.0))
        else:
            columns.append(np.zeros(nc))
    columns.append(np.maximum(reservoir_state.solvent_saturation, 0.0))

    total = columns[0] + columns[1] + columns[2]
    scale = 1.0 / np.maximum(total, 1.0)
    sw, sg, ss = (column * scale for column in columns)

    if pu.water:
        saturation[:, pu.position(Phase.WATER)] = sw
    if pu.gas:
        saturation[:, pu.position(Phase.GAS)] = sg
    # Oil vanishes exactly in cells that had to be scaled down
    saturation[:, pu.position(Phase.OIL)] = np.where(
        total >= 1.0, 0.0, np.maximum(1.0 - (sw + sg + ss), 0.0)
    )
    reservoir_state.solvent_saturation = ss
