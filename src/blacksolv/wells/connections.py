import logging
import typing

import attrs
import numpy as np

from blacksolv.ad import value_of
from blacksolv.properties import PropertyEvaluator
from blacksolv.types import Phase, SegmentIntegrator
from blacksolv.wells.base import Wells
from blacksolv.wells.density import (
    compute_connection_densities,
    compute_connection_pressure_delta,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ConnectionPressures",
    "compute_average_perforation_pressures",
    "compute_well_connection_pressures",
]


@attrs.frozen
class ConnectionPressures:
    """Well-bore mixture densities and hydrostatic pressure differences per perforation."""

    densities: np.ndarray
    """Mixture density at each perforation (kg/m³)."""
    pressure_diffs: np.ndarray
    """Pressure at each perforation minus the bottom-hole pressure (Pa)."""


def compute_average_perforation_pressures(
    connection_offsets: np.ndarray, perforation_pressures: np.ndarray, bhp: np.ndarray
) -> np.ndarray:
    """
    Mean of each perforation pressure and the pressure above it.

    The pressure above the first perforation of a well is its bottom-hole
    pressure, for every other perforation it is the pressure of the previous one.
    """
    perforation_pressures = np.asarray(perforation_pressures, dtype=np.float64)
    above = np.empty_like(perforation_pressures)
    above[1:] = perforation_pressures[:-1]
    starts = connection_offsets[:-1]
    nonempty = connection_offsets[1:] > starts
    above[starts[nonempty]] = np.asarray(bhp, dtype=np.float64)[nonempty]
    return (perforation_pressures + above) * 0.5


def compute_well_connection_pressures(
    wells: Wells,
    properties: PropertyEvaluator,
    bhp,
    perforation_pressures: np.ndarray,
    perforation_rates: np.ndarray,
    temperature,
    rs,
    rv,
    phase_condition: np.ndarray,
    gravity: float,
    solvent_fraction=None,
    has_disgas: bool = True,
    has_vapoil: bool = False,
    integrator: SegmentIntegrator = compute_connection_pressure_delta,
) -> ConnectionPressures:
    """
    Compute perforation densities and pressure differences of all wells.

    Fluid properties are evaluated at the average perforation pressure with
    the rs, rv, temperature and phase condition of the perforated cells. Only
    values are used, the results carry no derivatives.

    With solvent, the gas reciprocal formation volume factor and surface
    density are blended with those of the solvent using the in-place solvent
    fraction for producers and the injected solvent fraction for injectors:

        b_g = (1 - F) b_g + F b_s,  ρ_g = (1 - F) ρ_g + F ρ_s

    :param wells: Well topology.
    :param properties: Property evaluator of the model.
    :param bhp: Bottom-hole pressure per well.
    :param perforation_pressures: Well-bore pressure per perforation.
    :param perforation_rates: Surface rates, `num_perforations x num_phases`, injection positive.
    :param temperature: Temperature per cell.
    :param rs: Dissolved gas-oil ratio per cell.
    :param rv: Vaporized oil-gas ratio per cell.
    :param phase_condition: `PhasePresence` flags per cell.
    :param gravity: Acceleration due to gravity.
    :param solvent_fraction: In-place solvent fraction of the total gas per cell, None without solvent.
    :param has_disgas: Whether dissolved gas is modelled.
    :param has_vapoil: Whether vaporized oil is modelled.
    :param integrator: Segment integration routine turning densities into pressure differences.
    :return: `ConnectionPressures`
    """
    pu = wells.phase_usage
    nperf = wells.num_perforations
    np_ = pu.num_phases
    cells = wells.well_cells

    bhp = value_of(bhp)
    avg_press = compute_average_perforation_pressures(
        wells.connection_offsets, perforation_pressures, bhp
    )
    perf_temperature = value_of(temperature)[cells]
    perf_rs = value_of(rs)[cells]
    perf_rv = value_of(rv)[cells]
    perf_condition = np.asarray(phase_condition)[cells]

    b = np.zeros((nperf, np_))
    surface_densities = np.zeros((nperf, np_))
    rs_max = np.zeros(nperf)
    rv_max = np.zeros(nperf)
    for phase in pu.active_phases:
        pos = pu.position(phase)
        b[:, pos] = value_of(
            properties.raw_reciprocal_fvf(
                phase, avg_press, perf_temperature, perf_rs, perf_rv, perf_condition
            )
        )
        surface_densities[:, pos] = properties.surface_density(phase)

    if pu.oil and has_disgas:
        rs_max = value_of(properties.pvt.rs_sat(avg_press, perf_temperature))
    if pu.gas:
        if has_vapoil:
            rv_max = value_of(properties.pvt.rv_sat(avg_press, perf_temperature))
        if pu.solvent and solvent_fraction is not None:
            is_producer = wells.perforation_is_producer
            fraction = (
                is_producer * value_of(solvent_fraction)[cells]
                + (1.0 - is_producer) * wells.perforation_injected_solvent_fraction
            )
            gas = pu.position(Phase.GAS)
            b_s = value_of(properties.raw_reciprocal_fvf(Phase.SOLVENT, avg_press))
            b[:, gas] = b[:, gas] * (1.0 - fraction) + fraction * b_s
            surface_densities[:, gas] = (1.0 - fraction) * surface_densities[
                :, gas
            ] + fraction * properties.surface_density(Phase.SOLVENT)

    densities = compute_connection_densities(
        wells.connection_offsets,
        np.ascontiguousarray(perforation_rates, dtype=np.float64).ravel(),
        np.ascontiguousarray(wells.compositions, dtype=np.float64).ravel(),
        np.ascontiguousarray(b).ravel(),
        np.ascontiguousarray(rs_max, dtype=np.float64),
        np.ascontiguousarray(rv_max, dtype=np.float64),
        np.ascontiguousarray(surface_densities).ravel(),
        np_,
        pu.position(Phase.OIL) if pu.oil else -1,
        pu.position(Phase.GAS) if pu.gas else -1,
    )
    pressure_diffs = integrator(
        wells.connection_offsets,
        np.ascontiguousarray(wells.perforation_depths, dtype=np.float64),
        wells.reference_depths,
        densities,
        float(gravity),
    )
    logger.debug(
        f"Computed connection pressures for {wells.num_wells} wells and {nperf} perforations"
    )
    return ConnectionPressures(
        densities=np.asarray(densities), pressure_diffs=np.asarray(pressure_diffs)
    )
