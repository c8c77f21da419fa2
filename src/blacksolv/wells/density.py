"""
Well-bore mixture densities and hydrostatic pressure differences along perforations.

The kernels work on flat per-perforation arrays in perforation-major order,
`array[perf * num_phases + phase]`, and are compiled with numba.
"""

import numba
import numpy as np

__all__ = ["compute_connection_densities", "compute_connection_pressure_delta"]


@numba.njit(cache=True)
def compute_connection_densities(
    connection_offsets: np.ndarray,
    perforation_rates: np.ndarray,
    compositions: np.ndarray,
    reciprocal_fvf: np.ndarray,
    rs_max: np.ndarray,
    rv_max: np.ndarray,
    surface_densities: np.ndarray,
    num_phases: int,
    oil_position: int,
    gas_position: int,
) -> np.ndarray:
    """
    Compute the density of the well-bore mixture at each perforation.

    The mixture passing a perforation is the sum of the surface rates of all
    perforations below it (production rates are negative, so the upward flow is
    their negation). Where nothing flows, the well composition is used instead.
    Dissolved gas and vaporized oil are removed from the surface volumes,
    limited by the saturated ratios, before the reservoir volume of the mixture
    is computed:

        ρ = Σ ρ_surface[j] mix[j] / Σ x[j] / b[j]

    :param connection_offsets: Perforation range boundaries per well, size `num_wells + 1`.
    :param perforation_rates: Surface phase rates per perforation, injection positive.
    :param compositions: Well compositions, `num_wells * num_phases`.
    :param reciprocal_fvf: Reciprocal formation volume factors per perforation and phase.
    :param rs_max: Saturated dissolved gas-oil ratio per perforation.
    :param rv_max: Saturated vaporized oil-gas ratio per perforation.
    :param surface_densities: Surface densities per perforation and phase.
    :param num_phases: Number of active phases.
    :param oil_position: Position of oil among the phases, -1 when inactive.
    :param gas_position: Position of gas among the phases, -1 when inactive.
    :return: Mixture density per perforation.
    """
    num_wells = connection_offsets.shape[0] - 1
    num_perforations = connection_offsets[num_wells]
    upward_rates = np.zeros(num_perforations * num_phases)
    densities = np.zeros(num_perforations)

    for w in range(num_wells):
        start = connection_offsets[w]
        end = connection_offsets[w + 1]
        for perf in range(end - 1, start - 1, -1):
            for phase in range(num_phases):
                rate = -perforation_rates[perf * num_phases + phase]
                if perf < end - 1:
                    rate += upward_rates[(perf + 1) * num_phases + phase]
                upward_rates[perf * num_phases + phase] = rate

    mix = np.zeros(num_phases)
    x = np.zeros(num_phases)
    for w in range(num_wells):
        for perf in range(connection_offsets[w], connection_offsets[w + 1]):
            total = 0.0
            for phase in range(num_phases):
                total += upward_rates[perf * num_phases + phase]
            if total != 0.0:
                for phase in range(num_phases):
                    mix[phase] = abs(upward_rates[perf * num_phases + phase] / total)
            else:
                for phase in range(num_phases):
                    mix[phase] = compositions[w * num_phases + phase]

            for phase in range(num_phases):
                x[phase] = mix[phase]
            if oil_position >= 0 and gas_position >= 0:
                rs = 0.0
                rv = 0.0
                if mix[oil_position] > 0.0:
                    rs = min(mix[gas_position] / mix[oil_position], rs_max[perf])
                if mix[gas_position] > 0.0:
                    rv = min(mix[oil_position] / mix[gas_position], rv_max[perf])
                d = 1.0 - rs * rv
                if d > 0.0:
                    x[gas_position] = (mix[gas_position] - rs * mix[oil_position]) / d
                    x[oil_position] = (mix[oil_position] - rv * mix[gas_position]) / d

            volume_ratio = 0.0
            mass = 0.0
            for phase in range(num_phases):
                volume_ratio += x[phase] / reciprocal_fvf[perf * num_phases + phase]
                mass += surface_densities[perf * num_phases + phase] * mix[phase]
            densities[perf] = mass / volume_ratio if volume_ratio > 0.0 else 0.0
    return densities


@numba.njit(cache=True)
def compute_connection_pressure_delta(
    connection_offsets: np.ndarray,
    depths: np.ndarray,
    reference_depths: np.ndarray,
    densities: np.ndarray,
    gravity: float,
) -> np.ndarray:
    """
    Integrate the hydrostatic pressure from the well reference depth down each well.

    The first perforation of a well is measured against the reference depth,
    every other one against the perforation above it. The per-segment
    differences `Δz ρ g` are summed cumulatively along the well.

    :param connection_offsets: Perforation range boundaries per well.
    :param depths: Depth of each perforation (m), positive downwards.
    :param reference_depths: Bottom-hole pressure reference depth of each well (m).
    :param densities: Mixture density of each perforation (kg/m³).
    :param gravity: Acceleration due to gravity (m/s²).
    :return: Pressure difference between each perforation and the reference depth (Pa).
    """
    num_wells = connection_offsets.shape[0] - 1
    pressure_delta = np.zeros(depths.shape[0])
    for w in range(num_wells):
        start = connection_offsets[w]
        cumulative = 0.0
        for perf in range(start, connection_offsets[w + 1]):
            z_above = reference_depths[w] if perf == start else depths[perf - 1]
            cumulative += (depths[perf] - z_above) * densities[perf] * gravity
            pressure_delta[perf] = cumulative
    return pressure_delta
