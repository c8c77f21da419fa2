import logging
import typing

import numpy as np

from blacksolv.ad import value_of
from blacksolv.states import ReservoirState, WellState

if typing.TYPE_CHECKING:
    from blacksolv.assembler import BlackoilModel

logger = logging.getLogger(__name__)

__all__ = ["build_output_fields"]


def build_output_fields(
    model: "BlackoilModel",
    reservoir_state: ReservoirState,
    well_state: typing.Optional[WellState] = None,
) -> typing.Dict[str, np.ndarray]:
    """
    Collect the per-cell and per-well fields of the current state for writers.

    Phase properties (reciprocal formation volume factor, viscosity, density
    and mobility) are taken from the model's last assembly and are only
    included once the model has assembled. All arrays are copies.

    :param model: The model that owns the state.
    :param reservoir_state: Current reservoir state.
    :param well_state: Current well state, if there are wells.
    :return: Mapping from field name to array.
    """
    pu = model.phase_usage
    fields: typing.Dict[str, np.ndarray] = {
        "pressure": reservoir_state.pressure.copy(),
        "temperature": reservoir_state.temperature.copy(),
        "rs": reservoir_state.rs.copy(),
        "rv": reservoir_state.rv.copy(),
        "hydrocarbon_state": reservoir_state.hydrocarbon_state.copy(),
    }
    for phase in pu.active_phases:
        name = phase.name.lower()
        fields[f"{name}_saturation"] = reservoir_state.saturation[:, pu.position(phase)].copy()
    if pu.solvent:
        fields["solvent_saturation"] = reservoir_state.solvent_saturation.copy()

    for phase in model.equation_phases:
        quantities = model.quantities[phase]
        name = phase.name.lower()
        for key, value in (
            ("reciprocal_fvf", quantities.reciprocal_fvf),
            ("viscosity", quantities.viscosity),
            ("density", quantities.density),
            ("mobility", quantities.mobility),
        ):
            if value is not None:
                fields[f"{name}_{key}"] = np.array(value_of(value), copy=True)

    if well_state is not None and model.wells.num_wells:
        fields["well_bhp"] = well_state.bhp.copy()
        for phase in pu.active_phases:
            position = pu.position(phase)
            fields[f"well_{phase.name.lower()}_rate"] = well_state.well_rates[:, position].copy()
        fields["perforation_pressure"] = well_state.perf_press.copy()
        fields["perforation_density"] = np.array(model.connection_pressures.densities, copy=True)
        fields["perforation_pressure_diff"] = np.array(
            model.connection_pressures.pressure_diffs, copy=True
        )

    fields["equation_scaling"] = np.array(model.equation_scaling, copy=True)
    logger.debug(f"Built {len(fields)} output fields")
    return fields
