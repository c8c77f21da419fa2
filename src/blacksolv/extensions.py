"""
Extra-phase strategies plugged into the black-oil model.

A strategy adds phases (and their equations) on top of the active real
phases. The model asks its strategy for the extra primary variables, the
saturation taken from oil, relative permeabilities, effective properties,
well perforation adjustments and well sources, and for the update of the
extra variables after a Newton step.
"""

import logging
import typing

import numpy as np

from blacksolv.ad import maximum, subset, superset, value_of
from blacksolv.config import Config
from blacksolv.errors import ConfigurationError
from blacksolv.miscibility import todd_longstaff
from blacksolv.phases import PhaseUsage
from blacksolv.pvt import SolventProperties
from blacksolv.relperm import (
    compute_miscible_relperm,
    compute_solvent_fraction,
    split_gas_relperm,
)
from blacksolv.types import Phase

if typing.TYPE_CHECKING:
    from blacksolv.assembler import BlackoilModel
    from blacksolv.states import ReservoirState, SolutionState, WellState

logger = logging.getLogger(__name__)

__all__ = ["ExtraPhase", "NoExtraPhase", "SolventExtension"]


class ExtraPhase(typing.Protocol):
    """Capabilities an extra-phase strategy provides to the model."""

    extra_phases: typing.Tuple[Phase, ...]

    def check_configuration(self, config: Config, phase_usage: PhaseUsage) -> None: ...

    def initial_values(self, reservoir_state: "ReservoirState") -> typing.List[np.ndarray]: ...

    def extract_variables(
        self, variables: typing.Sequence[typing.Any], state: "SolutionState"
    ) -> None: ...

    def oil_saturation_offset(self, variables: typing.Sequence[typing.Any]) -> typing.Any: ...

    def compute_effective_properties(self, model: "BlackoilModel", state: "SolutionState") -> None: ...

    def relative_permeabilities(
        self, model: "BlackoilModel", state: "SolutionState"
    ) -> typing.Dict[Phase, typing.Any]: ...

    def adjust_well_perforations(
        self,
        model: "BlackoilModel",
        state: "SolutionState",
        well_state: "WellState",
        mobilities: typing.List[typing.Any],
        reciprocal_fvfs: typing.List[typing.Any],
    ) -> None: ...

    def add_well_sources(
        self,
        model: "BlackoilModel",
        state: "SolutionState",
        well_state: "WellState",
        cq_s: typing.Sequence[typing.Any],
        mass_balance: typing.List[typing.Any],
    ) -> None: ...

    def connection_solvent_fraction(
        self, model: "BlackoilModel", state: "SolutionState"
    ) -> typing.Optional[np.ndarray]: ...

    def split_increment(
        self, dx: np.ndarray, num_cells: int, num_phases: int
    ) -> typing.Tuple[np.ndarray, typing.Optional[np.ndarray]]: ...

    def update_state(
        self,
        model: "BlackoilModel",
        increment: typing.Optional[np.ndarray],
        reservoir_state: "ReservoirState",
    ) -> None: ...


class NoExtraPhase:
    """Plain black-oil: no extra phases."""

    extra_phases: typing.Tuple[Phase, ...] = ()

    def check_configuration(self, config: Config, phase_usage: PhaseUsage) -> None:
        if config.is_miscible:
            raise ConfigurationError(
                "The Todd-Longstaff miscibility model requires the solvent phase."
            )

    def initial_values(self, reservoir_state: "ReservoirState") -> typing.List[np.ndarray]:
        return []

    def extract_variables(self, variables, state: "SolutionState") -> None:
        return None

    def oil_saturation_offset(self, variables):
        return 0.0

    def compute_effective_properties(self, model: "BlackoilModel", state: "SolutionState") -> None:
        return None

    def relative_permeabilities(self, model: "BlackoilModel", state: "SolutionState"):
        sw, so, sg = model.real_saturations(state)
        return model.saturation_functions.relperm(sw, so, sg)

    def adjust_well_perforations(self, model, state, well_state, mobilities, reciprocal_fvfs) -> None:
        return None

    def add_well_sources(self, model, state, well_state, cq_s, mass_balance) -> None:
        return None

    def connection_solvent_fraction(self, model, state) -> None:
        return None

    def split_increment(self, dx: np.ndarray, num_cells: int, num_phases: int):
        return dx, None

    def update_state(self, model, increment, reservoir_state) -> None:
        return None


class SolventExtension:
    """
    Miscible solvent pseudo-phase.

    Solvent adds one saturation variable and one mass balance equation per
    cell. It takes its volume from oil, flows with the gas phase pressure, and
    at wells it is produced and injected as part of the gas stream.
    """

    extra_phases: typing.Tuple[Phase, ...] = (Phase.SOLVENT,)

    def __init__(self, solvent_properties: typing.Optional[SolventProperties]) -> None:
        self.solvent_properties = solvent_properties
        logger.debug("Solvent pseudo-phase enabled")

    def check_configuration(self, config: Config, phase_usage: PhaseUsage) -> None:
        if config.has_vapoil:
            raise ConfigurationError(
                "The solvent model does not support vaporized oil (vapoil)."
            )
        if not (phase_usage.gas and phase_usage.oil):
            raise ConfigurationError("The solvent model requires active gas and oil phases.")
        if self.solvent_properties is None:
            raise ConfigurationError("The solvent model requires solvent properties.")

    def initial_values(self, reservoir_state: "ReservoirState") -> typing.List[np.ndarray]:
        return [reservoir_state.solvent_saturation]

    def extract_variables(self, variables, state: "SolutionState") -> None:
        state.solvent_saturation = variables[0]
        state.canonical_phase_pressures[Phase.SOLVENT] = state.canonical_phase_pressures[Phase.GAS]

    def oil_saturation_offset(self, variables):
        return variables[0]

    def compute_effective_properties(self, model: "BlackoilModel", state: "SolutionState") -> None:
        """
        Store Todd-Longstaff effective oil, gas and solvent properties on the property evaluator.

        Effective saturations are the mobile saturations above the miscible
        residual oil and critical gas saturations, bounded below by zero.
        Effective reciprocal formation volume factors reproduce the effective
        densities: b_oe = ρ_oe / (ρ_o,s + ρ_g,s rs), b_ge = ρ_ge / ρ_g,s, b_se = ρ_se / ρ_s,s.
        """
        if not model.config.is_miscible:
            return
        props = model.properties
        sp = self.solvent_properties
        p_o = state.canonical_phase_pressures[Phase.OIL]
        p_g = state.canonical_phase_pressures[Phase.GAS]
        T, rs, rv = state.temperature, state.rs, state.rv
        condition = model.phase_condition
        sw, so, sg = model.real_saturations(state)
        ss = state.solvent_saturation

        mu_o = props.raw_viscosity(Phase.OIL, p_o, T, rs, rv, condition)
        mu_g = props.raw_viscosity(Phase.GAS, p_g, T, rs, rv, condition)
        mu_s = props.raw_viscosity(Phase.SOLVENT, p_g)
        rho_o = props.density(Phase.OIL, props.raw_reciprocal_fvf(Phase.OIL, p_o, T, rs, rv, condition), rs, rv)
        rho_g = props.density(Phase.GAS, props.raw_reciprocal_fvf(Phase.GAS, p_g, T, rs, rv, condition), rs, rv)
        rho_s = props.density(Phase.SOLVENT, props.raw_reciprocal_fvf(Phase.SOLVENT, p_g))

        sorwmis = sp.miscible_residual_oil(sw)
        sgcwmis = sp.miscible_critical_gas(sw)
        result = todd_longstaff(
            mu_o,
            mu_g,
            mu_s,
            rho_o,
            rho_g,
            rho_s,
            maximum(so - sorwmis, 0.0),
            maximum(sg - sgcwmis, 0.0),
            maximum(ss - sgcwmis, 0.0),
            mixing_parameter_viscosity=sp.mixing_parameter_viscosity,
            mixing_parameter_density=sp.mixing_parameter_density,
        )

        rhos_o = props.surface_density(Phase.OIL)
        rhos_g = props.surface_density(Phase.GAS)
        props.set_effective_properties(
            {
                Phase.OIL: result.oil_density / (rs * rhos_g + rhos_o),
                Phase.GAS: result.gas_density / (rv * rhos_o + rhos_g),
                Phase.SOLVENT: result.solvent_density * (1.0 / sp.surface_density),
            },
            {
                Phase.OIL: result.oil_viscosity,
                Phase.GAS: result.gas_viscosity,
                Phase.SOLVENT: result.solvent_viscosity,
            },
        )

    def relative_permeabilities(self, model: "BlackoilModel", state: "SolutionState"):
        """
        Relative permeabilities with the gas curve evaluated at the total gas saturation.

        The total gas relative permeability is blended with the miscible curves
        when miscible, then split between gas and solvent.
        """
        sw, so, sg = model.real_saturations(state)
        ss = state.solvent_saturation
        kr = model.saturation_functions.relperm(sw, so, sg + ss)
        if model.config.is_miscible:
            kr = compute_miscible_relperm(
                kr, sw, so, sg, ss, self.solvent_properties, model.saturation_functions
            )
        kr[Phase.GAS], kr[Phase.SOLVENT] = split_gas_relperm(
            kr[Phase.GAS], ss, sg, self.solvent_properties
        )
        return kr

    def _perforation_solvent_fraction(self, model: "BlackoilModel", state: "SolutionState", well_state: "WellState"):
        wells = model.wells
        _, _, sg = model.real_saturations(state)
        in_place = subset(compute_solvent_fraction(state.solvent_saturation, sg), wells.well_cells)
        is_producer = wells.perforation_is_producer
        return is_producer * in_place + (1.0 - is_producer) * well_state.solvent_fraction

    def adjust_well_perforations(self, model, state, well_state, mobilities, reciprocal_fvfs) -> None:
        """
        Combine gas and solvent into the total gas stream at the perforations.

        The total gas mobility is the sum of the gas and solvent mobilities, and
        its reciprocal formation volume factor the solvent-fraction weighted blend.
        """
        gas = model.phase_usage.position(Phase.GAS)
        cells = model.wells.well_cells
        solvent = model.quantities[Phase.SOLVENT]
        fraction = self._perforation_solvent_fraction(model, state, well_state)
        mobilities[gas] = mobilities[gas] + subset(solvent.mobility, cells)
        reciprocal_fvfs[gas] = (1.0 - fraction) * reciprocal_fvfs[gas] + fraction * subset(
            solvent.reciprocal_fvf, cells
        )

    def add_well_sources(self, model, state, well_state, cq_s, mass_balance) -> None:
        """
        Move the solvent part of the total gas well flux to the solvent equation.

        Gas dissolved in produced oil is not solvent, so it is removed from the
        gas rate before the solvent fraction is applied.
        """
        pu = model.phase_usage
        gas, oil = pu.position(Phase.GAS), pu.position(Phase.OIL)
        cells = model.wells.well_cells
        nc = model.grid.num_cells
        fraction = self._perforation_solvent_fraction(model, state, well_state)
        rs_perf = subset(state.rs, cells)
        cq_s_solvent = fraction * (cq_s[gas] - rs_perf * cq_s[oil])
        source = superset(cq_s_solvent, cells, nc)
        mass_balance[pu.solvent_pos] = mass_balance[pu.solvent_pos] - source
        mass_balance[gas] = mass_balance[gas] + source

    def connection_solvent_fraction(self, model: "BlackoilModel", state: "SolutionState") -> np.ndarray:
        _, _, sg = model.real_saturations(state)
        return value_of(compute_solvent_fraction(value_of(state.solvent_saturation), value_of(sg)))

    def split_increment(self, dx: np.ndarray, num_cells: int, num_phases: int):
        """Remove the solvent block `[nc * np, nc * np + nc)` from a Newton increment."""
        start = num_cells * num_phases
        end = start + num_cells
        return np.concatenate((dx[:start], dx[end:])), dx[start:end]

    def update_state(self, model, increment, reservoir_state) -> None:
        """Apply the solvent increment: ss = max(0, ss_old - dss)."""
        reservoir_state.solvent_saturation = np.maximum(
            reservoir_state.solvent_saturation - increment, 0.0
        )
