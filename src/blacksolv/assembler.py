"""
Fully implicit black-oil residual assembly.

The model turns the caller-owned reservoir and well states into automatic
differentiation variables, evaluates accumulation terms, upwinded phase
fluxes and well sources, and emits one residual (with its exact Jacobian) per
equation: one mass balance per phase and cell, one well flux equation per
phase and well, and one control equation per well.

Primary variables, in order: pressure, water saturation (if water is active),
the hydrocarbon variable (if gas is active; gas saturation, rs or rv depending
on the cell's `HydrocarbonState`), the extra-phase variables of the model's
strategy, then well surface rates (phase-major) and bottom-hole pressures.
"""

import logging
import typing

import attrs
import numpy as np
import scipy.sparse as sps

from blacksolv.ad import (
    ADArray,
    concatenate,
    initialize_variables,
    subset,
    superset,
    value_of,
)
from blacksolv.config import Config
from blacksolv.errors import ComputationError, ConfigurationError, ValidationError
from blacksolv.extensions import ExtraPhase, NoExtraPhase, SolventExtension
from blacksolv.grid import DiscreteOperators, Grid, RockCompressibility, UpwindSelector
from blacksolv.phases import PhaseUsage, phase_presence_from_state
from blacksolv.properties import PropertyEvaluator
from blacksolv.pvt import BlackoilPvt, SolventProperties
from blacksolv.relperm import SaturationFunctions
from blacksolv.states import ReservoirState, SolutionState, WellState
from blacksolv.types import GlobalReduction, HydrocarbonState, Phase
from blacksolv.wells import (
    ConnectionPressures,
    Well,
    Wells,
    compute_perforation_rates_and_pressures,
    compute_well_connection_pressures,
    compute_well_flux,
    update_well_controls,
    well_control_equations,
    well_flux_equations,
)

logger = logging.getLogger(__name__)

__all__ = [
    "PhaseQuantities",
    "ResidualEquations",
    "ConvergenceReport",
    "BlackoilModel",
]


@attrs.define
class PhaseQuantities:
    """Intermediate per-cell quantities of one phase, kept between assembly stages."""

    reciprocal_fvf: typing.Any = None
    """Reciprocal formation volume factor b."""
    viscosity: typing.Any = None
    density: typing.Any = None
    mobility: typing.Any = None
    """Transmissibility multiplier times relative permeability over viscosity."""
    head_difference: typing.Any = None
    """Potential difference over each face, first cell minus second."""
    flux: typing.Any = None
    """Upwinded surface volume flux over each face."""
    upwind: typing.Optional[UpwindSelector] = None
    accumulation: typing.List[typing.Any] = attrs.field(factory=lambda: [None, None])
    """Accumulation at the start (0) and end (1) of the time step."""


@attrs.define
class ResidualEquations:
    """Residuals of one assembly pass."""

    mass_balance: typing.List[ADArray]
    """One residual per equation phase, by equation position."""
    well_flux: typing.Optional[ADArray]
    """Well flux equations, phase-major. None without wells."""
    well_control: typing.Optional[ADArray]
    """Well control equations. None without wells."""
    block_sizes: typing.List[int]
    """Sizes of the primary variable groups."""
    equation_names: typing.Tuple[str, ...]

    def equations(self) -> typing.List[ADArray]:
        equations = list(self.mass_balance)
        if self.well_flux is not None:
            equations.append(self.well_flux)
        if self.well_control is not None:
            equations.append(self.well_control)
        return equations

    @property
    def size(self) -> int:
        return sum(equation.size for equation in self.equations())

    def to_linear_system(
        self, scaling: typing.Optional[typing.Sequence[float]] = None
    ) -> typing.Tuple[sps.csr_matrix, np.ndarray]:
        """
        Stack all equations into one Jacobian matrix and residual vector.

        :param scaling: Optional factor per mass balance equation applied to its rows.
        :return: Tuple of (Jacobian, residual).
        """
        equations = self.equations()
        if scaling is not None:
            if len(scaling) != len(self.mass_balance):
                raise ValidationError(
                    f"Expected {len(self.mass_balance)} scaling factors, got {len(scaling)}"
                )
            for i, factor in enumerate(scaling):
                equations[i] = equations[i] * float(factor)
        stacked = concatenate(equations, self.block_sizes)
        return stacked.jacobian(), stacked.val.copy()

    def has_non_finite(self) -> bool:
        for equation in self.equations():
            if not np.all(np.isfinite(equation.val)):
                return True
            for block in equation.jac:
                if not np.all(np.isfinite(block.data)):
                    return True
        return False


@attrs.frozen
class ConvergenceReport:
    """Outcome of a convergence check."""

    converged: bool
    failed: bool
    mass_balance: np.ndarray
    """Scaled total mass balance error per equation."""
    cnv: np.ndarray
    """Scaled maximum local residual per equation."""
    well_flux: np.ndarray
    """Scaled maximum well flux residual per real phase."""
    message: str = ""


class BlackoilModel:
    """
    Fully implicit black-oil model with an optional extra phase.

    The extra phase is a strategy chosen at construction: `SolventExtension`
    when `config.has_solvent` is set, `NoExtraPhase` otherwise.

    :raises ConfigurationError: For unsupported phase and option combinations.
    """

    def __init__(
        self,
        config: Config,
        grid: Grid,
        pvt: BlackoilPvt,
        saturation_functions: SaturationFunctions,
        rock: typing.Optional[RockCompressibility] = None,
        wells: typing.Union[Wells, typing.Sequence[Well], None] = None,
        solvent_props: typing.Optional[SolventProperties] = None,
        reduction: typing.Optional[GlobalReduction] = None,
    ) -> None:
        phase_usage = PhaseUsage(
            water=pvt.water is not None,
            oil=pvt.oil is not None,
            gas=pvt.gas is not None,
            solvent=config.has_solvent,
        )
        extension: ExtraPhase = (
            SolventExtension(solvent_props) if config.has_solvent else NoExtraPhase()
        )
        if not phase_usage.oil:
            raise ConfigurationError("The black-oil model requires an active oil phase.")
        extension.check_configuration(config, phase_usage)
        if saturation_functions.phase_usage.active_phases != phase_usage.active_phases:
            raise ConfigurationError(
                "Saturation functions and PVT describe different sets of active phases."
            )
        if config.has_disgas and phase_usage.oil and phase_usage.gas and not pvt.oil.is_live:
            raise ConfigurationError("Dissolved gas requires a live oil PVT description.")
        if config.has_vapoil and (not phase_usage.gas or pvt.gas.rv_sat_table is None):
            raise ConfigurationError("Vaporized oil requires a wet gas PVT description.")

        self.config = config
        self.grid = grid
        self.phase_usage = phase_usage
        self.saturation_functions = saturation_functions
        self.rock = rock if rock is not None else RockCompressibility()
        self.extension = extension
        self.reduction = reduction
        self.properties = PropertyEvaluator(
            phase_usage, pvt, solvent_props, is_miscible=config.is_miscible
        )
        self.operators = DiscreteOperators(grid)
        if isinstance(wells, Wells):
            self.wells = wells
        else:
            self.wells = Wells(wells or (), grid, phase_usage)
        self.gravity = float(config.constants.ACCELERATION_DUE_TO_GRAVITY)
        self.has_disgas = config.has_disgas and phase_usage.oil and phase_usage.gas
        self.has_vapoil = config.has_vapoil and phase_usage.oil and phase_usage.gas

        self.equation_phases: typing.Tuple[Phase, ...] = (
            phase_usage.active_phases + extension.extra_phases
        )
        self.equation_scaling = self._default_equation_scaling()
        self.quantities: typing.Dict[Phase, PhaseQuantities] = {
            phase: PhaseQuantities() for phase in self.equation_phases
        }
        self.connection_pressures = ConnectionPressures(
            densities=np.zeros(self.wells.num_perforations),
            pressure_diffs=np.zeros(self.wells.num_perforations),
        )
        self.perforation_rates: typing.Optional[np.ndarray] = None
        self.perforation_pressures: typing.Optional[np.ndarray] = None
        self.phase_condition = np.zeros(grid.num_cells, dtype=np.int64)
        self.residual: typing.Optional[ResidualEquations] = None
        self.dt: typing.Optional[float] = None
        self._gravity_depth_gradient = self.operators.ngrad @ grid.depth
        logger.debug(
            f"Created black-oil model with equations {phase_usage.equation_names}, "
            f"{grid.num_cells} cells and {self.wells.num_wells} wells"
        )

    def _default_equation_scaling(self) -> np.ndarray:
        constants = self.config.constants
        defaults = {
            Phase.WATER: constants.WATER_EQUATION_SCALE,
            Phase.OIL: constants.OIL_EQUATION_SCALE,
            Phase.GAS: constants.GAS_EQUATION_SCALE,
            Phase.SOLVENT: constants.GAS_EQUATION_SCALE,
        }
        return np.array([defaults[phase] for phase in self.equation_phases], dtype=np.float64)

    @property
    def num_equations(self) -> int:
        return len(self.equation_phases)

    def equation_position(self, phase: Phase) -> int:
        return self.phase_usage.position(phase)

    def block_sizes(self) -> typing.List[int]:
        nc = self.grid.num_cells
        sizes = [nc] * self.num_equations
        if self.wells.num_wells:
            nw = self.wells.num_wells
            sizes += [self.phase_usage.num_phases * nw, nw]
        return sizes

    def prepare_step(self, dt: float) -> None:
        """Set the time step size of the following assemblies."""
        if not dt > 0.0:
            raise ValidationError(f"Time step size must be positive, got {dt}")
        self.dt = float(dt)

    def initial_variable_values(
        self, reservoir_state: ReservoirState, well_state: WellState
    ) -> typing.List[np.ndarray]:
        """Values of all primary variables from the caller's states."""
        pu = self.phase_usage
        values = [reservoir_state.pressure]
        if pu.water:
            values.append(reservoir_state.saturation[:, pu.position(Phase.WATER)])
        if pu.gas:
            hs = reservoir_state.hydrocarbon_state
            sg = reservoir_state.saturation[:, pu.position(Phase.GAS)]
            xvar = np.where(
                hs == HydrocarbonState.GAS_AND_OIL,
                sg,
                np.where(hs == HydrocarbonState.OIL_ONLY, reservoir_state.rs, reservoir_state.rv),
            )
            values.append(xvar)
        values.extend(self.extension.initial_values(reservoir_state))
        if self.wells.num_wells:
            values.append(np.ascontiguousarray(well_state.well_rates.T).ravel())
            values.append(well_state.bhp)
        return values

    def variable_state(self, reservoir_state: ReservoirState, well_state: WellState) -> SolutionState:
        """Solution state with identity derivatives with respect to all primary variables."""
        variables = initialize_variables(self.initial_variable_values(reservoir_state, well_state))
        return self._extract(variables, reservoir_state)

    def constant_state(self, reservoir_state: ReservoirState, well_state: WellState) -> SolutionState:
        """Solution state without derivatives."""
        values = self.initial_variable_values(reservoir_state, well_state)
        return self._extract([ADArray.constant(v) for v in values], reservoir_state)

    def _extract(self, variables: typing.Sequence[ADArray], reservoir_state: ReservoirState) -> SolutionState:
        pu = self.phase_usage
        nc = self.grid.num_cells
        pvt = self.properties.pvt
        index = 0
        pressure = variables[index]
        index += 1
        sw = None
        if pu.water:
            sw = variables[index]
            index += 1
        xvar = None
        if pu.gas:
            xvar = variables[index]
            index += 1
        num_extra = len(self.extension.extra_phases)
        extra = list(variables[index : index + num_extra])
        index += num_extra
        qs = bhp = None
        if self.wells.num_wells:
            qs, bhp = variables[index], variables[index + 1]

        offset = self.extension.oil_saturation_offset(extra)
        so = np.ones(nc) - offset
        if sw is not None:
            so = so - sw

        rs = reservoir_state.rs.copy()
        rv = reservoir_state.rv.copy()
        sg = None
        if pu.gas:
            hs = reservoir_state.hydrocarbon_state
            is_sg = (hs == HydrocarbonState.GAS_AND_OIL).astype(np.float64)
            is_rs = (hs == HydrocarbonState.OIL_ONLY).astype(np.float64)
            is_rv = (hs == HydrocarbonState.GAS_ONLY).astype(np.float64)
            sg = is_sg * xvar + is_rv * so
            so = so - sg
            if self.has_disgas:
                rs = (1.0 - is_rs) * pvt.rs_sat(pressure) + is_rs * xvar
            if self.has_vapoil:
                rv = (1.0 - is_rv) * pvt.rv_sat(pressure) + is_rv * xvar

        saturation = []
        for phase in pu.active_phases:
            saturation.append({Phase.WATER: sw, Phase.OIL: so, Phase.GAS: sg}[phase])

        zeros = np.zeros(nc)
        # Solvent counts as gas for capillary pressure
        total_gas = (sg if sg is not None else zeros) + offset
        pc = self.saturation_functions.capillary_pressure(
            sw if sw is not None else zeros, so, total_gas
        )
        pressures: typing.Dict[Phase, typing.Any] = {}
        for phase in pu.active_phases:
            pressures[phase] = pressure + pc[phase] if phase != Phase.OIL else pressure

        state = SolutionState(
            pressure=pressure,
            temperature=ADArray.constant(reservoir_state.temperature),
            saturation=saturation,
            rs=rs,
            rv=rv,
            canonical_phase_pressures=pressures,
            qs=qs,
            bhp=bhp,
        )
        self.extension.extract_variables(extra, state)
        return state

    def real_saturations(self, state: SolutionState) -> typing.Tuple[typing.Any, typing.Any, typing.Any]:
        """Water, oil and gas saturations, zero for inactive phases."""
        pu = self.phase_usage
        zeros = np.zeros(self.grid.num_cells)
        values = []
        for phase in (Phase.WATER, Phase.OIL, Phase.GAS):
            values.append(state.saturation[pu.position(phase)] if pu.is_active(phase) else zeros)
        return values[0], values[1], values[2]

    def saturation_of(self, state: SolutionState, phase: Phase):
        if phase == Phase.SOLVENT:
            return state.solvent_saturation
        return state.saturation[self.phase_usage.position(phase)]

    def _compute_accumulation(self, state: SolutionState, level: int) -> None:
        pu = self.phase_usage
        props = self.properties
        pv_mult = self.rock.pore_volume_multiplier(state.pressure)
        for phase in self.equation_phases:
            quantities = self.quantities[phase]
            b = props.reciprocal_fvf(
                phase,
                state.canonical_phase_pressures[phase],
                state.temperature,
                state.rs,
                state.rv,
                self.phase_condition,
            )
            quantities.reciprocal_fvf = b
            quantities.accumulation[level] = pv_mult * b * self.saturation_of(state, phase)

        if pu.oil and pu.gas:
            oil, gas = self.quantities[Phase.OIL], self.quantities[Phase.GAS]
            accum_oil, accum_gas = oil.accumulation[level], gas.accumulation[level]
            if self.has_disgas:
                gas.accumulation[level] = accum_gas + state.rs * accum_oil
            if self.has_vapoil:
                oil.accumulation[level] = accum_oil + state.rv * accum_gas

    def _compute_mass_flux(self, phase: Phase, relperm, state: SolutionState) -> None:
        props = self.properties
        ops = self.operators
        quantities = self.quantities[phase]
        phase_pressure = state.canonical_phase_pressures[phase]

        tr_mult = self.rock.transmissibility_multiplier(state.pressure)
        mu = props.viscosity(
            phase, phase_pressure, state.temperature, state.rs, state.rv, self.phase_condition
        )
        mobility = tr_mult * relperm / mu
        rho = props.density(phase, quantities.reciprocal_fvf, state.rs, state.rv)
        head_difference = ops.gradient(phase_pressure) - self.gravity * (
            ops.average(rho) * self._gravity_depth_gradient
        )
        upwind = UpwindSelector(self.grid, value_of(head_difference))

        quantities.viscosity = mu
        quantities.density = rho
        quantities.mobility = mobility
        quantities.head_difference = head_difference
        quantities.upwind = upwind
        quantities.flux = upwind.select(quantities.reciprocal_fvf * mobility) * (
            self.grid.transmissibility * head_difference
        )

    def _assemble_mass_balance(self, state: SolutionState) -> typing.List[typing.Any]:
        pu = self.phase_usage
        ops = self.operators
        self._compute_accumulation(state, level=1)
        relperm = self.extension.relative_permeabilities(self, state)
        pvdt = self.grid.pore_volume / self.dt

        mass_balance = []
        for phase in self.equation_phases:
            self._compute_mass_flux(phase, relperm[phase], state)
            quantities = self.quantities[phase]
            mass_balance.append(
                pvdt * (quantities.accumulation[1] - quantities.accumulation[0])
                + ops.divergence(quantities.flux)
            )

        if pu.oil and pu.gas:
            oil, gas = self.quantities[Phase.OIL], self.quantities[Phase.GAS]
            if self.has_disgas:
                position = pu.position(Phase.GAS)
                mass_balance[position] = mass_balance[position] + ops.divergence(
                    oil.upwind.select(state.rs) * oil.flux
                )
            if self.has_vapoil:
                position = pu.position(Phase.OIL)
                mass_balance[position] = mass_balance[position] + ops.divergence(
                    gas.upwind.select(state.rv) * gas.flux
                )
        return mass_balance

    def _compute_connection_pressures(self, state: SolutionState, well_state: WellState) -> None:
        self.connection_pressures = compute_well_connection_pressures(
            self.wells,
            self.properties,
            bhp=well_state.bhp,
            perforation_pressures=well_state.perf_press,
            perforation_rates=well_state.perf_phase_rates,
            temperature=state.temperature,
            rs=state.rs,
            rv=state.rv,
            phase_condition=self.phase_condition,
            gravity=self.gravity,
            solvent_fraction=self.extension.connection_solvent_fraction(self, state),
            has_disgas=self.has_disgas,
            has_vapoil=self.has_vapoil,
        )

    def _assemble_wells(
        self,
        state: SolutionState,
        well_state: WellState,
        mass_balance: typing.List[typing.Any],
    ) -> typing.Tuple[ADArray, ADArray]:
        pu = self.phase_usage
        wells = self.wells
        cells = wells.well_cells
        nc = self.grid.num_cells

        mobilities = []
        reciprocal_fvfs = []
        for phase in pu.active_phases:
            quantities = self.quantities[phase]
            mobilities.append(subset(quantities.mobility, cells))
            reciprocal_fvfs.append(subset(quantities.reciprocal_fvf, cells))
        self.extension.adjust_well_perforations(self, state, well_state, mobilities, reciprocal_fvfs)

        pressure_diffs = self.connection_pressures.pressure_diffs
        cq_s = compute_well_flux(
            wells,
            state.pressure,
            state.bhp,
            state.qs,
            state.rs,
            state.rv,
            mobilities,
            reciprocal_fvfs,
            pressure_diffs,
            has_disgas=self.has_disgas,
            has_vapoil=self.has_vapoil,
        )
        self.perforation_rates, self.perforation_pressures = compute_perforation_rates_and_pressures(
            wells, cq_s, state.bhp, pressure_diffs
        )
        well_flux = well_flux_equations(wells, state.qs, cq_s)
        for position in range(pu.num_phases):
            mass_balance[position] = mass_balance[position] - superset(cq_s[position], cells, nc)
        self.extension.add_well_sources(self, state, well_state, cq_s, mass_balance)
        well_control = well_control_equations(wells, well_state, state.bhp, state.qs)
        return well_flux, well_control

    def assemble(
        self,
        reservoir_state: ReservoirState,
        well_state: WellState,
        initial_assembly: bool,
    ) -> ResidualEquations:
        """
        Assemble all residual equations at the given state.

        On the initial assembly of a time step the accumulation at the start of
        the step and the well connection pressures are computed from the
        (derivative-free) starting state. Later assemblies of the same step
        reuse them.

        :param reservoir_state: Current reservoir state.
        :param well_state: Current well state. Only its controls may change, when a
            limit is broken. Perforation rates and pressures are kept on the model
            until `update_perforation_state` copies them over.
        :param initial_assembly: Whether this is the first assembly of the time step.
        :return: `ResidualEquations`
        """
        if self.dt is None:
            raise ComputationError("prepare_step must be called before assembling.")

        if self.wells.num_wells:
            update_well_controls(self.wells, well_state)

        self.phase_condition = phase_presence_from_state(
            reservoir_state.hydrocarbon_state, self.phase_usage
        )
        state = self.variable_state(reservoir_state, well_state)

        if initial_assembly:
            state0 = self.constant_state(reservoir_state, well_state)
            self.extension.compute_effective_properties(self, state0)
            self._compute_accumulation(state0, level=0)
            if self.wells.num_wells:
                self._compute_connection_pressures(state0, well_state)

        self.extension.compute_effective_properties(self, state)
        mass_balance = self._assemble_mass_balance(state)

        well_flux = well_control = None
        if self.wells.num_wells:
            well_flux, well_control = self._assemble_wells(state, well_state, mass_balance)

        block_sizes = self.block_sizes()
        self.residual = ResidualEquations(
            mass_balance=[equation.with_block_sizes(block_sizes) for equation in mass_balance],
            well_flux=well_flux.with_block_sizes(block_sizes) if well_flux is not None else None,
            well_control=well_control.with_block_sizes(block_sizes) if well_control is not None else None,
            block_sizes=block_sizes,
            equation_names=self.phase_usage.equation_names,
        )
        return self.residual

    def update_perforation_state(self, well_state: WellState) -> None:
        """
        Copy the perforation rates and pressures of the last assembly into `well_state`.

        The next initial assembly computes the connection pressures from them.
        """
        if self.perforation_rates is None or self.perforation_pressures is None:
            return
        well_state.perf_phase_rates = self.perforation_rates.copy()
        well_state.perf_press = self.perforation_pressures.copy()

    def update_equations_scaling(self) -> np.ndarray:
        """
        Recompute the scaling factor of each mass balance equation as the mean of 1/b.

        With a global reduction, the per-equation local sums are reduced in a
        single call and divided by the global number of cells.

        :return: The new scaling factors.
        """
        local_sums = np.zeros(self.num_equations)
        for i, phase in enumerate(self.equation_phases):
            b = self.quantities[phase].reciprocal_fvf
            if b is None:
                raise ComputationError("Equation scaling requires an assembled model.")
            local_sums[i] = np.sum(1.0 / value_of(b))

        if self.reduction is not None:
            totals = np.asarray(self.reduction.global_sum(local_sums), dtype=np.float64)
            self.equation_scaling = totals / self.reduction.global_num_cells
        else:
            self.equation_scaling = local_sums / self.grid.num_cells
        logger.debug(f"Updated equation scaling: {self.equation_scaling}")
        return self.equation_scaling

    def get_convergence(self, dt: float, iteration: int) -> ConvergenceReport:
        """
        Check the residual of the last assembly against the tolerances.

        For each equation, with B the average of 1/b over all cells:

            MB  = |B Σ R| dt / Σ pv
            CNV = B dt max(|R| / pv)

        and for each real phase the well flux residual is B max |R_well|.

        :param dt: Time step size.
        :param iteration: Newton iteration number, used for logging.
        :return: `ConvergenceReport`
        """
        if self.residual is None:
            raise ComputationError("get_convergence requires an assembled model.")
        config = self.config
        pv = self.grid.pore_volume
        nw = self.wells.num_wells
        num_phases = self.phase_usage.num_phases

        mass_balance = np.zeros(self.num_equations)
        cnv = np.zeros(self.num_equations)
        well_flux = np.zeros(num_phases)
        for i, phase in enumerate(self.equation_phases):
            B_avg = np.mean(1.0 / value_of(self.quantities[phase].reciprocal_fvf))
            R = self.residual.mass_balance[i].val
            mass_balance[i] = abs(B_avg * R.sum()) * dt / pv.sum()
            cnv[i] = B_avg * dt * np.max(np.abs(R) / pv)
            if nw and i < num_phases:
                R_well = self.residual.well_flux.val[i * nw : (i + 1) * nw]
                well_flux[i] = B_avg * np.max(np.abs(R_well))

        names = self.phase_usage.equation_names
        if logger.isEnabledFor(logging.DEBUG):
            columns = "  ".join(
                f"{name}: MB={mb:.3e} CNV={c:.3e}" for name, mb, c in zip(names, mass_balance, cnv)
            )
            logger.debug(f"Iteration {iteration}: {columns}")

        values = np.concatenate((mass_balance, cnv, well_flux))
        if not np.all(np.isfinite(values)):
            return ConvergenceReport(
                converged=False,
                failed=True,
                mass_balance=mass_balance,
                cnv=cnv,
                well_flux=well_flux,
                message="Encountered non-finite residual",
            )
        if np.any(values > config.max_residual_allowed):
            return ConvergenceReport(
                converged=False,
                failed=True,
                mass_balance=mass_balance,
                cnv=cnv,
                well_flux=well_flux,
                message=f"Residual exceeds the allowed maximum of {config.max_residual_allowed:g}",
            )

        converged = bool(
            np.all(mass_balance < config.tolerance_mb)
            and np.all(cnv < config.tolerance_cnv)
            and np.all(well_flux < config.tolerance_wells)
        )
        return ConvergenceReport(
            converged=converged,
            failed=False,
            mass_balance=mass_balance,
            cnv=cnv,
            well_flux=well_flux,
        )
