import typing

import numpy as np
import pytest

import blacksolv as bs

DAY = 86400.0


def _cell_fields(model: bs.BlackoilModel) -> typing.List[typing.Tuple[str, typing.Optional[int]]]:
    pu = model.phase_usage
    fields: typing.List[typing.Tuple[str, typing.Optional[int]]] = [("pressure", None)]
    if pu.water:
        fields.append(("saturation", pu.position(bs.Phase.WATER)))
    if pu.gas:
        fields.append(("saturation", pu.position(bs.Phase.GAS)))
    if pu.solvent:
        fields.append(("solvent_saturation", None))
    return fields


def _perturb(model, reservoir_state, well_state, column, delta):
    """Copies of the states with primary variable `column` shifted by `delta`."""
    rs, ws = reservoir_state.copy(), well_state.copy()
    nc = model.grid.num_cells
    fields = _cell_fields(model)
    if column < nc * len(fields):
        name, position = fields[column // nc]
        array = getattr(rs, name)
        if position is None:
            array[column % nc] += delta
        else:
            array[column % nc, position] += delta
        return rs, ws

    nw = model.wells.num_wells
    k = column - nc * len(fields)
    if k < model.phase_usage.num_phases * nw:
        phase, well = divmod(k, nw)
        ws.well_rates[well, phase] += delta
    else:
        ws.bhp[k - model.phase_usage.num_phases * nw] += delta
    return rs, ws


def _step_size(model, column):
    nc = model.grid.num_cells
    num_cell_fields = len(_cell_fields(model))
    if column < nc:
        return 10.0
    if column < nc * num_cell_fields:
        return 1e-6
    if column < nc * num_cell_fields + model.phase_usage.num_phases * model.wells.num_wells:
        return 1e-8
    return 10.0


def _check_jacobian_against_finite_differences(model, reservoir_state, well_state):
    model.prepare_step(DAY)
    residual = model.assemble(reservoir_state.copy(), well_state.copy(), initial_assembly=True)
    jacobian, _ = residual.to_linear_system()
    jacobian = jacobian.toarray()
    assert jacobian.shape == (residual.size, sum(model.block_sizes()))

    for column in range(jacobian.shape[1]):
        eps = _step_size(model, column)
        values = []
        for delta in (eps, -eps):
            rs, ws = _perturb(model, reservoir_state, well_state, column, delta)
            perturbed = model.assemble(rs, ws, initial_assembly=False)
            values.append(perturbed.to_linear_system()[1])
        finite_difference = (values[0] - values[1]) / (2.0 * eps)
        exact = jacobian[:, column]
        scale = max(np.abs(exact).max(), np.abs(finite_difference).max())
        np.testing.assert_allclose(
            finite_difference, exact, rtol=1e-5, atol=1e-6 * scale, err_msg=f"column {column}"
        )


def test_oil_water_jacobian_matches_finite_differences(make_oil_water_model, oil_water_state):
    model = make_oil_water_model()
    well_state = bs.WellState.initialize(model.wells, oil_water_state)
    _check_jacobian_against_finite_differences(model, oil_water_state, well_state)


def test_solvent_jacobian_matches_finite_differences(make_three_phase_model, solvent_state):
    model = make_three_phase_model()
    well_state = bs.WellState.initialize(model.wells, solvent_state)
    _check_jacobian_against_finite_differences(model, solvent_state, well_state)


def test_miscible_solvent_jacobian_matches_finite_differences(
    make_three_phase_model, solvent_state, solvent_props
):
    props = bs.SolventProperties(
        reciprocal_fvf_table=solvent_props.reciprocal_fvf_table,
        viscosity_table=solvent_props.viscosity_table,
        surface_density=solvent_props.surface_density,
        miscibility_table=bs.Tabulated1D(x=[0.0, 1.0], y=[0.2, 0.9]),
        mixing_parameter_viscosity=0.6,
        mixing_parameter_density=0.4,
    )
    model = make_three_phase_model(solvent_properties=props, miscibility_model="todd_longstaff")
    well_state = bs.WellState.initialize(model.wells, solvent_state)
    _check_jacobian_against_finite_differences(model, solvent_state, well_state)


def test_block_layout_and_equation_names(make_three_phase_model, solvent_state):
    model = make_three_phase_model()
    assert model.block_sizes() == [3, 3, 3, 3, 6, 2]
    assert model.equation_phases == (bs.Phase.WATER, bs.Phase.OIL, bs.Phase.GAS, bs.Phase.SOLVENT)
    model.prepare_step(DAY)
    well_state = bs.WellState.initialize(model.wells, solvent_state)
    residual = model.assemble(solvent_state, well_state, initial_assembly=True)
    assert residual.equation_names == ("Water", "Oil", "Gas", "Solvent")
    assert len(residual.mass_balance) == 4
    assert residual.well_flux.size == 6
    assert residual.well_control.size == 2
    assert residual.size == sum(model.block_sizes())


def test_later_assembly_matches_initial_assembly_at_the_same_state(make_three_phase_model, solvent_state):
    model = make_three_phase_model()
    model.prepare_step(DAY)
    well_state = bs.WellState.initialize(model.wells, solvent_state)
    first = model.assemble(solvent_state, well_state, initial_assembly=True)
    jac_1, r_1 = first.to_linear_system()
    second = model.assemble(solvent_state, well_state, initial_assembly=False)
    jac_2, r_2 = second.to_linear_system()
    np.testing.assert_array_equal(r_1, r_2)
    assert (jac_1 != jac_2).nnz == 0


@pytest.mark.parametrize("initial_assembly", [True, False])
def test_repeated_assembly_with_a_deviated_well_is_idempotent(
    column_grid, oil_water_pvt, water_oil_table, initial_assembly
):
    pu = bs.PhaseUsage(water=True, oil=True, gas=False)
    producer = bs.Well(
        name="PROD",
        type="producer",
        cells=[0, 1],
        well_index=[1e-13, 1e-13],
        controls=[bs.WellControl(type="bhp", target=1.9e7)],
        reference_depth=990.0,
    )
    model = bs.BlackoilModel(
        config=bs.Config(has_disgas=False),
        grid=column_grid,
        pvt=oil_water_pvt,
        saturation_functions=bs.SaturationFunctions(pu, water_oil=water_oil_table),
        wells=[producer],
    )
    state = bs.ReservoirState.initialize(
        pu, pressure=[2.05e7, 2.06e7], saturations={bs.Phase.WATER: [0.3, 0.5]}
    )
    well_state = bs.WellState.initialize(model.wells, state)
    perf_press = well_state.perf_press.copy()
    model.prepare_step(DAY)

    if not initial_assembly:
        model.assemble(state, well_state, initial_assembly=True)
    jac_1, r_1 = model.assemble(state, well_state, initial_assembly=initial_assembly).to_linear_system()
    jac_2, r_2 = model.assemble(state, well_state, initial_assembly=initial_assembly).to_linear_system()

    assert np.all(model.connection_pressures.pressure_diffs > 0.0)
    np.testing.assert_array_equal(r_1, r_2)
    assert (jac_1 != jac_2).nnz == 0
    # Assembly leaves the perforation state alone until it is copied over
    np.testing.assert_array_equal(well_state.perf_press, perf_press)
    model.update_perforation_state(well_state)
    np.testing.assert_allclose(
        well_state.perf_press, well_state.bhp[0] + model.connection_pressures.pressure_diffs
    )


def test_unchanged_state_without_wells_has_zero_accumulation(make_oil_water_model):
    model = make_oil_water_model(wells=False)
    pu = model.phase_usage
    state = bs.ReservoirState.initialize(pu, pressure=np.full(3, 2.05e7), saturations={bs.Phase.WATER: 0.3})
    model.prepare_step(DAY)
    residual = model.assemble(state, bs.WellState.initialize(model.wells, state), initial_assembly=True)
    for equation in residual.mass_balance:
        np.testing.assert_allclose(equation.val, 0.0, atol=1e-18)
    assert residual.well_flux is None
    assert residual.well_control is None


def test_flow_is_from_high_to_low_pressure(make_oil_water_model, oil_water_state):
    model = make_oil_water_model(wells=False)
    model.prepare_step(DAY)
    residual = model.assemble(
        oil_water_state, bs.WellState.initialize(model.wells, oil_water_state), initial_assembly=True
    )
    oil = residual.mass_balance[model.equation_position(bs.Phase.OIL)].val
    # Outflow counts positive in the residual; the closed domain conserves mass
    assert oil[0] > 0.0
    assert oil[2] < 0.0
    assert oil.sum() == pytest.approx(0.0, abs=1e-12 * np.abs(oil).max())


def test_gravity_segregation_in_a_column(column_grid, oil_water_pvt, water_oil_table):
    pu = bs.PhaseUsage(water=True, oil=True, gas=False)
    model = bs.BlackoilModel(
        config=bs.Config(has_disgas=False),
        grid=column_grid,
        pvt=oil_water_pvt,
        saturation_functions=bs.SaturationFunctions(pu, water_oil=water_oil_table),
    )
    # Hydrostatic for a density between those of oil and water
    p_top = 2.05e7
    p_bottom = p_top + model.gravity * 10.0 * 900.0
    state = bs.ReservoirState.initialize(pu, pressure=[p_top, p_bottom], saturations={bs.Phase.WATER: 0.5})
    model.prepare_step(DAY)
    residual = model.assemble(state, bs.WellState.initialize(model.wells, state), initial_assembly=True)
    water = residual.mass_balance[model.equation_position(bs.Phase.WATER)].val
    oil = residual.mass_balance[model.equation_position(bs.Phase.OIL)].val
    # Water sinks into the lower cell, oil rises into the upper cell
    assert water[0] > 0.0 > water[1]
    assert oil[0] < 0.0 < oil[1]


def test_solvent_model_without_solvent_has_finite_residuals(make_three_phase_model, oil_pvt):
    model = make_three_phase_model()
    pu = model.phase_usage
    pressure = np.array([2.05e7, 2.02e7, 1.98e7])
    state = bs.ReservoirState.initialize(
        pu,
        pressure=pressure,
        saturations={bs.Phase.WATER: 0.25, bs.Phase.GAS: [0.0, 0.1, 0.0]},
        rs=[60.0, oil_pvt.rs_sat(pressure)[1], 70.0],
        solvent_saturation=0.0,
    )
    assert state.hydrocarbon_state[0] == bs.HydrocarbonState.OIL_ONLY
    model.prepare_step(DAY)
    residual = model.assemble(state, bs.WellState.initialize(model.wells, state), initial_assembly=True)
    assert not residual.has_non_finite()


def test_miscible_model_without_gas_or_solvent_has_finite_residuals(
    make_three_phase_model, solvent_props, oil_pvt
):
    props = bs.SolventProperties(
        reciprocal_fvf_table=solvent_props.reciprocal_fvf_table,
        viscosity_table=solvent_props.viscosity_table,
        surface_density=solvent_props.surface_density,
        miscibility_table=bs.Tabulated1D(x=[0.0, 1.0], y=[0.2, 0.9]),
        miscible_residual_oil_table=bs.Tabulated1D(x=[0.0, 1.0], y=[0.05, 0.05]),
        miscible_critical_gas_table=bs.Tabulated1D(x=[0.0, 1.0], y=[0.02, 0.02]),
        mixing_parameter_viscosity=0.6,
        mixing_parameter_density=0.4,
    )
    model = make_three_phase_model(solvent_properties=props, miscibility_model="todd_longstaff")
    pressure = np.array([2.05e7, 2.02e7, 1.98e7])
    state = bs.ReservoirState.initialize(
        model.phase_usage,
        pressure=pressure,
        saturations={bs.Phase.WATER: 0.25, bs.Phase.GAS: [0.0, 0.1, 0.0]},
        rs=[60.0, oil_pvt.rs_sat(pressure)[1], 70.0],
        solvent_saturation=[0.0, 0.05, 0.0],
    )
    model.prepare_step(DAY)
    residual = model.assemble(state, bs.WellState.initialize(model.wells, state), initial_assembly=True)
    assert not residual.has_non_finite()
    jacobian, r = residual.to_linear_system()
    assert np.all(np.isfinite(r))
    assert np.all(np.isfinite(jacobian.data))
    # Solvent is immobile where neither gas nor solvent is present
    mobility = bs.ad.value_of(model.quantities[bs.Phase.SOLVENT].mobility)
    np.testing.assert_array_equal(mobility[[0, 2]], 0.0)


def test_model_configuration_errors(line_grid, three_phase_pvt, water_oil_table, gas_oil_table, solvent_props, oil_water_pvt):
    pu = bs.PhaseUsage(water=True, oil=True, gas=True)
    functions = bs.SaturationFunctions(pu, water_oil=water_oil_table, gas_oil=gas_oil_table)
    with pytest.raises(bs.ConfigurationError):
        bs.BlackoilModel(
            bs.Config(has_solvent=True, has_vapoil=True),
            line_grid,
            three_phase_pvt,
            functions,
            solvent_props=solvent_props,
        )
    with pytest.raises(bs.ConfigurationError):
        bs.BlackoilModel(bs.Config(has_solvent=True), line_grid, three_phase_pvt, functions)
    with pytest.raises(bs.ConfigurationError):
        bs.BlackoilModel(bs.Config(miscibility_model="todd_longstaff"), line_grid, three_phase_pvt, functions)
    with pytest.raises(bs.ConfigurationError):
        bs.BlackoilModel(bs.Config(has_vapoil=True), line_grid, three_phase_pvt, functions)
    with pytest.raises(bs.ConfigurationError):
        bs.BlackoilModel(bs.Config(has_disgas=False), line_grid, oil_water_pvt, functions)
    with pytest.raises(bs.ConfigurationError):
        bs.BlackoilModel(
            bs.Config(),
            line_grid,
            bs.BlackoilPvt(water=three_phase_pvt.water, gas=three_phase_pvt.gas),
            functions,
        )


def test_assemble_requires_a_time_step(make_oil_water_model, oil_water_state):
    model = make_oil_water_model()
    with pytest.raises(bs.ComputationError):
        model.assemble(oil_water_state, bs.WellState.initialize(model.wells, oil_water_state), True)
    with pytest.raises(bs.ValidationError):
        model.prepare_step(0.0)


class CountingReduction:
    """Reduction over two identical domains that records its calls."""

    def __init__(self, num_cells: int) -> None:
        self.calls = 0
        self.num_cells = num_cells

    @property
    def global_num_cells(self) -> int:
        return 2 * self.num_cells

    def global_sum(self, values):
        self.calls += 1
        return 2.0 * np.asarray(values)


def test_equation_scaling_uses_one_global_reduction(make_three_phase_model, solvent_state):
    reduction = CountingReduction(3)
    assert isinstance(reduction, bs.GlobalReduction)
    model = make_three_phase_model(reduction=reduction)
    model.prepare_step(DAY)
    model.assemble(solvent_state, bs.WellState.initialize(model.wells, solvent_state), True)
    scaling = model.update_equations_scaling()
    assert reduction.calls == 1

    expected = [
        np.mean(1.0 / bs.value_of(model.quantities[phase].reciprocal_fvf))
        for phase in model.equation_phases
    ]
    np.testing.assert_allclose(scaling, expected)


def test_equation_scaling_requires_assembly(make_oil_water_model):
    model = make_oil_water_model()
    np.testing.assert_allclose(model.equation_scaling, [1.1169, 1.0031])
    with pytest.raises(bs.ComputationError):
        model.update_equations_scaling()


def test_scaled_linear_system(make_oil_water_model, oil_water_state):
    model = make_oil_water_model()
    model.prepare_step(DAY)
    residual = model.assemble(oil_water_state, bs.WellState.initialize(model.wells, oil_water_state), True)
    jac, r = residual.to_linear_system()
    scaled_jac, scaled_r = residual.to_linear_system([2.0, 3.0])
    np.testing.assert_allclose(scaled_r[:3], 2.0 * r[:3])
    np.testing.assert_allclose(scaled_r[3:6], 3.0 * r[3:6])
    np.testing.assert_allclose(scaled_r[6:], r[6:])
    np.testing.assert_allclose(scaled_jac.toarray()[3:6], 3.0 * jac.toarray()[3:6])
    with pytest.raises(bs.ValidationError):
        residual.to_linear_system([1.0])


def test_convergence_report(make_oil_water_model, oil_water_state):
    model = make_oil_water_model()
    model.prepare_step(DAY)
    with pytest.raises(bs.ComputationError):
        model.get_convergence(DAY, 0)
    model.assemble(oil_water_state, bs.WellState.initialize(model.wells, oil_water_state), True)
    report = model.get_convergence(DAY, 0)
    assert not report.failed
    assert not report.converged
    assert report.mass_balance.shape == (2,)
    assert report.cnv.shape == (2,)
    assert report.well_flux.shape == (2,)
    assert np.all(report.cnv >= report.mass_balance)


def test_convergence_fails_above_the_allowed_residual(make_oil_water_model, oil_water_state):
    model = make_oil_water_model(max_residual_allowed=1e-12)
    model.prepare_step(DAY)
    model.assemble(oil_water_state, bs.WellState.initialize(model.wells, oil_water_state), True)
    report = model.get_convergence(DAY, 0)
    assert report.failed
    assert not report.converged
    assert "allowed maximum" in report.message
