import numpy as np
import pytest

import blacksolv as bs
from blacksolv.ad import initialize_variables

MU_O = np.array([1.2e-3, 8.0e-4, 2.0e-3])
MU_G = np.array([2.0e-5, 1.8e-5, 2.5e-5])
MU_S = np.array([4.0e-5, 3.5e-5, 5.0e-5])
RHO_O = np.array([750.0, 760.0, 740.0])
RHO_G = np.array([150.0, 140.0, 160.0])
RHO_S = np.array([400.0, 380.0, 420.0])
SO = np.array([0.5, 0.3, 0.6])
SG = np.array([0.1, 0.2, 0.05])
SS = np.array([0.2, 0.1, 0.15])


def _todd_longstaff(omega_mu, omega_rho, mu_o=MU_O, mu_g=MU_G, mu_s=MU_S, so=SO, sg=SG, ss=SS):
    return bs.todd_longstaff(
        mu_o,
        mu_g,
        mu_s,
        RHO_O,
        RHO_G,
        RHO_S,
        so,
        sg,
        ss,
        mixing_parameter_viscosity=omega_mu,
        mixing_parameter_density=omega_rho,
    )


def test_zero_mixing_keeps_raw_properties_exactly():
    result = _todd_longstaff(0.0, 0.0)
    np.testing.assert_array_equal(result.oil_viscosity, MU_O)
    np.testing.assert_array_equal(result.gas_viscosity, MU_G)
    np.testing.assert_array_equal(result.solvent_viscosity, MU_S)
    np.testing.assert_array_equal(result.oil_density, RHO_O)
    np.testing.assert_array_equal(result.gas_density, RHO_G)
    np.testing.assert_array_equal(result.solvent_density, RHO_S)


def test_full_mixing_of_oil_and_solvent_gives_a_single_viscosity():
    result = _todd_longstaff(1.0, 1.0, sg=np.zeros(3))
    np.testing.assert_allclose(result.oil_viscosity, result.solvent_viscosity, rtol=1e-10)


def test_quarter_power_mixing_rule():
    mixed = bs.compute_mixed_viscosities(MU_O, MU_G, MU_S, SO, SG, SS)
    s = SO + SS
    expected = MU_O * MU_S / ((SO / s) * MU_S**0.25 + (SS / s) * MU_O**0.25) ** 4
    np.testing.assert_allclose(mixed.oil_solvent, expected, rtol=1e-12)
    # Mixed viscosity lies between the end members
    assert np.all(mixed.solvent_gas >= np.minimum(MU_G, MU_S))
    assert np.all(mixed.solvent_gas <= np.maximum(MU_G, MU_S))


def test_mixed_viscosities_fall_back_without_saturation():
    zeros = np.zeros(3)
    mixed = bs.compute_mixed_viscosities(MU_O, MU_G, MU_S, zeros, zeros, zeros)
    np.testing.assert_array_equal(mixed.oil_solvent, MU_O)
    np.testing.assert_array_equal(mixed.solvent_gas, MU_G)
    np.testing.assert_array_equal(mixed.ternary, MU_S)


def test_partial_mixing_interpolates_geometrically():
    omega = 0.4
    mixed = bs.compute_mixed_viscosities(MU_O, MU_G, MU_S, SO, SG, SS)
    mu_oe, mu_ge, mu_se = bs.compute_todd_longstaff_effective_viscosities(
        MU_O, MU_G, MU_S, mixed, mixing_parameter=omega
    )
    np.testing.assert_allclose(mu_oe, MU_O ** (1 - omega) * mixed.oil_solvent**omega)
    np.testing.assert_allclose(mu_ge, MU_G ** (1 - omega) * mixed.solvent_gas**omega)
    np.testing.assert_allclose(mu_se, MU_S ** (1 - omega) * mixed.ternary**omega)


def test_degenerate_gas_solvent_viscosity_uses_bulk_mixture_density():
    omega = 0.6
    result = _todd_longstaff(0.5, omega, mu_s=MU_G.copy())
    rho_m = (RHO_O * SO + RHO_G * SG + RHO_S * SS) / (SO + SG + SS)
    np.testing.assert_allclose(result.gas_density, (1 - omega) * RHO_G + omega * rho_m)
    np.testing.assert_allclose(result.solvent_density, (1 - omega) * RHO_S + omega * rho_m)
    assert np.all(np.isfinite(result.oil_density))


def test_degenerate_oil_solvent_viscosity_uses_bulk_mixture_density():
    omega = 0.3
    result = _todd_longstaff(0.5, omega, mu_s=MU_O.copy())
    rho_m = (RHO_O * SO + RHO_G * SG + RHO_S * SS) / (SO + SG + SS)
    np.testing.assert_allclose(result.oil_density, (1 - omega) * RHO_O + omega * rho_m)
    np.testing.assert_allclose(result.solvent_density, (1 - omega) * RHO_S + omega * rho_m)


def test_mixing_parameters_are_validated():
    mixed = bs.compute_mixed_viscosities(MU_O, MU_G, MU_S, SO, SG, SS)
    with pytest.raises(bs.ValidationError):
        bs.compute_todd_longstaff_effective_viscosities(MU_O, MU_G, MU_S, mixed, mixing_parameter=-0.1)
    with pytest.raises(bs.ValidationError):
        _todd_longstaff(0.5, 1.2)


def test_todd_longstaff_derivatives_are_finite_without_hydrocarbon():
    so, sg, ss = initialize_variables([np.array([0.0, 0.4]), np.array([0.0, 0.1]), np.array([0.0, 0.2])])
    result = bs.todd_longstaff(
        MU_O[:2], MU_G[:2], MU_S[:2], RHO_O[:2], RHO_G[:2], RHO_S[:2],
        so, sg, ss,
        mixing_parameter_viscosity=0.7,
        mixing_parameter_density=0.7,
    )
    for value in (
        result.oil_viscosity,
        result.gas_viscosity,
        result.solvent_viscosity,
        result.oil_density,
        result.gas_density,
        result.solvent_density,
    ):
        assert np.all(np.isfinite(value.val))
        assert np.all(np.isfinite(value.jacobian().toarray()))
    np.testing.assert_allclose(result.oil_viscosity.val[0], MU_O[0])
    np.testing.assert_allclose(result.gas_viscosity.val[0], MU_G[0])


def test_solvent_fraction_is_zero_without_gas_or_solvent():
    ss, sg = initialize_variables([np.array([0.0, 0.3]), np.array([0.0, 0.1])])
    fraction = bs.compute_solvent_fraction(ss, sg)
    np.testing.assert_allclose(fraction.val, [0.0, 0.75])
    jac = fraction.jacobian().toarray()
    np.testing.assert_array_equal(jac[0], 0.0)
    np.testing.assert_allclose(jac[1], [0.0, 0.1 / 0.16, 0.0, -0.3 / 0.16])


def _assemble_miscible(make_three_phase_model, solvent_props, state, omega_mu, omega_rho):
    props = bs.SolventProperties(
        reciprocal_fvf_table=solvent_props.reciprocal_fvf_table,
        viscosity_table=solvent_props.viscosity_table,
        surface_density=solvent_props.surface_density,
        mixing_parameter_viscosity=omega_mu,
        mixing_parameter_density=omega_rho,
    )
    model = make_three_phase_model(
        wells=False, solvent_properties=props, miscibility_model="todd_longstaff"
    )
    model.prepare_step(86400.0)
    model.assemble(state, bs.WellState.initialize(model.wells, state), initial_assembly=True)
    return model


@pytest.fixture
def oil_solvent_state(oil_pvt) -> bs.ReservoirState:
    pu = bs.PhaseUsage(water=True, oil=True, gas=True, solvent=True)
    pressure = np.array([2.05e7, 2.02e7, 1.98e7])
    return bs.ReservoirState.initialize(
        pu,
        pressure=pressure,
        saturations={bs.Phase.WATER: 0.2, bs.Phase.GAS: 0.0},
        rs=0.8 * oil_pvt.rs_sat(pressure),
        solvent_saturation=[0.3, 0.2, 0.1],
    )


@pytest.mark.parametrize("omega_mu, omega_rho", [(1.0, 0.0), (1.0, 1.0), (0.4, 0.7)])
def test_model_flux_uses_todd_longstaff_properties(
    make_three_phase_model, solvent_props, oil_solvent_state, omega_mu, omega_rho
):
    value_of = bs.ad.value_of
    unmixed = _assemble_miscible(make_three_phase_model, solvent_props, oil_solvent_state, 0.0, 0.0)
    mixed = _assemble_miscible(
        make_three_phase_model, solvent_props, oil_solvent_state, omega_mu, omega_rho
    )
    raw = {
        phase: unmixed.quantities[phase]
        for phase in (bs.Phase.OIL, bs.Phase.GAS, bs.Phase.SOLVENT)
    }

    # Without mixing the evaluator hands out the plain PVT viscosity
    state = oil_solvent_state
    np.testing.assert_allclose(
        value_of(raw[bs.Phase.OIL].viscosity),
        value_of(
            unmixed.properties.raw_viscosity(
                bs.Phase.OIL,
                state.pressure,
                state.temperature,
                state.rs,
                state.rv,
                unmixed.phase_condition,
            )
        ),
        rtol=1e-12,
    )

    pu = mixed.phase_usage
    expected = bs.todd_longstaff(
        *(value_of(raw[phase].viscosity) for phase in (bs.Phase.OIL, bs.Phase.GAS, bs.Phase.SOLVENT)),
        *(value_of(raw[phase].density) for phase in (bs.Phase.OIL, bs.Phase.GAS, bs.Phase.SOLVENT)),
        state.saturation[:, pu.position(bs.Phase.OIL)],
        state.saturation[:, pu.position(bs.Phase.GAS)],
        state.solvent_saturation,
        mixing_parameter_viscosity=omega_mu,
        mixing_parameter_density=omega_rho,
    )
    oil = mixed.quantities[bs.Phase.OIL]
    solvent = mixed.quantities[bs.Phase.SOLVENT]
    np.testing.assert_allclose(value_of(oil.viscosity), expected.oil_viscosity, rtol=1e-10)
    np.testing.assert_allclose(value_of(oil.density), expected.oil_density, rtol=1e-10)
    np.testing.assert_allclose(value_of(solvent.viscosity), expected.solvent_viscosity, rtol=1e-10)
    np.testing.assert_allclose(value_of(solvent.density), expected.solvent_density, rtol=1e-10)
    if omega_mu == 1.0:
        # Fully mixed oil and solvent move with one viscosity
        np.testing.assert_allclose(value_of(oil.viscosity), value_of(solvent.viscosity), rtol=1e-10)
        assert np.all(value_of(oil.viscosity) < value_of(raw[bs.Phase.OIL].viscosity))

    # On a horizontal grid the oil flux scales with b / mu of the upwind cell
    first, second = mixed.grid.neighbours[:, 0], mixed.grid.neighbours[:, 1]
    upwind = np.where(state.pressure[first] > state.pressure[second], first, second)
    ratio = (expected.oil_density / value_of(raw[bs.Phase.OIL].density)) * (
        value_of(raw[bs.Phase.OIL].viscosity) / expected.oil_viscosity
    )
    np.testing.assert_allclose(
        value_of(oil.flux) / value_of(raw[bs.Phase.OIL].flux), ratio[upwind], rtol=1e-10
    )
