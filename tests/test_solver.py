import numpy as np
import pytest
import scipy.sparse as sps

import blacksolv as bs


def _poisson(n: int = 30) -> sps.csr_matrix:
    return sps.diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1], format="csr")


@pytest.mark.parametrize(
    "solver, preconditioner",
    [
        ("direct", None),
        ("bicgstab", "ilu"),
        ("gmres", "diagonal"),
        ("lgmres", "amg"),
    ],
)
def test_solve_linear_system(solver, preconditioner):
    A = _poisson()
    x_true = np.linspace(1.0, 2.0, A.shape[0])
    x, iterations = bs.solve_linear_system(
        A, A @ x_true, solver=solver, preconditioner=preconditioner, rtol=1e-10, max_iterations=200
    )
    np.testing.assert_allclose(x, x_true, rtol=1e-6)
    assert iterations >= 1


def test_linear_system_errors():
    A = _poisson(4)
    with pytest.raises(bs.ValidationError):
        bs.solve_linear_system(A, np.ones(3))
    with pytest.raises(bs.PreconditionerError):
        bs.get_preconditioner(A, "jacobi-ish")
    assert bs.get_preconditioner(A, None) is None


@pytest.mark.filterwarnings("ignore:Matrix is exactly singular")
def test_singular_direct_solve_raises():
    A = sps.csr_matrix(np.array([[1.0, 1.0], [1.0, 1.0]]))
    with pytest.raises(bs.SolverError):
        bs.solve_linear_system(A, np.array([1.0, 2.0]))


def test_linear_solver_from_config():
    config = bs.Config(linear_solver="gmres", preconditioner="diagonal", linear_tolerance=1e-9)
    solver = bs.LinearSolver.from_config(config)
    assert solver.solver == "gmres"
    assert solver.preconditioner == "diagonal"
    assert solver.rtol == 1e-9
    A = _poisson(10)
    dx = solver.solve(A, A @ np.ones(10))
    np.testing.assert_allclose(dx, np.ones(10), rtol=1e-6)
    assert solver.iterations >= 1


def test_oil_water_time_step_converges(make_oil_water_model):
    model = make_oil_water_model(max_iterations=20)
    pu = model.phase_usage
    state = bs.ReservoirState.initialize(
        pu, pressure=np.full(3, 2.05e7), saturations={bs.Phase.WATER: [0.3, 0.3, 0.3]}
    )
    well_state = bs.WellState.initialize(model.wells, state)

    report = bs.NonlinearSolver(model).step(86400.0, state, well_state)

    assert report.converged, report.message
    assert not report.failed
    assert 1 <= report.newton_iterations <= 20
    assert report.linear_iterations == report.newton_iterations
    assert report.total_time >= report.assemble_time
    assert report.convergence is not None and report.convergence.converged
    np.testing.assert_allclose(state.saturation.sum(axis=1), 1.0)
    # Injector (first well) takes water, the producer gives both phases
    assert well_state.well_rates[0, pu.position(bs.Phase.WATER)] > 0.0
    assert np.all(well_state.well_rates[1] < 0.0)
    # Water was injected into the first cell
    assert state.saturation[0, 0] > 0.3
    assert state.pressure[0] > state.pressure[2]
    # Converged perforation pressures are handed to the next step
    np.testing.assert_allclose(
        well_state.perf_press,
        model.wells.w2p @ well_state.bhp + model.connection_pressures.pressure_diffs,
    )


def test_solvent_time_step_converges(make_three_phase_model, solvent_state):
    model = make_three_phase_model(max_iterations=20)
    well_state = bs.WellState.initialize(model.wells, solvent_state)

    report = bs.NonlinearSolver(model).step(3600.0, solvent_state, well_state)

    assert report.converged, report.message
    totals = solvent_state.saturation.sum(axis=1) + solvent_state.solvent_saturation
    np.testing.assert_allclose(totals, 1.0)
    assert np.all(solvent_state.solvent_saturation >= 0.0)
    gas = model.phase_usage.position(bs.Phase.GAS)
    assert well_state.well_rates[0, gas] > 0.0
    np.testing.assert_allclose(well_state.well_rates[0, :gas], 0.0, atol=1e-12)
    assert np.all(well_state.well_rates[1] < 0.0)

    fields = bs.build_output_fields(model, solvent_state, well_state)
    for name in ("solvent_saturation", "solvent_viscosity", "well_bhp", "perforation_density"):
        assert np.all(np.isfinite(fields[name]))


def test_time_step_reports_missing_convergence(make_oil_water_model):
    model = make_oil_water_model(max_iterations=1, tolerance_mb=1e-15, tolerance_cnv=1e-15)
    state = bs.ReservoirState.initialize(
        model.phase_usage, pressure=np.full(3, 2.05e7), saturations={bs.Phase.WATER: 0.3}
    )
    well_state = bs.WellState.initialize(model.wells, state)

    report = bs.NonlinearSolver(model).step(86400.0, state, well_state)

    assert report.failed
    assert report.newton_iterations == 1
    assert "No convergence" in report.message


def test_time_step_fails_on_huge_residual(make_oil_water_model, oil_water_state):
    model = make_oil_water_model(max_residual_allowed=1e-12)
    well_state = bs.WellState.initialize(model.wells, oil_water_state)
    pressure = oil_water_state.pressure.copy()

    report = bs.NonlinearSolver(model).step(86400.0, oil_water_state, well_state)

    assert report.failed
    assert report.newton_iterations == 0
    assert "allowed maximum" in report.message
    # Nothing was updated
    np.testing.assert_array_equal(oil_water_state.pressure, pressure)


def test_exact_preconditioner_counts_one_iteration():
    A = sps.diags(np.linspace(1.0, 4.0, 8), format="csr")
    b = np.arange(1.0, 9.0)
    x, iterations = bs.solve_linear_system(A, b, solver="bicgstab", preconditioner="diagonal")
    np.testing.assert_allclose(x, b / A.diagonal())
    assert 1 <= iterations <= 2
