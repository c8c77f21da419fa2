"""Newton driver for one time step of a `BlackoilModel`."""

import logging
import time
import typing

import attrs

from blacksolv.assembler import BlackoilModel, ConvergenceReport
from blacksolv.errors import PreconditionerError, SolverError
from blacksolv.linear import LinearSolver
from blacksolv.states import ReservoirState, WellState
from blacksolv.updates import update_state

logger = logging.getLogger(__name__)

__all__ = ["SimulatorReport", "NonlinearSolver"]


@attrs.frozen
class SimulatorReport:
    """Outcome of one nonlinear time step."""

    converged: bool
    """Whether the Newton iteration converged."""
    newton_iterations: int
    """Number of Newton updates applied."""
    linear_iterations: int
    """Total number of linear solver iterations."""
    assemble_time: float = 0.0
    """Wall time spent assembling residuals (s)."""
    linear_solve_time: float = 0.0
    """Wall time spent in the linear solver (s)."""
    update_time: float = 0.0
    """Wall time spent updating the state (s)."""
    total_time: float = 0.0
    """Wall time of the whole step (s)."""
    message: typing.Optional[str] = None
    """Reason of a failure, if any."""
    convergence: typing.Optional[ConvergenceReport] = None
    """Last convergence check of the step."""

    @property
    def failed(self) -> bool:
        return not self.converged


class NonlinearSolver:
    """
    Runs Newton iterations on a model until convergence.

    The states passed to `step` are updated in place. The solver never
    retries: on failure the caller decides whether to restore its copies and
    cut the time step.
    """

    def __init__(self, model: BlackoilModel, linear_solver: typing.Optional[LinearSolver] = None) -> None:
        self.model = model
        self.linear_solver = linear_solver or LinearSolver.from_config(model.config)

    def step(self, dt: float, reservoir_state: ReservoirState, well_state: WellState) -> SimulatorReport:
        """
        Advance the states by one time step of size `dt`.

        :param dt: Time step size (s).
        :param reservoir_state: Reservoir state at the start of the step, updated in place.
        :param well_state: Well state at the start of the step, updated in place.
        :return: `SimulatorReport`
        """
        model = self.model
        config = model.config
        start = time.perf_counter()
        timings = {"assemble": 0.0, "linear": 0.0, "update": 0.0}
        linear_iterations = 0
        model.prepare_step(dt)

        def report(converged: bool, iterations: int, convergence=None, message=None) -> SimulatorReport:
            result = SimulatorReport(
                converged=converged,
                newton_iterations=iterations,
                linear_iterations=linear_iterations,
                assemble_time=timings["assemble"],
                linear_solve_time=timings["linear"],
                update_time=timings["update"],
                total_time=time.perf_counter() - start,
                message=message,
                convergence=convergence,
            )
            if converged:
                logger.info(
                    f"Time step of {dt:g} s converged in {iterations} Newton iterations "
                    f"({linear_iterations} linear iterations)"
                )
            else:
                logger.warning(f"Time step of {dt:g} s failed: {message}")
            return result

        tic = time.perf_counter()
        residual = model.assemble(reservoir_state, well_state, initial_assembly=True)
        timings["assemble"] += time.perf_counter() - tic
        if config.update_equations_scaling:
            model.update_equations_scaling()

        iteration = 0
        while True:
            if residual.has_non_finite():
                return report(False, iteration, message="Assembled residual contains non-finite values")
            convergence = model.get_convergence(dt, iteration)
            if convergence.converged:
                model.update_perforation_state(well_state)
                return report(True, iteration, convergence)
            if convergence.failed:
                return report(False, iteration, convergence, convergence.message)
            if iteration >= config.max_iterations:
                return report(
                    False,
                    iteration,
                    convergence,
                    f"No convergence within {config.max_iterations} Newton iterations",
                )

            jacobian, r = residual.to_linear_system(model.equation_scaling)
            tic = time.perf_counter()
            try:
                dx = self.linear_solver.solve(jacobian, r)
            except (SolverError, PreconditionerError) as exc:
                timings["linear"] += time.perf_counter() - tic
                return report(False, iteration, convergence, f"Linear solver failed: {exc}")
            timings["linear"] += time.perf_counter() - tic
            linear_iterations += self.linear_solver.iterations

            tic = time.perf_counter()
            update_state(model, dx, reservoir_state, well_state)
            timings["update"] += time.perf_counter() - tic
            iteration += 1

            tic = time.perf_counter()
            residual = model.assemble(reservoir_state, well_state, initial_assembly=False)
            timings["assemble"] += time.perf_counter() - tic
