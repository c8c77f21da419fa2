"""Linear solvers and preconditioners for the Newton system."""

import logging
import typing

import numpy as np
import pyamg  # type: ignore[import-untyped]
from scipy.sparse import csr_matrix, diags
from scipy.sparse.linalg import LinearOperator, bicgstab, gmres, lgmres, spilu, spsolve

from blacksolv._precision import get_floating_point_info
from blacksolv.config import Config
from blacksolv.errors import PreconditionerError, SolverError, ValidationError
from blacksolv.types import LinearSolverName, PreconditionerName

logger = logging.getLogger(__name__)

__all__ = [
    "build_amg_preconditioner",
    "build_diagonal_preconditioner",
    "build_ilu_preconditioner",
    "get_preconditioner",
    "solve_linear_system",
    "LinearSolver",
]


def build_amg_preconditioner(A_csr: csr_matrix, cycle: str = "V", **kwargs: typing.Any) -> LinearOperator:
    """
    Creates an Algebraic Multigrid (AMG) preconditioner using PyAMG.

    :param A_csr: The coefficient matrix in CSR format.
    :param cycle: Multigrid cycle type ('V', 'W', 'F').
    :param kwargs: Additional arguments for `pyamg.smoothed_aggregation_solver`.
    :return: A SciPy `LinearOperator` that represents the AMG preconditioner.
    """
    ml_solver = pyamg.smoothed_aggregation_solver(A_csr, **kwargs)
    return ml_solver.aspreconditioner(cycle=cycle)


def build_diagonal_preconditioner(A_csr: csr_matrix) -> LinearOperator:
    """
    Creates a diagonal (Jacobi) preconditioner from the coefficient matrix.

    Near-zero diagonal entries are replaced by one.
    """
    diag_elements = A_csr.diagonal()
    threshold = max(1e-10, 100 * get_floating_point_info().eps)
    diag_elements = np.where(np.abs(diag_elements) < threshold, 1.0, diag_elements)
    M_diag = diags(1.0 / diag_elements, format="csr")
    return LinearOperator(shape=A_csr.shape, matvec=M_diag.dot)  # type: ignore[arg-type]


def build_ilu_preconditioner(A_csr: csr_matrix, **kwargs: typing.Any) -> LinearOperator:
    """
    Creates an Incomplete LU (ILU) preconditioner using `spilu`.

    :param A_csr: The coefficient matrix. It is converted to CSC for `spilu`.
    :return: A SciPy `LinearOperator` applying the ILU solve.
    """
    A_csc = A_csr.tocsc()
    kwargs.setdefault("drop_tol", 1e-5)
    kwargs.setdefault("fill_factor", 10)
    ilu_factor = spilu(A_csc, **kwargs)
    return LinearOperator(shape=A_csc.shape, matvec=ilu_factor.solve)  # type: ignore[arg-type]


_PRECONDITIONERS: typing.Dict[str, typing.Callable[[csr_matrix], LinearOperator]] = {
    "amg": build_amg_preconditioner,
    "diagonal": build_diagonal_preconditioner,
    "ilu": build_ilu_preconditioner,
}

_ITERATIVE_SOLVERS = {
    "bicgstab": bicgstab,
    "gmres": gmres,
    "lgmres": lgmres,
}


def get_preconditioner(
    A_csr: csr_matrix, preconditioner: typing.Optional[PreconditionerName]
) -> typing.Optional[LinearOperator]:
    """
    Build the named preconditioner for `A_csr`.

    :raises PreconditionerError: If the name is unknown or the construction fails.
    """
    if preconditioner is None:
        return None
    try:
        factory = _PRECONDITIONERS[preconditioner]
    except KeyError:
        raise PreconditionerError(f"Unknown preconditioner {preconditioner!r}") from None
    try:
        return factory(A_csr)
    except (RuntimeError, ValueError, ArithmeticError) as exc:
        raise PreconditionerError(f"Error building {preconditioner} preconditioner: {exc}") from exc


def solve_linear_system(
    A_csr: csr_matrix,
    b: np.ndarray,
    solver: LinearSolverName = "direct",
    preconditioner: typing.Optional[PreconditionerName] = "ilu",
    rtol: float = 1e-8,
    max_iterations: int = 500,
) -> typing.Tuple[np.ndarray, int]:
    """
    Solve A·x = b with a direct or preconditioned iterative solver.

    :param A_csr: Coefficient matrix in CSR format.
    :param b: Right-hand side vector.
    :param solver: "direct", "bicgstab", "gmres" or "lgmres".
    :param preconditioner: "ilu", "amg", "diagonal" or None. Ignored by the direct solver.
    :param rtol: Relative tolerance of iterative solvers.
    :param max_iterations: Maximum number of iterations of iterative solvers.
    :return: A tuple (x, iterations). The direct solver reports one iteration.
    :raises SolverError: If the system cannot be solved.
    :raises PreconditionerError: If the preconditioner cannot be built.
    """
    if A_csr.shape[0] != A_csr.shape[1] or A_csr.shape[0] != b.size:
        raise ValidationError(
            f"Linear system shapes do not match: A is {A_csr.shape}, b has {b.size} entries"
        )

    if solver == "direct":
        x = spsolve(A_csr.tocsc(), b)
        if not np.all(np.isfinite(x)):
            raise SolverError("Direct solver produced a non-finite solution (singular Jacobian?)")
        return np.ascontiguousarray(x), 1

    try:
        solver_func = _ITERATIVE_SOLVERS[solver]
    except KeyError:
        raise SolverError(f"Unknown linear solver {solver!r}") from None

    M = get_preconditioner(A_csr, preconditioner)
    iterations = 0

    def count(_) -> None:
        nonlocal iterations
        iterations += 1

    options: typing.Dict[str, typing.Any] = {}
    if solver == "gmres":
        options["callback_type"] = "pr_norm"
    atol = float(max(1e-12, rtol * 1e-3 * np.linalg.norm(b)))
    x, info = solver_func(
        A_csr, b, M=M, rtol=rtol, atol=atol, maxiter=max_iterations, callback=count, **options
    )
    if info != 0:
        raise SolverError(
            f"Solver {solver} failed to converge within {max_iterations} iterations. Info: {info}"
        )
    # Exact preconditioners can converge before the first callback
    return np.ascontiguousarray(x), max(iterations, 1)


class LinearSolver:
    """Newton system solver configured from a `Config`."""

    def __init__(
        self,
        solver: LinearSolverName = "direct",
        preconditioner: typing.Optional[PreconditionerName] = "ilu",
        rtol: float = 1e-8,
        max_iterations: int = 500,
    ) -> None:
        self.solver = solver
        self.preconditioner = preconditioner
        self.rtol = rtol
        self.max_iterations = max_iterations
        self.iterations = 0

    @classmethod
    def from_config(cls, config: Config) -> "LinearSolver":
        return cls(
            solver=config.linear_solver,
            preconditioner=config.preconditioner,
            rtol=config.linear_tolerance,
            max_iterations=config.linear_max_iterations,
        )

    def solve(self, jacobian: csr_matrix, residual: np.ndarray) -> np.ndarray:
        """
        Solve `jacobian · dx = residual`.

        The iteration count of the last solve is kept in `iterations`.
        """
        dx, self.iterations = solve_linear_system(
            jacobian,
            residual,
            solver=self.solver,
            preconditioner=self.preconditioner,
            rtol=self.rtol,
            max_iterations=self.max_iterations,
        )
        logger.debug(f"Linear solve ({self.solver}) finished in {self.iterations} iterations")
        return dx
