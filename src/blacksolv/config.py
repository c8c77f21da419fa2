import typing

import attrs

from blacksolv.constants import Constants
from blacksolv.types import LinearSolverName, MiscibilityModel, PreconditionerName

__all__ = ["Config"]


@attrs.frozen
class Config:
    """Nonlinear solver configuration and physics options."""

    max_iterations: int = attrs.field(
        default=10,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(100)
        ),
    )
    """Maximum number of Newton iterations per time step."""
    tolerance_mb: float = attrs.field(
        default=1e-7, validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.le(1e-2))
    )
    """Tolerance on the total mass balance error of each equation, scaled by pore volume and time step."""
    tolerance_cnv: float = attrs.field(
        default=1e-2, validator=attrs.validators.gt(0)
    )
    """Tolerance on the maximum local (cell-wise) saturation-scaled residual."""
    tolerance_wells: float = attrs.field(
        default=1e-3, validator=attrs.validators.gt(0)
    )
    """Tolerance on the well flux and control equations."""
    max_residual_allowed: float = attrs.field(
        default=1e7, validator=attrs.validators.gt(0)
    )
    """Any residual above this value marks the Newton step as failed."""
    dp_max_rel: float = attrs.field(default=1.0, validator=attrs.validators.gt(0))
    """Maximum relative pressure change per Newton update."""
    ds_max: float = attrs.field(
        default=0.2,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.le(1)),
    )
    """Maximum saturation change per Newton update."""
    dr_max_rel: float = attrs.field(default=1e9, validator=attrs.validators.gt(0))
    """Maximum relative change of rs/rv per Newton update."""
    dbhp_max_rel: float = attrs.field(default=1.0, validator=attrs.validators.gt(0))
    """Maximum relative bottom-hole pressure change per Newton update."""
    has_disgas: bool = True
    """Whether gas can dissolve in oil (live oil)."""
    has_vapoil: bool = False
    """Whether oil can vaporize into gas (wet gas)."""
    has_solvent: bool = False
    """Whether the solvent pseudo-phase is modelled."""
    miscibility_model: MiscibilityModel = attrs.field(
        default="immiscible",
        validator=attrs.validators.in_(("immiscible", "todd_longstaff")),
    )
    """Miscibility model: 'immiscible', 'todd_longstaff'"""
    update_equations_scaling: bool = False
    """
    Whether equation scaling factors are recomputed from the reciprocal formation
    volume factors at the start of each time step.

    When disabled, the default scales from `Constants` are used.
    """
    linear_solver: LinearSolverName = attrs.field(
        default="direct",
        validator=attrs.validators.in_(("direct", "bicgstab", "gmres", "lgmres")),
    )
    """Linear solver used for the Newton system."""
    preconditioner: typing.Optional[PreconditionerName] = attrs.field(
        default="ilu",
        validator=attrs.validators.optional(
            attrs.validators.in_(("ilu", "amg", "diagonal"))
        ),
    )
    """Preconditioner for iterative linear solvers. Ignored by the direct solver."""
    linear_tolerance: float = attrs.field(default=1e-8, validator=attrs.validators.gt(0))
    """Relative tolerance of iterative linear solvers."""
    linear_max_iterations: int = attrs.field(default=500, validator=attrs.validators.ge(1))
    """Maximum number of iterations of iterative linear solvers."""
    constants: Constants = attrs.field(factory=Constants)
    """Physical constants and solver defaults used by the model."""

    @property
    def is_miscible(self) -> bool:
        return self.miscibility_model == "todd_longstaff"
