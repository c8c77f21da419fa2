__all__ = [
    "BlacksolvError",
    "ValidationError",
    "ConfigurationError",
    "ComputationError",
    "SolverError",
    "PreconditionerError",
    "SerializationError",
    "DeserializationError",
]


class BlacksolvError(Exception):
    """Base class for all blacksolv-related errors."""

    pass


class ValidationError(BlacksolvError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class ConfigurationError(ValidationError):
    """Raised when a phase or option combination is not supported by the model."""

    pass


class ComputationError(BlacksolvError):
    """Raised when there is an error during numerical computations."""

    pass


class SolverError(BlacksolvError):
    """Raised when a linear solver fails to produce a solution."""

    pass


class PreconditionerError(BlacksolvError):
    """Raised when there is an error related to preconditioners."""

    pass


class SerializationError(BlacksolvError):
    """Raised when a record cannot be serialized."""

    pass


class DeserializationError(BlacksolvError):
    """Raised when a record cannot be reconstructed from serialized data."""

    pass
