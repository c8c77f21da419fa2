"""
Physical constants and solver defaults.

Each model reads its constants from `Config.constants`. Code without a model
at hand (restart handling, for instance) reads them through the module level
proxy `c`, which resolves to the `Constants` active in the current context.
"""

from contextvars import ContextVar
import typing

import attrs

__all__ = ["Constant", "Constants", "c", "ConstantsContext", "get_constant"]


@attrs.frozen(slots=True)
class Constant:
    """A named value, with the unit it is expressed in."""

    value: typing.Any
    """The value itself."""
    description: typing.Optional[str] = None
    """What the value is used for."""
    unit: typing.Optional[str] = None
    """SI unit of the value, None when dimensionless."""

    def __str__(self) -> str:
        if self.unit:
            return f"{self.value} {self.unit}"
        return str(self.value)


_DEFAULTS: typing.Tuple[typing.Tuple[str, Constant], ...] = (
    ("ACCELERATION_DUE_TO_GRAVITY", Constant(9.80665, "Standard gravity", "m/s²")),
    # Mean surface-to-reservoir volume ratios, used until the scaling is updated
    ("WATER_EQUATION_SCALE", Constant(1.1169, "Default scale of the water mass balance")),
    ("OIL_EQUATION_SCALE", Constant(1.0031, "Default scale of the oil mass balance")),
    ("GAS_EQUATION_SCALE", Constant(0.0031, "Default scale of the gas and solvent mass balances")),
    ("DEFAULT_SUGGESTED_STEP", Constant(-1.0, "Next step size when a restart records none", "s")),
    ("RESTART_EXTRA_KEY", Constant("EXTRA", "Name of the restart array with solver extra data")),
    ("MINIMUM_PRESSURE", Constant(1e3, "Floor of updated cell and bottom-hole pressures", "Pa")),
    (
        "PHASE_SWITCH_SATURATION",
        Constant(1e-6, "Gas saturation given to a cell where gas reappears"),
    ),
)


class Constants:
    """
    Set of named constants.

    `constants.NAME` gives the value, `constants["NAME"]` the `Constant`.
    Keyword arguments override defaults or add new entries:

        Constants(MINIMUM_PRESSURE=1e4)
    """

    __slots__ = ("_values",)

    def __init__(self, **overrides: typing.Any) -> None:
        values: typing.Dict[str, Constant] = dict(_DEFAULTS)
        for name, value in overrides.items():
            values[name] = value if isinstance(value, Constant) else Constant(value)
        object.__setattr__(self, "_values", values)

    def __getattr__(self, name: str) -> typing.Any:
        values = object.__getattribute__(self, "_values")
        if name in values:
            return values[name].value
        raise AttributeError(f"No constant named {name!r}")

    def __setattr__(self, name: str, value: typing.Any) -> None:
        raise AttributeError("Constants are read-only, build a new set with overrides instead")

    def __getitem__(self, name: str) -> Constant:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> typing.Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        overridden = [
            name for name, default in _DEFAULTS if self._values[name] is not default
        ]
        return f"Constants(overridden={overridden})"

    def __call__(self) -> "ConstantsContext":
        """Context manager making this set the one behind `c`."""
        return ConstantsContext(self)


_active_constants: ContextVar[Constants] = ContextVar("_active_constants", default=Constants())


class ConstantsContext:
    """Makes a `Constants` set current for `c` until the `with` block exits."""

    def __init__(self, constants: Constants) -> None:
        self.constants = constants
        self._token = None

    def __enter__(self) -> Constants:
        self._token = _active_constants.set(self.constants)
        return self.constants

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self._token is not None:
            _active_constants.reset(self._token)
            self._token = None


class _CurrentConstants:
    def __getattr__(self, name: str) -> typing.Any:
        return getattr(_active_constants.get(), name)

    def __getitem__(self, name: str) -> Constant:
        return _active_constants.get()[name]


c = _CurrentConstants()
"""Constants of the current context."""


def get_constant(name: str) -> typing.Optional[Constant]:
    """The `Constant` called `name` in the current context, or None."""
    constants = _active_constants.get()
    return constants[name] if name in constants else None
