import typing

import attrs
import numpy as np

from blacksolv.errors import ConfigurationError
from blacksolv.types import HydrocarbonState, Phase, PhasePresence

__all__ = ["PhaseUsage", "phase_presence_from_state"]


@attrs.frozen
class PhaseUsage:
    """
    Active phases of a model and their positions in equations and variables.

    Real phases are numbered in canonical order (water, oil, gas) among the
    active ones. The solvent pseudo-phase, when present, always takes the
    position right after the last real phase.
    """

    water: bool = True
    """Whether the water phase is active."""
    oil: bool = True
    """Whether the oil phase is active."""
    gas: bool = True
    """Whether the gas phase is active."""
    solvent: bool = False
    """Whether the solvent pseudo-phase is active."""

    def __attrs_post_init__(self) -> None:
        if not (self.water or self.oil or self.gas):
            raise ConfigurationError("At least one real phase must be active.")

    @property
    def active_phases(self) -> typing.Tuple[Phase, ...]:
        """Active real phases in canonical order."""
        return tuple(
            phase
            for phase, active in (
                (Phase.WATER, self.water),
                (Phase.OIL, self.oil),
                (Phase.GAS, self.gas),
            )
            if active
        )

    @property
    def num_phases(self) -> int:
        """Number of active real phases, excluding solvent."""
        return len(self.active_phases)

    @property
    def num_equations(self) -> int:
        return self.num_phases + int(self.solvent)

    @property
    def solvent_pos(self) -> int:
        if not self.solvent:
            raise ConfigurationError("Solvent is not active in this model.")
        return self.num_phases

    def is_active(self, phase: Phase) -> bool:
        if phase == Phase.SOLVENT:
            return self.solvent
        return phase in self.active_phases

    def position(self, phase: Phase) -> int:
        """
        Position of `phase` among the equations of the model.

        :raises ConfigurationError: If the phase is unknown or not active.
        """
        try:
            phase = Phase(phase)
        except ValueError:
            raise ConfigurationError(f"Unknown phase index {phase!r}.") from None
        if phase == Phase.SOLVENT:
            return self.solvent_pos
        try:
            return self.active_phases.index(phase)
        except ValueError:
            raise ConfigurationError(f"Phase {phase.name} is not active.") from None

    @property
    def equation_names(self) -> typing.Tuple[str, ...]:
        names = [phase.name.capitalize() for phase in self.active_phases]
        if self.solvent:
            names.append("Solvent")
        return tuple(names)


def phase_presence_from_state(
    hydrocarbon_state: np.typing.NDArray[np.integer], phase_usage: PhaseUsage
) -> np.typing.NDArray[np.integer]:
    """
    Derive per-cell phase presence flags from the hydrocarbon primary-variable state.

    :param hydrocarbon_state: `HydrocarbonState` value per cell.
    :param phase_usage: Active phases of the model.
    :return: `PhasePresence` bit flags per cell.
    """
    hydrocarbon_state = np.asarray(hydrocarbon_state)
    flags = np.zeros(hydrocarbon_state.shape, dtype=np.int64)
    if phase_usage.water:
        flags |= int(PhasePresence.FREE_WATER)
    if phase_usage.oil:
        has_oil = hydrocarbon_state != HydrocarbonState.GAS_ONLY
        if not phase_usage.gas:
            has_oil = np.ones_like(has_oil)
        flags[has_oil] |= int(PhasePresence.FREE_OIL)
    if phase_usage.gas:
        has_gas = hydrocarbon_state != HydrocarbonState.OIL_ONLY
        if not phase_usage.oil:
            has_gas = np.ones_like(has_gas)
        flags[has_gas] |= int(PhasePresence.FREE_GAS)
    return flags
