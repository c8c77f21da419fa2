import typing

from blacksolv.errors import ComputationError, ConfigurationError
from blacksolv.phases import PhaseUsage
from blacksolv.pvt import BlackoilPvt, SolventProperties
from blacksolv.types import Phase

__all__ = ["PropertyEvaluator"]

_MIXED_PHASES = (Phase.OIL, Phase.GAS, Phase.SOLVENT)


class PropertyEvaluator:
    """
    Per-phase fluid properties for a model.

    Real phases are evaluated from the black-oil PVT, the solvent
    pseudo-phase from its pressure-only tables. When the model is miscible,
    reciprocal formation volume factors and viscosities of oil, gas and
    solvent are taken from the effective (Todd-Longstaff mixed) values stored
    with `set_effective_properties` instead of the raw tables. Raw values stay
    available through `raw_reciprocal_fvf` and `raw_viscosity`.
    """

    def __init__(
        self,
        phase_usage: PhaseUsage,
        pvt: BlackoilPvt,
        solvent_properties: typing.Optional[SolventProperties] = None,
        is_miscible: bool = False,
    ) -> None:
        if phase_usage.solvent and solvent_properties is None:
            raise ConfigurationError("Solvent is active but no solvent properties were given.")
        self.phase_usage = phase_usage
        self.pvt = pvt
        self.solvent_properties = solvent_properties
        self.use_effective_properties = bool(is_miscible)
        self._effective_b: typing.Dict[Phase, typing.Any] = {}
        self._effective_mu: typing.Dict[Phase, typing.Any] = {}

    def _check_phase(self, phase: Phase) -> Phase:
        try:
            phase = Phase(phase)
        except ValueError:
            raise ConfigurationError(f"Unknown phase index {phase!r}.") from None
        if not self.phase_usage.is_active(phase):
            raise ConfigurationError(f"Phase {phase.name} is not active in this model.")
        return phase

    def raw_reciprocal_fvf(self, phase: Phase, pressure, temperature=None, rs=None, rv=None, condition=None):
        phase = self._check_phase(phase)
        if phase == Phase.SOLVENT:
            return self.solvent_properties.reciprocal_fvf(pressure)
        return self.pvt.reciprocal_fvf(phase, pressure, temperature, rs, rv, condition)

    def raw_viscosity(self, phase: Phase, pressure, temperature=None, rs=None, rv=None, condition=None):
        phase = self._check_phase(phase)
        if phase == Phase.SOLVENT:
            return self.solvent_properties.viscosity(pressure)
        return self.pvt.viscosity(phase, pressure, temperature, rs, rv, condition)

    def reciprocal_fvf(self, phase: Phase, pressure, temperature=None, rs=None, rv=None, condition=None):
        """
        Reciprocal formation volume factor b of `phase` in every cell.

        :raises ConfigurationError: For an unknown or inactive phase.
        """
        phase = self._check_phase(phase)
        if self.use_effective_properties and phase in _MIXED_PHASES:
            return self._effective(self._effective_b, phase)
        return self.raw_reciprocal_fvf(phase, pressure, temperature, rs, rv, condition)

    def viscosity(self, phase: Phase, pressure, temperature=None, rs=None, rv=None, condition=None):
        """
        Viscosity of `phase` in every cell.

        :raises ConfigurationError: For an unknown or inactive phase.
        """
        phase = self._check_phase(phase)
        if self.use_effective_properties and phase in _MIXED_PHASES:
            return self._effective(self._effective_mu, phase)
        return self.raw_viscosity(phase, pressure, temperature, rs, rv, condition)

    def density(self, phase: Phase, b, rs=None, rv=None):
        """
        Reservoir density of `phase` from its reciprocal formation volume factor.

        Oil carries the dissolved gas and gas carries the vaporized oil when
        the respective other phase is active.
        """
        phase = self._check_phase(phase)
        if phase == Phase.SOLVENT:
            return b * self.solvent_properties.surface_density

        densities = self.pvt.surface_densities
        rho = b * densities[phase]
        if phase == Phase.OIL and self.phase_usage.gas and rs is not None:
            rho = rho + rs * b * densities.gas
        elif phase == Phase.GAS and self.phase_usage.oil and rv is not None:
            rho = rho + rv * b * densities.oil
        return rho

    def surface_density(self, phase: Phase) -> float:
        phase = self._check_phase(phase)
        if phase == Phase.SOLVENT:
            return self.solvent_properties.surface_density
        return self.pvt.surface_densities[phase]

    def set_effective_properties(
        self,
        reciprocal_fvfs: typing.Mapping[Phase, typing.Any],
        viscosities: typing.Mapping[Phase, typing.Any],
    ) -> None:
        self._effective_b = dict(reciprocal_fvfs)
        self._effective_mu = dict(viscosities)

    def _effective(self, store: typing.Mapping[Phase, typing.Any], phase: Phase):
        try:
            return store[phase]
        except KeyError:
            raise ComputationError(
                f"Effective properties of {phase.name} requested before they were computed."
            ) from None
