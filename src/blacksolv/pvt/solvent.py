import typing

import attrs
import numpy as np

from blacksolv.errors import ValidationError
from blacksolv.tables import Tabulated1D

__all__ = ["SolventProperties"]


def _identity_table(name: str) -> Tabulated1D:
    return Tabulated1D(x=[0.0, 1.0], y=[0.0, 1.0], name=name)


def _zero_table(name: str) -> Tabulated1D:
    return Tabulated1D(x=[0.0, 1.0], y=[0.0, 0.0], name=name)


def _validate_mixing_parameter(instance, attribute, value) -> None:
    if value < 0.0 or value > 1.0:
        raise ValidationError(f"{attribute.name} must be in [0, 1], got {value}")


@attrs.frozen
class SolventProperties:
    """
    Properties of the solvent pseudo-phase.

    PVT of the solvent depends on pressure only. The relative permeability
    tables are functions of the solvent fraction of the total gas,
    F = S_s / (S_s + S_g), of the water saturation (miscible end points) or of
    the normalised total gas fraction (miscible multipliers).

    The Todd-Longstaff mixing parameters control how far solvent and
    hydrocarbon properties are blended: 0 keeps the immiscible properties,
    1 is fully mixed.

    Reference:
        Todd, M.R. and Longstaff, W.J. (1972). "The Development, Testing and
        Application of a Numerical Simulator for Predicting Miscible Flood Performance."
        JPT, July 1972, pp. 874-882.
    """

    reciprocal_fvf_table: Tabulated1D
    """Solvent reciprocal formation volume factor versus pressure."""
    viscosity_table: Tabulated1D
    """Solvent viscosity versus pressure."""
    surface_density: float = attrs.field(default=1.0, validator=attrs.validators.gt(0))
    """Solvent density at surface conditions (kg/m³)."""
    solvent_relperm_multiplier_table: Tabulated1D = attrs.field(
        factory=lambda: _identity_table("solvent kr multiplier")
    )
    """Multiplier of the total gas relative permeability giving the solvent relative permeability, versus F."""
    gas_relperm_multiplier_table: Tabulated1D = attrs.field(
        factory=lambda: _identity_table("gas kr multiplier")
    )
    """Multiplier of the total gas relative permeability giving the gas relative permeability, versus 1 - F."""
    miscibility_table: Tabulated1D = attrs.field(
        factory=lambda: _zero_table("miscibility")
    )
    """Miscibility function versus F. 0 is immiscible, 1 fully miscible."""
    miscible_residual_oil_table: Tabulated1D = attrs.field(
        factory=lambda: _zero_table("miscible residual oil")
    )
    """Miscible residual oil saturation versus water saturation."""
    miscible_critical_gas_table: Tabulated1D = attrs.field(
        factory=lambda: _zero_table("miscible critical gas")
    )
    """Miscible critical gas saturation versus water saturation."""
    miscible_solvent_gas_relperm_multiplier_table: Tabulated1D = attrs.field(
        factory=lambda: _identity_table("miscible total gas kr multiplier")
    )
    """Miscible multiplier of the total gas (gas + solvent) relative permeability, versus the normalised total gas fraction."""
    miscible_oil_relperm_multiplier_table: Tabulated1D = attrs.field(
        factory=lambda: _identity_table("miscible oil kr multiplier")
    )
    """Miscible multiplier of the oil relative permeability, versus one minus the normalised total gas fraction."""
    miscible_hydrocarbon_water_relperm_table: Tabulated1D = attrs.field(
        factory=lambda: _identity_table("miscible hydrocarbon kr")
    )
    """Relative permeability of the total hydrocarbon (oil + gas + solvent) versus its saturation."""
    mixing_parameter_viscosity: float = attrs.field(
        default=0.0, validator=_validate_mixing_parameter
    )
    """Todd-Longstaff viscosity mixing parameter."""
    mixing_parameter_density: float = attrs.field(
        default=0.0, validator=_validate_mixing_parameter
    )
    """Todd-Longstaff density mixing parameter."""

    @classmethod
    def from_fvf_table(
        cls,
        pressure: typing.Sequence[float],
        formation_volume_factor: typing.Sequence[float],
        viscosity: typing.Sequence[float],
        **kwargs: typing.Any,
    ) -> "SolventProperties":
        """
        Build solvent properties from a pressure/FVF/viscosity table.

        :param pressure: Pressure nodes (Pa), strictly increasing.
        :param formation_volume_factor: Solvent FVF at the nodes.
        :param viscosity: Solvent viscosity at the nodes (Pa·s).
        :param kwargs: Other `SolventProperties` fields.
        :return: Solvent properties.
        """
        fvf = np.asarray(formation_volume_factor, dtype=np.float64)
        if np.any(fvf <= 0):
            raise ValidationError("Solvent formation volume factors must be positive")
        return cls(
            reciprocal_fvf_table=Tabulated1D(x=pressure, y=1.0 / fvf, name="solvent b"),
            viscosity_table=Tabulated1D(x=pressure, y=viscosity, name="solvent viscosity"),
            **kwargs,
        )

    def reciprocal_fvf(self, pressure):
        return self.reciprocal_fvf_table(pressure)

    def viscosity(self, pressure):
        return self.viscosity_table(pressure)

    def solvent_relperm_multiplier(self, solvent_fraction):
        return self.solvent_relperm_multiplier_table(solvent_fraction)

    def gas_relperm_multiplier(self, gas_fraction):
        return self.gas_relperm_multiplier_table(gas_fraction)

    def miscibility(self, solvent_fraction):
        return self.miscibility_table(solvent_fraction)

    def miscible_residual_oil(self, water_saturation):
        return self.miscible_residual_oil_table(water_saturation)

    def miscible_critical_gas(self, water_saturation):
        return self.miscible_critical_gas_table(water_saturation)

    def miscible_solvent_gas_relperm_multiplier(self, total_gas_fraction):
        return self.miscible_solvent_gas_relperm_multiplier_table(total_gas_fraction)

    def miscible_oil_relperm_multiplier(self, oil_fraction):
        return self.miscible_oil_relperm_multiplier_table(oil_fraction)

    def miscible_hydrocarbon_water_relperm(self, hydrocarbon_saturation):
        return self.miscible_hydrocarbon_water_relperm_table(hydrocarbon_saturation)
