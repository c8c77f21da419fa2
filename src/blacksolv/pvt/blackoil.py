"""
Black-oil PVT: reciprocal formation volume factors, viscosities and
saturated dissolution ratios of water, oil and gas.

Every function accepts plain numpy arrays or `ADArray`s. Temperature is
accepted for interface uniformity, the black-oil tables are isothermal.
"""

import typing

import attrs
import numpy as np

from blacksolv.ad import select
from blacksolv.errors import ConfigurationError, ValidationError
from blacksolv.tables import Tabulated1D
from blacksolv.types import Phase, PhasePresence

__all__ = ["SurfaceDensities", "WaterPvt", "OilPvt", "GasPvt", "BlackoilPvt"]


@attrs.frozen
class SurfaceDensities:
    """Phase densities at surface conditions (kg/m³)."""

    water: float = attrs.field(default=1000.0, validator=attrs.validators.gt(0))
    oil: float = attrs.field(default=800.0, validator=attrs.validators.gt(0))
    gas: float = attrs.field(default=1.0, validator=attrs.validators.gt(0))

    def __getitem__(self, phase: Phase) -> float:
        if phase == Phase.WATER:
            return self.water
        if phase == Phase.OIL:
            return self.oil
        if phase == Phase.GAS:
            return self.gas
        raise ConfigurationError(f"No black-oil surface density for phase {phase!r}.")


@attrs.frozen
class WaterPvt:
    """
    Water with constant compressibility and viscosibility.

    b_w = (1 + X + X²/2) / B_ref with X = c_w (p - p_ref), and
    μ_w = μ_ref / (1 + Y + Y²/2) with Y = -c_v (p - p_ref).
    """

    reference_pressure: float = 1e5
    """Reference pressure (Pa)."""
    reference_fvf: float = attrs.field(default=1.0, validator=attrs.validators.gt(0))
    """Formation volume factor at the reference pressure."""
    compressibility: float = attrs.field(default=4e-10, validator=attrs.validators.ge(0))
    """Water compressibility (1/Pa)."""
    reference_viscosity: float = attrs.field(default=5e-4, validator=attrs.validators.gt(0))
    """Viscosity at the reference pressure (Pa·s)."""
    viscosibility: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Pressure derivative of log-viscosity (1/Pa)."""

    def reciprocal_fvf(self, pressure):
        x = (pressure - self.reference_pressure) * self.compressibility
        return (x * x * 0.5 + x + 1.0) * (1.0 / self.reference_fvf)

    def viscosity(self, pressure):
        y = (pressure - self.reference_pressure) * (-self.viscosibility)
        return self.reference_viscosity / (y * y * 0.5 + y + 1.0)


def _check_same_range(name: str, *tables: Tabulated1D) -> None:
    reference = tables[0].x
    for table in tables[1:]:
        if table.x.shape != reference.shape or np.any(table.x != reference):
            raise ValidationError(f"All {name} tables must share the same pressure nodes.")


@attrs.frozen
class OilPvt:
    """
    Oil PVT as functions of pressure.

    Dead oil uses `reciprocal_fvf_table` and `viscosity_table` only. Live oil
    additionally provides the saturated dissolved gas ratio `rs_sat(p)`. The
    saturated tables are then used at the bubble point, and undersaturated oil
    (no free gas) is extrapolated from the bubble point with constant
    compressibility and viscosibility.
    """

    reciprocal_fvf_table: Tabulated1D
    """Saturated (or dead oil) reciprocal formation volume factor versus pressure."""
    viscosity_table: Tabulated1D
    """Saturated (or dead oil) viscosity versus pressure."""
    rs_sat_table: typing.Optional[Tabulated1D] = None
    """Saturated dissolved gas-oil ratio versus pressure. None for dead oil."""
    undersaturated_compressibility: float = attrs.field(
        default=1e-9, validator=attrs.validators.ge(0)
    )
    """Compressibility of undersaturated oil (1/Pa)."""
    undersaturated_viscosibility: float = attrs.field(
        default=0.0, validator=attrs.validators.ge(0)
    )
    """Relative viscosity increase per unit pressure above the bubble point (1/Pa)."""

    def __attrs_post_init__(self) -> None:
        if self.rs_sat_table is not None:
            _check_same_range("live oil", self.reciprocal_fvf_table, self.viscosity_table, self.rs_sat_table)
            # The bubble point lookup inverts rs_sat, which must therefore be increasing
            self.rs_sat_table.inverse()

    @property
    def is_live(self) -> bool:
        return self.rs_sat_table is not None

    def rs_sat(self, pressure):
        if self.rs_sat_table is None:
            return pressure * 0.0
        return self.rs_sat_table(pressure)

    def bubble_point_pressure(self, rs):
        if self.rs_sat_table is None:
            raise ConfigurationError("Dead oil has no bubble point.")
        return self.rs_sat_table.inverse()(rs)

    def reciprocal_fvf(self, pressure, rs=None, condition=None):
        saturated = self.reciprocal_fvf_table(pressure)
        if not self.is_live or rs is None or condition is None:
            return saturated
        p_bub = self.bubble_point_pressure(rs)
        undersaturated = self.reciprocal_fvf_table(p_bub) * (
            (pressure - p_bub) * self.undersaturated_compressibility + 1.0
        )
        has_free_gas = (np.asarray(condition) & PhasePresence.FREE_GAS) != 0
        return select(has_free_gas, saturated, undersaturated)

    def viscosity(self, pressure, rs=None, condition=None):
        saturated = self.viscosity_table(pressure)
        if not self.is_live or rs is None or condition is None:
            return saturated
        p_bub = self.bubble_point_pressure(rs)
        undersaturated = self.viscosity_table(p_bub) * (
            (pressure - p_bub) * self.undersaturated_viscosibility + 1.0
        )
        has_free_gas = (np.asarray(condition) & PhasePresence.FREE_GAS) != 0
        return select(has_free_gas, saturated, undersaturated)


@attrs.frozen
class GasPvt:
    """
    Gas PVT as functions of pressure.

    With vaporized oil, `rv_sat(p)` gives the saturated vaporized oil ratio.
    The gas reciprocal formation volume factor does not depend on rv.
    """

    reciprocal_fvf_table: Tabulated1D
    viscosity_table: Tabulated1D
    rv_sat_table: typing.Optional[Tabulated1D] = None

    def rv_sat(self, pressure):
        if self.rv_sat_table is None:
            return pressure * 0.0
        return self.rv_sat_table(pressure)

    def reciprocal_fvf(self, pressure, rv=None, condition=None):
        return self.reciprocal_fvf_table(pressure)

    def viscosity(self, pressure, rv=None, condition=None):
        return self.viscosity_table(pressure)


@attrs.frozen
class BlackoilPvt:
    """Black-oil fluid description for all real phases."""

    surface_densities: SurfaceDensities = attrs.field(factory=SurfaceDensities)
    water: typing.Optional[WaterPvt] = None
    oil: typing.Optional[OilPvt] = None
    gas: typing.Optional[GasPvt] = None

    def _phase_pvt(self, phase: Phase):
        pvt = {Phase.WATER: self.water, Phase.OIL: self.oil, Phase.GAS: self.gas}.get(phase)
        if pvt is None:
            raise ConfigurationError(f"No PVT description for phase {phase!r}.")
        return pvt

    def reciprocal_fvf(self, phase: Phase, pressure, temperature=None, rs=None, rv=None, condition=None):
        pvt = self._phase_pvt(phase)
        if phase == Phase.WATER:
            return pvt.reciprocal_fvf(pressure)
        if phase == Phase.OIL:
            return pvt.reciprocal_fvf(pressure, rs, condition)
        return pvt.reciprocal_fvf(pressure, rv, condition)

    def viscosity(self, phase: Phase, pressure, temperature=None, rs=None, rv=None, condition=None):
        pvt = self._phase_pvt(phase)
        if phase == Phase.WATER:
            return pvt.viscosity(pressure)
        if phase == Phase.OIL:
            return pvt.viscosity(pressure, rs, condition)
        return pvt.viscosity(pressure, rv, condition)

    def rs_sat(self, pressure, temperature=None):
        return self._phase_pvt(Phase.OIL).rs_sat(pressure)

    def rv_sat(self, pressure, temperature=None):
        return self._phase_pvt(Phase.GAS).rv_sat(pressure)
