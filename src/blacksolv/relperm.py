import logging
import typing

import attrs
import numpy as np

from blacksolv.ad import guarded_divide, value_of
from blacksolv.errors import ValidationError
from blacksolv.phases import PhaseUsage
from blacksolv.pvt import SolventProperties
from blacksolv.tables import Tabulated1D
from blacksolv.types import Phase

logger = logging.getLogger(__name__)

__all__ = [
    "TwoPhaseRelPermTable",
    "SaturationFunctions",
    "eclipse_default_oil_relperm",
    "compute_solvent_fraction",
    "compute_miscible_relperm",
    "split_gas_relperm",
]


@attrs.frozen
class TwoPhaseRelPermTable:
    """
    Two-phase relative permeability and capillary pressure lookup table.

    Tabulated against the saturation of the phase displacing oil:
    water saturation for a water-oil table, gas saturation for a gas-oil table.
    """

    saturation: np.ndarray = attrs.field(converter=lambda v: np.asarray(v, dtype=np.float64))
    """Saturation of the displacing phase, increasing."""
    relperm: np.ndarray = attrs.field(converter=lambda v: np.asarray(v, dtype=np.float64))
    """Relative permeability of the displacing phase."""
    oil_relperm: np.ndarray = attrs.field(converter=lambda v: np.asarray(v, dtype=np.float64))
    """Relative permeability of oil in presence of the displacing phase."""
    capillary_pressure: typing.Optional[np.ndarray] = attrs.field(
        default=None,
        converter=attrs.converters.optional(lambda v: np.asarray(v, dtype=np.float64)),
    )
    """Capillary pressure (Pa), oil pressure minus water pressure or gas pressure minus oil pressure."""

    def __attrs_post_init__(self) -> None:
        n = len(self.saturation)
        if n < 2:
            raise ValidationError("At least 2 points required for interpolation")
        if len(self.relperm) != n or len(self.oil_relperm) != n:
            raise ValidationError(
                f"Saturation and kr arrays must have same length. "
                f"Got {n}, {len(self.relperm)} and {len(self.oil_relperm)}"
            )
        if self.capillary_pressure is not None and len(self.capillary_pressure) != n:
            raise ValidationError("Capillary pressure must have the same length as saturation")
        if np.any(np.diff(self.saturation) <= 0):
            raise ValidationError("Saturation must be strictly increasing")
        if np.any(self.relperm < 0) or np.any(self.oil_relperm < 0):
            raise ValidationError("Relative permeabilities must be non-negative")

    @property
    def relperm_function(self) -> Tabulated1D:
        return Tabulated1D(x=self.saturation, y=self.relperm, name="kr")

    @property
    def oil_relperm_function(self) -> Tabulated1D:
        return Tabulated1D(x=self.saturation, y=self.oil_relperm, name="kro")

    @property
    def capillary_pressure_function(self) -> typing.Optional[Tabulated1D]:
        if self.capillary_pressure is None:
            return None
        return Tabulated1D(x=self.saturation, y=self.capillary_pressure, name="pc")

    @property
    def critical_saturation(self) -> float:
        """Largest saturation at which the displacing phase is still immobile."""
        immobile = self.saturation[self.relperm <= 0.0]
        return float(immobile.max()) if immobile.size else float(self.saturation[0])

    @property
    def oil_critical_saturation_point(self) -> float:
        """Smallest displacing phase saturation at which oil is immobile."""
        immobile = self.saturation[self.oil_relperm <= 0.0]
        return float(immobile.min()) if immobile.size else float(self.saturation[-1])


def eclipse_default_oil_relperm(
    krow, krog, water_saturation, gas_saturation, connate_water: float
):
    """
    ECLIPSE default three-phase oil relative permeability.

        kro = (S_g krog + (S_w - S_wco) krow) / (S_g + S_w - S_wco)

    where the denominator vanishes (connate water, no gas) kro = krow.
    """
    sw_mobile = water_saturation - connate_water
    numerator = gas_saturation * krog + sw_mobile * krow
    return guarded_divide(numerator, gas_saturation + sw_mobile, krow)


@attrs.frozen
class SaturationFunctions:
    """
    Relative permeabilities and capillary pressures of the active real phases.

    Requires a water-oil table when water and oil are active and a gas-oil
    table when gas and oil are active. Two-phase systems without oil are not
    supported.
    """

    phase_usage: PhaseUsage
    water_oil: typing.Optional[TwoPhaseRelPermTable] = None
    gas_oil: typing.Optional[TwoPhaseRelPermTable] = None

    def __attrs_post_init__(self) -> None:
        pu = self.phase_usage
        if not pu.oil:
            raise ValidationError("Saturation functions require an active oil phase")
        if pu.water and self.water_oil is None:
            raise ValidationError("Water is active but no water-oil table was given")
        if pu.gas and self.gas_oil is None:
            raise ValidationError("Gas is active but no gas-oil table was given")

    @property
    def connate_water(self) -> float:
        return float(self.water_oil.saturation[0]) if self.water_oil is not None else 0.0

    @property
    def critical_gas_saturation(self) -> float:
        return self.gas_oil.critical_saturation if self.gas_oil is not None else 0.0

    @property
    def critical_oil_in_gas_saturation(self) -> float:
        """Residual oil saturation of gas displacing oil at connate water."""
        if self.gas_oil is None:
            return 0.0
        return max(0.0, 1.0 - self.connate_water - self.gas_oil.oil_critical_saturation_point)

    def relperm(self, water_saturation, oil_saturation, gas_saturation) -> typing.Dict[Phase, typing.Any]:
        """
        Relative permeabilities of the active real phases.

        :return: Mapping from phase to relative permeability.
        """
        pu = self.phase_usage
        kr: typing.Dict[Phase, typing.Any] = {}
        if pu.water:
            kr[Phase.WATER] = self.water_oil.relperm_function(water_saturation)
        if pu.gas:
            kr[Phase.GAS] = self.gas_oil.relperm_function(gas_saturation)

        if pu.water and pu.gas:
            krow = self.water_oil.oil_relperm_function(water_saturation)
            krog = self.gas_oil.oil_relperm_function(gas_saturation)
            kr[Phase.OIL] = eclipse_default_oil_relperm(
                krow, krog, water_saturation, gas_saturation, self.connate_water
            )
        elif pu.water:
            kr[Phase.OIL] = self.water_oil.oil_relperm_function(water_saturation)
        elif pu.gas:
            kr[Phase.OIL] = self.gas_oil.oil_relperm_function(gas_saturation)
        else:
            kr[Phase.OIL] = oil_saturation * 0.0 + 1.0
        return kr

    def capillary_pressure(self, water_saturation, oil_saturation, gas_saturation) -> typing.Dict[Phase, typing.Any]:
        """
        Capillary pressure of each active phase relative to oil.

        Phase pressure = oil pressure + returned value, so water gets -pcow and
        gas gets +pcgo.
        """
        pu = self.phase_usage
        pc: typing.Dict[Phase, typing.Any] = {Phase.OIL: oil_saturation * 0.0}
        if pu.water:
            pcow = self.water_oil.capillary_pressure_function
            pc[Phase.WATER] = -pcow(water_saturation) if pcow is not None else water_saturation * 0.0
        if pu.gas:
            pcgo = self.gas_oil.capillary_pressure_function
            pc[Phase.GAS] = pcgo(gas_saturation) if pcgo is not None else gas_saturation * 0.0
        return pc


def compute_solvent_fraction(solvent_saturation, gas_saturation):
    """
    Solvent fraction of the total gas, F = S_s / (S_s + S_g).

    Where no gas and no solvent is present F and its derivative are exactly zero.
    """
    return guarded_divide(solvent_saturation, solvent_saturation + gas_saturation, 0.0)


def compute_miscible_relperm(
    kr: typing.Mapping[Phase, typing.Any],
    water_saturation,
    oil_saturation,
    gas_saturation,
    solvent_saturation,
    solvent_properties: SolventProperties,
    saturation_functions: SaturationFunctions,
) -> typing.Dict[Phase, typing.Any]:
    """
    Blend immiscible and miscible oil and total-gas relative permeabilities.

    The miscibility misc(F) weights the end points and the relative permeabilities:

        S_or = misc S_orwmis(S_w) + (1 - misc) S_ogcr
        S_gc = misc S_gcwmis(S_w) + (1 - misc) S_gcr
        F_tg = (S_s + S_g - S_gc) / (S_n - S_or - S_gc), S_n = S_o + S_g + S_s
        kr_g = (1 - misc) kr_g + misc M_g(F_tg) kr_n(S_n)
        kr_o = (1 - misc) kr_o + misc M_o(1 - F_tg) kr_n(S_n)

    :param kr: Immiscible relative permeabilities evaluated with the total gas saturation S_g + S_s.
    :return: A new mapping with the oil and gas entries replaced.
    """
    sw, so, sg, ss = water_saturation, oil_saturation, gas_saturation, solvent_saturation
    solvent_fraction = compute_solvent_fraction(ss, sg)
    misc = solvent_properties.miscibility(solvent_fraction)

    sor = misc * solvent_properties.miscible_residual_oil(sw) + (
        1.0 - misc
    ) * saturation_functions.critical_oil_in_gas_saturation
    sgc = misc * solvent_properties.miscible_critical_gas(sw) + (
        1.0 - misc
    ) * saturation_functions.critical_gas_saturation

    sn = ss + so + sg
    total_gas_fraction = guarded_divide(ss + sg - sgc, sn - sor - sgc, 0.0)
    krn = solvent_properties.miscible_hydrocarbon_water_relperm(sn)
    mkrgt = solvent_properties.miscible_solvent_gas_relperm_multiplier(total_gas_fraction) * krn
    mkro = solvent_properties.miscible_oil_relperm_multiplier(1.0 - total_gas_fraction) * krn

    blended = dict(kr)
    blended[Phase.GAS] = (1.0 - misc) * kr[Phase.GAS] + misc * mkrgt
    blended[Phase.OIL] = (1.0 - misc) * kr[Phase.OIL] + misc * mkro
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Maximum miscibility: {float(np.max(value_of(misc))):.4g}")
    return blended


def split_gas_relperm(
    total_gas_relperm,
    solvent_saturation,
    gas_saturation,
    solvent_properties: SolventProperties,
) -> typing.Tuple[typing.Any, typing.Any]:
    """
    Split the total gas relative permeability between gas and solvent.

        kr_s = M_s(F) kr_tg,  kr_g = M_g(1 - F) kr_tg

    :return: Tuple of (gas, solvent) relative permeabilities.
    """
    solvent_fraction = compute_solvent_fraction(solvent_saturation, gas_saturation)
    kr_s = solvent_properties.solvent_relperm_multiplier(solvent_fraction) * total_gas_relperm
    kr_g = solvent_properties.gas_relperm_multiplier(1.0 - solvent_fraction) * total_gas_relperm
    return kr_g, kr_s
