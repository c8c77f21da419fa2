"""
Todd-Longstaff mixing of oil, gas and solvent properties.

Reference:
    Todd, M.R. and Longstaff, W.J. (1972). "The Development, Testing and
    Application of a Numerical Simulator for Predicting Miscible Flood Performance."
    JPT, July 1972, pp. 874-882.
"""

import logging
import typing

import attrs

from blacksolv.ad import guarded_divide, select, value_of
from blacksolv.errors import ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "MixedViscosities",
    "ToddLongstaffResult",
    "compute_mixed_viscosities",
    "compute_todd_longstaff_effective_viscosities",
    "compute_todd_longstaff_effective_densities",
    "todd_longstaff",
]


@attrs.frozen
class MixedViscosities:
    """Fully mixed viscosities of the oil-solvent, solvent-gas and oil-solvent-gas systems."""

    oil_solvent: typing.Any
    solvent_gas: typing.Any
    ternary: typing.Any


@attrs.frozen
class ToddLongstaffResult:
    """Effective oil, gas and solvent properties."""

    oil_viscosity: typing.Any
    gas_viscosity: typing.Any
    solvent_viscosity: typing.Any
    oil_density: typing.Any
    gas_density: typing.Any
    solvent_density: typing.Any


def _check_mixing_parameter(name: str, value: float) -> None:
    if value < 0.0 or value > 1.0:
        raise ValidationError(f"{name} must be in [0, 1], got {value}")


def _quarter_power_mix(mu_a, mu_b, s_a, s_b, fallback):
    """
    Quarter-power mixing of two phases:
    μ_ab = μ_a μ_b / ((s_a / s) μ_b^¼ + (s_b / s) μ_a^¼)⁴ with s = s_a + s_b.
    Where s = 0 the result is `fallback`.
    """
    s = s_a + s_b
    weights = guarded_divide(s_a, s) * mu_b**0.25 + guarded_divide(s_b, s) * mu_a**0.25
    return guarded_divide(mu_a * mu_b, weights**4.0, fallback)


def compute_mixed_viscosities(
    oil_viscosity,
    gas_viscosity,
    solvent_viscosity,
    oil_saturation,
    gas_saturation,
    solvent_saturation,
) -> MixedViscosities:
    """
    Compute the fully mixed viscosities with the quarter-power mixing rule.

    Where the saturations of a mixture sum to zero its mixed viscosity falls
    back to the unmixed viscosity of the phase it is used for: oil for the
    oil-solvent mixture, gas for the solvent-gas mixture and solvent for the
    ternary mixture.

    :param oil_viscosity: Raw oil viscosity.
    :param gas_viscosity: Raw gas viscosity.
    :param solvent_viscosity: Raw solvent viscosity.
    :param oil_saturation: Effective oil saturation.
    :param gas_saturation: Effective gas saturation.
    :param solvent_saturation: Effective solvent saturation.
    :return: `MixedViscosities`
    """
    mu_o, mu_g, mu_s = oil_viscosity, gas_viscosity, solvent_viscosity
    so, sg, ss = oil_saturation, gas_saturation, solvent_saturation

    mu_mos = _quarter_power_mix(mu_o, mu_s, so, ss, fallback=mu_o)
    mu_msg = _quarter_power_mix(mu_g, mu_s, sg, ss, fallback=mu_g)

    mu_o_q, mu_g_q, mu_s_q = mu_o**0.25, mu_g**0.25, mu_s**0.25
    sn = so + sg + ss
    weights = (
        guarded_divide(so, sn) * mu_s_q * mu_g_q
        + guarded_divide(ss, sn) * mu_o_q * mu_g_q
        + guarded_divide(sg, sn) * mu_s_q * mu_o_q
    )
    mu_m = guarded_divide(mu_o * mu_s * mu_g, weights**4.0, fallback=mu_s)
    return MixedViscosities(oil_solvent=mu_mos, solvent_gas=mu_msg, ternary=mu_m)


def compute_todd_longstaff_effective_viscosities(
    oil_viscosity,
    gas_viscosity,
    solvent_viscosity,
    mixed: MixedViscosities,
    mixing_parameter: float,
) -> typing.Tuple[typing.Any, typing.Any, typing.Any]:
    """
    Effective viscosities μ_eff = μ^(1-ω) μ_mixed^ω of oil, gas and solvent.

    :param mixing_parameter: Todd-Longstaff mixing parameter ω in [0, 1].
    :return: Tuple of (oil, gas, solvent) effective viscosities.
    """
    _check_mixing_parameter("Viscosity mixing parameter", mixing_parameter)
    w = mixing_parameter
    return (
        oil_viscosity ** (1.0 - w) * mixed.oil_solvent**w,
        gas_viscosity ** (1.0 - w) * mixed.solvent_gas**w,
        solvent_viscosity ** (1.0 - w) * mixed.ternary**w,
    )


def compute_todd_longstaff_effective_densities(
    oil_viscosity,
    gas_viscosity,
    solvent_viscosity,
    oil_density,
    gas_density,
    solvent_density,
    oil_saturation,
    gas_saturation,
    solvent_saturation,
    mixed: MixedViscosities,
    mixing_parameter: float,
) -> typing.Tuple[typing.Any, typing.Any, typing.Any]:
    """
    Effective densities of oil, gas and solvent.

    The effective densities follow from the effective viscosities computed
    with the density mixing parameter ω_ρ. Each phase density is interpolated
    towards the solvent density by the saturation fraction that reproduces its
    effective viscosity under quarter-power mixing. For oil:

        f_o = μ_o^¼ (μ_oe^¼ - μ_s^¼) / (μ_oe^¼ (μ_o^¼ - μ_s^¼))
        ρ_oe = f_o ρ_o + (1 - f_o) ρ_s

    gas is analogous, and the solvent is blended with the oil-gas mixture:

        f_s = (T - μ_o^¼ μ_g^¼ μ_s^¼ / μ_se^¼) / (T - μ_o^¼ μ_g^¼),
        T = μ_s^¼ (f_g' μ_o^¼ + f_o' μ_g^¼), f_o' = S_o / (S_o + S_g), f_g' = S_g / (S_o + S_g)
        ρ_se = f_s ρ_s + (1 - f_s) (f_g' ρ_g + f_o' ρ_o)

    When the raw viscosity of oil (gas) equals the raw solvent viscosity, the
    fractions above are undefined. The density is then blended with the bulk
    mixture density ρ_m = Σ ρ_i S_i / Σ S_i instead:

        ρ_e = (1 - ω_ρ) ρ + ω_ρ ρ_m

    The solvent density checks the gas-solvent case first, then the
    oil-solvent case, before using its generic fraction.

    :param mixed: Fully mixed viscosities from `compute_mixed_viscosities`.
    :param mixing_parameter: Todd-Longstaff density mixing parameter ω_ρ in [0, 1].
    :return: Tuple of (oil, gas, solvent) effective densities.
    """
    _check_mixing_parameter("Density mixing parameter", mixing_parameter)
    w = mixing_parameter
    mu_o, mu_g, mu_s = oil_viscosity, gas_viscosity, solvent_viscosity
    rho_o, rho_g, rho_s = oil_density, gas_density, solvent_density
    so, sg, ss = oil_saturation, gas_saturation, solvent_saturation

    mu_oe, mu_ge, mu_se = compute_todd_longstaff_effective_viscosities(
        mu_o, mu_g, mu_s, mixed, mixing_parameter=w
    )
    mu_o_q, mu_g_q, mu_s_q = mu_o**0.25, mu_g**0.25, mu_s**0.25
    mu_oe_q, mu_ge_q, mu_se_q = mu_oe**0.25, mu_ge**0.25, mu_se**0.25

    sog = so + sg
    oil_fraction = guarded_divide(so, sog)
    gas_fraction = guarded_divide(sg, sog)

    f_oe = guarded_divide(mu_o_q * (mu_oe_q - mu_s_q), mu_oe_q * (mu_o_q - mu_s_q))
    f_ge = guarded_divide(mu_g_q * (mu_ge_q - mu_s_q), mu_ge_q * (mu_g_q - mu_s_q))
    t = mu_s_q * (gas_fraction * mu_o_q + oil_fraction * mu_g_q)
    f_se = guarded_divide(
        t - mu_o_q * mu_g_q * guarded_divide(mu_s_q, mu_se_q), t - mu_o_q * mu_g_q
    )

    sn = so + sg + ss
    rho_m = guarded_divide(rho_o * so + rho_g * sg + rho_s * ss, sn)
    no_hydrocarbon = value_of(sn) == 0.0

    def blend(rho):
        return (1.0 - w) * rho + w * select(no_hydrocarbon, rho, rho_m)

    mu_s_val = value_of(mu_s)
    oil_degenerate = mu_s_val == value_of(mu_o)
    gas_degenerate = mu_s_val == value_of(mu_g)

    rho_oe = select(oil_degenerate, blend(rho_o), rho_o * f_oe + rho_s * (1.0 - f_oe))
    rho_ge = select(gas_degenerate, blend(rho_g), rho_g * f_ge + rho_s * (1.0 - f_ge))
    rho_se = select(
        gas_degenerate,
        blend(rho_s),
        select(
            oil_degenerate,
            blend(rho_s),
            rho_s * f_se
            + rho_g * gas_fraction * (1.0 - f_se)
            + rho_o * oil_fraction * (1.0 - f_se),
        ),
    )
    return rho_oe, rho_ge, rho_se


def todd_longstaff(
    oil_viscosity,
    gas_viscosity,
    solvent_viscosity,
    oil_density,
    gas_density,
    solvent_density,
    oil_saturation,
    gas_saturation,
    solvent_saturation,
    mixing_parameter_viscosity: float,
    mixing_parameter_density: float,
) -> ToddLongstaffResult:
    """
    Apply the Todd-Longstaff model to raw oil, gas and solvent properties.

    All arguments may be `ADArray`s or numpy arrays of equal size. Saturations
    are the effective (mobile) saturations.

    :return: `ToddLongstaffResult` with effective viscosities and densities.
    """
    mixed = compute_mixed_viscosities(
        oil_viscosity,
        gas_viscosity,
        solvent_viscosity,
        oil_saturation,
        gas_saturation,
        solvent_saturation,
    )
    mu_oe, mu_ge, mu_se = compute_todd_longstaff_effective_viscosities(
        oil_viscosity,
        gas_viscosity,
        solvent_viscosity,
        mixed,
        mixing_parameter=mixing_parameter_viscosity,
    )
    rho_oe, rho_ge, rho_se = compute_todd_longstaff_effective_densities(
        oil_viscosity,
        gas_viscosity,
        solvent_viscosity,
        oil_density,
        gas_density,
        solvent_density,
        oil_saturation,
        gas_saturation,
        solvent_saturation,
        mixed,
        mixing_parameter=mixing_parameter_density,
    )
    logger.debug(
        f"Todd-Longstaff effective gas density range: "
        f"[{value_of(rho_ge).min():.6g}, {value_of(rho_ge).max():.6g}]"
    )
    return ToddLongstaffResult(
        oil_viscosity=mu_oe,
        gas_viscosity=mu_ge,
        solvent_viscosity=mu_se,
        oil_density=rho_oe,
        gas_density=rho_ge,
        solvent_density=rho_se,
    )
