"""Relative-permeability reduction by biomass (biofouling models).

Each model maps the effective saturations (or the biomass volume
fraction) to a factor kr ∈ [0, 1] that multiplies the saturated
hydraulic conductivity.

Functions
---------
relative_permeability
    Dispatch on the model name.
soleimani
    Mualem-type power law on total and biomass saturation.
clement
    Clement et al. (1996) porosity-reduction power law.
okubo_and_matsumoto
    Okubo and Matsumoto (1983) porosity-reduction power law.
vandevivere
    Vandevivere (1995) plug-to-colony exponential blend.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from pybioclog.errors import UnsupportedPermeabilityModel

#: Relative conductivity of a fully developed biofilm plug.
VANDEVIVERE_PLUG_PERMEABILITY = 0.00025
#: Biomass fraction at which colonies give way to a continuous plug.
VANDEVIVERE_CRITICAL_FRACTION = 0.1


def soleimani(
    se_total: np.ndarray,
    se_biomass: np.ndarray,
    fraction: np.ndarray,
    m: float,
) -> np.ndarray:
    """kr = Se_t^0.5 [(1 − Se_b^(1/m))^m − (1 − Se_t^(1/m))^m]²."""
    outer = (1.0 - se_biomass ** (1.0 / m)) ** m
    inner = (1.0 - se_total ** (1.0 / m)) ** m
    return se_total ** 0.5 * (outer - inner) ** 2


def clement(
    se_total: np.ndarray,
    se_biomass: np.ndarray,
    fraction: np.ndarray,
    m: float,
) -> np.ndarray:
    """kr = (1 − f)^(19/6) for f < 1, zero otherwise."""
    base = np.clip(1.0 - fraction, 0.0, None)
    return np.where(fraction < 1.0, base ** (19.0 / 6.0), 0.0)


def okubo_and_matsumoto(
    se_total: np.ndarray,
    se_biomass: np.ndarray,
    fraction: np.ndarray,
    m: float,
) -> np.ndarray:
    """kr = (1 − f)²."""
    return (1.0 - fraction) ** 2


def vandevivere(
    se_total: np.ndarray,
    se_biomass: np.ndarray,
    fraction: np.ndarray,
    m: float,
) -> np.ndarray:
    """Exponential blend between colony and plug behaviour.

    kr = φ(1 − f)² + (1 − φ) kp / (kp + f(1 − kp)),
    with φ = exp(−½ (f / f_c)²).  Zero once the pores are full.
    """
    kp = VANDEVIVERE_PLUG_PERMEABILITY
    f = np.clip(fraction, 0.0, None)
    phi = np.exp(-0.5 * (f / VANDEVIVERE_CRITICAL_FRACTION) ** 2)
    kr = phi * (1.0 - f) ** 2 + (1.0 - phi) * kp / (kp + f * (1.0 - kp))
    return np.where(f < 1.0, kr, 0.0)


PERMEABILITY_MODELS: dict[str, Callable[..., np.ndarray]] = {
    "soleimani": soleimani,
    "clement": clement,
    "okubo_and_matsumoto": okubo_and_matsumoto,
    "vandevivere": vandevivere,
}


def relative_permeability(
    model: str,
    se_total: np.ndarray,
    se_biomass: np.ndarray,
    fraction: np.ndarray,
    m: float,
) -> np.ndarray:
    """Evaluate the named relative-permeability model.

    Args:
        model: One of :data:`PERMEABILITY_MODELS`.
        se_total: Effective total saturation (already raised to at
            least *se_biomass*).
        se_biomass: Effective biomass saturation.
        fraction: Biomass volume fraction B / ρ.
        m: Van Genuchten m parameter.

    Returns:
        Relative permeability array.

    Raises:
        UnsupportedPermeabilityModel: If *model* is unknown.
    """
    try:
        func = PERMEABILITY_MODELS[model]
    except KeyError:
        raise UnsupportedPermeabilityModel(
            f"Unknown relative permeability model {model!r}.  "
            f"Choose from {sorted(PERMEABILITY_MODELS)}."
        ) from None
    return func(
        np.asarray(se_total, dtype=float),
        np.asarray(se_biomass, dtype=float),
        np.asarray(fraction, dtype=float),
        m,
    )
