"""Hydraulic properties of a bio-clogged porous medium.

Classes
-------
HydraulicProperties
    Retention curve, moisture capacity and hydraulic conductivity with
    biomass occupying part of the pore space.

All quantities use consistent cm–s–mg units.  Callers convert at the
input boundary (e.g. mg/L → mg/cm³ by dividing by 1000).
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import ArrayLike

from pybioclog.errors import UnsupportedModel
from pybioclog.materials.permeability import relative_permeability

HAVERKAMP = "haverkamp_et_al_1977"
VAN_GENUCHTEN = "van_genuchten_1980"
FAMILIES = (HAVERKAMP, VAN_GENUCHTEN)

# Haverkamp et al. (1977), sand column, h in cm.
HAVERKAMP_RETENTION_ALPHA = 1.611e6
HAVERKAMP_RETENTION_BETA = 3.96
HAVERKAMP_CONDUCTIVITY_A = 1.175e6
HAVERKAMP_CONDUCTIVITY_GAMMA = 4.74

# Pressure substituted for h >= 0 in the van Genuchten capacity.
SATURATED_CAPACITY_HEAD = -0.01


@dataclass(frozen=True)
class HydraulicProperties:
    """Constitutive model for water and biomass in the pore space.

    θ(h)  = θ_r + (θ_s − θ_r) Se(h)
    Se(h) = [1 + (α|h|)^n]^(−m),  m = 1 − 1/n

    Biomass of concentration B and dry density ρ fills a volume
    fraction B/ρ of the pores; the water that remains mobile is the
    *free* saturation Se − Se_b.

    Args:
        family: ``"haverkamp_et_al_1977"`` (empirical) or
            ``"van_genuchten_1980"``.
        theta_s: Saturated moisture content.
        theta_r: Residual moisture content.
        saturated_conductivity: Ks (cm/s).
        alpha: Van Genuchten α (1/cm).
        n: Van Genuchten n (> 1).
    """

    family: str = VAN_GENUCHTEN
    theta_s: float = 0.368
    theta_r: float = 0.102
    saturated_conductivity: float = 9.22e-3
    alpha: float = 0.0335
    n: float = 2.0
    m: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "m", 1.0 - 1.0 / self.n)

    def with_n(self, n: float) -> "HydraulicProperties":
        """Return a copy with a new shape parameter (m follows)."""
        return dataclasses.replace(self, n=n)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def residual_ratio(self) -> float:
        """θ_r / θ_s."""
        return self.theta_r / self.theta_s

    def _require_van_genuchten(self, operation: str) -> None:
        if self.family != VAN_GENUCHTEN:
            raise UnsupportedModel(
                f"{operation} is only defined for the {VAN_GENUCHTEN!r} "
                f"family, got {self.family!r}."
            )

    # ------------------------------------------------------------------
    # Water
    # ------------------------------------------------------------------

    def specific_moisture_capacity(self, h: ArrayLike) -> np.ndarray:
        """Specific moisture capacity C(h) = dθ/dh.

        Saturated states (h ≥ 0) are not modelled by the van Genuchten
        branch: the head is clamped to a slightly negative value so the
        capacity stays positive.

        Args:
            h: Pressure head (cm).

        Returns:
            C(h) (1/cm).

        Raises:
            UnsupportedModel: For an unknown family.
        """
        h_arr = np.asarray(h, dtype=float)
        if self.family == HAVERKAMP:
            a = HAVERKAMP_RETENTION_ALPHA
            b = HAVERKAMP_RETENTION_BETA
            abs_h = np.abs(h_arr)
            return (
                -a * (self.theta_s - self.theta_r) * b * h_arr
                * abs_h ** (b - 2.0)
                / (a + abs_h ** b) ** 2
            )
        if self.family == VAN_GENUCHTEN:
            h_arr = np.where(h_arr >= 0.0, SATURATED_CAPACITY_HEAD, h_arr)
            abs_h = np.abs(h_arr)
            ah = self.alpha * abs_h
            return (
                -self.alpha * self.m * self.n
                * (self.theta_s - self.theta_r)
                * ah ** (self.n - 1.0)
                * (1.0 + ah ** self.n) ** (-self.m - 1.0)
                * h_arr / abs_h
            )
        raise UnsupportedModel(f"Unknown hydraulic model family {self.family!r}.")

    def effective_total_saturation(self, h: ArrayLike) -> np.ndarray:
        """Effective saturation Se(h) ∈ [0, 1]; exactly 1 for h ≥ 0."""
        self._require_van_genuchten("Effective saturation")
        h_arr = np.asarray(h, dtype=float)
        unsat = (1.0 + (self.alpha * np.abs(h_arr)) ** self.n) ** (-self.m)
        return np.where(h_arr >= 0.0, 1.0, unsat)

    def actual_total_saturation(self, h: ArrayLike) -> np.ndarray:
        """Fraction of the pore space holding water, θ/θ_s."""
        r = self.residual_ratio
        return r + (1.0 - r) * self.effective_total_saturation(h)

    def moisture_content_total(self, h: ArrayLike) -> np.ndarray:
        """Total volumetric moisture content θ(h)."""
        se = self.effective_total_saturation(h)
        return (self.theta_s - self.theta_r) * se + self.theta_r

    # ------------------------------------------------------------------
    # Biomass
    # ------------------------------------------------------------------

    def effective_biomass_saturation(
        self,
        biomass: ArrayLike,
        dry_density: float,
    ) -> np.ndarray:
        """Biomass volume fraction relative to the pore headroom.

        Se_b = (B/ρ) / (1 − θ_r/θ_s), clamped to at most 1.
        """
        fraction = np.asarray(biomass, dtype=float) / dry_density
        return np.minimum(fraction / (1.0 - self.residual_ratio), 1.0)

    def actual_biomass_saturation(
        self,
        biomass: ArrayLike,
        dry_density: float,
    ) -> np.ndarray:
        """Fraction of the pore space occupied by biomass."""
        se_b = self.effective_biomass_saturation(biomass, dry_density)
        return se_b * (1.0 - self.residual_ratio)

    def effective_free_saturation(
        self,
        h: ArrayLike,
        biomass: ArrayLike,
        dry_density: float,
    ) -> np.ndarray:
        """Mobile water saturation Se − Se_b, clamped to at least 0."""
        se = self.effective_total_saturation(h)
        se_b = self.effective_biomass_saturation(biomass, dry_density)
        return np.maximum(se - se_b, 0.0)

    def moisture_content_free(
        self,
        h: ArrayLike,
        biomass: ArrayLike,
        dry_density: float,
    ) -> np.ndarray:
        """Volumetric content of mobile (non-biomass) water."""
        se_free = self.effective_free_saturation(h, biomass, dry_density)
        return (self.theta_s - self.theta_r) * se_free + self.theta_r

    # ------------------------------------------------------------------
    # Conductivity
    # ------------------------------------------------------------------

    def hydraulic_conductivity(
        self,
        h: ArrayLike,
        biomass: ArrayLike = 0.0,
        dry_density: float = 1.0,
        permeability_model: str = "soleimani",
    ) -> np.ndarray:
        """Unsaturated hydraulic conductivity K(h, B).

        The empirical family ignores biomass.  For van Genuchten the
        relative permeability comes from *permeability_model*; when the
        biomass saturation exceeds the water saturation, the latter is
        raised to match before the model is evaluated.

        Args:
            h: Pressure head (cm).
            biomass: Biomass concentration (mg/cm³).
            dry_density: Biomass dry density ρ (mg/cm³).
            permeability_model: See
                :data:`pybioclog.materials.permeability.PERMEABILITY_MODELS`.

        Returns:
            K (cm/s).

        Raises:
            UnsupportedModel: For an unknown family.
            UnsupportedPermeabilityModel: For an unknown model name.
        """
        h_arr = np.asarray(h, dtype=float)
        if self.family == HAVERKAMP:
            a = HAVERKAMP_CONDUCTIVITY_A
            return (
                self.saturated_conductivity * a
                / (a + np.abs(h_arr) ** HAVERKAMP_CONDUCTIVITY_GAMMA)
            )
        if self.family == VAN_GENUCHTEN:
            se_b = self.effective_biomass_saturation(biomass, dry_density)
            se_t = np.maximum(self.effective_total_saturation(h_arr), se_b)
            fraction = np.asarray(biomass, dtype=float) / dry_density
            kr = relative_permeability(
                permeability_model, se_t, se_b, fraction, self.m
            )
            return self.saturated_conductivity * kr
        raise UnsupportedModel(f"Unknown hydraulic model family {self.family!r}.")
