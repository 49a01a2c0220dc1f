"""Biomass growth kinetics.

Classes
-------
BiomassKinetics
    Monod growth with first-order decay, integrated exactly over a
    time step for frozen substrate.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike


@dataclass
class BiomassKinetics:
    """Monod kinetics for attached biomass.

    dB/dt = (Y μ Sf S / (Sf S + K_s) − b) B

    Args:
        yield_coefficient: Y, biomass produced per substrate consumed.
        max_substrate_use_rate: μ (1/s).
        half_velocity_constant: K_s (mg/L).
        decay_rate: b (1/s).
        dry_density: Biomass dry density ρ (mg/cm³).
    """

    yield_coefficient: float = 0.5
    max_substrate_use_rate: float = 1.0e-4
    half_velocity_constant: float = 20.0
    decay_rate: float = 3.0e-6
    dry_density: float = 100.0

    @property
    def half_velocity_concentration(self) -> float:
        """K_s in mg/cm³."""
        return self.half_velocity_constant / 1000.0

    def substrate_uptake(
        self,
        substrate: ArrayLike,
        free_saturation: ArrayLike,
    ) -> np.ndarray:
        """Monod factor Sf S / (Sf S + K_s), with negative S treated as 0."""
        s = np.maximum(np.asarray(substrate, dtype=float), 0.0)
        sf_s = np.asarray(free_saturation, dtype=float) * s
        return sf_s / (sf_s + self.half_velocity_concentration)

    def growth_rate(
        self,
        substrate: ArrayLike,
        free_saturation: ArrayLike,
    ) -> np.ndarray:
        """Net specific growth rate (1/s)."""
        uptake = self.substrate_uptake(substrate, free_saturation)
        return (
            self.yield_coefficient * self.max_substrate_use_rate * uptake
            - self.decay_rate
        )

    def grow(
        self,
        biomass: ArrayLike,
        substrate: ArrayLike,
        free_saturation: ArrayLike,
        dt: float,
    ) -> np.ndarray:
        """Advance biomass over *dt* with the rate frozen at the old level.

        Args:
            biomass: Biomass at the start of the step (mg/cm³).
            substrate: Substrate at the start of the step (mg/cm³).
            free_saturation: Effective free saturation at the start of
                the step.
            dt: Time-step size (s).

        Returns:
            Biomass at the end of the step.
        """
        rate = self.growth_rate(substrate, free_saturation)
        return np.asarray(biomass, dtype=float) * np.exp(rate * dt)

    def consumption_rate(
        self,
        biomass: ArrayLike,
        substrate: ArrayLike,
        free_saturation: ArrayLike,
    ) -> np.ndarray:
        """Linearised substrate consumption coefficient μ B Sf / (Sf S + K_s).

        Multiplying by S gives the Monod uptake μ B Sf S / (Sf S + K_s).
        """
        s = np.maximum(np.asarray(substrate, dtype=float), 0.0)
        sf = np.asarray(free_saturation, dtype=float)
        return (
            self.max_substrate_use_rate * np.asarray(biomass, dtype=float) * sf
            / (sf * s + self.half_velocity_concentration)
        )
