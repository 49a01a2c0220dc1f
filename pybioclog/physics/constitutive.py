"""Nodal constitutive update.

Classes
-------
ConstitutiveUpdate
    Recompute biomass and the hydraulic fields (K, θ, θ_free, C) at
    every node from the current pressure iterate.
"""

from __future__ import annotations

from typing import Any, Callable

import numpy as np

from pybioclog.materials.hydraulic import HydraulicProperties
from pybioclog.materials.kinetics import BiomassKinetics


class ConstitutiveUpdate:
    """Per-iteration update of the constitutive nodal fields.

    Biomass is advanced with rates frozen at the previous time level
    (old substrate, old biomass, old pressure), so it does not depend
    on the current Picard iterate.  The hydraulic fields are evaluated
    on the current pressure iterate with the new biomass.

    Values are evaluated per cell vertex and averaged over the cells
    that share a node, which matters only where the cell-wise
    saturated-conductivity factor differs between neighbours.

    Args:
        mesh: Computational mesh.
        hydraulics: Constitutive model.
        kinetics: Biomass growth kinetics.
        permeability_model: Relative-permeability model name.
        conductivity_factor: Optional callable mapping cell centres
            ``(n_cells, dim)`` to multipliers of the saturated
            conductivity.
    """

    def __init__(
        self,
        mesh: Any,
        hydraulics: HydraulicProperties,
        kinetics: BiomassKinetics,
        permeability_model: str = "soleimani",
        conductivity_factor: Callable[[np.ndarray], np.ndarray] | None = None,
    ) -> None:
        self.mesh = mesh
        self.hydraulics = hydraulics
        self.kinetics = kinetics
        self.permeability_model = permeability_model
        self.conductivity_factor = conductivity_factor

    def _factor(self) -> np.ndarray:
        if self.conductivity_factor is None:
            return np.ones(self.mesh.n_cells)
        factor = np.asarray(
            self.conductivity_factor(self.mesh.cell_centers()), dtype=float
        )
        return np.broadcast_to(factor, (self.mesh.n_cells,))

    def _scatter(self, local: np.ndarray, weights: np.ndarray) -> np.ndarray:
        return np.bincount(
            self.mesh.cells.ravel(),
            weights=(local * weights).ravel(),
            minlength=self.mesh.n_nodes,
        )

    def __call__(self, fields: Any, dt: float, grow_biomass: bool) -> None:
        """Write the updated "new" slots of *fields* in place.

        Args:
            fields: :class:`~pybioclog.coupling.state.NodalFieldState`.
            dt: Time-step size (s).
            grow_biomass: Advance biomass with Monod kinetics; otherwise
                biomass keeps its old value.
        """
        cells = self.mesh.cells
        weights = 1.0 / self.mesh.multiplicity[cells]
        rho = self.kinetics.dry_density
        hyd = self.hydraulics

        h = fields["pressure"].new[cells]
        biomass_old = fields["biomass"].old[cells]
        if grow_biomass:
            free_saturation = hyd.effective_free_saturation(
                fields["pressure"].old[cells], biomass_old, rho
            )
            biomass = self.kinetics.grow(
                biomass_old, fields["substrate"].old[cells], free_saturation, dt
            )
        else:
            biomass = biomass_old

        conductivity = self._factor()[:, None] * hyd.hydraulic_conductivity(
            h, biomass, rho, self.permeability_model
        )

        fields["biomass"].new = self._scatter(biomass, weights)
        fields["biomass_fraction"].new = fields["biomass"].new / rho
        fields["conductivity"].new = self._scatter(conductivity, weights)
        fields["total_moisture"].new = self._scatter(hyd.moisture_content_total(h), weights)
        fields["free_moisture"].new = self._scatter(
            hyd.moisture_content_free(h, biomass, rho), weights
        )
        fields["capacity"].new = self._scatter(hyd.specific_moisture_capacity(h), weights)
