"""Derived field computation.

Functions
---------
harmonic_mean_conductivity
    Column-averaged hydraulic conductivity n / Σ 1/K.
compute_velocity
    Cell Darcy flux from pressure and conductivity.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pybioclog.fem.elements import CellValues, gauss_quadrature
from pybioclog.physics.richards import darcy_flux


def harmonic_mean_conductivity(conductivity: np.ndarray) -> float:
    """Harmonic mean of nodal conductivities.

    Returns 0 when any conductivity vanishes (a fully plugged node).
    """
    k = np.asarray(conductivity, dtype=float)
    if np.any(k <= 0.0):
        return 0.0
    return float(len(k) / np.sum(1.0 / k))


def compute_velocity(mesh: Any, pressure: np.ndarray, conductivity: np.ndarray) -> np.ndarray:
    """Darcy flux q = −K∇(h + z) per cell.

    Args:
        mesh: Mesh the fields live on.
        pressure: Nodal pressure head (cm).
        conductivity: Nodal hydraulic conductivity (cm/s).

    Returns:
        Array of shape ``(n_cells, dim)``.
    """
    cv = CellValues(mesh, gauss_quadrature(mesh.dim, 2))
    return darcy_flux(cv, pressure, conductivity, mesh.vertical)
