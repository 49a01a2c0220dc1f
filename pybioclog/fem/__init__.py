"""Finite elements: Q1 basis, quadrature and assembly."""

from pybioclog.fem.elements import (
    CellValues,
    FaceValues,
    gauss_quadrature,
    point_value,
    trapezoidal_quadrature,
)
from pybioclog.fem.assembly import (
    LinearSystem,
    SparsityPattern,
    apply_constraints,
    apply_dirichlet,
)

__all__ = [
    "CellValues",
    "FaceValues",
    "gauss_quadrature",
    "trapezoidal_quadrature",
    "point_value",
    "LinearSystem",
    "SparsityPattern",
    "apply_constraints",
    "apply_dirichlet",
]
