"""Global assembly of element contributions.

Classes
-------
SparsityPattern
    Row/column index arrays for the current mesh's DoF connectivity.
LinearSystem
    Assembled matrices and right-hand side of one equation.

Functions
---------
apply_dirichlet
    Impose fixed values by symmetric row/column elimination.
apply_constraints
    Hanging-node condensation followed by Dirichlet values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from scipy import sparse


class SparsityPattern:
    """Scatter indices for cell-local blocks.

    Built once per mesh revision; a cell-local array of shape
    ``(n_cells, n_v, n_v)`` maps onto COO triplets whose duplicates are
    summed on conversion to CSR.
    """

    def __init__(self, mesh: Any) -> None:
        cells = mesh.cells
        n_v = cells.shape[1]
        self.cells = cells
        self.n_dofs = mesh.n_nodes
        self.revision = mesh.revision
        self.rows = np.repeat(cells, n_v, axis=1).ravel()
        self.cols = np.tile(cells, (1, n_v)).ravel()

    def matrix(self, local: np.ndarray) -> sparse.csr_matrix:
        """Assemble ``(n_cells, n_v, n_v)`` blocks into a CSR matrix."""
        return sparse.csr_matrix(
            (local.ravel(), (self.rows, self.cols)),
            shape=(self.n_dofs, self.n_dofs),
        )

    def vector(self, local: np.ndarray) -> np.ndarray:
        """Assemble ``(n_cells, n_v)`` contributions into a vector."""
        return np.bincount(
            self.cells.ravel(), weights=local.ravel(), minlength=self.n_dofs
        )


@dataclass
class LinearSystem:
    """One equation's global system ``matrix · x = rhs``.

    Attributes:
        matrix: System matrix after constraints and boundary values.
        rhs: Right-hand side after constraints and boundary values.
        mass: Mass (storage) matrix.
        stiffness_new: Operator at the new time level.
        stiffness_old: Operator at the old time level.
        dirichlet_dofs: DoFs with imposed values.
        dirichlet_values: Values imposed on *dirichlet_dofs*.
        diagnostics: Boundary fluxes and integrals measured during
            assembly, keyed by name.
    """

    matrix: sparse.csr_matrix
    rhs: np.ndarray
    mass: sparse.csr_matrix
    stiffness_new: sparse.csr_matrix
    stiffness_old: sparse.csr_matrix
    dirichlet_dofs: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=int))
    dirichlet_values: np.ndarray = field(default_factory=lambda: np.empty(0))
    diagnostics: dict[str, float] = field(default_factory=dict)

    @property
    def n_dofs(self) -> int:
        return len(self.rhs)


def apply_dirichlet(
    A: sparse.spmatrix,
    rhs: np.ndarray,
    dofs: np.ndarray,
    values: np.ndarray,
) -> tuple[sparse.csr_matrix, np.ndarray]:
    """Impose ``x[dofs] = values``, eliminating rows and columns.

    The known values are moved to the right-hand side of the other
    rows so a symmetric matrix stays symmetric.  The diagonal entry of
    each fixed row is kept to preserve the matrix scaling.
    """
    A = sparse.csr_matrix(A, copy=True)
    rhs = np.array(rhs, dtype=float, copy=True)
    dofs = np.asarray(dofs, dtype=int)
    if len(dofs) == 0:
        return A, rhs
    values = np.broadcast_to(np.asarray(values, dtype=float), dofs.shape)

    g = np.zeros(A.shape[0])
    g[dofs] = values
    rhs -= A @ g

    diag = np.abs(A.diagonal())
    fixed_diag = diag[dofs]
    fallback = diag[diag > 0].mean() if np.any(diag > 0) else 1.0
    fixed_diag = np.where(fixed_diag > 0, fixed_diag, fallback)

    keep = np.ones(A.shape[0])
    keep[dofs] = 0.0
    D = sparse.diags(keep)
    pin = np.zeros(A.shape[0])
    pin[dofs] = fixed_diag
    A = (D @ A @ D + sparse.diags(pin)).tocsr()
    rhs[dofs] = fixed_diag * values
    return A, rhs


def apply_constraints(
    A: sparse.spmatrix,
    rhs: np.ndarray,
    constraints: Any,
    dofs: np.ndarray,
    values: np.ndarray,
) -> tuple[sparse.csr_matrix, np.ndarray]:
    """Condense hanging nodes, then impose Dirichlet values on free DoFs.

    Hanging DoFs on a fixed boundary take their value from the
    constraint distribution after the solve.
    """
    A, rhs = constraints.condense(A, rhs)
    dofs = np.asarray(dofs, dtype=int)
    values = np.broadcast_to(np.asarray(values, dtype=float), dofs.shape)
    free = ~constraints.is_constrained(dofs)
    return apply_dirichlet(A, rhs, dofs[free], values[free])
