"""Hanging-node constraints for locally refined Q1 meshes.

Classes
-------
HangingNodeConstraints
    Condense constrained DoFs out of a linear system and distribute
    them back into a solution vector.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from scipy import sparse


class HangingNodeConstraints:
    """Linear constraints u_c = Σ w_m u_m for hanging vertices.

    A hanging vertex sits at the midpoint of a coarse edge, so it
    takes the mean of the edge end points.  End points that are
    themselves constrained are expanded until only free DoFs remain.

    Args:
        mesh: A :class:`~pybioclog.geometry.mesh.Mesh`.
    """

    def __init__(self, mesh: Any) -> None:
        self.n_dofs = mesh.n_nodes
        self.revision = mesh.revision
        self.lines: dict[int, dict[int, float]] = {}
        for dof in mesh.hanging_nodes:
            self.lines[dof] = self._expand(dof, mesh.hanging_nodes)
        self.constrained_dofs = np.array(sorted(self.lines), dtype=int)
        self._matrix = self._build_matrix()

    def _expand(
        self,
        dof: int,
        hanging: dict[int, tuple[int, int]],
    ) -> dict[int, float]:
        weights: dict[int, float] = {}
        stack = [(dof, 1.0)]
        while stack:
            d, w = stack.pop()
            if d in hanging:
                a, b = hanging[d]
                stack.append((a, 0.5 * w))
                stack.append((b, 0.5 * w))
            else:
                weights[d] = weights.get(d, 0.0) + w
        return weights

    def _build_matrix(self) -> sparse.csr_matrix:
        """Matrix C with u_full = C u, identity on free DoFs."""
        free = np.setdiff1d(np.arange(self.n_dofs), self.constrained_dofs)
        rows = list(free)
        cols = list(free)
        vals = [1.0] * len(free)
        for dof, weights in self.lines.items():
            for master, w in weights.items():
                rows.append(dof)
                cols.append(master)
                vals.append(w)
        return sparse.csr_matrix(
            (vals, (rows, cols)), shape=(self.n_dofs, self.n_dofs)
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        """True when the mesh is conforming."""
        return len(self.lines) == 0

    def is_constrained(self, dofs: np.ndarray) -> np.ndarray:
        """Boolean mask: which of *dofs* are hanging."""
        return np.isin(dofs, self.constrained_dofs)

    def condense(
        self,
        A: sparse.spmatrix,
        rhs: np.ndarray,
    ) -> tuple[sparse.csr_matrix, np.ndarray]:
        """Eliminate constrained DoFs from ``A x = rhs``.

        Returns ``(Cᵀ A C, Cᵀ rhs)`` with a unit-scaled diagonal on the
        constrained rows, so the system stays symmetric when *A* is.
        """
        if self.is_empty:
            return sparse.csr_matrix(A), rhs
        C = self._matrix
        A_c = (C.T @ sparse.csr_matrix(A) @ C).tolil()
        rhs_c = C.T @ rhs

        diag = np.abs(A_c.diagonal())
        free = np.ones(self.n_dofs, dtype=bool)
        free[self.constrained_dofs] = False
        scale = diag[free].mean() if free.any() else 1.0
        for dof in self.constrained_dofs:
            A_c[dof, dof] = scale
        rhs_c[self.constrained_dofs] = 0.0
        return A_c.tocsr(), rhs_c

    def distribute(self, x: np.ndarray) -> np.ndarray:
        """Overwrite constrained entries of *x* from their masters."""
        if self.is_empty:
            return x
        return self._matrix @ x

    def __repr__(self) -> str:
        return f"HangingNodeConstraints(n_constrained={len(self.lines)})"
