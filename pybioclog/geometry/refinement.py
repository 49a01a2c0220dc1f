"""Adaptive mesh refinement.

Functions
---------
estimate_error
    Gradient-recovery (Zienkiewicz–Zhu) error indicator per cell.
flag_fixed_fraction
    Refine/coarsen flags from a fixed share of the total error.

Classes
-------
SolutionTransfer
    Carry nodal vectors across a refinement or coarsening.
MeshAdapter
    One adaptation cycle on the simulation fields.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from pybioclog.coupling.state import NodalFieldState
from pybioclog.fem.elements import CellValues, gauss_quadrature
from pybioclog.geometry.constraints import HangingNodeConstraints
from pybioclog.time.controller import Phase

logger = logging.getLogger(__name__)


def estimate_error(mesh: Any, u: np.ndarray) -> np.ndarray:
    """Zienkiewicz–Zhu indicator of a nodal field.

    The recovered gradient is the volume-weighted nodal average of the
    cell-mean gradients, interpolated back with the Q1 basis.  The
    indicator of a cell is the L2 norm of the difference between the
    recovered and the raw gradient.

    Args:
        mesh: Mesh the field lives on.
        u: Nodal values.

    Returns:
        Non-negative indicator per active cell.
    """
    cv = CellValues(mesh, gauss_quadrature(mesh.dim, 2))
    grad = cv.gradients(u)
    volumes = cv.volumes
    cell_grad = np.einsum("cqd,cq->cd", grad, cv.JxW) / volumes[:, None]

    cells = mesh.cells.ravel()
    n_v = mesh.cells.shape[1]
    weight = np.bincount(cells, weights=np.repeat(volumes, n_v), minlength=mesh.n_nodes)
    nodal = np.column_stack([
        np.bincount(
            cells,
            weights=np.repeat(volumes * cell_grad[:, d], n_v),
            minlength=mesh.n_nodes,
        )
        for d in range(mesh.dim)
    ]) / weight[:, None]

    recovered = np.einsum("qk,ckd->cqd", cv.phi, nodal[mesh.cells])
    diff = np.sum((recovered - grad) ** 2, axis=-1)
    return np.sqrt(np.sum(diff * cv.JxW, axis=1))


def flag_fixed_fraction(
    criteria: np.ndarray,
    refine_fraction: float,
    coarsen_fraction: float,
    max_cells: int | None = None,
    children_per_cell: int = 4,
) -> tuple[np.ndarray, np.ndarray]:
    """Flag the cells carrying fixed shares of the total error.

    The largest indicators summing to *refine_fraction* of the total
    are refined and the smallest summing to *coarsen_fraction* are
    coarsened.  When the predicted cell count would exceed *max_cells*,
    fewer cells are refined.

    Returns:
        ``(refine, coarsen)`` boolean masks; both empty of flags when
        the total error is zero.
    """
    criteria = np.asarray(criteria, dtype=float)
    n = len(criteria)
    refine = np.zeros(n, dtype=bool)
    coarsen = np.zeros(n, dtype=bool)
    total = criteria.sum()
    if n == 0 or not total > 0.0:
        return refine, coarsen

    descending = np.argsort(criteria, kind="stable")[::-1]
    ascending = descending[::-1]

    n_refine = 0
    if refine_fraction > 0.0:
        cumulative = np.cumsum(criteria[descending])
        n_refine = min(int(np.searchsorted(cumulative, refine_fraction * total)) + 1, n)
    n_coarsen = 0
    if coarsen_fraction > 0.0:
        cumulative = np.cumsum(criteria[ascending])
        n_coarsen = int(np.searchsorted(cumulative, coarsen_fraction * total, side="right"))

    if max_cells is not None:
        growth = children_per_cell - 1
        predicted = n + n_refine * growth - n_coarsen * growth / children_per_cell
        if predicted > max_cells:
            room = max_cells - n + n_coarsen * growth / children_per_cell
            n_refine = max(0, min(n_refine, int(room // growth)))

    refine[descending[:n_refine]] = True
    coarsen[ascending[:n_coarsen]] = True
    coarsen &= ~refine
    return refine, coarsen


class SolutionTransfer:
    """Interpolate nodal vectors onto the mesh after adaptation.

    Values are stored per mesh vertex (not per DoF), so vertices that
    survive keep their values exactly.  A new vertex takes the mean of
    the vertices it was created from, which reproduces the Q1
    interpolant on edge midpoints and cell centres.
    """

    def __init__(self, mesh: Any) -> None:
        self.mesh = mesh
        self._values: dict[int, np.ndarray] = {}
        self._n_vectors = 0

    def prepare(self, vectors: list[np.ndarray]) -> None:
        """Record *vectors* (each sized to the current DoFs)."""
        data = np.column_stack([np.asarray(v, dtype=float) for v in vectors])
        self._n_vectors = data.shape[1]
        self._values = {int(v): data[i] for i, v in enumerate(self.mesh.vertex_ids)}

    def _resolve(self, vertex: int) -> np.ndarray:
        value = self._values.get(vertex)
        if value is None:
            parents = self.mesh.vertex_parents(vertex)
            if not parents:
                raise ValueError(f"Vertex {vertex} has no recorded value or parents.")
            value = np.mean([self._resolve(p) for p in parents], axis=0)
            self._values[vertex] = value
        return value

    def interpolate(self) -> list[np.ndarray]:
        """Vectors on the adapted mesh, with hanging nodes distributed."""
        if not self._values:
            raise RuntimeError("SolutionTransfer.prepare() was not called.")
        data = np.array([self._resolve(int(v)) for v in self.mesh.vertex_ids])
        constraints = HangingNodeConstraints(self.mesh)
        return [constraints.distribute(data[:, i].copy()) for i in range(self._n_vectors)]


class MeshAdapter:
    """Refine and coarsen the mesh from the current solution.

    Args:
        mesh: The mesh to adapt in place.
        refine_fraction: Share of the total error to refine.
        coarsen_fraction: Share of the total error to coarsen.
        max_cells: Upper bound on the predicted cell count.
    """

    def __init__(
        self,
        mesh: Any,
        refine_fraction: float = 0.49,
        coarsen_fraction: float = 0.50,
        max_cells: int = 20000,
    ) -> None:
        self.mesh = mesh
        self.refine_fraction = refine_fraction
        self.coarsen_fraction = coarsen_fraction
        self.max_cells = max_cells

    @classmethod
    def from_parameters(cls, mesh: Any, params: Any) -> "MeshAdapter":
        return cls(
            mesh,
            refine_fraction=params.refine_fraction,
            coarsen_fraction=params.coarsen_fraction,
            max_cells=params.max_cells,
        )

    def adapt(self, fields: Any, phase: Phase, transport_on: bool = True) -> Any:
        """Adapt to the substrate (transport) or pressure field.

        The mesh is left alone while drying.

        Returns:
            A new :class:`~pybioclog.coupling.state.NodalFieldState` if the
            mesh changed, otherwise *fields* itself.
        """
        if phase is Phase.DRYING:
            return fields
        if transport_on and phase.transport_active:
            indicator = fields["substrate"].new
        else:
            indicator = fields["pressure"].new
        criteria = estimate_error(self.mesh, indicator)
        refine, coarsen = flag_fixed_fraction(
            criteria,
            self.refine_fraction,
            self.coarsen_fraction,
            self.max_cells,
            children_per_cell=2 ** self.mesh.dim,
        )
        return self.execute(fields, refine, coarsen)

    def execute(self, fields: Any, refine: np.ndarray, coarsen: np.ndarray) -> Any:
        """Apply flags and carry every field slot across."""
        if not (np.any(refine) or np.any(coarsen)):
            return fields
        transfer = SolutionTransfer(self.mesh)
        transfer.prepare(fields.vectors())
        n_before = self.mesh.n_cells
        if not self.mesh.refine_and_coarsen(refine, coarsen):
            return fields
        logger.info(
            "Mesh adapted: %d -> %d cells, %d DoFs",
            n_before, self.mesh.n_cells, self.mesh.n_nodes,
        )
        return NodalFieldState.from_vectors(transfer.interpolate())
