"""Hierarchical Q1 meshes with local refinement.

Classes
-------
Mesh
    Forest of lines (1-D) or quadrilaterals (2-D) refined by bisection,
    exposing the active cells as flat ``nodes``/``cells`` arrays.

Functions
---------
hyper_cube
    Column ``[-L, 0]^dim`` refined uniformly.
import_mesh
    Read a gmsh (or other meshio-supported) file.

Conventions: vertices of a cell are ordered lexicographically (x
fastest), the vertical axis is the last coordinate, and boundary id 1
marks the top, 2 the bottom.
"""

from __future__ import annotations

import logging
from typing import Iterator

import meshio
import numpy as np
from numpy.typing import ArrayLike

logger = logging.getLogger(__name__)

TOP = 1
BOTTOM = 2

# Local vertex indices of each face, in deal.II order.
FACE_VERTICES: dict[int, tuple[tuple[int, ...], ...]] = {
    1: ((0,), (1,)),
    2: ((0, 2), (1, 3), (0, 1), (2, 3)),
}


def _key(*vertices: int) -> tuple[int, ...]:
    return tuple(sorted(vertices))


class Mesh:
    """Locally refinable mesh of Q1 cells.

    The full refinement tree is kept internally.  Every structural
    change bumps :attr:`revision` and rebuilds the active-cell view, so
    DoF indices from an earlier revision must not be reused.

    Attributes:
        nodes: Coordinates of the active vertices (one DoF each), shape
            ``(n_nodes, dim)``.
        cells: Active cell connectivity in DoF numbering, shape
            ``(n_cells, 2**dim)``.
        cell_levels: Refinement level of each active cell.
        boundary_faces: Rows ``(cell, local_face, boundary_id)``.
        hanging_nodes: Map of constrained DoF to the two DoFs of the
            coarse edge it sits on (2-D only).
        multiplicity: Number of active cells touching each DoF.
        revision: Counter incremented on every refinement/coarsening.
        dim: Spatial dimension (1 or 2).
    """

    def __init__(
        self,
        vertices: ArrayLike,
        cells: ArrayLike,
        boundary_ids: dict[tuple[int, ...], int] | None = None,
    ) -> None:
        verts = np.asarray(vertices, dtype=float)
        if verts.ndim == 1:
            verts = verts.reshape(-1, 1)
        self.dim = verts.shape[1]
        if self.dim not in FACE_VERTICES:
            raise ValueError(f"Only 1-D and 2-D meshes are supported, got dim={self.dim}.")
        cell_arr = np.asarray(cells, dtype=int)
        if cell_arr.ndim != 2 or cell_arr.shape[1] != 2 ** self.dim:
            raise ValueError(
                f"Expected cells of shape (n, {2 ** self.dim}), got {cell_arr.shape}."
            )

        self._vertices: list[np.ndarray] = [v.copy() for v in verts]
        self._vertex_parents: list[tuple[int, ...]] = [()] * len(verts)
        self._tree: list[tuple[int, ...]] = [tuple(int(v) for v in c) for c in cell_arr]
        self._parent: list[int] = [-1] * len(cell_arr)
        self._children: list[tuple[int, ...] | None] = [None] * len(cell_arr)
        self._level: list[int] = [0] * len(cell_arr)
        self._n_roots = len(cell_arr)
        self._edge_midpoint: dict[tuple[int, ...], int] = {}
        self._half_to_edge: dict[tuple[int, ...], tuple[int, ...]] = {}
        self._cell_center: dict[int, int] = {}
        self.revision = 0

        if boundary_ids is None:
            boundary_ids = self._classify_boundary()
        self._boundary: dict[tuple[int, ...], int] = {
            _key(*k): int(v) for k, v in boundary_ids.items()
        }
        self._rebuild()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def n_nodes(self) -> int:
        """Number of active vertices (degrees of freedom)."""
        return len(self.nodes)

    @property
    def n_cells(self) -> int:
        """Number of active cells."""
        return len(self.cells)

    @property
    def vertical(self) -> np.ndarray:
        """Elevation z of every node (last coordinate)."""
        return self.nodes[:, -1]

    # ------------------------------------------------------------------
    # Derived quantities
    # ------------------------------------------------------------------

    def cell_centers(self) -> np.ndarray:
        """Centroids of the active cells, shape ``(n_cells, dim)``."""
        return self.nodes[self.cells].mean(axis=1)

    def cell_diameters(self) -> np.ndarray:
        """Largest vertex-to-vertex distance of each cell."""
        x = self.nodes[self.cells]
        if self.dim == 1:
            return np.abs(x[:, 1, 0] - x[:, 0, 0])
        d1 = np.linalg.norm(x[:, 3] - x[:, 0], axis=1)
        d2 = np.linalg.norm(x[:, 2] - x[:, 1], axis=1)
        return np.maximum(d1, d2)

    def cell_measures(self) -> np.ndarray:
        """Length (1-D) or area (2-D) of each cell."""
        x = self.nodes[self.cells]
        if self.dim == 1:
            return np.abs(x[:, 1, 0] - x[:, 0, 0])
        # Shoelace on the counter-clockwise loop 0-1-3-2.
        loop = x[:, [0, 1, 3, 2]]
        xs, ys = loop[..., 0], loop[..., 1]
        return 0.5 * np.abs(
            np.sum(xs * np.roll(ys, -1, axis=1) - np.roll(xs, -1, axis=1) * ys, axis=1)
        )

    def boundary_dofs(self, boundary_id: int) -> np.ndarray:
        """Sorted DoFs lying on faces tagged *boundary_id*."""
        faces = self.boundary_faces[self.boundary_faces[:, 2] == boundary_id]
        dofs: set[int] = set()
        for cell, local_face, _ in faces:
            for k in FACE_VERTICES[self.dim][local_face]:
                dofs.add(int(self.cells[cell, k]))
        return np.array(sorted(dofs), dtype=int)

    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Lower and upper corners of the bounding box."""
        return self.nodes.min(axis=0), self.nodes.max(axis=0)

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def refine_global(self, times: int = 1) -> None:
        """Refine every active cell *times* times."""
        for _ in range(times):
            self.refine_and_coarsen(refine=np.ones(self.n_cells, dtype=bool))

    def refine_and_coarsen(
        self,
        refine: ArrayLike | None = None,
        coarsen: ArrayLike | None = None,
    ) -> bool:
        """Execute refinement and coarsening flags on the active cells.

        In 2-D, refinement is propagated so that neighbouring cells
        differ by at most one level.  A parent is coarsened only when
        all of its children are flagged and the result keeps that
        balance.

        Args:
            refine: Boolean mask over active cells.
            coarsen: Boolean mask over active cells.

        Returns:
            True if the mesh changed.
        """
        refine_mask = self._mask(refine)
        coarsen_mask = self._mask(coarsen) & ~refine_mask

        to_refine = {self._active[i] for i in np.flatnonzero(refine_mask)}
        flagged = {self._active[i] for i in np.flatnonzero(coarsen_mask)}
        if self.dim == 2:
            to_refine = self._balance(to_refine)
        for c in sorted(to_refine):
            self._refine_cell(c)
        if to_refine:
            self._rebuild()

        flagged -= to_refine
        coarsened = 0
        for p in sorted({self._parent[c] for c in flagged if self._parent[c] >= 0}):
            kids = self._children[p]
            if all(k in flagged and self._children[k] is None for k in kids):
                if self._can_coarsen(p):
                    self._children[p] = None
                    coarsened += 1

        changed = bool(to_refine) or coarsened > 0
        if changed:
            self._rebuild()
            self.revision += 1
            logger.debug(
                "Mesh revision %d: refined %d, coarsened %d, %d active cells",
                self.revision, len(to_refine), coarsened, self.n_cells,
            )
        return changed

    def _mask(self, flags: ArrayLike | None) -> np.ndarray:
        if flags is None:
            return np.zeros(self.n_cells, dtype=bool)
        mask = np.asarray(flags, dtype=bool)
        if mask.shape != (self.n_cells,):
            raise ValueError(
                f"Flag array has shape {mask.shape}, expected ({self.n_cells},)."
            )
        return mask

    def _balance(self, to_refine: set[int]) -> set[int]:
        """Close *to_refine* under the one-level face rule."""
        result = set(to_refine)
        queue = list(to_refine)
        while queue:
            c = queue.pop()
            for local in FACE_VERTICES[2]:
                key = _key(*(self._tree[c][k] for k in local))
                edge = self._half_to_edge.get(key)
                if edge is None or len(self._face_cells.get(key, ())) > 1:
                    continue
                for d in self._face_cells.get(edge, ()):
                    if d != c and d not in result:
                        result.add(d)
                        queue.append(d)
        return result

    def _can_coarsen(self, parent: int) -> bool:
        """A parent can return if no neighbour is two levels finer."""
        if self.dim == 1:
            return True
        v = self._tree[parent]
        for local in FACE_VERTICES[2]:
            a, b = (v[k] for k in local)
            mid = self._edge_midpoint.get(_key(a, b))
            if mid is None:
                continue
            for half in (_key(a, mid), _key(mid, b)):
                quarter = self._edge_midpoint.get(half)
                if quarter is not None and self._vertex_to_dof[quarter] >= 0:
                    return False
        return True

    def _add_vertex(self, coords: np.ndarray, parents: tuple[int, ...]) -> int:
        self._vertices.append(coords)
        self._vertex_parents.append(parents)
        if len(self._vertex_to_dof) < len(self._vertices):
            self._vertex_to_dof = np.append(self._vertex_to_dof, -1)
        return len(self._vertices) - 1

    def _midpoint(self, a: int, b: int) -> int:
        key = _key(a, b)
        mid = self._edge_midpoint.get(key)
        if mid is None:
            coords = 0.5 * (self._vertices[a] + self._vertices[b])
            mid = self._add_vertex(coords, key)
            self._edge_midpoint[key] = mid
            self._half_to_edge[_key(a, mid)] = key
            self._half_to_edge[_key(mid, b)] = key
        return mid

    def _center(self, c: int) -> int:
        center = self._cell_center.get(c)
        if center is None:
            v = self._tree[c]
            coords = np.mean([self._vertices[k] for k in v], axis=0)
            center = self._add_vertex(coords, v)
            self._cell_center[c] = center
        return center

    def _add_cell(self, vertices: tuple[int, ...], parent: int) -> int:
        self._tree.append(vertices)
        self._parent.append(parent)
        self._children.append(None)
        self._level.append(self._level[parent] + 1)
        return len(self._tree) - 1

    def _refine_cell(self, c: int) -> None:
        v = self._tree[c]
        if self.dim == 1:
            m = self._midpoint(v[0], v[1])
            self._children[c] = (
                self._add_cell((v[0], m), c),
                self._add_cell((m, v[1]), c),
            )
            return

        g = {
            (0, 0): v[0], (2, 0): v[1], (0, 2): v[2], (2, 2): v[3],
            (1, 0): self._midpoint(v[0], v[1]),
            (1, 2): self._midpoint(v[2], v[3]),
            (0, 1): self._midpoint(v[0], v[2]),
            (2, 1): self._midpoint(v[1], v[3]),
            (1, 1): self._center(c),
        }
        self._children[c] = tuple(
            self._add_cell(
                (g[i, j], g[i + 1, j], g[i, j + 1], g[i + 1, j + 1]), c
            )
            for j in (0, 1)
            for i in (0, 1)
        )
        for local in FACE_VERTICES[2]:
            a, b = (v[k] for k in local)
            bid = self._boundary.get(_key(a, b))
            if bid is not None:
                m = self._edge_midpoint[_key(a, b)]
                self._boundary[_key(a, m)] = bid
                self._boundary[_key(m, b)] = bid

    # ------------------------------------------------------------------
    # Active view
    # ------------------------------------------------------------------

    def _leaves(self, c: int) -> Iterator[int]:
        kids = self._children[c]
        if kids is None:
            yield c
        else:
            for k in kids:
                yield from self._leaves(k)

    def _rebuild(self) -> None:
        active = [leaf for root in range(self._n_roots) for leaf in self._leaves(root)]
        self._active = active
        used = sorted({v for c in active for v in self._tree[c]})
        coords = np.asarray(self._vertices, dtype=float)

        self._vertex_to_dof = np.full(len(coords), -1, dtype=int)
        self._vertex_to_dof[used] = np.arange(len(used))
        self.vertex_ids = np.asarray(used, dtype=int)
        self.nodes = coords[used]
        self.cells = self._vertex_to_dof[np.asarray([self._tree[c] for c in active], dtype=int)]
        self.cell_levels = np.asarray([self._level[c] for c in active], dtype=int)
        self.multiplicity = np.bincount(self.cells.ravel(), minlength=len(used))

        face_cells: dict[tuple[int, ...], list[int]] = {}
        boundary_faces = []
        for i, c in enumerate(active):
            v = self._tree[c]
            for lf, local in enumerate(FACE_VERTICES[self.dim]):
                key = _key(*(v[k] for k in local))
                face_cells.setdefault(key, []).append(c)
                bid = self._boundary.get(key)
                if bid is not None:
                    boundary_faces.append((i, lf, bid))
        self._face_cells = face_cells
        self.boundary_faces = np.asarray(boundary_faces, dtype=int).reshape(-1, 3)

        self.hanging_nodes: dict[int, tuple[int, int]] = {}
        if self.dim == 2:
            for c in active:
                v = self._tree[c]
                for local in FACE_VERTICES[2]:
                    a, b = (v[k] for k in local)
                    mid = self._edge_midpoint.get(_key(a, b))
                    if mid is not None and self._vertex_to_dof[mid] >= 0:
                        self.hanging_nodes[int(self._vertex_to_dof[mid])] = (
                            int(self._vertex_to_dof[a]),
                            int(self._vertex_to_dof[b]),
                        )

    def vertex_parents(self, vertex: int) -> tuple[int, ...]:
        """Vertices averaged to create *vertex* (empty for coarse vertices)."""
        return self._vertex_parents[vertex]

    def vertex_coordinates(self) -> np.ndarray:
        """Coordinates of every vertex ever created, active or not."""
        return np.asarray(self._vertices, dtype=float)

    # ------------------------------------------------------------------
    # Boundary tagging
    # ------------------------------------------------------------------

    def _classify_boundary(self, rtol: float = 1e-10) -> dict[tuple[int, ...], int]:
        """Tag exterior faces by elevation: top 1, bottom 2, others 0."""
        counts: dict[tuple[int, ...], int] = {}
        for v in self._tree:
            for local in FACE_VERTICES[self.dim]:
                key = _key(*(v[k] for k in local))
                counts[key] = counts.get(key, 0) + 1
        z = np.asarray(self._vertices)[:, -1]
        z_top, z_bottom = z.max(), z.min()
        tol = rtol * max(1.0, abs(z_top - z_bottom))
        ids: dict[tuple[int, ...], int] = {}
        for key, count in counts.items():
            if count != 1:
                continue
            zf = z[list(key)]
            if np.all(np.abs(zf - z_top) < tol):
                ids[key] = TOP
            elif np.all(np.abs(zf - z_bottom) < tol):
                ids[key] = BOTTOM
            else:
                ids[key] = 0
        return ids

    def __repr__(self) -> str:
        return (
            f"Mesh(n_nodes={self.n_nodes}, n_cells={self.n_cells}, "
            f"dim={self.dim}, revision={self.revision})"
        )


# ======================================================================
# Factories
# ======================================================================


def hyper_cube(dim: int, domain_size: float, refinement_level: int = 0) -> Mesh:
    """Square column ``[-domain_size, 0]^dim`` refined uniformly.

    Args:
        dim: 1 or 2.
        domain_size: Edge length L (cm).
        refinement_level: Number of global bisections.

    Returns:
        Mesh with the top face tagged 1 and the bottom face tagged 2.
    """
    lo, hi = -float(domain_size), 0.0
    if dim == 1:
        vertices = np.array([[lo], [hi]])
        cells = np.array([[0, 1]])
    elif dim == 2:
        vertices = np.array([[lo, lo], [hi, lo], [lo, hi], [hi, hi]])
        cells = np.array([[0, 1, 2, 3]])
    else:
        raise ValueError(f"hyper_cube supports dim 1 or 2, got {dim}.")
    mesh = Mesh(vertices, cells)
    mesh.refine_global(refinement_level)
    return mesh


def import_mesh(filename: str, refinement_level: int = 0) -> Mesh:
    """Import a line (1-D) or quadrilateral (2-D) mesh using *meshio*.

    Boundary ids are taken from the ``gmsh:physical`` tags of boundary
    vertices (1-D) or lines (2-D).  Without tags, the top and bottom
    faces are found geometrically.

    Args:
        filename: Path to the mesh file.
        refinement_level: Number of global bisections after import.

    Returns:
        Mesh instance.
    """
    m = meshio.read(filename)
    types = [block.type for block in m.cells]
    if "quad" in types:
        dim, cell_type, face_type = 2, "quad", "line"
    elif "line" in types:
        dim, cell_type, face_type = 1, "line", "vertex"
    else:
        raise ValueError(
            f"{filename}: no quad or line cells found (cell types {types})."
        )

    vertices = m.points[:, :dim]
    tags = m.cell_data.get("gmsh:physical")
    cells = []
    boundary: dict[tuple[int, ...], int] = {}
    for i, block in enumerate(m.cells):
        data = np.asarray(block.data, dtype=int)
        if block.type == cell_type:
            cells.append(data)
        elif block.type == face_type and tags is not None:
            for face, tag in zip(data, tags[i]):
                boundary[_key(*face)] = int(tag)
    cells_arr = np.vstack(cells)

    if dim == 1:
        x = vertices[cells_arr, 0]
        cells_arr = np.where((x[:, 0] <= x[:, 1])[:, None], cells_arr, cells_arr[:, ::-1])
    else:
        # meshio quads run counter-clockwise; Q1 cells are lexicographic.
        cells_arr = cells_arr[:, [0, 1, 3, 2]]

    mesh = Mesh(vertices, cells_arr, boundary_ids=boundary or None)
    logger.info("Imported %s: %d cells, %d nodes", filename, mesh.n_cells, mesh.n_nodes)
    mesh.refine_global(refinement_level)
    return mesh
