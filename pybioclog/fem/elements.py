"""Q1 finite-element evaluation.

Shape functions live on the unit cell ``[0, 1]^dim`` with vertices in
lexicographic order.  Evaluations are vectorised over all active cells
(or boundary faces) of a mesh at once.

Classes
-------
CellValues
    Shape values, physical gradients and JxW at cell quadrature points.
FaceValues
    The same on boundary faces, plus outward unit normals.

Functions
---------
gauss_quadrature
    Tensor-product Gauss–Legendre rule.
trapezoidal_quadrature
    Vertex rule (diagonal, "lumped" mass matrices).
shape_values, shape_gradients
    Q1 basis on the reference cell.
point_value
    Evaluate a nodal field at an arbitrary point.
"""

from __future__ import annotations

import itertools
from typing import Any

import numpy as np
from numpy.typing import ArrayLike

from pybioclog.geometry.mesh import FACE_VERTICES

# Outward reference normal of each local face.
REFERENCE_NORMALS: dict[int, tuple[tuple[float, ...], ...]] = {
    1: ((-1.0,), (1.0,)),
    2: ((-1.0, 0.0), (1.0, 0.0), (0.0, -1.0), (0.0, 1.0)),
}


# ======================================================================
# Reference element
# ======================================================================


def gauss_quadrature(dim: int, n_points: int) -> tuple[np.ndarray, np.ndarray]:
    """Gauss–Legendre rule on ``[0, 1]^dim``.

    Args:
        dim: Spatial dimension.
        n_points: Points per direction.

    Returns:
        ``(points, weights)`` with shapes ``(n_points**dim, dim)`` and
        ``(n_points**dim,)``; the first coordinate varies fastest.
    """
    x, w = np.polynomial.legendre.leggauss(n_points)
    x = 0.5 * (x + 1.0)
    w = 0.5 * w
    pts = np.array([p[::-1] for p in itertools.product(x, repeat=dim)])
    wts = np.array([np.prod(p) for p in itertools.product(w, repeat=dim)])
    return pts, wts


def trapezoidal_quadrature(dim: int) -> tuple[np.ndarray, np.ndarray]:
    """Vertex rule on ``[0, 1]^dim``; Q1 mass matrices become diagonal."""
    pts = np.array([p[::-1] for p in itertools.product((0.0, 1.0), repeat=dim)])
    wts = np.full(len(pts), 1.0 / 2 ** dim)
    return pts, wts


def shape_values(points: ArrayLike) -> np.ndarray:
    """Q1 basis values, shape ``(n_points, 2**dim)``."""
    pts = np.atleast_2d(np.asarray(points, dtype=float))
    factors = np.stack([1.0 - pts, pts], axis=-1)  # (nq, dim, 2)
    dim = pts.shape[1]
    cols = []
    for idx in itertools.product((0, 1), repeat=dim):
        bits = idx[::-1]
        cols.append(np.prod([factors[:, d, bits[d]] for d in range(dim)], axis=0))
    return np.stack(cols, axis=1)


def shape_gradients(points: ArrayLike) -> np.ndarray:
    """Reference gradients of the Q1 basis, shape ``(n_points, 2**dim, dim)``."""
    pts = np.atleast_2d(np.asarray(points, dtype=float))
    factors = np.stack([1.0 - pts, pts], axis=-1)
    slopes = (-1.0, 1.0)
    dim = pts.shape[1]
    grads = []
    for idx in itertools.product((0, 1), repeat=dim):
        bits = idx[::-1]
        g = []
        for d in range(dim):
            term = np.full(len(pts), slopes[bits[d]])
            for e in range(dim):
                if e != d:
                    term = term * factors[:, e, bits[e]]
            g.append(term)
        grads.append(np.stack(g, axis=-1))
    return np.stack(grads, axis=1)


def face_quadrature(
    dim: int,
    local_face: int,
    n_points: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Gauss rule on one face of the reference cell, in cell coordinates."""
    if dim == 1:
        return np.array([[float(local_face)]]), np.array([1.0])
    t, w = gauss_quadrature(1, n_points)
    t = t[:, 0]
    axis, side = divmod(local_face, 2)
    pts = np.empty((len(t), 2))
    pts[:, axis] = float(side)
    pts[:, 1 - axis] = t
    return pts, w


# ======================================================================
# Mapped values
# ======================================================================


def _jacobians(X: np.ndarray, dphi: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    J = np.einsum("cki,qkj->cqij", X, dphi)
    return np.linalg.det(J), np.linalg.inv(J)


class CellValues:
    """Basis data at the quadrature points of every active cell.

    Attributes:
        phi: Shape values, ``(n_q, n_v)``.
        grads: Physical gradients, ``(n_cells, n_q, n_v, dim)``.
        JxW: Jacobian times weight, ``(n_cells, n_q)``.
        points: Physical quadrature points, ``(n_cells, n_q, dim)``.
    """

    def __init__(self, mesh: Any, quadrature: tuple[np.ndarray, np.ndarray]) -> None:
        ref_points, weights = quadrature
        self.cells = mesh.cells
        self.phi = shape_values(ref_points)
        dphi = shape_gradients(ref_points)
        X = mesh.nodes[mesh.cells]
        det, inv = _jacobians(X, dphi)
        self.grads = np.einsum("qkj,cqji->cqki", dphi, inv)
        self.JxW = np.abs(det) * weights
        self.points = np.einsum("qk,cki->cqi", self.phi, X)

    @property
    def volumes(self) -> np.ndarray:
        """Measure of every cell."""
        return self.JxW.sum(axis=1)

    def values(self, u: np.ndarray) -> np.ndarray:
        """Interpolate nodal *u* to quadrature points, ``(n_cells, n_q)``."""
        return np.einsum("ck,qk->cq", u[self.cells], self.phi)

    def gradients(self, u: np.ndarray) -> np.ndarray:
        """Gradient of nodal *u* at quadrature points, ``(n_cells, n_q, dim)``."""
        return np.einsum("ck,cqkd->cqd", u[self.cells], self.grads)


class FaceValues:
    """Basis data at quadrature points on selected boundary faces.

    Args:
        mesh: Mesh providing ``boundary_faces``.
        n_points: Gauss points per face direction.
        boundary_ids: Restrict to these ids (default: every boundary face).

    Attributes:
        face_cells: Active cell owning each face.
        boundary_ids: Boundary id of each face.
        phi: ``(n_faces, n_q, n_v)``.
        grads: ``(n_faces, n_q, n_v, dim)``.
        JxW: ``(n_faces, n_q)``.
        normals: Outward unit normals, ``(n_faces, n_q, dim)``.
    """

    def __init__(
        self,
        mesh: Any,
        n_points: int,
        boundary_ids: tuple[int, ...] | None = None,
    ) -> None:
        faces = mesh.boundary_faces
        if boundary_ids is not None:
            faces = faces[np.isin(faces[:, 2], boundary_ids)]
        dim = mesh.dim
        n_v = 2 ** dim
        n_q = 1 if dim == 1 else n_points

        self.face_cells = faces[:, 0]
        self.boundary_ids = faces[:, 2]
        self.cells = mesh.cells[self.face_cells]
        n_f = len(faces)
        self.phi = np.zeros((n_f, n_q, n_v))
        self.grads = np.zeros((n_f, n_q, n_v, dim))
        self.JxW = np.zeros((n_f, n_q))
        self.normals = np.zeros((n_f, n_q, dim))

        for lf in range(len(FACE_VERTICES[dim])):
            sel = faces[:, 1] == lf
            if not sel.any():
                continue
            pts, w = face_quadrature(dim, lf, n_points)
            phi = shape_values(pts)
            dphi = shape_gradients(pts)
            X = mesh.nodes[self.cells[sel]]
            det, inv = _jacobians(X, dphi)
            n_ref = np.asarray(REFERENCE_NORMALS[dim][lf])
            n_vec = np.einsum("cqji,j->cqi", inv, n_ref)
            scale = np.linalg.norm(n_vec, axis=-1)
            self.phi[sel] = phi
            self.grads[sel] = np.einsum("qkj,cqji->cqki", dphi, inv)
            self.JxW[sel] = np.abs(det) * scale * w
            self.normals[sel] = n_vec / scale[..., None]

    def __len__(self) -> int:
        return len(self.face_cells)

    def values(self, u: np.ndarray) -> np.ndarray:
        """Nodal *u* at face quadrature points, ``(n_faces, n_q)``."""
        return np.einsum("fk,fqk->fq", u[self.cells], self.phi)

    def normal_gradients(self, u: np.ndarray) -> np.ndarray:
        """n·∇u at face quadrature points, ``(n_faces, n_q)``."""
        grad = np.einsum("fk,fqkd->fqd", u[self.cells], self.grads)
        return np.einsum("fqd,fqd->fq", grad, self.normals)


# ======================================================================
# Point evaluation
# ======================================================================


def _reference_coordinates(X: np.ndarray, point: np.ndarray, tol: float) -> np.ndarray | None:
    """Invert the Q1 map of one cell by Newton's method."""
    xi = np.full(point.shape, 0.5)
    for _ in range(20):
        x = shape_values(xi) @ X
        J = np.einsum("ki,kj->ij", X, shape_gradients(xi)[0])
        step = np.linalg.solve(J, point - x[0])
        xi = xi + step
        if np.linalg.norm(step) < 1e-12:
            break
    if np.all(xi >= -tol) and np.all(xi <= 1.0 + tol):
        return np.clip(xi, 0.0, 1.0)
    return None


def point_value(mesh: Any, u: np.ndarray, point: ArrayLike, tol: float = 1e-8) -> float:
    """Evaluate the Q1 interpolant of nodal *u* at *point*.

    Args:
        mesh: Mesh the field lives on.
        u: Nodal values, shape ``(n_nodes,)``.
        point: Physical coordinates, length ``dim``.
        tol: Reference-coordinate tolerance for points on cell faces.

    Returns:
        Interpolated value.

    Raises:
        ValueError: If *point* lies outside the mesh.
    """
    p = np.asarray(point, dtype=float).reshape(mesh.dim)
    X_all = mesh.nodes[mesh.cells]
    span = np.ptp(mesh.nodes, axis=0).max()
    slack = tol * max(span, 1.0)
    lo = X_all.min(axis=1) - slack
    hi = X_all.max(axis=1) + slack
    candidates = np.flatnonzero(np.all((p >= lo) & (p <= hi), axis=1))
    for c in candidates:
        xi = _reference_coordinates(X_all[c], p, tol)
        if xi is not None:
            return float(shape_values(xi)[0] @ u[mesh.cells[c]])
    raise ValueError(f"Point {tuple(p)} lies outside the mesh.")
