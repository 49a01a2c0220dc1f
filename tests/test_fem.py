"""Tests for the finite-element module."""

import numpy as np
import pytest
from scipy.sparse.linalg import spsolve

from pybioclog.fem.assembly import SparsityPattern, apply_constraints, apply_dirichlet
from pybioclog.fem.elements import (
    CellValues,
    FaceValues,
    gauss_quadrature,
    point_value,
    shape_gradients,
    shape_values,
    trapezoidal_quadrature,
)
from pybioclog.geometry.constraints import HangingNodeConstraints
from pybioclog.geometry.mesh import BOTTOM, TOP, hyper_cube


def _mass_blocks(cv):
    return np.einsum("cq,qi,qj->cij", cv.JxW, cv.phi, cv.phi)


def _laplace_blocks(cv):
    return np.einsum("cq,cqid,cqjd->cij", cv.JxW, cv.grads, cv.grads)


class TestReferenceElement:
    @pytest.mark.parametrize("dim", [1, 2])
    def test_gauss_weights_sum_to_one(self, dim):
        _, w = gauss_quadrature(dim, 3)
        assert w.sum() == pytest.approx(1.0)

    @pytest.mark.parametrize("dim", [1, 2])
    def test_partition_of_unity(self, dim):
        pts, _ = gauss_quadrature(dim, 3)
        np.testing.assert_allclose(shape_values(pts).sum(axis=1), 1.0)
        np.testing.assert_allclose(shape_gradients(pts).sum(axis=1), 0.0, atol=1e-14)

    def test_vertex_rule_is_nodal(self):
        pts, w = trapezoidal_quadrature(2)
        np.testing.assert_allclose(shape_values(pts), np.eye(4))
        np.testing.assert_allclose(w, 0.25)

    def test_lexicographic_vertices(self):
        pts, _ = trapezoidal_quadrature(2)
        np.testing.assert_allclose(pts, [[0, 0], [1, 0], [0, 1], [1, 1]])


class TestCellValues:
    def test_volumes(self):
        mesh = hyper_cube(2, 6.0, 1)
        cv = CellValues(mesh, gauss_quadrature(2, 2))
        np.testing.assert_allclose(cv.volumes, 9.0)

    def test_linear_gradient_exact(self):
        mesh = _refined_square()
        cv = CellValues(mesh, gauss_quadrature(2, 2))
        u = 3.0 * mesh.nodes[:, 0] - 2.0 * mesh.nodes[:, 1] + 1.0
        grad = cv.gradients(u)
        np.testing.assert_allclose(grad[..., 0], 3.0)
        np.testing.assert_allclose(grad[..., 1], -2.0)
        x = cv.points
        np.testing.assert_allclose(cv.values(u), 3.0 * x[..., 0] - 2.0 * x[..., 1] + 1.0)

    def test_lumped_mass_is_diagonal(self):
        mesh = hyper_cube(2, 4.0, 2)
        cv = CellValues(mesh, trapezoidal_quadrature(2))
        M = SparsityPattern(mesh).matrix(_mass_blocks(cv)).toarray()
        np.testing.assert_allclose(M, np.diag(np.diag(M)))
        assert M.sum() == pytest.approx(16.0)


class TestFaceValues:
    def test_top_and_bottom_normals(self):
        mesh = hyper_cube(2, 4.0, 2)
        fv = FaceValues(mesh, 2, (TOP, BOTTOM))
        top = fv.boundary_ids == TOP
        np.testing.assert_allclose(fv.normals[top], np.broadcast_to([0.0, 1.0], fv.normals[top].shape))
        np.testing.assert_allclose(fv.normals[~top][..., 1], -1.0)
        assert fv.JxW[top].sum() == pytest.approx(4.0)
        assert len(fv) == 8

    def test_normal_gradient(self):
        mesh = hyper_cube(2, 4.0, 1)
        fv = FaceValues(mesh, 2, (TOP,))
        u = 5.0 * mesh.nodes[:, 1]
        np.testing.assert_allclose(fv.normal_gradients(u), 5.0)
        np.testing.assert_allclose(fv.values(u), 0.0, atol=1e-14)

    def test_1d_faces(self):
        mesh = hyper_cube(1, 10.0, 2)
        fv = FaceValues(mesh, 1, (TOP, BOTTOM))
        assert len(fv) == 2
        for bid, sign in ((TOP, 1.0), (BOTTOM, -1.0)):
            sel = fv.boundary_ids == bid
            np.testing.assert_allclose(fv.normals[sel], sign)
            np.testing.assert_allclose(fv.JxW[sel], 1.0)


class TestPointValue:
    def test_linear_field(self):
        mesh = _refined_square()
        u = mesh.nodes[:, 0] + 2.0 * mesh.nodes[:, 1]
        assert point_value(mesh, u, [-1.3, -0.2]) == pytest.approx(-1.7)

    def test_on_vertex(self):
        mesh = hyper_cube(1, 10.0, 2)
        u = mesh.nodes[:, 0] ** 2
        assert point_value(mesh, u, [-5.0]) == pytest.approx(25.0)

    def test_outside_raises(self):
        mesh = hyper_cube(2, 4.0, 1)
        with pytest.raises(ValueError, match="outside"):
            point_value(mesh, np.zeros(mesh.n_nodes), [1.0, -1.0])


def _refined_square():
    mesh = hyper_cube(2, 4.0, 1)
    centers = mesh.cell_centers()
    flags = np.zeros(mesh.n_cells, dtype=bool)
    flags[np.argmin(centers[:, 0] - centers[:, 1])] = True
    mesh.refine_and_coarsen(refine=flags)
    return mesh


class TestAssembly:
    def test_vector_counts_multiplicity(self):
        mesh = hyper_cube(2, 4.0, 2)
        pattern = SparsityPattern(mesh)
        counts = pattern.vector(np.ones(mesh.cells.shape))
        np.testing.assert_allclose(counts, mesh.multiplicity)
        assert pattern.revision == mesh.revision

    def test_dirichlet_keeps_symmetry(self):
        mesh = hyper_cube(1, 10.0, 3)
        cv = CellValues(mesh, gauss_quadrature(1, 2))
        K = SparsityPattern(mesh).matrix(_laplace_blocks(cv))
        dofs = np.array([0, mesh.n_nodes - 1])
        A, b = apply_dirichlet(K, np.zeros(mesh.n_nodes), dofs, np.array([2.0, 7.0]))
        dense = A.toarray()
        np.testing.assert_allclose(dense, dense.T)
        x = spsolve(A.tocsc(), b)
        z = mesh.nodes[:, 0]
        expected = 2.0 + 5.0 * (z - z[0]) / (z[-1] - z[0])
        np.testing.assert_allclose(x, expected)

    def test_no_dirichlet_dofs_is_copy(self):
        mesh = hyper_cube(1, 1.0, 1)
        cv = CellValues(mesh, gauss_quadrature(1, 2))
        K = SparsityPattern(mesh).matrix(_laplace_blocks(cv))
        A, b = apply_dirichlet(K, np.ones(3), np.empty(0, dtype=int), np.empty(0))
        np.testing.assert_allclose(A.toarray(), K.toarray())
        np.testing.assert_allclose(b, 1.0)

    def test_constraints_then_dirichlet(self):
        mesh = _refined_square()
        constraints = HangingNodeConstraints(mesh)
        cv = CellValues(mesh, gauss_quadrature(2, 2))
        K = SparsityPattern(mesh).matrix(_laplace_blocks(cv))
        top = mesh.boundary_dofs(TOP)
        bottom = mesh.boundary_dofs(BOTTOM)
        dofs = np.concatenate([top, bottom])
        values = np.concatenate([np.zeros(len(top)), np.full(len(bottom), -4.0)])
        A, b = apply_constraints(K, np.zeros(mesh.n_nodes), constraints, dofs, values)
        x = constraints.distribute(spsolve(A.tocsc(), b))
        np.testing.assert_allclose(x, mesh.nodes[:, 1], atol=1e-10)
