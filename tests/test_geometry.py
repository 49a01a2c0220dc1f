"""Tests for the geometry module."""

import numpy as np
import pytest

from pybioclog.coupling.state import NodalFieldState
from pybioclog.geometry.constraints import HangingNodeConstraints
from pybioclog.geometry.mesh import BOTTOM, TOP, hyper_cube, import_mesh
from pybioclog.geometry.refinement import (
    MeshAdapter,
    SolutionTransfer,
    estimate_error,
    flag_fixed_fraction,
)
from pybioclog.time.controller import Phase


def _refine_corner(mesh):
    """Refine the cell touching the top-left corner."""
    centers = mesh.cell_centers()
    target = np.argmin(centers[:, 0] - centers[:, 1])
    flags = np.zeros(mesh.n_cells, dtype=bool)
    flags[target] = True
    mesh.refine_and_coarsen(refine=flags)
    return mesh


class TestHyperCube:
    def test_counts_2d(self):
        mesh = hyper_cube(2, 35.0, 2)
        assert mesh.n_cells == 16
        assert mesh.n_nodes == 25
        assert mesh.dim == 2

    def test_counts_1d(self):
        mesh = hyper_cube(1, 10.0, 3)
        assert mesh.n_cells == 8
        assert mesh.n_nodes == 9

    def test_bounds(self):
        lo, hi = hyper_cube(2, 35.0, 1).bounds
        np.testing.assert_allclose(lo, [-35.0, -35.0])
        np.testing.assert_allclose(hi, [0.0, 0.0])

    def test_boundary_ids(self):
        mesh = hyper_cube(2, 10.0, 2)
        top = mesh.boundary_dofs(TOP)
        bottom = mesh.boundary_dofs(BOTTOM)
        assert len(top) == 5
        np.testing.assert_allclose(mesh.nodes[top, 1], 0.0)
        np.testing.assert_allclose(mesh.nodes[bottom, 1], -10.0)
        assert set(np.unique(mesh.boundary_faces[:, 2])) == {0, TOP, BOTTOM}

    def test_boundary_ids_1d(self):
        mesh = hyper_cube(1, 10.0, 2)
        np.testing.assert_allclose(mesh.nodes[mesh.boundary_dofs(TOP)], [[0.0]])
        np.testing.assert_allclose(mesh.nodes[mesh.boundary_dofs(BOTTOM)], [[-10.0]])

    def test_measures_and_multiplicity(self):
        mesh = hyper_cube(2, 4.0, 2)
        assert mesh.cell_measures().sum() == pytest.approx(16.0)
        assert mesh.multiplicity.sum() == 4 * mesh.n_cells
        np.testing.assert_allclose(mesh.cell_diameters(), np.hypot(1.0, 1.0))

    def test_bad_dim(self):
        with pytest.raises(ValueError):
            hyper_cube(3, 1.0)


class TestLocalRefinement:
    def test_refine_one_cell(self):
        mesh = hyper_cube(2, 4.0, 1)
        revision = mesh.revision
        _refine_corner(mesh)
        assert mesh.n_cells == 7
        assert mesh.revision == revision + 1
        assert len(mesh.hanging_nodes) == 2

    def test_no_flags_is_noop(self):
        mesh = hyper_cube(2, 4.0, 1)
        revision = mesh.revision
        assert mesh.refine_and_coarsen() is False
        assert mesh.revision == revision

    def test_balance_propagates(self):
        mesh = _refine_corner(hyper_cube(2, 4.0, 1))
        # fine cell whose right face touches the coarse top-right cell
        target = np.argmin(np.linalg.norm(mesh.cell_centers() - [-2.5, -0.5], axis=1))
        flags = np.zeros(mesh.n_cells, dtype=bool)
        flags[target] = True
        mesh.refine_and_coarsen(refine=flags)
        assert mesh.n_cells == 13
        assert mesh.cell_levels.max() == 3
        assert np.sum(mesh.cell_levels == 1) == 2

    def test_coarsen_back(self):
        mesh = hyper_cube(2, 4.0, 1)
        _refine_corner(mesh)
        fine = mesh.cell_levels == 2
        assert mesh.refine_and_coarsen(coarsen=fine)
        assert mesh.n_cells == 4
        assert mesh.hanging_nodes == {}

    def test_refine_and_coarsen_in_one_call(self):
        mesh = hyper_cube(2, 1.0, 2)
        # cells 12..15 are the children of the last quadrant
        coarsen = np.zeros(mesh.n_cells, dtype=bool)
        coarsen[12:] = True
        refine = np.zeros(mesh.n_cells, dtype=bool)
        refine[0] = True
        assert mesh.refine_and_coarsen(refine=refine, coarsen=coarsen)
        assert mesh.n_cells == 16
        assert np.sum(mesh.cell_levels == 3) == 4
        assert np.sum(mesh.cell_levels == 1) == 1

    def test_coarsen_only_last_quadrant(self):
        mesh = hyper_cube(2, 1.0, 2)
        coarsen = np.zeros(mesh.n_cells, dtype=bool)
        coarsen[12:] = True
        mesh.refine_and_coarsen(coarsen=coarsen)
        assert mesh.n_cells == 13

    def test_partial_coarsen_flags_ignored(self):
        mesh = hyper_cube(2, 4.0, 1)
        _refine_corner(mesh)
        flags = np.zeros(mesh.n_cells, dtype=bool)
        flags[np.flatnonzero(mesh.cell_levels == 2)[0]] = True
        assert mesh.refine_and_coarsen(coarsen=flags) is False

    def test_flag_shape_checked(self):
        mesh = hyper_cube(2, 4.0, 1)
        with pytest.raises(ValueError):
            mesh.refine_and_coarsen(refine=np.ones(3, dtype=bool))

    def test_boundary_follows_refinement(self):
        mesh = hyper_cube(2, 4.0, 1)
        _refine_corner(mesh)
        top = mesh.boundary_dofs(TOP)
        assert len(top) == 4
        np.testing.assert_allclose(mesh.nodes[top, 1], 0.0)


GMSH_COLUMN = """$MeshFormat
2.2 0 8
$EndMeshFormat
$Nodes
6
1 0 -2 0
2 1 -2 0
3 1 -1 0
4 0 -1 0
5 1 0 0
6 0 0 0
$EndNodes
$Elements
4
1 3 2 7 1 1 2 3 4
2 3 2 7 1 4 3 5 6
3 1 2 1 2 6 5
4 1 2 2 3 1 2
$EndElements
"""


class TestImportMesh:
    def test_quad_mesh_with_tags(self, tmp_path):
        path = tmp_path / "column.msh"
        path.write_text(GMSH_COLUMN)
        mesh = import_mesh(str(path))
        assert mesh.n_cells == 2
        assert mesh.cell_measures().sum() == pytest.approx(2.0)
        np.testing.assert_allclose(mesh.nodes[mesh.boundary_dofs(TOP), 1], 0.0)
        np.testing.assert_allclose(mesh.nodes[mesh.boundary_dofs(BOTTOM), 1], -2.0)


class TestHangingNodeConstraints:
    def test_conforming_is_empty(self):
        c = HangingNodeConstraints(hyper_cube(2, 4.0, 2))
        assert c.is_empty
        x = np.arange(25.0)
        assert c.distribute(x) is x

    def test_distribute_linear_field(self):
        mesh = _refine_corner(hyper_cube(2, 4.0, 1))
        c = HangingNodeConstraints(mesh)
        assert not c.is_empty
        x = 2.0 * mesh.nodes[:, 0] - mesh.nodes[:, 1]
        perturbed = x.copy()
        perturbed[c.constrained_dofs] = 99.0
        np.testing.assert_allclose(c.distribute(perturbed), x)

    def test_condense_keeps_symmetry(self):
        mesh = _refine_corner(hyper_cube(2, 4.0, 1))
        c = HangingNodeConstraints(mesh)
        n = mesh.n_nodes
        rng = np.random.default_rng(0)
        B = rng.random((n, n))
        A = B + B.T + n * np.eye(n)
        A_c, rhs_c = c.condense(A, np.ones(n))
        dense = A_c.toarray()
        np.testing.assert_allclose(dense, dense.T)
        np.testing.assert_allclose(rhs_c[c.constrained_dofs], 0.0)
        assert np.all(np.diag(dense)[c.constrained_dofs] > 0)


class TestErrorEstimate:
    def test_constant_field_has_no_error(self):
        mesh = hyper_cube(2, 4.0, 2)
        np.testing.assert_allclose(estimate_error(mesh, np.full(mesh.n_nodes, 3.0)), 0.0)

    def test_kink_is_localised(self):
        mesh = hyper_cube(1, 8.0, 3)
        z = mesh.nodes[:, 0]
        u = np.abs(z + 4.0)
        eta = estimate_error(mesh, u)
        centers = mesh.cell_centers()[:, 0]
        assert eta[np.abs(centers + 4.0) < 1.0].min() > eta[np.abs(centers + 4.0) > 2.0].max()


class TestFixedFraction:
    def test_zero_error_flags_nothing(self):
        refine, coarsen = flag_fixed_fraction(np.zeros(10), 0.49, 0.5, 100)
        assert not refine.any() and not coarsen.any()

    def test_fractions(self):
        criteria = np.array([10.0, 1.0, 1.0, 1.0, 1.0, 1.0])
        refine, coarsen = flag_fixed_fraction(criteria, 0.49, 0.1, None)
        np.testing.assert_array_equal(refine, [True, False, False, False, False, False])
        assert coarsen.sum() == 1
        assert not (refine & coarsen).any()

    def test_max_cells_caps_refinement(self):
        criteria = np.linspace(1.0, 2.0, 100)
        refine, _ = flag_fixed_fraction(criteria, 0.9, 0.0, max_cells=103, children_per_cell=4)
        assert refine.sum() == 1


class TestSolutionTransfer:
    def test_linear_field_survives_refinement(self):
        mesh = hyper_cube(2, 4.0, 1)
        u = mesh.nodes[:, 0] + 3.0 * mesh.nodes[:, 1]
        transfer = SolutionTransfer(mesh)
        transfer.prepare([u, 2.0 * u])
        _refine_corner(mesh)
        u_new, v_new = transfer.interpolate()
        expected = mesh.nodes[:, 0] + 3.0 * mesh.nodes[:, 1]
        np.testing.assert_allclose(u_new, expected)
        np.testing.assert_allclose(v_new, 2.0 * expected)

    def test_interpolate_requires_prepare(self):
        with pytest.raises(RuntimeError):
            SolutionTransfer(hyper_cube(1, 1.0, 1)).interpolate()


def _make_fields(mesh, values):
    fields = NodalFieldState(mesh.n_nodes)
    for name in fields:
        fields[name].fill(values)
    return fields


class TestMeshAdapter:
    def test_zero_flags_leave_everything_unchanged(self):
        mesh = hyper_cube(2, 4.0, 2)
        fields = _make_fields(mesh, mesh.nodes[:, 1])
        adapter = MeshAdapter(mesh)
        revision = mesh.revision
        zero = np.zeros(mesh.n_cells, dtype=bool)
        result = adapter.execute(fields, zero, zero)
        assert result is fields
        assert mesh.revision == revision

    def test_no_adaptation_while_drying(self):
        mesh = hyper_cube(1, 8.0, 3)
        revision = mesh.revision
        fields = _make_fields(mesh, np.abs(mesh.nodes[:, 0] + 4.0))
        assert MeshAdapter(mesh).adapt(fields, Phase.DRYING) is fields
        assert mesh.revision == revision

    def test_adapt_transfers_all_fields(self):
        mesh = hyper_cube(1, 8.0, 3)
        revision = mesh.revision
        fields = _make_fields(mesh, np.abs(mesh.nodes[:, 0] + 4.0))
        adapted = MeshAdapter(mesh).adapt(fields, Phase.SATURATION)
        assert adapted is not fields
        assert mesh.revision == revision + 1
        for name in adapted:
            assert adapted[name].new.shape == (mesh.n_nodes,)
            assert adapted[name].old.shape == (mesh.n_nodes,)

    def test_execute_refines_and_coarsens(self):
        mesh = hyper_cube(2, 1.0, 2)
        fields = _make_fields(mesh, 2.0 * mesh.nodes[:, 0] - mesh.nodes[:, 1])
        refine = np.zeros(mesh.n_cells, dtype=bool)
        refine[0] = True
        coarsen = np.zeros(mesh.n_cells, dtype=bool)
        coarsen[12:] = True
        adapted = MeshAdapter(mesh).execute(fields, refine, coarsen)
        assert mesh.n_cells == 16
        np.testing.assert_array_equal(np.bincount(mesh.cell_levels), [0, 1, 11, 4])
        expected = 2.0 * mesh.nodes[:, 0] - mesh.nodes[:, 1]
        np.testing.assert_allclose(adapted["pressure"].new, expected)
        np.testing.assert_allclose(adapted["substrate"].old, expected)
