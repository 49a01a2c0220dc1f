"""Tests for the physics module."""

import numpy as np
import pytest

from pybioclog.config import Parameters
from pybioclog.coupling.state import NodalFieldState
from pybioclog.errors import ConfigurationError
from pybioclog.geometry.mesh import BOTTOM, TOP, hyper_cube
from pybioclog.materials.hydraulic import HydraulicProperties
from pybioclog.materials.kinetics import BiomassKinetics
from pybioclog.physics.constitutive import ConstitutiveUpdate
from pybioclog.physics.richards import Richards, darcy_flux
from pybioclog.time.controller import Phase
from pybioclog.time.schemes import Implicit

KS = 9.22e-3


def _make_fields(mesh, pressure, conductivity=KS, capacity=1e-4):
    fields = NodalFieldState(mesh.n_nodes)
    fields["pressure"].fill(pressure)
    fields["conductivity"].fill(conductivity)
    fields["capacity"].fill(capacity)
    fields["total_moisture"].fill(0.368)
    fields["free_moisture"].fill(0.368)
    return fields


def _make_richards(mesh, **kwargs):
    return Richards(mesh, Implicit(), **kwargs)


class TestConstitutiveUpdate:
    def _make(self, mesh, factor=None):
        return ConstitutiveUpdate(
            mesh, HydraulicProperties(), BiomassKinetics(decay_rate=1e-3),
            conductivity_factor=factor,
        )

    def test_saturated_clean_column(self):
        mesh = hyper_cube(1, 10.0, 2)
        fields = NodalFieldState(mesh.n_nodes)
        self._make(mesh)(fields, dt=1.0, grow_biomass=False)
        np.testing.assert_allclose(fields["conductivity"].new, KS)
        np.testing.assert_allclose(fields["total_moisture"].new, 0.368)
        np.testing.assert_allclose(fields["free_moisture"].new, 0.368)
        np.testing.assert_allclose(fields["biomass"].new, 0.0)

    def test_biomass_frozen_without_growth(self):
        mesh = hyper_cube(1, 10.0, 2)
        fields = NodalFieldState(mesh.n_nodes)
        fields["biomass"].fill(3.0)
        self._make(mesh)(fields, dt=100.0, grow_biomass=False)
        np.testing.assert_allclose(fields["biomass"].new, 3.0)
        np.testing.assert_allclose(fields["biomass_fraction"].new, 0.03)

    def test_biomass_decays_without_substrate(self):
        mesh = hyper_cube(1, 10.0, 2)
        fields = NodalFieldState(mesh.n_nodes)
        fields["biomass"].fill(3.0)
        self._make(mesh)(fields, dt=100.0, grow_biomass=True)
        np.testing.assert_allclose(fields["biomass"].new, 3.0 * np.exp(-0.1))
        np.testing.assert_allclose(fields["biomass"].old, 3.0)

    def test_conductivity_factor(self):
        mesh = hyper_cube(2, 4.0, 1)
        fields = NodalFieldState(mesh.n_nodes)
        self._make(mesh, factor=lambda centers: np.full(len(centers), 2.0))(
            fields, dt=1.0, grow_biomass=False
        )
        np.testing.assert_allclose(fields["conductivity"].new, 2.0 * KS)

    def test_unsaturated_capacity_positive(self):
        mesh = hyper_cube(1, 10.0, 2)
        fields = NodalFieldState(mesh.n_nodes)
        fields["pressure"].fill(-10.0 - mesh.vertical)
        self._make(mesh)(fields, dt=1.0, grow_biomass=False)
        assert np.all(fields["capacity"].new > 0.0)
        assert np.all(fields["conductivity"].new <= KS)


class TestRichardsBoundaries:
    def test_unknown_equation(self):
        with pytest.raises(ConfigurationError, match="moisture transport"):
            _make_richards(hyper_cube(1, 1.0, 1), equation="pressure")

    def test_dirichlet_by_phase(self):
        mesh = hyper_cube(1, 10.0, 2)
        r = _make_richards(mesh, top_fixed_value=5.0, bottom_fixed_value=-1.0)
        dofs, values = r.dirichlet(Phase.DRYING)
        np.testing.assert_array_equal(dofs, mesh.boundary_dofs(BOTTOM))
        np.testing.assert_allclose(values, -1.0)
        dofs, values = r.dirichlet(Phase.SATURATION)
        assert set(dofs) == set(mesh.boundary_dofs(BOTTOM)) | set(mesh.boundary_dofs(TOP))
        assert sorted(values) == [-1.0, 5.0]

    def test_no_dirichlet(self):
        r = _make_richards(hyper_cube(1, 1.0, 1), fixed_at_top=False, fixed_at_bottom=False)
        dofs, values = r.dirichlet(Phase.TRANSPORT)
        assert len(dofs) == 0 and len(values) == 0

    def test_top_closed_while_drying(self):
        r = _make_richards(hyper_cube(1, 1.0, 1), top_flow_value=-1e-3)
        assert r.top_flux(Phase.DRYING) == 0.0
        assert r.top_flux(Phase.SATURATION) == -1e-3

    def test_top_flux_enters_rhs(self):
        mesh = hyper_cube(1, 10.0, 2)
        fields = _make_fields(mesh, 0.0)
        dt, q = 10.0, 1e-3
        plain = _make_richards(mesh, fixed_at_top=False)
        flux = _make_richards(mesh, fixed_at_top=False, top_flow_value=q)
        top = mesh.boundary_dofs(TOP)[0]
        diff = (
            flux.assemble_system(fields, dt, Phase.SATURATION).rhs
            - plain.assemble_system(fields, dt, Phase.SATURATION).rhs
        )
        assert diff[top] == pytest.approx(-dt * q)
        np.testing.assert_allclose(np.delete(diff, top), 0.0)
        drying = (
            flux.assemble_system(fields, dt, Phase.DRYING).rhs
            - plain.assemble_system(fields, dt, Phase.DRYING).rhs
        )
        np.testing.assert_allclose(drying, 0.0)


class TestRichardsAssembly:
    def test_hydrostatic_column_is_steady(self):
        mesh = hyper_cube(1, 10.0, 3)
        z = mesh.vertical
        h = -10.0 - z
        fields = _make_fields(mesh, h, conductivity=KS * (1.0 + 0.05 * z))
        r = _make_richards(mesh, bottom_fixed_value=0.0)
        system = r.assemble_system(fields, 100.0, Phase.DRYING)
        np.testing.assert_allclose(r.solve(system, fields["pressure"].new), h, atol=1e-6)
        assert system.diagnostics["flow_at_top"] == pytest.approx(0.0, abs=1e-12)
        assert system.diagnostics["flow_at_bottom"] == pytest.approx(0.0, abs=1e-12)

    def test_steady_infiltration_profile(self):
        mesh = hyper_cube(1, 10.0, 3)
        fields = _make_fields(mesh, 0.0)
        r = _make_richards(mesh, top_fixed_value=5.0, bottom_fixed_value=0.0)
        system = r.assemble_system(fields, 1e10, Phase.SATURATION)
        h = r.solve(system, fields["pressure"].new)
        np.testing.assert_allclose(h, 5.0 + 0.5 * mesh.vertical, atol=1e-4)

        fields["pressure"].fill(h)
        flows = r.boundary_flows(fields)
        assert flows[TOP] == pytest.approx(-1.5 * KS, rel=1e-3)
        assert flows[BOTTOM] == pytest.approx(1.5 * KS, rel=1e-3)

    def test_mixed_matches_head_without_moisture_change(self):
        mesh = hyper_cube(2, 4.0, 2)
        fields = _make_fields(mesh, -1.0 - mesh.vertical)
        head = _make_richards(mesh).assemble_system(fields, 5.0, Phase.SATURATION)
        mixed = _make_richards(mesh, equation="mixed").assemble_system(
            fields, 5.0, Phase.SATURATION
        )
        np.testing.assert_allclose(mixed.matrix.toarray(), head.matrix.toarray())
        np.testing.assert_allclose(mixed.rhs, head.rhs)

    def test_lumped_mass_is_diagonal(self):
        mesh = hyper_cube(2, 4.0, 2)
        fields = _make_fields(mesh, 0.0)
        system = _make_richards(mesh, lumped=True).assemble_system(fields, 1.0, Phase.DRYING)
        mass = system.mass.toarray()
        np.testing.assert_allclose(mass, np.diag(np.diag(mass)))
        assert mass.sum() == pytest.approx(1e-4 * 16.0)

    def test_system_is_symmetric(self):
        mesh = hyper_cube(2, 4.0, 2)
        centers = mesh.cell_centers()
        flags = np.zeros(mesh.n_cells, dtype=bool)
        flags[np.argmin(centers[:, 0] - centers[:, 1])] = True
        mesh.refine_and_coarsen(refine=flags)
        fields = _make_fields(mesh, -2.0 - mesh.vertical)
        A = _make_richards(mesh).assemble_system(fields, 1.0, Phase.SATURATION).matrix
        np.testing.assert_allclose(A.toarray(), A.toarray().T, atol=1e-14)

    def test_refresh_follows_mesh(self):
        mesh = hyper_cube(1, 10.0, 2)
        r = _make_richards(mesh)
        r.refresh()
        assert r.pattern.n_dofs == 5
        mesh.refine_global()
        r.refresh()
        assert r.pattern.n_dofs == 9
        assert r.validate() == []

    def test_from_parameters(self):
        params = Parameters(dim=1, richards_fixed_at_top=False, richards_top_flow_value=-2e-3)
        r = Richards.from_parameters(hyper_cube(1, 35.0, 2), params)
        assert r.theta == 1.0
        assert not r.fixed_at_top
        assert r.top_flux(Phase.SATURATION) == -2e-3
        assert "pressure" in repr(r)


class TestDarcyFlux:
    def test_uniform_pressure_drains_at_ks(self):
        mesh = hyper_cube(2, 4.0, 2)
        fields = _make_fields(mesh, 1.0)
        q = _make_richards(mesh).darcy_flux(fields)
        np.testing.assert_allclose(q[:, 0], 0.0, atol=1e-15)
        np.testing.assert_allclose(q[:, 1], -KS)

    def test_hydrostatic_has_no_flux(self):
        mesh = hyper_cube(1, 10.0, 2)
        r = _make_richards(mesh)
        r.refresh()
        z = mesh.vertical
        q = darcy_flux(r.cell_values, -z, np.full(mesh.n_nodes, KS), z)
        np.testing.assert_allclose(q, 0.0, atol=1e-15)
