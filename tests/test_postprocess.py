"""Tests for the postprocessing module."""

import meshio
import numpy as np
import pytest

from pybioclog.errors import MissingCheckpoint
from pybioclog.geometry.mesh import hyper_cube
from pybioclog.postprocess.checkpoint import checkpoint_path, read_checkpoint, write_checkpoint
from pybioclog.postprocess.export import (
    conductivity_history_filename,
    snapshot_filename,
    snapshot_label,
    write_conductivity_history,
    write_snapshot,
)
from pybioclog.postprocess.fields import compute_velocity, harmonic_mean_conductivity
from pybioclog.time.controller import Phase


def _make_vectors(n, offset=0.0):
    return {
        "pressure": np.linspace(-35.0, 0.0, n) + offset,
        "substrate": np.full(n, 0.05),
        "biomass": np.full(n, 0.01),
    }


class TestSnapshotNames:
    def test_label_before_transport(self):
        assert snapshot_label(Phase.DRYING, 12.34, 10.0, 7) == "23"
        assert snapshot_label(Phase.SATURATION, 5.0, 5.0, 7) == "0"

    def test_label_in_transport(self):
        assert snapshot_label(Phase.TRANSPORT, 1e6, 0.0, 42) == "0000000042"

    def test_filename(self):
        name = snapshot_filename("head", False, 2, Phase.SATURATION, "0", ".gp")
        assert name == "solution_head_2d_saturating_t_0.gp"
        name = snapshot_filename("mixed", True, 1, Phase.TRANSPORT, "0000000003", ".vtu")
        assert name == "solution_mixed_lumped_1d_transporting_t_0000000003.vtu"

    def test_history_filename(self):
        name = conductivity_history_filename("soleimani", 1.0, 0.5, 1e-4, 20.0)
        assert name == "average_hydraulic_conductivity_sf_soleimani_1_0.5_0.0001_20.txt"


class TestWriteSnapshot:
    def test_text_table_sorted_by_elevation(self, tmp_path):
        mesh = hyper_cube(2, 4.0, 1)
        path = write_snapshot(tmp_path / "s.gp", mesh, {"pressure": mesh.nodes[:, 1] * 2.0})
        assert path.read_text().startswith("# x z pressure")
        data = np.loadtxt(path)
        assert data.shape == (9, 3)
        assert np.all(np.diff(data[:, 1]) >= 0.0)
        np.testing.assert_allclose(data[:, 2], 2.0 * data[:, 1])

    def test_csv(self, tmp_path):
        mesh = hyper_cube(1, 10.0, 2)
        path = write_snapshot(tmp_path / "s.csv", mesh, {"substrate": np.arange(5.0)})
        lines = path.read_text().splitlines()
        assert lines[0] == "z,substrate"
        data = np.loadtxt(path, delimiter=",", skiprows=1)
        np.testing.assert_allclose(data[:, 0], [-10.0, -7.5, -5.0, -2.5, 0.0])

    def test_vtu(self, tmp_path):
        mesh = hyper_cube(2, 4.0, 1)
        path = write_snapshot(tmp_path / "s.vtu", mesh, {"pressure": mesh.nodes[:, 0]})
        m = meshio.read(path)
        assert len(m.points) == mesh.n_nodes
        np.testing.assert_allclose(m.point_data["pressure"], m.points[:, 0])
        assert m.cells[0].type == "quad"

    def test_unsupported_format(self, tmp_path):
        with pytest.raises(ValueError, match=".xls"):
            write_snapshot(tmp_path / "s.xls", hyper_cube(1, 1.0, 1), {})

    def test_conductivity_history(self, tmp_path):
        rows = [(1, 0.0, 9.22e-3), (2, 0.5, 9.0e-3)]
        path = write_conductivity_history(tmp_path / "k.txt", rows)
        data = np.loadtxt(path)
        np.testing.assert_allclose(data, rows)


class TestCheckpoint:
    def test_roundtrip(self, tmp_path):
        vectors = _make_vectors(9)
        paths = write_checkpoint(tmp_path / "ckpt", "dry", vectors)
        assert [p.name for p in paths] == [
            "state_dry_pressure.ph", "state_dry_substrate.ph", "state_dry_bacteria.ph",
        ]
        loaded = read_checkpoint(tmp_path / "ckpt", "dry", 9)
        for name in vectors:
            np.testing.assert_array_equal(loaded[name], vectors[name])

    def test_bad_label(self, tmp_path):
        with pytest.raises(ValueError, match="wet"):
            checkpoint_path(tmp_path, "wet", "pressure")

    def test_missing_file(self, tmp_path):
        with pytest.raises(MissingCheckpoint, match="does not exist"):
            read_checkpoint(tmp_path, "saturated", 9)

    def test_size_mismatch(self, tmp_path):
        write_checkpoint(tmp_path, "final", _make_vectors(9))
        with pytest.raises(MissingCheckpoint, match="mesh has 25"):
            read_checkpoint(tmp_path, "final", 25)

    def test_trailing_bytes(self, tmp_path):
        write_checkpoint(tmp_path, "final", _make_vectors(4))
        with open(checkpoint_path(tmp_path, "final", "substrate"), "ab") as fh:
            fh.write(b"\x00")
        with pytest.raises(MissingCheckpoint, match="trailing"):
            read_checkpoint(tmp_path, "final", 4)

    def test_garbage_file(self, tmp_path):
        write_checkpoint(tmp_path, "final", _make_vectors(4))
        checkpoint_path(tmp_path, "final", "pressure").write_bytes(b"not a state")
        with pytest.raises(MissingCheckpoint, match="not a valid"):
            read_checkpoint(tmp_path, "final", 4)

    def test_missing_checkpoint_is_file_not_found(self):
        assert issubclass(MissingCheckpoint, FileNotFoundError)


class TestDerivedFields:
    def test_harmonic_mean(self):
        assert harmonic_mean_conductivity([1.0, 1.0]) == pytest.approx(1.0)
        assert harmonic_mean_conductivity([1.0, 3.0]) == pytest.approx(1.5)

    def test_plugged_node(self):
        assert harmonic_mean_conductivity([1.0, 0.0, 2.0]) == 0.0

    def test_compute_velocity(self):
        mesh = hyper_cube(2, 4.0, 2)
        q = compute_velocity(mesh, np.zeros(mesh.n_nodes), np.full(mesh.n_nodes, 2e-3))
        assert q.shape == (mesh.n_cells, 2)
        np.testing.assert_allclose(q[:, 1], -2e-3)
