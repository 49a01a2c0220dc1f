"""Export solution data to files.

Functions
---------
snapshot_label
    Time tag of a snapshot in the current regime.
snapshot_filename
    Name of one snapshot file.
write_snapshot
    Write nodal fields as VTK (meshio) or as a text table.
conductivity_history_filename
    Name of the average-conductivity summary file.
write_conductivity_history
    Write the (timestep, hours, harmonic-mean K) table.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

import meshio
import numpy as np

from pybioclog.time.controller import Phase

logger = logging.getLogger(__name__)

VTK_FORMATS = (".vtu", ".vtk")
TEXT_FORMATS = (".gp", ".csv", ".txt")
# Lexicographic Q1 vertex order -> counter-clockwise VTK quad order.
VTK_QUAD_ORDER = [0, 1, 3, 2]


def snapshot_label(phase: Phase, time: float, milestone: float, timestep: int) -> str:
    """Tenths of seconds into the regime, or the padded step in transport."""
    if phase is Phase.TRANSPORT:
        return f"{timestep:010d}"
    return str(int(10 * (time - milestone)))


def snapshot_filename(
    equation: str,
    lumped: bool,
    dim: int,
    phase: Phase,
    label: str,
    fmt: str,
) -> str:
    """``solution_{equation}_{lumped_}{dim}d_{period}_t_{label}{fmt}``."""
    lumped_tag = "lumped_" if lumped else ""
    return f"solution_{equation}_{lumped_tag}{dim}d_{phase.period}_t_{label}{fmt}"


def _points3(nodes: np.ndarray) -> np.ndarray:
    pad = np.zeros((len(nodes), 3 - nodes.shape[1]))
    return np.column_stack([nodes, pad])


def write_snapshot(path: str | Path, mesh: Any, fields: dict[str, np.ndarray]) -> Path:
    """Write nodal *fields* on *mesh* to *path*.

    ``.vtu``/``.vtk`` files are written with *meshio*; ``.gp``, ``.txt``
    and ``.csv`` as a table of coordinates and fields, one row per node
    ordered by elevation then x.

    Args:
        path: Output file; the suffix selects the format.
        mesh: Mesh the fields live on.
        fields: Nodal arrays keyed by name.

    Returns:
        The written path.
    """
    path = Path(path)
    suffix = path.suffix
    if suffix in VTK_FORMATS:
        if mesh.dim == 1:
            cells = [("line", mesh.cells)]
        else:
            cells = [("quad", mesh.cells[:, VTK_QUAD_ORDER])]
        m = meshio.Mesh(
            points=_points3(mesh.nodes),
            cells=cells,
            point_data={name: np.asarray(v, dtype=float) for name, v in fields.items()},
        )
        m.write(path)
    elif suffix in TEXT_FORMATS:
        coords = ["x", "z"] if mesh.dim == 2 else ["z"]
        names = coords + list(fields)
        data = np.column_stack([mesh.nodes] + [np.asarray(v) for v in fields.values()])
        order = np.lexsort(mesh.nodes.T)
        if suffix == ".csv":
            np.savetxt(path, data[order], delimiter=",", header=",".join(names), comments="")
        else:
            np.savetxt(path, data[order], header=" ".join(names))
    else:
        raise ValueError(f"Unsupported output format {suffix!r}.")
    logger.debug("Wrote %s", path)
    return path


def conductivity_history_filename(
    permeability_model: str,
    sand_fraction: float,
    yield_coefficient: float,
    max_substrate_use_rate: float,
    half_velocity_constant: float,
) -> str:
    """Summary file name encoding the run's biological parameters."""
    return (
        f"average_hydraulic_conductivity_sf_{permeability_model}_{sand_fraction:g}_"
        f"{yield_coefficient:g}_{max_substrate_use_rate:g}_{half_velocity_constant:g}.txt"
    )


def write_conductivity_history(
    path: str | Path,
    rows: Sequence[tuple[int, float, float]],
) -> Path:
    """Write (timestep, hours since milestone, harmonic-mean K) rows."""
    path = Path(path)
    data = np.asarray(rows, dtype=float).reshape(-1, 3)
    np.savetxt(
        path,
        data,
        fmt=("%d", "%.6f", "%.10e"),
        header="timestep hours average_hydraulic_conductivity",
    )
    logger.info("Wrote conductivity history to %s", path)
    return path
