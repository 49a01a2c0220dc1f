"""Plotting utilities.

Functions
---------
plot_profile
    Nodal field against elevation.
plot_field
    Filled contours of a nodal field on a 2-D quadrilateral mesh.
plot_conductivity_history
    Harmonic-mean conductivity against time.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np


def plot_profile(
    mesh: Any,
    field: np.ndarray,
    x: float | None = None,
    label: str = "",
    ax: Any = None,
    **kwargs: Any,
) -> Any:
    """Plot a nodal field against elevation.

    In 2-D the nodes closest to the vertical line at *x* (default: the
    left edge) are used.

    Args:
        mesh: Computational mesh.
        field: Nodal values, shape ``(n_nodes,)``.
        x: Horizontal position of the profile (2-D only).
        label: Axis label and legend entry.
        ax: Matplotlib axes (creates new figure if None).
        **kwargs: Passed to ``ax.plot``.

    Returns:
        Matplotlib axes.
    """
    import matplotlib.pyplot as plt

    if ax is None:
        fig, ax = plt.subplots(1, 1, figsize=(4, 6))

    nodes = mesh.nodes
    if mesh.dim == 2:
        x0 = nodes[:, 0].min() if x is None else x
        distance = np.abs(nodes[:, 0] - x0)
        mask = np.isclose(distance, distance.min())
    else:
        mask = np.ones(len(nodes), dtype=bool)
    z = nodes[mask, -1]
    order = np.argsort(z)
    ax.plot(np.asarray(field)[mask][order], z[order], label=label or None, **kwargs)
    ax.set_xlabel(label)
    ax.set_ylabel("z (cm)")
    ax.grid(True, alpha=0.3)
    return ax


def plot_field(
    mesh: Any,
    field: np.ndarray,
    contours: int = 20,
    colorbar: bool = True,
    title: str = "",
    ax: Any = None,
    cmap: str = "viridis",
) -> Any:
    """Plot a scalar field on a 2-D quadrilateral mesh.

    Each quadrilateral is split into two triangles for the contouring.

    Args:
        mesh: Computational mesh (dim 2).
        field: Nodal field values, shape ``(n_nodes,)``.
        contours: Number of contour levels.
        colorbar: Show colour bar.
        title: Plot title.
        ax: Matplotlib axes (creates new figure if None).
        cmap: Matplotlib colour map name.

    Returns:
        Matplotlib axes.
    """
    import matplotlib.pyplot as plt
    import matplotlib.tri as mtri

    if mesh.dim != 2:
        raise ValueError("plot_field needs a 2-D mesh; use plot_profile in 1-D.")
    if ax is None:
        fig, ax = plt.subplots(1, 1, figsize=(6, 5))

    cells = mesh.cells
    triangles = np.vstack([cells[:, [0, 1, 3]], cells[:, [0, 3, 2]]])
    nodes = mesh.nodes
    triang = mtri.Triangulation(nodes[:, 0], nodes[:, 1], triangles)

    cs = ax.tricontourf(triang, field, levels=contours, cmap=cmap)
    if colorbar:
        plt.colorbar(cs, ax=ax, label=title)
    ax.set_aspect("equal")
    ax.set_title(title)
    ax.set_xlabel("x (cm)")
    ax.set_ylabel("z (cm)")
    return ax


def plot_conductivity_history(
    history: Sequence[tuple[int, float, float]],
    relative: bool = True,
    ax: Any = None,
) -> Any:
    """Plot the harmonic-mean conductivity against hours.

    Args:
        history: Rows ``(timestep, hours, K)``.
        relative: Normalise by the first value.
        ax: Matplotlib axes (creates new figure if None).

    Returns:
        Matplotlib axes.
    """
    import matplotlib.pyplot as plt

    if ax is None:
        fig, ax = plt.subplots(1, 1, figsize=(6, 4))
    data = np.asarray(history, dtype=float).reshape(-1, 3)
    k = data[:, 2]
    if relative and len(k) and k[0] > 0.0:
        k = k / k[0]
        ax.set_ylabel("K / K0")
    else:
        ax.set_ylabel("K (cm/s)")
    ax.plot(data[:, 1], k, "b-", linewidth=1.5)
    ax.set_xlabel("time (h)")
    ax.grid(True, alpha=0.3)
    return ax
