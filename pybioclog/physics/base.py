"""Abstract base class for physics modules.

The flow (Richards) and transport modules inherit from
:class:`PhysicsModule`, which keeps their finite-element data in step
with the mesh they are discretised on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from pybioclog.fem.assembly import LinearSystem, SparsityPattern
from pybioclog.geometry.constraints import HangingNodeConstraints
from pybioclog.time.schemes import TimeScheme


class PhysicsModule(ABC):
    """Abstract physics module.

    Mesh-dependent data (sparsity pattern, hanging-node constraints,
    quadrature values) is rebuilt lazily whenever the mesh revision
    changes, so no DoF index outlives an adaptation.

    Attributes:
        name: Short identifier (``"richards"``, ``"transport"``).
        primary_field: Name of the solved nodal field.
        mesh: The computational mesh.
        scheme: θ time-weighting scheme.
        dim: Spatial dimension (inherited from mesh).
    """

    name: str
    primary_field: str

    def __init__(self, mesh: Any, scheme: TimeScheme) -> None:
        self.mesh = mesh
        self.scheme = scheme
        self.dim = mesh.dim
        self._revision: int | None = None

    @property
    def theta(self) -> float:
        return self.scheme.theta

    def refresh(self) -> None:
        """Rebuild mesh-dependent data if the mesh changed."""
        if self._revision == self.mesh.revision:
            return
        self.pattern = SparsityPattern(self.mesh)
        self.constraints = HangingNodeConstraints(self.mesh)
        self._setup()
        self._revision = self.mesh.revision

    @abstractmethod
    def _setup(self) -> None:
        """Build quadrature data for the current mesh."""

    @abstractmethod
    def assemble_system(self, fields: Any, dt: float, phase: Any) -> LinearSystem:
        """Assemble the θ-weighted system for one Picard iteration.

        Args:
            fields: A :class:`~pybioclog.coupling.state.NodalFieldState`.
            dt: Time-step size (s).
            phase: Current :class:`~pybioclog.time.controller.Phase`.

        Returns:
            Linear system with constraints and boundary values applied.
        """

    @abstractmethod
    def solve(self, system: LinearSystem, x0: np.ndarray) -> np.ndarray:
        """Solve *system* starting from *x0* and distribute constraints."""

    def validate(self) -> list[str]:
        """Run basic consistency checks.

        Returns:
            List of warning/error strings (empty if all OK).
        """
        issues: list[str] = []
        if self.mesh.n_cells == 0:
            issues.append("Mesh has no active cells.")
        if np.any(self.mesh.cell_measures() <= 0.0):
            issues.append("Mesh has degenerate cells.")
        return issues

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(primary_field={self.primary_field!r}, "
            f"dim={self.dim}, scheme={self.scheme!r})"
        )
