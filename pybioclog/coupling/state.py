"""Double-buffered nodal fields and boundary bookkeeping.

Classes
-------
FieldPair
    Old (start of step) and new (current iterate) values of one field.
NodalFieldState
    The named pairs of a simulation, all sized to the mesh DoFs.
AccountingState
    Water and nutrient fluxes through the top and bottom boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np

FIELD_NAMES = (
    "pressure",
    "substrate",
    "biomass",
    "biomass_fraction",
    "total_moisture",
    "free_moisture",
    "conductivity",
    "capacity",
)


@dataclass
class FieldPair:
    """Two slots of a nodal field.

    ``old`` is frozen while a time step iterates; :meth:`commit` copies
    ``new`` into it so the two never share memory.
    """

    old: np.ndarray
    new: np.ndarray

    def commit(self) -> None:
        self.old = self.new.copy()

    def fill(self, value: float | np.ndarray) -> None:
        """Set both slots to *value*."""
        self.new = np.broadcast_to(np.asarray(value, dtype=float), self.new.shape).copy()
        self.old = self.new.copy()


class NodalFieldState:
    """All double-buffered nodal fields of one simulation.

    Args:
        n_dofs: Number of mesh DoFs.
    """

    def __init__(self, n_dofs: int) -> None:
        self.n_dofs = n_dofs
        self._pairs = {
            name: FieldPair(np.zeros(n_dofs), np.zeros(n_dofs)) for name in FIELD_NAMES
        }

    def __getitem__(self, name: str) -> FieldPair:
        return self._pairs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(FIELD_NAMES)

    def commit(self) -> None:
        """Accept the current iterate of every field as the new old level."""
        for pair in self._pairs.values():
            pair.commit()

    def vectors(self) -> list[np.ndarray]:
        """Every slot, ordered (old, new) per field, for mesh transfer."""
        out = []
        for name in FIELD_NAMES:
            out.extend((self._pairs[name].old, self._pairs[name].new))
        return out

    @classmethod
    def from_vectors(cls, vectors: list[np.ndarray]) -> "NodalFieldState":
        """Inverse of :meth:`vectors`."""
        if len(vectors) != 2 * len(FIELD_NAMES):
            raise ValueError(
                f"Expected {2 * len(FIELD_NAMES)} vectors, got {len(vectors)}."
            )
        state = cls(len(vectors[0]))
        for i, name in enumerate(FIELD_NAMES):
            state._pairs[name] = FieldPair(
                np.array(vectors[2 * i], dtype=float),
                np.array(vectors[2 * i + 1], dtype=float),
            )
        return state

    def snapshot(self) -> dict[str, np.ndarray]:
        """Copies of the current ("new") value of each field."""
        return {name: self._pairs[name].new.copy() for name in FIELD_NAMES}

    def __repr__(self) -> str:
        return f"NodalFieldState(n_dofs={self.n_dofs})"


@dataclass
class AccountingState:
    """Boundary fluxes and the nutrient inventory.

    Water flows are refreshed by every flow assembly; nutrient totals
    are accumulated once per committed step and never rolled back.
    """

    flow_at_top: float = 0.0
    flow_at_bottom: float = 0.0
    nutrient_flow_at_top: float = 0.0
    nutrient_flow_at_bottom: float = 0.0
    nutrients_in_domain_current: float = 0.0
    nutrients_in_domain_previous: float = 0.0
    cumulative_flow_at_top: float = 0.0
    cumulative_flow_at_bottom: float = 0.0

    def commit(self, dt: float) -> None:
        """Integrate the last nutrient fluxes over *dt*."""
        self.cumulative_flow_at_top += self.nutrient_flow_at_top * dt
        self.cumulative_flow_at_bottom += self.nutrient_flow_at_bottom * dt
        self.nutrients_in_domain_previous = self.nutrients_in_domain_current

