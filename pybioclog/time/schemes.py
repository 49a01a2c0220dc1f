"""θ-method time weighting.

Classes
-------
TimeScheme
    Abstract base for θ-weighted schemes.
Implicit
    Backward Euler (θ = 1).
CrankNicolson
    Crank-Nicolson (θ = 0.5).
Explicit
    Forward Euler (θ = 0).
Theta
    Arbitrary θ ∈ [0, 1].

Functions
---------
scheme_for
    Pick the named scheme matching a θ value.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class TimeScheme(ABC):
    """Abstract θ-scheme.

    The θ-method discretises M du/dt + L u = f as

        M (u^{n+1} − u^n) / dt + θ L^{n+1} u^{n+1} + (1 − θ) L^n u^n = f

    Stiffness and boundary-flux terms are weighted with :meth:`blend`.
    """

    @property
    @abstractmethod
    def theta(self) -> float:
        """Implicit weighting parameter θ ∈ [0, 1]."""

    def blend(self, f_new: np.ndarray, f_old: np.ndarray) -> np.ndarray:
        """Return θ·f_new + (1 − θ)·f_old."""
        return self.theta * f_new + (1.0 - self.theta) * f_old

    def __repr__(self) -> str:
        return f"{type(self).__name__}(theta={self.theta})"


class Implicit(TimeScheme):
    """Backward Euler (θ = 1).  Unconditionally stable."""

    @property
    def theta(self) -> float:
        return 1.0


class CrankNicolson(TimeScheme):
    """Crank-Nicolson (θ = 0.5).  Second-order accurate."""

    @property
    def theta(self) -> float:
        return 0.5


class Explicit(TimeScheme):
    """Forward Euler (θ = 0).  Conditionally stable."""

    @property
    def theta(self) -> float:
        return 0.0


class Theta(TimeScheme):
    """Generic θ-scheme."""

    def __init__(self, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"theta must lie in [0, 1], got {value}.")
        self._theta = float(value)

    @property
    def theta(self) -> float:
        return self._theta


def scheme_for(theta: float) -> TimeScheme:
    """Return the named scheme for θ ∈ {1, 0.5, 0}, else :class:`Theta`."""
    named = {1.0: Implicit, 0.5: CrankNicolson, 0.0: Explicit}
    cls = named.get(float(theta))
    return cls() if cls is not None else Theta(theta)
