"""Time: θ schemes, regimes and step-size control."""

from pybioclog.time.schemes import CrankNicolson, Explicit, Implicit, Theta, scheme_for
from pybioclog.time.controller import Phase, PhaseMachine, PhaseTransition, TimeStepController

__all__ = [
    "Implicit",
    "CrankNicolson",
    "Explicit",
    "Theta",
    "scheme_for",
    "Phase",
    "PhaseMachine",
    "PhaseTransition",
    "TimeStepController",
]
