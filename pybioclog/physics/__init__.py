"""Physics: governing equations of the bioclogging model."""

from pybioclog.physics.base import PhysicsModule
from pybioclog.physics.constitutive import ConstitutiveUpdate
from pybioclog.physics.richards import Richards
from pybioclog.physics.transport import Reaction, Transport

__all__ = [
    "PhysicsModule",
    "ConstitutiveUpdate",
    "Richards",
    "Reaction",
    "Transport",
]
