"""Post-processing: derived quantities, export, checkpoints."""

from pybioclog.postprocess.fields import compute_velocity, harmonic_mean_conductivity
from pybioclog.postprocess.export import (
    write_conductivity_history,
    write_snapshot,
)
from pybioclog.postprocess.checkpoint import read_checkpoint, write_checkpoint

__all__ = [
    "compute_velocity",
    "harmonic_mean_conductivity",
    "write_snapshot",
    "write_conductivity_history",
    "read_checkpoint",
    "write_checkpoint",
]
