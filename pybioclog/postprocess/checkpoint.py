"""Persisted simulation states.

A checkpoint is three files, ``state_{label}_pressure.ph``,
``state_{label}_substrate.ph`` and ``state_{label}_bacteria.ph``, each
holding one ``.npy`` block of nodal values.  Labels are ``"dry"``
(end of drying), ``"saturated"`` (end of saturation) and ``"final"``.

Functions
---------
checkpoint_path
    File name of one checkpoint vector.
write_checkpoint
    Save pressure, substrate and biomass.
read_checkpoint
    Load and check them against the current mesh size.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from pybioclog.errors import MissingCheckpoint

logger = logging.getLogger(__name__)

LABELS = ("dry", "saturated", "final")
# field name -> file suffix
CHECKPOINT_FIELDS = {
    "pressure": "pressure",
    "substrate": "substrate",
    "biomass": "bacteria",
}


def checkpoint_path(directory: str | Path, label: str, field: str) -> Path:
    """``{directory}/state_{label}_{suffix}.ph``."""
    if label not in LABELS:
        raise ValueError(f"Unknown checkpoint label {label!r}; choose from {list(LABELS)}.")
    return Path(directory) / f"state_{label}_{CHECKPOINT_FIELDS[field]}.ph"


def write_checkpoint(
    directory: str | Path,
    label: str,
    vectors: dict[str, np.ndarray],
) -> list[Path]:
    """Save the checkpointed fields of *vectors*.

    Args:
        directory: Target directory (created if missing).
        label: ``"dry"``, ``"saturated"`` or ``"final"``.
        vectors: Nodal arrays keyed by field name.

    Returns:
        The written paths.
    """
    Path(directory).mkdir(parents=True, exist_ok=True)
    paths = []
    for field in CHECKPOINT_FIELDS:
        path = checkpoint_path(directory, label, field)
        with open(path, "wb") as fh:
            np.save(fh, np.asarray(vectors[field], dtype=float), allow_pickle=False)
        paths.append(path)
    logger.info("Wrote %s checkpoint to %s", label, directory)
    return paths


def _read_vector(path: Path, n_dofs: int) -> np.ndarray:
    if not path.is_file():
        raise MissingCheckpoint(f"Checkpoint file {path} does not exist.")
    with open(path, "rb") as fh:
        try:
            values = np.load(fh, allow_pickle=False)
        except ValueError as exc:
            raise MissingCheckpoint(f"{path} is not a valid checkpoint: {exc}") from exc
        if fh.read(1):
            raise MissingCheckpoint(f"{path} has trailing data after the state vector.")
    if values.shape != (n_dofs,):
        raise MissingCheckpoint(
            f"{path} holds {values.shape} values but the mesh has {n_dofs} DoFs."
        )
    return values.astype(float)


def read_checkpoint(
    directory: str | Path,
    label: str,
    n_dofs: int,
) -> dict[str, np.ndarray]:
    """Load a checkpoint written for a mesh with *n_dofs* DoFs.

    Raises:
        MissingCheckpoint: If a file is absent, unreadable, has trailing
            bytes or does not match the mesh size.
    """
    vectors = {
        field: _read_vector(checkpoint_path(directory, label, field), n_dofs)
        for field in CHECKPOINT_FIELDS
    }
    logger.info("Read %s checkpoint from %s", label, directory)
    return vectors
