"""Coupling: field state and Picard iteration."""

from pybioclog.coupling.state import AccountingState, FieldPair, NodalFieldState
from pybioclog.coupling.picard import PicardIterator, PicardResult, PicardState

__all__ = [
    "AccountingState",
    "FieldPair",
    "NodalFieldState",
    "PicardIterator",
    "PicardResult",
    "PicardState",
]
