"""Exception hierarchy.

Classes
-------
BioclogError
    Root of every error raised by the package.
ConfigurationError
    Unrecognised option or inconsistent run parameters.
UnsupportedModel
    Unknown hydraulic model family, or an operation the family lacks.
UnsupportedPermeabilityModel
    Unknown relative-permeability (biofouling) model.
NumericalDegeneracy
    Non-finite or negative velocity, Peclet number or SUPG parameter.
ConvergenceStall
    Picard iteration failed to converge after repeated step halving.
LinearSolverError
    Krylov solver reached its iteration cap.
MissingCheckpoint
    A resume file is absent or does not match the mesh.
"""

from __future__ import annotations


class BioclogError(Exception):
    """Base class for all package errors."""


class ConfigurationError(BioclogError, ValueError):
    """Invalid or unsupported configuration value."""


class UnsupportedModel(ConfigurationError):
    """Hydraulic model family not recognised or not applicable."""


class UnsupportedPermeabilityModel(ConfigurationError):
    """Relative-permeability model not recognised."""


class NumericalDegeneracy(BioclogError, ArithmeticError):
    """Transport coefficients became non-finite or negative.

    Usually points at a degenerate cell or an inconsistent parameter
    set upstream of the transport assembly.
    """


class ConvergenceStall(BioclogError, RuntimeError):
    """The coupled fixed-point iteration did not converge."""


class LinearSolverError(BioclogError, RuntimeError):
    """An iterative linear solver hit its iteration cap."""


class MissingCheckpoint(BioclogError, FileNotFoundError):
    """Checkpoint file missing, truncated or sized for another mesh."""
