"""Geometry: adaptive meshes, hanging-node constraints, refinement."""

from pybioclog.geometry.mesh import BOTTOM, TOP, Mesh, hyper_cube, import_mesh
from pybioclog.geometry.constraints import HangingNodeConstraints
from pybioclog.geometry.refinement import (
    MeshAdapter,
    SolutionTransfer,
    estimate_error,
    flag_fixed_fraction,
)

__all__ = [
    "TOP",
    "BOTTOM",
    "Mesh",
    "hyper_cube",
    "import_mesh",
    "HangingNodeConstraints",
    "MeshAdapter",
    "SolutionTransfer",
    "estimate_error",
    "flag_fixed_fraction",
]
