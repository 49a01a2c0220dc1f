"""
pybioclog: Coupled unsaturated flow, substrate transport and biomass
growth (bioclogging) in soil columns.

Subpackages
-----------
materials
    Hydraulic properties, relative-permeability models, Monod kinetics.
geometry
    Adaptive Q1 meshes, hanging-node constraints, mesh adaptation.
fem
    Quadrature, cell and face values, global assembly.
physics
    Richards flow, SUPG substrate transport, constitutive update.
solvers
    Preconditioned Krylov solvers.
coupling
    Double-buffered field state and the Picard iterator.
time
    θ time schemes, regimes and step-size control.
postprocess
    Derived quantities, export and checkpoints.
visualization
    Plotting utilities.
"""

import logging

from pybioclog import (
    materials,
    geometry,
    fem,
    physics,
    solvers,
    coupling,
    time,
    postprocess,
    visualization,
)
from pybioclog.config import Parameters
from pybioclog.simulation import Simulation, Solution

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "materials",
    "geometry",
    "fem",
    "physics",
    "solvers",
    "coupling",
    "time",
    "postprocess",
    "visualization",
    "Parameters",
    "Simulation",
    "Solution",
]
