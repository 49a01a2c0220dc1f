"""Materials: hydraulic properties, biofouling and growth kinetics."""

from pybioclog.materials.hydraulic import HydraulicProperties
from pybioclog.materials.kinetics import BiomassKinetics
from pybioclog.materials.permeability import PERMEABILITY_MODELS, relative_permeability

__all__ = [
    "HydraulicProperties",
    "BiomassKinetics",
    "PERMEABILITY_MODELS",
    "relative_permeability",
]
