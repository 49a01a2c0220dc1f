"""Run parameters.

Classes
-------
Parameters
    Every setting of a bioclogging run, with validation and loaders.

Concentrations are entered in mg/L and converted to mg/cm³ where they
enter the model; lengths are in cm and times in s.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from pybioclog.errors import (
    ConfigurationError,
    UnsupportedModel,
    UnsupportedPermeabilityModel,
)
from pybioclog.materials.hydraulic import FAMILIES, VAN_GENUCHTEN, HydraulicProperties
from pybioclog.materials.kinetics import BiomassKinetics
from pybioclog.materials.permeability import PERMEABILITY_MODELS
from pybioclog.time.schemes import TimeScheme, scheme_for

EQUATIONS = ("head", "mixed")
INITIAL_STATES = ("default", "final", "dry", "no_drying", "saturated")
ENTRY_POINTS = ("top", "bottom")
REACTION_MODELS = ("none", "first_order", "monod")
OUTPUT_FORMATS = (".gp", ".csv", ".txt", ".vtu", ".vtk")


@dataclass
class Parameters:
    """Configuration of a coupled flow–transport–biomass simulation.

    Entries are grouped by concern: mesh and discretisation, time
    stepping, Picard iteration, constitutive model, flow boundary
    conditions, transport, biomass, initial conditions and output.
    Enumerated options are checked by :meth:`validate`.
    """

    # -- mesh ------------------------------------------------------------
    dim: int = 2
    domain_size: float = 35.0
    refinement_level: int = 4
    use_mesh_file: bool = False
    mesh_filename: str = ""
    adaptive_refinement: bool = True
    refine_fraction: float = 0.49
    coarsen_fraction: float = 0.50
    max_cells: int = 20000
    lumped_matrix: bool = False

    # -- time ------------------------------------------------------------
    theta_richards: float = 1.0
    theta_transport: float = 0.5
    time_step: float = 1.0
    timestep_number_max: int = 2000
    dt_min: float = 1.0
    dt_max_drying: float = 1.0
    dt_max_saturation: float = 1.0
    dt_max_transport: float = 60.0
    fast_convergence_iterations: int = 15

    # -- Picard ----------------------------------------------------------
    flow_tolerance: float = 1e-8
    transport_tolerance: float = 1e-3
    stall_iterations: int = 40
    max_stall_restarts: int = 20
    max_iterations: int = 1000

    # -- regime ----------------------------------------------------------
    initial_state: str = "default"
    coupled_transport: bool = True
    drying_tolerance: float = 3.1e-4
    flow_balance_rtol: float = 2e-2
    flow_balance_atol: float = 3e-6
    top_probe_point: tuple[float, ...] | None = None

    # -- constitutive ----------------------------------------------------
    hydraulic_properties: str = VAN_GENUCHTEN
    moisture_content_saturation: float = 0.368
    moisture_content_residual: float = 0.102
    saturated_hydraulic_conductivity: float = 9.22e-3
    van_genuchten_alpha: float = 0.0335
    van_genuchten_n: float = 2.0
    relative_permeability_model: str = "soleimani"
    moisture_transport_equation: str = "head"

    # -- flow boundaries -------------------------------------------------
    richards_fixed_at_top: bool = True
    richards_top_fixed_value: float = 5.0
    richards_top_flow_value: float = 0.0
    richards_fixed_at_bottom: bool = True
    richards_bottom_fixed_value: float = 0.0

    # -- transport -------------------------------------------------------
    dispersivity_longitudinal: float = 0.5
    effective_diffusion_coefficient: float = 1e-5
    transport_mass_entry_point: str = "top"
    transport_fixed_at_top: bool = False
    transport_top_fixed_value: float = 50.0
    reaction_model: str = "none"
    first_order_decay_factor: float = 0.0

    # -- biomass ---------------------------------------------------------
    biomass_dry_density: float = 100.0
    yield_coefficient: float = 0.5
    maximum_substrate_use_rate: float = 1.0e-4
    half_velocity_constant: float = 20.0
    decay_rate: float = 3.0e-6

    # -- initial conditions ----------------------------------------------
    initial_condition_homogeneous_flow: float = 0.0
    initial_condition_homogeneous_transport: float = 0.0
    initial_condition_homogeneous_bacteria: float = 10.0

    # -- output ----------------------------------------------------------
    write_output: bool = True
    output_directory: str = "."
    output_file_format: str = ".gp"
    output_frequency_transport: float = 3600.0
    output_data_in_terminal: bool = False
    sand_fraction: float = 1.0
    write_checkpoints: bool = False
    checkpoint_directory: str = "."

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Parameters":
        """Build parameters from a flat mapping; unknown keys are rejected."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameter(s): {', '.join(unknown)}.")
        kwargs = dict(values)
        if kwargs.get("top_probe_point") is not None:
            kwargs["top_probe_point"] = tuple(float(x) for x in kwargs["top_probe_point"])
        params = cls(**kwargs)
        params.validate()
        return params

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Parameters":
        """Load parameters from a YAML file holding a flat mapping."""
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: expected a mapping of parameters.")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check enumerated options and basic ranges.

        Raises:
            ConfigurationError: On the first invalid entry.
        """
        choices = {
            "moisture_transport_equation": (self.moisture_transport_equation, EQUATIONS, ConfigurationError),
            "hydraulic_properties": (self.hydraulic_properties, FAMILIES, UnsupportedModel),
            "relative_permeability_model": (
                self.relative_permeability_model,
                tuple(PERMEABILITY_MODELS),
                UnsupportedPermeabilityModel,
            ),
            "initial_state": (self.initial_state, INITIAL_STATES, ConfigurationError),
            "transport_mass_entry_point": (self.transport_mass_entry_point, ENTRY_POINTS, ConfigurationError),
            "reaction_model": (self.reaction_model, REACTION_MODELS, ConfigurationError),
            "output_file_format": (self.output_file_format, OUTPUT_FORMATS, ConfigurationError),
        }
        for name, (value, allowed, error) in choices.items():
            if value not in allowed:
                raise error(
                    f"{name}={value!r} is not supported; choose from {list(allowed)}."
                )
        if self.dim not in (1, 2):
            raise ConfigurationError(f"dim must be 1 or 2, got {self.dim}.")
        if self.hydraulic_properties != VAN_GENUCHTEN:
            raise UnsupportedModel(
                f"The coupled simulation needs moisture contents, which "
                f"{self.hydraulic_properties!r} does not define; use {VAN_GENUCHTEN!r}."
            )
        if self.van_genuchten_n <= 1.0:
            raise ConfigurationError(f"van_genuchten_n must exceed 1, got {self.van_genuchten_n}.")
        if not 0.0 <= self.moisture_content_residual < self.moisture_content_saturation:
            raise ConfigurationError("Require 0 <= moisture_content_residual < moisture_content_saturation.")
        if self.domain_size <= 0.0:
            raise ConfigurationError(f"domain_size must be positive, got {self.domain_size}.")
        if not 0.0 < self.dt_min <= min(self.dt_max_drying, self.dt_max_saturation, self.dt_max_transport):
            raise ConfigurationError("dt_min must be positive and not exceed any phase ceiling.")
        if self.use_mesh_file and not self.mesh_filename:
            raise ConfigurationError("use_mesh_file is set but mesh_filename is empty.")
        if self.top_probe_point is not None and len(self.top_probe_point) != self.dim:
            raise ConfigurationError(
                f"top_probe_point needs {self.dim} coordinate(s), got {self.top_probe_point}."
            )

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def hydraulic_model(self) -> HydraulicProperties:
        """Constitutive model described by these parameters."""
        return HydraulicProperties(
            family=self.hydraulic_properties,
            theta_s=self.moisture_content_saturation,
            theta_r=self.moisture_content_residual,
            saturated_conductivity=self.saturated_hydraulic_conductivity,
            alpha=self.van_genuchten_alpha,
            n=self.van_genuchten_n,
        )

    def kinetics(self) -> BiomassKinetics:
        """Biomass growth kinetics described by these parameters."""
        return BiomassKinetics(
            yield_coefficient=self.yield_coefficient,
            max_substrate_use_rate=self.maximum_substrate_use_rate,
            half_velocity_constant=self.half_velocity_constant,
            decay_rate=self.decay_rate,
            dry_density=self.biomass_dry_density,
        )

    def flow_scheme(self) -> TimeScheme:
        return scheme_for(self.theta_richards)

    def transport_scheme(self) -> TimeScheme:
        return scheme_for(self.theta_transport)

    @property
    def probe_point(self) -> tuple[float, ...]:
        """Where the top pressure is sampled (default: x = 0 at the top)."""
        if self.top_probe_point is not None:
            return self.top_probe_point
        return (0.0,) * self.dim

    @property
    def equilibrium_top_pressure(self) -> float:
        """Hydrostatic top pressure for the fixed bottom value."""
        return self.richards_bottom_fixed_value - self.domain_size
