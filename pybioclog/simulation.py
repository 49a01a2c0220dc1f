"""Simulation driver.

Classes
-------
Solution
    Container for the state at the end of a run.
Simulation
    Time loop over drying, saturation and transport regimes.

Functions
---------
build_mesh
    Mesh described by the run parameters.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

import numpy as np

from pybioclog.config import Parameters
from pybioclog.coupling.picard import PicardIterator, PicardResult
from pybioclog.coupling.state import AccountingState, NodalFieldState
from pybioclog.errors import BioclogError
from pybioclog.fem.elements import point_value
from pybioclog.geometry.mesh import Mesh, hyper_cube, import_mesh
from pybioclog.geometry.refinement import MeshAdapter
from pybioclog.physics.constitutive import ConstitutiveUpdate
from pybioclog.physics.richards import Richards
from pybioclog.physics.transport import Transport
from pybioclog.postprocess.checkpoint import read_checkpoint, write_checkpoint
from pybioclog.postprocess.export import (
    conductivity_history_filename,
    snapshot_filename,
    snapshot_label,
    write_conductivity_history,
    write_snapshot,
)
from pybioclog.postprocess.fields import harmonic_mean_conductivity
from pybioclog.time.controller import Phase, PhaseMachine, PhaseTransition, TimeStepController

logger = logging.getLogger(__name__)

INITIAL_PHASES = {
    "default": Phase.DRYING,
    "final": Phase.DRYING,
    "dry": Phase.SATURATION,
    "no_drying": Phase.SATURATION,
    "saturated": Phase.TRANSPORT,
}
# initial state -> checkpoint it resumes from
RESUMED_FROM = {"final": "final", "dry": "dry", "saturated": "saturated"}


def build_mesh(params: Parameters) -> Mesh:
    """Import the mesh file or build the ``[-L, 0]^dim`` column."""
    if params.use_mesh_file:
        return import_mesh(params.mesh_filename, params.refinement_level)
    return hyper_cube(params.dim, params.domain_size, params.refinement_level)


class Solution:
    """Container for simulation output.

    Attributes:
        fields: Final nodal fields keyed by name.
        mesh: The (possibly adapted) mesh the fields live on.
        times: Simulation time after every step, starting with the
            initial time.
        conductivity_history: Rows ``(timestep, hours, K_mean)``.
        phase_durations: Seconds spent in each completed regime.
        accounting: Boundary fluxes and nutrient inventory.
    """

    def __init__(
        self,
        fields: dict[str, np.ndarray],
        mesh: Mesh,
        times: np.ndarray,
        conductivity_history: list[tuple[int, float, float]],
        phase_durations: dict[str, float],
        accounting: AccountingState,
    ) -> None:
        self.fields = fields
        self.mesh = mesh
        self.times = times
        self.conductivity_history = conductivity_history
        self.phase_durations = phase_durations
        self.accounting = accounting

    def __getitem__(self, key: str) -> np.ndarray:
        return self.fields[key]

    def compute_velocity(self) -> np.ndarray:
        """Cell Darcy flux −K∇(h + z) of the final state."""
        from pybioclog.postprocess.fields import compute_velocity
        return compute_velocity(self.mesh, self.fields["pressure"], self.fields["conductivity"])

    def plot(self, field: str = "pressure", ax: Any = None, **kwargs: Any) -> Any:
        """Profile in 1-D, filled contours in 2-D."""
        from pybioclog.visualization.plot import plot_field, plot_profile
        if self.mesh.dim == 1:
            return plot_profile(self.mesh, self.fields[field], label=field, ax=ax, **kwargs)
        return plot_field(self.mesh, self.fields[field], title=field, ax=ax, **kwargs)

    def export(self, filename: str | Path) -> Path:
        """Write the final fields; the suffix selects the format."""
        return write_snapshot(filename, self.mesh, self.fields)

    def __repr__(self) -> str:
        return (
            f"Solution(n_nodes={self.mesh.n_nodes}, steps={len(self.times) - 1}, "
            f"t={self.times[-1]:.1f} s)"
        )


class Simulation:
    """Coupled flow, transport and biomass growth in a soil column.

    The run starts in the regime given by ``initial_state`` and moves
    one way through drying, saturation and transport as the column
    reaches hydrostatic equilibrium and then steady through-flow.

    Args:
        params: Run parameters.
        mesh: Mesh to use instead of the one described by *params*.
        conductivity_factor: Optional callable of cell centres returning
            multipliers of the saturated conductivity.

    Example::

        params = Parameters.from_yaml("column.yaml")
        solution = Simulation(params).run()
    """

    def __init__(
        self,
        params: Parameters,
        mesh: Mesh | None = None,
        conductivity_factor: Callable[[np.ndarray], np.ndarray] | None = None,
    ) -> None:
        params.validate()
        self.params = params
        self.mesh = mesh if mesh is not None else build_mesh(params)
        self.hydraulics = params.hydraulic_model()
        self.kinetics = params.kinetics()

        self.flow = Richards.from_parameters(self.mesh, params)
        self.transport = (
            Transport.from_parameters(self.mesh, params) if params.coupled_transport else None
        )
        for issue in self.flow.validate():
            logger.warning(issue)

        self.constitutive = ConstitutiveUpdate(
            self.mesh,
            self.hydraulics,
            self.kinetics,
            params.relative_permeability_model,
            conductivity_factor,
        )
        self.accounting = AccountingState()
        self.picard = PicardIterator.from_parameters(
            params, self.flow, self.transport, self.constitutive, self.accounting
        )
        self.adapter = (
            MeshAdapter.from_parameters(self.mesh, params) if params.adaptive_refinement else None
        )
        self.phases = PhaseMachine(
            INITIAL_PHASES[params.initial_state],
            coupled_transport=params.coupled_transport,
            drying_tolerance=params.drying_tolerance,
            flow_balance_rtol=params.flow_balance_rtol,
            flow_balance_atol=params.flow_balance_atol,
        )
        self.controller = TimeStepController(
            dt=params.time_step,
            dt_min=params.dt_min,
            dt_max_drying=params.dt_max_drying,
            dt_max_saturation=params.dt_max_saturation,
            dt_max_transport=params.dt_max_transport,
            fast_convergence_iterations=params.fast_convergence_iterations,
        )
        self.fields: NodalFieldState | None = None
        self.times: list[float] = []
        self.conductivity_history: list[tuple[int, float, float]] = []

    @classmethod
    def from_yaml(cls, path: str | Path, **kwargs: Any) -> "Simulation":
        return cls(Parameters.from_yaml(path), **kwargs)

    @property
    def phase(self) -> Phase:
        return self.phases.phase

    @property
    def output_directory(self) -> Path:
        return Path(self.params.output_directory)

    # ------------------------------------------------------------------
    # Initial state
    # ------------------------------------------------------------------

    def initialise(self) -> NodalFieldState:
        """Set the initial fields from homogeneous values or a checkpoint."""
        p = self.params
        fields = NodalFieldState(self.mesh.n_nodes)
        label = RESUMED_FROM.get(p.initial_state)
        if label is None:
            fields["pressure"].fill(p.initial_condition_homogeneous_flow)
            # mg/L -> mg/cm³
            fields["substrate"].fill(p.initial_condition_homogeneous_transport / 1000.0)
            fields["biomass"].fill(0.0)
        else:
            vectors = read_checkpoint(p.checkpoint_directory, label, self.mesh.n_nodes)
            for name, values in vectors.items():
                fields[name].fill(values)
        fields["biomass_fraction"].fill(fields["biomass"].new / self.kinetics.dry_density)
        self.constitutive(fields, self.controller.dt, grow_biomass=False)
        fields.commit()

        self.fields = fields
        self.times = [self.controller.time]
        logger.info(
            "Initial state %r: %s regime, %d cells, %d DoFs",
            p.initial_state, self.phase.value, self.mesh.n_cells, self.mesh.n_nodes,
        )
        return fields

    # ------------------------------------------------------------------
    # Time loop
    # ------------------------------------------------------------------

    def run(self) -> Solution:
        """Run ``timestep_number_max − 1`` steps and write the summary.

        Raises:
            BioclogError: Logged, then re-raised.
        """
        try:
            return self._run()
        except BioclogError as exc:
            logger.error(
                "Simulation stopped at t=%.1f s in the %s regime: %s",
                self.controller.time, self.phase.value, exc,
            )
            raise

    def _run(self) -> Solution:
        p = self.params
        if self.fields is None:
            self.initialise()
        if p.write_output:
            self.output_directory.mkdir(parents=True, exist_ok=True)

        last = p.timestep_number_max - 1
        for n in range(1, p.timestep_number_max):
            self.step(n, final=n == last)

        if p.write_output:
            name = conductivity_history_filename(
                p.relative_permeability_model,
                p.sand_fraction,
                p.yield_coefficient,
                p.maximum_substrate_use_rate,
                p.half_velocity_constant,
            )
            write_conductivity_history(self.output_directory / name, self.conductivity_history)
        if p.write_checkpoints:
            write_checkpoint(p.checkpoint_directory, "final", self.fields.snapshot())

        return Solution(
            fields=self.fields.snapshot(),
            mesh=self.mesh,
            times=np.asarray(self.times),
            conductivity_history=list(self.conductivity_history),
            phase_durations={phase.value: d for phase, d in self.phases.durations.items()},
            accounting=self.accounting,
        )

    def step(self, timestep: int, final: bool = False) -> PicardResult:
        """Advance one time step and commit it.

        Args:
            timestep: Step number (1-based).
            final: Force a snapshot of this step.

        Returns:
            Convergence record of the step.
        """
        p = self.params
        if self.fields is None:
            self.initialise()

        phase = self.phase
        if self.adapter is not None and phase is not Phase.DRYING:
            self.fields = self.adapter.adapt(self.fields, phase, p.coupled_transport)

        result = self.picard.step(self.fields, self.controller, phase)
        dt = self.controller.dt
        time = self.controller.advance()
        self.accounting.commit(dt)

        top_pressure = point_value(self.mesh, self.fields["pressure"].new, p.probe_point)
        transition = self.phases.update(
            time,
            top_pressure,
            p.equilibrium_top_pressure,
            self.accounting.flow_at_top,
            self.accounting.flow_at_bottom,
        )
        if transition is not None:
            self._on_transition(transition)

        k_mean = harmonic_mean_conductivity(self.fields["conductivity"].new)
        self.conductivity_history.append((timestep, self.phases.elapsed(time) / 3600.0, k_mean))
        logger.log(
            logging.INFO if p.output_data_in_terminal else logging.DEBUG,
            "Step %d (%s): t=%.1f s, dt=%g s, %d iterations, top pressure %.4f cm, "
            "K mean %.4e cm/s, water flow top %.3e bottom %.3e",
            timestep, self.phase.value, time, dt, result.total_iterations,
            top_pressure, k_mean, self.accounting.flow_at_top, self.accounting.flow_at_bottom,
        )

        if p.write_output and (
            self.phases.snapshot_due(time, p.output_frequency_transport) or final
        ):
            self._write_snapshot(timestep, time)

        self.controller.update(self.phase, result.total_iterations, transition is not None)
        self.fields.commit()
        self.times.append(time)
        return result

    def _on_transition(self, transition: PhaseTransition) -> None:
        p = self.params
        if transition.target is Phase.SATURATION:
            if p.write_checkpoints:
                write_checkpoint(p.checkpoint_directory, "dry", self.fields.snapshot())
        elif transition.target is Phase.TRANSPORT:
            # mg/L -> mg/cm³
            seed = p.initial_condition_homogeneous_bacteria / 1000.0
            self.fields["biomass"].new = np.full(self.mesh.n_nodes, seed)
            self.fields["biomass_fraction"].new = self.fields["biomass"].new / self.kinetics.dry_density
            if p.write_checkpoints:
                write_checkpoint(p.checkpoint_directory, "saturated", self.fields.snapshot())

    def _write_snapshot(self, timestep: int, time: float) -> Path:
        p = self.params
        label = snapshot_label(self.phase, time, self.phases.milestone_time, timestep)
        name = snapshot_filename(
            p.moisture_transport_equation,
            p.lumped_matrix,
            self.mesh.dim,
            self.phase,
            label,
            p.output_file_format,
        )
        return write_snapshot(self.output_directory / name, self.mesh, self.fields.snapshot())
