"""Simulation regimes and time-step control.

Classes
-------
Phase
    Drying, saturation or transport regime.
PhaseTransition
    Record of a regime change.
PhaseMachine
    One-way regime switching from boundary diagnostics.
TimeStepController
    Step-size adaptation from Picard convergence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Physical regime of a column experiment.

    DRYING
        The column drains towards hydrostatic equilibrium with no flow
        through the top; biomass is inert.
    SATURATION
        Water is supplied at the top until the through-flow is steady.
    TRANSPORT
        Substrate enters with the water and biomass grows.
    """

    DRYING = "drying"
    SATURATION = "saturation"
    TRANSPORT = "transport"

    @property
    def biomass_active(self) -> bool:
        return self is not Phase.DRYING

    @property
    def transport_active(self) -> bool:
        return self is Phase.TRANSPORT

    @property
    def period(self) -> str:
        """Label used in output file names."""
        return {
            Phase.DRYING: "drying",
            Phase.SATURATION: "saturating",
            Phase.TRANSPORT: "transporting",
        }[self]

    @property
    def next(self) -> "Phase | None":
        return {
            Phase.DRYING: Phase.SATURATION,
            Phase.SATURATION: Phase.TRANSPORT,
            Phase.TRANSPORT: None,
        }[self]


@dataclass(frozen=True)
class PhaseTransition:
    source: Phase
    target: Phase
    time: float
    duration: float


class PhaseMachine:
    """Switch regimes when the column reaches the expected state.

    * drying → saturation once the top pressure matches hydrostatic
      equilibrium to within *drying_tolerance* (relative);
    * saturation → transport (only with coupled transport) once inflow
      and outflow balance, relatively within *flow_balance_rtol* or in
      absolute sum below *flow_balance_atol*.

    Each transition resets the milestone time and the snapshot counter.

    Args:
        phase: Starting regime.
        coupled_transport: Whether the transport regime is reachable.
        drying_tolerance: Relative top-pressure tolerance.
        flow_balance_rtol: Relative water-flow imbalance tolerance.
        flow_balance_atol: Absolute water-flow imbalance tolerance.
        time: Simulation time at start.
    """

    def __init__(
        self,
        phase: Phase = Phase.DRYING,
        coupled_transport: bool = True,
        drying_tolerance: float = 3.1e-4,
        flow_balance_rtol: float = 2e-2,
        flow_balance_atol: float = 3e-6,
        time: float = 0.0,
    ) -> None:
        self.phase = phase
        self.coupled_transport = coupled_transport
        self.drying_tolerance = drying_tolerance
        self.flow_balance_rtol = flow_balance_rtol
        self.flow_balance_atol = flow_balance_atol
        self.milestone_time = time
        self.snapshot_count = 0
        self.durations: dict[Phase, float] = {}

    # ------------------------------------------------------------------
    # Criteria
    # ------------------------------------------------------------------

    def drying_complete(self, top_pressure: float, equilibrium_pressure: float) -> bool:
        """Top pressure within tolerance of its hydrostatic value."""
        if equilibrium_pressure == 0.0:
            return abs(top_pressure) < self.drying_tolerance
        ratio = top_pressure / equilibrium_pressure
        return abs(1.0 - ratio) < self.drying_tolerance

    def saturation_complete(self, flow_top: float, flow_bottom: float) -> bool:
        """Inflow through the top balances outflow through the bottom.

        Outward fluxes are positive, so a steady column has
        ``flow_top ≈ −flow_bottom``.
        """
        absolute = abs(flow_top + flow_bottom)
        if flow_bottom == 0.0:
            return absolute < self.flow_balance_atol
        relative = abs(1.0 - abs(flow_top / flow_bottom))
        return relative < self.flow_balance_rtol or absolute < self.flow_balance_atol

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def update(
        self,
        time: float,
        top_pressure: float,
        equilibrium_pressure: float,
        flow_top: float,
        flow_bottom: float,
    ) -> PhaseTransition | None:
        """Evaluate the criterion of the current regime after a step.

        Returns:
            The transition taken, or None.  At most one per call.
        """
        if self.phase is Phase.DRYING:
            if self.drying_complete(top_pressure, equilibrium_pressure):
                return self._enter(Phase.SATURATION, time)
        elif self.phase is Phase.SATURATION:
            if self.coupled_transport and self.saturation_complete(flow_top, flow_bottom):
                return self._enter(Phase.TRANSPORT, time)
        elif self.phase is Phase.TRANSPORT:
            pass
        else:
            raise ValueError(f"Unknown phase {self.phase!r}.")
        return None

    def _enter(self, target: Phase, time: float) -> PhaseTransition:
        if self.phase.next is not target:
            raise ValueError(f"Illegal transition {self.phase.value} -> {target.value}.")
        duration = time - self.milestone_time
        transition = PhaseTransition(self.phase, target, time, duration)
        self.durations[self.phase] = duration
        self.phase = target
        self.milestone_time = time
        self.snapshot_count = 0
        logger.info(
            "Phase %s -> %s at t=%.1f s (%.3f h in %s)",
            transition.source.value, target.value, time,
            duration / 3600.0, transition.source.value,
        )
        return transition

    # ------------------------------------------------------------------
    # Output cadence
    # ------------------------------------------------------------------

    def output_frequency(self, transport_frequency: float) -> float:
        """Seconds between snapshots in the current regime (0 disables)."""
        if self.phase is Phase.TRANSPORT:
            return transport_frequency
        return 1.0

    def snapshot_due(self, time: float, transport_frequency: float) -> bool:
        """True when the next snapshot of this regime is due.

        Advances the counter when it returns True.
        """
        frequency = self.output_frequency(transport_frequency)
        if frequency <= 0.0:
            return False
        if time - self.milestone_time >= self.snapshot_count * frequency:
            self.snapshot_count += 1
            return True
        return False

    def elapsed(self, time: float) -> float:
        """Time since the current regime began."""
        return time - self.milestone_time


@dataclass
class TimeStepController:
    """Step-size control driven by Picard iteration counts.

    Halved on a stall, doubled after a step that converged in fewer
    than *fast_convergence_iterations*, reset to *dt_min* after a
    regime change, and always clamped to the regime's ceiling.

    Args:
        dt: Current step size (s).
        dt_min: Lower bound (s).
        dt_max_drying: Ceiling while drying (s).
        dt_max_saturation: Ceiling while saturating (s).
        dt_max_transport: Ceiling while transporting (s).
        fast_convergence_iterations: Iteration count below which dt grows.
        growth_factor: Multiplier for fast steps.
        time: Current simulation time (s).
    """

    dt: float = 1.0
    dt_min: float = 1.0
    dt_max_drying: float = 1.0
    dt_max_saturation: float = 1.0
    dt_max_transport: float = 60.0
    fast_convergence_iterations: int = 15
    growth_factor: float = 2.0
    time: float = 0.0
    last_iterations: int = 0

    def dt_max(self, phase: Phase) -> float:
        return {
            Phase.DRYING: self.dt_max_drying,
            Phase.SATURATION: self.dt_max_saturation,
            Phase.TRANSPORT: self.dt_max_transport,
        }[phase]

    def halve(self) -> float:
        """Stall recovery; the floor is enforced at the next update."""
        self.dt *= 0.5
        return self.dt

    def advance(self) -> float:
        """Move the clock by the current step."""
        self.time += self.dt
        return self.time

    def update(self, phase: Phase, iterations: int, transitioned: bool) -> float:
        """Choose the step size for the next step.

        Args:
            phase: Regime after the committed step.
            iterations: Picard iterations the step needed.
            transitioned: Whether the regime changed during the step.

        Returns:
            New step size.
        """
        self.last_iterations = iterations
        if transitioned:
            self.dt = self.dt_min
        elif iterations < self.fast_convergence_iterations:
            self.dt *= self.growth_factor
        self.dt = min(max(self.dt, self.dt_min), self.dt_max(phase))
        return self.dt
