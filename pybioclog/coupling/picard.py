"""Picard iteration of one coupled time step.

Classes
-------
PicardState
    Stages of a step.
PicardResult
    Convergence record of a step.
PicardIterator
    Fixed-point iteration over the constitutive update, flow and
    transport, with step halving on stalls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

import numpy as np

from pybioclog.errors import ConvergenceStall
from pybioclog.time.controller import Phase, TimeStepController

logger = logging.getLogger(__name__)


class PicardState(Enum):
    ASSEMBLING = auto()
    SOLVING_FLOW = auto()
    SOLVING_TRANSPORT = auto()
    CHECKING_CONVERGENCE = auto()
    CONVERGED = auto()
    STALLED = auto()


@dataclass(frozen=True)
class PicardResult:
    """Outcome of :meth:`PicardIterator.step`.

    Attributes:
        iterations: Iterations of the final (successful) attempt.
        total_iterations: Iterations over all attempts of the step.
        restarts: Number of stall restarts (each halves dt).
        flow_error: Last relative pressure change.
        transport_error: Last relative substrate change (percent).
        dt: Step size the step converged with.
    """

    iterations: int
    total_iterations: int
    restarts: int
    flow_error: float
    transport_error: float
    dt: float


def _flow_error(previous: np.ndarray, current: np.ndarray) -> float:
    """|1 − ‖h_prev‖² / ‖h_new‖²|, zero when both vanish."""
    prev = float(np.dot(previous, previous))
    new = float(np.dot(current, current))
    if new == 0.0:
        return 0.0 if prev == 0.0 else np.inf
    return abs(1.0 - prev / new)


def _transport_error(previous_norm_sqr: float, current_norm_sqr: float) -> float:
    """100 |1 − |‖S_prev‖² / ‖S_new‖²||, zero when both vanish."""
    if current_norm_sqr == 0.0:
        return 0.0 if previous_norm_sqr == 0.0 else np.inf
    return 100.0 * abs(1.0 - abs(previous_norm_sqr / current_norm_sqr))


class PicardIterator:
    """Drive one time step to convergence.

    Each pass updates the constitutive fields, solves flow and, while
    transport is active, solves transport.  The step converges when the
    pressure change drops below *flow_tolerance* and the substrate
    change to at most *transport_tolerance*, after at least two passes.

    A step with transport that needs *stall_iterations* passes
    continues from the current iterate with half the step size.  Without
    transport, reaching *max_iterations* is fatal.

    Args:
        flow: Flow module (:class:`~pybioclog.physics.richards.Richards`).
        transport: Transport module, or None for flow only.
        constitutive: :class:`~pybioclog.physics.constitutive.ConstitutiveUpdate`.
        accounting: :class:`~pybioclog.coupling.state.AccountingState`
            receiving the boundary diagnostics.
        coupled_transport: Solve transport in the transport regime.
        flow_tolerance: Threshold on the pressure change.
        transport_tolerance: Threshold on the substrate change (percent).
        stall_iterations: Passes before a transport step is restarted.
        max_stall_restarts: Restarts before giving up.
        max_iterations: Passes before a flow-only step gives up.
    """

    def __init__(
        self,
        flow: Any,
        transport: Any,
        constitutive: Any,
        accounting: Any,
        coupled_transport: bool = True,
        flow_tolerance: float = 1e-8,
        transport_tolerance: float = 1e-3,
        stall_iterations: int = 40,
        max_stall_restarts: int = 20,
        max_iterations: int = 1000,
    ) -> None:
        self.flow = flow
        self.transport = transport
        self.constitutive = constitutive
        self.accounting = accounting
        self.coupled_transport = coupled_transport and transport is not None
        self.flow_tolerance = flow_tolerance
        self.transport_tolerance = transport_tolerance
        self.stall_iterations = stall_iterations
        self.max_stall_restarts = max_stall_restarts
        self.max_iterations = max_iterations
        self.state = PicardState.CONVERGED

    @classmethod
    def from_parameters(
        cls,
        params: Any,
        flow: Any,
        transport: Any,
        constitutive: Any,
        accounting: Any,
    ) -> "PicardIterator":
        return cls(
            flow,
            transport,
            constitutive,
            accounting,
            coupled_transport=params.coupled_transport,
            flow_tolerance=params.flow_tolerance,
            transport_tolerance=params.transport_tolerance,
            stall_iterations=params.stall_iterations,
            max_stall_restarts=params.max_stall_restarts,
            max_iterations=params.max_iterations,
        )

    def _record(self, diagnostics: dict[str, float]) -> None:
        for key, value in diagnostics.items():
            if key == "nutrients_in_domain":
                self.accounting.nutrients_in_domain_current = value
            else:
                setattr(self.accounting, key, value)

    def step(self, fields: Any, controller: TimeStepController, phase: Phase) -> PicardResult:
        """Iterate the "new" slots of *fields* to convergence.

        The "old" slots are not touched.  On a stall restart the
        iteration continues from the current iterate with the halved
        step size held by *controller*.

        Raises:
            ConvergenceStall: If the step cannot be converged.
        """
        with_transport = self.coupled_transport and phase.transport_active
        iteration = 0
        total = 0
        restarts = 0
        flow_error = np.inf
        transport_error = np.inf
        old_norm = 0.0

        while True:
            if with_transport and iteration == self.stall_iterations:
                self.state = PicardState.STALLED
                restarts += 1
                if restarts > self.max_stall_restarts:
                    raise ConvergenceStall(
                        f"Picard iteration stalled {restarts} times at "
                        f"t={controller.time:.1f} s (dt={controller.dt:g} s)."
                    )
                dt = controller.halve()
                logger.warning(
                    "Picard stalled after %d iterations; restarting with dt=%g s",
                    iteration, dt,
                )
                iteration = 0
                flow_error = np.inf
                transport_error = np.inf
                old_norm = 0.0
            elif not with_transport and iteration >= self.max_iterations:
                self.state = PicardState.STALLED
                raise ConvergenceStall(
                    f"Flow did not converge in {iteration} iterations at "
                    f"t={controller.time:.1f} s (error {flow_error:.3e})."
                )

            dt = controller.dt
            self.state = PicardState.ASSEMBLING
            self.constitutive(fields, dt, grow_biomass=phase.biomass_active)
            system = self.flow.assemble_system(fields, dt, phase)
            self._record(system.diagnostics)

            self.state = PicardState.SOLVING_FLOW
            pressure = fields["pressure"]
            h_new = self.flow.solve(system, pressure.new)
            flow_error = _flow_error(pressure.new, h_new)
            pressure.new = h_new

            if with_transport:
                self.state = PicardState.SOLVING_TRANSPORT
                system = self.transport.assemble_system(fields, dt, phase)
                self._record(system.diagnostics)
                substrate = fields["substrate"]
                substrate.new = self.transport.solve(system, substrate.new)
                new_norm = float(np.dot(substrate.new, substrate.new))
                transport_error = _transport_error(old_norm, new_norm)
                old_norm = new_norm

            self.state = PicardState.CHECKING_CONVERGENCE
            converged = (
                flow_error < self.flow_tolerance
                and (not with_transport or transport_error <= self.transport_tolerance)
                and iteration > 0
            )
            iteration += 1
            total += 1
            logger.debug(
                "Picard %d: flow error %.3e, transport error %.3e",
                iteration, flow_error, transport_error if with_transport else 0.0,
            )
            if converged:
                self.state = PicardState.CONVERGED
                return PicardResult(
                    iterations=iteration,
                    total_iterations=total,
                    restarts=restarts,
                    flow_error=flow_error,
                    transport_error=transport_error if with_transport else 0.0,
                    dt=controller.dt,
                )
