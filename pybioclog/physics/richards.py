"""Unsaturated flow: Richards equation.

Head form::

    C(h) ∂h/∂t = ∇·(K(h, B) ∇(h + z))

Mixed form::

    ∂θ(h)/∂t = ∇·(K(h, B) ∇(h + z))

h is the pressure head (cm), z the elevation, K the (bio-clogged)
hydraulic conductivity and C = dθ/dh the specific moisture capacity.
The nonlinearity is handled by Picard iteration in
:mod:`pybioclog.coupling.picard`; each call to
:meth:`Richards.assemble_system` linearises about the current iterate.

Functions
---------
darcy_flux
    Cell-averaged Darcy flux −K∇(h + z).
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pybioclog.errors import ConfigurationError
from pybioclog.fem.assembly import LinearSystem, apply_constraints
from pybioclog.fem.elements import (
    CellValues,
    FaceValues,
    gauss_quadrature,
    trapezoidal_quadrature,
)
from pybioclog.geometry.mesh import BOTTOM, TOP
from pybioclog.physics.base import PhysicsModule
from pybioclog.solvers.linear import solve_cg
from pybioclog.time.controller import Phase
from pybioclog.time.schemes import TimeScheme

EQUATIONS = ("head", "mixed")


def darcy_flux(
    cell_values: CellValues,
    pressure: np.ndarray,
    conductivity: np.ndarray,
    elevation: np.ndarray,
) -> np.ndarray:
    """Cell average of q = −K∇(h + z), with K and h interpolated jointly.

    Args:
        cell_values: Quadrature data of the mesh.
        pressure: Nodal pressure head.
        conductivity: Nodal hydraulic conductivity.
        elevation: Nodal elevation z.

    Returns:
        Flux per cell, shape ``(n_cells, dim)``.
    """
    potential = conductivity * (pressure + elevation)
    integral = np.einsum(
        "ck,cqkd,cq->cd",
        potential[cell_values.cells], cell_values.grads, cell_values.JxW,
    )
    return -integral / cell_values.volumes[:, None]


class Richards(PhysicsModule):
    """Transient unsaturated flow with θ-weighted Picard linearisation.

    Boundary conditions depend on the regime: while drying the top is
    closed (no flux, no fixed value); afterwards it is either held at
    *top_fixed_value* or receives the flux *top_flow_value*.  The
    bottom is optionally held at *bottom_fixed_value*.

    Args:
        mesh: Computational mesh.
        scheme: θ time-weighting.
        equation: ``"head"`` or ``"mixed"``.
        lumped: Use vertex quadrature (diagonal mass matrix).
        fixed_at_top: Dirichlet condition at the top outside drying.
        top_fixed_value: Top pressure head (cm).
        top_flow_value: Outward top flux (cm/s) when not fixed.
        fixed_at_bottom: Dirichlet condition at the bottom.
        bottom_fixed_value: Bottom pressure head (cm).
    """

    name = "richards"
    primary_field = "pressure"

    def __init__(
        self,
        mesh: Any,
        scheme: TimeScheme,
        equation: str = "head",
        lumped: bool = False,
        fixed_at_top: bool = True,
        top_fixed_value: float = 0.0,
        top_flow_value: float = 0.0,
        fixed_at_bottom: bool = True,
        bottom_fixed_value: float = 0.0,
    ) -> None:
        super().__init__(mesh, scheme)
        if equation not in EQUATIONS:
            raise ConfigurationError(
                f"Unknown moisture transport equation {equation!r}; "
                f"choose from {list(EQUATIONS)}."
            )
        self.equation = equation
        self.lumped = lumped
        self.fixed_at_top = fixed_at_top
        self.top_fixed_value = top_fixed_value
        self.top_flow_value = top_flow_value
        self.fixed_at_bottom = fixed_at_bottom
        self.bottom_fixed_value = bottom_fixed_value

    @classmethod
    def from_parameters(cls, mesh: Any, params: Any) -> "Richards":
        return cls(
            mesh,
            params.flow_scheme(),
            equation=params.moisture_transport_equation,
            lumped=params.lumped_matrix,
            fixed_at_top=params.richards_fixed_at_top,
            top_fixed_value=params.richards_top_fixed_value,
            top_flow_value=params.richards_top_flow_value,
            fixed_at_bottom=params.richards_fixed_at_bottom,
            bottom_fixed_value=params.richards_bottom_fixed_value,
        )

    def _setup(self) -> None:
        if self.lumped:
            quadrature = trapezoidal_quadrature(self.dim)
        else:
            quadrature = gauss_quadrature(self.dim, 2)
        self.cell_values = CellValues(self.mesh, quadrature)
        self.face_values = FaceValues(self.mesh, 1, (TOP, BOTTOM))

    # ------------------------------------------------------------------
    # Boundary conditions
    # ------------------------------------------------------------------

    def top_flux(self, phase: Phase) -> float:
        """Imposed top flux; the top is closed while drying."""
        if phase is Phase.DRYING:
            return 0.0
        return self.top_flow_value

    def dirichlet(self, phase: Phase) -> tuple[np.ndarray, np.ndarray]:
        """Fixed-value DoFs and values for *phase*."""
        dofs = []
        values = []
        if self.fixed_at_bottom:
            bottom = self.mesh.boundary_dofs(BOTTOM)
            dofs.append(bottom)
            values.append(np.full(len(bottom), self.bottom_fixed_value))
        if self.fixed_at_top and phase is not Phase.DRYING:
            top = self.mesh.boundary_dofs(TOP)
            dofs.append(top)
            values.append(np.full(len(top), self.top_fixed_value))
        if not dofs:
            return np.empty(0, dtype=int), np.empty(0)
        return np.concatenate(dofs), np.concatenate(values)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble_system(self, fields: Any, dt: float, phase: Phase) -> LinearSystem:
        """Assemble the flow system about the current pressure iterate.

        Also measures the water flow through the top and bottom
        boundaries (outward positive) and reports it in
        ``system.diagnostics``.
        """
        self.refresh()
        cv = self.cell_values
        theta = self.theta
        phi = cv.phi

        h_old = fields["pressure"].old
        h_iter = fields["pressure"].new
        C_new = cv.values(fields["capacity"].new)
        C_old = cv.values(fields["capacity"].old)
        K_new = cv.values(fields["conductivity"].new)
        K_old = cv.values(fields["conductivity"].old)

        if self.equation == "head":
            storage = self.scheme.blend(C_new, C_old)
        else:
            storage = C_new
        mass_local = np.einsum("cq,qi,qj->cij", storage * cv.JxW, phi, phi)
        laplace = np.einsum("cqid,cqjd->cqij", cv.grads, cv.grads)
        stiff_new_local = np.einsum("cq,cqij->cij", K_new * cv.JxW, laplace)
        stiff_old_local = np.einsum("cq,cqij->cij", K_old * cv.JxW, laplace)

        gravity = self.scheme.blend(K_new, K_old) * cv.JxW
        rhs_local = -dt * np.einsum("cq,cqi->ci", gravity, cv.grads[..., -1])
        if self.equation == "mixed":
            dtheta = cv.values(fields["total_moisture"].new) - cv.values(
                fields["total_moisture"].old
            )
            rhs_local -= np.einsum("cq,qi->ci", dtheta * cv.JxW, phi)

        mass = self.pattern.matrix(mass_local)
        stiffness_new = self.pattern.matrix(stiff_new_local)
        stiffness_old = self.pattern.matrix(stiff_old_local)
        rhs = self.pattern.vector(rhs_local)

        if not self.fixed_at_top:
            rhs += self._top_flux_vector(dt * self.top_flux(phase))

        reference = h_old if self.equation == "head" else h_iter
        rhs += mass @ reference - (1.0 - theta) * dt * (stiffness_old @ h_old)
        A = mass + theta * dt * stiffness_new

        dofs, values = self.dirichlet(phase)
        A, rhs = apply_constraints(A, rhs, self.constraints, dofs, values)

        flows = self.boundary_flows(fields)
        return LinearSystem(
            matrix=A,
            rhs=rhs,
            mass=mass,
            stiffness_new=stiffness_new,
            stiffness_old=stiffness_old,
            dirichlet_dofs=dofs,
            dirichlet_values=values,
            diagnostics={
                "flow_at_top": flows[TOP],
                "flow_at_bottom": flows[BOTTOM],
            },
        )

    def _top_flux_vector(self, scaled_flux: float) -> np.ndarray:
        fv = self.face_values
        top = fv.boundary_ids == TOP
        local = -scaled_flux * np.einsum("fqk,fq->fk", fv.phi[top], fv.JxW[top])
        out = np.zeros(self.mesh.n_nodes)
        np.add.at(out, fv.cells[top], local)
        return out

    def boundary_flows(self, fields: Any) -> dict[int, float]:
        """Outward water flow through the top and bottom faces.

        Q = −∫ [θ K_new n·∇(h_new + z) + (1 − θ) K_old n·∇(h_old + z)] ds
        """
        self.refresh()
        fv = self.face_values
        z = self.mesh.vertical
        flux_new = fv.values(fields["conductivity"].new) * fv.normal_gradients(
            fields["pressure"].new + z
        )
        flux_old = fv.values(fields["conductivity"].old) * fv.normal_gradients(
            fields["pressure"].old + z
        )
        per_face = -np.sum(self.scheme.blend(flux_new, flux_old) * fv.JxW, axis=1)
        return {
            bid: float(per_face[fv.boundary_ids == bid].sum()) for bid in (TOP, BOTTOM)
        }

    # ------------------------------------------------------------------
    # Solution
    # ------------------------------------------------------------------

    def solve(self, system: LinearSystem, x0: np.ndarray) -> np.ndarray:
        """SSOR-preconditioned CG, then hanging-node distribution."""
        x = solve_cg(system.matrix, system.rhs, x0=x0)
        return self.constraints.distribute(x)

    def darcy_flux(self, fields: Any) -> np.ndarray:
        """Cell-averaged Darcy flux of the current iterate."""
        self.refresh()
        return darcy_flux(
            self.cell_values,
            fields["pressure"].new,
            fields["conductivity"].new,
            self.mesh.vertical,
        )
