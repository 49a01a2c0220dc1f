"""Substrate transport with SUPG stabilisation.

Governing equation::

    ∂(θf S)/∂t + v·∇S − ∇·(D θf ∇S) + r S = 0

S is the substrate concentration (mg/cm³), θf the free moisture content,
v the cell-averaged Darcy flux and D = αL|v| + De the dispersion
coefficient.  The test functions are streamline-upwinded,
w = φ + τ v·∇φ, with the optimal one-dimensional τ.

Classes
-------
Reaction
    First-order or Monod substrate consumption.
Transport
    Assembly, solution and nutrient bookkeeping.

Functions
---------
stabilisation
    SUPG parameter τ per cell.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from pybioclog.config import ENTRY_POINTS, REACTION_MODELS
from pybioclog.errors import ConfigurationError, NumericalDegeneracy
from pybioclog.fem.assembly import LinearSystem, apply_constraints
from pybioclog.fem.elements import CellValues, FaceValues, gauss_quadrature
from pybioclog.geometry.mesh import BOTTOM, TOP
from pybioclog.materials.hydraulic import HydraulicProperties
from pybioclog.materials.kinetics import BiomassKinetics
from pybioclog.physics.base import PhysicsModule
from pybioclog.physics.richards import darcy_flux
from pybioclog.solvers.linear import solve_bicgstab
from pybioclog.time.controller import Phase
from pybioclog.time.schemes import TimeScheme

logger = logging.getLogger(__name__)

NEGLIGIBLE_VELOCITY = 1e-6
NEGLIGIBLE_DISPERSION = 1e-10
# Below this Péclet number coth(Pe) − 1/Pe loses precision.
SERIES_PECLET = 1e-3


@dataclass
class Reaction:
    """Linear substrate sink r S.

    ``"none"`` gives r = 0, ``"first_order"`` a constant rate and
    ``"monod"`` the uptake of the attached biomass,
    r = μ B Sf / (Sf S + K_s), frozen at the previous time level.

    Args:
        model: One of ``"none"``, ``"first_order"``, ``"monod"``.
        first_order_rate: Rate for the first-order model (1/s).
        kinetics: Biomass kinetics (Monod model).
        hydraulics: Constitutive model giving Sf (Monod model).
    """

    model: str = "none"
    first_order_rate: float = 0.0
    kinetics: BiomassKinetics | None = None
    hydraulics: HydraulicProperties | None = None

    def __post_init__(self) -> None:
        if self.model not in REACTION_MODELS:
            raise ConfigurationError(
                f"Unknown reaction model {self.model!r}; choose from {list(REACTION_MODELS)}."
            )
        if self.model == "monod" and (self.kinetics is None or self.hydraulics is None):
            raise ConfigurationError("The Monod reaction needs kinetics and hydraulics.")

    def nodal_rate(self, fields: Any) -> np.ndarray:
        """Reaction rate at every node (1/s)."""
        n = len(fields["substrate"].old)
        if self.model == "none":
            return np.zeros(n)
        if self.model == "first_order":
            return np.full(n, self.first_order_rate)
        rho = self.kinetics.dry_density
        biomass = fields["biomass"].old
        free_saturation = self.hydraulics.effective_free_saturation(
            fields["pressure"].old, biomass, rho
        )
        return self.kinetics.consumption_rate(
            biomass, fields["substrate"].old, free_saturation
        )


def stabilisation(
    diameters: np.ndarray,
    speed_new: np.ndarray,
    speed_old: np.ndarray,
    dispersion_new: np.ndarray,
    dispersion_old: np.ndarray,
) -> np.ndarray:
    """SUPG parameter τ = ½ (coth Pe − 1/Pe) h / v̄ per cell.

    Velocities and dispersion are averaged over the two time levels.
    Cells with negligible velocity or dispersion get τ = 0.

    Raises:
        NumericalDegeneracy: If Pe or τ is negative or not finite.
    """
    tau = np.zeros(len(diameters))
    active = (speed_new >= NEGLIGIBLE_VELOCITY) & (dispersion_new > NEGLIGIBLE_DISPERSION)
    if not active.any():
        return tau
    v_bar = 0.5 * (speed_new[active] + speed_old[active])
    d_bar = 0.5 * (dispersion_new[active] + dispersion_old[active])
    h = diameters[active]
    peclet = 0.5 * h * v_bar / d_bar
    if not np.all(np.isfinite(peclet)) or np.any(peclet < 0.0):
        raise NumericalDegeneracy("Péclet number is negative or not finite.")

    beta = np.empty_like(peclet)
    small = peclet < SERIES_PECLET
    p = peclet[small]
    beta[small] = p / 3.0 - p ** 3 / 45.0
    p = peclet[~small]
    beta[~small] = 1.0 / np.tanh(p) - 1.0 / p

    tau[active] = 0.5 * beta * h / v_bar
    if not np.all(np.isfinite(tau)) or np.any(tau < 0.0):
        raise NumericalDegeneracy("SUPG parameter is negative or not finite.")
    return tau


class Transport(PhysicsModule):
    """Advection–dispersion–reaction of the substrate.

    Substrate enters through the *entry_point* boundary with the
    concentration *top_fixed_value* (mg/L), either as an inflow flux or,
    with *fixed_at_top*, as a fixed top value.

    Args:
        mesh: Computational mesh.
        scheme: θ time-weighting.
        dispersivity: Longitudinal dispersivity αL (cm).
        diffusion: Effective diffusion coefficient De (cm²/s).
        entry_point: ``"top"`` or ``"bottom"``.
        fixed_at_top: Impose the inflow concentration as a top value.
        top_fixed_value: Inflow concentration (mg/L).
        reaction: Substrate sink; defaults to no reaction.
    """

    name = "transport"
    primary_field = "substrate"

    def __init__(
        self,
        mesh: Any,
        scheme: TimeScheme,
        dispersivity: float = 0.5,
        diffusion: float = 1e-5,
        entry_point: str = "top",
        fixed_at_top: bool = False,
        top_fixed_value: float = 50.0,
        reaction: Reaction | None = None,
    ) -> None:
        super().__init__(mesh, scheme)
        if entry_point not in ENTRY_POINTS:
            raise ConfigurationError(
                f"Unknown mass entry point {entry_point!r}; choose from {list(ENTRY_POINTS)}."
            )
        self.dispersivity = dispersivity
        self.diffusion = diffusion
        self.entry_point = entry_point
        self.fixed_at_top = fixed_at_top
        self.top_fixed_value = top_fixed_value
        self.reaction = reaction if reaction is not None else Reaction()

    @classmethod
    def from_parameters(cls, mesh: Any, params: Any) -> "Transport":
        reaction = Reaction(
            model=params.reaction_model,
            first_order_rate=params.first_order_decay_factor,
            kinetics=params.kinetics(),
            hydraulics=params.hydraulic_model(),
        )
        return cls(
            mesh,
            params.transport_scheme(),
            dispersivity=params.dispersivity_longitudinal,
            diffusion=params.effective_diffusion_coefficient,
            entry_point=params.transport_mass_entry_point,
            fixed_at_top=params.transport_fixed_at_top,
            top_fixed_value=params.transport_top_fixed_value,
            reaction=reaction,
        )

    @property
    def inflow_concentration(self) -> float:
        """Inflow concentration in mg/cm³."""
        return self.top_fixed_value / 1000.0

    @property
    def entry_boundary(self) -> int:
        return TOP if self.entry_point == "top" else BOTTOM

    def _setup(self) -> None:
        self.cell_values = CellValues(self.mesh, gauss_quadrature(self.dim, 2))
        self.face_values = FaceValues(self.mesh, 2, (TOP, BOTTOM))

    # ------------------------------------------------------------------
    # Velocity and stabilisation
    # ------------------------------------------------------------------

    def velocities(self, fields: Any) -> tuple[np.ndarray, np.ndarray]:
        """Cell Darcy fluxes at the new and old levels.

        A cell whose new velocity is negligible gets zero at both
        levels; a negligible old velocity is replaced by the new one.

        Raises:
            NumericalDegeneracy: If a velocity is not finite.
        """
        z = self.mesh.vertical
        v_new = darcy_flux(
            self.cell_values, fields["pressure"].new, fields["conductivity"].new, z
        )
        v_old = darcy_flux(
            self.cell_values, fields["pressure"].old, fields["conductivity"].old, z
        )
        if not (np.all(np.isfinite(v_new)) and np.all(np.isfinite(v_old))):
            raise NumericalDegeneracy("Darcy velocity is not finite.")
        speed_new = np.linalg.norm(v_new, axis=1)
        speed_old = np.linalg.norm(v_old, axis=1)
        still = speed_new < NEGLIGIBLE_VELOCITY
        v_new[still] = 0.0
        v_old[still] = 0.0
        stale = (speed_old < NEGLIGIBLE_VELOCITY) & ~still
        v_old[stale] = v_new[stale]
        return v_new, v_old

    def dispersion(self, velocity: np.ndarray) -> np.ndarray:
        """D = αL|v| + De per cell."""
        return self.dispersivity * np.linalg.norm(velocity, axis=1) + self.diffusion

    def _test_functions(self, phi: np.ndarray, grads: np.ndarray, tau: np.ndarray,
                        velocity: np.ndarray) -> np.ndarray:
        streamline = np.einsum("cd,cqkd->cqk", velocity, grads)
        return phi + tau[:, None, None] * streamline

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble_system(self, fields: Any, dt: float, phase: Phase) -> LinearSystem:
        """Assemble the stabilised transport system.

        The nutrient fluxes through the top and bottom and the nutrient
        inventory of the current iterate are reported in
        ``system.diagnostics``.
        """
        self.refresh()
        cv = self.cell_values
        theta = self.theta

        v_new, v_old = self.velocities(fields)
        D_new = self.dispersion(v_new)
        D_old = self.dispersion(v_old)
        tau = stabilisation(
            self.mesh.cell_diameters(),
            np.linalg.norm(v_new, axis=1),
            np.linalg.norm(v_old, axis=1),
            D_new,
            D_old,
        )

        w_new = self._test_functions(cv.phi, cv.grads, tau, v_new)
        w_old = self._test_functions(cv.phi, cv.grads, tau, v_old)
        tf_new = cv.values(fields["free_moisture"].new)
        tf_old = cv.values(fields["free_moisture"].old)
        rate = cv.values(self.reaction.nodal_rate(fields))

        mass_new = np.einsum("cqi,qj,cq->cij", w_new, cv.phi, tf_new * cv.JxW)
        mass_old = np.einsum("cqi,qj,cq->cij", w_old, cv.phi, tf_old * cv.JxW)
        stiff_new = self._operator(cv, w_new, v_new, D_new, tf_new, rate)
        stiff_old = self._operator(cv, w_old, v_old, D_old, tf_old, rate)
        rhs_local = np.zeros(cv.cells.shape)

        if not self.fixed_at_top:
            self._add_inflow(
                stiff_new, stiff_old, rhs_local, tau, v_new, v_old, dt
            )

        M_new = self.pattern.matrix(mass_new)
        M_old = self.pattern.matrix(mass_old)
        L_new = self.pattern.matrix(stiff_new)
        L_old = self.pattern.matrix(stiff_old)
        rhs = self.pattern.vector(rhs_local)

        S_old = fields["substrate"].old
        rhs += M_old @ S_old - (1.0 - theta) * dt * (L_old @ S_old)
        A = M_new + theta * dt * L_new

        if self.fixed_at_top:
            dofs = self.mesh.boundary_dofs(TOP)
            values = np.full(len(dofs), self.inflow_concentration)
        else:
            dofs = np.empty(0, dtype=int)
            values = np.empty(0)
        A, rhs = apply_constraints(A, rhs, self.constraints, dofs, values)

        diagnostics = self.nutrient_fluxes(fields, v_new, v_old, D_new, D_old)
        diagnostics["nutrients_in_domain"] = self.nutrients_in_domain(fields)
        return LinearSystem(
            matrix=A,
            rhs=rhs,
            mass=M_new,
            stiffness_new=L_new,
            stiffness_old=L_old,
            dirichlet_dofs=dofs,
            dirichlet_values=values,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _operator(
        cv: CellValues,
        w: np.ndarray,
        velocity: np.ndarray,
        dispersion: np.ndarray,
        free_moisture: np.ndarray,
        rate: np.ndarray,
    ) -> np.ndarray:
        diffusive = np.einsum(
            "cq,cqid,cqjd->cij",
            dispersion[:, None] * free_moisture * cv.JxW, cv.grads, cv.grads,
        )
        advection = np.einsum("cd,cqjd->cqj", velocity, cv.grads)
        advective = np.einsum("cqi,cqj,cq->cij", w, advection, cv.JxW)
        reactive = np.einsum("cqi,qj,cq->cij", w, cv.phi, rate * cv.JxW)
        return diffusive + advective + reactive

    def _add_inflow(
        self,
        stiff_new: np.ndarray,
        stiff_old: np.ndarray,
        rhs_local: np.ndarray,
        tau: np.ndarray,
        v_new: np.ndarray,
        v_old: np.ndarray,
        dt: float,
    ) -> None:
        fv = self.face_values
        entry = fv.boundary_ids == self.entry_boundary
        if not entry.any():
            return
        fc = fv.face_cells[entry]
        phi = fv.phi[entry]
        grads = fv.grads[entry]
        normals = fv.normals[entry]
        JxW = fv.JxW[entry]

        vn_new = np.einsum("fd,fqd->fq", v_new[fc], normals)
        vn_old = np.einsum("fd,fqd->fq", v_old[fc], normals)
        w_new = phi + tau[fc, None, None] * np.einsum("fd,fqkd->fqk", v_new[fc], grads)
        w_old = phi + tau[fc, None, None] * np.einsum("fd,fqkd->fqk", v_old[fc], grads)

        np.add.at(stiff_new, fc, -np.einsum("fqi,fqj,fq->fij", w_new, phi, vn_new * JxW))
        np.add.at(stiff_old, fc, -np.einsum("fqi,fqj,fq->fij", w_old, phi, vn_old * JxW))
        vn = self.scheme.blend(vn_new, vn_old)
        np.add.at(
            rhs_local,
            fc,
            -dt * self.inflow_concentration * np.einsum("fqi,fq->fi", w_new, vn * JxW),
        )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def nutrient_fluxes(
        self,
        fields: Any,
        v_new: np.ndarray,
        v_old: np.ndarray,
        D_new: np.ndarray,
        D_old: np.ndarray,
    ) -> dict[str, float]:
        """Outward nutrient flux (mg/s) through the top and bottom.

        F = ∫ [θ (−D ∇(θf S)·n + S v·n)_new + (1 − θ) (…)_old] ds
        """
        fv = self.face_values
        fc = fv.face_cells
        levels = []
        for level, v, D in (("new", v_new, D_new), ("old", v_old, D_old)):
            S = getattr(fields["substrate"], level)
            tf = getattr(fields["free_moisture"], level)
            vn = np.einsum("fd,fqd->fq", v[fc], fv.normals)
            levels.append(-D[fc, None] * fv.normal_gradients(tf * S) + fv.values(S) * vn)
        per_face = np.sum(self.scheme.blend(*levels) * fv.JxW, axis=1)
        return {
            "nutrient_flow_at_top": float(per_face[fv.boundary_ids == TOP].sum()),
            "nutrient_flow_at_bottom": float(per_face[fv.boundary_ids == BOTTOM].sum()),
        }

    def nutrients_in_domain(self, fields: Any) -> float:
        """Dissolved substrate mass ∫ θf S (mg)."""
        self.refresh()
        cv = self.cell_values
        product = fields["free_moisture"].new * fields["substrate"].new
        return float(np.sum(cv.values(product) * cv.JxW))

    # ------------------------------------------------------------------
    # Solution
    # ------------------------------------------------------------------

    def solve(self, system: LinearSystem, x0: np.ndarray) -> np.ndarray:
        """Jacobi-preconditioned BiCGStab, then hanging-node distribution."""
        x = solve_bicgstab(system.matrix, system.rhs, x0=x0)
        return self.constraints.distribute(x)
