"""Solvers: preconditioned Krylov methods."""

from pybioclog.solvers.linear import solve_bicgstab, solve_cg

__all__ = ["solve_cg", "solve_bicgstab"]
