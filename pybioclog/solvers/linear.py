"""Preconditioned Krylov solvers.

Functions
---------
solve_cg
    Conjugate gradients with SSOR preconditioning (symmetric systems).
solve_bicgstab
    BiCGStab with Jacobi preconditioning (non-symmetric systems).

Classes
-------
SSORPreconditioner
    Symmetric successive over-relaxation.
JacobiPreconditioner
    Diagonal scaling.

Both solvers stop at ``‖r‖ ≤ rtol · ‖b‖`` and give up after
``maxiter_factor · n`` iterations, raising
:class:`~pybioclog.errors.LinearSolverError`.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import LinearOperator, bicgstab, cg, spsolve_triangular

from pybioclog.errors import LinearSolverError

logger = logging.getLogger(__name__)

DEFAULT_RTOL = 1e-8
DEFAULT_MAXITER_FACTOR = 1000


class SSORPreconditioner:
    """SSOR: P = ω/(2−ω) (D/ω + L) (D/ω)⁻¹ (D/ω + U).

    Args:
        A: Symmetric matrix with a positive diagonal.
        omega: Relaxation parameter in (0, 2).
    """

    def __init__(self, A: sparse.spmatrix, omega: float = 1.2) -> None:
        if not 0.0 < omega < 2.0:
            raise ValueError(f"SSOR relaxation must lie in (0, 2), got {omega}.")
        A = sparse.csr_matrix(A)
        self.shape = A.shape
        self.scaled_diag = A.diagonal() / omega
        D = sparse.diags(self.scaled_diag)
        self.lower = (sparse.tril(A, k=-1) + D).tocsr()
        self.upper = (sparse.triu(A, k=1) + D).tocsr()
        self.factor = (2.0 - omega) / omega

    def apply(self, r: np.ndarray) -> np.ndarray:
        r = np.ravel(r)
        y = spsolve_triangular(self.lower, r, lower=True)
        z = spsolve_triangular(self.upper, self.scaled_diag * y, lower=False)
        return self.factor * z

    def as_operator(self) -> LinearOperator:
        return LinearOperator(self.shape, matvec=self.apply, dtype=float)


class JacobiPreconditioner:
    """Inverse of the matrix diagonal (scaled by a relaxation factor)."""

    def __init__(self, A: sparse.spmatrix, omega: float = 1.0) -> None:
        diag = sparse.csr_matrix(A).diagonal()
        if np.any(diag == 0.0):
            raise ValueError("Jacobi preconditioner requires a non-zero diagonal.")
        self.shape = A.shape
        self.inv_diag = omega / diag

    def apply(self, r: np.ndarray) -> np.ndarray:
        return self.inv_diag * np.ravel(r)

    def as_operator(self) -> LinearOperator:
        return LinearOperator(self.shape, matvec=self.apply, dtype=float)


def _run(
    method,
    label: str,
    A: sparse.spmatrix,
    b: np.ndarray,
    x0: np.ndarray | None,
    M: LinearOperator,
    rtol: float,
    maxiter_factor: int,
) -> np.ndarray:
    n = A.shape[0]
    iterations = [0]

    def count(_):
        iterations[0] += 1

    x, info = method(
        A, b, x0=x0, rtol=rtol, atol=0.0,
        maxiter=maxiter_factor * n, M=M, callback=count,
    )
    if info > 0:
        raise LinearSolverError(
            f"{label} did not converge in {maxiter_factor * n} iterations "
            f"(n={n}, ‖b‖={np.linalg.norm(b):.3e})."
        )
    if info < 0:
        raise LinearSolverError(f"{label} broke down (info={info}).")
    logger.debug("%s converged in %d iterations", label, iterations[0])
    return x


def solve_cg(
    A: sparse.spmatrix,
    b: np.ndarray,
    x0: np.ndarray | None = None,
    omega: float = 1.2,
    rtol: float = DEFAULT_RTOL,
    maxiter_factor: int = DEFAULT_MAXITER_FACTOR,
) -> np.ndarray:
    """Solve a symmetric positive definite system with SSOR-CG.

    Args:
        A: System matrix.
        b: Right-hand side.
        x0: Initial guess (typically the previous iterate).
        omega: SSOR relaxation.
        rtol: Relative residual tolerance.
        maxiter_factor: Iteration cap per unknown.

    Returns:
        Solution vector.

    Raises:
        LinearSolverError: If the iteration cap is reached.
    """
    M = SSORPreconditioner(A, omega).as_operator()
    return _run(cg, "CG", A, b, x0, M, rtol, maxiter_factor)


def solve_bicgstab(
    A: sparse.spmatrix,
    b: np.ndarray,
    x0: np.ndarray | None = None,
    omega: float = 1.0,
    rtol: float = DEFAULT_RTOL,
    maxiter_factor: int = DEFAULT_MAXITER_FACTOR,
) -> np.ndarray:
    """Solve a general system with Jacobi-preconditioned BiCGStab.

    Args:
        A: System matrix.
        b: Right-hand side.
        x0: Initial guess.
        omega: Jacobi relaxation.
        rtol: Relative residual tolerance.
        maxiter_factor: Iteration cap per unknown.

    Returns:
        Solution vector.

    Raises:
        LinearSolverError: If the iteration cap is reached.
    """
    M = JacobiPreconditioner(A, omega).as_operator()
    return _run(bicgstab, "BiCGStab", A, b, x0, M, rtol, maxiter_factor)
