"""
Sparse linear-solve service used by the heat method.

``solve(system, rhs)`` takes a square ``scipy.sparse`` matrix and a host
right-hand side of shape ``(n,)`` or ``(n, k)`` and returns a host solution of
the same shape. Two backends: a direct LU factorisation on the CPU and a
Jacobi-preconditioned conjugate gradient on any torch device.
"""

from __future__ import annotations

from typing import Callable, Optional, Tuple

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
import torch
from torch import Tensor

from .utils import dtype_for_device, resolve_device


class SolverError(RuntimeError):
    """Raised when the linear system cannot be solved (singular, not SPD, diverged)."""


def _check_solution(X: np.ndarray, what: str) -> np.ndarray:
    if not np.all(np.isfinite(X)):
        raise SolverError(f"{what} produced non-finite values; the system is likely singular.")
    return X


class SparseSolver:
    name = "base"

    def solve(self, system: sp.spmatrix, rhs: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class DirectSolver(SparseSolver):
    """Sparse LU (SuperLU) factorisation on the host."""

    name = "direct"

    def solve(self, system: sp.spmatrix, rhs: np.ndarray) -> np.ndarray:
        A = sp.csc_matrix(system, dtype=np.float64)
        try:
            lu = spla.splu(A)
        except RuntimeError as exc:
            raise SolverError(f"Sparse factorisation failed: {exc}") from exc
        B = np.asarray(rhs, dtype=np.float64)
        return _check_solution(lu.solve(B), "Sparse LU solve")


def coo_matmul(row: Tensor, col: Tensor, val: Tensor, X: Tensor, n: int) -> Tensor:
    """``A @ X`` for COO ``A`` and ``X: (n, k)`` using gather and ``index_add_`` only."""

    out = X.new_zeros((n, X.shape[1]))
    return out.index_add_(0, row, val[:, None] * X[col])


def jacobi_pcg(
    matvec: Callable[[Tensor], Tensor],
    B: Tensor,
    diag: Tensor,
    *,
    tol: float,
    maxiter: int,
) -> Tuple[Tensor, Tensor]:
    """
    Jacobi-preconditioned conjugate gradient over the columns of ``B``.

    Columns whose residual norm drops below ``tol`` are frozen while the others
    keep iterating. Returns the solution and the mask of columns that did not
    converge. Raises :class:`SolverError` on non-positive curvature.
    """

    inv_diag = diag.clamp_min(1.0e-12).reciprocal()[:, None]
    X = torch.zeros_like(B)
    R = B.clone()
    Z = inv_diag * R
    P = Z.clone()
    rz = (R * Z).sum(dim=0)
    live = R.norm(dim=0) > tol

    for _ in range(maxiter):
        if not bool(live.any()):
            break
        AP = matvec(P)
        curvature = (P * AP).sum(dim=0)
        if bool((live & (curvature <= 0)).any()):
            raise SolverError("Conjugate gradient met a non-positive curvature; the system is not SPD.")
        step = torch.where(live, rz / curvature.clamp_min(1.0e-30), torch.zeros_like(rz))
        X += P * step
        R -= AP * step
        live = R.norm(dim=0) > tol
        Z = inv_diag * R
        rz_next = (R * Z).sum(dim=0)
        beta = torch.where(live, rz_next / rz.clamp_min(1.0e-30), torch.zeros_like(rz))
        P = torch.where(live, Z + P * beta, torch.zeros_like(P))
        rz = rz_next
    return X, live


def default_cg_tol(dtype: torch.dtype) -> float:
    """Relative CG tolerance reachable in ``dtype``."""

    return 1.0e-8 if dtype == torch.float64 else 1.0e-5


class ConjugateGradientSolver(SparseSolver):
    """
    CG on a torch device; the system must be symmetric positive definite.

    ``tol`` is relative to the largest right-hand side column and defaults to
    :func:`default_cg_tol` of the device dtype. Running out of iterations
    raises :class:`SolverError`.
    """

    name = "cg"

    def __init__(
        self,
        device: str | torch.device | None = "auto",
        *,
        tol: Optional[float] = None,
        maxiter: int = 1000,
    ):
        self.device = resolve_device(device)
        self.dtype = dtype_for_device(self.device)
        self.tol = default_cg_tol(self.dtype) if tol is None else float(tol)
        self.maxiter = int(maxiter)

    def _matvec(self, A: sp.csr_matrix) -> Callable[[Tensor], Tensor]:
        coo = A.tocoo()
        row = torch.as_tensor(coo.row, dtype=torch.long, device=self.device)
        col = torch.as_tensor(coo.col, dtype=torch.long, device=self.device)
        val = torch.as_tensor(coo.data, dtype=self.dtype, device=self.device)
        n = A.shape[0]
        if self.device.type == "mps":
            # torch.sparse kernels are incomplete on MPS.
            return lambda X: coo_matmul(row, col, val, X, n)
        A_t = torch.sparse_coo_tensor(torch.stack([row, col]), val, A.shape, device=self.device).coalesce()
        return lambda X: torch.sparse.mm(A_t, X)

    def solve(self, system: sp.spmatrix, rhs: np.ndarray) -> np.ndarray:
        A = sp.csr_matrix(system, dtype=np.float64)
        rhs = np.asarray(rhs, dtype=np.float64)
        columns = rhs.reshape(rhs.shape[0], -1)

        matvec = self._matvec(A)
        diag = torch.as_tensor(A.diagonal(), dtype=self.dtype, device=self.device)
        B = torch.as_tensor(columns, dtype=self.dtype, device=self.device)

        # Tolerance is relative to the largest right-hand side.
        abs_tol = self.tol * max(float(np.linalg.norm(columns, axis=0).max(initial=0.0)), 1.0e-30)
        X, unconverged = jacobi_pcg(matvec, B, diag, tol=abs_tol, maxiter=self.maxiter)
        if bool(unconverged.any()):
            raise SolverError(
                f"Conjugate gradient did not reach tolerance {self.tol:g} in {self.maxiter} iterations."
            )

        out = _check_solution(X.cpu().numpy().astype(np.float64), "Conjugate gradient")
        return out.reshape(rhs.shape)


def make_solver(
    backend: str,
    *,
    device: str | torch.device | None = "auto",
    tol: Optional[float] = None,
    maxiter: int = 1000,
) -> SparseSolver:
    if backend == "direct":
        return DirectSolver()
    if backend == "cg":
        return ConjugateGradientSolver(device, tol=tol, maxiter=maxiter)
    raise ValueError(f"Unknown solver backend '{backend}' (expected 'direct' or 'cg').")


__all__ = [
    "SolverError",
    "SparseSolver",
    "DirectSolver",
    "ConjugateGradientSolver",
    "default_cg_tol",
    "make_solver",
]
