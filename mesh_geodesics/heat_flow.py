"""
Heat method geodesic distances.

1. Heat step: solve ``(M + t L) u = M delta_S`` for a short time ``t``.
2. Normalise the per-face gradient, ``X = -grad u / |grad u|``.
3. Poisson step: solve ``L phi = div X`` and shift so sources sit at zero.

Both solves go through a :class:`~mesh_geodesics.solvers.SparseSolver`; this
module only assembles the operators and the gradient / divergence in between.
"""

from __future__ import annotations

import time
from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sp
import torch

from .mesh import HalfEdgeMesh
from .operators import (
    coo_to_scipy,
    face_geometry,
    face_gradients,
    integrated_divergence,
    lumped_mass,
    stiffness_coo,
    unit_directions,
)
from .results import DistanceField
from .solvers import SparseSolver, make_solver
from .utils import device_to_str, dtype_for_device

# Relative weight of the mass term that pins the constant mode of the Poisson step.
POISSON_REG = 1.0e-8


class HeatFlowOperators:
    """Operators of one mesh, assembled on ``device`` and mirrored to scipy."""

    def __init__(self, mesh: HalfEdgeMesh, *, device: torch.device | str = "cpu"):
        self.device = torch.device(device)
        dtype = dtype_for_device(self.device)
        self.n_vertices = mesh.n_vertices
        V = torch.as_tensor(mesh.vertices, dtype=dtype, device=self.device)
        self.F = torch.as_tensor(mesh.faces, dtype=torch.long, device=self.device)

        self.geom = face_geometry(V, self.F)
        self.M = lumped_mass(self.n_vertices, self.F, self.geom.area).cpu().numpy().astype(np.float64)
        self.L = coo_to_scipy(*stiffness_coo(self.F, self.geom), self.n_vertices)

        # Vertices without faces would make both systems singular; pin them.
        self.isolated = self.M <= 0.0
        self._pin = sp.diags(self.isolated.astype(np.float64))

    def heat_system(self, t: float) -> sp.csr_matrix:
        return (sp.diags(self.M) + t * self.L + self._pin).tocsr()

    def poisson_system(self, reg: float = POISSON_REG) -> sp.csr_matrix:
        covered = ~self.isolated
        if not covered.any():
            return self._pin.tocsr()
        eps = reg * float(np.abs(self.L.diagonal()[covered]).mean()) / float(self.M[covered].mean())
        return (self.L + eps * sp.diags(self.M) + self._pin).tocsr()

    def divergence_of_normalized_gradient(self, U: np.ndarray) -> np.ndarray:
        U_t = torch.as_tensor(U, dtype=self.geom.area.dtype, device=self.device)
        X = unit_directions(face_gradients(U_t, self.F, self.geom))
        div = integrated_divergence(X, self.F, self.geom, self.n_vertices)
        return div.cpu().numpy().astype(np.float64)


@torch.no_grad()
def heat_method_distances(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    solver: SparseSolver,
    *,
    cluster: bool = False,
    t: Optional[float] = None,
    device: torch.device | str = "cpu",
    algorithm: str = "heat_flow",
) -> DistanceField:
    """
    Two-solve heat method. With ``cluster`` every source gets its own column
    and each vertex takes the closest one.

    :class:`~mesh_geodesics.solvers.SolverError` from either solve propagates.
    """

    start = time.perf_counter()
    sources = [int(s) for s in sources]
    ops = HeatFlowOperators(mesh, device=device)
    if t is None:
        t = mesh.mean_edge_length() ** 2

    n = mesh.n_vertices
    C = len(sources) if cluster else 1
    B = np.zeros((n, C), dtype=np.float64)
    for c, s in enumerate(sources):
        B[s, c if cluster else 0] = ops.M[s]

    solve_time = time.perf_counter()
    U = solver.solve(ops.heat_system(t), B)
    solve_time = time.perf_counter() - solve_time

    div = ops.divergence_of_normalized_gradient(U)

    poisson_start = time.perf_counter()
    phi = solver.solve(ops.poisson_system(), div)
    solve_time += time.perf_counter() - poisson_start
    phi = phi.reshape(n, C)

    toplesets, _, _ = mesh.compute_toplesets(sources)
    reachable = toplesets >= 0

    if cluster:
        for c, s in enumerate(sources):
            phi[:, c] -= phi[s, c]
    else:
        phi[:, 0] -= phi[reachable, 0].min()
    phi = np.maximum(phi, 0.0)

    result = DistanceField.empty(n, cluster=cluster, algorithm=algorithm)
    result.distances[reachable] = phi[reachable].min(axis=1)
    result.distances[sources] = 0.0
    if cluster:
        result.clusters[reachable] = np.argmin(phi[reachable], axis=1)
        for c, s in enumerate(sources):
            result.clusters[s] = c

    result.extras["t"] = float(t)
    result.extras["solver"] = solver.name
    result.extras["device"] = device_to_str(ops.device)
    result.extras["solve_time"] = solve_time
    result.elapsed = time.perf_counter() - start
    return result


def run_heat_flow(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    *,
    cluster: bool = False,
    t: Optional[float] = None,
) -> DistanceField:
    """Heat method with the host direct solver."""

    return heat_method_distances(mesh, sources, make_solver("direct"), cluster=cluster, t=t, device="cpu")


def run_heat_flow_gpu(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    *,
    device: str | torch.device | None = "auto",
    cluster: bool = False,
    t: Optional[float] = None,
    cg_tol: Optional[float] = None,
    cg_iters: int = 2000,
) -> DistanceField:
    """
    Heat method with conjugate gradient on a torch device.

    ``cg_tol`` defaults to a tolerance the device dtype can reach; a solve that
    does not converge within ``cg_iters`` raises
    :class:`~mesh_geodesics.solvers.SolverError`.
    """

    solver = make_solver("cg", device=device, tol=cg_tol, maxiter=cg_iters)
    return heat_method_distances(
        mesh,
        sources,
        solver,
        cluster=cluster,
        t=t,
        device=solver.device,
        algorithm="heat_flow_gpu",
    )


__all__ = [
    "HeatFlowOperators",
    "heat_method_distances",
    "run_heat_flow",
    "run_heat_flow_gpu",
]
