"""
Engine selection and precondition checks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

import numpy as np

from .fast_marching import run_fastmarching
from .heat_flow import run_heat_flow, run_heat_flow_gpu
from .mesh import HalfEdgeMesh
from .ptp import run_ptp_cpu, run_ptp_gpu
from .results import DistanceField
from .trace import SweepLogger

ALGORITHMS = ("fm", "ptp_cpu", "ptp_gpu", "heat_flow", "heat_flow_gpu")


@dataclass
class GeodesicsConfig:
    algorithm: str = "fm"
    cluster: bool = False
    # Fast Marching budgets: 0 iterations means unlimited.
    n_iter: int = 0
    radius: float = math.inf
    # PTP relaxation
    sweeps: int = 1
    sweep_tol: Optional[float] = None
    num_workers: Optional[int] = None
    # Device engines (ptp_gpu, heat_flow_gpu)
    device: str = "auto"
    # Heat method
    t: Optional[float] = None
    # None picks a tolerance the device dtype can reach.
    cg_tol: Optional[float] = None
    cg_iters: int = 2000

    def validate(self) -> None:
        if self.algorithm not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm '{self.algorithm}' (expected one of {', '.join(ALGORITHMS)}).")
        if self.n_iter < 0:
            raise ValueError("n_iter must be non-negative.")
        if not self.radius >= 0:
            raise ValueError("radius must be non-negative.")
        if self.sweeps < 1:
            raise ValueError("sweeps must be at least 1.")
        if self.t is not None and not self.t > 0:
            raise ValueError("Diffusion time t must be positive.")
        if self.cg_tol is not None and not self.cg_tol > 0:
            raise ValueError("cg_tol must be positive.")
        if self.cg_iters < 1:
            raise ValueError("cg_iters must be at least 1.")


def check_sources(mesh: HalfEdgeMesh, sources: Sequence[int]) -> List[int]:
    """Return the sources as a duplicate-free list; raise on empty or out-of-range input."""

    if mesh.n_vertices == 0:
        raise ValueError("Geodesics require a non-empty mesh.")
    unique: List[int] = []
    seen = set()
    for s in sources:
        s = int(s)
        if s < 0 or s >= mesh.n_vertices:
            raise ValueError(f"Source index {s} out of range for mesh (nV={mesh.n_vertices}).")
        if s not in seen:
            seen.add(s)
            unique.append(s)
    if not unique:
        raise ValueError("At least one source vertex is required.")
    return unique


def compute_geodesics(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    config: Optional[GeodesicsConfig] = None,
    *,
    logger: Optional[SweepLogger] = None,
    **overrides,
) -> DistanceField:
    """Run the configured engine; keyword ``overrides`` replace config fields."""

    cfg = config or GeodesicsConfig()
    if overrides:
        cfg = replace(cfg, **overrides)
    cfg.validate()
    srcs = check_sources(mesh, sources)

    if cfg.algorithm == "fm":
        return run_fastmarching(mesh, srcs, cluster=cfg.cluster, n_iter=cfg.n_iter, radius=cfg.radius)
    if cfg.algorithm == "ptp_cpu":
        return run_ptp_cpu(
            mesh,
            srcs,
            cluster=cfg.cluster,
            sweeps=cfg.sweeps,
            sweep_tol=cfg.sweep_tol,
            num_workers=cfg.num_workers,
            logger=logger,
        )
    if cfg.algorithm == "ptp_gpu":
        return run_ptp_gpu(
            mesh,
            srcs,
            device=cfg.device,
            cluster=cfg.cluster,
            sweeps=cfg.sweeps,
            sweep_tol=cfg.sweep_tol,
            logger=logger,
        )
    if cfg.algorithm == "heat_flow":
        return run_heat_flow(mesh, srcs, cluster=cfg.cluster, t=cfg.t)
    return run_heat_flow_gpu(
        mesh,
        srcs,
        device=cfg.device,
        cluster=cfg.cluster,
        t=cfg.t,
        cg_tol=cfg.cg_tol,
        cg_iters=cfg.cg_iters,
    )


class Geodesics:
    """Owns the result of one computation; indexing reads distances."""

    def __init__(
        self,
        mesh: HalfEdgeMesh | tuple,
        sources: Sequence[int],
        config: Optional[GeodesicsConfig] = None,
        **overrides,
    ):
        if not isinstance(mesh, HalfEdgeMesh):
            V, F = mesh
            mesh = HalfEdgeMesh(np.asarray(V), np.asarray(F))
        self.mesh = mesh
        self.config = replace(config or GeodesicsConfig(), **overrides)
        self.sources = check_sources(mesh, sources)
        self.result = compute_geodesics(mesh, self.sources, self.config)

    def __getitem__(self, v: int) -> float:
        return self.result[v]

    def __len__(self) -> int:
        return len(self.result)

    @property
    def distances(self) -> np.ndarray:
        return self.result.distances

    @property
    def clusters(self) -> Optional[np.ndarray]:
        return self.result.clusters

    @property
    def sorted_order(self) -> np.ndarray:
        return self.result.sorted_order

    def cluster(self, v: int) -> int:
        return self.result.cluster(v)

    def count_finalized(self) -> int:
        return self.result.count_finalized()

    def farthest(self) -> int:
        return self.result.farthest()

    def radius(self) -> float:
        return self.result.radius()

    def normalize(self) -> None:
        self.result.normalize()


__all__ = ["ALGORITHMS", "GeodesicsConfig", "check_sources", "compute_geodesics", "Geodesics"]
