"""
Parallel Toplesets Propagation (PTP).

Vertices are grouped by BFS hop count from the sources (toplesets) and relaxed
one level at a time with the triangle update rule. Inside a level every vertex
is updated from the same snapshot of the distance field, so the level can be
split across workers that each write only their own vertices; the end of a
level is a barrier. Levels are only a hop-count bound on causality, so a
single pass is an approximation and ``sweeps`` repeats it.

Every sweep can only lower a value. When no triangle is obtuse at the updated
vertex, a planar update always lands above both of its neighbours. Fast
Marching is then a fixed point of the update and the sweeps approach it from
above, so the gap to Fast Marching shrinks with every sweep. Obtuse triangles
let a vertex be updated through a farther neighbour; extra sweeps may then
settle slightly below the Fast Marching values, which never revisit a
finalized vertex.

The algorithm is written once against :class:`LevelBackend.parallel_for` and
runs either on host threads (:class:`ThreadBackend`) or as one vectorised
launch per level on a torch device (:class:`DeviceBackend`).
"""

from __future__ import annotations

import math
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
import torch
from torch import Tensor

from .mesh import HalfEdgeMesh
from .results import DistanceField
from .trace import SweepLogger
from .update import planar_update_batch
from .utils import device_to_str, dtype_for_device, resolve_device, synchronize

Kernel = Callable[[int, int], None]


# -----------------------------------------------------------------------------
# Parallel-for backends
# -----------------------------------------------------------------------------
class LevelBackend:
    """Run ``kernel(r0, r1)`` over a level's rank range and wait for completion."""

    device: torch.device = torch.device("cpu")

    def parallel_for(self, r0: int, r1: int, kernel: Kernel) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class ThreadBackend(LevelBackend):
    """Host threads; each worker owns a contiguous chunk of the level."""

    def __init__(self, num_workers: Optional[int] = None, *, min_chunk: int = 256):
        self.device = torch.device("cpu")
        self.num_workers = max(1, int(num_workers or os.cpu_count() or 1))
        self.min_chunk = max(1, int(min_chunk))
        self._pool = ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="ptp")

    def parallel_for(self, r0: int, r1: int, kernel: Kernel) -> None:
        n = r1 - r0
        if n <= 0:
            return
        n_chunks = max(1, min(self.num_workers, math.ceil(n / self.min_chunk)))
        if n_chunks == 1:
            kernel(r0, r1)
            return
        bounds = np.linspace(r0, r1, n_chunks + 1).round().astype(np.int64)
        futures = [
            self._pool.submit(kernel, int(a), int(b))
            for a, b in zip(bounds[:-1], bounds[1:])
            if b > a
        ]
        for fut in futures:
            fut.result()

    def close(self) -> None:
        self._pool.shutdown(wait=True)


class DeviceBackend(LevelBackend):
    """One launch over the whole level, then a host-device barrier."""

    def __init__(self, device: str | torch.device | None = "auto"):
        self.device = resolve_device(device)

    def parallel_for(self, r0: int, r1: int, kernel: Kernel) -> None:
        if r1 <= r0:
            return
        kernel(r0, r1)
        synchronize(self.device)


# -----------------------------------------------------------------------------
# Propagation
# -----------------------------------------------------------------------------
class ToplesetsPropagation:
    """
    Level-synchronous relaxation state for one source set.

    With ``coalesced=True`` vertices are relabelled into topological order so
    that every level is a contiguous slice of the device buffers.
    """

    def __init__(
        self,
        mesh: HalfEdgeMesh,
        sources: Sequence[int],
        backend: LevelBackend,
        *,
        cluster: bool = False,
        coalesced: bool = False,
    ):
        self.mesh = mesh
        self.sources = [int(s) for s in sources]
        self.backend = backend
        self.cluster = cluster
        self.coalesced = coalesced
        device = backend.device
        dtype = dtype_for_device(device)

        toplesets, sorted_index, limits = mesh.compute_toplesets(self.sources)
        self.toplesets = toplesets
        self.sorted_index = sorted_index
        self.limits = limits
        n_reached = sorted_index.shape[0]

        rank = np.full(mesh.n_vertices, -1, dtype=np.int64)
        rank[sorted_index] = np.arange(n_reached, dtype=np.int64)

        # Half-edges of reached vertices grouped by the rank of their vertex.
        he_rank = rank[mesh.he_vertex]
        he_ids = np.nonzero(he_rank >= 0)[0]
        he_ids = he_ids[np.argsort(he_rank[he_ids], kind="stable")]
        he_rank = he_rank[he_ids]
        self.he_ptr = np.searchsorted(he_rank, np.arange(n_reached + 1)).astype(np.int64)

        if coalesced:
            labels = rank
            positions = mesh.vertices[sorted_index]
            size = n_reached
        else:
            labels = np.arange(mesh.n_vertices, dtype=np.int64)
            positions = mesh.vertices
            size = mesh.n_vertices

        pos = torch.as_tensor(positions, dtype=dtype, device=device)
        he_v = torch.as_tensor(labels[mesh.he_vertex[he_ids]], device=device)
        self.he_x0 = torch.as_tensor(labels[mesh.he_next_vertex[he_ids]], device=device)
        self.he_x1 = torch.as_tensor(labels[mesh.he_prev_vertex[he_ids]], device=device)
        self.he_rank = torch.as_tensor(he_rank, device=device)
        self.X = torch.stack([pos[self.he_x0] - pos[he_v], pos[self.he_x1] - pos[he_v]], dim=2)
        self.level_labels = torch.as_tensor(labels[sorted_index], device=device)

        self.dist = torch.full((size,), math.inf, dtype=dtype, device=device)
        self.next_dist = self.dist.clone()
        source_labels = torch.as_tensor(labels[self.sources], device=device)
        self.dist[source_labels] = 0.0
        if cluster:
            self.labels_c = torch.full((size,), -1, dtype=torch.long, device=device)
            for c, s in enumerate(self.sources):
                label = int(labels[s])
                if int(self.labels_c[label]) < 0:
                    self.labels_c[label] = c
            self.next_labels_c = self.labels_c.clone()

    def _targets(self, r0: int, r1: int) -> slice | Tensor:
        if self.coalesced:
            return slice(r0, r1)
        return self.level_labels[r0:r1]

    def _relax(self, r0: int, r1: int) -> None:
        """Relax the vertices of ranks ``[r0, r1)`` from the current snapshot."""

        h0 = int(self.he_ptr[r0])
        h1 = int(self.he_ptr[r1])
        target = self._targets(r0, r1)
        old = self.dist[target]
        if h1 <= h0:
            self.next_dist[target] = old
            if self.cluster:
                self.next_labels_c[target] = self.labels_c[target]
            return

        x0 = self.he_x0[h0:h1]
        x1 = self.he_x1[h0:h1]
        t = torch.stack([self.dist[x0], self.dist[x1]], dim=1)
        p, side = planar_update_batch(self.X[h0:h1], t)

        local = self.he_rank[h0:h1] - r0
        best = torch.full((r1 - r0,), math.inf, dtype=p.dtype, device=p.device)
        best.scatter_reduce_(0, local, p, reduce="amin", include_self=True)
        self.next_dist[target] = torch.minimum(old, best)

        if self.cluster:
            contrib = torch.where(side.bool(), x1, x0)
            win = (p == best[local]) & (p < old[local])
            labels = self.labels_c[target].clone()
            labels[local[win]] = self.labels_c[contrib[win]]
            self.next_labels_c[target] = labels

    def _commit(self, r0: int, r1: int) -> Tuple[int, float]:
        target = self._targets(r0, r1)
        old = self.dist[target].clone()
        new = self.next_dist[target]
        self.dist[target] = new
        if self.cluster:
            self.labels_c[target] = self.next_labels_c[target]

        changed = new < old
        first_reach = torch.where(torch.isfinite(new), torch.full_like(new, math.inf), torch.zeros_like(new))
        delta = torch.where(torch.isfinite(old), old - new, first_reach)
        n_changed = int(changed.sum().item())
        max_delta = float(delta.max().item()) if delta.numel() else 0.0
        return n_changed, max_delta

    def run(
        self,
        *,
        sweeps: int = 1,
        sweep_tol: Optional[float] = None,
        logger: Optional[SweepLogger] = None,
    ) -> int:
        """Relax levels ``1..L-1`` up to ``sweeps`` times; return the sweeps performed."""

        if sweeps < 1:
            raise ValueError("PTP requires at least one sweep.")
        n_levels = len(self.limits) - 1
        done = 0
        for sweep in range(sweeps):
            sweep_changed = 0
            sweep_delta = 0.0
            for level in range(1, n_levels):
                r0, r1 = self.limits[level], self.limits[level + 1]
                self.backend.parallel_for(r0, r1, self._relax)
                n_changed, max_delta = self._commit(r0, r1)
                sweep_changed += n_changed
                sweep_delta = max(sweep_delta, max_delta)
                if logger is not None:
                    logger.log_level(
                        sweep,
                        level,
                        {"n_vertices": r1 - r0, "n_changed": n_changed, "max_delta": max_delta},
                    )
            done += 1
            if logger is not None:
                logger.log_sweep(sweep, {"n_changed": sweep_changed, "max_delta": sweep_delta})
            if sweep_tol is not None and sweep_delta <= sweep_tol:
                break
        return done

    def to_field(self, algorithm: str) -> DistanceField:
        n_vertices = self.mesh.n_vertices
        result = DistanceField.empty(n_vertices, cluster=self.cluster, algorithm=algorithm)
        dist = self.dist.detach().cpu().numpy().astype(np.float64)
        if self.coalesced:
            result.distances[self.sorted_index] = dist
        else:
            result.distances[:] = dist
        if self.cluster:
            labels = self.labels_c.detach().cpu().numpy()
            if self.coalesced:
                result.clusters[self.sorted_index] = labels
            else:
                result.clusters[:] = labels
        n_reached = self.sorted_index.shape[0]
        result.sorted_index[:n_reached] = self.sorted_index
        result.n_sorted = n_reached
        result.extras["toplesets"] = self.toplesets
        result.extras["limits"] = list(self.limits)
        return result


def _run_ptp(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    backend: LevelBackend,
    *,
    algorithm: str,
    cluster: bool,
    coalesced: bool,
    sweeps: int,
    sweep_tol: Optional[float],
    logger: Optional[SweepLogger],
) -> DistanceField:
    start = time.perf_counter()
    try:
        ptp = ToplesetsPropagation(mesh, sources, backend, cluster=cluster, coalesced=coalesced)
        done = ptp.run(sweeps=sweeps, sweep_tol=sweep_tol, logger=logger)
        result = ptp.to_field(algorithm)
    finally:
        backend.close()
    result.extras["sweeps"] = done
    result.extras["coalesced"] = coalesced
    result.extras["device"] = device_to_str(backend.device)
    result.elapsed = time.perf_counter() - start
    return result


def run_ptp_cpu(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    *,
    cluster: bool = False,
    sweeps: int = 1,
    sweep_tol: Optional[float] = None,
    num_workers: Optional[int] = None,
    logger: Optional[SweepLogger] = None,
) -> DistanceField:
    """PTP with one host worker per chunk of each level."""

    return _run_ptp(
        mesh,
        sources,
        ThreadBackend(num_workers),
        algorithm="ptp_cpu",
        cluster=cluster,
        coalesced=False,
        sweeps=sweeps,
        sweep_tol=sweep_tol,
        logger=logger,
    )


def run_ptp_gpu(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    *,
    device: str | torch.device | None = "auto",
    cluster: bool = False,
    sweeps: int = 1,
    sweep_tol: Optional[float] = None,
    logger: Optional[SweepLogger] = None,
) -> DistanceField:
    """PTP on a torch device; a single source uses the coalesced layout."""

    return _run_ptp(
        mesh,
        sources,
        DeviceBackend(device),
        algorithm="ptp_gpu",
        cluster=cluster,
        coalesced=len(sources) == 1,
        sweeps=sweeps,
        sweep_tol=sweep_tol,
        logger=logger,
    )


__all__ = [
    "LevelBackend",
    "ThreadBackend",
    "DeviceBackend",
    "ToplesetsPropagation",
    "run_ptp_cpu",
    "run_ptp_gpu",
]
