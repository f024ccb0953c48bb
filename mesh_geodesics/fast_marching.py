"""
Sequential Fast Marching over the half-edge mesh.

Every vertex is UNVISITED, ACTIVE or FINALIZED. Sources start ACTIVE at
distance 0. The active set lives in a binary heap with lazy deletion: stale
entries are pushed again on every improvement and skipped when popped for an
already finalized vertex.

The update rule has no special handling for obtuse triangles. A triangle that
is obtuse at the updated vertex can produce a value below that of one of its
neighbours, so on such meshes the finalization order may dip slightly; on
meshes without obtuse angles distances never decrease along the order.
"""

from __future__ import annotations

import heapq
import math
import time
from typing import List, Sequence, Tuple

import numpy as np

from .mesh import HalfEdgeMesh
from .results import DistanceField
from .update import update_step

UNVISITED = 0
ACTIVE = 1
FINALIZED = 2


def run_fastmarching(
    mesh: HalfEdgeMesh,
    sources: Sequence[int],
    *,
    cluster: bool = False,
    n_iter: int = 0,
    radius: float = math.inf,
) -> DistanceField:
    """
    Propagate distances from ``sources`` in causal order.

    ``n_iter`` caps the number of heap pops (0 means no cap); ``radius`` stops
    the run at the first vertex whose distance exceeds it. Both leave a valid
    partial result.
    """

    start = time.perf_counter()
    n_vertices = mesh.n_vertices
    result = DistanceField.empty(n_vertices, cluster=cluster, algorithm="fm")
    distances = result.distances
    clusters = result.clusters
    sorted_index = result.sorted_index

    color = np.full(n_vertices, UNVISITED, dtype=np.int8)
    budget = n_iter if n_iter else n_vertices

    heap: List[Tuple[float, int]] = []
    for c, s in enumerate(sources):
        distances[s] = 0.0
        if clusters is not None:
            clusters[s] = c
        color[s] = ACTIVE
        heap.append((0.0, int(s)))
    heapq.heapify(heap)

    n_sorted = 0
    while budget > 0 and heap:
        budget -= 1
        while heap and color[heap[0][1]] == FINALIZED:
            heapq.heappop(heap)
        if not heap:
            break

        _, black = heapq.heappop(heap)
        color[black] = FINALIZED
        if distances[black] > radius:
            break

        sorted_index[n_sorted] = black
        n_sorted += 1

        for he in mesh.link(black):
            v = mesh.vt(he)
            if color[v] == UNVISITED:
                color[v] = ACTIVE
            if color[v] != ACTIVE:
                continue

            for v_he in mesh.star(v).tolist():
                step = update_step(mesh, distances, v_he)
                if step.distance < distances[v]:
                    distances[v] = step.distance
                    if clusters is not None:
                        clusters[v] = clusters[step.neighbor_vertex]

            if distances[v] < math.inf:
                heapq.heappush(heap, (float(distances[v]), v))

    result.n_sorted = n_sorted
    result.elapsed = time.perf_counter() - start
    return result


__all__ = ["UNVISITED", "ACTIVE", "FINALIZED", "run_fastmarching"]
