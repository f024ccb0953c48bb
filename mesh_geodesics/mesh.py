"""
Half-edge view of a triangle mesh used by the geodesic engines.

Half-edge ``he`` belongs to face ``he // 3`` and points at the vertex stored in
corner ``he % 3`` of that face; ``next``/``prev`` cycle through the corners of
the same face. The star of a vertex is the set of half-edges pointing at it
(one per incident face), its link the half-edges pointing at its neighbours.
"""

from __future__ import annotations

from collections import deque
from typing import List, Sequence, Tuple

import numpy as np


def next_he(he: int) -> int:
    return 3 * (he // 3) + (he + 1) % 3


def prev_he(he: int) -> int:
    return 3 * (he // 3) + (he + 2) % 3


class HalfEdgeMesh:
    """Triangle mesh with half-edge navigation and topological level queries."""

    def __init__(self, vertices: np.ndarray, faces: np.ndarray):
        V = np.asarray(vertices, dtype=np.float64)
        F = np.asarray(faces, dtype=np.int64)
        if V.ndim != 2 or V.shape[0] == 0 or V.shape[1] != 3:
            raise ValueError("Mesh requires a non-empty (nV, 3) vertex array.")
        if F.size == 0:
            F = F.reshape(0, 3)
        if F.ndim != 2 or F.shape[1] != 3:
            raise ValueError("Mesh requires an (nF, 3) triangle array.")
        if F.size and (F.min() < 0 or F.max() >= V.shape[0]):
            raise ValueError(f"Face indices out of range for mesh (nV={V.shape[0]}).")

        self.vertices = V
        self.faces = F

        # Vectorised half-edge tables.
        self.he_vertex = F.reshape(-1)
        self.he_next_vertex = F[:, [1, 2, 0]].reshape(-1)
        self.he_prev_vertex = F[:, [2, 0, 1]].reshape(-1)

        # CSR star: half-edges grouped by the vertex they point at.
        order = np.argsort(self.he_vertex, kind="stable")
        counts = np.bincount(self.he_vertex, minlength=self.n_vertices)
        self._star_ptr = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)
        self._star_he = order.astype(np.int64)

        self._neighbors = self._build_neighbors()

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------
    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    @property
    def n_half_edges(self) -> int:
        return 3 * self.n_faces

    def vertex_count(self) -> int:
        return self.n_vertices

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def position(self, v: int) -> np.ndarray:
        return self.vertices[v]

    def vt(self, he: int) -> int:
        return int(self.he_vertex[he])

    half_edge_vertex = vt

    @staticmethod
    def next_he(he: int) -> int:
        return next_he(he)

    @staticmethod
    def prev_he(he: int) -> int:
        return prev_he(he)

    def star(self, v: int) -> np.ndarray:
        return self._star_he[self._star_ptr[v] : self._star_ptr[v + 1]]

    def link(self, v: int) -> List[int]:
        """One half-edge per neighbour of ``v``; covers boundary fans too."""

        seen = set()
        link: List[int] = []
        for he in self.star(v).tolist():
            for nb in (next_he(he), prev_he(he)):
                u = int(self.he_vertex[nb])
                if u not in seen:
                    seen.add(u)
                    link.append(nb)
        return link

    incident_half_edges = link

    def neighbors(self, v: int) -> List[int]:
        return self._neighbors[v]

    def _build_neighbors(self) -> List[List[int]]:
        edges = np.concatenate(
            [
                np.stack([self.he_vertex, self.he_next_vertex], axis=1),
                np.stack([self.he_next_vertex, self.he_vertex], axis=1),
            ],
            axis=0,
        )
        edges = np.unique(edges, axis=0) if edges.size else edges.reshape(0, 2)
        neighbors: List[List[int]] = [[] for _ in range(self.n_vertices)]
        for a, b in edges.tolist():
            neighbors[a].append(b)
        return neighbors

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    def mean_edge_length(self) -> float:
        """Mean length of unique edges in the mesh."""

        if self.n_faces == 0:
            return 0.0
        edges = np.stack([self.he_vertex, self.he_next_vertex], axis=1)
        edges.sort(axis=1)
        edges = np.unique(edges, axis=0)
        lengths = np.linalg.norm(self.vertices[edges[:, 0]] - self.vertices[edges[:, 1]], axis=1)
        return float(lengths.mean())

    # ------------------------------------------------------------------
    # Topological levels
    # ------------------------------------------------------------------
    def compute_toplesets(self, sources: Sequence[int]) -> Tuple[np.ndarray, np.ndarray, List[int]]:
        """
        Partition the vertices reachable from ``sources`` by BFS hop count.

        Returns ``(toplesets, sorted_index, limits)``: the level of each vertex
        (``-1`` when unreachable), the reachable vertices ordered by level, and
        level boundaries so that ``sorted_index[limits[k]:limits[k + 1]]`` is
        level ``k``.
        """

        toplesets = np.full(self.n_vertices, -1, dtype=np.int64)
        order: List[int] = []
        limits: List[int] = [0]
        queue: deque[int] = deque()
        for s in sources:
            if toplesets[s] < 0:
                toplesets[s] = 0
                queue.append(int(s))

        level = 0
        while queue:
            v = queue.popleft()
            if toplesets[v] > level:
                limits.append(len(order))
                level = int(toplesets[v])
            order.append(v)
            for u in self._neighbors[v]:
                if toplesets[u] < 0:
                    toplesets[u] = toplesets[v] + 1
                    queue.append(u)
        limits.append(len(order))
        return toplesets, np.asarray(order, dtype=np.int64), limits

    topological_levels = compute_toplesets


__all__ = ["HalfEdgeMesh", "next_he", "prev_he"]
