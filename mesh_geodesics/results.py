"""
Distance / cluster result shared by every geodesic engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class DistanceField:
    """
    Output of one geodesic computation.

    ``sorted_index[:n_sorted]`` lists the finalized vertices in the order the
    engine produced them (finalization order for Fast Marching, level order
    for PTP). ``clusters`` holds, per vertex, the index of the nearest source
    in the source list (``-1`` when unreached) and is ``None`` unless
    clustering was requested.
    """

    distances: np.ndarray
    sorted_index: np.ndarray
    n_sorted: int = 0
    clusters: Optional[np.ndarray] = None
    algorithm: str = ""
    elapsed: float = 0.0
    extras: dict = field(default_factory=dict)

    @classmethod
    def empty(cls, n_vertices: int, *, cluster: bool = False, algorithm: str = "") -> "DistanceField":
        return cls(
            distances=np.full(n_vertices, np.inf, dtype=np.float64),
            sorted_index=np.full(n_vertices, -1, dtype=np.int64),
            n_sorted=0,
            clusters=np.full(n_vertices, -1, dtype=np.int64) if cluster else None,
            algorithm=algorithm,
        )

    @property
    def n_vertices(self) -> int:
        return int(self.distances.shape[0])

    def __len__(self) -> int:
        return self.n_vertices

    def __getitem__(self, v: int) -> float:
        return float(self.distances[v])

    def distance(self, v: int) -> float:
        return float(self.distances[v])

    def cluster(self, v: int) -> int:
        if self.clusters is None:
            raise ValueError("Clustering was not enabled for this computation.")
        return int(self.clusters[v])

    @property
    def sorted_order(self) -> np.ndarray:
        return self.sorted_index[: self.n_sorted]

    def count_finalized(self) -> int:
        return self.n_sorted

    def copy_sorted_index(self, n: Optional[int] = None) -> np.ndarray:
        n = self.n_sorted if n is None else n
        if n > self.n_sorted:
            raise ValueError(f"Only {self.n_sorted} vertices are sorted, {n} requested.")
        return self.sorted_index[:n].copy()

    def _finalized(self) -> np.ndarray:
        # Without an order every reached vertex counts as finalized.
        if self.n_sorted:
            return self.sorted_order
        return np.flatnonzero(np.isfinite(self.distances))

    def farthest(self) -> int:
        """
        Finalized vertex with the largest distance.

        The sorted order is not a distance order for PTP (levels are hop counts),
        so the maximum is searched rather than read off the end of the order.
        """

        idx = self._finalized()
        if idx.size == 0:
            raise ValueError("No vertex was reached.")
        return int(idx[np.argmax(self.distances[idx])])

    def radius(self) -> float:
        return float(self.distances[self.farthest()])

    def normalize(self) -> None:
        """Rescale finalized distances into ``[0, 1]`` by the radius."""

        idx = self._finalized()
        if idx.size == 0:
            return
        radius = float(self.distances[idx].max())
        if radius > 0.0:
            self.distances[idx] /= radius


__all__ = ["DistanceField"]
