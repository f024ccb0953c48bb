from __future__ import annotations

import math
from typing import Tuple

import numpy as np
import pytest

from mesh_geodesics.mesh import HalfEdgeMesh


def grid_arrays(nx: int, ny: int, spacing: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Planar grid, vertex ``j * nx + i`` at ``(i, j) * spacing``; diagonals run (i, j) -> (i + 1, j + 1)."""

    xs, ys = np.meshgrid(np.arange(nx), np.arange(ny))
    V = np.stack([xs.ravel(), ys.ravel(), np.zeros(nx * ny)], axis=1).astype(np.float64) * spacing
    faces = []
    for j in range(ny - 1):
        for i in range(nx - 1):
            a = j * nx + i
            b = a + 1
            c = a + nx + 1
            d = a + nx
            faces.append([a, b, c])
            faces.append([a, c, d])
    return V, np.asarray(faces, dtype=np.int64)


def grid_mesh(nx: int, ny: int, spacing: float = 1.0) -> HalfEdgeMesh:
    return HalfEdgeMesh(*grid_arrays(nx, ny, spacing))


def vid(nx: int, i: int, j: int) -> int:
    return j * nx + i


@pytest.fixture
def right_triangle() -> HalfEdgeMesh:
    # A (0,0), B (3,0), C (0,4): AB = 3, AC = 4, BC = 5.
    V = np.array([[0.0, 0.0, 0.0], [3.0, 0.0, 0.0], [0.0, 4.0, 0.0]])
    F = np.array([[0, 1, 2]])
    return HalfEdgeMesh(V, F)


@pytest.fixture
def grid3() -> HalfEdgeMesh:
    return grid_mesh(3, 3)


@pytest.fixture
def two_components() -> HalfEdgeMesh:
    V1, F1 = grid_arrays(3, 3)
    V2, F2 = grid_arrays(2, 2)
    V2 = V2 + np.array([10.0, 0.0, 0.0])
    V = np.concatenate([V1, V2], axis=0)
    F = np.concatenate([F1, F2 + V1.shape[0]], axis=0)
    return HalfEdgeMesh(V, F)


def lattice_arrays(n: int, jitter: float = 0.0, seed: int = 0) -> Tuple[np.ndarray, np.ndarray]:
    """
    ``n x n`` equilateral triangle lattice, vertex ``j * n + i``; odd rows are shifted by half a spacing.

    Every coordinate is perturbed uniformly by up to ``jitter``.
    """

    rng = np.random.default_rng(seed)
    h = math.sqrt(3.0) / 2.0
    V = np.array([[i + 0.5 * (j % 2), j * h, 0.0] for j in range(n) for i in range(n)])
    V += rng.uniform(-jitter, jitter, size=V.shape)
    faces = []
    for j in range(n - 1):
        for i in range(n - 1):
            a, b = vid(n, i, j), vid(n, i + 1, j)
            c, d = vid(n, i, j + 1), vid(n, i + 1, j + 1)
            if j % 2 == 0:
                faces += [[a, b, c], [b, d, c]]
            else:
                faces += [[a, b, d], [a, d, c]]
    return V, np.asarray(faces, dtype=np.int64)


def max_corner_angle(V: np.ndarray, F: np.ndarray) -> float:
    """Largest interior angle over all faces, in degrees."""

    P = V[F]
    worst = 0.0
    for c in range(3):
        u = P[:, (c + 1) % 3] - P[:, c]
        w = P[:, (c + 2) % 3] - P[:, c]
        cos = (u * w).sum(axis=1) / (np.linalg.norm(u, axis=1) * np.linalg.norm(w, axis=1))
        worst = max(worst, float(np.degrees(np.arccos(np.clip(cos, -1.0, 1.0))).max()))
    return worst


@pytest.fixture
def acute_lattice() -> HalfEdgeMesh:
    V, F = lattice_arrays(12, jitter=0.05, seed=1)
    assert max_corner_angle(V, F) < 85.0
    return HalfEdgeMesh(V, F)
