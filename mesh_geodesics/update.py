"""
Triangle update rule shared by the Fast Marching and PTP engines.

The unknown vertex ``v`` of a triangle is updated from the distances ``t`` at
its two neighbours by unfolding the triangle into the plane of the edge
vectors ``X = [x0 - v, x1 - v]`` and fitting a unit-gradient linear distance
function through both neighbours. When that planar solution is not causal
(the characteristic does not cross the opposite edge) the estimate falls back
to propagation along the cheaper of the two edges.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Tuple

import numpy as np
import torch
from torch import Tensor

from .mesh import HalfEdgeMesh, next_he, prev_he

# Relative tolerance on det(X^T X) below which a triangle counts as degenerate.
GRAM_EPS = 1.0e-12


class UpdateResult(NamedTuple):
    distance: float
    neighbor: int  # 0 -> x0 contributed, 1 -> x1 contributed
    direction: np.ndarray  # offset from v to the projected source-consistent point
    planar: bool


class StepResult(NamedTuple):
    distance: float
    neighbor_vertex: int
    position: np.ndarray
    planar: bool


def _edge_fallback(X: np.ndarray, t: np.ndarray) -> UpdateResult:
    dp0 = t[0] + math.sqrt(X[0, 0] ** 2 + X[1, 0] ** 2 + X[2, 0] ** 2)
    dp1 = t[1] + math.sqrt(X[0, 1] ** 2 + X[1, 1] ** 2 + X[2, 1] ** 2)
    d = 1 if dp1 < dp0 else 0
    p = dp1 if d else dp0
    return UpdateResult(float(p), d, X[:, d].copy(), False)


def planar_update(X: np.ndarray, t: np.ndarray) -> UpdateResult:
    """Return the candidate distance at ``v`` for edge vectors ``X`` (3x2) and distances ``t``."""

    X = np.asarray(X, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64)
    if not (np.isfinite(t[0]) and np.isfinite(t[1])):
        return _edge_fallback(X, t)

    G = X.T @ X
    det = G[0, 0] * G[1, 1] - G[0, 1] * G[1, 0]
    if det <= GRAM_EPS * G[0, 0] * G[1, 1]:
        return _edge_fallback(X, t)
    Q = np.array([[G[1, 1], -G[0, 1]], [-G[1, 0], G[0, 0]]]) / det

    ones = np.ones(2)
    delta = float(ones @ Q @ t)
    k = float(ones @ Q @ ones)
    dis = delta * delta - k * (float(t @ Q @ t) - 1.0)
    if dis < 0.0:
        return _edge_fallback(X, t)

    p = (delta + math.sqrt(dis)) / k
    n = X @ Q @ (t - p * ones)
    cond = Q @ X.T @ n
    if cond[0] >= 0.0 or cond[1] >= 0.0 or not math.isfinite(p):
        return _edge_fallback(X, t)

    # Where the characteristic through v crosses the edge x0 -> x1.
    A = np.stack([-n, X[:, 1] - X[:, 0]], axis=1)
    lam, *_ = np.linalg.lstsq(A, -X[:, 0], rcond=None)
    direction = lam[1] * A[:, 1] + X[:, 0]
    d = 1 if t[1] < t[0] else 0
    return UpdateResult(float(p), d, direction, True)


def update_step(mesh: HalfEdgeMesh, distances: np.ndarray, he: int) -> StepResult:
    """Update ``vt(he)`` from the two other corners of the face of ``he``."""

    x0 = mesh.vt(next_he(he))
    x1 = mesh.vt(prev_he(he))
    vx = mesh.position(mesh.vt(he))

    X = np.empty((3, 2), dtype=np.float64)
    X[:, 0] = mesh.position(x0) - vx
    X[:, 1] = mesh.position(x1) - vx

    res = planar_update(X, np.array([distances[x0], distances[x1]]))
    return StepResult(res.distance, x1 if res.neighbor else x0, vx + res.direction, res.planar)


def planar_update_batch(X: Tensor, t: Tensor) -> Tuple[Tensor, Tensor]:
    """
    Batched :func:`planar_update` over ``X: (B, 3, 2)`` and ``t: (B, 2)``.

    Returns ``(p, neighbor)`` with ``neighbor`` in ``{0, 1}`` (long).
    """

    X0 = X[:, :, 0]
    X1 = X[:, :, 1]
    g00 = (X0 * X0).sum(dim=1)
    g01 = (X0 * X1).sum(dim=1)
    g11 = (X1 * X1).sum(dim=1)
    det = g00 * g11 - g01 * g01
    regular = det > GRAM_EPS * g00 * g11
    det_safe = torch.where(regular, det, torch.ones_like(det))

    # Q = (X^T X)^-1, symmetric 2x2.
    q00 = g11 / det_safe
    q01 = -g01 / det_safe
    q11 = g00 / det_safe

    t0 = t[:, 0]
    t1 = t[:, 1]
    finite = torch.isfinite(t0) & torch.isfinite(t1)
    t0f = torch.where(finite, t0, torch.zeros_like(t0))
    t1f = torch.where(finite, t1, torch.zeros_like(t1))

    Qt0 = q00 * t0f + q01 * t1f
    Qt1 = q01 * t0f + q11 * t1f
    delta = Qt0 + Qt1
    k = q00 + 2.0 * q01 + q11
    k_safe = torch.where(k.abs() > 0, k, torch.ones_like(k))
    tQt = t0f * Qt0 + t1f * Qt1
    dis = delta * delta - k * (tQt - 1.0)
    p_planar = (delta + torch.sqrt(dis.clamp_min(0.0))) / k_safe

    # Q X^T n with n = X Q (t - p 1) reduces to Q (t - p 1).
    r0 = t0f - p_planar
    r1 = t1f - p_planar
    c0 = q00 * r0 + q01 * r1
    c1 = q01 * r0 + q11 * r1
    planar = regular & finite & (dis >= 0) & (c0 < 0) & (c1 < 0) & torch.isfinite(p_planar)

    dp0 = t0 + torch.sqrt(g00)
    dp1 = t1 + torch.sqrt(g11)
    fallback_side = (dp1 < dp0).to(torch.long)
    p_fallback = torch.minimum(dp0, dp1)

    planar_side = (t1 < t0).to(torch.long)
    p = torch.where(planar, p_planar, p_fallback)
    side = torch.where(planar, planar_side, fallback_side)
    return p, side


__all__ = [
    "UpdateResult",
    "StepResult",
    "planar_update",
    "update_step",
    "planar_update_batch",
]
