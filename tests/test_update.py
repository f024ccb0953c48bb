import math

import numpy as np
import torch

from mesh_geodesics.update import planar_update, planar_update_batch, update_step


def test_plane_wave_is_reproduced_exactly():
    v = np.array([0.5, 1.0, 0.0])
    X = np.stack([np.array([0.0, 0.0, 0.0]) - v, np.array([1.0, 0.0, 0.0]) - v], axis=1)
    res = planar_update(X, np.array([0.0, 0.0]))
    assert res.planar
    assert math.isclose(res.distance, 1.0, rel_tol=1e-12)
    # Foot of the characteristic lies on the opposite edge, straight below v.
    np.testing.assert_allclose(v + res.direction, [0.5, 0.0, 0.0], atol=1e-12)


def test_non_causal_triangle_falls_back_to_edge():
    # Unknown C of the 3-4-5 triangle from A = 0, B = 3.
    C = np.array([0.0, 4.0, 0.0])
    X = np.stack([np.array([0.0, 0.0, 0.0]) - C, np.array([3.0, 0.0, 0.0]) - C], axis=1)
    res = planar_update(X, np.array([0.0, 3.0]))
    assert not res.planar
    assert res.distance == 4.0
    assert res.neighbor == 0


def test_infinite_neighbours():
    X = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
    both = planar_update(X, np.array([math.inf, math.inf]))
    assert both.distance == math.inf

    one = planar_update(X, np.array([math.inf, 2.0]))
    assert one.distance == 3.0
    assert one.neighbor == 1


def test_degenerate_triangle_uses_edge_propagation():
    # Collinear corners: singular Gram matrix.
    X = np.array([[1.0, 2.0], [0.0, 0.0], [0.0, 0.0]])
    res = planar_update(X, np.array([0.5, 0.1]))
    assert not res.planar
    assert math.isclose(res.distance, 1.5)
    assert res.neighbor == 0


def test_update_step_reports_contributing_vertex(right_triangle):
    distances = np.array([0.0, 3.0, math.inf])
    # Half-edge 2 points at corner 2 (vertex C).
    step = update_step(right_triangle, distances, 2)
    assert step.distance == 4.0
    assert step.neighbor_vertex == 0
    np.testing.assert_allclose(step.position, [0.0, 0.0, 0.0])


def test_update_never_undercuts_neighbours():
    rng = np.random.default_rng(7)
    for _ in range(200):
        X = rng.normal(size=(3, 2))
        t = rng.uniform(0.0, 3.0, size=2)
        res = planar_update(X, t)
        assert res.distance >= 0.0
        assert res.distance >= t.min() - 1e-9


def test_batch_matches_scalar():
    gen = torch.Generator().manual_seed(3)
    X = torch.randn(256, 3, 2, dtype=torch.float64, generator=gen)
    t = torch.rand(256, 2, dtype=torch.float64, generator=gen) * 2.0
    t[:8, 0] = math.inf
    t[8:12] = math.inf

    p, side = planar_update_batch(X, t)
    for b in range(X.shape[0]):
        ref = planar_update(X[b].numpy(), t[b].numpy())
        if math.isinf(ref.distance):
            assert math.isinf(p[b].item())
            continue
        assert math.isclose(p[b].item(), ref.distance, rel_tol=1e-9, abs_tol=1e-9)
        assert int(side[b]) == ref.neighbor
