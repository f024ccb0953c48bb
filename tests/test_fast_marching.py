import math

import numpy as np

from mesh_geodesics.fast_marching import run_fastmarching

from conftest import grid_mesh, vid

SQRT2 = math.sqrt(2.0)
# Planar update of (2, 1) from (1, 0) = 1 and (1, 1) = sqrt(2).
D21 = SQRT2 + math.sqrt(2.0 * SQRT2 - 2.0)


def test_right_triangle(right_triangle):
    res = run_fastmarching(right_triangle, [0])
    np.testing.assert_allclose(res.distances, [0.0, 3.0, 4.0])
    assert res.sorted_order.tolist() == [0, 1, 2]
    assert res.algorithm == "fm"


def test_grid3_values(grid3):
    res = run_fastmarching(grid3, [0])
    expected = {
        (0, 0): 0.0,
        (1, 0): 1.0,
        (0, 1): 1.0,
        (1, 1): SQRT2,
        (2, 0): 2.0,
        (0, 2): 2.0,
        (2, 1): D21,
        (1, 2): D21,
        (2, 2): 2.0 * SQRT2,
    }
    for (i, j), d in expected.items():
        assert math.isclose(res[vid(3, i, j)], d, rel_tol=1e-12, abs_tol=1e-12), (i, j)
    assert res.farthest() == vid(3, 2, 2)
    assert res.sorted_order[-1] == vid(3, 2, 2)
    assert res.count_finalized() == 9


def test_finalization_order_is_monotone():
    mesh = grid_mesh(8, 6)
    res = run_fastmarching(mesh, [vid(8, 3, 2)])
    order = res.sorted_order
    assert order.shape[0] == mesh.n_vertices
    assert np.all(np.diff(res.distances[order]) >= -1e-12)
    assert sorted(order.tolist()) == list(range(mesh.n_vertices))


def test_finalization_order_is_monotone_on_irregular_acute_mesh(acute_lattice):
    res = run_fastmarching(acute_lattice, [vid(12, 2, 3)])
    order = res.sorted_order
    assert order.shape[0] == acute_lattice.n_vertices
    assert np.all(np.diff(res.distances[order]) >= -1e-12)


def test_sources_are_zero_and_first():
    mesh = grid_mesh(5, 5)
    sources = [vid(5, 0, 0), vid(5, 4, 4), vid(5, 2, 1)]
    res = run_fastmarching(mesh, sources)
    assert np.all(res.distances[sources] == 0.0)
    assert set(res.sorted_order[:3].tolist()) == set(sources)


def test_planar_grid_matches_euclidean_distance():
    n = 11
    mesh = grid_mesh(n, n)
    res = run_fastmarching(mesh, [0])
    exact = np.linalg.norm(mesh.vertices, axis=1)
    far = exact >= 3.0
    rel = np.abs(res.distances[far] - exact[far]) / exact[far]
    assert rel.max() <= 0.05
    # Axis vertices are reached along mesh edges.
    assert math.isclose(res[vid(n, 10, 0)], 10.0)
    assert math.isclose(res[vid(n, 10, 10)], 10.0 * SQRT2, rel_tol=0.01)


def test_disconnected_component_is_unreached(two_components):
    res = run_fastmarching(two_components, [0], cluster=True)
    assert np.all(np.isinf(res.distances[9:]))
    assert np.all(np.isfinite(res.distances[:9]))
    assert res.count_finalized() == 9
    assert np.all(res.clusters[9:] == -1)


def test_iteration_budget(grid3):
    res = run_fastmarching(grid3, [0], n_iter=3)
    assert res.count_finalized() == 3
    assert res.sorted_order[0] == 0


def test_radius_budget(grid3):
    res = run_fastmarching(grid3, [0], radius=1.5)
    assert res.count_finalized() == 4
    assert np.all(res.distances[res.sorted_order] <= 1.5)
    assert set(res.sorted_order.tolist()) == {vid(3, 0, 0), vid(3, 1, 0), vid(3, 0, 1), vid(3, 1, 1)}


def test_clusters_follow_nearest_source():
    nx = 7
    mesh = grid_mesh(nx, 2)
    res = run_fastmarching(mesh, [vid(nx, 0, 0), vid(nx, 6, 0)], cluster=True)
    for j in range(2):
        for i in range(nx):
            if i <= 2:
                assert res.cluster(vid(nx, i, j)) == 0
            elif i >= 4:
                assert res.cluster(vid(nx, i, j)) == 1
    assert res.cluster(vid(nx, 6, 0)) == 1
