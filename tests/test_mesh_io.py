import numpy as np
import pytest

from mesh_geodesics.fast_marching import run_fastmarching
from mesh_geodesics.mesh_io import (
    load_mesh_any,
    load_obj_tri,
    preprocess_mesh,
    read_seeds,
    save_distance_outputs,
    write_viz_npz,
)

QUAD_OBJ = """# unit square
v 0 0 0
v 1 0 0
v 1 1 0
v 0 1 0
vt 0 0
vn 0 0 1
f 1/1/1 2/1/1 3/1/1 4/1/1
f -4 -3 -1
"""


def test_obj_reader_fans_polygons_and_resolves_negative_indices(tmp_path):
    path = tmp_path / "square.obj"
    path.write_text(QUAD_OBJ)
    V, F = load_obj_tri(path)
    assert V.shape == (4, 3)
    assert F.tolist() == [[0, 1, 2], [0, 2, 3], [0, 1, 3]]


def test_obj_without_faces_is_rejected(tmp_path):
    path = tmp_path / "points.obj"
    path.write_text("v 0 0 0\nv 1 0 0\n")
    with pytest.raises(ValueError):
        load_obj_tri(path)


def test_npz_and_unknown_extensions(tmp_path):
    V = np.eye(3)
    F = np.array([[0, 1, 2]])
    np.savez(tmp_path / "tri.npz", vertices=V, faces=F)
    V2, F2 = load_mesh_any(tmp_path / "tri.npz")
    np.testing.assert_array_equal(V2, V)
    np.testing.assert_array_equal(F2, F)
    with pytest.raises(ValueError):
        load_mesh_any(tmp_path / "tri.ply")


def test_preprocess_drops_degenerate_faces(capsys):
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [2.0, 0.0, 0.0]])
    F = np.array([[0, 1, 2], [0, 0, 1], [0, 1, 3]])
    _, F_clean = preprocess_mesh(V, F)
    assert F_clean.tolist() == [[0, 1, 2]]
    assert "removed 2 degenerate faces" in capsys.readouterr().out


def test_read_seeds_accepts_commas_and_comments(tmp_path):
    path = tmp_path / "seeds.txt"
    path.write_text("# seeds\n0, 3\n\n7 8\n")
    assert read_seeds(path) == [0, 3, 7, 8]
    empty = tmp_path / "empty.txt"
    empty.write_text("# nothing\n")
    with pytest.raises(ValueError):
        read_seeds(empty)


def test_outputs_are_written(tmp_path, grid3):
    res = run_fastmarching(grid3, [0, 8], cluster=True)
    out = save_distance_outputs(tmp_path / "run", res)
    np.testing.assert_array_equal(np.load(out / "distances.npy"), res.distances)
    np.testing.assert_array_equal(np.load(out / "sorted_index.npy"), res.sorted_order)
    np.testing.assert_array_equal(np.load(out / "clusters.npy"), res.clusters)
    lines = (out / "distances.txt").read_text().splitlines()
    assert len(lines) == 9 and float(lines[0]) == 0.0

    viz = tmp_path / "viz" / "bundle.npz"
    write_viz_npz(viz, grid3.vertices, grid3.faces, res, [0, 8])
    with np.load(viz) as data:
        assert set(data.files) == {"vertices", "faces", "distances", "sources", "labels"}
        assert data["sources"].tolist() == [0, 8]


def test_unreached_vertices_round_trip_as_infinity(tmp_path, two_components):
    res = run_fastmarching(two_components, [0])
    out = save_distance_outputs(tmp_path, res)
    lines = (out / "distances.txt").read_text().splitlines()
    assert lines[-1] == "inf"
    assert not (out / "clusters.npy").exists()
