import json

import numpy as np
import pytest

from mesh_geodesics.cli import build_argparser, main

from conftest import grid_arrays


def _write_grid_obj(path, n=4):
    V, F = grid_arrays(n, n)
    lines = [f"v {x} {y} {z}" for x, y, z in V.tolist()]
    lines += [f"f {a + 1} {b + 1} {c + 1}" for a, b, c in F.tolist()]
    path.write_text("\n".join(lines) + "\n")
    return V, F


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_grid_obj(tmp_path / "grid.obj")
    (tmp_path / "seeds.txt").write_text("0\n15\n")
    return tmp_path


def test_distances_command_writes_outputs(workdir, capsys):
    out = workdir / "out"
    main(
        [
            "distances",
            "--mesh", "grid.obj",
            "--seeds", "seeds.txt",
            "--out", str(out),
            "--algorithm", "ptp_cpu",
            "--sweeps", "2",
            "--cluster",
            "--normalize",
            "--log-dir", str(workdir / "trace"),
            "--viz-npz", str(workdir / "viz.npz"),
        ]
    )
    distances = np.load(out / "distances.npy")
    assert distances.shape == (16,)
    assert distances[0] == 0.0 and distances[15] == 0.0
    assert distances.max() == 1.0
    clusters = np.load(out / "clusters.npy")
    assert clusters[0] == 0 and clusters[15] == 1

    summary = json.loads((out / "run_config.json").read_text())
    assert summary["config"]["algorithm"] == "ptp_cpu"
    assert summary["sweeps_run"] == 2
    assert summary["n_reached"] == 16
    assert summary["normalized"] is True
    assert (workdir / "trace" / "ptp_trace.csv").exists()
    assert (workdir / "viz.npz").exists()
    assert "ptp_cpu: reached 16/16 vertices" in capsys.readouterr().out


def test_config_file_with_command_line_override(workdir):
    cfg = {
        "mesh": "grid.obj",
        "seeds_file": "seeds.txt",
        "out": "from_config",
        "algorithm": "ptp_cpu",
        "sweeps": 1,
    }
    (workdir / "run.json").write_text(json.dumps(cfg))
    main(["distances", "--config", "run.json", "--sweeps", "3"])
    summary = json.loads((workdir / "from_config" / "run_config.json").read_text())
    assert summary["config"]["sweeps"] == 3
    assert summary["config"]["algorithm"] == "ptp_cpu"


def test_default_config_file_is_picked_up(workdir):
    cfg = {"mesh": "grid.obj", "seeds_file": "seeds.txt", "out": "default_run", "algorithm": "heat_flow"}
    (workdir / "geodesics_config.json").write_text(json.dumps(cfg))
    main(["distances"])
    summary = json.loads((workdir / "default_run" / "run_config.json").read_text())
    assert summary["config"]["algorithm"] == "heat_flow"
    assert "solve_time" in summary


def test_missing_inputs_are_reported(workdir):
    with pytest.raises(ValueError):
        main(["distances", "--seeds", "seeds.txt"])


def test_out_of_range_seed_is_rejected(workdir):
    (workdir / "bad.txt").write_text("16\n")
    with pytest.raises(ValueError):
        main(["distances", "--mesh", "grid.obj", "--seeds", "bad.txt", "--out", "bad"])


def test_parser_rejects_unknown_algorithm():
    with pytest.raises(SystemExit):
        build_argparser().parse_args(["distances", "--algorithm", "dijkstra"])
