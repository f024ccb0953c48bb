"""CLI entry point for geodesic distance computation."""

from __future__ import annotations

import argparse
import json
import math
from dataclasses import asdict, fields as dataclass_fields
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .geodesics import ALGORITHMS, GeodesicsConfig, compute_geodesics
from .mesh import HalfEdgeMesh
from .mesh_io import load_mesh_any, preprocess_mesh, read_seeds, save_distance_outputs, write_viz_npz
from .trace import SweepLogger


DEFAULT_CONFIG = "geodesics_config.json"
RUN_KEYS = ("mesh", "seeds_file", "out", "normalize", "log_dir", "viz_npz", "preprocess")


def _load_config_mapping(path: str | Path) -> Dict[str, Any]:
    """Read a JSON (or, with PyYAML installed, YAML) mapping of option names to values."""

    cfg_path = Path(path)
    if not cfg_path.is_file():
        raise FileNotFoundError(f"Config file '{path}' not found.")
    text = cfg_path.read_text(encoding="utf8")
    if cfg_path.suffix.lower() in (".yml", ".yaml"):
        try:
            import yaml
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("Reading YAML configs needs PyYAML (pip install 'mesh-geodesics[yaml]').") from exc
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must hold a mapping, got {type(data).__name__}.")
    return data


def _parser_defaults(parser: argparse.ArgumentParser) -> Dict[str, Any]:
    return {
        action.dest: action.default
        for action in parser._actions
        if action.dest not in ("help", argparse.SUPPRESS)
    }


def _merge_config(
    args: argparse.Namespace,
    defaults: Dict[str, Any],
    config: Dict[str, Any],
    keys: Sequence[str],
) -> Dict[str, Any]:
    """Config file values first; command line flags win when they differ from their defaults."""

    merged = {key: config[key] for key in keys if key in config}
    for key in keys:
        if not hasattr(args, key):
            continue
        value = getattr(args, key)
        explicit = value != defaults.get(key)
        if explicit or (key not in merged and value is not None):
            merged[key] = value
    return merged


def _add_distances_parser(sub: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = sub.add_parser("distances", help="Compute geodesic distances from seed vertices.")
    parser.add_argument("--config", type=str, default=None, help="Path to JSON/YAML config overriding defaults.")
    parser.add_argument("--mesh", type=str, default=None, help="Input mesh (.obj/.npz).")
    parser.add_argument("--seeds", type=str, default=None, dest="seeds_file", help="Text file with seed vertex indices.")
    parser.add_argument("--out", type=str, default="runs/geodesics", help="Output directory.")
    parser.add_argument("--algorithm", type=str, default="fm", choices=ALGORITHMS, help="Engine to run.")
    parser.add_argument("--cluster", action="store_true", default=False, help="Assign every vertex to its nearest seed.")
    parser.add_argument("--n-iter", type=int, default=0, dest="n_iter", help="Fast Marching iteration budget (0 = unlimited).")
    parser.add_argument("--radius", type=float, default=math.inf, help="Fast Marching radius budget.")
    parser.add_argument("--sweeps", type=int, default=1, help="PTP relaxation sweeps over all levels.")
    parser.add_argument("--sweep-tol", type=float, default=None, dest="sweep_tol", help="Stop PTP early once a sweep changes no value by more than this.")
    parser.add_argument("--workers", type=int, default=None, dest="num_workers", help="Host threads for ptp_cpu.")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        help="Device for ptp_gpu / heat_flow_gpu (auto, cpu, cuda, cuda:<idx>, or mps).",
    )
    parser.add_argument("--t", type=float, default=None, help="Optional diffusion time override.")
    parser.add_argument(
        "--cg-tol",
        type=float,
        default=None,
        dest="cg_tol",
        help="Relative tolerance for CG solves (default: 1e-8 in float64, 1e-5 in float32).",
    )
    parser.add_argument("--cg-iters", type=int, default=2000, dest="cg_iters", help="Maximum CG iterations.")
    parser.add_argument("--normalize", action="store_true", default=False, help="Rescale distances into [0, 1].")
    parser.add_argument("--no-preprocess", action="store_false", dest="preprocess", default=True, help="Keep degenerate faces.")
    parser.add_argument("--log-dir", type=str, default=None, dest="log_dir", help="Directory for the PTP sweep trace CSV.")
    parser.add_argument("--viz-npz", type=str, default=None, dest="viz_npz", help="Optional NPZ bundle for visualisation.")
    parser.set_defaults(_defaults=_parser_defaults(parser))
    return parser


def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Geodesic distances on triangle meshes.")
    sub = parser.add_subparsers(dest="cmd", required=True)
    _add_distances_parser(sub)
    return parser


def _run_distances(args: argparse.Namespace) -> Dict[str, Any]:
    defaults = vars(args).pop("_defaults", {})
    config_path = vars(args).pop("config", None)
    if not config_path and Path(DEFAULT_CONFIG).is_file():
        config_path = DEFAULT_CONFIG
    config_data = _load_config_mapping(config_path) if config_path else {}

    cfg_keys = [field.name for field in dataclass_fields(GeodesicsConfig)]
    merged = _merge_config(args, defaults, config_data, list(cfg_keys) + list(RUN_KEYS))

    missing = [key for key in ("mesh", "seeds_file", "out") if not merged.get(key)]
    if missing:
        raise ValueError("Missing required option(s): " + ", ".join(missing) + ".")

    cfg = GeodesicsConfig(**{k: merged[k] for k in cfg_keys if k in merged})
    cfg.validate()

    V_raw, F_raw = load_mesh_any(merged["mesh"])
    if merged.get("preprocess", True):
        V_np, F_np = preprocess_mesh(V_raw, F_raw, verbose=True)
    else:
        V_np, F_np = V_raw, F_raw
    seeds = read_seeds(merged["seeds_file"])
    mesh = HalfEdgeMesh(V_np, F_np)

    logger: Optional[SweepLogger] = None
    if merged.get("log_dir"):
        logger = SweepLogger(merged["log_dir"])
    try:
        field = compute_geodesics(mesh, seeds, cfg, logger=logger)
    finally:
        if logger is not None:
            logger.close()

    if merged.get("normalize"):
        field.normalize()

    out_dir = save_distance_outputs(merged["out"], field)
    summary = {
        "config": asdict(cfg),
        "mesh": str(merged["mesh"]),
        "seeds": seeds,
        "n_vertices": mesh.n_vertices,
        "n_faces": mesh.n_faces,
        "n_sorted": field.count_finalized(),
        "n_reached": int((field.distances < math.inf).sum()),
        "elapsed": field.elapsed,
        "normalized": bool(merged.get("normalize")),
    }
    if "sweeps" in field.extras:
        summary["sweeps_run"] = field.extras["sweeps"]
    if "solve_time" in field.extras:
        summary["solve_time"] = field.extras["solve_time"]
    with open(out_dir / "run_config.json", "w", encoding="utf8") as fh:
        json.dump(summary, fh, indent=2, default=str)

    if merged.get("viz_npz"):
        write_viz_npz(merged["viz_npz"], V_np, F_np, field, seeds)
        print(f"Saved viz NPZ to {merged['viz_npz']}")
    print(
        f"{field.algorithm}: reached {summary['n_reached']}/{mesh.n_vertices} vertices "
        f"in {field.elapsed:.3f}s. Saved outputs to '{out_dir}'."
    )
    return summary


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_argparser()
    args = parser.parse_args(argv)
    if args.cmd == "distances":
        _run_distances(args)
    else:  # pragma: no cover - argparse enforces choices
        parser.error(f"Unknown command {args.cmd}")


if __name__ == "__main__":
    main()
