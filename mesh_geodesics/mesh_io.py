"""
Mesh, seed and result files for the command line front end.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np

from .results import DistanceField


def _obj_index(token: str, n_vertices: int, path: str | Path) -> int:
    head = token.split("/", 1)[0]
    if not head:
        raise ValueError(f"Malformed face token '{token}' in {path}.")
    value = int(head)
    # OBJ indices are 1-based; negative ones count back from the last vertex read.
    return value - 1 if value > 0 else n_vertices + value


def load_obj_tri(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """Read ``v`` and ``f`` records; polygons are split into triangle fans."""

    verts: List[Tuple[float, float, float]] = []
    faces: List[Tuple[int, int, int]] = []
    with open(path, "r", encoding="utf8") as fh:
        for raw in fh:
            tokens = raw.split()
            if not tokens:
                continue
            if tokens[0] == "v":
                verts.append((float(tokens[1]), float(tokens[2]), float(tokens[3])))
            elif tokens[0] == "f":
                corners = [_obj_index(tok, len(verts), path) for tok in tokens[1:]]
                faces.extend((corners[0], b, c) for b, c in zip(corners[1:-1], corners[2:]))
    if not verts or not faces:
        raise ValueError(f"OBJ file {path} did not contain vertices/faces.")
    return np.asarray(verts, dtype=np.float64), np.asarray(faces, dtype=np.int64)


def load_npz_mesh(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    """Read ``vertices``/``faces`` arrays from an NPZ archive."""
    with np.load(path, allow_pickle=False) as data:
        missing = {"vertices", "faces"} - set(data.files)
        if missing:
            raise KeyError(f"File '{path}' is missing array(s): {', '.join(sorted(missing))}.")
        return data["vertices"].astype(np.float64), data["faces"].astype(np.int64)


def load_mesh_any(path: str | Path) -> Tuple[np.ndarray, np.ndarray]:
    readers = {".obj": load_obj_tri, ".npz": load_npz_mesh}
    suffix = Path(path).suffix.lower()
    if suffix not in readers:
        raise ValueError(f"Unsupported mesh extension '{suffix}' (expected .obj/.npz).")
    return readers[suffix](path)


def preprocess_mesh(V: np.ndarray, F: np.ndarray, *, verbose: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """Drop faces with a repeated corner or (numerically) zero area."""

    F = np.asarray(F, dtype=np.int64)
    if F.size == 0:
        return V, F
    repeated = (F[:, 0] == F[:, 1]) | (F[:, 1] == F[:, 2]) | (F[:, 2] == F[:, 0])
    corners = V[F]
    areas = 0.5 * np.linalg.norm(np.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0]), axis=1)
    tiny = areas < max(1.0, float(areas.mean())) * 1.0e-16
    drop = repeated | tiny
    if verbose:
        if drop.any():
            print(
                f"Mesh preprocessing: removed {int(drop.sum())} degenerate faces "
                f"(repeated corners={int(repeated.sum())}, zero area={int(tiny.sum())})."
            )
        else:
            print("Mesh preprocessing: no degenerate faces detected.")
    return V, F[~drop]


def read_seeds(path: str | Path) -> List[int]:
    """Whitespace or comma separated vertex ids; ``#`` starts a comment line."""

    with open(path, "r", encoding="utf8") as fh:
        text = "\n".join(line for line in fh if not line.lstrip().startswith("#"))
    seeds = [int(tok) for tok in text.replace(",", " ").split()]
    if not seeds:
        raise ValueError(f"No seeds found in {path}.")
    return seeds


def save_distance_outputs(out_dir: str | Path, field: DistanceField) -> Path:
    """Write distances, order and clusters as ``.npy`` plus a plain-text distance list."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    np.save(out / "distances.npy", field.distances)
    np.save(out / "sorted_index.npy", field.sorted_order.astype(np.int64))
    if field.clusters is not None:
        np.save(out / "clusters.npy", field.clusters.astype(np.int32))
    (out / "distances.txt").write_text("".join(f"{d!r}\n" for d in field.distances.tolist()), encoding="utf8")
    return out


def write_viz_npz(
    path: str | Path,
    vertices: np.ndarray,
    faces: np.ndarray,
    field: DistanceField,
    sources: Sequence[int],
) -> None:
    """Bundle geometry, distances and (optionally) cluster labels for a viewer."""
    bundle = dict(
        vertices=np.asarray(vertices, dtype=np.float64),
        faces=np.asarray(faces, dtype=np.int64),
        distances=field.distances.astype(np.float32),
        sources=np.asarray(sources, dtype=np.int64),
    )
    if field.clusters is not None:
        bundle["labels"] = field.clusters.astype(np.int32)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    np.savez(target, **bundle)


__all__ = [
    "load_obj_tri",
    "load_npz_mesh",
    "load_mesh_any",
    "preprocess_mesh",
    "read_seeds",
    "save_distance_outputs",
    "write_viz_npz",
]
