"""
Per-level trace of PTP relaxation sweeps: a CSV file, optionally mirrored to TensorBoard.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict

FIELDS = ("sweep", "level", "n_vertices", "n_changed", "max_delta")


class SweepLogger:
    """One CSV row per relaxed level; sweep totals go to TensorBoard when enabled."""

    def __init__(self, out_dir: str | Path, *, filename: str = "ptp_trace.csv", enable_tb: bool = False) -> None:
        root = Path(out_dir)
        root.mkdir(parents=True, exist_ok=True)
        self.csv_path = root / filename
        self._fh = self.csv_path.open("w", newline="", encoding="utf8")
        self._rows = csv.DictWriter(self._fh, fieldnames=FIELDS)
        self._rows.writeheader()
        self._fh.flush()

        self.tb = None
        if enable_tb:
            try:
                from torch.utils.tensorboard import SummaryWriter
            except ImportError:
                print("TensorBoard is not installed; writing the CSV trace only.")
            else:
                self.tb = SummaryWriter(log_dir=str(root / "tb"))

    def log_level(self, sweep: int, level: int, scalars: Dict[str, float]) -> None:
        self._rows.writerow(
            {
                "sweep": sweep,
                "level": level,
                "n_vertices": int(scalars.get("n_vertices", 0)),
                "n_changed": int(scalars.get("n_changed", 0)),
                "max_delta": float(scalars.get("max_delta", 0.0)),
            }
        )

    def log_sweep(self, sweep: int, scalars: Dict[str, float]) -> None:
        self._fh.flush()
        if self.tb is not None:
            for key, value in scalars.items():
                self.tb.add_scalar(f"sweep/{key}", value, sweep)

    def close(self) -> None:
        if self.tb is not None:
            self.tb.close()
            self.tb = None
        if not self._fh.closed:
            self._fh.close()

    def __enter__(self) -> "SweepLogger":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = ["FIELDS", "SweepLogger"]
