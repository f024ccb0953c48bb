"""
Device selection and dtype policy shared by the torch-backed engines.
"""

from __future__ import annotations

import torch


def _mps_available() -> bool:
    backend = getattr(torch.backends, "mps", None)
    return backend is not None and backend.is_available()


def resolve_device(device: str | torch.device | None = "auto") -> torch.device:
    """
    ``auto`` (or ``None``) picks CUDA, then MPS, then the CPU. Naming an
    accelerator that is not present raises ``ValueError``.
    """

    if isinstance(device, torch.device):
        return device
    name = "auto" if device is None else str(device).strip().lower()
    if name in ("", "auto"):
        if torch.cuda.is_available():
            return torch.device("cuda")
        return torch.device("mps") if _mps_available() else torch.device("cpu")

    dev = torch.device(name)
    if dev.type == "cuda" and not torch.cuda.is_available():
        raise ValueError(f"Device '{name}' requested but CUDA is not available on this system.")
    if dev.type == "mps" and not _mps_available():
        raise ValueError(f"Device '{name}' requested but MPS is not available on this system.")
    return dev


def device_to_str(device: torch.device) -> str:
    return device.type if device.index is None else f"{device.type}:{device.index}"


def dtype_for_device(device: torch.device | str) -> torch.dtype:
    """float64 on the host, float32 on accelerators (MPS has no float64)."""

    return torch.float64 if torch.device(device).type == "cpu" else torch.float32


def synchronize(device: torch.device) -> None:
    if device.type == "cuda":
        torch.cuda.synchronize(device)


__all__ = ["resolve_device", "device_to_str", "dtype_for_device", "synchronize"]
