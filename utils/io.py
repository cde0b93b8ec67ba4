"""File I/O helpers for recorded artifacts."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np


def ensure_dir(path: str | Path) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def write_bytes(path: str | Path, data: bytes) -> None:
    """Write an already encoded payload (JPEG/PNG stream) unchanged."""
    with open(path, "wb") as f:
        f.write(data)


def load_json(path: str | Path) -> Any:
    """Load JSON data from ``path``."""
    with open(path, "r") as f:
        return json.load(f)


def save_json(path: str | Path, data: Any) -> None:
    """Write data as JSON to ``path``."""
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def load_npy(path: str | Path) -> np.ndarray:
    """Load an ``.npy`` array."""
    return np.load(path)


def save_npy(path: str | Path, arr: np.ndarray) -> None:
    """Save an array to an ``.npy`` file."""
    np.save(path, arr)


def save_ply(path: str | Path, pcd) -> None:
    """Write an Open3D point cloud as PLY."""
    import open3d as o3d

    o3d.io.write_point_cloud(str(path), pcd)
