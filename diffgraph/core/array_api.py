"""
diffgraph Array API
===================

numpy/cupy interop for ArrayField. Values live on the device named by the
field ('cpu' or 'cuda[:N]'); CuPy is optional and only needed for cuda.

Usage:
    from diffgraph.core.array_api import check_device, get_array_module

    check_device("cuda:1")          # RuntimeError without CuPy
    xp = get_array_module(value)    # numpy or cupy, matching the value
"""

from __future__ import annotations
from typing import Any, Optional, Tuple
import numpy as np

try:
    import cupy as cp
except ImportError:
    cp = None


def cupy_available() -> bool:
    return cp is not None


def gpu_available() -> bool:
    """True when CuPy is installed and sees a CUDA device."""
    return cp is not None and bool(cp.cuda.is_available())


def parse_device(device: str) -> Tuple[str, Optional[int]]:
    """
    Split a device string into its kind and index.

    'cpu' -> ('cpu', None), 'cuda' -> ('cuda', 0), 'cuda:2' -> ('cuda', 2)
    """
    kind, _, index = str(device).partition(':')
    if kind == 'cpu' and not index:
        return 'cpu', None
    if kind == 'cuda':
        if not index:
            return 'cuda', 0
        if index.isdigit():
            return 'cuda', int(index)
    raise ValueError(f"Unknown device: {device!r}")


def check_device(device: str) -> str:
    """
    Validate that values can be placed on ``device``.

    Raises ValueError for a malformed device string and RuntimeError for a
    cuda device without a usable CuPy.
    """
    kind, _ = parse_device(device)
    if kind == 'cuda':
        if cp is None:
            raise RuntimeError(f"Device {device!r} requires CuPy (pip install cupy-cuda12x)")
        if not gpu_available():
            raise RuntimeError(f"Device {device!r} requested but no CUDA GPU is available")
    return device


def get_array_module(arr: Any):
    """numpy or cupy, whichever owns ``arr``."""
    if cp is not None:
        return cp.get_array_module(arr)
    return np


def to_device(arr: Any, device: str) -> Any:
    kind, index = parse_device(device)
    if kind == 'cpu':
        return to_numpy(arr)
    check_device(device)
    with cp.cuda.Device(index):
        return cp.asarray(arr)


def to_numpy(arr: Any) -> np.ndarray:
    """Host copy of ``arr`` (no copy for numpy input)."""
    if isinstance(arr, np.ndarray):
        return arr
    if cp is not None and isinstance(arr, cp.ndarray):
        return cp.asnumpy(arr)
    return np.asarray(arr)


def get_device(arr: Any) -> str:
    if cp is not None and isinstance(arr, cp.ndarray):
        return f"cuda:{arr.device.id}"
    return "cpu"
