"""
diffgraph Configuration
=======================

Process-wide defaults for numeric fields and gradient checking.

Usage:
    import diffgraph
    diffgraph.configure(dtype="float32")
    diffgraph.get_settings().fd_eps
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace


@dataclass
class Settings:
    """Defaults read by ArrayField and gradcheck."""
    dtype: str = "float64"
    device: str = "cpu"
    fd_eps: float = 1e-6
    fd_atol: float = 1e-4
    fd_rtol: float = 1e-3


_settings = Settings()


def get_settings() -> Settings:
    """Return the active settings."""
    return _settings


def configure(**kwargs) -> Settings:
    """
    Update the active settings.
    
    Args:
        **kwargs: Any field of Settings
    
    Returns:
        The updated settings
    """
    global _settings
    
    known = {f.name for f in fields(Settings)}
    unknown = set(kwargs) - known
    if unknown:
        raise ValueError(f"Unknown settings: {sorted(unknown)}")
    
    if 'device' in kwargs:
        from .core.array_api import check_device
        check_device(kwargs['device'])
    
    _settings = replace(_settings, **kwargs)
    return _settings


def reset() -> Settings:
    """Restore the default settings."""
    global _settings
    _settings = Settings()
    return _settings
