"""Numeric fields and shape infrastructure for diffgraph."""

from .fields import Field, ArrayField, RealField
from .array_api import (
    get_array_module,
    to_numpy,
    to_device,
    get_device,
    gpu_available,
    cupy_available,
    parse_device,
    check_device,
)

__all__ = [
    'Field',
    'ArrayField',
    'RealField',
    'get_array_module',
    'to_numpy',
    'to_device',
    'get_device',
    'gpu_available',
    'cupy_available',
    'parse_device',
    'check_device',
]
