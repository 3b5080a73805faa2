"""
diffgraph Errors
================

Exception taxonomy for graph construction and differentiation.
"""


class DiffGraphError(Exception):
    """Base class for all diffgraph errors."""


class UnsupportedOperationError(DiffGraphError, NotImplementedError):
    """A forward or derivative path is intentionally not implemented."""


class InvalidOperandKindError(DiffGraphError, TypeError):
    """Shape-dependent logic was invoked on an operand without shape metadata."""


class FactoryConstructionError(DiffGraphError, ValueError):
    """A factory was constructed without a usable numeric field."""
