"""
diffgraph: Symbolic Automatic Differentiation
=============================================

A factory builds a graph of differentiable expression nodes over a numeric
field. Differentiating a node returns a new expression, not a number, so
derivatives can be inspected, evaluated lazily or differentiated again.

Example:
    >>> import diffgraph as dg
    >>> f = dg.DifferentialFunctionFactory(dg.ArrayField())
    >>> x = f.variable("x", [1.0, 2.0, 3.0])
    >>> y = f.sum(f.square(x))
    >>> y.diff(x).value  # 2x
    array([2., 4., 6.])
"""

__version__ = "0.1.0"

import logging

# Numeric fields
from .core import Field, ArrayField, RealField

# Expression graph
from .functions import (
    DifferentialFunctionFactory,
    DifferentialFunction,
    Constant,
    Zero,
    One,
    Variable,
    UnaryFunction,
    BinaryFunction,
    ReduceUnaryFunction,
)
from .graph import GraphRegistry

# Configuration, errors, gradient checking
from .config import Settings, configure, get_settings
from .errors import (
    DiffGraphError,
    UnsupportedOperationError,
    InvalidOperandKindError,
    FactoryConstructionError,
)
from .gradcheck import check_gradients, numerical_gradient

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Fields
    'Field',
    'ArrayField',
    'RealField',
    # Graph
    'DifferentialFunctionFactory',
    'DifferentialFunction',
    'Constant',
    'Zero',
    'One',
    'Variable',
    'UnaryFunction',
    'BinaryFunction',
    'ReduceUnaryFunction',
    'GraphRegistry',
    # Config
    'Settings',
    'configure',
    'get_settings',
    # Errors
    'DiffGraphError',
    'UnsupportedOperationError',
    'InvalidOperandKindError',
    'FactoryConstructionError',
    # Gradient checking
    'check_gradients',
    'numerical_gradient',
]
