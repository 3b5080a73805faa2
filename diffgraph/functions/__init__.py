"""Expression nodes and the factory that builds them."""

from .nodes import (
    DifferentialFunction,
    Constant,
    Zero,
    One,
    Variable,
    UnaryFunction,
    BinaryFunction,
    ReduceUnaryFunction,
)
from .factory import DifferentialFunctionFactory
from .reductions import repeat_gradient, grad_choose

__all__ = [
    'DifferentialFunction',
    'Constant',
    'Zero',
    'One',
    'Variable',
    'UnaryFunction',
    'BinaryFunction',
    'ReduceUnaryFunction',
    'DifferentialFunctionFactory',
    'repeat_gradient',
    'grad_choose',
]
