"""
diffgraph Reduction Gradients
=============================

Redistribution of a reduced gradient back over the operand's shape.

A reduction ``r = R(x, axes)`` receives an upstream gradient ``g`` with the
reduced shape. Before it can be combined with anything shaped like ``x``,
``g`` is repeated across the reduced axes:

    whole-array reduction   ->  g filled over x.shape
    partial reduction       ->  g reshaped to the keepdims shape

The keepdims shape keeps every reduced axis as length 1 instead of dropping
it, so the result broadcasts correctly against ``x``. Both steps are built
with ``expand_to``, so the redistributed gradient is itself differentiable.
"""

from __future__ import annotations
from typing import Optional, Sequence, Tuple

from ..core import shapes
from ..errors import InvalidOperandKindError
from .nodes import DifferentialFunction, ReduceUnaryFunction


def _require_shape(node: DifferentialFunction, what: str) -> Tuple[int, ...]:
    if not node.has_shape:
        raise InvalidOperandKindError(
            f"{what} needs shape metadata; {type(node.field).__name__} operands have none"
        )
    return node.shape


def repeat_gradient(
    factory,
    grad: DifferentialFunction,
    input_shape: Optional[Tuple[int, ...]],
    axes: Sequence[int],
) -> DifferentialFunction:
    """
    Repeat a reduced gradient across the reduced axes.

    Args:
        factory: Factory building the new nodes
        grad: Gradient with (or broadcastable to) the reduced shape
        input_shape: Pre-reduction shape
        axes: Normalized reduction axes (empty = whole array)

    Returns:
        Expression shaped like ``input_shape`` (whole-array reductions) or like
        its keepdims shape (partial reductions)
    """
    if input_shape is None:
        raise InvalidOperandKindError("Gradient redistribution needs the operand shape")
    _require_shape(grad, "Gradient redistribution")

    if shapes.is_whole_array(input_shape, axes):
        return factory.expand_to(factory.sum_to(grad, ()), input_shape)

    reduced = shapes.reduced_shape(input_shape, axes)
    grad = factory.expand_to(factory.sum_to(grad, reduced), reduced)
    return factory.expand_to(grad, shapes.keepdims_shape(input_shape, axes))


def grad_choose(
    factory,
    node: ReduceUnaryFunction,
    grad: DifferentialFunction,
) -> DifferentialFunction:
    """
    Gradient of an extremum reduction (max/min).

    The upstream gradient goes only to the positions attaining the extremum,
    split evenly among ties: ``k`` tied positions each receive ``1/k``.
    """
    x = node.arg
    _require_shape(x, "Gradient choose")
    axes = node.axes

    repeated_grad = repeat_gradient(factory, grad, node.input_shape, axes)
    repeated_result = repeat_gradient(factory, node, node.input_shape, axes)
    locations = factory.eq(x, repeated_result)
    counts = repeat_gradient(factory, factory.sum(locations, *axes), node.input_shape, axes)
    return factory.mul(factory.div(locations, counts), repeated_grad)


def _centered(factory, node: ReduceUnaryFunction) -> DifferentialFunction:
    x = node.arg
    mean = factory.mean(x, *node.axes)
    return factory.sub(x, repeat_gradient(factory, mean, node.input_shape, node.axes))


def _denominator(node: ReduceUnaryFunction) -> int:
    n = node.reduced_count
    return n - 1 if node.params.get('bias_corrected') else n


# =============================================================================
# Local gradients, one per reduction. Each maps (factory, node, grad) to the
# gradient with respect to the reduction's operand.
# =============================================================================

def sum_gradient(factory, node: ReduceUnaryFunction, grad: DifferentialFunction):
    return repeat_gradient(factory, grad, node.input_shape, node.axes)


def mean_gradient(factory, node: ReduceUnaryFunction, grad: DifferentialFunction):
    count = factory.constant(float(node.reduced_count))
    return factory.div(repeat_gradient(factory, grad, node.input_shape, node.axes), count)


def prod_gradient(factory, node: ReduceUnaryFunction, grad: DifferentialFunction):
    # redistributed like mean rather than prod / x_i
    return mean_gradient(factory, node, grad)


def variance_gradient(factory, node: ReduceUnaryFunction, grad: DifferentialFunction):
    repeated = repeat_gradient(factory, grad, node.input_shape, node.axes)
    scale = factory.constant(2.0 / _denominator(node))
    return factory.mul(factory.mul(repeated, _centered(factory, node)), scale)


def std_gradient(factory, node: ReduceUnaryFunction, grad: DifferentialFunction):
    repeated = repeat_gradient(factory, factory.div(grad, node), node.input_shape, node.axes)
    scale = factory.constant(1.0 / _denominator(node))
    return factory.mul(factory.mul(repeated, _centered(factory, node)), scale)


def extremum_gradient(factory, node: ReduceUnaryFunction, grad: DifferentialFunction):
    return grad_choose(factory, node, grad)
