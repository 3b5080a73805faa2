"""
diffgraph Differential Function Factory
=======================================

The single constructor of expression nodes.

Every operation pairs a forward computation (delegated to the factory's
field) with a symbolic derivative rule. Rules are closures over the factory,
so a derivative is itself built from factory operations and can be
differentiated again.

Usage:
    from diffgraph import DifferentialFunctionFactory, ArrayField

    f = DifferentialFunctionFactory(ArrayField())
    x = f.variable("x", [0.5, 1.0, 2.0])
    y = f.sin(f.square(x))
    dy = y.diff(x)          # expression: cos(x^2) * 2x
    dy.value                # array([...])
"""

from __future__ import annotations
import logging
from typing import Any, Callable, Optional, Sequence, Tuple

from ..core import shapes
from ..core.fields import Field
from ..errors import FactoryConstructionError, InvalidOperandKindError, UnsupportedOperationError
from ..graph.registry import GraphRegistry
from . import reductions
from .nodes import (
    BinaryFunction,
    Constant,
    DifferentialFunction,
    One,
    ReduceUnaryFunction,
    UnaryFunction,
    Variable,
    Zero,
)

logger = logging.getLogger(__name__)


class DifferentialFunctionFactory:
    """
    Builds differentiable expression nodes over a numeric field.

    Parameters
    ----------
    field : Field
        Numeric operand provider every forward computation delegates to
    graph : Optional[GraphRegistry]
        Registry the nodes record themselves into. Pass the same registry to
        several factories to share one graph.
    """

    def __init__(self, field: Field, graph: Optional[GraphRegistry] = None):
        if field is None:
            raise FactoryConstructionError("A numeric field is required")
        if not isinstance(field, Field):
            raise FactoryConstructionError(f"Expected a Field, got {type(field).__name__}")

        self._field = field
        self._graph = graph if graph is not None else GraphRegistry()
        self._zero = None
        self._one = None
        logger.debug("created factory over %r (graph %r)", field, self._graph.name)

    @property
    def field(self) -> Field:
        return self._field

    @property
    def graph(self) -> GraphRegistry:
        return self._graph

    def __repr__(self) -> str:
        return f"DifferentialFunctionFactory({self._field!r}, nodes={len(self._graph)})"

    # =========================================================================
    # Leaves
    # =========================================================================

    def constant(self, value: Any) -> Constant:
        return Constant(self, value)

    val = constant

    def variable(
        self,
        name: str,
        value: Any,
        pre_evaluate: Optional[Callable[[], None]] = None,
    ) -> Variable:
        """
        Create a named variable.

        Args:
            name: Display name
            value: Initial value
            pre_evaluate: Zero-argument callback run before every read
        """
        return Variable(self, name, value, pre_evaluate)

    var = variable

    def zero(self) -> Zero:
        """Canonical additive identity of this factory."""
        if self._zero is None:
            self._zero = Zero(self)
        return self._zero

    def one(self) -> One:
        """Canonical multiplicative identity of this factory."""
        if self._one is None:
            self._one = One(self)
        return self._one

    def _as_node(self, x: Any) -> DifferentialFunction:
        if isinstance(x, DifferentialFunction):
            if x.factory is not self:
                raise ValueError(f"{x!r} was built by a different factory")
            return x
        return self.constant(x)

    # =========================================================================
    # Rule builders
    # =========================================================================

    def _chain(self, local: Callable[[DifferentialFunction], DifferentialFunction]):
        """Rule for an elementwise op whose derivative is ``local(operand)``."""
        def rule(node, variable, grad):
            return node.arg.backprop(variable, self.mul(grad, local(node.arg)))
        return rule

    def _zero_rule(self, node, variable, grad):
        return self.zero()

    @staticmethod
    def _identity_rule(node, variable, grad):
        return node

    @staticmethod
    def _unsupported(op_name: str):
        def rule(node, variable, grad):
            raise UnsupportedOperationError(f"{op_name} has no derivative")
        return rule

    def _pass(self, child, variable, make_grad):
        """Send a gradient into ``child``, summed back to its shape if it was broadcast."""
        if not child.depends_on(variable):
            return self.zero()
        grad = make_grad()
        if child.has_shape and grad.has_shape:
            full = shapes.broadcast_shapes(grad.shape, child.shape)
            if full != child.shape:
                # grad may itself be keepdims-shaped; expand before summing down
                grad = self.sum_to(self.expand_to(grad, full), child.shape)
        return child.backprop(variable, grad)

    def _accumulate(self, *grads):
        if any(g is None for g in grads):
            return None
        total = self.zero()
        for g in grads:
            total = self.add(total, g)
        return total

    def _unary(self, op_name, x, forward, rule, shape=None, **params) -> UnaryFunction:
        x = self._as_node(x)
        if shape is None:
            shape = x._shape
        return UnaryFunction(self, op_name, x, forward, rule, shape, params)

    def _binary(self, op_name, x, y, forward, rule, infix=None) -> BinaryFunction:
        x = self._as_node(x)
        y = self._as_node(y)
        shape = shapes.broadcast_shapes(x._shape, y._shape)
        return BinaryFunction(self, op_name, x, y, forward, rule, shape, infix)

    def _shaped(self, x: DifferentialFunction, op_name: str) -> Tuple[int, ...]:
        if not x.has_shape:
            raise InvalidOperandKindError(
                f"{op_name} needs shape metadata; {type(self._field).__name__} operands have none"
            )
        return x.shape

    # =========================================================================
    # Arithmetic
    # =========================================================================

    def add(self, x, y) -> DifferentialFunction:
        x, y = self._as_node(x), self._as_node(y)
        if isinstance(x, Zero):
            return y
        if isinstance(y, Zero):
            return x

        def rule(node, variable, grad):
            return self._accumulate(
                self._pass(node.larg, variable, lambda: grad),
                self._pass(node.rarg, variable, lambda: grad),
            )
        return self._binary("add", x, y, self._field.add, rule, infix="+")

    def sub(self, x, y) -> DifferentialFunction:
        x, y = self._as_node(x), self._as_node(y)
        if isinstance(y, Zero):
            return x
        if isinstance(x, Zero):
            return self.neg(y)

        def rule(node, variable, grad):
            return self._accumulate(
                self._pass(node.larg, variable, lambda: grad),
                self._pass(node.rarg, variable, lambda: self.neg(grad)),
            )
        return self._binary("sub", x, y, self._field.sub, rule, infix="-")

    def mul(self, x, y) -> DifferentialFunction:
        x, y = self._as_node(x), self._as_node(y)
        if isinstance(x, Zero) or isinstance(y, Zero):
            return self.zero()
        if isinstance(x, One):
            return y
        if isinstance(y, One):
            return x

        def rule(node, variable, grad):
            return self._accumulate(
                self._pass(node.larg, variable, lambda: self.mul(grad, node.rarg)),
                self._pass(node.rarg, variable, lambda: self.mul(grad, node.larg)),
            )
        return self._binary("mul", x, y, self._field.mul, rule, infix="*")

    def div(self, x, y) -> DifferentialFunction:
        x, y = self._as_node(x), self._as_node(y)
        if isinstance(x, Zero):
            return self.zero()
        if isinstance(y, One):
            return x

        def rule(node, variable, grad):
            l, r = node.larg, node.rarg
            return self._accumulate(
                self._pass(l, variable, lambda: self.div(grad, r)),
                self._pass(r, variable, lambda: self.neg(self.div(self.mul(grad, l), self.square(r)))),
            )
        return self._binary("div", x, y, self._field.div, rule, infix="/")

    def neg(self, x) -> DifferentialFunction:
        x = self._as_node(x)
        if isinstance(x, Zero):
            return x

        def rule(node, variable, grad):
            return node.arg.backprop(variable, self.neg(grad))
        return self._unary("neg", x, self._field.neg, rule)

    negate = neg

    def inverse(self, x) -> DifferentialFunction:
        """Elementwise reciprocal ``1 / x``."""
        return self._unary(
            "inverse", x, self._field.inverse,
            self._chain(lambda a: self.neg(self.inverse(self.square(a)))),
        )

    def sum_to(self, x, shape: Sequence[int]) -> DifferentialFunction:
        """
        Sum a broadcast value back down to ``shape``.

        Returns ``x`` itself when nothing needs summing. A value with as many
        elements as ``shape`` is only reshaped.
        """
        x = self._as_node(x)
        if not x.has_shape:
            return x
        target = tuple(int(d) for d in shape)
        if x.shape == target:
            return x
        if shapes.size(x.shape) == shapes.size(target):
            axes = ()
        else:
            axes = shapes.sum_to_axes(x.shape, target)
            if not axes:
                return x

        field = self._field

        def forward(v):
            if axes:
                v = field.sum(v, axes)
            return field.reshape(v, target)

        def rule(node, variable, grad):
            if grad.shape != node.shape:
                grad = self.expand_to(grad, node.shape)
            return node.arg.backprop(variable, self.expand_to(grad, node.arg.shape))

        return self._unary("sum_to", x, forward, rule, shape=target, shape_to=list(target))

    def expand_to(self, x, shape: Sequence[int]) -> DifferentialFunction:
        """
        Broadcast ``x`` out to ``shape``; the inverse of :meth:`sum_to`.

        Unlike :meth:`broadcast` this has a derivative (summing back down),
        so gradients redistributed with it can be differentiated again.
        """
        x = self._as_node(x)
        if not x.has_shape:
            return x
        target = tuple(int(d) for d in shape)
        if x.shape == target:
            return x
        # equal element counts: only length-1 axes differ
        restore = shapes.size(x.shape) == shapes.size(target)
        if not restore and not shapes.broadcasts_to(x.shape, target):
            raise ValueError(f"Cannot expand {x.shape} to {target}")

        field = self._field

        def forward(v):
            if restore:
                return field.reshape(v, target)
            return field.broadcast(v, target)

        def rule(node, variable, grad):
            if grad.shape != node.shape:
                grad = self.expand_to(grad, node.shape)
            return node.arg.backprop(variable, self.sum_to(grad, node.arg.shape))

        return self._unary("expand", x, forward, rule, shape=target, shape_to=list(target))

    # =========================================================================
    # Elementwise math
    # =========================================================================

    def abs(self, x) -> DifferentialFunction:
        return self._unary("abs", x, self._field.abs, self._chain(self.sign))

    def sin(self, x) -> DifferentialFunction:
        return self._unary("sin", x, self._field.sin, self._chain(self.cos))

    def cos(self, x) -> DifferentialFunction:
        return self._unary("cos", x, self._field.cos,
                           self._chain(lambda a: self.neg(self.sin(a))))

    def tan(self, x) -> DifferentialFunction:
        return self._unary("tan", x, self._field.tan,
                           self._chain(lambda a: self.pow(self.cos(a), -2.0)))

    def asin(self, x) -> DifferentialFunction:
        return self._unary("asin", x, self._field.asin,
                           self._chain(lambda a: self.inverse(self.sqrt(self.sub(self.one(), self.square(a))))))

    def acos(self, x) -> DifferentialFunction:
        return self._unary("acos", x, self._field.acos,
                           self._chain(lambda a: self.neg(self.inverse(self.sqrt(self.sub(self.one(), self.square(a)))))))

    def atan(self, x) -> DifferentialFunction:
        return self._unary("atan", x, self._field.atan,
                           self._chain(lambda a: self.inverse(self.add(self.one(), self.square(a)))))

    def sinh(self, x) -> DifferentialFunction:
        return self._unary("sinh", x, self._field.sinh, self._chain(self.cosh))

    def cosh(self, x) -> DifferentialFunction:
        return self._unary("cosh", x, self._field.cosh, self._chain(self.sinh))

    def tanh(self, x) -> DifferentialFunction:
        return self._unary("tanh", x, self._field.tanh,
                           self._chain(lambda a: self.square(self.inverse(self.cosh(a)))))

    def asinh(self, x) -> DifferentialFunction:
        return self._unary("asinh", x, self._field.asinh,
                           self._chain(lambda a: self.inverse(self.sqrt(self.add(self.square(a), self.one())))))

    def acosh(self, x) -> DifferentialFunction:
        def local(a):
            return self.inverse(self.mul(self.sqrt(self.sub(a, self.one())),
                                         self.sqrt(self.add(a, self.one()))))
        return self._unary("acosh", x, self._field.acosh, self._chain(local))

    def atanh(self, x) -> DifferentialFunction:
        return self._unary("atanh", x, self._field.atanh,
                           self._chain(lambda a: self.inverse(self.sub(self.one(), self.square(a)))))

    def exp(self, x) -> DifferentialFunction:
        return self._unary("exp", x, self._field.exp, self._chain(self.exp))

    def log(self, x) -> DifferentialFunction:
        return self._unary("log", x, self._field.log, self._chain(self.inverse))

    def sqrt(self, x) -> DifferentialFunction:
        return self._unary("sqrt", x, self._field.sqrt,
                           self._chain(lambda a: self.div(self.inverse(self.sqrt(a)), self.constant(2.0))))

    def square(self, x) -> DifferentialFunction:
        return self._unary("square", x, self._field.square,
                           self._chain(lambda a: self.mul(a, self.constant(2.0))))

    def sign(self, x) -> DifferentialFunction:
        return self._unary("sign", x, self._field.sign, self._zero_rule)

    def floor(self, x) -> DifferentialFunction:
        return self._unary("floor", x, self._field.floor, self._unsupported("floor"))

    def step(self, x) -> DifferentialFunction:
        """Heaviside step, 1 where x > 0."""
        return self._unary("step", x, self._field.step, self._zero_rule)

    # =========================================================================
    # Activations
    # =========================================================================

    def relu(self, x) -> DifferentialFunction:
        return self._unary("relu", x, self._field.relu, self._chain(self.step))

    def sigmoid(self, x) -> DifferentialFunction:
        return self._unary("sigmoid", x, self._field.sigmoid, self._chain(self.sigmoid_derivative))

    def sigmoid_derivative(self, x) -> DifferentialFunction:
        def local(a):
            two_s = self.mul(self.constant(2.0), self.sigmoid(a))
            return self.mul(self.sigmoid_derivative(a), self.sub(self.one(), two_s))
        return self._unary("sigmoid_derivative", x, self._field.sigmoid_derivative, self._chain(local))

    def softmax(self, x) -> DifferentialFunction:
        """Softmax over the last axis."""
        def rule(node, variable, grad):
            # vector-Jacobian product: s * (g - sum(g * s, last axis))
            x = node.arg
            weighted = self.mul(grad, node)
            if x.has_shape and len(x.shape) > 0:
                last = (len(x.shape) - 1,)
                total = reductions.repeat_gradient(self, self.sum(weighted, *last), x.shape, last)
            else:
                total = weighted
            return x.backprop(variable, self.mul(node, self.sub(grad, total)))
        return self._unary("softmax", x, self._field.softmax, rule)

    def hard_tanh(self, x) -> DifferentialFunction:
        return self._unary("hard_tanh", x, self._field.hard_tanh, self._chain(self.hard_tanh_derivative))

    def hard_tanh_derivative(self, x) -> DifferentialFunction:
        return self._unary("hard_tanh_derivative", x, self._field.hard_tanh_derivative, self._zero_rule)

    def softsign(self, x) -> DifferentialFunction:
        return self._unary("softsign", x, self._field.softsign, self._chain(self.softsign_derivative))

    def softsign_derivative(self, x) -> DifferentialFunction:
        def local(a):
            # d/dx (1 + |x|)^-2 = -2 sign(x) (1 + |x|)^-3
            cube = self.pow(self.add(self.one(), self.abs(a)), -3.0)
            return self.mul(self.mul(self.constant(-2.0), self.sign(a)), cube)
        return self._unary("softsign_derivative", x, self._field.softsign_derivative, self._chain(local))

    def softplus(self, x) -> DifferentialFunction:
        return self._unary("softplus", x, self._field.softplus, self._chain(self.sigmoid))

    def elu(self, x) -> DifferentialFunction:
        return self._unary("elu", x, self._field.elu, self._chain(self.elu_derivative))

    def elu_derivative(self, x) -> DifferentialFunction:
        return self._unary("elu_derivative", x, self._field.elu_derivative, self._zero_rule)

    def leaky_relu(self, x, cutoff: float) -> DifferentialFunction:
        field = self._field
        return self._unary(
            "leaky_relu", x, lambda v: field.leaky_relu(v, cutoff),
            self._chain(lambda a: self.leaky_relu_derivative(a, cutoff)),
            cutoff=cutoff,
        )

    def leaky_relu_derivative(self, x, cutoff: float) -> DifferentialFunction:
        field = self._field
        return self._unary(
            "leaky_relu_derivative", x, lambda v: field.leaky_relu_derivative(v, cutoff),
            self._zero_rule, cutoff=cutoff,
        )

    # =========================================================================
    # Shape operations
    # =========================================================================

    def tile(self, x, reps: Sequence[int]) -> DifferentialFunction:
        x = self._as_node(x)
        reps = tuple(int(r) for r in reps)
        shape = shapes.tile_shape(self._shaped(x, "tile"), reps)
        field = self._field
        return self._unary("tile", x, lambda v: field.tile(v, reps),
                           self._unsupported("tile"), shape=shape, reps=list(reps))

    def value_array_of(self, x, shape: Sequence[int]) -> DifferentialFunction:
        """Array of ``shape`` filled with the single value of ``x``."""
        x = self._as_node(x)
        self._shaped(x, "value_array_of")
        shape = tuple(int(d) for d in shape)
        field = self._field
        return self._unary("full", x, lambda v: field.value_array_of(v, shape),
                           self._unsupported("full"), shape=shape, shape_to=list(shape))

    full = value_array_of

    def broadcast(self, x, shape: Sequence[int]) -> DifferentialFunction:
        x = self._as_node(x)
        self._shaped(x, "broadcast")
        shape = tuple(int(d) for d in shape)
        field = self._field
        return self._unary("broadcast", x, lambda v: field.broadcast(v, shape),
                           self._unsupported("broadcast"), shape=shape, shape_to=list(shape))

    def repeat(self, x, repeats: int, axis: int = 0) -> DifferentialFunction:
        x = self._as_node(x)
        shape = shapes.repeat_shape(self._shaped(x, "repeat"), repeats, axis)
        field = self._field
        return self._unary("repeat", x, lambda v: field.repeat(v, repeats, axis),
                           self._unsupported("repeat"), shape=shape, repeats=repeats, axis=axis)

    def reshape(self, x, shape: Sequence[int]) -> DifferentialFunction:
        """Reshape; differentiates to the node itself."""
        x = self._as_node(x)
        shape = shapes.reshape_shape(self._shaped(x, "reshape"), shape)
        field = self._field
        return self._unary("reshape", x, lambda v: field.reshape(v, shape),
                           self._identity_rule, shape=shape, shape_to=list(shape))

    def transpose(self, x) -> DifferentialFunction:
        """Reverse the axes; differentiates to the node itself."""
        x = self._as_node(x)
        shape = tuple(reversed(self._shaped(x, "transpose")))
        return self._unary("transpose", x, self._field.transpose, self._identity_rule, shape=shape)

    # =========================================================================
    # Reductions (no axes = whole array)
    # =========================================================================

    def _reduce(self, op_name, x, axes, forward, local_grad, **params) -> ReduceUnaryFunction:
        x = self._as_node(x)
        if x.has_shape:
            axes = shapes.normalize_axes(x.shape, axes)
            shape = shapes.reduced_shape(x.shape, axes)
        elif axes:
            raise InvalidOperandKindError(
                f"{op_name} over axes {tuple(axes)} needs shape metadata"
            )
        else:
            axes, shape = (), None

        if local_grad is None:
            def rule(node, variable, grad):
                logger.debug("%s has no derivative rule; returning None", op_name)
                return None
        else:
            def rule(node, variable, grad):
                return node.arg.backprop(variable, local_grad(self, node, grad))

        return ReduceUnaryFunction(
            self, op_name, x, axes, lambda v: forward(v, axes), rule, shape, params
        )

    def sum(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("sum", x, axes, self._field.sum, reductions.sum_gradient)

    def prod(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("prod", x, axes, self._field.prod, reductions.prod_gradient)

    def mean(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("mean", x, axes, self._field.mean, reductions.mean_gradient)

    def max(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("max", x, axes, self._field.max, reductions.extremum_gradient)

    def min(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("min", x, axes, self._field.min, reductions.extremum_gradient)

    def std(self, x, *axes: int, bias_corrected: bool = False) -> ReduceUnaryFunction:
        field = self._field
        return self._reduce(
            "std", x, axes, lambda v, a: field.std(v, a, bias_corrected),
            reductions.std_gradient, bias_corrected=bias_corrected,
        )

    def variance(self, x, *axes: int, bias_corrected: bool = False) -> ReduceUnaryFunction:
        field = self._field
        return self._reduce(
            "variance", x, axes, lambda v, a: field.variance(v, a, bias_corrected),
            reductions.variance_gradient, bias_corrected=bias_corrected,
        )

    def norm1(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("norm1", x, axes, self._field.norm1, None)

    def norm2(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("norm2", x, axes, self._field.norm2, None)

    def normmax(self, x, *axes: int) -> ReduceUnaryFunction:
        return self._reduce("normmax", x, axes, self._field.normmax, None)

    # =========================================================================
    # Binary
    # =========================================================================

    def pow(self, x, y) -> BinaryFunction:
        """
        ``x ** y``.

        Power rule ``y * x^(y-1) * x'``; when the exponent also depends on the
        variable, ``x^y * log(x) * y'`` is added.
        """
        def rule(node, variable, grad):
            l, r = node.larg, node.rarg
            if isinstance(r, Constant):
                exponent = self.constant(self._field.sub(r.value, self._field.one()))
            else:
                exponent = self.sub(r, self.one())
            return self._accumulate(
                self._pass(l, variable, lambda: self.mul(grad, self.mul(r, self.pow(l, exponent)))),
                self._pass(r, variable, lambda: self.mul(grad, self.mul(node, self.log(l)))),
            )
        return self._binary("pow", x, y, self._field.pow, rule, infix="**")

    def or_(self, x, y) -> BinaryFunction:
        """1 where either operand is non-zero. Piecewise constant: zero derivative."""
        return self._binary("or", x, y, self._field.or_, self._zero_rule)

    def eq(self, x, y) -> BinaryFunction:
        """1 where the operands are equal. Piecewise constant: zero derivative."""
        return self._binary("eq", x, y, self._field.eq, self._zero_rule)

    def neq(self, x, y) -> BinaryFunction:
        """1 where the operands differ. Piecewise constant: zero derivative."""
        return self._binary("neq", x, y, self._field.neq, self._zero_rule)
