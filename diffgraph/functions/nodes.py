"""
diffgraph Expression Nodes
==========================

The node hierarchy of a differentiable expression graph.

Every non-leaf node is a tagged variant: an operation name, a fixed tuple of
operand nodes, a forward closure mapping operand values to a value, and a
rule closure producing the derivative expression. New operators are added as
data in the factory, not as new subclasses.

Differentiation is symbolic. ``node.diff(x)`` returns a new expression whose
value is the gradient of ``sum(node)`` with respect to ``x``; nothing is
computed until that expression's ``value`` is read.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from ..core.shapes import broadcasts_to, reduced_count
from ..errors import InvalidOperandKindError

# rule(node, variable, grad) -> derivative expression (or None when undefined)
Rule = Callable[['DifferentialFunction', 'Variable', 'DifferentialFunction'],
                Optional['DifferentialFunction']]


class DifferentialFunction(ABC):
    """
    Base class of all expression nodes.

    Attributes
    ----------
    op_name : str
        Operation name, used for registry bookkeeping and formulas only
    node_id : int
        Id assigned by the factory's graph registry
    variables : frozenset
        Variables this node's subtree depends on
    """

    op_name: str = "function"

    def __init__(
        self,
        factory,
        args: Sequence['DifferentialFunction'] = (),
        shape: Optional[Tuple[int, ...]] = None,
        op_name: Optional[str] = None,
    ):
        self._factory = factory
        self._args = tuple(args)
        self._shape = None if shape is None else tuple(int(d) for d in shape)
        if op_name is not None:
            self.op_name = op_name

        variables = frozenset()
        for arg in self._args:
            variables = variables | arg.variables
        self._variables = variables

        self.node_id = factory.graph.register(self, self._shape, self.op_name, self._args)

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    @property
    def factory(self):
        return self._factory

    @property
    def field(self):
        return self._factory.field

    @property
    def args(self) -> Tuple['DifferentialFunction', ...]:
        return self._args

    @property
    def arg(self) -> 'DifferentialFunction':
        """First operand."""
        return self._args[0]

    @property
    def variables(self) -> frozenset:
        return self._variables

    @property
    def has_shape(self) -> bool:
        return self._shape is not None

    @property
    def shape(self) -> Tuple[int, ...]:
        """Static shape; only available over a shaped field."""
        if self._shape is None:
            raise InvalidOperandKindError(
                f"{self.op_name} node over {type(self.field).__name__} has no shape"
            )
        return self._shape

    def depends_on(self, variable: 'Variable') -> bool:
        return variable in self._variables

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    @property
    def value(self) -> Any:
        """Current value. Re-evaluated on every read."""
        return self.evaluate()

    def evaluate(self, cache: Optional[Dict[int, Any]] = None) -> Any:
        """
        Evaluate this node.

        Parameters
        ----------
        cache : Optional[Dict[int, Any]]
            Values already computed during the current read, keyed by node id.
            Shared subexpressions are evaluated once per read.
        """
        if cache is None:
            cache = {}
        if self.node_id not in cache:
            cache[self.node_id] = self._evaluate(cache)
        return cache[self.node_id]

    @abstractmethod
    def _evaluate(self, cache: Dict[int, Any]) -> Any:
        ...

    def real(self) -> float:
        """Value as a Python float (single-element values only)."""
        return self.field.real(self.value)

    # -------------------------------------------------------------------------
    # Differentiation
    # -------------------------------------------------------------------------

    def diff(self, variable: 'Variable') -> Optional['DifferentialFunction']:
        """
        Derivative of this expression with respect to ``variable``.

        Returns a new expression node (the zero identity if ``variable`` does
        not occur here), or None for reductions without a derivative rule.
        Over a shaped field a gradient that broadcasts to the variable is
        expanded to the variable's own shape.
        """
        grad = self.backprop(variable, self._factory.one())
        if grad is None or isinstance(grad, Zero):
            return grad
        if grad.has_shape and variable.has_shape and grad.shape != variable.shape:
            if broadcasts_to(grad.shape, variable.shape):
                grad = self._factory.expand_to(grad, variable.shape)
        return grad

    def backprop(
        self,
        variable: 'Variable',
        grad: 'DifferentialFunction',
    ) -> Optional['DifferentialFunction']:
        """
        Push the upstream gradient ``grad`` through this node.

        Parameters
        ----------
        variable : Variable
            Differentiation target
        grad : DifferentialFunction
            Gradient of the final expression with respect to this node's output

        Returns
        -------
        Expression for the gradient with respect to ``variable``
        """
        if not isinstance(variable, Variable):
            raise TypeError(f"Can only differentiate with respect to a Variable, got {variable!r}")
        if not self.depends_on(variable):
            return self._factory.zero()
        return self._backprop(variable, grad)

    @abstractmethod
    def _backprop(self, variable: 'Variable', grad: 'DifferentialFunction'):
        ...

    # -------------------------------------------------------------------------
    # Formatting
    # -------------------------------------------------------------------------

    def formula(self) -> str:
        return self.op_name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.formula()})"

    # -------------------------------------------------------------------------
    # Operators (equality stays identity-based; use factory.eq for values)
    # -------------------------------------------------------------------------

    def __add__(self, other):
        return self._factory.add(self, other)

    def __radd__(self, other):
        return self._factory.add(other, self)

    def __sub__(self, other):
        return self._factory.sub(self, other)

    def __rsub__(self, other):
        return self._factory.sub(other, self)

    def __mul__(self, other):
        return self._factory.mul(self, other)

    def __rmul__(self, other):
        return self._factory.mul(other, self)

    def __truediv__(self, other):
        return self._factory.div(self, other)

    def __rtruediv__(self, other):
        return self._factory.div(other, self)

    def __neg__(self):
        return self._factory.neg(self)

    def __pow__(self, other):
        return self._factory.pow(self, other)

    def __rpow__(self, other):
        return self._factory.pow(other, self)


# =============================================================================
# Leaves
# =============================================================================

class Constant(DifferentialFunction):
    """A fixed value. Its derivative is always the zero identity."""

    op_name = "constant"

    def __init__(self, factory, value: Any, op_name: Optional[str] = None):
        field = factory.field
        self._value = field.asvalue(value)
        shape = field.shape(self._value) if field.shaped else None
        super().__init__(factory, (), shape, op_name)

    def _evaluate(self, cache):
        return self._value

    def _backprop(self, variable, grad):
        return self._factory.zero()

    def formula(self) -> str:
        if self._shape:
            return f"const{list(self._shape)}"
        return repr(self.field.real(self._value))


class Zero(Constant):
    """Additive identity."""

    op_name = "zero"

    def __init__(self, factory):
        super().__init__(factory, factory.field.zero())

    def formula(self) -> str:
        return "0"


class One(Constant):
    """Multiplicative identity."""

    op_name = "one"

    def __init__(self, factory):
        super().__init__(factory, factory.field.one())

    def formula(self) -> str:
        return "1"


class Variable(DifferentialFunction):
    """
    Named leaf with a replaceable current value.

    Args:
        name: Display name
        value: Initial value
        pre_evaluate: Optional zero-argument callback run before every read
            of the value (e.g. to pull in freshly computed external values)
    """

    op_name = "variable"

    def __init__(
        self,
        factory,
        name: str,
        value: Any,
        pre_evaluate: Optional[Callable[[], None]] = None,
    ):
        field = factory.field
        self.name = name
        self._value = field.asvalue(value)
        self.pre_evaluate = pre_evaluate
        shape = field.shape(self._value) if field.shaped else None
        super().__init__(factory, (), shape)
        self._variables = frozenset((self,))

    def set_value(self, value: Any):
        """Replace the current value. The shape must not change."""
        value = self.field.asvalue(value)
        if self.field.shaped and self.field.shape(value) != self._shape:
            raise ValueError(
                f"Variable {self.name!r} has shape {self._shape}, got {self.field.shape(value)}"
            )
        self._value = value

    def _evaluate(self, cache):
        if self.pre_evaluate is not None:
            self.pre_evaluate()
        return self._value

    def _backprop(self, variable, grad):
        return grad

    def formula(self) -> str:
        return self.name


# =============================================================================
# Functions
# =============================================================================

class UnaryFunction(DifferentialFunction):
    """
    One-operand node.

    Args:
        factory: Owning factory
        op_name: Operation name
        arg: Operand node
        forward: ``value -> value`` closure
        rule: ``(node, variable, grad) -> expression`` derivative closure
        shape: Static output shape (None over unshaped fields)
        params: Extra parameters shown in the formula
    """

    def __init__(
        self,
        factory,
        op_name: str,
        arg: DifferentialFunction,
        forward: Callable[[Any], Any],
        rule: Rule,
        shape: Optional[Tuple[int, ...]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        self._forward = forward
        self._rule = rule
        self.params = dict(params or {})
        super().__init__(factory, (arg,), shape, op_name)

    def _evaluate(self, cache):
        return self._forward(self.arg.evaluate(cache))

    def _backprop(self, variable, grad):
        return self._rule(self, variable, grad)

    def formula(self) -> str:
        extra = "".join(f", {k}={v}" for k, v in self.params.items())
        return f"{self.op_name}({self.arg.formula()}{extra})"


class BinaryFunction(DifferentialFunction):
    """
    Two-operand node.

    ``infix`` renders the formula as ``(left <infix> right)`` instead of
    ``op(left, right)``.
    """

    def __init__(
        self,
        factory,
        op_name: str,
        left: DifferentialFunction,
        right: DifferentialFunction,
        forward: Callable[[Any, Any], Any],
        rule: Rule,
        shape: Optional[Tuple[int, ...]] = None,
        infix: Optional[str] = None,
    ):
        self._forward = forward
        self._rule = rule
        self.infix = infix
        super().__init__(factory, (left, right), shape, op_name)

    @property
    def larg(self) -> DifferentialFunction:
        return self._args[0]

    @property
    def rarg(self) -> DifferentialFunction:
        return self._args[1]

    def _evaluate(self, cache):
        return self._forward(self.larg.evaluate(cache), self.rarg.evaluate(cache))

    def _backprop(self, variable, grad):
        return self._rule(self, variable, grad)

    def formula(self) -> str:
        if self.infix:
            return f"({self.larg.formula()} {self.infix} {self.rarg.formula()})"
        return f"{self.op_name}({self.larg.formula()}, {self.rarg.formula()})"


class ReduceUnaryFunction(UnaryFunction):
    """
    Unary reduction over a set of axes.

    Keeps the pre-reduction shape so the derivative can redistribute the
    reduced gradient back across the original axes.
    """

    def __init__(
        self,
        factory,
        op_name: str,
        arg: DifferentialFunction,
        axes: Tuple[int, ...],
        forward: Callable[[Any], Any],
        rule: Rule,
        shape: Optional[Tuple[int, ...]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        self.axes = tuple(axes)
        self.input_shape = arg._shape
        params = dict(params or {})
        if self.axes:
            params = {'axes': list(self.axes), **params}
        super().__init__(factory, op_name, arg, forward, rule, shape, params)

    @property
    def reduced_count(self) -> int:
        """Number of operand elements collapsed into each output element."""
        if self.input_shape is None:
            raise InvalidOperandKindError(
                f"{self.op_name} over {type(self.field).__name__} has no input shape"
            )
        return reduced_count(self.input_shape, self.axes)
