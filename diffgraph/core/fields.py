"""
diffgraph Fields
================

A field is the numeric operand provider the expression engine is generic over.
Nodes never touch raw numbers themselves: every forward computation is a call
like ``field.sin(value)`` or ``field.sum(value, axes)``.

Two fields ship with the package:

    ArrayField  - numpy (or cupy) arrays; carries shape metadata
    RealField   - plain Python floats; shape-dependent primitives are refused
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Sequence, Tuple
import numpy as np
from scipy import special

from ..config import get_settings
from ..errors import InvalidOperandKindError
from . import array_api


class Field(ABC):
    """
    Abstract numeric operand provider.

    Elementwise primitives are written once against the array-module API
    (``xp.sin``, ``xp.where``, ...); subclasses decide how raw values are
    converted in and out and whether shape-dependent primitives exist.
    """

    #: Whether values of this field carry shape metadata.
    shaped: bool = False

    def __init__(self, dtype: Any = np.float64):
        self.dtype = np.dtype(dtype)

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    @abstractmethod
    def asvalue(self, value: Any) -> Any:
        """Convert ``value`` into this field's operand type."""
        ...

    @abstractmethod
    def module(self, value: Any):
        """Array module (numpy/cupy) used to compute on ``value``."""
        ...

    @abstractmethod
    def _out(self, result: Any) -> Any:
        """Wrap a raw computation result as an operand."""
        ...

    @abstractmethod
    def shape(self, value: Any) -> Tuple[int, ...]:
        """Shape of ``value``."""
        ...

    @abstractmethod
    def real(self, value: Any) -> float:
        """Single-element value as a Python float."""
        ...

    def zero(self) -> Any:
        return self.asvalue(0.0)

    def one(self) -> Any:
        return self.asvalue(1.0)

    def _require_shape(self, what: str):
        if not self.shaped:
            raise InvalidOperandKindError(
                f"{what} needs shape metadata, which {type(self).__name__} operands do not carry"
            )

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def add(self, x, y):
        return self._out(self.module(x).add(x, y))

    def sub(self, x, y):
        return self._out(self.module(x).subtract(x, y))

    def mul(self, x, y):
        return self._out(self.module(x).multiply(x, y))

    def div(self, x, y):
        return self._out(self.module(x).divide(x, y))

    def neg(self, x):
        return self._out(self.module(x).negative(x))

    def inverse(self, x):
        return self._out(self.module(x).reciprocal(x))

    def pow(self, x, y):
        return self._out(self.module(x).power(x, y))

    # -------------------------------------------------------------------------
    # Elementwise math
    # -------------------------------------------------------------------------

    def abs(self, x):
        return self._out(self.module(x).abs(x))

    def sin(self, x):
        return self._out(self.module(x).sin(x))

    def cos(self, x):
        return self._out(self.module(x).cos(x))

    def tan(self, x):
        return self._out(self.module(x).tan(x))

    def asin(self, x):
        return self._out(self.module(x).arcsin(x))

    def acos(self, x):
        return self._out(self.module(x).arccos(x))

    def atan(self, x):
        return self._out(self.module(x).arctan(x))

    def sinh(self, x):
        return self._out(self.module(x).sinh(x))

    def cosh(self, x):
        return self._out(self.module(x).cosh(x))

    def tanh(self, x):
        return self._out(self.module(x).tanh(x))

    def asinh(self, x):
        return self._out(self.module(x).arcsinh(x))

    def acosh(self, x):
        return self._out(self.module(x).arccosh(x))

    def atanh(self, x):
        return self._out(self.module(x).arctanh(x))

    def exp(self, x):
        return self._out(self.module(x).exp(x))

    def log(self, x):
        return self._out(self.module(x).log(x))

    def sqrt(self, x):
        return self._out(self.module(x).sqrt(x))

    def square(self, x):
        return self._out(self.module(x).square(x))

    def sign(self, x):
        return self._out(self.module(x).sign(x))

    def floor(self, x):
        return self._out(self.module(x).floor(x))

    def step(self, x):
        """Heaviside step: 1 where x > 0, else 0."""
        return self._indicator(self.module(x).greater(x, 0))

    # -------------------------------------------------------------------------
    # Activations
    # -------------------------------------------------------------------------

    def relu(self, x):
        return self._out(self.module(x).maximum(x, 0))

    def sigmoid(self, x):
        xp = self.module(x)
        if xp is np:
            return self._out(special.expit(x))
        return self._out(1.0 / (1.0 + xp.exp(-x)))

    def sigmoid_derivative(self, x):
        s = self.sigmoid(x)
        return self._out(s * (1.0 - s))

    def softmax(self, x):
        """Softmax over the last axis."""
        xp = self.module(x)
        x = xp.asarray(x)
        if x.ndim == 0:
            return self._out(xp.ones_like(x))
        if xp is np:
            return self._out(special.softmax(x, axis=-1))
        e = xp.exp(x - xp.max(x, axis=-1, keepdims=True))
        return self._out(e / xp.sum(e, axis=-1, keepdims=True))

    def hard_tanh(self, x):
        return self._out(self.module(x).clip(x, -1.0, 1.0))

    def hard_tanh_derivative(self, x):
        xp = self.module(x)
        return self._indicator(xp.logical_and(xp.greater(x, -1.0), xp.less(x, 1.0)))

    def softsign(self, x):
        xp = self.module(x)
        return self._out(x / (1.0 + xp.abs(x)))

    def softsign_derivative(self, x):
        xp = self.module(x)
        return self._out(1.0 / xp.square(1.0 + xp.abs(x)))

    def softplus(self, x):
        return self._out(self.module(x).logaddexp(0.0, x))

    def elu(self, x):
        xp = self.module(x)
        return self._out(xp.where(xp.greater(x, 0), x, xp.expm1(x)))

    def elu_derivative(self, x):
        xp = self.module(x)
        return self._out(xp.where(xp.greater(x, 0), 1.0, xp.exp(x)))

    def leaky_relu(self, x, cutoff: float):
        xp = self.module(x)
        return self._out(xp.where(xp.greater(x, 0), x, cutoff * x))

    def leaky_relu_derivative(self, x, cutoff: float):
        xp = self.module(x)
        return self._out(xp.where(xp.greater(x, 0), 1.0, cutoff))

    # -------------------------------------------------------------------------
    # Logical (0/1 indicators)
    # -------------------------------------------------------------------------

    def _indicator(self, mask):
        return self._out(self.module(mask).asarray(mask).astype(self.dtype))

    def or_(self, x, y):
        xp = self.module(x)
        return self._indicator(xp.logical_or(xp.not_equal(x, 0), xp.not_equal(y, 0)))

    def eq(self, x, y):
        return self._indicator(self.module(x).equal(x, y))

    def neq(self, x, y):
        return self._indicator(self.module(x).not_equal(x, y))

    # -------------------------------------------------------------------------
    # Reductions (empty axes = whole array)
    # -------------------------------------------------------------------------

    def _axis(self, axes: Sequence[int]):
        if axes:
            self._require_shape("Axis reduction")
            return tuple(axes)
        return None

    def sum(self, x, axes: Sequence[int] = ()):
        return self._out(self.module(x).sum(x, axis=self._axis(axes)))

    def prod(self, x, axes: Sequence[int] = ()):
        return self._out(self.module(x).prod(x, axis=self._axis(axes)))

    def mean(self, x, axes: Sequence[int] = ()):
        return self._out(self.module(x).mean(x, axis=self._axis(axes)))

    def max(self, x, axes: Sequence[int] = ()):
        return self._out(self.module(x).max(x, axis=self._axis(axes)))

    def min(self, x, axes: Sequence[int] = ()):
        return self._out(self.module(x).min(x, axis=self._axis(axes)))

    def std(self, x, axes: Sequence[int] = (), bias_corrected: bool = False):
        ddof = 1 if bias_corrected else 0
        return self._out(self.module(x).std(x, axis=self._axis(axes), ddof=ddof))

    def variance(self, x, axes: Sequence[int] = (), bias_corrected: bool = False):
        ddof = 1 if bias_corrected else 0
        return self._out(self.module(x).var(x, axis=self._axis(axes), ddof=ddof))

    def norm1(self, x, axes: Sequence[int] = ()):
        xp = self.module(x)
        return self._out(xp.sum(xp.abs(x), axis=self._axis(axes)))

    def norm2(self, x, axes: Sequence[int] = ()):
        xp = self.module(x)
        return self._out(xp.sqrt(xp.sum(xp.square(x), axis=self._axis(axes))))

    def normmax(self, x, axes: Sequence[int] = ()):
        xp = self.module(x)
        return self._out(xp.max(xp.abs(x), axis=self._axis(axes)))

    # -------------------------------------------------------------------------
    # Shape operations
    # -------------------------------------------------------------------------

    def tile(self, x, reps: Sequence[int]):
        self._require_shape("tile")
        return self._out(self.module(x).tile(x, tuple(reps)))

    def value_array_of(self, x, shape: Sequence[int]):
        """Array of ``shape`` filled with the single value of ``x``."""
        self._require_shape("value_array_of")
        xp = self.module(x)
        x = xp.asarray(x)
        if x.size != 1:
            raise ValueError(f"Fill value must have exactly one element, got shape {x.shape}")
        return self._out(xp.full(tuple(shape), x.reshape(()), dtype=self.dtype))

    def broadcast(self, x, shape: Sequence[int]):
        """
        Broadcast ``x`` to ``shape``.

        A value whose element count already matches ``shape`` but has fewer
        dimensions is reshaped instead: this restores the length-1 axes a
        reduction removed (keepdims).
        """
        self._require_shape("broadcast")
        xp = self.module(x)
        x = xp.asarray(x)
        shape = tuple(int(d) for d in shape)
        if x.shape != shape and x.ndim < len(shape) and x.size == int(np.prod(shape, dtype=np.int64)):
            return self._out(xp.reshape(x, shape))
        return self._out(xp.broadcast_to(x, shape).copy())

    def repeat(self, x, repeats: int, axis: int):
        self._require_shape("repeat")
        return self._out(self.module(x).repeat(x, int(repeats), axis=axis))

    def reshape(self, x, shape: Sequence[int]):
        self._require_shape("reshape")
        return self._out(self.module(x).reshape(x, tuple(shape)))

    def transpose(self, x):
        self._require_shape("transpose")
        return self._out(self.module(x).transpose(x))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dtype={self.dtype.name})"


class ArrayField(Field):
    """
    Field over numpy (CPU) or cupy (CUDA) arrays.

    Args:
        dtype: Floating dtype of every operand (default: settings.dtype)
        device: 'cpu' or 'cuda[:N]' (default: settings.device)
    """

    shaped = True

    def __init__(self, dtype: Any = None, device: str = None):
        settings = get_settings()
        super().__init__(dtype if dtype is not None else settings.dtype)
        self.device = array_api.check_device(device if device is not None else settings.device)

    def asvalue(self, value: Any) -> Any:
        arr = array_api.to_device(value, self.device)
        return arr.astype(self.dtype, copy=False)

    def module(self, value: Any):
        return array_api.get_array_module(value)

    def _out(self, result: Any) -> Any:
        xp = array_api.get_array_module(result)
        return xp.asarray(result, dtype=self.dtype)

    def shape(self, value: Any) -> Tuple[int, ...]:
        return tuple(int(d) for d in value.shape)

    def real(self, value: Any) -> float:
        arr = array_api.to_numpy(value)
        if arr.size != 1:
            raise ValueError(f"real() needs a single element, got shape {arr.shape}")
        return float(arr.reshape(-1)[0])

    def __repr__(self) -> str:
        return f"ArrayField(dtype={self.dtype.name}, device={self.device!r})"


class RealField(Field):
    """Field over plain Python floats. Carries no shape metadata."""

    shaped = False

    def __init__(self):
        super().__init__(np.float64)

    def asvalue(self, value: Any) -> float:
        arr = np.asarray(array_api.to_numpy(value))
        if arr.size != 1:
            raise ValueError(f"RealField operands are scalars, got shape {arr.shape}")
        return float(arr.reshape(-1)[0])

    def module(self, value: Any):
        return np

    def _out(self, result: Any) -> float:
        return float(result)

    def shape(self, value: Any) -> Tuple[int, ...]:
        self._require_shape("Shape query")

    def real(self, value: Any) -> float:
        return float(value)
