"""
diffgraph Gradient Checking
===========================

Finite-difference verification of symbolic derivatives.

Usage:
    from diffgraph import check_gradients
    check_gradients(f.sum(f.tanh(x)), x)
"""

from __future__ import annotations
import logging
from typing import Optional
import numpy as np

from .config import get_settings
from .core.array_api import to_numpy
from .functions.nodes import DifferentialFunction, Variable

logger = logging.getLogger(__name__)


def _total(expr: DifferentialFunction) -> float:
    return float(np.sum(to_numpy(expr.value)))


def numerical_gradient(
    expr: DifferentialFunction,
    variable: Variable,
    eps: Optional[float] = None,
) -> np.ndarray:
    """
    Central-difference gradient of ``sum(expr)`` with respect to ``variable``.

    Parameters
    ----------
    expr : DifferentialFunction
        Expression to differentiate
    variable : Variable
        Variable perturbed element by element; its value is restored afterwards
    eps : Optional[float]
        Step size (default: settings.fd_eps)

    Returns
    -------
    Array with the variable's shape (0-d over an unshaped field)
    """
    if eps is None:
        eps = get_settings().fd_eps

    original = variable.evaluate()
    base = np.array(to_numpy(original), dtype=np.float64)
    grad = np.zeros_like(base)

    try:
        for j in range(base.size):
            perturbed = base.copy()
            perturbed.flat[j] += eps
            variable.set_value(perturbed)
            f_plus = _total(expr)

            perturbed.flat[j] = base.flat[j] - eps
            variable.set_value(perturbed)
            f_minus = _total(expr)

            grad.flat[j] = (f_plus - f_minus) / (2 * eps)
    finally:
        variable.set_value(original)

    return grad


def check_gradients(
    expr: DifferentialFunction,
    variable: Variable,
    eps: Optional[float] = None,
    atol: Optional[float] = None,
    rtol: Optional[float] = None,
) -> bool:
    """
    Verify ``expr.diff(variable)`` against finite differences.

    Parameters
    ----------
    expr : DifferentialFunction
        Expression to check
    variable : Variable
        Differentiation target
    eps : float
        Finite difference step size
    atol, rtol : float
        Absolute and relative tolerance (defaults from settings)

    Returns
    -------
    True if gradients match, raises AssertionError otherwise
    """
    settings = get_settings()
    atol = settings.fd_atol if atol is None else atol
    rtol = settings.fd_rtol if rtol is None else rtol

    derivative = expr.diff(variable)
    if derivative is None:
        raise AssertionError(f"{expr.op_name} has no derivative rule")

    numerical = numerical_gradient(expr, variable, eps)
    analytical = np.broadcast_to(
        np.asarray(to_numpy(derivative.value), dtype=np.float64), numerical.shape
    )

    if not np.allclose(analytical, numerical, atol=atol, rtol=rtol):
        diff = np.abs(analytical - numerical)
        worst = np.unravel_index(int(np.argmax(diff)), diff.shape) if diff.ndim else ()
        logger.debug("gradient mismatch for %s:\n analytical=%s\n numerical=%s",
                     variable.name, analytical, numerical)
        raise AssertionError(
            f"Gradient check failed for {variable.name!r} at index {worst}: "
            f"analytical={analytical[worst]!r}, numerical={numerical[worst]!r}"
        )

    return True
