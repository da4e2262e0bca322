"""Convergence policy shared by every iterative solver.

The tests run in a fixed order and stop at the first that passes:

1. function: ``max|f_i| < fcn_tol``
2. change: ``max|x_new - x_old| < var_tol``
3. gradient: ``max|g_j| < grad_tol`` where ``g`` is the gradient of
   ``||f||^2 / 2`` (or of the objective, for minimizers)
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .core import Array, ConvergenceCause, SolverConfig
from .utils import max_abs


def check_convergence(
    fvec: Array,
    x_old: Optional[Array],
    x_new: Array,
    config: SolverConfig,
    grad: Optional[Array] = None,
    reduction: Optional[Tuple[float, float]] = None,
) -> Optional[ConvergenceCause]:
    """Return the cause of convergence, or None if no test passes.

    Parameters
    ----------
    fvec:
        Residuals at the current point.
    x_old, x_new:
        Previous and current iterate. The change test is skipped when
        ``x_old`` is None.
    config:
        Tolerances.
    grad:
        Gradient at the current point; the gradient test is skipped when None.
    reduction:
        Optional ``(actual, predicted)`` relative reductions of ``||f||^2``
        for the last trial step. When both are at most ``fcn_tol`` the
        function test passes even for a nonzero residual.
    """
    if max_abs(fvec) < config.fcn_tol:
        return ConvergenceCause.FUNCTION
    if reduction is not None:
        actual, predicted = reduction
        if abs(actual) <= config.fcn_tol and predicted <= config.fcn_tol:
            return ConvergenceCause.FUNCTION
    if x_old is not None and max_abs(np.asarray(x_new) - np.asarray(x_old)) < config.var_tol:
        return ConvergenceCause.CHANGE
    if grad is not None and check_gradient(grad, config):
        return ConvergenceCause.GRADIENT
    return None


def check_gradient(grad: Array, config: SolverConfig) -> bool:
    return max_abs(grad) < config.grad_tol


def relative_reductions(cost: float, trial_cost: float, predicted_cost: float) -> Tuple[float, float]:
    """Actual and predicted relative reductions of a sum of squares.

    ``cost`` is the current ``||f||^2``, ``trial_cost`` the value at the
    trial point and ``predicted_cost`` the value the local linear model
    predicts there.
    """
    if cost <= 0.0:
        return 0.0, 0.0
    actual = 1.0 - trial_cost / cost if trial_cost < 10.0 * cost else -1.0
    predicted = 1.0 - predicted_cost / cost
    return actual, predicted


__all__ = ["check_convergence", "check_gradient", "relative_reductions"]
