"""Finite-difference and dense linear-algebra helpers.

Pure NumPy implementations for small to medium dense problems.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from .core import EPS, Array
from .errors import DivergentBehaviorError

SQRT_EPS = float(np.sqrt(EPS))

# Reciprocal condition estimate below which a matrix is treated as singular.
RCOND_MIN = 1e2 * EPS


def fd_step(xj: float) -> float:
    """Forward-difference step for a variable currently at ``xj``."""
    return SQRT_EPS * max(abs(xj), 1.0)


def approx_jacobian(
    fun: Callable[[Array], Array],
    x: Array,
    fx: Array,
    out: Optional[Array] = None,
) -> Array:
    """Forward-difference Jacobian of ``fun`` at ``x``.

    Parameters
    ----------
    fun:
        Vector function returning an M-element array.
    x:
        Point where the Jacobian is approximated. Restored on return.
    fx:
        Function value at ``x``.
    out:
        Optional M x N array that receives the result.

    Costs one function evaluation per variable.
    """
    m = fx.size
    n = x.size
    jac = np.empty((m, n), dtype=float) if out is None else out
    for j in range(n):
        temp = x[j]
        h = fd_step(temp)
        x[j] = temp + h
        try:
            f1 = np.asarray(fun(x), dtype=float)
        finally:
            x[j] = temp
        jac[:, j] = (f1 - fx) / h
    return jac


def approx_grad(fun: Callable[[Array], float], x: Array, fx: float) -> Array:
    """Forward-difference gradient of a scalar function at ``x``."""
    grad = np.empty(x.size, dtype=float)
    for j in range(x.size):
        temp = x[j]
        h = fd_step(temp)
        x[j] = temp + h
        try:
            f1 = float(fun(x))
        finally:
            x[j] = temp
        grad[j] = (f1 - fx) / h
    return grad


def max_abs(vec: Array) -> float:
    """Largest absolute entry, 0 for empty input."""
    vec = np.asarray(vec, dtype=float)
    if vec.size == 0:
        return 0.0
    return float(np.max(np.abs(vec)))


def solve_linear(mat: Array, vec: Array, origin: str = "solve_linear") -> Array:
    """Solve a dense square system, rejecting singular or ill-conditioned matrices.

    Raises
    ------
    DivergentBehaviorError
        If the matrix is singular, has non-finite entries, or its reciprocal
        condition number falls below ``RCOND_MIN``.
    """
    if not np.all(np.isfinite(mat)):
        raise DivergentBehaviorError("Matrix contains non-finite values.", origin)
    try:
        sol = np.linalg.solve(mat, vec)
    except np.linalg.LinAlgError as exc:
        raise DivergentBehaviorError("Singular matrix encountered.", origin) from exc
    cond = np.linalg.cond(mat)
    if not np.isfinite(cond) or 1.0 / cond < RCOND_MIN:
        raise DivergentBehaviorError(
            f"Ill-conditioned matrix (condition number {cond:.3e}).", origin
        )
    return sol


__all__ = [
    "RCOND_MIN",
    "SQRT_EPS",
    "approx_grad",
    "approx_jacobian",
    "fd_step",
    "max_abs",
    "solve_linear",
]
