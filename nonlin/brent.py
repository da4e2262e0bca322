"""Brent's bracketing root finder for scalar equations."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from .core import (
    EPS,
    ConvergenceCause,
    IterationBehavior,
    SolveResult,
    SolverConfig,
    ValuePair,
    convergence_message,
    prepare_behavior,
)
from .errors import (
    ConvergenceError,
    ErrorChannel,
    InvalidInputError,
    InvalidOperationError,
    NonlinError,
    handle_error,
)
from .functions import ScalarFunction
from .logging import get_logger, print_status

logger = get_logger(__name__)


def brent_method(
    fcn: ScalarFunction,
    limits: ValuePair,
    config: Optional[SolverConfig] = None,
    ib: Optional[IterationBehavior] = None,
    err: Optional[ErrorChannel] = None,
) -> SolveResult:
    """Find a root of ``fcn`` inside ``limits`` with Brent's method.

    Each step tries inverse quadratic interpolation (or the secant step when
    only two distinct points are known) and falls back to bisection when the
    interpolated step leaves the bracket or shrinks too slowly. The bracket
    always keeps a sign change.

    Parameters
    ----------
    fcn:
        Scalar function.
    limits:
        Bracket ``[x1, x2]`` with ``f(x1) * f(x2) <= 0``.
    config:
        Budget and tolerances. ``var_tol`` bounds the bracket width and
        ``fcn_tol`` the residual magnitude.
    ib:
        Optional iteration record populated in place. No Jacobian is used so
        ``jacobian_count`` stays zero.
    err:
        Optional error channel. Without one, errors propagate as exceptions.

    Example
    -------
    >>> import numpy as np
    >>> from nonlin import ScalarFunction, ValuePair, brent_method
    >>> res = brent_method(ScalarFunction(lambda x: np.sin(x) / x), ValuePair(1.5, 5.0))
    >>> round(res.x, 6)
    3.141593
    """
    config = config or SolverConfig()
    ib = prepare_behavior(ib)
    fallback = SolveResult(
        x=float(limits.x1), fun=math.nan, behavior=ib, success=False, message=""
    )
    try:
        return _brent(fcn, limits, config, ib)
    except NonlinError as exc:
        return handle_error(exc, err, fallback)


def _brent(
    fcn: ScalarFunction,
    limits: ValuePair,
    config: SolverConfig,
    ib: IterationBehavior,
) -> SolveResult:
    origin = "brent_method"
    if not isinstance(fcn, ScalarFunction):
        raise InvalidInputError(f"Expected ScalarFunction, got {type(fcn).__name__}.", origin)
    if not fcn.is_fcn_defined():
        raise InvalidOperationError("No function has been bound.", origin)
    config.validate()

    a, b = float(limits.x1), float(limits.x2)
    if a == b:
        raise InvalidInputError("Search limits must not coincide.", origin)
    fa = fcn.evaluate(a)
    fb = fcn.evaluate(b)
    ib.fcn_count += 2
    if fa != 0.0 and fb != 0.0 and (fa > 0) == (fb > 0):
        raise InvalidInputError(
            f"Search limits do not bracket a root: f({a})={fa}, f({b})={fb}.", origin
        )

    def done(x: float, fx: float, cause: ConvergenceCause) -> SolveResult:
        ib.mark(cause)
        return SolveResult(
            x=x, fun=fx, behavior=ib, success=True, message=convergence_message(cause)
        )

    if fa == 0.0:
        return done(a, fa, ConvergenceCause.FUNCTION)
    if fb == 0.0:
        return done(b, fb, ConvergenceCause.FUNCTION)

    c, fc = b, fb
    d = e = b - a
    while True:
        if (fb > 0) == (fc > 0):
            # keep the root between b and c
            c, fc = a, fa
            d = e = b - a
        if abs(fc) < abs(fb):
            a, b, c = b, c, b
            fa, fb, fc = fb, fc, fb

        tol = 2.0 * EPS * abs(b) + 0.5 * config.var_tol
        half = 0.5 * (c - b)
        if abs(fb) < config.fcn_tol:
            return done(b, fb, ConvergenceCause.FUNCTION)
        if abs(half) <= tol:
            return done(b, fb, ConvergenceCause.CHANGE)
        if ib.fcn_count >= config.max_evals:
            exc = ConvergenceError(
                f"Exceeded the allowed number of function evaluations ({config.max_evals}).",
                origin,
            )
            exc.result = SolveResult(x=b, fun=fb, behavior=ib, success=False, message="")
            raise exc

        if abs(e) >= tol and abs(fa) > abs(fb):
            s = fb / fa
            if a == c:
                p = 2.0 * half * s
                q = 1.0 - s
            else:
                q = fa / fc
                r = fb / fc
                p = s * (2.0 * half * q * (q - r) - (b - a) * (r - 1.0))
                q = (q - 1.0) * (r - 1.0) * (s - 1.0)
            if p > 0:
                q = -q
            p = abs(p)
            if 2.0 * p < min(3.0 * half * q - abs(tol * q), abs(e * q)):
                e, d = d, p / q
            else:
                d = e = half
        else:
            d = e = half

        a, fa = b, fb
        b += d if abs(d) > tol else math.copysign(tol, half)
        fb = fcn.evaluate(b)
        ib.fcn_count += 1
        ib.iter_count += 1
        if config.print_status:
            print_status(ib.iter_count, ib.fcn_count, ib.jacobian_count, abs(b - a), abs(fb))
        logger.debug("iter %d: x = %.15g, f = %.3e", ib.iter_count, b, fb)


@dataclass
class BrentSolver:
    """Brent root finder holding configuration between solves."""

    config: SolverConfig = field(default_factory=SolverConfig)

    def solve(
        self,
        fcn: ScalarFunction,
        limits: ValuePair,
        ib: Optional[IterationBehavior] = None,
        err: Optional[ErrorChannel] = None,
    ) -> SolveResult:
        return brent_method(fcn, limits, config=self.config, ib=ib, err=err)


__all__ = ["BrentSolver", "brent_method"]
