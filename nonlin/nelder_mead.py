"""Nelder-Mead downhill simplex minimization.

Derivative-free: only objective values are used. The simplex holds ``N + 1``
vertices sorted by objective value at the start of each iteration; the worst
vertex is replaced by a reflected, expanded or contracted point, or the
whole simplex shrinks toward the best vertex.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from .core import (
    Array,
    ConvergenceCause,
    IterationBehavior,
    SolveResult,
    SolverConfig,
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
from .functions import ObjectiveFunction, VectorFunction, as_objective
from .logging import get_logger, print_status

logger = get_logger(__name__)


def initial_simplex(x0: Array, size: float = 1.0) -> Array:
    """Vertices ``x0`` and ``x0 + size * e_i`` as rows of an ``(N + 1, N)`` array."""
    x0 = np.asarray(x0, dtype=float).reshape(-1)
    if not size > 0:
        raise InvalidInputError("Simplex size must be positive.", "initial_simplex")
    simplex = np.tile(x0, (x0.size + 1, 1))
    simplex[1:] += size * np.eye(x0.size)
    return simplex


def _diameter(simplex: Array) -> float:
    return float(np.max(np.abs(simplex[1:] - simplex[0])))


def nelder_mead(
    fcn: Union[ObjectiveFunction, VectorFunction],
    x0: Array,
    config: Optional[SolverConfig] = None,
    initial_size: float = 1.0,
    reflection: float = 1.0,
    expansion: float = 2.0,
    contraction: float = 0.5,
    shrink: float = 0.5,
    ib: Optional[IterationBehavior] = None,
    err: Optional[ErrorChannel] = None,
    history: bool = False,
) -> SolveResult:
    """Minimize ``fcn`` with the Nelder-Mead simplex method.

    Convergence is reported on the function test when the spread of objective
    values over the simplex drops below ``fcn_tol``, and on the change test
    when the largest coordinate distance from the best vertex to any other
    drops below ``var_tol``.

    Parameters
    ----------
    fcn:
        Scalar objective, or a :class:`VectorFunction` whose ``||F||^2 / 2``
        is minimized.
    x0:
        Initial guess; not modified.
    config:
        Budget and tolerances. ``grad_tol`` is unused.
    initial_size:
        Edge length of the starting simplex.
    reflection, expansion, contraction, shrink:
        Simplex transformation coefficients.
    ib:
        Optional iteration record populated in place.
    err:
        Optional error channel. Without one, errors propagate as exceptions.
    history:
        Record the best vertex after every iteration.
    """
    config = config or SolverConfig()
    ib = prepare_behavior(ib)
    x = np.array(x0, dtype=float)
    hist: list[Array] = []
    fallback = SolveResult(x=x.copy(), fun=np.nan, behavior=ib, success=False, message="", history=hist)
    try:
        origin = "nelder_mead"
        obj = as_objective(fcn)
        if not obj.is_fcn_defined():
            raise InvalidOperationError("No function has been bound.", origin)
        if x.shape != (obj.variable_count,):
            raise InvalidInputError(
                f"Initial point has shape {x.shape}, expected ({obj.variable_count},).", origin
            )
        config.validate()
        if not (reflection > 0 and expansion > 1 and 0 < contraction < 1 and 0 < shrink < 1):
            raise InvalidInputError(
                "Require reflection > 0, expansion > 1, and contraction and shrink in (0, 1).",
                origin,
            )
        simplex = initial_simplex(x, initial_size)
        return _iterate(
            obj, simplex, config, (reflection, expansion, contraction, shrink), ib, hist, history
        )
    except NonlinError as exc:
        return handle_error(exc, err, fallback)


def _iterate(
    obj: ObjectiveFunction,
    simplex: Array,
    config: SolverConfig,
    coefficients: tuple[float, float, float, float],
    ib: IterationBehavior,
    hist: list[Array],
    history: bool,
) -> SolveResult:
    origin = "nelder_mead"
    rho, chi, gamma, sigma = coefficients
    n = simplex.shape[1]

    def evaluate(point: Array) -> float:
        ib.fcn_count += 1
        return obj.evaluate(point)

    fvals = np.array([evaluate(v) for v in simplex])
    if history:
        hist.append(simplex[int(np.argmin(fvals))].copy())

    while True:
        order = np.argsort(fvals, kind="stable")
        simplex, fvals = simplex[order], fvals[order]

        cause = None
        if fvals[-1] - fvals[0] < config.fcn_tol:
            cause = ConvergenceCause.FUNCTION
        elif _diameter(simplex) < config.var_tol:
            cause = ConvergenceCause.CHANGE
        if cause is not None:
            ib.mark(cause)
            return SolveResult(
                x=simplex[0].copy(),
                fun=float(fvals[0]),
                behavior=ib,
                success=True,
                message=convergence_message(cause),
                history=hist,
            )
        if ib.fcn_count >= config.max_evals:
            exc = ConvergenceError(
                f"Exceeded the allowed number of function evaluations ({config.max_evals}).",
                origin,
            )
            exc.result = SolveResult(
                x=simplex[0].copy(), fun=float(fvals[0]), behavior=ib, success=False,
                message="", history=hist,
            )
            raise exc

        centroid = simplex[:-1].mean(axis=0)
        worst = simplex[-1]
        xr = centroid + rho * (centroid - worst)
        fr = evaluate(xr)
        step = "reflect"

        if fr < fvals[0]:
            xe = centroid + chi * (xr - centroid)
            fe = evaluate(xe)
            if fe < fr:
                simplex[-1], fvals[-1] = xe, fe
                step = "expand"
            else:
                simplex[-1], fvals[-1] = xr, fr
        elif fr < fvals[-2]:
            simplex[-1], fvals[-1] = xr, fr
        else:
            if fr < fvals[-1]:
                xc = centroid + gamma * (xr - centroid)
                fc = evaluate(xc)
                accept = fc <= fr
            else:
                xc = centroid + gamma * (worst - centroid)
                fc = evaluate(xc)
                accept = fc < fvals[-1]
            if accept:
                simplex[-1], fvals[-1] = xc, fc
                step = "contract"
            else:
                best = simplex[0]
                for i in range(1, n + 1):
                    simplex[i] = best + sigma * (simplex[i] - best)
                    fvals[i] = evaluate(simplex[i])
                step = "shrink"

        ib.iter_count += 1
        k = int(np.argmin(fvals))
        if config.print_status:
            print_status(ib.iter_count, ib.fcn_count, ib.jacobian_count, _diameter(simplex), float(fvals[k]))
        logger.debug("iter %d (%s): f_best = %.6e", ib.iter_count, step, fvals[k])
        if history:
            hist.append(simplex[k].copy())


@dataclass
class NelderMeadSolver:
    """Nelder-Mead minimizer holding configuration between solves."""

    config: SolverConfig = field(default_factory=SolverConfig)
    initial_size: float = 1.0
    reflection: float = 1.0
    expansion: float = 2.0
    contraction: float = 0.5
    shrink: float = 0.5

    def solve(
        self,
        fcn: Union[ObjectiveFunction, VectorFunction],
        x0: Array,
        ib: Optional[IterationBehavior] = None,
        err: Optional[ErrorChannel] = None,
    ) -> SolveResult:
        return nelder_mead(
            fcn,
            x0,
            config=self.config,
            initial_size=self.initial_size,
            reflection=self.reflection,
            expansion=self.expansion,
            contraction=self.contraction,
            shrink=self.shrink,
            ib=ib,
            err=err,
        )


__all__ = ["NelderMeadSolver", "initial_simplex", "nelder_mead"]
