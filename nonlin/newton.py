"""Newton's method for square systems of nonlinear equations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .convergence import check_convergence, check_gradient
from .core import (
    Array,
    BestIterate,
    ConvergenceCause,
    IterationBehavior,
    LineSearchConfig,
    SolveResult,
    SolverConfig,
    convergence_message,
    prepare_behavior,
)
from .errors import (
    ConvergenceError,
    ErrorChannel,
    LineSearchError,
    NonlinError,
    SpuriousConvergenceError,
    handle_error,
)
from .functions import VectorFunction, check_vector_problem, evaluate_jacobian
from .line_search import residual_line_search
from .logging import get_logger, print_status
from .utils import max_abs, solve_linear

logger = get_logger(__name__)


def _half_sq_norm(f: Array) -> float:
    return 0.5 * float(f @ f)


def accept_failed_search(
    exc: LineSearchError,
    f: Array,
    grad: Array,
    config: SolverConfig,
) -> Optional[tuple[Array, Array]]:
    """Decide what to do when the line search found no acceptable step.

    Returns the best trial ``(x, f)`` when it still lowers ``||F||^2 / 2``
    and the search ran out of trials rather than collapsing, or None when the current point is a stationary point of that norm.

    Raises
    ------
    SpuriousConvergenceError
        If neither applies.
    """
    best = exc.best
    if (
        best is not None
        and not exc.collapsed
        and exc.best_fvec is not None
        and best.fun < _half_sq_norm(f)
    ):
        return best.x, exc.best_fvec
    if check_gradient(grad, config):
        return None
    raise SpuriousConvergenceError(
        "Line search stalled at a point that is not a solution.", exc.origin
    )


def newton_method(
    fcn: VectorFunction,
    x0: Array,
    config: Optional[SolverConfig] = None,
    line_search: Optional[LineSearchConfig] = None,
    use_line_search: bool = True,
    ib: Optional[IterationBehavior] = None,
    err: Optional[ErrorChannel] = None,
    history: bool = False,
) -> SolveResult:
    """Newton's method with optional backtracking line search.

    Each iteration evaluates the Jacobian ``J`` at the current point, solves
    ``J dx = -F`` and moves to ``x + t dx`` where ``t = 1`` without line
    search and the Armijo step on ``||F||^2 / 2`` otherwise.

    Parameters
    ----------
    fcn:
        Square system to solve.
    x0:
        Initial guess; not modified.
    config:
        Budgets and tolerances.
    line_search:
        Line-search parameters (used when ``use_line_search`` is True).
    use_line_search:
        Engage the backtracking line search.
    ib:
        Optional iteration record populated in place.
    err:
        Optional error channel. Without one, errors propagate as exceptions.
    history:
        Record every accepted iterate.

    Example
    -------
    >>> import numpy as np
    >>> from nonlin import VectorFunction, newton_method
    >>> fcn = VectorFunction(
    ...     lambda x: np.array([x[0] ** 2 + x[1] ** 2 - 34, x[0] ** 2 - 2 * x[1] ** 2 - 7]),
    ...     nfcn=2,
    ...     nvar=2,
    ... )
    >>> res = newton_method(fcn, np.array([1.0, 1.0]))
    >>> np.round(np.abs(res.x), 6)
    array([5., 3.])
    """
    config = config or SolverConfig()
    line_search = line_search or LineSearchConfig()
    ib = prepare_behavior(ib)
    x = np.array(x0, dtype=float)
    hist: list[Array] = []
    fallback = SolveResult(
        x=x.copy(),
        fun=np.full(getattr(fcn, "equation_count", 0), np.nan),
        behavior=ib,
        success=False,
        message="",
        history=hist,
    )
    try:
        return _newton(fcn, x, config, line_search, use_line_search, ib, hist, history)
    except NonlinError as exc:
        return handle_error(exc, err, fallback)


def _newton(
    fcn: VectorFunction,
    x: Array,
    config: SolverConfig,
    ls_config: LineSearchConfig,
    use_line_search: bool,
    ib: IterationBehavior,
    hist: list[Array],
    history: bool,
) -> SolveResult:
    origin = "newton_method"
    check_vector_problem(fcn, x, origin, square=True)
    config.validate()
    if use_line_search:
        ls_config.validate()

    f = fcn.evaluate(x)
    ib.fcn_count += 1
    best = BestIterate(x.copy(), f.copy(), _half_sq_norm(f))
    if history:
        hist.append(x.copy())

    try:
        x, f, cause = _iterate(fcn, x, f, config, ls_config, use_line_search, ib, best, hist, history)
    except NonlinError as exc:
        if exc.result is None:
            exc.result = best.result(ib, "", hist)
        raise

    ib.mark(cause)
    return SolveResult(
        x=x,
        fun=f,
        behavior=ib,
        success=True,
        message=convergence_message(cause),
        history=hist,
    )


def _iterate(
    fcn: VectorFunction,
    x: Array,
    f: Array,
    config: SolverConfig,
    ls_config: LineSearchConfig,
    use_line_search: bool,
    ib: IterationBehavior,
    best: BestIterate,
    hist: list[Array],
    history: bool,
) -> tuple[Array, Array, ConvergenceCause]:
    origin = "newton_method"
    work = np.empty(fcn.jacobian_workspace_size(True))

    cause = check_convergence(f, None, x, config)
    while cause is None:
        if ib.fcn_count >= config.max_evals:
            raise ConvergenceError(
                f"Exceeded the allowed number of function evaluations ({config.max_evals}).",
                origin,
            )

        jac, fe, je = evaluate_jacobian(fcn, x, f, work)
        ib.fcn_count += fe
        ib.jacobian_count += je
        grad = jac.T @ f
        if check_gradient(grad, config):
            cause = ConvergenceCause.GRADIENT
            break

        dx = solve_linear(jac, -f, origin)

        if use_line_search:
            try:
                res, f_new = residual_line_search(
                    fcn, x, f, grad, dx, ls_config, min_step=config.var_tol
                )
                ib.fcn_count += res.nfev
                x_new = res.x
            except LineSearchError as exc:
                ib.fcn_count += exc.best.nfev if exc.best is not None else ls_config.max_evals
                exc.origin = origin
                accepted = accept_failed_search(exc, f, grad, config)
                if accepted is None:
                    cause = ConvergenceCause.GRADIENT
                    break
                x_new, f_new = accepted
                logger.debug("Line search exhausted; taking best trial step")
        else:
            x_new = x + dx
            f_new = fcn.evaluate(x_new)
            ib.fcn_count += 1

        ib.iter_count += 1
        cause = check_convergence(f_new, x, x_new, config)
        if config.print_status:
            print_status(
                ib.iter_count,
                ib.fcn_count,
                ib.jacobian_count,
                max_abs(x_new - x),
                max_abs(f_new),
            )
        logger.debug("iter %d: max|f| = %.3e", ib.iter_count, max_abs(f_new))
        x, f = x_new, f_new
        best.update(x, f, _half_sq_norm(f))
        if history:
            hist.append(x.copy())

    return x, f, cause


@dataclass
class NewtonSolver:
    """Newton solver object holding configuration between solves."""

    config: SolverConfig = field(default_factory=SolverConfig)
    line_search: LineSearchConfig = field(default_factory=LineSearchConfig)
    use_line_search: bool = True

    def solve(
        self,
        fcn: VectorFunction,
        x0: Array,
        ib: Optional[IterationBehavior] = None,
        err: Optional[ErrorChannel] = None,
    ) -> SolveResult:
        return newton_method(
            fcn,
            x0,
            config=self.config,
            line_search=self.line_search,
            use_line_search=self.use_line_search,
            ib=ib,
            err=err,
        )


__all__ = ["NewtonSolver", "accept_failed_search", "newton_method"]
