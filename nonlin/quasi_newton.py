"""Quasi-Newton methods: Broyden's method for equations and BFGS minimization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from .convergence import check_convergence, check_gradient
from .core import (
    EPS,
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
    DivergentBehaviorError,
    ErrorChannel,
    InvalidInputError,
    InvalidOperationError,
    LineSearchError,
    NonlinError,
    SpuriousConvergenceError,
    handle_error,
)
from .functions import (
    ObjectiveFunction,
    VectorFunction,
    as_objective,
    check_vector_problem,
    evaluate_gradient,
    evaluate_jacobian,
)
from .line_search import backtracking_armijo, residual_line_search
from .logging import get_logger, print_status
from .newton import accept_failed_search
from .utils import max_abs, solve_linear

logger = get_logger(__name__)


def broyden_update(jac: Array, dx: Array, df: Array) -> Array:
    """Broyden rank-one secant update.

    Returns ``J + ((df - J dx) dx^T) / (dx^T dx)``, which satisfies the
    secant equation ``J_new dx = df``. A zero step leaves ``J`` unchanged.
    """
    denom = float(dx @ dx)
    if denom == 0.0:
        return jac.copy()
    return jac + np.outer(df - jac @ dx, dx) / denom


def bfgs_update(inv_hessian: Array, s: Array, y: Array) -> Array:
    """BFGS update of an inverse Hessian approximation.

    The update is skipped (``inv_hessian`` returned unchanged) when the
    curvature ``y^T s`` is not safely positive, so positive definiteness is
    never lost.
    """
    ys = float(y @ s)
    if ys <= EPS * float(np.linalg.norm(y) * np.linalg.norm(s)):
        logger.debug("Skipping BFGS update: curvature y's = %.3e", ys)
        return inv_hessian
    rho = 1.0 / ys
    identity = np.eye(s.size)
    left = identity - rho * np.outer(s, y)
    return left @ inv_hessian @ left.T + rho * np.outer(s, s)


def broyden_method(
    fcn: VectorFunction,
    x0: Array,
    config: Optional[SolverConfig] = None,
    line_search: Optional[LineSearchConfig] = None,
    use_line_search: bool = True,
    ib: Optional[IterationBehavior] = None,
    err: Optional[ErrorChannel] = None,
    history: bool = False,
) -> SolveResult:
    """Broyden's quasi-Newton method for square systems.

    The Jacobian is evaluated once at ``x0`` and afterwards updated with
    :func:`broyden_update`. It is re-evaluated only when the approximation
    stops producing usable steps (singular, or the line search fails); a
    second failure right after such a restart ends the solve.

    Turning ``use_line_search`` off can help on poorly scaled problems,
    where backtracking on ``||F||^2 / 2`` rarely improves robustness.
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
        origin = "broyden_method"
        check_vector_problem(fcn, x, origin, square=True)
        config.validate()
        if use_line_search:
            line_search.validate()

        f = fcn.evaluate(x)
        ib.fcn_count += 1
        best = BestIterate(x.copy(), f.copy(), 0.5 * float(f @ f))
        if history:
            hist.append(x.copy())
        try:
            x, f, cause = _broyden_iterate(
                fcn, x, f, config, line_search, use_line_search, ib, best, hist, history
            )
        except NonlinError as exc:
            if exc.result is None:
                exc.result = best.result(ib, "", hist)
            raise
    except NonlinError as exc:
        return handle_error(exc, err, fallback)

    ib.mark(cause)
    return SolveResult(
        x=x, fun=f, behavior=ib, success=True, message=convergence_message(cause), history=hist
    )


def _broyden_iterate(
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
    origin = "broyden_method"
    work = np.empty(fcn.jacobian_workspace_size(True))

    def fresh_jacobian(point: Array, fv: Array) -> Array:
        jac, fe, je = evaluate_jacobian(fcn, point, fv, work)
        ib.fcn_count += fe
        ib.jacobian_count += je
        return jac

    cause = check_convergence(f, None, x, config)
    if cause is not None:
        return x, f, cause
    jac = fresh_jacobian(x, f)
    fresh = True

    while cause is None:
        if ib.fcn_count >= config.max_evals:
            raise ConvergenceError(
                f"Exceeded the allowed number of function evaluations ({config.max_evals}).",
                origin,
            )

        grad = jac.T @ f
        if check_gradient(grad, config):
            cause = ConvergenceCause.GRADIENT
            break

        try:
            dx = solve_linear(jac, -f, origin)
        except DivergentBehaviorError:
            if fresh:
                raise
            logger.debug("Singular Jacobian update; re-evaluating the Jacobian")
            jac = fresh_jacobian(x, f)
            fresh = True
            continue

        if use_line_search:
            try:
                res, f_new = residual_line_search(
                    fcn, x, f, grad, dx, ls_config, min_step=config.var_tol
                )
                ib.fcn_count += res.nfev
                x_new = res.x
            except LineSearchError as exc:
                ib.fcn_count += exc.best.nfev if exc.best is not None else ls_config.max_evals
                if not fresh:
                    logger.debug("Line search failed; re-evaluating the Jacobian")
                    jac = fresh_jacobian(x, f)
                    fresh = True
                    continue
                exc.origin = origin
                accepted = accept_failed_search(exc, f, grad, config)
                if accepted is None:
                    cause = ConvergenceCause.GRADIENT
                    break
                x_new, f_new = accepted
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

        jac = broyden_update(jac, x_new - x, f_new - f)
        fresh = False
        x, f = x_new, f_new
        best.update(x, f, 0.5 * float(f @ f))
        if history:
            hist.append(x.copy())

    return x, f, cause


def bfgs(
    fcn: Union[ObjectiveFunction, VectorFunction],
    x0: Array,
    config: Optional[SolverConfig] = None,
    line_search: Optional[LineSearchConfig] = None,
    ib: Optional[IterationBehavior] = None,
    err: Optional[ErrorChannel] = None,
    history: bool = False,
) -> SolveResult:
    """BFGS minimization with backtracking line search.

    Minimizes an :class:`ObjectiveFunction`, or ``||F||^2 / 2`` when given a
    :class:`VectorFunction`. The inverse Hessian starts at the identity.
    The function test applies to the decrease of the objective between
    iterates.

    Example
    -------
    >>> import numpy as np
    >>> from nonlin import ObjectiveFunction, bfgs
    >>> obj = ObjectiveFunction(lambda x: float((x[0] - 1) ** 2 + 2 * x[1] ** 2), nvar=2)
    >>> res = bfgs(obj, np.array([3.0, 1.0]))
    >>> bool(np.allclose(res.x, [1.0, 0.0], atol=1e-3))
    True
    """
    config = config or SolverConfig()
    line_search = line_search or LineSearchConfig()
    ib = prepare_behavior(ib)
    x = np.array(x0, dtype=float)
    hist: list[Array] = []
    fallback = SolveResult(x=x.copy(), fun=np.nan, behavior=ib, success=False, message="", history=hist)
    try:
        origin = "bfgs"
        obj = as_objective(fcn)
        if not obj.is_fcn_defined():
            raise InvalidOperationError("No function has been bound.", origin)
        if x.shape != (obj.variable_count,):
            raise InvalidInputError(
                f"Initial point has shape {x.shape}, expected ({obj.variable_count},).", origin
            )
        config.validate()
        line_search.validate()

        fx = obj.evaluate(x)
        ib.fcn_count += 1
        best = BestIterate(x.copy(), fx, fx)
        if history:
            hist.append(x.copy())
        try:
            x, fx, cause = _bfgs_iterate(obj, x, fx, config, line_search, ib, best, hist, history)
        except NonlinError as exc:
            if exc.result is None:
                exc.result = best.result(ib, "", hist)
            raise
    except NonlinError as exc:
        return handle_error(exc, err, fallback)

    ib.mark(cause)
    return SolveResult(
        x=x, fun=fx, behavior=ib, success=True, message=convergence_message(cause), history=hist
    )


def _bfgs_iterate(
    obj: ObjectiveFunction,
    x: Array,
    fx: float,
    config: SolverConfig,
    ls_config: LineSearchConfig,
    ib: IterationBehavior,
    best: BestIterate,
    hist: list[Array],
    history: bool,
) -> tuple[Array, float, ConvergenceCause]:
    origin = "bfgs"
    n = x.size
    inv_hessian = np.eye(n)

    grad, fe, ge = evaluate_gradient(obj, x, fx)
    ib.fcn_count += fe
    ib.jacobian_count += ge
    cause: Optional[ConvergenceCause] = None
    if check_gradient(grad, config):
        cause = ConvergenceCause.GRADIENT

    while cause is None:
        if ib.fcn_count >= config.max_evals:
            raise ConvergenceError(
                f"Exceeded the allowed number of function evaluations ({config.max_evals}).",
                origin,
            )

        direction = -inv_hessian @ grad
        if not float(grad @ direction) < 0:
            logger.debug("Lost descent direction; resetting inverse Hessian")
            inv_hessian = np.eye(n)
            direction = -grad

        try:
            res = backtracking_armijo(
                obj.evaluate, x, direction, grad, fx, ls_config, min_step=config.var_tol
            )
            ib.fcn_count += res.nfev
            x_new, f_new = res.x, res.fun
        except LineSearchError as exc:
            ib.fcn_count += exc.best.nfev if exc.best is not None else ls_config.max_evals
            if exc.best is not None and not exc.collapsed and exc.best.fun < fx:
                x_new, f_new = exc.best.x, exc.best.fun
            elif check_gradient(grad, config):
                cause = ConvergenceCause.GRADIENT
                break
            else:
                raise SpuriousConvergenceError(
                    "Line search stalled at a point that is not a minimum.", origin
                ) from exc

        grad_new, fe, ge = evaluate_gradient(obj, x_new, f_new)
        ib.fcn_count += fe
        ib.jacobian_count += ge
        ib.iter_count += 1

        cause = check_convergence(np.array([fx - f_new]), x, x_new, config, grad=grad_new)
        if config.print_status:
            print_status(ib.iter_count, ib.fcn_count, ib.jacobian_count, max_abs(x_new - x), abs(f_new))
        logger.debug("iter %d: f = %.6e", ib.iter_count, f_new)

        inv_hessian = bfgs_update(inv_hessian, x_new - x, grad_new - grad)
        x, fx, grad = x_new, f_new, grad_new
        best.update(x, fx, fx)
        if history:
            hist.append(x.copy())

    return x, fx, cause


@dataclass
class QuasiNewtonSolver:
    """Broyden solver object holding configuration between solves."""

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
        return broyden_method(
            fcn,
            x0,
            config=self.config,
            line_search=self.line_search,
            use_line_search=self.use_line_search,
            ib=ib,
            err=err,
        )


@dataclass
class BFGSSolver:
    """BFGS solver object holding configuration between solves."""

    config: SolverConfig = field(default_factory=SolverConfig)
    line_search: LineSearchConfig = field(default_factory=LineSearchConfig)

    def solve(
        self,
        fcn: Union[ObjectiveFunction, VectorFunction],
        x0: Array,
        ib: Optional[IterationBehavior] = None,
        err: Optional[ErrorChannel] = None,
    ) -> SolveResult:
        return bfgs(fcn, x0, config=self.config, line_search=self.line_search, ib=ib, err=err)


__all__ = [
    "BFGSSolver",
    "QuasiNewtonSolver",
    "bfgs",
    "bfgs_update",
    "broyden_method",
    "broyden_update",
]
