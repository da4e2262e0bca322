"""Levenberg-Marquardt nonlinear least squares.

Minimizes ``||F(x)||^2`` for ``M >= N`` by solving the damped normal
equations ``(J^T J + lambda * diag(J^T J)) dx = -J^T F``. The damping is
raised after a rejected trial step and lowered after an accepted one; step
acceptance replaces a line search.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .convergence import check_convergence, check_gradient, relative_reductions
from .core import (
    EPS,
    Array,
    BestIterate,
    ConvergenceCause,
    IterationBehavior,
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
    NonlinError,
    ToleranceTooSmallError,
    handle_error,
)
from .functions import VectorFunction, check_vector_problem, evaluate_jacobian
from .logging import get_logger, print_status
from .utils import max_abs, solve_linear

logger = get_logger(__name__)


@dataclass(frozen=True)
class DampingSchedule:
    """Levenberg-Marquardt damping parameters.

    Attributes:
        initial: Starting damping factor.
        increase: Multiplier applied after a rejected step.
        decrease: Multiplier applied after an accepted step.
        max_retries: Consecutive singular solves tolerated, each followed by
            an increase of the damping, before giving up.
    """

    initial: float = 1e-3
    increase: float = 10.0
    decrease: float = 0.1
    max_retries: int = 10

    def validate(self) -> None:
        if not self.initial > 0:
            raise InvalidInputError("initial damping must be positive", "DampingSchedule")
        if not self.increase > 1:
            raise InvalidInputError("damping increase must exceed 1", "DampingSchedule")
        if not (0 < self.decrease < 1):
            raise InvalidInputError("damping decrease must lie in (0, 1)", "DampingSchedule")
        if self.max_retries < 1:
            raise InvalidInputError("max_retries must be at least 1", "DampingSchedule")


def levenberg_marquardt(
    fcn: VectorFunction,
    x0: Array,
    config: Optional[SolverConfig] = None,
    damping: Optional[DampingSchedule] = None,
    ib: Optional[IterationBehavior] = None,
    err: Optional[ErrorChannel] = None,
    history: bool = False,
) -> SolveResult:
    """Solve ``min ||F(x)||^2`` with the Levenberg-Marquardt method.

    Besides the shared convergence tests, the function test also passes when
    both the actual and the predicted relative reduction of ``||F||^2`` for
    a trial step are at most ``fcn_tol``, so fits with a nonzero residual
    terminate.

    Parameters
    ----------
    fcn:
        Residual function with at least as many equations as unknowns.
    x0:
        Initial guess; not modified.
    config:
        Budgets and tolerances.
    damping:
        Damping schedule.
    ib:
        Optional iteration record populated in place.
    err:
        Optional error channel. Without one, errors propagate as exceptions.
    history:
        Record every accepted iterate. The residual norm is strictly
        decreasing along the recorded points.
    """
    config = config or SolverConfig()
    damping = damping or DampingSchedule()
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
        origin = "levenberg_marquardt"
        check_vector_problem(fcn, x, origin)
        if fcn.equation_count < fcn.variable_count:
            raise InvalidInputError(
                f"Least squares requires at least as many equations ({fcn.equation_count}) "
                f"as unknowns ({fcn.variable_count}).",
                origin,
            )
        config.validate()
        damping.validate()

        f = fcn.evaluate(x)
        ib.fcn_count += 1
        best = BestIterate(x.copy(), f.copy(), float(f @ f))
        if history:
            hist.append(x.copy())
        try:
            x, f, cause = _lm_iterate(fcn, x, f, config, damping, ib, best, hist, history)
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


def _lm_iterate(
    fcn: VectorFunction,
    x: Array,
    f: Array,
    config: SolverConfig,
    damping: DampingSchedule,
    ib: IterationBehavior,
    best: BestIterate,
    hist: list[Array],
    history: bool,
) -> tuple[Array, Array, ConvergenceCause]:
    origin = "levenberg_marquardt"
    work = np.empty(fcn.jacobian_workspace_size(True))
    cost = float(f @ f)
    lam = damping.initial

    def over_budget() -> ConvergenceError:
        return ConvergenceError(
            f"Exceeded the allowed number of function evaluations ({config.max_evals}).",
            origin,
        )

    cause = check_convergence(f, None, x, config)
    while cause is None:
        if ib.fcn_count >= config.max_evals:
            raise over_budget()

        jac, fe, je = evaluate_jacobian(fcn, x, f, work)
        ib.fcn_count += fe
        ib.jacobian_count += je
        grad = jac.T @ f
        if check_gradient(grad, config):
            cause = ConvergenceCause.GRADIENT
            break
        normal = jac.T @ jac
        scale = np.diag(normal).copy()
        scale[scale <= 0.0] = 1.0

        while True:
            dx = None
            for _ in range(damping.max_retries):
                try:
                    dx = solve_linear(normal + lam * np.diag(scale), -grad, origin)
                    break
                except DivergentBehaviorError:
                    lam *= damping.increase
                    logger.debug("Singular damped system; damping raised to %.3e", lam)
            if dx is None:
                raise DivergentBehaviorError(
                    f"Damped normal equations remained singular after "
                    f"{damping.max_retries} damping increases.",
                    origin,
                )

            x_trial = x + dx
            f_trial = fcn.evaluate(x_trial)
            ib.fcn_count += 1
            cost_trial = float(f_trial @ f_trial)
            model = f + jac @ dx
            reduction = relative_reductions(cost, cost_trial, float(model @ model))

            if cost_trial < cost:
                x_prev = x
                x, f, cost = x_trial, f_trial, cost_trial
                lam = max(lam * damping.decrease, EPS)
                ib.iter_count += 1
                best.update(x, f, cost)
                if history:
                    hist.append(x.copy())
                cause = check_convergence(f, x_prev, x, config, reduction=reduction)
                if config.print_status:
                    print_status(ib.iter_count, ib.fcn_count, ib.jacobian_count, max_abs(dx), max_abs(f))
                logger.debug("iter %d: ||f||^2 = %.6e, lambda = %.3e", ib.iter_count, cost, lam)
                break

            lam = max(lam, EPS) * damping.increase
            cause = check_convergence(f, x, x_trial, config, reduction=reduction)
            if cause is not None:
                break
            actual, predicted = reduction
            if abs(actual) <= EPS and predicted <= EPS:
                raise ToleranceTooSmallError(
                    "fcn_tol is too small; no further reduction in the sum of squares is possible.",
                    origin,
                )
            if max_abs(dx) <= EPS * max(max_abs(x), 1.0):
                raise ToleranceTooSmallError(
                    "var_tol is too small; no further improvement in the solution is possible.",
                    origin,
                )
            if ib.fcn_count >= config.max_evals:
                raise over_budget()

    return x, f, cause


@dataclass
class LeastSquaresSolver:
    """Levenberg-Marquardt solver object holding configuration between solves."""

    config: SolverConfig = field(default_factory=SolverConfig)
    damping: DampingSchedule = field(default_factory=DampingSchedule)

    def solve(
        self,
        fcn: VectorFunction,
        x0: Array,
        ib: Optional[IterationBehavior] = None,
        err: Optional[ErrorChannel] = None,
    ) -> SolveResult:
        return levenberg_marquardt(fcn, x0, config=self.config, damping=self.damping, ib=ib, err=err)


__all__ = ["DampingSchedule", "LeastSquaresSolver", "levenberg_marquardt"]
