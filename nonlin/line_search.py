"""Backtracking line search shared by Newton, Broyden and BFGS."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np

from .core import Array, LineSearchConfig, Objective
from .errors import InvalidInputError, LineSearchError
from .utils import max_abs

if TYPE_CHECKING:
    from .functions import VectorFunction


@dataclass
class LineSearchResult:
    """Outcome of a line search.

    Attributes:
        alpha: Accepted step length.
        x: Accepted point ``x + alpha * p``.
        fun: Objective value at ``x``.
        nfev: Objective evaluations performed.
        trial: Zero-based index of the accepted trial step. The evaluation
            of ``f(x)`` made when ``fx`` is not supplied is not a trial.
    """

    alpha: float
    x: Array
    fun: float
    nfev: int
    trial: int


def backtracking_armijo(
    f: Objective,
    x: Array,
    p: Array,
    grad_fx: Array,
    fx: Optional[float] = None,
    config: Optional[LineSearchConfig] = None,
    min_step: float = 0.0,
) -> LineSearchResult:
    """Classic Armijo backtracking line search.

    Starting from a unit step, accept ``t`` once
    ``f(x + t p) <= f(x) + alpha * t * grad_fx . p`` and shrink ``t`` by
    ``factor`` otherwise. The unit step is always tried; after that the
    search stops once the relative step ``t * max|p| / max(max|x|, 1)``
    drops below ``min_step``.

    Raises
    ------
    InvalidInputError
        If ``p`` is not a descent direction.
    LineSearchError
        If no trial satisfies the condition within ``max_evals`` evaluations,
        or the step collapses below ``min_step`` (``collapsed`` is then set).
        The error's ``best`` attribute holds the lowest trial found.
    """
    config = config or LineSearchConfig()
    config.validate()
    origin = "backtracking_armijo"
    slope = float(np.dot(grad_fx, p))
    if not slope < 0:
        raise InvalidInputError("Search direction must be a descent direction.", origin)

    nfev = 0
    if fx is None:
        fx = float(f(x))
        nfev += 1

    t = 1.0
    scale = max_abs(p) / max(max_abs(x), 1.0)
    best: Optional[LineSearchResult] = None
    for trial in range(config.max_evals):
        if trial > 0 and t * scale < min_step:
            if best is not None:
                best.nfev = nfev
            raise LineSearchError(
                f"Step length collapsed below {min_step:g} after {trial} trial steps.",
                origin,
                best=best,
                collapsed=True,
            )
        candidate = x + t * p
        f_new = float(f(candidate))
        nfev += 1
        if f_new <= fx + config.alpha * t * slope:
            return LineSearchResult(t, candidate, f_new, nfev, trial)
        if best is None or f_new < best.fun:
            best = LineSearchResult(t, candidate, f_new, nfev, trial)
        t *= config.factor
    if best is not None:
        best.nfev = nfev
    raise LineSearchError(
        f"No sufficient decrease after {config.max_evals} trial steps.", origin, best=best
    )


def residual_line_search(
    fcn: "VectorFunction",
    x: Array,
    fvec: Array,
    grad: Array,
    p: Array,
    config: Optional[LineSearchConfig] = None,
    min_step: float = 0.0,
) -> tuple[LineSearchResult, Array]:
    """Backtrack on ``||F||^2 / 2`` along ``p`` for a :class:`VectorFunction`.

    Returns the line-search result and the residuals at the accepted point.
    On failure the raised :class:`LineSearchError` carries the best trial and
    its residuals in ``best_fvec``.
    """
    trials: list[Array] = []

    def half_sq_norm(point: Array) -> float:
        f = fcn.evaluate(point)
        trials.append(f)
        return 0.5 * float(f @ f)

    try:
        res = backtracking_armijo(
            half_sq_norm,
            x,
            p,
            grad,
            fx=0.5 * float(fvec @ fvec),
            config=config,
            min_step=min_step,
        )
    except LineSearchError as exc:
        exc.best_fvec = trials[exc.best.trial] if exc.best is not None else None
        raise
    return res, trials[res.trial]


__all__ = ["LineSearchResult", "backtracking_armijo", "residual_line_search"]
