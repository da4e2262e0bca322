"""Core interfaces shared across the nonlinear solvers."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Union

import numpy as np

from .errors import InvalidInputError

Array = np.ndarray
Objective = Callable[[Array], float]
Gradient = Callable[[Array], Array]

EPS = float(np.finfo(float).eps)

MAX_EVALS = 100
FCN_TOL = 1e-8
VAR_TOL = 1e-12
GRAD_TOL = 1e-12


@dataclass(frozen=True)
class SolverConfig:
    """Budgets and tolerances for one solve call.

    Attributes:
        max_evals: Maximum number of function evaluations.
        fcn_tol: Convergence tolerance on residual magnitude.
        var_tol: Convergence tolerance on the change in variables.
        grad_tol: Convergence tolerance on the gradient of ``||F||^2 / 2``.
        print_status: Report every iteration on standard output.
    """

    max_evals: int = MAX_EVALS
    fcn_tol: float = FCN_TOL
    var_tol: float = VAR_TOL
    grad_tol: float = GRAD_TOL
    print_status: bool = False

    def validate(self) -> None:
        if self.max_evals < 1:
            raise InvalidInputError("max_evals must be at least 1", "SolverConfig")
        for name in ("fcn_tol", "var_tol", "grad_tol"):
            if not getattr(self, name) > 0:
                raise InvalidInputError(f"{name} must be positive", "SolverConfig")

    def replace(self, **changes: Any) -> "SolverConfig":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class LineSearchConfig:
    """Backtracking line-search parameters.

    Attributes:
        max_evals: Maximum number of trial evaluations.
        alpha: Armijo sufficient-decrease constant.
        factor: Step-length shrink factor applied after each rejection.
    """

    max_evals: int = 100
    alpha: float = 1e-4
    factor: float = 0.5

    def validate(self) -> None:
        if self.max_evals < 1:
            raise InvalidInputError("max_evals must be at least 1", "LineSearchConfig")
        if not (0 < self.alpha < 1):
            raise InvalidInputError("Armijo constant alpha must lie in (0, 1)", "LineSearchConfig")
        if not (0 < self.factor < 1):
            raise InvalidInputError("factor must lie in (0, 1)", "LineSearchConfig")

    def replace(self, **changes: Any) -> "LineSearchConfig":
        return dataclasses.replace(self, **changes)


class ConvergenceCause(Enum):
    """Which convergence test ended a solve."""

    FUNCTION = "function"
    CHANGE = "change"
    GRADIENT = "gradient"


@dataclass
class IterationBehavior:
    """Per-solve counters and the convergence test that fired."""

    iter_count: int = 0
    fcn_count: int = 0
    jacobian_count: int = 0
    converge_on_fcn: bool = False
    converge_on_chng: bool = False
    converge_on_zero_diff: bool = False

    def reset(self) -> None:
        self.iter_count = 0
        self.fcn_count = 0
        self.jacobian_count = 0
        self.clear_flags()

    def clear_flags(self) -> None:
        self.converge_on_fcn = False
        self.converge_on_chng = False
        self.converge_on_zero_diff = False

    def mark(self, cause: ConvergenceCause) -> None:
        self.clear_flags()
        if cause is ConvergenceCause.FUNCTION:
            self.converge_on_fcn = True
        elif cause is ConvergenceCause.CHANGE:
            self.converge_on_chng = True
        else:
            self.converge_on_zero_diff = True

    @property
    def converged(self) -> bool:
        return self.converge_on_fcn or self.converge_on_chng or self.converge_on_zero_diff


@dataclass
class SolveResult:
    """Result object returned by every solver in this package."""

    x: Union[Array, float]
    fun: Union[Array, float]
    behavior: IterationBehavior
    success: bool
    message: str
    history: List[Array] = field(default_factory=list)

    @property
    def nit(self) -> int:
        return self.behavior.iter_count

    @property
    def nfev(self) -> int:
        return self.behavior.fcn_count

    @property
    def njev(self) -> int:
        return self.behavior.jacobian_count


@dataclass
class BestIterate:
    """Lowest-cost point seen so far in a solve."""

    x: Array
    fun: Any
    cost: float

    def update(self, x: Array, fun: Any, cost: float) -> None:
        if cost < self.cost:
            self.x = np.array(x, dtype=float)
            self.fun = np.array(fun, dtype=float) if isinstance(fun, np.ndarray) else fun
            self.cost = cost

    def result(self, behavior: IterationBehavior, message: str, history: List[Array]) -> SolveResult:
        return SolveResult(
            x=self.x,
            fun=self.fun,
            behavior=behavior,
            success=False,
            message=message,
            history=history,
        )


@dataclass
class ValuePair:
    """A search interval ``[x1, x2]``."""

    x1: float
    x2: float


class EquationSolver(Protocol):
    """Common ``solve`` contract implemented by every solver object."""

    config: SolverConfig

    def solve(self, fcn: Any, x0: Any, ib: Optional[IterationBehavior] = None, err: Any = None) -> SolveResult:
        ...


def convergence_message(cause: ConvergenceCause) -> str:
    return {
        ConvergenceCause.FUNCTION: "Function tolerance satisfied.",
        ConvergenceCause.CHANGE: "Variable change tolerance satisfied.",
        ConvergenceCause.GRADIENT: "Gradient tolerance satisfied.",
    }[cause]


def prepare_behavior(ib: Optional[IterationBehavior]) -> IterationBehavior:
    """Return ``ib`` reset for a new solve, or a fresh record."""
    if ib is None:
        return IterationBehavior()
    ib.reset()
    return ib


__all__ = [
    "Array",
    "BestIterate",
    "ConvergenceCause",
    "EPS",
    "EquationSolver",
    "FCN_TOL",
    "GRAD_TOL",
    "Gradient",
    "IterationBehavior",
    "LineSearchConfig",
    "MAX_EVALS",
    "Objective",
    "SolveResult",
    "SolverConfig",
    "VAR_TOL",
    "ValuePair",
    "convergence_message",
    "prepare_behavior",
]
