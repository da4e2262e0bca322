"""Error kinds, exceptions and the optional error channel used by all solvers.

Every numerical failure is raised as a :class:`NonlinError` subclass naming
the operation it came from. Callers that prefer to inspect failures instead
of catching exceptions pass an :class:`ErrorChannel` to the solve call; the
error is then recorded on the channel and the partial result is returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from .logging import get_logger

if TYPE_CHECKING:
    from .core import SolveResult

logger = get_logger(__name__)


class ErrorKind(Enum):
    """Error classification shared by every solver."""

    INVALID_INPUT = 201
    ARRAY_SIZE = 202
    OUT_OF_MEMORY = 203
    INVALID_OPERATION = 204
    CONVERGENCE = 205
    DIVERGENT_BEHAVIOR = 206
    SPURIOUS_CONVERGENCE = 207
    TOLERANCE_TOO_SMALL = 208


class NonlinError(Exception):
    """Base class for every error raised by nonlin.

    Attributes:
        kind: The :class:`ErrorKind` of the failure.
        origin: Name of the operation that raised the error.
        result: Partial solve result (best iterate and iteration record)
            when the failure happened mid-solve, else None.
    """

    kind: ErrorKind = ErrorKind.INVALID_OPERATION

    def __init__(
        self,
        message: str,
        origin: str = "",
        result: Optional["SolveResult"] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.origin = origin
        self.result = result

    def __str__(self) -> str:
        if self.origin:
            return f"{self.origin}: {self.message}"
        return self.message


class InvalidInputError(NonlinError, ValueError):
    kind = ErrorKind.INVALID_INPUT


class ArraySizeError(NonlinError, ValueError):
    kind = ErrorKind.ARRAY_SIZE


class OutOfMemoryError(NonlinError, MemoryError):
    kind = ErrorKind.OUT_OF_MEMORY


class InvalidOperationError(NonlinError, RuntimeError):
    kind = ErrorKind.INVALID_OPERATION


class ConvergenceError(NonlinError):
    """Evaluation budget exhausted before any convergence test passed."""

    kind = ErrorKind.CONVERGENCE


class LineSearchError(ConvergenceError):
    """Line search ran out of trials without sufficient decrease.

    ``best`` holds the trial with the lowest objective value. ``collapsed``
    is set when the search stopped because the step fell below its minimum
    length rather than because the trial budget ran out.
    """

    def __init__(self, message: str, origin: str = "", best=None, collapsed: bool = False) -> None:
        super().__init__(message, origin)
        self.best = best
        self.collapsed = collapsed
        self.best_fvec = None


class DivergentBehaviorError(NonlinError):
    kind = ErrorKind.DIVERGENT_BEHAVIOR


class SpuriousConvergenceError(NonlinError):
    kind = ErrorKind.SPURIOUS_CONVERGENCE


class ToleranceTooSmallError(NonlinError):
    kind = ErrorKind.TOLERANCE_TOO_SMALL


@dataclass
class ErrorChannel:
    """Collects errors reported by solve calls.

    Attributes:
        exit_on_error: Re-raise each error after recording it.
        errors: Every error recorded since the last :meth:`clear`.
    """

    exit_on_error: bool = False
    errors: List[NonlinError] = field(default_factory=list)

    def report(self, error: NonlinError) -> None:
        self.errors.append(error)
        if self.exit_on_error:
            logger.error("%s", error)
            raise error

    @property
    def has_error(self) -> bool:
        return bool(self.errors)

    @property
    def last_error(self) -> Optional[NonlinError]:
        return self.errors[-1] if self.errors else None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.errors[-1].kind if self.errors else None

    @property
    def message(self) -> str:
        return str(self.errors[-1]) if self.errors else ""

    def clear(self) -> None:
        self.errors.clear()


def handle_error(
    error: NonlinError,
    err: Optional[ErrorChannel],
    fallback: "SolveResult",
) -> "SolveResult":
    """Route ``error`` to the caller's channel or propagate it.

    Without a channel the error is logged and re-raised. With one, it is
    recorded and the partial result (or ``fallback`` when the error carries
    none) is returned marked unsuccessful.
    """
    if err is None:
        logger.error("%s", error)
        raise error
    err.report(error)
    result = error.result if error.result is not None else fallback
    result.success = False
    result.message = str(error)
    return result


__all__ = [
    "ArraySizeError",
    "ConvergenceError",
    "DivergentBehaviorError",
    "ErrorChannel",
    "ErrorKind",
    "InvalidInputError",
    "InvalidOperationError",
    "LineSearchError",
    "NonlinError",
    "OutOfMemoryError",
    "SpuriousConvergenceError",
    "ToleranceTooSmallError",
    "handle_error",
]
