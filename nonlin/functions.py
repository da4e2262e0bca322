"""Adapters binding user callables to the solvers.

:class:`VectorFunction` wraps ``F: R^N -> R^M`` and its optional analytic
Jacobian, :class:`ScalarFunction` wraps ``f: R -> R`` for Brent's method and
:class:`ObjectiveFunction` wraps ``f: R^N -> R`` (plus optional gradient) for
the minimizers. Missing derivatives fall back to forward differences with
step ``sqrt(eps) * max(|x_j|, 1)``.
"""

from __future__ import annotations

from typing import Callable, Optional, Union

import numpy as np

from .core import Array
from .errors import ArraySizeError, InvalidInputError, InvalidOperationError, OutOfMemoryError
from .utils import approx_grad, approx_jacobian

VecFcn = Callable[[Array], Array]
JacobianFcn = Callable[[Array], Array]
Fcn1Var = Callable[[float], float]
FcnNVar = Callable[[Array], float]


class VectorFunction:
    """A system of M equations in N unknowns.

    Example
    -------
    >>> import numpy as np
    >>> fcn = VectorFunction(lambda x: np.array([x[0] ** 2 - 4.0]), nfcn=1, nvar=1)
    >>> fcn.evaluate(np.array([3.0]))
    array([5.])
    """

    def __init__(
        self,
        fcn: Optional[VecFcn] = None,
        nfcn: int = 0,
        nvar: int = 0,
        jac: Optional[JacobianFcn] = None,
    ) -> None:
        self._fcn: Optional[VecFcn] = None
        self._jac: Optional[JacobianFcn] = None
        self._nfcn = 0
        self._nvar = 0
        if fcn is not None:
            self.set_fcn(fcn, nfcn, nvar)
        if jac is not None:
            self.set_jacobian(jac)

    def set_fcn(self, fcn: VecFcn, nfcn: int, nvar: int) -> None:
        if nfcn < 1 or nvar < 1:
            raise InvalidInputError(
                "Equation and variable counts must be positive.", "VectorFunction.set_fcn"
            )
        self._fcn = fcn
        self._nfcn = int(nfcn)
        self._nvar = int(nvar)

    def set_jacobian(self, jac: Optional[JacobianFcn]) -> None:
        self._jac = jac

    def is_fcn_defined(self) -> bool:
        return self._fcn is not None

    def is_jacobian_defined(self) -> bool:
        return self._jac is not None

    @property
    def equation_count(self) -> int:
        return self._nfcn

    @property
    def variable_count(self) -> int:
        return self._nvar

    def _check_x(self, x: Array, origin: str) -> Array:
        x = np.asarray(x, dtype=float)
        if x.shape != (self._nvar,):
            raise InvalidInputError(
                f"Expected {self._nvar} variables, got array of shape {x.shape}.", origin
            )
        return x

    def evaluate(self, x: Array) -> Array:
        """Evaluate the M residuals at ``x``."""
        if self._fcn is None:
            raise InvalidOperationError("No function has been bound.", "VectorFunction.evaluate")
        x = self._check_x(x, "VectorFunction.evaluate")
        f = np.asarray(self._fcn(x), dtype=float).reshape(-1)
        if f.size != self._nfcn:
            raise InvalidInputError(
                f"Function returned {f.size} values, expected {self._nfcn}.",
                "VectorFunction.evaluate",
            )
        return f

    def jacobian_workspace_size(self, fv_supplied: bool = True) -> int:
        """Scratch length needed by :meth:`jacobian`; performs no computation."""
        if self._jac is not None:
            return 0
        return self._nfcn if fv_supplied else 2 * self._nfcn

    def jacobian(
        self,
        x: Array,
        fv: Optional[Array] = None,
        work: Optional[Array] = None,
    ) -> Array:
        """Compute the M x N Jacobian at ``x``.

        Parameters
        ----------
        x:
            Point of evaluation.
        fv:
            Residuals already known at ``x``; saves one evaluation when the
            Jacobian is approximated numerically.
        work:
            Caller-owned scratch of at least :meth:`jacobian_workspace_size`
            elements. Allocated internally when omitted.
        """
        origin = "VectorFunction.jacobian"
        if self._fcn is None:
            raise InvalidOperationError("No function has been bound.", origin)
        x = self._check_x(x, origin)
        m, n = self._nfcn, self._nvar

        if self._jac is not None:
            jac = np.asarray(self._jac(x), dtype=float)
            if jac.shape != (m, n):
                raise InvalidInputError(
                    f"Jacobian has shape {jac.shape}, expected {(m, n)}.", origin
                )
            return jac

        lwork = self.jacobian_workspace_size(fv is not None)
        if work is not None:
            if work.size < lwork:
                raise ArraySizeError(
                    f"Workspace holds {work.size} elements, {lwork} required.", origin
                )
            wrk = work
        else:
            try:
                wrk = np.empty(lwork, dtype=float)
            except MemoryError as exc:
                raise OutOfMemoryError("Unable to allocate Jacobian workspace.", origin) from exc

        if fv is not None:
            fv = np.asarray(fv, dtype=float).reshape(-1)
            if fv.size < m:
                raise ArraySizeError(
                    f"Function vector holds {fv.size} elements, {m} required.", origin
                )
            base = fv[:m]
        else:
            base = wrk[m : 2 * m]
            base[:] = self.evaluate(x)

        f1 = wrk[:m]

        def shifted(point: Array) -> Array:
            f1[:] = self.evaluate(point)
            return f1

        xw = np.array(x, dtype=float)
        return approx_jacobian(shifted, xw, base)

    def jacobian_evals(self, fv_supplied: bool = True) -> int:
        """Function evaluations one :meth:`jacobian` call costs."""
        if self._jac is not None:
            return 0
        return self._nvar if fv_supplied else self._nvar + 1


class ScalarFunction:
    """A function of one variable."""

    def __init__(self, fcn: Optional[Fcn1Var] = None) -> None:
        self._fcn = fcn

    def set_fcn(self, fcn: Fcn1Var) -> None:
        self._fcn = fcn

    def is_fcn_defined(self) -> bool:
        return self._fcn is not None

    def evaluate(self, x: float) -> float:
        if self._fcn is None:
            raise InvalidOperationError("No function has been bound.", "ScalarFunction.evaluate")
        return float(self._fcn(float(x)))


class ObjectiveFunction:
    """A scalar objective of N variables with optional analytic gradient."""

    def __init__(
        self,
        fcn: Optional[FcnNVar] = None,
        nvar: int = 0,
        grad: Optional[Callable[[Array], Array]] = None,
    ) -> None:
        self._fcn: Optional[FcnNVar] = None
        self._grad = grad
        self._nvar = 0
        if fcn is not None:
            self.set_fcn(fcn, nvar)

    def set_fcn(self, fcn: FcnNVar, nvar: int) -> None:
        if nvar < 1:
            raise InvalidInputError("Variable count must be positive.", "ObjectiveFunction.set_fcn")
        self._fcn = fcn
        self._nvar = int(nvar)

    def set_gradient(self, grad: Optional[Callable[[Array], Array]]) -> None:
        self._grad = grad

    def is_fcn_defined(self) -> bool:
        return self._fcn is not None

    def is_gradient_defined(self) -> bool:
        return self._grad is not None

    @property
    def variable_count(self) -> int:
        return self._nvar

    def _check_x(self, x: Array, origin: str) -> Array:
        x = np.asarray(x, dtype=float)
        if x.shape != (self._nvar,):
            raise InvalidInputError(
                f"Expected {self._nvar} variables, got array of shape {x.shape}.", origin
            )
        return x

    def evaluate(self, x: Array) -> float:
        if self._fcn is None:
            raise InvalidOperationError("No function has been bound.", "ObjectiveFunction.evaluate")
        x = self._check_x(x, "ObjectiveFunction.evaluate")
        return float(self._fcn(x))

    def gradient(self, x: Array, fv: Optional[float] = None) -> Array:
        """Gradient at ``x``; ``fv`` is the objective value there if known."""
        origin = "ObjectiveFunction.gradient"
        if self._fcn is None:
            raise InvalidOperationError("No function has been bound.", origin)
        x = self._check_x(x, origin)
        if self._grad is not None:
            g = np.asarray(self._grad(x), dtype=float).reshape(-1)
            if g.size != self._nvar:
                raise InvalidInputError(
                    f"Gradient returned {g.size} values, expected {self._nvar}.", origin
                )
            return g
        if fv is None:
            fv = self.evaluate(x)
        return approx_grad(self.evaluate, np.array(x, dtype=float), fv)

    def gradient_evals(self, fv_supplied: bool = True) -> int:
        if self._grad is not None:
            return 0
        return self._nvar if fv_supplied else self._nvar + 1


class ResidualObjective(ObjectiveFunction):
    """Minimize ``||F(x)||^2 / 2`` for a :class:`VectorFunction` ``F``.

    The gradient is ``J(x)^T F(x)``.
    """

    def __init__(self, fcn: VectorFunction) -> None:
        super().__init__()
        self.vecfcn = fcn
        self._nvar = fcn.variable_count
        self._last: Optional[tuple[Array, Array]] = None
        self._reused = False

    def is_fcn_defined(self) -> bool:
        return self.vecfcn.is_fcn_defined()

    def is_gradient_defined(self) -> bool:
        return self.vecfcn.is_jacobian_defined()

    def evaluate(self, x: Array) -> float:
        f = self.vecfcn.evaluate(x)
        self._last = (np.array(x, dtype=float), f)
        return 0.5 * float(f @ f)

    def gradient(self, x: Array, fv: Optional[float] = None) -> Array:
        x = np.asarray(x, dtype=float)
        self._reused = fv is not None and self._last is not None and np.array_equal(self._last[0], x)
        if self._reused:
            f = self._last[1]
        else:
            f = self.vecfcn.evaluate(x)
        jac = self.vecfcn.jacobian(x, f)
        return jac.T @ f

    def gradient_evals(self, fv_supplied: bool = True) -> int:
        # F is evaluated again unless the last gradient call reused cached residuals
        n = self.vecfcn.jacobian_evals(True)
        return n if fv_supplied and self._reused else n + 1


def as_objective(fcn: Union[ObjectiveFunction, VectorFunction]) -> ObjectiveFunction:
    """Return a scalar objective for either adapter type."""
    if isinstance(fcn, ObjectiveFunction):
        return fcn
    if isinstance(fcn, VectorFunction):
        return ResidualObjective(fcn)
    raise InvalidInputError(
        f"Expected ObjectiveFunction or VectorFunction, got {type(fcn).__name__}.",
        "as_objective",
    )


def check_vector_problem(
    fcn: VectorFunction,
    x: Array,
    origin: str,
    square: bool = False,
) -> None:
    """Validate a :class:`VectorFunction` and starting point before a solve."""
    if not isinstance(fcn, VectorFunction):
        raise InvalidInputError(f"Expected VectorFunction, got {type(fcn).__name__}.", origin)
    if not fcn.is_fcn_defined():
        raise InvalidOperationError("No function has been bound.", origin)
    if x.shape != (fcn.variable_count,):
        raise InvalidInputError(
            f"Initial point has shape {x.shape}, expected ({fcn.variable_count},).", origin
        )
    if square and fcn.equation_count != fcn.variable_count:
        raise InvalidInputError(
            f"System must be square, got {fcn.equation_count} equations "
            f"in {fcn.variable_count} unknowns.",
            origin,
        )


def evaluate_jacobian(
    fcn: VectorFunction,
    x: Array,
    fv: Optional[Array] = None,
    work: Optional[Array] = None,
) -> tuple[Array, int, int]:
    """Jacobian plus the (function, Jacobian) evaluation counts it cost."""
    jac = fcn.jacobian(x, fv, work)
    return jac, fcn.jacobian_evals(fv is not None), 1


def evaluate_gradient(fcn: ObjectiveFunction, x: Array, fv: Optional[float] = None) -> tuple[Array, int, int]:
    """Gradient plus the (function, gradient) evaluation counts it cost."""
    grad = fcn.gradient(x, fv)
    return grad, fcn.gradient_evals(fv is not None), 1


__all__ = [
    "Fcn1Var",
    "FcnNVar",
    "JacobianFcn",
    "ObjectiveFunction",
    "ResidualObjective",
    "ScalarFunction",
    "VecFcn",
    "VectorFunction",
    "as_objective",
    "check_vector_problem",
    "evaluate_gradient",
    "evaluate_jacobian",
]
