import numpy as np
import pytest

from nonlin import (
    ErrorKind,
    InvalidInputError,
    LineSearchConfig,
    LineSearchError,
    VectorFunction,
    backtracking_armijo,
    residual_line_search,
)


def test_armijo_accepts_sufficient_decrease():
    def f(x: np.ndarray) -> float:
        return float(x @ x)

    x = np.array([1.0])
    grad = 2.0 * x
    res = backtracking_armijo(f, x, -grad, grad, fx=1.0)
    assert res.alpha == pytest.approx(0.5)
    assert np.allclose(res.x, [0.0])
    assert res.fun == pytest.approx(0.0)
    assert res.nfev == 2
    assert res.trial == 1


def test_armijo_full_step_on_quadratic():
    def f(x: np.ndarray) -> float:
        return float(np.sum((x - 1.0) ** 2))

    x = np.zeros(2)
    grad = 2.0 * (x - 1.0)
    res = backtracking_armijo(f, x, -0.5 * grad, grad)
    assert res.alpha == 1.0
    assert np.allclose(res.x, [1.0, 1.0])
    # f(x) is evaluated when not supplied
    assert res.nfev == 2


def test_armijo_condition_holds(rng):
    A = np.diag([1.0, 10.0, 100.0])

    def f(x: np.ndarray) -> float:
        return float(0.5 * x @ (A @ x))

    for _ in range(5):
        x = rng.normal(size=3)
        grad = A @ x
        config = LineSearchConfig(alpha=1e-4, factor=0.5)
        res = backtracking_armijo(f, x, -grad, grad, config=config)
        assert res.fun <= f(x) + config.alpha * res.alpha * float(grad @ -grad)


def test_armijo_rejects_ascent_direction():
    x = np.array([1.0])
    with pytest.raises(InvalidInputError):
        backtracking_armijo(lambda z: float(z @ z), x, np.array([1.0]), np.array([2.0]))


def test_armijo_exhaustion_reports_best_trial():
    values = iter([5.0, 3.0, 4.0])

    def f(x: np.ndarray) -> float:
        return next(values)

    config = LineSearchConfig(max_evals=3)
    with pytest.raises(LineSearchError) as info:
        backtracking_armijo(f, np.array([0.0]), np.array([1.0]), np.array([-1.0]), fx=1.0, config=config)
    exc = info.value
    assert exc.kind is ErrorKind.CONVERGENCE
    assert exc.best.fun == 3.0
    assert exc.best.alpha == pytest.approx(0.5)
    assert exc.best.nfev == 3
    assert not exc.collapsed


@pytest.mark.parametrize(
    "config",
    [
        LineSearchConfig(max_evals=0),
        LineSearchConfig(alpha=1.5),
        LineSearchConfig(factor=1.0),
    ],
)
def test_line_search_config_validation(config):
    with pytest.raises(InvalidInputError):
        backtracking_armijo(lambda z: float(z @ z), np.ones(1), -np.ones(1), np.ones(1), config=config)


def test_residual_line_search_returns_matching_residuals(circle):
    x = np.array([1.0, 1.0])
    f = circle.evaluate(x)
    jac = circle.jacobian(x, f)
    grad = jac.T @ f
    dx = np.linalg.solve(jac, -f)
    res, f_new = residual_line_search(circle, x, f, grad, dx)
    assert np.allclose(f_new, circle.evaluate(res.x))
    assert 0.5 * float(f_new @ f_new) < 0.5 * float(f @ f)


def test_residual_line_search_failure_carries_residuals():
    fcn = VectorFunction(lambda x: np.array([1.0 + np.abs(x[0])]), nfcn=1, nvar=1)
    x = np.array([0.0])
    f = fcn.evaluate(x)
    with pytest.raises(LineSearchError) as info:
        residual_line_search(
            fcn, x, f, np.array([1.0]), np.array([-1.0]), LineSearchConfig(max_evals=4)
        )
    exc = info.value
    assert exc.best is not None
    assert np.allclose(exc.best_fvec, fcn.evaluate(exc.best.x))


def test_armijo_stops_when_step_collapses():
    # the claimed slope is negative but f grows along p
    x = np.array([1.0])
    with pytest.raises(LineSearchError) as info:
        backtracking_armijo(
            lambda z: float(z @ z), x, np.array([1.0]), np.array([-1.0]), fx=1.0, min_step=1e-3
        )
    exc = info.value
    assert exc.collapsed
    assert exc.best.trial == 9
    assert exc.best.alpha == pytest.approx(2.0**-9)
    assert exc.best.nfev == 10


def test_armijo_unit_step_is_always_tried():
    res = backtracking_armijo(
        lambda z: float(z @ z), np.array([1e-14]), np.array([-1e-14]), np.array([2e-14]), min_step=1e-12
    )
    assert res.trial == 0
    assert res.alpha == 1.0
