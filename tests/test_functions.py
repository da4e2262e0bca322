import numpy as np
import pytest

from nonlin import (
    ArraySizeError,
    InvalidInputError,
    InvalidOperationError,
    ObjectiveFunction,
    ResidualObjective,
    ScalarFunction,
    VectorFunction,
    as_objective,
)
from nonlin.functions import evaluate_gradient, evaluate_jacobian
from nonlin.utils import approx_grad, approx_jacobian, fd_step, solve_linear
from nonlin.errors import DivergentBehaviorError

from conftest import circle_jacobian, circle_system


def test_numeric_jacobian_matches_analytic(circle, circle_analytic):
    x = np.array([1.5, -2.0])
    numeric = circle.jacobian(x)
    analytic = circle_analytic.jacobian(x)
    assert np.allclose(numeric, analytic, rtol=1e-6, atol=1e-6)


def test_numeric_jacobian_with_supplied_value_matches(circle):
    x = np.array([4.0, 1.0])
    fv = circle.evaluate(x)
    assert np.allclose(circle.jacobian(x, fv), circle.jacobian(x), atol=1e-12)


def test_jacobian_does_not_modify_point(circle):
    x = np.array([0.3, 0.7])
    before = x.copy()
    circle.jacobian(x)
    assert np.array_equal(x, before)


def test_workspace_size_query(circle, circle_analytic):
    assert circle_analytic.jacobian_workspace_size(True) == 0
    assert circle_analytic.jacobian_workspace_size(False) == 0
    assert circle.jacobian_workspace_size(True) == 2
    assert circle.jacobian_workspace_size(False) == 4


def test_workspace_too_small_raises(circle):
    x = np.array([1.0, 1.0])
    with pytest.raises(ArraySizeError):
        circle.jacobian(x, work=np.empty(3))
    with pytest.raises(ArraySizeError):
        circle.jacobian(x, fv=circle.evaluate(x), work=np.empty(1))


def test_short_function_vector_raises(circle):
    with pytest.raises(ArraySizeError):
        circle.jacobian(np.array([1.0, 1.0]), fv=np.array([1.0]))


def test_caller_workspace_is_used(circle):
    x = np.array([2.0, 1.0])
    fv = circle.evaluate(x)
    work = np.empty(circle.jacobian_workspace_size(True))
    jac = circle.jacobian(x, fv, work)
    assert np.allclose(jac, circle_jacobian(x), atol=1e-6)


def test_jacobian_evaluation_counts(circle, circle_analytic):
    x = np.array([2.0, 1.0])
    _, nfev, njev = evaluate_jacobian(circle, x, circle.evaluate(x))
    assert (nfev, njev) == (2, 1)
    _, nfev, njev = evaluate_jacobian(circle_analytic, x, None)
    assert (nfev, njev) == (0, 1)
    assert circle.jacobian_evals(False) == 3


def test_unbound_adapter_reports_state():
    fcn = VectorFunction()
    assert not fcn.is_fcn_defined()
    assert not fcn.is_jacobian_defined()
    assert fcn.equation_count == 0
    with pytest.raises(InvalidOperationError):
        fcn.evaluate(np.zeros(2))
    fcn.set_fcn(circle_system, 2, 2)
    fcn.set_jacobian(circle_jacobian)
    assert fcn.is_fcn_defined() and fcn.is_jacobian_defined()
    assert fcn.equation_count == 2 and fcn.variable_count == 2


def test_set_fcn_rejects_bad_counts():
    with pytest.raises(InvalidInputError):
        VectorFunction(circle_system, nfcn=0, nvar=2)


def test_evaluate_rejects_wrong_shape(circle):
    with pytest.raises(InvalidInputError):
        circle.evaluate(np.zeros(3))
    bad = VectorFunction(lambda x: np.zeros(3), nfcn=2, nvar=2)
    with pytest.raises(InvalidInputError):
        bad.evaluate(np.zeros(2))


def test_analytic_jacobian_shape_checked():
    fcn = VectorFunction(circle_system, nfcn=2, nvar=2, jac=lambda x: np.eye(3))
    with pytest.raises(InvalidInputError):
        fcn.jacobian(np.ones(2))


def test_scalar_function():
    fcn = ScalarFunction()
    assert not fcn.is_fcn_defined()
    with pytest.raises(InvalidOperationError):
        fcn.evaluate(1.0)
    fcn.set_fcn(lambda x: x**2 - 2.0)
    assert fcn.evaluate(2.0) == pytest.approx(2.0)


def test_objective_gradient_fallback():
    obj = ObjectiveFunction(lambda x: float(np.sum((x - 1.0) ** 2)), nvar=3)
    x = np.array([0.0, 2.0, 5.0])
    assert np.allclose(obj.gradient(x), 2.0 * (x - 1.0), atol=1e-5)
    assert obj.gradient_evals(True) == 3
    assert not obj.is_gradient_defined()


def test_objective_analytic_gradient():
    obj = ObjectiveFunction(lambda x: float(x @ x), nvar=2, grad=lambda x: 2.0 * x)
    assert obj.is_gradient_defined()
    assert obj.gradient_evals(True) == 0
    assert np.allclose(obj.gradient(np.array([1.0, -2.0])), [2.0, -4.0])


def test_residual_objective(circle_analytic):
    obj = ResidualObjective(circle_analytic)
    x = np.array([1.0, 2.0])
    f = circle_system(x)
    assert obj.evaluate(x) == pytest.approx(0.5 * f @ f)
    assert np.allclose(obj.gradient(x), circle_jacobian(x).T @ f)
    assert obj.variable_count == 2


def test_as_objective_dispatch(circle):
    obj = ObjectiveFunction(lambda x: float(x @ x), nvar=2)
    assert as_objective(obj) is obj
    assert isinstance(as_objective(circle), ResidualObjective)
    with pytest.raises(InvalidInputError):
        as_objective(lambda x: x)


def test_fd_helpers():
    assert fd_step(0.0) == fd_step(1.0)
    assert fd_step(100.0) == pytest.approx(100.0 * fd_step(1.0))
    x = np.array([1.0, 2.0])
    jac = approx_jacobian(lambda z: np.array([z[0] * z[1]]), x, np.array([2.0]))
    assert np.allclose(jac, [[2.0, 1.0]], atol=1e-6)
    grad = approx_grad(lambda z: float(z[0] ** 2), x, 1.0)
    assert np.allclose(grad, [2.0, 0.0], atol=1e-6)


def test_solve_linear_rejects_singular():
    with pytest.raises(DivergentBehaviorError):
        solve_linear(np.array([[1.0, 2.0], [2.0, 4.0]]), np.ones(2))
    with pytest.raises(DivergentBehaviorError):
        solve_linear(np.array([[np.nan, 0.0], [0.0, 1.0]]), np.ones(2))
    assert np.allclose(solve_linear(np.diag([2.0, 4.0]), np.array([2.0, 2.0])), [1.0, 0.5])


def test_residual_objective_counts_uncached_evaluation():
    calls = []

    def counted(x: np.ndarray) -> np.ndarray:
        calls.append(x.copy())
        return circle_system(x)

    obj = ResidualObjective(VectorFunction(counted, nfcn=2, nvar=2, jac=circle_jacobian))
    x0 = np.array([1.0, 2.0])
    x1 = np.array([3.0, 1.0])

    fv0 = obj.evaluate(x0)
    obj.evaluate(x1)
    before = len(calls)
    _, fe, _ = evaluate_gradient(obj, x0, fv0)
    assert fe == len(calls) - before == 1

    fv1 = obj.evaluate(x1)
    before = len(calls)
    _, fe, _ = evaluate_gradient(obj, x1, fv1)
    assert fe == len(calls) - before == 0
