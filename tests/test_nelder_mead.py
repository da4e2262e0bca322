import numpy as np
import pytest

from nonlin import (
    ConvergenceError,
    ErrorChannel,
    ErrorKind,
    InvalidInputError,
    IterationBehavior,
    NelderMeadSolver,
    ObjectiveFunction,
    SolverConfig,
    bfgs,
    initial_simplex,
    nelder_mead,
)


def rosen(x: np.ndarray) -> float:
    return float((1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2)


def _convex():
    H = np.array([[2.0, 0.5], [0.5, 2.0]])
    c = np.array([1.0, -2.0])

    def fun(x: np.ndarray) -> float:
        d = x - c
        return float(d @ (H @ d))

    return fun, c


def test_initial_simplex_layout():
    simplex = initial_simplex(np.array([1.0, 2.0, 3.0]), size=0.5)
    assert simplex.shape == (4, 3)
    assert np.array_equal(simplex[0], [1.0, 2.0, 3.0])
    assert np.allclose(simplex[1:] - simplex[0], 0.5 * np.eye(3))


def test_initial_simplex_rejects_bad_size():
    with pytest.raises(InvalidInputError):
        initial_simplex(np.zeros(2), size=0.0)


def test_nelder_mead_quadratic():
    fun, c = _convex()
    ib = IterationBehavior()
    res = nelder_mead(
        ObjectiveFunction(fun, nvar=2),
        np.zeros(2),
        config=SolverConfig(max_evals=1000, fcn_tol=1e-12),
        ib=ib,
    )
    assert res.success
    assert np.allclose(res.x, c, atol=1e-4)
    assert isinstance(res.fun, float)
    assert ib.jacobian_count == 0
    assert sum([ib.converge_on_fcn, ib.converge_on_chng, ib.converge_on_zero_diff]) == 1


def test_nelder_mead_rosenbrock():
    res = NelderMeadSolver(config=SolverConfig(max_evals=2000, fcn_tol=1e-14)).solve(
        ObjectiveFunction(rosen, nvar=2), np.array([-1.2, 1.0])
    )
    assert res.success
    assert np.allclose(res.x, [1.0, 1.0], atol=1e-3)


def test_nelder_mead_and_bfgs_agree():
    fun, c = _convex()
    obj = ObjectiveFunction(fun, nvar=2)
    x0 = np.array([3.0, 3.0])
    simplex = nelder_mead(obj, x0, config=SolverConfig(max_evals=1000, fcn_tol=1e-12))
    gradient = bfgs(obj, x0)
    assert simplex.success and gradient.success
    assert np.allclose(simplex.x, gradient.x, atol=1e-3)
    assert np.allclose(simplex.x, c, atol=1e-3)


def test_nelder_mead_vector_function(circle_analytic):
    res = nelder_mead(
        circle_analytic, np.array([4.0, 2.0]), config=SolverConfig(max_evals=1000, fcn_tol=1e-14)
    )
    assert res.success
    assert np.allclose(np.abs(res.x), [5.0, 3.0], atol=1e-3)


def test_nelder_mead_history_best_is_monotone():
    fun, _ = _convex()
    res = nelder_mead(
        ObjectiveFunction(fun, nvar=2), np.array([3.0, 3.0]), config=SolverConfig(max_evals=1000), history=True
    )
    values = [fun(x) for x in res.history]
    assert len(values) == res.nit + 1
    assert all(b <= a for a, b in zip(values, values[1:]))


def test_nelder_mead_flat_objective():
    # flat objective: the spread test passes immediately
    res = nelder_mead(ObjectiveFunction(lambda x: 1.0, nvar=2), np.zeros(2))
    assert res.success
    assert res.behavior.converge_on_fcn
    assert res.nit == 0
    assert res.nfev == 3


def test_nelder_mead_budget_exhaustion():
    err = ErrorChannel()
    res = nelder_mead(
        ObjectiveFunction(rosen, nvar=2), np.array([-1.2, 1.0]), config=SolverConfig(max_evals=20), err=err
    )
    assert not res.success
    assert err.kind is ErrorKind.CONVERGENCE
    assert res.fun <= rosen(np.array([-1.2, 1.0]))
    assert not res.behavior.converged


def test_nelder_mead_budget_exhaustion_raises():
    with pytest.raises(ConvergenceError):
        nelder_mead(ObjectiveFunction(rosen, nvar=2), np.array([-1.2, 1.0]), config=SolverConfig(max_evals=20))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"reflection": 0.0},
        {"expansion": 1.0},
        {"contraction": 1.0},
        {"shrink": 0.0},
        {"initial_size": -1.0},
    ],
)
def test_nelder_mead_rejects_bad_coefficients(kwargs):
    with pytest.raises(InvalidInputError):
        nelder_mead(ObjectiveFunction(rosen, nvar=2), np.zeros(2), **kwargs)


def test_nelder_mead_does_not_mutate_initial_guess():
    x0 = np.array([-1.2, 1.0])
    nelder_mead(ObjectiveFunction(rosen, nvar=2), x0, config=SolverConfig(max_evals=50), err=ErrorChannel())
    assert np.array_equal(x0, [-1.2, 1.0])
