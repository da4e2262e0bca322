import math

import numpy as np
import pytest

from nonlin import (
    ErrorChannel,
    IterationBehavior,
    ObjectiveFunction,
    ScalarFunction,
    SolverConfig,
    ValuePair,
    bfgs,
    brent_method,
    broyden_method,
    levenberg_marquardt,
    nelder_mead,
)


def _bowl() -> ObjectiveFunction:
    return ObjectiveFunction(lambda x: float((x[0] - 1.0) ** 2 + 3.0 * (x[1] + 2.0) ** 2), nvar=2)


def _run_broyden(request, ib, err):
    return broyden_method(request.getfixturevalue("circle"), np.array([1.0, 1.0]), ib=ib, err=err)


def _run_lm(request, ib, err):
    return levenberg_marquardt(request.getfixturevalue("cubic_fit"), np.ones(4), ib=ib, err=err)


def _run_bfgs(request, ib, err):
    return bfgs(_bowl(), np.array([3.0, 1.0]), ib=ib, err=err)


def _run_nelder_mead(request, ib, err):
    config = SolverConfig(max_evals=1000, fcn_tol=1e-12)
    return nelder_mead(_bowl(), np.zeros(2), config=config, ib=ib, err=err)


def _run_brent(request, ib, err):
    fcn = ScalarFunction(lambda x: math.sin(x) / x)
    return brent_method(fcn, ValuePair(1.5, 5.0), ib=ib, err=err)


@pytest.mark.parametrize(
    "run",
    [_run_broyden, _run_lm, _run_bfgs, _run_nelder_mead, _run_brent],
    ids=["broyden", "levenberg_marquardt", "bfgs", "nelder_mead", "brent"],
)
def test_repeated_solve_is_identical(run, request):
    ib = IterationBehavior()
    err = ErrorChannel()

    first = run(request, ib, err)
    first_counts = (first.nit, first.nfev, first.njev)
    first_x = np.array(first.x, copy=True)

    second = run(request, ib, err)
    assert first.success and second.success
    assert (second.nit, second.nfev, second.njev) == first_counts
    assert np.array_equal(second.x, first_x)
    assert not err.has_error
