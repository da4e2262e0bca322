"""nonlin - iterative solvers for nonlinear equations, least squares and minimization."""

__version__ = "0.1.0"

# Root finding for scalar equations
from .brent import BrentSolver, brent_method

# Convergence policy
from .convergence import check_convergence, check_gradient, relative_reductions

# Core types and configuration
from .core import (
    EPS,
    FCN_TOL,
    GRAD_TOL,
    MAX_EVALS,
    VAR_TOL,
    ConvergenceCause,
    EquationSolver,
    IterationBehavior,
    LineSearchConfig,
    SolveResult,
    SolverConfig,
    ValuePair,
)

# Errors
from .errors import (
    ArraySizeError,
    ConvergenceError,
    DivergentBehaviorError,
    ErrorChannel,
    ErrorKind,
    InvalidInputError,
    InvalidOperationError,
    LineSearchError,
    NonlinError,
    OutOfMemoryError,
    SpuriousConvergenceError,
    ToleranceTooSmallError,
)

# Function adapters
from .functions import (
    ObjectiveFunction,
    ResidualObjective,
    ScalarFunction,
    VectorFunction,
    as_objective,
)

# Least squares
from .least_squares import DampingSchedule, LeastSquaresSolver, levenberg_marquardt

# Line search
from .line_search import LineSearchResult, backtracking_armijo, residual_line_search

# Logging
from .logging import configure_logging, get_logger, print_status, set_log_level

# Minimization
from .nelder_mead import NelderMeadSolver, initial_simplex, nelder_mead

# Systems of equations
from .newton import NewtonSolver, newton_method
from .quasi_newton import (
    BFGSSolver,
    QuasiNewtonSolver,
    bfgs,
    bfgs_update,
    broyden_method,
    broyden_update,
)

# Numerical helpers
from .utils import approx_grad, approx_jacobian, solve_linear

__all__ = [
    "ArraySizeError",
    "BFGSSolver",
    "BrentSolver",
    "ConvergenceCause",
    "ConvergenceError",
    "DampingSchedule",
    "DivergentBehaviorError",
    "EPS",
    "EquationSolver",
    "ErrorChannel",
    "ErrorKind",
    "FCN_TOL",
    "GRAD_TOL",
    "InvalidInputError",
    "InvalidOperationError",
    "IterationBehavior",
    "LeastSquaresSolver",
    "LineSearchConfig",
    "LineSearchError",
    "LineSearchResult",
    "MAX_EVALS",
    "NelderMeadSolver",
    "NewtonSolver",
    "NonlinError",
    "ObjectiveFunction",
    "OutOfMemoryError",
    "QuasiNewtonSolver",
    "ResidualObjective",
    "ScalarFunction",
    "SolveResult",
    "SolverConfig",
    "SpuriousConvergenceError",
    "ToleranceTooSmallError",
    "VAR_TOL",
    "ValuePair",
    "VectorFunction",
    "approx_grad",
    "approx_jacobian",
    "as_objective",
    "backtracking_armijo",
    "bfgs",
    "bfgs_update",
    "brent_method",
    "broyden_method",
    "broyden_update",
    "check_convergence",
    "check_gradient",
    "configure_logging",
    "get_logger",
    "initial_simplex",
    "levenberg_marquardt",
    "nelder_mead",
    "newton_method",
    "print_status",
    "relative_reductions",
    "residual_line_search",
    "set_log_level",
    "solve_linear",
]
