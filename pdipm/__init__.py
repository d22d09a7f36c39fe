r"""Primal-dual interior point methods for convex optimization.

Introduction
------------
This package solves convex optimization problems of the form:
    minimize    f0(x)
    subject to  fi(x) <= 0, i=1, ..., m
                A * x = b,
with fi convex, using the primal-dual interior point method with an infeasible start
(Boyd and Vandenberghe, 2004, section 11.7). The starting point need not satisfy
A * x = b, but it must strictly satisfy the inequality constraints.

Usage
-----
Quadratic programs,
    minimize    (1/2) * x^T * P * x + q^T * x + r
    subject to  G * x <= h
                A * x = b,
are supported out of the box via QuadraticProgram (or solve_qp). A slack variable is
added internally so that any starting point may be used.

For other convex problems, create a class that inherits from ConvexProblem and hand
it to PrimalDualInteriorPointSolver. The methods you'll need to implement are:
- initial_point
- objective, gradient, hessian
- inequality, jacobian, inequality_hessian
- equality
- final_point

When the constraints are linear, or the weighted sum of constraint Hessians has
special structure, also override weighted_inequality_hessian.

References
----------
- Boyd, Stephen and Vandenberghe, Lieven, Convex Optimization, Cambridge University
  Press, 2004.

"""

from .exceptions import (
    ComputationError,
    ConstraintBoundaryError,
    DimensionError,
    InfeasibleIterateError,
    LinearSolveError,
    LineSearchError,
    SevereCurvatureError,
    SolveError,
)
from .numerical_helpers import (
    factor_positive_definite,
    solve_cholesky,
    solve_full_kkt_system,
    solve_kkt_system,
)
from .optimization import (
    Iterate,
    OptimizationResult,
    OptimizationSettings,
    PrimalDualInteriorPointSolver,
    PrimalDualResult,
)
from .problem import ConvexProblem
from .qp import QuadraticProgram, solve_qp

__all__ = [
    "ComputationError",
    "ConstraintBoundaryError",
    "ConvexProblem",
    "DimensionError",
    "InfeasibleIterateError",
    "Iterate",
    "LineSearchError",
    "LinearSolveError",
    "OptimizationResult",
    "OptimizationSettings",
    "PrimalDualInteriorPointSolver",
    "PrimalDualResult",
    "QuadraticProgram",
    "SevereCurvatureError",
    "SolveError",
    "factor_positive_definite",
    "solve_cholesky",
    "solve_full_kkt_system",
    "solve_kkt_system",
    "solve_qp",
]
