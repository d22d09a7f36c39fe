r"""Primal-dual interior point method.

Solves
    minimize    f0(x)
    subject to  fi(x) <= 0, i=1, ..., m
                A * x = b
for any problem implementing ConvexProblem, following the primal-dual interior point
method of Boyd and Vandenberghe (2004), section 11.7.

Each iteration linearizes the modified KKT conditions
    r_dual    = grad f0(x) + Df(x)^T * lambda + A^T * nu = 0
    r_cent    = -diag(lambda) * f(x) - (1 / t) * 1       = 0
    r_primal  = A * x - b                                 = 0
about the current (x, lambda, nu) and takes a damped Newton step. The barrier
parameter is tied to the surrogate duality gap, eta = -f(x)^T lambda, via
t = mu * m / eta. The starting point need not satisfy A * x = b (infeasible start),
but it must satisfy f(x) < 0, and every accepted step preserves both f(x) < 0 and
lambda > 0.

References
----------
- Boyd, Stephen and Vandenberghe, Lieven, Convex Optimization, Cambridge University
  Press, 2004.

"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from matplotlib.axes import Axes

from .exceptions import (
    ComputationError,
    ConstraintBoundaryError,
    DimensionError,
    InfeasibleIterateError,
    LinearSolveError,
    SevereCurvatureError,
    SolveError,
)
from .numerical_helpers import (
    factor_positive_definite,
    solve_cholesky,
    solve_full_kkt_system,
    solve_kkt_system,
)
from .problem import ConvexProblem


@dataclass
class OptimizationSettings:
    """Optimization settings.

    Parameters
    ----------
    max_iterations : int, default=50
        The maximum number of Newton steps. Running out of iterations is not an error:
        the last iterate is still returned, flagged as not converged.
    eps_feasibility : float, default=1e-8
        Tolerance on the norms of the primal residual, A * x - b, and the dual
        residual, the gradient of the Lagrangian.
    eps_gap : float, default=1e-8
        Tolerance on the surrogate duality gap.
    mu_barrier : float, default=10.0
        Must exceed 1. The barrier parameter is set to mu_barrier * m / eta each
        iteration. Larger values converge in fewer iterations but make the Newton
        system worse conditioned.
    slack_margin : float, default=1.0
        Used by problems that add a slack variable to obtain a strictly feasible
        starting point: the starting point satisfies the relaxed constraints with this
        margin.
    line_search_beta : float, default=0.01
        Sufficient decrease parameter in (0, 0.5). A step of size s is accepted when the
        residual norm shrinks by at least a factor (1 - line_search_beta * s).
    line_search_shrink : float, default=0.5
        The factor, in (0, 1), by which the step size is reduced in the backtracking
        line search.
    min_step : float, default=1e-10
        The minimum allowable step size for backtracking line search. Falling below it
        means the search direction has stalled.
    verbose : bool, default=False
        If True, print status along with how long it took to execute each step.

    """

    max_iterations: int = 50
    eps_feasibility: float = 1e-8
    eps_gap: float = 1e-8
    mu_barrier: float = 10.0
    slack_margin: float = 1.0
    line_search_beta: float = 0.01
    line_search_shrink: float = 0.5
    min_step: float = 1e-10
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative.")
        if self.eps_feasibility <= 0 or self.eps_gap <= 0:
            raise ValueError("Tolerances must be positive.")
        if self.mu_barrier <= 1.0:
            raise ValueError("mu_barrier must be greater than 1.")
        if self.slack_margin <= 0:
            raise ValueError("slack_margin must be positive.")
        if not 0.0 < self.line_search_beta < 0.5:
            raise ValueError("line_search_beta must be in (0, 0.5).")
        if not 0.0 < self.line_search_shrink < 1.0:
            raise ValueError("line_search_shrink must be in (0, 1).")
        if not 0.0 < self.min_step < 1.0:
            raise ValueError("min_step must be in (0, 1).")


@dataclass
class OptimizationResult:
    """Wrapper for generic optimization result."""

    solution: npt.NDArray[np.float64]


@dataclass
class Iterate:
    """An accepted iterate, as passed to the solver callback.

    Parameters
    ----------
     nit : int
        Number of Newton steps taken, including this one.
     x, lmbda, nu : vectors
        Primal variable and Lagrange multipliers after the step.
     inequality : vector
        fi(x) after the step.
     step_size : float
        Step size chosen by the line search.
     residual_norm_before, residual_norm_after : float
        Norm of the residual triple before and after the step, both evaluated with the
        barrier parameter in effect during the step.

    """

    nit: int
    x: npt.NDArray[np.float64]
    lmbda: npt.NDArray[np.float64]
    nu: npt.NDArray[np.float64]
    inequality: npt.NDArray[np.float64]
    step_size: float
    residual_norm_before: float
    residual_norm_after: float


@dataclass
class PrimalDualResult(OptimizationResult):
    """Wrapper for the results of the primal-dual interior point method.

    Parameters
    ----------
     solution : vector
        The last iterate.
     objective_value : float
        Objective value at the last iterate.
     inequality_multipliers, equality_multipliers : vectors
        Lagrange multipliers for constraints.
     surrogate_gaps : List[float]
        Surrogate duality gap at each evaluated iterate, starting with the initial
        point.
     residual_norms : List[float]
        Norm of the residual triple at each evaluated iterate.
     step_sizes : List[float]
        Step size accepted at each Newton step.
     nits : int
        Number of Newton steps taken.
     status : [0, 1]
        Solution status:
          0 : method converged to the desired tolerances
          1 : method ran out of iterations
     message : str
        Summary of result.

    """

    objective_value: float
    inequality_multipliers: npt.NDArray[np.float64]
    equality_multipliers: npt.NDArray[np.float64]
    surrogate_gaps: List[float]
    residual_norms: List[float]
    step_sizes: List[float]
    nits: int
    status: Literal[0, 1]
    message: str

    @property
    def converged(self) -> bool:
        """Whether the method met its tolerances."""
        return self.status == 0

    def plot_convergence(self, ax: Optional[Axes] = None) -> Axes:
        """Plot convergence."""
        if ax is None:
            _, ax = plt.subplots()

        iterations = [ii for ii in range(len(self.residual_norms))]
        ax.plot(iterations, self.residual_norms, marker="o", label="Residual norm")
        ax.plot(iterations, self.surrogate_gaps, marker="s", label="Surrogate gap")
        ax.set_yscale("log")
        ax.set_xlabel("Newton Iterations")
        ax.legend()
        return ax


class PrimalDualInteriorPointSolver:
    """Solve a convex problem using a primal-dual interior point method."""

    def __init__(self, settings: Optional[OptimizationSettings] = None) -> None:
        """Initialize solver."""
        if settings is None:
            self.settings: OptimizationSettings = OptimizationSettings()
        else:
            self.settings = settings

    def solve(
        self,
        problem: ConvexProblem,
        x0: Optional[npt.NDArray[np.float64]] = None,
        callback: Optional[Callable[[Iterate], None]] = None,
    ) -> PrimalDualResult:
        r"""Solve optimization problem.

        Parameters
        ----------
         problem : ConvexProblem
            The problem to solve.
         x0 : vector, optional
            Initial guess, handed to `problem.initial_point`. Need not satisfy the
            equality constraints.
         callback : Callable, optional
            Called with an Iterate after every accepted Newton step.

        Returns
        -------
         res : PrimalDualResult
            The last iterate and other helpful info. Check `res.converged`: running out
            of iterations is reported through the status rather than an exception.

        Raises
        ------
         DimensionError
            If the problem data have inconsistent shapes. Raised before any Newton step.
         ComputationError
            If a hook returns a non-finite value, or the starting point is not strictly
            feasible for the inequality constraints.
         LinearSolveError
            If the Newton system cannot be solved.
         LineSearchError
            If the step size falls below `settings.min_step`.

        """
        settings = self.settings
        n = problem.dimension
        m = problem.num_ineq_constraints
        p = problem.num_eq_constraints

        x = np.array(problem.initial_point(x0), dtype=np.float64)
        if x.shape != (n,):
            raise DimensionError(
                f"Dimension mismatch: initial point has shape {x.shape}; expected ({n},)."
            )

        A, b = problem.equality()
        A = self._check_hook("equality", A, (p, n))
        b = self._check_hook("equality", b, (p,))

        lmbda = np.ones(m)
        nu = np.zeros(p)

        surrogate_gaps: List[float] = []
        residual_norms: List[float] = []
        step_sizes: List[float] = []
        status: Literal[0, 1] = 1
        message = "Primal-dual interior point method reached the maximum iterations"

        if settings.verbose:
            overall_start_time = time.time()
            print(f"  Starting primal-dual IPM with {n=:}, {m=:}, {p=:}")

        nit = 0
        for nit in range(settings.max_iterations + 1):
            try:
                fi = self._inequality(problem, x)
                if m > 0 and not np.all(fi < 0):
                    raise InfeasibleIterateError(
                        "Iterate is not strictly feasible.", max_violation=fi.max()
                    )

                eta = -np.dot(fi, lmbda) if m > 0 else 0.0
                t = settings.mu_barrier * m / eta if m > 0 else np.inf
                r_dual, r_cent, r_primal, Df = self.residuals(
                    problem, x, lmbda, nu, fi, t, A, b
                )
                r_norm = self._norm(r_dual, r_cent, r_primal)
                surrogate_gaps.append(eta)
                residual_norms.append(r_norm)

                if (
                    np.linalg.norm(r_primal) <= settings.eps_feasibility
                    and np.linalg.norm(r_dual) <= settings.eps_feasibility
                    and eta <= settings.eps_gap
                ):
                    status = 0
                    message = (
                        "Primal-dual interior point method completed successfully to "
                        "the desired tolerance"
                    )
                    break

                if nit == settings.max_iterations:
                    break

                if settings.verbose:
                    start_time = time.time()

                delta_x, delta_lmbda, delta_nu = self.calculate_newton_step(
                    problem, x, lmbda, fi, Df, A, r_dual, r_cent, r_primal
                )
                btls_s, r_norm_new, fi_new = self.backtracking_line_search(
                    problem,
                    x=x,
                    lmbda=lmbda,
                    nu=nu,
                    delta_x=delta_x,
                    delta_lmbda=delta_lmbda,
                    delta_nu=delta_nu,
                    t=t,
                    r_norm=r_norm,
                    A=A,
                    b=b,
                )
            except SolveError as e:
                if e.last_iterate is None:
                    e.last_iterate = x.copy()
                    e.nits = nit
                raise

            x += btls_s * delta_x
            lmbda += btls_s * delta_lmbda
            nu += btls_s * delta_nu
            step_sizes.append(btls_s)

            if settings.verbose:
                end_time = time.time()
                print(
                    f"    {nit + 1:02d} eta={eta:.03e}, residual={r_norm:.03e}, "
                    f"{btls_s=:.03g}; step took {1000 * (end_time - start_time):.03f} ms"
                )

            if callback is not None:
                callback(
                    Iterate(
                        nit=nit + 1,
                        x=x.copy(),
                        lmbda=lmbda.copy(),
                        nu=nu.copy(),
                        inequality=fi_new.copy(),
                        step_size=btls_s,
                        residual_norm_before=r_norm,
                        residual_norm_after=r_norm_new,
                    )
                )

        if settings.verbose:
            overall_end_time = time.time()
            print(
                f"  {message} after {nit} step(s) in "
                f"{1000 * (overall_end_time - overall_start_time):.03f} ms"
            )

        try:
            objective_value = float(
                self._check_hook("objective", problem.objective(x), ())
            )
        except SolveError as e:
            if e.last_iterate is None:
                e.last_iterate = x.copy()
                e.nits = nit
            raise

        problem.final_point(x.copy(), lmbda.copy(), nu.copy(), status == 0)

        return PrimalDualResult(
            solution=x,
            objective_value=objective_value,
            inequality_multipliers=lmbda,
            equality_multipliers=nu,
            surrogate_gaps=surrogate_gaps,
            residual_norms=residual_norms,
            step_sizes=step_sizes,
            nits=nit,
            status=status,
            message=message,
        )

    def residuals(
        self,
        problem: ConvexProblem,
        x: npt.NDArray[np.float64],
        lmbda: npt.NDArray[np.float64],
        nu: npt.NDArray[np.float64],
        fi: npt.NDArray[np.float64],
        t: float,
        A: npt.NDArray[np.float64],
        b: npt.NDArray[np.float64],
    ) -> Tuple[
        npt.NDArray[np.float64],
        npt.NDArray[np.float64],
        npt.NDArray[np.float64],
        npt.NDArray[np.float64],
    ]:
        """Calculate the residual triple.

        Parameters
        ----------
         problem : ConvexProblem
            The problem.
         x, lmbda, nu : vectors
            The point at which to evaluate the residuals.
         fi : vector
            Inequality constraints evaluated at x.
         t : float
            Barrier parameter.
         A, b : matrix, vector
            Equality constraints.

        Returns
        -------
         r_dual, r_cent, r_primal : vectors
            Dual, centrality, and primal residuals.
         Df : matrix
            Jacobian of the inequality constraints at x.

        """
        n = problem.dimension
        m = problem.num_ineq_constraints
        grad = self._check_hook("gradient", problem.gradient(x), (n,))
        Df = self._check_hook("jacobian", problem.jacobian(x), (m, n))

        r_dual = grad + Df.T @ lmbda + A.T @ nu
        if m > 0:
            r_cent = -lmbda * fi - 1.0 / t
        else:
            r_cent = np.zeros(0)
        r_primal = A @ x - b
        return r_dual, r_cent, r_primal, Df

    def calculate_newton_step(
        self,
        problem: ConvexProblem,
        x: npt.NDArray[np.float64],
        lmbda: npt.NDArray[np.float64],
        fi: npt.NDArray[np.float64],
        Df: npt.NDArray[np.float64],
        A: npt.NDArray[np.float64],
        r_dual: npt.NDArray[np.float64],
        r_cent: npt.NDArray[np.float64],
        r_primal: npt.NDArray[np.float64],
    ) -> Tuple[
        npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]
    ]:
        r"""Calculate the primal-dual search direction.

        Returns
        -------
         delta_x, delta_lmbda, delta_nu : vectors
            Newton step.

        Notes
        -----
        The search direction solves the linearized KKT conditions:
           _                                _   _         _       _          _
          | H_L               Df^T      A^T  | |  delta_x  |     |  r_dual    |
          | -diag(lmbda) Df   -diag(f)   0   | | delta_lmbda | = -|  r_cent    |
          | A                 0          0   | |  delta_nu  |     |  r_primal  |
           -                                -   -         -       -          -
        where H_L is the Hessian of the Lagrangian, the Hessian of f0 plus
        \sum_i lmbda_i times the Hessian of fi. Since f < 0, the second row gives
           delta_lmbda = diag(lmbda / -f) Df delta_x + r_cent / f,
        and substituting into the first row yields the reduced system:
           _           _   _        _       _                             _
          | H_pd    A^T | | delta_x  |     | r_dual + Df^T (r_cent / f)    |
          | A        0  | | delta_nu | = - |          r_primal             |
           -           -   -        -       -                             -
        where H_pd = H_L + Df^T diag(lmbda / -f) Df. When H_pd is positive definite we
        solve this with block elimination; otherwise (e.g. a linear objective that is
        only bounded via the equality constraints) we factor the full system.

        """
        n = problem.dimension
        m = problem.num_ineq_constraints
        H = self._check_hook("hessian", problem.hessian(x), (n, n))
        if m > 0:
            H = H + self._check_hook(
                "inequality_hessian",
                problem.weighted_inequality_hessian(x, lmbda),
                (n, n),
            )
            d = lmbda / -fi
            H_pd = H + Df.T @ (d[:, np.newaxis] * Df)
            g = -(r_dual + Df.T @ (r_cent / fi))
        else:
            H_pd = H
            g = -r_dual

        H_pd = 0.5 * (H_pd + H_pd.T)
        try:
            cho = factor_positive_definite(H_pd)
        except LinearSolveError:
            delta_x, delta_nu = solve_full_kkt_system(H_pd, A, g, h=-r_primal)
        else:
            delta_x, delta_nu = solve_kkt_system(
                A, g, hessian_solve=solve_cholesky, h=-r_primal, cho=cho
            )

        if m > 0:
            delta_lmbda = d * (Df @ delta_x) + r_cent / fi
        else:
            delta_lmbda = np.zeros(0)

        if not (
            np.all(np.isfinite(delta_x))
            and np.all(np.isfinite(delta_lmbda))
            and np.all(np.isfinite(delta_nu))
        ):
            raise LinearSolveError("Newton step had non-finite entries.")

        return delta_x, delta_lmbda, delta_nu

    def backtracking_line_search(
        self,
        problem: ConvexProblem,
        x: npt.NDArray[np.float64],
        lmbda: npt.NDArray[np.float64],
        nu: npt.NDArray[np.float64],
        delta_x: npt.NDArray[np.float64],
        delta_lmbda: npt.NDArray[np.float64],
        delta_nu: npt.NDArray[np.float64],
        t: float,
        r_norm: float,
        A: npt.NDArray[np.float64],
        b: npt.NDArray[np.float64],
    ) -> Tuple[float, float, npt.NDArray[np.float64]]:
        """Perform backtracking line search.

        First we find the largest step keeping lmbda strictly positive and back off by
        1%, then shrink until fi(x + s * delta_x) < 0. Then we keep shrinking until the
        residual norm has decreased sufficiently. The barrier parameter is held fixed.

        Parameters
        ----------
         problem : ConvexProblem
            The problem.
         x, lmbda, nu : vectors
            Current iterate.
         delta_x, delta_lmbda, delta_nu : vectors
            Search direction.
         t : float
            Barrier parameter.
         r_norm : float
            Norm of the residual triple at the current iterate.
         A, b : matrix, vector
            Equality constraints.

        Returns
        -------
         btls_s : float
            Step size.
         r_norm_new : float
            Norm of the residual triple at the new iterate.
         fi_new : vector
            Inequality constraints at the new iterate.

        """
        m = problem.num_ineq_constraints
        beta = self.settings.line_search_beta
        shrink = self.settings.line_search_shrink
        min_step = self.settings.min_step

        btls_s = 1.0
        if m > 0:
            decreasing = delta_lmbda < 0
            if np.any(decreasing):
                btls_s = min(
                    1.0, np.min(-lmbda[decreasing] / delta_lmbda[decreasing])
                )
            btls_s *= 0.99

        while True:
            if btls_s < min_step:
                raise ConstraintBoundaryError(
                    "Search direction takes us too close to constraint boundaries.",
                    step_size=btls_s,
                )
            fi_new = self._inequality(problem, x + btls_s * delta_x, check_finite=False)
            if np.all(fi_new < 0):
                break
            btls_s *= shrink

        while True:
            r_dual, r_cent, r_primal, _ = self.residuals(
                problem,
                x + btls_s * delta_x,
                lmbda + btls_s * delta_lmbda,
                nu + btls_s * delta_nu,
                fi_new,
                t,
                A,
                b,
            )
            r_norm_new = self._norm(r_dual, r_cent, r_primal)
            if r_norm_new <= (1.0 - beta * btls_s) * r_norm:
                return btls_s, r_norm_new, fi_new

            btls_s *= shrink
            if btls_s < min_step:
                raise SevereCurvatureError(
                    "Small step sizes did not adequately decrease the residual.",
                    step_size=btls_s,
                    required_norm=(1.0 - beta * btls_s) * r_norm,
                    actual_norm=r_norm_new,
                )
            fi_new = self._inequality(problem, x + btls_s * delta_x)

    def _inequality(
        self,
        problem: ConvexProblem,
        x: npt.NDArray[np.float64],
        check_finite: bool = True,
    ) -> npt.NDArray[np.float64]:
        """Evaluate fi at x.

        During the feasibility phase of the line search a trial point may lie outside
        the domain of fi; non-finite values there simply count as infeasible.

        """
        m = problem.num_ineq_constraints
        fi = problem.inequality(x)
        if check_finite:
            return self._check_hook("inequality", fi, (m,))

        fi = np.asarray(fi, dtype=np.float64)
        if fi.shape != (m,):
            raise DimensionError(
                f"Dimension mismatch: inequality returned shape {fi.shape}; "
                f"expected ({m},)."
            )
        return fi

    @staticmethod
    def _check_hook(
        name: str, value: npt.ArrayLike, shape: Tuple[int, ...]
    ) -> npt.NDArray[np.float64]:
        """Validate the shape and finiteness of a value returned by a hook."""
        arr = np.asarray(value, dtype=np.float64)
        if arr.shape != shape:
            raise DimensionError(
                f"Dimension mismatch: {name} returned shape {arr.shape}; "
                f"expected {shape}."
            )
        if not np.all(np.isfinite(arr)):
            raise ComputationError(f"{name} returned a non-finite value.", hook=name)
        return arr

    @staticmethod
    def _norm(
        r_dual: npt.NDArray[np.float64],
        r_cent: npt.NDArray[np.float64],
        r_primal: npt.NDArray[np.float64],
    ) -> float:
        """Calculate the Euclidean norm of the stacked residuals."""
        return float(np.sqrt(r_dual @ r_dual + r_cent @ r_cent + r_primal @ r_primal))
