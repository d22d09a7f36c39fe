"""Test the primal-dual interior point method."""

from typing import List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
import pytest

from pdipm.exceptions import (
    ComputationError,
    ConstraintBoundaryError,
    DimensionError,
    InfeasibleIterateError,
    LinearSolveError,
    LineSearchError,
    SevereCurvatureError,
)
from pdipm.optimization import (
    Iterate,
    OptimizationSettings,
    PrimalDualInteriorPointSolver,
    PrimalDualResult,
)
from pdipm.problem import ConvexProblem


class LinearObjectiveOverBall(ConvexProblem):
    r"""Minimize c^T x subject to ||x||^2 <= radius^2 and optionally A * x = b.

    Without equality constraints, the solution is x = -radius * c / ||c||, with
    Lagrange multiplier ||c|| / (2 * radius).

    """

    def __init__(
        self,
        c: npt.NDArray[np.float64],
        radius: float = 1.0,
        A: Optional[npt.NDArray[np.float64]] = None,
        b: Optional[npt.NDArray[np.float64]] = None,
    ) -> None:
        self.c = c
        self.radius = radius
        self.A = np.zeros((0, len(c))) if A is None else A
        self.b = np.zeros(0) if b is None else b
        self.final_points: List[Tuple[np.ndarray, np.ndarray, np.ndarray, bool]] = []

    @property
    def dimension(self) -> int:
        return len(self.c)

    @property
    def num_ineq_constraints(self) -> int:
        return 1

    @property
    def num_eq_constraints(self) -> int:
        return self.A.shape[0]

    def initial_point(self, x=None):
        if x is None:
            return np.zeros(self.dimension)
        return x

    def objective(self, x):
        return float(np.dot(self.c, x))

    def gradient(self, x):
        return self.c.copy()

    def hessian(self, x):
        return np.zeros((self.dimension, self.dimension))

    def inequality(self, x):
        return np.array([np.dot(x, x) - self.radius**2])

    def jacobian(self, x):
        return 2.0 * x[np.newaxis, :]

    def inequality_hessian(self, x, i):
        return 2.0 * np.eye(self.dimension)

    def equality(self):
        return self.A, self.b

    def final_point(self, x, lmbda, nu, converged):
        self.final_points.append((x, lmbda, nu, converged))


class LeastNorm(ConvexProblem):
    """Minimize (1/2) ||x||^2 subject to A * x = b. No inequality constraints."""

    def __init__(self, A: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> None:
        self.A = A
        self.b = b
        self.converged: Optional[bool] = None

    @property
    def dimension(self) -> int:
        return self.A.shape[1]

    @property
    def num_ineq_constraints(self) -> int:
        return 0

    @property
    def num_eq_constraints(self) -> int:
        return self.A.shape[0]

    def initial_point(self, x=None):
        return np.ones(self.dimension) if x is None else x

    def objective(self, x):
        return 0.5 * np.dot(x, x)

    def gradient(self, x):
        return x.copy()

    def hessian(self, x):
        return np.eye(self.dimension)

    def inequality(self, x):
        return np.zeros(0)

    def jacobian(self, x):
        return np.zeros((0, self.dimension))

    def inequality_hessian(self, x, i):
        raise IndexError("No inequality constraints.")

    def equality(self):
        return self.A, self.b

    def final_point(self, x, lmbda, nu, converged):
        self.converged = converged


class TestSettings:
    """Test OptimizationSettings."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": -1},
            {"eps_feasibility": 0.0},
            {"eps_gap": -1e-8},
            {"mu_barrier": 1.0},
            {"slack_margin": 0.0},
            {"line_search_beta": 0.5},
            {"line_search_beta": 0.0},
            {"line_search_shrink": 1.0},
            {"min_step": 0.0},
        ],
    )
    def test_invalid_settings(self, kwargs) -> None:
        """Out of range settings are rejected."""
        with pytest.raises(ValueError):
            OptimizationSettings(**kwargs)

    def test_defaults(self) -> None:
        """Defaults are valid."""
        settings = OptimizationSettings()
        assert settings.max_iterations == 50
        assert settings.mu_barrier == 10.0


class TestBallConstrainedProblem:
    """Test a problem with a nonlinear inequality constraint."""

    @pytest.mark.parametrize(
        "seed,n,radius",
        [
            (1101, 2, 1.0),
            (2101, 5, 2.0),
            (3101, 20, 0.5),
            (4101, 50, 1.0),
        ],
    )
    def test_solver(self, seed: int, n: int, radius: float) -> None:
        """Test solver."""
        np.random.seed(seed)
        c = np.random.randn(n)
        problem = LinearObjectiveOverBall(c, radius=radius)
        solver = PrimalDualInteriorPointSolver()

        res = solver.solve(problem)

        assert isinstance(res, PrimalDualResult)
        assert res.converged
        assert res.status == 0
        x_expected = -radius * c / np.linalg.norm(c)
        np.testing.assert_allclose(res.solution, x_expected, atol=1e-6)
        np.testing.assert_allclose(
            res.inequality_multipliers,
            [np.linalg.norm(c) / (2 * radius)],
            rtol=1e-5,
        )
        assert res.objective_value == pytest.approx(-radius * np.linalg.norm(c))
        assert res.surrogate_gaps[-1] <= 1e-8

        assert len(problem.final_points) == 1
        x, lmbda, _, converged = problem.final_points[0]
        assert converged
        np.testing.assert_array_equal(x, res.solution)
        np.testing.assert_array_equal(lmbda, res.inequality_multipliers)

    @pytest.mark.parametrize(
        "seed,n,p",
        [
            (1102, 5, 1),
            (2102, 10, 3),
            (3102, 30, 10),
        ],
    )
    def test_solver_with_equality_constraints(self, seed: int, n: int, p: int) -> None:
        """Equality constraints need not hold at the starting point."""
        np.random.seed(seed)
        c = np.random.randn(n)
        A = np.random.randn(p, n)
        # Pick b so that the affine set passes well inside the ball.
        b = A @ (0.1 * np.random.randn(n) / np.sqrt(n))
        problem = LinearObjectiveOverBall(c, A=A, b=b)

        res = PrimalDualInteriorPointSolver().solve(problem)

        assert res.converged
        np.testing.assert_allclose(A @ res.solution, b, atol=1e-8)
        assert np.dot(res.solution, res.solution) <= 1.0 + 1e-8

        # KKT: c + 2 * lmbda * x + A^T * nu = 0
        lmbda = res.inequality_multipliers[0]
        stationarity = c + 2.0 * lmbda * res.solution + A.T @ res.equality_multipliers
        np.testing.assert_allclose(stationarity, np.zeros(n), atol=1e-7)

    @pytest.mark.parametrize(
        "seed,n",
        [
            (1103, 3),
            (2103, 10),
            (3103, 25),
        ],
    )
    def test_feasibility_invariant(self, seed: int, n: int) -> None:
        """Every accepted iterate has lmbda > 0 and fi(x) < 0."""
        np.random.seed(seed)
        c = np.random.randn(n)
        problem = LinearObjectiveOverBall(c)
        iterates: List[Iterate] = []

        res = PrimalDualInteriorPointSolver().solve(problem, callback=iterates.append)

        assert len(iterates) == res.nits
        for it in iterates:
            assert np.all(it.lmbda > 0)
            assert np.all(it.inequality < 0)
            assert np.all(problem.inequality(it.x) < 0)

    def test_monotone_residual_decrease(self) -> None:
        """Each accepted step decreases the residual sufficiently."""
        np.random.seed(1104)
        c = np.random.randn(8)
        problem = LinearObjectiveOverBall(c)
        settings = OptimizationSettings(line_search_beta=0.05)
        iterates: List[Iterate] = []

        PrimalDualInteriorPointSolver(settings=settings).solve(
            problem, callback=iterates.append
        )

        assert len(iterates) > 0
        for ii, it in enumerate(iterates):
            assert it.nit == ii + 1
            assert 0 < it.step_size <= 1.0
            assert it.residual_norm_after <= (
                1.0 - settings.line_search_beta * it.step_size
            ) * it.residual_norm_before

    def test_infeasible_start(self) -> None:
        """The starting point must be strictly feasible for the inequalities."""
        problem = LinearObjectiveOverBall(np.array([1.0, 1.0]))

        with pytest.raises(InfeasibleIterateError) as excinfo:
            PrimalDualInteriorPointSolver().solve(problem, x0=np.array([2.0, 0.0]))

        assert isinstance(excinfo.value, ComputationError)
        assert excinfo.value.nits == 0
        np.testing.assert_array_equal(excinfo.value.last_iterate, [2.0, 0.0])
        assert problem.final_points == []

    def test_boundary_start(self) -> None:
        """A point on the boundary is not strictly feasible."""
        problem = LinearObjectiveOverBall(np.array([1.0, 1.0]))

        with pytest.raises(InfeasibleIterateError):
            PrimalDualInteriorPointSolver().solve(problem, x0=np.array([1.0, 0.0]))

    def test_step_too_small_for_feasibility(self) -> None:
        """The step is backed off from the boundary, which may fall below min_step."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))
        settings = OptimizationSettings(min_step=0.995)

        with pytest.raises(ConstraintBoundaryError) as excinfo:
            PrimalDualInteriorPointSolver(settings=settings).solve(problem)

        assert isinstance(excinfo.value, LineSearchError)
        assert excinfo.value.step_size < settings.min_step
        assert excinfo.value.nits == 0
        np.testing.assert_array_equal(excinfo.value.last_iterate, [0.0, 0.0])
        assert problem.final_points == []

    def test_initial_guess_not_modified(self) -> None:
        """The solver works on a copy of the starting point."""
        problem = LinearObjectiveOverBall(np.array([1.0, -1.0]))
        x0 = np.array([0.1, 0.1])

        res = PrimalDualInteriorPointSolver().solve(problem, x0=x0)

        np.testing.assert_array_equal(x0, [0.1, 0.1])
        assert res.solution is not x0

    def test_max_iterations(self) -> None:
        """Running out of iterations is reported, not raised."""
        np.random.seed(1105)
        problem = LinearObjectiveOverBall(np.random.randn(10))
        settings = OptimizationSettings(max_iterations=2)

        res = PrimalDualInteriorPointSolver(settings=settings).solve(problem)

        assert not res.converged
        assert res.status == 1
        assert res.nits == 2
        assert len(res.step_sizes) == 2
        assert len(res.residual_norms) == 3
        assert len(problem.final_points) == 1
        assert not problem.final_points[0][3]

    def test_zero_iterations(self) -> None:
        """With no iterations allowed we just report the starting point."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))
        settings = OptimizationSettings(max_iterations=0)

        res = PrimalDualInteriorPointSolver(settings=settings).solve(problem)

        assert res.nits == 0
        assert not res.converged
        np.testing.assert_array_equal(res.solution, [0.0, 0.0])

    def test_verbose(self, capsys) -> None:
        """Verbose mode prints progress."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))
        settings = OptimizationSettings(verbose=True)

        PrimalDualInteriorPointSolver(settings=settings).solve(problem)

        captured = capsys.readouterr()
        assert "Starting primal-dual IPM" in captured.out
        assert "completed successfully" in captured.out

    def test_plot_convergence(self) -> None:
        """Plot residuals and surrogate gaps."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))
        res = PrimalDualInteriorPointSolver().solve(problem)

        ax = res.plot_convergence()

        assert ax.get_xlabel() == "Newton Iterations"
        assert len(ax.get_lines()) == 2
        plt.close("all")


class TestEqualityOnly:
    """Test problems without inequality constraints."""

    @pytest.mark.parametrize(
        "seed,n,p",
        [
            (1201, 10, 3),
            (2201, 50, 20),
            (3201, 5, 5),
        ],
    )
    def test_least_norm(self, seed: int, n: int, p: int) -> None:
        """Solution is A^T (A A^T)^{-1} b."""
        np.random.seed(seed)
        A = np.random.randn(p, n)
        b = np.random.randn(p)
        problem = LeastNorm(A, b)

        res = PrimalDualInteriorPointSolver().solve(problem)

        assert res.converged
        assert problem.converged
        x_expected = A.T @ np.linalg.solve(A @ A.T, b)
        np.testing.assert_allclose(res.solution, x_expected, atol=1e-8)
        assert res.inequality_multipliers.shape == (0,)
        assert all(eta == 0.0 for eta in res.surrogate_gaps)
        # A full Newton step solves an equality constrained quadratic exactly.
        assert res.nits == 1
        assert res.step_sizes == [1.0]

    def test_singular_kkt_system(self) -> None:
        """A linear objective with no constraints has a singular Newton system."""
        problem = LeastNorm(np.zeros((0, 3)), np.zeros(0))
        problem.hessian = lambda x: np.zeros((3, 3))

        with pytest.raises(LinearSolveError) as excinfo:
            PrimalDualInteriorPointSolver().solve(problem)

        assert excinfo.value.nits == 0
        np.testing.assert_array_equal(excinfo.value.last_iterate, np.ones(3))

    def test_ascent_direction(self) -> None:
        """A negated Hessian points the Newton step uphill; no step size helps."""
        problem = LeastNorm(np.zeros((0, 2)), np.zeros(0))
        problem.hessian = lambda x: -np.eye(2)
        settings = OptimizationSettings()

        with pytest.raises(SevereCurvatureError) as excinfo:
            PrimalDualInteriorPointSolver(settings=settings).solve(problem)

        assert isinstance(excinfo.value, LineSearchError)
        assert excinfo.value.step_size < settings.min_step
        assert excinfo.value.actual_norm > excinfo.value.required_norm
        assert excinfo.value.nits == 0
        np.testing.assert_array_equal(excinfo.value.last_iterate, [1.0, 1.0])
        assert problem.converged is None


class TestHookValidation:
    """Test checks on values returned by problem hooks."""

    def test_non_finite_gradient(self) -> None:
        """Non-finite values abort the solve."""
        problem = LeastNorm(np.ones((1, 2)), np.ones(1))
        problem.gradient = lambda x: np.array([np.nan, 0.0])

        with pytest.raises(ComputationError) as excinfo:
            PrimalDualInteriorPointSolver().solve(problem)

        assert excinfo.value.hook == "gradient"
        assert problem.converged is None

    def test_non_finite_objective(self) -> None:
        """The objective is checked at the last iterate."""
        problem = LeastNorm(np.ones((1, 2)), np.ones(1))
        problem.objective = lambda x: np.inf

        with pytest.raises(ComputationError) as excinfo:
            PrimalDualInteriorPointSolver().solve(problem)

        assert excinfo.value.hook == "objective"
        assert excinfo.value.nits == 1
        np.testing.assert_allclose(excinfo.value.last_iterate, [0.5, 0.5])
        assert problem.converged is None

    def test_wrong_jacobian_shape(self) -> None:
        """Hooks must return arrays of the advertised shape."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))
        problem.jacobian = lambda x: np.zeros((2, 2))

        with pytest.raises(DimensionError) as excinfo:
            PrimalDualInteriorPointSolver().solve(problem)

        assert excinfo.value.nits == 0

    def test_wrong_initial_point_shape(self) -> None:
        """The starting point must have one entry per variable."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))

        with pytest.raises(DimensionError):
            PrimalDualInteriorPointSolver().solve(problem, x0=np.zeros(3))

    def test_wrong_equality_shape(self) -> None:
        """A must have one column per variable."""
        problem = LeastNorm(np.ones((1, 3)), np.ones(1))
        problem.equality = lambda: (np.ones((1, 2)), np.ones(1))

        with pytest.raises(DimensionError):
            PrimalDualInteriorPointSolver().solve(problem)

    def test_hook_errors_propagate(self) -> None:
        """Problems may raise ComputationError themselves."""
        problem = LinearObjectiveOverBall(np.array([1.0, 2.0]))

        def hessian(x):
            raise ComputationError("Hessian undefined", hook="hessian")

        problem.hessian = hessian

        with pytest.raises(ComputationError) as excinfo:
            PrimalDualInteriorPointSolver().solve(problem)

        assert excinfo.value.nits == 0
        np.testing.assert_array_equal(excinfo.value.last_iterate, [0.0, 0.0])
