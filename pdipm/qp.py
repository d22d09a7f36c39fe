r"""Quadratic programs.

Solves
    minimize    (1/2) * x^T * P * x + q^T * x + r
    subject to  G * x <= h
                A * x = b
with the primal-dual interior point method.

The method needs a starting point strictly satisfying the inequality constraints. To
start from an arbitrary x0, we introduce a scalar slack variable s and instead solve
    minimize    (1/2) * x^T * P * x + q^T * x + r
    subject to  G * x <= h + s * 1
                A * x = b
                s = 0,
initializing s0 := max(G * x0 - h) + slack_margin. Then (x0, s0) is strictly feasible
for the inequality constraints, and the infeasible start method drives s to zero along
with the other equality residuals.

"""

import dataclasses
from collections.abc import Callable
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt

from .exceptions import DimensionError
from .optimization import (
    Iterate,
    OptimizationSettings,
    PrimalDualInteriorPointSolver,
    PrimalDualResult,
)
from .problem import ConvexProblem


@dataclasses.dataclass
class _QuadraticProgramData:
    P: npt.NDArray[np.float64]
    q: npt.NDArray[np.float64]
    r: float
    G: npt.NDArray[np.float64]
    h: npt.NDArray[np.float64]
    A: npt.NDArray[np.float64]
    b: npt.NDArray[np.float64]


class QuadraticProgram(ConvexProblem):
    """Quadratic program solver.

    Usage
    -----
        qp = QuadraticProgram()
        qp.solve(x, P, q, r, G, h, A, b)
        if qp.is_converged():
            ...

    `x` is used as the initial guess and overwritten with the solution.

    Internally the variable is z = [x; s], of dimension n + 1. The problem hooks below
    all operate on z.

    """

    def __init__(self, settings: Optional[OptimizationSettings] = None) -> None:
        """Initialize solver."""
        if settings is None:
            self.settings: OptimizationSettings = OptimizationSettings()
        else:
            self.settings = settings

        self.solver = PrimalDualInteriorPointSolver(settings=self.settings)
        self._data: Optional[_QuadraticProgramData] = None
        self._converged = False
        self.nits = 0
        self.solution: Optional[npt.NDArray[np.float64]] = None
        self.slack: Optional[float] = None
        self.inequality_multipliers: Optional[npt.NDArray[np.float64]] = None
        self.equality_multipliers: Optional[npt.NDArray[np.float64]] = None

    def solve(
        self,
        x: npt.NDArray[np.float64],
        P: npt.NDArray[np.float64],
        q: npt.NDArray[np.float64],
        r: float | npt.NDArray[np.float64],
        G: Optional[npt.NDArray[np.float64]],
        h: Optional[npt.NDArray[np.float64]],
        A: Optional[npt.NDArray[np.float64]],
        b: Optional[npt.NDArray[np.float64]],
        callback: Optional[Callable[[Iterate], None]] = None,
    ) -> PrimalDualResult:
        """Solve the quadratic program.

        Parameters
        ----------
         x : vector of length n
            Initial guess; need not be feasible. If x is a NumPy array, it is overwritten
            with the last iterate, and so must have a floating point dtype.
         P : n-by-n matrix
            Symmetric positive semidefinite (not checked).
         q : vector of length n
         r : float
            Constant term. A single element array is also accepted.
         G : m-by-n matrix, optional
         h : vector of length m, optional
            Inequality constraints G * x <= h. Pass None for both if there are none.
         A : p-by-n matrix, optional
         b : vector of length p, optional
            Equality constraints A * x = b. Pass None for both if there are none.
         callback : Callable, optional
            Called with an Iterate after every accepted Newton step. The iterate
            includes the slack variable as the last entry of x.

        Returns
        -------
         res : PrimalDualResult
            The solution (with the slack variable removed) and other helpful info.

        Raises
        ------
         DimensionError
            If the shapes are inconsistent. Raised before any iteration.
         TypeError
            If x is a NumPy array with a non-floating dtype.
         SolveError
            Other solver errors propagate unchanged.

        """
        self._converged = False
        self.nits = 0
        self.solution = None
        self.slack = None
        self.inequality_multipliers = None
        self.equality_multipliers = None

        self._data = self._validate(x, P, q, r, G, h, A, b)
        try:
            res = self.solver.solve(
                self, x0=np.asarray(x, dtype=np.float64), callback=callback
            )
        finally:
            n = self._data.P.shape[0]
            p = self._data.A.shape[0]
            self._data = None

        self.nits = res.nits
        if isinstance(x, np.ndarray):
            x[...] = res.solution[0:n]

        return dataclasses.replace(
            res,
            solution=res.solution[0:n].copy(),
            equality_multipliers=res.equality_multipliers[0:p].copy(),
        )

    def is_converged(self) -> bool:
        """Indicate whether the previous solve converged."""
        return self._converged

    @staticmethod
    def _validate(
        x: npt.NDArray[np.float64],
        P: npt.NDArray[np.float64],
        q: npt.NDArray[np.float64],
        r: float | npt.NDArray[np.float64],
        G: Optional[npt.NDArray[np.float64]],
        h: Optional[npt.NDArray[np.float64]],
        A: Optional[npt.NDArray[np.float64]],
        b: Optional[npt.NDArray[np.float64]],
    ) -> _QuadraticProgramData:
        """Check shapes and convert everything to float arrays."""
        P = np.asarray(P, dtype=np.float64)
        if P.ndim != 2 or P.shape[0] != P.shape[1]:
            raise DimensionError(f"P must be square; got shape {P.shape}.")

        n = P.shape[0]
        q = np.asarray(q, dtype=np.float64)
        if q.shape != (n,):
            raise DimensionError(f"q has shape {q.shape}; expected ({n},).")

        r_arr = np.asarray(r, dtype=np.float64)
        if r_arr.size != 1:
            raise DimensionError(f"r must be a scalar; got shape {r_arr.shape}.")

        if isinstance(x, np.ndarray) and not np.issubdtype(x.dtype, np.floating):
            raise TypeError(
                f"x has dtype {x.dtype}; it is overwritten with the solution, so it "
                "must be a floating point array."
            )

        x = np.asarray(x, dtype=np.float64)
        if x.shape != (n,):
            raise DimensionError(f"x has shape {x.shape}; expected ({n},).")

        G, h = _constraint_pair(G, h, n, "G", "h")
        A, b = _constraint_pair(A, b, n, "A", "b")
        return _QuadraticProgramData(
            P=P, q=q, r=float(r_arr.reshape(-1)[0]), G=G, h=h, A=A, b=b
        )

    @property
    def data(self) -> _QuadraticProgramData:
        """Problem data for the solve in progress."""
        if self._data is None:
            raise ValueError("No quadratic program is being solved.")
        return self._data

    @property
    def dimension(self) -> int:
        """Problem dimension, including the slack variable."""
        return self.data.P.shape[0] + 1

    @property
    def num_eq_constraints(self) -> int:
        """Count equality constraints, including s = 0."""
        return self.data.A.shape[0] + 1

    @property
    def num_ineq_constraints(self) -> int:
        """Count inequality constraints."""
        return self.data.G.shape[0]

    def initial_point(
        self, x: Optional[npt.NDArray[np.float64]] = None
    ) -> npt.NDArray[np.float64]:
        """Append a slack large enough for G * x0 - h - s0 < 0."""
        data = self.data
        n = data.P.shape[0]
        if x is None:
            x = np.zeros(n)

        if data.G.shape[0] > 0:
            s0 = np.max(data.G @ x - data.h) + self.settings.slack_margin
        else:
            s0 = 0.0
        return np.concatenate([x, [s0]])

    def objective(self, x: npt.NDArray[np.float64]) -> float:
        """Calculate f0 at x."""
        data = self.data
        w = x[:-1]
        return 0.5 * np.dot(w, data.P @ w) + np.dot(data.q, w) + data.r

    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of f0 at x."""
        data = self.data
        return np.concatenate([data.P @ x[:-1] + data.q, [0.0]])

    def hessian(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate Hessian of f0 at x."""
        data = self.data
        n = data.P.shape[0]
        H = np.zeros((n + 1, n + 1))
        H[0:n, 0:n] = data.P
        return H

    def inequality(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate G * w - h - s."""
        data = self.data
        return data.G @ x[:-1] - data.h - x[-1]

    def jacobian(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate [G, -1]."""
        G = self.data.G
        return np.hstack([G, -np.ones((G.shape[0], 1))])

    def inequality_hessian(
        self, x: npt.NDArray[np.float64], i: int
    ) -> npt.NDArray[np.float64]:
        """Constraints are linear."""
        return np.zeros((self.dimension, self.dimension))

    def weighted_inequality_hessian(
        self, x: npt.NDArray[np.float64], lmbda: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Constraints are linear."""
        return np.zeros((self.dimension, self.dimension))

    def equality(self) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Return [A 0; 0 1] and [b; 0]."""
        data = self.data
        p, n = data.A.shape
        A = np.zeros((p + 1, n + 1))
        A[0:p, 0:n] = data.A
        A[p, n] = 1.0
        return A, np.concatenate([data.b, [0.0]])

    def final_point(
        self,
        x: npt.NDArray[np.float64],
        lmbda: npt.NDArray[np.float64],
        nu: npt.NDArray[np.float64],
        converged: bool,
    ) -> None:
        """Record the solution with the slack variable removed."""
        self.solution = x[:-1]
        self.slack = float(x[-1])
        self.inequality_multipliers = lmbda
        self.equality_multipliers = nu[:-1]
        self._converged = converged


def _constraint_pair(
    M: Optional[npt.NDArray[np.float64]],
    v: Optional[npt.NDArray[np.float64]],
    n: int,
    M_name: str,
    v_name: str,
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Check a constraint matrix and right hand side, replacing None by empty arrays."""
    if (M is None) != (v is None):
        raise DimensionError(f"{M_name} and {v_name} must be provided together.")

    if M is None or v is None:
        return np.zeros((0, n)), np.zeros(0)

    M = np.asarray(M, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    if M.ndim != 2 or M.shape[1] != n:
        raise DimensionError(
            f"{M_name} has shape {M.shape}; expected {n} column(s) to match P."
        )

    if v.shape != (M.shape[0],):
        raise DimensionError(
            f"{v_name} has shape {v.shape}; expected ({M.shape[0]},) to match "
            f"{M_name}."
        )

    return M, v


def solve_qp(
    P: npt.NDArray[np.float64],
    q: npt.NDArray[np.float64],
    r: float = 0.0,
    G: Optional[npt.NDArray[np.float64]] = None,
    h: Optional[npt.NDArray[np.float64]] = None,
    A: Optional[npt.NDArray[np.float64]] = None,
    b: Optional[npt.NDArray[np.float64]] = None,
    x0: Optional[npt.NDArray[np.float64]] = None,
    settings: Optional[OptimizationSettings] = None,
) -> PrimalDualResult:
    """Solve a quadratic program without modifying the initial guess.

    See QuadraticProgram.solve for the meaning of the parameters. If x0 is not
    specified, the origin is used.

    """
    P = np.asarray(P, dtype=np.float64)
    if x0 is None:
        x = np.zeros(P.shape[0] if P.ndim == 2 else 0)
    else:
        x = np.array(x0, dtype=np.float64)

    return QuadraticProgram(settings=settings).solve(x, P, q, r, G, h, A, b)
