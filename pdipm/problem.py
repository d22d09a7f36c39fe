r"""The problem contract implemented by every convex problem.

A concrete problem describes
    minimize    f0(x)
    subject to  fi(x) < 0, i=1, ..., m
                A * x = b
by supplying values and derivatives of f0 and fi at a point, and the equality system
(A, b). The solver only ever talks to problems through this interface.

"""

from abc import ABC, abstractmethod, abstractproperty
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt


class ConvexProblem(ABC):
    """Base class for a convex problem.

    Hooks are pure functions of the point they are handed and return fresh arrays;
    they must not hold on to, or modify, the arrays passed in. Any hook may raise a
    ComputationError when it cannot be evaluated.

    """

    @abstractproperty
    def dimension(self) -> int:
        """Number of variables."""

    @abstractproperty
    def num_ineq_constraints(self) -> int:
        """Count inequality constraints."""

    @abstractproperty
    def num_eq_constraints(self) -> int:
        """Count equality constraints."""

    @abstractmethod
    def initial_point(
        self, x: Optional[npt.NDArray[np.float64]] = None
    ) -> npt.NDArray[np.float64]:
        """Produce a starting point.

        Parameters
        ----------
         x : vector, optional
            Initial guess supplied by the caller, if any.

        Returns
        -------
         x0 : vector
            Starting point. It need not satisfy A * x0 = b, but it must satisfy
            fi(x0) < 0.

        """

    @abstractmethod
    def objective(self, x: npt.NDArray[np.float64]) -> float:
        """Calculate f0 at x."""

    @abstractmethod
    def gradient(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate gradient of f0 at x."""

    @abstractmethod
    def hessian(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate Hessian of f0 at x. Must be positive semidefinite."""

    @abstractmethod
    def inequality(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate the vector of constraints, fi(x) < 0."""

    @abstractmethod
    def jacobian(self, x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Calculate the gradients of constraints, one row per constraint."""

    @abstractmethod
    def inequality_hessian(
        self, x: npt.NDArray[np.float64], i: int
    ) -> npt.NDArray[np.float64]:
        """Calculate the Hessian of the i-th constraint at x."""

    def weighted_inequality_hessian(
        self, x: npt.NDArray[np.float64], lmbda: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        r"""Calculate \sum_i lmbda_i * Hessian of fi at x.

        This is provided as a convenience, but it forms m dense n-by-n matrices. Problems
        with linear constraints should override it to return zeros, and problems where
        the sum has special structure can compute it directly.

        """
        n = self.dimension
        H = np.zeros((n, n))
        for i in range(self.num_ineq_constraints):
            H += lmbda[i] * self.inequality_hessian(x, i)
        return H

    @abstractmethod
    def equality(self) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Return (A, b) such that the equality constraints are A * x = b."""

    @abstractmethod
    def final_point(
        self,
        x: npt.NDArray[np.float64],
        lmbda: npt.NDArray[np.float64],
        nu: npt.NDArray[np.float64],
        converged: bool,
    ) -> None:
        """Receive the last iterate.

        Parameters
        ----------
         x : vector
            Last primal iterate.
         lmbda : vector
            Lagrange multipliers for inequality constraints.
         nu : vector
            Lagrange multipliers for equality constraints.
         converged : bool
            Whether the solver met its tolerances, as opposed to running out of
            iterations.

        """
