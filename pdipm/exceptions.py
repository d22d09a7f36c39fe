"""Custom exceptions."""

from typing import Optional

import numpy as np
import numpy.typing as npt


class SolveError(Exception):
    """Base class for solver errors."""

    def __init__(
        self,
        message: str,
        last_iterate: Optional[npt.NDArray[np.float64]] = None,
        nits: int = 0,
    ) -> None:
        self.message = message
        self.last_iterate = last_iterate
        self.nits = nits

    def __str__(self) -> str:
        """Pretty-print error."""
        return self.message


class DimensionError(SolveError, ValueError):
    """Raised when problem data have inconsistent shapes.

    This is always detected before the first Newton step.

    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ComputationError(SolveError):
    """Raised when a problem hook fails or returns a non-finite value."""

    def __init__(
        self,
        message: str,
        hook: Optional[str] = None,
        last_iterate: Optional[npt.NDArray[np.float64]] = None,
        nits: int = 0,
    ) -> None:
        super().__init__(message, last_iterate=last_iterate, nits=nits)
        self.hook = hook

    def __str__(self) -> str:
        """Pretty-print error."""
        if self.hook is None:
            return self.message
        return f"{self.message} (hook: {self.hook})"


class InfeasibleIterateError(ComputationError):
    """Raised when an iterate does not strictly satisfy the inequalities.

    The engine needs fi(x) < 0 to compute the surrogate duality gap. Accepted steps
    never violate this, so in practice it means the problem's initial point was not
    strictly feasible.

    """

    def __init__(
        self,
        message: str,
        max_violation: float,
        last_iterate: Optional[npt.NDArray[np.float64]] = None,
        nits: int = 0,
    ) -> None:
        super().__init__(
            message, hook="inequality", last_iterate=last_iterate, nits=nits
        )
        self.max_violation = max_violation

    def __str__(self) -> str:
        """Pretty-print error."""
        return f"{self.message} (max fi(x) = {self.max_violation:.03g}, should be < 0)"


class LinearSolveError(SolveError):
    """Raised when we cannot calculate the Newton step."""


class LineSearchError(SolveError):
    """Raised when backtracking line search fails."""

    def __init__(
        self,
        message: str,
        step_size: float,
        last_iterate: Optional[npt.NDArray[np.float64]] = None,
        nits: int = 0,
    ) -> None:
        super().__init__(message, last_iterate=last_iterate, nits=nits)
        self.step_size = step_size

    def __str__(self) -> str:
        """Pretty-print error."""
        return f"{self.message} (step size = {self.step_size:.03g})"


class ConstraintBoundaryError(LineSearchError):
    """Raised when even small steps violate an inequality constraint."""


class SevereCurvatureError(LineSearchError):
    """Raised when small steps do not adequately decrease the residual.

    Usually this happens because the linearization of the KKT conditions doesn't hold
    even for small step sizes, which indicates the central-path direction has stalled.

    """

    def __init__(
        self,
        message: str,
        step_size: float,
        required_norm: float,
        actual_norm: float,
        last_iterate: Optional[npt.NDArray[np.float64]] = None,
        nits: int = 0,
    ) -> None:
        super().__init__(message, step_size, last_iterate=last_iterate, nits=nits)
        self.required_norm = required_norm
        self.actual_norm = actual_norm

    def __str__(self) -> str:
        """Pretty-print error."""
        msg = (
            f"{self.message} (step size = {self.step_size:.03g}; required residual "
            f"<= {self.required_norm:.03g}; actual residual = {self.actual_norm:.03g})"
        )
        return msg
