"""Numerical linear algebra routines."""

from collections.abc import Callable
from typing import Any, Optional, Tuple

import numpy as np
import numpy.typing as npt
from scipy import linalg

from .exceptions import LinearSolveError

CholeskyFactor = Tuple[npt.NDArray[np.float64], bool]


def factor_positive_definite(H: npt.NDArray[np.float64]) -> CholeskyFactor:
    """Compute the Cholesky factorization of H.

    Parameters
    ----------
     H : npt.NDArray[np.float64]
        Symmetric matrix, expected to be positive definite.

    Returns
    -------
     cho : (c, lower)
        Factorization suitable for `solve_cholesky`.

    Raises
    ------
     LinearSolveError
        If H is not (numerically) positive definite.

    """
    if H.ndim != 2 or H.shape[0] != H.shape[1]:
        raise ValueError("H must be a square matrix.")

    try:
        return linalg.cho_factor(H, lower=True)
    except np.linalg.LinAlgError:
        raise LinearSolveError("H is not positive definite") from None


def solve_cholesky(
    b: npt.NDArray[np.float64],
    cho: CholeskyFactor,
) -> npt.NDArray[np.float64]:
    """Solve H * x = b given the Cholesky factorization of H.

    Parameters
    ----------
     b : npt.NDArray[np.float64]
        Right hand side. Can be either a vector or a matrix, in which case we solve the
        system for each column of b.
     cho : (c, lower)
        Output of `factor_positive_definite`.

    Returns
    -------
     x : npt.NDArray[np.float64]
        The solution.

    """
    if b.ndim not in (1, 2):
        raise ValueError("b must be either a 1D or 2D NumPy array.")

    return linalg.cho_solve(cho, b)


def solve_kkt_system(
    A: npt.NDArray[np.float64],
    g: npt.NDArray[np.float64],
    hessian_solve: Callable[..., npt.NDArray[np.float64]],
    h: Optional[npt.NDArray[np.float64]] = None,
    **kwargs: Any,
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Solve a KKT system of equations.

    Parameters
    ----------
     A : p-by-M matrix.
        Parameter.
     g : vector of length M
        Right-hand-side.
     hessian_solve : Callable
        A function that solves H * x = y. The first argument to hessian_solve will be y.
        Additional arguments will be passed via **kwargs. hessian_solve should be able
        to accept multiple right-hand-sides.
     h : vector of length p, optional
        Right-hand-side. Defaults to zero.
     kwargs
        Extra arguments to pass to hessian_solve.

    Returns
    -------
     delta_x : vector of length M
        Solution to system. See Notes.
     nu : vector of length p
        Solution to system. See Notes.

    Notes
    -----
    Solves:
           _       _   _       _     _   _
          | H   A^T | | delta_x |   |  g  |
          | A    0  | |   nu    | = |  h  |
           -       -   -       -     -   -
    where H is the Hessian (assumed positive definite).

    Per the discussion in Boyd and Vandenberghe (2004), Algorithm C.4 (page
    673):
      1. Form B = H^{-1} * A^T and b = H^{-1} * g. This corresponds to p+1 solves.
      2. Form S = -A * B and c = h - A * b. Since A is p-by-M and B is M-by-p, forming S
         involves p^2 dot products of length M, which takes (p^2 * M) time.
      3. Solve S * nu = c via Cholesky decomposition. (S is negative definite, so we
         instead solve -S * nu = -c.) This takes O(p^3) time.
         a. If A is not full rank, S won't be, either. We can still solve the system
            using the Singular Value Decomposition (SVD) when c is in the range of S.
      4. Solve H * delta_x = g - A^T * nu.
    In total, that's O(M * p^2 + p^3), the time being dominated by forming S.

    """
    p, M = A.shape
    if len(g) != M:
        raise ValueError(
            "Dimension mismatch: g should have one entry for each column of A."
        )

    if h is None:
        h = np.zeros(p)
    elif len(h) != p:
        raise ValueError("Dimension mismatch: h should have one entry for each row of A.")

    if p == 0:
        return hessian_solve(g, **kwargs), np.zeros(0)

    # Step 1: form B = H^{-1} * A^T and b = H^{-1} * g
    B = hessian_solve(A.T, **kwargs)
    b = hessian_solve(g, **kwargs)

    # Step 2: form -S = A * B and -c = A * b - h
    neg_S = A @ B
    neg_c = A @ b - h

    # Step 3: Solve -S * nu = -c
    try:
        c, lower = linalg.cho_factor(neg_S, lower=True)
        nu = linalg.cho_solve((c, lower), neg_c)
    except np.linalg.LinAlgError:
        # A is not full rank; the system is solvable only if -c is in the range of -S.
        U, s, Vh = linalg.svd(neg_S, full_matrices=False)
        rank = int(np.sum(s > 1e-10 * max(1.0, s[0])))
        U_r = U[:, 0:rank]
        if not np.allclose(U_r @ (U_r.T @ neg_c), neg_c):
            raise LinearSolveError(
                "KKT system did not have a solution, because A is not full rank."
            ) from None

        s_inv = np.zeros_like(s)
        s_inv[0:rank] = 1.0 / s[0:rank]
        nu = Vh.T @ (s_inv * (U.T @ neg_c))

    # Step 4: Solve H * delta_x = g - A^T * nu
    delta_x = hessian_solve(g - (A.T @ nu), **kwargs)

    return delta_x, nu


def solve_full_kkt_system(
    H: npt.NDArray[np.float64],
    A: npt.NDArray[np.float64],
    g: npt.NDArray[np.float64],
    h: Optional[npt.NDArray[np.float64]] = None,
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Solve a KKT system of equations without eliminating H.

    Solves the same system as `solve_kkt_system`, but by factoring the full (symmetric,
    indefinite) matrix with an LDL^T decomposition. This is slower, but only requires
    the KKT matrix to be nonsingular; H itself may be singular, as happens whenever
    the Hessian is only positive semidefinite on the null space of A.

    Parameters
    ----------
     H : M-by-M matrix
        Hessian.
     A : p-by-M matrix.
        Parameter.
     g : vector of length M
        Right-hand-side.
     h : vector of length p, optional
        Right-hand-side. Defaults to zero.

    Returns
    -------
     delta_x : vector of length M
     nu : vector of length p

    Raises
    ------
     LinearSolveError
        If the KKT matrix is singular.

    """
    p, M = A.shape
    if H.shape != (M, M):
        raise ValueError(f"Dimension mismatch: {H.shape=:}; expected ({M}, {M}).")

    if len(g) != M:
        raise ValueError(
            "Dimension mismatch: g should have one entry for each column of A."
        )

    if h is None:
        h = np.zeros(p)

    K = np.block([[H, A.T], [A, np.zeros((p, p))]])
    rhs = np.concatenate([g, h])
    try:
        sol = linalg.solve(K, rhs, assume_a="sym")
    except np.linalg.LinAlgError:
        raise LinearSolveError("KKT matrix is singular.") from None

    if not np.all(np.isfinite(sol)):
        raise LinearSolveError("KKT solve produced non-finite values.")

    return sol[0:M], sol[M:]
