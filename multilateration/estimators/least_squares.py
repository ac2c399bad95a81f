"""
Linear least squares engines.

This module implements the linear least squares solves that the linearized
multilateration methods reduce to.

Functions:
    - normal_equations_least_squares: x̂ = (A'A)⁻¹A'b, fails on rank deficiency
    - svd_least_squares: Minimum-norm LS via SVD, never fails
    - weighted_svd_least_squares: Row-weighted minimum-norm LS via SVD
    - weighted_least_squares: x̂ = (A'WA)⁻¹A'Wb with covariance (A'WA)⁻¹

The normal-equations form squares the condition number of A, so coplanar
anchor sets make A'A singular. The SVD forms return the minimum-norm solution
in that case and report the effective rank instead of failing.
"""

from typing import Optional, Tuple
import warnings

import numpy as np
from scipy import linalg

from multilateration.errors import (
    DegenerateGeometryWarning,
    InvalidInputError,
    SingularSystemError,
)


def _check_system(A: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)

    if A.ndim != 2 or b.ndim != 1:
        raise InvalidInputError(
            f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}"
        )
    if len(b) != A.shape[0]:
        raise InvalidInputError(
            f"Dimension mismatch: A has {A.shape[0]} rows, b has {len(b)} elements"
        )
    return A, b


def normal_equations_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = False
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Ordinary least squares through the normal equations.

    Solves: x_hat = argmin ||Ax - b||²
    Solution: x_hat = (A'A)^(-1) A'b

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        return_covariance: If True, compute covariance matrix.

    Returns:
        Tuple of:
            - x_hat: Estimated state vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        InvalidInputError: If A and b dimensions don't match or m < n.
        SingularSystemError: If A is rank deficient, so A'A has no inverse.

    Example:
        >>> A = np.array([[1, 1], [1, 2], [1, 3]])
        >>> b = np.array([3.0, 5.0, 7.0])
        >>> x_hat, _ = normal_equations_least_squares(A, b)
        >>> np.allclose(x_hat, [1.0, 2.0])
        True
    """
    A, b = _check_system(A, b)

    m, n = A.shape
    if m < n:
        raise InvalidInputError(f"Underdetermined system: m={m} < n={n}. Need m ≥ n.")

    rank = np.linalg.matrix_rank(A)
    if rank < n:
        raise SingularSystemError(
            f"A is rank deficient: rank={rank} < n={n}. "
            "Normal matrix A'A is singular."
        )

    ATA = A.T @ A
    ATb = A.T @ b

    try:
        ATA_inv = np.linalg.inv(ATA)
    except np.linalg.LinAlgError as e:
        raise SingularSystemError(f"Failed to invert normal matrix: {e}") from e

    x_hat = ATA_inv @ ATb
    if not np.all(np.isfinite(x_hat)):
        raise SingularSystemError("Normal equations produced a non-finite solution")

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        if m > n:
            sigma2 = np.sum(residuals**2) / (m - n)
        else:
            sigma2 = 1.0  # Exact fit case
        P = sigma2 * ATA_inv

    return x_hat, P


def svd_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    cond: Optional[float] = None,
    warn_rank_deficient: bool = True,
) -> Tuple[np.ndarray, int]:
    """
    Minimum-norm least squares through the singular value decomposition.

    Uses LAPACK's divide-and-conquer SVD driver (``gelsd``). Singular values
    below ``cond`` times the largest one are treated as zero, so a rank
    deficient A yields the minimum-norm solution instead of an error.

    Args:
        A: Design matrix (m × n).
        b: Observation vector (m,).
        cond: Relative singular value cutoff (None: machine precision).
        warn_rank_deficient: Emit DegenerateGeometryWarning when the
            effective rank is below n.

    Returns:
        Tuple of (x_hat, rank):
            - x_hat: Minimum-norm solution (n,), always finite.
            - rank: Effective rank of A.

    Example:
        >>> A = np.array([[1.0, 0.0], [2.0, 0.0]])  # second column unobservable
        >>> x_hat, rank = svd_least_squares(A, np.array([1.0, 2.0]),
        ...                                 warn_rank_deficient=False)
        >>> x_hat, rank
        (array([1., 0.]), 1)
    """
    A, b = _check_system(A, b)
    n = A.shape[1]

    x_hat, _, rank, _ = linalg.lstsq(A, b, cond=cond, lapack_driver="gelsd")

    if warn_rank_deficient and rank < n:
        warnings.warn(
            f"Linearized system is rank deficient (rank {rank} < {n}). "
            "Returning the minimum-norm solution; anchors may be collinear or coplanar.",
            DegenerateGeometryWarning,
            stacklevel=2,
        )

    return x_hat, int(rank)


def weighted_svd_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    weights: np.ndarray,
    cond: Optional[float] = None,
    warn_rank_deficient: bool = True,
) -> Tuple[np.ndarray, int]:
    """
    Row-weighted minimum-norm least squares.

    Solves: x_hat = argmin Σ wᵢ (Aᵢx - bᵢ)² by scaling each row with √wᵢ and
    calling svd_least_squares.

    Args:
        A: Design matrix (m × n).
        b: Observation vector (m,).
        weights: Non-negative row weights (m,).
        cond: Relative singular value cutoff.
        warn_rank_deficient: Emit DegenerateGeometryWarning on rank < n.

    Returns:
        Tuple of (x_hat, rank).
    """
    A, b = _check_system(A, b)
    weights = np.asarray(weights, dtype=float)

    if weights.shape != b.shape:
        raise InvalidInputError(
            f"weights must have shape {b.shape}, got {weights.shape}"
        )
    if np.any(weights < 0):
        raise InvalidInputError("Weights must be non-negative")

    sqrt_w = np.sqrt(weights)
    return svd_least_squares(
        A * sqrt_w[:, None],
        b * sqrt_w,
        cond=cond,
        warn_rank_deficient=warn_rank_deficient,
    )


def weighted_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    W_or_sigma: np.ndarray,
    is_sigma: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Weighted least squares estimation with measurement weights or covariance.

    Solves: x_hat = argmin (Ax - b)' W (Ax - b)
    Solution: x_hat = (A'WA)^(-1) A'Wb

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        W_or_sigma: Weight specification, one of:
            - 2D array (m × m): Full weight matrix W
            - 1D array (m,): Diagonal weights wᵢ (if is_sigma=False)
            - 1D array (m,): Measurement std devs σᵢ (if is_sigma=True)
        is_sigma: If True, interpret 1D W_or_sigma as σᵢ and compute wᵢ = 1/σᵢ².

    Returns:
        Tuple of:
            - x_hat: Estimated state vector (n,).
            - P: Covariance matrix (A'WA)^(-1) (n × n).

    Raises:
        InvalidInputError: If dimensions don't match or weights are invalid.
        SingularSystemError: If A'WA is rank deficient.

    Example:
        >>> A = np.array([[1, 0], [0, 1], [1, 1]])
        >>> b = np.array([1.0, 2.0, 3.2])
        >>> sigma = np.array([0.1, 0.1, 0.5])
        >>> x_hat, P = weighted_least_squares(A, b, sigma, is_sigma=True)
    """
    A, b = _check_system(A, b)
    m, n = A.shape

    W_or_sigma = np.asarray(W_or_sigma, dtype=float)

    if W_or_sigma.ndim == 1:
        if len(W_or_sigma) != m:
            raise InvalidInputError(
                f"W_or_sigma length mismatch: expected {m}, got {len(W_or_sigma)}"
            )

        if is_sigma:
            if np.any(W_or_sigma <= 0):
                raise InvalidInputError("Sigma values must be positive")
            weights = 1.0 / (W_or_sigma ** 2)
        else:
            weights = W_or_sigma
            if np.any(weights < 0):
                raise InvalidInputError("Weights must be non-negative")

        W = np.diag(weights)

    elif W_or_sigma.ndim == 2:
        if W_or_sigma.shape != (m, m):
            raise InvalidInputError(
                f"Weight matrix shape mismatch: expected ({m}, {m}), "
                f"got {W_or_sigma.shape}"
            )
        W = W_or_sigma

        if not np.allclose(W, W.T):
            raise InvalidInputError("Weight matrix W must be symmetric")
    else:
        raise InvalidInputError(
            f"W_or_sigma must be 1D or 2D array, got {W_or_sigma.ndim}D"
        )

    ATWA = A.T @ W @ A
    ATWb = A.T @ W @ b

    rank = np.linalg.matrix_rank(ATWA)
    if rank < n:
        raise SingularSystemError(f"A'WA is rank deficient: rank={rank} < n={n}")

    try:
        P = np.linalg.inv(ATWA)
    except np.linalg.LinAlgError as e:
        raise SingularSystemError(f"Failed to solve weighted normal equations: {e}") from e

    x_hat = P @ ATWb

    return x_hat, P
