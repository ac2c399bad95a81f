"""
Geometric utilities for range-based positioning.

Provides functions for:
- Input validation of anchor sets and range vectors
- Anchor geometry checking (numeric rank of the anchor cloud)
- Singularity handling in range Jacobians
"""

import numpy as np
from scipy import linalg
from typing import Optional, Tuple
import warnings

from multilateration.errors import InvalidInputError


# Singularity threshold constants
EPSILON_RANGE = 1e-8  # Minimum range for Jacobian computation
EPSILON_RANK = 1e-8  # Singular values above this count towards the rank


def validate_anchors_and_ranges(
    anchors: np.ndarray,
    ranges: np.ndarray,
    min_anchors: int = 4,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert and validate an anchor set and its index-aligned ranges.

    Args:
        anchors: Anchor positions, shape (N, 3).
        ranges: Range measurements, shape (N,).
        min_anchors: Minimum number of anchors the calling method needs.

    Returns:
        Tuple of (anchors, ranges) as float arrays.

    Raises:
        InvalidInputError: If shapes are wrong, lengths differ, values are
            not finite, or fewer than ``min_anchors`` anchors are given.
    """
    anchors = np.asarray(anchors, dtype=float)
    ranges = np.asarray(ranges, dtype=float)

    if anchors.ndim != 2 or anchors.shape[1] != 3:
        raise InvalidInputError(
            f"anchors must have shape (N, 3), got {anchors.shape}"
        )
    if ranges.ndim != 1:
        raise InvalidInputError(f"ranges must be 1D, got shape {ranges.shape}")
    if len(ranges) != len(anchors):
        raise InvalidInputError(
            f"Expected {len(anchors)} ranges (one per anchor), got {len(ranges)}"
        )
    if len(anchors) < min_anchors:
        raise InvalidInputError(
            f"Insufficient anchors: need at least {min_anchors}, got {len(anchors)}"
        )
    if not (np.all(np.isfinite(anchors)) and np.all(np.isfinite(ranges))):
        raise InvalidInputError("anchors and ranges must be finite")

    return anchors, ranges


def compute_rank(points: np.ndarray, tol: float = EPSILON_RANK) -> int:
    """
    Numeric rank of a point cloud about its centroid.

    The points are centered on their centroid and the singular values of the
    centered (N, 3) matrix are counted against an absolute tolerance:
        - 3: points span a volume
        - 2: coplanar
        - 1: collinear
        - 0: coincident, or fewer than two points

    This is a diagnostic only; no solver calls it. Check it before choosing
    the normal-equations solver, which fails for rank < 3.

    Args:
        points: Point positions, shape (N, 3).
        tol: Absolute singular value threshold (default: 1e-8).

    Returns:
        Integer rank in [0, 3].

    Example:
        >>> cube = [[x, y, z] for x in (-5, 5) for y in (-5, 5) for z in (0, 10)]
        >>> compute_rank(cube)
        3
        >>> compute_rank([[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]])
        2
    """
    points = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(points) <= 1:
        return 0

    centered = points - np.mean(points, axis=0)
    singular_values = linalg.svdvals(centered)

    return int(np.sum(singular_values > tol))


def normalize_jacobian_singularities(
    diff: np.ndarray,
    ranges: np.ndarray,
    epsilon: float = EPSILON_RANGE,
    warn: bool = True,
) -> np.ndarray:
    """
    Safely compute normalized Jacobian, avoiding singularities.

    Computes H[i] = diff[i] / range[i] with protection against division by zero
    when range → 0 (estimate at an anchor position).

    Args:
        diff: Difference vectors (estimate - anchor), shape (N, d)
        ranges: Range values, shape (N,) or (N, 1)
        epsilon: Minimum range threshold (default: 1e-8)
        warn: Issue a RuntimeWarning when a singular row is zeroed

    Returns:
        Normalized Jacobian H = diff / range, shape (N, d)
        At singularities (range < epsilon), returns zero vector

    Example:
        >>> diff = np.array([[1.0, 0.0, 0.0], [1e-12, 0.0, 0.0]])
        >>> ranges = np.array([1.0, 1e-12])
        >>> H = normalize_jacobian_singularities(diff, ranges, warn=False)
        >>> H[1]
        array([0., 0., 0.])
    """
    ranges = np.asarray(ranges, dtype=float).reshape(-1, 1)
    diff = np.asarray(diff, dtype=float)

    ranges_safe = np.maximum(ranges, epsilon)
    H = diff / ranges_safe

    singular_mask = (ranges < epsilon).flatten()
    if np.any(singular_mask):
        H[singular_mask, :] = 0.0
        if warn:
            warnings.warn(
                f"{np.sum(singular_mask)} measurement(s) at singularity (range < {epsilon}). "
                "Setting Jacobian rows to zero.",
                RuntimeWarning,
            )

    return H


def check_anchor_geometry(
    anchors: np.ndarray,
    min_anchors: int = 4,
    tol: float = EPSILON_RANK,
    warn_degenerate: bool = True,
    position: Optional[np.ndarray] = None,
) -> Tuple[bool, str]:
    """
    Check if anchor geometry is suitable for 3D positioning.

    Performs geometric checks:
    1. Sufficient number of anchors
    2. Anchors are not coincident, collinear or coplanar
    3. Position (if given) lies inside the anchors' bounding box

    Args:
        anchors: Anchor positions, shape (N, 3)
        min_anchors: Minimum anchors for 3D positioning (default: 4)
        tol: Singular value threshold passed to compute_rank
        warn_degenerate: If True, issue warnings for degenerate cases
        position: Optional position to check against the anchor region, shape (3,)

    Returns:
        Tuple of (is_valid, message):
            - is_valid: True if geometry is acceptable
            - message: Description of geometry issue (empty if valid)

    Example:
        >>> anchors = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]])
        >>> check_anchor_geometry(anchors)
        (True, '')
    """
    anchors = np.asarray(anchors, dtype=float)

    if anchors.ndim != 2 or anchors.shape[1] != 3:
        return False, f"Anchors must be an (N, 3) array, got shape {anchors.shape}"

    n_anchors = anchors.shape[0]
    if n_anchors < min_anchors:
        return False, (
            f"Insufficient anchors: need at least {min_anchors} for 3D positioning, "
            f"got {n_anchors}"
        )

    rank = compute_rank(anchors, tol=tol)
    if rank < 3:
        if rank == 2:
            msg = f"Anchors are coplanar (rank {rank} < 3). The normal-equations solver will fail."
        elif rank == 1:
            msg = f"Anchors are collinear (rank {rank} < 3). The normal-equations solver will fail."
        else:
            msg = "Anchors are coincident (rank 0). Positioning is undetermined."

        if warn_degenerate:
            warnings.warn(msg, RuntimeWarning)
        return False, msg

    if position is not None:
        position = np.asarray(position, dtype=float)
        if position.shape != (3,):
            return False, f"Position must have shape (3,), got {position.shape}"

        # Extrapolation still works, so only warn
        min_bounds = anchors.min(axis=0)
        max_bounds = anchors.max(axis=0)
        if np.any(position < min_bounds) or np.any(position > max_bounds):
            msg = (
                f"Position {position} is outside anchor region "
                f"[{min_bounds}, {max_bounds}]. Expect poor accuracy."
            )
            if warn_degenerate:
                warnings.warn(msg, RuntimeWarning)

    return True, ""
