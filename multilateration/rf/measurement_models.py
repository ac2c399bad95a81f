"""
Range measurement models.

This module implements the true-range measurement function and the residual
models the nonlinear solvers minimize:

    hᵢ(x) = ‖x - pᵢ‖                       (range to anchor i)
    rᵢ(x) = ‖x - pᵢ‖ - dᵢ                  (RangeResidualModel)
    r̃ᵢ(x) = √wᵢ · (‖x - pᵢ‖ - dᵢ) / σ      (WeightedRangeResidualModel)

Both residual models expose the same two methods, ``residuals(x)`` and
``jacobian(x)``, so either can be handed to the Levenberg-Marquardt engine.
"""

from typing import Optional

import numpy as np

from multilateration.errors import InvalidInputError
from multilateration.utils.geometry import (
    EPSILON_RANGE,
    normalize_jacobian_singularities,
)


def toa_range(anchors: np.ndarray, position: np.ndarray) -> np.ndarray:
    """
    Compute true ranges from a position to each anchor.

    Args:
        anchors: Anchor positions, shape (N, 3) or (3,).
        position: Position [x, y, z].

    Returns:
        Euclidean distances, shape (N,) (scalar array for a single anchor).

    Example:
        >>> toa_range(np.array([[3.0, 4.0, 0.0]]), np.zeros(3))
        array([5.])
    """
    anchors = np.asarray(anchors, dtype=float)
    position = np.asarray(position, dtype=float)
    return np.linalg.norm(anchors - position, axis=-1)


def range_jacobian(
    anchors: np.ndarray,
    position: np.ndarray,
    epsilon: float = EPSILON_RANGE,
) -> np.ndarray:
    """
    Closed-form Jacobian of the ranges with respect to position.

        ∂‖x - pᵢ‖/∂x = (x - pᵢ)ᵀ / ‖x - pᵢ‖

    Rows whose range is below ``epsilon`` are set to zero.

    Args:
        anchors: Anchor positions, shape (N, 3).
        position: Position [x, y, z].
        epsilon: Range threshold for the zero row (default: 1e-8).

    Returns:
        Jacobian matrix, shape (N, 3).
    """
    diff = np.asarray(position, dtype=float) - np.asarray(anchors, dtype=float)
    ranges = np.linalg.norm(diff, axis=1)
    return normalize_jacobian_singularities(diff, ranges, epsilon=epsilon, warn=False)


class RangeResidualModel:
    """
    Plain range residuals rᵢ(x) = ‖x - pᵢ‖ - dᵢ.

    Attributes:
        anchors: Anchor positions, shape (N, 3).
        ranges: Measured ranges, shape (N,).
    """

    def __init__(self, anchors: np.ndarray, ranges: np.ndarray):
        self.anchors = np.asarray(anchors, dtype=float)
        self.ranges = np.asarray(ranges, dtype=float)

    def residuals(self, x: np.ndarray) -> np.ndarray:
        """Modeled minus measured range for each anchor."""
        return toa_range(self.anchors, x) - self.ranges

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        """Analytic Jacobian (N × 3)."""
        return range_jacobian(self.anchors, x)


class WeightedRangeResidualModel:
    """
    Whitened, weighted range residuals for robust estimation.

        r̃ᵢ(x) = √wᵢ · (‖x - pᵢ‖ - dᵢ) / σ

    Attributes:
        anchors: Anchor positions, shape (N, 3).
        ranges: Measured ranges, shape (N,).
        range_std: Range noise standard deviation σ used for whitening.
        sqrt_weights: Per-measurement √wᵢ, shape (N,).
    """

    def __init__(
        self,
        anchors: np.ndarray,
        ranges: np.ndarray,
        range_std: float,
        sqrt_weights: Optional[np.ndarray] = None,
    ):
        if range_std <= 0:
            raise InvalidInputError(f"range_std must be positive, got {range_std}")

        self.anchors = np.asarray(anchors, dtype=float)
        self.ranges = np.asarray(ranges, dtype=float)
        self.range_std = float(range_std)

        if sqrt_weights is None:
            self.sqrt_weights = np.ones(len(self.ranges))
        else:
            self.sqrt_weights = np.asarray(sqrt_weights, dtype=float)
            if self.sqrt_weights.shape != self.ranges.shape:
                raise InvalidInputError(
                    f"sqrt_weights must have shape {self.ranges.shape}, "
                    f"got {self.sqrt_weights.shape}"
                )

    def whitened_residuals(self, x: np.ndarray) -> np.ndarray:
        """Unweighted residuals divided by σ."""
        return (toa_range(self.anchors, x) - self.ranges) / self.range_std

    def residuals(self, x: np.ndarray) -> np.ndarray:
        return self.sqrt_weights * self.whitened_residuals(x)

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        J = range_jacobian(self.anchors, x) / self.range_std
        return self.sqrt_weights[:, None] * J
