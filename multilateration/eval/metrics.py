"""
Evaluation Metrics for multilateration.

This module computes error statistics over a batch of position estimates of
the same true position, as produced by a Monte-Carlo evaluation.
"""

from typing import Dict, Optional, Union

import numpy as np


def compute_position_errors(
    truth: np.ndarray, estimated: np.ndarray
) -> np.ndarray:
    """
    Compute position errors between true and estimated positions.

    Args:
        truth: True position(s), shape (3,) or (N, 3). A single position is
               broadcast against every estimate.
        estimated: Estimated positions, shape (N, 3)

    Returns:
        errors: Position error vectors, shape (N, 3)

    Raises:
        ValueError: If inputs have incompatible shapes
    """
    truth = np.asarray(truth, dtype=float)
    estimated = np.atleast_2d(np.asarray(estimated, dtype=float))

    if truth.ndim == 1:
        if truth.shape[0] != estimated.shape[1]:
            raise ValueError(
                f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}"
            )
    elif truth.shape != estimated.shape:
        raise ValueError(
            f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}"
        )

    return estimated - truth


def mean_absolute_error(errors: np.ndarray) -> np.ndarray:
    """Per-axis mean of |error|, shape (d,)."""
    return np.mean(np.abs(np.atleast_2d(errors)), axis=0)


def max_absolute_error(errors: np.ndarray) -> np.ndarray:
    """Per-axis maximum of |error|, shape (d,)."""
    return np.max(np.abs(np.atleast_2d(errors)), axis=0)


def error_covariance(errors: np.ndarray, center: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Error covariance matrix with population (1/N) normalisation.

    Args:
        errors: Error vectors, shape (N, d)
        center: Vector subtracted from every error before the outer products.
                Defaults to the per-axis mean absolute error, which is how the
                Monte-Carlo report has always centred it; pass
                ``np.mean(errors, axis=0)`` for the ordinary sample covariance.

    Returns:
        cov: Covariance matrix, shape (d, d)
    """
    errors = np.atleast_2d(np.asarray(errors, dtype=float))
    if center is None:
        center = mean_absolute_error(errors)

    centered = errors - center
    return centered.T @ centered / len(errors)


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: Axis along which to compute RMSE
              None: scalar RMSE across all dimensions
              0: per-dimension RMSE
              1: per-sample RMSE

    Returns:
        rmse: RMSE value(s)
    """
    errors = np.asarray(errors)

    if axis is None:
        return np.sqrt(np.mean(errors**2))
    else:
        return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Compute statistics of the error magnitudes.

    Args:
        errors: Error vectors, shape (N, d) or (N,)

    Returns:
        stats: Dictionary with keys:
               - 'mean': Mean error
               - 'median': Median error
               - 'std': Standard deviation
               - 'rmse': Root mean square error
               - 'p90': 90th percentile
               - 'p95': 95th percentile
               - 'max': Maximum error
    """
    errors = np.asarray(errors)

    if errors.ndim > 1:
        error_magnitudes = np.linalg.norm(errors, axis=1)
    else:
        error_magnitudes = np.abs(errors)

    stats = {
        "mean": float(np.mean(error_magnitudes)),
        "median": float(np.median(error_magnitudes)),
        "std": float(np.std(error_magnitudes)),
        "rmse": float(np.sqrt(np.mean(error_magnitudes**2))),
        "p90": float(np.percentile(error_magnitudes, 90)),
        "p95": float(np.percentile(error_magnitudes, 95)),
        "max": float(np.max(error_magnitudes)),
    }

    return stats


def format_results(errors: np.ndarray, unit: str = "m") -> str:
    """
    Multi-line report of per-axis mean/max error and the error covariance.

    Args:
        errors: Error vectors, shape (N, 3)
        unit: Distance unit label

    Returns:
        Report text.
    """
    mae = mean_absolute_error(errors)
    max_err = max_absolute_error(errors)
    cov = error_covariance(errors)

    lines = [
        "Results:",
        f"  Mean Error: [{mae[0]:.2f}, {mae[1]:.2f}, {mae[2]:.2f}] ({unit})",
        f"  Max Error: [{max_err[0]:.2f}, {max_err[1]:.2f}, {max_err[2]:.2f}] ({unit})",
        f"  Error Covariance Matrix ({unit}^2):",
    ]
    for row in cov:
        lines.append(f"    [{row[0]:.4f}, {row[1]:.4f}, {row[2]:.4f}]")

    return "\n".join(lines)
