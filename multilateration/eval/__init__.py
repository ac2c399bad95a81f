"""
Evaluation and Visualization Module.

This module provides error statistics, the Monte-Carlo harness and plotting
utilities for multilateration solvers.

Modules:
    metrics: Per-axis error statistics and the text report
    monte_carlo: Repeated solves over synthetic measurements
    plots: Anchor geometry and error distribution figures
"""

from .metrics import (
    compute_error_stats,
    compute_position_errors,
    compute_rmse,
    error_covariance,
    format_results,
    max_absolute_error,
    mean_absolute_error,
)
from .monte_carlo import MonteCarloResult, run_monte_carlo
from .plots import (
    plot_anchor_geometry_3d,
    plot_error_cdf,
    plot_error_hist,
    save_figure,
)

__all__ = [
    # Metrics
    "compute_position_errors",
    "mean_absolute_error",
    "max_absolute_error",
    "error_covariance",
    "compute_rmse",
    "compute_error_stats",
    "format_results",
    # Monte-Carlo
    "MonteCarloResult",
    "run_monte_carlo",
    # Plots
    "plot_anchor_geometry_3d",
    "plot_error_hist",
    "plot_error_cdf",
    "save_figure",
]
