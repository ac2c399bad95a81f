"""
Monte-Carlo evaluation of multilateration solvers.

Repeatedly draws a synthetic measurement set for a fixed true position,
invokes a solver on it and collects the estimates. Statistics come from
multilateration.eval.metrics.

A run owns one random generator, so two runs with the same seed see the
same measurements. Parallel callers should give each worker its own seed.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np
from tqdm import tqdm

from multilateration.errors import SingularSystemError
from multilateration.eval.metrics import (
    compute_error_stats,
    compute_position_errors,
    error_covariance,
    max_absolute_error,
    mean_absolute_error,
)
from multilateration.sim.range_measurements import (
    MeasurementConfig,
    generate_measurements,
    make_rng,
)

Solver = Callable[[np.ndarray, np.ndarray], np.ndarray]


@dataclass
class MonteCarloResult:
    """Estimates collected by run_monte_carlo.

    Attributes:
        estimates: Estimated positions, shape (n_runs, 3). Failed trials are NaN.
        true_position: True position, shape (3,).
        n_failures: Trials where the solver raised SingularSystemError.
        elapsed_s: Wall-clock time spent in the solver calls.
    """

    estimates: np.ndarray
    true_position: np.ndarray
    n_failures: int = 0
    elapsed_s: float = 0.0

    @property
    def errors(self) -> np.ndarray:
        """Errors of the successful trials, shape (n_ok, 3)."""
        valid = np.all(np.isfinite(self.estimates), axis=1)
        return compute_position_errors(self.true_position, self.estimates[valid])

    @property
    def mean_absolute_error(self) -> np.ndarray:
        return mean_absolute_error(self.errors)

    @property
    def max_absolute_error(self) -> np.ndarray:
        return max_absolute_error(self.errors)

    @property
    def covariance(self) -> np.ndarray:
        return error_covariance(self.errors)

    def summary(self) -> Dict:
        """JSON-serialisable summary."""
        summary = {
            "n_runs": int(len(self.estimates)),
            "n_failures": int(self.n_failures),
            "elapsed_s": float(self.elapsed_s),
        }
        if len(self.errors) > 0:
            summary.update({
                "mean_abs_error": self.mean_absolute_error.tolist(),
                "max_abs_error": self.max_absolute_error.tolist(),
                "error_covariance": self.covariance.tolist(),
                "error_norm_stats": compute_error_stats(self.errors),
            })
        return summary


def run_monte_carlo(
    solver: Solver,
    true_position: np.ndarray,
    anchors: np.ndarray,
    config: MeasurementConfig,
    n_runs: int,
    seed: Optional[int] = None,
    skip_failures: bool = False,
    progress: bool = False,
    desc: str = "Monte-Carlo",
) -> MonteCarloResult:
    """
    Run a solver on ``n_runs`` independently generated measurement sets.

    Args:
        solver: Callable ``solver(anchors, ranges) -> position``.
        true_position: True target position, shape (3,).
        anchors: True anchor positions, shape (N, 3).
        config: Measurement noise parameters.
        n_runs: Number of trials.
        seed: Random seed. None is non-reproducible.
        skip_failures: Record SingularSystemError trials as NaN instead of
            re-raising.
        progress: Show a tqdm progress bar.
        desc: Progress bar label.

    Returns:
        MonteCarloResult with one estimate per trial.

    Example:
        >>> from multilateration.rf import solve_linear_svd
        >>> anchors = [[x, y, z] for x in (-5, 5) for y in (-5, 5) for z in (0, 10)]
        >>> result = run_monte_carlo(solve_linear_svd, [0, 0, 5], anchors,
        ...                          MeasurementConfig(range_noise_std=0.25),
        ...                          n_runs=100, seed=42)
        >>> result.estimates.shape
        (100, 3)
    """
    if n_runs < 1:
        raise ValueError(f"n_runs must be positive, got {n_runs}")

    true_position = np.asarray(true_position, dtype=float)
    anchors = np.asarray(anchors, dtype=float)
    rng = make_rng(seed)

    estimates = np.full((n_runs, 3), np.nan)
    n_failures = 0
    elapsed = 0.0

    for i in tqdm(range(n_runs), desc=desc, unit="run", disable=not progress):
        anchors_used, ranges = generate_measurements(true_position, anchors, config, rng)

        start = time.perf_counter()
        try:
            estimates[i] = solver(anchors_used, ranges)
        except SingularSystemError:
            if not skip_failures:
                raise
            n_failures += 1
        elapsed += time.perf_counter() - start

    return MonteCarloResult(
        estimates=estimates,
        true_position=true_position,
        n_failures=n_failures,
        elapsed_s=elapsed,
    )
