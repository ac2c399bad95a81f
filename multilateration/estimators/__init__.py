"""
Least squares engines for multilateration.

Available estimators:
    - Linear LS (normal equations, SVD minimum norm, weighted)
    - Nonlinear LS (Levenberg-Marquardt with an evaluation budget)
    - Robust nonlinear LS (IRLS with the Cauchy loss)
"""

from multilateration.estimators.least_squares import (
    normal_equations_least_squares,
    svd_least_squares,
    weighted_least_squares,
    weighted_svd_least_squares,
)
from multilateration.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    cauchy_weights,
    cost_change_converged,
    iteratively_reweighted_lm,
    levenberg_marquardt,
    numerical_jacobian,
)

__all__ = [
    # Linear LS
    "normal_equations_least_squares",
    "svd_least_squares",
    "weighted_svd_least_squares",
    "weighted_least_squares",
    # Nonlinear LS
    "levenberg_marquardt",
    "numerical_jacobian",
    "NonlinearLSResult",
    # Robust
    "cauchy_weights",
    "cost_change_converged",
    "iteratively_reweighted_lm",
]
