"""
Nonlinear Least Squares solver using Levenberg-Marquardt.

This module implements the damped Gauss-Newton iteration used to refine
range-based position estimates, and an iteratively reweighted outer loop
that makes it robust to outlier measurements.

References:
    - K. Madsen, H. B. Nielsen, O. Tingleff, "Methods for Non-Linear Least
      Squares Problems", 2nd ed., 2004 (gain ratio damping update)
    - J. J. Moré, "The Levenberg-Marquardt algorithm: Implementation and
      theory", 1978 (ftol / xtol / gtol termination tests)
    - P. W. Holland, R. E. Welsch, "Robust regression using iteratively
      reweighted least-squares", 1977

Mathematical Formulation:
    Given a residual function r: Rⁿ → Rᵐ, we seek:
        x̂ = argmin ½‖r(x)‖²

    Levenberg-Marquardt update:
        (J'J + μI) Δx = -J'r
    where J = ∂r/∂x and μ is an adaptive damping parameter.

    IRLS with the Cauchy loss solves a sequence of weighted problems
        x̂ₖ = argmin ½ Σ wᵢ rᵢ(x)²,   wᵢ = 1 / (1 + (rᵢ(x̂ₖ₋₁)/c)²)
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from multilateration.errors import InvalidInputError


# MINPACK default tolerance, sqrt of machine epsilon
DEFAULT_TOL = float(np.sqrt(np.finfo(float).eps))

# Damping above this means no descent direction can be found
MAX_DAMPING = 1e10

MIN_ROBUST_WEIGHT = 1e-9


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated state vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed (outer iterations for IRLS).
        residuals: Final residuals r(x̂).
        cost: Final cost value ½‖r‖².
        converged: Whether a termination tolerance was met.
        weights: Final measurement weights (for robust estimation).
        nfev: Number of residual function evaluations.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    weights: Optional[np.ndarray] = None
    nfev: int = 0


def numerical_jacobian(
    fun: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    f0: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Forward-difference Jacobian of a vector function.

    Column j uses the step hⱼ = √ε·|xⱼ|, or √ε when xⱼ = 0.

    Args:
        fun: Vector function f: Rⁿ → Rᵐ.
        x: Point of evaluation (n,).
        f0: f(x) if already available, saves one evaluation.

    Returns:
        Jacobian matrix (m × n). Costs n evaluations of ``fun``
        (n + 1 when f0 is not given).
    """
    x = np.asarray(x, dtype=float)
    if f0 is None:
        f0 = np.asarray(fun(x), dtype=float)

    eps = DEFAULT_TOL
    J = np.empty((len(f0), len(x)))

    for j in range(len(x)):
        h = eps * abs(x[j])
        if h == 0.0:
            h = eps
        x_step = x.copy()
        x_step[j] += h
        J[:, j] = (np.asarray(fun(x_step), dtype=float) - f0) / h

    return J


def levenberg_marquardt(
    fun: Callable[[np.ndarray], np.ndarray],
    x0: np.ndarray,
    jacobian: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    max_nfev: int = 1000,
    ftol: float = DEFAULT_TOL,
    xtol: float = DEFAULT_TOL,
    gtol: float = 0.0,
    mu0: float = 1e-3,
    return_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖r(x)‖²

    Each iteration solves the damped normal equations
        (J'J + μI) Δx = -J'r
    and accepts the step when the gain ratio between the actual and the
    predicted cost decrease is positive. The damping μ shrinks after an
    accepted step (more Gauss-Newton-like) and doubles repeatedly after
    rejected steps (more gradient-descent-like).

    Termination:
        - nfev: the residual evaluation budget ``max_nfev`` is spent; a
          forward-difference Jacobian costs n evaluations
        - ftol: relative actual and predicted cost reductions ≤ ftol
        - xtol: ‖Δx‖ ≤ xtol·(xtol + ‖x‖)
        - gtol: ‖J'r‖∞ ≤ gtol, or the cost is exactly zero
        - μ exceeds 1e10 (no descent step can be found)

    Only the budget and the damping limit leave ``converged`` False.
    The returned x is always the last accepted iterate.

    Args:
        fun: Residual function r: Rⁿ → Rᵐ.
        x0: Initial state estimate (n,).
        jacobian: Function returning J = ∂r/∂x (m × n). If None, a
            forward-difference Jacobian is used.
        max_nfev: Maximum number of residual evaluations.
        ftol: Relative cost reduction tolerance.
        xtol: Relative step size tolerance.
        gtol: Gradient infinity-norm tolerance.
        mu0: Initial damping parameter (default 1e-3).
        return_covariance: If True, compute covariance at final estimate.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Example:
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        >>> y = np.linalg.norm(anchors - np.array([3.0, 4.0]), axis=1)
        >>> def residuals(x):
        ...     return np.linalg.norm(anchors - x, axis=1) - y
        >>> result = levenberg_marquardt(residuals, x0=np.array([5.0, 5.0]))
        >>> np.allclose(result.x, [3.0, 4.0])
        True
    """
    x0 = np.asarray(x0, dtype=float)
    if x0.ndim != 1:
        raise InvalidInputError(f"x0 must be 1D array, got shape {x0.shape}")
    if max_nfev < 1:
        raise InvalidInputError(f"max_nfev must be positive, got {max_nfev}")

    n = len(x0)
    x = x0.copy()

    r = np.asarray(fun(x), dtype=float)
    nfev = 1
    if r.ndim != 1:
        raise InvalidInputError(f"fun(x) must return a 1D array, got shape {r.shape}")
    m = len(r)
    cost = 0.5 * r @ r

    jacobian_cost = n if jacobian is None else 0

    mu = mu0
    nu = 2.0
    converged = False
    stalled = False
    iteration = 0

    while not (converged or stalled) and nfev + jacobian_cost < max_nfev:
        if jacobian is None:
            J = numerical_jacobian(fun, x, r)
            nfev += n
        else:
            J = np.asarray(jacobian(x), dtype=float)
        if J.shape != (m, n):
            raise InvalidInputError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        g = J.T @ r
        if cost == 0.0 or np.max(np.abs(g)) <= gtol:
            converged = True
            break

        JtJ = J.T @ J
        iteration += 1

        while nfev < max_nfev:
            JtJ_damped = JtJ + mu * np.eye(n)
            try:
                delta_x = np.linalg.solve(JtJ_damped, -g)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtJ_damped, -g, rcond=None)[0]

            x_new = x + delta_x
            r_new = np.asarray(fun(x_new), dtype=float)
            nfev += 1
            cost_new = 0.5 * r_new @ r_new

            predicted_decrease = 0.5 * delta_x @ (mu * delta_x - g)
            actual_decrease = cost - cost_new

            if predicted_decrease > 0.0:
                gain_ratio = actual_decrease / predicted_decrease
            else:
                gain_ratio = 0.0

            step_norm = np.linalg.norm(delta_x)

            if gain_ratio > 0:
                small_reduction = (
                    abs(actual_decrease) <= ftol * cost
                    and predicted_decrease <= ftol * cost
                )
                x, r, cost = x_new, r_new, cost_new
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0

                if (
                    small_reduction
                    or step_norm <= xtol * (xtol + np.linalg.norm(x))
                    or cost == 0.0
                ):
                    converged = True
                break

            # Rejected step
            mu = mu * nu
            nu = 2.0 * nu

            if step_norm <= xtol * (xtol + np.linalg.norm(x)):
                converged = True
                break
            if mu > MAX_DAMPING:
                stalled = True
                break

    P = None
    if return_covariance:
        J = numerical_jacobian(fun, x, r) if jacobian is None else np.asarray(jacobian(x))
        JtJ = J.T @ J

        if m > n:
            sigma2 = (r @ r) / (m - n)
        else:
            sigma2 = 1.0

        try:
            P = sigma2 * np.linalg.inv(JtJ)
        except np.linalg.LinAlgError:
            P = sigma2 * np.linalg.pinv(JtJ)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration,
        residuals=r,
        cost=float(cost),
        converged=converged,
        nfev=nfev,
    )


def cauchy_weights(
    residuals: np.ndarray,
    loss_scale: float,
    min_weight: float = MIN_ROBUST_WEIGHT,
) -> np.ndarray:
    """
    IRLS weights of the Cauchy loss.

        w = 1 / (1 + (r/c)²),  clamped below at ``min_weight``

    The clamp keeps every measurement's influence strictly positive, so the
    square-root weights lie in [√min_weight, 1].

    Args:
        residuals: Whitened residuals (m,).
        loss_scale: Cauchy scale c (> 0), in units of the residuals.
        min_weight: Lower clamp applied before any square root is taken.

    Returns:
        weights: Weight for each measurement (m,).
    """
    if loss_scale <= 0:
        raise InvalidInputError(f"loss_scale must be positive, got {loss_scale}")

    u = np.asarray(residuals, dtype=float) / loss_scale
    weights = 1.0 / (1.0 + u ** 2)

    return np.maximum(weights, min_weight)


def cost_change_converged(
    cost: float,
    prev_cost: float,
    abs_tol: float,
    rel_tol: float,
) -> bool:
    """Whether the outer IRLS cost moved by less than abs_tol or rel_tol."""
    if not np.isfinite(prev_cost):
        return False
    change = abs(cost - prev_cost)
    if change < abs_tol:
        return True
    return change / max(prev_cost, 1e-9) < rel_tol


def iteratively_reweighted_lm(
    weighted_model: Callable[[np.ndarray], Any],
    whitened_residuals: Callable[[np.ndarray], np.ndarray],
    x0: np.ndarray,
    loss_scale: float,
    max_outer_iter: int = 10,
    abs_tol: float = 1e-6,
    rel_tol: float = 1e-6,
    max_nfev: int = 1000,
) -> NonlinearLSResult:
    """
    Robust Levenberg-Marquardt via Iteratively Reweighted Least Squares.

    Outer loop:
        1. Build the weighted problem for the current square-root weights
           (all ones at the start) and minimize it with LM, warm-started
           from the previous estimate.
        2. Recompute Cauchy weights from the whitened residuals at the new
           estimate.
        3. Stop once the inner solve's final cost changes by less than
           ``abs_tol``, or by less than ``rel_tol`` relative to the previous
           outer iteration's cost; otherwise run ``max_outer_iter`` times.

    Args:
        weighted_model: Factory mapping square-root weights (m,) to an object
            with ``residuals(x)`` and ``jacobian(x)`` methods for the
            weighted, whitened problem.
        whitened_residuals: Unweighted whitened residuals r(x)/σ, used for
            the weight update.
        x0: Initial state estimate (n,).
        loss_scale: Cauchy scale c in whitened units.
        max_outer_iter: Maximum IRLS outer iterations.
        abs_tol: Absolute cost-change tolerance.
        rel_tol: Relative cost-change tolerance.
        max_nfev: Residual evaluation budget of each inner LM solve.

    Returns:
        NonlinearLSResult with the final weights. ``iterations`` counts
        outer iterations, ``nfev`` sums all inner evaluations and
        ``converged`` reports whether the cost-change test fired.
    """
    if max_outer_iter < 1:
        raise InvalidInputError(f"max_outer_iter must be positive, got {max_outer_iter}")
    if loss_scale <= 0:
        raise InvalidInputError(f"loss_scale must be positive, got {loss_scale}")

    x = np.asarray(x0, dtype=float).copy()
    m = len(whitened_residuals(x))
    weights = np.ones(m)
    sqrt_weights = np.ones(m)

    prev_cost = np.inf
    converged = False
    total_nfev = 0
    outer_iter = 0
    result = None

    for outer_iter in range(1, max_outer_iter + 1):
        model = weighted_model(sqrt_weights)
        result = levenberg_marquardt(
            model.residuals,
            x,
            jacobian=model.jacobian,
            max_nfev=max_nfev,
            return_covariance=False,
        )
        x = result.x
        total_nfev += result.nfev

        weights = cauchy_weights(whitened_residuals(x), loss_scale)
        sqrt_weights = np.sqrt(weights)

        if cost_change_converged(result.cost, prev_cost, abs_tol, rel_tol):
            converged = True
            break
        prev_cost = result.cost

    return NonlinearLSResult(
        x=x,
        covariance=None,
        iterations=outer_iter,
        residuals=result.residuals,
        cost=result.cost,
        converged=converged,
        weights=weights,
        nfev=total_nfev,
    )
