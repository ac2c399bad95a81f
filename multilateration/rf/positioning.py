"""
True-range multilateration algorithms.

This module estimates a 3D position from range measurements to known anchors:
- Linearized least squares (normal equations and SVD)
- Alternate linearizations (LLS-I, LLS-II-2, TS-WLLS-I)
- Nonlinear refinement with Levenberg-Marquardt
- Robust IRLS estimation with the Cauchy loss

Range equation for anchor i at pᵢ with measured range dᵢ:
    ‖x - pᵢ‖² = dᵢ²  ⇔  ‖x‖² - 2pᵢᵀx + ‖pᵢ‖² = dᵢ²

The linear methods differ in how they remove or keep the quadratic ‖x‖² term.

References:
    - Y. Wang, "Linear least squares localization in sensor networks",
      EURASIP J. Wireless Commun. Netw., 2015 (LLS-I, LLS-II-2, TS-WLLS-I)
    - Y. T. Chan, K. C. Ho, "A simple and efficient estimator for hyperbolic
      location", IEEE Trans. Signal Process., 1994
"""

from typing import Dict, Optional, Tuple, Union
import warnings

import numpy as np

from multilateration.errors import DegenerateGeometryWarning, InvalidInputError, SingularSystemError
from multilateration.estimators.least_squares import (
    normal_equations_least_squares,
    svd_least_squares,
    weighted_least_squares,
    weighted_svd_least_squares,
)
from multilateration.estimators.nonlinear_least_squares import (
    cauchy_weights,
    cost_change_converged,
    iteratively_reweighted_lm,
    levenberg_marquardt,
)
from multilateration.rf.measurement_models import (
    RangeResidualModel,
    WeightedRangeResidualModel,
    toa_range,
)
from multilateration.utils.geometry import EPSILON_RANGE, validate_anchors_and_ranges


def _check_positive(name: str, value: float) -> float:
    value = float(value)
    if not np.isfinite(value) or value <= 0:
        raise InvalidInputError(f"{name} must be positive, got {value}")
    return value


def _centered_linear_system(
    anchors: np.ndarray, ranges: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Linearize by subtracting the mean range equation.

    Averaging the N range equations and subtracting the average from each
    cancels ‖x‖², leaving A x = b with
        Aᵢ = 2 (p̄ - pᵢ)ᵀ
        bᵢ = dᵢ² - mean(d²) - ‖pᵢ‖² + mean(‖p‖²)
    where p̄ is the anchor centroid.
    """
    centroid = np.mean(anchors, axis=0)
    squared_norms = np.sum(anchors**2, axis=1)

    A = 2.0 * (centroid - anchors)
    b = ranges**2 - np.mean(ranges**2) - squared_norms + np.mean(squared_norms)

    return A, b


def _direct_linear_system(
    anchors: np.ndarray, ranges: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    LLS-I system in θ = [x, y, z, ‖x‖²]:
        Aᵢ = [-2pᵢᵀ, 1],  bᵢ = dᵢ² - ‖pᵢ‖²
    """
    A = np.column_stack([-2.0 * anchors, np.ones(len(anchors))])
    b = ranges**2 - np.sum(anchors**2, axis=1)
    return A, b


def _svd_estimate(
    anchors: np.ndarray, ranges: np.ndarray, warn_rank_deficient: bool = True
) -> np.ndarray:
    A, b = _centered_linear_system(anchors, ranges)
    position, _ = svd_least_squares(A, b, warn_rank_deficient=warn_rank_deficient)
    return position


def solve_linear_normal_eq(anchors: np.ndarray, ranges: np.ndarray) -> np.ndarray:
    """
    Linearized ordinary least squares through the normal equations.

    Solves the centroid-subtracted system A x = b as x = (AᵀA)⁻¹Aᵀb.

    Collinear or coplanar anchors make A rank deficient, and this method then
    raises instead of returning a meaningless answer. Use solve_linear_svd,
    or check compute_rank first, for such geometries.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).

    Returns:
        Estimated position, shape (3,).

    Raises:
        InvalidInputError: On shape mismatch or N < 4.
        SingularSystemError: If the normal matrix is singular.

    Example:
        >>> anchors = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]])
        >>> ranges = np.linalg.norm(anchors - np.array([1.0, 2.0, 3.0]), axis=1)
        >>> np.allclose(solve_linear_normal_eq(anchors, ranges), [1, 2, 3])
        True
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)

    A, b = _centered_linear_system(anchors, ranges)
    position, _ = normal_equations_least_squares(A, b)

    return position


def solve_linear_svd(anchors: np.ndarray, ranges: np.ndarray) -> np.ndarray:
    """
    Linearized least squares via the SVD minimum-norm solution.

    Same system as solve_linear_normal_eq, solved without forming AᵀA.
    For coplanar or collinear anchors the result is the minimum-norm solution:
    the component along the unobservable direction(s) is zero relative to the
    origin, so a coplanar anchor set in the plane z = 0 yields z = 0.
    A DegenerateGeometryWarning is issued in that case.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).

    Returns:
        Estimated position, shape (3,). Always finite.

    Raises:
        InvalidInputError: On shape mismatch or N < 4.
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)
    return _svd_estimate(anchors, ranges)


def solve_direct_linearization(anchors: np.ndarray, ranges: np.ndarray) -> np.ndarray:
    """
    LLS-I: solve jointly for position and ‖x‖².

    Keeps ‖x‖² as a fourth unknown instead of differencing it away:
        [-2pᵢᵀ, 1] θ = dᵢ² - ‖pᵢ‖²,  θ = [x, y, z, ‖x‖²]

    The system is solved with the SVD minimum-norm solver and the first
    three components of θ are returned. The constraint θ₄ = ‖θ₁:₃‖² is not
    enforced.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).

    Returns:
        Estimated position, shape (3,).

    Raises:
        InvalidInputError: On shape mismatch or N < 4.

    References:
        Wang (2015), Section 3.1 (LLS-I)
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)

    A, b = _direct_linear_system(anchors, ranges)
    theta, _ = svd_least_squares(A, b)

    return theta[:3]


def select_reference_anchor(ranges: np.ndarray) -> int:
    """
    Index of the smallest measured range.

    Ties resolve to the first occurrence in input order.
    """
    return int(np.argmin(np.asarray(ranges, dtype=float)))


def solve_reference_differencing(anchors: np.ndarray, ranges: np.ndarray) -> np.ndarray:
    """
    LLS-II-2: difference every equation against a reference anchor.

    The reference r is the anchor with the smallest measured range. For every
    other anchor i:
        2 (pᵢ - p_r)ᵀ x = d_r² - dᵢ² - ‖p_r‖² + ‖pᵢ‖²

    giving an (N-1) × 3 system solved with the SVD minimum-norm solver.
    The estimate inherits all of the reference's error: an outlier on the
    reference range, or a reference close to other anchors, degrades it.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).

    Returns:
        Estimated position, shape (3,).

    Raises:
        InvalidInputError: On shape mismatch or N < 4.

    References:
        Wang (2015), Section 3.2 (LLS-II, reference selection variant 2)
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)

    ref_idx = select_reference_anchor(ranges)
    p_r = anchors[ref_idx]
    d_r = ranges[ref_idx]

    others = np.arange(len(ranges)) != ref_idx
    p_i = anchors[others]
    d_i = ranges[others]

    A = 2.0 * (p_i - p_r)
    b = d_r**2 - d_i**2 - p_r @ p_r + np.sum(p_i**2, axis=1)

    position, _ = svd_least_squares(A, b)

    return position


def solve_two_step_weighted(
    anchors: np.ndarray,
    ranges: np.ndarray,
    range_stds: Union[float, np.ndarray],
) -> np.ndarray:
    """
    TS-WLLS-I: two-step weighted linear least squares.

    **Step 1** solves LLS-I with weights matched to the squared-range noise,
    e = dᵢ² - ‖x - pᵢ‖² ≈ 2 dᵢ nᵢ:
        W₁ = diag(1 / (4 dᵢ² σᵢ²)),  θ = (AᵀW₁A)⁻¹AᵀW₁b,  Cov(θ) = (AᵀW₁A)⁻¹

    **Step 2** exploits θ₄ = θ₁² + θ₂² + θ₃²:
        G z = h,  G = [I₃; 1 1 1],  h = [θ₁², θ₂², θ₃², θ₄]
        W₂ = (B Cov(θ) B)⁻¹,  B = diag(2θ₁, 2θ₂, 2θ₃, 1)
        x = sign(θ₁:₃) · √|z|

    When step 2 is numerically singular (a coordinate of θ at zero makes B
    singular) the step-1 position is returned with a DegenerateGeometryWarning.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).
        range_stds: Range standard deviations, scalar or shape (N,), all > 0.

    Returns:
        Estimated position, shape (3,).

    Raises:
        InvalidInputError: On shape mismatch, N < 4 or non-positive σ.
        SingularSystemError: If the step-1 weighted system is singular.

    References:
        Chan & Ho (1994); Wang (2015), Section 3.3 (TS-WLLS-I)
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)

    range_stds = np.broadcast_to(np.asarray(range_stds, dtype=float), ranges.shape)
    if np.any(~np.isfinite(range_stds)) or np.any(range_stds <= 0):
        raise InvalidInputError("range_stds must be positive")

    # Step 1: weighted LLS-I
    A, b = _direct_linear_system(anchors, ranges)
    noise_std = 2.0 * np.maximum(ranges, EPSILON_RANGE) * range_stds
    theta, cov_theta = weighted_least_squares(A, b, noise_std, is_sigma=True)

    # Step 2: enforce the ‖x‖² relation
    G = np.vstack([np.eye(3), np.ones((1, 3))])
    h = np.concatenate([theta[:3] ** 2, theta[3:]])
    B = np.diag(np.concatenate([2.0 * theta[:3], [1.0]]))

    try:
        W2 = np.linalg.inv(B @ cov_theta @ B)
        W2 = 0.5 * (W2 + W2.T)
        z, _ = weighted_least_squares(G, h, W2)
    except (np.linalg.LinAlgError, SingularSystemError, InvalidInputError):
        z = None

    if z is None or not np.all(np.isfinite(z)):
        warnings.warn(
            "Second TS-WLLS step is singular; returning the first-step estimate.",
            DegenerateGeometryWarning,
            stacklevel=2,
        )
        return theta[:3]

    return np.sign(theta[:3]) * np.sqrt(np.abs(z))


def solve_nonlinear(
    anchors: np.ndarray,
    ranges: np.ndarray,
    initial_guess: Optional[np.ndarray] = None,
    max_nfev: int = 1000,
    jacobian: str = "numerical",
    return_info: bool = False,
) -> Union[np.ndarray, Tuple[np.ndarray, Dict]]:
    """
    Nonlinear least squares refinement with Levenberg-Marquardt.

    Minimizes ½ Σ (‖x - pᵢ‖ - dᵢ)² starting from ``initial_guess``, or from
    the SVD linearized estimate when none is given.

    There is no failure signal: the best accepted iterate is returned when
    the evaluation budget runs out. Pass ``return_info=True`` and inspect
    ``converged`` and ``cost`` when certainty is needed.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 3 (≥ 4 in practice).
        ranges: Measured ranges, shape (N,).
        initial_guess: Starting position, shape (3,). Defaults to the SVD
            linear estimate.
        max_nfev: Residual evaluation budget (default 1000).
        jacobian: "numerical" (forward differences) or "analytic"
            ((x - pᵢ)/‖x - pᵢ‖, zero row at an anchor).
        return_info: Also return a diagnostics dictionary.

    Returns:
        position: Estimated position, shape (3,).
        info (only if return_info): Dictionary with keys 'iterations',
            'nfev', 'converged', 'cost', 'residuals', 'initial_guess'.

    Raises:
        InvalidInputError: On shape mismatch, N < 3 or an unknown jacobian mode.
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=3)

    if jacobian not in ("numerical", "analytic"):
        raise InvalidInputError(
            f"jacobian must be 'numerical' or 'analytic', got {jacobian}"
        )

    if initial_guess is None:
        x0 = _svd_estimate(anchors, ranges, warn_rank_deficient=False)
    else:
        x0 = np.asarray(initial_guess, dtype=float)
        if x0.shape != (3,):
            raise InvalidInputError(
                f"initial_guess must have shape (3,), got {x0.shape}"
            )

    model = RangeResidualModel(anchors, ranges)
    result = levenberg_marquardt(
        model.residuals,
        x0,
        jacobian=model.jacobian if jacobian == "analytic" else None,
        max_nfev=max_nfev,
        return_covariance=False,
    )

    if not return_info:
        return result.x

    info = {
        "iterations": result.iterations,
        "nfev": result.nfev,
        "converged": result.converged,
        "cost": result.cost,
        "residuals": result.residuals,
        "initial_guess": x0,
    }
    return result.x, info


def solve_robust(
    anchors: np.ndarray,
    ranges: np.ndarray,
    range_std: float,
    loss_scale: float,
    max_outer_iter: int = 10,
    abs_tol: float = 1e-6,
    rel_tol: float = 1e-6,
    max_nfev: int = 1000,
    initial_guess: Optional[np.ndarray] = None,
    return_info: bool = False,
) -> Union[np.ndarray, Tuple[np.ndarray, Dict]]:
    """
    Robust position estimate via IRLS with the Cauchy loss.

    Each outer iteration minimizes Σ wᵢ ((‖x - pᵢ‖ - dᵢ)/σ)² with
    Levenberg-Marquardt and an analytic Jacobian, then recomputes
        wᵢ = max(1 / (1 + (rᵢ/(σc))²), 1e-9)
    from the whitened residuals. Weights start at one. The loop stops when the
    inner cost changes by less than ``abs_tol`` or by less than ``rel_tol``
    relative to the previous outer iteration, or after ``max_outer_iter``
    iterations.

    Large range outliers (multipath, NLOS) end up with weights close to zero
    without a hard rejection threshold.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).
        range_std: Assumed range noise standard deviation σ (> 0).
        loss_scale: Cauchy scale c in units of σ (> 0).
        max_outer_iter: Maximum IRLS iterations (default 10).
        abs_tol: Absolute cost-change tolerance (default 1e-6).
        rel_tol: Relative cost-change tolerance (default 1e-6).
        max_nfev: Evaluation budget of each inner LM solve (default 1000).
        initial_guess: Starting position, defaults to the SVD linear estimate.
        return_info: Also return a diagnostics dictionary.

    Returns:
        position: Estimated position, shape (3,).
        info (only if return_info): Dictionary with keys 'iterations'
            (outer), 'nfev', 'converged', 'cost', 'weights'.

    Raises:
        InvalidInputError: On shape mismatch, N < 4, or non-positive
            range_std / loss_scale.
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)
    range_std = _check_positive("range_std", range_std)
    loss_scale = _check_positive("loss_scale", loss_scale)

    if initial_guess is None:
        x0 = _svd_estimate(anchors, ranges, warn_rank_deficient=False)
    else:
        x0 = np.asarray(initial_guess, dtype=float)
        if x0.shape != (3,):
            raise InvalidInputError(
                f"initial_guess must have shape (3,), got {x0.shape}"
            )

    unweighted = WeightedRangeResidualModel(anchors, ranges, range_std)

    def weighted_model(sqrt_weights):
        return WeightedRangeResidualModel(anchors, ranges, range_std, sqrt_weights)

    result = iteratively_reweighted_lm(
        weighted_model,
        unweighted.whitened_residuals,
        x0,
        loss_scale=loss_scale,
        max_outer_iter=max_outer_iter,
        abs_tol=abs_tol,
        rel_tol=rel_tol,
        max_nfev=max_nfev,
    )

    if not return_info:
        return result.x

    info = {
        "iterations": result.iterations,
        "nfev": result.nfev,
        "converged": result.converged,
        "cost": result.cost,
        "weights": result.weights,
    }
    return result.x, info


def solve_robust_direct_linearization(
    anchors: np.ndarray,
    ranges: np.ndarray,
    range_std: float,
    loss_scale: float,
    max_outer_iter: int = 10,
    abs_tol: float = 1e-6,
    rel_tol: float = 1e-6,
    return_info: bool = False,
) -> Union[np.ndarray, Tuple[np.ndarray, Dict]]:
    """
    Robust LLS-I: Cauchy IRLS around the direct 4-unknown linearization.

    A closed-form alternative to solve_robust. Each iteration solves the
    row-weighted LLS-I system, then reweights each row with the Cauchy
    weight of its whitened range residual (‖x - pᵢ‖ - dᵢ)/σ. The cost
    ½ Σ wᵢ rᵢ² uses the weights of the solve that produced x, and the loop
    stops on the same absolute/relative cost-change tests as solve_robust.

    Args:
        anchors: Anchor positions, shape (N, 3), N ≥ 4.
        ranges: Measured ranges, shape (N,).
        range_std: Assumed range noise standard deviation σ (> 0).
        loss_scale: Cauchy scale c in units of σ (> 0).
        max_outer_iter: Maximum IRLS iterations (default 10).
        abs_tol: Absolute cost-change tolerance (default 1e-6).
        rel_tol: Relative cost-change tolerance (default 1e-6).
        return_info: Also return a diagnostics dictionary.

    Returns:
        position: Estimated position, shape (3,).
        info (only if return_info): Dictionary with keys 'iterations',
            'converged', 'cost', 'weights'.
    """
    anchors, ranges = validate_anchors_and_ranges(anchors, ranges, min_anchors=4)
    range_std = _check_positive("range_std", range_std)
    loss_scale = _check_positive("loss_scale", loss_scale)
    if max_outer_iter < 1:
        raise InvalidInputError(f"max_outer_iter must be positive, got {max_outer_iter}")

    A, b = _direct_linear_system(anchors, ranges)
    weights = np.ones(len(ranges))

    prev_cost = np.inf
    converged = False
    position = None
    cost = 0.0
    iteration = 0

    for iteration in range(1, max_outer_iter + 1):
        theta, _ = weighted_svd_least_squares(
            A, b, weights, warn_rank_deficient=(iteration == 1)
        )
        position = theta[:3]

        whitened = (toa_range(anchors, position) - ranges) / range_std
        cost = 0.5 * float(np.sum(weights * whitened**2))
        weights = cauchy_weights(whitened, loss_scale)

        if cost_change_converged(cost, prev_cost, abs_tol, rel_tol):
            converged = True
            break
        prev_cost = cost

    if not return_info:
        return position

    info = {
        "iterations": iteration,
        "converged": converged,
        "cost": cost,
        "weights": weights,
    }
    return position, info


class MultilaterationPositioner:
    """
    Multilateration against a fixed anchor set with a selectable method.

    **Methods:**

    - `"normal_eq"`: Linearized OLS via normal equations (fails on coplanar anchors)
    - `"svd"` (default): Linearized LS via SVD minimum norm
    - `"direct"`: LLS-I, 4-unknown linearization
    - `"reference"`: LLS-II-2, reference-anchor differencing
    - `"two_step"`: TS-WLLS-I, requires `range_stds`
    - `"nonlinear"`: Levenberg-Marquardt refinement
    - `"robust"`: Cauchy IRLS around Levenberg-Marquardt, requires
      `range_std` and `loss_scale`
    - `"robust_direct"`: Cauchy IRLS around LLS-I, requires `range_std`
      and `loss_scale`

    Aliases: `"ols"`, `"lls1"`, `"lls2"`, `"tswlls"`, `"lm"`, `"irls"`.

    Attributes:
        anchors: Array of anchor positions, shape (N, 3).
        method: Canonical method name.

    Example:
        >>> anchors = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]])
        >>> positioner = MultilaterationPositioner(anchors, method="lm")
        >>> ranges = np.linalg.norm(anchors - np.array([1.0, 2.0, 3.0]), axis=1)
        >>> position, info = positioner.solve(ranges)
        >>> info["method"]
        'nonlinear'
    """

    _METHOD_ALIASES = {
        "ols": "normal_eq",
        "lls1": "direct",
        "lls2": "reference",
        "tswlls": "two_step",
        "lm": "nonlinear",
        "irls": "robust",
    }

    _VALID_METHODS = {
        "normal_eq",
        "svd",
        "direct",
        "reference",
        "two_step",
        "nonlinear",
        "robust",
        "robust_direct",
    }

    def __init__(self, anchors: np.ndarray, method: str = "svd"):
        """
        Initialize positioner.

        Args:
            anchors: Array of anchor positions, shape (N, 3).
            method: Positioning method name or alias.
        """
        self.anchors = np.asarray(anchors, dtype=float)
        if self.anchors.ndim != 2 or self.anchors.shape[1] != 3:
            raise InvalidInputError(
                f"anchors must have shape (N, 3), got {self.anchors.shape}"
            )
        self.n_anchors = self.anchors.shape[0]

        method_lower = method.lower()
        if method_lower in self._METHOD_ALIASES:
            self.method = self._METHOD_ALIASES[method_lower]
        elif method_lower in self._VALID_METHODS:
            self.method = method_lower
        else:
            valid = sorted(self._VALID_METHODS) + sorted(self._METHOD_ALIASES)
            raise InvalidInputError(f"method must be one of {valid}, got {method}")

    def solve(self, ranges: np.ndarray, **kwargs) -> Tuple[np.ndarray, Dict]:
        """
        Estimate a position from one set of ranges.

        Args:
            ranges: Measured ranges, shape (N,).
            **kwargs: Method-specific arguments, e.g. `range_std` and
                `loss_scale` for "robust", `range_stds` for "two_step",
                `initial_guess` and `max_nfev` for "nonlinear".

        Returns:
            position: Estimated position, shape (3,).
            info: Dictionary with at least 'method'; iterative methods add
                'iterations', 'converged' and 'cost'.
        """
        if self.method == "normal_eq":
            position, info = solve_linear_normal_eq(self.anchors, ranges, **kwargs), {}
        elif self.method == "svd":
            position, info = solve_linear_svd(self.anchors, ranges, **kwargs), {}
        elif self.method == "direct":
            position, info = solve_direct_linearization(self.anchors, ranges, **kwargs), {}
        elif self.method == "reference":
            position = solve_reference_differencing(self.anchors, ranges, **kwargs)
            info = {"reference_index": select_reference_anchor(ranges)}
        elif self.method == "two_step":
            if "range_stds" not in kwargs:
                raise InvalidInputError("method='two_step' requires range_stds")
            position, info = solve_two_step_weighted(self.anchors, ranges, **kwargs), {}
        elif self.method == "nonlinear":
            position, info = solve_nonlinear(self.anchors, ranges, return_info=True, **kwargs)
        elif self.method == "robust":
            position, info = solve_robust(self.anchors, ranges, return_info=True, **kwargs)
        else:
            position, info = solve_robust_direct_linearization(
                self.anchors, ranges, return_info=True, **kwargs
            )

        info["method"] = self.method
        return position, info
