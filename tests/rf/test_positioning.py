"""
Unit tests for multilateration algorithms.

Tests the linearized (normal equations, SVD), alternate linearization
(LLS-I, LLS-II-2, TS-WLLS-I), nonlinear (LM) and robust (Cauchy IRLS)
solvers, and the MultilaterationPositioner dispatch.
"""

import warnings
from functools import partial

import numpy as np
import pytest
from numpy.testing import assert_allclose

from multilateration.errors import (
    DegenerateGeometryWarning,
    InvalidInputError,
    SingularSystemError,
)
from multilateration.eval.monte_carlo import run_monte_carlo
from multilateration.rf.positioning import (
    MultilaterationPositioner,
    select_reference_anchor,
    solve_direct_linearization,
    solve_linear_normal_eq,
    solve_linear_svd,
    solve_nonlinear,
    solve_reference_differencing,
    solve_robust,
    solve_robust_direct_linearization,
    solve_two_step_weighted,
)
from multilateration.sim.range_measurements import MeasurementConfig

CUBE = np.array([[x, y, z] for x in (-5, 5) for y in (-5, 5) for z in (0, 10)], dtype=float)

COPLANAR = np.array(
    [
        [-5, -5, 0],
        [5, -5, 0],
        [5, 5, 0],
        [-5, 5, 0],
        [0, -5, 0],
        [5, 0, 0],
    ],
    dtype=float,
)

ALL_SOLVERS = {
    "normal_eq": solve_linear_normal_eq,
    "svd": solve_linear_svd,
    "direct": solve_direct_linearization,
    "reference": solve_reference_differencing,
    "two_step": partial(solve_two_step_weighted, range_stds=0.1),
    "nonlinear": solve_nonlinear,
    "nonlinear_analytic": partial(solve_nonlinear, jacobian="analytic"),
    "robust": partial(solve_robust, range_std=0.1, loss_scale=2.0),
    "robust_direct": partial(solve_robust_direct_linearization, range_std=0.1, loss_scale=2.0),
}


def exact_ranges(anchors, position):
    return np.linalg.norm(anchors - np.asarray(position, dtype=float), axis=1)


class TestNoiseFree:
    """Every solver recovers the position from exact ranges."""

    @pytest.mark.parametrize("name", sorted(ALL_SOLVERS))
    def test_cube_exact_recovery(self, name):
        true_pos = np.array([1.0, 2.0, 3.0])

        estimate = ALL_SOLVERS[name](CUBE, exact_ranges(CUBE, true_pos))

        assert estimate.shape == (3,)
        assert_allclose(estimate, true_pos, atol=1e-6)

    @pytest.mark.parametrize("name", ["normal_eq", "svd", "direct", "nonlinear", "robust"])
    def test_minimal_tetrahedron(self, name):
        anchors = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]], dtype=float)
        true_pos = np.array([2.0, 3.0, 4.0])

        estimate = ALL_SOLVERS[name](anchors, exact_ranges(anchors, true_pos))

        assert_allclose(estimate, true_pos, atol=1e-6)

    def test_position_outside_anchor_hull(self):
        true_pos = np.array([12.0, -7.0, 20.0])

        estimate = solve_nonlinear(CUBE, exact_ranges(CUBE, true_pos))

        assert_allclose(estimate, true_pos, atol=1e-6)

    def test_two_step_falls_back_when_coordinate_is_zero(self):
        """A zero coordinate makes the second step singular."""
        true_pos = np.array([0.0, 0.0, 5.0])

        with pytest.warns(DegenerateGeometryWarning):
            estimate = solve_two_step_weighted(CUBE, exact_ranges(CUBE, true_pos), 0.1)

        assert_allclose(estimate, true_pos, atol=1e-6)

    def test_deterministic(self):
        rng = np.random.default_rng(5)
        ranges = exact_ranges(CUBE, [1.0, -2.0, 4.0]) + 0.3 * rng.standard_normal(8)

        for solver in ALL_SOLVERS.values():
            assert np.array_equal(solver(CUBE, ranges), solver(CUBE, ranges))


class TestCoplanarAnchors:
    """Anchors in the plane z = 0 leave height unobservable to linear methods."""

    def setup_method(self):
        self.true_pos = np.array([1.0, 2.0, 3.0])
        self.ranges = exact_ranges(COPLANAR, self.true_pos)

    def test_normal_equations_raise(self):
        with pytest.raises(SingularSystemError):
            solve_linear_normal_eq(COPLANAR, self.ranges)

    def test_svd_returns_minimum_norm_with_warning(self):
        with pytest.warns(DegenerateGeometryWarning):
            estimate = solve_linear_svd(COPLANAR, self.ranges)

        assert np.all(np.isfinite(estimate))
        assert_allclose(estimate, [1.0, 2.0, 0.0], atol=1e-6)

    def test_direct_linearization_warns(self):
        with pytest.warns(DegenerateGeometryWarning):
            estimate = solve_direct_linearization(COPLANAR, self.ranges)

        assert_allclose(estimate[:2], [1.0, 2.0], atol=1e-6)

    @pytest.mark.parametrize("z0, expected_z", [(2.0, 3.0), (-2.0, -3.0)])
    def test_nonlinear_resolves_mirror_from_initial_guess(self, z0, expected_z):
        estimate = solve_nonlinear(
            COPLANAR, self.ranges, initial_guess=np.array([0.5, 1.5, z0])
        )

        assert_allclose(estimate, [1.0, 2.0, expected_z], atol=1e-6)

    def test_nonlinear_default_seed_does_not_warn(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DegenerateGeometryWarning)
            estimate = solve_nonlinear(COPLANAR, self.ranges)

        assert np.all(np.isfinite(estimate))


class TestReferenceAnchor:
    """Test LLS-II-2 reference selection."""

    def test_smallest_range(self):
        assert select_reference_anchor(np.array([4.0, 2.5, 3.0, 9.0])) == 1

    def test_tie_resolves_to_first(self):
        assert select_reference_anchor(np.array([3.0, 1.0, 1.0, 2.0])) == 1

    def test_all_equal_ranges(self):
        """The cube center is equidistant from all corners."""
        center = np.array([0.0, 0.0, 5.0])
        ranges = exact_ranges(CUBE, center)

        positioner = MultilaterationPositioner(CUBE, method="lls2")
        estimate, info = positioner.solve(ranges)

        assert info["reference_index"] == 0
        assert_allclose(estimate, center, atol=1e-6)


class TestInvalidInput:
    """Test input validation across solvers."""

    @pytest.mark.parametrize(
        "name", ["normal_eq", "svd", "direct", "reference", "two_step", "robust", "robust_direct"]
    )
    def test_three_anchors_rejected(self, name):
        with pytest.raises(InvalidInputError):
            ALL_SOLVERS[name](CUBE[:3], np.ones(3))

    def test_nonlinear_accepts_three_anchors(self):
        anchors = CUBE[[0, 2, 5]]

        estimate = solve_nonlinear(anchors, exact_ranges(anchors, [1.0, 2.0, 3.0]))

        assert estimate.shape == (3,)
        assert np.all(np.isfinite(estimate))

    @pytest.mark.parametrize("name", sorted(ALL_SOLVERS))
    def test_length_mismatch(self, name):
        with pytest.raises(InvalidInputError):
            ALL_SOLVERS[name](CUBE, np.ones(7))

    def test_two_dimensional_anchors(self):
        with pytest.raises(InvalidInputError):
            solve_linear_svd(np.zeros((4, 2)), np.ones(4))

    def test_nan_range(self):
        ranges = np.ones(8)
        ranges[0] = np.nan
        with pytest.raises(InvalidInputError):
            solve_nonlinear(CUBE, ranges)

    @pytest.mark.parametrize("range_std, loss_scale", [(0.0, 2.0), (0.1, 0.0), (-1.0, 2.0)])
    def test_robust_parameters(self, range_std, loss_scale):
        with pytest.raises(InvalidInputError):
            solve_robust(CUBE, np.ones(8), range_std=range_std, loss_scale=loss_scale)
        with pytest.raises(InvalidInputError):
            solve_robust_direct_linearization(
                CUBE, np.ones(8), range_std=range_std, loss_scale=loss_scale
            )

    def test_two_step_sigma(self):
        with pytest.raises(InvalidInputError):
            solve_two_step_weighted(CUBE, np.ones(8), range_stds=0.0)

    def test_unknown_jacobian_mode(self):
        with pytest.raises(InvalidInputError):
            solve_nonlinear(CUBE, np.ones(8), jacobian="complex-step")

    def test_initial_guess_shape(self):
        with pytest.raises(InvalidInputError):
            solve_nonlinear(CUBE, np.ones(8), initial_guess=np.zeros(2))


class TestNonlinearInfo:
    """Test diagnostics of the iterative solvers."""

    def test_nonlinear_info(self):
        ranges = exact_ranges(CUBE, [1.0, 2.0, 3.0]) + 0.05

        _, info = solve_nonlinear(CUBE, ranges, return_info=True)

        assert set(info) == {"iterations", "nfev", "converged", "cost", "residuals", "initial_guess"}
        assert info["converged"]
        assert info["nfev"] <= 1000

    def test_nonlinear_budget(self):
        ranges = exact_ranges(CUBE, [1.0, 2.0, 3.0])

        _, info = solve_nonlinear(
            CUBE, ranges, initial_guess=np.array([4.0, -4.0, 9.0]), max_nfev=5, return_info=True
        )

        assert info["nfev"] <= 5
        assert not info["converged"]

    def test_robust_info(self):
        ranges = exact_ranges(CUBE, [1.0, 2.0, 3.0])
        ranges[6] += 30.0

        estimate, info = solve_robust(CUBE, ranges, range_std=0.1, loss_scale=2.0, return_info=True)

        assert 1 <= info["iterations"] <= 10
        assert info["weights"].shape == (8,)
        assert np.argmin(info["weights"]) == 6
        assert np.linalg.norm(estimate - [1.0, 2.0, 3.0]) < 0.01

    def test_robust_direct_info(self):
        ranges = exact_ranges(CUBE, [1.0, 2.0, 3.0])

        _, info = solve_robust_direct_linearization(
            CUBE, ranges, range_std=0.1, loss_scale=2.0, return_info=True
        )

        assert info["converged"]
        assert_allclose(info["weights"], np.ones(8), atol=1e-9)


class TestRobustVsNonlinear:
    """Monte-Carlo comparison on the cube scenario with outliers."""

    def test_robust_beats_nonlinear_per_axis(self):
        true_pos = np.array([0.0, 0.0, 5.0])
        config = MeasurementConfig(range_noise_std=0.25, outlier_ratio=0.1, outlier_magnitude=100.0)

        nonlinear = run_monte_carlo(solve_nonlinear, true_pos, CUBE, config, n_runs=1000, seed=42)
        robust = run_monte_carlo(
            partial(solve_robust, range_std=0.25, loss_scale=2.0),
            true_pos,
            CUBE,
            config,
            n_runs=1000,
            seed=42,
        )

        assert np.all(robust.mean_absolute_error < nonlinear.mean_absolute_error)


class TestMultilaterationPositioner:
    """Test method dispatch."""

    @pytest.mark.parametrize(
        "alias, method",
        [
            ("ols", "normal_eq"),
            ("lls1", "direct"),
            ("lls2", "reference"),
            ("tswlls", "two_step"),
            ("lm", "nonlinear"),
            ("irls", "robust"),
            ("SVD", "svd"),
            ("robust_direct", "robust_direct"),
        ],
    )
    def test_aliases(self, alias, method):
        assert MultilaterationPositioner(CUBE, method=alias).method == method

    def test_unknown_method(self):
        with pytest.raises(InvalidInputError):
            MultilaterationPositioner(CUBE, method="kalman")

    def test_bad_anchor_shape(self):
        with pytest.raises(InvalidInputError):
            MultilaterationPositioner(np.zeros((4, 2)))

    def test_two_step_requires_sigma(self):
        positioner = MultilaterationPositioner(CUBE, method="two_step")
        ranges = exact_ranges(CUBE, [1.0, 2.0, 3.0])

        with pytest.raises(InvalidInputError, match="range_stds"):
            positioner.solve(ranges)

        estimate, info = positioner.solve(ranges, range_stds=0.1)
        assert info["method"] == "two_step"
        assert_allclose(estimate, [1.0, 2.0, 3.0], atol=1e-6)

    @pytest.mark.parametrize(
        "method, kwargs",
        [
            ("normal_eq", {}),
            ("svd", {}),
            ("direct", {}),
            ("reference", {}),
            ("nonlinear", {"initial_guess": np.zeros(3)}),
            ("robust", {"range_std": 0.1, "loss_scale": 2.0}),
            ("robust_direct", {"range_std": 0.1, "loss_scale": 2.0}),
        ],
    )
    def test_solve(self, method, kwargs):
        true_pos = np.array([1.0, 2.0, 3.0])
        positioner = MultilaterationPositioner(CUBE, method=method)

        estimate, info = positioner.solve(exact_ranges(CUBE, true_pos), **kwargs)

        assert info["method"] == method
        assert_allclose(estimate, true_pos, atol=1e-6)
        if method in ("nonlinear", "robust", "robust_direct"):
            assert "converged" in info
