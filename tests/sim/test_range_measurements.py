"""
Unit tests for synthetic range measurement generation.

Tests cover:
    - Gaussian range noise statistics
    - Outlier replacement model
    - Anchor position perturbation
    - Reproducibility with seeded generators
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from multilateration.sim.range_measurements import (
    MeasurementConfig,
    generate_measurements,
    generate_noisy_anchor_positions,
    generate_noisy_range,
    generate_noisy_ranges,
    make_rng,
)


class TestMeasurementConfig(unittest.TestCase):
    """Test noise parameter validation."""

    def test_defaults_are_noise_free(self):
        config = MeasurementConfig()

        self.assertEqual(config.range_noise_std, 0.0)
        self.assertEqual(config.outlier_ratio, 0.0)
        self.assertEqual(config.anchor_noise_std, 0.0)

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            MeasurementConfig(range_noise_std=-0.1)
        with self.assertRaises(ValueError):
            MeasurementConfig(outlier_ratio=1.5)
        with self.assertRaises(ValueError):
            MeasurementConfig(outlier_magnitude=-1.0)
        with self.assertRaises(ValueError):
            MeasurementConfig(anchor_noise_std=-0.1)


class TestGenerateNoisyRanges(unittest.TestCase):
    """Test range generation."""

    def setUp(self):
        self.anchors = np.array(
            [[x, y, z] for x in (-5, 5) for y in (-5, 5) for z in (0, 10)], dtype=float
        )
        self.true_pos = np.array([0.0, 0.0, 5.0])
        self.true_ranges = np.linalg.norm(self.anchors - self.true_pos, axis=1)

    def test_noise_free(self):
        ranges = generate_noisy_ranges(self.true_pos, self.anchors, 0.0, make_rng(0))

        assert_allclose(ranges, self.true_ranges)

    def test_gaussian_noise_statistics(self):
        """Sample mean and std of the noise match N(0, σ²)."""
        rng = make_rng(1)
        sigma = 0.25

        noise = np.array(
            [
                generate_noisy_range(self.true_pos, self.anchors[0], sigma, rng)
                for _ in range(20000)
            ]
        ) - self.true_ranges[0]

        self.assertAlmostEqual(np.mean(noise), 0.0, delta=0.01)
        self.assertAlmostEqual(np.std(noise), sigma, delta=0.01)

    def test_no_uniform_draw_without_outliers(self):
        """With outlier_ratio = 0 only the normal draws consume the generator."""
        sigma = 0.3
        ranges = generate_noisy_ranges(self.true_pos, self.anchors, sigma, make_rng(3))

        rng = make_rng(3)
        expected = self.true_ranges + np.array(
            [rng.normal(0.0, sigma) for _ in range(len(self.anchors))]
        )
        assert_allclose(ranges, expected)

    def test_all_outliers(self):
        """Outliers replace the range with U(0, magnitude)."""
        rng = make_rng(4)

        ranges = np.concatenate(
            [
                generate_noisy_ranges(
                    self.true_pos, self.anchors, 0.1, rng, outlier_ratio=1.0, outlier_magnitude=100.0
                )
                for _ in range(200)
            ]
        )

        self.assertTrue(np.all(ranges >= 0.0))
        self.assertTrue(np.all(ranges < 100.0))
        # Uniform on [0, 100) has mean 50
        self.assertAlmostEqual(np.mean(ranges), 50.0, delta=3.0)

    def test_outlier_fraction(self):
        rng = make_rng(5)
        n_trials = 2000

        ranges = np.array(
            [
                generate_noisy_range(
                    self.true_pos, self.anchors[0], 0.0, rng,
                    outlier_ratio=0.1, outlier_magnitude=100.0,
                )
                for _ in range(n_trials)
            ]
        )

        outlier_fraction = np.mean(~np.isclose(ranges, self.true_ranges[0]))
        self.assertAlmostEqual(outlier_fraction, 0.1, delta=0.025)

    def test_reproducible_with_seed(self):
        a = generate_noisy_ranges(self.true_pos, self.anchors, 0.25, make_rng(42), 0.1, 100.0)
        b = generate_noisy_ranges(self.true_pos, self.anchors, 0.25, make_rng(42), 0.1, 100.0)
        c = generate_noisy_ranges(self.true_pos, self.anchors, 0.25, make_rng(43), 0.1, 100.0)

        assert_allclose(a, b)
        self.assertFalse(np.allclose(a, c))


class TestGenerateMeasurements(unittest.TestCase):
    """Test full measurement sets."""

    def setUp(self):
        self.anchors = np.array(
            [[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]], dtype=float
        )
        self.true_pos = np.array([1.0, 2.0, 3.0])

    def test_anchor_perturbation(self):
        rng = make_rng(6)
        anchors = np.tile(self.anchors, (500, 1))

        noisy = generate_noisy_anchor_positions(anchors, 0.1, rng)

        self.assertEqual(noisy.shape, anchors.shape)
        self.assertAlmostEqual(np.std(noisy - anchors), 0.1, delta=0.01)

    def test_ranges_measured_from_true_anchors(self):
        config = MeasurementConfig(anchor_noise_std=0.5)

        anchors_used, ranges = generate_measurements(self.true_pos, self.anchors, config, make_rng(7))

        assert_allclose(ranges, np.linalg.norm(self.anchors - self.true_pos, axis=1))
        self.assertFalse(np.allclose(anchors_used, self.anchors))

    def test_anchors_copied_without_noise(self):
        anchors_used, _ = generate_measurements(
            self.true_pos, self.anchors, MeasurementConfig(range_noise_std=0.1), make_rng(8)
        )

        assert_allclose(anchors_used, self.anchors)
        self.assertIsNot(anchors_used, self.anchors)


if __name__ == "__main__":
    unittest.main()
