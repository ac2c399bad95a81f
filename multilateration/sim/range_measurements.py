"""
Synthetic range measurement generation.

Generates noisy range measurements from a true position to a set of anchors:
    - Gaussian range noise:   dᵢ = ‖x - pᵢ‖ + nᵢ,  nᵢ ~ N(0, σ²)
    - Outliers:               with probability ρ, dᵢ ~ U(0, d_max) instead
    - Anchor perturbation:    p̃ᵢ = pᵢ + eᵢ,  eᵢ ~ N(0, σ_a² I₃)

The outlier model replaces the range outright, mimicking a measurement that
has locked onto an unrelated path.

Every function draws from an explicit ``np.random.Generator``. Create one per
worker with make_rng; a seed of None draws OS entropy and is not
reproducible.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass
class MeasurementConfig:
    """Noise parameters for one synthetic measurement set.

    Attributes:
        range_noise_std: Gaussian range noise σ (meters).
        outlier_ratio: Probability that a range is an outlier, in [0, 1].
        outlier_magnitude: Upper bound of the uniform outlier range (meters).
        anchor_noise_std: Gaussian anchor position noise σ per axis (meters).
    """

    range_noise_std: float = 0.0
    outlier_ratio: float = 0.0
    outlier_magnitude: float = 0.0
    anchor_noise_std: float = 0.0

    def __post_init__(self):
        if self.range_noise_std < 0:
            raise ValueError(f"range_noise_std must be >= 0, got {self.range_noise_std}")
        if not 0.0 <= self.outlier_ratio <= 1.0:
            raise ValueError(f"outlier_ratio must be in [0, 1], got {self.outlier_ratio}")
        if self.outlier_magnitude < 0:
            raise ValueError(f"outlier_magnitude must be >= 0, got {self.outlier_magnitude}")
        if self.anchor_noise_std < 0:
            raise ValueError(f"anchor_noise_std must be >= 0, got {self.anchor_noise_std}")


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """
    Create a random generator.

    Args:
        seed: Integer seed, or None for a non-reproducible generator seeded
            from OS entropy.
    """
    return np.random.default_rng(seed)


def generate_noisy_range(
    true_position: np.ndarray,
    anchor_position: np.ndarray,
    range_noise_std: float,
    rng: np.random.Generator,
    outlier_ratio: float = 0.0,
    outlier_magnitude: float = 0.0,
) -> float:
    """
    Generate one noisy range, possibly an outlier.

    Args:
        true_position: True target position, shape (3,).
        anchor_position: Anchor position, shape (3,).
        range_noise_std: Gaussian noise σ.
        rng: Random generator.
        outlier_ratio: Probability of an outlier.
        outlier_magnitude: Outliers are drawn from U(0, outlier_magnitude).

    Returns:
        Range measurement.
    """
    if outlier_ratio > 0.0 and rng.uniform() < outlier_ratio:
        return float(rng.uniform(0.0, outlier_magnitude))

    true_range = np.linalg.norm(
        np.asarray(true_position, dtype=float) - np.asarray(anchor_position, dtype=float)
    )
    return float(true_range + rng.normal(0.0, range_noise_std))


def generate_noisy_ranges(
    true_position: np.ndarray,
    anchors: np.ndarray,
    range_noise_std: float,
    rng: np.random.Generator,
    outlier_ratio: float = 0.0,
    outlier_magnitude: float = 0.0,
) -> np.ndarray:
    """
    Generate one noisy range per anchor.

    Args:
        true_position: True target position, shape (3,).
        anchors: Anchor positions, shape (N, 3).
        range_noise_std: Gaussian noise σ.
        rng: Random generator.
        outlier_ratio: Probability of an outlier per range.
        outlier_magnitude: Outliers are drawn from U(0, outlier_magnitude).

    Returns:
        Ranges, shape (N,), index-aligned with ``anchors``.

    Example:
        >>> anchors = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]])
        >>> ranges = generate_noisy_ranges([1, 2, 3], anchors, 0.1, make_rng(42))
        >>> ranges.shape
        (4,)
    """
    anchors = np.asarray(anchors, dtype=float)
    return np.array(
        [
            generate_noisy_range(
                true_position,
                anchor,
                range_noise_std,
                rng,
                outlier_ratio=outlier_ratio,
                outlier_magnitude=outlier_magnitude,
            )
            for anchor in anchors
        ]
    )


def generate_noisy_anchor_positions(
    anchors: np.ndarray,
    anchor_noise_std: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Perturb every anchor coordinate with independent Gaussian noise.

    Args:
        anchors: True anchor positions, shape (N, 3).
        anchor_noise_std: Noise σ per coordinate.
        rng: Random generator.

    Returns:
        Perturbed anchors, shape (N, 3).
    """
    anchors = np.asarray(anchors, dtype=float)
    return anchors + rng.normal(0.0, anchor_noise_std, size=anchors.shape)


def generate_measurements(
    true_position: np.ndarray,
    anchors: np.ndarray,
    config: MeasurementConfig,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate an (anchors, ranges) pair for one solve.

    Ranges are measured from the true anchors. When ``anchor_noise_std`` is
    positive, the returned anchors are perturbed copies, i.e. the positions a
    solver would believe the anchors to be at.

    Args:
        true_position: True target position, shape (3,).
        anchors: True anchor positions, shape (N, 3).
        config: Noise parameters.
        rng: Random generator.

    Returns:
        Tuple of (anchors_used, ranges), shapes (N, 3) and (N,).
    """
    anchors = np.asarray(anchors, dtype=float)

    ranges = generate_noisy_ranges(
        true_position,
        anchors,
        config.range_noise_std,
        rng,
        outlier_ratio=config.outlier_ratio,
        outlier_magnitude=config.outlier_magnitude,
    )

    if config.anchor_noise_std > 0.0:
        anchors_used = generate_noisy_anchor_positions(anchors, config.anchor_noise_std, rng)
    else:
        anchors_used = anchors.copy()

    return anchors_used, ranges
