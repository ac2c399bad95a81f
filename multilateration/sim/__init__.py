"""
Simulation utilities for generating synthetic range measurements.

Modules:
    range_measurements: Noisy ranges, outliers and anchor perturbation
"""

from multilateration.sim.range_measurements import (
    MeasurementConfig,
    generate_measurements,
    generate_noisy_anchor_positions,
    generate_noisy_range,
    generate_noisy_ranges,
    make_rng,
)

__all__ = [
    "MeasurementConfig",
    "make_rng",
    "generate_noisy_range",
    "generate_noisy_ranges",
    "generate_noisy_anchor_positions",
    "generate_measurements",
]
