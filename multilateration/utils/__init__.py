"""
Utility functions for multilateration.

This module provides input validation, anchor geometry diagnostics and
singularity handling shared by the solvers.
"""

from .geometry import (
    EPSILON_RANGE,
    EPSILON_RANK,
    check_anchor_geometry,
    compute_rank,
    normalize_jacobian_singularities,
    validate_anchors_and_ranges,
)

__all__ = [
    'EPSILON_RANGE',
    'EPSILON_RANK',
    'check_anchor_geometry',
    'compute_rank',
    'normalize_jacobian_singularities',
    'validate_anchors_and_ranges',
]
