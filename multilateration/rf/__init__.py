"""
Range-based (TOA / two-way ranging) positioning module.

Submodules:
    measurement_models: Range function, Jacobian and residual models
    positioning: Linearized, nonlinear and robust multilateration solvers
"""

from multilateration.rf.measurement_models import (
    RangeResidualModel,
    WeightedRangeResidualModel,
    range_jacobian,
    toa_range,
)
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

__all__ = [
    # Measurement models
    "toa_range",
    "range_jacobian",
    "RangeResidualModel",
    "WeightedRangeResidualModel",
    # Linearized solvers
    "solve_linear_normal_eq",
    "solve_linear_svd",
    # Alternate linearizations
    "solve_direct_linearization",
    "solve_reference_differencing",
    "select_reference_anchor",
    "solve_two_step_weighted",
    # Nonlinear and robust solvers
    "solve_nonlinear",
    "solve_robust",
    "solve_robust_direct_linearization",
    # Method dispatch
    "MultilaterationPositioner",
]
