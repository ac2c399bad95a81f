"""3D true-range multilateration.

This package estimates an unknown 3D position from range measurements to
known anchors:
- utils: Anchor geometry diagnostics and input validation
- estimators: Generic linear and nonlinear least squares engines
- rf: Range measurement models and the multilateration solvers
- sim: Synthetic range measurement generation
- eval: Error statistics, Monte-Carlo evaluation and plots
"""

from multilateration.errors import (
    DegenerateGeometryWarning,
    InvalidInputError,
    SingularSystemError,
)
from multilateration.rf.positioning import (
    MultilaterationPositioner,
    solve_direct_linearization,
    solve_linear_normal_eq,
    solve_linear_svd,
    solve_nonlinear,
    solve_reference_differencing,
    solve_robust,
    solve_robust_direct_linearization,
    solve_two_step_weighted,
)
from multilateration.utils.geometry import compute_rank

__version__ = "0.1.0"

__all__ = [
    "InvalidInputError",
    "SingularSystemError",
    "DegenerateGeometryWarning",
    "MultilaterationPositioner",
    "solve_linear_normal_eq",
    "solve_linear_svd",
    "solve_direct_linearization",
    "solve_reference_differencing",
    "solve_two_step_weighted",
    "solve_nonlinear",
    "solve_robust",
    "solve_robust_direct_linearization",
    "compute_rank",
]
