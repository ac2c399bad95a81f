"""Exceptions and warnings raised by the multilateration solvers."""


class InvalidInputError(ValueError):
    """Anchor/range shapes disagree, or too few anchors for the method."""


class SingularSystemError(ValueError):
    """The normal matrix of a linearized system cannot be inverted.

    Raised by the normal-equations solver when the anchors are collinear,
    coplanar or otherwise rank deficient.
    """


class DegenerateGeometryWarning(RuntimeWarning):
    """An SVD-based solve was rank deficient.

    The returned estimate is the minimum-norm solution and is ambiguous
    along the missing directions.
    """
