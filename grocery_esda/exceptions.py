"""
Failure types raised by the spatial statistics engine.

Every analysis failure derives from :class:`SpatialAnalysisError` so callers
can catch the whole family, while the three branches keep malformed input,
unusable spatial structure and numerical breakdowns distinguishable.
"""

__all__ = [
    "SpatialAnalysisError",
    "InputError",
    "DegenerateInputError",
    "StructuralError",
    "NumericalError",
    "ConvergenceError",
    "SingularMatrixError",
]


class SpatialAnalysisError(Exception):
    """Base class for all analysis failures."""


class InputError(SpatialAnalysisError, ValueError):
    """Malformed or misaligned region/attribute data."""


class DegenerateInputError(InputError):
    """The attribute has no variation, so the statistic is undefined."""


class StructuralError(SpatialAnalysisError, ValueError):
    """The region graph cannot support the requested statistic."""


class NumericalError(SpatialAnalysisError, ArithmeticError):
    """A numerical routine failed."""


class ConvergenceError(NumericalError):
    """The search for the spatial autoregressive parameter did not converge."""


class SingularMatrixError(NumericalError):
    """The design matrix is rank deficient."""
