__version__ = "0.1.0"
"""
:mod:`grocery_esda` --- Spatial analysis of grocery store access
================================================================

"""

from .contiguity import Neighbors, build_neighbors  # noqa F401
from .exceptions import (  # noqa F401
    ConvergenceError,
    DegenerateInputError,
    InputError,
    NumericalError,
    SingularMatrixError,
    SpatialAnalysisError,
    StructuralError,
)
from .lag_model import OLS, SpatialLag, fit_spatial_lag  # noqa F401
from .moran import Moran, moran_i  # noqa F401
from .permutation import PermutationResult, permutation_test  # noqa F401
from .pipeline import (  # noqa F401
    AnalysisConfig,
    AnalysisReport,
    analyze,
    count_points,
    load_regions,
    prepare_regions,
)
from .significance import calculate_significance  # noqa F401
from .weights import Weights, build_weights, spatial_lag  # noqa F401
