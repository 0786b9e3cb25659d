"""
Grocery store distribution analysis

Chains the pieces of the package into one parameterized run: regions and
covariates in, contiguity weights, Moran's I with a permutation test, and an
OLS versus spatial lag comparison out.
"""

import warnings

import geopandas
import numpy as np
import pandas as pd

from .cleaning import (
    PERCENTAGE_POLICIES,
    apply_percentage_policy,
    drop_incomplete,
    per_capita,
)
from .contiguity import RULES, build_neighbors
from .exceptions import InputError, SpatialAnalysisError
from .lag_model import OLS, SpatialLag
from .moran import Moran
from .permutation import ISLAND_POLICIES, PERMUTATIONS, permutation_test
from .significance import _resolve_alternative
from .weights import TRANSFORMATIONS, Weights

__all__ = [
    "AnalysisConfig",
    "AnalysisReport",
    "analyze",
    "count_points",
    "load_regions",
    "prepare_regions",
]

REGRESSIONS = ("none", "spatial-lag")

STORE_COUNT = "store_count"
STORE_DENSITY = "stores_per_1k"


class AnalysisConfig:
    """
    Options of an analysis run.

    Parameters
    ----------
    transformation    : {'r', 'b'}
                        row-standardized or binary weights
    contiguity        : {'queen', 'rook'}
                        contiguity rule
    permutations      : int
                        number of permutations for the Monte Carlo test
    seed              : int | None
                        seed of the permutation test
    alternative       : {'greater', 'lesser', 'two-sided', 'directed'}
                        alternative hypothesis for Moran's I
    islands           : {'zero', 'exclude'}
                        treatment of regions without neighbors
    regression        : {'spatial-lag', 'none'}
                        whether to fit the spatial lag model next to OLS
    n_jobs            : int
                        workers for the permutation test
    percentage_policy : {'clip', 'rescale', 'nan', 'error'}
                        treatment of percentages outside [0, 100] in
                        :func:`prepare_regions`
    """

    _fields = (
        "transformation",
        "contiguity",
        "permutations",
        "seed",
        "alternative",
        "islands",
        "regression",
        "n_jobs",
        "percentage_policy",
    )

    def __init__(
        self,
        transformation="r",
        contiguity="queen",
        permutations=PERMUTATIONS,
        seed=None,
        alternative="greater",
        islands="zero",
        regression="spatial-lag",
        n_jobs=1,
        percentage_policy="clip",
    ):
        transformation = str(transformation).lower()
        if transformation not in TRANSFORMATIONS:
            raise ValueError(
                f"transformation must be one of {TRANSFORMATIONS},"
                f" received '{transformation}'"
            )
        if contiguity not in RULES:
            raise ValueError(
                f"contiguity must be one of {RULES}, received '{contiguity}'"
            )
        if permutations is None or int(permutations) < 1:
            raise ValueError(
                f"permutations must be positive, received {permutations}"
            )
        if islands not in ISLAND_POLICIES:
            raise ValueError(
                f"islands must be one of {ISLAND_POLICIES}, received '{islands}'"
            )
        if regression not in REGRESSIONS:
            raise ValueError(
                f"regression must be one of {REGRESSIONS}, received '{regression}'"
            )
        if percentage_policy not in PERCENTAGE_POLICIES:
            raise ValueError(
                f"percentage_policy must be one of {PERCENTAGE_POLICIES},"
                f" received '{percentage_policy}'"
            )
        self.transformation = transformation
        self.contiguity = contiguity
        self.permutations = int(permutations)
        self.seed = seed
        self.alternative = _resolve_alternative(alternative)
        self.islands = islands
        self.regression = regression
        self.n_jobs = n_jobs
        self.percentage_policy = percentage_policy

    @classmethod
    def from_mapping(cls, mapping):
        """
        Build a config from a dictionary, e.g. one parsed from a settings
        file. Unknown keys are rejected.
        """
        unknown = set(mapping) - set(cls._fields)
        if unknown:
            raise ValueError(f"unknown analysis options: {sorted(unknown)}")
        return cls(**mapping)

    def to_dict(self):
        return {field: getattr(self, field) for field in self._fields}

    def __eq__(self, other):
        if not isinstance(other, AnalysisConfig):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        options = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"AnalysisConfig({options})"


def load_regions(path, id_column=None, **kwargs):
    """
    Read region polygons with geopandas, optionally indexed by an id column.
    """
    regions = geopandas.read_file(path, **kwargs)
    if id_column is not None:
        if not regions[id_column].is_unique:
            raise InputError(f"region ids in '{id_column}' are not unique")
        regions = regions.set_index(id_column)
    return regions


def count_points(regions, points, column=STORE_COUNT):
    """
    Count the points (e.g. grocery stores) falling within each region.

    Parameters
    ----------
    regions : GeoDataFrame
              polygons
    points  : GeoDataFrame
              point locations in the same CRS as ``regions``
    column  : str
              name of the count column

    Returns
    -------
    GeoDataFrame
        a copy of ``regions`` with the count column added. Points on a
        boundary shared by two regions fall within neither and are not
        counted.

    Raises
    ------
    InputError
        if the layers are in different CRS, or only one of them has a CRS
    """
    if (regions.crs is None) != (points.crs is None):
        missing = "regions" if regions.crs is None else "points"
        raise InputError(
            f"{missing} have no CRS while the other layer does; set or"
            " reproject before counting"
        )
    if regions.crs != points.crs:
        raise InputError(
            f"points are in {points.crs} but regions are in {regions.crs};"
            " reproject before counting"
        )
    polygons = geopandas.GeoDataFrame(
        geometry=np.asarray(regions.geometry.array), crs=regions.crs
    )
    locations = geopandas.GeoDataFrame(
        geometry=np.asarray(points.geometry.array), crs=points.crs
    )
    joined = geopandas.sjoin(locations, polygons, how="inner", predicate="within")
    counts = joined.groupby("index_right").size()
    result = regions.copy()
    result[column] = counts.reindex(range(len(regions)), fill_value=0).to_numpy()
    return result


def prepare_regions(
    regions,
    stores=None,
    population=None,
    percentage_columns=(),
    config=None,
    scale=1000.0,
):
    """
    Derive the per-region grocery metrics.

    Parameters
    ----------
    regions            : GeoDataFrame
                         region polygons and their covariates
    stores             : GeoDataFrame
                         store locations. When given, ``store_count`` is
                         computed with :func:`count_points`.
    population         : str
                         population column. When given together with a store
                         count, ``stores_per_1k`` is derived from it.
    percentage_columns : sequence of str
                         columns holding percentages, resolved with
                         ``percentage_policy``
    config             : AnalysisConfig
                         supplies ``percentage_policy``, see
                         :func:`apply_percentage_policy`
    scale              : float
                         residents per unit of the density metric

    Returns
    -------
    GeoDataFrame
        a new frame; ``regions`` is left untouched
    """
    config = AnalysisConfig() if config is None else config
    result = regions.copy() if stores is None else count_points(regions, stores)
    for column in percentage_columns:
        result[column] = apply_percentage_policy(
            result[column],
            policy=config.percentage_policy,
            population=None if population is None else result[population],
        ).to_numpy()
    if population is not None and STORE_COUNT in result.columns:
        result[STORE_DENSITY] = per_capita(
            result[STORE_COUNT], result[population], scale=scale
        ).to_numpy()
    return result


def _attempt(step, failures, func, *args, **kwargs):
    try:
        return func(*args, **kwargs)
    except SpatialAnalysisError as exception:
        failures[step] = exception
        warnings.warn(f"{step} failed: {exception}", stacklevel=3)
        return None


class AnalysisReport:
    """
    Results of :func:`analyze`.

    Attributes
    ----------
    config         : AnalysisConfig
    response       : str
    covariates     : tuple
    ids            : pandas.Index
                     ids of the regions that entered the analysis
    neighbors      : Neighbors
    weights        : Weights
    lag            : pandas.Series
                     spatial lag of the response (0 for islands)
    moran          : Moran | None
                     analytical Moran's I of the response
    permutation    : PermutationResult | None
    ols            : OLS | None
    spatial_lag    : SpatialLag | None
    residual_moran : Moran | None
                     Moran's I of the OLS residuals
    failures       : dict
                     step name to the exception that stopped it
    """

    def __init__(
        self,
        config,
        response,
        covariates,
        ids,
        neighbors,
        weights,
        lag,
        moran=None,
        permutation=None,
        ols=None,
        spatial_lag=None,
        residual_moran=None,
        failures=None,
    ):
        self.config = config
        self.response = response
        self.covariates = tuple(covariates)
        self.ids = ids
        self.neighbors = neighbors
        self.weights = weights
        self.lag = lag
        self.moran = moran
        self.permutation = permutation
        self.ols = ols
        self.spatial_lag = spatial_lag
        self.residual_moran = residual_moran
        self.failures = dict(failures or {})

    @property
    def ok(self):
        return not self.failures

    def summary(self):
        """
        Scalar results of every step that ran, as a one-column DataFrame.
        """
        rows = {
            "n_regions": self.weights.n,
            "n_islands": len(self.weights.islands),
        }
        if self.moran is not None:
            rows.update(
                moran_I=self.moran.I,
                moran_EI=self.moran.EI,
                moran_VI_rand=self.moran.VI_rand,
                moran_z_rand=self.moran.z_rand,
                moran_p_rand=self.moran.p_rand,
            )
        if self.permutation is not None:
            rows.update(
                permutations=self.permutation.permutations,
                rank=self.permutation.rank,
                p_sim=self.permutation.p_sim,
                z_sim=self.permutation.z_sim,
            )
        if self.ols is not None:
            rows.update(
                ols_r2=self.ols.r2_, ols_logl=self.ols.logl_, ols_aic=self.ols.aic_
            )
        if self.residual_moran is not None:
            rows.update(
                residual_moran_I=self.residual_moran.I,
                residual_moran_p_rand=self.residual_moran.p_rand,
            )
        if self.spatial_lag is not None:
            rows.update(
                lag_rho=self.spatial_lag.rho_,
                lag_pr2=self.spatial_lag.pr2_,
                lag_logl=self.spatial_lag.logl_,
                lag_aic=self.spatial_lag.aic_,
                lr_statistic=self.spatial_lag.lr_test_[0],
                lr_p_value=self.spatial_lag.lr_test_[1],
            )
        return pd.DataFrame({"value": pd.Series(rows, dtype=float)})

    def coefficients(self):
        """
        OLS and spatial lag coefficient tables side by side.
        """
        tables = {}
        if self.ols is not None:
            tables["ols"] = self.ols.summary()
        if self.spatial_lag is not None:
            tables["spatial_lag"] = self.spatial_lag.summary()
        if not tables:
            return pd.DataFrame()
        return pd.concat(tables, axis=1)


def analyze(regions, response, covariates=(), config=None):
    """
    Run the full analysis on a table of regions.

    Parameters
    ----------
    regions    : GeoDataFrame
                 region polygons with the response and covariate columns
    response   : str
                 column analyzed for spatial autocorrelation and used as the
                 regression response
    covariates : sequence of str
                 regressors. No regression is fitted when empty.
    config     : AnalysisConfig
                 options; defaults to ``AnalysisConfig()``

    Returns
    -------
    AnalysisReport

    Notes
    -----
    Rows with a missing response or covariate are excluded before the
    weights are built, so the contiguity graph is that of the remaining
    regions. Statistical failures of one step are recorded in
    ``AnalysisReport.failures`` and do not stop the other steps; malformed
    geometry or tables raise immediately.
    """
    config = AnalysisConfig() if config is None else config
    if not isinstance(regions, geopandas.GeoDataFrame):
        raise InputError("regions must be a geopandas GeoDataFrame")
    covariates = tuple(covariates)
    data = drop_incomplete(regions, (response,) + covariates)
    if data.empty:
        raise InputError("no region has complete data")
    y = data[response].to_numpy(dtype=float)

    neighbors = build_neighbors(data, rule=config.contiguity)
    weights = Weights(neighbors, transformation=config.transformation)
    lag = pd.Series(weights.lag(y), index=data.index, name=f"W_{response}")

    failures = {}
    moran = _attempt(
        "moran",
        failures,
        Moran,
        y,
        weights,
        permutations=0,
        alternative=config.alternative,
        islands=config.islands,
    )
    permutation = _attempt(
        "permutation",
        failures,
        permutation_test,
        weights,
        y,
        permutations=config.permutations,
        seed=config.seed,
        alternative=config.alternative,
        islands=config.islands,
        n_jobs=config.n_jobs,
    )

    ols = spatial_lag = residual_moran = None
    if covariates:
        X = data[list(covariates)]
        ols = _attempt("ols", failures, OLS().fit, X, y)
        if ols is not None:
            residual_moran = _attempt(
                "residual_moran",
                failures,
                ols.moran_residuals,
                weights,
                alternative=config.alternative,
                islands=config.islands,
            )
        if config.regression == "spatial-lag":
            spatial_lag = _attempt(
                "spatial_lag", failures, SpatialLag(w=weights).fit, X, y
            )

    return AnalysisReport(
        config,
        response,
        covariates,
        data.index,
        neighbors,
        weights,
        lag,
        moran=moran,
        permutation=permutation,
        ols=ols,
        spatial_lag=spatial_lag,
        residual_moran=residual_moran,
        failures=failures,
    )
