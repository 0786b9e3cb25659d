"""
Permutation (Monte Carlo) inference for global Moran's I.
"""

import warnings

import numpy
from joblib import Parallel, delayed, effective_n_jobs

from .exceptions import DegenerateInputError, InputError, StructuralError
from .significance import (
    _resolve_alternative,
    calculate_significance,
    normal_significance,
)
from .weights import _check_attribute

__all__ = ["PermutationResult", "permutation_test", "PERMUTATIONS"]

PERMUTATIONS = 499

ISLAND_POLICIES = ("zero", "exclude")

# permutations evaluated per vectorised batch
CHUNK_SIZE = 256

#######################################################################
#                   Utilities for all functions                       #
#######################################################################


def _prepare_univariate(w, y, islands="zero"):
    """
    Validate ``y`` against ``w`` and apply the island policy.

    Returns
    -------
    w : Weights
        the weights the statistic is computed on. Under 'exclude' islands are
        dropped, otherwise ``w`` is returned untouched.
    y : array
        values aligned with the returned weights
    z : array
        deviations from the mean
    z2ss : float
        sum of squared deviations
    """
    if islands not in ISLAND_POLICIES:
        raise ValueError(
            f"islands must be one of {ISLAND_POLICIES}, received '{islands}'"
        )
    y = _check_attribute(y, w.n)
    if islands == "exclude" and w.has_islands:
        keep = numpy.ones(w.n, dtype=bool)
        keep[w.islands] = False
        w = w.subset(keep)
        y = y[keep]
    if w.s0 == 0:
        raise StructuralError(
            "the weights contain no links (every region is an island),"
            " so spatial autocorrelation is undefined"
        )
    if w.n < 2:
        raise InputError("at least two regions are required")
    if numpy.ptp(y) == 0:
        raise DegenerateInputError(
            "the attribute is constant across regions, so Moran's I is undefined"
        )
    z = y - y.mean()
    return w, y, z, float((z * z).sum())


def _moran_batch(z, sparse_w, s0, z2ss):
    """
    Moran's I for each row of ``z``, which all share the same sum of squares.
    """
    z = numpy.atleast_2d(z)
    lag = (sparse_w @ z.T).T
    return z.shape[1] / s0 * (z * lag).sum(axis=1) / z2ss


def _permuted_ids(n, permutations, seed):
    """
    Draw ``permutations`` full reshuffles of ``range(n)`` from one stream.
    """
    rng = numpy.random.default_rng(seed)
    return numpy.vstack([rng.permutation(n) for _ in range(permutations)])


def _simulate(z, w, z2ss, permuted_ids, n_jobs=1):
    chunks = numpy.array_split(
        permuted_ids, max(1, -(-len(permuted_ids) // CHUNK_SIZE))
    )
    if n_jobs == 1 or effective_n_jobs(n_jobs) == 1:
        results = [_moran_batch(z[ids], w.sparse, w.s0, z2ss) for ids in chunks]
    else:
        results = Parallel(n_jobs=n_jobs)(
            delayed(_moran_batch)(z[ids], w.sparse, w.s0, z2ss) for ids in chunks
        )
    # chunks come back in draw order, so the sequence does not depend on n_jobs
    return numpy.concatenate(results)


class PermutationResult:
    """
    Outcome of a permutation test.

    Parameters
    ----------
    observed     : float
                   statistic on the original arrangement
    simulations  : array
                   statistic under each random permutation
    alternative  : str
                   alternative hypothesis used for ``p_sim``
    seed         : int | None
                   seed the permutations were drawn from

    Attributes
    ----------
    observed     : float
    simulations  : array
                   (permutations,) simulated statistics, read-only
    permutations : int
                   number of simulations
    rank         : int
                   ascending rank of ``observed`` in the combined sequence of
                   simulated and observed values (1 + number of simulated
                   values strictly below it)
    p_sim        : float
                   pseudo p-value, (M + 1) / (permutations + 1)
    EI_sim       : float
                   average of the simulated values
    VI_sim       : float
                   variance of the simulated values
    seI_sim      : float
                   standard deviation of the simulated values
    z_sim        : float
                   observed value standardized by the simulated moments
    p_z_sim      : float
                   p-value of ``z_sim`` under the standard normal
    """

    def __init__(self, observed, simulations, alternative="greater", seed=None):
        self.alternative = _resolve_alternative(alternative)
        self.observed = float(observed)
        simulations = numpy.asarray(simulations, dtype=float)
        simulations.flags.writeable = False
        self.simulations = simulations
        self.permutations = len(simulations)
        self.seed = seed
        self.rank = int((simulations < self.observed).sum()) + 1
        self.p_sim = calculate_significance(
            self.observed, simulations, alternative=self.alternative
        )
        self.EI_sim = simulations.mean()
        self.seI_sim = simulations.std()
        self.VI_sim = self.seI_sim**2
        if self.seI_sim > 0:
            self.z_sim = (self.observed - self.EI_sim) / self.seI_sim
            self.p_z_sim = normal_significance(self.z_sim, self.alternative)
        else:
            warnings.warn(
                "all simulated statistics are identical; z_sim and p_z_sim"
                " are undefined and set to nan",
                stacklevel=2,
            )
            self.z_sim = self.p_z_sim = numpy.nan

    def __repr__(self):
        return (
            f"PermutationResult(observed={self.observed:.6g},"
            f" permutations={self.permutations}, p_sim={self.p_sim:.6g},"
            f" alternative='{self.alternative}')"
        )


def permutation_test(
    w,
    y,
    permutations=PERMUTATIONS,
    seed=None,
    alternative="greater",
    islands="zero",
    n_jobs=1,
):
    """
    Permutation test for global Moran's I.

    Parameters
    ----------
    w            : Weights
                   spatial weights aligned with ``y``; never modified
    y            : array
                   one value per region
    permutations : int
                   number of random reshuffles of ``y`` across regions
    seed         : int | numpy.random.SeedSequence | None
                   source of randomness. The same seed and inputs produce an
                   identical simulated sequence.
    alternative  : {'greater', 'lesser', 'two-sided', 'directed', 'folded'}
                   alternative hypothesis for the pseudo p-value
    islands      : {'zero', 'exclude'}
                   'zero' keeps islands in ``n`` with no contribution to the
                   cross-product, 'exclude' drops them first
    n_jobs       : int
                   number of joblib workers evaluating the permutations.
                   Permutations are drawn before dispatch, so the result does
                   not depend on ``n_jobs``.

    Returns
    -------
    PermutationResult

    Examples
    --------
    >>> from grocery_esda import build_neighbors, build_weights
    >>> import shapely
    >>> grid = [shapely.box(i, j, i + 1, j + 1) for j in range(4) for i in range(4)]
    >>> w = build_weights(build_neighbors(grid, rule="rook"))
    >>> y = [10, 10, 0, 0] * 4
    >>> result = permutation_test(w, y, permutations=99, seed=12345)
    >>> result.observed > 0
    True
    """
    if permutations is None or int(permutations) < 1:
        raise ValueError(
            f"permutations must be a positive integer, received {permutations}"
        )
    alternative = _resolve_alternative(alternative)
    w, y, z, z2ss = _prepare_univariate(w, y, islands)
    observed = _moran_batch(z, w.sparse, w.s0, z2ss)[0]
    permuted_ids = _permuted_ids(w.n, int(permutations), seed)
    simulations = _simulate(z, w, z2ss, permuted_ids, n_jobs=n_jobs)
    return PermutationResult(observed, simulations, alternative=alternative, seed=seed)
