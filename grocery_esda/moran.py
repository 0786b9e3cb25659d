"""
Moran's I Spatial Autocorrelation Statistic

"""

import numpy as np

from .exceptions import InputError, NumericalError
from .permutation import (
    PERMUTATIONS,
    PermutationResult,
    _moran_batch,
    _permuted_ids,
    _prepare_univariate,
    _simulate,
)
from .significance import _resolve_alternative, normal_significance
from .weights import _check_attribute

__all__ = ["Moran", "moran_i"]


class Moran:
    """Moran's I Global Autocorrelation Statistic

    Parameters
    ----------

    y               : array
                      variable measured across n regions
    w               : Weights
                      spatial weights aligned with y
    permutations    : int
                      number of random permutations for calculation of
                      pseudo-p_values. 0 skips the permutation test.
    seed            : int | numpy.random.SeedSequence | None
                      seed for the permutations
    alternative     : {'two-sided', 'greater', 'lesser', 'directed'}
                      alternative hypothesis for the analytical and the
                      permutation p-values. 'directed' is the one-tailed test
                      in the direction of the observed z-value.
    islands         : {'zero', 'exclude'}
                      'zero' (default) keeps regions without neighbors in n,
                      where they contribute nothing to the cross-product;
                      'exclude' removes them before computing anything.
    n_jobs          : int
                      number of workers for the permutations

    Attributes
    ----------
    y            : array
                   original variable
    w            : Weights
                   weights the statistic was computed with (islands removed
                   under ``islands='exclude'``)
    n            : int
                   number of regions entering the statistic
    z            : array
                   zero-mean, unit standard deviation normalized y
    I            : float
                   value of Moran's I
    EI           : float
                   expected value, -1/(n-1)
    VI_norm      : float
                   variance of I under normality assumption
    seI_norm     : float
                   standard deviation of I under normality assumption
    z_norm       : float
                   z-value of I under normality assumption
    p_norm       : float
                   p-value of I under normality assumption
    VI_rand      : float
                   variance of I under randomization assumption
    seI_rand     : float
                   standard deviation of I under randomization assumption
    z_rand       : float
                   z-value of I under randomization assumption
    p_rand       : float
                   p-value of I under randomization assumption
    permutation  : PermutationResult
                   (if permutations>0)
    sim          : array
                   (if permutations>0)
                   vector of I values for permuted samples
    p_sim        : float
                   (if permutations>0)
                   pseudo p-value for ``alternative``
    EI_sim       : float
                   (if permutations>0)
                   average value of I from permutations
    VI_sim       : float
                   (if permutations>0)
                   variance of I from permutations
    seI_sim      : float
                   (if permutations>0)
                   standard deviation of I under permutations.
    z_sim        : float
                   (if permutations>0)
                   standardized I based on permutations
    p_z_sim      : float
                   (if permutations>0)
                   p-value based on standard normal approximation from
                   permutations

    Notes
    -----
    Technical details and derivations can be found in Cliff and Ord (1981).
    The variance under randomization needs at least four regions.

    Raises
    ------
    DegenerateInputError
        if y is constant
    StructuralError
        if w has no links at all

    Examples
    --------
    >>> import libpysal
    >>> from grocery_esda import Neighbors, Weights
    >>> gal = libpysal.io.open(libpysal.examples.get_path("stl.gal")).read()
    >>> w = Weights(Neighbors.from_libpysal(gal))
    >>> f = libpysal.io.open(libpysal.examples.get_path("stl_hom.txt"))
    >>> y = np.array(f.by_col['HR8893'])
    >>> mi = Moran(y, w, permutations=0)
    >>> round(mi.I, 3)
    0.244
    >>> mi.EI
    -0.012987012987012988
    """

    def __init__(
        self,
        y,
        w,
        permutations=PERMUTATIONS,
        seed=None,
        alternative="two-sided",
        islands="zero",
        n_jobs=1,
    ):
        self.y = _check_attribute(y, w.n)
        self.alternative = _resolve_alternative(alternative)
        self.islands = islands
        self.permutations = permutations
        self.w, y, self.z, self.z2ss = _prepare_univariate(w, self.y, islands)
        self.n = self.w.n
        if self.n < 4:
            raise InputError(
                f"at least four regions are needed for the variance of I,"
                f" received {self.n}"
            )
        self.__moments()
        if self.VI_rand <= 0 or self.VI_norm <= 0:
            raise NumericalError(
                "the variance of I is not positive for these weights and values"
            )
        self.seI_norm = np.sqrt(self.VI_norm)
        self.seI_rand = np.sqrt(self.VI_rand)
        self.I = _moran_batch(  # noqa: E741
            self.z, self.w.sparse, self.w.s0, self.z2ss
        )[0]
        self.z_norm = (self.I - self.EI) / self.seI_norm
        self.z_rand = (self.I - self.EI) / self.seI_rand
        self.p_norm = normal_significance(self.z_norm, self.alternative)
        self.p_rand = normal_significance(self.z_rand, self.alternative)

        if permutations:
            ids = _permuted_ids(self.n, int(permutations), seed)
            sim = _simulate(self.z, self.w, self.z2ss, ids, n_jobs=n_jobs)
            self.permutation = PermutationResult(
                self.I, sim, alternative=self.alternative, seed=seed
            )
            self.sim = self.permutation.simulations
            self.p_sim = self.permutation.p_sim
            self.EI_sim = self.permutation.EI_sim
            self.seI_sim = self.permutation.seI_sim
            self.VI_sim = self.permutation.VI_sim
            self.z_sim = self.permutation.z_sim
            self.p_z_sim = self.permutation.p_z_sim

        # provide .z attribute that is znormalized
        self.z = self.z / y.std()

    def __moments(self):
        n = self.n
        z = self.z
        self.EI = -1.0 / (n - 1)
        n2 = n * n
        s0 = self.w.s0
        s1 = self.w.s1
        s2 = self.w.s2
        s02 = s0 * s0
        v_num = n2 * s1 - n * s2 + 3 * s02
        v_den = (n - 1) * (n + 1) * s02
        self.VI_norm = v_num / v_den - (1.0 / (n - 1)) ** 2

        # variance under randomization
        xd4 = z**4
        xd2 = z**2
        k_num = xd4.sum() / n
        k_den = (xd2.sum() / n) ** 2
        k = k_num / k_den
        EI = self.EI
        A = n * ((n2 - 3 * n + 3) * s1 - n * s2 + 3 * s02)
        B = k * ((n2 - n) * s1 - 2 * n * s2 + 6 * s02)
        VIR = (A - B) / ((n - 1) * (n - 2) * (n - 3) * s02) - EI * EI
        self.VI_rand = VIR

    @property
    def _statistic(self):
        """More consistent hidden attribute to access the statistic"""
        return self.I

    def __repr__(self):
        return (
            f"Moran(I={self.I:.6g}, EI={self.EI:.6g}, z_rand={self.z_rand:.6g},"
            f" p_rand={self.p_rand:.6g}, n={self.n})"
        )


def moran_i(w, y, islands="zero", alternative="two-sided"):
    """
    Global Moran's I with analytical inference only.

    Parameters
    ----------
    w           : Weights
    y           : array
    islands     : {'zero', 'exclude'}
    alternative : {'two-sided', 'greater', 'lesser', 'directed'}

    Returns
    -------
    Moran
        without permutation attributes; see :func:`permutation_test` for the
        Monte Carlo test.
    """
    return Moran(y, w, permutations=0, alternative=alternative, islands=islands)
