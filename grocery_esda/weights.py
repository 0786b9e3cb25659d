"""
Contiguity-based spatial weights and the spatial lag

"""

from functools import cached_property
from itertools import chain

import numpy
from scipy import linalg, sparse

from .contiguity import Neighbors
from .exceptions import InputError

__all__ = ["Weights", "build_weights", "spatial_lag", "TRANSFORMATIONS"]

TRANSFORMATIONS = ("r", "b")


def _check_attribute(y, n, name="y"):
    """
    Validate an attribute vector against ``n`` regions and return it as a
    flat float array.
    """
    y = numpy.asarray(y, dtype=float).flatten()
    if y.shape[0] != n:
        raise InputError(f"{name} has {y.shape[0]} values but there are {n} regions")
    if not numpy.isfinite(y).all():
        raise InputError(
            f"{name} has missing or non-finite values at positions "
            f"{numpy.flatnonzero(~numpy.isfinite(y)).tolist()}"
        )
    return y


class Weights:
    """
    Spatial weights built from a contiguity structure.

    Parameters
    ----------
    neighbors      : Neighbors
                     symmetric contiguity structure
    transformation : {'r', 'b'}
                     'r' (default) row-standardizes, so each region's weights
                     sum to one; 'b' keeps binary weights.

    Attributes
    ----------
    n                : int
                       number of regions
    sparse           : scipy.sparse.csr_matrix
                       (n, n) weights with a zero diagonal
    cardinalities    : array
                       number of neighbors per region
    islands          : array
                       positions of regions without neighbors. Their rows are
                       all zero, so they do not sum to one even under 'r'.
    row_sums         : array
                       sum of each row of ``sparse``
    s0               : float
                       sum of all weights
    s1               : float
                       1/2 sum_ij (w_ij + w_ji)^2
    s2               : float
                       sum_i (rowsum_i + colsum_i)^2
    squared_row_sums : float
                       sum_i rowsum_i^2

    Notes
    -----
    A ``Weights`` is meant to be built once per region set and shared
    read-only by every statistic computed on that set.
    """

    def __init__(self, neighbors, transformation="r"):
        transformation = str(transformation).lower()
        if transformation not in TRANSFORMATIONS:
            raise ValueError(
                f"transformation must be one of {TRANSFORMATIONS},"
                f" received '{transformation}'"
            )
        self.neighbors = neighbors
        self.transformation = transformation
        self.n = n = neighbors.n
        self.cardinalities = neighbors.cardinalities
        self.islands = numpy.asarray(neighbors.islands, dtype=int)

        rows = numpy.repeat(numpy.arange(n), self.cardinalities)
        cols = numpy.fromiter(
            chain.from_iterable(neighbors.neighbors), dtype=int, count=len(rows)
        )
        if transformation == "r":
            data = 1.0 / self.cardinalities[rows]
        else:
            data = numpy.ones(len(rows))
        self.sparse = sparse.csr_matrix((data, (rows, cols)), shape=(n, n))

        self.row_sums = numpy.asarray(self.sparse.sum(axis=1)).flatten()
        col_sums = numpy.asarray(self.sparse.sum(axis=0)).flatten()
        both = self.sparse + self.sparse.T
        self.s0 = float(self.sparse.sum())
        self.s1 = float(both.multiply(both).sum() / 2.0)
        self.s2 = float(((self.row_sums + col_sums) ** 2).sum())
        self.squared_row_sums = float((self.row_sums**2).sum())

    def __repr__(self):
        return (
            f"Weights(n={self.n}, transformation='{self.transformation}',"
            f" islands={len(self.islands)})"
        )

    @property
    def ids(self):
        return self.neighbors.ids

    @property
    def has_islands(self):
        return self.neighbors.has_islands

    @cached_property
    def eigenvalues(self):
        """
        Eigenvalues of the weights matrix.

        Row-standardized weights are not symmetric, so a general eigensolver
        is used. The result is computed once and reused.
        """
        return linalg.eigvals(self.sparse.toarray())

    def lag(self, y):
        """
        Weighted sum of neighboring values, which is the neighborhood average
        under row standardization. Islands get a lag of 0.
        """
        return self.sparse @ numpy.asarray(y, dtype=float)

    def subset(self, keep):
        """
        Weights restricted to a subset of regions.

        Parameters
        ----------
        keep : array
               boolean mask over regions, or positions to keep

        Returns
        -------
        Weights
            rebuilt with the same transformation. Links to dropped regions
            are removed before the rows are standardized again.
        """
        keep = numpy.asarray(keep)
        positions = numpy.flatnonzero(keep) if keep.dtype == bool else keep
        remap = {int(old): new for new, old in enumerate(positions)}
        rows = [
            [remap[j] for j in self.neighbors[old] if j in remap] for old in remap
        ]
        ids = [self.neighbors.ids[old] for old in remap]
        return Weights(Neighbors(rows, ids=ids), transformation=self.transformation)

    def to_libpysal(self):
        """
        Export to a libpysal ``W`` with the same transformation.
        """
        w = self.neighbors.to_libpysal()
        w.transform = self.transformation
        return w


def build_weights(neighbors, transformation="r"):
    """
    Build spatial weights from a :class:`Neighbors` structure.

    See :class:`Weights`.
    """
    return Weights(neighbors, transformation=transformation)


def spatial_lag(w, y):
    """
    Spatial lag of an attribute vector.

    Parameters
    ----------
    w : Weights
        spatial weights aligned with ``y``
    y : array
        one value per region

    Returns
    -------
    array
        ``sum_j w_ij * y_j`` for every region. With row-standardized weights
        this is the mean over neighbors. Islands have no neighbors and get a
        lag of exactly 0, which is a convention and not an observed average.
    """
    y = _check_attribute(y, w.n)
    return w.lag(y)
