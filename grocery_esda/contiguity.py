"""
Polygon contiguity

"""

import warnings

import geopandas
import numpy
import shapely
from libpysal.weights import W
from packaging.version import Version

from .exceptions import InputError

__all__ = ["Neighbors", "build_neighbors", "RULES"]

RULES = ("queen", "rook")

_POLYGONAL = (
    int(shapely.GeometryType.POLYGON),
    int(shapely.GeometryType.MULTIPOLYGON),
)


# -------------------- UTILITIES --------------------#
def _cast(collection):
    """
    Cast a collection of regions to a shapely geometry array.

    Regions may be shapely (multi)polygons, a geopandas GeoSeries or
    GeoDataFrame, or coordinate rings: either a single shell, or a shell
    followed by its holes.
    """
    if Version(shapely.__version__) < Version("2"):
        raise ImportError("Shapely 2.0 or newer is required.")

    if isinstance(collection, (geopandas.GeoSeries, geopandas.GeoDataFrame)):
        geoms = numpy.asarray(collection.geometry.array)
    elif isinstance(collection, shapely.Geometry):
        geoms = numpy.array([collection])
    else:
        geoms = numpy.empty(len(collection), dtype=object)
        for i, region in enumerate(collection):
            if region is None or isinstance(region, shapely.Geometry):
                geoms[i] = region
            else:
                geoms[i] = _polygon_from_rings(region)

    kinds = shapely.get_type_id(geoms)
    bad = ~numpy.isin(kinds, _POLYGONAL)
    if bad.any():
        raise InputError(
            "only Polygon and MultiPolygon regions are supported, but regions"
            f" at positions {numpy.flatnonzero(bad).tolist()} are not polygonal"
        )
    empty = shapely.is_empty(geoms)
    if empty.any():
        raise InputError(
            f"regions at positions {numpy.flatnonzero(empty).tolist()} are empty"
        )
    return geoms


def _polygon_from_rings(rings):
    try:
        if numpy.ndim(rings[0]) == 1:
            return shapely.Polygon(rings)
        return shapely.Polygon(rings[0], rings[1:])
    except (
        ValueError,
        TypeError,
        IndexError,
        shapely.errors.GEOSException,
    ) as exception:
        raise InputError(
            f"could not build a polygon from coordinate rings: {exception}"
        ) from exception


def _resolve_ids(collection, ids, n):
    if ids is None:
        if isinstance(collection, (geopandas.GeoSeries, geopandas.GeoDataFrame)):
            ids = collection.index.tolist()
        else:
            ids = range(n)
    ids = tuple(ids)
    if len(ids) != n:
        raise InputError(f"{len(ids)} ids were given for {n} regions")
    return ids


class Neighbors:
    """
    Symmetric contiguity structure over an ordered set of regions.

    Parameters
    ----------
    neighbors   : sequence of sequences of int
                  for every region position ``i``, the positions of the
                  regions sharing a boundary with ``i``
    ids         : sequence
                  region identifiers aligned with positions. Defaults to the
                  positions themselves.

    Attributes
    ----------
    n             : int
                    number of regions
    ids           : tuple
                    region identifiers in positional order
    neighbors     : tuple of tuples
                    sorted neighbor positions for every region
    cardinalities : array
                    number of neighbors of every region
    islands       : tuple
                    positions of regions without neighbors

    Notes
    -----
    Regions without neighbors ("islands") are a valid state. They are
    reported through ``islands`` rather than rejected.

    Examples
    --------
    >>> nb = Neighbors([[1], [0, 2], [1], []], ids=["a", "b", "c", "d"])
    >>> nb[1]
    (0, 2)
    >>> nb.island_ids
    ('d',)
    """

    def __init__(self, neighbors, ids=None):
        neighbors = tuple(tuple(sorted({int(j) for j in row})) for row in neighbors)
        n = len(neighbors)
        ids = tuple(range(n)) if ids is None else tuple(ids)
        if len(ids) != n:
            raise InputError(f"{len(ids)} ids were given for {n} regions")
        if len(set(ids)) != n:
            raise InputError("region ids must be unique")
        for i, row in enumerate(neighbors):
            for j in row:
                if not 0 <= j < n:
                    raise InputError(f"region {i} has out of range neighbor {j}")
                if j == i:
                    raise InputError(f"region {i} is listed as its own neighbor")
        self.n = n
        self.ids = ids
        self.neighbors = neighbors
        if not self.is_symmetric():
            raise InputError("neighbor relation is not symmetric")
        self.cardinalities = numpy.array([len(row) for row in neighbors], dtype=int)
        self.cardinalities.flags.writeable = False
        self.islands = tuple(i for i, row in enumerate(neighbors) if not row)

    def __getitem__(self, i):
        return self.neighbors[i]

    def __len__(self):
        return self.n

    def __iter__(self):
        return iter(self.neighbors)

    def __eq__(self, other):
        if not isinstance(other, Neighbors):
            return NotImplemented
        return self.ids == other.ids and self.neighbors == other.neighbors

    def __hash__(self):
        return hash((self.ids, self.neighbors))

    def __repr__(self):
        return (
            f"Neighbors(n={self.n}, pairs={self.n_pairs},"
            f" islands={len(self.islands)})"
        )

    @property
    def has_islands(self):
        return bool(self.islands)

    @property
    def island_ids(self):
        return tuple(self.ids[i] for i in self.islands)

    @property
    def n_pairs(self):
        """Number of ordered neighbor pairs (twice the number of joins)."""
        return int(self.cardinalities.sum())

    def is_symmetric(self):
        lookup = [set(row) for row in self.neighbors]
        return all(i in lookup[j] for i, row in enumerate(self.neighbors) for j in row)

    @classmethod
    def from_libpysal(cls, w):
        """
        Build neighbors from a libpysal ``W``, keeping its ``id_order``.
        """
        order = list(w.id_order)
        position = {idx: i for i, idx in enumerate(order)}
        rows = [[position[j] for j in w.neighbors[idx]] for idx in order]
        return cls(rows, ids=order)

    def to_libpysal(self):
        """
        Export to a binary libpysal ``W`` keyed by region id.
        """
        neighbors = {
            self.ids[i]: [self.ids[j] for j in row]
            for i, row in enumerate(self.neighbors)
        }
        return W(neighbors, id_order=list(self.ids), silence_warnings=True)


def build_neighbors(regions, ids=None, rule="queen"):
    """
    Determine which regions share a boundary.

    Parameters
    ----------
    regions : GeoSeries | GeoDataFrame | sequence
              polygonal regions in their fixed order. Plain sequences may hold
              shapely geometries or coordinate rings.
    ids     : sequence
              identifiers aligned with ``regions``. Defaults to the index of a
              geopandas input, or to positions.
    rule    : {'queen', 'rook'}
              'queen' treats any shared boundary point as contiguity, 'rook'
              requires a shared edge of positive length.

    Returns
    -------
    Neighbors

    Notes
    -----
    Candidate pairs are the boundaries whose envelopes overlap in an STRtree;
    each candidate is then tested for an actual boundary intersection. The
    pairwise tests are not guaranteed to agree in both directions under
    floating point, so every accepted pair is mirrored.
    """
    if rule not in RULES:
        raise ValueError(f"rule must be one of {RULES}, received '{rule}'")
    geoms = _cast(regions)
    ids = _resolve_ids(regions, ids, len(geoms))

    boundaries = shapely.boundary(geoms)
    tree = shapely.STRtree(boundaries)
    left, right = tree.query(boundaries, predicate="intersects")
    distinct = left != right
    left, right = left[distinct], right[distinct]
    if rule == "rook" and len(left):
        shared = shapely.intersection(boundaries[left], boundaries[right])
        edge = shapely.length(shared) > 0
        left, right = left[edge], right[edge]

    adjacency = [set() for _ in range(len(geoms))]
    for i, j in zip(left.tolist(), right.tolist()):
        adjacency[i].add(j)
        adjacency[j].add(i)

    nb = Neighbors(adjacency, ids=ids)
    if nb.has_islands:
        warnings.warn(
            f"The contiguity graph is not fully connected: {len(nb.islands)}"
            f" region(s) have no neighbors, with ids: {list(nb.island_ids)}",
            stacklevel=2,
        )
    return nb
