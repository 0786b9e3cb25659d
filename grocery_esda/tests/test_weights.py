import libpysal
import numpy as np
import pytest
import shapely
from libpysal.common import ATOL, RTOL

from ..contiguity import Neighbors, build_neighbors
from ..exceptions import InputError
from ..weights import Weights, build_weights, spatial_lag


def grid(nrows, ncols):
    return [
        shapely.box(c, r, c + 1, r + 1) for r in range(nrows) for c in range(ncols)
    ]


class TestWeights:
    def setup_method(self):
        self.nb = build_neighbors(grid(3, 3), rule="rook")
        with pytest.warns(UserWarning):
            self.nb_island = build_neighbors(grid(2, 2) + [shapely.box(9, 9, 10, 10)])

    def test_row_standardized(self):
        w = build_weights(self.nb)
        np.testing.assert_allclose(w.row_sums, np.ones(9))
        assert w.s0 == pytest.approx(9.0)
        dense = w.sparse.toarray()
        np.testing.assert_array_equal(np.diag(dense), np.zeros(9))
        assert dense[4, 1] == pytest.approx(0.25)
        assert dense[0, 1] == pytest.approx(0.5)

    def test_binary(self):
        w = build_weights(self.nb, transformation="b")
        np.testing.assert_array_equal(w.row_sums, self.nb.cardinalities)
        assert w.s0 == 24

    def test_island_rows(self):
        w = build_weights(self.nb_island)
        np.testing.assert_allclose(w.row_sums, [1, 1, 1, 1, 0])
        assert w.has_islands
        np.testing.assert_array_equal(w.islands, [4])

    @pytest.mark.parametrize("transformation", ["r", "b"])
    def test_moments_match_libpysal(self, transformation):
        w = build_weights(self.nb, transformation=transformation)
        reference = libpysal.weights.lat2W(3, 3)
        reference.transform = transformation
        np.testing.assert_allclose(w.s0, reference.s0, atol=ATOL, rtol=RTOL)
        np.testing.assert_allclose(w.s1, reference.s1, atol=ATOL, rtol=RTOL)
        np.testing.assert_allclose(w.s2, reference.s2, atol=ATOL, rtol=RTOL)

    def test_eigenvalues(self):
        w = build_weights(self.nb)
        eigs = w.eigenvalues
        assert len(eigs) == 9
        assert eigs.real.max() == pytest.approx(1.0)
        assert eigs.real.min() >= -1.0 - 1e-10
        assert w.eigenvalues is eigs

    def test_subset(self):
        w = build_weights(self.nb_island)
        sub = w.subset(np.array([True, True, True, True, False]))
        assert sub.n == 4
        assert not sub.has_islands
        assert sub.ids == (0, 1, 2, 3)
        np.testing.assert_allclose(sub.row_sums, np.ones(4))

    def test_to_libpysal(self):
        w = build_weights(self.nb).to_libpysal()
        assert w.transform == "R"
        expected = Weights(self.nb).sparse.toarray()
        np.testing.assert_allclose(w.sparse.toarray(), expected)

    def test_bad_transformation(self):
        with pytest.raises(ValueError):
            Weights(self.nb, transformation="v")


class TestSpatialLag:
    def setup_method(self):
        self.w = build_weights(build_neighbors(grid(3, 3), rule="rook"))

    def test_neighborhood_average(self):
        y = np.arange(1.0, 10.0)
        lag = spatial_lag(self.w, y)
        np.testing.assert_allclose(lag[4], (2 + 4 + 6 + 8) / 4)
        np.testing.assert_allclose(lag[0], (2 + 4) / 2)

    def test_constant(self):
        with pytest.warns(UserWarning):
            nb = build_neighbors(grid(3, 3) + [shapely.box(9, 9, 10, 10)])
        lag = spatial_lag(build_weights(nb), np.full(10, 3.5))
        np.testing.assert_allclose(lag[:9], np.full(9, 3.5))
        assert lag[9] == 0.0

    def test_binary_sum(self):
        w = build_weights(Neighbors([[1, 2], [0], [0]]), transformation="b")
        np.testing.assert_allclose(spatial_lag(w, [1.0, 2.0, 3.0]), [5.0, 1.0, 1.0])

    def test_length_mismatch(self):
        with pytest.raises(InputError, match="regions"):
            spatial_lag(self.w, np.ones(8))

    def test_missing_values(self):
        y = np.ones(9)
        y[3] = np.nan
        with pytest.raises(InputError, match="non-finite"):
            spatial_lag(self.w, y)
