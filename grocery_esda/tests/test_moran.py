import libpysal
import numpy as np
import pytest
import shapely
from libpysal.common import ATOL, RTOL

from .. import moran
from ..contiguity import Neighbors, build_neighbors
from ..exceptions import DegenerateInputError, InputError, StructuralError
from ..weights import Weights, build_weights

SEED = 12345


def grid(nrows, ncols):
    return [
        shapely.box(c, r, c + 1, r + 1) for r in range(nrows) for c in range(ncols)
    ]


class TestMoran:
    def setup_method(self):
        gal = libpysal.io.open(libpysal.examples.get_path("stl.gal")).read()
        self.w = Weights(Neighbors.from_libpysal(gal))
        f = libpysal.io.open(libpysal.examples.get_path("stl_hom.txt"))
        self.y = np.array(f.by_col["HR8893"])

    def test_Moran(self):
        mi = moran.Moran(self.y, self.w, permutations=0)
        np.testing.assert_allclose(mi.I, 0.24365582621771659, rtol=RTOL, atol=ATOL)
        np.testing.assert_allclose(mi.EI, -1.0 / 77, rtol=RTOL, atol=ATOL)
        assert not hasattr(mi, "p_sim")

    def test_directed_p_norm(self):
        mi = moran.Moran(self.y, self.w, permutations=0, alternative="directed")
        np.testing.assert_allclose(
            mi.p_norm, 0.00013573931385468807, rtol=RTOL, atol=ATOL
        )

    def test_two_sided_doubles_directed(self):
        two = moran.Moran(self.y, self.w, permutations=0)
        one = moran.Moran(self.y, self.w, permutations=0, alternative="directed")
        np.testing.assert_allclose(two.p_rand, 2 * one.p_rand)
        np.testing.assert_allclose(two.p_norm, 2 * one.p_norm)

    def test_sids(self):
        w = libpysal.io.open(libpysal.examples.get_path("sids2.gal")).read()
        f = libpysal.io.open(libpysal.examples.get_path("sids2.dbf"))
        SIDR = np.array(f.by_col("SIDR74"))
        mi = moran.Moran(SIDR, Weights(Neighbors.from_libpysal(w)), permutations=0)
        np.testing.assert_allclose(mi.I, 0.24772519320480135, atol=ATOL, rtol=RTOL)

    def test_variance(self):
        y = np.arange(1, 10)
        w = build_weights(build_neighbors(grid(3, 3), rule="rook"), "b")
        mi = moran.Moran(y, w, permutations=0)
        np.testing.assert_allclose(
            mi.VI_rand, 0.059687500000000004, atol=ATOL, rtol=RTOL
        )
        np.testing.assert_allclose(
            mi.VI_norm, 0.053125000000000006, atol=ATOL, rtol=RTOL
        )

    def test_z_consistent(self):
        mi = moran.Moran(self.y, self.w, permutations=0)
        np.testing.assert_allclose(mi.z_rand, (mi.I - mi.EI) / mi.seI_rand)
        np.testing.assert_allclose(mi.z.std(), 1.0)

    def test_affine_invariance(self):
        base = moran.Moran(self.y, self.w, permutations=0)
        shifted = moran.Moran(3.5 * self.y - 2.0, self.w, permutations=0)
        np.testing.assert_allclose(shifted.I, base.I)
        np.testing.assert_allclose(shifted.VI_rand, base.VI_rand)

    def test_permutations(self):
        mi = moran.Moran(self.y, self.w, permutations=99, seed=SEED)
        again = moran.Moran(self.y, self.w, permutations=99, seed=SEED)
        assert mi.sim.shape == (99,)
        np.testing.assert_array_equal(mi.sim, again.sim)
        assert 1 / 100 <= mi.p_sim <= 1
        assert mi.permutation.observed == mi.I

    def test_moran_i(self):
        mi = moran.moran_i(self.w, self.y)
        np.testing.assert_allclose(mi.I, 0.24365582621771659, rtol=RTOL, atol=ATOL)
        assert "Moran(I=" in repr(mi)


class TestSmallGrids:
    def setup_method(self):
        # boxes ordered around the block so that rook contiguity is a 4-cycle
        self.ring = [
            shapely.box(0, 0, 1, 1),
            shapely.box(1, 0, 2, 1),
            shapely.box(1, 1, 2, 2),
            shapely.box(0, 1, 1, 2),
        ]
        self.w = build_weights(build_neighbors(self.ring, rule="rook"))

    def test_ring_structure(self):
        assert self.w.neighbors[0] == (1, 3)
        assert self.w.neighbors[2] == (1, 3)

    def test_halves(self):
        mi = moran.moran_i(self.w, [10, 10, 0, 0])
        assert mi.I > mi.EI
        np.testing.assert_allclose(mi.EI, -1.0 / 3)
        np.testing.assert_allclose(mi.I, 0.0, atol=1e-12)

    def test_checkerboard(self):
        mi = moran.moran_i(self.w, [10, 0, 10, 0])
        np.testing.assert_allclose(mi.I, -1.0)
        assert mi.z_rand < 0

    def test_clustered_grid(self):
        w = build_weights(build_neighbors(grid(4, 4), rule="rook"))
        mi = moran.Moran(
            [10, 10, 0, 0] * 4, w, permutations=99, seed=SEED, alternative="greater"
        )
        assert mi.I > 0
        assert mi.p_sim < 0.5
        assert mi.p_rand < 0.05

    def test_constant(self):
        with pytest.raises(DegenerateInputError):
            moran.moran_i(self.w, [5, 5, 5, 5])

    def test_too_few_regions(self):
        w = build_weights(build_neighbors(self.ring[:3], rule="rook"))
        with pytest.raises(InputError, match="four"):
            moran.moran_i(w, [1, 2, 3])

    def test_all_islands(self):
        w = Weights(Neighbors([[], [], [], [], []]))
        with pytest.raises(StructuralError):
            moran.moran_i(w, [1, 2, 3, 4, 5])

    def test_island_policies(self):
        with pytest.warns(UserWarning):
            nb = build_neighbors(grid(3, 3) + [shapely.box(9, 9, 10, 10)])
        w = build_weights(nb)
        y = np.array([3.0, 1, 4, 1, 5, 9, 2, 6, 5, 100])
        excluded = moran.moran_i(w, y, islands="exclude")
        reference = moran.moran_i(build_weights(build_neighbors(grid(3, 3))), y[:9])
        np.testing.assert_allclose(excluded.I, reference.I)
        assert excluded.n == 9
        kept = moran.moran_i(w, y, islands="zero")
        assert kept.n == 10
        assert kept.I != pytest.approx(excluded.I)

    def test_bad_island_policy(self):
        with pytest.raises(ValueError):
            moran.moran_i(self.w, [1, 2, 3, 4], islands="drop")
