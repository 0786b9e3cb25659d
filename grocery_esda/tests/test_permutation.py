import numpy as np
import pytest
import shapely

from ..contiguity import build_neighbors
from ..exceptions import DegenerateInputError
from ..permutation import PermutationResult, _permuted_ids, permutation_test
from ..weights import build_weights

SEED = 12345


def grid(nrows, ncols):
    return [
        shapely.box(c, r, c + 1, r + 1) for r in range(nrows) for c in range(ncols)
    ]


class TestPermutationTest:
    def setup_method(self):
        self.w = build_weights(build_neighbors(grid(4, 4), rule="rook"))
        self.y = np.array([10, 10, 0, 0] * 4, dtype=float)
        rng = np.random.default_rng(SEED)
        self.noise = rng.normal(size=16)

    def test_reproducible(self):
        a = permutation_test(self.w, self.noise, permutations=199, seed=SEED)
        b = permutation_test(self.w, self.noise, permutations=199, seed=SEED)
        np.testing.assert_array_equal(a.simulations, b.simulations)
        assert a.p_sim == b.p_sim

    def test_seed_matters(self):
        a = permutation_test(self.w, self.noise, permutations=199, seed=SEED)
        b = permutation_test(self.w, self.noise, permutations=199, seed=SEED + 1)
        assert not np.array_equal(a.simulations, b.simulations)
        assert a.observed == b.observed

    def test_independent_of_n_jobs(self):
        serial = permutation_test(self.w, self.noise, permutations=600, seed=SEED)
        parallel = permutation_test(
            self.w, self.noise, permutations=600, seed=SEED, n_jobs=2
        )
        np.testing.assert_allclose(parallel.simulations, serial.simulations)

    def test_p_bounds(self):
        for alternative in ("greater", "lesser", "two-sided", "directed", "folded"):
            result = permutation_test(
                self.w, self.noise, permutations=99, seed=SEED, alternative=alternative
            )
            assert 1 / 100 <= result.p_sim <= 1

    def test_clustered(self):
        result = permutation_test(self.w, self.y, permutations=99, seed=SEED)
        assert result.observed > 0
        assert result.p_sim < 0.5
        assert result.rank > 90
        assert result.z_sim > 0

    def test_summary_moments(self):
        result = permutation_test(self.w, self.noise, permutations=99, seed=SEED)
        np.testing.assert_allclose(result.EI_sim, result.simulations.mean())
        np.testing.assert_allclose(result.VI_sim, result.simulations.var())
        assert result.permutations == 99
        assert result.seed == SEED
        assert not result.simulations.flags.writeable

    def test_full_reshuffles(self):
        ids = _permuted_ids(16, 50, SEED)
        assert ids.shape == (50, 16)
        expected = np.tile(np.arange(16), (50, 1))
        np.testing.assert_array_equal(np.sort(ids, axis=1), expected)

    def test_weights_untouched(self):
        before = self.w.sparse.toarray().copy()
        permutation_test(self.w, self.noise, permutations=19, seed=SEED)
        np.testing.assert_array_equal(self.w.sparse.toarray(), before)

    @pytest.mark.parametrize("permutations", [0, -5, None])
    def test_invalid_permutations(self, permutations):
        with pytest.raises(ValueError):
            permutation_test(self.w, self.noise, permutations=permutations)

    def test_constant(self):
        with pytest.raises(DegenerateInputError):
            permutation_test(self.w, np.ones(16), permutations=9)

    def test_bad_alternative(self):
        with pytest.raises(ValueError, match="alternative"):
            permutation_test(self.w, self.noise, permutations=9, alternative="up")


class TestIslands:
    def setup_method(self):
        with pytest.warns(UserWarning):
            nb = build_neighbors(grid(3, 3) + [shapely.box(9, 9, 10, 10)])
        self.w = build_weights(nb)
        self.y = np.array([3.0, 1, 4, 1, 5, 9, 2, 6, 5, 0])

    def test_exclude_ignores_island_value(self):
        low = permutation_test(
            self.w, self.y, permutations=99, seed=SEED, islands="exclude"
        )
        y = self.y.copy()
        y[9] = 1000.0
        high = permutation_test(
            self.w, y, permutations=99, seed=SEED, islands="exclude"
        )
        np.testing.assert_array_equal(low.simulations, high.simulations)
        assert low.observed == high.observed

    def test_exclude_matches_mainland(self):
        excluded = permutation_test(
            self.w, self.y, permutations=99, seed=SEED, islands="exclude"
        )
        mainland = build_weights(build_neighbors(grid(3, 3)))
        reference = permutation_test(mainland, self.y[:9], permutations=99, seed=SEED)
        np.testing.assert_allclose(excluded.simulations, reference.simulations)

    def test_zero_keeps_island(self):
        kept = permutation_test(self.w, self.y, permutations=99, seed=SEED)
        excluded = permutation_test(
            self.w, self.y, permutations=99, seed=SEED, islands="exclude"
        )
        assert kept.observed != pytest.approx(excluded.observed)


class TestPermutationResult:
    def test_identical_simulations(self):
        with pytest.warns(UserWarning, match="identical"):
            result = PermutationResult(0.5, np.zeros(9))
        assert np.isnan(result.z_sim)
        assert result.p_sim == pytest.approx(0.1)
        assert result.rank == 10
