"""Tests for sample permutations and seeded random streams."""

from __future__ import annotations

import math

import numpy as np
import pytest

from dmtest.permutations import (
    _unrank_permutation,
    draw_permutation,
    generate_unique_permutations,
    spawn_generators,
)


class TestUnrank:
    def test_identity_has_rank_zero(self):
        assert _unrank_permutation(0, 4) == [0, 1, 2, 3]

    def test_last_rank_is_reversal(self):
        assert _unrank_permutation(math.factorial(4) - 1, 4) == [3, 2, 1, 0]

    def test_all_ranks_distinct(self):
        perms = {tuple(_unrank_permutation(k, 4)) for k in range(24)}
        assert len(perms) == 24


class TestDrawPermutation:
    def test_never_identity(self):
        rng = np.random.default_rng(0)
        for _ in range(200):
            perm = draw_permutation(rng, 3)
            assert sorted(perm) == [0, 1, 2]
            assert not np.array_equal(perm, np.arange(3))

    def test_reproducible(self):
        a = draw_permutation(np.random.default_rng(7), 10)
        b = draw_permutation(np.random.default_rng(7), 10)
        np.testing.assert_array_equal(a, b)

    def test_single_sample(self):
        np.testing.assert_array_equal(draw_permutation(np.random.default_rng(0), 1), [0])


class TestGenerateUniquePermutations:
    def test_small_n_distinct_without_identity(self):
        perms = generate_unique_permutations(np.random.default_rng(1), 5, 50)
        assert perms.shape == (50, 5)
        rows = {tuple(r) for r in perms}
        assert len(rows) == 50
        assert tuple(range(5)) not in rows

    def test_small_n_caps_with_warning(self):
        with pytest.warns(UserWarning, match="distinct non-identity permutations"):
            perms = generate_unique_permutations(np.random.default_rng(1), 3, 10)
        assert perms.shape == (5, 3)
        assert len({tuple(r) for r in perms}) == 5

    def test_large_n_distinct_without_identity(self):
        perms = generate_unique_permutations(np.random.default_rng(2), 15, 200)
        assert perms.shape == (200, 15)
        rows = {tuple(r) for r in perms}
        assert len(rows) == 200
        assert tuple(range(15)) not in rows
        for row in perms:
            assert sorted(row) == list(range(15))

    def test_reproducible(self):
        a = generate_unique_permutations(np.random.default_rng(3), 8, 20)
        b = generate_unique_permutations(np.random.default_rng(3), 8, 20)
        np.testing.assert_array_equal(a, b)

    def test_too_few_samples(self):
        assert generate_unique_permutations(np.random.default_rng(0), 1, 5).shape == (0, 1)


class TestSpawnGenerators:
    def test_reproducible(self):
        a = [g.integers(1_000_000) for g in spawn_generators(11, 4)]
        b = [g.integers(1_000_000) for g in spawn_generators(11, 4)]
        assert a == b

    def test_streams_differ(self):
        draws = [g.integers(1_000_000_000) for g in spawn_generators(11, 4)]
        assert len(set(draws)) == 4

    def test_accepts_seed_sequence(self):
        gens = spawn_generators(np.random.SeedSequence(5), 3)
        assert len(gens) == 3
