"""Tests for seed resolution and per-unit generators."""

import numpy as np
import pytest

from bayes_margins.seeding import SeedPlan, fresh_seed, resolve_seeds, unit_rng


class TestResolveSeeds:
    def test_scalar_applies_to_every_row(self):
        plan = resolve_seeds(7, 4)
        assert isinstance(plan, SeedPlan)
        assert plan.row_seeds.tolist() == [7, 7, 7, 7]
        assert plan.base_seed == 7
        assert not plan.per_row
        assert plan.record() == 7

    def test_numpy_integer_scalar(self):
        plan = resolve_seeds(np.int64(3), 2)
        assert plan.base_seed == 3

    def test_vector_one_per_row(self):
        plan = resolve_seeds([5, 6, 7], 3)
        assert plan.per_row
        assert plan.base_seed is None
        assert plan.record() == [5, 6, 7]

    def test_whole_float_vector_accepted(self):
        plan = resolve_seeds(np.array([1.0, 2.0]), 2)
        assert plan.row_seeds.tolist() == [1, 2]

    def test_none_draws_fresh_entropy_and_records_it(self):
        plan = resolve_seeds(None, 3)
        assert isinstance(plan.base_seed, int)
        assert plan.base_seed >= 0
        assert plan.record() == plan.base_seed
        assert len(set(plan.row_seeds.tolist())) == 1

    def test_fresh_seeds_differ(self):
        assert fresh_seed() != fresh_seed()

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError, match="3 entries but the prediction data has 4 rows"):
            resolve_seeds([1, 2, 3], 4)

    def test_negative_scalar_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            resolve_seeds(-1, 2)

    def test_negative_entry_names_row(self):
        with pytest.raises(ValueError, match="row 1 must be non-negative"):
            resolve_seeds([0, -5], 2)

    def test_fractional_entry_names_row(self):
        with pytest.raises(ValueError, match="row 2 must be an integer"):
            resolve_seeds([1, 2, 2.5], 3)

    def test_bool_rejected(self):
        with pytest.raises(ValueError, match="integer"):
            resolve_seeds(True, 2)


class TestUnitRng:
    def test_same_coordinates_same_stream(self):
        a = unit_rng(1, 0, 2).standard_normal(5)
        b = unit_rng(1, 0, 2).standard_normal(5)
        np.testing.assert_array_equal(a, b)

    @pytest.mark.parametrize("coords", [(2, 0, 2), (1, 1, 2), (1, 0, 3)])
    def test_any_coordinate_changes_stream(self, coords):
        a = unit_rng(1, 0, 2).standard_normal(5)
        b = unit_rng(*coords).standard_normal(5)
        assert not np.array_equal(a, b)

    def test_large_entropy_seed(self):
        seed = fresh_seed()
        a = unit_rng(seed, 0, 0).random()
        assert a == unit_rng(seed, 0, 0).random()

    def test_full_width_group_key(self):
        key = np.uint64(2**64 - 1)
        a = unit_rng(5, 1, key).random()
        assert a == unit_rng(5, 1, key).random()
