"""Tests for bootstrap resampling of row means."""

import numpy as np
import pytest

from bayes_margins.bootstrap import posterior_boot_means, row_boot_means


class TestRowBootMeans:
    def test_constant_input_returns_constant_exactly(self):
        out = row_boot_means(np.full(37, 0.1), n_resamples=50, random_state=0)
        assert out.shape == (50,)
        assert np.all(out == 0.1)

    def test_constant_matrix_columns(self):
        x = np.tile([0.1, 0.7, 3.3], (20, 1))
        out = row_boot_means(x, n_resamples=10, random_state=1)
        assert out.shape == (10, 3)
        np.testing.assert_array_equal(out, np.tile([0.1, 0.7, 3.3], (10, 1)))

    def test_reproducible(self):
        x = np.arange(10.0)
        a = row_boot_means(x, n_resamples=25, random_state=7)
        b = row_boot_means(x, n_resamples=25, random_state=7)
        np.testing.assert_array_equal(a, b)

    def test_means_within_range_and_centered(self):
        x = np.random.default_rng(0).standard_normal(200)
        out = row_boot_means(x, n_resamples=2000, random_state=3)
        assert out.min() >= x.min()
        assert out.max() <= x.max()
        assert out.mean() == pytest.approx(x.mean(), abs=0.01)
        # Standard error of the mean.
        assert out.std() == pytest.approx(x.std() / np.sqrt(200), rel=0.1)

    def test_single_row(self):
        out = row_boot_means(np.array([2.5]), n_resamples=4, random_state=0)
        np.testing.assert_array_equal(out, [2.5, 2.5, 2.5, 2.5])

    @pytest.mark.parametrize("n", [0, -1])
    def test_invalid_resamples(self, n):
        with pytest.raises(ValueError, match="at least 1"):
            row_boot_means(np.ones(3), n_resamples=n)

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="zero rows"):
            row_boot_means(np.array([]), n_resamples=3)

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError, match="non-finite"):
            row_boot_means(np.array([1.0, np.nan]))

    def test_three_dimensional_rejected(self):
        with pytest.raises(ValueError, match="1-D or 2-D"):
            row_boot_means(np.ones((2, 2, 2)))


class TestPosteriorBootMeans:
    def test_constant_rows_return_constant_exactly(self):
        rows = np.tile([[0.1], [0.2], [0.3]], (1, 9))  # (3 draws, 9 rows)
        out = posterior_boot_means(rows, random_state=0)
        np.testing.assert_array_equal(out, [0.1, 0.2, 0.3])

    def test_one_mean_per_draw(self):
        rows = np.random.default_rng(1).random((40, 12))
        out = posterior_boot_means(rows, random_state=2)
        assert out.shape == (40,)
        assert np.all(out >= rows.min(axis=1))
        assert np.all(out <= rows.max(axis=1))

    def test_draws_resampled_independently(self):
        # Same values in every draw: independent resamples give
        # different means.
        rows = np.tile(np.arange(10.0), (30, 1))
        out = posterior_boot_means(rows, random_state=4)
        assert np.unique(out).size > 1

    def test_weights_zero_out_rows(self):
        rows = np.tile([1.0, 5.0, 1.0, 5.0], (50, 1))
        w = np.array([1.0, 0.0, 1.0, 0.0])
        out = posterior_boot_means(rows, random_state=5, weights=w)
        np.testing.assert_array_equal(out, np.ones(50))

    def test_zero_weight_value_never_drawn(self):
        # With one of two rows weighted, half of all plain resamples
        # would consist of the zero-weight row alone.
        rows = np.tile([1.0, 100.0], (2000, 1))
        out = posterior_boot_means(rows, random_state=0, weights=np.array([1.0, 0.0]))
        assert not np.any(out == 100.0)
        np.testing.assert_array_equal(out, np.ones(2000))

    def test_weighted_mean_of_positive_rows(self):
        rows = np.array([[2.0, 4.0, 7.0]])
        w = np.array([3.0, 1.0, 0.0])
        out = posterior_boot_means(rows, random_state=11, weights=w)
        # Any resample of {2, 4} with weights {3, 1} lies in [2, 4].
        assert 2.0 <= out[0] <= 4.0

    def test_all_zero_weights_rejected(self):
        with pytest.raises(ValueError, match="at least one positive"):
            posterior_boot_means(np.ones((2, 3)), weights=np.zeros(3))

    def test_negative_weights_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            posterior_boot_means(np.ones((2, 3)), weights=np.array([1.0, -1.0, 1.0]))

    def test_weight_shape_checked(self):
        with pytest.raises(ValueError, match=r"shape \(3,\)"):
            posterior_boot_means(np.ones((2, 3)), weights=np.ones(2))

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="at least one row"):
            posterior_boot_means(np.ones((2, 0)))
