"""Tests for Polars DataFrame input compatibility."""

import numpy as np
import pandas as pd
import pytest

from bayes_margins._compat import _ensure_pandas_df

# Import polars; skip all tests in this module if not installed.
pl = pytest.importorskip("polars")


class TestEnsurePandasDf:
    """Tests for the _ensure_pandas_df converter."""

    def test_pandas_passthrough(self):
        df = pd.DataFrame({"a": [1, 2, 3]})
        result = _ensure_pandas_df(df)
        assert result is df  # exact same object, no copy

    def test_polars_converted(self):
        pl_df = pl.DataFrame({"a": [1, 2, 3]})
        result = _ensure_pandas_df(pl_df)
        assert isinstance(result, pd.DataFrame)
        assert list(result.columns) == ["a"]
        assert result["a"].tolist() == [1, 2, 3]

    def test_polars_lazyframe_collected_and_converted(self):
        lf = pl.DataFrame({"a": [1, 2, 3]}).lazy()
        result = _ensure_pandas_df(lf)
        assert isinstance(result, pd.DataFrame)
        assert result["a"].tolist() == [1, 2, 3]

    def test_rejects_invalid_type(self):
        with pytest.raises(TypeError, match="must be a pandas DataFrame"):
            _ensure_pandas_df([1, 2, 3])

    def test_error_includes_name(self):
        with pytest.raises(TypeError, match="'draws'"):
            _ensure_pandas_df({"a": 1}, name="draws")


class TestPolarsEndToEnd:
    """Verify that public API functions accept Polars DataFrames."""

    @staticmethod
    def _make_inputs(n=30, n_draws=8, seed=42):
        rng = np.random.default_rng(seed)
        data = {
            "x": rng.standard_normal(n),
            "id": np.repeat(np.arange(n // 3), 3),
        }
        draws = {
            "b_Intercept": rng.normal(-0.5, 0.1, n_draws),
            "b_x": rng.normal(1.0, 0.1, n_draws),
            "sd_id__Intercept": rng.uniform(0.5, 1.0, n_draws),
        }
        return data, draws

    def test_prediction_matches_pandas(self):
        from bayes_margins import RandomEffectBlock, prediction

        data, draws = self._make_inputs()
        block_pd = RandomEffectBlock.from_draws(pd.DataFrame(draws), "id")
        block_pl = RandomEffectBlock.from_draws(pl.DataFrame(draws), "id")

        res_pd = prediction(
            pd.DataFrame(data), pd.DataFrame(draws),
            random_effects=block_pd, family="bernoulli", k=25, seed=7,
        )
        res_pl = prediction(
            pl.DataFrame(data), pl.DataFrame(draws),
            random_effects=block_pl, family="bernoulli", k=25, seed=7,
        )
        np.testing.assert_array_equal(res_pd.posterior, res_pl.posterior)

    def test_lazyframe_data_accepted(self):
        from bayes_margins import prediction

        data, draws = self._make_inputs()
        res = prediction(
            pl.DataFrame(data).lazy(), pd.DataFrame(draws),
            family="bernoulli", effects="fixedonly",
        )
        assert res.posterior.shape == (8, 1)
