"""Tests for the typed result objects."""

import json

import numpy as np
import pandas as pd
import pytest

from bayes_margins import (
    MarginalCoefResult,
    MarginalEffectResult,
    MarginalPredictionResult,
    RandomEffectBlock,
    marginal_coefficients,
    marginal_effects,
    prediction,
)
from bayes_margins._context import IntegrationContext
from bayes_margins.families import BernoulliFamily


def _make_inputs(n=12, n_draws=5, seed=1):
    rng = np.random.default_rng(seed)
    data = pd.DataFrame(
        {
            "x": rng.standard_normal(n),
            "id": np.repeat(["a", "b", "c"], n // 3),
            "arm": np.tile(["ctl", "trt"], n // 2),
            "site": np.repeat([1, 2], n // 2),
        }
    )
    draws = pd.DataFrame(
        {
            "b_Intercept": rng.normal(0.0, 0.1, n_draws),
            "b_x": rng.normal(0.5, 0.1, n_draws),
            "sd_id__Intercept": rng.uniform(0.5, 1.0, n_draws),
        }
    )
    return data, draws


class TestPredictionResult:
    @pytest.fixture()
    def result(self):
        data, draws = _make_inputs()
        block = RandomEffectBlock.from_draws(draws, "id")
        return prediction(
            data, draws, random_effects=block, family="bernoulli", k=10, seed=3, by="arm"
        )

    def test_type_and_dict_access(self, result):
        assert isinstance(result, MarginalPredictionResult)
        assert result["k"] == 10
        assert result.get("missing", "fallback") == "fallback"
        assert "posterior" in result
        assert 3 not in result
        with pytest.raises(KeyError):
            result["missing"]

    def test_frozen(self, result):
        with pytest.raises(AttributeError):
            result.k = 5

    def test_to_dict_is_json_safe_and_skips_context(self, result):
        d = result.to_dict()
        assert "context" not in d
        assert d["family"] == {"name": "bernoulli", "link": "logit"}
        assert d["seed"] == 3
        assert isinstance(d["posterior"], list)
        json.dumps(d)

    def test_context_attached(self, result):
        assert isinstance(result.context, IntegrationContext)
        assert result.context.n_units == [3]
        assert result.context.n_compact <= result.n_rows

    def test_to_frame_single_by(self, result):
        frame = result.to_frame()
        assert list(frame.columns) == ["ctl", "trt"]
        assert frame.columns.name == "arm"
        assert frame.shape == (5, 2)

    def test_to_frame_multiple_by(self):
        data, draws = _make_inputs()
        res = prediction(data, draws, effects="fixedonly", by=["arm", "site"])
        frame = res.to_frame()
        assert isinstance(frame.columns, pd.MultiIndex)
        assert list(frame.columns.names) == ["arm", "site"]
        assert frame.shape == (5, 4)
        assert res.labels[0] == ("ctl", 1)


class TestEffectResult:
    def test_fields_and_frame(self):
        data, draws = _make_inputs()
        res = marginal_effects(data, draws, variable="x", at=(0.0, 1.0), effects="fixedonly")
        assert isinstance(res, MarginalEffectResult)
        assert res.variable == "x"
        assert res.h is None
        d = res.to_dict()
        assert d["at"] == (0.0, 1.0)
        assert "context" not in d
        assert res.to_frame().shape == (5, 1)


class TestCoefResult:
    def test_fields_and_frame(self):
        data, draws = _make_inputs()
        res = marginal_coefficients(data, draws, family="bernoulli", seed=2)
        assert isinstance(res, MarginalCoefResult)
        assert isinstance(res.family, BernoulliFamily)
        frame = res.to_frame()
        assert list(frame.columns) == ["Intercept", "x"]
        assert frame.shape == (5, 2)
        assert res.to_dict()["terms"] == ["Intercept", "x"]
