"""Unit tests for MarginalEngine.

These pin the engine's resolution contract: every configuration error
is raised by the constructor, before anything is sampled, and the
resolved state is visible on the engine and its context.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from bayes_margins._context import IntegrationContext
from bayes_margins.engine import EFFECTS, MarginalEngine
from bayes_margins.families import BernoulliFamily, PoissonFamily
from bayes_margins.random_effects import RandomEffectBlock

# ------------------------------------------------------------------ #
# Shared fixtures
# ------------------------------------------------------------------ #

_SEED = 42
_N_DRAWS = 6


@pytest.fixture()
def rng():
    return np.random.default_rng(_SEED)


@pytest.fixture()
def data(rng):
    n = 12
    return pd.DataFrame(
        {
            "x": rng.standard_normal(n),
            "id": np.repeat(["a", "b", "c"], 4),
        }
    )


@pytest.fixture()
def draws(rng):
    return pd.DataFrame(
        {
            "b_Intercept": rng.normal(-0.5, 0.1, _N_DRAWS),
            "b_x": rng.normal(1.0, 0.1, _N_DRAWS),
            "sd_id__Intercept": rng.uniform(0.5, 1.0, _N_DRAWS),
            "r_id[a,Intercept]": rng.normal(0.0, 0.5, _N_DRAWS),
            "r_id[b,Intercept]": rng.normal(0.0, 0.5, _N_DRAWS),
            "r_id[c,Intercept]": rng.normal(0.0, 0.5, _N_DRAWS),
        }
    )


@pytest.fixture()
def block(draws):
    return RandomEffectBlock.from_draws(draws, "id", group_effects=True)


# ------------------------------------------------------------------ #
# Resolution
# ------------------------------------------------------------------ #


class TestResolution:
    def test_family_and_link(self, data, draws):
        engine = MarginalEngine(data, draws, family="bernoulli", seed=1)
        assert isinstance(engine.family, BernoulliFamily)
        assert engine.link == "logit"

    def test_backtrans_overrides_link(self, data, draws):
        engine = MarginalEngine(data, draws, family="poisson", backtrans="linear", seed=1)
        assert isinstance(engine.family, PoissonFamily)
        assert engine.link == "identity"

    def test_b_columns_detected(self, data, draws):
        engine = MarginalEngine(data, draws, seed=1)
        assert engine.fixed_terms == ["Intercept", "x"]
        assert engine.linpred.shape == (_N_DRAWS, len(data))

    def test_bare_term_columns(self, data):
        coefs = pd.DataFrame({"Intercept": [0.0, 1.0], "x": [2.0, 2.0]})
        engine = MarginalEngine(data, coefs, seed=1)
        np.testing.assert_allclose(engine.linpred[1], 1.0 + 2.0 * data["x"])

    def test_seed_recorded(self, data, draws):
        engine = MarginalEngine(data, draws)
        assert isinstance(engine.seed_plan.base_seed, int)
        assert engine.ctx.seed_plan is engine.seed_plan

    def test_context_populated(self, data, draws):
        ctx = IntegrationContext()
        engine = MarginalEngine(data, draws, family="bernoulli", k=7, seed=1, ctx=ctx)
        assert engine.ctx is ctx
        assert ctx.k == 7
        assert ctx.n_draws == _N_DRAWS
        assert ctx.n_rows == len(data)
        assert ctx.link == "logit"
        assert ctx.effects == "integrateoutRE"
        assert ctx.backend == engine.backend_name

    def test_explicit_numpy_backend(self, data, draws):
        engine = MarginalEngine(data, draws, seed=1, backend="numpy", n_jobs=2)
        assert engine.backend_name == "numpy"
        assert engine.ctx.n_jobs == 2

    def test_effects_modes(self):
        assert EFFECTS == ("integrateoutRE", "fixedonly", "includeRE")


# ------------------------------------------------------------------ #
# Validation
# ------------------------------------------------------------------ #


class TestValidation:
    def test_empty_data(self, draws):
        with pytest.raises(ValueError, match="no rows"):
            MarginalEngine(pd.DataFrame({"x": []}), draws)

    def test_empty_draws(self, data):
        with pytest.raises(ValueError, match="no rows"):
            MarginalEngine(data, pd.DataFrame({"b_Intercept": []}))

    def test_array_coefs_rejected(self, data):
        with pytest.raises(TypeError, match="coefs must be a DataFrame"):
            MarginalEngine(data, np.ones((3, 2)))

    def test_unknown_effects(self, data, draws):
        with pytest.raises(ValueError, match="Unknown effects 'marginal'"):
            MarginalEngine(data, draws, effects="marginal")

    @pytest.mark.parametrize("k", [0, -5, 1.5])
    def test_invalid_k(self, data, draws, k):
        with pytest.raises(ValueError, match="k must"):
            MarginalEngine(data, draws, k=k)

    def test_missing_fixed_term(self, data):
        coefs = pd.DataFrame({"b_Intercept": [0.0], "b_w": [1.0]})
        with pytest.raises(ValueError, match=r"\['w'\] are not columns"):
            MarginalEngine(data, coefs)

    def test_missing_value_in_data(self, data, draws):
        data.loc[3, "x"] = np.nan
        with pytest.raises(ValueError, match="row 3"):
            MarginalEngine(data, draws)

    def test_block_draw_count_mismatch(self, data, draws, block):
        with pytest.raises(ValueError, match="has 6 draws but the fixed-effect draws table has 3"):
            MarginalEngine(data, draws.iloc[:3], random_effects=block)

    def test_block_missing_group_column(self, data, draws, block):
        with pytest.raises(ValueError, match="group column 'id'"):
            MarginalEngine(data.drop(columns="id"), draws, random_effects=block)

    def test_wrong_block_type(self, data, draws):
        with pytest.raises(TypeError, match=r"random_effects\[0\]"):
            MarginalEngine(data, draws, random_effects=["id"])

    def test_seed_length_mismatch(self, data, draws):
        with pytest.raises(ValueError, match="seed vector has 2 entries"):
            MarginalEngine(data, draws, seed=[1, 2])

    def test_unknown_backend(self, data, draws):
        with pytest.raises(ValueError, match="Unknown backend"):
            MarginalEngine(data, draws, backend="torch")

    def test_unseen_level_for_conditional(self, data, draws, block):
        data.loc[0, "id"] = "z"
        with pytest.raises(ValueError, match="not in the fitted model"):
            MarginalEngine(data, draws, random_effects=block, effects="includeRE")


# ------------------------------------------------------------------ #
# Row predictions per effects mode
# ------------------------------------------------------------------ #


class TestRowPredictions:
    def test_fixedonly_is_inverse_link(self, data, draws):
        engine = MarginalEngine(data, draws, family="bernoulli", effects="fixedonly", seed=1)
        np.testing.assert_allclose(engine.row_predictions(), expit(engine.linpred), rtol=1e-12)

    def test_fixedonly_warns_about_blocks(self, data, draws, block):
        with pytest.warns(UserWarning, match="ignores the supplied random-effect"):
            engine = MarginalEngine(
                data, draws, random_effects=block, family="bernoulli",
                effects="fixedonly", seed=1,
            )
        assert engine.ctx.warnings_captured
        np.testing.assert_allclose(engine.row_predictions(), expit(engine.linpred), rtol=1e-12)

    def test_include_re_adds_group_effects(self, data, draws, block):
        engine = MarginalEngine(
            data, draws, random_effects=block, family="bernoulli",
            effects="includeRE", seed=1,
        )
        pos = np.repeat([0, 1, 2], 4)
        expected = expit(engine.linpred + block.group_effects[:, pos, 0])
        np.testing.assert_allclose(engine.row_predictions(), expected, rtol=1e-12)

    def test_integrate_out_shape_and_range(self, data, draws, block):
        engine = MarginalEngine(
            data, draws, random_effects=block, family="bernoulli", k=20, seed=3
        )
        rows = engine.row_predictions()
        assert rows.shape == (_N_DRAWS, len(data))
        assert np.all((rows > 0) & (rows < 1))
        assert engine.ctx.row_predictions is rows
        assert engine.ctx.n_units == [3]

    def test_integrate_out_reproducible(self, data, draws, block):
        kwargs = dict(random_effects=block, family="bernoulli", k=15, seed=5)
        a = MarginalEngine(data, draws, **kwargs).row_predictions()
        b = MarginalEngine(data, draws, **kwargs).row_predictions()
        np.testing.assert_array_equal(a, b)

    def test_integrate_out_without_blocks(self, data, draws):
        engine = MarginalEngine(data, draws, family="bernoulli", seed=1)
        np.testing.assert_allclose(engine.row_predictions(), expit(engine.linpred), rtol=1e-12)
