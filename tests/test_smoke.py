"""Large-n smoke tests for regression detection.

These tests verify that marginal predictions complete within a
reasonable time bound for a realistic posterior (1,000 draws) over a
moderately large prediction set (2,000 rows in 100 groups).  They catch
accidental quadratic behaviour in the compaction, memory blowouts in the
per-draw kernel, and regressions in the parallel draw loop.

All tests are marked ``@pytest.mark.slow`` and excluded from the
default ``pytest`` run.  Run them explicitly::

    pytest -m slow
"""

from __future__ import annotations

import time

import numpy as np
import pandas as pd
import pytest

from bayes_margins import RandomEffectBlock, marginal_effects, prediction

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

N = 2_000
N_GROUPS = 100
N_DRAWS = 1_000
SEED = 42


def _make_large(
    n: int = N, n_groups: int = N_GROUPS, n_draws: int = N_DRAWS, seed: int = SEED
) -> tuple[pd.DataFrame, pd.DataFrame]:
    rng = np.random.default_rng(seed)
    data = pd.DataFrame(
        {
            "x": rng.integers(0, 2, n).astype(float),
            "id": np.repeat(np.arange(n_groups), n // n_groups),
        }
    )
    draws = pd.DataFrame(
        {
            "b_Intercept": rng.normal(-0.5, 0.1, n_draws),
            "b_x": rng.normal(0.8, 0.1, n_draws),
            "sd_id__Intercept": rng.uniform(0.8, 1.2, n_draws),
            "sd_id__x": rng.uniform(0.2, 0.4, n_draws),
            "cor_id__Intercept__x": rng.uniform(-0.3, 0.3, n_draws),
        }
    )
    return data, draws


# ------------------------------------------------------------------ #
# Smoke tests
# ------------------------------------------------------------------ #


@pytest.mark.slow
class TestLogisticSmoke:
    """Intercept-and-slope logistic model, binary covariate."""

    def test_completes_within_bound(self) -> None:
        data, draws = _make_large()
        block = RandomEffectBlock.from_draws(draws, "id", terms=("Intercept", "x"))
        t0 = time.perf_counter()
        res = prediction(
            data, draws, random_effects=block, family="bernoulli", k=100,
            seed=SEED, by="x", n_jobs=-1,
        )
        elapsed = time.perf_counter() - t0
        assert elapsed < 300, f"Logistic smoke took {elapsed:.1f}s"
        assert res.posterior.shape == (N_DRAWS, 2)
        assert np.all((res.posterior > 0) & (res.posterior < 1))

    def test_binary_covariate_compacts(self) -> None:
        data, draws = _make_large()
        block = RandomEffectBlock.from_draws(draws, "id", terms=("Intercept", "x"))
        res = prediction(
            data, draws.iloc[:20], random_effects=_subset(block, 20),
            family="bernoulli", k=50, seed=SEED,
        )
        # At most two distinct rows per group: x is 0 or 1.
        assert res.context.n_compact <= 2 * N_GROUPS


@pytest.mark.slow
class TestEffectSmoke:
    def test_discrete_effect(self) -> None:
        data, draws = _make_large()
        block = RandomEffectBlock.from_draws(draws, "id")
        t0 = time.perf_counter()
        res = marginal_effects(
            data, draws, variable="x", at=(0.0, 1.0), random_effects=block,
            family="bernoulli", k=100, seed=SEED, n_jobs=-1,
        )
        elapsed = time.perf_counter() - t0
        assert elapsed < 300, f"Effect smoke took {elapsed:.1f}s"
        assert np.all(res.posterior > 0)


def _subset(block: RandomEffectBlock, n_draws: int) -> RandomEffectBlock:
    return RandomEffectBlock(
        terms=block.terms,
        sd=block.sd[:n_draws],
        chol=block.chol[:n_draws],
        group=block.group,
        name=block.name,
    )
