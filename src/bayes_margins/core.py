"""Marginal predictions, effects, and coefficients from posterior draws.

A Bayesian mixed model predicts *conditionally* on each group's random
effects.  A marginal (population-averaged) prediction instead averages
over the random-effect distribution:

    μ_marg(x) = E_u[ h⁻¹(xβ + z u) ],   u ~ N(0, Σ),

which, for any non-identity link, differs from ``h⁻¹(xβ)``.  The
expectation has no closed form in general, so it is evaluated by Monte
Carlo integration for every posterior draw of ``β`` and ``Σ``; the
result is a posterior distribution of marginal predictions.

Averaging order
~~~~~~~~~~~~~~~
For every draw the *k* integration points are averaged **per row**
first, then the rows are averaged (optionally weighted, optionally per
``by`` label).  Averaging a flat ``rows × k`` block would weight rows
unequally as soon as rows differ in the number of integration points.

Public entry points
~~~~~~~~~~~~~~~~~~~
* :func:`prediction` — marginal predictions, optionally per ``by``
  label and with bootstrap resampling of the rows.
* :func:`marginal_effects` — average marginal effects by finite or
  discrete differences of two stacked scenarios.
* :func:`marginal_coefficients` — population-averaged coefficients:
  the integrated-out predictions mapped back to the link scale and
  regressed on the fixed-effect design.

Seeds and differences
~~~~~~~~~~~~~~~~~~~~~
:func:`marginal_effects` integrates both scenarios in one call.  With a
single seed, a row and its shifted copy share their random-effect
samples, so simulation noise cancels in the difference.  A seed vector
with one entry per stacked row (length ``2 * n_rows``) makes the two
copies independent; the difference is then divided by ``h`` together
with its Monte Carlo error, which for small ``h`` and small ``k`` can
dwarf the effect itself.  See :mod:`bayes_margins.seeding`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from ._context import IntegrationContext
from ._typing import SeedLike
from ._results import MarginalCoefResult, MarginalEffectResult, MarginalPredictionResult
from .bootstrap import posterior_boot_means
from .design import design_matrix
from .engine import MarginalEngine
from .families import ModelFamily, link_transform
from .integrate import average_over_rows
from .random_effects import RandomEffectBlock
from .seeding import fresh_seed

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Row grouping and weights
# ------------------------------------------------------------------ #


def _by_codes(
    data: pd.DataFrame, by: str | Sequence[str] | None
) -> tuple[np.ndarray, list[Any], list[str] | None]:
    """0-based label code per row, the labels, and the ``by`` columns."""
    if by is None:
        return np.zeros(len(data), dtype=np.intp), ["all"], None
    by_cols = [by] if isinstance(by, str) else list(by)
    if not by_cols:
        msg = "by must name at least one column."
        raise ValueError(msg)
    missing = [c for c in by_cols if c not in data.columns]
    if missing:
        msg = f"by column(s) {missing} are not in the prediction data."
        raise ValueError(msg)
    if data[by_cols].isna().to_numpy().any():
        msg = f"by column(s) {by_cols} contain missing values."
        raise ValueError(msg)

    # A single column yields scalar labels, several yield tuples.
    key = by_cols[0] if len(by_cols) == 1 else by_cols
    grouped = data.groupby(key, sort=True)
    codes = grouped.ngroup().to_numpy().astype(np.intp)
    labels = [name for name, _ in grouped]
    return codes, labels, by_cols


def _row_weights(
    data: pd.DataFrame,
    weights: str | Sequence[float] | np.ndarray | None,
    codes: np.ndarray,
    n_labels: int,
) -> np.ndarray | None:
    """Validated row weights (``None`` for an unweighted average)."""
    if weights is None:
        return None
    if isinstance(weights, str):
        if weights not in data.columns:
            msg = f"weights column {weights!r} is not in the prediction data."
            raise ValueError(msg)
        w = data[weights].to_numpy(dtype=float)
    else:
        w = np.asarray(weights, dtype=float)
    if w.shape != (len(data),):
        msg = f"weights must have one entry per row ({len(data)}), got shape {w.shape}."
        raise ValueError(msg)
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        msg = "weights must be finite and non-negative."
        raise ValueError(msg)
    totals = np.bincount(codes, weights=w, minlength=n_labels)
    if np.any(totals <= 0):
        c = int(np.flatnonzero(totals <= 0)[0])
        msg = f"weights sum to zero for label {c}."
        raise ValueError(msg)
    return w


def _check_resample(resample: int) -> int:
    if isinstance(resample, bool) or not isinstance(resample, (int, np.integer)):
        msg = f"resample must be a non-negative integer, got {resample!r}."
        raise ValueError(msg)
    if resample < 0:
        msg = f"resample must be non-negative, got {resample}."
        raise ValueError(msg)
    return int(resample)


def _resampled_posterior(
    rows: np.ndarray,
    codes: np.ndarray,
    n_labels: int,
    weights: np.ndarray | None,
    n_resamples: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Stack *n_resamples* bootstrap passes: ``(n_draws * R, n_labels)``."""
    n_draws = rows.shape[0]
    passes = []
    for _ in range(n_resamples):
        block = np.empty((n_draws, n_labels))
        for c in range(n_labels):
            mask = codes == c
            block[:, c] = posterior_boot_means(
                rows[:, mask],
                random_state=rng,
                weights=None if weights is None else weights[mask],
            )
        passes.append(block)
    return np.vstack(passes)


# ------------------------------------------------------------------ #
# prediction
# ------------------------------------------------------------------ #


def prediction(
    data: DataFrameLike,
    coefs: DataFrameLike,
    *,
    random_effects: RandomEffectBlock | Sequence[RandomEffectBlock] = (),
    family: str | ModelFamily = "gaussian",
    backtrans: str = "response",
    effects: str = "integrateoutRE",
    k: int = 100,
    seed: SeedLike = None,
    by: str | Sequence[str] | None = None,
    weights: str | Sequence[float] | np.ndarray | None = None,
    resample: int = 0,
    resample_seed: int | None = None,
    raw: bool = False,
    n_jobs: int = 1,
    backend: str | None = None,
) -> MarginalPredictionResult:
    """Marginal predictions as a posterior distribution.

    Args:
        data: Prediction data (pandas or Polars).  Every fixed-effect
            term, random-effect term, group column and ``by`` column
            must be present.
        coefs: Fixed-effect draws, one row per posterior draw.  Either
            bare term columns (``Intercept``, ``x``) or a full draws
            table with ``b_<term>`` columns.
        random_effects: Random-effect block(s) to integrate over.
        family: Family name or ``ModelFamily`` instance.
        backtrans: ``"response"`` (the family's link) or an explicit
            back-transform (``"linear"``, ``"invlogit"``, ``"exp"``,
            ``"square"``, ``"inverse"``, ``"invprobit"``,
            ``"invcloglog"``).
        effects: ``"integrateoutRE"`` (default), ``"fixedonly"`` or
            ``"includeRE"``.
        k: Integration points per sampling unit and draw.
        seed: ``None`` (fresh entropy, recorded on the result), one
            non-negative integer, or one per row.
        by: Column(s) whose distinct values define separate marginal
            predictions.
        weights: Row weights (a column name or an array) for the
            average over rows.
        resample: Number of bootstrap passes over the rows to fold into
            the posterior (0 for none).
        resample_seed: Seed for the bootstrap passes.
        raw: Keep the per-row predictions on the result.
        n_jobs: Threads for the loop over posterior draws.
        backend: ``"numpy"``, ``"jax"`` or ``None`` for the configured
            default.

    Returns:
        A :class:`~bayes_margins._results.MarginalPredictionResult`.

    Raises:
        ValueError: On any invalid configuration; nothing is sampled
            before every input has been validated.

    Examples:
        >>> from bayes_margins import RandomEffectBlock, prediction
        >>> block = RandomEffectBlock.from_draws(draws, "id")
        >>> res = prediction(
        ...     data, draws, random_effects=block,
        ...     family="bernoulli", k=100, seed=1234,
        ... )
        >>> res.posterior.shape
        (4000, 1)
    """
    ctx = IntegrationContext()
    engine = MarginalEngine(
        data,
        coefs,
        random_effects=random_effects,
        family=family,
        backtrans=backtrans,
        effects=effects,
        k=k,
        seed=seed,
        n_jobs=n_jobs,
        backend=backend,
        ctx=ctx,
    )
    codes, labels, by_cols = _by_codes(engine.data, by)
    w = _row_weights(engine.data, weights, codes, len(labels))
    n_resamples = _check_resample(resample)

    rows = engine.row_predictions()

    if n_resamples == 0:
        posterior = average_over_rows(rows, codes, len(labels), w)
        resample_seed = None
    else:
        if resample_seed is None:
            resample_seed = fresh_seed()
        rng = np.random.default_rng(resample_seed)
        posterior = _resampled_posterior(rows, codes, len(labels), w, n_resamples, rng)

    logger.debug(
        "prediction: %d labels, posterior shape %s", len(labels), posterior.shape
    )
    return MarginalPredictionResult(
        posterior=posterior,
        labels=labels,
        by=by_cols,
        family=engine.family,
        link=engine.link,
        effects=engine.effects,
        k=engine.k,
        seed=engine.seed_plan.record(),
        backend=engine.backend_name,
        n_draws=engine.n_draws,
        n_rows=engine.n_rows,
        n_resamples=n_resamples,
        resample_seed=resample_seed,
        row_predictions=rows if raw else None,
        context=ctx,
    )


# ------------------------------------------------------------------ #
# marginal_effects
# ------------------------------------------------------------------ #


def _stacked_seed(
    seed: SeedLike, n_rows: int
) -> int | np.ndarray | None:
    """Seed specification for the ``2 * n_rows`` stacked scenario rows."""
    if seed is None or np.ndim(seed) == 0:
        return seed  # type: ignore[return-value]
    seeds = np.asarray(seed)
    if seeds.ndim == 1 and seeds.shape[0] == n_rows:
        # Paired: a row and its shifted copy share a seed.
        return np.concatenate([seeds, seeds])
    if seeds.ndim == 1 and seeds.shape[0] == 2 * n_rows:
        return seeds
    msg = (
        f"seed vector has {seeds.shape[0] if seeds.ndim else 0} entries; "
        f"marginal_effects needs a single seed, {n_rows} seeds (one per "
        f"row, shared by both scenarios) or {2 * n_rows} seeds (one per "
        f"stacked row)."
    )
    raise ValueError(msg)


def marginal_effects(
    data: DataFrameLike,
    coefs: DataFrameLike,
    *,
    variable: str,
    h: float = 1e-3,
    at: tuple[float, float] | None = None,
    random_effects: RandomEffectBlock | Sequence[RandomEffectBlock] = (),
    family: str | ModelFamily = "gaussian",
    backtrans: str = "response",
    effects: str = "integrateoutRE",
    k: int = 100,
    seed: SeedLike = None,
    by: str | Sequence[str] | None = None,
    weights: str | Sequence[float] | np.ndarray | None = None,
    n_jobs: int = 1,
    backend: str | None = None,
) -> MarginalEffectResult:
    """Average marginal effect of *variable* as a posterior distribution.

    Two scenarios of the prediction data are stacked and integrated in
    one call:

    * continuous (default): *variable* as observed and shifted by
      ``h``; the effect is ``(μ(x + h) − μ(x)) / h``;
    * discrete (``at=(a, b)``): *variable* set to ``a`` and to ``b``;
      the effect is ``μ(b) − μ(a)``.

    Args:
        data: Prediction data.
        coefs: Fixed-effect draws (see :func:`prediction`).
        variable: Data column whose effect is computed; must be a
            fixed-effect term.
        h: Finite-difference step for a continuous effect.
        at: ``(reference, comparison)`` values for a discrete effect.
        random_effects: Random-effect block(s) to integrate over.
        family: Family name or instance.
        backtrans: Back-transform selector (see :func:`prediction`).
        effects: Effects mode (see :func:`prediction`).
        k: Integration points per sampling unit and draw.
        seed: A single seed (shared by both scenarios), ``n_rows``
            seeds (row *r* and its shifted copy share seed *r*), or
            ``2 * n_rows`` seeds (one per stacked row).
        by: Column(s) defining separate effects.
        weights: Row weights for the average over rows.
        n_jobs: Threads for the loop over posterior draws.
        backend: Backend name or ``None``.

    Returns:
        A :class:`~bayes_margins._results.MarginalEffectResult`.

    Raises:
        ValueError: If *variable* is not a numeric data column and
            fixed-effect term, ``h`` is not a positive finite number,
            *at* is malformed, or any other input is invalid.
    """
    frame = _ensure_pandas_df(data, name="data").reset_index(drop=True)
    n_rows = len(frame)
    if variable not in frame.columns:
        msg = f"variable {variable!r} is not a column of the prediction data."
        raise ValueError(msg)
    if not pd.api.types.is_numeric_dtype(frame[variable]):
        msg = f"variable {variable!r} must be numeric, got dtype {frame[variable].dtype}."
        raise ValueError(msg)

    reference = frame.copy()
    comparison = frame.copy()
    if at is not None:
        if len(at) != 2 or not np.all(np.isfinite(np.asarray(at, dtype=float))):
            msg = f"at must be a pair of finite values, got {at!r}."
            raise ValueError(msg)
        reference[variable] = float(at[0])
        comparison[variable] = float(at[1])
        step = None
    else:
        if isinstance(h, bool) or not np.isfinite(h) or h <= 0:
            msg = f"h must be a positive finite number, got {h!r}."
            raise ValueError(msg)
        comparison[variable] = comparison[variable].astype(float) + h
        step = float(h)

    stacked = pd.concat([reference, comparison], ignore_index=True)
    ctx = IntegrationContext()
    engine = MarginalEngine(
        stacked,
        coefs,
        random_effects=random_effects,
        family=family,
        backtrans=backtrans,
        effects=effects,
        k=k,
        seed=_stacked_seed(seed, n_rows),
        n_jobs=n_jobs,
        backend=backend,
        ctx=ctx,
    )
    if variable not in engine.fixed_terms:
        msg = (
            f"variable {variable!r} is not a fixed-effect term "
            f"(terms: {engine.fixed_terms})."
        )
        raise ValueError(msg)
    codes, labels, by_cols = _by_codes(frame, by)
    w = _row_weights(frame, weights, codes, len(labels))

    rows = engine.row_predictions()
    ref_post = average_over_rows(rows[:, :n_rows], codes, len(labels), w)
    cmp_post = average_over_rows(rows[:, n_rows:], codes, len(labels), w)
    effect = cmp_post - ref_post
    if step is not None:
        effect = effect / step

    return MarginalEffectResult(
        posterior=effect,
        reference=ref_post,
        comparison=cmp_post,
        labels=labels,
        by=by_cols,
        variable=variable,
        h=step,
        at=None if at is None else (float(at[0]), float(at[1])),
        family=engine.family,
        link=engine.link,
        effects=engine.effects,
        k=engine.k,
        seed=engine.seed_plan.record(),
        backend=engine.backend_name,
        n_draws=engine.n_draws,
        n_rows=n_rows,
        context=ctx,
    )


# ------------------------------------------------------------------ #
# marginal_coefficients
# ------------------------------------------------------------------ #


def marginal_coefficients(
    data: DataFrameLike,
    coefs: DataFrameLike,
    *,
    random_effects: RandomEffectBlock | Sequence[RandomEffectBlock] = (),
    family: str | ModelFamily = "gaussian",
    backtrans: str = "response",
    k: int = 100,
    seed: SeedLike = None,
    n_jobs: int = 1,
    backend: str | None = None,
) -> MarginalCoefResult:
    """Population-averaged coefficients as a posterior distribution.

    For every posterior draw the random effects are integrated out of
    the row predictions, the predictions are mapped back to the link
    scale, and the result is regressed on the fixed-effect design by
    least squares.  For the identity link the marginal coefficients
    match the conditional ones up to Monte Carlo error; for nonlinear
    links they are attenuated towards zero.

    Args:
        data: Prediction data, typically the data the model was fit
            to.
        coefs: Fixed-effect draws (see :func:`prediction`).
        random_effects: Random-effect block(s) to integrate over.
        family: Family name or instance.
        backtrans: Back-transform selector; its link is also the scale
            of the regression.
        k: Integration points per sampling unit and draw.
        seed: Seed specification (see :func:`prediction`).
        n_jobs: Threads for the loop over posterior draws.
        backend: Backend name or ``None``.

    Returns:
        A :class:`~bayes_margins._results.MarginalCoefResult`.

    Raises:
        ValueError: On invalid inputs, or when a marginal prediction
            lies outside the domain of the link (e.g. a probability of
            exactly 0 or 1 on the logit scale).
    """
    ctx = IntegrationContext()
    engine = MarginalEngine(
        data,
        coefs,
        random_effects=random_effects,
        family=family,
        backtrans=backtrans,
        effects="integrateoutRE",
        k=k,
        seed=seed,
        n_jobs=n_jobs,
        backend=backend,
        ctx=ctx,
    )
    X = design_matrix(engine.data, engine.fixed_terms)

    rows = engine.row_predictions()
    y_link = link_transform(rows, engine.link)
    finite = np.isfinite(y_link)
    if not np.all(finite):
        d, r = (int(i) for i in np.argwhere(~finite)[0])
        msg = (
            f"Marginal prediction {rows[d, r]!r} (draw {d}, row {r}) is "
            f"outside the domain of the {engine.link!r} link."
        )
        raise ValueError(msg)

    coefficients = engine.backend.batch_ols(X, y_link, fit_intercept=False)
    logger.debug(
        "marginal_coefficients: %d draws x %d terms", *coefficients.shape
    )
    return MarginalCoefResult(
        coefficients=coefficients,
        terms=engine.fixed_terms,
        family=engine.family,
        link=engine.link,
        k=engine.k,
        seed=engine.seed_plan.record(),
        backend=engine.backend_name,
        n_draws=engine.n_draws,
        n_rows=engine.n_rows,
        context=ctx,
    )


__all__ = ["marginal_coefficients", "marginal_effects", "prediction"]
