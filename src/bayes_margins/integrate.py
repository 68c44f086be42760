"""Monte Carlo integration of random effects out of row predictions.

For every posterior draw ``d`` and prediction row ``r`` the marginal
(population-averaged) prediction is

    μ[d, r] = (1/k) Σ_j h⁻¹( η[d, r] + Σ_b x_{b,r} · z_{b,u(r),j} ),

where ``h⁻¹`` is the inverse link, ``x_{b,r}`` the row's design for
random-effect block ``b``, and ``z_{b,u,j}`` the *j*-th of *k* samples
drawn for the row's sampling unit ``u`` in that block.  Averages over
rows (per ``by`` label) are taken only afterwards, by
:func:`average_over_rows`.

Pipeline
~~~~~~~~
1. **Sampling units.**  For every block, rows are keyed by
   ``(row seed, group)``.  Rows that share a key share samples.
2. **Compaction.**  Rows with identical unit keys, identical
   random-effect design rows and identical fixed linear predictors in
   every draw cannot differ, so they are merged
   (:func:`~bayes_margins.expand.compact_rows`) and evaluated once.
3. **Sampling.**  Every unit owns one generator seeded from
   ``SeedSequence([seed, block, group_key])``.  Draws are processed in
   chunks; for each chunk every unit reads its next ``(draws, k, m)``
   normals, which are correlated and scaled per draw in one vectorised
   step.
4. **Per-draw kernel.**  For draw ``d`` the unit samples are gathered
   to the compact rows, the contributions are accumulated, and the
   backend averages the back-transformed values over ``k``.
5. **Expansion.**  Compact results are expanded to the original rows
   (:meth:`~bayes_margins.expand.LinearPredictorTable.expand`).

Each unit's stream is read in draw order, so the samples of draw ``d``
do not depend on the chunk size, and step 4 can run on several threads
without changing the result.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ._backends import BackendProtocol, resolve_backend
from ._context import IntegrationContext
from ._typing import SeedLike
from .expand import LinearPredictorTable, compact_rows
from .families import LINK_NAMES
from .random_effects import BoundBlock
from .sampling import _check_k, _correlate, random_effect_contribution
from .seeding import SeedPlan, resolve_seeds, unit_rng

logger = logging.getLogger(__name__)

# Normals held in memory per chunk of draws (32 MiB of float64).
_SAMPLE_BUDGET = 1 << 22


@dataclass(frozen=True)
class _BlockUnits:
    """Sampling units of one block, restricted to compact rows."""

    seeds: list[int]
    """Seed of each unit."""

    keys: list[int]
    """Stream key of each unit's group."""

    of_row: np.ndarray
    """Unit position of each compact row."""


def _unit_ids(seed_codes: np.ndarray, codes: np.ndarray) -> np.ndarray:
    """0-based unit id per row from (seed code, group code) pairs."""
    pairs = np.column_stack([seed_codes, codes])
    _, ids = np.unique(pairs, axis=0, return_inverse=True)
    return np.asarray(ids, dtype=np.intp).reshape(-1)


def _block_units(
    unit_ids: np.ndarray,
    table: LinearPredictorTable,
    row_seeds: np.ndarray,
    group_keys: np.ndarray,
) -> _BlockUnits:
    compact_ids = unit_ids[table.first]
    _, first, of_row = np.unique(compact_ids, return_index=True, return_inverse=True)
    leaders = table.first[first]
    return _BlockUnits(
        seeds=[int(s) for s in row_seeds[leaders]],
        keys=[int(g) for g in group_keys[leaders]],
        of_row=np.asarray(of_row, dtype=np.intp).reshape(-1),
    )


def integrate_random_effects(
    linpred: np.ndarray,
    blocks: Sequence[BoundBlock],
    *,
    k: int = 100,
    link: str = "identity",
    seeds: SeedPlan | SeedLike = None,
    n_jobs: int = 1,
    backend: BackendProtocol | str | None = None,
    ctx: IntegrationContext | None = None,
) -> np.ndarray:
    """Integrate random effects out of every row prediction.

    Args:
        linpred: Fixed linear predictors ``(n_draws, n_rows)``.
        blocks: Random-effect blocks bound to the same rows.
        k: Integration points per sampling unit and draw.
        link: Link whose inverse is applied before averaging over
            ``k``.
        seeds: A resolved :class:`~bayes_margins.seeding.SeedPlan`, a
            single seed, one seed per row, or ``None`` for fresh
            entropy.
        n_jobs: Threads for the draw loop (``-1`` for all cores).
        backend: Backend instance or name; ``None`` uses the policy
            default.
        ctx: Optional context that receives pipeline artifacts.

    Returns:
        ``(n_draws, n_rows)`` predictions averaged over the *k*
        integration points; row ``d`` is always posterior draw ``d``.

    Raises:
        ValueError: If ``k`` is invalid, the link is unknown, the
            shapes disagree, or the linear predictor is not finite.
    """
    k = _check_k(k)
    if link not in LINK_NAMES:
        msg = f"Unknown link {link!r}.  Supported links: {', '.join(LINK_NAMES)}."
        raise ValueError(msg)
    linpred = np.asarray(linpred, dtype=float)
    if linpred.ndim != 2:
        msg = f"linpred must have shape (n_draws, n_rows), got {linpred.shape}."
        raise ValueError(msg)
    n_draws, n_rows = linpred.shape
    _check_finite(linpred)
    for b, block in enumerate(blocks):
        if not isinstance(block, BoundBlock):
            msg = (
                f"blocks[{b}] must be a BoundBlock; bind a RandomEffectBlock "
                f"to the prediction data with block.bind(data)."
            )
            raise TypeError(msg)
        if block.n_rows != n_rows:
            msg = (
                f"Block {block.name!r} covers {block.n_rows} rows but the "
                f"linear predictor has {n_rows}."
            )
            raise ValueError(msg)
        if block.n_draws != n_draws:
            msg = (
                f"Block {block.name!r} has {block.n_draws} draws but the "
                f"linear predictor has {n_draws}."
            )
            raise ValueError(msg)
    plan = seeds if isinstance(seeds, SeedPlan) else resolve_seeds(seeds, n_rows)
    if plan.n_rows != n_rows:
        msg = f"Seed plan covers {plan.n_rows} rows but there are {n_rows}."
        raise ValueError(msg)
    if not isinstance(backend, BackendProtocol):
        backend = resolve_backend(backend)

    if ctx is not None:
        ctx.k = k
        ctx.link = link
        ctx.seed_plan = plan
        ctx.backend = backend.name
        ctx.block_names = [b.name for b in blocks]

    if not blocks:
        # Nothing to integrate over: every integration point is η itself.
        out = backend.inverse_link(linpred, link)
        if ctx is not None:
            ctx.row_predictions = out
        return out

    t0 = time.perf_counter()
    seed_codes, _ = pd.factorize(pd.Series(plan.row_seeds, dtype=object), sort=True)
    unit_ids = [_unit_ids(seed_codes, block.codes) for block in blocks]
    keys = np.column_stack(
        [*unit_ids, *(block.design for block in blocks), linpred.T]
    )
    table = compact_rows(keys)
    units = [
        _block_units(ids, table, plan.row_seeds, block.keys)
        for ids, block in zip(unit_ids, blocks)
    ]
    designs = [block.design[table.first] for block in blocks]
    eta = linpred[:, table.first]  # (n_draws, n_compact)
    streams = [
        [unit_rng(seed, b, key) for seed, key in zip(unit.seeds, unit.keys)]
        for b, unit in enumerate(units)
    ]
    per_draw = sum(
        len(unit.seeds) * k * block.design.shape[1] for unit, block in zip(units, blocks)
    )
    chunk = max(1, _SAMPLE_BUDGET // max(per_draw, 1))

    logger.debug(
        "Integrating %d draws x %d rows (%d distinct) with k=%d in chunks of %d "
        "draws; units per block: %s",
        n_draws,
        n_rows,
        table.n_compact,
        k,
        chunk,
        {b.name: len(u.seeds) for b, u in zip(blocks, units)},
    )

    parts = []
    for start in range(0, n_draws, chunk):
        stop = min(start + chunk, n_draws)
        # Streams are read in draw order, so draw d sees the same samples
        # whatever the chunk size.
        samples = [
            _sample_units(rngs, k, block, start, stop)
            for rngs, block in zip(streams, blocks)
        ]
        kernel = functools.partial(
            _draw_kernel,
            start=start,
            samples=samples,
            units=units,
            designs=designs,
            eta=eta,
            k=k,
            link=link,
            backend=backend,
        )
        parts.extend(backend.map_draws(kernel, stop - start, n_jobs))
    compact = np.vstack(parts) if parts else np.empty((0, table.n_compact))
    out = table.expand(compact)

    logger.debug("Integration finished in %.3fs", time.perf_counter() - t0)
    if ctx is not None:
        ctx.n_units = [len(u.seeds) for u in units]
        ctx.n_compact = table.n_compact
        ctx.n_jobs = n_jobs
        ctx.row_predictions = out
    return out


def _sample_units(
    rngs: Sequence[np.random.Generator],
    k: int,
    block: BoundBlock,
    start: int,
    stop: int,
) -> np.ndarray:
    """Samples ``(stop - start, n_units, k, m)`` for draws ``start:stop``."""
    m = block.design.shape[1]
    c = stop - start
    if not rngs:
        return np.empty((c, 0, k, m))
    e = np.stack([rng.standard_normal((c, k, m)) for rng in rngs], axis=1)
    if m > 1 and block.chol is not None:
        e = _correlate(e, block.chol[start:stop, np.newaxis, np.newaxis])
    return e * block.sd[start:stop, np.newaxis, np.newaxis, :]


def _draw_kernel(
    i: int,
    *,
    start: int,
    samples: Sequence[np.ndarray],
    units: Sequence[_BlockUnits],
    designs: Sequence[np.ndarray],
    eta: np.ndarray,
    k: int,
    link: str,
    backend: BackendProtocol,
) -> np.ndarray:
    """Mean back-transformed prediction of every compact row for one draw."""
    contrib = np.zeros((eta.shape[1], k))
    for z, unit, design in zip(samples, units, designs):
        contrib += random_effect_contribution(design, z[i][unit.of_row])
    return backend.mean_inverse_link(eta[start + i], contrib, link)


def _check_finite(linpred: np.ndarray) -> None:
    finite = np.isfinite(linpred)
    if not np.all(finite):
        d, r = (int(i) for i in np.argwhere(~finite)[0])
        msg = f"Linear predictor is not finite (draw {d}, row {r})."
        raise ValueError(msg)


# ------------------------------------------------------------------ #
# Averaging over rows
# ------------------------------------------------------------------ #


def average_over_rows(
    row_predictions: np.ndarray,
    codes: np.ndarray | None = None,
    n_labels: int | None = None,
    weights: np.ndarray | None = None,
) -> np.ndarray:
    """Average per-row predictions within each label.

    Args:
        row_predictions: ``(n_draws, n_rows)`` predictions already
            averaged over integration points.
        codes: 0-based label of each row; ``None`` puts every row in
            one label.
        n_labels: Number of labels; inferred from *codes* when
            ``None``.
        weights: Optional non-negative row weights ``(n_rows,)``.

    Returns:
        ``(n_draws, n_labels)`` marginal predictions.

    Raises:
        ValueError: If a label has no rows or zero total weight.
    """
    row_predictions = np.asarray(row_predictions, dtype=float)
    n_rows = row_predictions.shape[1]
    if codes is None:
        codes = np.zeros(n_rows, dtype=np.intp)
    if n_labels is None:
        n_labels = int(codes.max()) + 1 if n_rows else 0
    w = np.ones(n_rows) if weights is None else np.asarray(weights, dtype=float)

    out = np.empty((row_predictions.shape[0], n_labels))
    for c in range(n_labels):
        mask = codes == c
        total = w[mask].sum()
        if not mask.any() or total <= 0:
            msg = f"Label {c} has no rows with positive weight to average over."
            raise ValueError(msg)
        if weights is None:
            out[:, c] = row_predictions[:, mask].mean(axis=1)
        else:
            out[:, c] = row_predictions[:, mask] @ w[mask] / total
    return out


__all__ = ["average_over_rows", "integrate_random_effects"]
