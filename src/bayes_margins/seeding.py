"""Seed-stream ownership for Monte Carlo integration.

Reproducibility is a first-class input.  Every independent unit of
randomness owns one generator for the whole call, derived
deterministically from a row seed and the unit's coordinates:

    rng(seed, block, group_key) = default_rng(SeedSequence([seed, block, group_key]))

A *sampling unit* is a (row seed, group) pair within one random-effect
block.  ``group_key`` is a stable hash of the group's label, so a
group's stream does not change when other groups are added to or
removed from the prediction data.  Posterior draw ``d`` reads the
``d``-th ``(k, m)`` block of the unit's stream.  All rows of a unit
share the unit's samples for a given draw; distinct units never share
or advance each other's streams, so row ``d`` of the output is the same
however the draws are chunked or spread over workers.

Why the seed choice matters
---------------------------
With a single seed (the default), two rows in the same group — or the
same row evaluated in two scenarios — see identical random-effect
samples, so their Monte Carlo errors cancel in a difference.  Giving
rows distinct seeds makes their errors independent.  That is harmless
for a level prediction but, in a finite-difference derivative
``(f(x + h) − f(x)) / h``, the independent errors are multiplied by
``1/h``: with ``h = 0.001`` and ``k = 10`` the "effect" can be
dominated by simulation noise.  The library does not try to detect
this; choosing the seed layout is left to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from ._typing import SeedLike


@dataclass(frozen=True)
class SeedPlan:
    """Resolved seeds for one integration call.

    Attributes:
        row_seeds: One non-negative seed per prediction row ``(n_rows,)``.
        base_seed: The scalar seed when a single seed covers every row
            (including a freshly drawn one), else ``None``.
        per_row: ``True`` when the caller supplied a seed vector.
    """

    row_seeds: np.ndarray
    base_seed: int | None
    per_row: bool

    @property
    def n_rows(self) -> int:
        return int(self.row_seeds.shape[0])

    def record(self) -> int | list[int]:
        """The seed specification to store on results."""
        if self.base_seed is not None:
            return self.base_seed
        return self.row_seeds.tolist()


def fresh_seed() -> int:
    """Draw fresh OS entropy as a 128-bit integer seed."""
    return int(np.random.SeedSequence().entropy)


def resolve_seeds(
    seed: SeedLike,
    n_rows: int,
) -> SeedPlan:
    """Turn a seed specification into one seed per row.

    Args:
        seed: ``None`` (fresh entropy, recorded on the plan), a single
            non-negative integer applied to every row, or a sequence of
            non-negative integers with one entry per row.
        n_rows: Number of prediction rows.

    Returns:
        A :class:`SeedPlan`.

    Raises:
        ValueError: If a seed is negative or non-integer, or a seed
            vector's length differs from *n_rows*.
    """
    if seed is None:
        base = fresh_seed()
        return SeedPlan(
            row_seeds=np.full(n_rows, base, dtype=object),
            base_seed=base,
            per_row=False,
        )

    if isinstance(seed, (bool, np.bool_)):
        msg = f"seed must be an integer or a sequence of integers, got {seed!r}."
        raise ValueError(msg)

    if isinstance(seed, (int, np.integer)):
        base = int(seed)
        if base < 0:
            msg = f"seed must be non-negative, got {base}."
            raise ValueError(msg)
        return SeedPlan(
            row_seeds=np.full(n_rows, base, dtype=object),
            base_seed=base,
            per_row=False,
        )

    seeds = np.asarray(pd.Series(seed).to_numpy())
    if seeds.ndim != 1:
        msg = f"seed vector must be 1-D, got shape {seeds.shape}."
        raise ValueError(msg)
    if seeds.shape[0] != n_rows:
        msg = (
            f"seed vector has {seeds.shape[0]} entries but the prediction "
            f"data has {n_rows} rows; supply one seed per row or a single "
            f"integer."
        )
        raise ValueError(msg)
    out = np.empty(n_rows, dtype=object)
    for r, value in enumerate(seeds):
        if isinstance(value, (bool, np.bool_)) or not _is_whole(value):
            msg = f"seed for row {r} must be an integer, got {value!r}."
            raise ValueError(msg)
        value = int(value)
        if value < 0:
            msg = f"seed for row {r} must be non-negative, got {value}."
            raise ValueError(msg)
        out[r] = value
    return SeedPlan(row_seeds=out, base_seed=None, per_row=True)


def _is_whole(value: object) -> bool:
    if isinstance(value, (int, np.integer)):
        return True
    if isinstance(value, (float, np.floating)):
        return bool(np.isfinite(value) and float(value).is_integer())
    return False


def unit_rng(seed: int, block: int, group_key: int) -> np.random.Generator:
    """Generator owned by one (seed, block, group) sampling unit.

    *group_key* is the unsigned 64-bit label hash from
    :meth:`~bayes_margins.random_effects.RandomEffectBlock.group_keys`.
    """
    return np.random.default_rng(
        np.random.SeedSequence([int(seed), int(block), int(group_key)])
    )


__all__ = ["SeedPlan", "fresh_seed", "resolve_seeds", "unit_rng"]
