"""Compact per-group tables and their expansion to full rows.

Many prediction rows are indistinguishable to the integration engine:
two rows that share every sampling unit, the same random-effect
design row and the same fixed linear predictor in every posterior
draw produce the same marginal prediction.  The engine therefore
works on a *compact table* with one entry per distinct row key and a
repetition count, and expands the results back to the full row set at
the end.

The expansion must be numerically invisible: expanding compact values
gives exactly what a naive "every row looks up its entry" join gives.
:class:`LinearPredictorTable` records both views — ``counts`` plus
``order`` for the repeat-based expansion, and ``index`` for the naive
join — so the two can be checked against each other.

All indices in this module are **0-based**: ``index[r]`` is the
position in the compact table of original row *r*, and ``order`` lists
original row positions grouped by compact entry, in table order.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def expand_table(values: np.ndarray, counts: np.ndarray, axis: int = -1) -> np.ndarray:
    """Repeat each compact entry ``counts[i]`` times along *axis*.

    Entries come out in table order; an entry with count 0 contributes
    no output rows.

    Args:
        values: Compact values; ``values.shape[axis]`` must equal
            ``len(counts)``.
        counts: Non-negative repetition counts.
        axis: Axis of *values* that indexes compact entries.

    Returns:
        Array whose *axis* has length ``counts.sum()``.

    Raises:
        ValueError: If counts are negative, non-integer, or do not
            match the number of compact entries.
    """
    values = np.asarray(values)
    counts = np.asarray(counts)
    if counts.ndim != 1:
        msg = f"counts must be 1-D, got shape {counts.shape}."
        raise ValueError(msg)
    if counts.size and not np.issubdtype(counts.dtype, np.integer):
        if not np.all(np.equal(np.mod(counts, 1), 0)):
            msg = "counts must be whole numbers."
            raise ValueError(msg)
        counts = counts.astype(np.intp)
    if np.any(counts < 0):
        bad = int(np.flatnonzero(counts < 0)[0])
        msg = f"counts must be non-negative; entry {bad} has count {counts[bad]}."
        raise ValueError(msg)
    if values.shape[axis] != counts.shape[0]:
        msg = (
            f"values have {values.shape[axis]} compact entries along axis "
            f"{axis} but {counts.shape[0]} counts were given."
        )
        raise ValueError(msg)
    return np.repeat(values, counts, axis=axis)


def naive_join(values: np.ndarray, index: np.ndarray, axis: int = -1) -> np.ndarray:
    """Look up every row's compact entry: ``values[..., index]``."""
    return np.take(np.asarray(values), np.asarray(index, dtype=np.intp), axis=axis)


@dataclass(frozen=True)
class LinearPredictorTable:
    """Compact representation of prediction rows.

    Attributes:
        keys: Distinct key rows ``(n_compact, q)`` in table order.
        first: Original row position of each entry's first occurrence
            ``(n_compact,)``; used to gather per-entry inputs.
        counts: Number of original rows per entry ``(n_compact,)``.
        order: Original row positions grouped by entry ``(n_rows,)``;
            ``expand_table(v, counts)`` lines up with ``order``.
        index: Compact entry of each original row ``(n_rows,)``.
    """

    keys: np.ndarray
    first: np.ndarray
    counts: np.ndarray
    order: np.ndarray
    index: np.ndarray

    @property
    def n_rows(self) -> int:
        return int(self.index.shape[0])

    @property
    def n_compact(self) -> int:
        return int(self.counts.shape[0])

    def expand(self, values: np.ndarray) -> np.ndarray:
        """Expand compact values ``(..., n_compact)`` to ``(..., n_rows)``.

        Repeats each entry by its count, then scatters the repeated
        block back into original row order.
        """
        values = np.asarray(values)
        repeated = expand_table(values, self.counts, axis=-1)
        out = np.empty(values.shape[:-1] + (self.n_rows,), dtype=values.dtype)
        out[..., self.order] = repeated
        return out


def compact_rows(keys: np.ndarray) -> LinearPredictorTable:
    """Build a :class:`LinearPredictorTable` from a row-key matrix.

    Args:
        keys: ``(n_rows, q)`` matrix; rows with identical keys are
            merged.  A 1-D array is treated as a single key column.

    Returns:
        The compact table (entries sorted by key).
    """
    keys = np.asarray(keys)
    if keys.ndim == 1:
        keys = keys[:, np.newaxis]
    if keys.ndim != 2:
        msg = f"keys must be 1-D or 2-D, got shape {keys.shape}."
        raise ValueError(msg)
    n_rows = keys.shape[0]
    if n_rows == 0:
        empty = np.empty(0, dtype=np.intp)
        return LinearPredictorTable(keys, empty, empty, empty, empty)

    unique, first, index, counts = np.unique(
        keys, axis=0, return_index=True, return_inverse=True, return_counts=True
    )
    index = np.asarray(index, dtype=np.intp).reshape(-1)
    # Stable sort keeps original order among rows of the same entry.
    order = np.argsort(index, kind="stable").astype(np.intp)
    return LinearPredictorTable(
        keys=unique,
        first=np.asarray(first, dtype=np.intp),
        counts=np.asarray(counts, dtype=np.intp),
        order=order,
        index=index,
    )


def row_to_matrix(row: np.ndarray, m: int | None = None, order: str = "F") -> np.ndarray:
    """Rebuild an ``m × m`` matrix from one flattened draws-table row.

    Posterior-draws tables store matrix parameters as separate columns
    (``L[1,1], L[2,1], …, L[m,m]``), one row per draw.  This reshapes a
    single row back into the matrix.

    Args:
        row: Flattened values of length ``m²``.
        m: Matrix dimension; inferred from ``len(row)`` when ``None``.
        order: ``"F"`` (column-major, the draws-table convention) or
            ``"C"``.

    Raises:
        ValueError: If ``len(row)`` is not a perfect square (or not
            ``m²``).
    """
    row = np.asarray(row, dtype=float).reshape(-1)
    if m is None:
        m = int(round(np.sqrt(row.size)))
    if m * m != row.size:
        msg = f"Cannot reshape {row.size} values into a square {m}x{m} matrix."
        raise ValueError(msg)
    return row.reshape((m, m), order=order)


__all__ = [
    "LinearPredictorTable",
    "compact_rows",
    "expand_table",
    "naive_join",
    "row_to_matrix",
]
