"""Bootstrap resampling of row means.

A marginal prediction averages over the rows of the prediction data.
When those rows are a sample from a population, the average carries
sampling uncertainty of its own; resampling rows with replacement and
recomputing the mean folds that uncertainty into the posterior.

Two entry points:

* :func:`row_boot_means` — generic: *R* bootstrap means of the rows of
  a vector or matrix.
* :func:`posterior_boot_means` — one bootstrap mean per posterior
  draw: for every draw the columns (prediction rows) of a
  ``(n_draws, n_rows)`` matrix are resampled independently and
  averaged.

Anchored means
~~~~~~~~~~~~~~
Means are computed as ``a + mean(x − a)`` with the anchor ``a`` taken
from the data.  For a constant input every deviation is exactly zero,
so the mean is exactly the constant (a plain floating-point sum of
``n`` copies of ``0.1`` divided by ``n`` is not).
"""

from __future__ import annotations

import numpy as np


def _check_resamples(n_resamples: int) -> int:
    if isinstance(n_resamples, bool) or not isinstance(n_resamples, (int, np.integer)):
        msg = f"n_resamples must be a positive integer, got {n_resamples!r}."
        raise ValueError(msg)
    if n_resamples < 1:
        msg = f"n_resamples must be at least 1, got {n_resamples}."
        raise ValueError(msg)
    return int(n_resamples)


def row_boot_means(
    x: np.ndarray,
    n_resamples: int = 1000,
    random_state: int | np.random.Generator | None = None,
) -> np.ndarray:
    """Bootstrap means of the rows of *x*.

    Each repetition draws ``n_rows`` row indices uniformly with
    replacement and returns the mean of the selected rows.

    Args:
        x: ``(n_rows,)`` or ``(n_rows, n_cols)`` values.
        n_resamples: Number of bootstrap repetitions *R*.
        random_state: Seed or ``Generator`` for reproducibility.

    Returns:
        ``(R,)`` for 1-D input, ``(R, n_cols)`` for 2-D input.

    Raises:
        ValueError: If *x* is empty, not 1-D/2-D, or not finite, or
            ``n_resamples < 1``.
    """
    n_resamples = _check_resamples(n_resamples)
    x = np.asarray(x, dtype=float)
    if x.ndim not in (1, 2):
        msg = f"x must be 1-D or 2-D, got shape {x.shape}."
        raise ValueError(msg)
    n_rows = x.shape[0]
    if n_rows == 0:
        msg = "Cannot bootstrap the mean of zero rows."
        raise ValueError(msg)
    if not np.all(np.isfinite(x)):
        msg = "x contains non-finite values."
        raise ValueError(msg)

    rng = (
        random_state
        if isinstance(random_state, np.random.Generator)
        else np.random.default_rng(random_state)
    )
    idx = rng.integers(0, n_rows, size=(n_resamples, n_rows))  # (R, n_rows)
    anchor = x[0]
    deviations = x - anchor
    return anchor + deviations[idx].mean(axis=1)


def posterior_boot_means(
    row_predictions: np.ndarray,
    random_state: int | np.random.Generator | None = None,
    weights: np.ndarray | None = None,
) -> np.ndarray:
    """One bootstrap row mean per posterior draw.

    For every draw ``d`` the ``n_rows`` columns of
    ``row_predictions[d]`` are resampled with replacement
    (independently of every other draw) and averaged.

    With *weights*, rows of zero weight are dropped before resampling:
    the remaining rows are resampled (as many as remain) and each keeps
    its weight in a weighted mean, so a zero-weight row never enters a
    bootstrap mean.

    Args:
        row_predictions: ``(n_draws, n_rows)`` per-row predictions.
        random_state: Seed or ``Generator`` for reproducibility.
        weights: Optional non-negative row weights ``(n_rows,)`` with
            at least one positive entry.

    Returns:
        ``(n_draws,)`` bootstrap means.

    Raises:
        ValueError: On empty or non-finite input, or weights that do
            not match the rows, are negative or non-finite, or are all
            zero.
    """
    row_predictions = np.asarray(row_predictions, dtype=float)
    if row_predictions.ndim != 2 or row_predictions.shape[1] == 0:
        msg = (
            f"row_predictions must have shape (n_draws, n_rows) with at "
            f"least one row, got {row_predictions.shape}."
        )
        raise ValueError(msg)
    if not np.all(np.isfinite(row_predictions)):
        msg = "row_predictions contains non-finite values."
        raise ValueError(msg)

    w = None
    if weights is not None:
        w = np.asarray(weights, dtype=float)
        if w.shape != (row_predictions.shape[1],):
            msg = f"weights must have shape ({row_predictions.shape[1]},), got {w.shape}."
            raise ValueError(msg)
        if not np.all(np.isfinite(w)) or np.any(w < 0):
            msg = "weights must be finite and non-negative."
            raise ValueError(msg)
        keep = w > 0
        if not keep.any():
            msg = "weights must include at least one positive entry."
            raise ValueError(msg)
        row_predictions = row_predictions[:, keep]
        w = w[keep]
    n_draws, n_rows = row_predictions.shape

    rng = (
        random_state
        if isinstance(random_state, np.random.Generator)
        else np.random.default_rng(random_state)
    )
    idx = rng.integers(0, n_rows, size=(n_draws, n_rows))
    anchor = row_predictions[:, :1]
    deviations = np.take_along_axis(row_predictions - anchor, idx, axis=1)

    if w is None:
        return anchor[:, 0] + deviations.mean(axis=1)
    w_idx = w[idx]  # (n_draws, n_rows), every entry positive
    return anchor[:, 0] + (deviations * w_idx).sum(axis=1) / w_idx.sum(axis=1)


__all__ = ["posterior_boot_means", "row_boot_means"]
