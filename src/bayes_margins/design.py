"""Fixed-effect designs and linear predictors from draws tables.

Posterior draws arrive as a wide table with one row per draw.  Fixed
effects follow the ``b_<term>`` naming convention (``b_Intercept``,
``b_x``, …); terms are matched to prediction-data columns by name,
with ``"Intercept"`` standing for a column of ones.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df

INTERCEPT = "Intercept"


def design_matrix(
    data: pd.DataFrame,
    terms: Sequence[str],
    *,
    role: str = "fixed-effect",
) -> np.ndarray:
    """Build an ``(n_rows, len(terms))`` design matrix from *data*.

    Args:
        data: Prediction data.
        terms: Column names; ``"Intercept"`` yields ones unless *data*
            has a column of that name.
        role: Wording used in error messages.

    Raises:
        ValueError: If a term is neither ``"Intercept"`` nor a column,
            or a column is not numeric.
    """
    n = len(data)
    missing = [t for t in terms if t != INTERCEPT and t not in data.columns]
    if missing:
        msg = (
            f"{role} term(s) {missing} are not columns of the prediction "
            f"data (available: {list(data.columns)})."
        )
        raise ValueError(msg)

    columns = []
    for term in terms:
        if term == INTERCEPT and term not in data.columns:
            columns.append(np.ones(n))
            continue
        col = data[term]
        if not pd.api.types.is_numeric_dtype(col):
            msg = f"{role} term {term!r} must be numeric, got dtype {col.dtype}."
            raise ValueError(msg)
        columns.append(col.to_numpy(dtype=float))
    if not columns:
        return np.empty((n, 0))
    return np.column_stack(columns)


def fixed_effects_from_draws(
    draws: DataFrameLike,
    terms: Sequence[str] | None = None,
) -> pd.DataFrame:
    """Extract fixed-effect draws as a ``(n_draws, p)`` DataFrame.

    Args:
        draws: Posterior-draws table with ``b_<term>`` columns.
        terms: Terms to extract, in order.  ``None`` takes every
            ``b_`` column in table order.

    Returns:
        DataFrame whose columns are the bare term names.

    Raises:
        ValueError: If a requested term has no ``b_`` column, or the
            table has no fixed effects at all.
    """
    draws = _ensure_pandas_df(draws, name="draws")
    if terms is None:
        cols = [c for c in draws.columns if str(c).startswith("b_")]
        if not cols:
            msg = "The draws table has no fixed-effect ('b_') columns."
            raise ValueError(msg)
    else:
        cols = [f"b_{t}" for t in terms]
        missing = [c for c in cols if c not in draws.columns]
        if missing:
            msg = f"The draws table has no column(s) {missing}."
            raise ValueError(msg)
    out = draws.loc[:, cols].astype(float)
    out.columns = [str(c)[2:] for c in cols]
    return out.reset_index(drop=True)


def fixed_linear_predictor(
    data: DataFrameLike | np.ndarray,
    coefs: pd.DataFrame | np.ndarray,
) -> np.ndarray:
    """Fixed-effect linear predictor for every draw and row.

    Args:
        data: Prediction data.  With a DataFrame *coefs*, columns are
            matched by term name; with an array *coefs*, *data* must be
            the ``(n_rows, p)`` design matrix itself.
        coefs: Fixed-effect draws ``(n_draws, p)``.

    Returns:
        ``(n_draws, n_rows)`` array ``η = B Xᵀ``.

    Raises:
        ValueError: On missing terms or shape mismatches.
    """
    if isinstance(coefs, pd.DataFrame):
        frame = _ensure_pandas_df(data, name="data")
        X = design_matrix(frame, [str(c) for c in coefs.columns])
        B = coefs.to_numpy(dtype=float)
    else:
        B = np.asarray(coefs, dtype=float)
        if B.ndim == 1:
            B = B[np.newaxis, :]
        if isinstance(data, np.ndarray):
            X = np.asarray(data, dtype=float)
        else:
            X = _ensure_pandas_df(data, name="data").to_numpy(dtype=float)
        if X.ndim != 2:
            msg = f"design matrix must be 2-D, got shape {X.shape}."
            raise ValueError(msg)
    if B.ndim != 2 or X.shape[1] != B.shape[1]:
        msg = (
            f"Fixed-effect draws have {B.shape[-1]} coefficients but the "
            f"design matrix has {X.shape[1]} columns."
        )
        raise ValueError(msg)
    if not np.all(np.isfinite(B)):
        d = int(np.flatnonzero(~np.all(np.isfinite(B), axis=1))[0])
        msg = f"Fixed-effect draws contain non-finite values (draw {d})."
        raise ValueError(msg)
    return B @ X.T


__all__ = [
    "INTERCEPT",
    "design_matrix",
    "fixed_effects_from_draws",
    "fixed_linear_predictor",
]
