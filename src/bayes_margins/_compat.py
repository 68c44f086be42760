"""Accept Polars frames wherever a pandas frame is expected.

Prediction data and posterior-draws tables are both read through
:func:`_ensure_pandas_df`.  Draws exported from a sampler are often
large and arrive as Polars frames; they are converted once, at the
public entry points, and everything downstream sees pandas.

Polars stays optional: without it only pandas frames are accepted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "input") -> pd.DataFrame:
    """Return *obj* as a pandas DataFrame.

    pandas frames pass through unchanged (no copy).  A Polars
    ``LazyFrame`` is collected first; a Polars ``DataFrame`` is
    converted with ``to_pandas()``.

    Args:
        obj: The frame to normalise.
        name: Argument name quoted in the error message, e.g.
            ``"data"`` or ``"draws"``.

    Raises:
        TypeError: If *obj* is neither a pandas nor a Polars frame.
    """
    if isinstance(obj, pd.DataFrame):
        return obj
    if _HAS_POLARS and isinstance(obj, (pl.DataFrame, pl.LazyFrame)):
        frame = obj.collect() if isinstance(obj, pl.LazyFrame) else obj
        return frame.to_pandas()

    accepted = "a pandas DataFrame"
    if _HAS_POLARS:
        accepted += " or Polars DataFrame/LazyFrame"
    msg = f"'{name}' must be {accepted}, got {type(obj).__name__}."
    raise TypeError(msg)
