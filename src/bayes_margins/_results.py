"""Typed result objects for marginal predictions, effects, and coefficients.

Frozen dataclasses that provide:

* **Attribute access** — ``result.posterior``, ``result.family``, etc.
* **Dict-like access** — ``result["posterior"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.
* **Tabular export** — ``.to_frame()`` returns the posterior as a
  pandas DataFrame with one row per posterior draw, ready for an
  external summary or contrast layer.

Three concrete result types:

* :class:`MarginalPredictionResult` — marginal predictions.
* :class:`MarginalEffectResult` — average marginal effects.
* :class:`MarginalCoefResult` — marginal (population-averaged)
  coefficients.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from ._context import IntegrationContext
    from .families import ModelFamily

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types.

    Handles nested dicts, lists, np.ndarray, np.integer, and
    np.floating so that :meth:`to_dict` returns a fully
    JSON-serialisable structure.
    """
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


def _label_columns(labels: list[Any], by: list[str] | None) -> pd.Index:
    """Column index for a posterior matrix."""
    if by is not None and len(by) > 1:
        return pd.MultiIndex.from_tuples(labels, names=by)
    name = by[0] if by else None
    return pd.Index(labels, name=name)


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test

    Subclasses may override ``_SERIALIZERS`` to register custom
    conversion functions for non-primitive fields (e.g.
    ``ModelFamily`` → ``dict``).  Serializers compose with
    :func:`_numpy_to_python`.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: {"name": f.name, "link": f.link},
    }

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"context"})

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary.

        Applies per-field serializers from ``_SERIALIZERS``, then runs
        :func:`_numpy_to_python` on every value so the returned dict
        is fully JSON-serialisable.
        """
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# MarginalPredictionResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class MarginalPredictionResult(_DictAccessMixin):
    """Marginal predictions as a posterior distribution.

    Returned by :func:`~bayes_margins.prediction`.

    All fields are accessible both as attributes (``result.posterior``)
    and via dict syntax (``result["posterior"]``).
    """

    # ---- Posterior -------------------------------------------------
    posterior: np.ndarray
    """Marginal predictions ``(n_draws, n_labels)``; ``(n_draws * R,
    n_labels)`` when bootstrap resampling was requested, pass by pass."""

    labels: list[Any]
    """One label per posterior column (``by`` values, or ``["all"]``)."""

    by: list[str] | None
    """Columns the rows were grouped by, or ``None``."""

    # ---- Configuration --------------------------------------------
    family: ModelFamily
    """Resolved family instance."""

    link: str
    """Link whose inverse produced the predictions."""

    effects: str
    """Effects mode (``"integrateoutRE"``, ``"fixedonly"``, ``"includeRE"``)."""

    k: int
    """Integration points per sampling unit and draw."""

    seed: int | list[int]
    """Seed specification actually used (fresh entropy is recorded)."""

    backend: str
    """Compute backend used."""

    # ---- Sizes -----------------------------------------------------
    n_draws: int
    """Number of posterior draws."""

    n_rows: int
    """Number of prediction rows."""

    n_resamples: int = 0
    """Bootstrap passes folded into the posterior (0 for none)."""

    resample_seed: int | None = None
    """Seed of the bootstrap passes, when resampling was requested."""

    # ---- Optional per-row output ----------------------------------
    row_predictions: np.ndarray | None = field(default=None, repr=False)
    """Per-row predictions ``(n_draws, n_rows)`` when ``raw=True``."""

    # ---- Computation context (not serialised) ----------------------
    context: IntegrationContext | None = field(
        default=None, repr=False, compare=False
    )
    """Pipeline computation context.  Excluded from ``to_dict()``."""

    def to_frame(self) -> pd.DataFrame:
        """Posterior as a DataFrame: one row per draw, one column per label."""
        return pd.DataFrame(
            self.posterior, columns=_label_columns(self.labels, self.by)
        )


# ------------------------------------------------------------------ #
# MarginalEffectResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class MarginalEffectResult(_DictAccessMixin):
    """Average marginal effects as a posterior distribution.

    Returned by :func:`~bayes_margins.marginal_effects`.  For a
    continuous change the effect is ``(comparison − reference) / h``;
    for a discrete change (``at=(a, b)``) it is
    ``comparison − reference``.
    """

    posterior: np.ndarray
    """Effects ``(n_draws, n_labels)``."""

    reference: np.ndarray
    """Marginal predictions at the reference values ``(n_draws, n_labels)``."""

    comparison: np.ndarray
    """Marginal predictions at the shifted values ``(n_draws, n_labels)``."""

    labels: list[Any]
    """One label per posterior column."""

    by: list[str] | None
    """Columns the rows were grouped by, or ``None``."""

    variable: str
    """Variable whose effect was computed."""

    h: float | None
    """Finite-difference step; ``None`` for a discrete change."""

    at: tuple[float, float] | None
    """``(reference, comparison)`` values for a discrete change."""

    family: ModelFamily
    """Resolved family instance."""

    link: str
    """Link whose inverse produced the predictions."""

    effects: str
    """Effects mode."""

    k: int
    """Integration points per sampling unit and draw."""

    seed: int | list[int]
    """Seed specification used for the stacked scenario rows."""

    backend: str
    """Compute backend used."""

    n_draws: int
    """Number of posterior draws."""

    n_rows: int
    """Number of prediction rows per scenario."""

    context: IntegrationContext | None = field(
        default=None, repr=False, compare=False
    )
    """Pipeline computation context.  Excluded from ``to_dict()``."""

    @property
    def method(self) -> str:
        """``"derivative"`` for a finite difference, else ``"difference"``."""
        return "difference" if self.at is not None else "derivative"

    def to_frame(self) -> pd.DataFrame:
        """Effect posterior as a DataFrame, one row per draw."""
        return pd.DataFrame(
            self.posterior, columns=_label_columns(self.labels, self.by)
        )


# ------------------------------------------------------------------ #
# MarginalCoefResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class MarginalCoefResult(_DictAccessMixin):
    """Marginal (population-averaged) coefficients.

    Returned by :func:`~bayes_margins.marginal_coefficients`.  For every
    posterior draw the integrated-out row predictions are mapped back to
    the link scale and regressed on the fixed-effect design.
    """

    coefficients: np.ndarray
    """Marginal coefficients ``(n_draws, p)``."""

    terms: list[str]
    """Fixed-effect term of each coefficient column."""

    family: ModelFamily
    """Resolved family instance."""

    link: str
    """Link used for the back-transformation."""

    k: int
    """Integration points per sampling unit and draw."""

    seed: int | list[int]
    """Seed specification actually used."""

    backend: str
    """Compute backend used."""

    n_draws: int
    """Number of posterior draws."""

    n_rows: int
    """Number of prediction rows."""

    context: IntegrationContext | None = field(
        default=None, repr=False, compare=False
    )
    """Pipeline computation context.  Excluded from ``to_dict()``."""

    def to_frame(self) -> pd.DataFrame:
        """Coefficient posterior as a DataFrame, one column per term."""
        return pd.DataFrame(self.coefficients, columns=list(self.terms))


__all__ = [
    "MarginalCoefResult",
    "MarginalEffectResult",
    "MarginalPredictionResult",
]
