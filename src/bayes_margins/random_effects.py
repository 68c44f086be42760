"""Random-effect block specifications.

A mixed model can carry several random-effect terms, e.g.
``(1 + x | id) + (1 | site)``.  Each ``(terms | group)`` term is one
:class:`RandomEffectBlock`:

    u_g ~ N(0, diag(σ) Ω diag(σ)),   Ω = Uᵀ U,

with per-draw SDs ``σ`` of shape ``(n_draws, m)`` and upper correlation
Cholesky factors ``U`` of shape ``(n_draws, m, m)``.  Blocks are
*specifications*: the random-effect design (``[1, x]`` for a random
intercept and slope on ``x``) and the group labels are read from the
prediction data when the block is bound to it, so the same block can be
evaluated on several scenarios (e.g. ``x`` and ``x + h``).

Blocks are usually built from a posterior-draws table with
:meth:`RandomEffectBlock.from_draws`, which understands the naming
convention

* ``sd_<group>__<term>`` — standard deviations,
* ``cor_<group>__<term1>__<term2>`` — correlations,
* ``L_<group>[i,j]`` — a lower correlation Cholesky factor (1-based,
  column-major), used when no correlation columns exist,
* ``r_<group>[<level>,<term>]`` — group-specific effects, needed only
  for conditional (``effects="includeRE"``) predictions.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from .design import design_matrix
from .expand import row_to_matrix
from .sampling import cholesky_from_correlation, validate_cholesky_batch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RandomEffectBlock:
    """One random-effect term ``(terms | group)``.

    Attributes:
        terms: Random-effect terms, e.g. ``("Intercept", "x")``.
        sd: Standard deviations ``(n_draws, m)``.
        chol: Upper correlation Cholesky factors ``(n_draws, m, m)``;
            ``None`` for a single term.
        group: Prediction-data column holding group labels.  ``None``
            treats every row as one group.
        group_effects: Group-specific effects ``(n_draws, G, m)`` for
            conditional predictions, or ``None``.
        levels: Group labels aligned with axis 1 of *group_effects*.
        name: Label used in messages; defaults to *group*.
    """

    terms: tuple[str, ...]
    sd: np.ndarray
    chol: np.ndarray | None = None
    group: str | None = None
    group_effects: np.ndarray | None = None
    levels: tuple[Any, ...] | None = None
    name: str = field(default="")

    def __post_init__(self) -> None:
        terms = tuple(str(t) for t in self.terms)
        if not terms:
            msg = "A random-effect block needs at least one term."
            raise ValueError(msg)
        object.__setattr__(self, "terms", terms)
        if not self.name:
            object.__setattr__(self, "name", self.group or "re")

        sd = np.asarray(self.sd, dtype=float)
        if sd.ndim == 1 and len(terms) == 1:
            sd = sd[:, np.newaxis]
        if sd.ndim != 2 or sd.shape[1] != len(terms):
            msg = (
                f"Block {self.name!r}: sd must have shape (n_draws, "
                f"{len(terms)}), got {sd.shape}."
            )
            raise ValueError(msg)
        object.__setattr__(self, "sd", sd)

        chol = self.chol
        if chol is not None:
            chol = np.asarray(chol, dtype=float)
            if chol.ndim == 2:
                chol = np.broadcast_to(chol, (sd.shape[0], *chol.shape)).copy()
        try:
            chol = validate_cholesky_batch(chol, sd)
        except ValueError as exc:
            msg = f"Block {self.name!r}: {exc}"
            raise ValueError(msg) from None
        object.__setattr__(self, "chol", chol)

        if self.group_effects is not None:
            effects = np.asarray(self.group_effects, dtype=float)
            if self.levels is None:
                msg = f"Block {self.name!r}: group_effects require levels."
                raise ValueError(msg)
            levels = tuple(self.levels)
            expected = (sd.shape[0], len(levels), len(terms))
            if effects.shape != expected:
                msg = (
                    f"Block {self.name!r}: group_effects must have shape "
                    f"{expected}, got {effects.shape}."
                )
                raise ValueError(msg)
            object.__setattr__(self, "group_effects", effects)
            object.__setattr__(self, "levels", levels)

    # ---- Shape -----------------------------------------------------

    @property
    def n_draws(self) -> int:
        return int(self.sd.shape[0])

    @property
    def n_terms(self) -> int:
        return len(self.terms)

    # ---- Binding to prediction data --------------------------------

    def design_matrix(self, data: pd.DataFrame) -> np.ndarray:
        """Random-effect design ``(n_rows, m)`` for *data*."""
        return design_matrix(
            data, self.terms, role=f"random-effect (block {self.name!r})"
        )

    def group_codes(self, data: pd.DataFrame) -> np.ndarray:
        """0-based group codes: positions in the sorted distinct labels.

        Every row maps to code 0 when the block has no group column.
        """
        if self.group is None:
            return np.zeros(len(data), dtype=np.intp)
        labels = self._labels(data)
        codes, _ = pd.factorize(labels, sort=True)
        return codes.astype(np.intp)

    def group_keys(self, data: pd.DataFrame) -> np.ndarray:
        """Stable ``uint64`` key of each row's group label.

        Keys hash the label's string form, so a group keeps its key (and
        its random-number stream) whichever other groups are present.
        Every row maps to key 0 when the block has no group column.
        """
        if self.group is None:
            return np.zeros(len(data), dtype=np.uint64)
        labels = self._labels(data)
        text = np.array([str(v) for v in labels], dtype=object)
        return pd.util.hash_array(text).astype(np.uint64)

    def level_positions(self, data: pd.DataFrame) -> np.ndarray:
        """Positions of each row's group in :attr:`levels`.

        Raises:
            ValueError: If the block has no group-specific effects, or
                a row's label is not among the fitted levels.
        """
        if self.group_effects is None or self.levels is None:
            msg = (
                f"Block {self.name!r} has no group-specific effects; "
                f"conditional predictions need them."
            )
            raise ValueError(msg)
        if self.group is None:
            if len(self.levels) != 1:
                msg = (
                    f"Block {self.name!r} has {len(self.levels)} levels but "
                    f"no group column to choose between them."
                )
                raise ValueError(msg)
            return np.zeros(len(data), dtype=np.intp)
        labels = self._labels(data)
        lookup = pd.Index([str(lv) for lv in self.levels])
        pos = lookup.get_indexer(labels.astype(str))
        if np.any(pos < 0):
            unknown = sorted({str(v) for v in labels[pos < 0]})
            msg = (
                f"Block {self.name!r}: group level(s) {unknown} in the "
                f"prediction data were not in the fitted model."
            )
            raise ValueError(msg)
        return pos.astype(np.intp)

    def _labels(self, data: pd.DataFrame) -> np.ndarray:
        if self.group not in data.columns:
            msg = (
                f"Block {self.name!r}: group column {self.group!r} is not in "
                f"the prediction data."
            )
            raise ValueError(msg)
        labels = data[self.group].to_numpy()
        if pd.isna(labels).any():
            row = int(np.flatnonzero(pd.isna(labels))[0])
            msg = f"Block {self.name!r}: missing group label in row {row}."
            raise ValueError(msg)
        return labels

    def bind(self, data: pd.DataFrame) -> BoundBlock:
        """Read the design, group codes and group keys for *data*.

        Raises:
            ValueError: If a term or the group column is missing.
        """
        return BoundBlock(
            name=self.name,
            design=self.design_matrix(data),
            codes=self.group_codes(data),
            sd=self.sd,
            chol=self.chol,
            keys=self.group_keys(data),
        )

    # ---- Construction from a draws table ---------------------------

    @classmethod
    def from_draws(
        cls,
        draws: DataFrameLike,
        group: str,
        terms: Sequence[str] = ("Intercept",),
        *,
        group_effects: bool = False,
        data_group: str | None = None,
    ) -> RandomEffectBlock:
        """Build a block from a posterior-draws table.

        Args:
            draws: Draws table (pandas or Polars).
            group: Grouping-factor name as it appears in column names.
            terms: Random-effect terms in the order of the block.
            group_effects: Also read ``r_<group>[level,term]`` columns
                for conditional predictions.
            data_group: Prediction-data column with the group labels;
                defaults to *group*.

        Raises:
            ValueError: If any required column is missing, or the
                correlations do not form a positive-definite matrix.
        """
        draws = _ensure_pandas_df(draws, name="draws")
        terms = tuple(terms)
        m = len(terms)

        sd_cols = [f"sd_{group}__{t}" for t in terms]
        _require_columns(draws, sd_cols, group)
        sd = draws.loc[:, sd_cols].to_numpy(dtype=float)

        chol = None
        if m > 1:
            chol = _correlation_factors(draws, group, terms)

        effects = None
        levels = None
        if group_effects:
            effects, levels = _group_effects(draws, group, terms)

        logger.debug(
            "Random-effect block %r: %d draws, terms=%s%s",
            group,
            sd.shape[0],
            terms,
            f", {len(levels)} levels" if levels is not None else "",
        )
        return cls(
            terms=terms,
            sd=sd,
            chol=chol,
            group=data_group or group,
            group_effects=effects,
            levels=levels,
            name=group,
        )


@dataclass(frozen=True)
class BoundBlock:
    """A random-effect block bound to prediction rows.

    This is the array-level form consumed by
    :func:`~bayes_margins.integrate.integrate_random_effects`.

    Attributes:
        name: Block label for messages.
        design: Random-effect design ``(n_rows, m)``.
        codes: 0-based group code of every row ``(n_rows,)``.
        sd: Standard deviations ``(n_draws, m)``.
        chol: Upper correlation Cholesky factors ``(n_draws, m, m)``
            or ``None`` when ``m == 1``.
        keys: Non-negative integer key of every row's group, seeding the
            group's random-number stream ``(n_rows,)``.  Defaults to
            *codes*; :meth:`RandomEffectBlock.bind` passes label hashes.
    """

    name: str
    design: np.ndarray
    codes: np.ndarray
    sd: np.ndarray
    chol: np.ndarray | None = None
    keys: np.ndarray | None = None

    def __post_init__(self) -> None:
        design = np.asarray(self.design, dtype=float)
        if design.ndim == 1:
            design = design[:, np.newaxis]
        sd = np.asarray(self.sd, dtype=float)
        if sd.ndim == 1 and design.shape[1] == 1:
            sd = sd[:, np.newaxis]
        if design.ndim != 2 or sd.ndim != 2 or design.shape[1] != sd.shape[1]:
            msg = (
                f"Block {self.name!r}: random-effect design has "
                f"{design.shape[-1]} columns but sd has {sd.shape[-1]}."
            )
            raise ValueError(msg)
        codes = np.asarray(self.codes)
        if codes.shape != (design.shape[0],):
            msg = (
                f"Block {self.name!r}: {codes.shape[0]} group codes for "
                f"{design.shape[0]} rows."
            )
            raise ValueError(msg)
        if codes.size and (
            not np.issubdtype(codes.dtype, np.integer) or codes.min() < 0
        ):
            msg = f"Block {self.name!r}: group codes must be non-negative integers."
            raise ValueError(msg)
        keys = codes if self.keys is None else np.asarray(self.keys)
        if keys.shape != codes.shape:
            msg = (
                f"Block {self.name!r}: {keys.shape[0] if keys.ndim else 0} "
                f"group keys for {design.shape[0]} rows."
            )
            raise ValueError(msg)
        if keys.size and (
            not np.issubdtype(keys.dtype, np.integer)
            or (np.issubdtype(keys.dtype, np.signedinteger) and keys.min() < 0)
        ):
            msg = f"Block {self.name!r}: group keys must be non-negative integers."
            raise ValueError(msg)
        if not np.all(np.isfinite(design)):
            row = int(np.flatnonzero(~np.all(np.isfinite(design), axis=1))[0])
            msg = (
                f"Block {self.name!r}: random-effect design is not finite "
                f"in row {row}."
            )
            raise ValueError(msg)
        try:
            chol = validate_cholesky_batch(self.chol, sd)
        except ValueError as exc:
            msg = f"Block {self.name!r}: {exc}"
            raise ValueError(msg) from None
        object.__setattr__(self, "design", design)
        object.__setattr__(self, "codes", codes.astype(np.intp))
        object.__setattr__(self, "keys", keys.astype(np.uint64))
        object.__setattr__(self, "sd", sd)
        object.__setattr__(self, "chol", chol)

    @property
    def n_draws(self) -> int:
        return int(self.sd.shape[0])

    @property
    def n_rows(self) -> int:
        return int(self.design.shape[0])


# ------------------------------------------------------------------ #
# Draws-table parsing helpers
# ------------------------------------------------------------------ #


def _require_columns(draws: pd.DataFrame, cols: Sequence[str], group: str) -> None:
    missing = [c for c in cols if c not in draws.columns]
    if missing:
        msg = (
            f"Random-effect block {group!r}: the draws table has no "
            f"column(s) {missing}."
        )
        raise ValueError(msg)


def _correlation_factors(
    draws: pd.DataFrame, group: str, terms: tuple[str, ...]
) -> np.ndarray:
    """Upper correlation Cholesky factors ``(n_draws, m, m)``."""
    m = len(terms)
    n_draws = len(draws)
    cor_cols = {
        (i, j): f"cor_{group}__{terms[i]}__{terms[j]}"
        for i in range(m)
        for j in range(i + 1, m)
    }
    if all(c in draws.columns for c in cor_cols.values()):
        cor = np.broadcast_to(np.eye(m), (n_draws, m, m)).copy()
        for (i, j), col in cor_cols.items():
            values = draws[col].to_numpy(dtype=float)
            cor[:, i, j] = values
            cor[:, j, i] = values
        return cholesky_from_correlation(cor)

    l_cols = [f"L_{group}[{i + 1},{j + 1}]" for j in range(m) for i in range(m)]
    if all(c in draws.columns for c in l_cols):
        flat = draws.loc[:, l_cols].to_numpy(dtype=float)
        # Column-major flattening of the lower factor; transpose to upper.
        return np.stack([row_to_matrix(row, m, order="F").T for row in flat])

    missing = [c for c in cor_cols.values() if c not in draws.columns]
    msg = (
        f"Random-effect block {group!r}: the draws table has neither "
        f"correlation column(s) {missing} nor a full set of "
        f"'L_{group}[i,j]' Cholesky columns."
    )
    raise ValueError(msg)


_R_COLUMN = re.compile(r"^r_(?P<group>.+)\[(?P<level>[^,\]]+),(?P<term>[^\]]+)\]$")


def _group_effects(
    draws: pd.DataFrame, group: str, terms: tuple[str, ...]
) -> tuple[np.ndarray, tuple[str, ...]]:
    """Group-specific effects ``(n_draws, G, m)`` and their levels."""
    found: dict[tuple[str, str], str] = {}
    levels: list[str] = []
    for col in draws.columns:
        match = _R_COLUMN.match(str(col))
        if match is None or match.group("group") != group:
            continue
        level, term = match.group("level"), match.group("term")
        if term not in terms:
            continue
        if level not in levels:
            levels.append(level)
        found[(level, term)] = str(col)
    if not levels:
        msg = (
            f"Random-effect block {group!r}: the draws table has no "
            f"'r_{group}[level,term]' columns."
        )
        raise ValueError(msg)
    missing = [
        f"r_{group}[{lv},{t}]" for lv in levels for t in terms if (lv, t) not in found
    ]
    if missing:
        _require_columns(draws, missing, group)

    effects = np.empty((len(draws), len(levels), len(terms)))
    for g, level in enumerate(levels):
        for j, term in enumerate(terms):
            effects[:, g, j] = draws[found[(level, term)]].to_numpy(dtype=float)
    return effects, tuple(levels)


__all__ = ["BoundBlock", "RandomEffectBlock"]
