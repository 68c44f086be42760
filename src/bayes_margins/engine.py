"""Marginal engine — Builder for resolution, validation, and row predictions.

The :class:`MarginalEngine` centralises everything that happens
*before* any random number is drawn:

1. **Input normalisation** — Polars inputs become pandas; a full
   draws table is reduced to its ``b_`` columns.
2. **Family and link resolution** — map ``family`` and ``backtrans``
   to a ``ModelFamily`` instance and a link name.
3. **Fixed linear predictor** — ``η = B Xᵀ`` for every draw and row,
   rejected when not finite.
4. **Random-effect binding** — every block reads its design and group
   codes from the prediction data; missing columns fail here.
5. **Seed resolution** — one seed per row, fresh entropy recorded when
   no seed is given.
6. **Backend resolution** — determine NumPy vs JAX and apply n_jobs
   overrides.

:meth:`MarginalEngine.row_predictions` then produces the
``(n_draws, n_rows)`` per-row predictions for the chosen effects mode.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence

import numpy as np
import pandas as pd

from ._backends import BackendProtocol, resolve_backend
from ._compat import DataFrameLike, _ensure_pandas_df
from ._context import IntegrationContext
from ._typing import SeedLike
from .design import fixed_effects_from_draws, fixed_linear_predictor
from .families import ModelFamily, resolve_family, resolve_link
from .integrate import integrate_random_effects
from .random_effects import RandomEffectBlock
from .sampling import _check_k
from .seeding import resolve_seeds

logger = logging.getLogger(__name__)

EFFECTS: tuple[str, ...] = ("integrateoutRE", "fixedonly", "includeRE")
"""Supported treatments of the random effects."""


def _normalise_blocks(
    random_effects: RandomEffectBlock | Sequence[RandomEffectBlock] | None,
) -> list[RandomEffectBlock]:
    if random_effects is None:
        return []
    if isinstance(random_effects, RandomEffectBlock):
        return [random_effects]
    blocks = list(random_effects)
    for i, block in enumerate(blocks):
        if not isinstance(block, RandomEffectBlock):
            msg = (
                f"random_effects[{i}] must be a RandomEffectBlock, got "
                f"{type(block).__name__}."
            )
            raise TypeError(msg)
    return blocks


def _fixed_draws(coefs: DataFrameLike) -> pd.DataFrame:
    """Fixed-effect draws with bare term names as columns."""
    if isinstance(coefs, np.ndarray):
        msg = (
            "coefs must be a DataFrame whose columns name the fixed-effect "
            "terms; use fixed_linear_predictor() for bare arrays."
        )
        raise TypeError(msg)
    frame = _ensure_pandas_df(coefs, name="coefs")
    if any(str(c).startswith("b_") for c in frame.columns):
        return fixed_effects_from_draws(frame)
    return frame.astype(float).reset_index(drop=True)


class MarginalEngine:
    """Builder that resolves family, seeds, backend, and shared state.

    Construct an engine, then call :meth:`row_predictions`.  The engine
    captures a snapshot of the resolved state; all validation happens
    in the constructor.

    Attributes:
        data: Prediction data as a pandas DataFrame.
        coefs: Fixed-effect draws ``(n_draws, p)``; columns are terms.
        family: The resolved ``ModelFamily`` instance.
        link: Link whose inverse is applied.
        effects: Effects mode, one of :data:`EFFECTS`.
        k: Integration points per sampling unit and draw.
        linpred: Fixed linear predictor ``(n_draws, n_rows)``.
        seed_plan: Resolved :class:`~bayes_margins.seeding.SeedPlan`.
        backend: Resolved compute backend.
        backend_name: Active backend identifier.
    """

    def __init__(
        self,
        data: DataFrameLike,
        coefs: DataFrameLike,
        *,
        random_effects: RandomEffectBlock | Sequence[RandomEffectBlock] | None = (),
        family: str | ModelFamily = "gaussian",
        backtrans: str = "response",
        effects: str = "integrateoutRE",
        k: int = 100,
        seed: SeedLike = None,
        n_jobs: int = 1,
        backend: str | None = None,
        ctx: IntegrationContext | None = None,
    ) -> None:
        # ---- Context accumulator ----------------------------------
        self.ctx: IntegrationContext = ctx if ctx is not None else IntegrationContext()

        # ---- Inputs -----------------------------------------------
        self.data: pd.DataFrame = _ensure_pandas_df(data, name="data").reset_index(
            drop=True
        )
        self.coefs: pd.DataFrame = _fixed_draws(coefs)
        self.n_rows: int = len(self.data)
        self.n_draws: int = len(self.coefs)
        if self.n_rows == 0:
            msg = "The prediction data has no rows."
            raise ValueError(msg)
        if self.n_draws == 0:
            msg = "The fixed-effect draws table has no rows."
            raise ValueError(msg)

        # ---- Family, link and effects -----------------------------
        self.family: ModelFamily = resolve_family(family)
        self.link: str = resolve_link(backtrans, self.family)
        if effects not in EFFECTS:
            msg = f"Unknown effects {effects!r}.  Choose from: {', '.join(EFFECTS)}."
            raise ValueError(msg)
        self.effects: str = effects
        self.k: int = _check_k(k)

        # ---- Fixed linear predictor -------------------------------
        self.linpred: np.ndarray = fixed_linear_predictor(self.data, self.coefs)
        finite = np.isfinite(self.linpred)
        if not np.all(finite):
            d, r = (int(i) for i in np.argwhere(~finite)[0])
            msg = (
                f"Fixed linear predictor is not finite (draw {d}, row {r}); "
                f"check the prediction data for missing values."
            )
            raise ValueError(msg)

        # ---- Random effects ---------------------------------------
        self.blocks: list[RandomEffectBlock] = _normalise_blocks(random_effects)
        for block in self.blocks:
            if block.n_draws != self.n_draws:
                msg = (
                    f"Block {block.name!r} has {block.n_draws} draws but the "
                    f"fixed-effect draws table has {self.n_draws}."
                )
                raise ValueError(msg)
        if self.effects == "fixedonly" and self.blocks:
            msg = (
                "effects='fixedonly' ignores the supplied random-effect "
                "blocks; predictions use the fixed effects only."
            )
            warnings.warn(msg, UserWarning, stacklevel=3)
            self.ctx.warnings_captured.append(msg)
        self._bound = (
            [block.bind(self.data) for block in self.blocks]
            if self.effects == "integrateoutRE"
            else []
        )
        self._positions = (
            [block.level_positions(self.data) for block in self.blocks]
            if self.effects == "includeRE"
            else []
        )

        # ---- Seeds ------------------------------------------------
        self.seed_plan = resolve_seeds(seed, self.n_rows)

        # ---- Backend resolution -----------------------------------
        self.backend: BackendProtocol = resolve_backend(backend)
        self.backend_name: str = self.backend.name
        self._n_jobs = n_jobs

        # JAX compiles each draw's kernel across all cores already.
        if n_jobs != 1 and self.backend_name == "jax":
            msg = (
                "n_jobs is ignored when the JAX backend is active because "
                "JAX kernels already use every core.  Falling back to "
                "n_jobs=1."
            )
            warnings.warn(msg, UserWarning, stacklevel=3)
            self.ctx.warnings_captured.append(msg)
            self._n_jobs = 1

        # ---- Populate context -------------------------------------
        self.ctx.linpred = self.linpred
        self.ctx.n_draws = self.n_draws
        self.ctx.n_rows = self.n_rows
        self.ctx.family = self.family
        self.ctx.link = self.link
        self.ctx.effects = self.effects
        self.ctx.k = self.k
        self.ctx.seed_plan = self.seed_plan
        self.ctx.backend = self.backend_name
        self.ctx.n_jobs = self._n_jobs

        logger.debug(
            "MarginalEngine: family=%s link=%s effects=%s k=%d draws=%d rows=%d "
            "blocks=%s backend=%s seed=%s",
            self.family.name,
            self.link,
            self.effects,
            self.k,
            self.n_draws,
            self.n_rows,
            [b.name for b in self.blocks],
            self.backend_name,
            "per-row" if self.seed_plan.per_row else self.seed_plan.base_seed,
        )

    @property
    def fixed_terms(self) -> list[str]:
        """Names of the fixed-effect terms."""
        return [str(c) for c in self.coefs.columns]

    # ---- Row predictions ------------------------------------------

    def row_predictions(self) -> np.ndarray:
        """Per-row predictions ``(n_draws, n_rows)`` for the effects mode.

        * ``"integrateoutRE"`` — averaged over *k* Monte Carlo samples
          of every random-effect block.
        * ``"fixedonly"`` — inverse link of the fixed linear predictor.
        * ``"includeRE"`` — inverse link of the linear predictor plus
          each row's group-specific effects, draw by draw.
        """
        if self.effects == "integrateoutRE":
            out = integrate_random_effects(
                self.linpred,
                self._bound,
                k=self.k,
                link=self.link,
                seeds=self.seed_plan,
                n_jobs=self._n_jobs,
                backend=self.backend,
                ctx=self.ctx,
            )
        elif self.effects == "includeRE":
            eta = self.linpred.copy()
            for block, pos in zip(self.blocks, self._positions):
                design = block.design_matrix(self.data)  # (n_rows, m)
                effects = block.group_effects[:, pos, :]  # (n_draws, n_rows, m)
                eta += np.einsum("nj,dnj->dn", design, effects)
            out = self.backend.inverse_link(eta, self.link)
        else:
            out = self.backend.inverse_link(self.linpred, self.link)
        self.ctx.row_predictions = out
        return out


__all__ = ["EFFECTS", "MarginalEngine"]
