"""Computation context — mutable accumulator for pipeline artifacts.

An :class:`IntegrationContext` travels through the marginal-prediction
pipeline, collecting intermediate artifacts at their natural
computation points.  Consumers (tests, diagnostics, the caller
inspecting a result) read from the context instead of re-computing.

The context is **not** part of the public serialisation API: it carries
NumPy arrays that should not be JSON'd.  ``to_dict()`` on every result
type skips it automatically.

Lifecycle::

    ┌──────────────────────────────────────────────────┐
    │  prediction()                                    │
    │  ├─ ctx = IntegrationContext()                   │
    │  ├─ MarginalEngine(…, ctx=ctx)                   │
    │  │   ├─ ctx.family / ctx.link / ctx.effects      │
    │  │   ├─ ctx.linpred = fixed_linear_predictor(…)  │
    │  │   ├─ ctx.seed_plan = resolve_seeds(…)         │
    │  │   └─ ctx.backend = backend.name               │
    │  ├─ integrate_random_effects(…, ctx=ctx)         │
    │  │   ├─ ctx.n_units / ctx.n_compact              │
    │  │   └─ ctx.row_predictions                      │
    │  └─ result.context = ctx                         │
    └──────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass
class IntegrationContext:
    """Mutable accumulator for computation artifacts.

    Every field defaults to ``None`` (or an empty container) so the
    context can be created empty at the start of the pipeline and
    populated incrementally.  ``None`` means that stage has not run.
    """

    # ---- Inputs --------------------------------------------------
    linpred: np.ndarray | None = None
    """Fixed linear predictor ``(n_draws, n_rows)``."""

    n_draws: int | None = None
    """Number of posterior draws."""

    n_rows: int | None = None
    """Number of prediction rows."""

    # ---- Family --------------------------------------------------
    family: Any = None
    """Resolved ``ModelFamily`` instance."""

    link: str | None = None
    """Link whose inverse is applied to the integrated predictions."""

    effects: str | None = None
    """``"integrateoutRE"``, ``"fixedonly"`` or ``"includeRE"``."""

    # ---- Integration ---------------------------------------------
    k: int | None = None
    """Integration points per sampling unit and draw."""

    seed_plan: Any = None
    """Resolved :class:`~bayes_margins.seeding.SeedPlan`."""

    block_names: list[str] = field(default_factory=list)
    """Names of the random-effect blocks that were integrated over."""

    n_units: list[int] = field(default_factory=list)
    """Number of sampling units per random-effect block."""

    n_compact: int | None = None
    """Distinct rows after compaction (≤ ``n_rows``)."""

    backend: str | None = None
    """Compute backend (``"numpy"`` or ``"jax"``)."""

    n_jobs: int = 1
    """Worker count actually used for the draw loop."""

    row_predictions: np.ndarray | None = None
    """Per-row predictions averaged over ``k`` only ``(n_draws, n_rows)``."""

    # ---- Warnings ------------------------------------------------
    warnings_captured: list[str] = field(default_factory=list)
    """Warning messages emitted during the pipeline."""


__all__ = ["IntegrationContext"]
