"""Shared type aliases for the bayes_margins package."""

from collections.abc import Sequence

import numpy as np

# Seed specification: one seed for every row, or one seed per row.
SeedLike = int | np.integer | Sequence[int] | np.ndarray | None
