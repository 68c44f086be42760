"""NumPy / statsmodels backend (always available).

This is the fallback backend that requires nothing beyond the hard
dependencies of the package.

Kernels
~~~~~~~
* **Inverse links** delegate to the statsmodels link classes via
  :func:`~bayes_margins.families.inverse_link`.
* **Per-draw integration** adds the ``(n, k)`` random-effect
  contributions to the fixed linear predictor, back-transforms, and
  averages over the *k* integration points.  The average over ``k``
  is taken per row before anything is averaged over rows.
* **Batch OLS** uses a single pseudoinverse multiply
  ``pinv(X) @ Y.T`` for all draws at once.

Parallelism
~~~~~~~~~~~
When ``n_jobs != 1``, the loop over posterior draws is parallelised
with ``joblib.Parallel(prefer="threads")``.  Threads avoid copying the
linear-predictor matrix into worker processes, and NumPy releases the
GIL inside the heavy array operations.  Every draw derives its own
generators from its seed coordinates, so the result is identical for
any ``n_jobs``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import numpy as np
from joblib import Parallel, delayed

from ..families import inverse_link

T = TypeVar("T")


@dataclass(frozen=True)
class NumpyBackend:
    """NumPy / statsmodels compute backend.

    The class is a frozen dataclass with no instance state; it exists
    to namespace the kernels behind the :class:`BackendProtocol`
    interface and is safe to cache as a module-level singleton.
    """

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return True

    # ================================================================ #
    # Links
    # ================================================================ #

    def inverse_link(self, eta: np.ndarray, link: str) -> np.ndarray:
        """Element-wise inverse link via statsmodels."""
        return inverse_link(eta, link)

    def mean_inverse_link(
        self,
        eta: np.ndarray,
        contrib: np.ndarray,
        link: str,
    ) -> np.ndarray:
        """``mean_k h⁻¹(eta[:, None] + contrib)`` for one draw.

        Args:
            eta: Fixed linear predictors ``(n,)``.
            contrib: Random-effect contributions ``(n, k)``.
            link: Link whose inverse is applied.

        Returns:
            Per-row averages ``(n,)``.
        """
        # (n, k): each row carries its own k integration points.
        mu = inverse_link(eta[:, np.newaxis] + contrib, link)
        result: np.ndarray = mu.mean(axis=1)
        return result

    # ================================================================ #
    # Draw loop
    # ================================================================ #

    def map_draws(
        self,
        fn: Callable[[int], T],
        n_draws: int,
        n_jobs: int = 1,
    ) -> list[T]:
        """Run *fn* over draws, sequentially or with joblib threads."""
        if n_jobs == 1 or n_draws <= 1:
            return [fn(d) for d in range(n_draws)]
        # joblib preserves input order in its output list.
        results: list[T] = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(fn)(d) for d in range(n_draws)
        )
        return results

    # ================================================================ #
    # OLS: shared X, many Y
    # ================================================================ #
    #
    #   β̂_all = pinv(X) @ Y_matrix.T   →  shape (p, B)
    #
    # The pseudoinverse is computed once (SVD) and all B posterior
    # draws are solved by one BLAS-3 matmul.  Rank-deficient designs
    # are handled by zeroing singular values below the default rcond.

    def batch_ols(
        self,
        X: np.ndarray,
        Y_matrix: np.ndarray,
        fit_intercept: bool = False,
    ) -> np.ndarray:
        """Batch OLS via pseudoinverse multiply.

        Args:
            X: Design matrix ``(n, p)``.
            Y_matrix: Responses ``(B, n)``.
            fit_intercept: Prepend an intercept column; its
                coefficient is stripped before returning.

        Returns:
            Coefficients ``(B, p)``.
        """
        if fit_intercept:
            X_aug = np.column_stack([np.ones(X.shape[0]), X])  # (n, p+1)
            pinv = np.linalg.pinv(X_aug)  # (p+1, n)
            result: np.ndarray = (pinv @ Y_matrix.T).T  # (B, p+1)
            return result[:, 1:]
        pinv = np.linalg.pinv(X)  # (p, n)
        result = (pinv @ Y_matrix.T).T  # (B, p)
        return result
