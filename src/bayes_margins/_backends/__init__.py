"""Backend abstraction layer for the integration kernels.

Each backend implements the :class:`BackendProtocol` interface: the
element-wise inverse links, the per-draw "add random-effect
contributions, back-transform, average over integration points"
kernel, the loop over posterior draws, and the batch least-squares
solve used by marginal coefficients.  The integration engine dispatches
to the active backend via :func:`resolve_backend` rather than testing
for JAX at every call site.

Random-effect samples are always drawn with NumPy generators before
they reach a backend, so switching backends never changes which
samples are used.

Resolution follows the policy set by :mod:`._config`:

1. Programmatic override via :func:`~bayes_margins.set_backend`.
2. ``BAYES_MARGINS_BACKEND`` environment variable.
3. Auto-detection: ``"jax"`` if importable, else ``"numpy"``.

When ``"jax"`` is explicitly requested but JAX is not installed, an
:class:`ImportError` is raised; explicit requests are never silently
degraded.  Only the ``"auto"`` policy falls back from JAX to NumPy.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

import numpy as np

from .._config import get_backend

T = TypeVar("T")

# ------------------------------------------------------------------ #
# BackendProtocol
# ------------------------------------------------------------------ #


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface that every compute backend must implement.

    All methods accept NumPy arrays and return NumPy arrays.

    Attributes:
        name: Short identifier (e.g. ``"numpy"``, ``"jax"``).
    """

    @property
    def name(self) -> str: ...

    @property
    def is_available(self) -> bool:
        """Whether the backend's dependencies are importable."""
        ...

    def inverse_link(self, eta: np.ndarray, link: str) -> np.ndarray:
        """Element-wise inverse link (back-transform).

        Args:
            eta: Linear predictors of any shape.
            link: One of :data:`~bayes_margins.families.LINK_NAMES`.

        Returns:
            Response-scale values, same shape as *eta*.
        """
        ...

    def mean_inverse_link(
        self,
        eta: np.ndarray,
        contrib: np.ndarray,
        link: str,
    ) -> np.ndarray:
        """Average the back-transformed predictions over integration points.

        Args:
            eta: Fixed linear predictors ``(n,)`` for one draw.
            contrib: Random-effect contributions ``(n, k)``.
            link: Link whose inverse is applied.

        Returns:
            ``mean_k h⁻¹(eta[i] + contrib[i, k])`` of shape ``(n,)``.
        """
        ...

    def map_draws(
        self,
        fn: Callable[[int], T],
        n_draws: int,
        n_jobs: int = 1,
    ) -> list[T]:
        """Evaluate ``fn(d)`` for every posterior draw, in draw order.

        Args:
            fn: Per-draw work; must not share mutable state across
                draws.
            n_draws: Number of draws.
            n_jobs: Parallel workers (``-1`` for all cores).

        Returns:
            ``[fn(0), …, fn(n_draws - 1)]``.
        """
        ...

    def batch_ols(
        self,
        X: np.ndarray,
        Y_matrix: np.ndarray,
        fit_intercept: bool = False,
    ) -> np.ndarray:
        """Batch OLS: shared *X*, many *Y* vectors.

        Args:
            X: Design matrix ``(n, p)``.
            Y_matrix: Responses ``(B, n)``, one per draw.
            fit_intercept: Prepend an intercept column and strip its
                coefficient from the result.

        Returns:
            Coefficients ``(B, p)``.
        """
        ...


# ------------------------------------------------------------------ #
# Backend resolution
# ------------------------------------------------------------------ #

# Singleton cache, one instance per backend name.
_BACKEND_CACHE: dict[str, BackendProtocol] = {}


def resolve_backend(name: str | None = None) -> BackendProtocol:
    """Return a :class:`BackendProtocol` instance for *name*.

    When *name* is ``None`` (the default), the policy from
    :func:`~bayes_margins._config.get_backend` is used.

    Args:
        name: ``"numpy"``, ``"jax"``, or ``None`` for policy default.

    Returns:
        A backend instance.

    Raises:
        ImportError: If ``"jax"`` is explicitly requested but JAX
            is not installed.
        ValueError: If *name* is not a recognised backend.
    """
    if name is None:
        name = get_backend()
    name = name.strip().lower()

    if name in _BACKEND_CACHE:
        return _BACKEND_CACHE[name]

    if name == "numpy":
        from ._numpy import NumpyBackend

        backend: BackendProtocol = NumpyBackend()

    elif name == "jax":
        from ._jax import JaxBackend

        jax_backend = JaxBackend()
        if not jax_backend.is_available:
            msg = (
                "Backend 'jax' was explicitly requested but JAX is "
                "not installed.  Install JAX (`pip install jax`) or "
                "use set_backend('numpy')."
            )
            raise ImportError(msg)
        backend = jax_backend

    else:
        msg = f"Unknown backend {name!r}.  Choose 'numpy' or 'jax'."
        raise ValueError(msg)

    _BACKEND_CACHE[name] = backend
    return backend


__all__ = ["BackendProtocol", "resolve_backend"]
