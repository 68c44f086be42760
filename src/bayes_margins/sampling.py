"""Correlated multivariate-normal sampling of random effects.

For one posterior draw a random-effect block is described by a vector
of standard deviations ``σ`` (length *m*) and the upper-triangular
Cholesky factor ``U`` of its correlation matrix, ``Ω = Uᵀ U``.  The
random effects ``u ~ N(0, diag(σ) Ω diag(σ))`` are simulated by

    Z = E U diag(σ),     E ∈ ℝ^{k×m} with i.i.d. N(0, 1) entries,

so each of the *k* rows of ``Z`` is one integration point.  Right-
multiplying by ``U`` gives rows with covariance ``Uᵀ U``; the column
scaling then applies the SDs.  With a single random effect (*m* = 1)
there is no correlation structure and ``U`` is skipped entirely.

The contribution of the random effects to the linear predictor of a
row with random-effect design ``x`` (e.g. ``[1, x_i]`` for a random
intercept and slope) is ``x · z`` for every integration point, i.e.
``X Zᵀ`` for a block of rows — see :func:`integrate_mvn`.

Validation is eager.  A factor that is not square, does not match the
SD vector, has entries below the diagonal, or a non-positive diagonal
is rejected before any number is drawn: ``Uᵀ U`` is positive definite
exactly when the diagonal of an upper-triangular ``U`` is strictly
positive, so these checks rule out silent NaNs later in the pipeline.
"""

from __future__ import annotations

import numpy as np
import scipy.linalg

# ------------------------------------------------------------------ #
# Validation
# ------------------------------------------------------------------ #


def validate_cholesky(chol: np.ndarray | None, sd: np.ndarray) -> np.ndarray | None:
    """Validate one SD vector and its correlation Cholesky factor.

    Args:
        chol: Upper-triangular factor of shape ``(m, m)``, or ``None``
            when ``m == 1``.
        sd: Standard deviations of shape ``(m,)``.

    Returns:
        The factor as a float array (``None`` passes through for
        ``m == 1``).

    Raises:
        ValueError: On any shape, finiteness, or definiteness problem.
    """
    sd = np.asarray(sd, dtype=float)
    if sd.ndim != 1 or sd.size == 0:
        msg = f"sd must be a non-empty 1-D vector, got shape {sd.shape}."
        raise ValueError(msg)
    if not np.all(np.isfinite(sd)) or np.any(sd < 0):
        msg = f"sd must contain finite, non-negative values, got {sd.tolist()}."
        raise ValueError(msg)
    m = sd.shape[0]

    if chol is None:
        if m > 1:
            msg = (
                f"A Cholesky factor is required for {m} correlated random "
                f"effects; chol=None is only valid for a single effect."
            )
            raise ValueError(msg)
        return None

    chol = np.asarray(chol, dtype=float)
    if chol.ndim != 2 or chol.shape[0] != chol.shape[1]:
        msg = f"Cholesky factor must be a square matrix, got shape {chol.shape}."
        raise ValueError(msg)
    if chol.shape[0] != m:
        msg = (
            f"Cholesky factor is {chol.shape[0]}x{chol.shape[1]} but the "
            f"sd vector has {m} entries."
        )
        raise ValueError(msg)
    _check_factor(chol[np.newaxis], context="")
    return chol


def validate_cholesky_batch(chol: np.ndarray | None, sd: np.ndarray) -> np.ndarray | None:
    """Validate per-draw SDs ``(D, m)`` and factors ``(D, m, m)``.

    The batched counterpart of :func:`validate_cholesky`, used once per
    random-effect block before integration starts.  Error messages name
    the first offending posterior draw (0-based).
    """
    sd = np.asarray(sd, dtype=float)
    if sd.ndim != 2 or sd.shape[1] == 0:
        msg = f"sd must have shape (n_draws, m), got {sd.shape}."
        raise ValueError(msg)
    bad = ~np.all(np.isfinite(sd) & (sd >= 0), axis=1)
    if np.any(bad):
        d = int(np.flatnonzero(bad)[0])
        msg = (
            f"sd must contain finite, non-negative values; draw {d} has "
            f"{sd[d].tolist()}."
        )
        raise ValueError(msg)
    n_draws, m = sd.shape

    if chol is None:
        if m > 1:
            msg = (
                f"A Cholesky factor is required for {m} correlated random "
                f"effects; chol=None is only valid for a single effect."
            )
            raise ValueError(msg)
        return None

    chol = np.asarray(chol, dtype=float)
    if chol.ndim != 3 or chol.shape[1] != chol.shape[2]:
        msg = (
            f"Cholesky factors must have shape (n_draws, m, m), got {chol.shape}."
        )
        raise ValueError(msg)
    if chol.shape[0] != n_draws:
        msg = (
            f"Cholesky factors cover {chol.shape[0]} draws but sd covers "
            f"{n_draws} draws."
        )
        raise ValueError(msg)
    if chol.shape[1] != m:
        msg = (
            f"Cholesky factors are {chol.shape[1]}x{chol.shape[2]} but the "
            f"sd vectors have {m} entries."
        )
        raise ValueError(msg)
    _check_factor(chol, context="draw ")
    return chol


def _check_factor(chol: np.ndarray, context: str) -> None:
    """Finite, upper-triangular, strictly positive diagonal (batched)."""
    finite = np.all(np.isfinite(chol), axis=(1, 2))
    if not np.all(finite):
        d = int(np.flatnonzero(~finite)[0])
        where = f" ({context}{d})" if context else ""
        msg = f"Cholesky factor contains non-finite values{where}."
        raise ValueError(msg)

    lower = np.tril(np.ones(chol.shape[1:], dtype=bool), k=-1)
    not_upper = np.any(chol[:, lower] != 0.0, axis=1)
    if np.any(not_upper):
        d = int(np.flatnonzero(not_upper)[0])
        where = f" ({context}{d})" if context else ""
        msg = (
            f"Cholesky factor must be upper triangular (covariance = "
            f"chol.T @ chol){where}; got non-zero entries below the "
            f"diagonal.  Transpose a lower-triangular factor before "
            f"passing it."
        )
        raise ValueError(msg)

    diag = np.diagonal(chol, axis1=1, axis2=2)
    non_pd = np.any(diag <= 0.0, axis=1)
    if np.any(non_pd):
        d = int(np.flatnonzero(non_pd)[0])
        where = f" ({context}{d})" if context else ""
        msg = (
            f"Cholesky factor has a non-positive diagonal{where}: "
            f"{diag[d].tolist()}; the implied correlation matrix is not "
            f"positive definite."
        )
        raise ValueError(msg)


# ------------------------------------------------------------------ #
# Correlation → Cholesky
# ------------------------------------------------------------------ #


def cholesky_from_correlation(cor: np.ndarray) -> np.ndarray:
    """Upper Cholesky factor(s) of correlation matrix/matrices.

    Args:
        cor: ``(m, m)`` or ``(D, m, m)`` symmetric correlation matrices.

    Returns:
        Upper-triangular ``U`` with ``Uᵀ U = cor``, same shape as *cor*.

    Raises:
        ValueError: If any matrix is not square, not symmetric, has a
            non-unit diagonal, or is not positive definite.  The draw
            index is named for batched input.
    """
    cor = np.asarray(cor, dtype=float)
    batched = cor.ndim == 3
    stack = cor if batched else cor[np.newaxis]
    if stack.ndim != 3 or stack.shape[1] != stack.shape[2]:
        msg = f"Correlation matrices must be square, got shape {cor.shape}."
        raise ValueError(msg)

    out = np.empty_like(stack)
    for d, mat in enumerate(stack):
        where = f" (draw {d})" if batched else ""
        if not np.allclose(mat, mat.T, rtol=0.0, atol=1e-12):
            msg = f"Correlation matrix is not symmetric{where}."
            raise ValueError(msg)
        if not np.allclose(np.diag(mat), 1.0, rtol=0.0, atol=1e-10):
            msg = f"Correlation matrix must have a unit diagonal{where}."
            raise ValueError(msg)
        try:
            out[d] = scipy.linalg.cholesky(mat, lower=False, check_finite=True)
        except (np.linalg.LinAlgError, ValueError) as exc:
            msg = f"Correlation matrix is not positive definite{where}: {exc}"
            raise ValueError(msg) from None
    return out if batched else out[0]


# ------------------------------------------------------------------ #
# Sampling
# ------------------------------------------------------------------ #


def _correlate(e: np.ndarray, chol: np.ndarray) -> np.ndarray:
    """``e @ chol`` over the last axis, written out element-wise.

    *chol* broadcasts against *e* with two trailing ``(m, m)`` axes, so
    one call correlates a whole ``(draws, units, k, m)`` stack with a
    per-draw factor.  Every entry is the same sum in the same order
    whatever the leading shape, so a sample does not depend on how many
    others are correlated alongside it.
    """
    m = e.shape[-1]
    out = np.empty(np.broadcast_shapes(e.shape, chol.shape[:-1]))
    for j in range(m):
        col = e[..., 0] * chol[..., 0, j]
        for i in range(1, m):
            col = col + e[..., i] * chol[..., i, j]
        out[..., j] = col
    return out


def _draw(k: int, sd: np.ndarray, chol: np.ndarray | None, rng: np.random.Generator) -> np.ndarray:
    """Unvalidated sampling kernel shared with the integration loop."""
    m = sd.shape[0]
    z = rng.standard_normal((k, m))
    if m > 1 and chol is not None:
        z = _correlate(z, chol)
    return z * sd


def draw_correlated_normals(
    k: int,
    sd: np.ndarray,
    chol: np.ndarray | None,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Draw *k* correlated random-effect vectors.

    Args:
        k: Number of integration points (rows of the output).
        sd: Standard deviations ``(m,)``.
        chol: Upper Cholesky factor of the correlation matrix
            ``(m, m)``; ``None`` is allowed when ``m == 1``.
        rng: A NumPy ``Generator`` or a seed.  The same seed and
            inputs always reproduce the same matrix bit for bit.

    Returns:
        Array of shape ``(k, m)``.

    Raises:
        ValueError: If ``k < 1`` or the factor fails validation.
    """
    k = _check_k(k)
    sd = np.asarray(sd, dtype=float)
    chol = validate_cholesky(chol, sd)
    if not isinstance(rng, np.random.Generator):
        rng = np.random.default_rng(rng)
    return _draw(k, sd, chol, rng)


def random_effect_contribution(design: np.ndarray, z: np.ndarray) -> np.ndarray:
    """Compute ``design @ z.T`` one random-effect column at a time.

    Each output entry is built from the same sequence of element-wise
    multiplies and adds regardless of how many rows are passed, so a
    row's contribution does not depend on which other rows share the
    call.

    Args:
        design: Random-effect design ``(n, m)``.
        z: Random-effect samples, either ``(k, m)`` shared by every row
            or ``(n, k, m)`` with one sample matrix per row.

    Returns:
        ``(n, k)`` contributions.
    """
    zz = z if z.ndim == 3 else z[np.newaxis]
    out = design[:, 0, np.newaxis] * zz[:, :, 0]
    for j in range(1, design.shape[1]):
        out += design[:, j, np.newaxis] * zz[:, :, j]
    return out


def integrate_mvn(
    X: np.ndarray,
    k: int,
    sd: np.ndarray,
    chol: np.ndarray | None,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Random-effect contributions of *X* at *k* integration points.

    Draws one ``(k, m)`` sample matrix (see
    :func:`draw_correlated_normals`) and returns ``X Zᵀ`` so that
    column *j* holds every row's random-effect contribution at
    integration point *j*.  All rows of *X* share the same samples.

    Args:
        X: Random-effect design matrix ``(n, m)``.
        k: Number of integration points.
        sd: Standard deviations ``(m,)``.
        chol: Upper correlation Cholesky factor ``(m, m)`` or ``None``.
        rng: Generator or seed.

    Returns:
        Array of shape ``(n, k)``.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X[:, np.newaxis]
    sd = np.asarray(sd, dtype=float)
    if X.ndim != 2 or X.shape[1] != sd.shape[0]:
        msg = (
            f"Random-effect design has {X.shape[-1]} columns but sd has "
            f"{sd.shape[0]} entries."
        )
        raise ValueError(msg)
    z = draw_correlated_normals(k, sd, chol, rng)
    return random_effect_contribution(X, z)


def _check_k(k: int) -> int:
    """Validate the number of integration points."""
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        msg = f"k must be a positive integer, got {k!r}."
        raise ValueError(msg)
    if k < 1:
        msg = f"k must be at least 1, got {k}."
        raise ValueError(msg)
    return int(k)


__all__ = [
    "cholesky_from_correlation",
    "draw_correlated_normals",
    "integrate_mvn",
    "random_effect_contribution",
    "validate_cholesky",
    "validate_cholesky_batch",
]
