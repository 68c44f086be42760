"""Which compute backend evaluates the integration kernels.

Random-effect samples are always drawn with NumPy generators; the
backend only decides where the inverse link, the average over the *k*
integration points and the batch least-squares solve run.  Switching
backends therefore changes timings and last-digit rounding, never the
samples themselves.

The active backend is the first of:

1. a name passed to :func:`set_backend` (other than ``"auto"``);
2. ``BAYES_MARGINS_BACKEND`` in the environment (``jax`` or
   ``numpy``, any case; other values are ignored);
3. ``"jax"`` when JAX can be imported, else ``"numpy"``.

Examples:
    Pin NumPy for a whole session from the shell::

        export BAYES_MARGINS_BACKEND=numpy

    or from Python, and later go back to detection::

        import bayes_margins
        bayes_margins.set_backend("numpy")
        bayes_margins.set_backend("auto")

A single call can still choose its own backend with the ``backend=``
argument of :func:`~bayes_margins.prediction` and friends.
"""

from __future__ import annotations

import os

_ENV_VAR = "BAYES_MARGINS_BACKEND"
_CONCRETE = ("jax", "numpy")
_CHOICES = (*_CONCRETE, "auto")

# None until set_backend() is called.
_backend_override: str | None = None


def _jax_is_available() -> bool:
    try:
        import jax  # noqa: F401
    except ImportError:
        return False
    return True


def get_backend() -> str:
    """Name of the backend the next call will use: ``"jax"`` or ``"numpy"``."""
    if _backend_override in _CONCRETE:
        return _backend_override

    from_env = os.environ.get(_ENV_VAR, "").strip().lower()
    if from_env in _CONCRETE:
        return from_env

    return "jax" if _jax_is_available() else "numpy"


def set_backend(name: str) -> None:
    """Pin the backend for this process.

    Args:
        name: ``"jax"``, ``"numpy"`` or ``"auto"`` (case-insensitive).
            ``"auto"`` hands the choice back to the environment
            variable and auto-detection.

    Raises:
        ValueError: For any other name.
    """
    global _backend_override
    choice = name.strip().lower()
    if choice not in _CHOICES:
        msg = f"Unknown backend {name!r}.  Choose one of: {', '.join(_CHOICES)}."
        raise ValueError(msg)
    _backend_override = choice
