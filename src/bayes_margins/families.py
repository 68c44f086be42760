"""Model families, link functions, and back-transform resolution.

A marginal prediction is an average of ``h⁻¹(η + Zu)`` over random
effects ``u`` and data rows, where ``h⁻¹`` is an inverse link.  The
integration engine only needs to know *which* inverse link to apply,
so a family here is a thin, stateless description of an outcome
distribution: its name, its default link, and the links it admits.

Links are the tagged variant that the compute backends dispatch on.
The set is closed:

=============  ==========================  ======================
Link name      Inverse (back-transform)    Back-transform alias
=============  ==========================  ======================
``identity``   ``η``                       ``"identity"``
``logit``      ``1 / (1 + exp(-η))``       ``"invlogit"``
``log``        ``exp(η)``                  ``"exp"``
``sqrt``       ``η²``                      ``"square"``
``inverse``    ``1 / η``                   ``"inverse"``
``probit``     ``Φ(η)``                    ``"invprobit"``
``cloglog``    ``1 − exp(−exp(η))``        ``"invcloglog"``
=============  ==========================  ======================

The NumPy implementations delegate to the statsmodels link classes
(``statsmodels.genmod.families.links``), which also supply the forward
link used by :func:`~bayes_margins.core.marginal_coefficients`.  The
JAX backend carries its own ``jax.numpy`` versions of the same table.

Families
~~~~~~~~
Each concrete family is a frozen ``@dataclass`` whose only field is
the link.  ``__post_init__`` rejects links the family does not admit,
so an invalid combination fails when the family is built rather than
deep inside the integration loop.  Adding a family means adding a
class and an entry in ``_FAMILIES``; there is no public
registration hook.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, runtime_checkable

import numpy as np
from statsmodels.genmod.families import links as sm_links

# ------------------------------------------------------------------ #
# Links
# ------------------------------------------------------------------ #

_LINKS: dict[str, type[sm_links.Link]] = {
    "identity": sm_links.Identity,
    "logit": sm_links.Logit,
    "log": sm_links.Log,
    "sqrt": sm_links.Sqrt,
    "inverse": sm_links.InversePower,
    "probit": sm_links.Probit,
    "cloglog": sm_links.CLogLog,
}
"""Registry mapping link names to statsmodels link classes."""

LINK_NAMES: tuple[str, ...] = tuple(_LINKS)

# Back-transform selectors accepted by the public API.  ``"response"``
# is resolved against the family and is therefore not listed here.
_BACKTRANSFORMS: dict[str, str] = {
    "linear": "identity",
    "identity": "identity",
    "invlogit": "logit",
    "exp": "log",
    "square": "sqrt",
    "inverse": "inverse",
    "invprobit": "probit",
    "invcloglog": "cloglog",
}

# Link objects are stateless; instantiate once.
_LINK_CACHE: dict[str, sm_links.Link] = {}


def get_link(name: str) -> sm_links.Link:
    """Return the (cached) statsmodels link object for *name*.

    Raises:
        ValueError: If *name* is not a supported link.
    """
    if name not in _LINKS:
        msg = f"Unknown link {name!r}.  Supported links: {', '.join(LINK_NAMES)}."
        raise ValueError(msg)
    if name not in _LINK_CACHE:
        _LINK_CACHE[name] = _LINKS[name]()
    return _LINK_CACHE[name]


def inverse_link(eta: np.ndarray, link: str) -> np.ndarray:
    """Apply the inverse of *link* element-wise.

    Overflow in ``exp`` for extreme linear predictors saturates to
    0/1/inf as IEEE arithmetic dictates; the accompanying
    ``RuntimeWarning`` is silenced.
    """
    link_obj = get_link(link)
    with np.errstate(over="ignore", under="ignore"):
        return np.asarray(link_obj.inverse(np.asarray(eta, dtype=float)))


def link_transform(mu: np.ndarray, link: str) -> np.ndarray:
    """Apply *link* itself (response scale → linear-predictor scale)."""
    link_obj = get_link(link)
    with np.errstate(divide="ignore", over="ignore"):
        return np.asarray(link_obj(np.asarray(mu, dtype=float)))


# ------------------------------------------------------------------ #
# ModelFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ModelFamily(Protocol):
    """Interface every outcome family implements.

    Attributes:
        name: Short identifier (e.g. ``"bernoulli"``).
        link: Name of the link function, one of :data:`LINK_NAMES`.
    """

    @property
    def name(self) -> str: ...

    @property
    def link(self) -> str: ...

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        """Map linear predictors to the response scale."""
        ...

    def link_transform(self, mu: np.ndarray) -> np.ndarray:
        """Map response-scale values to the linear-predictor scale."""
        ...


@dataclass(frozen=True)
class _LinkedFamily:
    """Shared behaviour: link validation and link application."""

    link: str = ""

    _name: ClassVar[str] = ""
    _default_link: ClassVar[str] = "identity"
    _allowed_links: ClassVar[tuple[str, ...]] = ("identity",)

    def __post_init__(self) -> None:
        if self.link == "":
            object.__setattr__(self, "link", self._default_link)
        if self.link not in self._allowed_links:
            msg = (
                f"Link {self.link!r} is not available for family "
                f"{self._name!r}.  Allowed links: "
                f"{', '.join(self._allowed_links)}."
            )
            raise ValueError(msg)

    @property
    def name(self) -> str:
        return self._name

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return inverse_link(eta, self.link)

    def link_transform(self, mu: np.ndarray) -> np.ndarray:
        return link_transform(mu, self.link)


@dataclass(frozen=True)
class GaussianFamily(_LinkedFamily):
    """Continuous outcomes; identity link by default."""

    _name: ClassVar[str] = "gaussian"
    _default_link: ClassVar[str] = "identity"
    _allowed_links: ClassVar[tuple[str, ...]] = ("identity", "log", "inverse")


@dataclass(frozen=True)
class BernoulliFamily(_LinkedFamily):
    """Binary outcomes; predictions are probabilities.

    ``logit`` (default), ``probit`` and ``cloglog`` links.
    """

    _name: ClassVar[str] = "bernoulli"
    _default_link: ClassVar[str] = "logit"
    _allowed_links: ClassVar[tuple[str, ...]] = ("logit", "probit", "cloglog")


@dataclass(frozen=True)
class PoissonFamily(_LinkedFamily):
    """Count outcomes; predictions are expected counts."""

    _name: ClassVar[str] = "poisson"
    _default_link: ClassVar[str] = "log"
    _allowed_links: ClassVar[tuple[str, ...]] = ("log", "identity", "sqrt")


@dataclass(frozen=True)
class NegativeBinomialFamily(_LinkedFamily):
    """Over-dispersed counts.

    The expected count depends on the linear predictor only, so the
    shape parameter plays no part in marginal predictions.
    """

    _name: ClassVar[str] = "negbinomial"
    _default_link: ClassVar[str] = "log"
    _allowed_links: ClassVar[tuple[str, ...]] = ("log", "identity", "sqrt")


@dataclass(frozen=True)
class GammaFamily(_LinkedFamily):
    """Positive continuous outcomes."""

    _name: ClassVar[str] = "gamma"
    _default_link: ClassVar[str] = "inverse"
    _allowed_links: ClassVar[tuple[str, ...]] = ("inverse", "log", "identity")


# ------------------------------------------------------------------ #
# Family resolution
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type[_LinkedFamily]] = {
    "gaussian": GaussianFamily,
    "bernoulli": BernoulliFamily,
    "poisson": PoissonFamily,
    "negbinomial": NegativeBinomialFamily,
    "gamma": GammaFamily,
}
"""Closed registry mapping family names to family classes."""

_FAMILY_ALIASES: dict[str, str] = {
    "linear": "gaussian",
    "normal": "gaussian",
    "logistic": "bernoulli",
    "binary": "bernoulli",
    "negative_binomial": "negbinomial",
}


def resolve_family(family: str | ModelFamily, link: str | None = None) -> ModelFamily:
    """Resolve a family string or instance to a concrete ``ModelFamily``.

    Instances pass through untouched.  Strings are matched
    case-insensitively against the registry and a small set of aliases
    (``"logistic"`` → ``"bernoulli"``, ``"linear"`` → ``"gaussian"``).

    Args:
        family: Family identifier string **or** a ``ModelFamily``
            instance.
        link: Optional link override for string families.  Ignored
            when *family* is already an instance.

    Returns:
        A ``ModelFamily`` instance.

    Raises:
        ValueError: If the name is unknown or the link is not allowed
            for the family.
    """
    if isinstance(family, ModelFamily) and not isinstance(family, str):
        return family
    if not isinstance(family, str):
        msg = (
            f"family must be a string or ModelFamily instance, got "
            f"{type(family).__name__}."
        )
        raise TypeError(msg)

    key = family.strip().lower()
    key = _FAMILY_ALIASES.get(key, key)
    if key not in _FAMILIES:
        available = ", ".join(sorted(_FAMILIES))
        msg = f"Unknown family {family!r}.  Available families: {available}."
        raise ValueError(msg)

    cls = _FAMILIES[key]
    return cls(link=link) if link is not None else cls()


def resolve_link(backtrans: str, family: ModelFamily) -> str:
    """Resolve a back-transform selector to a link name.

    ``"response"`` selects the family's own link, ``"linear"`` keeps
    the linear-predictor scale, and the remaining selectors force a
    specific inverse link regardless of the family.

    Raises:
        ValueError: If *backtrans* is not a recognised selector.
    """
    key = backtrans.strip().lower()
    if key == "response":
        return family.link
    if key not in _BACKTRANSFORMS:
        options = ", ".join(["response", *sorted(_BACKTRANSFORMS)])
        msg = f"Unknown backtrans {backtrans!r}.  Choose from: {options}."
        raise ValueError(msg)
    return _BACKTRANSFORMS[key]


def describe_family(family: ModelFamily) -> dict[str, Any]:
    """Small serialisable description used by result objects."""
    return {"name": family.name, "link": family.link}


__all__ = [
    "LINK_NAMES",
    "BernoulliFamily",
    "GammaFamily",
    "GaussianFamily",
    "ModelFamily",
    "NegativeBinomialFamily",
    "PoissonFamily",
    "describe_family",
    "get_link",
    "inverse_link",
    "link_transform",
    "resolve_family",
    "resolve_link",
]
