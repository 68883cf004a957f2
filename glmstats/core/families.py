"""GLM link functions and family weight strategies.

A family is chosen once, when a task is constructed, with :func:`get_family`.
Every method is vectorized over rows, so the per-row cost is paid inside numpy
and no family dispatch happens while rows are processed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import NamedTuple

import numpy as np
from scipy.special import expit, xlogy

from .config import PROB_FLOOR, VARIANCE_FLOOR

__all__ = [
    "BinomialFamily",
    "Family",
    "GLMWeights",
    "GaussianFamily",
    "GenericFamily",
    "Link",
    "MultinomialFamily",
    "get_family",
    "get_link",
]


class GLMWeights(NamedTuple):
    """Per-row IRLS quantities.

    Attributes
    ----------
    w : ndarray
        Working weights.
    z : ndarray
        Working response (on the scale of the linear predictor without offset).
    l : ndarray
        Weighted likelihood contributions (negative log-likelihood up to constants).
    dev : ndarray
        Weighted deviance contributions.
    mu : ndarray
        Fitted means.
    """

    w: np.ndarray
    z: np.ndarray
    l: np.ndarray  # noqa: E741
    dev: np.ndarray
    mu: np.ndarray


class Link:
    """Link function :math:`\\eta = g(\\mu)`.

    Parameters
    ----------
    name : {"identity", "logit", "log", "inverse", "tweedie"}
        Link name.
    power : float, default 0.0
        Power of the tweedie link :math:`\\eta = \\mu^p`; ``0`` is the log link.
    """

    _NAMES = ("identity", "logit", "log", "inverse", "tweedie")

    def __init__(self, name, power=0.0):
        name = name.lower()
        if name not in self._NAMES:
            raise ValueError(f"Unknown link {name!r}. Choose from {self._NAMES}.")
        if name == "tweedie" and power == 0:
            name = "log"
        self.name = name
        self.power = float(power)

    def __repr__(self):
        if self.name == "tweedie":
            return f"Link('tweedie', power={self.power})"
        return f"Link({self.name!r})"

    def __eq__(self, other):
        return isinstance(other, Link) and self.name == other.name and self.power == other.power

    def __hash__(self):
        return hash((self.name, self.power))

    def link(self, mu):
        mu = np.asarray(mu, dtype=np.float64)
        if self.name == "identity":
            return mu
        if self.name == "logit":
            return np.log(mu / (1.0 - mu))
        if self.name == "log":
            return np.log(mu)
        if self.name == "inverse":
            return 1.0 / mu
        return mu**self.power

    def link_inv(self, eta):
        eta = np.asarray(eta, dtype=np.float64)
        if self.name == "identity":
            return eta
        if self.name == "logit":
            return expit(eta)
        if self.name == "log":
            return np.exp(eta)
        if self.name == "inverse":
            # keep eta away from the pole at zero
            guarded = np.where(eta < 0, np.minimum(-1e-5, eta), np.maximum(1e-5, eta))
            return 1.0 / guarded
        return eta ** (1.0 / self.power)

    def link_deriv(self, mu):
        """Derivative :math:`d\\eta / d\\mu` evaluated at ``mu``."""
        mu = np.asarray(mu, dtype=np.float64)
        if self.name == "identity":
            return np.ones_like(mu)
        if self.name == "logit":
            return 1.0 / (mu * (1.0 - mu))
        if self.name == "log":
            return 1.0 / mu
        if self.name == "inverse":
            return -1.0 / (mu * mu)
        return self.power * mu ** (self.power - 1.0)


def get_link(name, power=0.0):
    """Build a :class:`Link` from its name."""
    if isinstance(name, Link):
        return name
    return Link(name, power=power)


class Family(ABC):
    """Weight strategy for one GLM family.

    Subclasses provide the variance function and the unit deviance; the
    likelihood is half the deviance, which is the negative log-likelihood up
    to terms that do not depend on the mean.
    """

    name: str
    link: Link

    def link_fun(self, mu):
        return self.link.link(mu)

    def link_inv(self, eta):
        return self.link.link_inv(eta)

    def link_deriv(self, mu):
        return self.link.link_deriv(mu)

    @abstractmethod
    def variance(self, mu):
        """Variance function :math:`V(\\mu)`."""

    @abstractmethod
    def deviance(self, y, mu):
        """Unit deviance of each observation."""

    def likelihood(self, y, mu):
        return 0.5 * self.deviance(y, mu)

    def compute_weights(self, y, eta, offset, prior_weight):
        """Working weights and response for IRLS.

        Parameters
        ----------
        y : ndarray
            Responses.
        eta : ndarray
            Linear predictor without offset.
        offset : ndarray or float
            Row offsets.
        prior_weight : ndarray or float
            Prior observation weights.

        Returns
        -------
        GLMWeights
            Working weight ``w``, working response ``z``, weighted likelihood
            ``l`` and weighted deviance ``dev`` per row, plus the means.
        """
        y = np.asarray(y, dtype=np.float64)
        eta = np.asarray(eta, dtype=np.float64)
        mu = self.link_inv(eta + offset)
        var = np.maximum(self.variance(mu), VARIANCE_FLOOR)
        d = self.link_deriv(mu)
        w = prior_weight / (var * d * d)
        z = eta + (y - mu) * d
        return GLMWeights(
            w=w,
            z=z,
            l=prior_weight * self.likelihood(y, mu),
            dev=prior_weight * self.deviance(y, mu),
            mu=mu,
        )

    def __repr__(self):
        return f"{type(self).__name__}(link={self.link!r})"


class GaussianFamily(Family):
    """Gaussian family with the identity link (closed form)."""

    name = "gaussian"

    def __init__(self):
        self.link = Link("identity")

    def variance(self, mu):
        return np.ones_like(np.asarray(mu, dtype=np.float64))

    def deviance(self, y, mu):
        diff = np.asarray(y, dtype=np.float64) - mu
        return diff * diff

    def compute_weights(self, y, eta, offset, prior_weight):
        y = np.asarray(y, dtype=np.float64)
        eta = np.asarray(eta, dtype=np.float64)
        mu = eta + offset
        w = prior_weight * np.ones_like(eta)
        dev = w * self.deviance(y, mu)
        return GLMWeights(w=w, z=y - offset, l=0.5 * dev, dev=dev, mu=mu)


class BinomialFamily(Family):
    """Binomial family with the logit link (closed form).

    Means are clamped to ``[PROB_FLOOR, 1 - PROB_FLOOR]``.
    """

    name = "binomial"

    def __init__(self):
        self.link = Link("logit")

    def link_inv(self, eta):
        return np.clip(expit(eta), PROB_FLOOR, 1.0 - PROB_FLOOR)

    def variance(self, mu):
        return mu * (1.0 - mu)

    def deviance(self, y, mu):
        return _binomial_deviance(np.asarray(y, dtype=np.float64), mu)

    def compute_weights(self, y, eta, offset, prior_weight):
        y = np.asarray(y, dtype=np.float64)
        eta = np.asarray(eta, dtype=np.float64)
        mu = self.link_inv(eta + offset)
        d = mu * (1.0 - mu)
        dev = prior_weight * self.deviance(y, mu)
        return GLMWeights(w=prior_weight * d, z=eta + (y - mu) / d, l=0.5 * dev, dev=dev, mu=mu)


def _binomial_deviance(y, mu):
    return 2.0 * (xlogy(y, y / mu) + xlogy(1.0 - y, (1.0 - y) / (1.0 - mu)))


def _poisson_deviance(y, mu):
    return 2.0 * (xlogy(y, y / mu) - (y - mu))


def _gaussian_deviance(y, mu):
    return (y - mu) ** 2


def _gamma_deviance(y, mu):
    return 2.0 * (-np.log(y / mu) + (y - mu) / mu)


_DEVIANCES = {
    "gaussian": _gaussian_deviance,
    "binomial": _binomial_deviance,
    "poisson": _poisson_deviance,
    "gamma": _gamma_deviance,
}


class GenericFamily(Family):
    """Exponential-family strategy evaluated through link and variance functions.

    Parameters
    ----------
    name : {"gaussian", "binomial", "poisson", "gamma", "tweedie"}
        Family name.
    link : Link
        Link function.
    variance_power : float, default 1.5
        Tweedie variance power; ignored for other families.
    """

    _VARIANCES = {
        "gaussian": lambda mu, p: np.ones_like(mu),
        "binomial": lambda mu, p: mu * (1.0 - mu),
        "poisson": lambda mu, p: mu,
        "gamma": lambda mu, p: mu * mu,
        "tweedie": lambda mu, p: mu**p,
    }

    def __init__(self, name, link, variance_power=1.5):
        if name not in self._VARIANCES:
            raise ValueError(f"Unknown family {name!r}. Choose from {sorted(self._VARIANCES)}.")
        if name == "tweedie" and variance_power in (1.0, 2.0):
            raise ValueError("Tweedie variance power 1 and 2 are the poisson and gamma families.")
        self.name = name
        self.link = link
        self.variance_power = float(variance_power)

    def link_inv(self, eta):
        mu = self.link.link_inv(eta)
        if self.name == "binomial":
            mu = np.clip(mu, PROB_FLOOR, 1.0 - PROB_FLOOR)
        return mu

    def variance(self, mu):
        return self._VARIANCES[self.name](np.asarray(mu, dtype=np.float64), self.variance_power)

    def deviance(self, y, mu):
        y = np.asarray(y, dtype=np.float64)
        if self.name == "tweedie":
            return self._tweedie_deviance(y, mu)
        return _DEVIANCES[self.name](y, mu)

    def _tweedie_deviance(self, y, mu):
        p = self.variance_power
        return 2.0 * (
            np.maximum(y, 0.0) ** (2.0 - p) / ((1.0 - p) * (2.0 - p))
            - y * mu ** (1.0 - p) / (1.0 - p)
            + mu ** (2.0 - p) / (2.0 - p)
        )

    def __repr__(self):
        return f"GenericFamily({self.name!r}, link={self.link!r})"


class MultinomialFamily(Family):
    """Marker for the multinomial family.

    Multinomial rows are weighted through the softmax tasks; the single-class
    weight computation is not defined.
    """

    name = "multinomial"

    def __init__(self, n_classes=None):
        self.link = Link("log")
        self.n_classes = n_classes

    def variance(self, mu):
        return mu * (1.0 - mu)

    def deviance(self, y, mu):
        raise NotImplementedError("Unit deviance is not defined per class for the multinomial family.")

    def compute_weights(self, y, eta, offset, prior_weight):
        raise NotImplementedError(
            "Single-class weights are not implemented for the multinomial family; use the softmax tasks."
        )


_DEFAULT_LINKS = {
    "gaussian": "identity",
    "binomial": "logit",
    "poisson": "log",
    "gamma": "inverse",
    "tweedie": "tweedie",
}


def get_family(name, link=None, tweedie_variance_power=1.5, tweedie_link_power=0.0, n_classes=None):
    """Select the weight strategy for a family.

    Gaussian-identity and binomial-logit get their closed-form strategies;
    every other combination is evaluated through :class:`GenericFamily`.

    Parameters
    ----------
    name : {"gaussian", "binomial", "poisson", "gamma", "tweedie", "multinomial"}
        Family name. A :class:`Family` instance is returned unchanged.
    link : str or Link, optional
        Link function; defaults to the family's canonical choice.
    tweedie_variance_power : float, default 1.5
        Variance power of the tweedie family.
    tweedie_link_power : float, default 0.0
        Power of the tweedie link (0 is the log link).
    n_classes : int, optional
        Number of classes of a multinomial response.

    Returns
    -------
    Family
        The family strategy.
    """
    if isinstance(name, Family):
        return name
    name = name.lower()
    if name == "multinomial":
        return MultinomialFamily(n_classes=n_classes)
    if name not in _DEFAULT_LINKS:
        raise ValueError(f"Unknown family {name!r}. Choose from {sorted([*_DEFAULT_LINKS, 'multinomial'])}.")
    if link is None:
        link = _DEFAULT_LINKS[name]
    link = get_link(link, power=tweedie_link_power)
    if name == "gaussian" and link.name == "identity":
        return GaussianFamily()
    if name == "binomial" and link.name == "logit":
        return BinomialFamily()
    return GenericFamily(name, link, variance_power=tweedie_variance_power)
