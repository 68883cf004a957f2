"""Gradient and likelihood of the GLM objective over row partitions."""

from __future__ import annotations

import logging
from typing import NamedTuple

import numpy as np
from scipy.special import expit, logsumexp

from glmstats.core.centering import center_vector, needs_centering
from glmstats.core.config import VARIANCE_FLOOR
from glmstats.core.families import BinomialFamily, GaussianFamily, MultinomialFamily, get_family

from ._base import RowTask

__all__ = [
    "BinomialGradientTask",
    "GaussianGradientTask",
    "GenericGradientTask",
    "GradientResult",
    "MultinomialGradientTask",
    "make_gradient_task",
]

log = logging.getLogger("glmstats.distributed.gradient")


class GradientResult(NamedTuple):
    """Gradient of the penalized objective and the data likelihood.

    Attributes
    ----------
    gradient : ndarray
        ``obj_reg * X^T g + l2_penalty * beta`` (intercept unpenalized). Shape
        ``(full_n + 1,)``, or ``(n_classes, full_n + 1)`` for multinomial.
    likelihood : float
        Negative log-likelihood summed over rows, weighted by prior weights.
    """

    gradient: np.ndarray
    likelihood: float

    def has_nans_or_infs(self):
        return not (np.isfinite(self.gradient).all() and np.isfinite(self.likelihood))


class _GradientTask(RowTask):
    """Shared accumulation and finalization of the single-class gradients.

    Subclasses provide ``_row_gradient(y, eta, w) -> (gval, l)``: the
    derivative of each row's loss with respect to its linear predictor and the
    row's weighted likelihood contribution.
    """

    def __init__(self, dinfo, beta, obj_reg=1.0, l2_penalty=0.0, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_beta(beta)
        self.obj_reg = float(obj_reg)
        self.l2_penalty = float(l2_penalty)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"gradient": np.zeros(self.n_coefs), "likelihood": 0.0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset) + rows.offset
        gval, lik = self._row_gradient(rows.response, eta, rows.weight)
        g = state["gradient"]
        g[:-1] += rows.design_matrix().T @ gval
        g[-1] += gval.sum()
        state["likelihood"] += float(lik.sum())

    def _row_gradient(self, y, eta, w):
        raise NotImplementedError

    def post_global(self, state):
        g = state["gradient"].copy()
        if needs_centering(self.dinfo):
            center_vector(g, self.dinfo)
        self._zero_intercept(g)
        g *= self.obj_reg
        g[:-1] += self.l2_penalty * self.beta[:-1]
        return GradientResult(gradient=g, likelihood=float(state["likelihood"]))


class GenericGradientTask(_GradientTask):
    """Gradient through the link and variance functions of any family.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family
        Single-class family.
    beta : ndarray of shape (full_n + 1,)
        Coefficients, intercept last.
    obj_reg : float, default 1.0
        Scaling of the data term of the objective.
    l2_penalty : float, default 0.0
        Ridge penalty added as ``l2_penalty * beta`` to non-intercept entries.
    job_key : object, optional
        Opaque job identifier.
    """

    def __init__(self, dinfo, family, beta, obj_reg=1.0, l2_penalty=0.0, job_key=None):
        super().__init__(dinfo, beta, obj_reg=obj_reg, l2_penalty=l2_penalty, job_key=job_key)
        self.family = get_family(family)

    def _row_gradient(self, y, eta, w):
        mu = self.family.link_inv(eta)
        var = np.maximum(self.family.variance(mu), VARIANCE_FLOOR)
        gval = w * (mu - y) / (var * self.family.link_deriv(mu))
        return gval, w * self.family.likelihood(y, mu)


class BinomialGradientTask(_GradientTask):
    """Closed-form logistic gradient, :math:`-w y' (1 - 1 / (1 + e^{-y' \\eta}))` with :math:`y' = 2y - 1`."""

    def _row_gradient(self, y, eta, w):
        ys = 2.0 * y - 1.0
        gval = -w * ys * expit(-ys * eta)
        return gval, w * np.logaddexp(0.0, -ys * eta)


class GaussianGradientTask(_GradientTask):
    """Closed-form least-squares gradient, :math:`w (\\eta - y)`."""

    def _row_gradient(self, y, eta, w):
        diff = eta - y
        return w * diff, 0.5 * w * diff * diff


class MultinomialGradientTask(RowTask):
    """Gradient of the softmax cross-entropy over all class blocks.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    beta : ndarray of shape (n_classes, full_n + 1)
        Class-major coefficients; flat vectors are reshaped.
    obj_reg : float, default 1.0
        Scaling of the data term of the objective.
    l2_penalty : float, default 0.0
        Ridge penalty on non-intercept entries.
    job_key : object, optional
        Opaque job identifier.
    """

    def __init__(self, dinfo, beta, obj_reg=1.0, l2_penalty=0.0, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_class_beta(beta)
        self.n_classes = self.beta.shape[0]
        self.obj_reg = float(obj_reg)
        self.l2_penalty = float(l2_penalty)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"gradient": np.zeros((self.n_classes, self.n_coefs)), "likelihood": 0.0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset) + rows.offset[:, None]
        y = rows.response.astype(np.int64)
        lse = logsumexp(eta, axis=1)
        idx = np.arange(len(y))
        state["likelihood"] -= float(np.sum(rows.weight * (eta[idx, y] - lse)))
        p = np.exp(eta - lse[:, None])
        p[idx, y] -= 1.0
        G = rows.weight[:, None] * p
        g = state["gradient"]
        g[:, :-1] += np.asarray(rows.design_matrix().T @ G).T
        g[:, -1] += G.sum(axis=0)

    def post_global(self, state):
        g = state["gradient"].copy()
        if needs_centering(self.dinfo):
            center_vector(g, self.dinfo)
        self._zero_intercept(g)
        g *= self.obj_reg
        g[:, :-1] += self.l2_penalty * self.beta[:, :-1]
        return GradientResult(gradient=g, likelihood=float(state["likelihood"]))


def make_gradient_task(dinfo, family, beta, obj_reg=1.0, l2_penalty=0.0, job_key=None):
    """Pick the gradient task for a family once, outside the row loop.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family
        Family name or strategy.
    beta : ndarray
        Coefficients (class-major matrix for multinomial).
    obj_reg : float, default 1.0
        Scaling of the data term.
    l2_penalty : float, default 0.0
        Ridge penalty.
    job_key : object, optional
        Opaque job identifier.

    Returns
    -------
    RowTask
        The closed-form task for binomial-logit and gaussian-identity, the
        softmax task for multinomial, and the generic task otherwise.
    """
    family = get_family(family)
    kwargs = {"obj_reg": obj_reg, "l2_penalty": l2_penalty, "job_key": job_key}
    if isinstance(family, MultinomialFamily):
        return MultinomialGradientTask(dinfo, beta, **kwargs)
    if isinstance(family, BinomialFamily):
        return BinomialGradientTask(dinfo, beta, **kwargs)
    if isinstance(family, GaussianFamily):
        return GaussianGradientTask(dinfo, beta, **kwargs)
    return GenericGradientTask(dinfo, family, beta, **kwargs)
