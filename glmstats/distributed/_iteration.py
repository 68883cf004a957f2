"""Gram and cross-product passes of IRLS, plus the per-row weight and softmax caches."""

from __future__ import annotations

import logging
from typing import NamedTuple

import numpy as np

from glmstats.core.centering import center_gram, center_vector, needs_centering
from glmstats.core.config import PROB_FLOOR
from glmstats.core.families import BinomialFamily, MultinomialFamily, get_family
from glmstats.core.gram import Gram

from ._base import RowTask, check_finite

__all__ = [
    "BinomialWeightsTask",
    "GenericWeightsTask",
    "IterationResult",
    "IterationTask",
    "LSTask",
    "MultinomialCacheResult",
    "MultinomialCacheTask",
    "MultinomialCacheUpdateTask",
    "MultinomialIterationTask",
    "MultinomialWeightsTask",
    "WLSTask",
    "WeightsResult",
]

log = logging.getLogger("glmstats.distributed.iteration")


class IterationResult(NamedTuple):
    """Sufficient statistics of one weighted least-squares solve.

    Attributes
    ----------
    gram : Gram
        Weighted Gram matrix :math:`X^T W X`, intercept row last.
    xy : ndarray of shape (full_n + 1,)
        Cross product :math:`X^T W z`.
    likelihood : float
        Negative log-likelihood at the coefficients the weights were built from.
    nobs : int
        Number of rows that contributed.
    wsum : float
        Sum of working weights.
    wsumu : float
        Sum of prior observation weights.
    sumsqe : float
        Weighted squared working residual :math:`\\sum w (z - \\eta)^2`; with no
        coefficients :math:`\\eta = 0` and this is :math:`z^T W z`.
    """

    gram: Gram
    xy: np.ndarray
    likelihood: float
    nobs: int
    wsum: float
    wsumu: float
    sumsqe: float

    def has_nans_or_infs(self):
        return self.gram.has_nans_or_infs() or not np.isfinite(self.xy).all()


class WeightsResult(NamedTuple):
    """Totals of a pass that writes per-row working weights and responses."""

    likelihood: float
    wsum: float
    nobs: int

    def has_nans_or_infs(self):
        return not np.isfinite(self.likelihood)


class MultinomialCacheResult(NamedTuple):
    """Totals of a softmax cache pass.

    Attributes
    ----------
    likelihood : float or None
        Multinomial negative log-likelihood; ``None`` for incremental updates.
    nobs : int
        Number of rows cached.
    recomputed : int
        Rows whose denominator was rebuilt from every class instead of patched.
    """

    likelihood: float | None
    nobs: int
    recomputed: int = 0

    def has_nans_or_infs(self):
        return self.likelihood is not None and not np.isfinite(self.likelihood)


class _GramTask(RowTask):
    """Accumulation of Gram, cross product and counters shared by the IRLS passes."""

    def partition_init(self):
        return {
            "gram": Gram(self.dinfo.full_n, self.dinfo.largest_cat),
            "xy": np.zeros(self.n_coefs),
            "likelihood": 0.0,
            "nobs": 0,
            "wsum": 0.0,
            "wsumu": 0.0,
            "sumsqe": 0.0,
        }

    def _accumulate(self, state, rows, w, wz):
        state["gram"].add_rows(rows, w)
        xy = state["xy"]
        xy[:-1] += rows.design_matrix().T @ wz
        xy[-1] += wz.sum()
        state["nobs"] += len(rows)
        state["wsum"] += float(w.sum())

    def post_global(self, state):
        gram, xy = state["gram"], state["xy"]
        if needs_centering(self.dinfo):
            center_gram(gram, self.dinfo)
            center_vector(xy, self.dinfo)
        self._zero_intercept(xy)
        result = IterationResult(
            gram=gram,
            xy=xy,
            likelihood=float(state["likelihood"]),
            nobs=int(state["nobs"]),
            wsum=float(state["wsum"]),
            wsumu=float(state["wsumu"]),
            sumsqe=float(state["sumsqe"]),
        )
        log.debug("%s: nobs=%d wsum=%g %r", type(self).__name__, result.nobs, result.wsum, gram)
        return check_finite(result, type(self).__name__)


class LSTask(_GramTask):
    """Plain weighted least squares on ``y - offset`` with the prior weights."""

    def process_rows(self, state, rows):
        z = self._least_squares(state, rows)
        state["wsumu"] += float(rows.weight.sum())
        state["sumsqe"] += float(np.sum(rows.weight * z * z))

    def _least_squares(self, state, rows):
        w = rows.weight
        z = rows.response - rows.offset
        self._accumulate(state, rows, w, w * z)
        return z


class WLSTask(LSTask):
    """Weighted least squares on the IRLS working response.

    Each row's weight and response are rewritten to the working weight and
    response of ``family`` at ``beta`` (the offset is consumed), then the row
    goes through the plain least-squares accumulation.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family
        Single-class family.
    beta : ndarray of shape (full_n + 1,)
        Current coefficients.
    job_key : object, optional
        Opaque job identifier.
    """

    def __init__(self, dinfo, family, beta, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Use MultinomialIterationTask for multinomial weighted least squares.")
        self.beta = self._check_beta(beta)
        self.sparse_offset = self._sparse_offset(self.beta)

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        gw = self.family.compute_weights(rows.response, eta, rows.offset, rows.weight)
        self._least_squares(state, rows.replace(response=gw.z, weight=gw.w, offset=0.0))
        state["wsumu"] += float(rows.weight.sum())
        state["sumsqe"] += float(np.sum(gw.w * (gw.z - eta) ** 2))
        state["likelihood"] += float(gw.l.sum())


class IterationTask(_GramTask):
    """One IRLS pass: Gram, cross product and likelihood together.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family, optional
        Single-class family; required when ``beta`` is given.
    beta : ndarray of shape (full_n + 1,), optional
        Current coefficients. Without them the pass is plain least squares
        on ``y - offset`` with the prior weights.
    job_key : object, optional
        Opaque job identifier.
    """

    def __init__(self, dinfo, family=None, beta=None, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = None if family is None else get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Use MultinomialIterationTask for the multinomial family.")
        if beta is not None and self.family is None:
            raise ValueError("A family is required to compute IRLS weights from beta.")
        self.beta = None if beta is None else self._check_beta(beta)
        self.sparse_offset = 0.0 if beta is None else self._sparse_offset(self.beta)

    def process_rows(self, state, rows):
        if self.beta is None:
            w = rows.weight
            z = rows.response - rows.offset
            resid = z
        else:
            eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
            gw = self.family.compute_weights(rows.response, eta, rows.offset, rows.weight)
            w, z = gw.w, gw.z
            resid = z - eta
            state["likelihood"] += float(gw.l.sum())
        self._accumulate(state, rows, w, w * z)
        state["wsumu"] += float(rows.weight.sum())
        state["sumsqe"] += float(np.sum(w * resid * resid))


def _class_response(rows, class_id):
    return (rows.response == class_id).astype(np.float64)


def _class_probability(rows, eta):
    """Softmax probability of ``class_id`` from the cached denominator."""
    max_row = rows.get_output("max_row")
    sum_exp = rows.get_output("sum_exp")
    mu = np.exp(eta + rows.offset - max_row) / sum_exp
    return np.clip(mu, PROB_FLOOR, 1.0 - PROB_FLOOR)


class MultinomialIterationTask(_GramTask):
    """IRLS pass for one class of a multinomial model.

    Class membership is the binary response; the class probability comes from
    the row's cached softmax denominator (see :class:`MultinomialCacheTask`),
    so only this class's logit is computed.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    beta_c : ndarray of shape (full_n + 1,)
        Current coefficients of class ``class_id``.
    class_id : int
        Class being updated.
    job_key : object, optional
        Opaque job identifier.
    """

    def __init__(self, dinfo, beta_c, class_id, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_beta(beta_c)
        self.class_id = int(class_id)
        self.sparse_offset = self._sparse_offset(self.beta)

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        y = _class_response(rows, self.class_id)
        mu = _class_probability(rows, eta)
        d = mu * (1.0 - mu)
        w = rows.weight * d
        self._accumulate(state, rows, w, rows.weight * (eta * d + (y - mu)))
        state["wsumu"] += float(rows.weight.sum())
        state["sumsqe"] += float(np.sum(rows.weight * (y - mu) ** 2 / d))
        state["likelihood"] -= float(np.sum(rows.weight * y * np.log(mu)))


class GenericWeightsTask(RowTask):
    """Write per-row IRLS working weight ``w``, response ``z`` and mean ``mu``.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family
        Single-class family.
    beta : ndarray of shape (full_n + 1,)
        Current coefficients.
    job_key : object, optional
        Opaque job identifier.
    """

    updates_rows = True

    def __init__(self, dinfo, family, beta, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Use MultinomialWeightsTask for the multinomial family.")
        self.beta = self._check_beta(beta)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"likelihood": 0.0, "wsum": 0.0, "nobs": 0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        gw = self.family.compute_weights(rows.response, eta, rows.offset, rows.weight)
        rows.set_output("w", gw.w)
        rows.set_output("z", gw.z)
        rows.set_output("mu", gw.mu)
        state["likelihood"] += float(gw.l.sum())
        state["wsum"] += float(gw.w.sum())
        state["nobs"] += len(rows)

    def post_global(self, state):
        result = WeightsResult(float(state["likelihood"]), float(state["wsum"]), int(state["nobs"]))
        return check_finite(result, type(self).__name__)


class BinomialWeightsTask(GenericWeightsTask):
    """Working weights of the logistic model through the closed-form strategy."""

    def __init__(self, dinfo, beta, job_key=None):
        super().__init__(dinfo, BinomialFamily(), beta, job_key=job_key)


class MultinomialWeightsTask(RowTask):
    """Write the working weight, response and probability of one class.

    Uses the cached softmax denominator. The returned likelihood is the
    share of the rows whose response is ``class_id``, so the shares of all
    classes add up to the multinomial likelihood.
    """

    updates_rows = True

    def __init__(self, dinfo, beta_c, class_id, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_beta(beta_c)
        self.class_id = int(class_id)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"likelihood": 0.0, "wsum": 0.0, "nobs": 0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        y = _class_response(rows, self.class_id)
        mu = _class_probability(rows, eta)
        d = mu * (1.0 - mu)
        w = rows.weight * d
        rows.set_output("w", w)
        rows.set_output("z", eta + (y - mu) / d)
        rows.set_output("mu", mu)
        state["likelihood"] -= float(np.sum(rows.weight * y * np.log(mu)))
        state["wsum"] += float(w.sum())
        state["nobs"] += len(rows)

    def post_global(self, state):
        result = WeightsResult(float(state["likelihood"]), float(state["wsum"]), int(state["nobs"]))
        return check_finite(result, type(self).__name__)


class MultinomialCacheTask(RowTask):
    """Cache every row's stabilized softmax denominator.

    Writes the row outputs ``max_row`` (largest logit) and ``sum_exp``
    (:math:`\\sum_c e^{\\eta_c - \\text{max\\_row}}`), so per-class passes
    only need their own logit. The multinomial likelihood comes for free.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    beta : ndarray of shape (n_classes, full_n + 1)
        Class-major coefficients.
    job_key : object, optional
        Opaque job identifier.
    """

    updates_rows = True

    def __init__(self, dinfo, beta, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_class_beta(beta)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"likelihood": 0.0, "nobs": 0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset) + rows.offset[:, None]
        max_row = eta.max(axis=1)
        sum_exp = np.exp(eta - max_row[:, None]).sum(axis=1)
        rows.set_output("max_row", max_row)
        rows.set_output("sum_exp", sum_exp)
        y = rows.response.astype(np.int64)
        eta_y = eta[np.arange(len(y)), y]
        state["likelihood"] -= float(np.sum(rows.weight * (eta_y - max_row - np.log(sum_exp))))
        state["nobs"] += len(rows)

    def post_global(self, state):
        result = MultinomialCacheResult(float(state["likelihood"]), int(state["nobs"]))
        return check_finite(result, type(self).__name__)


class MultinomialCacheUpdateTask(RowTask):
    """Patch the cached softmax denominators after one class's coefficients moved.

    Each row swaps the old numerator of ``class_id`` for the new one and
    rescales when the new logit exceeds the cached maximum. When the removed
    numerator made up most of the denominator the subtraction would cancel,
    so those rows are recomputed from every class.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    beta : ndarray of shape (n_classes, full_n + 1)
        Coefficients after the update of ``class_id``.
    class_id : int
        Class whose coefficients changed.
    beta_old_c : ndarray of shape (full_n + 1,)
        Coefficients of ``class_id`` the cache was built with.
    job_key : object, optional
        Opaque job identifier.
    """

    updates_rows = True

    def __init__(self, dinfo, beta, class_id, beta_old_c, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_class_beta(beta)
        self.class_id = int(class_id)
        if not 0 <= self.class_id < self.beta.shape[0]:
            raise ValueError(f"class_id must be in [0, {self.beta.shape[0]}), got {class_id}.")
        self.beta_old = self._check_beta(beta_old_c)
        self.sparse_offset = self._sparse_offset(self.beta)
        self.sparse_offset_old = self._sparse_offset(self.beta_old)

    def partition_init(self):
        return {"nobs": 0, "recomputed": 0}

    def process_rows(self, state, rows):
        c = self.class_id
        max_row = rows.get_output("max_row")
        sum_exp = rows.get_output("sum_exp")
        eta_old = self._linear_predictor(rows, self.beta_old, self.sparse_offset_old) + rows.offset
        eta_new = self._linear_predictor(rows, self.beta[c], self.sparse_offset[c]) + rows.offset
        new_max = np.maximum(max_row, eta_new)
        scaled = sum_exp * np.exp(max_row - new_max)
        removed = np.exp(eta_old - new_max)
        new_sum = scaled - removed + np.exp(eta_new - new_max)
        stale = removed > 0.5 * scaled
        if stale.any():
            sub = rows.select(stale)
            eta = self._linear_predictor(sub, self.beta, self.sparse_offset) + sub.offset[:, None]
            new_max[stale] = eta.max(axis=1)
            new_sum[stale] = np.exp(eta - new_max[stale][:, None]).sum(axis=1)
        rows.set_output("max_row", new_max)
        rows.set_output("sum_exp", new_sum)
        state["nobs"] += len(rows)
        state["recomputed"] += int(stale.sum())

    def post_global(self, state):
        log.debug("cache update: %d of %d rows recomputed", state["recomputed"], state["nobs"])
        return MultinomialCacheResult(None, int(state["nobs"]), int(state["recomputed"]))
