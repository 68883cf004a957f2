"""Deviance, response statistics and squared-error passes used to monitor a fit."""

from __future__ import annotations

import logging
from typing import NamedTuple

import numpy as np
from scipy.special import logsumexp

from glmstats.core.families import MultinomialFamily, get_family

from ._base import RowTask, check_finite

__all__ = [
    "DevianceResult",
    "MultinomialResidualDevianceTask",
    "NullDevianceResult",
    "NullDevianceTask",
    "ResidualDevianceTask",
    "ResponseStats",
    "ResponseStatsTask",
    "SSEResult",
    "SSETask",
]

log = logging.getLogger("glmstats.distributed.diagnostics")


class NullDevianceResult(NamedTuple):
    """Deviance of the intercept-only model."""

    deviance: float
    nobs: int

    def has_nans_or_infs(self):
        return not np.isfinite(self.deviance)


class DevianceResult(NamedTuple):
    """Residual deviance and negative log-likelihood at the coefficients."""

    deviance: float
    likelihood: float

    def has_nans_or_infs(self):
        return not (np.isfinite(self.deviance) and np.isfinite(self.likelihood))


class SSEResult(NamedTuple):
    """Weighted squared residual between linear predictor and working response.

    Attributes
    ----------
    weighted_sse : float
        :math:`\\sum w (\\eta - z)^2`.
    weighted_count : float
        :math:`\\sum w`, the denominator for a dispersion estimate.
    """

    weighted_sse: float
    weighted_count: float

    def has_nans_or_infs(self):
        return not (np.isfinite(self.weighted_sse) and np.isfinite(self.weighted_count))


class ResponseStats(NamedTuple):
    """Weighted summary of the response (and optionally numeric features).

    Attributes
    ----------
    mean : float
        Weighted response mean.
    variance : float
        Weighted response variance :math:`\\sum w (y - \\bar y)^2 / \\sum w`.
    ymin, ymax : float
        Response range over contributing rows.
    nobs : int
        Number of contributing rows.
    wsum : float
        Sum of prior weights.
    class_freq : ndarray of shape (n_classes,) or None
        Weighted class frequencies of a categorical response.
    feature_means, feature_sigmas : ndarray of shape (n_nums,) or None
        Weighted means and standard deviations of the numeric columns as
        stored in the partitions.
    """

    mean: float
    variance: float
    ymin: float
    ymax: float
    nobs: int
    wsum: float
    class_freq: np.ndarray | None = None
    feature_means: np.ndarray | None = None
    feature_sigmas: np.ndarray | None = None

    @property
    def sigma(self):
        return float(np.sqrt(self.variance))


class NullDevianceTask(RowTask):
    """Deviance of the model that predicts the global response mean.

    Each row is scored at :math:`g^{-1}(g(\\bar y) + \\text{offset})`, so
    offsets shift the baseline the same way they shift the fitted model.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family
        Single-class family.
    ymu : float
        Global (weighted) response mean.
    job_key : object, optional
        Opaque job identifier.

    Raises
    ------
    NotImplementedError
        For the multinomial family.
    """

    def __init__(self, dinfo, family, ymu, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Null deviance is not implemented for the multinomial family.")
        self.ymu = float(np.asarray(ymu, dtype=np.float64).ravel()[0])
        self.eta0 = float(self.family.link_fun(self.ymu))

    def partition_init(self):
        return {"deviance": 0.0, "nobs": 0}

    def process_rows(self, state, rows):
        mu = self.family.link_inv(self.eta0 + rows.offset)
        state["deviance"] += float(np.sum(rows.weight * self.family.deviance(rows.response, mu)))
        state["nobs"] += len(rows)

    def post_global(self, state):
        result = NullDevianceResult(float(state["deviance"]), int(state["nobs"]))
        return check_finite(result, type(self).__name__)


class ResidualDevianceTask(RowTask):
    """Residual deviance and likelihood of a single-class model at ``beta``."""

    def __init__(self, dinfo, family, beta, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Use MultinomialResidualDevianceTask for the multinomial family.")
        self.beta = self._check_beta(beta)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"deviance": 0.0, "likelihood": 0.0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        gw = self.family.compute_weights(rows.response, eta, rows.offset, rows.weight)
        state["deviance"] += float(gw.dev.sum())
        state["likelihood"] += float(gw.l.sum())

    def post_global(self, state):
        result = DevianceResult(float(state["deviance"]), float(state["likelihood"]))
        return check_finite(result, type(self).__name__)


class MultinomialResidualDevianceTask(RowTask):
    """Softmax likelihood at class-major coefficients; the deviance is twice it."""

    def __init__(self, dinfo, beta, n_classes=None, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.beta = self._check_class_beta(beta, n_classes)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"likelihood": 0.0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset) + rows.offset[:, None]
        y = rows.response.astype(np.int64)
        eta_y = eta[np.arange(len(y)), y]
        state["likelihood"] -= float(np.sum(rows.weight * (eta_y - logsumexp(eta, axis=1))))

    def post_global(self, state):
        likelihood = float(state["likelihood"])
        return check_finite(DevianceResult(2.0 * likelihood, likelihood), type(self).__name__)


class SSETask(RowTask):
    """Weighted squared error of the linear predictor against the working response.

    For the gaussian family the working response is ``y - offset`` with the
    prior weights; other families use their IRLS weights at ``beta``.
    """

    def __init__(self, dinfo, family, beta, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Squared error is not implemented for the multinomial family.")
        self.beta = self._check_beta(beta)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"sse": 0.0, "wsum": 0.0}

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        if self.family.name == "gaussian":
            w, z = rows.weight, rows.response - rows.offset
        else:
            gw = self.family.compute_weights(rows.response, eta, rows.offset, rows.weight)
            w, z = gw.w, gw.z
        state["sse"] += float(np.sum(w * (eta - z) ** 2))
        state["wsum"] += float(w.sum())

    def post_global(self, state):
        return check_finite(SSEResult(float(state["sse"]), float(state["wsum"])), type(self).__name__)


class ResponseStatsTask(RowTask):
    """Weighted mean, range and variance of the response in one pass.

    Each partition computes its mean and sum of squared deviations directly;
    partitions are combined with the pairwise update of Chan et al., which
    stays accurate when partition means differ widely.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    n_classes : int, default 1
        Number of response classes; above 1 the weighted class frequencies
        are computed as well.
    feature_stats : bool, default False
        Also compute weighted means and standard deviations of the numeric
        columns.
    job_key : object, optional
        Opaque job identifier.
    """

    def __init__(self, dinfo, n_classes=1, feature_stats=False, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.n_classes = int(n_classes)
        self.feature_stats = bool(feature_stats)

    def partition_init(self):
        state = {
            "nobs": 0,
            "wsum": 0.0,
            "mean": 0.0,
            "m2": 0.0,
            "ymin": np.inf,
            "ymax": -np.inf,
            "class_wsum": np.zeros(self.n_classes) if self.n_classes > 1 else None,
        }
        if self.feature_stats:
            state["fmean"] = np.zeros(self.dinfo.n_nums)
            state["fm2"] = np.zeros(self.dinfo.n_nums)
        return state

    def process_rows(self, state, rows):
        w, y = rows.weight, rows.response
        wsum = float(w.sum())
        state.update(nobs=len(rows), wsum=wsum, ymin=float(y.min()), ymax=float(y.max()))
        if self.n_classes > 1:
            state["class_wsum"] = np.bincount(y.astype(np.int64), weights=w, minlength=self.n_classes)
        if wsum == 0:
            # moments are undefined; the partition only adds to the counts and range
            return
        mean = float(w @ y) / wsum
        state.update(mean=mean, m2=float(w @ (y - mean) ** 2))
        if self.feature_stats:
            X = rows.nums
            if rows.is_sparse:
                fmean = np.asarray(X.T @ w).ravel() / wsum
                fm2 = np.asarray(X.multiply(X).T @ w).ravel() - wsum * fmean**2
            else:
                fmean = w @ X / wsum
                fm2 = w @ (X - fmean) ** 2
            state["fmean"], state["fm2"] = fmean, fm2

    def reduce(self, a, b):
        out = {
            "nobs": a["nobs"] + b["nobs"],
            "wsum": a["wsum"] + b["wsum"],
            "ymin": min(a["ymin"], b["ymin"]),
            "ymax": max(a["ymax"], b["ymax"]),
            "class_wsum": None if a["class_wsum"] is None else a["class_wsum"] + b["class_wsum"],
        }
        keys = ["mean", "m2"] + (["fmean", "fm2"] if self.feature_stats else [])
        if a["wsum"] == 0 or b["wsum"] == 0 or out["wsum"] == 0:
            # only partitions with a nonzero weight sum carry moments
            src = b if a["wsum"] == 0 else a
            out.update({k: src[k] for k in keys})
            return out
        out["mean"], out["m2"] = _chan_merge(a["mean"], a["m2"], a["wsum"], b["mean"], b["m2"], b["wsum"])
        if self.feature_stats:
            out["fmean"], out["fm2"] = _chan_merge(a["fmean"], a["fm2"], a["wsum"], b["fmean"], b["fm2"], b["wsum"])
        return out

    def post_global(self, state):
        wsum = state["wsum"]
        if wsum == 0:
            log.warning("ResponseStatsTask: no rows with positive weight")
        variance = state["m2"] / wsum if wsum > 0 else np.nan
        class_freq = None
        if state["class_wsum"] is not None:
            class_freq = state["class_wsum"] / wsum if wsum > 0 else np.full(self.n_classes, np.nan)
        feature_means = feature_sigmas = None
        if self.feature_stats and wsum > 0:
            feature_means = state["fmean"]
            feature_sigmas = np.sqrt(np.maximum(state["fm2"], 0.0) / wsum)
        return ResponseStats(
            mean=float(state["mean"]) if wsum > 0 else np.nan,
            variance=float(variance),
            ymin=float(state["ymin"]),
            ymax=float(state["ymax"]),
            nobs=int(state["nobs"]),
            wsum=float(wsum),
            class_freq=class_freq,
            feature_means=feature_means,
            feature_sigmas=feature_sigmas,
        )


def _chan_merge(mean_a, m2_a, w_a, mean_b, m2_b, w_b):
    """Combine weighted means and squared-deviation sums of two disjoint sets."""
    w = w_a + w_b
    delta = mean_b - mean_a
    mean = mean_a + delta * (w_b / w)
    m2 = m2_a + m2_b + delta * delta * (w_a * w_b / w)
    return mean, m2
