"""Sequential coordinate descent on the IRLS working response.

A sweep updates one column at a time. Every round is a map/reduce over the
partitions that maintains a per-row partial prediction ``ztilda`` (the
linear predictor without the column being updated) and accumulates the
partial correlation ``sum w x (z - ztilda)`` needed by the univariate
update. Rounds depend on the previous round's coefficient, so the loop over
columns is sequential even though every round is parallel over rows.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

import numpy as np

from glmstats.core.centering import centering_vector, needs_centering
from glmstats.core.families import MultinomialFamily, get_family

from ._base import RowTask, check_finite
from ._runner import run_task

__all__ = [
    "CoordinateDescentResult",
    "CoordinateDescentTask",
    "CoordinateWeightsResult",
    "GenerateWeightsTask",
    "coordinate_descent_sweep",
    "soft_threshold",
]

log = logging.getLogger("glmstats.distributed.coordinate")


class CoordinateWeightsResult(NamedTuple):
    """Column denominators and totals of the weight-generation pass.

    Attributes
    ----------
    denums : ndarray of shape (full_n + 1,)
        :math:`\\sum w x_j^2` per expanded column; the intercept entry is
        :math:`\\sum w`.
    wsum : float
        Sum of working weights.
    wsumu : float
        Sum of prior weights.
    likelihood : float
        Negative log-likelihood at the coefficients.
    nobs : int
        Number of contributing rows.
    """

    denums: np.ndarray
    wsum: float
    wsumu: float
    likelihood: float
    nobs: int

    def has_nans_or_infs(self):
        return not np.isfinite(self.denums).all()


class CoordinateDescentResult(NamedTuple):
    """Partial correlations of one coordinate-descent round.

    Attributes
    ----------
    temp : ndarray
        :math:`\\sum w x (z - \\tilde z)` per coefficient of the current column
        (per active level for categoricals).
    nobs : int
        Number of contributing rows.
    """

    temp: np.ndarray
    nobs: int

    def has_nans_or_infs(self):
        return not np.isfinite(self.temp).all()


def soft_threshold(x, threshold):
    """Lasso shrinkage operator :math:`\\mathrm{sign}(x) \\max(|x| - t, 0)`."""
    return np.sign(x) * np.maximum(np.abs(x) - threshold, 0.0)


class GenerateWeightsTask(RowTask):
    """Prepare the rows for a coordinate-descent sweep.

    Writes the row outputs ``w`` and ``z`` (IRLS working weight and response
    at ``beta``) and ``ztilda`` (linear predictor without the intercept), and
    accumulates the column denominators.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    family : str or Family
        Single-class family.
    beta : ndarray of shape (full_n + 1,)
        Coefficients the weights are computed at.
    job_key : object, optional
        Opaque job identifier.
    """

    updates_rows = True

    def __init__(self, dinfo, family, beta, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.family = get_family(family)
        if isinstance(self.family, MultinomialFamily):
            raise NotImplementedError("Coordinate descent weights are not implemented for the multinomial family.")
        self.beta = self._check_beta(beta)
        self.sparse_offset = self._sparse_offset(self.beta)

    def partition_init(self):
        return {"denums": np.zeros(self.n_coefs), "wsum": 0.0, "wsumu": 0.0, "likelihood": 0.0, "nobs": 0}

    def map_partition(self, block):
        # rows that are skipped must not keep outputs from an earlier sweep
        for name in ("w", "z", "ztilda"):
            block.set_output(name, 0.0)
        return super().map_partition(block)

    def process_rows(self, state, rows):
        eta = self._linear_predictor(rows, self.beta, self.sparse_offset)
        gw = self.family.compute_weights(rows.response, eta, rows.offset, rows.weight)
        rows.set_output("w", gw.w)
        rows.set_output("z", gw.z)
        rows.set_output("ztilda", eta - self.beta[-1] if self.dinfo.intercept else eta)

        X = rows.design_matrix()
        m = centering_vector(self.dinfo)[:-1] if needs_centering(self.dinfo) else 0.0
        wx = X.T @ gw.w
        wxx = X.multiply(X).T @ gw.w
        wsum = float(gw.w.sum())
        denums = state["denums"]
        denums[:-1] += wxx - 2.0 * m * wx + m * m * wsum
        denums[-1] += wsum
        state["wsum"] += wsum
        state["wsumu"] += float(rows.weight.sum())
        state["likelihood"] += float(gw.l.sum())
        state["nobs"] += len(rows)

    def post_global(self, state):
        result = CoordinateWeightsResult(
            denums=state["denums"],
            wsum=float(state["wsum"]),
            wsumu=float(state["wsumu"]),
            likelihood=float(state["likelihood"]),
            nobs=int(state["nobs"]),
        )
        return check_finite(result, type(self).__name__)


class CoordinateDescentTask(RowTask):
    """One coordinate-descent round for column ``current``.

    On entry ``ztilda`` lacks the contribution of ``previous``, whose
    coefficients were just updated to ``beta_new``. For every row the task
    removes the current column's old contribution, adds the previous
    column's new one, then accumulates ``w * x_cur * (z - ztilda)``.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    current : ColumnRef
        Column being updated (categorical, numeric or intercept).
    previous : ColumnRef or None
        Column updated in the previous round; ``None`` when nothing changed.
    beta_old : array_like
        Coefficients of ``current`` before the update, one per (active) level.
    beta_new : array_like
        Updated coefficients of ``previous``.
    job_key : object, optional
        Opaque job identifier.
    """

    updates_rows = True

    def __init__(self, dinfo, current, previous, beta_old, beta_new, job_key=None):
        super().__init__(dinfo, job_key=job_key)
        self.current = current
        self.previous = previous
        self.beta_old = np.atleast_1d(np.asarray(beta_old, dtype=np.float64))
        self.beta_new = np.atleast_1d(np.asarray(beta_new, dtype=np.float64))
        if self.beta_old.shape != (_width(current),):
            raise ValueError(f"beta_old must have {_width(current)} entries, got {self.beta_old.shape}.")
        if previous is not None and self.beta_new.shape != (_width(previous),):
            raise ValueError(f"beta_new must have {_width(previous)} entries, got {self.beta_new.shape}.")

    def partition_init(self):
        return {"temp": np.zeros(_width(self.current)), "nobs": 0}

    def process_rows(self, state, rows):
        pos, val = rows.column(self.current)
        hit = pos >= 0
        ztilda = rows.get_output("ztilda") - np.where(hit, val * self.beta_old[np.maximum(pos, 0)], 0.0)
        if self.previous is not None:
            ppos, pval = rows.column(self.previous)
            ztilda = ztilda + np.where(ppos >= 0, pval * self.beta_new[np.maximum(ppos, 0)], 0.0)
        rows.set_output("ztilda", ztilda)
        w = rows.get_output("w")
        contrib = w * val * (rows.get_output("z") - ztilda)
        np.add.at(state["temp"], pos[hit], contrib[hit])
        state["nobs"] += int(np.count_nonzero(w))

    def post_global(self, state):
        return check_finite(CoordinateDescentResult(state["temp"], int(state["nobs"])), type(self).__name__)


def _width(ref):
    if ref.active_levels is not None:
        return len(ref.active_levels)
    return ref.size


def _positions(ref):
    """Expanded coefficient indices of a column's (active) levels."""
    if ref.active_levels is not None:
        return ref.start + np.asarray(ref.active_levels, dtype=np.int64)
    return ref.start + np.arange(ref.size)


def coordinate_descent_sweep(
    partitions,
    dinfo,
    beta,
    denums,
    l1=0.0,
    l2=0.0,
    active_levels=None,
    runner=None,
    job_key=None,
):
    """Update every coefficient once, column by column.

    The partitions must carry the outputs of :class:`GenerateWeightsTask`,
    and ``ztilda`` must exclude the intercept, which holds after weight
    generation and after every completed sweep. Each variable is updated in
    turn and the intercept last.

    Parameters
    ----------
    partitions : list
        Row partitions (or backend handles accepted by ``runner``).
    dinfo : DataInfo
        Feature-space descriptor.
    beta : ndarray of shape (full_n + 1,)
        Coefficients at the start of the sweep.
    denums : ndarray of shape (full_n + 1,)
        Column denominators from :class:`GenerateWeightsTask`.
    l1, l2 : float, default 0.0
        Lasso and ridge penalties (the intercept is not penalized).
    active_levels : dict of int to array_like, optional
        Active level subsets of categorical variables; inactive levels keep
        their coefficients.
    runner : callable, optional
        ``runner(task, partitions) -> result``; the local
        :func:`~glmstats.distributed.run_task` by default.
    job_key : object, optional
        Opaque job identifier.

    Returns
    -------
    ndarray of shape (full_n + 1,)
        Updated coefficients.
    """
    if runner is None:
        runner = run_task

    beta = np.array(beta, dtype=np.float64)
    denums = np.asarray(denums, dtype=np.float64)
    if beta.shape != (dinfo.full_n + 1,) or denums.shape != beta.shape:
        raise ValueError(f"beta and denums must have shape ({dinfo.full_n + 1},).")
    if not dinfo.intercept:
        beta[-1] = 0.0

    refs = dinfo.column_refs(active_levels)
    intercept = refs[-1]
    previous, beta_prev = intercept, beta[-1:].copy()
    for ref in refs:
        idx = _positions(ref)
        task = CoordinateDescentTask(dinfo, ref, previous, beta[idx], beta_prev, job_key=job_key)
        temp = runner(task, partitions).temp
        log.debug("coordinate round %s[%d]: %d coefficients", ref.kind, ref.index, len(idx))
        if ref.is_intercept:
            if dinfo.intercept:
                beta[idx] = np.divide(temp, denums[idx], out=np.zeros_like(temp), where=denums[idx] > 0)
        else:
            denom = denums[idx] + l2
            beta[idx] = np.divide(soft_threshold(temp, l1), denom, out=np.zeros_like(temp), where=denom > 0)
        previous, beta_prev = ref, beta[idx].copy()
    return beta
