"""Row-accumulation task substrate shared by every backend."""

from __future__ import annotations

import logging
import warnings

import numpy as np

from glmstats.core.centering import sparse_offset
from glmstats.core.config import DEFAULT_SPLIT_EVERY, get_option
from glmstats.core.errors import NonFiniteResultError

__all__ = ["RowTask", "check_finite", "sum_stats", "tree_reduce_local"]

log = logging.getLogger("glmstats.distributed.base")


def sum_stats(a, b):
    """Pairwise sum for tree-reduce of partition state dicts.

    Parameters
    ----------
    a, b : dict or None
        Per-partition accumulator states. Values are floats, arrays or
        :class:`~glmstats.core.gram.Gram` objects.

    Returns
    -------
    dict or None
        Element-wise sum of the two dicts.
    """
    if a is None:
        return b
    if b is None:
        return a
    result = {}
    for key in a:
        if a[key] is None:
            result[key] = b[key]
        elif b[key] is None:
            result[key] = a[key]
        else:
            result[key] = a[key] + b[key]
    return result


def tree_reduce_local(states, combine_fn, split_every=DEFAULT_SPLIT_EVERY):
    """Reduce in-memory states with the same grouping as the Dask tree reduce.

    Parameters
    ----------
    states : list
        Partial states, one per partition.
    combine_fn : callable
        Pairwise combiner ``(a, b) -> c``.
    split_every : int, default 8
        Number of states combined per reduction step.

    Returns
    -------
    object
        The fully reduced state.
    """
    if not states:
        raise ValueError("Cannot reduce an empty list of partition states.")
    while len(states) > 1:
        reduced = []
        for i in range(0, len(states), split_every):
            group = states[i : i + split_every]
            acc = group[0]
            for item in group[1:]:
                acc = combine_fn(acc, item)
            reduced.append(acc)
        states = reduced
    return states[0]


def check_finite(result, what):
    """Apply the ``on_nonfinite`` policy to a result with ``has_nans_or_infs``."""
    if not result.has_nans_or_infs():
        return result
    msg = f"{what} produced NaN or Inf values in its reduced statistics."
    if get_option("on_nonfinite") == "raise":
        raise NonFiniteResultError(msg)
    warnings.warn(msg, RuntimeWarning, stacklevel=3)
    return result


class RowTask:
    """Base class of the map/reduce tasks over row partitions.

    A task is constructed on the driver with the current coefficients, shipped
    to every partition, and run as::

        state = task.map_partition(block)      # once per partition
        state = task.reduce(state_a, state_b)  # pairwise, any order
        result = task.post_global(state)       # once, on the driver

    Subclasses implement :meth:`partition_init`, :meth:`process_rows` and
    :meth:`post_global`. Tasks that write per-row outputs set
    ``updates_rows = True``.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor.
    job_key : object, optional
        Opaque identifier of the calling job, passed through unmodified.
    """

    updates_rows = False

    def __init__(self, dinfo, job_key=None):
        self.dinfo = dinfo
        self.job_key = job_key

    def __repr__(self):
        return f"{type(self).__name__}(full_n={self.dinfo.full_n}, job_key={self.job_key!r})"

    @property
    def n_coefs(self):
        return self.dinfo.full_n + 1

    def partition_init(self):
        """Zeroed accumulator state for one partition."""
        raise NotImplementedError

    def process_rows(self, state, rows):
        """Accumulate the valid rows of a partition into ``state``."""
        raise NotImplementedError

    def reduce(self, a, b):
        return sum_stats(a, b)

    def post_global(self, state):
        """Finalize the fully reduced state into a result."""
        raise NotImplementedError

    def map_partition(self, block):
        """Run the task over one partition and return its state."""
        state = self.partition_init()
        rows = block.select(block.valid_mask())
        if len(rows):
            self.process_rows(state, rows)
        return state

    def map_partition_with_rows(self, block):
        """Like :meth:`map_partition`, also returning the (updated) partition."""
        return self.map_partition(block), block

    def _check_beta(self, beta):
        beta = np.asarray(beta, dtype=np.float64)
        if beta.shape != (self.n_coefs,):
            raise ValueError(f"beta must have shape ({self.n_coefs},), got {beta.shape}.")
        return beta

    def _check_class_beta(self, beta, n_classes=None):
        beta = np.asarray(beta, dtype=np.float64)
        if beta.ndim == 1:
            if beta.size % self.n_coefs:
                raise ValueError(f"Flat multinomial beta length {beta.size} is not a multiple of {self.n_coefs}.")
            beta = beta.reshape(-1, self.n_coefs)
        if beta.ndim != 2 or beta.shape[1] != self.n_coefs:
            raise ValueError(f"Multinomial beta must have shape (n_classes, {self.n_coefs}), got {beta.shape}.")
        if n_classes is not None and beta.shape[0] != n_classes:
            raise ValueError(f"Expected {n_classes} class blocks, got {beta.shape[0]}.")
        return beta

    def _sparse_offset(self, beta):
        return sparse_offset(beta, self.dinfo)

    def _linear_predictor(self, rows, beta, soff):
        """Inner product plus sparse offset, without the row offset."""
        return rows.inner_product(beta) + soff

    def _zero_intercept(self, v):
        """Drop the intercept entries of a gradient or cross product without intercept."""
        if not self.dinfo.intercept:
            v[..., -1] = 0.0
        return v
