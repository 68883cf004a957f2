"""Local execution of row tasks over in-memory partitions."""

from __future__ import annotations

import logging

from glmstats.core.config import get_option
from glmstats.core.parallel import parallel_map
from glmstats.core.rows import RowBlock

from ._base import tree_reduce_local

__all__ = ["run_task"]

log = logging.getLogger("glmstats.distributed.runner")


def run_task(task, partitions, n_jobs=None, split_every=None):
    """Map a task over row partitions, tree-reduce the states, finalize once.

    Partitions are processed in a thread pool (``n_jobs``), their states
    combined with the task's ``reduce`` in groups of ``split_every`` and the
    reduced state finalized with ``post_global``. Row outputs written by
    tasks with ``updates_rows = True`` land directly on the given
    partitions. An exception raised on any partition propagates unchanged.

    Parameters
    ----------
    task : RowTask
        Task to run.
    partitions : RowBlock or list of RowBlock
        Row partitions.
    n_jobs : int, optional
        Worker threads; defaults to the ``n_jobs`` option.
    split_every : int, optional
        Reduce fan-in; defaults to the ``split_every`` option.

    Returns
    -------
    NamedTuple
        The task's result.
    """
    if isinstance(partitions, RowBlock):
        partitions = [partitions]
    partitions = list(partitions)
    if not partitions:
        raise ValueError("run_task needs at least one partition.")
    for block in partitions:
        if not isinstance(block, RowBlock):
            raise TypeError(f"Expected RowBlock partitions, got {type(block).__name__}.")
    n_jobs = get_option("n_jobs") if n_jobs is None else n_jobs
    split_every = get_option("split_every") if split_every is None else split_every

    log.info("%s: %d partitions (job_key=%r)", type(task).__name__, len(partitions), task.job_key)
    states = parallel_map(task.map_partition, [(block,) for block in partitions], n_jobs=n_jobs)
    state = tree_reduce_local(states, task.reduce, split_every=split_every)
    return task.post_global(state)
