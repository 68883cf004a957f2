"""Dask distributed backend for glmstats tasks."""

from ._runner import dask_run_task, tree_reduce
from ._utils import get_default_partitions, get_or_create_client, partition_frame, scatter_partitions

__all__ = [
    "dask_run_task",
    "get_default_partitions",
    "get_or_create_client",
    "partition_frame",
    "scatter_partitions",
    "tree_reduce",
]
