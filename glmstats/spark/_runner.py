"""Run row tasks on Spark partitions via ``mapInPandas`` and a driver-side reduce."""

from __future__ import annotations

import logging
import pickle

import pandas as pd
import polars as pl
from pyspark.sql.types import BinaryType, StructField, StructType

from glmstats.core.config import get_option
from glmstats.distributed._base import tree_reduce_local

from ._utils import frame_columns, is_spark_dataframe, validate_spark_input

log = logging.getLogger("glmstats.spark.runner")


def spark_run_task(task, sdf, dinfo=None, split_every=None):
    """Run a row task over the partitions of a Spark DataFrame.

    Every Spark partition is converted to a
    :class:`~glmstats.core.rows.RowBlock` with ``dinfo.make_block`` and
    mapped by the task; the small pickled partial states are collected and
    reduced on the driver, where ``post_global`` runs once.

    Parameters
    ----------
    task : RowTask
        Task to run. Tasks that write row outputs are not supported since
        Spark partitions are immutable.
    sdf : pyspark.sql.DataFrame
        Input data with the columns named by ``dinfo``.
    dinfo : DataInfo, optional
        Descriptor built with :meth:`~glmstats.core.datainfo.DataInfo.from_frame`;
        defaults to ``task.dinfo``.
    split_every : int, optional
        Reduce fan-in; defaults to the ``split_every`` option.

    Returns
    -------
    NamedTuple
        The task's result.
    """
    logging.getLogger("py4j").setLevel(logging.ERROR)
    if not is_spark_dataframe(sdf):
        raise TypeError(f"Expected a pyspark.sql.DataFrame, got {type(sdf).__name__}.")
    if task.updates_rows:
        raise NotImplementedError(
            f"{type(task).__name__} writes row outputs, which Spark partitions cannot hold; "
            "use the local or dask runner."
        )
    dinfo = task.dinfo if dinfo is None else dinfo
    columns = frame_columns(dinfo)
    validate_spark_input(sdf, columns)
    split_every = get_option("split_every") if split_every is None else split_every

    out_schema = StructType([StructField("state_bytes", BinaryType(), False)])

    def _map_partition_udf(iterator):
        for pdf in iterator:
            if len(pdf) == 0:
                continue
            block = dinfo.make_block(pl.from_pandas(pdf))
            yield pd.DataFrame({"state_bytes": [pickle.dumps(task.map_partition(block))]})

    rows = sdf.select(*columns).mapInPandas(_map_partition_udf, schema=out_schema).collect()
    states = [pickle.loads(row["state_bytes"]) for row in rows]
    log.info("%s: %d partition states from spark (job_key=%r)", type(task).__name__, len(states), task.job_key)

    state = tree_reduce_local(states, task.reduce, split_every=split_every) if states else task.partition_init()
    return task.post_global(state)
