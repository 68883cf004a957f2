"""PySpark distributed backend for glmstats tasks."""

from ._runner import spark_run_task
from ._utils import (
    frame_columns,
    get_default_partitions,
    get_or_create_spark,
    is_spark_dataframe,
    partition_frame,
    validate_spark_input,
)

__all__ = [
    "frame_columns",
    "get_default_partitions",
    "get_or_create_spark",
    "is_spark_dataframe",
    "partition_frame",
    "spark_run_task",
    "validate_spark_input",
]
