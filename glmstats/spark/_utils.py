"""Shared Spark utilities."""

from __future__ import annotations

from glmstats.core.dataframe import to_polars


def is_spark_dataframe(data) -> bool:
    """Check if data is a PySpark DataFrame.

    Parameters
    ----------
    data : object
        Input data to check.

    Returns
    -------
    bool
        True if data is a ``pyspark.sql.DataFrame``.
    """
    try:
        from pyspark.sql import DataFrame as SparkDataFrame

        return isinstance(data, SparkDataFrame)
    except ImportError:
        _type_name = type(data).__module__ + "." + type(data).__qualname__
        if "pyspark" in _type_name.lower():
            raise ImportError(
                f"Input data appears to be a PySpark object ({_type_name}) but "
                "the spark extra is not installed. Install with: "
                "pip install 'glmstats[spark]'"
            ) from None
        return False


def validate_spark_input(sdf, required_cols):
    """Validate that a Spark DataFrame has the required columns.

    Parameters
    ----------
    sdf : pyspark.sql.DataFrame
        The Spark DataFrame to validate.
    required_cols : list of str
        Column names that must be present.

    Raises
    ------
    ValueError
        If any required columns are missing.
    """
    missing = [c for c in required_cols if c not in sdf.columns]
    if missing:
        raise ValueError(f"Columns not found in Spark DataFrame: {missing}")


def get_default_partitions(spark):
    """Compute default partition count from Spark default parallelism.

    Parameters
    ----------
    spark : pyspark.sql.SparkSession
        Active Spark session.

    Returns
    -------
    int
        Recommended number of partitions (default parallelism, minimum 1).
    """
    return max(spark.sparkContext.defaultParallelism, 1)


def get_or_create_spark(spark=None):
    """Get an existing SparkSession or create a local one.

    Parameters
    ----------
    spark : pyspark.sql.SparkSession or None
        An existing Spark session. If None, attempts to get the active
        session or creates a new local session.

    Returns
    -------
    pyspark.sql.SparkSession
        A Spark session.
    """
    from pyspark.sql import SparkSession

    if spark is not None:
        return spark
    active = SparkSession.getActiveSession()
    if active is not None:
        return active
    return SparkSession.builder.master("local[*]").appName("glmstats").getOrCreate()


def frame_columns(dinfo):
    """Columns of the input frame that ``dinfo`` reads, in a stable order."""
    cols = [dinfo.response, *dinfo.cat_names, *dinfo.num_names, dinfo.weights, dinfo.offset]
    return [c for c in dict.fromkeys(cols) if c is not None]


def partition_frame(dinfo, df, n_partitions=None, spark=None):
    """Load the columns ``dinfo`` reads from a local frame into Spark.

    Parameters
    ----------
    dinfo : DataInfo
        Feature-space descriptor built from ``df``.
    df : DataFrame
        Polars or Arrow-compatible frame.
    n_partitions : int, optional
        Number of Spark partitions; the session's default parallelism by
        default.
    spark : pyspark.sql.SparkSession, optional
        Session to use; the active one (or a new local one) by default.

    Returns
    -------
    pyspark.sql.DataFrame
        Frame ready for :func:`~glmstats.spark.spark_run_task`.
    """
    spark = get_or_create_spark(spark)
    if n_partitions is None:
        n_partitions = get_default_partitions(spark)
    pdf = to_polars(df).select(frame_columns(dinfo)).to_pandas()
    return spark.createDataFrame(pdf).repartition(n_partitions)
