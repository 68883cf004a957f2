"""Tests for running row tasks over Spark DataFrame partitions."""

import numpy as np
import pytest

pytest.importorskip("pyspark")

from glmstats.distributed import (
    GenericWeightsTask,
    IterationTask,
    NullDevianceTask,
    ResponseStatsTask,
    make_gradient_task,
    run_task,
)
from glmstats.spark import (
    frame_columns,
    get_default_partitions,
    get_or_create_spark,
    is_spark_dataframe,
    partition_frame,
    spark_run_task,
    validate_spark_input,
)


def test_is_spark_dataframe(spark_frame, mixed_frame):
    assert is_spark_dataframe(spark_frame)
    assert not is_spark_dataframe(mixed_frame)


def test_session_helpers(spark_session):
    assert get_or_create_spark(spark_session) is spark_session
    assert get_default_partitions(spark_session) == 2


def test_partition_frame(spark_session, mixed_frame, make_dinfo):
    dinfo = make_dinfo("y_pois")
    sdf = partition_frame(dinfo, mixed_frame, n_partitions=3, spark=spark_session)
    assert sdf.columns == frame_columns(dinfo)
    assert sdf.rdd.getNumPartitions() == 3
    assert partition_frame(dinfo, mixed_frame, spark=spark_session).rdd.getNumPartitions() == 2

    remote = spark_run_task(ResponseStatsTask(dinfo), sdf)
    local = run_task(ResponseStatsTask(dinfo), dinfo.make_block(mixed_frame))
    assert remote.nobs == local.nobs
    assert remote.mean == pytest.approx(local.mean, rel=1e-12)


def test_validate_spark_input(spark_frame):
    validate_spark_input(spark_frame, ["y_gauss", "x1"])
    with pytest.raises(ValueError, match="not_here"):
        validate_spark_input(spark_frame, ["y_gauss", "not_here"])


@pytest.mark.parametrize("sparse", [False, True])
def test_iteration_matches_local(spark_frame, mixed_frame, make_dinfo, make_beta, sparse):
    dinfo = make_dinfo("y_pois", sparse=sparse)
    beta = make_beta(dinfo)
    remote = spark_run_task(IterationTask(dinfo, "poisson", beta), spark_frame)
    local = run_task(IterationTask(dinfo, "poisson", beta), dinfo.partition(mixed_frame, 3))
    np.testing.assert_allclose(remote.gram.to_dense(), local.gram.to_dense(), rtol=1e-10, atol=1e-10)
    np.testing.assert_allclose(remote.xy, local.xy, rtol=1e-10, atol=1e-10)
    assert remote.likelihood == pytest.approx(local.likelihood, rel=1e-10)
    assert remote.nobs == mixed_frame.height


def test_gradient_matches_local(spark_frame, mixed_frame, make_dinfo, make_beta):
    dinfo = make_dinfo("y_bin")
    beta = make_beta(dinfo)
    remote = spark_run_task(make_gradient_task(dinfo, "binomial", beta, l2_penalty=0.1), spark_frame)
    local = run_task(make_gradient_task(dinfo, "binomial", beta, l2_penalty=0.1), dinfo.make_block(mixed_frame))
    np.testing.assert_allclose(remote.gradient, local.gradient, rtol=1e-10, atol=1e-12)


def test_response_stats_match_local(spark_frame, mixed_frame, make_dinfo):
    dinfo = make_dinfo("y_class")
    remote = spark_run_task(ResponseStatsTask(dinfo, n_classes=3), spark_frame, split_every=2)
    local = run_task(ResponseStatsTask(dinfo, n_classes=3), dinfo.make_block(mixed_frame))
    assert remote.nobs == local.nobs
    assert remote.mean == pytest.approx(local.mean, rel=1e-12)
    assert remote.variance == pytest.approx(local.variance, rel=1e-10)
    np.testing.assert_allclose(remote.class_freq, local.class_freq, rtol=1e-12)


def test_explicit_dinfo(spark_frame, mixed_frame, make_dinfo):
    dinfo = make_dinfo("y_pois")
    remote = spark_run_task(NullDevianceTask(dinfo, "poisson", 1.2), spark_frame, dinfo=dinfo)
    local = run_task(NullDevianceTask(dinfo, "poisson", 1.2), dinfo.make_block(mixed_frame))
    assert remote.deviance == pytest.approx(local.deviance, rel=1e-10)


def test_row_output_tasks_rejected(spark_frame, make_dinfo, make_beta):
    dinfo = make_dinfo("y_pois")
    with pytest.raises(NotImplementedError, match="row outputs"):
        spark_run_task(GenericWeightsTask(dinfo, "poisson", make_beta(dinfo)), spark_frame)


def test_non_spark_input_rejected(mixed_frame, make_dinfo):
    with pytest.raises(TypeError, match="pyspark.sql.DataFrame"):
        spark_run_task(ResponseStatsTask(make_dinfo()), mixed_frame)


def test_missing_columns_rejected(spark_frame, make_dinfo):
    dinfo = make_dinfo()
    with pytest.raises(ValueError, match="x2"):
        spark_run_task(ResponseStatsTask(dinfo), spark_frame.drop("x2"))
