"""Tests for local task execution and the shared reduce helpers."""

import numpy as np
import pytest

from glmstats.core.config import option_context
from glmstats.core.datainfo import DataInfo
from glmstats.core.errors import NonFiniteResultError
from glmstats.core.rows import RowBlock
from glmstats.distributed import (
    IterationTask,
    LSTask,
    ResponseStatsTask,
    RowTask,
    make_gradient_task,
    run_task,
    sum_stats,
    tree_reduce_local,
)


class _CountTask(RowTask):
    def partition_init(self):
        return {"n": 0}

    def process_rows(self, state, rows):
        state["n"] += len(rows)

    def post_global(self, state):
        return state["n"]


class _FailingTask(_CountTask):
    def process_rows(self, state, rows):
        raise RuntimeError("partition failed")


@pytest.mark.parametrize("n_partitions", [1, 3, 7])
@pytest.mark.parametrize("n_jobs", [1, 3])
@pytest.mark.parametrize("split_every", [2, 8])
def test_partition_invariance(mixed_frame, make_dinfo, make_beta, n_partitions, n_jobs, split_every):
    dinfo = make_dinfo("y_pois", sparse=True)
    beta = make_beta(dinfo)
    reference = run_task(IterationTask(dinfo, "poisson", beta), dinfo.make_block(mixed_frame))
    result = run_task(
        IterationTask(dinfo, "poisson", beta),
        dinfo.partition(mixed_frame, n_partitions),
        n_jobs=n_jobs,
        split_every=split_every,
    )
    np.testing.assert_allclose(result.gram.to_dense(), reference.gram.to_dense(), rtol=1e-10, atol=1e-10)
    np.testing.assert_allclose(result.xy, reference.xy, rtol=1e-10, atol=1e-10)
    assert result.likelihood == pytest.approx(reference.likelihood, rel=1e-12)
    assert result.nobs == reference.nobs


def test_gradient_partition_invariance(mixed_frame, make_dinfo, make_beta):
    dinfo = make_dinfo("y_bin")
    beta = make_beta(dinfo)
    a = run_task(make_gradient_task(dinfo, "binomial", beta), dinfo.partition(mixed_frame, 1))
    b = run_task(make_gradient_task(dinfo, "binomial", beta), dinfo.partition(mixed_frame, 6), n_jobs=2)
    np.testing.assert_allclose(a.gradient, b.gradient, rtol=1e-10, atol=1e-12)


def test_options_supply_defaults(mixed_frame, make_dinfo):
    dinfo = make_dinfo()
    parts = dinfo.partition(mixed_frame, 5)
    with option_context(n_jobs=2, split_every=2):
        result = run_task(_CountTask(dinfo), parts)
    assert result == mixed_frame.height


def test_single_block_accepted(mixed_frame, make_dinfo):
    dinfo = make_dinfo()
    assert run_task(_CountTask(dinfo), dinfo.make_block(mixed_frame)) == mixed_frame.height


def test_empty_partition_list_raises(make_dinfo):
    with pytest.raises(ValueError, match="at least one partition"):
        run_task(_CountTask(make_dinfo()), [])


def test_non_block_partition_raises(make_dinfo, mixed_frame):
    with pytest.raises(TypeError, match="RowBlock"):
        run_task(_CountTask(make_dinfo()), [mixed_frame])


def test_partition_exception_propagates(mixed_frame, make_dinfo):
    dinfo = make_dinfo()
    with pytest.raises(RuntimeError, match="partition failed"):
        run_task(_FailingTask(dinfo), dinfo.partition(mixed_frame, 3), n_jobs=2)


class TestNonFinite:
    @pytest.fixture
    def infinite_block(self):
        return RowBlock.from_numeric(np.array([[1.0], [2.0]]), [1.0, np.inf])

    def test_raises_by_default(self, infinite_block):
        with pytest.raises(NonFiniteResultError, match="LSTask"):
            run_task(LSTask(DataInfo(n_nums=1)), infinite_block)

    def test_warns_when_configured(self, infinite_block):
        with option_context(on_nonfinite="warn"):
            with pytest.warns(RuntimeWarning, match="NaN or Inf"):
                result = run_task(LSTask(DataInfo(n_nums=1)), infinite_block)
        assert not np.isfinite(result.xy).all()

    def test_is_floating_point_error(self, infinite_block):
        with pytest.raises(FloatingPointError):
            run_task(LSTask(DataInfo(n_nums=1)), infinite_block)


def test_fully_skipped_partition_contributes_nothing(mixed_frame, make_dinfo):
    dinfo = make_dinfo()
    parts = dinfo.partition(mixed_frame, 3)
    parts[1].weight[:] = 0.0
    stats = run_task(ResponseStatsTask(dinfo), parts)
    assert stats.nobs == len(parts[0]) + len(parts[2])


class TestTreeReduceLocal:
    @pytest.mark.parametrize("split_every", [2, 3, 8])
    def test_sums(self, split_every):
        assert tree_reduce_local(list(range(1, 21)), lambda a, b: a + b, split_every=split_every) == 210

    def test_preserves_order(self):
        assert tree_reduce_local(list("abcdefg"), lambda a, b: a + b, split_every=2) == "abcdefg"

    def test_single_state(self):
        assert tree_reduce_local([5], lambda a, b: a + b) == 5

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="empty"):
            tree_reduce_local([], lambda a, b: a + b)


class TestSumStats:
    def test_adds_values(self):
        a = {"x": 1.0, "v": np.array([1.0, 2.0])}
        b = {"x": 2.0, "v": np.array([3.0, 4.0])}
        result = sum_stats(a, b)
        assert result["x"] == 3.0
        np.testing.assert_array_equal(result["v"], [4.0, 6.0])

    def test_none_states(self):
        a = {"x": 1.0}
        assert sum_stats(None, a) is a
        assert sum_stats(a, None) is a

    def test_none_values(self):
        result = sum_stats({"x": None, "y": 1.0}, {"x": np.ones(2), "y": None})
        np.testing.assert_array_equal(result["x"], [1.0, 1.0])
        assert result["y"] == 1.0
