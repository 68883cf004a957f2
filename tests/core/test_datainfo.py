"""Tests for the feature-space descriptor and frame-to-partition conversion."""

import numpy as np
import polars as pl
import pytest

from glmstats.core.datainfo import DataInfo


def test_layout_from_frame(make_dinfo):
    dinfo = make_dinfo()
    assert dinfo.cat_names == ["color", "size"]
    assert dinfo.cat_sizes == [3, 2]
    assert dinfo.largest_cat == 3
    assert dinfo.num_start == 5
    assert dinfo.num_names == ["x1", "x2"]
    assert dinfo.full_n == 7
    assert dinfo.n_coefs == 8
    assert dinfo.cat_domains[0] == ["black", "blue", "green", "red"]
    assert dinfo.coef_names() == [
        "color.blue",
        "color.green",
        "color.red",
        "size.M",
        "size.S",
        "x1",
        "x2",
        "Intercept",
    ]


def test_categoricals_ordered_by_level_count(mixed_frame):
    dinfo = DataInfo.from_frame(mixed_frame, "y_gauss", predictors=["x1", "size", "color"])
    assert dinfo.cat_names == ["color", "size"]


def test_use_all_factor_levels(make_dinfo):
    dinfo = make_dinfo(use_all_factor_levels=True)
    assert dinfo.cat_sizes == [4, 3]
    assert dinfo.coef_names()[0] == "color.black"


def test_standardization_stats(make_dinfo, mixed_frame):
    dinfo = make_dinfo()
    x1 = mixed_frame["x1"].to_numpy()
    np.testing.assert_allclose(dinfo.norm_sub[0], x1.mean())
    np.testing.assert_allclose(dinfo.norm_mul[0], 1.0 / x1.std(ddof=1))
    assert make_dinfo(standardize=False).norm_sub is None


def test_constant_column_keeps_unit_scale():
    df = pl.DataFrame({"y": [1.0, 2.0, 3.0], "c": [5.0, 5.0, 5.0]})
    dinfo = DataInfo.from_frame(df, "y")
    assert dinfo.norm_mul[0] == 1.0


def test_categorical_response_domain(make_dinfo):
    dinfo = make_dinfo("y_class")
    assert dinfo.response_domain == ["a", "b", "c"]


def test_missing_columns_raise(mixed_frame):
    with pytest.raises(ValueError, match="not found"):
        DataInfo.from_frame(mixed_frame, "y_gauss", predictors=["nope"])
    with pytest.raises(ValueError, match="not found"):
        DataInfo.from_frame(mixed_frame, "missing_response")


def test_invalid_missing_policy():
    with pytest.raises(ValueError, match="missing-value policy"):
        DataInfo(n_nums=1, missing="drop")


def test_norm_shape_checked():
    with pytest.raises(ValueError, match="norm_sub"):
        DataInfo(n_nums=2, norm_sub=[1.0])


def test_make_block_dense(make_dinfo, mixed_frame):
    dinfo = make_dinfo()
    block = dinfo.make_block(mixed_frame)
    assert len(block) == mixed_frame.height
    assert block.num_start == 5
    assert not block.is_sparse
    expected = (mixed_frame["x1"].to_numpy() - dinfo.norm_sub[0]) * dinfo.norm_mul[0]
    np.testing.assert_allclose(block.nums[:, 0], expected)
    np.testing.assert_allclose(block.weight, mixed_frame["w"].to_numpy())
    np.testing.assert_allclose(block.offset, mixed_frame["o"].to_numpy())
    assert not block.bad.any()


def test_make_block_sparse_is_uncentered(make_dinfo, mixed_frame):
    dinfo = make_dinfo(sparse=True)
    block = dinfo.make_block(mixed_frame)
    assert block.is_sparse
    x2 = mixed_frame["x2"].to_numpy()
    np.testing.assert_allclose(block.nums[:, 1].toarray().ravel(), x2 * dinfo.norm_mul[1])
    assert block.nums.nnz < 2 * mixed_frame.height


def test_reference_and_unseen_levels_activate_nothing(make_dinfo):
    dinfo = make_dinfo()
    df = pl.DataFrame(
        {
            "color": ["black", "red", "purple"],
            "size": ["L", "S", "M"],
            "x1": [1.0, 2.0, 3.0],
            "x2": [0.0, 0.0, 1.0],
            "w": [1.0, 1.0, 1.0],
            "o": [0.0, 0.0, 0.0],
            "y_gauss": [0.1, 0.2, 0.3],
        }
    )
    block = dinfo.make_block(df)
    np.testing.assert_array_equal(block.cats, [[-1, -1], [2, 4], [-1, 3]])
    assert not block.bad.any()


@pytest.fixture
def frame_with_missing():
    return pl.DataFrame(
        {
            "color": ["black", None, "red", "blue"],
            "x1": [1.0, 2.0, None, 4.0],
            "w": [1.0, 1.0, 1.0, None],
            "y": [0.5, 1.5, 2.5, None],
        }
    )


def test_missing_skip_marks_rows_bad(frame_with_missing):
    dinfo = DataInfo.from_frame(frame_with_missing, "y", predictors=["color", "x1"], weights="w")
    block = dinfo.make_block(frame_with_missing)
    np.testing.assert_array_equal(block.bad, [False, True, True, True])
    assert np.isfinite(block.nums).all()


def test_missing_mean_impute(frame_with_missing):
    dinfo = DataInfo.from_frame(frame_with_missing, "y", predictors=["color", "x1"], weights="w", missing="mean_impute")
    block = dinfo.make_block(frame_with_missing)
    # only the missing response and weight still disqualify a row
    np.testing.assert_array_equal(block.bad, [False, False, False, True])
    # an imputed mean standardizes to zero
    assert block.nums[2, 0] == pytest.approx(0.0)
    assert block.cats[1, 0] == -1


def test_make_block_requires_frame_descriptor():
    with pytest.raises(ValueError, match="not built from a frame"):
        DataInfo(n_nums=1).make_block(pl.DataFrame({"x": [1.0]}))


@pytest.mark.parametrize("n_partitions", [1, 4, 7])
def test_partition(make_dinfo, mixed_frame, n_partitions):
    blocks = make_dinfo().partition(mixed_frame, n_partitions)
    assert len(blocks) == n_partitions
    assert sum(len(b) for b in blocks) == mixed_frame.height
    np.testing.assert_array_equal(np.concatenate([b.response for b in blocks]), mixed_frame["y_gauss"].to_numpy())


def test_partition_rejects_zero(make_dinfo, mixed_frame):
    with pytest.raises(ValueError, match="positive"):
        make_dinfo().partition(mixed_frame, 0)


def test_pandas_frame_accepted(make_dinfo, mixed_frame):
    pytest.importorskip("pyarrow")
    dinfo = make_dinfo()
    block = dinfo.make_block(mixed_frame.to_pandas())
    np.testing.assert_allclose(block.nums, dinfo.make_block(mixed_frame).nums)


class TestColumnRefs:
    def test_order_and_positions(self, make_dinfo):
        refs = make_dinfo().column_refs()
        assert [r.kind for r in refs] == ["categorical", "categorical", "numeric", "numeric", "intercept"]
        assert [r.start for r in refs] == [0, 3, 5, 6, 7]
        assert refs[0].size == 3
        assert all(r.center == 0.0 for r in refs)

    def test_sparse_centers(self, make_dinfo):
        dinfo = make_dinfo(sparse=True)
        refs = dinfo.column_refs()
        np.testing.assert_allclose([refs[2].center, refs[3].center], dinfo.norm_sub * dinfo.norm_mul)

    def test_active_levels_sorted(self, make_dinfo):
        refs = make_dinfo().column_refs({0: [2, 0]})
        np.testing.assert_array_equal(refs[0].active_levels, [0, 2])
        assert refs[1].active_levels is None

