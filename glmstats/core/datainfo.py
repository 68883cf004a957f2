"""Feature-space descriptor: expansion of categoricals and numeric standardization."""

from __future__ import annotations

import logging

import numpy as np
import polars as pl
import scipy.sparse as sp

from .dataframe import is_categorical_dtype, to_polars
from .rows import ColumnRef, RowBlock

__all__ = ["DataInfo"]

log = logging.getLogger("glmstats.core.datainfo")

_MISSING_POLICIES = ("skip", "mean_impute")


class DataInfo:
    """Descriptor of the expanded feature space shared by every task.

    Categorical variables come first, each expanded into one column per
    level (the first level is the reference and is dropped unless
    ``use_all_factor_levels``). Numeric columns follow, starting at
    ``num_start``. The coefficient vector has one more entry for the
    intercept, which is always last.

    Parameters
    ----------
    cat_sizes : sequence of int, default ()
        Number of expanded columns of each categorical variable. The first
        one forms the compact diagonal block of the Gram matrix.
    n_nums : int, default 0
        Number of numeric columns.
    intercept : bool, default True
        Whether the model has an intercept.
    norm_sub, norm_mul : ndarray of shape (n_nums,), optional
        Standardization means and inverse scales of the numeric columns.
    sparse : bool, default False
        Whether numeric columns are stored sparsely (scaled but uncentered).
    cat_names, num_names : list of str, optional
        Column names.
    cat_domains : list of list, optional
        Levels of each categorical variable, reference level first.
    response, weights, offset : str, optional
        Column names of the response, prior weights and offset.
    response_domain : list, optional
        Class labels of a categorical response.
    num_means : ndarray of shape (n_nums,), optional
        Column means used to impute missing numeric values.
    use_all_factor_levels : bool, default False
        Keep the reference level of every categorical variable.
    missing : {"skip", "mean_impute"}, default "skip"
        Missing-value policy when building row partitions from frames.
    """

    def __init__(
        self,
        cat_sizes=(),
        n_nums=0,
        intercept=True,
        norm_sub=None,
        norm_mul=None,
        sparse=False,
        cat_names=None,
        num_names=None,
        cat_domains=None,
        response=None,
        weights=None,
        offset=None,
        response_domain=None,
        num_means=None,
        use_all_factor_levels=False,
        missing="skip",
    ):
        if missing not in _MISSING_POLICIES:
            raise ValueError(f"Unknown missing-value policy {missing!r}. Choose 'skip' or 'mean_impute'.")
        self.cat_sizes = [int(s) for s in cat_sizes]
        self.cat_offsets = np.concatenate([[0], np.cumsum(self.cat_sizes)]).astype(np.int64)
        self.n_nums = int(n_nums)
        self.intercept = bool(intercept)
        self.norm_sub = None if norm_sub is None else np.asarray(norm_sub, dtype=np.float64)
        self.norm_mul = None if norm_mul is None else np.asarray(norm_mul, dtype=np.float64)
        for name, arr in (("norm_sub", self.norm_sub), ("norm_mul", self.norm_mul)):
            if arr is not None and arr.shape != (self.n_nums,):
                raise ValueError(f"{name} must have shape ({self.n_nums},), got {arr.shape}.")
        self.sparse = bool(sparse)
        self.cat_names = list(cat_names) if cat_names is not None else [f"C{k + 1}" for k in range(self.n_cats)]
        self.num_names = list(num_names) if num_names is not None else [f"x{j + 1}" for j in range(self.n_nums)]
        self.cat_domains = cat_domains
        self.response = response
        self.weights = weights
        self.offset = offset
        self.response_domain = response_domain
        self.num_means = None if num_means is None else np.asarray(num_means, dtype=np.float64)
        self.use_all_factor_levels = bool(use_all_factor_levels)
        self.missing = missing

    def __repr__(self):
        return (
            f"DataInfo(cats={self.cat_sizes}, n_nums={self.n_nums}, full_n={self.full_n}, "
            f"intercept={self.intercept}, sparse={self.sparse}, standardized={self.norm_sub is not None})"
        )

    @property
    def n_cats(self):
        return len(self.cat_sizes)

    @property
    def num_start(self):
        return int(self.cat_offsets[-1])

    @property
    def full_n(self):
        return self.num_start + self.n_nums

    @property
    def largest_cat(self):
        """Width of the first categorical variable, stored as the Gram diagonal block."""
        return self.cat_sizes[0] if self.cat_sizes else 0

    @property
    def n_coefs(self):
        return self.full_n + 1

    def coef_names(self):
        names = []
        for k, name in enumerate(self.cat_names):
            if self.cat_domains is not None:
                levels = self.cat_domains[k] if self.use_all_factor_levels else self.cat_domains[k][1:]
                names.extend(f"{name}.{level}" for level in levels)
            else:
                names.extend(f"{name}.{i}" for i in range(self.cat_sizes[k]))
        names.extend(self.num_names)
        names.append("Intercept")
        return names

    def column_refs(self, active_levels=None):
        """Predictor columns in coordinate-descent order, intercept last.

        Parameters
        ----------
        active_levels : dict of int to array_like, optional
            Active level subsets keyed by categorical variable index.
        """
        active_levels = active_levels or {}
        refs = []
        for k, size in enumerate(self.cat_sizes):
            levels = active_levels.get(k)
            refs.append(
                ColumnRef(
                    "categorical",
                    index=k,
                    start=int(self.cat_offsets[k]),
                    size=size,
                    active_levels=None if levels is None else np.sort(np.asarray(levels, dtype=np.int64)),
                )
            )
        shift = np.zeros(self.n_nums)
        if self.sparse and self.norm_sub is not None:
            shift = self.norm_sub * (self.norm_mul if self.norm_mul is not None else 1.0)
        for j in range(self.n_nums):
            refs.append(ColumnRef("numeric", index=j, start=self.num_start + j, size=1, center=float(shift[j])))
        refs.append(ColumnRef("intercept", start=self.full_n, size=1))
        return refs

    @classmethod
    def from_frame(
        cls,
        df,
        response,
        predictors=None,
        weights=None,
        offset=None,
        intercept=True,
        standardize=True,
        sparse=False,
        use_all_factor_levels=False,
        missing="skip",
    ):
        """Describe the expanded feature space of a data frame.

        Categorical (string, categorical, enum and boolean) columns are
        expanded into level indicators and ordered by decreasing number of
        levels; numeric columns get standardization statistics.

        Parameters
        ----------
        df : DataFrame
            Polars frame or any Arrow-compatible frame.
        response : str
            Response column.
        predictors : list of str, optional
            Predictor columns; all remaining columns by default.
        weights, offset : str, optional
            Prior-weight and offset columns.
        intercept : bool, default True
            Include an intercept.
        standardize : bool, default True
            Standardize numeric columns to zero mean and unit variance.
        sparse : bool, default False
            Store numeric columns sparsely (centering deferred to the tasks).
        use_all_factor_levels : bool, default False
            Keep the reference level of every categorical.
        missing : {"skip", "mean_impute"}, default "skip"
            Drop rows with missing predictors, or impute numeric means
            (missing categoricals then activate no level).

        Returns
        -------
        DataInfo
            The descriptor.
        """
        df = to_polars(df)
        reserved = {response, weights, offset} - {None}
        missing_cols = [c for c in reserved if c not in df.columns]
        if predictors is None:
            predictors = [c for c in df.columns if c not in reserved]
        missing_cols += [c for c in predictors if c not in df.columns]
        if missing_cols:
            raise ValueError(f"Columns not found in data: {sorted(missing_cols)}")

        cats, nums = [], []
        for name in predictors:
            (cats if is_categorical_dtype(df.schema[name]) else nums).append(name)

        domains = {name: _domain(df[name]) for name in cats}
        cats.sort(key=lambda name: -len(domains[name]))
        drop = 0 if use_all_factor_levels else 1
        cat_sizes = [max(len(domains[name]) - drop, 0) for name in cats]

        num_means = norm_sub = norm_mul = None
        if nums:
            stats = df.select(
                [pl.col(c).cast(pl.Float64).mean().alias(f"{c}__mean") for c in nums]
                + [pl.col(c).cast(pl.Float64).std().alias(f"{c}__std") for c in nums]
            ).row(0)
            num_means = np.array([np.nan if v is None else v for v in stats[: len(nums)]], dtype=np.float64)
            sigma = np.array([np.nan if v is None else v for v in stats[len(nums) :]], dtype=np.float64)
            if standardize:
                norm_sub = num_means.copy()
                norm_mul = np.where(np.isfinite(sigma) & (sigma > 0), 1.0 / np.where(sigma > 0, sigma, 1.0), 1.0)

        response_domain = None
        if is_categorical_dtype(df.schema[response]):
            response_domain = _domain(df[response])

        dinfo = cls(
            cat_sizes=cat_sizes,
            n_nums=len(nums),
            intercept=intercept,
            norm_sub=norm_sub,
            norm_mul=norm_mul,
            sparse=sparse,
            cat_names=cats,
            num_names=nums,
            cat_domains=[domains[name] for name in cats],
            response=response,
            weights=weights,
            offset=offset,
            response_domain=response_domain,
            num_means=num_means,
            use_all_factor_levels=use_all_factor_levels,
            missing=missing,
        )
        log.debug("from_frame: %r", dinfo)
        return dinfo

    def make_block(self, df):
        """Convert a frame slice into a :class:`~glmstats.core.rows.RowBlock`.

        Parameters
        ----------
        df : DataFrame
            Frame with the columns named by this descriptor.

        Returns
        -------
        RowBlock
            Partition with expanded categoricals and scaled numerics.
        """
        if self.response is None:
            raise ValueError("DataInfo was not built from a frame; construct RowBlock objects directly.")
        df = to_polars(df)
        n = df.height
        bad = np.zeros(n, dtype=bool)

        if self.response_domain is not None:
            y, known = _level_index(df[self.response], self.response_domain)
            bad |= ~known
            y = y.astype(np.float64)
        else:
            y = df[self.response].cast(pl.Float64).to_numpy().astype(np.float64, copy=True)
            bad |= np.isnan(y)

        cats = np.full((n, self.n_cats), -1, dtype=np.int64)
        drop = 0 if self.use_all_factor_levels else 1
        for k, name in enumerate(self.cat_names):
            level, known = _level_index(df[name], self.cat_domains[k])
            is_null = df[name].is_null().to_numpy()
            if self.missing == "skip":
                bad |= is_null
            active = known & (level >= drop)
            cats[active, k] = self.cat_offsets[k] + level[active] - drop

        if self.n_nums:
            X = df.select([pl.col(c).cast(pl.Float64) for c in self.num_names]).to_numpy().astype(np.float64, copy=True)
            na = np.isnan(X)
            if self.missing == "skip":
                bad |= na.any(axis=1)
                X[na] = 0.0
            else:
                X = np.where(na, self.num_means, X)
            if self.norm_sub is not None:
                if not self.sparse:
                    X = X - self.norm_sub
                X = X * self.norm_mul
            if self.missing == "skip" and not self.sparse and self.norm_sub is not None:
                X[bad] = 0.0
            nums = sp.csr_matrix(X) if self.sparse else X
        else:
            nums = sp.csr_matrix((n, 0)) if self.sparse else np.zeros((n, 0))

        weight = None
        if self.weights is not None:
            weight = df[self.weights].cast(pl.Float64).to_numpy().astype(np.float64, copy=True)
            bad |= np.isnan(weight)
            weight = np.nan_to_num(weight, nan=0.0, posinf=np.inf, neginf=-np.inf)
        offset = None
        if self.offset is not None:
            offset = df[self.offset].cast(pl.Float64).to_numpy().astype(np.float64, copy=True)
            bad |= np.isnan(offset)
            offset = np.nan_to_num(offset, nan=0.0, posinf=np.inf, neginf=-np.inf)

        return RowBlock(
            np.nan_to_num(y, nan=0.0, posinf=np.inf, neginf=-np.inf),
            cats,
            nums,
            num_start=self.num_start,
            weight=weight,
            offset=offset,
            intercept=self.intercept,
            bad=bad,
        )

    def partition(self, df, n_partitions):
        """Split a frame into ``n_partitions`` contiguous row blocks."""
        if n_partitions < 1:
            raise ValueError(f"n_partitions must be positive, got {n_partitions}.")
        df = to_polars(df)
        bounds = np.linspace(0, df.height, n_partitions + 1).astype(int)
        return [self.make_block(df.slice(start, stop - start)) for start, stop in zip(bounds[:-1], bounds[1:])]


def _domain(series):
    """Sorted distinct non-null values of a column, as strings."""
    values = series.drop_nulls().cast(pl.String).unique().to_list()
    return sorted(values)


def _level_index(series, domain):
    """Index of each value in ``domain`` and whether it was found."""
    values = series.cast(pl.String).fill_null("").to_numpy().astype(str)
    levels = np.asarray(domain, dtype=str)
    if len(levels) == 0:
        return np.zeros(len(values), dtype=np.int64), np.zeros(len(values), dtype=bool)
    idx = np.searchsorted(levels, values)
    idx = np.clip(idx, 0, len(levels) - 1)
    known = (levels[idx] == values) & ~series.is_null().to_numpy()
    return idx.astype(np.int64), known
