"""Row and row-partition containers consumed by the accumulation tasks."""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
import scipy.sparse as sp

__all__ = ["ColumnRef", "Row", "RowBlock"]


class Row(NamedTuple):
    """A single observation in the expanded feature space.

    Attributes
    ----------
    response : float
        Response value (class index for multinomial responses).
    weight : float
        Prior observation weight.
    offset : float
        Offset added to the linear predictor.
    bin_ids : ndarray of int
        Expanded indices of the active categorical levels, in column order.
    num_ids : ndarray of int or None
        Expanded indices of the stored numeric entries; ``None`` when the row
        is dense and ``num_vals`` covers every numeric column in order.
    num_vals : ndarray
        Numeric values (scaled, and centered unless the data is sparse).
    num_start : int
        Expanded index of the first numeric column.
    intercept : bool
        Whether the model has an intercept.
    bad : bool
        Whether the row carries a disqualifying missing value.
    """

    response: float
    weight: float
    offset: float
    bin_ids: np.ndarray
    num_ids: np.ndarray | None
    num_vals: np.ndarray
    num_start: int
    intercept: bool = True
    bad: bool = False

    @property
    def n_bins(self):
        return len(self.bin_ids)

    @property
    def n_nums(self):
        return len(self.num_vals)

    def numeric_ids(self):
        """Expanded indices of the numeric entries, dense rows included."""
        if self.num_ids is None:
            return np.arange(self.num_start, self.num_start + len(self.num_vals))
        return self.num_ids

    def inner_product(self, beta):
        """Linear predictor of this row (without offset) for coefficients ``beta``."""
        beta = np.asarray(beta, dtype=np.float64)
        eta = beta[self.bin_ids].sum() + self.num_vals @ beta[self.numeric_ids()]
        if self.intercept:
            eta += beta[-1]
        return float(eta)


class ColumnRef(NamedTuple):
    """Reference to one predictor column for coordinate descent.

    Attributes
    ----------
    kind : {"categorical", "numeric", "intercept"}
        Column kind.
    index : int
        Categorical variable index (position in ``RowBlock.cats``) or numeric
        column index (position in ``RowBlock.nums``); unused for the intercept.
    start : int
        Expanded index of the column's first coefficient.
    size : int
        Number of coefficients (levels for a categorical, 1 otherwise).
    center : float
        Value subtracted from stored numeric values before use; non-zero only
        for sparse (uncentered) standardized data.
    active_levels : ndarray of int or None
        Sorted subset of level indices with an active coefficient; rows whose
        level is not in the subset contribute nothing.
    """

    kind: str
    index: int = 0
    start: int = 0
    size: int = 1
    center: float = 0.0
    active_levels: np.ndarray | None = None

    @property
    def is_categorical(self):
        return self.kind == "categorical"

    @property
    def is_intercept(self):
        return self.kind == "intercept"


class RowBlock:
    """One partition of rows, stored column-wise.

    Parameters
    ----------
    response : ndarray of shape (n,)
        Responses.
    cats : ndarray of shape (n, n_cats)
        Expanded categorical bin ids per categorical variable, ``-1`` when no
        level of that variable is active (reference or unseen level).
    nums : ndarray or scipy.sparse matrix of shape (n, n_nums)
        Numeric values, already scaled (and centered when dense).
    num_start : int
        Expanded index of the first numeric column (width of the categorical block).
    weight : ndarray of shape (n,), optional
        Prior weights; ones when omitted.
    offset : ndarray of shape (n,), optional
        Offsets; zeros when omitted.
    intercept : bool, default True
        Whether the model has an intercept.
    bad : ndarray of shape (n,) of bool, optional
        Rows with a disqualifying missing value.
    aux : dict of str to ndarray, optional
        Per-row auxiliary output columns.
    """

    def __init__(
        self,
        response,
        cats,
        nums,
        num_start,
        weight=None,
        offset=None,
        intercept=True,
        bad=None,
        aux=None,
    ):
        self.response = np.asarray(response, dtype=np.float64)
        n = self.response.shape[0]
        self.cats = np.asarray(cats, dtype=np.int64)
        if self.cats.ndim != 2:
            self.cats = self.cats.reshape(n, -1)
        if sp.issparse(nums):
            self.nums = sp.csr_matrix(nums, dtype=np.float64)
        else:
            self.nums = np.asarray(nums, dtype=np.float64)
            if self.nums.ndim != 2:
                self.nums = self.nums.reshape(n, -1)
        if self.nums.shape[0] != n:
            raise ValueError(f"nums has {self.nums.shape[0]} rows, expected {n}.")
        self.num_start = int(num_start)
        self.weight = np.ones(n) if weight is None else np.asarray(weight, dtype=np.float64)
        self.offset = np.zeros(n) if offset is None else np.asarray(offset, dtype=np.float64)
        self.intercept = bool(intercept)
        self.bad = np.zeros(n, dtype=bool) if bad is None else np.asarray(bad, dtype=bool)
        self.aux = {} if aux is None else dict(aux)
        self._design = None
        self._parent = None
        self._index = None

    @classmethod
    def from_numeric(cls, X, y, weight=None, offset=None, intercept=True, sparse=False):
        """Build a block from a purely numeric design matrix.

        Rows with a missing response or predictor are flagged bad.
        """
        X_dense = X.toarray() if sp.issparse(X) else np.asarray(X, dtype=np.float64)
        if X_dense.ndim == 1:
            X_dense = X_dense.reshape(-1, 1)
        y = np.asarray(y, dtype=np.float64)
        bad = np.isnan(y) | np.isnan(X_dense).any(axis=1)
        X_dense = np.where(np.isnan(X_dense), 0.0, X_dense)
        nums = sp.csr_matrix(X_dense) if sparse or sp.issparse(X) else X_dense
        return cls(
            np.where(np.isnan(y), 0.0, y),
            np.empty((len(y), 0), dtype=np.int64),
            nums,
            num_start=0,
            weight=weight,
            offset=offset,
            intercept=intercept,
            bad=bad,
        )

    def __len__(self):
        return self.response.shape[0]

    def __iter__(self):
        for i in range(len(self)):
            yield self.row(i)

    def __repr__(self):
        return (
            f"RowBlock(n={len(self)}, n_cats={self.n_cats}, n_nums={self.n_nums}, "
            f"full_n={self.full_n}, sparse={self.is_sparse})"
        )

    @property
    def n_cats(self):
        return self.cats.shape[1]

    @property
    def n_nums(self):
        return self.nums.shape[1]

    @property
    def full_n(self):
        return self.num_start + self.n_nums

    @property
    def is_sparse(self):
        return sp.issparse(self.nums)

    def valid_mask(self):
        """Rows that take part in accumulation: not bad and with nonzero weight."""
        return ~self.bad & (self.weight != 0)

    def row(self, i):
        """Extract row ``i`` as a :class:`Row`."""
        bins = self.cats[i]
        bins = bins[bins >= 0]
        if self.is_sparse:
            start, stop = self.nums.indptr[i], self.nums.indptr[i + 1]
            num_ids = self.nums.indices[start:stop].astype(np.int64) + self.num_start
            num_vals = self.nums.data[start:stop].copy()
        else:
            num_ids = None
            num_vals = self.nums[i].copy()
        return Row(
            response=float(self.response[i]),
            weight=float(self.weight[i]),
            offset=float(self.offset[i]),
            bin_ids=bins,
            num_ids=num_ids,
            num_vals=num_vals,
            num_start=self.num_start,
            intercept=self.intercept,
            bad=bool(self.bad[i]),
        )

    def design_matrix(self):
        """Expanded design matrix without the intercept column, as CSR.

        Categorical levels become one-hot columns; only stored entries are
        materialized, so products with it cost O(nonzeros).
        """
        if self._design is None:
            n = len(self)
            rows, cols = np.nonzero(self.cats >= 0)
            cat_part = sp.csr_matrix(
                (np.ones(len(rows)), (rows, self.cats[rows, cols])),
                shape=(n, self.num_start),
            )
            num_part = self.nums if self.is_sparse else sp.csr_matrix(self.nums)
            parts = [part for part in (cat_part, num_part) if part.shape[1] > 0]
            if not parts:
                self._design = sp.csr_matrix((n, 0))
            elif len(parts) == 1:
                self._design = sp.csr_matrix(parts[0])
            else:
                self._design = sp.hstack(parts, format="csr")
        return self._design

    def inner_product(self, beta):
        """Linear predictor for every row, without offset.

        Parameters
        ----------
        beta : ndarray of shape (full_n + 1,) or (n_classes, full_n + 1)
            Coefficients, intercept last.

        Returns
        -------
        ndarray of shape (n,) or (n, n_classes)
            Linear predictors.
        """
        beta = np.asarray(beta, dtype=np.float64)
        X = self.design_matrix()
        if beta.ndim == 2:
            eta = np.asarray(X @ beta[:, : self.full_n].T)
            if self.intercept:
                eta = eta + beta[:, -1]
            return eta
        eta = np.asarray(X @ beta[: self.full_n]).ravel()
        if self.intercept:
            eta = eta + beta[-1]
        return eta

    def select(self, mask):
        """Sub-block of the rows in ``mask``.

        Outputs written with :meth:`set_output` on the sub-block are written
        through to this block.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.all():
            return self
        index = np.flatnonzero(mask)
        sub = RowBlock(
            self.response[index],
            self.cats[index],
            self.nums[index],
            num_start=self.num_start,
            weight=self.weight[index],
            offset=self.offset[index],
            intercept=self.intercept,
            bad=self.bad[index],
            aux={name: values[index] for name, values in self.aux.items()},
        )
        sub._parent = self
        sub._index = index
        return sub

    def replace(self, response=None, weight=None, offset=None):
        """Shallow copy with new response, weight or offset columns.

        Predictors and outputs are shared with this block, so the copy is a
        transient rewrite of the rows rather than a change to the partition.
        """
        other = RowBlock.__new__(RowBlock)
        other.__dict__.update(self.__dict__)
        if response is not None:
            other.response = np.broadcast_to(np.asarray(response, dtype=np.float64), self.response.shape)
        if weight is not None:
            other.weight = np.broadcast_to(np.asarray(weight, dtype=np.float64), self.weight.shape)
        if offset is not None:
            other.offset = np.broadcast_to(np.asarray(offset, dtype=np.float64), self.offset.shape)
        return other

    def get_output(self, name):
        """Auxiliary output column ``name``."""
        try:
            return self.aux[name]
        except KeyError:
            raise KeyError(f"Row output {name!r} has not been computed for this partition.") from None

    def set_output(self, name, values):
        """Store an auxiliary output column, writing through to the parent block."""
        values = np.asarray(values, dtype=np.float64)
        if values.ndim == 0:
            values = np.full(len(self), float(values))
        self.aux[name] = values
        if self._parent is not None:
            if name not in self._parent.aux:
                self._parent.aux[name] = np.zeros((len(self._parent),) + values.shape[1:])
            self._parent.aux[name][self._index] = values

    def column(self, ref):
        """Per-row level position and value of a predictor column.

        Parameters
        ----------
        ref : ColumnRef
            Column to extract.

        Returns
        -------
        pos : ndarray of int
            Position of the row's coefficient within the column's block, or
            ``-1`` when the row has no active coefficient in this column.
        val : ndarray
            Value multiplying that coefficient (1 for categorical levels and
            the intercept).
        """
        n = len(self)
        if ref.is_intercept:
            return np.zeros(n, dtype=np.int64), np.ones(n)
        if ref.is_categorical:
            ids = self.cats[:, ref.index]
            pos = np.where(ids >= 0, ids - ref.start, -1)
            if ref.active_levels is not None:
                active = np.asarray(ref.active_levels, dtype=np.int64)
                found = np.searchsorted(active, pos)
                hit = (pos >= 0) & (found < len(active))
                hit[hit] = active[found[hit]] == pos[hit]
                pos = np.where(hit, found, -1)
            return pos, np.ones(n)
        if self.is_sparse:
            val = self.nums[:, ref.index].toarray().ravel()
        else:
            val = self.nums[:, ref.index].copy()
        return np.zeros(n, dtype=np.int64), val - ref.center
