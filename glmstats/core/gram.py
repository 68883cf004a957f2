"""Weighted Gram matrix with compact storage of the categorical diagonal block."""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

__all__ = ["Gram"]


class Gram:
    r"""Symmetric :math:`X^T W X` over the expanded feature space plus intercept.

    The first ``diag_n`` columns belong to the largest categorical variable.
    Its levels are mutually exclusive within a row, so the off-diagonal
    entries of that block are always zero and only its diagonal is stored.
    The remaining rows ``diag_n .. full_n`` are stored as the lower triangle
    of a dense ``(full_n + 1 - diag_n, full_n + 1)`` array. The intercept is
    always the last row and column; its diagonal entry is the weighted
    observation count.

    Parameters
    ----------
    full_n : int
        Number of expanded predictor columns (without intercept).
    diag_n : int, default 0
        Width of the diagonal categorical block.
    """

    def __init__(self, full_n, diag_n=0):
        if diag_n < 0 or diag_n > full_n:
            raise ValueError(f"diag_n must be in [0, {full_n}], got {diag_n}.")
        self.full_n = int(full_n)
        self.diag_n = int(diag_n)
        self.diag = np.zeros(self.diag_n)
        self.xx = np.zeros((self.full_n + 1 - self.diag_n, self.full_n + 1))

    @property
    def size(self):
        """Number of rows (and columns) of the full matrix, intercept included."""
        return self.full_n + 1

    @property
    def weighted_nobs(self):
        return float(self.xx[-1, -1])

    def intercept_row(self):
        """Row of the intercept: weighted column sums and the weighted count."""
        return self.xx[-1]

    def add_row(self, row, w):
        """Add one weighted row, touching only its nonzero entries.

        Parameters
        ----------
        row : Row
            Observation in the expanded space.
        w : float
            Row weight.
        """
        nz = row.num_vals != 0
        ids = np.concatenate([row.bin_ids, row.numeric_ids()[nz], [self.full_n]]).astype(np.int64)
        vals = np.concatenate([np.ones(row.n_bins), row.num_vals[nz], [1.0]])
        order = np.argsort(ids, kind="stable")
        ids, vals = ids[order], vals[order]
        hi, lo = np.tril_indices(len(ids))
        rows, cols = ids[hi], ids[lo]
        prods = w * vals[hi] * vals[lo]
        in_xx = rows >= self.diag_n
        np.add.at(self.xx, (rows[in_xx] - self.diag_n, cols[in_xx]), prods[in_xx])
        on_diag = ~in_xx & (rows == cols)
        np.add.at(self.diag, rows[on_diag], prods[on_diag])

    def add_rows(self, block, w):
        """Add every row of a :class:`~glmstats.core.rows.RowBlock` with weights ``w``.

        The product is formed on the sparse design matrix, so the cost follows
        the number of nonzero products rather than the matrix size.
        """
        w = np.asarray(w, dtype=np.float64)
        X = block.design_matrix()
        Xi = sp.hstack([X, sp.csr_matrix(np.ones((X.shape[0], 1)))], format="csr")
        WX = sp.diags(w) @ Xi
        if self.diag_n:
            head = Xi[:, : self.diag_n]
            self.diag += np.asarray(head.multiply(head).T @ w).ravel()
        lower = (Xi[:, self.diag_n :].T @ WX).toarray()
        self.xx += np.tril(lower, k=self.diag_n)

    def merge(self, other):
        """Add another Gram into this one in place and return ``self``."""
        if (self.full_n, self.diag_n) != (other.full_n, other.diag_n):
            raise ValueError(
                f"Cannot merge Gram of shape ({other.full_n}, {other.diag_n}) into ({self.full_n}, {self.diag_n})."
            )
        self.diag += other.diag
        self.xx += other.xx
        return self

    def __add__(self, other):
        if not isinstance(other, Gram):
            return NotImplemented
        return self.copy().merge(other)

    def copy(self):
        out = Gram(self.full_n, self.diag_n)
        out.diag = self.diag.copy()
        out.xx = self.xx.copy()
        return out

    def mul(self, x):
        """Scale every entry by ``x`` in place."""
        self.diag *= x
        self.xx *= x
        return self

    def to_dense(self):
        """Full symmetric matrix of shape ``(full_n + 1, full_n + 1)``."""
        G = np.zeros((self.size, self.size))
        idx = np.arange(self.diag_n)
        G[idx, idx] = self.diag
        G[self.diag_n :, :] = np.tril(self.xx, k=self.diag_n)
        return np.tril(G) + np.tril(G, -1).T

    def has_nans_or_infs(self):
        return not (np.isfinite(self.diag).all() and np.isfinite(self.xx).all())

    def __repr__(self):
        return f"Gram(full_n={self.full_n}, diag_n={self.diag_n}, weighted_nobs={self.weighted_nobs:g})"
