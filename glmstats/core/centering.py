r"""Implicit centering of standardized numeric columns stored sparsely.

Sparse partitions keep standardized numeric columns as :math:`x \cdot s`
instead of :math:`(x - \bar{x}) \cdot s` so that zeros stay zeros. Writing
:math:`m` for the vector holding :math:`\bar{x} s` at the numeric positions
and zero elsewhere (categoricals and the intercept), the centered quantities
follow from the uncentered ones by

* linear predictor: :math:`\eta = x^T\beta - m^T\beta`, the *sparse offset*;
* vectors accumulated as :math:`\sum_i g_i x_i` (gradients, :math:`X^TWz`):
  :math:`v \leftarrow v - v_0 m`, where :math:`v_0 = \sum_i g_i` is the
  intercept entry;
* the Gram matrix, a rank-one outer-product adjustment with the intercept
  row :math:`r` (weighted column sums) and weighted count :math:`n_w`:
  :math:`G \leftarrow G - r m^T - m r^T + n_w m m^T`.

The vector and matrix corrections must run once, on fully reduced
accumulators, because they are not additive across partitions.
"""

from __future__ import annotations

import numpy as np

__all__ = [
    "center_gram",
    "center_vector",
    "centering_vector",
    "needs_centering",
    "sparse_offset",
]


def needs_centering(dinfo):
    """Whether accumulators built on ``dinfo`` partitions need the correction."""
    return bool(dinfo.sparse and dinfo.norm_sub is not None)


def centering_vector(dinfo):
    """Vector :math:`m` of length ``full_n + 1`` with the scaled column means."""
    m = np.zeros(dinfo.full_n + 1)
    if dinfo.norm_sub is not None:
        mul = dinfo.norm_mul if dinfo.norm_mul is not None else 1.0
        m[dinfo.num_start : dinfo.full_n] = dinfo.norm_sub * mul
    return m


def sparse_offset(beta, dinfo):
    """Correction added to sparse linear predictors, :math:`-m^T\\beta`.

    Parameters
    ----------
    beta : ndarray of shape (full_n + 1,) or (n_classes, full_n + 1)
        Coefficients.
    dinfo : DataInfo
        Feature-space descriptor.

    Returns
    -------
    float or ndarray of shape (n_classes,)
        Zero unless the data is sparse and standardized.
    """
    beta = np.asarray(beta, dtype=np.float64)
    if not needs_centering(dinfo):
        return np.zeros(beta.shape[0]) if beta.ndim == 2 else 0.0
    m = centering_vector(dinfo)
    if beta.ndim == 2:
        return -(beta @ m)
    return -float(beta @ m)


def center_vector(v, dinfo):
    """Apply the vector correction to ``v`` in place and return it.

    ``v`` may hold several class blocks of length ``full_n + 1`` as the rows
    of a 2-D array.
    """
    m = centering_vector(dinfo)
    if v.ndim == 2:
        v -= np.outer(v[:, -1], m)
    else:
        v -= v[-1] * m
    return v


def center_gram(gram, dinfo):
    """Apply the rank-one centering adjustment to ``gram`` in place and return it."""
    m = centering_vector(dinfo)
    r = gram.intercept_row().copy()
    nobs = r[-1]
    k = gram.diag_n
    adj = np.outer(r[k:], m) + np.outer(m[k:], r) - nobs * np.outer(m[k:], m)
    gram.xx -= np.tril(adj, k=k)
    return gram
