"""DataFrame compatibility layer for frames handed to :class:`~glmstats.core.datainfo.DataInfo`."""

from typing import Any

import narwhals as nw
import polars as pl

DataFrame = Any  # Any object implementing __arrow_c_stream__


def to_polars(df: Any) -> pl.DataFrame:
    """Convert any Arrow-compatible data frame to polars.

    Parameters
    ----------
    df : Any
        Input frame: a polars DataFrame, or any object implementing the Arrow
        PyCapsule Interface (``__arrow_c_stream__``) such as pandas 2.x
        frames, pyarrow tables or duckdb results.

    Returns
    -------
    pl.DataFrame
        Polars DataFrame.

    Raises
    ------
    TypeError
        If input doesn't implement ``__arrow_c_stream__``.
    """
    if isinstance(df, pl.DataFrame):
        return df

    if hasattr(df, "__arrow_c_stream__"):
        return nw.from_arrow(df, backend=pl).to_native()

    msg = f"Expected a polars DataFrame or an object implementing '__arrow_c_stream__', got: {type(df).__name__}"
    raise TypeError(msg)


def is_categorical_dtype(dtype) -> bool:
    """Whether a polars dtype is expanded into indicator columns."""
    return dtype in (pl.Categorical, pl.Enum, pl.String, pl.Boolean) or isinstance(dtype, (pl.Categorical, pl.Enum))
