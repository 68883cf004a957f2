"""Feature space, rows, Gram storage and GLM families shared by every task."""

from .centering import center_gram, center_vector, centering_vector, needs_centering, sparse_offset
from .config import DEFAULT_SPLIT_EVERY, PROB_FLOOR, VARIANCE_FLOOR, get_option, option_context, set_option
from .dataframe import to_polars
from .datainfo import DataInfo
from .errors import NonFiniteResultError
from .families import (
    BinomialFamily,
    Family,
    GaussianFamily,
    GenericFamily,
    GLMWeights,
    Link,
    MultinomialFamily,
    get_family,
    get_link,
)
from .gram import Gram
from .parallel import parallel_map
from .rows import ColumnRef, Row, RowBlock

__all__ = [
    "DEFAULT_SPLIT_EVERY",
    "PROB_FLOOR",
    "VARIANCE_FLOOR",
    "BinomialFamily",
    "ColumnRef",
    "DataInfo",
    "Family",
    "GLMWeights",
    "GaussianFamily",
    "GenericFamily",
    "Gram",
    "Link",
    "MultinomialFamily",
    "NonFiniteResultError",
    "Row",
    "RowBlock",
    "center_gram",
    "center_vector",
    "centering_vector",
    "get_family",
    "get_link",
    "get_option",
    "needs_centering",
    "option_context",
    "parallel_map",
    "set_option",
    "sparse_offset",
    "to_polars",
]
