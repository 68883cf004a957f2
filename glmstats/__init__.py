"""Distributed sufficient statistics for fitting generalized linear models."""

from glmstats.core import (
    DataInfo,
    Gram,
    NonFiniteResultError,
    RowBlock,
    get_family,
    get_option,
    option_context,
    set_option,
)
from glmstats.distributed import (
    BinomialGradientTask,
    BinomialWeightsTask,
    CoordinateDescentResult,
    CoordinateDescentTask,
    CoordinateWeightsResult,
    DevianceResult,
    GaussianGradientTask,
    GenerateWeightsTask,
    GenericGradientTask,
    GenericWeightsTask,
    GradientResult,
    IterationResult,
    IterationTask,
    LSTask,
    MultinomialCacheResult,
    MultinomialCacheTask,
    MultinomialCacheUpdateTask,
    MultinomialGradientTask,
    MultinomialIterationTask,
    MultinomialResidualDevianceTask,
    MultinomialWeightsTask,
    NullDevianceResult,
    NullDevianceTask,
    ResidualDevianceTask,
    ResponseStats,
    ResponseStatsTask,
    SSEResult,
    SSETask,
    WeightsResult,
    WLSTask,
    coordinate_descent_sweep,
    make_gradient_task,
    run_task,
)

__version__ = "0.1.0"

__all__ = [
    "BinomialGradientTask",
    "BinomialWeightsTask",
    "CoordinateDescentResult",
    "CoordinateDescentTask",
    "CoordinateWeightsResult",
    "DataInfo",
    "DevianceResult",
    "GaussianGradientTask",
    "GenerateWeightsTask",
    "GenericGradientTask",
    "GenericWeightsTask",
    "GradientResult",
    "Gram",
    "IterationResult",
    "IterationTask",
    "LSTask",
    "MultinomialCacheResult",
    "MultinomialCacheTask",
    "MultinomialCacheUpdateTask",
    "MultinomialGradientTask",
    "MultinomialIterationTask",
    "MultinomialResidualDevianceTask",
    "MultinomialWeightsTask",
    "NonFiniteResultError",
    "NullDevianceResult",
    "NullDevianceTask",
    "ResidualDevianceTask",
    "ResponseStats",
    "ResponseStatsTask",
    "RowBlock",
    "SSEResult",
    "SSETask",
    "WLSTask",
    "WeightsResult",
    "coordinate_descent_sweep",
    "get_family",
    "get_option",
    "make_gradient_task",
    "option_context",
    "run_task",
    "set_option",
]
