"""Row-accumulation tasks producing GLM sufficient statistics.

Every task here is framework-agnostic: it maps over
:class:`~glmstats.core.rows.RowBlock` partitions with pure NumPy/SciPy code
and has **zero** Dask / Spark dependencies. :func:`run_task` executes a task
locally; :mod:`glmstats.dask` and :mod:`glmstats.spark` run the same tasks on
a cluster.
"""

from ._base import RowTask, check_finite, sum_stats, tree_reduce_local
from ._coordinate import (
    CoordinateDescentResult,
    CoordinateDescentTask,
    CoordinateWeightsResult,
    GenerateWeightsTask,
    coordinate_descent_sweep,
    soft_threshold,
)
from ._diagnostics import (
    DevianceResult,
    MultinomialResidualDevianceTask,
    NullDevianceResult,
    NullDevianceTask,
    ResidualDevianceTask,
    ResponseStats,
    ResponseStatsTask,
    SSEResult,
    SSETask,
)
from ._gradient import (
    BinomialGradientTask,
    GaussianGradientTask,
    GenericGradientTask,
    GradientResult,
    MultinomialGradientTask,
    make_gradient_task,
)
from ._iteration import (
    BinomialWeightsTask,
    GenericWeightsTask,
    IterationResult,
    IterationTask,
    LSTask,
    MultinomialCacheResult,
    MultinomialCacheTask,
    MultinomialCacheUpdateTask,
    MultinomialIterationTask,
    MultinomialWeightsTask,
    WeightsResult,
    WLSTask,
)
from ._runner import run_task

__all__ = [
    "BinomialGradientTask",
    "BinomialWeightsTask",
    "CoordinateDescentResult",
    "CoordinateDescentTask",
    "CoordinateWeightsResult",
    "DevianceResult",
    "GaussianGradientTask",
    "GenerateWeightsTask",
    "GenericGradientTask",
    "GenericWeightsTask",
    "GradientResult",
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
    "NullDevianceResult",
    "NullDevianceTask",
    "ResidualDevianceTask",
    "ResponseStats",
    "ResponseStatsTask",
    "RowTask",
    "SSEResult",
    "SSETask",
    "WLSTask",
    "WeightsResult",
    "check_finite",
    "coordinate_descent_sweep",
    "make_gradient_task",
    "run_task",
    "soft_threshold",
    "sum_stats",
    "tree_reduce_local",
]
