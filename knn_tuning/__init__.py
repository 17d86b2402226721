"""
knn_tuning
==========
K-Nearest-Neighbors regression / classification with a k-fold
cross-validation harness for choosing k.

    raw Dataset → Standardizer → KnnIndex → KnnPredictor → metrics
    CrossValidator = split_folds + the above, across a k grid
"""

from .config import KnnConfig, Mode, WeightFn
from .dataset import Dataset, Observation
from .errors import (
    DegenerateFeatureError,
    InsufficientDataError,
    InvalidKError,
    KnnError,
    SchemaMismatchError,
    UndefinedMetricError,
)
from .folds import Fold, holdout_split, split_folds
from .metrics import METRICS, accuracy, compute_metric, mae, rmse, rsq, sensitivity, specificity
from .neighbors import KnnIndex, KnnPredictor, NeighborSet, PredictionResult
from .pipeline import FittedKnn, fit_final, run_pipeline
from .standardize import StandardizationParams, Standardizer
from .tuning import (
    CrossValidator,
    MetricReport,
    MetricSummary,
    TuningResult,
    select_best,
    select_by_one_standard_error,
)

__version__ = "0.1.0"
