"""
pipeline.py
===========
End-to-end KNN workflow built from the core components.

Pipeline Stages
---------------
1. holdout_split(...)     → stratified train / test split
2. CrossValidator.tune()  → k-fold CV over the k grid, on train only
3. select k               → best mean or one-standard-error rule
4. fit_final(train, cfg)  → Standardizer + KnnIndex on the full train set
5. FittedKnn.evaluate()   → metrics on the held-out test set

Loading data and plotting are left to the caller: pass a
:class:`~knn_tuning.dataset.Dataset` (see ``Dataset.from_frame``) and plot
from ``TuningResult.to_frame()`` and the returned predictions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .config import DEFAULT_K_GRID, TEST_SIZE, KnnConfig, Mode
from .dataset import Dataset
from .errors import InvalidKError, SchemaMismatchError
from .folds import holdout_split
from .metrics import DEFAULT_METRICS, compute_metric, get_metric
from .neighbors import KnnIndex, KnnPredictor, PredictionResult
from .standardize import StandardizationParams, Standardizer
from .tuning import CrossValidator, TuningResult

logger = logging.getLogger(__name__)

SELECTION_RULES = ("best", "one_se")


# ════════════════════════════════════════════════════════════════════════════
# Final fit
# ════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FittedKnn:
    """
    A finalized model: training params, index and predictor for one config.

    Predictions standardize incoming rows with the training params, so raw
    (unscaled) datasets can be passed straight in.
    """

    config: KnnConfig
    params: StandardizationParams
    predictor: KnnPredictor
    positive_class: object = None

    @property
    def index(self) -> KnnIndex:
        return self.predictor.index

    def predict(self, dataset: Dataset) -> list[PredictionResult]:
        scaled = Standardizer.transform(dataset, self.params)
        return self.predictor.predict_batch(scaled, self.config.k, self.config.mode)

    def evaluate(
        self,
        dataset: Dataset,
        metrics: Sequence[str] | None = None,
        predictions: Sequence[PredictionResult] | None = None,
    ) -> dict[str, float]:
        """
        Score predictions on ``dataset`` against its labels.

        ``predictions`` from an earlier :meth:`predict` on the same dataset
        are reused when given.

        Returns
        -------
        dict
            metric name → value, in the order requested.
        """
        names = DEFAULT_METRICS[self.config.mode] if metrics is None else tuple(metrics)
        for name in names:
            if get_metric(name).mode is not self.config.mode:
                raise ValueError(f"metric {name!r} does not apply to {self.config.mode.value}")
        if predictions is None:
            predictions = self.predict(dataset)
        predicted = [p.value for p in predictions]
        return {
            name: compute_metric(name, predicted, dataset.labels, self.positive_class)
            for name in names
        }


def fit_final(train: Dataset, config: KnnConfig) -> FittedKnn:
    """
    Fit the standardizer and build the index on the full training set.

    Parameters
    ----------
    train : Dataset
        Raw training rows (all of them, not a fold).
    config : KnnConfig
        Finalized configuration, usually ``config.with_k(selected_k)``.

    Raises
    ------
    InvalidKError
        If ``config.k`` exceeds the number of training rows.
    DegenerateFeatureError
        If a training feature is constant.
    """
    if config.k > len(train):
        raise InvalidKError(config.k, len(train), k=config.k)
    if config.mode is Mode.REGRESSION and train.is_categorical:
        raise SchemaMismatchError(
            f"regression needs numeric targets, label '{train.label_name}' is categorical"
        )
    positive = CrossValidator(config).positive_class(train)

    params, scaled = Standardizer.fit_transform(train)
    predictor = KnnPredictor(KnnIndex.build(scaled, config.metric), config.weight_fn)

    logger.info(
        "[fit_final] k=%d, weight_fn=%s, metric=%s, mode=%s on %d rows",
        config.k, config.weight_fn.value, config.metric, config.mode.value, len(train),
    )
    return FittedKnn(config=config, params=params, predictor=predictor, positive_class=positive)


# ════════════════════════════════════════════════════════════════════════════
# Orchestrator
# ════════════════════════════════════════════════════════════════════════════

def run_pipeline(
    dataset: Dataset,
    k_grid: Iterable[int] = DEFAULT_K_GRID,
    config: KnnConfig | None = None,
    metrics: Sequence[str] | None = None,
    rule: str = "one_se",
    selection_metric: str | None = None,
    test_size: float = TEST_SIZE,
    n_jobs: int | None = None,
) -> dict:
    """
    Split, tune, select, refit and evaluate in one call.

        holdout_split(dataset)
            ├─► CrossValidator.tune(train, k_grid)
            │       └─► select k  ('best' or 'one_se')
            └─► fit_final(train, config.with_k(k))
                    └─► evaluate(test)

    Parameters
    ----------
    rule : {'best', 'one_se'}, default='one_se'
        Selection rule applied to ``selection_metric``.
    selection_metric : str, optional
        Defaults to the first evaluated metric.

    Returns
    -------
    dict
        'train', 'test'   : Dataset
        'tuning'          : TuningResult
        'selected_k'      : int
        'config'          : finalized KnnConfig
        'model'           : FittedKnn
        'predictions'     : list[PredictionResult] on the test set
        'test_metrics'    : dict metric → value on the test set
    """
    if rule not in SELECTION_RULES:
        raise ValueError(f"rule must be one of {SELECTION_RULES}, got {rule!r}")
    config = config or KnnConfig()

    # ── Stage 1: Train/Test split ────────────────────────────────────────────
    logger.info("── Stage 1: Train/Test Split ──────────────────────────")
    train, test = holdout_split(dataset, test_size, config.stratify_by, config.seed)
    logger.info("  Train : %d samples", len(train))
    logger.info("  Test  : %d samples", len(test))

    # ── Stage 2: Cross-validated tuning ──────────────────────────────────────
    logger.info("── Stage 2: Tuning (%d-fold CV) ───────────────────────", config.fold_count)
    tuning: TuningResult = CrossValidator(config).tune(train, k_grid, metrics, n_jobs=n_jobs)

    # ── Stage 3: Select k ────────────────────────────────────────────────────
    metric = selection_metric or tuning.metrics[0]
    if rule == "best":
        selected_k = tuning.select_best(metric)
    else:
        selected_k = tuning.select_by_one_standard_error(metric)
    final_config = config.with_k(selected_k)
    logger.info("── Stage 3: Selected k=%d (%s on %s) ───────────────", selected_k, rule, metric)

    # ── Stage 4: Final fit ───────────────────────────────────────────────────
    logger.info("── Stage 4: Final Fit ─────────────────────────────────")
    model = fit_final(train, final_config)

    # ── Stage 5: Held-out evaluation ─────────────────────────────────────────
    logger.info("── Stage 5: Test Set Evaluation ───────────────────────")
    predictions = model.predict(test)
    test_metrics = model.evaluate(test, tuning.metrics, predictions)
    for name, value in test_metrics.items():
        logger.info("  %-12s: %.4f", name, value)

    return {
        "train"       : train,
        "test"        : test,
        "tuning"      : tuning,
        "selected_k"  : selected_k,
        "config"      : final_config,
        "model"       : model,
        "predictions" : predictions,
        "test_metrics": test_metrics,
    }
