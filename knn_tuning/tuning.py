"""
tuning.py
=========
k-fold cross-validation over a grid of neighbor counts, plus the two
selection rules applied to its aggregated table.

Per fold the standardizer is fit on that fold's training rows only and a
single index is built; neighbors are queried once at the largest k and
every smaller k is read from the prefix of those neighbor lists. So each
(fold, k) pair costs at most one model build and nothing leaks across
folds.

Folds are independent and may be evaluated in parallel with joblib.
Aggregation sorts the per-fold reports and sums with ``math.fsum``, so
the summary does not depend on the order workers finish in.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .config import KnnConfig, Mode
from .dataset import Dataset
from .errors import InvalidKError, KnnError, SchemaMismatchError
from .folds import Fold, split_folds
from .metrics import DEFAULT_METRICS, compute_metric, get_metric
from .neighbors import KnnIndex, KnnPredictor
from .standardize import Standardizer

logger = logging.getLogger(__name__)

SIMPLER_SMALLER_K = "smaller_k"
SIMPLER_LARGER_K = "larger_k"


@dataclass(frozen=True)
class MetricReport:
    """One metric value for one (fold, k)."""

    fold_id: int
    k: int
    metric: str
    value: float


@dataclass(frozen=True)
class MetricSummary:
    """Mean and standard error of one metric across folds, for one k."""

    k: int
    metric: str
    mean: float
    std_err: float
    n_folds: int


def aggregate_reports(reports: Iterable[MetricReport]) -> dict[str, dict[int, MetricSummary]]:
    """
    Summarize reports per (metric, k): mean and standard error, the
    sample (ddof=1) standard deviation over ``sqrt(n_folds)``.

    Order-independent: reports are sorted before summation.
    """
    grouped: dict[tuple[str, int], list[float]] = {}
    for report in sorted(reports, key=lambda r: (r.metric, r.k, r.fold_id)):
        grouped.setdefault((report.metric, report.k), []).append(report.value)

    summaries: dict[str, dict[int, MetricSummary]] = {}
    for (metric, k), values in grouped.items():
        n = len(values)
        mean = math.fsum(values) / n
        std_err = float(np.std(values, ddof=1)) / math.sqrt(n) if n > 1 else float("nan")
        summaries.setdefault(metric, {})[k] = MetricSummary(k, metric, mean, std_err, n)
    return summaries


# ════════════════════════════════════════════════════════════════════════════
# Selection rules
# ════════════════════════════════════════════════════════════════════════════

def select_best(summary: Mapping[int, MetricSummary], greater_is_better: bool) -> int:
    """
    The k with the best mean metric; ties go to the smaller k.

    Parameters
    ----------
    summary : mapping k -> MetricSummary
        One metric's aggregated table.
    greater_is_better : bool
        False for error-type metrics such as rmse.
    """
    if not summary:
        raise ValueError("cannot select from an empty summary")
    sign = 1.0 if greater_is_better else -1.0
    return int(min(summary, key=lambda k: (-sign * summary[k].mean, k)))


def select_by_one_standard_error(
    summary: Mapping[int, MetricSummary],
    greater_is_better: bool,
    simpler: str = SIMPLER_SMALLER_K,
) -> int:
    """
    One-standard-error rule: the simplest k within one standard error of
    the best mean.

    With best mean ``m*`` and its standard error ``se*``, every k whose
    mean lies in ``[m* - se*, m*]`` (or ``[m*, m* + se*]`` for error-type
    metrics) is acceptable, and the simplest of them is returned.

    Parameters
    ----------
    simpler : {'smaller_k', 'larger_k'}, default='smaller_k'
        Which end of the k axis counts as the simpler model. The default
        assumes a smaller k is the less flexible choice; pass 'larger_k' for
        the opposite convention. The result is never more complex than
        :func:`select_best` under the same convention.
    """
    if simpler not in (SIMPLER_SMALLER_K, SIMPLER_LARGER_K):
        raise ValueError(f"simpler must be '{SIMPLER_SMALLER_K}' or '{SIMPLER_LARGER_K}'")
    best_k = select_best(summary, greater_is_better)
    best = summary[best_k]
    tolerance = best.std_err if math.isfinite(best.std_err) else 0.0

    if greater_is_better:
        within = [k for k, s in summary.items() if s.mean >= best.mean - tolerance]
    else:
        within = [k for k, s in summary.items() if s.mean <= best.mean + tolerance]

    pick = min(within) if simpler == SIMPLER_SMALLER_K else max(within)
    return int(pick)


# ════════════════════════════════════════════════════════════════════════════
# Cross-validation
# ════════════════════════════════════════════════════════════════════════════

@dataclass
class TuningResult:
    """
    Per-fold reports and their per-k summaries from one tuning run.

    ``summaries[metric][k]`` is a :class:`MetricSummary`.
    """

    mode: Mode
    k_grid: tuple[int, ...]
    metrics: tuple[str, ...]
    reports: list[MetricReport]
    summaries: dict[str, dict[int, MetricSummary]] = field(default_factory=dict)

    def summary(self, metric: str) -> dict[int, MetricSummary]:
        try:
            return self.summaries[metric]
        except KeyError:
            raise ValueError(f"metric {metric!r} was not evaluated; have {list(self.metrics)}") from None

    def _direction(self, metric: str, greater_is_better: bool | None) -> bool:
        if greater_is_better is None:
            return get_metric(metric).greater_is_better
        return greater_is_better

    def select_best(self, metric: str, greater_is_better: bool | None = None) -> int:
        return select_best(self.summary(metric), self._direction(metric, greater_is_better))

    def select_by_one_standard_error(
        self,
        metric: str,
        greater_is_better: bool | None = None,
        simpler: str = SIMPLER_SMALLER_K,
    ) -> int:
        return select_by_one_standard_error(
            self.summary(metric), self._direction(metric, greater_is_better), simpler
        )

    def to_frame(self) -> pd.DataFrame:
        """Aggregated table, one row per (k, metric), sorted by k then metric."""
        rows = [
            {"k": s.k, "metric": s.metric, "mean": s.mean, "std_err": s.std_err, "n_folds": s.n_folds}
            for by_k in self.summaries.values()
            for s in by_k.values()
        ]
        frame = pd.DataFrame(rows, columns=["k", "metric", "mean", "std_err", "n_folds"])
        return frame.sort_values(["k", "metric"]).reset_index(drop=True)


def _evaluate_fold(
    fold: Fold,
    k_grid: Sequence[int],
    metrics: Sequence[str],
    config: KnnConfig,
    positive,
) -> list[MetricReport]:
    """Fit once on the fold's train rows, score every k on its validation rows."""
    k = None
    try:
        params, train = Standardizer.fit_transform(fold.train)
        validation = Standardizer.transform(fold.validation, params)
        predictor = KnnPredictor(KnnIndex.build(train, config.metric), config.weight_fn)
        neighbor_sets = predictor.index.query_batch(validation.features, max(k_grid))

        reports = []
        for k in k_grid:
            predictions = predictor.predict_neighbors(neighbor_sets, k, config.mode)
            predicted = [p.value for p in predictions]
            for metric in metrics:
                value = compute_metric(metric, predicted, validation.labels, positive)
                reports.append(MetricReport(fold.fold_id, k, metric, value))
    except KnnError as exc:
        raise exc.with_context(fold_id=fold.fold_id, k=k)

    logger.debug("[tune] fold %d: %d train / %d validation rows scored",
                 fold.fold_id, len(fold.train), len(fold.validation))
    return reports


def _check_k_grid(k_grid: Iterable[int]) -> tuple[int, ...]:
    grid = list(k_grid)
    if not grid:
        raise ValueError("k_grid must contain at least one value")
    for k in grid:
        if not isinstance(k, (int, np.integer)) or isinstance(k, bool) or k < 1:
            raise InvalidKError(k)
    return tuple(sorted({int(k) for k in grid}))


class CrossValidator:
    """
    Tune the neighbor count of a KNN model by k-fold cross-validation.

    Parameters
    ----------
    config : KnnConfig
        Supplies mode, weight function, distance metric, fold count,
        stratification column, seed and positive class. ``config.k`` is
        ignored here; use :meth:`KnnConfig.with_k` on the selected value.
    """

    def __init__(self, config: KnnConfig | None = None):
        self.config = config or KnnConfig()

    def _metrics(self, metrics: Sequence[str] | None) -> tuple[str, ...]:
        mode = self.config.mode
        if metrics is None:
            return DEFAULT_METRICS[mode]
        metrics = tuple(dict.fromkeys(metrics))
        for name in metrics:
            spec = get_metric(name)
            if spec.mode is not mode:
                raise ValueError(f"metric {name!r} is a {spec.mode.value} metric, config mode is {mode.value}")
        if not metrics:
            raise ValueError("at least one metric is required")
        return metrics

    def positive_class(self, dataset: Dataset):
        """
        Configured positive class, else a default event class.

        Integer and bool labels default to the last sorted class (``1`` or
        ``True``, the usual event encoding); other labels default to the
        first class in sorted order.
        """
        if self.config.mode is not Mode.CLASSIFICATION:
            return None
        classes = dataset.classes
        if len(classes) < 2:
            raise SchemaMismatchError(
                f"classification needs at least two classes, label '{dataset.label_name}' has {classes}"
            )
        positive = self.config.positive_class
        if positive is None:
            return classes[-1] if dataset.labels.dtype.kind in "biu" else classes[0]
        if positive not in classes:
            raise SchemaMismatchError(f"positive class {positive!r} not among classes {classes}")
        return positive

    def tune(
        self,
        dataset: Dataset,
        k_grid: Iterable[int],
        metrics: Sequence[str] | None = None,
        n_jobs: int | None = None,
    ) -> TuningResult:
        """
        Cross-validate every k in ``k_grid``.

        Parameters
        ----------
        dataset : Dataset
            Raw (unstandardized) training rows.
        k_grid : iterable of int
            Neighbor counts to evaluate; de-duplicated and sorted.
        metrics : sequence of str, optional
            Names from :data:`knn_tuning.metrics.METRICS` matching the mode.
            Defaults to rmse (regression) or accuracy, sensitivity and
            specificity (classification).
        n_jobs : int, optional
            joblib workers across folds. None runs sequentially.

        Returns
        -------
        TuningResult

        Raises
        ------
        InvalidKError
            If a k exceeds the training size of some fold.
        UndefinedMetricError, DegenerateFeatureError
            Raised from inside a fold, with ``fold_id`` and ``k`` attached.
        """
        config = self.config
        grid = _check_k_grid(k_grid)
        metric_names = self._metrics(metrics)
        positive = self.positive_class(dataset)

        folds = split_folds(dataset, config.fold_count, config.stratify_by, config.seed)
        for fold in folds:
            if grid[-1] > len(fold.train):
                raise InvalidKError(grid[-1], len(fold.train), fold_id=fold.fold_id, k=grid[-1])

        logger.info(
            "[tune] %s: %d k values x %d folds, metrics=%s, stratify_by=%s, seed=%d",
            config.mode.value, len(grid), len(folds), list(metric_names),
            config.stratify_by, config.seed,
        )

        if n_jobs is None or n_jobs == 1:
            per_fold = [_evaluate_fold(f, grid, metric_names, config, positive) for f in folds]
        else:
            per_fold = Parallel(n_jobs=n_jobs)(
                delayed(_evaluate_fold)(f, grid, metric_names, config, positive) for f in folds
            )

        reports = [report for fold_reports in per_fold for report in fold_reports]
        result = TuningResult(
            mode=config.mode,
            k_grid=grid,
            metrics=metric_names,
            reports=reports,
            summaries=aggregate_reports(reports),
        )

        headline = metric_names[0]
        best_k = result.select_best(headline)
        logger.info(
            "[tune] best k by %s: %d (mean=%.4f)",
            headline, best_k, result.summary(headline)[best_k].mean,
        )
        return result
