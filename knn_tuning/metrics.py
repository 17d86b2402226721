"""
metrics.py
==========
Regression and binary-classification metrics over parallel sequences of
predictions and ground truth.

Every metric raises :class:`UndefinedMetricError` instead of returning 0
or NaN when its denominator is zero, e.g. sensitivity on a fold with no
actual positives.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from .config import Mode
from .errors import SchemaMismatchError, UndefinedMetricError


def _paired(predicted, truth, metric: str, numeric: bool) -> tuple[np.ndarray, np.ndarray]:
    predicted = np.asarray(predicted, dtype=float if numeric else None)
    truth = np.asarray(truth, dtype=float if numeric else None)
    if predicted.shape != truth.shape or predicted.ndim != 1:
        raise SchemaMismatchError(
            f"{metric}: predictions {predicted.shape} and truth {truth.shape} are not aligned"
        )
    if predicted.size == 0:
        raise UndefinedMetricError(metric, "no observations")
    return predicted, truth


# ── Regression ───────────────────────────────────────────────────────────────

def rmse(predicted: Sequence[float], truth: Sequence[float]) -> float:
    """Root mean squared error: sqrt(mean((pred - truth)^2))."""
    predicted, truth = _paired(predicted, truth, "rmse", numeric=True)
    return math.sqrt(math.fsum((predicted - truth) ** 2) / predicted.size)


def mae(predicted: Sequence[float], truth: Sequence[float]) -> float:
    """Mean absolute error."""
    predicted, truth = _paired(predicted, truth, "mae", numeric=True)
    return math.fsum(np.abs(predicted - truth)) / predicted.size


def rsq(predicted: Sequence[float], truth: Sequence[float]) -> float:
    """Squared Pearson correlation between predictions and truth."""
    predicted, truth = _paired(predicted, truth, "rsq", numeric=True)
    dp = predicted - predicted.mean()
    dt = truth - truth.mean()
    denom = math.fsum(dp * dp) * math.fsum(dt * dt)
    if denom == 0:
        raise UndefinedMetricError("rsq", "predictions or truth have zero variance")
    return math.fsum(dp * dt) ** 2 / denom


# ── Classification ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConfusionCounts:
    """Binary confusion counts for one designated positive class."""

    tp: int
    fp: int
    tn: int
    fn: int

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.tn + self.fn


def confusion_counts(predicted, truth, positive) -> ConfusionCounts:
    """Count TP / FP / TN / FN treating every other class as negative."""
    predicted, truth = _paired(predicted, truth, "confusion", numeric=False)
    pred_pos = predicted == positive
    true_pos = truth == positive
    return ConfusionCounts(
        tp=int(np.sum(pred_pos & true_pos)),
        fp=int(np.sum(pred_pos & ~true_pos)),
        tn=int(np.sum(~pred_pos & ~true_pos)),
        fn=int(np.sum(~pred_pos & true_pos)),
    )


def accuracy(predicted, truth) -> float:
    """Fraction of predictions equal to the truth."""
    predicted, truth = _paired(predicted, truth, "accuracy", numeric=False)
    return int(np.sum(predicted == truth)) / predicted.size


def sensitivity(predicted, truth, positive) -> float:
    """TP / (TP + FN): recall of the positive class."""
    counts = confusion_counts(predicted, truth, positive)
    if counts.tp + counts.fn == 0:
        raise UndefinedMetricError("sensitivity", f"truth contains no '{positive}' observations")
    return counts.tp / (counts.tp + counts.fn)


def specificity(predicted, truth, positive) -> float:
    """TN / (TN + FP): recall of every class other than ``positive``."""
    counts = confusion_counts(predicted, truth, positive)
    if counts.tn + counts.fp == 0:
        raise UndefinedMetricError(
            "specificity", f"truth contains no observations other than '{positive}'"
        )
    return counts.tn / (counts.tn + counts.fp)


# ── Registry ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MetricSpec:
    func: Callable
    mode: Mode
    greater_is_better: bool
    needs_positive: bool = False


METRICS: dict[str, MetricSpec] = {
    "rmse": MetricSpec(rmse, Mode.REGRESSION, greater_is_better=False),
    "mae": MetricSpec(mae, Mode.REGRESSION, greater_is_better=False),
    "rsq": MetricSpec(rsq, Mode.REGRESSION, greater_is_better=True),
    "accuracy": MetricSpec(accuracy, Mode.CLASSIFICATION, greater_is_better=True),
    "sensitivity": MetricSpec(sensitivity, Mode.CLASSIFICATION, greater_is_better=True, needs_positive=True),
    "specificity": MetricSpec(specificity, Mode.CLASSIFICATION, greater_is_better=True, needs_positive=True),
}

DEFAULT_METRICS: dict[Mode, tuple[str, ...]] = {
    Mode.REGRESSION: ("rmse",),
    Mode.CLASSIFICATION: ("accuracy", "sensitivity", "specificity"),
}


def get_metric(name: str) -> MetricSpec:
    try:
        return METRICS[name]
    except KeyError:
        raise ValueError(f"unknown metric {name!r}; choose from {sorted(METRICS)}") from None


def compute_metric(name: str, predicted, truth, positive=None) -> float:
    """Look up ``name`` in :data:`METRICS` and evaluate it."""
    spec = get_metric(name)
    if spec.needs_positive:
        if positive is None:
            raise ValueError(f"metric {name!r} needs a positive class")
        return spec.func(predicted, truth, positive)
    return spec.func(predicted, truth)
