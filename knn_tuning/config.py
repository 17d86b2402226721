"""
config.py
=========
Typed configuration for one KNN fit / tuning run.

Recognised options
------------------
k             : neighbor count used for a final fit
weight_fn     : 'uniform' (rectangular) or 'distance' (inverse distance)
mode          : 'regression' or 'classification'
fold_count    : number of cross-validation folds
stratify_by   : optional column name (the categorical label) to stratify on
seed          : seed for every shuffle (folds and holdout split)
metric        : 'euclidean' or 'manhattan'
positive_class: event class for sensitivity / specificity; defaults to
                the last sorted class for integer / bool labels, otherwise
                the first class in sorted order
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Mapping

# ── Global defaults ──────────────────────────────────────────────────────────
RANDOM_STATE: int = 42          # seed for reproducibility
DEFAULT_FOLD_COUNT: int = 10
TEST_SIZE: float = 0.20         # 80 / 20 train-test split
DEFAULT_K_GRID: tuple[int, ...] = tuple(range(1, 31, 2))


class Mode(str, Enum):
    REGRESSION = "regression"
    CLASSIFICATION = "classification"


class WeightFn(str, Enum):
    UNIFORM = "uniform"
    DISTANCE = "distance"


DISTANCE_METRIC_NAMES = ("euclidean", "manhattan")


@dataclass(frozen=True)
class KnnConfig:
    """
    Hyperparameters and resampling settings, validated on construction.

    Raises
    ------
    ValueError
        On an unknown mode / weight function / metric, a non-positive k, or
        fewer than two folds.
    """

    k: int = 5
    weight_fn: WeightFn = WeightFn.UNIFORM
    mode: Mode = Mode.CLASSIFICATION
    fold_count: int = DEFAULT_FOLD_COUNT
    stratify_by: str | None = None
    seed: int = RANDOM_STATE
    metric: str = "euclidean"
    positive_class: object = None

    def __post_init__(self):
        # Enums accept their string values so plain mappings work.
        object.__setattr__(self, "mode", Mode(self.mode))
        object.__setattr__(self, "weight_fn", WeightFn(self.weight_fn))

        if not isinstance(self.k, int) or isinstance(self.k, bool) or self.k < 1:
            raise ValueError(f"k must be a positive integer, got {self.k!r}")
        if not isinstance(self.fold_count, int) or isinstance(self.fold_count, bool) or self.fold_count < 2:
            raise ValueError(f"fold_count must be an integer >= 2, got {self.fold_count!r}")
        if self.metric not in DISTANCE_METRIC_NAMES:
            raise ValueError(
                f"metric must be one of {DISTANCE_METRIC_NAMES}, got {self.metric!r}"
            )
        if not isinstance(self.seed, int) or isinstance(self.seed, bool):
            raise ValueError(f"seed must be an integer, got {self.seed!r}")

    @classmethod
    def from_dict(cls, options: Mapping) -> "KnnConfig":
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"unknown configuration options: {unknown}")
        return cls(**options)

    def to_dict(self) -> dict:
        options = asdict(self)
        options["mode"] = self.mode.value
        options["weight_fn"] = self.weight_fn.value
        return options

    def with_k(self, k: int) -> "KnnConfig":
        """Finalize a tuned neighbor count."""
        return replace(self, k=k)
