"""
neighbors.py
============
Brute-force nearest-neighbor search and the KNN predictor built on it.

Distance metrics
----------------
euclidean : L2 norm (default), penalises large deviations quadratically.
manhattan : L1 norm, linear penalty, more robust to single-feature outliers.

Both are computed from explicit differences so identical points are at
distance exactly 0.

Ordering and ties
-----------------
Neighbors are ordered ascending by distance using a stable sort, so rows
at equal distance keep their original index order. This makes the
neighbor set for k a prefix of the neighbor set for any larger k.

Classification votes
--------------------
The predicted class is the one with the largest vote weight. Among
classes tied on weight, the one whose neighbors have the smallest summed
distance wins; if that is tied as well, the class of the nearest such
neighbor wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from .config import Mode, WeightFn
from .dataset import Dataset, _scalar
from .errors import InvalidKError, SchemaMismatchError

# Element cap for one (rows x reference x features) distance buffer.
_MAX_BLOCK_ELEMENTS = 2 ** 24


def _chunk_rows(n_reference: int, n_features: int) -> int:
    """Query rows per distance block so the buffer stays under the cap."""
    return max(1, _MAX_BLOCK_ELEMENTS // max(1, n_reference * n_features))


# ════════════════════════════════════════════════════════════════════════════
# Distance metrics
# ════════════════════════════════════════════════════════════════════════════

def euclidean_distances(points: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Pairwise L2 distances, shape (n_points, n_reference)."""
    diff = points[:, None, :] - reference[None, :, :]
    return np.sqrt(np.einsum("ijk,ijk->ij", diff, diff))


def manhattan_distances(points: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Pairwise L1 distances, shape (n_points, n_reference)."""
    return np.abs(points[:, None, :] - reference[None, :, :]).sum(axis=2)


DISTANCE_METRICS: dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "euclidean": euclidean_distances,
    "manhattan": manhattan_distances,
}


# ════════════════════════════════════════════════════════════════════════════
# Index
# ════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NeighborSet:
    """The k nearest reference rows of one query, ascending by distance."""

    indices: np.ndarray
    distances: np.ndarray
    labels: np.ndarray

    def __len__(self) -> int:
        return len(self.indices)

    def head(self, k: int) -> "NeighborSet":
        """The k nearest entries; valid because the order is stable."""
        if k > len(self):
            raise InvalidKError(k, len(self))
        return NeighborSet(self.indices[:k], self.distances[:k], self.labels[:k])


def _check_k(k, n_reference: int) -> None:
    if not isinstance(k, (int, np.integer)) or isinstance(k, bool):
        raise InvalidKError(k)
    if k < 1 or k > n_reference:
        raise InvalidKError(int(k), n_reference, k=int(k))


class KnnIndex:
    """
    Holds the standardized training matrix and its labels.

    Build with :meth:`build`; queries never modify the index.
    """

    def __init__(self, reference: Dataset, metric: str = "euclidean"):
        if metric not in DISTANCE_METRICS:
            raise ValueError(f"unknown distance metric {metric!r}")
        self.reference = reference
        self.metric = metric
        self._distance = DISTANCE_METRICS[metric]

    @classmethod
    def build(cls, train: Dataset, metric: str = "euclidean") -> "KnnIndex":
        return cls(train, metric=metric)

    def __len__(self) -> int:
        return len(self.reference)

    @property
    def feature_names(self) -> tuple[str, ...]:
        return self.reference.feature_names

    @property
    def labels(self) -> np.ndarray:
        return self.reference.labels

    def _as_points(self, points) -> np.ndarray:
        points = np.asarray(points, dtype=float)
        if points.ndim == 1:
            points = points[None, :]
        if points.ndim != 2 or points.shape[1] != self.reference.n_features:
            raise SchemaMismatchError(
                f"query has shape {points.shape}, index expects "
                f"{self.reference.n_features} features"
            )
        return points

    def query(self, point, k: int) -> NeighborSet:
        """
        The k nearest stored rows to ``point``.

        Raises
        ------
        InvalidKError
            If k is not an integer in ``[1, len(index)]``.
        SchemaMismatchError
            If ``point`` does not have one value per indexed feature.
        """
        point = np.asarray(point, dtype=float)
        if point.ndim != 1:
            raise SchemaMismatchError(f"query point must be 1-D, got shape {point.shape}")
        return self.query_batch(point[None, :], k)[0]

    def query_batch(self, points, k: int) -> list[NeighborSet]:
        """Neighbor sets for every row of ``points``, in row order."""
        _check_k(k, len(self))
        k = int(k)
        points = self._as_points(points)
        reference = self.reference.features
        labels = self.reference.labels

        results: list[NeighborSet] = []
        step = _chunk_rows(*reference.shape)
        for start in range(0, points.shape[0], step):
            block = self._distance(points[start:start + step], reference)
            order = np.argsort(block, axis=1, kind="stable")[:, :k]
            nearest = np.take_along_axis(block, order, axis=1)
            for row_order, row_dist in zip(order, nearest):
                results.append(NeighborSet(row_order, row_dist, labels[row_order]))
        return results


# ════════════════════════════════════════════════════════════════════════════
# Predictor
# ════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PredictionResult:
    """
    One prediction, aligned with its query row.

    ``probabilities`` maps every class of the index to its vote share for
    classification and is ``None`` for regression.
    """

    query_id: int
    value: object
    probabilities: dict | None = None


def _neighbor_weights(distances: np.ndarray, weight_fn: WeightFn) -> np.ndarray:
    if weight_fn is WeightFn.UNIFORM:
        return np.ones_like(distances)
    exact = distances == 0
    if exact.any():
        # zero-distance neighbors take all the weight
        return exact.astype(float)
    return 1.0 / distances


class KnnPredictor:
    """
    Regression (weighted mean) or classification (weighted vote) over a
    :class:`KnnIndex`.

    Parameters
    ----------
    index : KnnIndex
        Built from the standardized training set. Query points must be
        standardized with the same parameters.
    weight_fn : {'uniform', 'distance'}, default='uniform'
        'uniform'  → all k neighbors weigh equally ("rectangular").
        'distance' → weights are 1 / distance.
    """

    def __init__(self, index: KnnIndex, weight_fn: WeightFn | str = WeightFn.UNIFORM):
        self.index = index
        self.weight_fn = WeightFn(weight_fn)
        self._aggregate = {
            Mode.REGRESSION: self._regress,
            Mode.CLASSIFICATION: self._vote,
        }

    # ── Aggregation paths ────────────────────────────────────────────────────

    def _regress(self, neighbors: NeighborSet) -> tuple[float, None]:
        weights = _neighbor_weights(neighbors.distances, self.weight_fn)
        targets = neighbors.labels.astype(float)
        return float(np.dot(weights, targets) / weights.sum()), None

    def _vote(self, neighbors: NeighborSet) -> tuple[object, dict]:
        weights = _neighbor_weights(neighbors.distances, self.weight_fn)
        tally: dict = {cls: 0.0 for cls in self.index.reference.classes}
        distance_sum: dict = {cls: 0.0 for cls in tally}
        for label, weight, dist in zip(neighbors.labels, weights, neighbors.distances):
            label = _scalar(label)
            tally[label] += float(weight)
            distance_sum[label] += float(dist)

        top = max(tally.values())
        tied = [cls for cls, votes in tally.items() if votes == top]
        if len(tied) > 1:
            closest = min(distance_sum[cls] for cls in tied)
            tied = [cls for cls in tied if distance_sum[cls] == closest]
        if len(tied) > 1:
            # nearest neighbor among the remaining classes
            winner = next(_scalar(l) for l in neighbors.labels if _scalar(l) in tied)
        else:
            winner = tied[0]

        total = float(weights.sum())
        probabilities = {cls: votes / total for cls, votes in tally.items()}
        return winner, probabilities

    def _check_mode(self, mode: Mode) -> Mode:
        mode = Mode(mode)
        if mode is Mode.REGRESSION and self.index.reference.is_categorical:
            raise SchemaMismatchError(
                f"regression needs numeric targets, label '{self.index.reference.label_name}' "
                "is categorical"
            )
        return mode

    # ── Public API ───────────────────────────────────────────────────────────

    def predict_regression(self, point, k: int, query_id: int = 0) -> PredictionResult:
        """Weighted mean of the k nearest neighbors' targets."""
        self._check_mode(Mode.REGRESSION)
        value, _ = self._regress(self.index.query(point, k))
        return PredictionResult(query_id, value)

    def predict_classification(self, point, k: int, query_id: int = 0) -> PredictionResult:
        """Majority class among the k nearest neighbors, with vote shares."""
        value, probabilities = self._vote(self.index.query(point, k))
        return PredictionResult(query_id, value, probabilities)

    def predict_neighbors(
        self,
        neighbor_sets: Sequence[NeighborSet],
        k: int,
        mode: Mode | str,
    ) -> list[PredictionResult]:
        """
        Aggregate precomputed neighbor sets, truncated to their first k.

        Lets a caller query once at the largest k and evaluate every
        smaller k without searching again.
        """
        aggregate = self._aggregate[self._check_mode(mode)]
        results = []
        for query_id, neighbors in enumerate(neighbor_sets):
            value, probabilities = aggregate(neighbors.head(k))
            results.append(PredictionResult(query_id, value, probabilities))
        return results

    def predict_batch(self, dataset: Dataset, k: int, mode: Mode | str) -> list[PredictionResult]:
        """
        Predict every row of ``dataset`` (already standardized).

        Returns
        -------
        list[PredictionResult]
            One result per row, ``query_id`` equal to the row position.
        """
        if dataset.feature_names != self.index.feature_names:
            raise SchemaMismatchError(
                f"dataset features {list(dataset.feature_names)} do not match "
                f"indexed features {list(self.index.feature_names)}"
            )
        mode = self._check_mode(mode)
        neighbor_sets = self.index.query_batch(dataset.features, k)
        return self.predict_neighbors(neighbor_sets, k, mode)
