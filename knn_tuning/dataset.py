"""
dataset.py
==========
Immutable tabular data model shared by every stage of the KNN core.

A :class:`Dataset` is an ordered set of rows with a fixed schema: named
numeric feature columns plus one named label column. The label is either
a numeric target (regression) or a class label (classification).

Construction validates the schema once; the underlying numpy arrays are
flagged read-only so that no downstream stage can mutate them.
"""

from __future__ import annotations

from typing import Iterable, Iterator, NamedTuple, Sequence

import numpy as np
import pandas as pd

from .errors import InsufficientDataError, SchemaMismatchError


class Observation(NamedTuple):
    """A single row: ordered feature values plus its label."""

    features: tuple
    label: object


def _is_missing(value) -> bool:
    if value is None:
        return True
    return isinstance(value, float) and np.isnan(value)


def _scalar(value):
    return value.item() if isinstance(value, np.generic) else value


class Dataset:
    """
    Ordered rows sharing one feature schema.

    Parameters
    ----------
    features : array-like, shape (n_rows, n_features)
        Numeric feature matrix. Copied and converted to float.
    labels : array-like, shape (n_rows,)
        Numeric targets or class labels.
    feature_names : sequence of str, optional
        Column names, defaults to ``x0, x1, ...``.
    label_name : str, default='label'
        Name of the label column (used for stratification and frames).

    Raises
    ------
    InsufficientDataError
        If there are no rows.
    SchemaMismatchError
        If the matrix is not 2-D, the names do not match the column count,
        the label count differs from the row count, or a value is missing
        or non-finite.
    """

    def __init__(
        self,
        features,
        labels,
        feature_names: Sequence[str] | None = None,
        label_name: str = "label",
    ):
        try:
            matrix = np.array(features, dtype=float)
        except (TypeError, ValueError) as exc:
            raise SchemaMismatchError(f"features are not a numeric matrix: {exc}") from exc

        if matrix.ndim != 2:
            raise SchemaMismatchError(
                f"features must be 2-D (rows x features), got {matrix.ndim}-D"
            )
        n_rows, n_features = matrix.shape
        if n_rows == 0:
            raise InsufficientDataError("dataset must contain at least one observation")
        if n_features == 0:
            raise SchemaMismatchError("dataset must declare at least one feature")

        if feature_names is None:
            feature_names = [f"x{i}" for i in range(n_features)]
        feature_names = tuple(str(name) for name in feature_names)
        if len(feature_names) != n_features:
            raise SchemaMismatchError(
                f"{len(feature_names)} feature names declared for {n_features} feature columns"
            )
        if len(set(feature_names)) != n_features:
            raise SchemaMismatchError(f"feature names are not unique: {feature_names}")
        if label_name in feature_names:
            raise SchemaMismatchError(f"label '{label_name}' is also a feature name")

        finite = np.isfinite(matrix)
        if not finite.all():
            bad = feature_names[int(np.argmin(finite.all(axis=0)))]
            raise SchemaMismatchError(f"feature '{bad}' contains missing or non-finite values")

        label_array = np.array(labels)
        if label_array.ndim != 1 or label_array.shape[0] != n_rows:
            raise SchemaMismatchError(
                f"expected {n_rows} labels, got array of shape {label_array.shape}"
            )
        if label_array.dtype.kind in "iuf":
            if label_array.dtype.kind == "f" and not np.isfinite(label_array).all():
                raise SchemaMismatchError(f"label '{label_name}' contains missing or non-finite values")
        elif label_array.dtype.kind == "O" and any(_is_missing(v) for v in label_array):
            raise SchemaMismatchError(f"label '{label_name}' contains missing values")

        matrix.setflags(write=False)
        label_array.setflags(write=False)
        self._features = matrix
        self._labels = label_array
        self._feature_names = feature_names
        self._label_name = str(label_name)
        self._classes: tuple | None = None

    # ── Alternate constructors ───────────────────────────────────────────────

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        label: str,
        features: Sequence[str] | None = None,
    ) -> "Dataset":
        """
        Build a Dataset from a pandas DataFrame.

        ``features`` defaults to every column except ``label``, in frame order.
        """
        if label not in frame.columns:
            raise SchemaMismatchError(f"label column '{label}' not found in frame")
        if features is None:
            features = [col for col in frame.columns if col != label]
        missing = [col for col in features if col not in frame.columns]
        if missing:
            raise SchemaMismatchError(f"feature columns not found in frame: {missing}")
        try:
            matrix = frame[list(features)].to_numpy(dtype=float)
        except (TypeError, ValueError) as exc:
            raise SchemaMismatchError(f"non-numeric feature column: {exc}") from exc
        return cls(matrix, frame[label].to_numpy(), feature_names=features, label_name=label)

    @classmethod
    def from_observations(
        cls,
        observations: Iterable[Observation],
        feature_names: Sequence[str],
        label_name: str = "label",
    ) -> "Dataset":
        rows, labels = [], []
        for i, obs in enumerate(observations):
            features, label = obs
            if len(features) != len(feature_names):
                raise SchemaMismatchError(
                    f"observation {i} has {len(features)} features, expected {len(feature_names)}"
                )
            rows.append(tuple(features))
            labels.append(label)
        if not rows:
            raise InsufficientDataError("dataset must contain at least one observation")
        return cls(rows, labels, feature_names=feature_names, label_name=label_name)

    # ── Accessors ────────────────────────────────────────────────────────────

    @property
    def features(self) -> np.ndarray:
        """Read-only feature matrix, shape (n_rows, n_features)."""
        return self._features

    @property
    def labels(self) -> np.ndarray:
        """Read-only label vector, shape (n_rows,)."""
        return self._labels

    @property
    def feature_names(self) -> tuple[str, ...]:
        return self._feature_names

    @property
    def label_name(self) -> str:
        return self._label_name

    @property
    def n_features(self) -> int:
        return self._features.shape[1]

    @property
    def is_categorical(self) -> bool:
        """True when labels are class labels rather than numeric targets."""
        return self._labels.dtype.kind not in "iuf"

    @property
    def classes(self) -> tuple:
        """Sorted distinct label values."""
        if self._classes is None:
            self._classes = tuple(np.unique(self._labels).tolist())
        return self._classes

    def column(self, name: str) -> np.ndarray:
        """Values of a feature column or of the label column."""
        if name == self._label_name:
            return self._labels
        try:
            return self._features[:, self._feature_names.index(name)]
        except ValueError:
            raise SchemaMismatchError(f"unknown column '{name}'") from None

    def __len__(self) -> int:
        return self._features.shape[0]

    def __getitem__(self, index: int) -> Observation:
        return Observation(tuple(self._features[index].tolist()), _scalar(self._labels[index]))

    def __iter__(self) -> Iterator[Observation]:
        for i in range(len(self)):
            yield self[i]

    def __repr__(self) -> str:
        kind = "categorical" if self.is_categorical else "numeric"
        return (
            f"Dataset(n={len(self)}, features={list(self._feature_names)}, "
            f"label='{self._label_name}' [{kind}])"
        )

    # ── Derived datasets ─────────────────────────────────────────────────────

    def subset(self, indices) -> "Dataset":
        """Rows at ``indices`` (in the given order) as a new Dataset."""
        indices = np.asarray(indices, dtype=int)
        return Dataset(
            self._features[indices],
            self._labels[indices],
            feature_names=self._feature_names,
            label_name=self._label_name,
        )

    def with_features(self, matrix) -> "Dataset":
        """Same labels and schema, new feature values (e.g. after scaling)."""
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != self._features.shape:
            raise SchemaMismatchError(
                f"replacement matrix has shape {matrix.shape}, expected {self._features.shape}"
            )
        return Dataset(
            matrix, self._labels, feature_names=self._feature_names, label_name=self._label_name
        )

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(self._features, columns=list(self._feature_names))
        frame[self._label_name] = self._labels
        return frame
