"""
standardize.py
==============
Z-score standardization fitted on a training set only.

KNN relies on distances, so without scaling high-range features dominate
the metric. The parameters are computed once from the training rows and
then applied, read-only, to any other dataset (validation, test, new
queries). Re-fitting on non-training data would leak information.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .dataset import Dataset
from .errors import DegenerateFeatureError, SchemaMismatchError

logger = logging.getLogger(__name__)

# Relative tolerance under which a standard deviation counts as zero.
_ZERO_STD_RTOL = 1e-12


@dataclass(frozen=True)
class StandardizationParams:
    """Per-feature mean and sample standard deviation of a training set."""

    feature_names: tuple[str, ...]
    means: np.ndarray
    stds: np.ndarray
    n_observations: int

    def apply(self, matrix: np.ndarray) -> np.ndarray:
        return (np.asarray(matrix, dtype=float) - self.means) / self.stds


class Standardizer:
    """Stateless fit / transform pair; the params are the only state."""

    @staticmethod
    def fit(train: Dataset) -> StandardizationParams:
        """
        Compute per-feature mean and sample (ddof=1) standard deviation.

        Parameters
        ----------
        train : Dataset
            The training rows. No other dataset may be passed here.

        Returns
        -------
        StandardizationParams

        Raises
        ------
        DegenerateFeatureError
            If any feature's standard deviation is zero, or undefined
            because the training set has a single row.
        """
        matrix = train.features
        means = matrix.mean(axis=0)
        if len(train) < 2:
            raise DegenerateFeatureError(train.feature_names[0], float("nan"))

        stds = matrix.std(axis=0, ddof=1)
        for name, mean, std in zip(train.feature_names, means, stds):
            if not np.isfinite(std) or std == 0 or std <= _ZERO_STD_RTOL * abs(mean):
                raise DegenerateFeatureError(name, float(std))

        means.setflags(write=False)
        stds.setflags(write=False)
        logger.debug("[standardize] fitted %d features on %d rows", train.n_features, len(train))
        return StandardizationParams(train.feature_names, means, stds, len(train))

    @staticmethod
    def transform(dataset: Dataset, params: StandardizationParams) -> Dataset:
        """
        Apply fitted params to ``dataset``: ``(x - mean) / std`` per feature.

        Raises
        ------
        SchemaMismatchError
            If the dataset's feature schema differs from the fitted one.
        """
        if dataset.feature_names != params.feature_names:
            raise SchemaMismatchError(
                f"dataset features {list(dataset.feature_names)} do not match "
                f"fitted features {list(params.feature_names)}"
            )
        return dataset.with_features(params.apply(dataset.features))

    @classmethod
    def fit_transform(cls, train: Dataset) -> tuple[StandardizationParams, Dataset]:
        params = cls.fit(train)
        return params, cls.transform(train, params)
