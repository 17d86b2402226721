"""
folds.py
========
Deterministic k-fold partitioning, plain or stratified by class.

The validation subsets of one split are disjoint and together contain
every row exactly once. Shuffling uses ``numpy.random.default_rng(seed)``
so the same seed always yields the same folds, without touching global
random state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .config import RANDOM_STATE, TEST_SIZE
from .dataset import Dataset
from .errors import InsufficientDataError, SchemaMismatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fold:
    """One (train, validation) pair; indices refer to the source dataset."""

    fold_id: int
    train: Dataset
    validation: Dataset
    train_indices: np.ndarray
    validation_indices: np.ndarray


def _strata(dataset: Dataset, stratify_by: str | None) -> list[tuple[object, np.ndarray]]:
    """Row positions grouped by stratum, strata in sorted order."""
    if stratify_by is None:
        return [(None, np.arange(len(dataset)))]
    if stratify_by != dataset.label_name:
        raise SchemaMismatchError(
            f"can only stratify on the label column '{dataset.label_name}', got '{stratify_by}'"
        )
    # integer and bool labels are encoded classes; only continuous targets are refused
    if dataset.labels.dtype.kind == "f":
        raise SchemaMismatchError(f"cannot stratify on continuous column '{stratify_by}'")
    labels = dataset.labels
    return [(cls, np.flatnonzero(labels == cls)) for cls in dataset.classes]


def _assign_groups(n_groups: int, strata, rng: np.random.Generator) -> list[list[np.ndarray]]:
    """
    Shuffle each stratum and cut it into ``n_groups`` near-equal pieces.

    ``np.array_split`` puts the larger pieces first; rotating each stratum's
    pieces by the number of oversized pieces handed out so far spreads the
    remainders across groups, so group sizes stay within one of each other.
    """
    groups: list[list[np.ndarray]] = [[] for _ in range(n_groups)]
    offset = 0
    for _, members in strata:
        shuffled = members[rng.permutation(len(members))]
        for g, piece in enumerate(np.array_split(shuffled, n_groups)):
            groups[(g + offset) % n_groups].append(piece)
        offset = (offset + len(members) % n_groups) % n_groups
    return groups


def split_folds(
    dataset: Dataset,
    fold_count: int,
    stratify_by: str | None = None,
    seed: int = RANDOM_STATE,
) -> list[Fold]:
    """
    Partition ``dataset`` into ``fold_count`` (train, validation) folds.

    Parameters
    ----------
    dataset : Dataset
        Rows to partition.
    fold_count : int
        Number of folds, at least 2.
    stratify_by : str, optional
        Name of the categorical label column. When given, each class is
        split on its own and the pieces merged fold by fold, so each fold's
        class counts are within one of ``class_size / fold_count``.
    seed : int, default=42
        Shuffle seed.

    Returns
    -------
    list[Fold]
        ``fold_count`` folds; train rows keep their original order.

    Raises
    ------
    ValueError
        If ``fold_count`` is not an integer >= 2.
    InsufficientDataError
        If the dataset, or any stratum, has fewer rows than ``fold_count``.
    """
    if not isinstance(fold_count, (int, np.integer)) or isinstance(fold_count, bool) or fold_count < 2:
        raise ValueError(f"fold_count must be an integer >= 2, got {fold_count!r}")
    fold_count = int(fold_count)

    strata = _strata(dataset, stratify_by)
    for stratum, members in strata:
        if len(members) < fold_count:
            where = "dataset" if stratum is None else f"stratum '{stratum}'"
            raise InsufficientDataError(
                f"{where} has {len(members)} observations, fewer than {fold_count} folds",
                stratum=stratum,
            )

    rng = np.random.default_rng(seed)
    groups = _assign_groups(fold_count, strata, rng)

    everything = np.arange(len(dataset))
    folds = []
    for fold_id, pieces in enumerate(groups):
        validation_idx = np.sort(np.concatenate(pieces))
        train_idx = np.setdiff1d(everything, validation_idx, assume_unique=True)
        folds.append(Fold(
            fold_id=fold_id,
            train=dataset.subset(train_idx),
            validation=dataset.subset(validation_idx),
            train_indices=train_idx,
            validation_indices=validation_idx,
        ))

    logger.debug(
        "[split_folds] %d folds over %d rows (stratify_by=%s, seed=%d); validation sizes %s",
        fold_count, len(dataset), stratify_by, seed, [len(f.validation) for f in folds],
    )
    return folds


def holdout_split(
    dataset: Dataset,
    test_size: float = TEST_SIZE,
    stratify_by: str | None = None,
    seed: int = RANDOM_STATE,
) -> tuple[Dataset, Dataset]:
    """
    Initial train / test split, optionally stratified on the label.

    The test share of each stratum is ``round(test_size * n_stratum)``,
    kept between 1 and ``n_stratum - 1`` so both sides see every class.

    Returns
    -------
    (train, test) : tuple[Dataset, Dataset]
        Rows keep their original order within each side.
    """
    if not 0.0 < test_size < 1.0:
        raise ValueError(f"test_size must be in (0, 1), got {test_size!r}")

    rng = np.random.default_rng(seed)
    test_parts = []
    for stratum, members in _strata(dataset, stratify_by):
        if len(members) < 2:
            where = "dataset" if stratum is None else f"stratum '{stratum}'"
            raise InsufficientDataError(
                f"{where} needs at least 2 observations for a holdout split", stratum=stratum
            )
        n_test = min(max(int(round(test_size * len(members))), 1), len(members) - 1)
        shuffled = members[rng.permutation(len(members))]
        test_parts.append(shuffled[:n_test])

    test_idx = np.sort(np.concatenate(test_parts))
    train_idx = np.setdiff1d(np.arange(len(dataset)), test_idx, assume_unique=True)
    return dataset.subset(train_idx), dataset.subset(test_idx)
