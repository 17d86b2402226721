"""
errors.py
=========
Error taxonomy for the KNN tuning core.

Every error is a local condition the caller can act on. Nothing here is
recovered automatically: a constant feature is never dropped and an
undefined metric is never replaced by 0 or NaN.

Each error may carry the ``fold_id`` / ``k`` it was raised for. The
cross-validator attaches that context with :meth:`KnnError.with_context`
before re-raising.
"""

from __future__ import annotations


class KnnError(ValueError):
    """Base class for every error raised by ``knn_tuning``."""

    def __init__(self, message: str, *, fold_id: int | None = None, k: int | None = None):
        self.message = message
        self.fold_id = fold_id
        self.k = k
        super().__init__(self._render())

    def _render(self) -> str:
        context = []
        if self.fold_id is not None:
            context.append(f"fold={self.fold_id}")
        if self.k is not None:
            context.append(f"k={self.k}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    def with_context(self, *, fold_id: int | None = None, k: int | None = None) -> "KnnError":
        """Attach fold / k context in place and return ``self``."""
        if fold_id is not None:
            self.fold_id = fold_id
        if k is not None:
            self.k = k
        self.args = (self._render(),)
        return self

    def __str__(self) -> str:
        return self._render()

    # Errors cross joblib worker boundaries; rebuild from state, not args.
    def __reduce__(self):
        return _restore_error, (type(self), self.__dict__.copy())


def _restore_error(cls, state):
    error = cls.__new__(cls)
    error.__dict__.update(state)
    error.args = (error._render(),)
    return error


class DegenerateFeatureError(KnnError):
    """A feature has zero (or undefined) standard deviation in the training set."""

    def __init__(self, feature: str, std: float, **context):
        self.feature = feature
        self.std = std
        super().__init__(
            f"feature '{feature}' has degenerate standard deviation ({std!r}); "
            "cannot standardize",
            **context,
        )


class InvalidKError(KnnError):
    """Neighbor count outside ``1 <= k <= n_reference``."""

    def __init__(self, requested_k, n_reference: int | None = None, **context):
        self.requested_k = requested_k
        self.n_reference = n_reference
        if n_reference is None:
            message = f"k must be a positive integer, got {requested_k!r}"
        else:
            message = f"k must satisfy 1 <= k <= {n_reference}, got {requested_k!r}"
        super().__init__(message, **context)


class InsufficientDataError(KnnError):
    """Not enough observations (overall or in one stratum) for the request."""

    def __init__(self, message: str, stratum=None, **context):
        self.stratum = stratum
        super().__init__(message, **context)


class UndefinedMetricError(KnnError):
    """A metric's denominator is zero for the given predictions / truth."""

    def __init__(self, metric: str, reason: str, **context):
        self.metric = metric
        self.reason = reason
        super().__init__(f"metric '{metric}' is undefined: {reason}", **context)


class SchemaMismatchError(KnnError):
    """Feature shape or label type does not match what was fitted / expected."""
