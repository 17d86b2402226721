"""
Unit tests for regression and classification metrics.
"""

import math
import unittest

import numpy as np
from sklearn.metrics import accuracy_score, mean_squared_error, recall_score

from knn_tuning.errors import SchemaMismatchError, UndefinedMetricError
from knn_tuning.metrics import (
    METRICS,
    accuracy,
    compute_metric,
    confusion_counts,
    mae,
    rmse,
    rsq,
    sensitivity,
    specificity,
)


class TestRegressionMetrics(unittest.TestCase):

    def test_rmse_zero_iff_exact(self):
        truth = [1.0, 2.5, -3.0]
        self.assertEqual(rmse(truth, truth), 0.0)
        self.assertGreater(rmse([1.0, 2.5, -2.9], truth), 0.0)

    def test_rmse_known_value(self):
        self.assertAlmostEqual(rmse([6.0, 7.0], [5.0, 7.0]), math.sqrt(0.5))

    def test_rmse_matches_sklearn(self):
        rng = np.random.default_rng(5)
        truth, pred = rng.normal(size=100), rng.normal(size=100)
        self.assertAlmostEqual(rmse(pred, truth), math.sqrt(mean_squared_error(truth, pred)))

    def test_rmse_monotone_in_noise_scale(self):
        rng = np.random.default_rng(42)
        truth = rng.normal(size=500)
        noise = rng.normal(size=500)
        values = [rmse(truth + scale * noise, truth) for scale in (0.0, 0.1, 0.5, 1.0, 2.0, 5.0)]
        self.assertEqual(values[0], 0.0)
        self.assertEqual(values, sorted(values))

    def test_mae_and_rsq(self):
        self.assertAlmostEqual(mae([1.0, 2.0, 5.0], [1.0, 3.0, 3.0]), 1.0)
        self.assertAlmostEqual(rsq([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]), 1.0)

    def test_rsq_zero_variance(self):
        with self.assertRaises(UndefinedMetricError):
            rsq([1.0, 1.0, 1.0], [1.0, 2.0, 3.0])

    def test_empty_and_misaligned(self):
        with self.assertRaises(UndefinedMetricError):
            rmse([], [])
        with self.assertRaises(SchemaMismatchError):
            rmse([1.0, 2.0], [1.0])


class TestClassificationMetrics(unittest.TestCase):

    def setUp(self):
        self.truth = ["real", "real", "real", "fake", "fake", "real"]
        self.pred = ["real", "fake", "real", "fake", "real", "real"]

    def test_confusion_counts(self):
        counts = confusion_counts(self.pred, self.truth, "real")
        self.assertEqual((counts.tp, counts.fp, counts.tn, counts.fn), (3, 1, 1, 1))
        self.assertEqual(counts.total, 6)

    def test_values_match_sklearn(self):
        self.assertAlmostEqual(accuracy(self.pred, self.truth), accuracy_score(self.truth, self.pred))
        self.assertAlmostEqual(
            sensitivity(self.pred, self.truth, "real"),
            recall_score(self.truth, self.pred, pos_label="real"),
        )
        self.assertAlmostEqual(
            specificity(self.pred, self.truth, "real"),
            recall_score(self.truth, self.pred, pos_label="fake"),
        )

    def test_bounds(self):
        rng = np.random.default_rng(3)
        for _ in range(20):
            truth = rng.choice(["a", "b"], size=30)
            pred = rng.choice(["a", "b"], size=30)
            if len(set(truth.tolist())) < 2:
                continue
            for value in (accuracy(pred, truth), sensitivity(pred, truth, "a"), specificity(pred, truth, "a")):
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 1.0)

    def test_perfect_accuracy(self):
        self.assertEqual(accuracy(self.truth, self.truth), 1.0)

    def test_sensitivity_undefined_without_positives(self):
        with self.assertRaises(UndefinedMetricError) as ctx:
            sensitivity(["fake", "real"], ["fake", "fake"], "real")
        self.assertEqual(ctx.exception.metric, "sensitivity")

    def test_specificity_undefined_without_negatives(self):
        with self.assertRaises(UndefinedMetricError):
            specificity(["fake", "real"], ["real", "real"], "real")


class TestRegistry(unittest.TestCase):

    def test_directions(self):
        self.assertFalse(METRICS["rmse"].greater_is_better)
        self.assertTrue(METRICS["accuracy"].greater_is_better)

    def test_compute_metric(self):
        self.assertEqual(compute_metric("accuracy", ["a", "b"], ["a", "a"]), 0.5)
        self.assertEqual(compute_metric("sensitivity", ["a", "b"], ["a", "a"], positive="a"), 0.5)

    def test_compute_metric_errors(self):
        with self.assertRaises(ValueError):
            compute_metric("f1", [1.0], [1.0])
        with self.assertRaises(ValueError):
            compute_metric("specificity", ["a"], ["a"])


if __name__ == "__main__":
    unittest.main()
