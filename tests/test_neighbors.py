"""
Unit tests for the neighbor index and the KNN predictor.

Includes the worked regression / classification scenarios, the tie-break
policy, and cross-checks against scikit-learn on tie-free random data.
"""

import unittest
from unittest.mock import patch

import numpy as np
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor

from knn_tuning.config import Mode
from knn_tuning.dataset import Dataset
from knn_tuning.errors import InvalidKError, SchemaMismatchError
from knn_tuning.neighbors import (
    KnnIndex,
    KnnPredictor,
    _chunk_rows,
    euclidean_distances,
    manhattan_distances,
)
from knn_tuning.standardize import Standardizer


class TestDistances(unittest.TestCase):

    def test_known_values(self):
        points = np.array([[0.0, 0.0]])
        reference = np.array([[3.0, 4.0], [0.0, 0.0], [-1.0, 1.0]])
        np.testing.assert_allclose(euclidean_distances(points, reference), [[5.0, 0.0, np.sqrt(2)]])
        np.testing.assert_allclose(manhattan_distances(points, reference), [[7.0, 0.0, 2.0]])

    def test_identical_points_are_exactly_zero(self):
        reference = np.array([[0.1, 0.7, 1e6]])
        self.assertEqual(euclidean_distances(reference, reference)[0, 0], 0.0)


class TestKnnIndex(unittest.TestCase):
    """Test cases for neighbor queries."""

    def setUp(self):
        rng = np.random.default_rng(7)
        self.train = Dataset(rng.normal(size=(40, 3)), rng.normal(size=40))
        self.index = KnnIndex.build(self.train)
        self.queries = rng.normal(size=(10, 3))

    def test_neighbor_set_size_order_uniqueness(self):
        for k in range(1, len(self.train) + 1):
            for point in self.queries:
                neighbors = self.index.query(point, k)
                self.assertEqual(len(neighbors), k)
                self.assertTrue(np.all(np.diff(neighbors.distances) >= 0))
                self.assertEqual(len(set(neighbors.indices.tolist())), k)
                self.assertTrue(np.all(neighbors.indices < len(self.train)))

    def test_distances_and_labels_match_indices(self):
        neighbors = self.index.query(self.queries[0], 5)
        expected = np.linalg.norm(self.train.features[neighbors.indices] - self.queries[0], axis=1)
        np.testing.assert_allclose(neighbors.distances, expected)
        np.testing.assert_array_equal(neighbors.labels, self.train.labels[neighbors.indices])

    def test_distance_ties_keep_index_order(self):
        train = Dataset([[1.0], [-1.0], [1.0], [5.0]], [0.0, 1.0, 2.0, 3.0])
        neighbors = KnnIndex.build(train).query([0.0], 3)
        self.assertListEqual(neighbors.indices.tolist(), [0, 1, 2])

    def test_head_is_prefix_of_larger_query(self):
        full = self.index.query(self.queries[1], len(self.train))
        small = self.index.query(self.queries[1], 4)
        np.testing.assert_array_equal(full.head(4).indices, small.indices)

    def test_query_batch_matches_single_queries(self):
        batch = self.index.query_batch(self.queries, 3)
        self.assertEqual(len(batch), len(self.queries))
        for point, neighbors in zip(self.queries, batch):
            np.testing.assert_array_equal(neighbors.indices, self.index.query(point, 3).indices)

    def test_block_size_shrinks_with_reference_width(self):
        self.assertEqual(_chunk_rows(40, 3), 2 ** 24 // 120)
        self.assertEqual(_chunk_rows(10 ** 6, 100), 1)
        self.assertLessEqual(_chunk_rows(5000, 20) * 5000 * 20, 2 ** 24)

    def test_query_batch_independent_of_block_size(self):
        expected = self.index.query_batch(self.queries, 5)
        with patch("knn_tuning.neighbors._MAX_BLOCK_ELEMENTS", 2 * 40 * 3):
            self.assertEqual(_chunk_rows(40, 3), 2)
            chunked = self.index.query_batch(self.queries, 5)
        self.assertEqual(len(chunked), len(expected))
        for a, b in zip(expected, chunked):
            np.testing.assert_array_equal(a.indices, b.indices)
            np.testing.assert_allclose(a.distances, b.distances)

    def test_invalid_k(self):
        for bad in (0, -1, len(self.train) + 1):
            with self.assertRaises(InvalidKError):
                self.index.query(self.queries[0], bad)
        with self.assertRaises(InvalidKError):
            self.index.query(self.queries[0], 2.5)
        with self.assertRaises(InvalidKError):
            self.index.query(self.queries[0], True)

    def test_wrong_point_width(self):
        with self.assertRaises(SchemaMismatchError):
            self.index.query([1.0, 2.0], 1)

    def test_manhattan_index(self):
        train = Dataset([[0.0, 3.0], [2.0, 2.0]], [0.0, 1.0])
        # L2 prefers row 1 (2.83 < 3.0), L1 prefers row 0 (3 < 4)
        self.assertEqual(KnnIndex.build(train).query([0.0, 0.0], 1).indices[0], 1)
        self.assertEqual(KnnIndex.build(train, "manhattan").query([0.0, 0.0], 1).indices[0], 0)


class TestKnnPredictor(unittest.TestCase):
    """Test cases for regression and classification predictions."""

    def test_weekly_totals_regression_scenario(self):
        train = Dataset([[10.0], [12.0], [30.0]], [5.0, 7.0, 50.0], feature_names=["week"], label_name="tot")
        params, scaled = Standardizer.fit_transform(train)
        predictor = KnnPredictor(KnnIndex.build(scaled))
        query = params.apply(np.array([[11.0]]))[0]
        result = predictor.predict_regression(query, 2)
        self.assertAlmostEqual(result.value, 6.0)
        self.assertIsNone(result.probabilities)

    def test_real_fake_classification_scenario(self):
        train = Dataset(
            [[1.0, 1.0], [1.0, 2.0], [9.0, 9.0], [9.0, 8.0]],
            ["real", "real", "fake", "fake"],
        )
        params, scaled = Standardizer.fit_transform(train)
        predictor = KnnPredictor(KnnIndex.build(scaled))
        query = params.apply(np.array([[1.0, 1.5]]))[0]
        result = predictor.predict_classification(query, 3)
        self.assertEqual(result.value, "real")
        self.assertAlmostEqual(result.probabilities["real"], 2 / 3)
        self.assertAlmostEqual(result.probabilities["fake"], 1 / 3)

    def test_probabilities_cover_every_class(self):
        train = Dataset([[0.0], [1.0], [10.0]], ["a", "a", "b"])
        result = KnnPredictor(KnnIndex.build(train)).predict_classification([0.5], 2)
        self.assertEqual(result.probabilities, {"a": 1.0, "b": 0.0})

    def test_vote_tie_broken_by_distance_sum(self):
        train = Dataset([[0.0], [1.5]], ["A", "B"])
        result = KnnPredictor(KnnIndex.build(train)).predict_classification([1.0], 2)
        self.assertEqual(result.value, "B")

    def test_full_tie_broken_by_nearest_in_index_order(self):
        train = Dataset([[0.0], [2.0]], ["A", "B"])
        self.assertEqual(KnnPredictor(KnnIndex.build(train)).predict_classification([1.0], 2).value, "A")
        flipped = Dataset([[2.0], [0.0]], ["B", "A"])
        self.assertEqual(KnnPredictor(KnnIndex.build(flipped)).predict_classification([1.0], 2).value, "B")

    def test_distance_weights_exact_match_dominates(self):
        train = Dataset([[0.0], [1.0], [2.0]], [10.0, 20.0, 30.0])
        predictor = KnnPredictor(KnnIndex.build(train), weight_fn="distance")
        self.assertEqual(predictor.predict_regression([1.0], 3).value, 20.0)

    def test_regression_rejects_categorical_labels(self):
        train = Dataset([[0.0], [1.0]], ["a", "b"])
        predictor = KnnPredictor(KnnIndex.build(train))
        with self.assertRaises(SchemaMismatchError):
            predictor.predict_regression([0.0], 1)
        with self.assertRaises(SchemaMismatchError):
            predictor.predict_batch(train, 1, Mode.REGRESSION)

    def test_predict_batch_alignment(self):
        train = Dataset([[0.0], [1.0], [10.0], [11.0]], [1.0, 1.0, 5.0, 5.0])
        queries = Dataset([[10.5], [0.5], [0.2]], [0.0, 0.0, 0.0])
        results = KnnPredictor(KnnIndex.build(train)).predict_batch(queries, 2, "regression")
        self.assertListEqual([r.query_id for r in results], [0, 1, 2])
        self.assertListEqual([r.value for r in results], [5.0, 1.0, 1.0])

    def test_predict_batch_schema_mismatch(self):
        train = Dataset([[0.0], [1.0]], [0.0, 1.0], feature_names=["a"])
        queries = Dataset([[0.0]], [0.0], feature_names=["b"])
        with self.assertRaises(SchemaMismatchError):
            KnnPredictor(KnnIndex.build(train)).predict_batch(queries, 1, Mode.REGRESSION)


class TestAgainstScikitLearn(unittest.TestCase):
    """Continuous random data has no distance ties, so results must agree."""

    def setUp(self):
        rng = np.random.default_rng(2024)
        self.X_train = rng.normal(size=(120, 4))
        self.X_test = rng.normal(size=(30, 4))
        self.y_reg = self.X_train @ np.array([1.0, -2.0, 0.5, 0.0]) + rng.normal(scale=0.1, size=120)
        self.y_cls = np.where(self.X_train[:, 0] + self.X_train[:, 1] > 0, "pos", "neg")

    def test_uniform_regression(self):
        ours = KnnPredictor(KnnIndex.build(Dataset(self.X_train, self.y_reg)))
        results = ours.predict_batch(Dataset(self.X_test, np.zeros(30)), 7, Mode.REGRESSION)
        reference = KNeighborsRegressor(n_neighbors=7).fit(self.X_train, self.y_reg).predict(self.X_test)
        np.testing.assert_allclose([r.value for r in results], reference)

    def test_distance_weighted_regression(self):
        ours = KnnPredictor(KnnIndex.build(Dataset(self.X_train, self.y_reg)), weight_fn="distance")
        results = ours.predict_batch(Dataset(self.X_test, np.zeros(30)), 5, Mode.REGRESSION)
        reference = (
            KNeighborsRegressor(n_neighbors=5, weights="distance")
            .fit(self.X_train, self.y_reg)
            .predict(self.X_test)
        )
        np.testing.assert_allclose([r.value for r in results], reference)

    def test_manhattan_classification(self):
        ours = KnnPredictor(KnnIndex.build(Dataset(self.X_train, self.y_cls), "manhattan"))
        results = ours.predict_batch(Dataset(self.X_test, np.zeros(30)), 5, Mode.CLASSIFICATION)
        reference = (
            KNeighborsClassifier(n_neighbors=5, metric="manhattan")
            .fit(self.X_train, self.y_cls)
            .predict(self.X_test)
        )
        self.assertListEqual([r.value for r in results], reference.tolist())

    def test_uniform_classification_probabilities(self):
        ours = KnnPredictor(KnnIndex.build(Dataset(self.X_train, self.y_cls)))
        results = ours.predict_batch(Dataset(self.X_test, np.zeros(30)), 5, Mode.CLASSIFICATION)
        model = KNeighborsClassifier(n_neighbors=5).fit(self.X_train, self.y_cls)
        self.assertListEqual([r.value for r in results], model.predict(self.X_test).tolist())
        proba = model.predict_proba(self.X_test)
        for row, result in zip(proba, results):
            for cls, p in zip(model.classes_, row):
                self.assertAlmostEqual(result.probabilities[cls], p)


if __name__ == "__main__":
    unittest.main()
