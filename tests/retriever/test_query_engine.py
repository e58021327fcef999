"""Unit tests for the query engine.

Authors: voctree developers
"""

import unittest

import dask

from voctree.database.database import Database
from voctree.retriever.query_engine import QueryEngine
from voctree.retriever.similarity import SimilarityMetric

# Four documents over 8 words, each with distinctive words of its own and word 7 in common.
DATABASE_HISTOGRAMS = {
    0: {0: [0], 1: [1], 7: [2]},
    1: {2: [0], 3: [1], 7: [2]},
    2: {4: [0], 5: [1], 7: [2]},
    3: {6: [0], 7: [1, 2]},
}


def get_weighted_database() -> Database:
    database = Database(num_words=8)
    database.populate(DATABASE_HISTOGRAMS)
    database.compute_weights()
    return database


class TestQueryEngine(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.database = get_weighted_database()

    def test_default_metric(self) -> None:
        engine = QueryEngine(self.database)
        self.assertEqual(engine.metric, SimilarityMetric.STRONG_COMMON_POINTS)

    def test_unknown_metric(self) -> None:
        with self.assertRaises(ValueError):
            QueryEngine(self.database, metric="euclidean")

    def test_negative_num_results(self) -> None:
        with self.assertRaises(ValueError):
            QueryEngine(self.database, num_results=-1)

    def test_query(self) -> None:
        engine = QueryEngine(self.database, metric="strongCommonPoints", num_results=2)
        matches = engine.query({2: [0], 3: [1]})

        self.assertEqual(len(matches), 2)
        self.assertEqual(matches[0].id, 1)
        self.assertGreater(matches[0].score, 0.0)
        # Remaining documents all score 0, the lowest id comes first.
        self.assertEqual(matches[1].id, 0)
        self.assertEqual(matches[1].score, 0.0)

    def test_query_does_not_mutate_database(self) -> None:
        engine = QueryEngine(self.database, metric="classic", num_results=0)
        weights_before = self.database.weights.copy()
        engine.query({0: [0], 4: [1]})

        self.assertEqual(len(self.database), 4)
        self.assertEqual(self.database.num_descriptors, 12)
        self.assertTrue((self.database.weights == weights_before).all())

    def test_query_batch_matches_sequential_queries(self) -> None:
        engine = QueryEngine(self.database, metric=SimilarityMetric.COSINE, num_results=3)
        queries = {10: {0: [0], 7: [1]}, 11: {5: [0]}, 12: {}}

        with dask.config.set(scheduler="threads"):
            batch_matches = engine.query_batch(queries)

        self.assertEqual(sorted(batch_matches), [10, 11, 12])
        for query_id, histogram in queries.items():
            self.assertEqual(batch_matches[query_id], engine.query(histogram))

    def test_sanity_check(self) -> None:
        engine = QueryEngine(self.database, metric="classic", num_results=1)
        result = engine.sanity_check()

        self.assertEqual(sorted(result.doc_matches), [0, 1, 2, 3])
        self.assertEqual(result.num_wrong_matches, 0)
        for document_id, matches in result.doc_matches.items():
            self.assertEqual(matches[0].id, document_id)

    def test_sanity_check_reports_wrong_matches(self) -> None:
        """Two identical documents cannot both be their own best match."""
        database = Database(num_words=4)
        database.populate({0: {1: [0]}, 1: {1: [0]}, 2: {2: [0]}})
        database.compute_weights()

        result = QueryEngine(database, metric="commonPoints", num_results=1).sanity_check()
        self.assertEqual(result.wrong_document_ids, [1])


if __name__ == "__main__":
    unittest.main()
