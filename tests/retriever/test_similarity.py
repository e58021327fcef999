"""Unit tests for the similarity metrics and the top-k selection.

Authors: voctree developers
"""

import unittest

import numpy as np

from voctree.products.doc_match import DocMatch
from voctree.retriever import similarity
from voctree.retriever.similarity import SimilarityMetric

WEIGHTS = np.array([1.0, 2.0, 0.5, 3.0])

# word -> {document id: term frequency}
INVERTED_INDEX = {
    0: {10: 2, 11: 1},
    1: {10: 1},
    2: {11: 1, 12: 3},
}
DOCUMENT_HISTOGRAMS = {
    10: {0: [0, 1], 1: [2]},
    11: {0: [0], 2: [1]},
    12: {2: [0, 1, 2]},
}


def get_document_norms(order: int):
    return {
        document_id: similarity.vector_norm(similarity.weighted_vector(histogram, WEIGHTS), order)
        for document_id, histogram in DOCUMENT_HISTOGRAMS.items()
    }


class TestSimilarityMetric(unittest.TestCase):
    def test_from_name(self) -> None:
        self.assertEqual(SimilarityMetric.from_name("strongCommonPoints"), SimilarityMetric.STRONG_COMMON_POINTS)
        self.assertEqual(SimilarityMetric.from_name(SimilarityMetric.COSINE), SimilarityMetric.COSINE)

    def test_from_unknown_name(self) -> None:
        with self.assertRaises(ValueError):
            SimilarityMetric.from_name("StrongCommonPoints")

    def test_available_metrics(self) -> None:
        self.assertEqual(
            similarity.available_metrics(), ["classic", "cosine", "commonPoints", "strongCommonPoints"]
        )


class TestAccumulateScores(unittest.TestCase):
    def test_common_points(self) -> None:
        query = {0: [0], 2: [1, 2], 3: [3]}
        scores = similarity.accumulate_scores(query, INVERTED_INDEX, WEIGHTS, {}, SimilarityMetric.COMMON_POINTS)
        self.assertEqual(scores, {10: 1.0, 11: 2.0, 12: 1.0})

    def test_strong_common_points(self) -> None:
        """Only words with a single descriptor on both sides count, with their weight."""
        query = {0: [0], 1: [1], 2: [2]}
        scores = similarity.accumulate_scores(
            query, INVERTED_INDEX, WEIGHTS, {}, SimilarityMetric.STRONG_COMMON_POINTS
        )
        # Document 10 holds 2 descriptors in word 0, document 12 holds 3 in word 2.
        self.assertEqual(scores, {10: 2.0, 11: 1.5})

    def test_strong_common_points_ambiguous_query_word(self) -> None:
        query = {0: [0, 1]}
        scores = similarity.accumulate_scores(
            query, INVERTED_INDEX, WEIGHTS, {}, SimilarityMetric.STRONG_COMMON_POINTS
        )
        self.assertEqual(scores, {})

    def test_classic_self_similarity(self) -> None:
        """The histogram intersection of a normalized vector with itself is 1."""
        scores = similarity.accumulate_scores(
            DOCUMENT_HISTOGRAMS[10], INVERTED_INDEX, WEIGHTS, get_document_norms(1), SimilarityMetric.CLASSIC
        )
        self.assertAlmostEqual(scores[10], 1.0)
        self.assertTrue(all(score < 1.0 for document_id, score in scores.items() if document_id != 10))

    def test_cosine_self_similarity(self) -> None:
        scores = similarity.accumulate_scores(
            DOCUMENT_HISTOGRAMS[11], INVERTED_INDEX, WEIGHTS, get_document_norms(2), SimilarityMetric.COSINE
        )
        self.assertAlmostEqual(scores[11], 1.0)
        self.assertTrue(all(score < 1.0 for document_id, score in scores.items() if document_id != 11))

    def test_zero_weight_query(self) -> None:
        """A query made only of zero-weight words touches no document."""
        weights = np.zeros(4)
        scores = similarity.accumulate_scores({0: [0]}, INVERTED_INDEX, weights, {}, SimilarityMetric.CLASSIC)
        self.assertEqual(scores, {})


class TestSelectTopK(unittest.TestCase):
    def test_top_k(self) -> None:
        scores = {3: 0.5, 1: 2.0, 7: 1.0, 2: 0.1}
        matches = similarity.select_top_k(scores, 2)
        self.assertEqual(matches, [DocMatch(1, 2.0), DocMatch(7, 1.0)])

    def test_ties_broken_by_id(self) -> None:
        scores = {5: 1.0, 2: 1.0, 9: 3.0, 4: 1.0}
        matches = similarity.select_top_k(scores, 3)
        self.assertEqual([match.id for match in matches], [9, 2, 4])

    def test_zero_returns_all_sorted(self) -> None:
        scores = {0: 0.0, 1: 4.0, 2: 2.0}
        matches = similarity.select_top_k(scores, 0)
        self.assertEqual([match.id for match in matches], [1, 2, 0])

    def test_k_larger_than_number_of_documents(self) -> None:
        scores = {0: 1.0, 1: 2.0}
        self.assertEqual(len(similarity.select_top_k(scores, 10)), 2)

    def test_matches_full_sort(self) -> None:
        rng = np.random.default_rng(3)
        scores = {document_id: float(score) for document_id, score in enumerate(rng.integers(0, 5, size=50))}
        full_ranking = similarity.select_top_k(scores, 0)
        for k in (1, 5, 17, 49):
            self.assertEqual(similarity.select_top_k(scores, k), full_ranking[:k])

    def test_negative_k(self) -> None:
        with self.assertRaises(ValueError):
            similarity.select_top_k({0: 1.0}, -1)


if __name__ == "__main__":
    unittest.main()
