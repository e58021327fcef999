"""Similarity metrics between a query document and the documents of an inverted index.

All metrics are similarities: higher is better, and a document sharing no visual word with the query scores 0.
Scores are accumulated only over the visual words of the query, by walking the posting list of each of those words.

The "classic" metric is the histogram intersection of L1-normalized tf-idf vectors. For L1-normalized vectors
|q - d|_1 = 2 - 2 * sum_w min(q_w, d_w), so it ranks documents exactly like the L1 distance does.

Authors: voctree developers
"""

import heapq
from enum import Enum
from typing import Callable, Dict, List, Mapping, Union

import numpy as np

from voctree.products.doc_match import DocMatch, DocMatches, SparseHistogram

# visual word -> {document id: number of descriptors of that document assigned to the word}
InvertedIndex = Mapping[int, Mapping[int, int]]
Scores = Dict[int, float]


class SimilarityMetric(Enum):
    """Closed set of the similarity metrics supported by the query engine."""

    CLASSIC = "classic"
    COSINE = "cosine"
    COMMON_POINTS = "commonPoints"
    STRONG_COMMON_POINTS = "strongCommonPoints"

    @classmethod
    def from_name(cls, name: Union[str, "SimilarityMetric"]) -> "SimilarityMetric":
        """Resolve a metric from its configuration name.

        Raises:
            ValueError: If the name is not one of `available_metrics()`.
        """
        if isinstance(name, cls):
            return name
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown similarity metric '{name}'. Available metrics: {available_metrics()}") from None

    @property
    def norm_order(self) -> int:
        """Order of the norm used to normalize the weighted vectors, or 0 if unnormalized."""
        return _NORM_ORDERS.get(self, 0)


_NORM_ORDERS = {SimilarityMetric.CLASSIC: 1, SimilarityMetric.COSINE: 2}


def available_metrics() -> List[str]:
    """Names of all the supported metrics."""
    return [metric.value for metric in SimilarityMetric]


def weighted_vector(histogram: SparseHistogram, weights: np.ndarray) -> Dict[int, float]:
    """Sparse tf-idf vector of a document: number of descriptors of each word times the word weight."""
    return {word: len(indices) * float(weights[word]) for word, indices in histogram.items()}


def vector_norm(vector: Mapping[int, float], order: int) -> float:
    values = np.fromiter(vector.values(), dtype=np.float64, count=len(vector))
    if values.size == 0:
        return 0.0
    return float(np.linalg.norm(values, ord=order))


def _accumulate_normalized(
    query_histogram: SparseHistogram,
    inverted_index: InvertedIndex,
    weights: np.ndarray,
    document_norms: Mapping[int, float],
    order: int,
) -> Scores:
    query_vector = weighted_vector(query_histogram, weights)
    query_norm = vector_norm(query_vector, order)
    scores: Scores = {}
    if query_norm == 0:
        return scores

    for word, query_value in query_vector.items():
        postings = inverted_index.get(word)
        if not postings:
            continue
        weight = float(weights[word])
        q = query_value / query_norm
        for document_id, term_frequency in postings.items():
            document_norm = document_norms[document_id]
            if document_norm == 0:
                continue
            d = term_frequency * weight / document_norm
            contribution = min(q, d) if order == 1 else q * d
            scores[document_id] = scores.get(document_id, 0.0) + contribution
    return scores


def _accumulate_classic(query_histogram, inverted_index, weights, document_norms) -> Scores:
    return _accumulate_normalized(query_histogram, inverted_index, weights, document_norms, order=1)


def _accumulate_cosine(query_histogram, inverted_index, weights, document_norms) -> Scores:
    return _accumulate_normalized(query_histogram, inverted_index, weights, document_norms, order=2)


def _accumulate_common_points(query_histogram, inverted_index, weights, document_norms) -> Scores:
    """Number of visual words shared with the query."""
    scores: Scores = {}
    for word in query_histogram:
        for document_id in inverted_index.get(word, {}):
            scores[document_id] = scores.get(document_id, 0.0) + 1.0
    return scores


def _accumulate_strong_common_points(query_histogram, inverted_index, weights, document_norms) -> Scores:
    """Sum of the weights of the words which hold exactly one descriptor in both the query and the document.

    Rare words carry high weights, so documents sharing many discriminative, unambiguous words rank first.
    """
    scores: Scores = {}
    for word, indices in query_histogram.items():
        if len(indices) != 1:
            continue
        weight = float(weights[word])
        for document_id, term_frequency in inverted_index.get(word, {}).items():
            if term_frequency == 1:
                scores[document_id] = scores.get(document_id, 0.0) + weight
    return scores


_ACCUMULATORS: Dict[SimilarityMetric, Callable[..., Scores]] = {
    SimilarityMetric.CLASSIC: _accumulate_classic,
    SimilarityMetric.COSINE: _accumulate_cosine,
    SimilarityMetric.COMMON_POINTS: _accumulate_common_points,
    SimilarityMetric.STRONG_COMMON_POINTS: _accumulate_strong_common_points,
}


def accumulate_scores(
    query_histogram: SparseHistogram,
    inverted_index: InvertedIndex,
    weights: np.ndarray,
    document_norms: Mapping[int, float],
    metric: SimilarityMetric,
) -> Scores:
    """Accumulate the similarity of the query to every document sharing at least one word with it.

    Args:
        query_histogram: Sparse histogram of the query.
        inverted_index: Posting lists of the database.
        weights: Weight of each visual word, of shape (num_words,).
        document_norms: Norm (of order `metric.norm_order`) of the weighted vector of each document.
        metric: Metric to use.

    Returns:
        Scores of the documents touched by the query. Absent documents have score 0.
    """
    return _ACCUMULATORS[metric](query_histogram, inverted_index, weights, document_norms)


def select_top_k(scores: Mapping[int, float], k: int) -> DocMatches:
    """Rank documents by descending score, breaking ties by ascending document id.

    Args:
        scores: Score of each document.
        k: Number of results. 0 means all the documents.

    Returns:
        min(k, len(scores)) matches, best first.
    """
    if k < 0:
        raise ValueError(f"Number of results must be non-negative, got {k}.")
    matches = [DocMatch(id=document_id, score=float(score)) for document_id, score in scores.items()]

    def rank_key(match: DocMatch):
        return (-match.score, match.id)

    if k == 0 or k >= len(matches):
        return sorted(matches, key=rank_key)
    return heapq.nsmallest(k, matches, key=rank_key)
