"""Inverted-index database of sparse visual-word histograms, with inverse-document-frequency word weights.

Lifecycle: the database is created with the vocabulary size of the tree, populated by a single writer, weighted
(either by loading a weight table or by computing it over the current population), and then queried any number of
times. Queries do not mutate the database, so many readers can query it concurrently once it is weighted.

Authors: voctree developers
"""

from collections import defaultdict
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np

import voctree.utils.logger as logger_utils
from voctree.products.doc_match import DocMatches, SparseHistogram, num_descriptors
from voctree.retriever import similarity
from voctree.retriever.similarity import SimilarityMetric

logger = logger_utils.get_logger()

Histograms = Union[Mapping[int, SparseHistogram], Sequence[SparseHistogram]]


class Database:
    """Visual-word inverted index over documents (images)."""

    def __init__(self, num_words: int) -> None:
        """
        Args:
            num_words: Size of the vocabulary, i.e. number of leaves of the vocabulary tree.
        """
        if num_words <= 0:
            raise ValueError(f"Vocabulary size must be positive, got {num_words}.")
        self._num_words = num_words
        self._histograms: Dict[int, SparseHistogram] = {}
        # word -> {document id: term frequency}
        self._inverted_index: Dict[int, Dict[int, int]] = defaultdict(dict)
        self._num_descriptors = 0

        self._word_weights: Optional[np.ndarray] = None
        self._weights_loaded = False
        # norm order -> {document id: norm of the weighted document vector}
        self._document_norms: Dict[int, Dict[int, float]] = {1: {}, 2: {}}

    def __len__(self) -> int:
        """Number of documents."""
        return len(self._histograms)

    def __repr__(self) -> str:
        return f"""
        Database:
            Words: {self._num_words}
            Documents: {len(self)}
            Descriptors: {self._num_descriptors}
            Weights: {"loaded" if self._weights_loaded else "computed" if self.has_weights else "none"}
        """

    @property
    def num_words(self) -> int:
        return self._num_words

    @property
    def num_descriptors(self) -> int:
        """Total number of descriptors ingested."""
        return self._num_descriptors

    @property
    def histograms(self) -> Mapping[int, SparseHistogram]:
        """Read-only view of the histogram of every document."""
        return MappingProxyType(self._histograms)

    @property
    def weights(self) -> Optional[np.ndarray]:
        return self._word_weights

    @property
    def has_weights(self) -> bool:
        return self._word_weights is not None

    @property
    def weights_loaded(self) -> bool:
        """Whether the weights come from an external table, rather than from this population."""
        return self._weights_loaded

    def document_frequency(self, word: int) -> int:
        """Number of documents containing the word."""
        return len(self._inverted_index.get(word, {}))

    def insert(self, histogram: SparseHistogram, document_id: Optional[int] = None) -> int:
        """Insert one document.

        Args:
            histogram: Sparse histogram of the document. May be empty.
            document_id: Id of the document. A fresh id is used if None.

        Returns:
            Id under which the document was inserted.

        Raises:
            ValueError: If the id is already used, or if a word is out of the vocabulary.
        """
        if document_id is None:
            document_id = max(self._histograms) + 1 if self._histograms else 0
        elif document_id in self._histograms:
            raise ValueError(f"Document {document_id} is already in the database.")
        self._check_words(histogram)

        self._histograms[document_id] = histogram
        for word, indices in histogram.items():
            self._inverted_index[word][document_id] = len(indices)
        self._num_descriptors += num_descriptors(histogram)

        if self._word_weights is not None:
            self._update_document_norms(document_id)
        return document_id

    def populate(self, histograms: Histograms) -> int:
        """Insert a set of documents.

        Args:
            histograms: Either a mapping from document id to histogram, or a sequence of histograms which get
                fresh ids.

        Returns:
            Total number of descriptors ingested. 0 means the database cannot be queried, which callers should treat
            as a fatal error.

        Raises:
            ValueError: If an id is already used, or if a word is out of the vocabulary. Nothing is inserted then.
        """
        items = list(histograms.items()) if isinstance(histograms, Mapping) else [(None, h) for h in histograms]
        # All documents are checked before the first one is inserted.
        for document_id, histogram in items:
            if document_id is not None and document_id in self._histograms:
                raise ValueError(f"Document {document_id} is already in the database.")
            self._check_words(histogram)

        num_ingested = 0
        for document_id, histogram in items:
            self.insert(histogram, document_id)
            num_ingested += num_descriptors(histogram)

        if num_ingested == 0:
            logger.error("No descriptors ingested, the database is empty.")
        else:
            logger.info("Populated database with %d documents, %d descriptors.", len(self), self._num_descriptors)
        return num_ingested

    def set_weights(self, weights: np.ndarray) -> None:
        """Replace the weight table with an external one.

        Raises:
            ValueError: If the table size does not match the vocabulary size.
        """
        weights = np.array(weights, dtype=np.float64)
        if weights.ndim != 1 or weights.shape[0] != self._num_words:
            raise ValueError(
                f"Weight table of shape {weights.shape} does not match the vocabulary size {self._num_words}."
            )
        self._set_weights(weights)
        self._weights_loaded = True

    def load_weights(self, fpath: Union[str, Path]) -> None:
        """Load the weight table from a .npy file.

        Raises:
            ValueError: If the table size does not match the vocabulary size.
        """
        self.set_weights(np.load(fpath, allow_pickle=False))
        logger.info("Loaded %d word weights from %s.", self._num_words, fpath)

    def save_weights(self, fpath: Union[str, Path]) -> None:
        """Save the weight table as a .npy file."""
        if self._word_weights is None:
            raise RuntimeError("The database has no weights to save.")
        Path(fpath).parent.mkdir(parents=True, exist_ok=True)
        np.save(fpath, self._word_weights.astype(np.float32))

    def compute_weights(self) -> None:
        """Compute the inverse-document-frequency weight of each word: log(N / n_w).

        N is the number of documents and n_w the number of documents containing word w. Words absent from every
        document get weight 0. A loaded weight table is kept as is.
        """
        if self._weights_loaded:
            logger.info("Weights were loaded, skipping their computation.")
            return
        num_documents = len(self._histograms)
        if num_documents == 0:
            raise RuntimeError("Cannot compute weights of an empty database.")

        document_frequencies = np.zeros(self._num_words, dtype=np.float64)
        for word, postings in self._inverted_index.items():
            document_frequencies[word] = len(postings)

        weights = np.zeros(self._num_words, dtype=np.float64)
        present = document_frequencies > 0
        weights[present] = np.log(num_documents / document_frequencies[present])
        self._set_weights(weights)
        logger.info("Computed weights of %d words over %d documents.", int(present.sum()), num_documents)

    def _set_weights(self, weights: np.ndarray) -> None:
        weights.setflags(write=False)
        self._word_weights = weights
        for document_id in self._histograms:
            self._update_document_norms(document_id)

    def _update_document_norms(self, document_id: int) -> None:
        vector = similarity.weighted_vector(self._histograms[document_id], self._word_weights)
        for order, norms in self._document_norms.items():
            norms[document_id] = similarity.vector_norm(vector, order)

    def _check_words(self, histogram: SparseHistogram) -> None:
        for word in histogram:
            if not 0 <= word < self._num_words:
                raise ValueError(f"Visual word {word} is out of the vocabulary [0, {self._num_words}).")

    def query(
        self,
        histogram: SparseHistogram,
        num_results: int = 0,
        metric: Union[str, SimilarityMetric] = SimilarityMetric.CLASSIC,
    ) -> DocMatches:
        """Find the documents most similar to the query.

        Args:
            histogram: Sparse histogram of the query document.
            num_results: Number of results. 0 means all the documents, fully ranked.
            metric: Similarity metric, or its name.

        Returns:
            min(num_results, len(self)) matches, by descending score then ascending document id.

        Raises:
            RuntimeError: If the database holds no descriptors, or has no weights.
            ValueError: If the metric is unknown, or a word is out of the vocabulary.
        """
        metric = SimilarityMetric.from_name(metric)
        if self._num_descriptors == 0:
            raise RuntimeError("Cannot query a database holding no descriptors.")
        if self._word_weights is None:
            raise RuntimeError("Database weights must be loaded or computed before querying.")
        self._check_words(histogram)

        touched = similarity.accumulate_scores(
            histogram,
            self._inverted_index,
            self._word_weights,
            self._document_norms.get(metric.norm_order, {}),
            metric,
        )
        scores = {document_id: touched.get(document_id, 0.0) for document_id in self._histograms}
        return similarity.select_top_k(scores, num_results)

    def sanity_check(
        self, num_results: int = 0, metric: Union[str, SimilarityMetric] = SimilarityMetric.CLASSIC
    ) -> Dict[int, DocMatches]:
        """Query the database with each of its own documents.

        With meaningful vocabulary and weights, every document should be its own best match.

        Returns:
            Matches of every document, keyed by document id.
        """
        return {
            document_id: self.query(self._histograms[document_id], num_results, metric)
            for document_id in sorted(self._histograms)
        }
