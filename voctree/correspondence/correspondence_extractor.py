"""Proposes descriptor correspondences between two documents from their shared visual words.

A correspondence is emitted for every visual word holding exactly one descriptor in each document. Words holding more
descriptors on either side are ambiguous and skipped, which keeps the extraction linear in the number of words.
The result is noisy and not geometrically verified.

Authors: voctree developers
"""

from typing import Mapping, Optional

import numpy as np

import voctree.utils.logger as logger_utils
from voctree.products.correspondences import Correspondences, PairwiseCorrespondences
from voctree.products.doc_match import DocMatches, SparseHistogram

logger = logger_utils.get_logger()


class CorrespondenceExtractor:
    """Pairs the descriptors of two documents which are alone in a shared visual word."""

    def __init__(self, compute_distances: bool = False) -> None:
        """
        Args:
            compute_distances: Whether to attach the squared L2 descriptor distance to each correspondence.
        """
        self._compute_distances = compute_distances

    def __repr__(self) -> str:
        return f"CorrespondenceExtractor(compute_distances={self._compute_distances})"

    @property
    def compute_distances(self) -> bool:
        return self._compute_distances

    def extract(
        self,
        histogram_i1: SparseHistogram,
        histogram_i2: SparseHistogram,
        descriptors_i1: Optional[np.ndarray] = None,
        descriptors_i2: Optional[np.ndarray] = None,
    ) -> Correspondences:
        """Extract the correspondences between documents #i1 and #i2.

        Args:
            histogram_i1: Sparse histogram of document #i1.
            histogram_i2: Sparse histogram of document #i2.
            descriptors_i1: Descriptors of document #i1, needed only to compute distances.
            descriptors_i2: Descriptors of document #i2, needed only to compute distances.

        Returns:
            Correspondences sorted by descriptor index in #i1.
        """
        matches = []
        for word, indices_i1 in histogram_i1.items():
            if len(indices_i1) != 1:
                continue
            indices_i2 = histogram_i2.get(word)
            if indices_i2 is None or len(indices_i2) != 1:
                continue
            matches.append((indices_i1[0], indices_i2[0]))

        match_indices = np.array(sorted(matches), dtype=np.int64).reshape(-1, 2)
        if not self._compute_distances:
            return Correspondences(match_indices)

        if descriptors_i1 is None or descriptors_i2 is None:
            raise ValueError("Descriptors of both documents are required to compute correspondence distances.")
        diffs = descriptors_i1[match_indices[:, 0]].astype(np.float64) - descriptors_i2[match_indices[:, 1]]
        return Correspondences(match_indices, distances=np.sum(diffs**2, axis=1))

    def extract_for_matches(
        self,
        query_id: int,
        doc_matches: DocMatches,
        query_histograms: Mapping[int, SparseHistogram],
        database_histograms: Mapping[int, SparseHistogram],
        query_descriptors: Optional[Mapping[int, np.ndarray]] = None,
        database_descriptors: Optional[Mapping[int, np.ndarray]] = None,
    ) -> PairwiseCorrespondences:
        """Extract correspondences between a query document and each of its retrieved matches.

        Documents missing from the histograms (or the descriptors, when distances are computed) are logged and
        skipped, without aborting the other pairs.

        Returns:
            Correspondences keyed by (query id, matched document id).
        """
        correspondences: PairwiseCorrespondences = {}
        if query_id not in query_histograms:
            logger.warning("Could not find the histogram of query document %d, skipping it.", query_id)
            return correspondences

        descriptors_i1 = None
        if self._compute_distances:
            descriptors_i1 = (query_descriptors or {}).get(query_id)
            if descriptors_i1 is None:
                logger.warning("Could not find the descriptors of query document %d, skipping it.", query_id)
                return correspondences

        for match in doc_matches:
            if match.id not in database_histograms:
                logger.warning("Could not find the histogram of document %d, skipping it.", match.id)
                continue
            descriptors_i2 = None
            if self._compute_distances:
                descriptors_i2 = (database_descriptors or {}).get(match.id)
                if descriptors_i2 is None:
                    logger.warning("Could not find the descriptors of document %d, skipping it.", match.id)
                    continue
            correspondences[(query_id, match.id)] = self.extract(
                query_histograms[query_id], database_histograms[match.id], descriptors_i1, descriptors_i2
            )
        return correspondences
