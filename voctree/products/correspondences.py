"""Putative descriptor correspondences between two documents.

Authors: voctree developers
"""

from typing import Dict, Optional, Tuple

import numpy as np

DocumentPair = Tuple[int, int]


class Correspondences:
    """Candidate descriptor-to-descriptor matches between documents #i1 and #i2.

    Not geometrically verified.

    Output format of `match_indices`:
    1. Each row represents a match.
    2. First column represents descriptor index from document #i1.
    3. Second column represents descriptor index from document #i2.
    """

    def __init__(self, match_indices: np.ndarray, distances: Optional[np.ndarray] = None) -> None:
        """
        Args:
            match_indices: Array of shape (N, 2).
            distances: Optional squared descriptor distance per match, of shape (N,).
        """
        match_indices = np.asarray(match_indices, dtype=np.int64).reshape(-1, 2)
        if distances is not None and len(distances) != match_indices.shape[0]:
            raise ValueError(
                f"Got {len(distances)} distances for {match_indices.shape[0]} correspondences."
            )
        self.match_indices = match_indices
        self.distances = distances

    def __len__(self) -> int:
        return self.match_indices.shape[0]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Correspondences):
            return False
        if not np.array_equal(self.match_indices, other.match_indices):
            return False
        if self.distances is None or other.distances is None:
            return self.distances is None and other.distances is None
        return np.allclose(self.distances, other.distances)

    def __repr__(self) -> str:
        return f"Correspondences(num_matches={len(self)}, has_distances={self.distances is not None})"


PairwiseCorrespondences = Dict[DocumentPair, Correspondences]
