"""Result types for database queries, and the sparse histogram representation of a document.

Authors: voctree developers
"""

from dataclasses import dataclass
from typing import Dict, List

VisualWord = int
DocumentId = int

# visual word -> indices of the descriptors assigned to it, in first-seen order.
SparseHistogram = Dict[VisualWord, List[int]]
SparseHistogramPerImage = Dict[DocumentId, SparseHistogram]


@dataclass(frozen=True)
class DocMatch:
    """A database document retrieved for a query, with its similarity score (higher is more similar)."""

    id: DocumentId
    score: float


DocMatches = List[DocMatch]


def num_descriptors(histogram: SparseHistogram) -> int:
    """Number of descriptors quantized into the histogram."""
    return sum(len(indices) for indices in histogram.values())
