"""Builds the sparse visual-word histogram (the "document") of an image from its descriptors.

Authors: voctree developers
"""

from typing import List

import dask
import numpy as np
from dask.delayed import Delayed

from voctree.products.doc_match import SparseHistogram
from voctree.vocabulary.vocabulary_tree import VocabularyTree


class HistogramBuilder:
    """Quantizes each descriptor of an image and groups descriptor indices by visual word.

    Holds no state across images.
    """

    def __init__(self, max_descriptors: int = 0) -> None:
        """
        Args:
            max_descriptors: If positive, only the first `max_descriptors` descriptors of an image are used.
        """
        if max_descriptors < 0:
            raise ValueError(f"max_descriptors must be non-negative, got {max_descriptors}.")
        self._max_descriptors = max_descriptors

    def __repr__(self) -> str:
        return f"HistogramBuilder(max_descriptors={self._max_descriptors})"

    @property
    def max_descriptors(self) -> int:
        return self._max_descriptors

    def build(self, tree: VocabularyTree, descriptors: np.ndarray) -> SparseHistogram:
        """Build the histogram of one image.

        Args:
            tree: Vocabulary tree used for quantization.
            descriptors: Descriptors of the image, of shape (N, D).

        Returns:
            Mapping from visual word to descriptor indices, with words in first-seen order and indices ascending.
        """
        if self._max_descriptors > 0:
            descriptors = descriptors[: self._max_descriptors]

        histogram: SparseHistogram = {}
        for descriptor_idx, word in enumerate(tree.quantize_batch(descriptors).tolist()):
            histogram.setdefault(word, []).append(descriptor_idx)
        return histogram

    def create_computation_graph(self, tree: VocabularyTree, descriptor_graphs: List[Delayed]) -> List[Delayed]:
        """Create one histogram-building task per image.

        Args:
            tree: Vocabulary tree, shared read-only by all the tasks.
            descriptor_graphs: Descriptors of each image, wrapped up in Delayed.

        Returns:
            Delayed histograms, one per image.
        """
        # Shipped once to each worker, not once per task.
        tree_graph = dask.delayed(tree, traverse=False)
        return [dask.delayed(self.build)(tree_graph, descriptors) for descriptors in descriptor_graphs]
