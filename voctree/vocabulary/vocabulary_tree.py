"""Hierarchical k-means vocabulary tree, which quantizes a descriptor into a visual word.

The tree is trained elsewhere and only loaded here. Centers of all levels are stored flattened, level after level:
level l (0-based) holds K^(l+1) centers, and the children of node n at level l are centers
[n * K, (n + 1) * K) of level l + 1. The visual word of a descriptor is the index of the leaf it reaches.

Ref: Nister and Stewenius, Scalable Recognition with a Vocabulary Tree, CVPR 2006.

Authors: voctree developers
"""

from pathlib import Path
from typing import List, Optional, Union

import numpy as np

import voctree.utils.logger as logger_utils

logger = logger_utils.get_logger()

REQUIRED_KEYS = ("branching_factor", "num_levels", "centers")

# 1024 SIFT descriptors with K=10 need ~10 MB per temporary.
QUANTIZE_CHUNK_SIZE = 1024


class VocabularyTree:
    """Immutable vocabulary tree with branching factor K and L levels, i.e. K^L visual words."""

    def __init__(
        self,
        centers: np.ndarray,
        branching_factor: int,
        num_levels: int,
        valid_centers: Optional[np.ndarray] = None,
    ) -> None:
        """Initializes the tree and checks it for consistency.

        Args:
            centers: Centers of all the tree nodes (except the root), of shape (K + K^2 + ... + K^L, D).
            branching_factor: Number of children (K) of each internal node.
            num_levels: Number of levels (L) below the root.
            valid_centers: Optional boolean mask over centers. Invalid centers are never selected.

        Raises:
            ValueError: If the metadata is inconsistent with the centers.
        """
        if branching_factor < 2:
            raise ValueError(f"Branching factor must be at least 2, got {branching_factor}.")
        if num_levels < 1:
            raise ValueError(f"Number of levels must be at least 1, got {num_levels}.")

        centers = np.asarray(centers)
        if centers.ndim != 2:
            raise ValueError(f"Centers must be a 2D array, got shape {centers.shape}.")

        level_sizes = [branching_factor ** (level + 1) for level in range(num_levels)]
        expected_num_centers = sum(level_sizes)
        if centers.shape[0] != expected_num_centers:
            raise ValueError(
                f"Tree with K={branching_factor} and L={num_levels} needs {expected_num_centers} centers, "
                f"got {centers.shape[0]}."
            )

        if valid_centers is None:
            valid_centers = np.ones(expected_num_centers, dtype=bool)
        valid_centers = np.array(valid_centers, dtype=bool).reshape(-1)
        if valid_centers.shape[0] != expected_num_centers:
            raise ValueError(
                f"Validity mask has {valid_centers.shape[0]} entries, expected {expected_num_centers}."
            )

        self._branching_factor = branching_factor
        self._num_levels = num_levels
        self._level_offsets = np.concatenate([[0], np.cumsum(level_sizes)[:-1]]).astype(np.int64)
        self._centers = centers.astype(np.float64)
        self._valid_centers = valid_centers
        self._centers.setflags(write=False)
        self._valid_centers.setflags(write=False)

        self.__check_reachable_nodes_have_children()

    def __check_reachable_nodes_have_children(self) -> None:
        """A valid internal node with no valid child cannot be descended into."""
        K = self._branching_factor
        for level in range(self._num_levels - 1):
            parents_valid = self._level_mask(level)
            children_valid = self._level_mask(level + 1).reshape(-1, K)
            dead_ends = np.nonzero(parents_valid & ~children_valid.any(axis=1))[0]
            if dead_ends.size > 0:
                raise ValueError(f"Malformed tree: node {dead_ends[0]} at level {level} has no valid child.")
        if not self._level_mask(0).any():
            raise ValueError("Malformed tree: the root has no valid child.")

    def _level_mask(self, level: int) -> np.ndarray:
        start = self._level_offsets[level]
        return self._valid_centers[start : start + self._branching_factor ** (level + 1)]

    @property
    def branching_factor(self) -> int:
        return self._branching_factor

    @property
    def num_levels(self) -> int:
        return self._num_levels

    @property
    def num_words(self) -> int:
        """Size of the vocabulary, i.e. number of leaves."""
        return self._branching_factor**self._num_levels

    @property
    def descriptor_dim(self) -> int:
        return self._centers.shape[1]

    @property
    def centers(self) -> np.ndarray:
        return self._centers

    @property
    def valid_centers(self) -> np.ndarray:
        return self._valid_centers

    def quantize(self, descriptor: np.ndarray) -> int:
        """Descend the tree by picking the nearest valid child (squared L2) at each level.

        Args:
            descriptor: Descriptor of shape (D,).

        Returns:
            Visual word id, in [0, num_words).
        """
        descriptor = np.asarray(descriptor, dtype=np.float64).reshape(-1)
        self.__check_dim(descriptor.shape[0])

        K = self._branching_factor
        node = 0
        for level in range(self._num_levels):
            start = self._level_offsets[level] + node * K
            children = self._centers[start : start + K]
            dists = np.sum((children - descriptor) ** 2, axis=1)
            dists[~self._valid_centers[start : start + K]] = np.inf
            node = node * K + int(np.argmin(dists))
        return node

    def quantize_batch(self, descriptors: np.ndarray, chunk_size: int = QUANTIZE_CHUNK_SIZE) -> np.ndarray:
        """Vectorized version of `quantize()`, with identical results.

        Args:
            descriptors: Descriptors of shape (N, D).
            chunk_size: Number of descriptors quantized at once. Bounds the (chunk_size, K, D) temporaries.

        Returns:
            Visual word ids of shape (N,).
        """
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}.")
        descriptors = np.asarray(descriptors)
        if descriptors.size == 0:
            return np.zeros((0,), dtype=np.int64)
        if descriptors.ndim != 2:
            raise ValueError(f"Descriptors must be a 2D array, got shape {descriptors.shape}.")
        self.__check_dim(descriptors.shape[1])

        words = np.empty(descriptors.shape[0], dtype=np.int64)
        for start in range(0, descriptors.shape[0], chunk_size):
            chunk = descriptors[start : start + chunk_size].astype(np.float64)
            words[start : start + chunk.shape[0]] = self.__quantize_chunk(chunk)
        return words

    def __quantize_chunk(self, descriptors: np.ndarray) -> np.ndarray:
        K = self._branching_factor
        child_offsets = np.arange(K, dtype=np.int64)
        nodes = np.zeros(descriptors.shape[0], dtype=np.int64)
        for level in range(self._num_levels):
            # (N, K) indices of the candidate children of every descriptor's current node.
            child_idxs = self._level_offsets[level] + nodes[:, np.newaxis] * K + child_offsets
            children = self._centers[child_idxs]
            dists = np.sum((children - descriptors[:, np.newaxis, :]) ** 2, axis=2)
            dists[~self._valid_centers[child_idxs]] = np.inf
            nodes = nodes * K + np.argmin(dists, axis=1)
        return nodes

    def __check_dim(self, dim: int) -> None:
        if dim != self.descriptor_dim:
            raise ValueError(f"Descriptor dimension {dim} does not match the tree dimension {self.descriptor_dim}.")

    def __repr__(self) -> str:
        return f"""
        VocabularyTree:
            Branching factor: {self._branching_factor}
            Levels: {self._num_levels}
            Words: {self.num_words}
            Descriptor dim: {self.descriptor_dim}
        """

    def save(self, fpath: Union[str, Path]) -> None:
        """Save the tree as an .npz archive."""
        Path(fpath).parent.mkdir(parents=True, exist_ok=True)
        np.savez(
            fpath,
            branching_factor=self._branching_factor,
            num_levels=self._num_levels,
            centers=self._centers,
            valid_centers=self._valid_centers,
        )

    @classmethod
    def load(cls, fpath: Union[str, Path]) -> "VocabularyTree":
        """Load a trained tree from an .npz archive.

        Raises:
            ValueError: If the archive is missing entries, or is inconsistent.
        """
        with np.load(fpath) as data:
            missing: List[str] = [key for key in REQUIRED_KEYS if key not in data.files]
            if missing:
                raise ValueError(f"Vocabulary tree file {fpath} is missing entries: {missing}.")
            tree = cls(
                centers=data["centers"],
                branching_factor=int(data["branching_factor"]),
                num_levels=int(data["num_levels"]),
                valid_centers=data["valid_centers"] if "valid_centers" in data.files else None,
            )
        logger.info(
            "Loaded vocabulary tree with %d levels, branching factor %d (%d words).",
            tree.num_levels,
            tree.branching_factor,
            tree.num_words,
        )
        return tree
