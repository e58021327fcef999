"""Base class for loaders of per-image descriptor sets.

Authors: voctree developers
"""

import abc
from typing import Dict, List

import dask
import numpy as np
from dask.delayed import Delayed


class DescriptorLoaderBase(metaclass=abc.ABCMeta):
    """Base class for descriptor loaders.

    The loader provides the descriptors of each image (document), either directly or as a dask delayed task.
    Images are addressed by a position in [0, len(loader)), and each position maps to a document id.
    """

    def __init__(self, descriptor_dim: int = 128, dtype: str = "uint8") -> None:
        """
        Args:
            descriptor_dim: Dimension D of the descriptors.
            dtype: Element type of the descriptors, e.g. "uint8" or "float32".
        """
        if descriptor_dim <= 0:
            raise ValueError(f"Descriptor dimension must be positive, got {descriptor_dim}.")
        self._descriptor_dim = descriptor_dim
        self._dtype = np.dtype(dtype)

    @property
    def descriptor_dim(self) -> int:
        return self._descriptor_dim

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    # ignored-abstractmethod
    @abc.abstractmethod
    def __len__(self) -> int:
        """The number of images, found without loading any descriptor."""

    # ignored-abstractmethod
    @abc.abstractmethod
    def document_ids(self) -> List[int]:
        """Document id of each image, in loader order."""

    # ignored-abstractmethod
    @abc.abstractmethod
    def image_filenames(self) -> List[str]:
        """File name of each image, in loader order."""

    # ignored-abstractmethod
    @abc.abstractmethod
    def _load_descriptors(self, index: int) -> np.ndarray:
        """Load the raw descriptor array of the image at the given index."""

    def get_descriptors(self, index: int) -> np.ndarray:
        """Get the descriptors of the image at the given index.

        Args:
            index: The index to fetch.

        Raises:
            IndexError: If an out-of-bounds index is requested.
            ValueError: If the stored array does not hold descriptors of the configured dimension, or if its values
                cannot be represented in the configured element type.

        Returns:
            Descriptors of shape (N, D), of the configured element type.
        """
        if not 0 <= index < len(self):
            raise IndexError(f"Image index {index} is out of bounds for {len(self)} images.")

        descriptors = np.asarray(self._load_descriptors(index))
        if descriptors.size == 0:
            return np.zeros((0, self._descriptor_dim), dtype=self._dtype)
        if descriptors.ndim != 2 or descriptors.shape[1] != self._descriptor_dim:
            raise ValueError(
                f"Descriptors of {self.image_filenames()[index]} have shape {descriptors.shape}, "
                f"expected (N, {self._descriptor_dim})."
            )
        if not self.__is_lossless_cast(descriptors):
            raise ValueError(
                f"Descriptors of {self.image_filenames()[index]} ({descriptors.dtype}) cannot be stored as "
                f"{self._dtype} without loss."
            )
        return descriptors.astype(self._dtype, copy=False)

    def __is_lossless_cast(self, descriptors: np.ndarray) -> bool:
        """Whether every value survives the cast to the configured element type.

        Casting to floating point is always accepted. Casting to an integer type requires finite integral values
        within the range of that type.
        """
        if np.can_cast(descriptors.dtype, self._dtype, casting="safe") or np.issubdtype(self._dtype, np.floating):
            return True
        if not np.issubdtype(self._dtype, np.integer):
            return False
        if not (np.issubdtype(descriptors.dtype, np.integer) or np.issubdtype(descriptors.dtype, np.floating)):
            return False
        if np.issubdtype(descriptors.dtype, np.floating):
            if not np.isfinite(descriptors).all() or not (descriptors == np.round(descriptors)).all():
                return False
        dtype_info = np.iinfo(self._dtype)
        return bool(descriptors.min() >= dtype_info.min and descriptors.max() <= dtype_info.max)

    def get_descriptors_by_document_id(self) -> Dict[int, np.ndarray]:
        """Load the descriptors of every image, keyed by document id."""
        return {document_id: self.get_descriptors(i) for i, document_id in enumerate(self.document_ids())}

    def create_computation_graph_for_descriptors(self) -> List[Delayed]:
        """Creates a computation graph to fetch the descriptors of every image.

        Returns:
            List of delayed tasks for descriptors, in loader order.
        """
        return [dask.delayed(self.get_descriptors)(i) for i in range(len(self))]
