"""Loader for a folder holding one .npy descriptor file per image.

Folder layout:

    folder/
        12.sift.npy
        15.sift.npy
        ...

The first component of a file name is the document (view) id when it is an integer. Otherwise, images are numbered
in sorted file name order.

Authors: voctree developers
"""

from pathlib import Path
from typing import List, Union

import numpy as np

import voctree.utils.logger as logger_utils
from voctree.loader.descriptor_loader_base import DescriptorLoaderBase

logger = logger_utils.get_logger()

DESCRIPTOR_FILE_EXTENSION = ".npy"


class FolderDescriptorLoader(DescriptorLoaderBase):
    """Loads the descriptors of each image from a .npy file."""

    def __init__(self, folder: Union[str, Path], descriptor_dim: int = 128, dtype: str = "uint8") -> None:
        """
        Args:
            folder: Directory holding the descriptor files.
            descriptor_dim: Dimension D of the descriptors.
            dtype: Element type of the descriptors.

        Raises:
            FileNotFoundError: If the folder does not exist.
            ValueError: If two files map to the same document id.
        """
        super().__init__(descriptor_dim=descriptor_dim, dtype=dtype)
        self._folder = Path(folder)
        if not self._folder.is_dir():
            raise FileNotFoundError(f"Descriptor folder {self._folder} does not exist.")

        self._fpaths: List[Path] = sorted(self._folder.glob(f"*{DESCRIPTOR_FILE_EXTENSION}"))
        stems = [fpath.name.split(".")[0] for fpath in self._fpaths]
        if all(stem.isdigit() for stem in stems):
            self._document_ids = [int(stem) for stem in stems]
        else:
            self._document_ids = list(range(len(self._fpaths)))

        if len(set(self._document_ids)) != len(self._document_ids):
            raise ValueError(f"Descriptor files in {self._folder} map to duplicate document ids.")
        logger.info("Found %d descriptor files in %s.", len(self._fpaths), self._folder)

    def __len__(self) -> int:
        return len(self._fpaths)

    def document_ids(self) -> List[int]:
        return list(self._document_ids)

    def image_filenames(self) -> List[str]:
        return [fpath.name for fpath in self._fpaths]

    def _load_descriptors(self, index: int) -> np.ndarray:
        return np.load(self._fpaths[index], allow_pickle=False)
