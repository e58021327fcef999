import tempfile
import unittest
from pathlib import Path

import numpy as np

import voctree.utils.io as io_utils
from voctree.products.correspondences import Correspondences
from voctree.products.doc_match import DocMatch


class TestIoUtils(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self._tempdir = tempfile.TemporaryDirectory()
        self.output_dir = Path(self._tempdir.name)

    def tearDown(self) -> None:
        self._tempdir.cleanup()
        super().tearDown()

    def test_save_json_file_nan(self) -> None:
        """NaN values must be written as null, to keep the file valid JSON."""
        fpath = self.output_dir / "nested" / "data.json"
        io_utils.save_json_file(fpath, {"a": [1.0, float("nan")], "b": "text"})
        self.assertEqual(io_utils.read_json_file(fpath), {"a": [1.0, None], "b": "text"})

    def test_save_document_map(self) -> None:
        fpath = self.output_dir / "document_map.txt"
        io_utils.save_document_map(fpath, {4: {3: [0], 1: [1, 2]}, 9: {}})
        self.assertEqual(fpath.read_text(), "d{4} = [3, 1]\nd{9} = []\n")

    def test_save_doc_matches(self) -> None:
        fpath = self.output_dir / "matches.txt"
        io_utils.save_doc_matches(fpath, {2: [DocMatch(2, 1.5), DocMatch(0, 0.25)], 0: []})
        self.assertEqual(fpath.read_text(), "Camera: 2\n2 2 1.5\n2 0 0.25\nCamera: 0\n")

    def test_save_doc_matches_matlab(self) -> None:
        fpath = self.output_dir / "matches.m"
        io_utils.save_doc_matches(fpath, {2: [DocMatch(2, 1.5), DocMatch(0, 0.25)]}, matlab_format=True)
        self.assertEqual(fpath.read_text(), "m{3}=[ 2, 1.5; 0, 0.25; ];\n")

    def test_save_correspondences(self) -> None:
        fpath = self.output_dir / "correspondences.json"
        correspondences = {
            (0, 3): Correspondences(np.array([[1, 2], [4, 0]])),
            (0, 5): Correspondences(np.array([[7, 7]]), distances=np.array([16.0])),
        }
        io_utils.save_correspondences(fpath, correspondences)

        data = io_utils.read_json_file(fpath)
        self.assertEqual(data["0_3"], {"match_indices": [[1, 2], [4, 0]]})
        self.assertEqual(data["0_5"], {"match_indices": [[7, 7]], "distances": [16.0]})


if __name__ == "__main__":
    unittest.main()
