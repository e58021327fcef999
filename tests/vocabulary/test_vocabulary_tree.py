"""Unit tests for the vocabulary tree.

Authors: voctree developers
"""

import tempfile
import unittest
from pathlib import Path

import numpy as np
import numpy.testing as npt

from voctree.vocabulary.vocabulary_tree import VocabularyTree

# Two level binary tree on 2D descriptors. Leaves (words) 0-3 are at (-10, -5), (-10, 5), (10, -5), (10, 5).
LEVEL_0_CENTERS = [[-10.0, 0.0], [10.0, 0.0]]
LEVEL_1_CENTERS = [[-10.0, -5.0], [-10.0, 5.0], [10.0, -5.0], [10.0, 5.0]]


def get_binary_tree(valid_centers=None) -> VocabularyTree:
    centers = np.array(LEVEL_0_CENTERS + LEVEL_1_CENTERS)
    return VocabularyTree(centers, branching_factor=2, num_levels=2, valid_centers=valid_centers)


class TestVocabularyTree(unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tree = get_binary_tree()

    def test_properties(self) -> None:
        self.assertEqual(self.tree.branching_factor, 2)
        self.assertEqual(self.tree.num_levels, 2)
        self.assertEqual(self.tree.num_words, 4)
        self.assertEqual(self.tree.descriptor_dim, 2)

    def test_quantize_to_nearest_leaf(self) -> None:
        """Each leaf center, and points near it, must map to its word."""
        for word, center in enumerate(LEVEL_1_CENTERS):
            self.assertEqual(self.tree.quantize(np.array(center)), word)
            self.assertEqual(self.tree.quantize(np.array(center) + 0.5), word)

    def test_quantize_is_deterministic(self) -> None:
        descriptor = np.array([3.0, -2.0])
        words = {self.tree.quantize(descriptor) for _ in range(10)}
        self.assertEqual(words, {2})

    def test_quantize_follows_greedy_descent(self) -> None:
        """(1, 100) is closer to leaf 0 than to leaf 2, but the first level routes it to the subtree of leaves 2-3."""
        centers = np.array([[-10.0, 0.0], [10.0, 0.0], [-10.0, 90.0], [-10.0, -90.0], [10.0, -5.0], [10.0, -6.0]])
        tree = VocabularyTree(centers, branching_factor=2, num_levels=2)
        self.assertEqual(tree.quantize(np.array([1.0, 100.0])), 2)

    def test_quantize_tie_picks_lowest_child(self) -> None:
        self.assertEqual(self.tree.quantize(np.array([0.0, 0.0])), 0)

    def test_quantize_batch_matches_quantize(self) -> None:
        rng = np.random.default_rng(0)
        descriptors = rng.uniform(-20, 20, size=(200, 2))
        expected = np.array([self.tree.quantize(d) for d in descriptors])
        npt.assert_array_equal(self.tree.quantize_batch(descriptors), expected)

    def test_quantize_batch_chunks(self) -> None:
        """Quantizing in chunks, including a partial last chunk, gives the same words."""
        rng = np.random.default_rng(2)
        descriptors = rng.uniform(-20, 20, size=(50, 2))
        expected = np.array([self.tree.quantize(d) for d in descriptors])
        for chunk_size in (1, 7, 50, 64):
            npt.assert_array_equal(self.tree.quantize_batch(descriptors, chunk_size=chunk_size), expected)

    def test_quantize_batch_invalid_chunk_size(self) -> None:
        with self.assertRaises(ValueError):
            self.tree.quantize_batch(np.zeros((3, 2)), chunk_size=0)

    def test_quantize_batch_uint8(self) -> None:
        """Integer descriptors must not overflow when computing distances."""
        centers = np.array([[0, 0], [255, 255], [0, 0], [0, 10], [255, 245], [255, 255]], dtype=np.float64)
        tree = VocabularyTree(centers, branching_factor=2, num_levels=2)
        descriptors = np.array([[0, 9], [250, 250], [255, 255]], dtype=np.uint8)
        npt.assert_array_equal(tree.quantize_batch(descriptors), [1, 2, 3])

    def test_quantize_batch_empty(self) -> None:
        words = self.tree.quantize_batch(np.zeros((0, 2)))
        self.assertEqual(words.shape, (0,))

    def test_quantize_wrong_dimension(self) -> None:
        with self.assertRaises(ValueError):
            self.tree.quantize(np.zeros(3))
        with self.assertRaises(ValueError):
            self.tree.quantize_batch(np.zeros((4, 3)))

    def test_invalid_centers_are_never_selected(self) -> None:
        valid_centers = np.array([True, True, False, True, True, True])
        tree = get_binary_tree(valid_centers)
        self.assertEqual(tree.quantize(np.array([-10.0, -5.0])), 1)
        npt.assert_array_equal(tree.quantize_batch(np.array([[-10.0, -5.0], [10.0, -5.0]])), [1, 2])

    def test_malformed_tree_node_without_valid_child(self) -> None:
        valid_centers = np.array([True, True, False, False, True, True])
        with self.assertRaises(ValueError):
            get_binary_tree(valid_centers)

    def test_wrong_number_of_centers(self) -> None:
        with self.assertRaises(ValueError):
            VocabularyTree(np.zeros((5, 2)), branching_factor=2, num_levels=2)

    def test_invalid_metadata(self) -> None:
        with self.assertRaises(ValueError):
            VocabularyTree(np.zeros((1, 2)), branching_factor=1, num_levels=1)
        with self.assertRaises(ValueError):
            VocabularyTree(np.zeros((2, 2)), branching_factor=2, num_levels=0)

    def test_centers_are_read_only(self) -> None:
        with self.assertRaises(ValueError):
            self.tree.centers[0, 0] = 1.0

    def test_save_load(self) -> None:
        valid_centers = np.array([True, True, True, False, True, True])
        tree = get_binary_tree(valid_centers)
        with tempfile.TemporaryDirectory() as tempdir:
            fpath = Path(tempdir) / "tree.npz"
            tree.save(fpath)
            loaded_tree = VocabularyTree.load(fpath)

        self.assertEqual(loaded_tree.branching_factor, 2)
        self.assertEqual(loaded_tree.num_levels, 2)
        npt.assert_allclose(loaded_tree.centers, tree.centers)
        npt.assert_array_equal(loaded_tree.valid_centers, valid_centers)

    def test_load_without_validity_mask(self) -> None:
        with tempfile.TemporaryDirectory() as tempdir:
            fpath = Path(tempdir) / "tree.npz"
            np.savez(fpath, branching_factor=2, num_levels=2, centers=np.array(LEVEL_0_CENTERS + LEVEL_1_CENTERS))
            tree = VocabularyTree.load(fpath)
        self.assertTrue(tree.valid_centers.all())

    def test_load_missing_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tempdir:
            fpath = Path(tempdir) / "tree.npz"
            np.savez(fpath, branching_factor=2, centers=np.zeros((6, 2)))
            with self.assertRaises(ValueError):
                VocabularyTree.load(fpath)


if __name__ == "__main__":
    unittest.main()
