import numpy as np
import pytest

from histboost import BinMatrix, InvalidInputError, Tree, TreeNode, build_bins
from histboost.model import TreeBuilder


def stump(default_left=False):
    builder = TreeBuilder()
    left, right = builder.split(0, feature=1, threshold=2, default_left=default_left, gain=1.5, threshold_value=0.5)
    builder.set_leaf(left, -1.0)
    builder.set_leaf(right, 2.0)
    return builder.build()


def test_builder_structure():
    tree = stump()
    assert tree.n_nodes == 3
    assert tree.n_leaves == 2
    assert tree.depth == 1
    assert tree.leaves() == [1, 2]
    root = tree.nodes[0]
    assert (root.left, root.right) == (1, 2)
    assert not root.is_leaf
    assert tree.nodes[1].depth == tree.nodes[2].depth == 1


def test_predict_binned_routes_missing_by_default_direction():
    bins = np.array([[0, 0], [0, 2], [0, 3], [0, 4]], dtype=np.uint8)
    bm = BinMatrix(bins, max_bins=4)
    np.testing.assert_allclose(stump(default_left=False).predict_binned(bm), [-1.0, -1.0, 2.0, 2.0])
    np.testing.assert_allclose(stump(default_left=True).predict_binned(bm), [-1.0, -1.0, 2.0, -1.0])


def test_predict_raw_values_with_nan():
    X = np.array([[9.0, 0.1], [9.0, 0.5], [9.0, 0.6], [9.0, np.nan]])
    np.testing.assert_allclose(stump(default_left=True).predict(X), [-1.0, -1.0, 2.0, -1.0])
    np.testing.assert_allclose(stump(default_left=False).predict(X), [-1.0, -1.0, 2.0, 2.0])


def test_predict_raw_sentinel_uses_boundaries():
    X = np.array([[0.0, -999.0], [0.0, 1.0], [0.0, 2.0], [0.0, 3.0]])
    boundaries = build_bins(X, 4, missing_value=-999.0)
    builder = TreeBuilder()
    left, right = builder.split(0, feature=1, threshold=0, default_left=False, gain=1.0)
    builder.set_leaf(left, 1.0)
    builder.set_leaf(right, 3.0)
    tree = builder.build()
    np.testing.assert_allclose(tree.predict(X, boundaries), [3.0, 1.0, 3.0, 3.0])
    with pytest.raises(InvalidInputError):
        tree.predict(X)


def test_single_leaf_and_empty_tree():
    leaf = Tree([TreeNode(value=0.25)])
    np.testing.assert_allclose(leaf.predict(np.zeros((3, 2))), 0.25)
    assert Tree().predict_binned(np.zeros((2, 1), dtype=np.uint8)).tolist() == [0.0, 0.0]
