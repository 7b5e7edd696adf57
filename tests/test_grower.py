import json
import logging

import numpy as np
import pandas as pd
import pytest

from histboost import GrowConfig, InvalidInputError, TreeGrower, apply_bins, build_bins, grow_tree
from conftest import make_regression_bins


def tree_signature(tree):
    return [(n.feature, n.threshold, n.default_left, n.is_leaf) for n in tree.nodes]


def leaf_rows(tree, bm):
    """Map every leaf id to the training rows it receives."""
    assignment = {}
    stack = [(0, np.arange(bm.n_rows))]
    while stack:
        node_id, rows = stack.pop()
        node = tree.nodes[node_id]
        if node.is_leaf:
            assignment[node_id] = rows
            continue
        col = bm.bins[rows, node.feature]
        missing = col == bm.missing_bin
        go_left = np.where(missing, node.default_left, col <= node.threshold)
        stack.append((node.left, rows[go_left]))
        stack.append((node.right, rows[~go_left]))
    return assignment


@pytest.mark.parametrize("policy", ["depth_wise", "leaf_wise"])
@pytest.mark.parametrize("max_depth", [0, 1, 2, 4])
def test_no_node_deeper_than_max_depth(regression_bins, policy, max_depth):
    _, y, bm = regression_bins
    config = GrowConfig(max_depth=max_depth, min_samples_leaf=2, max_bins=63, growth_policy=policy)
    tree = grow_tree(bm, -y, np.ones_like(y), config)
    assert max(node.depth for node in tree.nodes) <= max_depth
    if max_depth == 0:
        assert tree.n_nodes == 1


@pytest.mark.parametrize("policy", ["depth_wise", "leaf_wise"])
@pytest.mark.parametrize("max_leaves", [1, 2, 5, 9])
def test_leaf_count_bounded(regression_bins, policy, max_leaves):
    _, y, bm = regression_bins
    config = GrowConfig(
        max_depth=8, max_leaves=max_leaves, min_samples_leaf=2, max_bins=63, growth_policy=policy
    )
    tree = grow_tree(bm, -y, np.ones_like(y), config)
    assert tree.n_leaves <= max_leaves
    # internal nodes always own exactly two children
    internal = [n for n in tree.nodes if not n.is_leaf]
    assert tree.n_leaves == len(internal) + 1


def test_leaf_wise_expands_best_gain_first(regression_bins):
    _, y, bm = regression_bins
    config = GrowConfig(max_depth=10, max_leaves=3, min_samples_leaf=5, max_bins=63, growth_policy="leaf_wise")
    tree = grow_tree(bm, -y, np.ones_like(y), config)
    root = tree.nodes[0]
    left, right = tree.nodes[root.left], tree.nodes[root.right]
    assert tree.n_leaves == 3
    assert left.is_leaf != right.is_leaf

    # the expanded child must have had the better split among the two
    unsplit_id = root.left if left.is_leaf else root.right
    probe = GrowConfig(max_depth=10, max_leaves=2, min_samples_leaf=5, max_bins=63, growth_policy="leaf_wise")
    expanded = right if left.is_leaf else left
    rows = leaf_rows(tree, bm)[unsplit_id]
    rival = grow_tree(bm, -y, np.ones_like(y), probe, rows=rows)
    if not rival.nodes[0].is_leaf:
        assert rival.nodes[0].gain <= expanded.gain + 1e-9


def test_outlier_scenario_tree():
    values = np.array([1, 2, 2, 3, 3, 3, 10], dtype=np.float64)
    grad = np.array([-1, -1, -1, 1, 1, 1, 5], dtype=np.float64)
    bm = apply_bins(values[:, None], build_bins(values, 4))
    config = GrowConfig(max_depth=1, max_bins=4, min_samples_leaf=1, lambda_l2=1.0, min_gain_to_split=0.0)

    tree = grow_tree(bm, grad, np.ones_like(grad), config)

    root = tree.nodes[0]
    assert not root.is_leaf
    assert (root.feature, root.threshold) == (0, 1)
    assert root.threshold_value == 2.0
    assert root.gain == pytest.approx(0.5 * (9 / 4 + 64 / 5 - 25 / 8))
    assert tree.nodes[root.left].value == pytest.approx(3 / 4)
    assert tree.nodes[root.right].value == pytest.approx(-8 / 5)
    assert tree.n_leaves == 2


def test_identical_rows_make_single_leaf():
    values = np.full((12, 1), 7.0)
    rng = np.random.default_rng(4)
    grad = rng.normal(size=12)
    hess = rng.uniform(0.5, 1.5, size=12)
    boundaries = build_bins(values, 8)
    assert boundaries[0].n_bins == 1
    bm = apply_bins(values, boundaries)

    tree = grow_tree(bm, grad, hess, GrowConfig(max_bins=8, min_samples_leaf=1, lambda_l2=0.5))

    assert tree.n_nodes == 1
    assert tree.nodes[0].is_leaf
    assert tree.nodes[0].value == pytest.approx(-grad.sum() / (hess.sum() + 0.5))


@pytest.mark.parametrize("policy", ["depth_wise", "leaf_wise"])
def test_leaf_values_are_newton_steps(regression_bins, policy):
    _, y, bm = regression_bins
    rng = np.random.default_rng(0)
    grad = -y
    hess = rng.uniform(0.5, 2.0, size=y.shape[0])
    config = GrowConfig(max_depth=4, min_samples_leaf=10, lambda_l2=2.0, max_bins=63, growth_policy=policy)
    tree = grow_tree(bm, grad, hess, config)
    for leaf_id, rows in leaf_rows(tree, bm).items():
        node = tree.nodes[leaf_id]
        assert node.count == rows.size
        assert rows.size >= config.min_samples_leaf
        assert node.value == pytest.approx(-grad[rows].sum() / (hess[rows].sum() + 2.0))


@pytest.mark.parametrize("policy", ["depth_wise", "leaf_wise"])
def test_growth_is_deterministic(regression_bins, policy):
    _, y, bm = regression_bins
    config = GrowConfig(max_depth=5, max_leaves=20, min_samples_leaf=4, max_bins=63, growth_policy=policy)
    first = grow_tree(bm, -y, np.ones_like(y), config)
    second = grow_tree(bm, -y, np.ones_like(y), config)
    assert tree_signature(first) == tree_signature(second)
    assert [n.value for n in first.nodes] == [n.value for n in second.nodes]


@pytest.mark.parametrize("policy", ["depth_wise", "leaf_wise"])
def test_subtraction_matches_rebuild(policy):
    _, y, bm = make_regression_bins(n_rows=600, seed=202)
    common = dict(max_depth=5, min_samples_leaf=5, max_bins=63, growth_policy=policy)
    rebuild = TreeGrower(bm, -y, np.ones_like(y), GrowConfig(histogram_mode="rebuild", **common))
    subtract = TreeGrower(bm, -y, np.ones_like(y), GrowConfig(histogram_mode="subtract", **common))
    tree_rebuild = rebuild.grow()
    tree_subtract = subtract.grow()

    assert tree_signature(tree_rebuild) == tree_signature(tree_subtract)
    np.testing.assert_allclose(
        [n.value for n in tree_rebuild.nodes], [n.value for n in tree_subtract.nodes], rtol=1e-9, atol=1e-12
    )
    assert rebuild.instrumentation.hist_subtract == 0
    assert subtract.instrumentation.hist_subtract > 0


def test_subtraction_chain_is_refreshed():
    _, y, bm = make_regression_bins(n_rows=2000, seed=7)
    config = GrowConfig(max_depth=6, min_samples_leaf=5, max_bins=63, max_subtraction_chain=1)
    grower = TreeGrower(bm, -y, np.ones_like(y), config)
    grower.grow()
    assert grower.instrumentation.hist_refresh > 0
    assert grower.instrumentation.hist_subtract > 0


def test_validated_subtraction_stays_consistent(monkeypatch, caplog, regression_bins):
    _, y, bm = regression_bins
    monkeypatch.setenv("HISTBOOST_VALIDATE_HIST", "1")
    with caplog.at_level(logging.DEBUG, logger="histboost.grower"):
        grow_tree(bm, -y, np.ones_like(y), GrowConfig(max_depth=5, min_samples_leaf=3, max_bins=63))
    assert not [r for r in caplog.records if "inconsistent" in r.getMessage()]
    assert [r for r in caplog.records if "subtraction drift" in r.getMessage()]


def test_histogram_mode_env_override(monkeypatch, regression_bins):
    _, y, bm = regression_bins
    monkeypatch.setenv("HISTBOOST_HIST_MODE", "rebuild")
    grower = TreeGrower(bm, -y, np.ones_like(y), GrowConfig(max_depth=4, min_samples_leaf=5, max_bins=63))
    grower.grow()
    assert grower.instrumentation.hist_subtract == 0
    assert grower.instrumentation.hist_direct > 0


def test_scores_accumulator_updated_in_place(regression_bins):
    _, y, bm = regression_bins
    config = GrowConfig(max_depth=3, min_samples_leaf=5, max_bins=63)
    scores = np.full(y.shape[0], 0.5)
    tree = grow_tree(bm, -y, np.ones_like(y), config, scores=scores, learning_rate=0.1)
    np.testing.assert_allclose(scores, 0.5 + 0.1 * tree.predict_binned(bm))


def test_row_subset_only_touches_its_rows(regression_bins):
    _, y, bm = regression_bins
    rows = np.arange(0, bm.n_rows, 2)
    scores = np.zeros(bm.n_rows)
    tree = grow_tree(
        bm, -y, np.ones_like(y), GrowConfig(max_depth=3, min_samples_leaf=5, max_bins=63), rows=rows, scores=scores
    )
    assert tree.nodes[0].count == rows.size
    np.testing.assert_array_equal(scores[1::2], 0.0)
    assert np.any(scores[::2] != 0.0)


def test_raw_prediction_matches_binned(regression_bins):
    X, y, bm = regression_bins
    tree = grow_tree(bm, -y, np.ones_like(y), GrowConfig(max_depth=4, min_samples_leaf=5, max_bins=63))
    np.testing.assert_allclose(tree.predict(X, bm.boundaries), tree.predict_binned(bm))


def test_feature_fraction_restricts_split_features(regression_bins):
    _, y, bm = regression_bins
    config = GrowConfig(max_depth=4, min_samples_leaf=5, max_bins=63, feature_fraction=0.4, random_state=3)
    grower = TreeGrower(bm, -y, np.ones_like(y), config)
    tree = grower.grow()
    assert grower.features.size == 2
    used = {n.feature for n in tree.nodes if not n.is_leaf}
    assert used <= set(grower.features.tolist())


def test_boosting_loop_reduces_loss():
    X, y, _ = make_regression_bins(n_rows=300, n_features=4, seed=11)
    df = pd.DataFrame(X, columns=[f"f{i}" for i in range(X.shape[1])])
    bm = apply_bins(df, build_bins(df.to_numpy(), 63))
    config = GrowConfig(max_depth=3, min_samples_leaf=5, max_bins=63, lambda_l2=1.0)
    scores = np.zeros_like(y)
    baseline = float(np.mean((y - y.mean()) ** 2))
    for _ in range(15):
        grad = scores - y  # squared loss
        hess = np.ones_like(y)
        grow_tree(bm, grad, hess, config, scores=scores, learning_rate=0.3)
    assert float(np.mean((y - scores) ** 2)) < 0.5 * baseline


def test_logistic_hessians_are_second_derivatives(regression_bins):
    _, y, bm = regression_bins
    labels = (y > np.median(y)).astype(np.float64)
    p = np.full_like(labels, 0.5)
    grad = p - labels
    hess = p * (1.0 - p)
    config = GrowConfig(max_depth=2, min_samples_leaf=5, max_bins=63)
    tree = grow_tree(bm, grad, hess, config)
    assert tree.nodes[0].hess_sum == pytest.approx(0.25 * labels.size)

    # first derivatives passed as hessians are rejected
    with pytest.raises(InvalidInputError):
        grow_tree(bm, grad, grad, config)


def test_input_validation(regression_bins):
    _, y, bm = regression_bins
    config = GrowConfig(max_bins=63)
    with pytest.raises(InvalidInputError):
        grow_tree(bm, -y[:-1], np.ones_like(y), config)
    with pytest.raises(InvalidInputError):
        grow_tree(bm, -y, np.ones_like(y), GrowConfig(max_bins=31))
    with pytest.raises(InvalidInputError):
        grow_tree(bm.bins, -y, np.ones_like(y), config)
    with pytest.raises(InvalidInputError):
        grow_tree(bm, -y, np.ones_like(y), config, rows=[])


def test_instrumentation_logged_as_json(caplog, regression_bins):
    _, y, bm = regression_bins
    with caplog.at_level(logging.INFO, logger="histboost.grower"):
        grow_tree(bm, -y, np.ones_like(y), GrowConfig(max_depth=3, min_samples_leaf=5, max_bins=63))
    payloads = [json.loads(r.getMessage()) for r in caplog.records if r.getMessage().startswith("{")]
    assert payloads
    assert payloads[-1]["nodes_split"] >= 1
    assert payloads[-1]["backend"] == "cpu"


def test_clamped_leaves_warn(caplog):
    values = np.arange(10.0)[:, None]
    bm = apply_bins(values, build_bins(values, 4))
    grad = np.ones(10)
    hess = np.zeros(10)
    with caplog.at_level(logging.WARNING, logger="histboost.grower"):
        tree = grow_tree(bm, grad, hess, GrowConfig(max_bins=4, max_depth=0, lambda_l2=0.0))
    assert np.isfinite(tree.nodes[0].value)
    assert any("epsilon" in r.getMessage() for r in caplog.records)
