"""Tree structures produced by the grower."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .data import BinMatrix, ensure_numpy
from .errors import InvalidInputError
from .utils.binning import BinBoundaries


@dataclass
class TreeNode:
    """Represents a single node in a regression tree."""

    is_leaf: bool = True
    value: float = 0.0
    feature: Optional[int] = None
    threshold: Optional[int] = None
    threshold_value: Optional[float] = None
    default_left: bool = False
    left: Optional[int] = None
    right: Optional[int] = None
    depth: int = 0
    gain: float = 0.0
    count: int = 0
    grad_sum: float = 0.0
    hess_sum: float = 0.0


@dataclass
class Tree:
    """Regression tree; node ``0`` is the root, children follow in creation order."""

    nodes: List[TreeNode] = field(default_factory=list)

    @property
    def n_nodes(self) -> int:
        return len(self.nodes)

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in self.nodes if node.is_leaf)

    @property
    def depth(self) -> int:
        return max((node.depth for node in self.nodes), default=0)

    def leaves(self) -> List[int]:
        return [idx for idx, node in enumerate(self.nodes) if node.is_leaf]

    def predict_binned(self, X_binned: np.ndarray | BinMatrix) -> np.ndarray:
        """Return leaf values for rows of an integer bin matrix."""
        bins = X_binned.bins if isinstance(X_binned, BinMatrix) else np.asarray(X_binned)
        missing_bin = X_binned.missing_bin if isinstance(X_binned, BinMatrix) else None
        n_samples = bins.shape[0]
        out = np.zeros(n_samples, dtype=np.float64)
        if not self.nodes:
            return out
        stack: List[tuple[int, np.ndarray]] = [(0, np.arange(n_samples, dtype=np.intp))]
        while stack:
            node_id, indices = stack.pop()
            node = self.nodes[node_id]
            if node.is_leaf or node.feature is None or node.threshold is None:
                out[indices] = node.value
                continue
            if indices.size == 0:
                continue
            col = bins[indices, node.feature]
            go_left = col <= node.threshold
            if missing_bin is not None:
                missing = col == missing_bin
                go_left = (go_left & ~missing) | (missing & node.default_left)
            stack.append((node.left, indices[go_left]))
            stack.append((node.right, indices[~go_left]))
        return out

    def predict(self, X: np.ndarray, boundaries: BinBoundaries | None = None) -> np.ndarray:
        """Return leaf values for raw feature rows.

        A row goes left when its value is ``<=`` the split's raw threshold;
        ``NaN`` (and the sentinel recorded in ``boundaries``) follows
        ``default_left``.
        """
        arr = np.asarray(ensure_numpy(X), dtype=np.float64)
        if arr.ndim != 2:
            raise InvalidInputError("X must be a 2D array")
        n_samples = arr.shape[0]
        out = np.zeros(n_samples, dtype=np.float64)
        if not self.nodes:
            return out
        stack: List[tuple[int, np.ndarray]] = [(0, np.arange(n_samples, dtype=np.intp))]
        while stack:
            node_id, indices = stack.pop()
            node = self.nodes[node_id]
            if node.is_leaf or node.feature is None:
                out[indices] = node.value
                continue
            if indices.size == 0:
                continue
            threshold = node.threshold_value
            if threshold is None:
                if boundaries is None:
                    raise InvalidInputError("Tree has no raw thresholds; pass boundaries")
                threshold = boundaries.threshold_value(node.feature, int(node.threshold))
            col = arr[indices, node.feature]
            missing = np.isnan(col)
            if boundaries is not None:
                sentinel = boundaries[node.feature].missing_value
                if sentinel is not None and not np.isnan(sentinel):
                    missing |= col == sentinel
            go_left = np.where(missing, node.default_left, col <= threshold)
            stack.append((node.left, indices[go_left]))
            stack.append((node.right, indices[~go_left]))
        return out


class TreeBuilder:
    """Incremental tree construction used while growing."""

    def __init__(self) -> None:
        self.nodes: List[TreeNode] = [TreeNode()]

    def set_leaf(self, node_id: int, value: float) -> None:
        n = self.nodes[node_id]
        n.value = float(value); n.is_leaf = True
        n.feature = None; n.threshold = None; n.threshold_value = None
        n.left = None; n.right = None

    def split(
        self,
        node_id: int,
        feature: int,
        threshold: int,
        *,
        default_left: bool,
        gain: float,
        threshold_value: float | None = None,
    ) -> Tuple[int, int]:
        n = self.nodes[node_id]
        n.feature = int(feature); n.threshold = int(threshold); n.is_leaf = False
        n.threshold_value = threshold_value
        n.default_left = bool(default_left); n.gain = float(gain)
        l = len(self.nodes); r = l + 1
        n.left = l; n.right = r
        self.nodes.append(TreeNode(depth=n.depth + 1)); self.nodes.append(TreeNode(depth=n.depth + 1))
        return l, r

    def record_stats(self, node_id: int, grad_sum: float, hess_sum: float, count: int) -> None:
        n = self.nodes[node_id]
        n.grad_sum = float(grad_sum); n.hess_sum = float(hess_sum); n.count = int(count)

    def build(self) -> Tree:
        return Tree(nodes=self.nodes)
