"""Histogram-based tree growth with depth-wise and leaf-wise policies."""

from __future__ import annotations

import enum
import heapq
import json
import logging
import os
from dataclasses import dataclass
from time import perf_counter
from typing import Sequence

import numpy as np

from .backends import (
    CpuHistogramBuilder,
    FallbackHistogramBuilder,
    HistogramBuilder,
    make_histogram_builder,
    resolve_backend_name,
)
from .config import GrowConfig
from .core.histogram import Histogram, subtract_histograms
from .core.partition import RowArena
from .core.split import NodeStats, SplitDecision, find_best_split
from .data import BinMatrix, check_gradient_pair
from .errors import InvalidInputError
from .model import Tree, TreeBuilder

logger = logging.getLogger(__name__)


class NodeStatus(enum.Enum):
    FRONTIER = "frontier"
    INTERNAL = "internal"
    LEAF = "leaf"


@dataclass(slots=True)
class _NodeContext:
    node_id: int
    depth: int
    start: int
    end: int
    stats: NodeStats
    histogram: Histogram | None = None
    decision: SplitDecision | None = None
    status: NodeStatus = NodeStatus.FRONTIER

    @property
    def count(self) -> int:
        return self.end - self.start


@dataclass(slots=True)
class GrowthInstrumentation:
    backend: str = "cpu"
    fell_back: bool = False
    nodes_evaluated: int = 0
    nodes_split: int = 0
    leaves: int = 0
    leaves_clamped: int = 0
    hist_direct: int = 0
    hist_subtract: int = 0
    hist_refresh: int = 0
    hist_ms: float = 0.0
    split_ms: float = 0.0
    partition_ms: float = 0.0
    total_ms: float = 0.0

    def to_dict(self) -> dict[str, int | float | str | bool]:
        return {
            "backend": self.backend,
            "fell_back": self.fell_back,
            "nodes_evaluated": self.nodes_evaluated,
            "nodes_split": self.nodes_split,
            "leaves": self.leaves,
            "leaves_clamped": self.leaves_clamped,
            "hist_direct": self.hist_direct,
            "hist_subtract": self.hist_subtract,
            "hist_refresh": self.hist_refresh,
            "hist_ms": self.hist_ms,
            "split_ms": self.split_ms,
            "partition_ms": self.partition_ms,
            "total_ms": self.total_ms,
        }


class TreeGrower:
    """Grow one tree from a bin matrix and one round's gradient pair.

    The grower only reads the bin matrix and gradient vectors; its own state
    (row arena, node contexts, partial tree) can be dropped at any point.
    """

    def __init__(
        self,
        bin_matrix: BinMatrix,
        gradients: np.ndarray,
        hessians: np.ndarray,
        config: GrowConfig,
        *,
        rows: np.ndarray | Sequence[int] | None = None,
    ) -> None:
        if not isinstance(bin_matrix, BinMatrix):
            raise InvalidInputError("bin_matrix must be a BinMatrix; see histboost.apply_bins")
        if bin_matrix.max_bins != config.max_bins:
            raise InvalidInputError(
                f"config.max_bins ({config.max_bins}) differs from the bin matrix ({bin_matrix.max_bins})"
            )
        if bin_matrix.n_features == 0:
            raise InvalidInputError("bin_matrix has no features")
        self.config = config
        self._bin_matrix = bin_matrix
        self._grad, self._hess = check_gradient_pair(gradients, hessians, bin_matrix.n_rows)
        self._arena = RowArena.from_rows(rows, bin_matrix.n_rows)

        env_mode = os.getenv("HISTBOOST_HIST_MODE")
        mode = (env_mode or config.histogram_mode).lower()
        if mode not in {"subtract", "rebuild"}:
            raise InvalidInputError(f"Unsupported histogram_mode: {mode}")
        self._histogram_mode = mode
        self._validate_hist = os.getenv("HISTBOOST_VALIDATE_HIST") == "1"

        backend = (os.getenv("HISTBOOST_HIST_BACKEND") or config.histogram_backend).lower()
        self._builder = self._make_builder(backend)
        self._features = self._sample_features(bin_matrix.n_features)

        self._tree_builder = TreeBuilder()
        self._n_leaves = 1
        self._leaf_ranges: list[tuple[int, int, int]] = []
        self._tree: Tree | None = None
        self.instrumentation = GrowthInstrumentation(backend=self._builder.name)

    # Public -------------------------------------------------------------

    @property
    def features(self) -> np.ndarray:
        """Feature ids considered for splits in this tree."""
        return self._features

    @property
    def histogram_builder(self) -> HistogramBuilder:
        return self._builder

    def grow(self) -> Tree:
        if self._tree is not None:
            return self._tree
        start = perf_counter()
        root = self._make_root()
        if self.config.growth_policy == "leaf_wise":
            self._grow_leaf_wise(root)
        else:
            self._grow_depth_wise(root)
        self._tree = self._tree_builder.build()

        stats = self.instrumentation
        stats.total_ms = (perf_counter() - start) * 1e3
        if isinstance(self._builder, FallbackHistogramBuilder):
            stats.fell_back = self._builder.fell_back
            stats.backend = self._builder.name
        if stats.leaves_clamped:
            logger.warning(
                "%d leaves had H + lambda below the epsilon floor; their values were clamped.",
                stats.leaves_clamped,
            )
        if logger.isEnabledFor(logging.INFO):
            logger.info(json.dumps(stats.to_dict()))
        return self._tree

    def update_scores(self, scores: np.ndarray, learning_rate: float = 1.0) -> None:
        """Add ``learning_rate * leaf value`` to ``scores`` for every row of every leaf."""
        if self._tree is None:
            raise RuntimeError("Tree must be grown before update_scores()")
        if not isinstance(scores, np.ndarray) or scores.ndim != 1:
            raise InvalidInputError("scores must be a 1D numpy array")
        if scores.shape[0] != self._bin_matrix.n_rows:
            raise InvalidInputError("scores must have one entry per bin-matrix row")
        for node_id, start, end in self._leaf_ranges:
            value = self._tree.nodes[node_id].value
            scores[self._arena.rows(start, end)] += learning_rate * value

    # Setup --------------------------------------------------------------

    def _make_builder(self, backend: str) -> HistogramBuilder:
        def cpu() -> HistogramBuilder:
            return CpuHistogramBuilder(
                self._bin_matrix, self._grad, self._hess, n_threads=self.config.n_threads
            )

        # "auto" is passed through unresolved so the factory can pick the CUDA device
        if resolve_backend_name(backend) == "cpu":
            return cpu()
        return FallbackHistogramBuilder(
            lambda: make_histogram_builder(
                backend,
                self._bin_matrix,
                self._grad,
                self._hess,
                device=self.config.device,
                n_threads=self.config.n_threads,
            ),
            cpu,
        )

    def _sample_features(self, num_features: int) -> np.ndarray:
        frac = float(self.config.feature_fraction)
        k = min(num_features, max(1, int(round(frac * num_features))))
        if k == num_features:
            return np.arange(num_features, dtype=np.intp)
        rng = np.random.default_rng(self.config.random_state)
        return np.sort(rng.choice(num_features, size=k, replace=False)).astype(np.intp)

    # Node evaluation -----------------------------------------------------

    def _make_root(self) -> _NodeContext:
        rows = self._arena.rows(0, self._arena.size)
        root = _NodeContext(0, 0, 0, self._arena.size, NodeStats.from_rows(rows, self._grad, self._hess))
        self._record(root)
        if self._can_split(root):
            root.histogram = self._direct_histogram(root)
        self._evaluate(root)
        return root

    def _record(self, ctx: _NodeContext) -> None:
        self._tree_builder.record_stats(ctx.node_id, ctx.stats.grad_sum, ctx.stats.hess_sum, ctx.stats.count)

    def _can_split(self, ctx: _NodeContext) -> bool:
        return ctx.depth < self.config.max_depth and ctx.count >= 2 * self.config.min_samples_leaf

    def _direct_histogram(self, ctx: _NodeContext) -> Histogram:
        t0 = perf_counter()
        hist = self._builder.build_histogram(self._arena.rows(ctx.start, ctx.end), self._features)
        self.instrumentation.hist_ms += (perf_counter() - t0) * 1e3
        self.instrumentation.hist_direct += 1
        return hist

    def _subtracted_histogram(self, parent: Histogram, sibling: Histogram, ctx: _NodeContext) -> Histogram:
        t0 = perf_counter()
        hist = subtract_histograms(parent, sibling)
        self.instrumentation.hist_ms += (perf_counter() - t0) * 1e3
        self.instrumentation.hist_subtract += 1
        if self._validate_hist:
            direct = self._builder.build_histogram(self._arena.rows(ctx.start, ctx.end), self._features)
            drift = float(np.max(np.abs(direct.grad - hist.grad), initial=0.0))
            logger.debug("node %d: subtraction drift %.3e (generation %d)", ctx.node_id, drift, hist.generation)
            if not np.array_equal(direct.count, hist.count) or not hist.is_consistent(
                ctx.count, ctx.stats.grad_sum
            ):
                logger.warning("node %d: subtracted histogram inconsistent; using direct rebuild", ctx.node_id)
                return direct
        return hist

    def _evaluate(self, ctx: _NodeContext) -> None:
        """Search the best split for ``ctx`` (``None`` when it must become a leaf)."""
        self.instrumentation.nodes_evaluated += 1
        if ctx.histogram is None or not self._can_split(ctx):
            ctx.decision = None
            ctx.histogram = None
            return
        t0 = perf_counter()
        ctx.decision = find_best_split(ctx.histogram, ctx.stats, self.config, depth=ctx.depth)
        self.instrumentation.split_ms += (perf_counter() - t0) * 1e3
        if ctx.decision is None:
            ctx.histogram = None

    def _prepare_child_histograms(self, parent: _NodeContext, left: _NodeContext, right: _NodeContext) -> None:
        small, large = (left, right) if left.count <= right.count else (right, left)
        need_small = self._can_split(small)
        need_large = self._can_split(large)
        if not (need_small or need_large):
            return

        use_subtract = self._histogram_mode == "subtract" and parent.histogram is not None and need_large
        if use_subtract and parent.histogram.generation >= self.config.max_subtraction_chain:
            use_subtract = False
            self.instrumentation.hist_refresh += 1

        if use_subtract:
            small_hist = self._direct_histogram(small)
            large.histogram = self._subtracted_histogram(parent.histogram, small_hist, large)
            small.histogram = small_hist if need_small else None
            return
        if need_small:
            small.histogram = self._direct_histogram(small)
        if need_large:
            large.histogram = self._direct_histogram(large)

    # State transitions ---------------------------------------------------

    def _has_leaf_budget(self) -> bool:
        return self.config.max_leaves is None or self._n_leaves < self.config.max_leaves

    def _make_leaf(self, ctx: _NodeContext) -> None:
        lam = float(self.config.lambda_l2)
        if ctx.stats.count > 0 and ctx.stats.needs_clamp(lam):
            self.instrumentation.leaves_clamped += 1
        self._tree_builder.set_leaf(ctx.node_id, ctx.stats.leaf_value(lam))
        ctx.status = NodeStatus.LEAF
        ctx.histogram = None
        ctx.decision = None
        self._leaf_ranges.append((ctx.node_id, ctx.start, ctx.end))
        self.instrumentation.leaves += 1

    def _split(self, ctx: _NodeContext) -> tuple[_NodeContext, _NodeContext]:
        decision = ctx.decision
        assert decision is not None
        bm = self._bin_matrix

        t0 = perf_counter()
        mid = self._arena.partition(ctx.start, ctx.end, bm, decision)
        left_stats = NodeStats.from_rows(self._arena.rows(ctx.start, mid), self._grad, self._hess)
        right_stats = NodeStats.from_rows(self._arena.rows(mid, ctx.end), self._grad, self._hess)
        self.instrumentation.partition_ms += (perf_counter() - t0) * 1e3

        threshold_value = None
        if bm.boundaries is not None:
            threshold_value = bm.boundaries.threshold_value(decision.feature, decision.threshold)
        left_id, right_id = self._tree_builder.split(
            ctx.node_id,
            decision.feature,
            decision.threshold,
            default_left=decision.default_left,
            gain=decision.gain,
            threshold_value=threshold_value,
        )
        left = _NodeContext(left_id, ctx.depth + 1, ctx.start, mid, left_stats)
        right = _NodeContext(right_id, ctx.depth + 1, mid, ctx.end, right_stats)
        self._record(left)
        self._record(right)
        ctx.status = NodeStatus.INTERNAL
        self._n_leaves += 1
        self.instrumentation.nodes_split += 1

        self._prepare_child_histograms(ctx, left, right)
        ctx.histogram = None
        ctx.decision = None
        self._evaluate(left)
        self._evaluate(right)
        return left, right

    # Policies -------------------------------------------------------------

    def _grow_depth_wise(self, root: _NodeContext) -> None:
        frontier = [root]
        while frontier:
            next_frontier: list[_NodeContext] = []
            for ctx in frontier:
                if ctx.decision is None or not self._has_leaf_budget():
                    self._make_leaf(ctx)
                    continue
                next_frontier.extend(self._split(ctx))
            frontier = next_frontier

    def _grow_leaf_wise(self, root: _NodeContext) -> None:
        heap: list[tuple[float, int, _NodeContext]] = []

        def push(ctx: _NodeContext) -> None:
            if ctx.decision is None:
                self._make_leaf(ctx)
            else:
                heapq.heappush(heap, (-ctx.decision.gain, ctx.node_id, ctx))

        push(root)
        while heap:
            _, _, ctx = heapq.heappop(heap)
            if not self._has_leaf_budget():
                self._make_leaf(ctx)
                continue
            left, right = self._split(ctx)
            push(left)
            push(right)


def grow_tree(
    bin_matrix: BinMatrix,
    gradients: np.ndarray,
    hessians: np.ndarray,
    config: GrowConfig,
    *,
    rows: np.ndarray | Sequence[int] | None = None,
    scores: np.ndarray | None = None,
    learning_rate: float = 1.0,
) -> Tree:
    """Grow one tree for the current boosting round.

    Parameters
    ----------
    bin_matrix:
        Binned training data shared by every round.
    gradients, hessians:
        First and second derivatives of the loss per row for this round.
    config:
        Growth hyper-parameters.
    rows:
        Optional subset of rows to train on (defaults to every row).
    scores:
        Optional caller-owned running score vector; leaves add
        ``learning_rate * value`` to the entries of their rows in place.
    """
    grower = TreeGrower(bin_matrix, gradients, hessians, config, rows=rows)
    tree = grower.grow()
    if scores is not None:
        grower.update_scores(scores, learning_rate)
    return tree
