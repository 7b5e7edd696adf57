"""Second-order split search over node histograms."""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from ..config import GrowConfig
from .histogram import Histogram

# floor applied to every ``H + lambda`` denominator
HESSIAN_EPSILON = 1e-12
# relative tolerance under which two candidate gains count as tied
TIE_RTOL = 1e-10


@dataclass(frozen=True, slots=True)
class NodeStats:
    """Gradient sum, hessian sum and row count of a node or split side."""

    grad_sum: float
    hess_sum: float
    count: int

    def denominator(self, lambda_l2: float) -> float:
        return max(self.hess_sum + lambda_l2, HESSIAN_EPSILON)

    def needs_clamp(self, lambda_l2: float) -> bool:
        return self.hess_sum + lambda_l2 < HESSIAN_EPSILON

    def leaf_value(self, lambda_l2: float) -> float:
        """Newton step ``-G / (H + lambda)`` with a floored denominator."""
        if self.count == 0:
            return 0.0
        return -self.grad_sum / self.denominator(lambda_l2)

    @classmethod
    def from_rows(cls, rows: np.ndarray, gradients: np.ndarray, hessians: np.ndarray) -> "NodeStats":
        if rows.size == 0:
            return cls(0.0, 0.0, 0)
        return cls(
            float(np.sum(gradients[rows], dtype=np.float64)),
            float(np.sum(hessians[rows], dtype=np.float64)),
            int(rows.size),
        )


@dataclass(frozen=True, slots=True)
class SplitDecision:
    """Best split of a node.

    Rows whose bin for ``feature`` is ``<= threshold`` go left; rows in the
    missing bin go left only when ``default_left`` is set.
    """

    feature: int
    threshold: int
    gain: float
    default_left: bool
    left: NodeStats
    right: NodeStats


class _CandidateGrid(NamedTuple):
    features: np.ndarray    # [F] sorted feature ids
    gains: np.ndarray       # [F, B, 2]; last axis: missing right, missing left
    left_grad: np.ndarray
    left_hess: np.ndarray
    left_count: np.ndarray


def _score(grad: np.ndarray | float, hess: np.ndarray | float, lambda_l2: float) -> np.ndarray:
    return np.square(grad) / np.maximum(np.add(hess, lambda_l2), HESSIAN_EPSILON)


def _candidate_grid(histogram: Histogram, totals: NodeStats, config: GrowConfig) -> _CandidateGrid:
    order = np.argsort(histogram.features, kind="stable")
    features = histogram.features[order]
    grad = histogram.grad[order]
    hess = histogram.hess[order]
    count = histogram.count[order]
    miss = histogram.missing_bin

    # one ordered prefix pass over the value bins per feature
    cum_grad = np.cumsum(grad[:, :miss], axis=1)
    cum_hess = np.cumsum(hess[:, :miss], axis=1)
    cum_count = np.cumsum(count[:, :miss], axis=1)

    left_grad = np.stack([cum_grad, cum_grad + grad[:, miss:]], axis=2)
    left_hess = np.stack([cum_hess, cum_hess + hess[:, miss:]], axis=2)
    left_count = np.stack([cum_count, cum_count + count[:, miss:]], axis=2)

    G = float(totals.grad_sum)
    H = float(totals.hess_sum)
    N = int(totals.count)
    lam = float(config.lambda_l2)
    right_grad = G - left_grad
    right_hess = H - left_hess
    right_count = N - left_count

    gains = 0.5 * (
        _score(left_grad, left_hess, lam) + _score(right_grad, right_hess, lam) - _score(G, H, lam)
    ) - float(config.min_gain_to_split)

    valid = (left_count >= config.min_samples_leaf) & (right_count >= config.min_samples_leaf)
    if config.min_child_weight > 0.0:
        valid &= (left_hess >= config.min_child_weight) & (right_hess >= config.min_child_weight)
    gains = np.where(valid, gains, -np.inf)
    return _CandidateGrid(features, gains, left_grad, left_hess, left_count)


def split_gains(histogram: Histogram, totals: NodeStats, config: GrowConfig) -> np.ndarray:
    """Penalised gain of every candidate as ``[feature, threshold, missing_dir]``.

    Features follow ``histogram.features`` order; ``missing_dir`` 0 sends the
    missing bin right, 1 sends it left. Invalid candidates hold ``-inf``.
    """
    grid = _candidate_grid(histogram, totals, config)
    inverse = np.argsort(np.argsort(histogram.features, kind="stable"), kind="stable")
    return grid.gains[inverse]


def find_best_split(
    histogram: Histogram,
    totals: NodeStats,
    config: GrowConfig,
    *,
    depth: int = 0,
) -> SplitDecision | None:
    """Return the best split for a node or ``None`` when it must become a leaf.

    Ties within :data:`TIE_RTOL` resolve to the lowest feature id, then the
    lowest threshold, then sending missing values right.
    """
    if depth >= config.max_depth:
        return None
    if totals.count < 2 * config.min_samples_leaf:
        return None
    if histogram.n_features == 0 or histogram.missing_bin == 0:
        return None

    grid = _candidate_grid(histogram, totals, config)
    flat = grid.gains.reshape(-1)
    best = float(flat.max())
    if not np.isfinite(best) or best <= 0.0:
        return None

    tol = TIE_RTOL * max(1.0, abs(best))
    pos = int(np.flatnonzero(flat >= best - tol)[0])
    f_pos, threshold, direction = np.unravel_index(pos, grid.gains.shape)

    lg = float(grid.left_grad[f_pos, threshold, direction])
    lh = float(grid.left_hess[f_pos, threshold, direction])
    lc = int(grid.left_count[f_pos, threshold, direction])
    left = NodeStats(lg, max(lh, 0.0), lc)
    right = NodeStats(
        float(totals.grad_sum) - lg,
        max(float(totals.hess_sum) - lh, 0.0),
        int(totals.count) - lc,
    )
    return SplitDecision(
        feature=int(grid.features[f_pos]),
        threshold=int(threshold),
        gain=float(flat[pos]),
        default_left=bool(direction == 1),
        left=left,
        right=right,
    )
