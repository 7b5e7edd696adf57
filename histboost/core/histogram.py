"""Per-node gradient/hessian histograms."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..data import BinMatrix, check_gradient_pair
from ..errors import InvalidInputError


@dataclass(slots=True)
class Histogram:
    """Per-feature, per-bin sums of gradients, hessians and row counts.

    Arrays have shape ``(n_features, max_bins + 1)``; the last column holds the
    missing-value bin. ``generation`` counts the subtractions that produced
    this histogram since it was last accumulated directly from rows.
    """

    features: np.ndarray
    grad: np.ndarray
    hess: np.ndarray
    count: np.ndarray
    generation: int = 0

    @property
    def n_features(self) -> int:
        return int(self.features.shape[0])

    @property
    def n_bins_total(self) -> int:
        return int(self.count.shape[1])

    @property
    def missing_bin(self) -> int:
        return self.n_bins_total - 1

    @property
    def n_rows(self) -> int:
        if self.n_features == 0:
            return 0
        return int(self.count[0].sum())

    def totals(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Per-feature sums over all bins (missing bin included)."""
        return self.grad.sum(axis=1), self.hess.sum(axis=1), self.count.sum(axis=1)

    def is_consistent(self, row_count: int, grad_sum: float, *, rtol: float = 1e-6, atol: float = 1e-9) -> bool:
        """Check that every feature accounts for all rows and the full gradient sum."""
        grad_tot, _, count_tot = self.totals()
        if not np.all(count_tot == row_count):
            return False
        return bool(np.allclose(grad_tot, grad_sum, rtol=rtol, atol=atol))

    def copy(self) -> "Histogram":
        return Histogram(
            self.features.copy(), self.grad.copy(), self.hess.copy(), self.count.copy(), self.generation
        )


def empty_histogram(features: np.ndarray, n_bins_total: int) -> Histogram:
    shape = (int(features.shape[0]), int(n_bins_total))
    return Histogram(
        features=np.asarray(features, dtype=np.intp),
        grad=np.zeros(shape, dtype=np.float64),
        hess=np.zeros(shape, dtype=np.float64),
        count=np.zeros(shape, dtype=np.int64),
    )


def resolve_features(features: Sequence[int] | np.ndarray | None, n_features: int) -> np.ndarray:
    if features is None:
        return np.arange(n_features, dtype=np.intp)
    arr = np.asarray(features, dtype=np.intp)
    if arr.ndim != 1:
        raise InvalidInputError("features must be 1D")
    if arr.size and (arr.min() < 0 or arr.max() >= n_features):
        raise InvalidInputError("feature index out of range")
    return arr


def resolve_rows(rows: np.ndarray | Sequence[int], n_rows: int) -> np.ndarray:
    """Validate node row indices against a bin matrix of ``n_rows`` rows."""
    arr = np.asarray(rows)
    if arr.ndim != 1:
        raise InvalidInputError("rows must be 1D")
    if arr.size == 0:
        return np.empty(0, dtype=np.intp)
    if not np.issubdtype(arr.dtype, np.integer):
        raise InvalidInputError("rows must hold integer indices")
    if arr.min() < 0 or arr.max() >= n_rows:
        raise InvalidInputError("row index out of range")
    return arr.astype(np.intp, copy=False)


def accumulate_histogram(
    bins: np.ndarray,
    gradients: np.ndarray,
    hessians: np.ndarray,
    rows: np.ndarray,
    features: np.ndarray,
    n_bins_total: int,
) -> Histogram:
    """Sequentially accumulate ``rows`` into a fresh histogram.

    One shared ``bincount`` over ``feature * n_bins_total + bin`` keys covers
    every feature at once; summation runs in row order.
    """
    hist = empty_histogram(features, n_bins_total)
    n_feat = int(features.shape[0])
    if rows.size == 0 or n_feat == 0:
        return hist

    size = n_feat * n_bins_total
    node_bins = bins[np.ix_(rows, features)].astype(np.intp)
    keys = (node_bins + np.arange(n_feat, dtype=np.intp)[None, :] * n_bins_total).ravel()
    grad_rows = np.repeat(gradients[rows], n_feat)
    hess_rows = np.repeat(hessians[rows], n_feat)

    hist.count[...] = np.bincount(keys, minlength=size).reshape(n_feat, n_bins_total)
    hist.grad[...] = np.bincount(keys, weights=grad_rows, minlength=size).reshape(n_feat, n_bins_total)
    hist.hess[...] = np.bincount(keys, weights=hess_rows, minlength=size).reshape(n_feat, n_bins_total)
    return hist


def merge_histograms(parts: Sequence[Histogram]) -> Histogram:
    """Sum partial histograms in the given order."""
    if not parts:
        raise InvalidInputError("merge_histograms needs at least one histogram")
    out = parts[0].copy()
    for part in parts[1:]:
        if not np.array_equal(part.features, out.features):
            raise InvalidInputError("Cannot merge histograms over different features")
        out.grad += part.grad
        out.hess += part.hess
        out.count += part.count
    out.generation = 0
    return out


def subtract_histograms(parent: Histogram, sibling: Histogram) -> Histogram:
    """Return ``parent - sibling`` bin-wise.

    Counts are exact. Bins left without rows get exactly zero sums and hessian
    sums are floored at zero, which removes most of the floating-point drift a
    subtraction can introduce.
    """
    if not np.array_equal(parent.features, sibling.features):
        raise InvalidInputError("Sibling histogram covers different features than its parent")
    if parent.count.shape != sibling.count.shape:
        raise InvalidInputError("Sibling histogram has a different bin layout than its parent")

    count = parent.count - sibling.count
    if np.any(count < 0):
        raise InvalidInputError("Sibling histogram holds rows its parent does not")
    grad = parent.grad - sibling.grad
    hess = parent.hess - sibling.hess
    empty = count == 0
    grad[empty] = 0.0
    hess[empty] = 0.0
    np.maximum(hess, 0.0, out=hess)
    return Histogram(parent.features.copy(), grad, hess, count, parent.generation + 1)


def build_histogram(
    rows: np.ndarray | Sequence[int],
    bin_matrix: BinMatrix,
    gradients: np.ndarray,
    hessians: np.ndarray,
    features: Sequence[int] | np.ndarray | None = None,
) -> Histogram:
    """Build a node histogram on the CPU with a fixed summation order."""
    grad, hess = check_gradient_pair(gradients, hessians, bin_matrix.n_rows)
    rows_arr = resolve_rows(rows, bin_matrix.n_rows)
    feats = resolve_features(features, bin_matrix.n_features)
    return accumulate_histogram(bin_matrix.bins, grad, hess, rows_arr, feats, bin_matrix.n_bins_total)
