"""Row-index partitioning for node splits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..data import BinMatrix
from ..errors import InvalidInputError
from .split import SplitDecision


def go_left_mask(
    node_bins: np.ndarray, threshold: int, default_left: bool, missing_bin: int
) -> np.ndarray:
    """Boolean mask of rows routed to the left child."""
    missing = node_bins == missing_bin
    mask = (node_bins <= threshold) & ~missing
    if default_left:
        mask |= missing
    return mask


def partition_rows(
    rows: np.ndarray | Sequence[int],
    bin_matrix: BinMatrix,
    decision: SplitDecision,
) -> tuple[np.ndarray, np.ndarray]:
    """Split ``rows`` into ``(left, right)`` according to ``decision``.

    Only the bins of ``rows`` are read. Both outputs keep the input order;
    together they hold every input row exactly once.
    """
    rows_arr = np.asarray(rows, dtype=np.intp)
    if rows_arr.ndim != 1:
        raise InvalidInputError("rows must be 1D")
    if rows_arr.size == 0:
        return rows_arr[:0].copy(), rows_arr[:0].copy()
    node_bins = bin_matrix.bins[rows_arr, decision.feature]
    mask = go_left_mask(node_bins, decision.threshold, decision.default_left, bin_matrix.missing_bin)
    return rows_arr[mask], rows_arr[~mask]


@dataclass
class RowArena:
    """One reusable buffer of row indices shared by all nodes of a tree.

    A node owns the half-open range ``[start, end)`` of :attr:`buffer`;
    partitioning rewrites that range in place so the left child owns
    ``[start, mid)`` and the right child ``[mid, end)``.
    """

    buffer: np.ndarray

    @classmethod
    def from_rows(cls, rows: np.ndarray | Sequence[int] | None, n_rows: int) -> "RowArena":
        if rows is None:
            if n_rows <= 0:
                raise InvalidInputError("Cannot grow a tree on an empty dataset")
            return cls(np.arange(n_rows, dtype=np.intp))
        arr = np.array(rows, dtype=np.intp)
        if arr.ndim != 1:
            raise InvalidInputError("rows must be 1D")
        if arr.size == 0:
            raise InvalidInputError("Cannot grow a tree on an empty row set")
        if arr.min() < 0 or arr.max() >= n_rows:
            raise InvalidInputError("row index out of range")
        if np.unique(arr).size != arr.size:
            raise InvalidInputError("rows must not contain duplicates")
        return cls(arr)

    @property
    def size(self) -> int:
        return int(self.buffer.shape[0])

    def rows(self, start: int, end: int) -> np.ndarray:
        """View of the rows owned by ``[start, end)``."""
        return self.buffer[start:end]

    def partition(self, start: int, end: int, bin_matrix: BinMatrix, decision: SplitDecision) -> int:
        """Stable in-place partition of ``[start, end)``; returns the boundary."""
        left, right = partition_rows(self.buffer[start:end], bin_matrix, decision)
        mid = start + int(left.shape[0])
        self.buffer[start:mid] = left
        self.buffer[mid:end] = right
        return mid
