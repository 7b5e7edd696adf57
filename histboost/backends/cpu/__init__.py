"""NumPy histogram builder used as the reference and fallback path."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import numpy as np

from ...core.histogram import (
    Histogram,
    accumulate_histogram,
    merge_histograms,
    resolve_features,
    resolve_rows,
)
from ...data import BinMatrix

__all__ = ["CpuHistogramBuilder"]

# rows below this count are never split across workers
MIN_CHUNK_ROWS = 4096


class CpuHistogramBuilder:
    """Accumulate node histograms with ``np.bincount``.

    With ``n_threads > 1`` the row set is cut into contiguous chunks that are
    accumulated concurrently and merged in chunk order. Results are
    reproducible for a fixed ``n_threads``; they may differ from the
    single-threaded result in the last bits of the sums.
    """

    name = "cpu"

    def __init__(
        self,
        bin_matrix: BinMatrix,
        gradients: np.ndarray,
        hessians: np.ndarray,
        *,
        n_threads: int = 1,
    ) -> None:
        self._bins = bin_matrix.bins
        self._n_rows = bin_matrix.n_rows
        self._n_features = bin_matrix.n_features
        self._n_bins_total = bin_matrix.n_bins_total
        self._grad = gradients
        self._hess = hessians
        self._n_threads = max(1, int(n_threads))

    def _n_chunks(self, n_rows: int) -> int:
        return max(1, min(self._n_threads, n_rows // MIN_CHUNK_ROWS))

    def build_histogram(self, rows: np.ndarray, features: Sequence[int] | np.ndarray | None = None) -> Histogram:
        rows_arr = resolve_rows(rows, self._n_rows)
        feats = resolve_features(features, self._n_features)
        n_chunks = self._n_chunks(int(rows_arr.size))
        if n_chunks == 1:
            return accumulate_histogram(self._bins, self._grad, self._hess, rows_arr, feats, self._n_bins_total)

        chunks = np.array_split(rows_arr, n_chunks)
        with ThreadPoolExecutor(max_workers=n_chunks) as pool:
            parts = list(
                pool.map(
                    lambda chunk: accumulate_histogram(
                        self._bins, self._grad, self._hess, chunk, feats, self._n_bins_total
                    ),
                    chunks,
                )
            )
        return merge_histograms(parts)
