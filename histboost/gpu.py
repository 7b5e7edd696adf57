"""GPU-accelerated histogram accumulation built on top of CuPy."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .core.histogram import Histogram, resolve_features, resolve_rows
from .data import BinMatrix
from .errors import ResourceExhaustionError

try:  # pragma: no cover - optional dependency
    import cupy as cp
except ImportError:  # pragma: no cover - optional dependency
    cp = None


def has_cuda() -> bool:
    """Return ``True`` if CuPy is installed and a CUDA-capable device is available."""
    if cp is None:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except cp.cuda.runtime.CUDARuntimeError:
        return False


class CupyHistogramBuilder:
    """CuPy ``bincount`` histograms on the current CUDA device."""

    name = "cupy"

    def __init__(self, bin_matrix: BinMatrix, gradients: np.ndarray, hessians: np.ndarray) -> None:
        if not has_cuda():  # pragma: no cover - requires GPU
            raise ResourceExhaustionError("CuPy CUDA device not available")
        self._n_rows = bin_matrix.n_rows  # pragma: no cover - requires GPU
        self._n_features = bin_matrix.n_features  # pragma: no cover
        self._n_bins_total = bin_matrix.n_bins_total  # pragma: no cover
        try:  # pragma: no cover - requires GPU
            self._bins = cp.asarray(bin_matrix.bins, dtype=cp.uint8)
            self._grad = cp.asarray(gradients, dtype=cp.float64)
            self._hess = cp.asarray(hessians, dtype=cp.float64)
        except cp.cuda.memory.OutOfMemoryError as exc:  # pragma: no cover
            raise ResourceExhaustionError(f"Could not stage training data on the GPU: {exc}") from exc

    def build_histogram(
        self, rows: np.ndarray, features: Sequence[int] | np.ndarray | None = None
    ) -> Histogram:  # pragma: no cover - requires GPU
        feats = resolve_features(features, self._n_features)
        n_feat = int(feats.shape[0])
        nbt = self._n_bins_total
        size = n_feat * nbt
        rows_arr = resolve_rows(rows, self._n_rows).astype(np.int64)
        if rows_arr.size == 0 or n_feat == 0:
            shape = (n_feat, nbt)
            return Histogram(
                feats,
                np.zeros(shape, dtype=np.float64),
                np.zeros(shape, dtype=np.float64),
                np.zeros(shape, dtype=np.int64),
            )
        try:
            rows_gpu = cp.asarray(rows_arr)
            feats_gpu = cp.asarray(feats.astype(np.int64))
            node_bins = self._bins[rows_gpu][:, feats_gpu].astype(cp.int64)
            keys = (node_bins + cp.arange(n_feat, dtype=cp.int64)[None, :] * nbt).ravel()
            gw = cp.repeat(self._grad[rows_gpu], n_feat)
            hw = cp.repeat(self._hess[rows_gpu], n_feat)
            counts = cp.bincount(keys, minlength=size)
            grad_hist = cp.bincount(keys, weights=gw, minlength=size)
            hess_hist = cp.bincount(keys, weights=hw, minlength=size)
        except cp.cuda.memory.OutOfMemoryError as exc:
            raise ResourceExhaustionError(f"Histogram accumulation ran out of GPU memory: {exc}") from exc
        return Histogram(
            features=feats,
            grad=cp.asnumpy(grad_hist).reshape(n_feat, nbt),
            hess=cp.asnumpy(hess_hist).reshape(n_feat, nbt),
            count=cp.asnumpy(counts).astype(np.int64, copy=False).reshape(n_feat, nbt),
        )


__all__ = ["CupyHistogramBuilder", "has_cuda"]
