"""Torch histogram builder (CPU or CUDA tensors)."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import torch

from ...core.histogram import Histogram, resolve_features, resolve_rows
from ...data import BinMatrix
from ...errors import ResourceExhaustionError

__all__ = ["TorchHistogramBuilder"]


def _is_device_failure(exc: RuntimeError) -> bool:
    if isinstance(exc, torch.cuda.OutOfMemoryError):
        return True
    msg = str(exc)
    return "CUDA error" in msg or "out of memory" in msg


class TorchHistogramBuilder:
    """Accumulate node histograms with ``torch.bincount`` on ``device``.

    The bin matrix and gradient pair are copied to the device once per round.
    On CUDA the accumulation uses atomics, so sums are not bit-reproducible
    across runs; counts always are.
    """

    name = "torch"

    def __init__(
        self,
        bin_matrix: BinMatrix,
        gradients: np.ndarray,
        hessians: np.ndarray,
        *,
        device: str = "cuda",
    ) -> None:
        self._device = torch.device(device)
        if self._device.type == "cuda" and not torch.cuda.is_available():
            raise ResourceExhaustionError("CUDA device not available")
        self._n_rows = bin_matrix.n_rows
        self._n_features = bin_matrix.n_features
        self._n_bins_total = bin_matrix.n_bins_total
        try:
            self._bins = torch.from_numpy(np.array(bin_matrix.bins, dtype=np.uint8)).to(self._device)
            self._grad = torch.tensor(gradients, dtype=torch.float64, device=self._device)
            self._hess = torch.tensor(hessians, dtype=torch.float64, device=self._device)
        except RuntimeError as exc:
            if _is_device_failure(exc):
                raise ResourceExhaustionError(f"Could not stage training data on {self._device}: {exc}") from exc
            raise

    @property
    def device(self) -> torch.device:
        return self._device

    def build_histogram(self, rows: np.ndarray, features: Sequence[int] | np.ndarray | None = None) -> Histogram:
        rows_arr = resolve_rows(rows, self._n_rows).astype(np.int64)
        feats = resolve_features(features, self._n_features)
        n_feat = int(feats.shape[0])
        nbt = self._n_bins_total
        try:
            counts, grad_hist, hess_hist = self._accumulate(rows_arr, feats)
        except RuntimeError as exc:
            if _is_device_failure(exc):
                raise ResourceExhaustionError(f"Histogram accumulation failed on {self._device}: {exc}") from exc
            raise
        return Histogram(
            features=feats,
            grad=grad_hist.cpu().numpy().reshape(n_feat, nbt),
            hess=hess_hist.cpu().numpy().reshape(n_feat, nbt),
            count=counts.cpu().numpy().astype(np.int64, copy=False).reshape(n_feat, nbt),
        )

    def _accumulate(
        self, rows: np.ndarray, feats: np.ndarray
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        dev = self._device
        n_feat = int(feats.shape[0])
        size = n_feat * self._n_bins_total
        if rows.size == 0 or n_feat == 0:
            zeros = torch.zeros(size, dtype=torch.float64, device=dev)
            return torch.zeros(size, dtype=torch.int64, device=dev), zeros, zeros.clone()

        rows_t = torch.from_numpy(np.ascontiguousarray(rows)).to(dev)
        feats_t = torch.from_numpy(feats.astype(np.int64)).to(dev)
        R = int(rows_t.numel())

        node_bins = self._bins.index_select(0, rows_t).index_select(1, feats_t).to(torch.int64)
        base = torch.arange(n_feat, dtype=torch.int64, device=dev).view(1, n_feat) * self._n_bins_total
        key_flat = (node_bins + base).reshape(-1)

        gw = self._grad.index_select(0, rows_t).view(R, 1).expand(R, n_feat).reshape(-1)
        hw = self._hess.index_select(0, rows_t).view(R, 1).expand(R, n_feat).reshape(-1)
        counts = torch.bincount(key_flat, minlength=size)
        grad_hist = torch.bincount(key_flat, weights=gw, minlength=size)
        hess_hist = torch.bincount(key_flat, weights=hw, minlength=size)
        return counts, grad_hist, hess_hist
