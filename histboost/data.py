"""Data preprocessing utilities for histboost."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import torch

from .config import MAX_BINS_LIMIT
from .errors import InvalidInputError
from .utils.binning import BinBoundaries


def ensure_numpy(array: np.ndarray | torch.Tensor | Sequence[float]) -> np.ndarray:
    """Convert ``array`` (NumPy, Torch or pandas) to an ``np.ndarray``."""

    if isinstance(array, np.ndarray):
        return array
    if isinstance(array, torch.Tensor):
        return array.detach().cpu().numpy()
    return np.asarray(array)


@dataclass(frozen=True)
class BinMatrix:
    """Read-only ``(n_rows, n_features)`` matrix of ``uint8`` bin indices.

    Value bins lie in ``[0, max_bins)``; ``max_bins`` itself marks a missing value.
    """

    bins: np.ndarray
    max_bins: int
    boundaries: BinBoundaries | None = None

    def __post_init__(self) -> None:
        if self.bins.ndim != 2:
            raise InvalidInputError("bins must be a 2D array")
        if self.bins.dtype != np.uint8:
            raise InvalidInputError(f"bins must be uint8, got {self.bins.dtype}")
        if not 1 <= self.max_bins <= MAX_BINS_LIMIT:
            raise InvalidInputError(f"max_bins must lie within [1, {MAX_BINS_LIMIT}]")
        # a bin above the missing bin would land in the next feature's histogram slots
        if self.bins.size and int(self.bins.max()) > self.max_bins:
            raise InvalidInputError(f"bin ids must lie within [0, {self.max_bins}]")
        if self.boundaries is not None and self.boundaries.n_features != self.bins.shape[1]:
            raise InvalidInputError("boundaries do not match the number of binned features")

    @classmethod
    def from_prebinned(cls, X: np.ndarray, max_bins: int) -> "BinMatrix":
        """Validate integer bin ids in ``[0, max_bins]`` and wrap them."""
        arr = ensure_numpy(X)
        if arr.ndim != 2:
            raise InvalidInputError("Pre-binned features must be a 2D array")
        if arr.size and not np.issubdtype(arr.dtype, np.integer):
            raise InvalidInputError("Pre-binned features must be integer-valued")
        if arr.size and (arr.min() < 0 or arr.max() > max_bins):
            raise InvalidInputError("Pre-binned features must lie within [0, max_bins]")
        return cls(_freeze(arr.astype(np.uint8)), int(max_bins))

    @property
    def n_rows(self) -> int:
        return int(self.bins.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.bins.shape[1])

    @property
    def missing_bin(self) -> int:
        return self.max_bins

    @property
    def n_bins_total(self) -> int:
        """Histogram width per feature: value bins plus the missing bin."""
        return self.max_bins + 1


def _freeze(arr: np.ndarray) -> np.ndarray:
    out = np.ascontiguousarray(arr)
    if out is arr:
        out = arr.copy()
    out.flags.writeable = False
    return out


def apply_bins(raw_matrix: np.ndarray, boundaries: BinBoundaries) -> BinMatrix:
    """Bin ``raw_matrix`` using previously computed ``boundaries``."""

    X_np = ensure_numpy(raw_matrix)
    if X_np.ndim == 1 and boundaries.n_features == 1:
        X_np = X_np[:, None]
    if X_np.ndim != 2:
        raise InvalidInputError("raw_matrix must be a 2D array")
    if X_np.shape[0] == 0:
        raise InvalidInputError("raw_matrix has no rows")
    bins = boundaries.transform(X_np.astype(np.float64, copy=False))
    bins.flags.writeable = False
    return BinMatrix(bins, boundaries.max_bins, boundaries)


def check_gradient_pair(
    gradients: np.ndarray | torch.Tensor | Sequence[float],
    hessians: np.ndarray | torch.Tensor | Sequence[float],
    n_rows: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Validate one round's gradient/hessian vectors and return them as ``float64``.

    Hessians are second derivatives of the loss and must be non-negative.
    """

    grad = np.asarray(ensure_numpy(gradients), dtype=np.float64)
    hess = np.asarray(ensure_numpy(hessians), dtype=np.float64)
    if grad.ndim != 1 or hess.ndim != 1:
        raise InvalidInputError("gradients and hessians must be 1D")
    if grad.shape[0] != n_rows or hess.shape[0] != n_rows:
        raise InvalidInputError(
            f"gradients ({grad.shape[0]}) and hessians ({hess.shape[0]}) must match the row count ({n_rows})"
        )
    if not np.all(np.isfinite(grad)):
        raise InvalidInputError("gradients must be finite")
    if not np.all(np.isfinite(hess)):
        raise InvalidInputError("hessians must be finite")
    if hess.size and hess.min() < 0.0:
        raise InvalidInputError("hessians must be non-negative second-order derivatives")
    return grad, hess
