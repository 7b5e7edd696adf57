"""Histogram builder backends.

Every builder exposes the same structural interface,
``build_histogram(rows, features) -> Histogram``, and is bound to one
round's bin matrix and gradient pair. Builders are chosen by name at
configuration time.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, Sequence

import numpy as np
import torch

from ..core.histogram import Histogram
from ..data import BinMatrix
from ..errors import InvalidInputError, ResourceExhaustionError
from .cpu import CpuHistogramBuilder

__all__ = [
    "CpuHistogramBuilder",
    "FallbackHistogramBuilder",
    "HistogramBuilder",
    "cuda_available",
    "make_histogram_builder",
    "resolve_backend_name",
]

logger = logging.getLogger(__name__)


class HistogramBuilder(Protocol):
    name: str

    def build_histogram(
        self, rows: np.ndarray, features: Sequence[int] | np.ndarray | None = None
    ) -> Histogram: ...


def cuda_available() -> bool:
    """Check whether Torch can see a CUDA device."""
    try:
        return bool(torch.cuda.is_available())
    except RuntimeError:
        return False


def resolve_backend_name(name: str) -> str:
    """Map ``"auto"`` onto a concrete backend name."""
    if name == "auto":
        return "torch" if cuda_available() else "cpu"
    if name not in ("cpu", "torch", "cupy"):
        raise InvalidInputError(f"Unsupported histogram backend: {name}")
    return name


def make_histogram_builder(
    name: str,
    bin_matrix: BinMatrix,
    gradients: np.ndarray,
    hessians: np.ndarray,
    *,
    device: str = "cpu",
    n_threads: int = 1,
) -> HistogramBuilder:
    """Instantiate the builder registered under ``name``.

    Accelerated builders raise :class:`ResourceExhaustionError` when their
    device is missing or cannot hold the round's data.
    """
    resolved = resolve_backend_name(name)
    if resolved == "cpu":
        return CpuHistogramBuilder(bin_matrix, gradients, hessians, n_threads=n_threads)
    if resolved == "torch":
        from .tensor import TorchHistogramBuilder

        torch_device = device
        if name == "auto" and torch.device(device).type != "cuda":
            torch_device = "cuda"
        return TorchHistogramBuilder(bin_matrix, gradients, hessians, device=torch_device)
    from ..gpu import CupyHistogramBuilder

    return CupyHistogramBuilder(bin_matrix, gradients, hessians)


class FallbackHistogramBuilder:
    """Wrap an accelerated builder and switch to the CPU path on exhaustion.

    The switch happens at most once and lasts for the lifetime of this
    wrapper, which the grower scopes to a single tree.
    """

    def __init__(
        self,
        primary_factory: Callable[[], HistogramBuilder],
        fallback_factory: Callable[[], HistogramBuilder],
    ) -> None:
        self._fallback_factory = fallback_factory
        self.fell_back = False
        try:
            self._active = primary_factory()
        except ResourceExhaustionError as exc:
            self._switch(exc)

    @property
    def name(self) -> str:
        return self._active.name

    def _switch(self, exc: ResourceExhaustionError) -> None:
        logger.warning("Accelerated histogram path unavailable (%s); falling back to CPU.", exc)
        self._active = self._fallback_factory()
        self.fell_back = True

    def build_histogram(
        self, rows: np.ndarray, features: Sequence[int] | np.ndarray | None = None
    ) -> Histogram:
        if self.fell_back:
            return self._active.build_histogram(rows, features)
        try:
            return self._active.build_histogram(rows, features)
        except ResourceExhaustionError as exc:
            if torch.cuda.is_available():
                try:
                    torch.cuda.synchronize()
                except RuntimeError as sync_exc:
                    logger.debug("torch.cuda.synchronize() failed before fallback: %s", sync_exc)
            self._switch(exc)
            return self._active.build_histogram(rows, features)
