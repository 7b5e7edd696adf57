"""Configuration objects for histboost."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .errors import InvalidInputError

GrowthPolicy = Literal["depth_wise", "leaf_wise"]
HistogramBackend = Literal["cpu", "torch", "cupy", "auto"]
HistogramMode = Literal["subtract", "rebuild"]

MAX_BINS_LIMIT = 255


@dataclass(frozen=True, slots=True)
class GrowConfig:
    """Hyper-parameters steering the growth of a single tree.

    Parameters
    ----------
    max_depth:
        Maximum node depth (the root sits at depth 0). ``0`` yields a single leaf.
    max_leaves:
        Upper bound on the number of leaves. ``None`` leaves it unbounded.
        Honoured by both growth policies.
    min_samples_leaf:
        Minimum number of rows required in each child after a split.
    min_child_weight:
        Minimum hessian sum required in each child after a split.
    min_gain_to_split:
        Penalty ``gamma`` subtracted from every candidate gain. A split is only
        accepted when its penalised gain is strictly positive.
    lambda_l2:
        L2 regularisation ``lambda`` added to hessian sums in gains and leaf values.
    growth_policy:
        ``"depth_wise"`` expands a whole level before the next one,
        ``"leaf_wise"`` always expands the frontier node with the best gain.
    max_bins:
        Number of value bins per feature (``<= 255``). The missing-value bin is
        stored after them at index ``max_bins``.
    feature_fraction:
        Fraction of features sampled without replacement once per tree.
    random_state:
        Optional seed controlling feature sampling.
    histogram_backend:
        ``"cpu"`` (NumPy), ``"torch"`` (Torch on :attr:`device`), ``"cupy"`` or
        ``"auto"`` (Torch on CUDA when available, CPU otherwise).
    device:
        Torch device identifier used by the ``"torch"`` backend.
    n_threads:
        Number of row chunks accumulated concurrently by the CPU backend.
    histogram_mode:
        ``"subtract"`` derives the larger sibling as parent minus the smaller
        sibling, ``"rebuild"`` scans rows for every node.
    max_subtraction_chain:
        Number of successive subtractions tolerated before a histogram is
        rebuilt from rows to reset accumulated floating-point drift.
    """

    max_depth: int = 6
    max_leaves: int | None = None
    min_samples_leaf: int = 20
    min_child_weight: float = 0.0
    min_gain_to_split: float = 0.0
    lambda_l2: float = 1.0
    growth_policy: GrowthPolicy = "depth_wise"
    max_bins: int = 255

    feature_fraction: float = 1.0
    random_state: int | None = None

    histogram_backend: HistogramBackend = "cpu"
    device: str = "cpu"
    n_threads: int = 1
    histogram_mode: HistogramMode = "subtract"
    max_subtraction_chain: int = 4

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise InvalidInputError("max_depth must be non-negative")
        if self.max_leaves is not None and self.max_leaves < 1:
            raise InvalidInputError("max_leaves must be at least 1")
        if self.min_samples_leaf < 1:
            raise InvalidInputError("min_samples_leaf must be at least 1")
        if self.min_child_weight < 0.0:
            raise InvalidInputError("min_child_weight must be non-negative")
        if self.min_gain_to_split < 0.0:
            raise InvalidInputError("min_gain_to_split must be non-negative")
        if self.lambda_l2 < 0.0:
            raise InvalidInputError("lambda_l2 must be non-negative")
        if self.growth_policy not in ("depth_wise", "leaf_wise"):
            raise InvalidInputError(f"Unsupported growth_policy: {self.growth_policy}")
        if not 1 <= self.max_bins <= MAX_BINS_LIMIT:
            raise InvalidInputError(f"max_bins must lie within [1, {MAX_BINS_LIMIT}]")
        if not 0.0 < self.feature_fraction <= 1.0:
            raise InvalidInputError("feature_fraction must lie within (0, 1]")
        if self.histogram_backend not in ("cpu", "torch", "cupy", "auto"):
            raise InvalidInputError(f"Unsupported histogram_backend: {self.histogram_backend}")
        if self.n_threads < 1:
            raise InvalidInputError("n_threads must be at least 1")
        if self.histogram_mode not in ("subtract", "rebuild"):
            raise InvalidInputError(f"Unsupported histogram_mode: {self.histogram_mode}")
        if self.max_subtraction_chain < 1:
            raise InvalidInputError("max_subtraction_chain must be at least 1")
