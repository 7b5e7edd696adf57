"""Quantile-based binning utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np

from ..config import MAX_BINS_LIMIT
from ..errors import InvalidInputError

BinningStrategy = Literal["quantile", "uniform"]


def _missing_mask(column: np.ndarray, missing_value: float | None) -> np.ndarray:
    mask = np.isnan(column)
    if missing_value is not None and not np.isnan(missing_value):
        mask |= column == missing_value
    return mask


@dataclass(frozen=True)
class FeatureBins:
    """Bin boundaries of a single feature.

    Bin ``b`` receives values in ``(upper_edges[b - 1], upper_edges[b]]``; the
    last bin is open towards ``+inf``. Missing values are routed to the
    dedicated bin ``max_bins`` which does not take part in threshold ordering.
    """

    upper_edges: np.ndarray
    max_bins: int
    missing_value: float | None = None

    @property
    def n_bins(self) -> int:
        """Number of effective (non-missing) bins."""
        return int(self.upper_edges.shape[0]) + 1

    @property
    def missing_bin(self) -> int:
        return self.max_bins

    def transform(self, column: np.ndarray) -> np.ndarray:
        """Map raw ``column`` values onto bin indices as ``uint8``."""
        values = np.asarray(column, dtype=np.float64)
        if values.ndim != 1:
            raise InvalidInputError("column must be 1D")
        out = np.searchsorted(self.upper_edges, values, side="left").astype(np.uint8)
        out[_missing_mask(values, self.missing_value)] = self.missing_bin
        return out

    def threshold_value(self, bin_index: int) -> float:
        """Raw upper edge of ``bin_index``; ``+inf`` for the last bin."""
        if bin_index < 0:
            raise InvalidInputError("bin_index must be non-negative")
        if bin_index >= self.upper_edges.shape[0]:
            return float("inf")
        return float(self.upper_edges[bin_index])


@dataclass(frozen=True)
class BinBoundaries:
    """Per-feature bin boundaries computed once per dataset."""

    features: tuple[FeatureBins, ...]
    max_bins: int

    @property
    def n_features(self) -> int:
        return len(self.features)

    @property
    def missing_bin(self) -> int:
        return self.max_bins

    def __getitem__(self, feature: int) -> FeatureBins:
        return self.features[feature]

    def __len__(self) -> int:
        return len(self.features)

    def transform(self, X: np.ndarray) -> np.ndarray:
        """Bin a raw matrix of shape ``(n_samples, n_features)``.

        The mapping only depends on the stored edges, so it can be applied to
        any future rows without recomputation.
        """
        arr = np.asarray(X, dtype=np.float64)
        if arr.ndim == 1 and self.n_features == 1:
            arr = arr[:, None]
        if arr.ndim != 2:
            raise InvalidInputError("X must be a 2D array")
        if arr.shape[1] != self.n_features:
            raise InvalidInputError(
                f"X has {arr.shape[1]} features but boundaries were built for {self.n_features}"
            )
        out = np.empty(arr.shape, dtype=np.uint8)
        for j, feature_bins in enumerate(self.features):
            out[:, j] = feature_bins.transform(arr[:, j])
        return out

    def threshold_value(self, feature: int, bin_index: int) -> float:
        return self.features[feature].threshold_value(bin_index)


def _quantile_edges(values: np.ndarray, max_bins: int) -> np.ndarray:
    quantiles = np.linspace(0.0, 1.0, max_bins + 1, dtype=np.float64)[1:-1]
    edges = np.quantile(values, quantiles, method="linear")
    # the top value must stay in the last bin
    edges = edges[edges < values.max()]
    return np.unique(edges)


def _uniform_edges(values: np.ndarray, max_bins: int) -> np.ndarray:
    lo = float(values.min())
    hi = float(values.max())
    edges = np.linspace(lo, hi, max_bins + 1, dtype=np.float64)[1:-1]
    edges = edges[edges < hi]
    return np.unique(edges)


def build_feature_bins(
    column: np.ndarray,
    max_bins: int,
    *,
    strategy: BinningStrategy = "quantile",
    missing_value: float | None = None,
    subsample: int | None = 200_000,
    random_state: int | None = 0,
) -> FeatureBins:
    """Compute :class:`FeatureBins` for one raw column.

    Columns with at most ``max_bins`` distinct values get one bin per
    distinct value, with the distinct values themselves as edges. Constant
    and all-missing columns end up with a single effective bin.
    """
    if not 1 <= max_bins <= MAX_BINS_LIMIT:
        raise InvalidInputError(f"max_bins must lie within [1, {MAX_BINS_LIMIT}]")
    values = np.asarray(column, dtype=np.float64)
    if values.ndim != 1:
        raise InvalidInputError("column must be 1D")
    if values.size == 0:
        raise InvalidInputError("Cannot bin an empty feature column")
    if np.isinf(values).any():
        raise InvalidInputError("Feature values must be finite or NaN")

    missing = _missing_mask(values, missing_value)
    present = values[~missing]

    if present.size == 0:
        return FeatureBins(np.empty(0, dtype=np.float64), max_bins, missing_value)

    distinct = np.unique(present)
    if distinct.size <= max_bins:
        edges = distinct[:-1]
    else:
        if subsample is not None and subsample < present.size:
            rng = np.random.default_rng(random_state)
            present = present[rng.choice(present.size, size=subsample, replace=False)]
        if strategy == "quantile":
            edges = _quantile_edges(present, max_bins)
        elif strategy == "uniform":
            edges = _uniform_edges(present, max_bins)
        else:
            raise InvalidInputError(f"Unsupported binning strategy: {strategy}")

    return FeatureBins(np.ascontiguousarray(edges, dtype=np.float64), max_bins, missing_value)


def build_bins(
    column_data: np.ndarray | Sequence[float],
    max_bins: int = 255,
    *,
    strategy: BinningStrategy = "quantile",
    missing_value: float | None = None,
    subsample: int | None = 200_000,
    random_state: int | None = 0,
) -> BinBoundaries:
    """Compute bin boundaries for every column of ``column_data``.

    Parameters
    ----------
    column_data:
        A single raw column (1D) or a raw matrix of shape
        ``(n_samples, n_features)``.
    max_bins:
        Number of value bins per feature in ``[1, 255]``.
    strategy:
        ``"quantile"`` balances rows across bins, ``"uniform"`` uses
        equal-width ranges. Only used when a column has more than
        ``max_bins`` distinct values.
    missing_value:
        Optional sentinel treated like ``NaN``.
    subsample:
        Optional subsample size used to estimate quantiles for large data.
    random_state:
        Seed for subsampling when used.
    """
    arr = np.asarray(column_data, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise InvalidInputError("column_data must be 1D or 2D")
    if arr.shape[1] == 0:
        raise InvalidInputError("column_data has no features")

    features = tuple(
        build_feature_bins(
            arr[:, j],
            max_bins,
            strategy=strategy,
            missing_value=missing_value,
            subsample=subsample,
            random_state=random_state,
        )
        for j in range(arr.shape[1])
    )
    return BinBoundaries(features=features, max_bins=int(max_bins))
