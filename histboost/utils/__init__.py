"""Dataset preparation helpers."""

from .binning import BinBoundaries, FeatureBins, build_bins, build_feature_bins

__all__ = ["BinBoundaries", "FeatureBins", "build_bins", "build_feature_bins"]
