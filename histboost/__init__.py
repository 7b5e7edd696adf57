"""histboost: histogram-based gradient-boosted tree growth on CPU or GPU."""

from .config import GrowConfig
from .core import (
    Histogram,
    NodeStats,
    RowArena,
    SplitDecision,
    build_histogram,
    find_best_split,
    partition_rows,
    split_gains,
    subtract_histograms,
)
from .data import BinMatrix, apply_bins
from .errors import HistBoostError, InvalidInputError, ResourceExhaustionError
from .grower import TreeGrower, grow_tree
from .model import Tree, TreeNode
from .utils.binning import BinBoundaries, FeatureBins, build_bins

__all__ = [
    "BinBoundaries",
    "BinMatrix",
    "FeatureBins",
    "GrowConfig",
    "HistBoostError",
    "Histogram",
    "InvalidInputError",
    "NodeStats",
    "ResourceExhaustionError",
    "RowArena",
    "SplitDecision",
    "Tree",
    "TreeGrower",
    "TreeNode",
    "apply_bins",
    "build_bins",
    "build_histogram",
    "find_best_split",
    "grow_tree",
    "partition_rows",
    "split_gains",
    "subtract_histograms",
]
