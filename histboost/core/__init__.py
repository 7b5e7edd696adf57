"""Core data structures and algorithms for histogram tree growth."""

from .histogram import Histogram, build_histogram, merge_histograms, subtract_histograms
from .partition import RowArena, go_left_mask, partition_rows
from .split import HESSIAN_EPSILON, NodeStats, SplitDecision, find_best_split, split_gains

__all__ = [
    "HESSIAN_EPSILON",
    "Histogram",
    "NodeStats",
    "RowArena",
    "SplitDecision",
    "build_histogram",
    "find_best_split",
    "go_left_mask",
    "merge_histograms",
    "partition_rows",
    "split_gains",
    "subtract_histograms",
]
