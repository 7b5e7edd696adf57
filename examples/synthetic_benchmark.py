"""Benchmark histboost growth policies and histogram backends on synthetic data."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd
from sklearn.datasets import make_regression
from sklearn.metrics import r2_score
from sklearn.model_selection import train_test_split

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from histboost import GrowConfig, apply_bins, build_bins, grow_tree
from histboost.backends import cuda_available


N_SAMPLES = 20000
N_FEATURES = 20
SEED = 123

N_TREES = 100
MAX_DEPTH = 6
MAX_LEAVES = 31
MAX_BINS = 127
LEARNING_RATE = 0.1


@dataclass
class BenchmarkResult:
    name: str
    fit_time: float
    predict_time: float
    r2: float


def generate_data() -> tuple[np.ndarray, np.ndarray]:
    X, y = make_regression(n_samples=N_SAMPLES, n_features=N_FEATURES, noise=10.0, random_state=SEED)
    rng = np.random.default_rng(SEED)
    # knock out a few values to exercise the missing bin
    X[rng.random(X.shape) < 0.02] = np.nan
    return X.astype(np.float32), y.astype(np.float64)


def run(name: str, config: GrowConfig, X_train, y_train, X_test, y_test) -> BenchmarkResult:
    """Boost ``N_TREES`` squared-loss rounds with ``config`` and score the test split."""
    boundaries = build_bins(X_train, config.max_bins, random_state=SEED)
    bins = apply_bins(X_train, boundaries)
    base = float(y_train.mean())
    scores = np.full(y_train.shape[0], base)
    hess = np.ones_like(y_train)
    trees = []

    t0 = time.perf_counter()
    for _ in range(N_TREES):
        trees.append(grow_tree(bins, scores - y_train, hess, config, scores=scores, learning_rate=LEARNING_RATE))
    fit_time = time.perf_counter() - t0

    t0 = time.perf_counter()
    test_bins = apply_bins(X_test, boundaries)
    preds = np.full(X_test.shape[0], base)
    for tree in trees:
        preds += LEARNING_RATE * tree.predict_binned(test_bins)
    predict_time = time.perf_counter() - t0

    return BenchmarkResult(name, fit_time, predict_time, float(r2_score(y_test, preds)))


if __name__ == "__main__":
    X, y = generate_data()
    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.2, random_state=SEED)
    X_train = pd.DataFrame(X_train, columns=[f"f{i}" for i in range(N_FEATURES)])

    common = dict(max_depth=MAX_DEPTH, max_bins=MAX_BINS, min_samples_leaf=20, lambda_l2=1.0)
    configs = {
        "depth/cpu": GrowConfig(**common),
        "depth/cpu x4": GrowConfig(n_threads=4, **common),
        "depth/rebuild": GrowConfig(histogram_mode="rebuild", **common),
        "leaf/cpu": GrowConfig(growth_policy="leaf_wise", max_leaves=MAX_LEAVES, **common),
        "depth/torch": GrowConfig(histogram_backend="torch", device="cpu", **common),
    }
    if cuda_available():
        configs["leaf/cuda"] = GrowConfig(
            growth_policy="leaf_wise", max_leaves=MAX_LEAVES, histogram_backend="torch", device="cuda", **common
        )

    results: List[BenchmarkResult] = [
        run(name, config, X_train, y_train, X_test, y_test) for name, config in configs.items()
    ]

    print("Config          Fit (s)   Predict (s)   R^2")
    print("-" * 46)
    for res in results:
        print(f"{res.name:<14} {res.fit_time:>8.3f} {res.predict_time:>12.3f} {res.r2:>7.4f}")
