from __future__ import annotations

import numpy as np
import pytest

from histboost import apply_bins, build_bins


def make_regression_bins(
    n_rows: int = 400, n_features: int = 5, max_bins: int = 63, seed: int = 42
):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_rows, n_features)).astype(np.float32)
    coefs = rng.normal(size=n_features).astype(np.float32)
    y = (X @ coefs + 0.1 * rng.standard_normal(n_rows)).astype(np.float64)
    boundaries = build_bins(X, max_bins)
    return X, y, apply_bins(X, boundaries)


@pytest.fixture
def regression_bins():
    return make_regression_bins()
