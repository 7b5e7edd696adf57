import pytest

from histboost.config import GrowConfig
from histboost.errors import InvalidInputError


def test_config_defaults():
    cfg = GrowConfig()
    assert cfg.max_depth == 6
    assert cfg.max_leaves is None
    assert cfg.growth_policy == "depth_wise"
    assert cfg.histogram_backend == "cpu"
    assert cfg.max_bins <= 255


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_depth": -1},
        {"max_leaves": 0},
        {"min_samples_leaf": 0},
        {"min_child_weight": -1.0},
        {"min_gain_to_split": -0.1},
        {"lambda_l2": -1.0},
        {"growth_policy": "breadth_first"},
        {"max_bins": 0},
        {"max_bins": 256},
        {"feature_fraction": 0.0},
        {"histogram_backend": "opencl"},
        {"n_threads": 0},
        {"histogram_mode": "auto"},
        {"max_subtraction_chain": 0},
    ],
)
def test_config_rejects_invalid_values(kwargs):
    with pytest.raises(InvalidInputError):
        GrowConfig(**kwargs)


def test_invalid_input_is_value_error():
    with pytest.raises(ValueError):
        GrowConfig(max_bins=0)
