"""Tests for SamplerConfig validation."""
import dataclasses

import pytest

from samplers.config import SamplerConfig


def test_defaults():
    config = SamplerConfig()
    assert config.num_samples == 1000
    assert config.num_warmup == 1000
    assert config.num_chains == 4
    assert config.target_accept_prob == 0.8
    assert config.max_tree_depth == 10
    assert config.divergence_threshold == 1000.0
    assert config.seed == 0
    assert config.num_iterations == 2000


@pytest.mark.parametrize("kwargs", [
    {"num_samples": 0},
    {"num_warmup": -1},
    {"num_chains": 0},
    {"target_accept_prob": 0.0},
    {"target_accept_prob": 1.0},
    {"max_tree_depth": 0},
    {"divergence_threshold": 0.0},
    {"seed": 1.5},
    {"num_samples": True},
    {"step_size": -0.1},
    {"chain_method": "process"},
    {"num_workers": 0},
    {"init_radius": 0.0},
    {"min_variance": 0.0},
    {"max_nonfinite_retries": 0},
])
def test_invalid_values_raise(kwargs):
    with pytest.raises(ValueError):
        SamplerConfig(**kwargs)


def test_num_warmup_may_be_zero():
    assert SamplerConfig(num_warmup=0).num_warmup == 0


def test_config_is_frozen():
    config = SamplerConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.num_samples = 10


def test_dict_round_trip():
    config = SamplerConfig(num_samples=50, seed=3, step_size=0.2, chain_method="sequential")
    assert SamplerConfig.from_dict(config.to_dict()) == config


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Unknown configuration"):
        SamplerConfig.from_dict({"num_samples": 10, "thinning": 2})
