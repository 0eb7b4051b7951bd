"""Tests for convergence diagnostics on synthetic chains."""
import numpy as np
import pytest

from analysis.diagnostics import (
    compute_diagnostics,
    effective_sample_size,
    is_converged,
    split_rhat,
    to_inference_data,
)


def ar1_chains(rng, n_chains, n_samples, rho):
    x = np.empty((n_chains, n_samples))
    x[:, 0] = rng.normal(size=n_chains)
    noise = rng.normal(size=(n_chains, n_samples)) * np.sqrt(1.0 - rho**2)
    for t in range(1, n_samples):
        x[:, t] = rho * x[:, t - 1] + noise[:, t]
    return x


def test_rhat_of_mixed_chains_is_close_to_one():
    draws = np.random.default_rng(0).normal(size=(4, 1000, 3))
    rhat = split_rhat(draws)
    assert rhat.shape == (3,)
    assert np.all(rhat < 1.01)


def test_rhat_of_offset_chains_is_large():
    rng = np.random.default_rng(1)
    offsets = np.array([0.0, 0.0, 5.0, 5.0])[:, None, None]
    draws = rng.normal(size=(4, 500, 2)) + offsets
    assert np.all(split_rhat(draws) > 1.1)


def test_rhat_detects_trend_within_chains():
    # Split R-hat compares the two halves of every chain
    rng = np.random.default_rng(2)
    trend = np.linspace(-3.0, 3.0, 1000)[None, :]
    draws = rng.normal(size=(4, 1000)) + trend
    assert split_rhat(draws)[0] > 1.1


def test_ess_of_independent_draws():
    draws = np.random.default_rng(3).normal(size=(4, 1000, 2))
    ess = effective_sample_size(draws)
    assert np.all(ess > 0.6 * 4000)
    assert np.all(ess < 1.4 * 4000)


def test_ess_of_autocorrelated_draws():
    draws = ar1_chains(np.random.default_rng(4), 4, 2000, rho=0.9)
    # Expected about N (1 - rho) / (1 + rho), i.e. 5% of the draws
    ess = effective_sample_size(draws)[0]
    assert ess < 0.2 * 8000
    assert ess > 0.01 * 8000


def test_divergence_and_depth_counts():
    rng = np.random.default_rng(5)
    draws = rng.normal(size=(2, 100, 1))
    divergent = np.zeros((2, 100), dtype=bool)
    divergent[0, :3] = True
    divergent[1, 50] = True
    tree_depth = np.full((2, 100), 3)
    tree_depth[1, :10] = 10

    diag = compute_diagnostics(draws, divergent=divergent, tree_depth=tree_depth, max_tree_depth=10)

    np.testing.assert_array_equal(diag.divergences_per_chain, [3, 1])
    assert diag.total_divergences == 4
    assert diag.divergence_rate == pytest.approx(4 / 200)
    np.testing.assert_array_equal(diag.max_depth_hits, [0, 10])
    assert diag.num_chains == 2
    assert diag.num_samples == 100


def test_ebfmi_from_energy():
    rng = np.random.default_rng(6)
    draws = rng.normal(size=(3, 500, 1))
    energy = rng.normal(size=(3, 500))
    diag = compute_diagnostics(draws, energy=energy)
    assert diag.ebfmi.shape == (3,)
    assert np.all(diag.ebfmi > 0.0)

    without = compute_diagnostics(draws)
    assert np.all(np.isnan(without.ebfmi))


def test_diagnostics_to_dict_and_names():
    draws = np.random.default_rng(7).normal(size=(2, 200, 2))
    diag = compute_diagnostics(draws, param_names=["alpha", "beta"])
    assert diag.param_names == ["alpha", "beta"]
    as_dict = diag.to_dict()
    assert as_dict["num_chains"] == 2
    assert len(as_dict["rhat"]) == 2


def test_is_converged():
    good = compute_diagnostics(np.random.default_rng(8).normal(size=(4, 1000, 1)))
    assert is_converged(good)
    assert not is_converged(good, min_ess=1e6)

    offsets = np.array([0.0, 10.0])[:, None, None]
    bad = compute_diagnostics(np.random.default_rng(9).normal(size=(2, 500, 1)) + offsets)
    assert not is_converged(bad)


def test_inference_data_layout():
    idata = to_inference_data(np.zeros((2, 10, 3)), ["a", "b", "c"])
    assert idata.posterior["x"].shape == (2, 10, 3)
    assert list(idata.posterior["x"].coords["param"].values) == ["a", "b", "c"]

    with pytest.raises(ValueError):
        to_inference_data(np.zeros(10))
