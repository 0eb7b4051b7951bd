"""Tests for summaries, persistence, the CLI and the benchmark targets."""
import os

import numpy as np
import pytest
import jax.numpy as jnp
from jax import random

from analysis.utils import chain_table, inference_data, load_results, save_results, summarize
from benchmarks.metrics import moment_errors, sliced_wasserstein_distance
from benchmarks.targets import (
    TARGETS,
    conjugate_beta_posterior,
    get_target,
    globe_tossing,
    grid_posterior,
    has_reference_sampler,
    neals_funnel,
    posterior_predictive,
    simulate_globe,
)
from run_sampler import main
from samplers.config import SamplerConfig
from samplers.density import as_density_provider
from samplers.scheduler import sample_posterior


@pytest.fixture(scope="module")
def globe_result():
    target = globe_tossing(n_tosses=20, water=13)
    config = SamplerConfig(num_samples=300, num_warmup=300, num_chains=2, seed=0)
    return sample_posterior(target, config)


# ============================================================================
# Summaries
# ============================================================================

def test_summarize(globe_result):
    summary = summarize(globe_result)
    assert list(summary.index) == ["p"]
    for column in ["mean", "sd", "ess_bulk", "r_hat"]:
        assert column in summary.columns
    assert 0.0 < summary.loc["p", "mean"] < 1.0


def test_inference_data_has_sample_stats(globe_result):
    idata = inference_data(globe_result)
    assert idata.posterior["x"].shape == (2, 300, 1)
    assert idata.sample_stats["diverging"].shape == (2, 300)
    assert "energy" in idata.sample_stats


def test_chain_table(globe_result):
    table = chain_table(globe_result)
    assert list(table.index) == [0, 1]
    assert table.index.name == "chain"
    assert np.all(table["step_size"] > 0.0)
    assert np.all((table["mean_accept_prob"] > 0.0) & (table["mean_accept_prob"] <= 1.0))


def test_save_and_load_results(globe_result, tmp_path):
    path = save_results(globe_result, str(tmp_path), extra={"target": "globe"})
    assert os.path.exists(path)
    assert os.path.exists(tmp_path / "summary.csv")

    loaded = load_results(str(tmp_path))
    assert loaded["param_names"] == ["p"]
    assert loaded["extra"] == {"target": "globe"}
    assert loaded["config"]["num_samples"] == 300
    assert loaded["failures"] == []
    np.testing.assert_allclose(loaded["constrained_draws"], globe_result.posterior.constrained)
    np.testing.assert_allclose(loaded["chains"][1]["draws"], globe_result.chains[1].draws)
    assert loaded["chains"][0]["tree_statistics"]["tree_depth"].shape == (300,)


def test_load_results_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_results(str(tmp_path / "nothing"))


def test_cli_run(tmp_path, capsys):
    exit_code = main([
        "--target", "beta_bernoulli",
        "--num-chains", "2",
        "--num-samples", "100",
        "--num-warmup", "100",
        "--chain-method", "sequential",
        "--output-dir", str(tmp_path),
    ])
    assert exit_code == 0
    assert os.path.exists(tmp_path / "sampling_results.json")
    assert "max R-hat" in capsys.readouterr().out


@pytest.mark.parametrize("argv", [
    ["--target", "globe_tossing", "--dim", "3"],
    ["--target", "standard_normal", "--target-init"],
    ["--num-chains", "0"],
])
def test_cli_rejects_inconsistent_options(argv, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    assert excinfo.value.code == 2
    assert "error" in capsys.readouterr().err


# ============================================================================
# Targets and oracles
# ============================================================================

def test_simulate_globe_counts():
    rng = np.random.default_rng(0)
    counts = [simulate_globe(rng, 50, 0.7) for _ in range(200)]
    assert all(0 <= c <= 50 for c in counts)
    assert abs(np.mean(counts) / 50 - 0.7) < 0.05


def test_grid_posterior_matches_conjugate():
    grid, probs = grid_posterior(3.0, 2.0, 70, 100)
    assert probs.sum() == pytest.approx(1.0)
    exact = conjugate_beta_posterior(3.0, 2.0, 70, 100)
    assert np.sum(grid * probs) == pytest.approx(exact.mean(), abs=1e-4)


def test_conjugate_rejects_impossible_counts():
    with pytest.raises(ValueError):
        conjugate_beta_posterior(1.0, 1.0, 11, 10)


def test_posterior_predictive_shape():
    draws = np.full((2, 5, 1), 0.5)
    simulated = posterior_predictive(np.random.default_rng(1), draws, 10)
    assert simulated.shape == (10,)
    assert np.all((simulated >= 0) & (simulated <= 10))


def test_log_density_matches_conjugate_up_to_constant():
    target = globe_tossing(n_tosses=100, water=70)
    exact = conjugate_beta_posterior(3.0, 2.0, 70, 100)
    points = [0.5, 0.6, 0.7, 0.8]
    diffs = [float(target.log_density(jnp.array([p]))) - exact.logpdf(p) for p in points]
    np.testing.assert_allclose(diffs, diffs[0], atol=1e-8)


def test_globe_gradient_matches_closed_form():
    # In logit space the posterior Beta(a, b) has d/du log p = a (1 - p) - b p
    density = as_density_provider(globe_tossing(n_tosses=100, water=70))
    for p in [0.3, 0.6, 0.7, 0.9]:
        u = density.unconstrain(jnp.array([p]))
        result = density.evaluate_with_gradient(u)
        assert np.isfinite(float(result.value))
        expected = 73.0 * (1.0 - p) - 32.0 * p
        assert float(result.gradient[0]) == pytest.approx(expected, rel=1e-8)


@pytest.mark.parametrize("name", sorted(TARGETS))
def test_registered_targets_have_finite_gradients(name):
    target = get_target(name)
    density = as_density_provider(target)
    if target.init_sampler is not None:
        u = density.unconstrain(target.init_sampler(random.PRNGKey(1), 1)[0])
    else:
        u = jnp.zeros(target.dim)
    result = density.evaluate_with_gradient(u)
    assert result.gradient.shape == (target.dim,)
    assert np.all(np.isfinite(np.asarray(result.gradient)))


@pytest.mark.parametrize("name", sorted(TARGETS))
def test_registered_targets_are_finite(name):
    target = get_target(name)
    names = target.param_names or [f"x[{i}]" for i in range(target.dim)]
    assert len(names) == target.dim
    if target.init_sampler is not None:
        inits = target.init_sampler(random.PRNGKey(0), 3)
        assert inits.shape == (3, target.dim)
        for x in inits:
            assert np.isfinite(float(target.log_density(x)))


def test_get_target_rejects_unknown_name():
    with pytest.raises(ValueError):
        get_target("banana")


def test_get_target_dim_only_for_free_dimension_targets():
    assert get_target("neals_funnel", dim=3).dim == 3
    with pytest.raises(ValueError, match="fixed dimension"):
        get_target("globe_tossing", dim=3)


def test_reference_samplers():
    assert has_reference_sampler("globe_tossing")
    assert not has_reference_sampler("normal_unknown_scale")
    draws = neals_funnel(dim=3).reference_sampler(random.PRNGKey(0), 1000)
    assert draws.shape == (1000, 3)


def test_sliced_wasserstein_of_same_distribution_is_small():
    key1, key2 = random.split(random.PRNGKey(0))
    a = random.normal(key1, (5000, 3), dtype=jnp.float64)
    b = random.normal(key2, (5000, 3), dtype=jnp.float64)
    assert sliced_wasserstein_distance(a, b, n_projections=100) < 0.1
    assert sliced_wasserstein_distance(a, b + 2.0, n_projections=100) > 0.5

    with pytest.raises(ValueError):
        sliced_wasserstein_distance(a, b[:, :2])


def test_moment_errors():
    target = get_target("standard_normal", dim=2)
    samples = np.random.default_rng(2).normal(size=(4, 1000, 2))
    errors = moment_errors(samples, target, ess=np.full(2, 4000.0))
    assert np.all(np.abs(errors["mean_error"]) < 0.1)
    assert np.all(np.abs(errors["var_rel_error"]) < 0.1)
    assert np.all(np.abs(errors["z_score"]) < 5.0)

    with pytest.raises(ValueError):
        moment_errors(samples, get_target("normal_unknown_scale"))
