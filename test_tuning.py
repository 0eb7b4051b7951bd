"""Tests for warmup adaptation.

Tests:
1. Welford running variance and its regularization
2. Dual averaging
3. Window schedule
4. Step-size heuristic and the warmup state machine
"""
from types import SimpleNamespace

import numpy as np
import pytest
import jax.numpy as jnp
from jax import random

from samplers.NUTS import nuts_init
from samplers.density import DensityProvider
from samplers.errors import DegenerateMassMatrixWarning
from tuning.adaptation import build_schedule, find_reasonable_step_size, run_adaptive_warmup
from tuning.dual_averaging import da_final_step_size, da_init, da_reset, da_update
from tuning.welford import regularize_variance, welford_init, welford_update, welford_variance


# ============================================================================
# Welford
# ============================================================================

def test_welford_matches_numpy():
    data = np.random.default_rng(0).normal(loc=[1.0, -2.0, 0.0], scale=[0.5, 3.0, 1.0], size=(500, 3))
    state = welford_init(3)
    for x in data:
        state = welford_update(state, jnp.asarray(x))

    mean, variance = welford_variance(state)
    np.testing.assert_allclose(np.asarray(mean), data.mean(axis=0), rtol=1e-10)
    np.testing.assert_allclose(np.asarray(variance), data.var(axis=0, ddof=1), rtol=1e-10)
    assert float(state.count) == 500


def test_welford_variance_needs_two_samples():
    state = welford_update(welford_init(2), jnp.array([1.0, 2.0]))
    _, variance = welford_variance(state)
    np.testing.assert_array_equal(np.asarray(variance), [0.0, 0.0])


def test_regularize_variance_shrinks_towards_small_constant():
    variance = jnp.array([2.0, 0.5])
    inv_mass, degenerate = regularize_variance(variance, jnp.array(95.0))
    expected = (95.0 / 100.0) * np.array([2.0, 0.5]) + 1e-3 * (5.0 / 100.0)
    np.testing.assert_allclose(np.asarray(inv_mass), expected, rtol=1e-12)
    assert not bool(degenerate)


def test_regularize_variance_clamps_degenerate_coordinates():
    variance = jnp.array([0.0, jnp.nan, 1.0])
    inv_mass, degenerate = regularize_variance(variance, jnp.array(10.0), min_variance=1e-8)
    assert bool(degenerate)
    assert np.all(np.isfinite(np.asarray(inv_mass)))
    assert np.all(np.asarray(inv_mass) >= 1e-8)


# ============================================================================
# Dual averaging
# ============================================================================

def test_da_init():
    state = da_init(0.5)
    assert state.mu == pytest.approx(np.log(5.0))
    assert state.log_step == pytest.approx(np.log(0.5))
    assert state.count == 0
    with pytest.raises(ValueError):
        da_init(0.0)


def test_da_update_direction():
    state = da_init(1.0)
    too_high = da_update(state, 1.0, 0.8)
    too_low = da_update(state, 0.0, 0.8)
    assert too_high.log_step > too_low.log_step
    assert too_high.count == 1


def test_da_nonfinite_accept_counts_as_rejection():
    state = da_init(1.0)
    assert da_update(state, float("nan"), 0.8) == da_update(state, 0.0, 0.8)


def test_da_converges_to_target():
    # accept(eps) = exp(-eps) reaches 0.8 at eps = -log(0.8)
    state = da_init(1.0)
    for _ in range(2000):
        step_size = float(np.exp(state.log_step))
        state = da_update(state, float(np.exp(-step_size)), 0.8)

    expected = -np.log(0.8)
    assert abs(da_final_step_size(state) - expected) / expected < 0.1


def test_da_reset_keeps_constants():
    state = da_init(1.0)._replace(gamma=0.1)
    state = da_update(state, 0.2, 0.8)
    reset = da_reset(state, 0.25)
    assert reset.count == 0
    assert reset.gamma == 0.1
    assert reset.mu == pytest.approx(np.log(2.5))


# ============================================================================
# Schedule
# ============================================================================

def test_schedule_default_warmup():
    assert build_schedule(1000) == [
        (0, 75, 'fast_init'),
        (75, 100, 'slow'),
        (100, 150, 'slow'),
        (150, 250, 'slow'),
        (250, 450, 'slow'),
        (450, 950, 'slow'),
        (950, 1000, 'fast_final'),
    ]


@pytest.mark.parametrize("num_steps,slow_sizes", [
    (1000, [25, 50, 100, 200, 500]),
    (2000, [25, 50, 100, 200, 400, 1100]),
    (500, [25, 50, 100, 200]),
])
def test_schedule_last_slow_window_absorbs_leftover(num_steps, slow_sizes):
    schedule = build_schedule(num_steps)
    assert [end - start for start, end, phase in schedule if phase == 'slow'] == slow_sizes


def test_schedule_short_warmup_fallback():
    assert build_schedule(100) == [
        (0, 15, 'fast_init'),
        (15, 90, 'slow'),
        (90, 100, 'fast_final'),
    ]


def test_schedule_tiny_warmup_adapts_step_size_only():
    assert build_schedule(0) == []
    assert build_schedule(10) == [(0, 10, 'fast_init')]


@pytest.mark.parametrize("num_steps", [20, 37, 100, 149, 150, 151, 500, 1000, 2000, 5000])
def test_schedule_covers_warmup(num_steps):
    schedule = build_schedule(num_steps)
    assert schedule[0][0] == 0
    assert schedule[-1][1] == num_steps
    for (_, end, _), (start, _, _) in zip(schedule, schedule[1:]):
        assert end == start
    assert all(end > start for start, end, _ in schedule)
    assert any(phase == 'slow' for _, _, phase in schedule)


# ============================================================================
# Heuristic and warmup
# ============================================================================

@pytest.fixture(scope="module")
def normal_density():
    return DensityProvider(lambda x: -0.5 * jnp.sum(x**2), dim=2)


def test_find_reasonable_step_size(normal_density):
    state = nuts_init(jnp.array([0.3, -0.1]), normal_density.value_and_grad)
    step_size = find_reasonable_step_size(random.PRNGKey(0), state, normal_density.value_and_grad, jnp.ones(2))

    assert 1e-10 < step_size < 1e7
    # Only doublings and halvings of the initial guess are tried
    assert float(np.log2(step_size)) == pytest.approx(round(np.log2(step_size)))


def test_warmup_flags_collapsed_variance(normal_density):
    state = nuts_init(jnp.zeros(2), normal_density.value_and_grad)

    def stuck_transition(state, key, step_size, inv_mass_matrix):
        return state, SimpleNamespace(accept_prob=0.8)

    with pytest.warns(DegenerateMassMatrixWarning):
        result = run_adaptive_warmup(
            random.PRNGKey(0), state, stuck_transition, normal_density.value_and_grad,
            num_warmup=200, initial_step_size=0.1, adapt_step_size=False,
        )

    assert result.degenerate
    assert np.all(result.inv_mass_matrix > 0.0)
    assert result.step_size == 0.1
    assert len(result.infos) == 200


def test_warmup_without_adaptation_keeps_parameters(normal_density):
    state = nuts_init(jnp.zeros(2), normal_density.value_and_grad)

    def transition(state, key, step_size, inv_mass_matrix):
        return state, SimpleNamespace(accept_prob=0.5)

    result = run_adaptive_warmup(
        random.PRNGKey(0), state, transition, normal_density.value_and_grad,
        num_warmup=50, initial_step_size=0.3, adapt_step_size=False, adapt_mass_matrix=False,
    )
    assert result.step_size == 0.3
    np.testing.assert_array_equal(result.inv_mass_matrix, [1.0, 1.0])
    assert not result.degenerate
