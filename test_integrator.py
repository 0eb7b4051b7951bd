"""Tests for the leapfrog integrator and Hamiltonian pieces."""
import numpy as np
import jax.numpy as jnp
from jax import random, vmap

from samplers.HMC import (
    IntegratorState,
    hamiltonian,
    init_integrator_state,
    kinetic_energy,
    leapfrog,
    sample_momentum,
)
from samplers.density import DensityProvider


def standard_normal_density(dim=2):
    return DensityProvider(lambda x: -0.5 * jnp.sum(x**2), dim=dim)


def test_flat_density_moves_in_straight_line():
    density = DensityProvider(lambda x: 0.0, dim=3)
    inv_mass = jnp.array([1.0, 2.0, 0.5])
    u0 = jnp.array([0.1, -0.2, 0.3])
    p0 = jnp.array([1.0, 0.5, -2.0])
    state = init_integrator_state(u0, p0, density.value_and_grad)

    final, energies = leapfrog(state, 0.1, density.value_and_grad, inv_mass, 25)

    np.testing.assert_allclose(np.asarray(final.position), np.asarray(u0 + 25 * 0.1 * inv_mass * p0), atol=1e-12)
    np.testing.assert_allclose(np.asarray(final.momentum), np.asarray(p0), atol=1e-12)
    h0 = float(hamiltonian(state.log_prob, p0, inv_mass))
    np.testing.assert_allclose(np.asarray(energies), h0, atol=1e-12)


def test_energy_is_nearly_conserved():
    density = standard_normal_density()
    inv_mass = jnp.ones(2)
    state = init_integrator_state(jnp.array([1.0, -0.5]), jnp.array([0.3, 0.8]), density.value_and_grad)
    h0 = float(hamiltonian(state.log_prob, state.momentum, inv_mass))

    _, energies = leapfrog(state, 0.01, density.value_and_grad, inv_mass, 200)

    assert energies.shape == (200,)
    assert float(jnp.max(jnp.abs(energies - h0))) < 1e-3


def test_leapfrog_is_reversible():
    density = standard_normal_density(3)
    inv_mass = jnp.array([1.0, 0.5, 2.0])
    start = init_integrator_state(jnp.array([0.5, 1.0, -1.5]), jnp.array([-0.2, 0.4, 1.0]), density.value_and_grad)

    forward, _ = leapfrog(start, 0.1, density.value_and_grad, inv_mass, 30)
    flipped = IntegratorState(forward.position, -forward.momentum, forward.log_prob, forward.grad_log_prob)
    back, _ = leapfrog(flipped, 0.1, density.value_and_grad, inv_mass, 30)

    np.testing.assert_allclose(np.asarray(back.position), np.asarray(start.position), atol=1e-10)
    np.testing.assert_allclose(np.asarray(-back.momentum), np.asarray(start.momentum), atol=1e-10)


def test_negative_step_size_integrates_backward():
    density = standard_normal_density()
    inv_mass = jnp.ones(2)
    start = init_integrator_state(jnp.array([0.2, 0.7]), jnp.array([1.0, -1.0]), density.value_and_grad)

    forward, _ = leapfrog(start, 0.05, density.value_and_grad, inv_mass, 10)
    back, _ = leapfrog(forward, -0.05, density.value_and_grad, inv_mass, 10)

    np.testing.assert_allclose(np.asarray(back.position), np.asarray(start.position), atol=1e-10)


def test_momentum_covariance_is_mass_matrix():
    inv_mass = jnp.array([4.0, 0.25])
    keys = random.split(random.PRNGKey(0), 20000)
    momenta = vmap(lambda k: sample_momentum(k, inv_mass))(keys)

    variance = np.var(np.asarray(momenta), axis=0)
    np.testing.assert_allclose(variance, [0.25, 4.0], rtol=0.05)


def test_kinetic_energy():
    p = jnp.array([1.0, 2.0])
    inv_mass = jnp.array([2.0, 0.5])
    assert float(kinetic_energy(p, inv_mass)) == 0.5 * (1.0 * 2.0 + 4.0 * 0.5)
    assert float(hamiltonian(-jnp.inf, p, inv_mass)) == np.inf
