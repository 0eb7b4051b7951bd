"""Hamiltonian dynamics for gradient-based samplers.

This module implements the pieces shared by every HMC-family transition:
- Gaussian momentum draws governed by a diagonal mass matrix
- Kinetic energy and the Hamiltonian H(u, p) = -log p(u) + 0.5 * p^T M^-1 p
- The leapfrog (Stormer-Verlet) symplectic integrator

The mass matrix is always passed as the diagonal of its inverse
(``inv_mass_matrix``), which is what the warmup variance estimates produce.
"""
from __future__ import annotations
from functools import partial
from typing import Callable, NamedTuple, Tuple

import jax.numpy as jnp
from jax import jit, random, lax

# Type aliases
Array = jnp.ndarray
ValueAndGradFn = Callable[[Array], Tuple[Array, Array]]  # u -> (log p(u), grad log p(u))


class IntegratorState(NamedTuple):
    """Phase-space point together with the density evaluated at its position.

    Attributes:
        position: Unconstrained position, shape (n_dim,)
        momentum: Momentum, shape (n_dim,)
        log_prob: Log density at position [float64]
        grad_log_prob: Gradient of the log density at position, shape (n_dim,)
    """
    position: Array
    momentum: Array
    log_prob: Array
    grad_log_prob: Array


def sample_momentum(key: Array, inv_mass_matrix: Array) -> Array:
    """Draw p ~ N(0, M) for the diagonal mass matrix M = 1 / inv_mass_matrix."""
    z = random.normal(key, shape=inv_mass_matrix.shape, dtype=inv_mass_matrix.dtype)
    return z / jnp.sqrt(inv_mass_matrix)


def kinetic_energy(momentum: Array, inv_mass_matrix: Array) -> Array:
    """0.5 * p^T M^-1 p"""
    return 0.5 * jnp.sum(momentum**2 * inv_mass_matrix)


def hamiltonian(log_prob: Array, momentum: Array, inv_mass_matrix: Array) -> Array:
    """Total energy. Infinite when the log density is -inf."""
    return -jnp.asarray(log_prob, dtype=jnp.float64) + kinetic_energy(momentum, inv_mass_matrix)


def leapfrog_step(
    state: IntegratorState,
    step_size: float,
    value_and_grad_fn: ValueAndGradFn,
    inv_mass_matrix: Array,
) -> IntegratorState:
    """Advance one leapfrog step; a negative step size integrates backward.

    1. p <- p + (eps/2) * grad(u)
    2. u <- u + eps * M^-1 p
    3. p <- p + (eps/2) * grad(u)
    """
    eps = jnp.asarray(step_size, dtype=state.position.dtype)
    half = jnp.array(0.5, dtype=state.position.dtype)

    momentum = state.momentum + half * eps * state.grad_log_prob
    position = state.position + eps * (momentum * inv_mass_matrix)
    log_prob, grad = value_and_grad_fn(position)
    momentum = momentum + half * eps * grad

    return IntegratorState(position, momentum, log_prob, grad)


@partial(jit, static_argnames=("value_and_grad_fn", "num_steps"))
def leapfrog(
    state: IntegratorState,
    step_size: float,
    value_and_grad_fn: ValueAndGradFn,
    inv_mass_matrix: Array,
    num_steps: int,
) -> Tuple[IntegratorState, Array]:
    """Integrate ``num_steps`` leapfrog steps.

    Args:
        state: Starting phase-space point
        step_size: Integration step size (sign gives the direction of time)
        value_and_grad_fn: Function returning (log p(u), grad log p(u))
        inv_mass_matrix: Diagonal of the inverse mass matrix, shape (n_dim,)
        num_steps: Number of leapfrog steps

    Returns:
        Tuple of (final_state, energies) where energies has shape (num_steps,)
        and holds the Hamiltonian after each step.
    """
    def lf_step(carry, _):
        carry = leapfrog_step(carry, step_size, value_and_grad_fn, inv_mass_matrix)
        return carry, hamiltonian(carry.log_prob, carry.momentum, inv_mass_matrix)

    return lax.scan(lf_step, state, None, length=num_steps)


def init_integrator_state(
    position: Array, momentum: Array, value_and_grad_fn: ValueAndGradFn
) -> IntegratorState:
    """Evaluate the density at ``position`` and package a phase-space point."""
    log_prob, grad = value_and_grad_fn(position)
    return IntegratorState(position, momentum, log_prob, grad)
