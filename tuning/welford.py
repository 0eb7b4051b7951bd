"""Welford's online algorithm for estimating mean and diagonal variance.

This module provides JAX-compatible functions to compute running statistics
(mean and variance) of a stream of warmup draws without storing them, and to
turn them into a regularized diagonal inverse mass matrix.
"""
from typing import NamedTuple, Tuple
import jax.numpy as jnp
from jax import jit


class WelfordState(NamedTuple):
    """State for Welford's online estimator.

    Attributes:
        count: Number of samples seen so far (scalar).
        mean: Running mean of samples (n_dim,).
        m2: Sum of squared differences from the mean (n_dim,).
    """
    count: jnp.ndarray  # float64 scalar
    mean: jnp.ndarray   # (n_dim,)
    m2: jnp.ndarray     # (n_dim,)


def welford_init(n_dim: int, dtype=jnp.float64) -> WelfordState:
    """Initialize Welford estimator state with zeros."""
    return WelfordState(
        count=jnp.array(0.0, dtype=dtype),
        mean=jnp.zeros(n_dim, dtype=dtype),
        m2=jnp.zeros(n_dim, dtype=dtype),
    )


@jit
def welford_update(state: WelfordState, x: jnp.ndarray) -> WelfordState:
    """Update Welford state with a single new sample of shape (n_dim,)."""
    x = x.astype(state.mean.dtype)
    count = state.count + 1.0
    delta = x - state.mean
    mean = state.mean + delta / count
    m2 = state.m2 + delta * (x - mean)
    return WelfordState(count, mean, m2)


@jit
def welford_variance(state: WelfordState) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Return the running mean and the unbiased per-coordinate variance.

    The variance is m2 / (n - 1), and zero while fewer than two samples have
    been seen.
    """
    n = jnp.maximum(state.count, 2.0)
    variance = jnp.where(state.count > 1.0, state.m2 / (n - 1.0), 0.0)
    return state.mean, variance


@jit
def regularize_variance(
    variance: jnp.ndarray,
    count: jnp.ndarray,
    min_variance: float = 1e-8,
) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Shrink a window's variance estimate and clamp it away from zero.

    Stan's regularization: (n / (n + 5)) * var + 1e-3 * (5 / (n + 5)).

    Args:
        variance: Raw per-coordinate variance, shape (n_dim,).
        count: Number of samples behind the estimate.
        min_variance: Floor for every coordinate.

    Returns:
        Tuple of (inv_mass_matrix, degenerate) where degenerate is True if any
        raw coordinate was non-finite or below ``min_variance`` and had to be
        clamped.
    """
    degenerate = jnp.any(~jnp.isfinite(variance) | (variance < min_variance))
    variance = jnp.where(jnp.isfinite(variance), variance, min_variance)
    variance = jnp.maximum(variance, min_variance)
    shrunk = (count / (count + 5.0)) * variance + 1e-3 * (5.0 / (count + 5.0))
    return jnp.maximum(shrunk, min_variance), degenerate
