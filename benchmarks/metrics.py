"""
Sample quality of MCMC output against exact reference draws and known moments.
"""

from typing import Dict, Optional

import numpy as np
import jax.numpy as jnp
from jax import random

from benchmarks.targets import TargetDistribution


def sliced_wasserstein_distance(
    samples1,
    samples2,
    n_projections: int = 500,
    key: Optional[jnp.ndarray] = None,
    projection_batch_size: int = 100,
) -> float:
    """
    Compute the Sliced Wasserstein-2 distance between two sample sets.
    Projects both distributions onto random 1D directions and averages the
    1D Wasserstein distances, which compare matched quantiles.

    Args:
        samples1: First sample set, shape (n1, dim)
        samples2: Second sample set, shape (n2, dim)
        n_projections: Number of random 1D projections
        key: JAX random key (uses fixed seed if None)
        projection_batch_size: Number of projections to process simultaneously.
            Reduce if encountering OOM errors.

    Returns:
        Sliced W2 distance (scalar)
    """
    if key is None:
        key = random.PRNGKey(30)

    samples1 = jnp.asarray(samples1, dtype=jnp.float64)
    samples2 = jnp.asarray(samples2, dtype=jnp.float64)
    if samples1.ndim != 2 or samples2.ndim != 2 or samples1.shape[1] != samples2.shape[1]:
        raise ValueError(f"Sample sets must be (n, dim) with equal dim, got {samples1.shape} and {samples2.shape}")

    n_quantiles = min(samples1.shape[0], samples2.shape[0])
    levels = jnp.linspace(0.0, 1.0, n_quantiles)
    dim = samples1.shape[1]

    n_batches = (n_projections + projection_batch_size - 1) // projection_batch_size
    w2_distances = []
    for batch_idx in range(n_batches):
        batch_size = min(projection_batch_size, n_projections - batch_idx * projection_batch_size)

        # Random unit vectors for this batch
        directions = random.normal(random.fold_in(key, batch_idx), (batch_size, dim), dtype=jnp.float64)
        directions = directions / jnp.linalg.norm(directions, axis=1, keepdims=True)

        # Quantile matching handles unequal sample sizes
        q1 = jnp.quantile(samples1 @ directions.T, levels, axis=0)
        q2 = jnp.quantile(samples2 @ directions.T, levels, axis=0)
        w2_distances.append(jnp.sqrt(jnp.mean((q1 - q2) ** 2, axis=0)))

    return float(jnp.mean(jnp.concatenate(w2_distances)))


def compute_sliced_w2(
    samples,
    target: TargetDistribution,
    n_reference: int = 50000,
    n_projections: int = 500,
    projection_batch_size: int = 100,
    key: Optional[jnp.ndarray] = None,
) -> Optional[float]:
    """
    Compute Sliced W2 between MCMC samples and exact draws of the target.

    Args:
        samples: Constrained MCMC samples, shape (n_chains, n_samples, dim) or (n_samples, dim)
        target: Target with a reference sampler
        n_reference: Number of reference samples to generate
        n_projections: Number of projections for Sliced W2
        projection_batch_size: Number of projections per batch (adjust for memory)
        key: JAX random key

    Returns:
        Sliced W2 distance, or None if the target has no reference sampler
    """
    if target.reference_sampler is None:
        return None
    if key is None:
        key = random.PRNGKey(123)

    flat_samples = jnp.asarray(samples, dtype=jnp.float64).reshape(-1, target.dim)
    n_samples = flat_samples.shape[0]

    key, subkey = random.split(key)
    reference_samples = target.reference_sampler(subkey, n_reference)

    # Subsample MCMC samples if larger than reference
    if n_samples > n_reference:
        key, subkey = random.split(key)
        idx = random.choice(subkey, n_samples, (n_reference,), replace=False)
        flat_samples = flat_samples[idx]

    key, subkey = random.split(key)
    return sliced_wasserstein_distance(
        flat_samples,
        reference_samples,
        n_projections=n_projections,
        projection_batch_size=projection_batch_size,
        key=subkey,
    )


def moment_errors(samples, target: TargetDistribution, ess=None) -> Dict[str, np.ndarray]:
    """
    Errors of the sample mean and variance against the target's true moments.

    Args:
        samples: Constrained MCMC samples, shape (n_chains, n_samples, dim) or (n_samples, dim)
        target: Target with ``true_mean`` (and optionally ``true_cov``)
        ess: Optional effective sample size per coordinate. When given, the
            mean error is also reported as a z-score using the Monte Carlo
            standard error sd / sqrt(ess).

    Returns:
        Dict with 'mean_error', 'abs_mean_error', 'var_rel_error' and 'z_score'
        (the last two are NaN where the true moment or ESS is unavailable).
    """
    if target.true_mean is None:
        raise ValueError(f"Target {target.name} has no known mean")
    flat = np.asarray(samples, dtype=np.float64).reshape(-1, target.dim)
    true_mean = np.asarray(target.true_mean, dtype=np.float64)

    mean = flat.mean(axis=0)
    sd = flat.std(axis=0, ddof=1)
    mean_error = mean - true_mean

    if target.true_cov is not None:
        true_var = np.diag(np.asarray(target.true_cov, dtype=np.float64))
        var_rel_error = (sd**2 - true_var) / true_var
    else:
        var_rel_error = np.full(target.dim, np.nan)

    if ess is not None:
        mcse = sd / np.sqrt(np.asarray(ess, dtype=np.float64))
        z_score = mean_error / mcse
    else:
        z_score = np.full(target.dim, np.nan)

    return {
        'mean_error': mean_error,
        'abs_mean_error': np.abs(mean_error),
        'var_rel_error': var_rel_error,
        'z_score': z_score,
    }
