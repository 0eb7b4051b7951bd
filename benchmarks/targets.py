"""
Target posteriors for validating the sampler.

This module provides a collection of models with varying challenges. The
conjugate models (Beta-Bernoulli and the globe-tossing Beta-Binomial) have a
closed-form posterior and serve as correctness oracles; the Gaussian targets
and Neal's funnel stress step-size and mass-matrix adaptation.

Each target distribution provides:
- log_density: Function computing the unnormalized log p(x) over constrained x
- dim: Dimensionality
- true_mean: Known posterior mean (None if not tractable)
- true_cov: Known posterior covariance (None if not tractable)
- name: Descriptive name
- description: What the target tests
- transform: Constraint transform for the parameters (None for R^D)
- param_names: One name per coordinate
- init_sampler: Optional (key, n_chains) -> constrained initial positions
- reference_sampler: Optional (key, n) -> exact posterior draws
"""

from typing import Callable, List, NamedTuple, Optional, Sequence

import numpy as np
import jax.numpy as jnp
import jax.random as random
from jax.scipy.special import xlogy, xlog1py
from jax.scipy.stats import beta as jax_beta
from scipy import special, stats

from samplers.transforms import (
    IdentityTransform,
    IntervalTransform,
    LowerBoundTransform,
    StackedTransform,
    Transform,
)


class TargetDistribution(NamedTuple):
    """Container for target distribution specification."""
    log_density: Callable[[jnp.ndarray], jnp.ndarray]
    dim: int
    true_mean: Optional[np.ndarray]
    true_cov: Optional[np.ndarray]
    name: str
    description: str
    transform: Optional[Transform] = None
    param_names: Optional[List[str]] = None
    init_sampler: Optional[Callable] = None       # (key, n_chains) -> positions
    reference_sampler: Optional[Callable] = None  # (key, n) -> exact draws


# ============================================================================
# Data simulation
# ============================================================================

def simulate_globe(rng: np.random.Generator, n_tosses: int, p: float) -> int:
    """Toss a globe ``n_tosses`` times and count how often it lands on water.

    Each toss is water with probability ``p``, land otherwise.
    """
    outcomes = rng.choice(["W", "L"], size=n_tosses, p=[p, 1.0 - p])
    return int(np.sum(outcomes == "W"))


def simulate_bernoulli(rng: np.random.Generator, n_trials: int, p: float) -> np.ndarray:
    """Draw ``n_trials`` independent 0/1 outcomes with success probability ``p``."""
    return (rng.random(n_trials) < p).astype(np.int64)


def posterior_predictive(rng: np.random.Generator, p_draws, n_tosses: int) -> np.ndarray:
    """Simulate one globe experiment per posterior (or prior) draw of p."""
    p_draws = np.asarray(p_draws, dtype=np.float64).reshape(-1)
    return rng.binomial(n_tosses, p_draws)


# ============================================================================
# Closed-form oracles
# ============================================================================

def conjugate_beta_posterior(alpha: float, beta: float, successes: int, trials: int):
    """Exact posterior Beta(alpha + y, beta + n - y) of a Beta prior with binomial data.

    Returns:
        Frozen ``scipy.stats.beta`` distribution.
    """
    if successes < 0 or successes > trials:
        raise ValueError(f"successes must lie in [0, {trials}], got {successes}")
    return stats.beta(alpha + successes, beta + trials - successes)


def grid_posterior(
    alpha: float,
    beta: float,
    successes: int,
    trials: int,
    grid_size: int = 1001,
):
    """Grid approximation of the Beta-Binomial posterior over [0, 1].

    Returns:
        Tuple of (grid, probabilities) with probabilities summing to one.
    """
    grid = np.linspace(0.0, 1.0, grid_size)
    joint = stats.beta.pdf(grid, alpha, beta) * stats.binom.pmf(successes, trials, grid)
    return grid, joint / np.sum(joint)


# ============================================================================
# Target Distribution Factories
# ============================================================================

def standard_normal(dim: int = 10) -> TargetDistribution:
    """
    Standard normal distribution N(0, I) in dim dimensions.

    Tests: Basic sampler correctness, well-conditioned target.
    """
    def log_density(x):
        return -0.5 * (jnp.sum(x**2) + dim * jnp.log(2.0 * jnp.pi))

    def reference_sampler(key, n):
        return random.normal(key, (n, dim), dtype=jnp.float64)

    return TargetDistribution(
        log_density=log_density,
        dim=dim,
        true_mean=np.zeros(dim),
        true_cov=np.eye(dim),
        name=f"StandardNormal{dim}D",
        description=f"{dim}D standard normal N(0, I) - tests basic correctness",
        param_names=[f"x[{i}]" for i in range(dim)],
        reference_sampler=reference_sampler,
    )


def correlated_gaussian(dim: int = 10, correlation: float = 0.9) -> TargetDistribution:
    """
    Gaussian with compound symmetry covariance: Σ_ij = ρ if i≠j, 1 if i=j.

    Tests: High correlation between variables, which a diagonal mass matrix
    cannot remove.

    Args:
        dim: Dimensionality of the distribution.
        correlation: Off-diagonal correlation coefficient (0 < ρ < 1).
    """
    lower = -1.0 / (dim - 1) if dim > 1 else -1.0
    if not lower < correlation < 1.0:
        raise ValueError(f"correlation {correlation} gives a singular covariance in {dim}D")
    cov = (1.0 - correlation) * np.eye(dim) + correlation * np.ones((dim, dim))
    chol = jnp.asarray(np.linalg.cholesky(cov))

    # Σ^{-1} = (1/(1-ρ)) I - (ρ/((1-ρ)(1+(dim-1)ρ))) J
    a = 1.0 / (1.0 - correlation)
    b = -correlation / ((1.0 - correlation) * (1.0 + (dim - 1) * correlation))
    cov_inv = jnp.asarray(a * np.eye(dim) + b * np.ones((dim, dim)))
    log_det_cov = (dim - 1) * np.log(1.0 - correlation) + np.log(1.0 + (dim - 1) * correlation)

    def log_density(x):
        return -0.5 * (x @ cov_inv @ x + log_det_cov + dim * jnp.log(2.0 * jnp.pi))

    def reference_sampler(key, n):
        return random.normal(key, (n, dim), dtype=jnp.float64) @ chol.T

    return TargetDistribution(
        log_density=log_density,
        dim=dim,
        true_mean=np.zeros(dim),
        true_cov=cov,
        name=f"CorrelatedGaussian{dim}D_rho{correlation}",
        description=f"{dim}D Gaussian with correlation rho={correlation} - tests handling of correlation",
        param_names=[f"x[{i}]" for i in range(dim)],
        reference_sampler=reference_sampler,
    )


def neals_funnel(dim: int = 10) -> TargetDistribution:
    """
    Neal's funnel distribution: challenging hierarchical model.

    Structure:
        x[0] ~ N(0, 3)           # "neck" variable
        x[i] ~ N(0, exp(x[0]))   for i > 0  (variance exp(x[0]))

    Tests: Varying curvature. The neck is narrow enough that a single step
    size produces divergent transitions.
    """
    d_rest = dim - 1

    def log_density(x):
        x0 = x[0]
        log_p_x0 = -0.5 * (x0**2 / 9.0 + jnp.log(2.0 * jnp.pi * 9.0))
        log_p_rest = -0.5 * (jnp.sum(x[1:]**2) / jnp.exp(x0) + d_rest * x0 + d_rest * jnp.log(2.0 * jnp.pi))
        return log_p_x0 + log_p_rest

    def init_sampler(key, n_chains):
        """Start in the mouth of the funnel, away from the neck."""
        key1, key2 = random.split(key)
        x0 = random.uniform(key1, (n_chains, 1), dtype=jnp.float64, minval=-1.0, maxval=1.0)
        x_rest = random.normal(key2, (n_chains, d_rest), dtype=jnp.float64)
        return jnp.concatenate([x0, x_rest], axis=1)

    def reference_sampler(key, n):
        key1, key2 = random.split(key)
        x0 = 3.0 * random.normal(key1, (n, 1), dtype=jnp.float64)
        x_rest = random.normal(key2, (n, d_rest), dtype=jnp.float64) * jnp.exp(x0 / 2.0)
        return jnp.concatenate([x0, x_rest], axis=1)

    # Var[x_i] = E[exp(x0)] = exp(Var[x0] / 2) = exp(4.5) for i > 0
    true_cov = np.diag(np.concatenate([[9.0], np.full(d_rest, np.exp(4.5))]))

    return TargetDistribution(
        log_density=log_density,
        dim=dim,
        true_mean=np.zeros(dim),
        true_cov=true_cov,
        name=f"NealsFunnel{dim}D",
        description=f"{dim}D Neal's funnel - tests varying curvature and divergences",
        param_names=["log_scale"] + [f"x[{i}]" for i in range(1, dim)],
        init_sampler=init_sampler,
        reference_sampler=reference_sampler,
    )


def _beta_target(alpha, beta, successes, trials, log_likelihood, name, description):
    posterior = conjugate_beta_posterior(alpha, beta, successes, trials)
    post_a, post_b = posterior.args

    def log_density(x):
        p = x[0]
        return jax_beta.logpdf(p, alpha, beta) + log_likelihood(p)

    def init_sampler(key, n_chains):
        return random.uniform(key, (n_chains, 1), dtype=jnp.float64, minval=0.05, maxval=0.95)

    def reference_sampler(key, n):
        return random.beta(key, post_a, post_b, (n, 1), dtype=jnp.float64)

    return TargetDistribution(
        log_density=log_density,
        dim=1,
        true_mean=np.array([posterior.mean()]),
        true_cov=np.array([[posterior.var()]]),
        name=name,
        description=description,
        transform=IntervalTransform(0.0, 1.0),
        param_names=["p"],
        init_sampler=init_sampler,
        reference_sampler=reference_sampler,
    )


def beta_bernoulli(
    alpha: float = 2.0,
    beta: float = 2.0,
    data: Optional[Sequence[int]] = None,
    n_trials: int = 50,
    p_true: float = 0.7,
    seed: int = 0,
) -> TargetDistribution:
    """
    Success probability of Bernoulli trials under a Beta(alpha, beta) prior.

    Posterior: Beta(alpha + y, beta + n - y) with y successes in n trials.

    Tests: Interval constraint through the logit transform, conjugate correctness.

    Args:
        alpha, beta: Prior parameters
        data: Observed 0/1 outcomes. If None, ``n_trials`` outcomes are
            simulated with success probability ``p_true`` from ``seed``.
    """
    if data is None:
        data = simulate_bernoulli(np.random.default_rng(seed), n_trials, p_true)
    data = np.asarray(data, dtype=np.int64)
    if data.ndim != 1 or not np.all((data == 0) | (data == 1)):
        raise ValueError("data must be a 1-D sequence of 0/1 outcomes")
    y = int(data.sum())
    n = int(data.size)

    def log_likelihood(p):
        # Float counts: the JVP of xlogy cannot take integer arguments
        return xlogy(float(y), p) + xlog1py(float(n - y), -p)

    return _beta_target(
        alpha, beta, y, n, log_likelihood,
        name=f"BetaBernoulli_a{alpha}_b{beta}_y{y}_n{n}",
        description=f"Beta({alpha}, {beta}) prior with {y}/{n} Bernoulli successes - conjugate oracle",
    )


def globe_tossing(
    n_tosses: int = 100,
    p_true: float = 0.7,
    water: Optional[int] = None,
    alpha: float = 3.0,
    beta: float = 2.0,
    seed: int = 0,
) -> TargetDistribution:
    """
    Proportion of water on a globe from ``water`` successes in ``n_tosses`` tosses.

    Structure:
        p ~ Beta(alpha, beta)
        W ~ Binomial(n_tosses, p)

    Tests: The Beta-Binomial scenario with a known posterior
    Beta(alpha + W, beta + N - W).

    Args:
        n_tosses: Number of tosses N
        p_true: Water proportion used to simulate W when ``water`` is None
        water: Observed number of water outcomes
        alpha, beta: Prior parameters
        seed: Seed of the simulated experiment
    """
    if water is None:
        water = simulate_globe(np.random.default_rng(seed), n_tosses, p_true)
    water = int(water)
    log_binom_coef = float(special.gammaln(n_tosses + 1.0) - special.gammaln(water + 1.0)
                         - special.gammaln(n_tosses - water + 1.0))

    def log_likelihood(p):
        return log_binom_coef + xlogy(float(water), p) + xlog1py(float(n_tosses - water), -p)

    return _beta_target(
        alpha, beta, water, n_tosses, log_likelihood,
        name=f"GlobeTossing_W{water}_N{n_tosses}",
        description=f"Beta({alpha}, {beta}) prior, {water} water in {n_tosses} tosses - Beta-Binomial oracle",
    )


def normal_unknown_scale(
    data: Optional[Sequence[float]] = None,
    n_obs: int = 50,
    mu_true: float = 1.0,
    sigma_true: float = 2.0,
    prior_scale: float = 10.0,
    seed: int = 0,
) -> TargetDistribution:
    """
    Mean and standard deviation of normal observations.

    Structure:
        mu ~ N(0, prior_scale)
        sigma ~ HalfNormal(prior_scale)
        y_i ~ N(mu, sigma)

    Tests: Mixed unconstrained/positive parameters through StackedTransform.
    """
    if data is None:
        data = np.random.default_rng(seed).normal(mu_true, sigma_true, n_obs)
    y = jnp.asarray(np.asarray(data, dtype=np.float64))
    n = y.shape[0]

    def log_density(x):
        mu, sigma = x[0], x[1]
        log_prior = -0.5 * (mu / prior_scale) ** 2 - 0.5 * (sigma / prior_scale) ** 2
        log_lik = -n * jnp.log(sigma) - 0.5 * jnp.sum((y - mu) ** 2) / sigma**2
        return log_prior + log_lik

    def init_sampler(key, n_chains):
        key1, key2 = random.split(key)
        mu = jnp.mean(y) + random.normal(key1, (n_chains, 1), dtype=jnp.float64)
        sigma = jnp.std(y) * jnp.exp(0.5 * random.normal(key2, (n_chains, 1), dtype=jnp.float64))
        return jnp.concatenate([mu, sigma], axis=1)

    return TargetDistribution(
        log_density=log_density,
        dim=2,
        true_mean=None,
        true_cov=None,
        name=f"NormalUnknownScale_n{n}",
        description="Normal observations with unknown mean and scale - tests positive constraints",
        transform=StackedTransform([IdentityTransform(), LowerBoundTransform(0.0)]),
        param_names=["mu", "sigma"],
        init_sampler=init_sampler,
    )


# ============================================================================
# Convenience Functions
# ============================================================================

TARGETS = {
    'standard_normal': standard_normal,
    'correlated_gaussian': correlated_gaussian,
    'neals_funnel': neals_funnel,
    'beta_bernoulli': beta_bernoulli,
    'globe_tossing': globe_tossing,
    'normal_unknown_scale': normal_unknown_scale,
}

# Targets whose factory takes a `dim` argument
FREE_DIM_TARGETS = ('standard_normal', 'correlated_gaussian', 'neals_funnel')


def get_target(name: str, dim: Optional[int] = None, **kwargs) -> TargetDistribution:
    """
    Get a target distribution by name.

    Args:
        name: One of the keys of ``TARGETS``
        dim: Dimensionality, for targets whose dimension is free
        **kwargs: Additional arguments passed to the target factory.

    Returns:
        TargetDistribution object.

    Raises:
        ValueError: If the name is unknown, or ``dim`` is given for a target
            of fixed dimension.
    """
    if name not in TARGETS:
        raise ValueError(f"Unknown target '{name}'. Available: {list(TARGETS.keys())}")
    if dim is not None:
        if name not in FREE_DIM_TARGETS:
            raise ValueError(
                f"Target '{name}' has a fixed dimension; dim applies to {list(FREE_DIM_TARGETS)}"
            )
        kwargs['dim'] = dim
    return TARGETS[name](**kwargs)


def get_reference_sampler(name: str, dim: Optional[int] = None, **kwargs) -> Optional[Callable]:
    """Exact sampler (key, n) -> draws for a named target, or None."""
    return get_target(name, dim, **kwargs).reference_sampler


def has_reference_sampler(name: str) -> bool:
    return get_reference_sampler(name) is not None


def list_targets() -> List[str]:
    """Print available target distributions with descriptions."""
    print("Available Target Distributions:")
    print("=" * 80)
    for key, factory in TARGETS.items():
        target = factory()
        print(f"\n{key}: {target.name}")
        print(f"  {target.description}")
        print(f"  Dimension: {target.dim}")
        print(f"  True mean: {'Available' if target.true_mean is not None else 'Not tractable'}")
        print(f"  Constrained: {'Yes' if target.transform is not None else 'No'}")
        print(f"  Custom init: {'Yes' if target.init_sampler is not None else 'No'}")
    return list(TARGETS.keys())
