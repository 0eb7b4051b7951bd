"""Single-chain driver: initialization, warmup and sampling with NUTS."""
from __future__ import annotations

import logging
import time
from typing import List, NamedTuple, Optional

import numpy as np
import jax
import jax.numpy as jnp
from jax import random

from samplers.NUTS import NUTSInfo, NUTSState, nuts_step
from samplers.config import SamplerConfig
from samplers.density import DensityProvider
from samplers.errors import ChainFatal, NonFiniteDensity
from tuning.adaptation import run_adaptive_warmup

logger = logging.getLogger(__name__)

# Type aliases
Array = jnp.ndarray


class TreeStatistics(NamedTuple):
    """Per-iteration NUTS statistics, one entry per draw.

    Attributes:
        tree_depth: Number of doublings, int
        accept_prob: Mean acceptance probability over the trajectory
        divergent: Divergence flag
        energy: Hamiltonian of the selected state
        num_steps: Leapfrog steps taken
        nonfinite: A non-finite density was met along the trajectory
    """
    tree_depth: np.ndarray
    accept_prob: np.ndarray
    divergent: np.ndarray
    energy: np.ndarray
    num_steps: np.ndarray
    nonfinite: np.ndarray

    @classmethod
    def from_infos(cls, infos: List[NUTSInfo]) -> "TreeStatistics":
        if not infos:
            return cls.empty()
        return cls(
            tree_depth=np.array([i.tree_depth for i in infos], dtype=np.int32),
            accept_prob=np.array([i.accept_prob for i in infos], dtype=np.float64),
            divergent=np.array([i.divergent for i in infos], dtype=bool),
            energy=np.array([i.energy for i in infos], dtype=np.float64),
            num_steps=np.array([i.num_steps for i in infos], dtype=np.int32),
            nonfinite=np.array([i.nonfinite for i in infos], dtype=bool),
        )

    @classmethod
    def empty(cls) -> "TreeStatistics":
        return cls(
            tree_depth=np.zeros(0, dtype=np.int32),
            accept_prob=np.zeros(0, dtype=np.float64),
            divergent=np.zeros(0, dtype=bool),
            energy=np.zeros(0, dtype=np.float64),
            num_steps=np.zeros(0, dtype=np.int32),
            nonfinite=np.zeros(0, dtype=bool),
        )

    def __len__(self):
        return len(self.tree_depth)


class Chain(NamedTuple):
    """Output of one completed chain.

    Attributes:
        chain_index: Position of the chain in the run
        draws: Unconstrained post-warmup draws, shape (num_samples, n_dim)
        log_density: Log posterior at each draw, shape (num_samples,)
        tree_statistics: Statistics of every post-warmup iteration
        step_size: Step size used during sampling
        inv_mass_matrix: Diagonal inverse mass matrix used during sampling
        degenerate_mass_matrix: True if warmup had to clamp a variance estimate
        warmup_statistics: Statistics of the warmup iterations
        elapsed_time: Wall-clock seconds for the whole chain
    """
    chain_index: int
    draws: np.ndarray
    log_density: np.ndarray
    tree_statistics: TreeStatistics
    step_size: float
    inv_mass_matrix: np.ndarray
    degenerate_mass_matrix: bool
    warmup_statistics: TreeStatistics
    elapsed_time: float

    @property
    def num_samples(self) -> int:
        return self.draws.shape[0]

    @property
    def num_divergent(self) -> int:
        return int(np.sum(self.tree_statistics.divergent))


class _NUTSTransition:
    """One NUTS iteration with host-side bookkeeping of failed trajectories.

    An iteration fails when the very first leapfrog step already meets a
    non-finite density, so the trajectory holds no state besides the start.
    Too many failures in a row abort the chain.
    """

    def __init__(self, density: DensityProvider, config: SamplerConfig, chain_index: int):
        self.density = density
        self.config = config
        self.chain_index = chain_index
        self.consecutive_failures = 0

    def __call__(self, state: NUTSState, key: Array, step_size: float, inv_mass_matrix: Array):
        state, info = nuts_step(
            state,
            key,
            self.density.value_and_grad,
            step_size,
            inv_mass_matrix,
            max_tree_depth=self.config.max_tree_depth,
            divergence_threshold=self.config.divergence_threshold,
        )
        info = jax.device_get(info)
        if bool(info.nonfinite) and int(info.num_steps) == 1:
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.config.max_nonfinite_retries:
                raise ChainFatal(
                    self.chain_index,
                    f"{self.consecutive_failures} consecutive iterations met a non-finite "
                    "density on their first leapfrog step",
                )
        else:
            self.consecutive_failures = 0
        return state, info


def initialize_chain(
    density: DensityProvider,
    key: Array,
    config: SamplerConfig,
    chain_index: int = 0,
    init_position: Optional[Array] = None,
) -> NUTSState:
    """Find a finite starting point in unconstrained space.

    Args:
        density: Log-density provider
        key: JAX random key for random initialization
        config: Run configuration (init_radius, max_init_attempts)
        chain_index: Only used in error messages
        init_position: Unconstrained starting point. If None, points are drawn
            uniformly in (-init_radius, init_radius) until one is finite.

    Returns:
        Initial NUTSState.

    Raises:
        ChainFatal: If no finite starting point is found.
    """
    if init_position is not None:
        position = jnp.asarray(init_position, dtype=jnp.float64)
        try:
            result = density.evaluate_with_gradient(position)
        except NonFiniteDensity as e:
            raise ChainFatal(chain_index, f"non-finite log density at the given initial position ({e})") from e
        return NUTSState(position, jnp.asarray(result.value, dtype=jnp.float64), jnp.asarray(result.gradient, dtype=jnp.float64))

    for attempt in range(config.max_init_attempts):
        key, subkey = random.split(key)
        position = random.uniform(
            subkey, (density.dim,), dtype=jnp.float64,
            minval=-config.init_radius, maxval=config.init_radius,
        )
        try:
            result = density.evaluate_with_gradient(position)
        except NonFiniteDensity:
            logger.debug("Chain %d: initialization attempt %d was non-finite", chain_index, attempt + 1)
            continue
        return NUTSState(position, jnp.asarray(result.value, dtype=jnp.float64), jnp.asarray(result.gradient, dtype=jnp.float64))

    raise ChainFatal(
        chain_index,
        f"no finite initial position found in {config.max_init_attempts} attempts",
    )


def run_chain(
    density: DensityProvider,
    config: SamplerConfig,
    key: Array,
    chain_index: int = 0,
    init_position: Optional[Array] = None,
) -> Chain:
    """Run one chain through warmup and sampling.

    Args:
        density: Log-density provider
        config: Run configuration
        key: This chain's private JAX random key
        chain_index: Position of the chain in the run
        init_position: Optional unconstrained starting point

    Returns:
        Completed Chain record.

    Raises:
        ChainFatal: If the chain cannot start or keeps failing to move.
    """
    start_time = time.time()
    init_key, warmup_key, sample_key = random.split(key, 3)

    state = initialize_chain(density, init_key, config, chain_index, init_position)
    transition = _NUTSTransition(density, config, chain_index)

    warmup = run_adaptive_warmup(
        warmup_key,
        state,
        transition,
        density.value_and_grad,
        num_warmup=config.num_warmup,
        target_accept=config.target_accept_prob,
        initial_step_size=config.step_size,
        adapt_step_size=config.adapt_step_size,
        adapt_mass_matrix=config.adapt_mass_matrix,
        min_variance=config.min_variance,
        chain_index=chain_index,
    )
    state = warmup.state
    step_size = warmup.step_size
    inv_mass_matrix = jnp.asarray(warmup.inv_mass_matrix)

    draws = np.empty((config.num_samples, density.dim), dtype=np.float64)
    log_density = np.empty(config.num_samples, dtype=np.float64)
    infos = []
    for i, step_key in enumerate(random.split(sample_key, config.num_samples)):
        state, info = transition(state, step_key, step_size, inv_mass_matrix)
        draws[i] = np.asarray(state.position)
        log_density[i] = float(state.log_prob)
        infos.append(info)

    chain = Chain(
        chain_index=chain_index,
        draws=draws,
        log_density=log_density,
        tree_statistics=TreeStatistics.from_infos(infos),
        step_size=float(step_size),
        inv_mass_matrix=np.asarray(inv_mass_matrix),
        degenerate_mass_matrix=warmup.degenerate,
        warmup_statistics=TreeStatistics.from_infos(warmup.infos),
        elapsed_time=time.time() - start_time,
    )
    logger.info(
        "Chain %d finished in %.2fs: step_size=%.4g, mean accept=%.3f, divergences=%d",
        chain_index, chain.elapsed_time, chain.step_size,
        float(np.mean(chain.tree_statistics.accept_prob)), chain.num_divergent,
    )
    if chain.num_divergent > 0:
        logger.warning(
            "Chain %d: %d of %d draws followed a divergent transition",
            chain_index, chain.num_divergent, chain.num_samples,
        )
    return chain
