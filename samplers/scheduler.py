"""Run several independent NUTS chains on a bounded worker pool."""
from __future__ import annotations

import logging
import os
import warnings
from contextlib import contextmanager
from multiprocessing.pool import ThreadPool
from typing import Any, List, NamedTuple, Optional, Sequence

import numpy as np
import jax.numpy as jnp
from jax import random

from analysis.diagnostics import Diagnostics, diagnose_chains
from samplers.chain import Chain, run_chain
from samplers.config import SamplerConfig
from samplers.density import DensityProvider, as_density_provider
from samplers.errors import AllChainsFailed, ChainFatal, DivergenceWarning
from samplers.transforms import Transform

logger = logging.getLogger(__name__)


class ChainFailure(NamedTuple):
    """A chain that aborted with ChainFatal."""
    chain_index: int
    reason: str


class PooledPosterior:
    """Read-only draws of all successful chains.

    Attributes:
        draws: Unconstrained draws, shape (n_chains, num_samples, n_dim)
        constrained: Draws mapped through the transform, same shape
        chain_indices: Run index of each stored chain
        param_names: One name per coordinate
    """

    def __init__(self, chains: Sequence[Chain], density: DensityProvider, param_names: Optional[Sequence[str]] = None):
        draws = np.stack([chain.draws for chain in chains])
        constrained = density.constrain_draws(draws)
        draws.setflags(write=False)
        constrained.setflags(write=False)
        self.draws = draws
        self.constrained = constrained
        self.chain_indices = tuple(chain.chain_index for chain in chains)
        if param_names is None:
            param_names = [f"x[{i}]" for i in range(density.dim)]
        if len(param_names) != density.dim:
            raise ValueError(f"Expected {density.dim} parameter names, got {len(param_names)}.")
        self.param_names = list(param_names)

    @property
    def num_chains(self) -> int:
        return self.draws.shape[0]

    @property
    def num_samples(self) -> int:
        return self.draws.shape[1]

    def flat(self, constrained: bool = True) -> np.ndarray:
        """All draws concatenated across chains, shape (n_chains * num_samples, n_dim)."""
        values = self.constrained if constrained else self.draws
        return values.reshape(-1, values.shape[-1])

    def mean(self, constrained: bool = True) -> np.ndarray:
        return self.flat(constrained).mean(axis=0)

    def std(self, constrained: bool = True) -> np.ndarray:
        return self.flat(constrained).std(axis=0, ddof=1)

    def __repr__(self):
        return (f"PooledPosterior(num_chains={self.num_chains}, num_samples={self.num_samples}, "
                f"params={self.param_names})")


class SamplingResult(NamedTuple):
    """Everything a run produces.

    Attributes:
        chains: Completed chains, ordered by chain index
        failures: Chains that aborted, with reasons
        posterior: Pooled draws of the completed chains
        diagnostics: Convergence diagnostics of the completed chains
        config: Configuration of the run
    """
    chains: List[Chain]
    failures: List[ChainFailure]
    posterior: PooledPosterior
    diagnostics: Diagnostics
    config: SamplerConfig

    @property
    def num_failed(self) -> int:
        return len(self.failures)


def chain_keys(seed: int, num_chains: int) -> List[jnp.ndarray]:
    """Independent per-chain keys derived from (seed, chain_index)."""
    master_key = random.PRNGKey(seed)
    return [random.fold_in(master_key, chain_index) for chain_index in range(num_chains)]


@contextmanager
def _pool_context_manager(n_workers: int):
    """Thread pool that is closed and joined, not terminated, on exit."""
    pool = ThreadPool(n_workers)
    try:
        yield pool
    finally:
        pool.close()
        pool.join()


def _run_chain_worker(args):
    density, config, key, chain_index, init_position = args
    try:
        return run_chain(density, config, key, chain_index, init_position), None
    except ChainFatal as e:
        logger.error("Chain %d aborted: %s", chain_index, e.reason)
        return None, ChainFailure(chain_index, e.reason)


def _prepare_init_positions(density: DensityProvider, init_positions, num_chains: int) -> list:
    if init_positions is None:
        return [None] * num_chains
    init_positions = np.asarray(init_positions, dtype=np.float64)
    if init_positions.shape != (num_chains, density.dim):
        raise ValueError(
            f"init_positions must have shape ({num_chains}, {density.dim}), got {init_positions.shape}."
        )
    return [density.unconstrain(x) for x in init_positions]


def sample_posterior(
    target: Any,
    config: Optional[SamplerConfig] = None,
    dim: Optional[int] = None,
    transform: Optional[Transform] = None,
    init_positions=None,
    param_names: Optional[Sequence[str]] = None,
) -> SamplingResult:
    """Draw from a posterior with several independent NUTS chains.

    Chains run on a pool of ``config.num_workers`` threads (or one after the
    other with ``chain_method='sequential'``), each with its own key derived
    from ``config.seed`` and its index. The call returns once every chain has
    completed or failed.

    Args:
        target: DensityProvider, object with ``log_density(params)`` or callable
        config: Run configuration; defaults to ``SamplerConfig()``
        dim: Parameter dimension if the target does not define ``dim``
        transform: Constraint transform if the target does not define one
        init_positions: Optional constrained starting points, shape (num_chains, dim)
        param_names: Optional names of the coordinates

    Returns:
        SamplingResult with completed chains, failures and diagnostics.

    Raises:
        AllChainsFailed: If no chain completed.
    """
    if config is None:
        config = SamplerConfig()
    density = as_density_provider(target, dim, transform)
    if param_names is None:
        param_names = getattr(target, "param_names", None)
    inits = _prepare_init_positions(density, init_positions, config.num_chains)
    keys = chain_keys(config.seed, config.num_chains)
    jobs = [(density, config, keys[i], i, inits[i]) for i in range(config.num_chains)]

    if config.chain_method == "sequential" or config.num_chains == 1:
        outputs = [_run_chain_worker(job) for job in jobs]
    else:
        n_workers = config.num_workers or min(config.num_chains, os.cpu_count() or 1)
        logger.info("Running %d chains on %d workers", config.num_chains, n_workers)
        with _pool_context_manager(n_workers) as pool:
            outputs = pool.map(_run_chain_worker, jobs)

    chains = [chain for chain, _ in outputs if chain is not None]
    failures = [failure for _, failure in outputs if failure is not None]
    if not chains:
        raise AllChainsFailed(failures)
    if failures:
        logger.warning("%d of %d chains failed", len(failures), config.num_chains)

    posterior = PooledPosterior(chains, density, param_names)
    diagnostics = diagnose_chains(
        chains, config.max_tree_depth, param_names=posterior.param_names, draws=posterior.constrained
    )
    if diagnostics.total_divergences > 0:
        warnings.warn(
            f"{diagnostics.total_divergences} divergent transitions after warmup "
            f"(rate {diagnostics.divergence_rate:.3%}).",
            DivergenceWarning,
            stacklevel=2,
        )
    return SamplingResult(
        chains=chains,
        failures=failures,
        posterior=posterior,
        diagnostics=diagnostics,
        config=config,
    )
