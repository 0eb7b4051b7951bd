"""Convergence diagnostics for pooled multi-chain output.

Split R-hat and effective sample size are computed with ArviZ on an
``InferenceData`` built from the draws. ``method="split"`` gives the classic
split-R-hat (each chain halved, between- vs. within-chain variance);
``method="mean"`` gives the autocorrelation-based ESS truncated with Geyer's
initial positive sequence over split chains.
"""
from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np
import arviz as az


class Diagnostics(NamedTuple):
    """Diagnostics of one run.

    Attributes:
        param_names: Coordinate names
        rhat: Split R-hat per parameter
        ess: Effective sample size per parameter (autocorrelation based)
        ess_bulk: Rank-normalized bulk ESS per parameter
        divergences_per_chain: Number of divergent iterations per chain
        total_divergences: Divergent iterations over all chains
        divergence_rate: total_divergences / total iterations
        max_depth_hits: Iterations per chain that reached max_tree_depth
        ebfmi: Energy Bayesian fraction of missing information per chain
        num_chains: Number of chains
        num_samples: Draws per chain
    """
    param_names: List[str]
    rhat: np.ndarray
    ess: np.ndarray
    ess_bulk: np.ndarray
    divergences_per_chain: np.ndarray
    total_divergences: int
    divergence_rate: float
    max_depth_hits: np.ndarray
    ebfmi: np.ndarray
    num_chains: int
    num_samples: int

    @property
    def rhat_max(self) -> float:
        return float(np.max(self.rhat))

    @property
    def ess_min(self) -> float:
        return float(np.min(self.ess))

    def to_dict(self) -> Dict:
        return {
            "param_names": list(self.param_names),
            "rhat": self.rhat.tolist(),
            "ess": self.ess.tolist(),
            "ess_bulk": self.ess_bulk.tolist(),
            "divergences_per_chain": self.divergences_per_chain.tolist(),
            "total_divergences": int(self.total_divergences),
            "divergence_rate": float(self.divergence_rate),
            "max_depth_hits": self.max_depth_hits.tolist(),
            "ebfmi": self.ebfmi.tolist(),
            "num_chains": int(self.num_chains),
            "num_samples": int(self.num_samples),
        }


def _check_draws(draws) -> np.ndarray:
    draws = np.asarray(draws, dtype=np.float64)
    if draws.ndim == 2:
        draws = draws[:, :, None]
    if draws.ndim != 3:
        raise ValueError("Draws must have shape (n_chains, n_samples) or (n_chains, n_samples, n_dim).")
    return draws


def to_inference_data(
    draws,
    param_names: Optional[Sequence[str]] = None,
    sample_stats: Optional[Dict[str, np.ndarray]] = None,
) -> az.InferenceData:
    """Wrap draws of shape (n_chains, n_samples, n_dim) as ArviZ InferenceData.

    All coordinates live in one variable ``x`` with dimension ``param``.
    """
    draws = _check_draws(draws)
    n_dim = draws.shape[-1]
    if param_names is None:
        param_names = [f"x[{i}]" for i in range(n_dim)]
    return az.from_dict(
        posterior={"x": draws},
        sample_stats=sample_stats,
        coords={"param": list(param_names)},
        dims={"x": ["param"]},
    )


def split_rhat(draws) -> np.ndarray:
    """Split R-hat per parameter for draws of shape (n_chains, n_samples[, n_dim])."""
    idata = to_inference_data(draws)
    return np.asarray(az.rhat(idata, var_names=["x"], method="split")["x"].values)


def effective_sample_size(draws, method: str = "mean") -> np.ndarray:
    """ESS per parameter for draws of shape (n_chains, n_samples[, n_dim])."""
    idata = to_inference_data(draws)
    return np.asarray(az.ess(idata, var_names=["x"], method=method)["x"].values)


def compute_diagnostics(
    draws,
    divergent=None,
    tree_depth=None,
    energy=None,
    max_tree_depth: int = 10,
    param_names: Optional[Sequence[str]] = None,
) -> Diagnostics:
    """Compute convergence diagnostics and divergence counts.

    Args:
        draws: Array of shape (n_chains, n_samples, n_dim)
        divergent: Optional divergence flags, shape (n_chains, n_samples)
        tree_depth: Optional tree depths, shape (n_chains, n_samples)
        energy: Optional Hamiltonian of each draw, shape (n_chains, n_samples)
        max_tree_depth: Depth counted as saturated
        param_names: Optional coordinate names

    Returns:
        Diagnostics
    """
    draws = _check_draws(draws)
    n_chains, n_samples, n_dim = draws.shape
    if param_names is None:
        param_names = [f"x[{i}]" for i in range(n_dim)]

    sample_stats = {}
    if divergent is not None:
        divergent = np.asarray(divergent, dtype=bool).reshape(n_chains, n_samples)
        sample_stats["diverging"] = divergent
    else:
        divergent = np.zeros((n_chains, n_samples), dtype=bool)
    if energy is not None:
        sample_stats["energy"] = np.asarray(energy, dtype=np.float64).reshape(n_chains, n_samples)
    if tree_depth is not None:
        tree_depth = np.asarray(tree_depth).reshape(n_chains, n_samples)
        sample_stats["tree_depth"] = tree_depth

    idata = to_inference_data(draws, param_names, sample_stats or None)

    rhat = np.asarray(az.rhat(idata, var_names=["x"], method="split")["x"].values)
    ess = np.asarray(az.ess(idata, var_names=["x"], method="mean")["x"].values)
    ess_bulk = np.asarray(az.ess(idata, var_names=["x"], method="bulk")["x"].values)

    if "energy" in sample_stats and n_samples > 1:
        ebfmi = np.asarray(az.bfmi(idata))
    else:
        ebfmi = np.full(n_chains, np.nan)

    divergences_per_chain = divergent.sum(axis=1).astype(np.int64)
    total_divergences = int(divergences_per_chain.sum())
    if tree_depth is not None:
        max_depth_hits = (tree_depth >= max_tree_depth).sum(axis=1).astype(np.int64)
    else:
        max_depth_hits = np.zeros(n_chains, dtype=np.int64)

    return Diagnostics(
        param_names=list(param_names),
        rhat=rhat,
        ess=ess,
        ess_bulk=ess_bulk,
        divergences_per_chain=divergences_per_chain,
        total_divergences=total_divergences,
        divergence_rate=total_divergences / float(n_chains * n_samples),
        max_depth_hits=max_depth_hits,
        ebfmi=ebfmi,
        num_chains=n_chains,
        num_samples=n_samples,
    )


def diagnose_chains(
    chains,
    max_tree_depth: int = 10,
    param_names: Optional[Sequence[str]] = None,
    draws=None,
) -> Diagnostics:
    """Diagnostics for completed Chain records.

    ``draws`` overrides the unconstrained draws stored on the chains, e.g. with
    their constrained values.
    """
    if not chains:
        raise ValueError("At least one chain is required.")
    if draws is None:
        draws = np.stack([chain.draws for chain in chains])
    stats = [chain.tree_statistics for chain in chains]
    return compute_diagnostics(
        draws,
        divergent=np.stack([s.divergent for s in stats]),
        tree_depth=np.stack([s.tree_depth for s in stats]),
        energy=np.stack([s.energy for s in stats]),
        max_tree_depth=max_tree_depth,
        param_names=param_names,
    )


def is_converged(diagnostics: Diagnostics, rhat_threshold: float = 1.01, min_ess: Optional[float] = None) -> bool:
    """True if every split R-hat is below the threshold (and ESS above ``min_ess``)."""
    if not np.all(diagnostics.rhat < rhat_threshold):
        return False
    if min_ess is not None and not np.all(diagnostics.ess >= min_ess):
        return False
    return True
