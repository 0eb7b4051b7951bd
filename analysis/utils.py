"""Summary tables and JSON persistence of sampling results."""

import json
import os
from typing import Dict, Optional

import numpy as np
import pandas as pd
import arviz as az

from analysis.diagnostics import to_inference_data

RESULTS_FILE = "sampling_results.json"
SUMMARY_FILE = "summary.csv"


def _sample_stats(result) -> Dict[str, np.ndarray]:
    stats = [chain.tree_statistics for chain in result.chains]
    return {
        "diverging": np.stack([s.divergent for s in stats]),
        "energy": np.stack([s.energy for s in stats]),
        "tree_depth": np.stack([s.tree_depth for s in stats]),
        "acceptance_rate": np.stack([s.accept_prob for s in stats]),
        "n_steps": np.stack([s.num_steps for s in stats]),
    }


def inference_data(result, constrained: bool = True) -> az.InferenceData:
    """ArviZ InferenceData of a SamplingResult, with NUTS statistics as sample_stats."""
    draws = result.posterior.constrained if constrained else result.posterior.draws
    return to_inference_data(draws, result.posterior.param_names, _sample_stats(result))


def summarize(result, hdi_prob: float = 0.94, constrained: bool = True) -> pd.DataFrame:
    """Posterior summary table (mean, sd, HDI, MCSE, ESS, R-hat) per parameter.

    Args:
        result: SamplingResult
        hdi_prob: Probability mass of the reported highest density interval
        constrained: Summarize constrained (default) or unconstrained draws

    Returns:
        DataFrame indexed by parameter name.
    """
    idata = inference_data(result, constrained)
    summary = az.summary(idata, var_names=["x"], hdi_prob=hdi_prob)
    # arviz labels rows "x[p]"; show the parameter names alone
    summary.index = list(result.posterior.param_names)
    return summary


def chain_table(result) -> pd.DataFrame:
    """One row per completed chain with its adapted parameters and NUTS statistics."""
    diagnostics = result.diagnostics
    rows = []
    for i, chain in enumerate(result.chains):
        stats = chain.tree_statistics
        rows.append({
            "chain": chain.chain_index,
            "step_size": chain.step_size,
            "mean_accept_prob": float(np.mean(stats.accept_prob)),
            "mean_tree_depth": float(np.mean(stats.tree_depth)),
            "mean_num_steps": float(np.mean(stats.num_steps)),
            "divergences": int(diagnostics.divergences_per_chain[i]),
            "max_depth_hits": int(diagnostics.max_depth_hits[i]),
            "ebfmi": float(diagnostics.ebfmi[i]),
            "degenerate_mass_matrix": chain.degenerate_mass_matrix,
            "elapsed_time": chain.elapsed_time,
        })
    return pd.DataFrame(rows).set_index("chain")


def _to_builtin(obj):
    """Recursively convert numpy containers and scalars to JSON types."""
    if isinstance(obj, dict):
        return {k: _to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, np.ndarray):
        return _to_builtin(obj.tolist())
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (np.floating, float)):
        value = float(obj)
        # JSON has no NaN/Inf
        return value if np.isfinite(value) else None
    return obj


def save_results(result, output_dir: str, extra: Optional[Dict] = None) -> str:
    """Write a SamplingResult to ``output_dir`` as JSON (plus a summary CSV).

    Args:
        result: SamplingResult
        output_dir: Directory to write into; created if missing
        extra: Optional metadata stored under "extra" (e.g. the target name)

    Returns:
        Path of the JSON file.
    """
    os.makedirs(output_dir, exist_ok=True)
    payload = {
        "config": result.config.to_dict(),
        "param_names": result.posterior.param_names,
        "diagnostics": result.diagnostics.to_dict(),
        "failures": [failure._asdict() for failure in result.failures],
        "chains": [
            {
                "chain_index": chain.chain_index,
                "step_size": chain.step_size,
                "inv_mass_matrix": chain.inv_mass_matrix,
                "degenerate_mass_matrix": chain.degenerate_mass_matrix,
                "elapsed_time": chain.elapsed_time,
                "draws": chain.draws,
                "log_density": chain.log_density,
                "tree_statistics": chain.tree_statistics._asdict(),
            }
            for chain in result.chains
        ],
        "constrained_draws": result.posterior.constrained,
        "extra": extra or {},
    }

    json_path = os.path.join(output_dir, RESULTS_FILE)
    with open(json_path, 'w') as f:
        json.dump(_to_builtin(payload), f, indent=2)

    summarize(result).to_csv(os.path.join(output_dir, SUMMARY_FILE))
    return json_path


def load_results(results_path: str) -> Dict:
    """Load results written by ``save_results``.

    Args:
        results_path: Directory containing sampling_results.json

    Returns:
        Dict with the saved fields. Draws, log densities, mass matrices and
        tree statistics are numpy arrays again.

    Raises:
        FileNotFoundError: If sampling_results.json doesn't exist
        json.JSONDecodeError: If JSON is malformed
    """
    json_path = os.path.join(results_path, RESULTS_FILE)

    if not os.path.exists(json_path):
        raise FileNotFoundError(
            f"No sampling results found at {json_path}. "
            f"Run the sampler first or check the path."
        )

    with open(json_path, 'r') as f:
        results = json.load(f)

    results["constrained_draws"] = np.asarray(results["constrained_draws"], dtype=np.float64)
    for chain in results["chains"]:
        chain["draws"] = np.asarray(chain["draws"], dtype=np.float64)
        chain["log_density"] = np.asarray(chain["log_density"], dtype=np.float64)
        chain["inv_mass_matrix"] = np.asarray(chain["inv_mass_matrix"], dtype=np.float64)
        chain["tree_statistics"] = {
            name: np.asarray(values) for name, values in chain["tree_statistics"].items()
        }
    return results
