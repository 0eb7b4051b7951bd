"""Diagnostics and reporting for sampling results.

This package computes convergence diagnostics (split R-hat, ESS, divergences)
with ArviZ and turns results into pandas tables and JSON files.
"""

from .diagnostics import (
    Diagnostics,
    compute_diagnostics,
    diagnose_chains,
    effective_sample_size,
    is_converged,
    split_rhat,
    to_inference_data,
)
from .utils import (
    chain_table,
    inference_data,
    load_results,
    save_results,
    summarize,
)

__all__ = [
    'Diagnostics',
    'compute_diagnostics',
    'diagnose_chains',
    'effective_sample_size',
    'is_converged',
    'split_rhat',
    'to_inference_data',
    'chain_table',
    'inference_data',
    'load_results',
    'save_results',
    'summarize',
]
