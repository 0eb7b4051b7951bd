"""Command-line driver: sample a registered target with multi-chain NUTS and print a summary.

Example:
    python run_sampler.py --target globe_tossing --num-chains 4 --num-samples 2000
"""
import argparse
import logging
import sys

import numpy as np
import pandas as pd
from jax import random

from analysis.utils import chain_table, save_results, summarize
from benchmarks.metrics import compute_sliced_w2, moment_errors
from benchmarks.targets import TARGETS, get_target
from samplers.config import SamplerConfig
from samplers.errors import AllChainsFailed
from samplers.scheduler import sample_posterior


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sample a posterior with multi-chain NUTS")

    # Target selection
    parser.add_argument("--target", default="globe_tossing", choices=sorted(TARGETS),
                        help="Registered target to sample")
    parser.add_argument("--dim", type=int, default=None,
                        help="Dimensionality for targets with a free dimension")

    # Sampler parameters
    parser.add_argument("--num-chains", type=int, default=4,
                        help="Number of independent chains")
    parser.add_argument("--num-samples", type=int, default=1000,
                        help="Post-warmup draws per chain")
    parser.add_argument("--num-warmup", type=int, default=1000,
                        help="Warmup iterations per chain")
    parser.add_argument("--target-accept", type=float, default=0.8,
                        help="Target acceptance probability for step-size adaptation")
    parser.add_argument("--max-tree-depth", type=int, default=10,
                        help="Maximum number of trajectory doublings")
    parser.add_argument("--chain-method", default="parallel", choices=["parallel", "sequential"],
                        help="Run chains on a thread pool or one after the other")
    parser.add_argument("--num-workers", type=int, default=None,
                        help="Worker pool size (default: min(num_chains, cpu_count))")
    parser.add_argument("--seed", type=int, default=0,
                        help="Random seed")
    parser.add_argument("--target-init", action="store_true",
                        help="Start chains from the target's own initializer")

    # Output
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Directory to save results (JSON + summary CSV)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for INFO, -vv for DEBUG logging")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    try:
        target = get_target(args.target, args.dim)
        config = SamplerConfig(
            num_samples=args.num_samples,
            num_warmup=args.num_warmup,
            num_chains=args.num_chains,
            target_accept_prob=args.target_accept,
            max_tree_depth=args.max_tree_depth,
            seed=args.seed,
            chain_method=args.chain_method,
            num_workers=args.num_workers,
        )
    except ValueError as e:
        parser.error(str(e))

    init_positions = None
    if args.target_init:
        if target.init_sampler is None:
            parser.error(f"--target-init: target '{args.target}' has no initializer")
        init_key = random.fold_in(random.PRNGKey(args.seed), config.num_chains)
        init_positions = np.asarray(target.init_sampler(init_key, config.num_chains))

    print(f"\n{'='*80}")
    print(f"NUTS: {target.name}")
    print(f"{'='*80}")
    print(f"{target.description}")
    print(f"Chains: {config.num_chains}  Warmup: {config.num_warmup}  Samples: {config.num_samples}")
    print(f"{'='*80}\n")

    try:
        result = sample_posterior(target, config, init_positions=init_positions)
    except AllChainsFailed as e:
        print(f"[FAIL] {e}")
        return 1

    with pd.option_context("display.width", 120, "display.max_columns", 20):
        print(summarize(result))
        print()
        print(chain_table(result))

    diagnostics = result.diagnostics
    print(f"\nmax R-hat: {diagnostics.rhat_max:.4f}  min ESS: {diagnostics.ess_min:.1f}  "
          f"divergences: {diagnostics.total_divergences} ({diagnostics.divergence_rate:.2%})")
    for failure in result.failures:
        print(f"[FAIL] chain {failure.chain_index}: {failure.reason}")

    if target.true_mean is not None:
        errors = moment_errors(result.posterior.constrained, target, ess=diagnostics.ess)
        print(f"Mean error vs. truth: {np.array2string(errors['mean_error'], precision=4)}")
        w2 = compute_sliced_w2(result.posterior.constrained, target, n_reference=10000)
        if w2 is not None:
            print(f"Sliced W2 vs. exact draws: {w2:.4f}")

    if args.output_dir is not None:
        path = save_results(result, args.output_dir, extra={"target": target.name})
        print(f"\n[OK] Results saved to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
