"""Run configuration for the NUTS sampling engine."""
from __future__ import annotations

import numbers
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

CHAIN_METHODS = ("parallel", "sequential")


@dataclass(frozen=True)
class SamplerConfig:
    """Configuration for a multi-chain NUTS run.

    Attributes:
        num_samples: Number of post-warmup draws kept per chain.
        num_warmup: Number of adaptation iterations per chain (discarded).
        num_chains: Number of independent chains.
        target_accept_prob: Target mean acceptance probability for dual averaging.
        max_tree_depth: Maximum number of trajectory doublings per iteration.
        divergence_threshold: Energy error above which a trajectory is divergent.
        seed: Master seed; chain streams are derived from (seed, chain_index).
        step_size: Initial step size. None runs the step-size heuristic.
        adapt_step_size: Tune the step size with dual averaging during warmup.
        adapt_mass_matrix: Estimate a diagonal mass matrix during warmup.
        chain_method: 'parallel' (worker pool) or 'sequential'.
        num_workers: Worker pool size, defaults to min(num_chains, cpu_count).
        init_radius: Random initial positions are uniform in (-r, r), unconstrained.
        max_init_attempts: Attempts to find a finite initial position.
        max_nonfinite_retries: Consecutive failed iterations before a chain aborts.
        min_variance: Floor applied to the estimated per-coordinate variance.
    """

    num_samples: int = field(default=1000)
    num_warmup: int = field(default=1000)
    num_chains: int = field(default=4)
    target_accept_prob: float = field(default=0.8)
    max_tree_depth: int = field(default=10)
    divergence_threshold: float = field(default=1000.0)
    seed: int = field(default=0)
    step_size: Optional[float] = field(default=None)
    adapt_step_size: bool = field(default=True)
    adapt_mass_matrix: bool = field(default=True)
    chain_method: str = field(default="parallel")
    num_workers: Optional[int] = field(default=None)
    init_radius: float = field(default=2.0)
    max_init_attempts: int = field(default=100)
    max_nonfinite_retries: int = field(default=100)
    min_variance: float = field(default=1e-8)

    def __post_init__(self):
        _require_int(self.num_samples, "num_samples", minimum=1)
        _require_int(self.num_warmup, "num_warmup", minimum=0)
        _require_int(self.num_chains, "num_chains", minimum=1)
        _require_int(self.max_tree_depth, "max_tree_depth", minimum=1)
        _require_int(self.seed, "seed")
        _require_int(self.max_init_attempts, "max_init_attempts", minimum=1)
        _require_int(self.max_nonfinite_retries, "max_nonfinite_retries", minimum=1)
        if not 0.0 < self.target_accept_prob < 1.0:
            raise ValueError(
                f"target_accept_prob must lie in (0, 1), got {self.target_accept_prob}"
            )
        if not self.divergence_threshold > 0.0:
            raise ValueError(
                f"divergence_threshold must be positive, got {self.divergence_threshold}"
            )
        if self.step_size is not None and not self.step_size > 0.0:
            raise ValueError(f"step_size must be positive, got {self.step_size}")
        if self.chain_method not in CHAIN_METHODS:
            raise ValueError(
                f"Unknown chain_method '{self.chain_method}'. Available: {list(CHAIN_METHODS)}"
            )
        if self.num_workers is not None:
            _require_int(self.num_workers, "num_workers", minimum=1)
        if not self.init_radius > 0.0:
            raise ValueError(f"init_radius must be positive, got {self.init_radius}")
        if not self.min_variance > 0.0:
            raise ValueError(f"min_variance must be positive, got {self.min_variance}")

    @property
    def num_iterations(self) -> int:
        """Total iterations per chain (warmup + sampling)."""
        return self.num_warmup + self.num_samples

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "SamplerConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown configuration options: {sorted(unknown)}")
        return cls(**values)


def _require_int(value, name: str, minimum: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
