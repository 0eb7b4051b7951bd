"""Exceptions and warnings raised by the sampling engine."""
from __future__ import annotations

from typing import Sequence


class SamplingError(Exception):
    """Base class for sampling failures."""


class NonFiniteDensity(SamplingError):
    """Log density or one of its gradient components is NaN or infinite.

    Only raised by host-side evaluations (e.g. while initializing a chain).
    Inside compiled trajectories the same condition is a flag that turns the
    offending leapfrog step into a rejected, divergent one.
    """

    def __init__(self, position, value=None):
        self.position = position
        self.value = value
        super().__init__(f"Non-finite log density ({value}) at position {position}")


class ChainFatal(SamplingError):
    """A single chain could not produce any valid trajectory."""

    def __init__(self, chain_index: int, reason: str):
        self.chain_index = chain_index
        self.reason = reason
        super().__init__(f"Chain {chain_index} failed: {reason}")


class AllChainsFailed(SamplingError):
    """Every chain of a run raised ChainFatal."""

    def __init__(self, failures: Sequence):
        self.failures = list(failures)
        reasons = "; ".join(f"chain {f.chain_index}: {f.reason}" for f in self.failures)
        super().__init__(f"All {len(self.failures)} chains failed ({reasons})")


class DivergenceWarning(UserWarning):
    """Divergent transitions were recorded after warmup."""


class DegenerateMassMatrixWarning(UserWarning):
    """Variance estimate collapsed and the mass matrix was clamped."""
