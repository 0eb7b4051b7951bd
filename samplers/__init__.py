"""NUTS sampling engine.

The chain driver and the multi-chain scheduler live in ``samplers.chain`` and
``samplers.scheduler``; they depend on ``tuning`` and are not imported here.
"""
import jax

# Energies and variance estimates are computed in float64
jax.config.update("jax_enable_x64", True)

from .config import SamplerConfig
from .errors import (
    SamplingError,
    NonFiniteDensity,
    ChainFatal,
    AllChainsFailed,
    DivergenceWarning,
    DegenerateMassMatrixWarning,
)
from .transforms import (
    Transform,
    IdentityTransform,
    IntervalTransform,
    LowerBoundTransform,
    StackedTransform,
)
from .density import DensityProvider, LogDensityResult, as_density_provider
from .HMC import IntegratorState, leapfrog, leapfrog_step, hamiltonian
from .NUTS import NUTSState, NUTSInfo, nuts_init, nuts_step

__all__ = [
    'SamplerConfig',
    'SamplingError',
    'NonFiniteDensity',
    'ChainFatal',
    'AllChainsFailed',
    'DivergenceWarning',
    'DegenerateMassMatrixWarning',
    'Transform',
    'IdentityTransform',
    'IntervalTransform',
    'LowerBoundTransform',
    'StackedTransform',
    'DensityProvider',
    'LogDensityResult',
    'as_density_provider',
    'IntegratorState',
    'leapfrog',
    'leapfrog_step',
    'hamiltonian',
    'NUTSState',
    'NUTSInfo',
    'nuts_init',
    'nuts_step',
]
