"""Warmup adaptation: dual averaging step size, Welford variance, window schedule."""

from .dual_averaging import DualAveragingState, da_init, da_update, da_reset, da_final_step_size
from .welford import WelfordState, welford_init, welford_update, welford_variance, regularize_variance
from .adaptation import WarmupResult, build_schedule, find_reasonable_step_size, run_adaptive_warmup

__all__ = [
    'DualAveragingState',
    'da_init',
    'da_update',
    'da_reset',
    'da_final_step_size',
    'WelfordState',
    'welford_init',
    'welford_update',
    'welford_variance',
    'regularize_variance',
    'WarmupResult',
    'build_schedule',
    'find_reasonable_step_size',
    'run_adaptive_warmup',
]
