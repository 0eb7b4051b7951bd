"""Validation targets and sample-quality metrics for the sampler."""

from .targets import (
    TargetDistribution,
    TARGETS,
    FREE_DIM_TARGETS,
    standard_normal,
    correlated_gaussian,
    neals_funnel,
    beta_bernoulli,
    globe_tossing,
    normal_unknown_scale,
    simulate_globe,
    simulate_bernoulli,
    posterior_predictive,
    conjugate_beta_posterior,
    grid_posterior,
    get_target,
    list_targets,
    get_reference_sampler,
    has_reference_sampler,
)

from .metrics import (
    sliced_wasserstein_distance,
    compute_sliced_w2,
    moment_errors,
)

__all__ = [
    'TargetDistribution',
    'TARGETS',
    'FREE_DIM_TARGETS',
    'standard_normal',
    'correlated_gaussian',
    'neals_funnel',
    'beta_bernoulli',
    'globe_tossing',
    'normal_unknown_scale',
    'simulate_globe',
    'simulate_bernoulli',
    'posterior_predictive',
    'conjugate_beta_posterior',
    'grid_posterior',
    'get_target',
    'list_targets',
    'get_reference_sampler',
    'has_reference_sampler',
    'sliced_wasserstein_distance',
    'compute_sliced_w2',
    'moment_errors',
]
