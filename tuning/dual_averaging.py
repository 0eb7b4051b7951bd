"""Dual averaging step-size adaptation for HMC-family samplers.

Based on Hoffman & Gelman (2014) NUTS paper, Section 3.2, with the Stan
defaults gamma=0.05, t0=10, kappa=0.75. The state is kept in plain Python
floats and updated once per warmup iteration.
"""
from typing import NamedTuple

import numpy as np


class DualAveragingState(NamedTuple):
    """State for step-wise dual averaging."""
    log_step: float       # Current log(step_size), used for the next iteration
    log_step_bar: float   # Smoothed log(step_size), used after warmup
    H_bar: float          # Running average of (target - accept)
    mu: float             # Shrinkage target for log(step_size)
    count: int            # Iteration counter (m)
    gamma: float = 0.05
    t0: float = 10.0
    kappa: float = 0.75


def da_init(initial_step_size: float) -> DualAveragingState:
    """Initialize dual averaging around ``initial_step_size``.

    The shrinkage target mu is log(10 * eps0), which biases the search towards
    larger steps than the heuristic starting point.
    """
    if not initial_step_size > 0.0:
        raise ValueError(f"initial_step_size must be positive, got {initial_step_size}")
    log_step = float(np.log(initial_step_size))
    return DualAveragingState(
        log_step=log_step,
        log_step_bar=log_step,
        H_bar=0.0,
        mu=float(np.log(10.0 * initial_step_size)),
        count=0,
    )


def da_update(state: DualAveragingState, accept_stat: float, target_accept: float) -> DualAveragingState:
    """Perform one step of dual averaging parameter update.

    Returns updated state. To get the current step size, use exp(state.log_step).
    """
    m = state.count + 1
    # Non-finite acceptance statistics count as total rejection.
    accept_stat = float(accept_stat) if np.isfinite(accept_stat) else 0.0
    accept_stat = min(max(accept_stat, 0.0), 1.0)

    eta_m = 1.0 / (m + state.t0)
    H_bar = (1 - eta_m) * state.H_bar + eta_m * (target_accept - accept_stat)

    log_step = state.mu - (np.sqrt(m) / state.gamma) * H_bar

    m_kappa = m ** (-state.kappa)
    if m == 1:
        log_step_bar = log_step
    else:
        log_step_bar = m_kappa * log_step + (1 - m_kappa) * state.log_step_bar

    return state._replace(
        log_step=float(log_step),
        log_step_bar=float(log_step_bar),
        H_bar=float(H_bar),
        count=m,
    )


def da_reset(state: DualAveragingState, step_size: float) -> DualAveragingState:
    """Restart the search around ``step_size`` after the geometry changed.

    Used at the end of every mass-matrix window. The tuning constants of
    ``state`` are kept.
    """
    fresh = da_init(step_size)
    return fresh._replace(gamma=state.gamma, t0=state.t0, kappa=state.kappa)


def da_current_step_size(state: DualAveragingState) -> float:
    """Step size to use for the next warmup iteration."""
    return float(np.exp(state.log_step))


def da_final_step_size(state: DualAveragingState) -> float:
    """Smoothed step size frozen at the end of warmup."""
    return float(np.exp(state.log_step_bar))
