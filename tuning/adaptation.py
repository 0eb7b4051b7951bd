"""Windowed warmup adaptation of step size and diagonal mass matrix."""
import logging
import time
import warnings
from functools import partial
from typing import Callable, NamedTuple, Optional, Tuple

import numpy as np
import jax.numpy as jnp
from jax import jit, random

from samplers.HMC import IntegratorState, hamiltonian, leapfrog, sample_momentum
from samplers.NUTS import NUTSInfo, NUTSState
from samplers.errors import DegenerateMassMatrixWarning
from tuning.dual_averaging import (
    da_init,
    da_update,
    da_reset,
    da_current_step_size,
    da_final_step_size,
)
from tuning.welford import welford_init, welford_update, welford_variance, regularize_variance

logger = logging.getLogger(__name__)

# Type aliases
Array = jnp.ndarray
# transition(state, key, step_size, inv_mass_matrix) -> (state, info)
TransitionFn = Callable[[NUTSState, Array, float, Array], Tuple[NUTSState, NUTSInfo]]


class WarmupResult(NamedTuple):
    """Outcome of the warmup phase of one chain.

    Attributes:
        state: Chain state after the last warmup iteration
        step_size: Step size frozen for sampling
        inv_mass_matrix: Diagonal inverse mass matrix frozen for sampling
        infos: Per-iteration transition statistics
        degenerate: True if a variance estimate had to be clamped
        schedule: Adaptation windows as (start, end, phase)
        elapsed_time: Wall-clock seconds spent in warmup
    """
    state: object
    step_size: float
    inv_mass_matrix: np.ndarray
    infos: list
    degenerate: bool
    schedule: list
    elapsed_time: float


def build_schedule(num_steps: int, initial_buffer: int = 75, final_buffer: int = 50, window_base: int = 25) -> list:
    """Build a Stan-style windowed schedule.

    Returns a list of tuples: (start_index, end_index, type)
    Types: 'fast_init', 'slow', 'fast_final'
    """
    if num_steps <= 0:
        return []
    if num_steps < 20:
        # Too short to estimate a variance: step size only
        return [(0, num_steps, 'fast_init')]
    if num_steps < initial_buffer + final_buffer + window_base:
        initial_buffer = int(0.15 * num_steps)
        final_buffer = int(0.1 * num_steps)
        window_base = num_steps - initial_buffer - final_buffer

    schedule = []
    start = 0

    # 1. Initial fast interval
    schedule.append((start, start + initial_buffer, 'fast_init'))
    start += initial_buffer

    # 2. Windowed slow intervals (doubling size)
    slow_end = num_steps - final_buffer
    window_size = window_base

    while start < slow_end:
        end = start + window_size
        # A window followed by too little room for the next doubled one
        # stretches to the terminal buffer
        if end + 2 * window_size > slow_end:
            end = slow_end
        schedule.append((start, end, 'slow'))
        start = end
        window_size *= 2

    # 3. Final fast interval
    schedule.append((start, num_steps, 'fast_final'))

    return [window for window in schedule if window[1] > window[0]]


@partial(jit, static_argnames=("value_and_grad_fn",))
def _one_step_log_accept(
    start: IntegratorState,
    step_size: float,
    value_and_grad_fn,
    inv_mass_matrix: jnp.ndarray,
) -> jnp.ndarray:
    """log of the Metropolis ratio after a single leapfrog step."""
    h0 = hamiltonian(start.log_prob, start.momentum, inv_mass_matrix)
    _, energies = leapfrog(start, step_size, value_and_grad_fn, inv_mass_matrix, 1)
    log_accept = h0 - energies[-1]
    return jnp.where(jnp.isnan(log_accept), -jnp.inf, log_accept)


def find_reasonable_step_size(
    key: jnp.ndarray,
    state,
    value_and_grad_fn,
    inv_mass_matrix: jnp.ndarray,
    initial_step_size: float = 1.0,
    max_iter: int = 100,
) -> float:
    """Heuristic initial step size (Hoffman & Gelman 2014, Algorithm 4).

    Doubles (or halves) the step size until the acceptance probability of a
    single leapfrog step from ``state`` crosses 0.5.

    Args:
        key: JAX random key for the momentum draw
        state: Chain state with position, log_prob and grad_log_prob
        value_and_grad_fn: Function returning (log p(u), grad log p(u))
        inv_mass_matrix: Diagonal inverse mass matrix
        initial_step_size: Starting guess
        max_iter: Maximum number of doublings/halvings

    Returns:
        Step size as a Python float.
    """
    inv_mass_matrix = jnp.asarray(inv_mass_matrix, dtype=jnp.float64)
    momentum = sample_momentum(key, inv_mass_matrix)
    start = IntegratorState(state.position, momentum, state.log_prob, state.grad_log_prob)
    log_half = float(np.log(0.5))

    step_size = float(initial_step_size)
    log_accept = float(_one_step_log_accept(start, step_size, value_and_grad_fn, inv_mass_matrix))
    direction = 1 if log_accept > log_half else -1

    for _ in range(max_iter):
        new_step_size = step_size * (2.0 ** direction)
        if not 1e-10 < new_step_size < 1e7:
            break
        log_accept = float(
            _one_step_log_accept(start, new_step_size, value_and_grad_fn, inv_mass_matrix)
        )
        if direction == 1 and not log_accept > log_half:
            break
        step_size = new_step_size
        if direction == -1 and log_accept > log_half:
            break

    return step_size


def run_adaptive_warmup(
    key: jnp.ndarray,
    state,
    transition: TransitionFn,
    value_and_grad_fn,
    num_warmup: int,
    target_accept: float = 0.8,
    initial_step_size: Optional[float] = None,
    inv_mass_matrix: Optional[jnp.ndarray] = None,
    adapt_step_size: bool = True,
    adapt_mass_matrix: bool = True,
    min_variance: float = 1e-8,
    chain_index: int = 0,
) -> WarmupResult:
    """Run windowed adaptation for one chain.

    Phases follow ``build_schedule``: the step size is tuned by dual averaging
    in every iteration; draws of 'slow' windows feed a Welford estimator, and
    at the end of each slow window the diagonal inverse mass matrix is set to
    the regularized variance, after which the step size search restarts
    around a fresh heuristic estimate.

    Args:
        key: JAX random key for this chain's warmup
        state: Initial chain state
        transition: Callable (state, key, step_size, inv_mass_matrix) -> (state, info)
            where info exposes ``accept_prob``
        value_and_grad_fn: Function returning (log p(u), grad log p(u))
        num_warmup: Number of warmup iterations
        target_accept: Target mean acceptance probability
        initial_step_size: Starting step size; None runs the heuristic
        inv_mass_matrix: Starting inverse mass matrix; defaults to ones
        adapt_step_size: If False, the step size is kept fixed
        adapt_mass_matrix: If False, the mass matrix is kept fixed
        min_variance: Floor for variance estimates
        chain_index: Only used in log messages

    Returns:
        WarmupResult with the frozen step size and inverse mass matrix.
    """
    start_time = time.time()
    n_dim = state.position.shape[0]
    if inv_mass_matrix is None:
        inv_mass_matrix = jnp.ones(n_dim, dtype=jnp.float64)
    inv_mass_matrix = jnp.asarray(inv_mass_matrix, dtype=jnp.float64)

    key, heuristic_key = random.split(key)
    if initial_step_size is None:
        step_size = find_reasonable_step_size(heuristic_key, state, value_and_grad_fn, inv_mass_matrix)
    else:
        step_size = float(initial_step_size)

    schedule = build_schedule(num_warmup)
    slow_ends = {end for _, end, phase in schedule if phase == 'slow'}
    slow_iterations = np.zeros(num_warmup, dtype=bool)
    for start, end, phase in schedule:
        if phase == 'slow':
            slow_iterations[start:end] = True

    logger.debug("Chain %d adaptation schedule (%d steps): %s", chain_index, num_warmup, schedule)

    da_state = da_init(step_size)
    welford_state = welford_init(n_dim)
    degenerate = False
    infos = []

    if num_warmup > 0:
        keys = random.split(key, num_warmup)
    else:
        keys = []

    for iteration, step_key in enumerate(keys):
        state, info = transition(state, step_key, step_size, inv_mass_matrix)
        infos.append(info)

        if adapt_step_size:
            da_state = da_update(da_state, float(info.accept_prob), target_accept)
            step_size = da_current_step_size(da_state)

        if not adapt_mass_matrix or not slow_iterations[iteration]:
            continue

        welford_state = welford_update(welford_state, state.position)

        if iteration + 1 in slow_ends:
            _, variance = welford_variance(welford_state)
            new_inv_mass, window_degenerate = regularize_variance(
                variance, welford_state.count, min_variance
            )
            if bool(window_degenerate):
                degenerate = True
                warnings.warn(
                    f"Chain {chain_index}: variance estimate collapsed at warmup iteration "
                    f"{iteration + 1}; mass matrix clamped to a minimum scale.",
                    DegenerateMassMatrixWarning,
                    stacklevel=2,
                )
            inv_mass_matrix = new_inv_mass
            welford_state = welford_init(n_dim)
            logger.debug(
                "Chain %d: window ending at %d updated mass matrix. Range: [%.4g, %.4g]",
                chain_index, iteration + 1, float(jnp.min(variance)), float(jnp.max(variance)),
            )

            if adapt_step_size:
                heuristic_key = random.fold_in(keys[iteration], 1)
                step_size = find_reasonable_step_size(
                    heuristic_key, state, value_and_grad_fn, inv_mass_matrix, initial_step_size=step_size
                )
                da_state = da_reset(da_state, step_size)

    if adapt_step_size and num_warmup > 0:
        step_size = da_final_step_size(da_state)

    elapsed_time = time.time() - start_time
    logger.debug("Chain %d warmup complete. Final step_size: %.5f", chain_index, step_size)

    return WarmupResult(
        state=state,
        step_size=step_size,
        inv_mass_matrix=np.asarray(inv_mass_matrix),
        infos=infos,
        degenerate=degenerate,
        schedule=schedule,
        elapsed_time=elapsed_time,
    )
