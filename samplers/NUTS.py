"""No-U-Turn Sampler (NUTS) transition with JAX compatibility.

This module implements one NUTS iteration for a single chain with:
- Trajectory length chosen by iterative tree doubling in a random direction
- U-turn detection on the whole trajectory and on every balanced subtree
- Multinomial (uniform progressive) sampling inside each new subtree
- Biased progressive sampling when a subtree is merged into the trajectory
- Divergence detection from the energy error, including non-finite densities
- Full JIT compilation using lax.while_loop instead of recursion

Subtrees are built one leaf at a time. The positions and momenta of selected
leaves are checkpointed so that the U-turn condition of every sub-subtree
ending at the newest leaf can be checked with O(max_tree_depth) memory.

Reference: Hoffman & Gelman (2014), "The No-U-Turn Sampler: Adaptively Setting
Path Lengths in Hamiltonian Monte Carlo"; Betancourt (2017), "A Conceptual
Introduction to Hamiltonian Monte Carlo", Appendix A.

Implementation inspired by the iterative (non-recursive) tree builders of
BlackJAX and NumPyro.
"""
from __future__ import annotations
from functools import partial
from typing import Callable, NamedTuple, Tuple

import jax
import jax.numpy as jnp
from jax import random, lax

from samplers.HMC import (
    IntegratorState,
    hamiltonian,
    leapfrog_step,
    sample_momentum,
)

# Type aliases
Array = jnp.ndarray
ValueAndGradFn = Callable[[Array], Tuple[Array, Array]]


class NUTSState(NamedTuple):
    """State of one chain between NUTS iterations.

    Attributes:
        position: Current unconstrained position, shape (n_dim,)
        log_prob: Log density at the position [float64]
        grad_log_prob: Gradient of the log density, shape (n_dim,)
    """
    position: Array
    log_prob: Array
    grad_log_prob: Array


class NUTSInfo(NamedTuple):
    """Statistics of one NUTS iteration.

    Attributes:
        tree_depth: Number of doublings performed
        accept_prob: Mean of min(1, exp(H0 - H)) over all leapfrog steps
        divergent: True if the last subtree had an energy error above threshold
        energy: Hamiltonian of the selected state
        num_steps: Number of leapfrog steps taken
        nonfinite: True if a non-finite density was met along the trajectory
    """
    tree_depth: Array
    accept_prob: Array
    divergent: Array
    energy: Array
    num_steps: Array
    nonfinite: Array


class _TreeState(NamedTuple):
    """A (sub)trajectory: its two ends, its current candidate and its statistics."""
    left: IntegratorState
    right: IntegratorState
    proposal: IntegratorState
    proposal_energy: Array
    depth: Array           # int32
    log_weight: Array      # log sum of exp(H0 - H) over leaves
    turning: Array         # bool
    diverging: Array       # bool
    sum_accept_prob: Array
    num_proposals: Array   # int32, number of leaves
    nonfinite: Array       # bool


def _select(pred: Array, on_true, on_false):
    """Elementwise choice between two pytrees of identical structure."""
    return jax.tree_util.tree_map(lambda a, b: jnp.where(pred, a, b), on_true, on_false)


def nuts_init(position: Array, value_and_grad_fn: ValueAndGradFn) -> NUTSState:
    """Initialize a single-chain NUTS state at ``position``."""
    position = jnp.asarray(position, dtype=jnp.float64)
    if position.ndim != 1:
        raise ValueError("Position must have shape (n_dim,).")
    log_prob, grad = value_and_grad_fn(position)
    return NUTSState(position=position, log_prob=log_prob, grad_log_prob=grad)


def is_turning(z_left: Array, p_left: Array, z_right: Array, p_right: Array) -> Array:
    """Check if a trajectory segment has made a U-turn.

    U-turn occurs when: (z_right - z_left) . p_left < 0  OR  (z_right - z_left) . p_right < 0
    """
    delta_z = z_right - z_left
    return (jnp.dot(delta_z, p_left) < 0) | (jnp.dot(delta_z, p_right) < 0)


def _is_turning_from_checkpoint(going_right, z_ckpt, p_ckpt, z_new, p_new) -> Array:
    # The checkpoint is the far end of the segment; the new leaf is the near end.
    z_left = jnp.where(going_right, z_ckpt, z_new)
    p_left = jnp.where(going_right, p_ckpt, p_new)
    z_right = jnp.where(going_right, z_new, z_ckpt)
    p_right = jnp.where(going_right, p_new, p_ckpt)
    return is_turning(z_left, p_left, z_right, p_right)


def _leaf_idx_to_ckpt_idxs(n: Array) -> Tuple[Array, Array]:
    """Checkpoint range for leaf ``n`` of a subtree.

    idx_max is the number of set bits of n excluding the lowest one, which is
    where an even leaf stores its checkpoint. For an odd leaf, the number of
    trailing set bits is the number of balanced subtrees ending at it, whose
    first leaves sit at checkpoints idx_min..idx_max.
    """
    _, idx_max = lax.while_loop(
        lambda nc: nc[0] > 0,
        lambda nc: (nc[0] >> 1, nc[1] + (nc[0] & 1)),
        (n >> 1, jnp.int32(0)),
    )
    _, num_subtrees = lax.while_loop(
        lambda nc: (nc[0] & 1) != 0,
        lambda nc: (nc[0] >> 1, nc[1] + 1),
        (n, jnp.int32(0)),
    )
    idx_min = idx_max - num_subtrees + 1
    return idx_min, idx_max


def _is_iterative_turning(going_right, z_new, p_new, z_ckpts, p_ckpts, idx_min, idx_max) -> Array:
    """U-turn test for every balanced subtree that ends at the newest leaf."""
    def body_fn(state):
        i, _ = state
        turning = _is_turning_from_checkpoint(going_right, z_ckpts[i], p_ckpts[i], z_new, p_new)
        return i - 1, turning

    _, turning = lax.while_loop(
        lambda state: (state[0] >= idx_min) & ~state[1],
        body_fn,
        (idx_max, jnp.array(False)),
    )
    return turning


def _build_leaf(
    start: IntegratorState,
    going_right: Array,
    step_size: float,
    value_and_grad_fn: ValueAndGradFn,
    inv_mass_matrix: Array,
    energy0: Array,
    divergence_threshold: float,
) -> _TreeState:
    """Take one leapfrog step from ``start`` and wrap the result as a depth-0 tree."""
    signed_step = jnp.where(going_right, step_size, -step_size)
    new = leapfrog_step(start, signed_step, value_and_grad_fn, inv_mass_matrix)
    energy = hamiltonian(new.log_prob, new.momentum, inv_mass_matrix)
    nonfinite = ~jnp.isfinite(energy)

    delta_energy = energy - energy0
    delta_energy = jnp.where(jnp.isnan(delta_energy), jnp.inf, delta_energy)
    diverging = delta_energy > divergence_threshold
    accept_prob = jnp.exp(jnp.minimum(0.0, -delta_energy))

    return _TreeState(
        left=new,
        right=new,
        proposal=new,
        proposal_energy=energy,
        depth=jnp.int32(0),
        log_weight=-delta_energy,
        turning=jnp.array(False),
        diverging=diverging,
        sum_accept_prob=accept_prob,
        num_proposals=jnp.int32(1),
        nonfinite=nonfinite,
    )


def _combine_tree(
    current: _TreeState,
    new: _TreeState,
    going_right: Array,
    key: Array,
    biased: bool,
) -> _TreeState:
    """Merge ``new`` onto the end of ``current`` selected by ``going_right``.

    With ``biased=True`` (merging a full subtree into the trajectory) the new
    candidate is taken with probability min(1, W_new / W_current) and never
    from a subtree that turned or diverged, and the U-turn condition is
    checked on the merged span. With ``biased=False`` (adding a leaf inside a
    subtree) the candidate is taken with probability W_new / (W_current + W_new).
    """
    left = _select(going_right, current.left, new.left)
    right = _select(going_right, new.right, current.right)
    log_weight = jnp.logaddexp(current.log_weight, new.log_weight)

    if biased:
        transition_prob = jnp.minimum(1.0, jnp.exp(new.log_weight - current.log_weight))
        transition_prob = jnp.where(new.turning | new.diverging, 0.0, transition_prob)
        turning = new.turning | is_turning(
            left.position, left.momentum, right.position, right.momentum
        )
        depth = current.depth + 1
    else:
        transition_prob = jnp.exp(new.log_weight - log_weight)
        turning = current.turning
        depth = current.depth
    transition_prob = jnp.where(jnp.isnan(transition_prob), 0.0, transition_prob)
    transition = random.uniform(key, dtype=jnp.float64) < transition_prob

    return _TreeState(
        left=left,
        right=right,
        proposal=_select(transition, new.proposal, current.proposal),
        proposal_energy=jnp.where(transition, new.proposal_energy, current.proposal_energy),
        depth=depth,
        log_weight=log_weight,
        turning=turning,
        diverging=current.diverging | new.diverging,
        sum_accept_prob=current.sum_accept_prob + new.sum_accept_prob,
        num_proposals=current.num_proposals + new.num_proposals,
        nonfinite=current.nonfinite | new.nonfinite,
    )


def _build_subtree(
    tree: _TreeState,
    going_right: Array,
    key: Array,
    step_size: float,
    value_and_grad_fn: ValueAndGradFn,
    inv_mass_matrix: Array,
    energy0: Array,
    divergence_threshold: float,
    z_ckpts: Array,
    p_ckpts: Array,
) -> _TreeState:
    """Build a subtree of 2^tree.depth leaves beyond the chosen end of ``tree``."""
    max_num_proposals = jnp.left_shift(jnp.int32(1), tree.depth)

    def cond_fn(carry):
        subtree, turning, _, _, _ = carry
        return (subtree.num_proposals < max_num_proposals) & ~turning & ~subtree.diverging

    def body_fn(carry):
        subtree, _, z_ckpts, p_ckpts, key = carry
        key, transition_key = random.split(key)

        leaf_start = _select(going_right, subtree.right, subtree.left)
        leaf = _build_leaf(
            leaf_start, going_right, step_size, value_and_grad_fn,
            inv_mass_matrix, energy0, divergence_threshold,
        )
        merged = _combine_tree(subtree, leaf, going_right, transition_key, biased=False)
        new_subtree = _select(subtree.num_proposals == 0, leaf, merged)

        leaf_idx = subtree.num_proposals
        idx_min, idx_max = _leaf_idx_to_ckpt_idxs(leaf_idx)
        is_even = (leaf_idx % 2) == 0
        z_ckpts = jnp.where(is_even, z_ckpts.at[idx_max].set(leaf.right.position), z_ckpts)
        p_ckpts = jnp.where(is_even, p_ckpts.at[idx_max].set(leaf.right.momentum), p_ckpts)
        turning = _is_iterative_turning(
            going_right, leaf.right.position, leaf.right.momentum,
            z_ckpts, p_ckpts, idx_min, idx_max,
        )
        return new_subtree, turning, z_ckpts, p_ckpts, key

    # Placeholder carry holding the trajectory ends; the first leaf replaces it.
    base = tree._replace(
        num_proposals=jnp.int32(0),
        diverging=jnp.array(False),
        turning=jnp.array(False),
    )
    subtree, turning, _, _, _ = lax.while_loop(
        cond_fn, body_fn, (base, jnp.array(False), z_ckpts, p_ckpts, key)
    )
    return subtree._replace(depth=tree.depth, turning=turning)


@partial(jax.jit, static_argnames=("value_and_grad_fn", "max_tree_depth"))
def nuts_step(
    state: NUTSState,
    key: Array,
    value_and_grad_fn: ValueAndGradFn,
    step_size: float,
    inv_mass_matrix: Array,
    max_tree_depth: int = 10,
    divergence_threshold: float = 1000.0,
) -> Tuple[NUTSState, NUTSInfo]:
    """Perform one NUTS iteration for a single chain.

    Args:
        state: Current chain state
        key: JAX random key, consumed by this iteration
        value_and_grad_fn: Function returning (log p(u), grad log p(u)); must be hashable
        step_size: Leapfrog step size
        inv_mass_matrix: Diagonal of the inverse mass matrix, shape (n_dim,)
        max_tree_depth: Maximum number of doublings (max trajectory = 2^depth - 1 steps)
        divergence_threshold: Energy error above which a subtree is divergent

    Returns:
        Tuple of (new_state, info)
    """
    position = state.position
    n_dim = position.shape[0]
    inv_mass_matrix = jnp.asarray(inv_mass_matrix, dtype=position.dtype)
    step_size = jnp.asarray(step_size, dtype=position.dtype)

    key_momentum, key_tree = random.split(key)
    p0 = sample_momentum(key_momentum, inv_mass_matrix)
    energy0 = hamiltonian(state.log_prob, p0, inv_mass_matrix)

    start = IntegratorState(position, p0, jnp.asarray(state.log_prob, dtype=jnp.float64),
                            state.grad_log_prob)
    tree = _TreeState(
        left=start,
        right=start,
        proposal=start,
        proposal_energy=energy0,
        depth=jnp.int32(0),
        log_weight=jnp.array(0.0, dtype=jnp.float64),
        turning=jnp.array(False),
        diverging=jnp.array(False),
        sum_accept_prob=jnp.array(0.0, dtype=jnp.float64),
        num_proposals=jnp.int32(0),
        nonfinite=jnp.array(False),
    )
    z_ckpts = jnp.zeros((max_tree_depth, n_dim), dtype=position.dtype)
    p_ckpts = jnp.zeros((max_tree_depth, n_dim), dtype=position.dtype)

    def cond_fn(carry):
        """Continue while depth < max_depth and no U-turn and not divergent."""
        tree, _ = carry
        return (tree.depth < max_tree_depth) & ~tree.turning & ~tree.diverging

    def body_fn(carry):
        """Choose a direction, build one subtree and merge it into the trajectory."""
        tree, key = carry
        key, direction_key, subtree_key, transition_key = random.split(key, 4)
        going_right = random.bernoulli(direction_key)
        subtree = _build_subtree(
            tree, going_right, subtree_key, step_size, value_and_grad_fn,
            inv_mass_matrix, energy0, divergence_threshold, z_ckpts, p_ckpts,
        )
        tree = _combine_tree(tree, subtree, going_right, transition_key, biased=True)
        return tree, key

    tree, _ = lax.while_loop(cond_fn, body_fn, (tree, key_tree))

    proposal = tree.proposal
    new_state = NUTSState(
        position=proposal.position,
        log_prob=proposal.log_prob,
        grad_log_prob=proposal.grad_log_prob,
    )
    info = NUTSInfo(
        tree_depth=tree.depth,
        accept_prob=tree.sum_accept_prob / jnp.maximum(tree.num_proposals, 1),
        divergent=tree.diverging,
        energy=tree.proposal_energy,
        num_steps=tree.num_proposals,
        nonfinite=tree.nonfinite,
    )
    return new_state, info
