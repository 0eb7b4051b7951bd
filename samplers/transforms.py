"""Bijections between constrained parameter spaces and R^D.

Every transform exposes the same pair of maps:

- ``to_unconstrained(x) -> (u, log|du/dx|)``
- ``to_constrained(u) -> (x, log|dx/du|)``

Samplers only ever move in unconstrained space. The density they see is
``log_target(to_constrained(u)) + log|dx/du|``, which accounts for the change
of volume so that the constrained marginals are unchanged.
"""
from __future__ import annotations
from typing import Sequence, Tuple

import jax
import jax.numpy as jnp

# Type aliases
Array = jnp.ndarray


class Transform:
    """Base class for elementwise bijections acting on a parameter vector."""

    def to_unconstrained(self, x: Array) -> Tuple[Array, Array]:
        raise NotImplementedError

    def to_constrained(self, u: Array) -> Tuple[Array, Array]:
        raise NotImplementedError

    def log_jacobian(self, u: Array) -> Array:
        """log|dx/du| summed over coordinates."""
        return self.to_constrained(u)[1]


class IdentityTransform(Transform):
    """Unconstrained parameters; zero log-Jacobian."""

    def to_unconstrained(self, x):
        x = jnp.asarray(x)
        return x, jnp.zeros((), dtype=x.dtype)

    def to_constrained(self, u):
        u = jnp.asarray(u)
        return u, jnp.zeros((), dtype=u.dtype)

    def __repr__(self):
        return "IdentityTransform()"


class IntervalTransform(Transform):
    """Logistic map of R onto the open interval (lower, upper).

    u = logit((x - a) / (b - a)),   x = a + (b - a) * sigmoid(u)
    log|dx/du| = log(b - a) + u - 2 * log(1 + exp(u))
    """

    def __init__(self, lower: float = 0.0, upper: float = 1.0):
        if not upper > lower:
            raise ValueError(f"upper must exceed lower, got ({lower}, {upper})")
        self.lower = float(lower)
        self.upper = float(upper)

    def to_unconstrained(self, x):
        x = jnp.asarray(x)
        width = self.upper - self.lower
        t = (x - self.lower) / width
        u = jnp.log(t) - jnp.log1p(-t)
        # log|du/dx| = -log|dx/du|
        log_jac = -jnp.sum(jnp.log(width) + jnp.log(t) + jnp.log1p(-t))
        return u, log_jac

    def to_constrained(self, u):
        u = jnp.asarray(u)
        width = self.upper - self.lower
        x = self.lower + width * jax.nn.sigmoid(u)
        # log_sigmoid(u) + log_sigmoid(-u) == u - 2 * log(1 + exp(u)), without overflow
        log_jac = jnp.sum(jnp.log(width) + jax.nn.log_sigmoid(u) + jax.nn.log_sigmoid(-u))
        return x, log_jac

    def __repr__(self):
        return f"IntervalTransform(lower={self.lower}, upper={self.upper})"


class LowerBoundTransform(Transform):
    """Exponential map of R onto (lower, inf), for scale parameters."""

    def __init__(self, lower: float = 0.0):
        self.lower = float(lower)

    def to_unconstrained(self, x):
        x = jnp.asarray(x)
        u = jnp.log(x - self.lower)
        return u, -jnp.sum(u)

    def to_constrained(self, u):
        u = jnp.asarray(u)
        return self.lower + jnp.exp(u), jnp.sum(u)

    def __repr__(self):
        return f"LowerBoundTransform(lower={self.lower})"


class StackedTransform(Transform):
    """Apply a different transform to consecutive blocks of the parameter vector.

    Args:
        transforms: One transform per block.
        sizes: Length of each block. Defaults to one coordinate per transform.
    """

    def __init__(self, transforms: Sequence[Transform], sizes: Sequence[int] = None):
        self.transforms = list(transforms)
        if sizes is None:
            sizes = [1] * len(self.transforms)
        if len(sizes) != len(self.transforms):
            raise ValueError("sizes must have one entry per transform.")
        self.sizes = [int(s) for s in sizes]
        self.dim = sum(self.sizes)

    def _apply(self, v, method):
        v = jnp.asarray(v)
        if v.shape[-1] != self.dim:
            raise ValueError(f"Expected {self.dim} coordinates, got shape {v.shape}.")
        outputs = []
        log_jac = jnp.zeros((), dtype=v.dtype)
        start = 0
        for transform, size in zip(self.transforms, self.sizes):
            block, block_log_jac = getattr(transform, method)(v[..., start:start + size])
            outputs.append(block)
            log_jac = log_jac + block_log_jac
            start += size
        return jnp.concatenate(outputs, axis=-1), log_jac

    def to_unconstrained(self, x):
        return self._apply(x, "to_unconstrained")

    def to_constrained(self, u):
        return self._apply(u, "to_constrained")

    def __repr__(self):
        parts = ", ".join(f"{t!r}x{s}" for t, s in zip(self.transforms, self.sizes))
        return f"StackedTransform([{parts}])"
