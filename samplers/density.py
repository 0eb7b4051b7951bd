"""Log-density providers for gradient-based samplers.

A target is anything exposing ``log_density(params) -> real`` or a plain
callable with the same signature, written with ``jax.numpy`` so that JAX can
differentiate it. ``DensityProvider`` moves the target into unconstrained
space through a ``Transform`` and pairs it with ``jax.value_and_grad``.
"""
from __future__ import annotations
from typing import Any, Callable, NamedTuple, Optional, Tuple

import numpy as np
import jax
import jax.numpy as jnp
from jax import vmap

from samplers.errors import NonFiniteDensity
from samplers.transforms import IdentityTransform, Transform

# Type aliases
Array = jnp.ndarray
LogProbFn = Callable[[Array], Array]  # Maps x -> log p(x)


class LogDensityResult(NamedTuple):
    """Log density and its gradient at one unconstrained point."""
    value: float
    gradient: np.ndarray


def _resolve_log_density(target: Any) -> LogProbFn:
    log_density = getattr(target, "log_density", None)
    if callable(log_density):
        return log_density
    if callable(target):
        return target
    raise TypeError(
        "Target must be callable or expose a log_density(params) method, "
        f"got {type(target).__name__}."
    )


class DensityProvider:
    """Unconstrained log posterior with gradients from JAX.

    Args:
        target: Object with ``log_density(params)`` or a callable log density
            over constrained parameters.
        dim: Dimension of the parameter vector.
        transform: Map between constrained and unconstrained space. Defaults
            to the identity.
    """

    def __init__(self, target: Any, dim: int, transform: Optional[Transform] = None):
        if int(dim) < 1:
            raise ValueError(f"dim must be positive, got {dim}")
        self.dim = int(dim)
        self.transform = transform if transform is not None else IdentityTransform()
        self._log_target = _resolve_log_density(target)
        self._value_and_grad = jax.value_and_grad(self.log_posterior)
        self._evaluate = jax.jit(self.value_and_grad)
        self._constrain = jax.jit(vmap(lambda u: self.transform.to_constrained(u)[0]))

    def log_posterior(self, u: Array) -> Array:
        """log_target(to_constrained(u)) + log|dx/du|."""
        x, log_jac = self.transform.to_constrained(u)
        return jnp.asarray(self._log_target(x), dtype=u.dtype) + log_jac

    def value_and_grad(self, u: Array) -> Tuple[Array, Array]:
        """Traceable log posterior and gradient.

        A non-finite value or gradient comes back as ``(-inf, zeros)`` so that
        the corresponding leapfrog step has infinite energy and is rejected.
        """
        value, grad = self._value_and_grad(u)
        finite = jnp.isfinite(value) & jnp.all(jnp.isfinite(grad))
        value = jnp.where(finite, value, -jnp.inf)
        grad = jnp.where(finite, grad, jnp.zeros_like(grad))
        return value, grad

    def evaluate_with_gradient(self, u) -> LogDensityResult:
        """Evaluate on the host, raising NonFiniteDensity on NaN/Inf."""
        u = jnp.asarray(u, dtype=jnp.float64)
        if u.shape != (self.dim,):
            raise ValueError(f"Expected position of shape ({self.dim},), got {u.shape}.")
        value, grad = self._evaluate(u)
        value = float(value)
        if not np.isfinite(value):
            raise NonFiniteDensity(np.asarray(u), value)
        return LogDensityResult(value=value, gradient=np.asarray(grad))

    def constrain(self, u) -> np.ndarray:
        """Map one unconstrained position to the constrained space."""
        x, _ = self.transform.to_constrained(jnp.asarray(u, dtype=jnp.float64))
        return np.asarray(x)

    def unconstrain(self, x) -> np.ndarray:
        """Map one constrained position to the unconstrained space."""
        u, _ = self.transform.to_unconstrained(jnp.asarray(x, dtype=jnp.float64))
        return np.asarray(u)

    def constrain_draws(self, draws) -> np.ndarray:
        """Map draws of shape (..., dim) to the constrained space."""
        draws = jnp.asarray(draws, dtype=jnp.float64)
        flat = draws.reshape(-1, self.dim)
        return np.asarray(self._constrain(flat)).reshape(draws.shape)

    def __repr__(self):
        return f"DensityProvider(dim={self.dim}, transform={self.transform!r})"


def as_density_provider(
    target: Any, dim: Optional[int] = None, transform: Optional[Transform] = None
) -> DensityProvider:
    """Wrap ``target`` unless it already is a DensityProvider."""
    if isinstance(target, DensityProvider):
        if transform is not None and transform is not target.transform:
            raise ValueError("Cannot override the transform of an existing DensityProvider.")
        return target
    if dim is None:
        dim = getattr(target, "dim", None)
    if dim is None:
        raise ValueError("dim must be given when the target does not define one.")
    if transform is None:
        transform = getattr(target, "transform", None)
    return DensityProvider(target, dim, transform)
