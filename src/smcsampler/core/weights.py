"""Weight utilities.

Particle weights are stored on the linear scale and normalised to sum to the
number of particles N. The log-scale helpers below are used wherever weights
are combined with likelihood increments, to stay clear of overflow.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

__all__ = [
    "compute_ess",
    "normalize_log_weights",
    "log_mean_exp",
    "ess_from_weights",
    "normalize_to_n",
    "weighted_mean",
    "weighted_cov",
]


@jaxtyped(typechecker=beartype)
def compute_ess(log_weights: Float[Array, " n_particles"]) -> Float[Array, ""]:
    """Effective sample size of unnormalised log-weights.

    ESS = (sum w)^2 / sum w^2, evaluated in log space.
    """
    log_normalized = log_weights - jax.scipy.special.logsumexp(log_weights)
    return jnp.exp(-jax.scipy.special.logsumexp(2 * log_normalized))


@jaxtyped(typechecker=beartype)
def normalize_log_weights(
    log_weights: Float[Array, " n_particles"],
) -> Float[Array, " n_particles"]:
    """Shift log-weights so that the weights sum to one."""
    return log_weights - jax.scipy.special.logsumexp(log_weights)


@jaxtyped(typechecker=beartype)
def log_mean_exp(log_values: Float[Array, " n"]) -> Float[Array, ""]:
    """Stable log(mean(exp(x)))."""
    return jax.scipy.special.logsumexp(log_values) - jnp.log(log_values.shape[0])


@jaxtyped(typechecker=beartype)
def ess_from_weights(weights: Float[Array, " n_particles"]) -> Float[Array, ""]:
    """ESS of linear-scale weights.

    Under the sum-to-N convention this is N^2 / sum w_i^2. Returns zero when
    every weight vanishes.
    """
    total = jnp.sum(weights)
    sum_sq = jnp.sum(weights**2)
    return jnp.where(sum_sq > 0, total**2 / jnp.where(sum_sq > 0, sum_sq, 1.0), 0.0)


@jaxtyped(typechecker=beartype)
def normalize_to_n(
    log_weights: Float[Array, " n_particles"],
) -> Float[Array, " n_particles"]:
    """Turn log-weights into linear weights summing to N."""
    n_particles = log_weights.shape[0]
    return n_particles * jnp.exp(normalize_log_weights(log_weights))


@jaxtyped(typechecker=beartype)
def weighted_mean(
    particles: Float[Array, "n_particles dim"],
    weights: Float[Array, " n_particles"],
) -> Float[Array, " dim"]:
    """Weighted mean of the particle positions."""
    w = weights / jnp.sum(weights)
    return jnp.sum(particles * w[:, None], axis=0)


@jaxtyped(typechecker=beartype)
def weighted_cov(
    particles: Float[Array, "n_particles dim"],
    weights: Float[Array, " n_particles"],
) -> Float[Array, "dim dim"]:
    """Weighted covariance of the particle positions, symmetrised."""
    w = weights / jnp.sum(weights)
    centered = particles - jnp.sum(particles * w[:, None], axis=0)
    cov = jnp.einsum("i,ij,ik->jk", w, centered, centered)
    return 0.5 * (cov + cov.T)
