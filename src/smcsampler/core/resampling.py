"""Resampling algorithms for the Selection stage.

This module provides the resampling schemes a run can select:
- Systematic resampling (default, O(N), lowest variance)
- Multinomial resampling (simple, O(N log N))
- Stratified resampling (O(N), good variance properties)
- Residual resampling (O(N), deterministic copies plus multinomial remainder)

Every scheme is a pure function of a JAX key, so a seeded run always draws
the same ancestors.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, Int, PRNGKeyArray, jaxtyped

from smcsampler.config import ResamplingMethod

__all__ = [
    "systematic_resample",
    "multinomial_resample",
    "stratified_resample",
    "residual_resample",
    "resample",
]


def _inverse_cdf(
    log_weights: Float[Array, " n_particles"],
    positions: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    n_particles = log_weights.shape[0]
    weights = jnp.exp(log_weights - jax.scipy.special.logsumexp(log_weights))
    cumsum = jnp.cumsum(weights)
    # Rounding can leave cumsum[-1] slightly below one
    cumsum = cumsum.at[-1].set(1.0)
    indices = jnp.searchsorted(cumsum, positions, side="right")
    return jnp.clip(indices, 0, n_particles - 1)


@jaxtyped(typechecker=beartype)
def systematic_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Systematic resampling (O(N), lowest variance).

    Uses a single uniform random number to generate all samples,
    resulting in the lowest variance among resampling methods.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    n_particles = log_weights.shape[0]
    u0 = jax.random.uniform(key) / n_particles
    positions = u0 + jnp.arange(n_particles) / n_particles
    return _inverse_cdf(log_weights, positions)


@jaxtyped(typechecker=beartype)
def multinomial_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Multinomial resampling (simple but higher variance).

    Samples independently from the categorical distribution defined by weights.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    n_particles = log_weights.shape[0]
    log_probs = log_weights - jax.scipy.special.logsumexp(log_weights)
    return jax.random.categorical(key, log_probs, shape=(n_particles,))


@jaxtyped(typechecker=beartype)
def stratified_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Stratified resampling (O(N), good variance properties).

    Divides [0,1] into N strata and samples one point from each stratum.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    n_particles = log_weights.shape[0]
    u = jax.random.uniform(key, shape=(n_particles,))
    positions = (jnp.arange(n_particles) + u) / n_particles
    return _inverse_cdf(log_weights, positions)


@jaxtyped(typechecker=beartype)
def residual_resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
) -> Int[Array, " n_particles"]:
    """Residual resampling.

    First deterministically copies floor(N*w_i) copies of particle i,
    then multinomial samples the remaining particles from residual weights.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    n_particles = log_weights.shape[0]

    weights = jnp.exp(log_weights - jax.scipy.special.logsumexp(log_weights))
    scaled_weights = n_particles * weights

    # Deterministic part: floor(N * w_i) copies
    counts = jnp.floor(scaled_weights).astype(jnp.int32)
    n_deterministic = jnp.sum(counts)

    # Residual weights for the stochastic part; uniform if nothing is left
    residuals = scaled_weights - counts
    residual_total = jnp.sum(residuals)
    residuals = jnp.where(
        residual_total > 0,
        residuals / jnp.where(residual_total > 0, residual_total, 1.0),
        1.0 / n_particles,
    )

    det_indices = jnp.repeat(
        jnp.arange(n_particles), counts, total_repeat_length=n_particles
    )
    stoch_indices = jax.random.choice(
        key, n_particles, shape=(n_particles,), p=residuals, replace=True
    )

    idx = jnp.arange(n_particles)
    return jnp.where(idx < n_deterministic, det_indices, stoch_indices)


_METHODS = {
    "systematic": systematic_resample,
    "multinomial": multinomial_resample,
    "stratified": stratified_resample,
    "residual": residual_resample,
}


def resample(
    key: PRNGKeyArray,
    log_weights: Float[Array, " n_particles"],
    method: ResamplingMethod = "systematic",
) -> Int[Array, " n_particles"]:
    """Resample particles according to specified method.

    Parameters
    ----------
    key : PRNGKeyArray
        JAX random key.
    log_weights : Array
        Log-weights (not necessarily normalized).
    method : str
        Resampling method: "systematic", "multinomial", "stratified" or
        "residual".

    Returns
    -------
    indices : Array
        Resampled particle indices.
    """
    if method not in _METHODS:
        raise ValueError(f"Unknown resampling method: {method!r}")
    return _METHODS[method](key, log_weights)
