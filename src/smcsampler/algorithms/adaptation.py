"""Adaptation of the mutation proposal between stages.

The proposal covariance is re-estimated from the weighted particle
population after every Mutation, and the step size c is nudged towards the
target acceptance rate with the logistic rule of Herbst and Schorfheide
(2014):

    c <- c * (0.95 + 0.10 * sigmoid(16 * (rate - target)))

The factor lies in (0.95, 1.05) and increases with the observed rate.
"""

from __future__ import annotations

import logging

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from smcsampler.core.particles import ParticleCloud
from smcsampler.core.weights import weighted_cov, weighted_mean
from smcsampler.errors import StageError

__all__ = [
    "step_size_factor",
    "adapt_step_size",
    "proposal_moments",
    "adapt",
]

logger = logging.getLogger(__name__)


@jaxtyped(typechecker=beartype)
def step_size_factor(
    acceptance_rate: float | Float[Array, ""],
    target_accept: float,
) -> Float[Array, ""]:
    """Multiplicative step-size update, in (0.95, 1.05)."""
    return 0.95 + 0.10 * jax.nn.sigmoid(16.0 * (jnp.asarray(acceptance_rate) - target_accept))


def adapt_step_size(
    step_size: float,
    acceptance_rate: float,
    target_accept: float,
    min_step_size: float,
) -> float:
    """Return the step size for the next stage, floored at ``min_step_size``."""
    new = step_size * float(step_size_factor(float(acceptance_rate), target_accept))
    return max(new, min_step_size)


@jaxtyped(typechecker=beartype)
def proposal_moments(
    theta: Float[Array, "n_particles n_params"],
    weights: Float[Array, " n_particles"],
) -> tuple[Float[Array, " n_params"], Float[Array, "n_params n_params"]]:
    """Weighted mean and covariance of the population."""
    return weighted_mean(theta, weights), weighted_cov(theta, weights)


def adapt(
    cloud: ParticleCloud,
    acceptance_rate: float,
    *,
    target_accept: float,
    min_step_size: float,
    adapt_step_size_enabled: bool = True,
) -> ParticleCloud:
    """Recompute the proposal moments and step size after a Mutation.

    Raises
    ------
    StageError
        If the covariance estimate is not finite.
    """
    mean, cov = proposal_moments(cloud.theta, cloud.weights)
    if not bool(jnp.all(jnp.isfinite(cov))) or not bool(jnp.all(jnp.isfinite(mean))):
        raise StageError(
            "Proposal covariance is not finite", stage=cloud.stage, phi=cloud.phi
        )

    step_size = cloud.step_size
    if adapt_step_size_enabled:
        step_size = adapt_step_size(step_size, acceptance_rate, target_accept, min_step_size)
    logger.debug(
        "Adapted step size %.4g -> %.4g (acceptance %.3f, target %.3f)",
        cloud.step_size, step_size, acceptance_rate, target_accept,
    )
    return cloud.replace(proposal_mean=mean, proposal_covariance=cov, step_size=step_size)
