"""Selection stage: monitor degeneracy and resample when needed."""

from __future__ import annotations

import logging

import jax.numpy as jnp
from jaxtyping import PRNGKeyArray

from smcsampler.config import ResamplingMethod
from smcsampler.core.particles import ParticleCloud
from smcsampler.core.resampling import resample
from smcsampler.core.weights import ess_from_weights

__all__ = [
    "resample_cloud",
    "select",
]

logger = logging.getLogger(__name__)


def resample_cloud(
    key: PRNGKeyArray, cloud: ParticleCloud, method: ResamplingMethod = "systematic"
) -> ParticleCloud:
    """Draw N ancestors proportionally to the weights and reset weights to 1."""
    ancestors = resample(key, jnp.log(cloud.weights), method)
    return cloud.replace(
        theta=cloud.theta[ancestors],
        log_likelihood=cloud.log_likelihood[ancestors],
        old_log_likelihood=cloud.old_log_likelihood[ancestors],
        log_prior=cloud.log_prior[ancestors],
        weights=jnp.ones_like(cloud.weights),
    )


def select(
    key: PRNGKeyArray,
    cloud: ParticleCloud,
    threshold_ratio: float,
    method: ResamplingMethod = "systematic",
) -> tuple[ParticleCloud, float, bool]:
    """Resample if ESS < threshold_ratio * N.

    Returns
    -------
    cloud : ParticleCloud
        The (possibly resampled) cloud.
    ess : float
        ESS before any resampling.
    resampled : bool
        Whether the population was resampled.
    """
    n_particles = cloud.n_particles
    ess = float(ess_from_weights(cloud.weights))
    resampled = ess < threshold_ratio * n_particles
    if resampled:
        cloud = resample_cloud(key, cloud, method)
        logger.debug(
            "ESS %.1f < %.1f, resampled with %s",
            ess, threshold_ratio * n_particles, method,
        )
    return cloud, ess, resampled
