"""Particle cloud, weights and resampling."""

from smcsampler.core.densities import mvn_log_density
from smcsampler.core.particles import (
    Particle,
    ParticleCloud,
    init_cloud,
    tempered_log_likelihood,
)
from smcsampler.core.resampling import (
    multinomial_resample,
    resample,
    residual_resample,
    stratified_resample,
    systematic_resample,
)
from smcsampler.core.weights import (
    compute_ess,
    ess_from_weights,
    log_mean_exp,
    normalize_log_weights,
    normalize_to_n,
    weighted_cov,
    weighted_mean,
)

__all__ = [
    "mvn_log_density",
    "Particle",
    "ParticleCloud",
    "init_cloud",
    "tempered_log_likelihood",
    "systematic_resample",
    "multinomial_resample",
    "stratified_resample",
    "residual_resample",
    "resample",
    "compute_ess",
    "ess_from_weights",
    "log_mean_exp",
    "normalize_log_weights",
    "normalize_to_n",
    "weighted_cov",
    "weighted_mean",
]
