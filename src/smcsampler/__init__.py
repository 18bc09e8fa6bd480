"""Tempered Sequential Monte Carlo for structural model posteriors.

>>> from smcsampler import SMCConfig, smc
>>> cloud = smc(likelihood, prior, data, SMCConfig(n_particles=1000, n_phi=100))
>>> cloud.weighted_mean(), cloud.log_evidence
"""

from smcsampler.algorithms.smc import smc
from smcsampler.checkpoint import load_checkpoint, load_cloud, save_checkpoint, save_cloud
from smcsampler.config import SMCConfig
from smcsampler.core.particles import Particle, ParticleCloud
from smcsampler.errors import CheckpointError, ConfigurationError, SMCError, StageError
from smcsampler.interfaces import FunctionLikelihood, Likelihood, Prior
from smcsampler.parallel import LikelihoodDispatcher

__version__ = "0.1.0"

__all__ = [
    "smc",
    "SMCConfig",
    "Particle",
    "ParticleCloud",
    "Likelihood",
    "Prior",
    "FunctionLikelihood",
    "LikelihoodDispatcher",
    "save_checkpoint",
    "load_checkpoint",
    "save_cloud",
    "load_cloud",
    "SMCError",
    "ConfigurationError",
    "StageError",
    "CheckpointError",
]
