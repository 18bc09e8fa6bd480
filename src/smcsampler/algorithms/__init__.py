"""Stages of the tempered SMC recursion.

- Tempering - fixed power schedule or adaptive (ESS-targeting) schedule
- Correction - incremental reweighting and log evidence increments
- Selection - ESS monitoring and resampling
- Mutation - blocked mixture-proposal Metropolis-Hastings
- Adaptation - proposal covariance and step-size controller
- Driver - cold start, time-tempered warm start, checkpoint/resume
"""

# Adaptation
from smcsampler.algorithms.adaptation import (
    adapt,
    adapt_step_size,
    proposal_moments,
    step_size_factor,
)

# Correction
from smcsampler.algorithms.correction import correct, reweight

# Mutation
from smcsampler.algorithms.mutation import (
    evaluate_log_priors,
    mixture_log_density,
    mixture_proposal,
    mutate,
    random_blocks,
    robust_cholesky,
)

# Selection
from smcsampler.algorithms.selection import resample_cloud, select

# Driver
from smcsampler.algorithms.smc import (
    initialize_cloud,
    smc,
    smc_stage,
    warm_start_cloud,
)

# Tempering
from smcsampler.algorithms.tempering import (
    adaptive_next_phi,
    fixed_next_phi,
    fixed_schedule,
    incremental_log_weights,
    next_phi,
)

__all__ = [
    # Adaptation
    "adapt",
    "adapt_step_size",
    "proposal_moments",
    "step_size_factor",
    # Correction
    "correct",
    "reweight",
    # Mutation
    "evaluate_log_priors",
    "mixture_log_density",
    "mixture_proposal",
    "mutate",
    "random_blocks",
    "robust_cholesky",
    # Selection
    "resample_cloud",
    "select",
    # Driver
    "initialize_cloud",
    "smc",
    "smc_stage",
    "warm_start_cloud",
    # Tempering
    "adaptive_next_phi",
    "fixed_next_phi",
    "fixed_schedule",
    "incremental_log_weights",
    "next_phi",
]
