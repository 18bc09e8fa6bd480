"""Particle cloud for tempered SMC.

The cloud stores the population as a struct of arrays plus the run-level
history of the recursion. It is immutable: every stage returns a new cloud
through ``cloud.replace(...)``.
"""

from __future__ import annotations

import chex
import jax.numpy as jnp
from jaxtyping import Array, Bool, Float

from smcsampler.core.weights import ess_from_weights, weighted_cov, weighted_mean

__all__ = [
    "Particle",
    "ParticleCloud",
    "init_cloud",
    "tempered_log_likelihood",
]


@chex.dataclass(frozen=True)
class Particle:
    """A single parameter draw and its evaluations.

    Attributes
    ----------
    theta : Array
        Parameter vector with shape [n_params].
    log_likelihood : Array
        Log-likelihood on the current data (scalar).
    log_prior : Array
        Log prior density (scalar).
    weight : Array
        Non-negative weight (scalar).
    old_log_likelihood : Array
        Log-likelihood on the previous data vintage (scalar, zero on a
        cold start).
    """

    theta: Float[Array, " n_params"]
    log_likelihood: Float[Array, ""]
    log_prior: Float[Array, ""]
    weight: Float[Array, ""]
    old_log_likelihood: Float[Array, ""]


@chex.dataclass(frozen=True)
class ParticleCloud:
    """Immutable population of particles and recursion history.

    Attributes
    ----------
    theta : Array
        Parameter draws with shape [n_particles, n_params].
    log_likelihood : Array
        Log-likelihoods on the current data with shape [n_particles].
    old_log_likelihood : Array
        Log-likelihoods on the previous data vintage with shape
        [n_particles]; zeros unless the run is time tempered.
    log_prior : Array
        Log prior densities with shape [n_particles].
    weights : Array
        Weights normalised to sum to n_particles.
    stage : int
        Index of the last completed stage (0 for the initial cloud).
    phi : float
        Current tempering exponent.
    tempering_schedule : Array
        phi_0, ..., phi_stage.
    ess_history : Array
        ESS after each Correction, before resampling; entry 0 is the
        initial ESS.
    log_evidence_increments : Array
        Log marginal likelihood increment of each completed stage.
    resample_flags : Array
        Whether each completed stage resampled.
    acceptance_rates : Array
        Mutation acceptance rate of each completed stage.
    step_size_history : Array
        Proposal scale used by each completed stage.
    proposal_covariance : Array
        Covariance of the mutation proposal, [n_params, n_params].
    proposal_mean : Array
        Centre of the independence proposal component, [n_params].
    step_size : float
        Current proposal scale c.
    n_phi : int
        Configured number of stages of the fixed schedule.
    sampling_time : float
        Cumulative wall-clock time of the recursion in seconds.
    """

    theta: Float[Array, "n_particles n_params"]
    log_likelihood: Float[Array, " n_particles"]
    old_log_likelihood: Float[Array, " n_particles"]
    log_prior: Float[Array, " n_particles"]
    weights: Float[Array, " n_particles"]
    stage: int
    phi: float
    tempering_schedule: Float[Array, " n_stages_plus_one"]
    ess_history: Float[Array, " n_stages_plus_one"]
    log_evidence_increments: Float[Array, " n_stages"]
    resample_flags: Bool[Array, " n_stages"]
    acceptance_rates: Float[Array, " n_stages"]
    step_size_history: Float[Array, " n_stages"]
    proposal_covariance: Float[Array, "n_params n_params"]
    proposal_mean: Float[Array, " n_params"]
    step_size: float
    n_phi: int
    sampling_time: float = 0.0

    @property
    def n_particles(self) -> int:
        """Number of particles."""
        return self.theta.shape[0]

    @property
    def n_params(self) -> int:
        """Number of parameters."""
        return self.theta.shape[1]

    @property
    def ess(self) -> Float[Array, ""]:
        """Effective sample size of the current weights."""
        return ess_from_weights(self.weights)

    @property
    def log_evidence(self) -> Float[Array, ""]:
        """Accumulated estimate of the log marginal likelihood."""
        return jnp.sum(self.log_evidence_increments)

    @property
    def n_resamples(self) -> int:
        """Number of stages that resampled."""
        return int(jnp.sum(self.resample_flags))

    @property
    def finished(self) -> bool:
        """True once the likelihood is fully tempered in."""
        return self.phi >= 1.0

    def normalized_weights(self) -> Float[Array, " n_particles"]:
        """Return weights summing to one."""
        return self.weights / jnp.sum(self.weights)

    def tempered_log_likelihood(self) -> Float[Array, " n_particles"]:
        """Log-likelihood raised to the current tempering exponent."""
        return tempered_log_likelihood(self.log_likelihood, self.old_log_likelihood, self.phi)

    def log_posterior(self) -> Float[Array, " n_particles"]:
        """Unnormalised log posterior on the current data."""
        return self.log_likelihood + self.log_prior

    def weighted_mean(self) -> Float[Array, " n_params"]:
        """Compute weighted mean of particles."""
        return weighted_mean(self.theta, self.weights)

    def weighted_cov(self) -> Float[Array, "n_params n_params"]:
        """Compute weighted covariance of particles."""
        return weighted_cov(self.theta, self.weights)

    def weighted_std(self) -> Float[Array, " n_params"]:
        """Weighted marginal standard deviations."""
        return jnp.sqrt(jnp.clip(jnp.diag(self.weighted_cov()), 0.0))

    def particle(self, i: int) -> Particle:
        """Return particle ``i`` as a standalone record."""
        return Particle(
            theta=self.theta[i],
            log_likelihood=self.log_likelihood[i],
            log_prior=self.log_prior[i],
            weight=self.weights[i],
            old_log_likelihood=self.old_log_likelihood[i],
        )

    def summary(self) -> dict:
        """Run-level diagnostics as plain Python values."""
        return {
            "stage": int(self.stage),
            "phi": float(self.phi),
            "n_particles": self.n_particles,
            "ess": float(self.ess),
            "log_evidence": float(self.log_evidence),
            "n_resamples": self.n_resamples,
            "mean_acceptance_rate": (
                float(jnp.mean(self.acceptance_rates))
                if self.acceptance_rates.shape[0] > 0
                else float("nan")
            ),
            "step_size": float(self.step_size),
            "sampling_time": float(self.sampling_time),
        }


def tempered_log_likelihood(log_likelihood, old_log_likelihood, phi):
    """phi * l + (1 - phi) * l_old, the log-likelihood targeted at ``phi``."""
    # 0 * -inf is taken as 0: an untempered likelihood does not veto a draw
    new_part = jnp.where(phi > 0, phi * log_likelihood, 0.0)
    old_part = jnp.where(phi < 1, (1.0 - phi) * old_log_likelihood, 0.0)
    return new_part + old_part


def init_cloud(
    theta: Float[Array, "n_particles n_params"],
    log_likelihood: Float[Array, " n_particles"],
    log_prior: Float[Array, " n_particles"],
    *,
    step_size: float,
    n_phi: int,
    weights: Float[Array, " n_particles"] | None = None,
    old_log_likelihood: Float[Array, " n_particles"] | None = None,
    proposal_covariance: Float[Array, "n_params n_params"] | None = None,
    proposal_mean: Float[Array, " n_params"] | None = None,
) -> ParticleCloud:
    """Build the stage-0 cloud.

    Weights default to one per particle. The proposal moments default to the
    weighted moments of ``theta``.
    """
    n_particles = theta.shape[0]
    dtype = theta.dtype
    if weights is None:
        weights = jnp.ones(n_particles, dtype=dtype)
    else:
        weights = n_particles * weights / jnp.sum(weights)
    if old_log_likelihood is None:
        old_log_likelihood = jnp.zeros(n_particles, dtype=dtype)
    if proposal_covariance is None:
        proposal_covariance = weighted_cov(theta, weights)
    if proposal_mean is None:
        proposal_mean = weighted_mean(theta, weights)

    return ParticleCloud(
        theta=theta,
        log_likelihood=log_likelihood,
        old_log_likelihood=old_log_likelihood,
        log_prior=log_prior,
        weights=weights,
        stage=0,
        phi=0.0,
        tempering_schedule=jnp.zeros(1, dtype=dtype),
        ess_history=jnp.reshape(ess_from_weights(weights), (1,)),
        log_evidence_increments=jnp.zeros(0, dtype=dtype),
        resample_flags=jnp.zeros(0, dtype=bool),
        acceptance_rates=jnp.zeros(0, dtype=dtype),
        step_size_history=jnp.zeros(0, dtype=dtype),
        proposal_covariance=proposal_covariance,
        proposal_mean=proposal_mean,
        step_size=float(step_size),
        n_phi=int(n_phi),
    )
