"""Mutation stage: Metropolis-Hastings moves of every particle.

Each particle runs ``n_mh_steps`` MH steps targeting

    pi_phi(theta) ~ p(Y | theta)^phi * p(Y_old | theta)^(1 - phi) * p(theta)

(the old-vintage factor is 1 on a cold start). The parameter vector is split
into random blocks that are updated in turn. Proposals come from a
three-component mixture, with c the step size, Sigma the proposal covariance
and mu the population mean, restricted to the block:

    alpha           N(theta, c^2 Sigma)        random walk
    (1 - alpha) / 2 N(theta, c^2 diag Sigma)   diagonal random walk
    (1 - alpha) / 2 N(mu,    c^2 Sigma)        independence draw

All particles propose together; the likelihoods of in-support proposals are
handed to the dispatcher as one batch per block update, and the accept/reject
decisions are applied once every evaluation has returned.
"""

from __future__ import annotations

import logging
import math

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, Float, Int, PRNGKeyArray, jaxtyped

from smcsampler.core.densities import mvn_log_density
from smcsampler.core.particles import ParticleCloud, tempered_log_likelihood
from smcsampler.errors import StageError
from smcsampler.interfaces import Prior
from smcsampler.parallel import LikelihoodDispatcher

__all__ = [
    "robust_cholesky",
    "random_blocks",
    "mixture_log_density",
    "mixture_proposal",
    "evaluate_log_priors",
    "mutate",
]

logger = logging.getLogger(__name__)


def _is_valid_factor(chol) -> bool:
    return bool(jnp.all(jnp.isfinite(chol))) and bool(jnp.all(jnp.diag(chol) > 0))


def robust_cholesky(
    cov: Float[Array, "dim dim"],
    jitter: float = 1e-10,
    max_iterations: int = 10,
) -> Float[Array, "dim dim"] | None:
    """Cholesky factor of ``cov``, adding diagonal jitter if needed.

    The jitter starts at ``jitter`` times the mean variance and grows
    tenfold per attempt. Returns None if no attempt yields a finite factor.
    """
    chol = jnp.linalg.cholesky(cov)
    if _is_valid_factor(chol):
        return chol

    dim = cov.shape[0]
    scale = float(jnp.mean(jnp.diag(cov)))
    if not math.isfinite(scale) or scale <= 0.0:
        scale = 1.0
    for i in range(max_iterations):
        eps = jitter * scale * 10**i
        chol = jnp.linalg.cholesky(cov + eps * jnp.eye(dim, dtype=cov.dtype))
        if _is_valid_factor(chol):
            logger.debug("Covariance made positive definite with jitter %.3g", eps)
            return chol
        logger.debug("Jittering attempt %d (jitter %.3g) failed", i, eps)
    return None


def random_blocks(key: PRNGKeyArray, n_params: int, n_blocks: int) -> list[np.ndarray]:
    """Randomly partition parameter indices into ``n_blocks`` blocks."""
    if n_blocks == 1:
        return [np.arange(n_params)]
    permutation = np.asarray(jax.random.permutation(key, n_params))
    return [np.sort(block) for block in np.array_split(permutation, n_blocks)]


def _mixture_weights(alpha: float) -> Float[Array, " 3"]:
    return jnp.array([alpha, (1.0 - alpha) / 2, (1.0 - alpha) / 2])


@jaxtyped(typechecker=beartype)
def mixture_log_density(
    x: Float[Array, "n dim"],
    center: Float[Array, "n dim"],
    mean: Float[Array, " dim"],
    chol_full: Float[Array, "dim dim"],
    chol_diag: Float[Array, "dim dim"],
    alpha: float,
) -> Float[Array, " n"]:
    """Log density of the mixture proposal q(x | center)."""
    components = jnp.stack(
        [
            mvn_log_density(x, center, chol_full),
            mvn_log_density(x, center, chol_diag),
            mvn_log_density(x, jnp.broadcast_to(mean, x.shape), chol_full),
        ]
    )
    log_w = jnp.log(_mixture_weights(alpha)).astype(components.dtype)
    return jax.scipy.special.logsumexp(components + log_w[:, None], axis=0)


@jaxtyped(typechecker=beartype)
def mixture_proposal(
    key: PRNGKeyArray,
    center: Float[Array, "n dim"],
    mean: Float[Array, " dim"],
    chol_full: Float[Array, "dim dim"],
    chol_diag: Float[Array, "dim dim"],
    alpha: float,
) -> Float[Array, "n dim"]:
    """Draw one proposal per row of ``center`` from the mixture."""
    n, dim = center.shape
    component_key, noise_key = jax.random.split(key)
    component = jax.random.choice(
        component_key, 3, shape=(n,), p=_mixture_weights(alpha)
    )[:, None]
    z = jax.random.normal(noise_key, shape=(n, dim), dtype=center.dtype)
    full = z @ chol_full.T
    diag = z @ chol_diag.T
    return jnp.where(
        component == 0,
        center + full,
        jnp.where(component == 1, center + diag, mean + full),
    )


def evaluate_log_priors(prior: Prior, thetas: np.ndarray) -> np.ndarray:
    """Log prior of every row; NaN is treated as outside the support."""
    values = np.array([float(prior.log_prob(theta)) for theta in thetas])
    return np.where(np.isnan(values), -np.inf, values)


@jaxtyped(typechecker=beartype)
def _accept(
    key: PRNGKeyArray,
    log_alpha: Float[Array, " n"],
    in_support: Int[Array, " n"],
) -> Int[Array, " n"]:
    log_u = jnp.log(jax.random.uniform(key, shape=log_alpha.shape, dtype=log_alpha.dtype))
    return ((log_u < log_alpha) & (in_support > 0)).astype(jnp.int32)


def mutate(
    key: PRNGKeyArray,
    cloud: ParticleCloud,
    dispatcher: LikelihoodDispatcher,
    prior: Prior,
    data: np.ndarray,
    old_data: np.ndarray | None = None,
    *,
    n_mh_steps: int = 1,
    n_blocks: int = 1,
    mixture_proportion: float = 0.9,
    covariance_jitter: float = 1e-10,
    jitter_max_iterations: int = 10,
) -> tuple[ParticleCloud, float]:
    """Move every particle with ``n_mh_steps`` blocked MH steps at ``cloud.phi``.

    Parameters
    ----------
    key : PRNGKeyArray
        Random key.
    cloud : ParticleCloud
        Cloud after Correction and Selection.
    dispatcher : LikelihoodDispatcher
        Evaluates batches of likelihoods.
    prior : Prior
        Prior; proposals with log-prior ``-inf`` are rejected before any
        likelihood evaluation.
    data : ndarray
        Current observation matrix.
    old_data : ndarray, optional
        Previous data vintage, for time-tempered runs.
    n_mh_steps : int
        MH steps per particle.
    n_blocks : int
        Number of random parameter blocks.
    mixture_proportion : float
        Weight of the full-covariance random-walk component.
    covariance_jitter, jitter_max_iterations :
        Regularisation of a covariance that is not positive definite.

    Returns
    -------
    cloud : ParticleCloud
        Mutated cloud; weights unchanged.
    acceptance_rate : float
        Accepted proposals / (N * n_mh_steps * n_blocks).

    Raises
    ------
    StageError
        If the proposal covariance cannot be factorised, or if every
        likelihood evaluation of the stage failed.
    """
    phi = cloud.phi
    n_particles, n_params = cloud.theta.shape
    c2 = cloud.step_size**2
    alpha = float(mixture_proportion)
    time_tempered = old_data is not None

    theta = cloud.theta
    log_lik = cloud.log_likelihood
    old_log_lik = cloud.old_log_likelihood
    log_prior = cloud.log_prior

    block_key, key = jax.random.split(key)
    blocks = random_blocks(block_key, n_params, n_blocks)

    # Factorise each block of the proposal covariance once per stage
    factors = []
    for block in blocks:
        cov_b = c2 * cloud.proposal_covariance[np.ix_(block, block)]
        chol_full = robust_cholesky(cov_b, covariance_jitter, jitter_max_iterations)
        chol_diag = robust_cholesky(
            jnp.diag(jnp.diag(cov_b)), covariance_jitter, jitter_max_iterations
        )
        if chol_full is None or chol_diag is None:
            raise StageError(
                "Proposal covariance is not positive definite after jittering",
                stage=cloud.stage,
                phi=phi,
            )
        factors.append((chol_full, chol_diag))

    n_accepted = 0
    n_evaluated = 0
    n_failed = 0
    n_evaluated_old = 0
    n_failed_old = 0
    for step in range(n_mh_steps):
        for block, (chol_full, chol_diag) in zip(blocks, factors):
            key, proposal_key, accept_key = jax.random.split(key, 3)
            current_b = theta[:, block]
            mean_b = cloud.proposal_mean[block]
            proposed_b = mixture_proposal(
                proposal_key, current_b, mean_b, chol_full, chol_diag, alpha
            )
            proposed = theta.at[:, block].set(proposed_b)
            proposed_np = np.asarray(proposed)

            new_log_prior = evaluate_log_priors(prior, proposed_np)
            in_support = np.isfinite(new_log_prior)

            new_log_lik = np.full(n_particles, -np.inf)
            new_old_log_lik = (
                np.full(n_particles, -np.inf) if time_tempered else np.zeros(n_particles)
            )
            if in_support.any():
                values, failed = dispatcher.evaluate(proposed_np[in_support], data)
                new_log_lik[in_support] = values
                n_evaluated += failed.size
                n_failed += int(failed.sum())
                if time_tempered:
                    old_values, old_failed = dispatcher.evaluate(
                        proposed_np[in_support], old_data
                    )
                    new_old_log_lik[in_support] = old_values
                    n_evaluated_old += old_failed.size
                    n_failed_old += int(old_failed.sum())

            new_log_lik = jnp.asarray(new_log_lik, dtype=theta.dtype)
            new_old_log_lik = jnp.asarray(new_old_log_lik, dtype=theta.dtype)
            new_log_prior = jnp.asarray(new_log_prior, dtype=theta.dtype)

            log_q_ratio = mixture_log_density(
                current_b, proposed_b, mean_b, chol_full, chol_diag, alpha
            ) - mixture_log_density(
                proposed_b, current_b, mean_b, chol_full, chol_diag, alpha
            )
            log_alpha = (
                tempered_log_likelihood(new_log_lik, new_old_log_lik, phi)
                - tempered_log_likelihood(log_lik, old_log_lik, phi)
                + new_log_prior
                - log_prior
                + log_q_ratio
            )
            log_alpha = jnp.where(jnp.isnan(log_alpha), -jnp.inf, log_alpha)
            accept = _accept(
                accept_key, log_alpha, jnp.asarray(in_support, dtype=jnp.int32)
            ).astype(bool)

            theta = jnp.where(accept[:, None], proposed, theta)
            log_lik = jnp.where(accept, new_log_lik, log_lik)
            old_log_lik = jnp.where(accept, new_old_log_lik, old_log_lik)
            log_prior = jnp.where(accept, new_log_prior, log_prior)
            n_accepted += int(jnp.sum(accept))

        logger.debug("MH step %d/%d done", step + 1, n_mh_steps)

    if (n_evaluated > 0 and n_failed == n_evaluated) or (
        n_evaluated_old > 0 and n_failed_old == n_evaluated_old
    ):
        raise StageError(
            "Every likelihood evaluation failed during mutation; check that "
            "the model and data match",
            stage=cloud.stage,
            phi=phi,
        )

    acceptance_rate = n_accepted / (n_particles * n_mh_steps * len(blocks))
    mutated = cloud.replace(
        theta=theta,
        log_likelihood=log_lik,
        old_log_likelihood=old_log_lik,
        log_prior=log_prior,
    )
    return mutated, acceptance_rate
