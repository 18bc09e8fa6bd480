"""Tempered SMC driver.

Sequential Monte Carlo replaces random-walk Metropolis-Hastings for
high-dimensional posteriors by moving a population of particles from the
prior (phi = 0) to the posterior (phi = 1) through a sequence of tempered
targets. Each stage is made of three steps, following Herbst and Schorfheide
(2014), "Sequential Monte Carlo Sampling for DSGE Models":

- Correction: reweight the particles by the incremental likelihood
  p(Y | theta)^(phi_n - phi_{n-1}).
- Selection: resample when the effective sample size drops below a
  threshold.
- Mutation: move the particles with Metropolis-Hastings steps at phi_n,
  then adapt the proposal for the next stage.

A run can also be time tempered: starting from the terminal cloud of an
estimation on an earlier data vintage, the target moves from
p(Y_old | theta) p(theta) to p(Y | theta) p(theta).
"""

from __future__ import annotations

import logging
import pickle
import threading
import time
from collections.abc import Callable, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import PRNGKeyArray

from smcsampler.algorithms.adaptation import adapt
from smcsampler.algorithms.correction import correct
from smcsampler.algorithms.mutation import evaluate_log_priors, mutate
from smcsampler.algorithms.selection import select
from smcsampler.algorithms.tempering import next_phi
from smcsampler.checkpoint import (
    checkpoint_filename,
    final_filename,
    load_checkpoint,
    save_checkpoint,
    save_cloud,
)
from smcsampler.config import SMCConfig
from smcsampler.core.particles import ParticleCloud, init_cloud
from smcsampler.errors import ConfigurationError, StageError
from smcsampler.interfaces import Likelihood, Prior, as_likelihood
from smcsampler.parallel import LikelihoodDispatcher

__all__ = [
    "initialize_cloud",
    "warm_start_cloud",
    "smc_stage",
    "smc",
]

logger = logging.getLogger(__name__)

StageHook = Callable[[int, float], None]


def _as_matrix(data, name: str) -> np.ndarray:
    matrix = np.asarray(data, dtype=float)
    if matrix.ndim == 1:
        matrix = matrix[None, :]
    if matrix.ndim != 2:
        raise ConfigurationError(f"{name} must be a matrix, got shape {matrix.shape}")
    return matrix


def _draw_from_prior(prior: Prior, key: PRNGKeyArray, n: int) -> np.ndarray:
    keys = jax.random.split(key, n)
    return np.stack([np.atleast_1d(np.asarray(prior.sample(k), dtype=float)) for k in keys])


def initialize_cloud(
    key: PRNGKeyArray,
    prior: Prior,
    dispatcher: LikelihoodDispatcher,
    data: np.ndarray,
    config: SMCConfig,
) -> ParticleCloud:
    """Cold start: N independent prior draws with finite likelihood.

    Draws whose prior or likelihood is not finite are redrawn, up to
    ``config.max_initial_draw_attempts`` times.

    Raises
    ------
    StageError
        If no draw has a finite likelihood.
    """
    n_particles = config.n_particles
    key, draw_key = jax.random.split(key)
    theta = _draw_from_prior(prior, draw_key, n_particles)
    log_prior = evaluate_log_priors(prior, theta)
    log_lik, _ = dispatcher.evaluate(theta, data)
    bad = ~(np.isfinite(log_lik) & np.isfinite(log_prior))

    attempt = 0
    while bad.any() and attempt < config.max_initial_draw_attempts:
        attempt += 1
        redraw = np.flatnonzero(bad)
        key, draw_key = jax.random.split(key)
        theta[redraw] = _draw_from_prior(prior, draw_key, redraw.size)
        log_prior[redraw] = evaluate_log_priors(prior, theta[redraw])
        log_lik[redraw], _ = dispatcher.evaluate(theta[redraw], data)
        bad = ~(np.isfinite(log_lik) & np.isfinite(log_prior))

    if bad.all():
        raise StageError(
            "No draw from the prior has a finite likelihood",
            stage=0,
            phi=0.0,
            indices=np.flatnonzero(bad).tolist(),
        )
    if bad.any():
        logger.warning(
            "%d of %d initial draws still have a non-finite likelihood after %d redraws",
            int(bad.sum()), n_particles, attempt,
        )

    theta = jnp.asarray(theta)
    return init_cloud(
        theta,
        jnp.asarray(log_lik, dtype=theta.dtype),
        jnp.asarray(log_prior, dtype=theta.dtype),
        step_size=config.step_size,
        n_phi=config.n_phi,
    )


def warm_start_cloud(
    old_cloud: ParticleCloud,
    dispatcher: LikelihoodDispatcher,
    data: np.ndarray,
    old_data: np.ndarray,
    config: SMCConfig,
) -> ParticleCloud:
    """Stage-0 cloud of a time-tempered run.

    The particles and weights of ``old_cloud`` are kept; their likelihoods
    are evaluated on the full new sample and on the old vintage. The
    adapted proposal of the old run carries over.
    """
    if old_cloud.n_particles != config.n_particles:
        raise ConfigurationError(
            f"old_cloud has {old_cloud.n_particles} particles, "
            f"config.n_particles is {config.n_particles}"
        )
    theta = np.asarray(old_cloud.theta)
    log_lik, _ = dispatcher.evaluate(theta, data)
    old_log_lik, _ = dispatcher.evaluate(theta, old_data)
    if not np.isfinite(log_lik).any():
        raise StageError(
            "No particle of old_cloud has a finite likelihood on the new data",
            stage=0,
            phi=0.0,
        )

    dtype = old_cloud.theta.dtype
    return init_cloud(
        old_cloud.theta,
        jnp.asarray(log_lik, dtype=dtype),
        old_cloud.log_prior,
        weights=old_cloud.weights,
        old_log_likelihood=jnp.asarray(old_log_lik, dtype=dtype),
        step_size=old_cloud.step_size,
        n_phi=config.n_phi,
        proposal_covariance=old_cloud.proposal_covariance,
        proposal_mean=old_cloud.proposal_mean,
    )


def smc_stage(
    key: PRNGKeyArray,
    cloud: ParticleCloud,
    prior: Prior,
    dispatcher: LikelihoodDispatcher,
    data: np.ndarray,
    config: SMCConfig,
    old_data: np.ndarray | None = None,
    stage_hook: StageHook | None = None,
) -> ParticleCloud:
    """Run one Correction / Selection / Mutation / Adaptation stage."""
    stage = cloud.stage + 1
    select_key, mutate_key = jax.random.split(key)

    phi_n = next_phi(
        cloud,
        n_phi=config.n_phi,
        lam=config.lam,
        adaptive_tempering_target=config.adaptive_tempering_target,
    )
    if stage_hook is not None and config.recompute_transition_equation:
        stage_hook(stage, phi_n)

    cloud, log_evidence_increment = correct(cloud, phi_n, stage)

    cloud, ess, resampled = select(
        select_key, cloud, config.resampling_threshold, config.resampling_method
    )

    step_size = cloud.step_size
    cloud, acceptance_rate = mutate(
        mutate_key,
        cloud,
        dispatcher,
        prior,
        data,
        old_data,
        n_mh_steps=config.n_mh_steps,
        n_blocks=config.n_blocks,
        mixture_proportion=config.mixture_proportion,
        covariance_jitter=config.covariance_jitter,
        jitter_max_iterations=config.jitter_max_iterations,
    )

    cloud = adapt(
        cloud,
        acceptance_rate,
        target_accept=config.target_accept,
        min_step_size=config.min_step_size,
        adapt_step_size_enabled=config.adapt_step_size,
    )

    cloud = cloud.replace(
        ess_history=jnp.append(cloud.ess_history, ess),
        log_evidence_increments=jnp.append(
            cloud.log_evidence_increments, log_evidence_increment
        ),
        resample_flags=jnp.append(cloud.resample_flags, resampled),
        acceptance_rates=jnp.append(cloud.acceptance_rates, acceptance_rate),
        step_size_history=jnp.append(cloud.step_size_history, step_size),
    )

    logger.info(
        "Stage %d: phi = %.6f, ESS = %.1f%s, acceptance = %.3f, c = %.4f",
        stage, phi_n, ess, " (resampled)" if resampled else "",
        acceptance_rate, cloud.step_size,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("  mean: %s", np.array2string(np.asarray(cloud.weighted_mean()), precision=4))
        logger.debug("  std:  %s", np.array2string(np.asarray(cloud.weighted_std()), precision=4))
    return cloud


def smc(
    likelihood: Likelihood | Callable,
    prior: Prior,
    data,
    config: SMCConfig | None = None,
    *,
    key: PRNGKeyArray | None = None,
    old_data=None,
    old_cloud: ParticleCloud | None = None,
    continue_intermediate: bool = False,
    intermediate_stage_start: int = 0,
    filestring_addl: Sequence[str] = (),
    stage_hook: StageHook | None = None,
    halt_event: threading.Event | None = None,
) -> ParticleCloud:
    """Estimate a posterior with tempered Sequential Monte Carlo.

    Parameters
    ----------
    likelihood : Likelihood or callable
        ``log_likelihood(theta, data)``, or a plain ``fn(theta, data)``.
    prior : Prior
        Prior with ``log_prob`` and ``sample``.
    data : array_like
        Observation matrix, [n_observables, T]. For a time-tempered run,
        the full sample including the new observations.
    config : SMCConfig, optional
        Run settings; defaults to ``SMCConfig()``.
    key : PRNGKeyArray, optional
        Random key; defaults to ``PRNGKey(config.seed)``.
    old_data : array_like, optional
        Observation matrix of the previous vintage (time tempering).
    old_cloud : ParticleCloud, optional
        Terminal cloud of the estimation on ``old_data``.
    continue_intermediate : bool
        Resume from the checkpoint written after ``intermediate_stage_start``.
    intermediate_stage_start : int
        Stage of the checkpoint to resume from.
    filestring_addl : sequence of str
        Suffixes appended to checkpoint file names.
    stage_hook : callable, optional
        ``hook(stage, phi)`` called once per stage before any likelihood
        evaluation, when ``config.recompute_transition_equation`` is set.
    halt_event : threading.Event, optional
        When set, the run stops at the next stage boundary and returns the
        current (not fully tempered) cloud.

    Returns
    -------
    cloud : ParticleCloud
        Terminal cloud; ``cloud.phi == 1`` unless halted.

    Raises
    ------
    ConfigurationError
        If the arguments contradict each other or the data, e.g. a warm
        start or a time-tempered checkpoint without ``old_data``.
    StageError
        If a stage cannot proceed, e.g. on total weight collapse.
    CheckpointError
        If the checkpoint to resume from is missing or unreadable.

    Invalid field values are rejected earlier, when ``SMCConfig`` is built,
    with a ``pydantic.ValidationError``; that error is not an ``SMCError``.
    """
    config = config if config is not None else SMCConfig()
    likelihood = as_likelihood(likelihood)
    data = _as_matrix(data, "data")
    if old_data is not None:
        old_data = _as_matrix(old_data, "old_data")
        if old_data.shape[0] != data.shape[0]:
            raise ConfigurationError(
                f"old_data has {old_data.shape[0]} observables, data has {data.shape[0]}"
            )
    if old_cloud is not None and old_data is None:
        raise ConfigurationError("A warm start from old_cloud requires old_data")
    if old_data is not None and old_cloud is None and not continue_intermediate:
        raise ConfigurationError("old_data is only used with old_cloud or a resumed run")
    if continue_intermediate and config.savepath is None:
        raise ConfigurationError("continue_intermediate requires config.savepath")
    if key is None:
        key = jax.random.PRNGKey(config.seed)

    with LikelihoodDispatcher(
        likelihood,
        parallel=config.parallel,
        n_workers=config.n_workers,
        executor=config.executor,
    ) as dispatcher:
        if continue_intermediate:
            path = checkpoint_filename(config.savepath, intermediate_stage_start, filestring_addl)
            cloud, saved_key = load_checkpoint(path)
            if saved_key is not None:
                key = saved_key
            if cloud.n_particles != config.n_particles:
                raise ConfigurationError(
                    f"Checkpoint has {cloud.n_particles} particles, "
                    f"config.n_particles is {config.n_particles}"
                )
            time_tempered = bool(jnp.any(cloud.old_log_likelihood != 0))
            if time_tempered and old_data is None:
                raise ConfigurationError(
                    "Checkpoint comes from a time-tempered run; resuming it requires old_data"
                )
            if not time_tempered and old_data is not None:
                raise ConfigurationError(
                    "Checkpoint comes from a run without old_data; resume it without old_data"
                )
            logger.info("Resuming SMC from stage %d (phi = %.6f)", cloud.stage, cloud.phi)
        elif old_cloud is not None:
            logger.info(
                "Time-tempered SMC: warm start from a %d-particle cloud", old_cloud.n_particles
            )
            cloud = warm_start_cloud(old_cloud, dispatcher, data, old_data, config)
        else:
            logger.info("SMC: drawing %d particles from the prior", config.n_particles)
            key, init_key = jax.random.split(key)
            cloud = initialize_cloud(init_key, prior, dispatcher, data, config)

        if config.n_blocks > cloud.n_params:
            raise ConfigurationError(
                f"n_blocks ({config.n_blocks}) exceeds the number of parameters "
                f"({cloud.n_params})"
            )

        checkpointing = config.save_intermediate
        start = time.perf_counter()
        elapsed_before = cloud.sampling_time
        while not cloud.finished:
            if halt_event is not None and halt_event.is_set():
                logger.info("Halt requested; stopping after stage %d", cloud.stage)
                break
            if cloud.stage >= config.max_stages:
                raise StageError(
                    f"Tempering did not reach phi = 1 within {config.max_stages} stages",
                    stage=cloud.stage,
                    phi=cloud.phi,
                )

            key, stage_key = jax.random.split(key)
            cloud = smc_stage(
                stage_key, cloud, prior, dispatcher, data, config, old_data, stage_hook
            )
            cloud = cloud.replace(
                sampling_time=elapsed_before + time.perf_counter() - start
            )

            if checkpointing and cloud.stage % config.intermediate_stage_increment == 0:
                path = checkpoint_filename(config.savepath, cloud.stage, filestring_addl)
                try:
                    save_checkpoint(path, cloud, key)
                except (OSError, pickle.PicklingError) as e:
                    logger.warning(
                        "Could not write checkpoint %s (%s); continuing without checkpoints",
                        path, e,
                    )
                    checkpointing = False

        summary = cloud.summary()
        logger.info(
            "SMC finished at stage %d: phi = %.4f, log evidence = %.4f, "
            "%d resamples, %d likelihood evaluations (%d failed), %.1f s",
            summary["stage"], summary["phi"], summary["log_evidence"],
            summary["n_resamples"], dispatcher.n_evaluations, dispatcher.n_failures,
            summary["sampling_time"],
        )

    if config.savepath is not None and cloud.finished:
        path = final_filename(config.savepath, filestring_addl)
        try:
            save_cloud(path, cloud)
        except (OSError, pickle.PicklingError) as e:
            logger.warning("Could not write final cloud %s (%s)", path, e)

    return cloud
