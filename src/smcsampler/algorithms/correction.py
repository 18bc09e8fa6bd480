"""Correction stage: reweight particles for the next tempering increment."""

from __future__ import annotations

import logging

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from smcsampler.algorithms.tempering import incremental_log_weights
from smcsampler.core.particles import ParticleCloud
from smcsampler.core.weights import log_mean_exp, normalize_to_n
from smcsampler.errors import StageError

__all__ = [
    "reweight",
    "correct",
]

logger = logging.getLogger(__name__)


@jaxtyped(typechecker=beartype)
def reweight(
    weights: Float[Array, " n_particles"],
    log_likelihood_diffs: Float[Array, " n_particles"],
    delta_phi: float | Float[Array, ""],
) -> tuple[Float[Array, " n_particles"], Float[Array, ""]]:
    """Apply the incremental weights exp(delta_phi * l).

    Parameters
    ----------
    weights : Array
        Previous weights, summing to N.
    log_likelihood_diffs : Array
        Log-likelihood of each particle (net of the old-vintage
        log-likelihood when time tempering).
    delta_phi : float
        phi_n - phi_{n-1}.

    Returns
    -------
    new_weights : Array
        Updated weights summing to N; NaN everywhere on total collapse.
    log_evidence_increment : Array
        log(mean(w_prev * w_inc)), evaluated with log-sum-exp.
    """
    log_w = jnp.log(weights) + incremental_log_weights(log_likelihood_diffs, delta_phi)
    return normalize_to_n(log_w), log_mean_exp(log_w)


def correct(cloud: ParticleCloud, phi_new: float, stage: int) -> tuple[ParticleCloud, float]:
    """Reweight ``cloud`` from ``cloud.phi`` to ``phi_new``.

    Returns the reweighted cloud (stage, phi and schedule updated) and the
    log evidence increment of the stage.

    Raises
    ------
    StageError
        If no particle keeps a positive, finite weight.
    """
    diffs = cloud.log_likelihood - cloud.old_log_likelihood
    delta_phi = phi_new - cloud.phi
    new_weights, increment = reweight(cloud.weights, diffs, delta_phi)

    increment = float(increment)
    if not jnp.isfinite(increment) or not bool(jnp.all(jnp.isfinite(new_weights))):
        bad = jnp.nonzero(~jnp.isfinite(diffs))[0].tolist()
        raise StageError(
            "Total weight collapse in correction: no particle has a finite "
            "likelihood",
            stage=stage,
            phi=phi_new,
            indices=bad,
        )

    logger.debug(
        "Correction to phi = %.6g, log evidence increment %.6g", phi_new, increment
    )
    corrected = cloud.replace(
        weights=new_weights,
        stage=int(stage),
        phi=float(phi_new),
        tempering_schedule=jnp.append(cloud.tempering_schedule, phi_new),
    )
    return corrected, increment
