"""Tempering schedules.

The tempering exponent phi moves from 0 (prior) to 1 (posterior). It either
follows a fixed power schedule, or is chosen adaptively so that each stage
costs a prescribed fraction of the effective sample size.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from smcsampler.core.particles import ParticleCloud
from smcsampler.core.weights import compute_ess, ess_from_weights

__all__ = [
    "fixed_schedule",
    "fixed_next_phi",
    "incremental_log_weights",
    "adaptive_next_phi",
    "next_phi",
]


def fixed_schedule(n_phi: int, lam: float) -> Float[Array, " n_phi_plus_one"]:
    """Full fixed schedule phi_n = (n / n_phi) ** lam, n = 0..n_phi."""
    return (jnp.arange(n_phi + 1) / n_phi) ** lam


def fixed_next_phi(stage: int, n_phi: int, lam: float) -> float:
    """Tempering exponent of ``stage`` under the fixed schedule."""
    if stage >= n_phi:
        return 1.0
    return float((stage / n_phi) ** lam)


@jaxtyped(typechecker=beartype)
def incremental_log_weights(
    log_likelihood_diffs: Float[Array, " n_particles"],
    delta_phi: float | Float[Array, ""],
) -> Float[Array, " n_particles"]:
    """log w_inc = delta_phi * l, with non-finite l giving zero weight.

    A zero increment leaves every weight untouched, including those of
    particles whose likelihood is not finite.
    """
    finite = jnp.isfinite(log_likelihood_diffs)
    safe = jnp.where(finite, log_likelihood_diffs, 0.0)
    return jnp.where(finite | (delta_phi == 0), delta_phi * safe, -jnp.inf)


@jaxtyped(typechecker=beartype)
def adaptive_next_phi(
    log_likelihood_diffs: Float[Array, " n_particles"],
    weights: Float[Array, " n_particles"],
    phi_prev: float | Float[Array, ""],
    target_ratio: float,
    n_iterations: int = 50,
) -> Float[Array, ""]:
    """Find the next tempering exponent by bisection on the ESS.

    Solves ESS(w * exp((phi - phi_prev) * l)) = target_ratio * ESS(w) for
    the smallest phi in (phi_prev, 1]. If the ESS at phi = 1 still meets the
    target (for instance when all likelihoods are equal) the schedule
    terminates at 1.

    Parameters
    ----------
    log_likelihood_diffs : Array
        Log-likelihood of each particle (minus the old-vintage
        log-likelihood when time tempering).
    weights : Array
        Current weights.
    phi_prev : float
        Current tempering exponent.
    target_ratio : float
        Fraction of the current ESS to retain.
    n_iterations : int
        Bisection iterations.

    Returns
    -------
    next_phi : Array
        Next tempering exponent.
    """
    log_w_prev = jnp.log(weights)
    target_ess = target_ratio * ess_from_weights(weights)

    def ess_at(phi):
        return compute_ess(
            log_w_prev + incremental_log_weights(log_likelihood_diffs, phi - phi_prev)
        )

    def bisect_step(carry, _):
        low, high = carry
        mid = (low + high) / 2
        keep_going = ess_at(mid) > target_ess
        return (jnp.where(keep_going, mid, low), jnp.where(keep_going, high, mid)), None

    phi_prev = jnp.asarray(phi_prev, dtype=log_likelihood_diffs.dtype)
    one = jnp.ones_like(phi_prev)
    (_, high), _ = jax.lax.scan(bisect_step, (phi_prev, one), jnp.arange(n_iterations))

    reachable = ess_at(one) >= target_ess
    return jnp.where(reachable, one, high)


def next_phi(
    cloud: ParticleCloud,
    *,
    n_phi: int,
    lam: float,
    adaptive_tempering_target: float,
) -> float:
    """Tempering exponent of stage ``cloud.stage + 1``."""
    if adaptive_tempering_target == 0.0:
        return fixed_next_phi(cloud.stage + 1, n_phi, lam)
    diffs = cloud.log_likelihood - cloud.old_log_likelihood
    phi = adaptive_next_phi(diffs, cloud.weights, cloud.phi, adaptive_tempering_target)
    return min(float(phi), 1.0)
