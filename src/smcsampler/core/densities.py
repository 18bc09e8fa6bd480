"""Gaussian log densities shared by the proposal and the bundled models."""

from __future__ import annotations

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

__all__ = [
    "mvn_log_density",
]


@jaxtyped(typechecker=beartype)
def mvn_log_density(
    x: Float[Array, "n dim"],
    center: Float[Array, "#n dim"],
    chol: Float[Array, "dim dim"],
) -> Float[Array, " n"]:
    """Row-wise log N(x; center, chol @ chol.T).

    ``chol`` is a lower Cholesky factor; ``center`` is one row per point of
    ``x`` or a single row shared by all of them.
    """
    dim = x.shape[1]
    z = jax.scipy.linalg.solve_triangular(chol, (x - center).T, lower=True)
    log_det = jnp.sum(jnp.log(jnp.diag(chol)))
    return -0.5 * jnp.sum(z**2, axis=0) - log_det - 0.5 * dim * jnp.log(2 * jnp.pi)
