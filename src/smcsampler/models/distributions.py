"""Prior distributions.

``log_prob`` returns host floats, since the sampler calls it once per
particle; draws use ``jax.random`` keys so the initial cloud is reproducible
under a seed.
"""

from __future__ import annotations

import math

import chex
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float, PRNGKeyArray

from smcsampler.core.densities import mvn_log_density

__all__ = [
    "Normal",
    "Uniform",
    "MultivariateNormal",
    "IndependentPrior",
]

_LOG_2PI = math.log(2 * math.pi)


@chex.dataclass(frozen=True)
class Normal:
    """Univariate normal distribution."""

    loc: float = 0.0
    scale: float = 1.0

    def log_prob(self, x):
        z = (np.asarray(x, dtype=float) - self.loc) / self.scale
        return -0.5 * z**2 - math.log(self.scale) - 0.5 * _LOG_2PI

    def sample(self, key: PRNGKeyArray, shape: tuple = ()) -> Array:
        return self.loc + self.scale * jax.random.normal(key, shape)


@chex.dataclass(frozen=True)
class Uniform:
    """Uniform distribution on [low, high]; ``-inf`` outside."""

    low: float = 0.0
    high: float = 1.0

    def log_prob(self, x):
        x = np.asarray(x, dtype=float)
        inside = (x >= self.low) & (x <= self.high)
        return np.where(inside, -math.log(self.high - self.low), -np.inf)

    def sample(self, key: PRNGKeyArray, shape: tuple = ()) -> Array:
        return jax.random.uniform(key, shape, minval=self.low, maxval=self.high)


@chex.dataclass(frozen=True)
class MultivariateNormal:
    """Multivariate normal distribution.

    Also usable directly as the prior of a parameter vector.
    """

    loc: Float[Array, " dim"]
    covariance_matrix: Float[Array, "dim dim"]

    @property
    def dim(self) -> int:
        return self.loc.shape[0]

    def log_prob(self, x) -> float:
        loc = jnp.asarray(self.loc)
        chol = jnp.linalg.cholesky(jnp.asarray(self.covariance_matrix, dtype=loc.dtype))
        points = jnp.atleast_2d(jnp.asarray(x, dtype=loc.dtype))
        values = mvn_log_density(points, loc[None], chol)
        return float(values[0]) if np.ndim(x) == 1 else np.asarray(values)

    def sample(self, key: PRNGKeyArray) -> Float[Array, " dim"]:
        loc = jnp.asarray(self.loc)
        return jax.random.multivariate_normal(
            key, loc, jnp.asarray(self.covariance_matrix, dtype=loc.dtype)
        )


class IndependentPrior:
    """Product of univariate marginals, one per parameter.

    Parameters
    ----------
    marginals : sequence
        Objects with ``log_prob(x)`` and ``sample(key)``, e.g. :class:`Normal`
        or :class:`Uniform`.

    Examples
    --------
    >>> prior = IndependentPrior([Normal(loc=0.0, scale=1.0), Uniform(low=0.0, high=1.0)])
    >>> prior.log_prob(np.array([0.0, 0.5]))
    """

    def __init__(self, marginals):
        self.marginals = tuple(marginals)

    @property
    def dim(self) -> int:
        return len(self.marginals)

    def log_prob(self, theta) -> float:
        theta = np.asarray(theta, dtype=float)
        if theta.shape != (self.dim,):
            raise ValueError(
                f"Expected a parameter vector of length {self.dim}, got shape {theta.shape}"
            )
        return float(sum(m.log_prob(x) for m, x in zip(self.marginals, theta)))

    def sample(self, key: PRNGKeyArray) -> Float[Array, " dim"]:
        keys = jax.random.split(key, self.dim)
        return jnp.stack([m.sample(k) for m, k in zip(self.marginals, keys)])

    def __repr__(self) -> str:
        return f"IndependentPrior({list(self.marginals)!r})"
