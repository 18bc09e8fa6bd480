"""Conjugate linear Gaussian model with a closed-form posterior.

Observations y_t, t = 1..T, are i.i.d. N(theta, Sigma_y) with known noise
covariance, and the prior is theta ~ N(m_0, S_0). The posterior is

    S_T^-1 = S_0^-1 + T Sigma_y^-1
    m_T    = S_T (S_0^-1 m_0 + Sigma_y^-1 sum_t y_t)

and the marginal likelihood follows from Bayes' rule evaluated at any
parameter value,

    log p(Y) = log p(Y | theta) + log p(theta) - log p(theta | Y).

The model is small, but exercises every part of the sampler against exact
answers.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import PRNGKeyArray

from smcsampler.core.densities import mvn_log_density
from smcsampler.models.distributions import MultivariateNormal

__all__ = [
    "LinearGaussianModel",
]


class LinearGaussianModel:
    """Unknown mean of a multivariate normal with known covariance.

    Parameters
    ----------
    noise_cov : array_like
        Observation noise covariance Sigma_y, [d, d].
    prior_mean : array_like
        Prior mean m_0, [d].
    prior_cov : array_like
        Prior covariance S_0, [d, d].

    Data matrices are [d, T], one column per observation, matching the
    sampler's [n_observables, T] convention.
    """

    def __init__(self, noise_cov, prior_mean, prior_cov):
        self.noise_cov = np.asarray(noise_cov, dtype=float)
        self.prior_mean = np.asarray(prior_mean, dtype=float)
        self.prior_cov = np.asarray(prior_cov, dtype=float)
        self._noise_chol = np.linalg.cholesky(self.noise_cov)

    @property
    def dim(self) -> int:
        return self.prior_mean.shape[0]

    @property
    def prior(self) -> MultivariateNormal:
        return MultivariateNormal(loc=self.prior_mean, covariance_matrix=self.prior_cov)

    def log_likelihood(self, theta: np.ndarray, data: np.ndarray) -> float:
        """log p(Y | theta), summed over the columns of ``data``."""
        x = jnp.asarray(np.asarray(data, dtype=float).T)
        center = jnp.asarray(theta, dtype=x.dtype)[None]
        chol = jnp.asarray(self._noise_chol, dtype=x.dtype)
        return float(jnp.sum(mvn_log_density(x, center, chol)))

    def posterior(self, data: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Posterior mean and covariance of theta given ``data``."""
        data = np.asarray(data, dtype=float)
        n_obs = data.shape[1]
        prior_precision = np.linalg.inv(self.prior_cov)
        noise_precision = np.linalg.inv(self.noise_cov)
        cov = np.linalg.inv(prior_precision + n_obs * noise_precision)
        cov = 0.5 * (cov + cov.T)
        mean = cov @ (prior_precision @ self.prior_mean + noise_precision @ data.sum(axis=1))
        return mean, cov

    def log_marginal_likelihood(self, data: np.ndarray) -> float:
        """Exact log p(Y)."""
        mean, cov = self.posterior(data)
        log_posterior = MultivariateNormal(loc=mean, covariance_matrix=cov).log_prob(mean)
        log_prior = self.prior.log_prob(mean)
        return self.log_likelihood(mean, data) + log_prior - log_posterior

    def simulate(self, key: PRNGKeyArray, theta, n_obs: int) -> np.ndarray:
        """Draw a [d, n_obs] data matrix at ``theta``."""
        z = np.asarray(jax.random.normal(key, (n_obs, self.dim)), dtype=float)
        return (np.asarray(theta, dtype=float) + z @ self._noise_chol.T).T
