"""Tests for priors and the reference model."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from scipy import stats

from smcsampler.interfaces import Likelihood, Prior
from smcsampler.models.distributions import (
    IndependentPrior,
    MultivariateNormal,
    Normal,
    Uniform,
)
from smcsampler.models.linear_gaussian import LinearGaussianModel


class TestNormalDistribution:
    """Tests for Normal distribution."""

    def test_sample_shape(self):
        """Sample should return scalar."""
        key = jax.random.PRNGKey(42)
        dist = Normal(loc=0.0, scale=1.0)

        sample = dist.sample(key)

        assert sample.shape == ()

    def test_log_prob_standard_normal(self):
        """Log prob at mean should be -0.5*log(2*pi)."""
        dist = Normal(loc=0.0, scale=1.0)

        log_p = dist.log_prob(jnp.array(0.0))

        expected = -0.5 * jnp.log(2 * jnp.pi)
        np.testing.assert_allclose(log_p, expected, rtol=1e-5)

    def test_log_prob_matches_scipy(self):
        """Shifted and scaled densities agree with scipy."""
        dist = Normal(loc=1.0, scale=2.0)

        np.testing.assert_allclose(dist.log_prob(0.3), stats.norm(1.0, 2.0).logpdf(0.3))


class TestUniformDistribution:
    """Tests for Uniform distribution."""

    def test_log_prob_inside(self):
        """Inside the support the density is 1 / (high - low)."""
        dist = Uniform(low=-1.0, high=3.0)

        np.testing.assert_allclose(dist.log_prob(0.0), -np.log(4.0))

    def test_log_prob_outside(self):
        """Outside the support the log density is -inf."""
        dist = Uniform(low=-1.0, high=3.0)

        assert np.isneginf(dist.log_prob(3.5))

    def test_samples_in_support(self):
        """Draws stay inside [low, high]."""
        dist = Uniform(low=2.0, high=5.0)

        draws = dist.sample(jax.random.PRNGKey(42), (1000,))

        assert float(jnp.min(draws)) >= 2.0
        assert float(jnp.max(draws)) <= 5.0


class TestMultivariateNormal:
    """Tests for MultivariateNormal distribution."""

    def test_sample_shape(self):
        """Sample should have correct dimension."""
        key = jax.random.PRNGKey(42)
        dim = 3
        dist = MultivariateNormal(
            loc=jnp.zeros(dim),
            covariance_matrix=jnp.eye(dim)
        )

        sample = dist.sample(key)

        assert sample.shape == (dim,)

    def test_log_prob_at_mean(self):
        """Log prob at mean should be maximum."""
        dim = 2
        mean = jnp.array([1.0, 2.0])
        dist = MultivariateNormal(
            loc=mean,
            covariance_matrix=jnp.eye(dim)
        )

        log_p_mean = dist.log_prob(mean)
        log_p_away = dist.log_prob(mean + 1.0)

        assert log_p_mean > log_p_away

    def test_log_prob_matches_scipy(self):
        """Correlated densities agree with scipy."""
        cov = np.array([[2.0, 0.6], [0.6, 1.0]])
        dist = MultivariateNormal(loc=np.array([0.5, -0.5]), covariance_matrix=cov)
        x = np.array([1.0, 0.2])

        np.testing.assert_allclose(
            dist.log_prob(x), stats.multivariate_normal([0.5, -0.5], cov).logpdf(x)
        )

    def test_is_prior(self):
        """A multivariate normal can serve as the prior."""
        assert isinstance(MultivariateNormal(loc=jnp.zeros(2), covariance_matrix=jnp.eye(2)), Prior)


class TestIndependentPrior:
    """Tests for products of marginals."""

    def test_log_prob_sums_marginals(self):
        """The joint log density is the sum of the marginals."""
        prior = IndependentPrior([Normal(loc=0.0, scale=1.0), Uniform(low=0.0, high=2.0)])

        expected = stats.norm.logpdf(0.5) - np.log(2.0)
        np.testing.assert_allclose(prior.log_prob(np.array([0.5, 1.0])), expected)

    def test_outside_support(self):
        """One marginal outside its support vetoes the draw."""
        prior = IndependentPrior([Normal(loc=0.0, scale=1.0), Uniform(low=0.0, high=2.0)])

        assert np.isneginf(prior.log_prob(np.array([0.5, -1.0])))

    def test_sample(self):
        """Draws have one entry per marginal."""
        prior = IndependentPrior([Normal(loc=0.0, scale=1.0), Uniform(low=0.0, high=2.0)])

        draw = prior.sample(jax.random.PRNGKey(42))

        assert draw.shape == (2,)
        assert 0.0 <= float(draw[1]) <= 2.0
        assert isinstance(prior, Prior)

    def test_wrong_length(self):
        """Parameter vectors of the wrong length are rejected."""
        prior = IndependentPrior([Normal(loc=0.0, scale=1.0)])

        with pytest.raises(ValueError):
            prior.log_prob(np.zeros(3))


class TestLinearGaussianModel:
    """Tests for the conjugate reference model."""

    def test_is_likelihood(self, gaussian_model):
        """The model satisfies the likelihood protocol."""
        assert isinstance(gaussian_model, Likelihood)
        assert gaussian_model.dim == 2

    def test_simulate_shape(self, gaussian_model, gaussian_data):
        """Simulated data are [n_observables, T]."""
        assert gaussian_data.shape == (2, 20)

    def test_log_likelihood_matches_scipy(self, gaussian_model, gaussian_data):
        """The likelihood sums independent Gaussian observations."""
        theta = np.array([0.8, -0.4])

        expected = stats.multivariate_normal(theta, gaussian_model.noise_cov).logpdf(
            gaussian_data.T
        ).sum()
        np.testing.assert_allclose(gaussian_model.log_likelihood(theta, gaussian_data), expected)

    def test_posterior_univariate(self):
        """In one dimension the posterior matches the textbook formula."""
        model = LinearGaussianModel(np.array([[2.0]]), np.array([1.0]), np.array([[3.0]]))
        data = np.array([[0.5, 1.5, 2.5]])

        mean, cov = model.posterior(data)

        precision = 1.0 / 3.0 + 3.0 / 2.0
        np.testing.assert_allclose(cov, [[1.0 / precision]])
        np.testing.assert_allclose(mean, [(1.0 / 3.0 + 4.5 / 2.0) / precision])

    def test_log_marginal_likelihood(self, gaussian_model):
        """The evidence matches the joint Gaussian density of the stacked data."""
        data = gaussian_model.simulate(jax.random.PRNGKey(42), np.array([1.0, -0.5]), 4)
        n_obs = data.shape[1]
        joint_mean = np.tile(gaussian_model.prior_mean, n_obs)
        joint_cov = np.kron(np.eye(n_obs), gaussian_model.noise_cov) + np.kron(
            np.ones((n_obs, n_obs)), gaussian_model.prior_cov
        )

        expected = stats.multivariate_normal(joint_mean, joint_cov).logpdf(data.T.ravel())
        np.testing.assert_allclose(
            gaussian_model.log_marginal_likelihood(data), expected, rtol=1e-10
        )
