"""Tests for the proposal adaptation."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from smcsampler.algorithms.adaptation import (
    adapt,
    adapt_step_size,
    proposal_moments,
    step_size_factor,
)
from smcsampler.core.particles import init_cloud
from smcsampler.errors import StageError


class TestStepSize:
    """Tests for the step-size rule."""

    def test_factor_at_target(self):
        """At the target rate the step size is unchanged."""
        np.testing.assert_allclose(step_size_factor(0.25, 0.25), 1.0)

    def test_factor_bounds(self):
        """The factor stays within (0.95, 1.05)."""
        assert 0.95 < float(step_size_factor(0.0, 0.25)) < 1.0
        assert 1.0 < float(step_size_factor(1.0, 0.25)) < 1.05

    def test_monotone_in_rate(self):
        """Higher acceptance gives a larger factor."""
        rates = np.linspace(0.0, 1.0, 11)
        factors = [float(step_size_factor(float(r), 0.25)) for r in rates]

        assert np.all(np.diff(factors) > 0)

    def test_floor(self):
        """The step size never drops below its floor."""
        assert adapt_step_size(1e-3, 0.0, 0.25, 1e-3) == 1e-3

    def test_converges_towards_target(self):
        """Repeated updates shrink c while acceptance is low."""
        c = 0.5
        for _ in range(10):
            c = adapt_step_size(c, 0.05, 0.25, 1e-3)

        assert c < 0.5


class TestAdapt:
    """Tests for the cloud-level adaptation."""

    def _cloud(self):
        key = jax.random.PRNGKey(42)
        theta = jax.random.normal(key, shape=(500, 2)) * jnp.array([1.0, 3.0])
        return init_cloud(
            theta, jnp.zeros(500), jnp.zeros(500), step_size=0.5, n_phi=10,
            proposal_covariance=jnp.eye(2), proposal_mean=jnp.zeros(2),
        )

    def test_recomputes_moments(self):
        """The proposal moments follow the weighted population."""
        cloud = self._cloud()

        adapted = adapt(cloud, 0.25, target_accept=0.25, min_step_size=1e-3)

        mean, cov = proposal_moments(cloud.theta, cloud.weights)
        np.testing.assert_allclose(adapted.proposal_covariance, cov)
        np.testing.assert_allclose(adapted.proposal_mean, mean)
        np.testing.assert_allclose(adapted.step_size, 0.5)

    def test_step_size_frozen_when_disabled(self):
        """With adaptation off only the covariance changes."""
        cloud = self._cloud()

        adapted = adapt(
            cloud, 0.9, target_accept=0.25, min_step_size=1e-3, adapt_step_size_enabled=False
        )

        assert adapted.step_size == 0.5

    def test_non_finite_covariance_raises(self):
        """A NaN covariance estimate is a stage error."""
        cloud = self._cloud()
        cloud = cloud.replace(theta=cloud.theta.at[0, 0].set(jnp.nan))

        with pytest.raises(StageError):
            adapt(cloud, 0.25, target_accept=0.25, min_step_size=1e-3)
