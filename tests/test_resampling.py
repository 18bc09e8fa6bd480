"""Tests for resampling algorithms."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from scipy import stats

from smcsampler.core.resampling import (
    multinomial_resample,
    resample,
    residual_resample,
    stratified_resample,
    systematic_resample,
)

METHODS = ["systematic", "multinomial", "stratified", "residual"]


class TestSystematicResampling:
    """Tests for systematic resampling."""

    def test_preserves_count(self):
        """Resampling should preserve particle count."""
        key = jax.random.PRNGKey(42)
        n_particles = 100
        log_weights = jax.random.normal(key, shape=(n_particles,))

        indices = systematic_resample(key, log_weights)

        assert len(indices) == n_particles
        assert jnp.all(indices >= 0)
        assert jnp.all(indices < n_particles)

    def test_concentrates_on_high_weight(self):
        """High weight particles should be selected more often."""
        key = jax.random.PRNGKey(42)
        n_particles = 1000
        log_weights = jnp.zeros(n_particles)
        log_weights = log_weights.at[0].set(10.0)  # High weight for particle 0

        indices = systematic_resample(key, log_weights)

        count_0 = jnp.sum(indices == 0)
        # Particle 0 should be selected many times
        assert count_0 > n_particles * 0.9

    def test_uniform_weights_spread(self):
        """With uniform weights, every particle is selected exactly once."""
        key = jax.random.PRNGKey(42)
        n_particles = 100
        log_weights = jnp.zeros(n_particles)

        indices = systematic_resample(key, log_weights)

        counts = jnp.bincount(indices, length=n_particles)
        assert jnp.all(counts >= 0)
        assert jnp.all(counts <= 2)
        assert int(jnp.sum(counts)) == n_particles

    def test_counts_within_one_of_expectation(self):
        """Systematic counts differ from N * w_i by less than one."""
        key1, key2 = jax.random.split(jax.random.PRNGKey(42))
        n_particles = 200
        log_weights = jax.random.normal(key1, shape=(n_particles,))
        expected = n_particles * jax.nn.softmax(log_weights)

        counts = jnp.bincount(systematic_resample(key2, log_weights), length=n_particles)

        assert float(jnp.max(jnp.abs(counts - expected))) < 1.0 + 1e-9


class TestMultinomialResampling:
    """Tests for multinomial resampling."""

    def test_preserves_count(self):
        """Resampling should preserve particle count."""
        key = jax.random.PRNGKey(42)
        n_particles = 100
        log_weights = jax.random.normal(key, shape=(n_particles,))

        indices = multinomial_resample(key, log_weights)

        assert len(indices) == n_particles
        assert jnp.all(indices >= 0)
        assert jnp.all(indices < n_particles)


class TestStratifiedResampling:
    """Tests for stratified resampling."""

    def test_preserves_count(self):
        """Resampling should preserve particle count."""
        key = jax.random.PRNGKey(42)
        n_particles = 100
        log_weights = jax.random.normal(key, shape=(n_particles,))

        indices = stratified_resample(key, log_weights)

        assert len(indices) == n_particles
        assert jnp.all(indices >= 0)
        assert jnp.all(indices < n_particles)


class TestResidualResampling:
    """Tests for residual resampling."""

    def test_preserves_count(self):
        """Resampling should preserve particle count."""
        key = jax.random.PRNGKey(42)
        n_particles = 100
        log_weights = jax.random.normal(key, shape=(n_particles,))

        indices = residual_resample(key, log_weights)

        assert len(indices) == n_particles
        assert jnp.all(indices >= 0)
        assert jnp.all(indices < n_particles)

    def test_deterministic_copies(self):
        """Each particle gets at least floor(N * w_i) copies."""
        key = jax.random.PRNGKey(42)
        weights = jnp.array([0.45, 0.35, 0.15, 0.05])

        indices = residual_resample(key, jnp.log(weights))

        counts = np.bincount(np.asarray(indices), minlength=4)
        assert np.all(counts >= np.floor(4 * np.asarray(weights)))


class TestResampleDispatch:
    """Tests for the resample dispatch function."""

    @pytest.mark.parametrize("method", METHODS)
    def test_all_methods(self, method):
        """All resampling methods should work."""
        key = jax.random.PRNGKey(42)
        n_particles = 100
        log_weights = jax.random.normal(key, shape=(n_particles,))

        indices = resample(key, log_weights, method)

        assert len(indices) == n_particles

    @pytest.mark.parametrize("method", METHODS)
    def test_deterministic_under_key(self, method):
        """The same key gives the same ancestors."""
        key = jax.random.PRNGKey(42)
        log_weights = jax.random.normal(jax.random.PRNGKey(7), shape=(50,))

        np.testing.assert_array_equal(
            resample(key, log_weights, method), resample(key, log_weights, method)
        )

    @pytest.mark.parametrize("method", METHODS)
    def test_zero_weight_never_selected(self, method):
        """Particles with zero weight are never ancestors."""
        key = jax.random.PRNGKey(42)
        log_weights = jnp.array([0.0, -jnp.inf, 0.0, -jnp.inf, 0.0])

        indices = np.asarray(resample(key, log_weights, method))

        assert not np.isin(indices, [1, 3]).any()

    @pytest.mark.parametrize("method", METHODS)
    def test_unbiased_counts(self, method):
        """Pooled counts over many draws pass a chi-square test against N * w."""
        n_particles = 10
        n_reps = 400
        weights = jnp.array([0.3, 0.2, 0.15, 0.1, 0.08, 0.07, 0.05, 0.03, 0.01, 0.01])
        log_weights = jnp.log(weights)

        keys = jax.random.split(jax.random.PRNGKey(42), n_reps)
        indices = jax.vmap(lambda k: resample(k, log_weights, method))(keys)
        counts = np.bincount(np.asarray(indices).ravel(), minlength=n_particles)

        expected = n_reps * n_particles * np.asarray(weights)
        _, p_value = stats.chisquare(counts, expected * counts.sum() / expected.sum())
        assert p_value > 0.001

    def test_unknown_method(self):
        """Unknown methods are rejected."""
        with pytest.raises(ValueError):
            resample(jax.random.PRNGKey(42), jnp.zeros(5), "bogus")
