"""Shared fixtures."""

import jax
import numpy as np
import pytest

jax.config.update("jax_enable_x64", True)

from smcsampler.models import LinearGaussianModel  # noqa: E402


@pytest.fixture
def gaussian_model():
    """Two-parameter conjugate model with a diffuse prior."""
    return LinearGaussianModel(
        noise_cov=np.array([[1.0, 0.3], [0.3, 0.5]]),
        prior_mean=np.zeros(2),
        prior_cov=4.0 * np.eye(2),
    )


@pytest.fixture
def gaussian_data(gaussian_model):
    """Twenty observations simulated at theta = (1, -0.5)."""
    key = jax.random.PRNGKey(42)
    return gaussian_model.simulate(key, np.array([1.0, -0.5]), 20)
