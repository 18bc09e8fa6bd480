"""Priors and a reference model with a closed-form posterior."""

from smcsampler.models.distributions import (
    IndependentPrior,
    MultivariateNormal,
    Normal,
    Uniform,
)
from smcsampler.models.linear_gaussian import LinearGaussianModel

__all__ = [
    "IndependentPrior",
    "MultivariateNormal",
    "Normal",
    "Uniform",
    "LinearGaussianModel",
]
