"""Interfaces the sampler consumes from the model side.

The sampler does not know about model objects. It needs a likelihood, which
maps a parameter vector and a data matrix to a log-likelihood, and a prior,
which evaluates a log density and draws initial particles.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

import numpy as np
from jaxtyping import Array, Float, PRNGKeyArray

__all__ = [
    "Likelihood",
    "Prior",
    "FunctionLikelihood",
    "as_likelihood",
]


@runtime_checkable
class Likelihood(Protocol):
    """Log-likelihood of a parameter vector given observed data.

    Implementations may raise or return a non-finite value for invalid
    parameter regions; the sampler treats both as ``-inf``.
    """

    def log_likelihood(self, theta: np.ndarray, data: np.ndarray) -> float:
        """Evaluate log p(data | theta)."""
        ...


@runtime_checkable
class Prior(Protocol):
    """Prior distribution over the parameter vector."""

    def log_prob(self, theta: np.ndarray) -> float:
        """Log density, ``-inf`` outside the support."""
        ...

    def sample(self, key: PRNGKeyArray) -> Float[Array, " n_params"]:
        """Draw one parameter vector."""
        ...


class FunctionLikelihood:
    """Adapt a plain ``fn(theta, data) -> float`` to :class:`Likelihood`.

    Instances pickle whenever ``fn`` does, so they can be shipped to a
    process pool.
    """

    def __init__(self, fn: Callable[[np.ndarray, np.ndarray], float]):
        self.fn = fn

    def log_likelihood(self, theta: np.ndarray, data: np.ndarray) -> float:
        return self.fn(theta, data)

    def __repr__(self) -> str:
        return f"FunctionLikelihood({getattr(self.fn, '__name__', self.fn)!r})"


def as_likelihood(obj: Likelihood | Callable) -> Likelihood:
    """Return ``obj`` as a :class:`Likelihood`, wrapping bare callables."""
    if isinstance(obj, Likelihood):
        return obj
    if callable(obj):
        return FunctionLikelihood(obj)
    raise TypeError(f"Expected a Likelihood or a callable, got {type(obj).__name__}")
