"""Fan-out / fan-in evaluation of likelihoods.

Likelihood evaluation dominates the cost of a run and particles are
independent within a stage, so each particle's evaluation is a separate
task. Every task receives a private copy of its parameter vector and returns
a float; the caller only sees the merged result once all tasks are done.
A task that raises, or returns a non-finite value, yields ``-inf``.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor

import numpy as np

from smcsampler.config import ExecutorKind
from smcsampler.interfaces import Likelihood

__all__ = [
    "safe_log_likelihood",
    "LikelihoodDispatcher",
]

logger = logging.getLogger(__name__)


def safe_log_likelihood(
    likelihood: Likelihood, theta: np.ndarray, data: np.ndarray
) -> tuple[float, bool]:
    """Evaluate one likelihood, mapping any failure to ``-inf``.

    Returns
    -------
    value : float
        The log-likelihood, or ``-inf``.
    failed : bool
        True if the evaluation raised or was not finite.
    """
    try:
        value = float(likelihood.log_likelihood(theta, data))
    except Exception as e:  # noqa: BLE001 - any model failure vetoes the draw
        logger.debug("Likelihood evaluation raised %s: %s", type(e).__name__, e)
        return -math.inf, True
    if not math.isfinite(value):
        logger.debug("Likelihood evaluation returned %s", value)
        return -math.inf, True
    return value, False


class LikelihoodDispatcher:
    """Evaluate a likelihood over many parameter vectors.

    Parameters
    ----------
    likelihood : Likelihood
        The model likelihood.
    parallel : bool
        Use a worker pool instead of a plain loop.
    n_workers : int, optional
        Pool size.
    executor : str
        "thread" or "process". Process pools need a picklable likelihood.

    The dispatcher owns its pool; use it as a context manager, or call
    :meth:`close`.
    """

    def __init__(
        self,
        likelihood: Likelihood,
        parallel: bool = False,
        n_workers: int | None = None,
        executor: ExecutorKind = "thread",
    ):
        self.likelihood = likelihood
        self.parallel = parallel
        self.n_workers = n_workers
        self.executor_kind = executor
        self._pool: Executor | None = None
        self.n_evaluations = 0
        self.n_failures = 0

    def __enter__(self) -> LikelihoodDispatcher:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get_pool(self) -> Executor:
        if self._pool is None:
            pool_cls = (
                ThreadPoolExecutor if self.executor_kind == "thread" else ProcessPoolExecutor
            )
            self._pool = pool_cls(max_workers=self.n_workers)
            logger.debug(
                "Started %s with max_workers=%s", pool_cls.__name__, self.n_workers
            )
        return self._pool

    def close(self) -> None:
        """Shut the worker pool down, if one was started."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def reset_counters(self) -> None:
        self.n_evaluations = 0
        self.n_failures = 0

    def evaluate(
        self, thetas: np.ndarray, data: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Evaluate the likelihood at every row of ``thetas``.

        Parameters
        ----------
        thetas : ndarray
            Parameter vectors with shape [n, n_params].
        data : ndarray
            Observation matrix passed unchanged to every evaluation.

        Returns
        -------
        values : ndarray
            Log-likelihoods with shape [n]; failures are ``-inf``.
        failed : ndarray
            Boolean mask of failed evaluations.
        """
        thetas = np.asarray(thetas, dtype=float)
        n = thetas.shape[0]
        values = np.full(n, -np.inf)
        failed = np.zeros(n, dtype=bool)
        if n == 0:
            return values, failed

        if not self.parallel or n == 1:
            for i in range(n):
                values[i], failed[i] = safe_log_likelihood(
                    self.likelihood, thetas[i].copy(), data
                )
        else:
            pool = self._get_pool()
            futures = [
                pool.submit(safe_log_likelihood, self.likelihood, thetas[i].copy(), data)
                for i in range(n)
            ]
            # Barrier: results are merged only after every task has returned
            for i, future in enumerate(futures):
                values[i], failed[i] = future.result()

        self.n_evaluations += n
        self.n_failures += int(failed.sum())
        return values, failed
