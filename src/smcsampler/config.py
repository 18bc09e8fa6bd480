"""Configuration for the SMC sampler.

A single immutable :class:`SMCConfig` is built by the caller and handed to
:func:`smcsampler.algorithms.smc.smc`. Field validation happens at
construction, so a contradictory configuration never starts a run.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "ResamplingMethod",
    "ExecutorKind",
    "SMCConfig",
]

ResamplingMethod = Literal["systematic", "multinomial", "stratified", "residual"]
ExecutorKind = Literal["thread", "process"]


class SMCConfig(BaseModel):
    """Settings of a tempered SMC run.

    Attributes
    ----------
    n_particles : int
        Number of particles N, fixed for the whole run.
    n_phi : int
        Number of tempering stages of the fixed schedule.
    lam : float
        Curvature of the fixed schedule phi_n = (n / n_phi) ** lam.
    adaptive_tempering_target : float
        Target ratio ESS_n / ESS_{n-1} of the adaptive schedule. Zero selects
        the fixed schedule.
    resampling_threshold : float
        Resample when ESS < resampling_threshold * N.
    resampling_method : str
        One of "systematic", "multinomial", "stratified", "residual".
    n_mh_steps : int
        Metropolis-Hastings steps per particle and stage.
    n_blocks : int
        Number of random parameter blocks updated in turn in each MH step.
    step_size : float
        Initial proposal scale c.
    mixture_proportion : float
        Weight alpha of the full-covariance random-walk component.
    target_accept : float
        Acceptance rate the step size is steered towards.
    min_step_size : float
        Lower bound on c.
    adapt_step_size : bool
        Whether c is adapted between stages.
    max_stages : int
        Upper bound on the number of stages of an adaptive schedule.
    max_initial_draw_attempts : int
        Redraws from the prior for particles with non-finite likelihood.
    covariance_jitter : float
        First diagonal jitter tried when the proposal covariance is not
        numerically positive definite.
    jitter_max_iterations : int
        Number of tenfold jitter increases tried before giving up.
    parallel : bool
        Evaluate likelihoods on a worker pool.
    n_workers : int, optional
        Pool size; defaults to the executor's own choice.
    executor : str
        "thread" or "process".
    save_intermediate : bool
        Write the cloud every ``intermediate_stage_increment`` stages.
    intermediate_stage_increment : int
        Stage interval between checkpoints.
    savepath : str, optional
        Directory for checkpoints and the final cloud.
    recompute_transition_equation : bool
        Call the driver's stage hook once per stage.
    seed : int
        Seed of the PRNG key when no key is given.
    """

    model_config = ConfigDict(frozen=True)

    n_particles: int = Field(default=2000, ge=1)
    n_phi: int = Field(default=300, ge=1)
    lam: float = Field(default=2.1, gt=0.0)
    adaptive_tempering_target: float = Field(default=0.0, ge=0.0, lt=1.0)

    resampling_threshold: float = Field(default=0.5, gt=0.0, le=1.0)
    resampling_method: ResamplingMethod = "systematic"

    n_mh_steps: int = Field(default=1, ge=1)
    n_blocks: int = Field(default=1, ge=1)
    step_size: float = Field(default=0.5, gt=0.0)
    mixture_proportion: float = Field(default=0.9, ge=0.0, le=1.0)
    target_accept: float = Field(default=0.25, gt=0.0, lt=1.0)
    min_step_size: float = Field(default=1e-3, gt=0.0)
    adapt_step_size: bool = True

    max_stages: int = Field(default=10_000, ge=1)
    max_initial_draw_attempts: int = Field(default=100, ge=1)
    covariance_jitter: float = Field(default=1e-10, gt=0.0)
    jitter_max_iterations: int = Field(default=10, ge=0)

    parallel: bool = False
    n_workers: int | None = Field(default=None, ge=1)
    executor: ExecutorKind = "thread"

    save_intermediate: bool = False
    intermediate_stage_increment: int = Field(default=10, ge=1)
    savepath: str | None = None

    recompute_transition_equation: bool = True
    seed: int = 42

    @model_validator(mode="after")
    def check_consistency(self) -> SMCConfig:
        """Cross-field checks."""
        if self.step_size < self.min_step_size:
            raise ValueError(
                f"step_size ({self.step_size}) must not be below "
                f"min_step_size ({self.min_step_size})"
            )
        if self.save_intermediate and self.savepath is None:
            raise ValueError("save_intermediate requires a savepath")
        return self

    @property
    def use_fixed_schedule(self) -> bool:
        """True when the tempering schedule does not depend on the data."""
        return self.adaptive_tempering_target == 0.0

    @property
    def resampling_threshold_count(self) -> float:
        """ESS threshold expressed in particles."""
        return self.resampling_threshold * self.n_particles
