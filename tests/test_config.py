"""Tests for configuration models."""

import pytest
from pydantic import ValidationError

from smcsampler.config import SMCConfig
from smcsampler.errors import SMCError


class TestSMCConfig:
    """Tests for SMCConfig."""

    def test_default_values(self):
        """Default config should have expected values."""
        config = SMCConfig()

        assert config.n_particles == 2000
        assert config.n_phi == 300
        assert config.lam == 2.1
        assert config.seed == 42
        assert config.resampling_threshold == 0.5
        assert config.resampling_method == "systematic"
        assert config.mixture_proportion == 0.9
        assert config.use_fixed_schedule

    def test_custom_values(self):
        """Custom values should be accepted."""
        config = SMCConfig(
            n_particles=500,
            seed=123,
            resampling_threshold=0.7,
            adaptive_tempering_target=0.95,
        )

        assert config.n_particles == 500
        assert config.seed == 123
        assert config.resampling_threshold == 0.7
        assert not config.use_fixed_schedule
        assert config.resampling_threshold_count == 350.0

    def test_immutable(self):
        """Config should be frozen."""
        config = SMCConfig()

        with pytest.raises(ValidationError):
            config.n_particles = 500

    @pytest.mark.parametrize(
        "field, value",
        [
            ("n_particles", 0),
            ("n_phi", 0),
            ("n_mh_steps", 0),
            ("n_blocks", 0),
            ("lam", 0.0),
            ("lam", -1.0),
            ("resampling_threshold", 0.0),
            ("resampling_threshold", 1.5),
            ("adaptive_tempering_target", 1.0),
            ("adaptive_tempering_target", -0.1),
            ("mixture_proportion", 1.1),
            ("target_accept", 0.0),
            ("step_size", 0.0),
        ],
    )
    def test_out_of_range(self, field, value):
        """Out-of-range settings are rejected at construction."""
        with pytest.raises(ValidationError):
            SMCConfig(**{field: value})

    def test_unknown_resampling_method(self):
        """Only the four resampling schemes are accepted."""
        with pytest.raises(ValidationError):
            SMCConfig(resampling_method="bogus")

    def test_unknown_executor(self):
        """Executors are threads or processes."""
        with pytest.raises(ValidationError):
            SMCConfig(executor="mpi")

    def test_step_size_above_floor(self):
        """The initial step size cannot start below its floor."""
        with pytest.raises(ValidationError):
            SMCConfig(step_size=1e-4, min_step_size=1e-3)

    def test_save_intermediate_requires_savepath(self):
        """Checkpointing needs a directory."""
        with pytest.raises(ValidationError):
            SMCConfig(save_intermediate=True)

        config = SMCConfig(save_intermediate=True, savepath="/tmp/run")
        assert config.savepath == "/tmp/run"

    def test_validation_error_is_not_smc_error(self):
        """Bad field values surface from pydantic, outside the SMCError family."""
        with pytest.raises(ValidationError) as excinfo:
            SMCConfig(n_particles=0)

        assert not isinstance(excinfo.value, SMCError)

    def test_model_copy_update(self):
        """Variants are derived without touching the original."""
        config = SMCConfig(n_particles=100)

        other = config.model_copy(update={"n_particles": 200})

        assert config.n_particles == 100
        assert other.n_particles == 200
