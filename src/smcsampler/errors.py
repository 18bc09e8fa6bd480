"""Exceptions raised by the SMC sampler.

Per-particle failures (a likelihood that raises or returns a non-finite
value) never surface here: they are mapped to a log-likelihood of ``-inf``.
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "SMCError",
    "ConfigurationError",
    "StageError",
    "CheckpointError",
]


class SMCError(Exception):
    """Base class for sampler errors."""


class ConfigurationError(SMCError, ValueError):
    """Settings contradict each other or the supplied data."""


class StageError(SMCError, RuntimeError):
    """A stage of the recursion cannot be completed.

    Parameters
    ----------
    message : str
        Description of the failure.
    stage : int
        Stage index at which the failure occurred.
    phi : float
        Tempering exponent of that stage.
    indices : sequence of int, optional
        Offending particle indices, when known.
    """

    def __init__(
        self,
        message: str,
        stage: int,
        phi: float,
        indices: Sequence[int] | None = None,
    ):
        self.stage = stage
        self.phi = phi
        self.indices = list(indices) if indices is not None else None
        detail = f"stage {stage}, phi = {phi:.6g}"
        if self.indices:
            shown = self.indices[:10]
            more = "" if len(self.indices) <= 10 else f" (+{len(self.indices) - 10} more)"
            detail += f", particles {shown}{more}"
        super().__init__(f"{message} [{detail}]")


class CheckpointError(SMCError, OSError):
    """A checkpoint needed to resume a run is missing or unreadable."""
