"""Saving and loading particle clouds.

A checkpoint is a pickled dict holding the cloud (as NumPy arrays), the PRNG
key the driver will use for the next stage, and the stage index. Files are
named after the stage and a caller-supplied suffix, so several runs can share
one directory.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import pickle
from collections.abc import Sequence

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import PRNGKeyArray

from smcsampler.core.particles import ParticleCloud
from smcsampler.errors import CheckpointError

__all__ = [
    "checkpoint_filename",
    "final_filename",
    "cloud_to_numpy",
    "cloud_from_numpy",
    "save_checkpoint",
    "load_checkpoint",
    "save_cloud",
    "load_cloud",
]

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = {"stage": int, "phi": float, "step_size": float, "n_phi": int,
                  "sampling_time": float}


def _suffix(filestring_addl: Sequence[str]) -> str:
    return "".join(f"_{s}" for s in filestring_addl)


def checkpoint_filename(
    savepath: str, stage: int, filestring_addl: Sequence[str] = ()
) -> str:
    """Path of the checkpoint written after ``stage``."""
    return os.path.join(savepath, f"smc_cloud_stage={stage}{_suffix(filestring_addl)}.pkl")


def final_filename(savepath: str, filestring_addl: Sequence[str] = ()) -> str:
    """Path of the terminal cloud of a run."""
    return os.path.join(savepath, f"smc_cloud{_suffix(filestring_addl)}.pkl")


def cloud_to_numpy(cloud: ParticleCloud) -> dict:
    """Plain dict of NumPy arrays and Python scalars."""
    out = {}
    for field in dataclasses.fields(cloud):
        value = getattr(cloud, field.name)
        if field.name in _SCALAR_FIELDS:
            out[field.name] = _SCALAR_FIELDS[field.name](value)
        else:
            out[field.name] = np.asarray(value)
    return out


def cloud_from_numpy(arrays: dict) -> ParticleCloud:
    """Inverse of :func:`cloud_to_numpy`."""
    kwargs = {}
    for name, value in arrays.items():
        if name in _SCALAR_FIELDS:
            kwargs[name] = _SCALAR_FIELDS[name](value)
        else:
            kwargs[name] = jnp.asarray(value)
    return ParticleCloud(**kwargs)


def _key_to_numpy(key: PRNGKeyArray) -> np.ndarray:
    if jnp.issubdtype(key.dtype, jax.dtypes.prng_key):
        key = jax.random.key_data(key)
    return np.asarray(key)


def save_checkpoint(
    path: str, cloud: ParticleCloud, key: PRNGKeyArray | None = None
) -> None:
    """Write ``cloud`` (and the next PRNG key) to ``path``.

    Raises ``OSError``/``pickle.PicklingError`` on failure; the driver
    decides whether that is fatal.
    """
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    payload = {
        "cloud": cloud_to_numpy(cloud),
        "key": None if key is None else _key_to_numpy(key),
        "stage": int(cloud.stage),
    }
    tmp_path = path + ".tmp"
    with open(tmp_path, "wb") as f:
        pickle.dump(payload, f)
    os.replace(tmp_path, path)
    logger.debug("Cloud at stage %d saved to %s", cloud.stage, path)


def load_checkpoint(path: str) -> tuple[ParticleCloud, PRNGKeyArray | None]:
    """Read a checkpoint written by :func:`save_checkpoint`."""
    try:
        with open(path, "rb") as f:
            payload = pickle.load(f)
    except (OSError, pickle.UnpicklingError, EOFError) as e:
        raise CheckpointError(f"Cannot read checkpoint {path}: {e}") from e

    try:
        cloud = cloud_from_numpy(payload["cloud"])
    except (KeyError, TypeError) as e:
        raise CheckpointError(f"Malformed checkpoint {path}: {e}") from e
    key = payload.get("key")
    if key is not None:
        key = jnp.asarray(key)
    logger.info("Loaded cloud at stage %d from %s", cloud.stage, path)
    return cloud, key


def save_cloud(path: str, cloud: ParticleCloud) -> None:
    """Write a cloud without a PRNG key (e.g. a run's terminal cloud)."""
    save_checkpoint(path, cloud, key=None)


def load_cloud(path: str) -> ParticleCloud:
    """Read just the cloud from a checkpoint file."""
    cloud, _ = load_checkpoint(path)
    return cloud
