"""
Configuration for the transfer engine.

Module constants mirror the multipart protocol limits; ``TransferConfig``
carries the per-transfer tunables and can be loaded from the environment.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError

# Multipart protocol limits
MIN_PART_SIZE = 5 * 1024 * 1024  # 5MB
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024  # 5GB
MAX_PART_COUNT = 10000

# Defaults
DEFAULT_PART_SIZE = 20 * 1024 * 1024  # 20MB
DEFAULT_TASK_NUM = 4
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_BASE = 0.1  # seconds
DEFAULT_RETRY_BACKOFF_CAP = 20.0  # seconds
DEFAULT_RETRY_JITTER = 0.25

# Parallel progress listeners are notified every 4MB
PROGRESS_FLUSH_THRESHOLD = 4 * 1024 * 1024

# Read size used when a stream is drained without an explicit size
IO_CHUNK_SIZE = 64 * 1024

# Metadata key holding the whole-object xxh64 digest
CHECKSUM_METADATA_KEY = "xxh64"

# Per-part checksum the server computes and echoes back on upload_part
PART_CHECKSUM_ALGORITHM = "CRC32"

UPLOAD_CHECKPOINT_SUFFIX = "upload"
DOWNLOAD_CHECKPOINT_SUFFIX = "download"
TEMP_FILE_SUFFIX = ".temp"


class TransferConfig(BaseModel):
    """Per-transfer tunables."""

    part_size: int = Field(
        DEFAULT_PART_SIZE,
        gt=0,
        description="Size of each part in bytes",
    )
    task_num: int = Field(
        DEFAULT_TASK_NUM,
        ge=1,
        le=1000,
        description="Number of parts transferred concurrently",
    )
    max_retries: int = Field(
        DEFAULT_MAX_RETRIES,
        ge=0,
        description="Retries per part after the first attempt",
    )
    retry_backoff_base: float = Field(
        DEFAULT_RETRY_BACKOFF_BASE,
        ge=0,
        description="First backoff duration in seconds",
    )
    retry_jitter: float = Field(
        DEFAULT_RETRY_JITTER,
        ge=0,
        le=1,
        description="Random perturbation applied to each backoff",
    )
    part_timeout: Optional[float] = Field(
        None,
        gt=0,
        description="Deadline in seconds for one part including its retries",
    )
    rate_limit: Optional[int] = Field(
        None,
        gt=0,
        description="Transfer rate limit in bytes per second",
    )

    @classmethod
    def from_env(cls, **overrides) -> "TransferConfig":
        """Build a config from PARTWISE_* environment variables.

        Keyword arguments that are not None take precedence over the environment.
        """
        env_map = {
            "part_size": ("PARTWISE_PART_SIZE", int),
            "task_num": ("PARTWISE_TASK_NUM", int),
            "max_retries": ("PARTWISE_MAX_RETRIES", int),
            "part_timeout": ("PARTWISE_PART_TIMEOUT", float),
            "rate_limit": ("PARTWISE_RATE_LIMIT", int),
        }
        values = {}
        for field_name, (env_var, cast) in env_map.items():
            raw = os.getenv(env_var)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}") from e

        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid transfer configuration: {e}") from e
