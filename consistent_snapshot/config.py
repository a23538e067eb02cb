"""
Configuration for the consistent snapshot tool.

Defaults can be overridden through CONSISTENT_SNAPSHOT_* environment variables,
which may also be placed in the .env file used for AWS credentials.
"""

from __future__ import annotations

import os

ENV_PREFIX = "CONSISTENT_SNAPSHOT_"

# Filesystem kinds that support FIFREEZE and are worth freezing before a snapshot
DEFAULT_FREEZABLE_FS_TYPES: tuple[str, ...] = ("ext2", "ext3", "ext4", "xfs", "btrfs", "jfs", "reiserfs")

# Kernel mount table
MOUNTS_PATH: str = "/proc/self/mounts"

# util-linux freeze binary
FSFREEZE_PATH: str = "/sbin/fsfreeze"
FSFREEZE_TIMEOUT_SECONDS: int = 30

# Instance metadata service (IMDSv2)
IMDS_ENDPOINT: str = "http://169.254.169.254"
IMDS_TIMEOUT_SECONDS: float = 2.0
IMDS_TOKEN_TTL_SECONDS: int = 60

# Snapshot fan-out
MAX_SNAPSHOT_WORKERS: int = 4
API_MAX_ATTEMPTS: int = 3  # botocore standard retry mode, exponential backoff

# Log records held in memory while filesystems are frozen
LOG_BUFFER_CAPACITY: int = 100_000

# Single-instance run lock
LOCK_FILE_PATH: str = "/var/lock/ec2-consistent-snapshot.lock"
LOCK_TIMEOUT_SECONDS: float = 0


class ConfigurationError(ValueError):
    """Raised when an environment override cannot be parsed."""

    def __init__(self, name: str, value: str):
        super().__init__(f"Invalid value for {name}: {value!r}")


def _env(name: str):
    return os.environ.get(ENV_PREFIX + name)


def get_freezable_fs_types() -> tuple[str, ...]:
    """Return the freezable fs types, honouring CONSISTENT_SNAPSHOT_FS_TYPES."""
    raw = _env("FS_TYPES")
    if not raw:
        return DEFAULT_FREEZABLE_FS_TYPES
    return parse_fs_types(raw)


def parse_fs_types(raw: str) -> tuple[str, ...]:
    """Split a comma separated list of filesystem kinds."""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def get_fsfreeze_path() -> str:
    return _env("FSFREEZE") or FSFREEZE_PATH


def get_lock_file_path() -> str:
    return _env("LOCK_FILE") or LOCK_FILE_PATH


def get_max_workers() -> int:
    """Return the snapshot worker count, honouring CONSISTENT_SNAPSHOT_MAX_WORKERS."""
    raw = _env("MAX_WORKERS")
    if not raw:
        return MAX_SNAPSHOT_WORKERS
    try:
        workers = int(raw)
    except ValueError as exc:
        raise ConfigurationError(ENV_PREFIX + "MAX_WORKERS", raw) from exc
    if workers < 1:
        raise ConfigurationError(ENV_PREFIX + "MAX_WORKERS", raw)
    return workers
