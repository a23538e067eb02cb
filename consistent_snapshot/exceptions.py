"""
Exceptions for the consistent snapshot tool.

Every fatal error kind carries the process exit code the CLI should use.
"""

from __future__ import annotations

from typing import Optional, Sequence

EXIT_GENERIC_FAILURE = 1
EXIT_USAGE_ERROR = 2
EXIT_CONTEXT_ERROR = 3
EXIT_ENUMERATION_ERROR = 4
EXIT_FREEZE_ERROR = 5
EXIT_UNFREEZE_ERROR = 6
EXIT_LOCK_BUSY = 7
SIGNAL_EXIT_BASE = 128


def describe_error(error) -> str:
    """Prefer a failed command's stderr over the generic CalledProcessError text."""
    stderr = getattr(error, "stderr", None)
    if isinstance(stderr, bytes):
        stderr = stderr.decode(errors="replace")
    if stderr and stderr.strip():
        return stderr.strip()
    return str(error)


class SnapshotToolError(RuntimeError):
    """Base class for errors raised by the snapshot tool."""

    exit_code = EXIT_GENERIC_FAILURE


class ContextError(SnapshotToolError):
    """Raised when the instance id, region, or volume list cannot be determined."""

    exit_code = EXIT_CONTEXT_ERROR

    def __init__(self, what: str, error: Exception):
        super().__init__(f"Unable to determine {what}: {error}")
        self.what = what


class EnumerationError(SnapshotToolError):
    """Raised when the mount table cannot be read."""

    exit_code = EXIT_ENUMERATION_ERROR

    def __init__(self, source: str, error: Exception):
        super().__init__(f"Unable to read mount table {source}: {error}")


class FreezeError(SnapshotToolError):
    """Raised when a mount target fails to freeze.

    ``frozen`` lists the targets that were frozen before the failure, in order,
    so recovery can unfreeze exactly those.
    """

    exit_code = EXIT_FREEZE_ERROR

    def __init__(self, target, frozen: Sequence, error: Exception):
        super().__init__(f"Failed to freeze {target.path}: {describe_error(error)}")
        self.target = target
        self.frozen = tuple(frozen)
        returncode: Optional[int] = getattr(error, "returncode", None)
        if returncode:
            self.exit_code = returncode


class UnfreezeError(SnapshotToolError):
    """Raised after an unfreeze pass in which one or more targets stayed frozen."""

    exit_code = EXIT_UNFREEZE_ERROR

    def __init__(self, failures: Sequence[tuple]):
        details = "; ".join(f"{target.path}: {describe_error(error)}" for target, error in failures)
        super().__init__(f"Failed to unfreeze {len(failures)} filesystem(s): {details}")
        self.failures = tuple(failures)
        for _, error in failures:
            returncode = getattr(error, "returncode", None)
            if returncode:
                self.exit_code = returncode
                break

    @property
    def still_frozen(self) -> list:
        """Targets that may remain frozen."""
        return [target for target, _ in self.failures]


class SnapshotError(SnapshotToolError):
    """Per-volume snapshot failure. Recorded in the report, never fatal."""

    def __init__(self, volume_id: str, error: Exception):
        super().__init__(f"Error creating snapshot for volume {volume_id}: {error}")
        self.volume_id = volume_id


class RunInterrupted(SnapshotToolError):
    """Raised in the main thread when a termination signal arrives mid-run."""

    def __init__(self, signum: int, name: str):
        super().__init__(f"Interrupted by {name}")
        self.signum = signum
        self.exit_code = SIGNAL_EXIT_BASE + signum


class RunLockError(SnapshotToolError):
    """Raised when another invocation already holds the run lock."""

    exit_code = EXIT_LOCK_BUSY

    def __init__(self, lock_path: str):
        super().__init__(f"Another snapshot run holds the lock {lock_path}")
        self.lock_path = lock_path
