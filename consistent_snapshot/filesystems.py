"""
Mount table enumeration.

Lists the mounted filesystems that should be frozen before a snapshot.
The root filesystem is never returned.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from consistent_snapshot import config
from consistent_snapshot.exceptions import EnumerationError

ROOT_MOUNT = "/"

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")
_MIN_MOUNT_FIELDS = 3


@dataclass(frozen=True)
class MountTarget:
    """A mounted filesystem that can be frozen."""

    path: str
    fs_type: str

    def __str__(self) -> str:
        return f"{self.path} ({self.fs_type})"


def _unescape(field: str) -> str:
    """Decode the octal escapes the kernel uses for spaces, tabs, and backslashes."""
    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), field)


def parse_mount_table(lines: Iterable[str], fs_types: Iterable[str]) -> list[MountTarget]:
    """
    Filter mount table lines down to freezable mount targets.

    Args:
        lines: Lines in /proc/mounts format
        fs_types: Filesystem kinds to keep

    Returns:
        Mount targets in mount table order, root and duplicates excluded
    """
    wanted = set(fs_types)
    targets: list[MountTarget] = []
    seen: set[str] = set()
    for line in lines:
        fields = line.split()
        if len(fields) < _MIN_MOUNT_FIELDS:
            continue
        path = _unescape(fields[1])
        fs_type = fields[2]
        if fs_type not in wanted or path == ROOT_MOUNT or path in seen:
            continue
        seen.add(path)
        targets.append(MountTarget(path=path, fs_type=fs_type))
    return targets


def list_mount_targets(
    fs_types: Optional[Iterable[str]] = None,
    mounts_path: str = config.MOUNTS_PATH,
) -> list[MountTarget]:
    """
    Return the currently mounted freezable filesystems, excluding root.

    Raises:
        EnumerationError: If the mount table cannot be read
    """
    if fs_types is None:
        fs_types = config.get_freezable_fs_types()
    try:
        content = Path(mounts_path).read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        raise EnumerationError(mounts_path, exc) from exc

    targets = parse_mount_table(content.splitlines(), fs_types)
    logging.debug("Freezable mounts: %s", ", ".join(str(t) for t in targets) or "none")
    return targets
