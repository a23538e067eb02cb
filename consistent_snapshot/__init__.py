"""
Consistent EBS snapshot package.

Freezes the instance's writable filesystems, snapshots every attached EBS
volume, and unfreezes, guaranteeing the unfreeze on failure or interruption.
"""

from .cli import main
from .exceptions import (
    ContextError,
    EnumerationError,
    FreezeError,
    RunInterrupted,
    SnapshotError,
    SnapshotToolError,
    UnfreezeError,
)
from .filesystems import MountTarget, list_mount_targets
from .freeze import FreezeController
from .instance_context import Ec2InstanceContext, InstanceContext, StaticInstanceContext
from .orchestrator import CriticalSectionOrchestrator, Phase, RunReport
from .snapshots import SnapshotRequest, SnapshotRequester, SnapshotResult
from .tags import TagFormatError, build_tag_specifications, parse_tags

__all__ = [
    "main",
    "ContextError",
    "CriticalSectionOrchestrator",
    "Ec2InstanceContext",
    "EnumerationError",
    "FreezeController",
    "FreezeError",
    "InstanceContext",
    "MountTarget",
    "Phase",
    "RunInterrupted",
    "RunReport",
    "SnapshotError",
    "SnapshotRequest",
    "SnapshotRequester",
    "SnapshotResult",
    "SnapshotToolError",
    "StaticInstanceContext",
    "TagFormatError",
    "UnfreezeError",
    "build_tag_specifications",
    "list_mount_targets",
    "parse_tags",
]
