"""
Filesystem freeze control.

FreezeController is the only owner of the set of currently frozen mounts.
Unfreezing a target that is not in that set is a no-op, so unfreeze can run
from both the normal path and the recovery path.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import Callable, Optional, Sequence

from consistent_snapshot import config
from consistent_snapshot.exceptions import FreezeError, UnfreezeError, describe_error
from consistent_snapshot.filesystems import ROOT_MOUNT, MountTarget


class FreezeController:
    """Freezes and unfreezes mount targets with fsfreeze(8)."""

    def __init__(
        self,
        fsfreeze_path: Optional[str] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        timeout: float = config.FSFREEZE_TIMEOUT_SECONDS,
        dry_run: bool = False,
    ):
        self.fsfreeze_path = fsfreeze_path or config.get_fsfreeze_path()
        self.runner = runner
        self.timeout = timeout
        self.dry_run = dry_run
        self._frozen: list[MountTarget] = []
        self._lock = threading.Lock()

    @property
    def frozen(self) -> tuple[MountTarget, ...]:
        """Targets currently frozen by this controller, in freeze order."""
        with self._lock:
            return tuple(self._frozen)

    def _run(self, flag: str, target: MountTarget) -> None:
        command = [self.fsfreeze_path, flag, target.path]
        if self.dry_run:
            logging.info("[dry run] %s", " ".join(command))
            return
        self.runner(command, check=True, capture_output=True, text=True, timeout=self.timeout)

    def freeze(
        self,
        targets: Sequence[MountTarget],
        after_each: Optional[Callable[[MountTarget], None]] = None,
    ) -> None:
        """
        Freeze each target in order, stopping at the first failure.

        Targets frozen before a failure stay frozen; the raised FreezeError
        lists them so the caller can recover.

        Args:
            targets: Mount targets to freeze
            after_each: Called with each target once it is frozen and tracked.
                Anything it raises stops the loop before the next target.

        Raises:
            FreezeError: If a target cannot be frozen
        """
        for target in targets:
            if target.path == ROOT_MOUNT:
                raise ValueError("Refusing to freeze the root filesystem")
            with self._lock:
                if target in self._frozen:
                    continue
            logging.info("Freezing %s", target)
            try:
                self._run("-f", target)
            except (subprocess.SubprocessError, OSError) as exc:
                raise FreezeError(target, self.frozen, exc) from exc
            with self._lock:
                self._frozen.append(target)
            if after_each is not None:
                after_each(target)

    def unfreeze(self, targets: Optional[Sequence[MountTarget]] = None) -> None:
        """
        Unfreeze the given targets, or every frozen target when none are given.

        Every target is attempted even if an earlier one fails. Targets that
        are not frozen are skipped.

        Raises:
            UnfreezeError: If any target could not be unfrozen
        """
        with self._lock:
            pending = list(self._frozen) if targets is None else [t for t in targets if t in self._frozen]

        failures = []
        for target in pending:
            logging.info("Unfreezing %s", target)
            try:
                self._run("-u", target)
            except (subprocess.SubprocessError, OSError) as exc:
                logging.error("Failed to unfreeze %s: %s", target, describe_error(exc))
                failures.append((target, exc))
                continue
            with self._lock:
                if target in self._frozen:
                    self._frozen.remove(target)

        if failures:
            raise UnfreezeError(failures)
