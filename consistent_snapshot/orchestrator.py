"""
Freeze / snapshot / unfreeze orchestration.

The run moves through the phases below. Once the first filesystem may be
frozen, every exit path (a step error, a termination signal, or an unexpected
exception) passes through a single recovery handler that unfreezes whatever is
still frozen. The handler runs at most once and is safe to combine with the
normal-path unfreeze because FreezeController only unfreezes targets it knows
to be frozen.

    IDLE -> SYNCING -> FREEZING -> SNAPSHOTTING -> UNFREEZING -> DONE

FREEZING, SNAPSHOTTING and UNFREEZING can each end in FAILED_RECOVERED.

Log records emitted between the first freeze and the end of recovery are held
in memory and written out afterwards. A log file on a frozen mount would
otherwise block the process with the freeze held.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from consistent_snapshot import config
from consistent_snapshot.exceptions import (
    EXIT_GENERIC_FAILURE,
    ContextError,
    EnumerationError,
    RunInterrupted,
    SnapshotToolError,
    UnfreezeError,
)
from consistent_snapshot.filesystems import MountTarget, list_mount_targets
from consistent_snapshot.freeze import FreezeController
from consistent_snapshot.instance_context import InstanceContext
from consistent_snapshot.snapshots import SnapshotRequester, SnapshotResult

TRAPPED_SIGNAL_NAMES = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")


class Phase(Enum):
    """Orchestrator phases"""

    IDLE = "idle"
    SYNCING = "syncing"
    FREEZING = "freezing"
    SNAPSHOTTING = "snapshotting"
    UNFREEZING = "unfreezing"
    DONE = "done"
    FAILED_RECOVERED = "failed_recovered"


@dataclass
class RunReport:  # pylint: disable=too-many-instance-attributes
    """Everything a run learned and did, for the final report."""

    instance_id: str = ""
    region: str = ""
    volumes: List[str] = field(default_factory=list)
    targets: List[MountTarget] = field(default_factory=list)
    results: List[SnapshotResult] = field(default_factory=list)
    phase: Phase = Phase.IDLE
    failed_phase: Optional[Phase] = None
    error: Optional[BaseException] = None
    unfreeze_error: Optional[UnfreezeError] = None
    frozen_seconds: Optional[float] = None

    @property
    def failed_results(self) -> List[SnapshotResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def exit_code(self) -> int:
        """0 when freeze and unfreeze succeeded, even if some snapshots failed."""
        if self.unfreeze_error is not None:
            return self.unfreeze_error.exit_code
        if self.error is None:
            return 0
        return getattr(self.error, "exit_code", EXIT_GENERIC_FAILURE)


class CriticalSectionOrchestrator:  # pylint: disable=too-many-instance-attributes
    """Runs the freeze / snapshot / unfreeze sequence for one instance."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        context: InstanceContext,
        freeze_controller: FreezeController,
        snapshot_requester: SnapshotRequester,
        description: Optional[str] = None,
        tags: Optional[List[Dict[str, str]]] = None,
        enumerate_targets: Callable[[], List[MountTarget]] = list_mount_targets,
        sync: Callable[[], None] = os.sync,
        trap_signals: bool = True,
    ):
        self.context = context
        self.freeze_controller = freeze_controller
        self.snapshot_requester = snapshot_requester
        self.description = description
        self.tags = list(tags or [])
        self.enumerate_targets = enumerate_targets
        self.sync = sync
        self.trap_signals = trap_signals
        self.report = RunReport()
        self._recovery_started = False
        self._pending_signal: Optional[int] = None
        # signals raise RunInterrupted only while armed
        self._armed = False

    def _set_phase(self, phase: Phase) -> None:
        logging.debug("Phase: %s -> %s", self.report.phase.value, phase.value)
        self.report.phase = phase

    def _load_context(self) -> None:
        report = self.report
        report.instance_id = self.context.get_instance_id()
        report.region = self.context.get_region()
        report.volumes = list(self.context.get_attached_volumes(report.instance_id, report.region))
        if report.volumes:
            self.snapshot_requester.prepare(report.region)

    def run(self) -> RunReport:
        """
        Execute the run and return its report.

        Known failures are recorded on the report rather than raised.
        Unexpected exceptions are re-raised after recovery has unfrozen
        every frozen filesystem.
        """
        report = self.report
        try:
            self._load_context()
        except ContextError as exc:
            logging.error("%s", exc)
            report.error = exc
            return report

        if not report.volumes:
            logging.warning("No EBS volumes attached to %s, nothing to snapshot", report.instance_id)

        self._set_phase(Phase.SYNCING)
        try:
            self.sync()
            report.targets = list(self.enumerate_targets())
        except (EnumerationError, OSError) as exc:
            logging.error("%s", exc)
            report.error = exc
            return report

        started = time.monotonic()
        with self._signals_trapped(), self._logging_deferred():
            try:
                self._armed = True
                self._critical_section()
                self._armed = False
            except BaseException as exc:  # pylint: disable=broad-exception-caught
                self._armed = False
                self._recover(exc)
                if not isinstance(exc, SnapshotToolError):
                    raise
            finally:
                report.frozen_seconds = time.monotonic() - started
        return report

    def _critical_section(self) -> None:
        report = self.report
        self._set_phase(Phase.FREEZING)
        self.freeze_controller.freeze(report.targets, after_each=self._stop_if_signalled)
        self._raise_pending_signal()

        self._set_phase(Phase.SNAPSHOTTING)
        report.results = self.snapshot_requester.request_snapshots(
            report.volumes, self.description, self.tags, report.region
        )

        self._set_phase(Phase.UNFREEZING)
        self.freeze_controller.unfreeze()
        self._raise_pending_signal()

        self._set_phase(Phase.DONE)
        if report.failed_results:
            logging.warning(
                "%d of %d snapshot request(s) failed",
                len(report.failed_results),
                len(report.results),
            )

    def _recover(self, exc: BaseException) -> None:
        """Unfreeze everything still frozen. Runs at most once per run."""
        if self._recovery_started:
            return
        self._recovery_started = True
        report = self.report
        report.failed_phase = report.phase
        report.error = exc
        self._set_phase(Phase.FAILED_RECOVERED)
        logging.error("Run failed while %s: %s", report.failed_phase.value, exc)

        if isinstance(exc, UnfreezeError):
            report.unfreeze_error = exc
        else:
            try:
                self.freeze_controller.unfreeze()
            except UnfreezeError as unfreeze_exc:
                report.unfreeze_error = unfreeze_exc

        if report.unfreeze_error is not None:
            still_frozen = ", ".join(t.path for t in report.unfreeze_error.still_frozen)
            logging.critical("FILESYSTEMS MAY STILL BE FROZEN: %s", still_frozen)
            logging.critical("Run 'fsfreeze -u <mountpoint>' on each of them now.")

    def _raise_interrupt(self, signum: int) -> None:
        self._armed = False
        raise RunInterrupted(signum, signal.Signals(signum).name)

    def _raise_pending_signal(self) -> None:
        if self._pending_signal is not None:
            self._raise_interrupt(self._pending_signal)

    def _stop_if_signalled(self, _target: MountTarget) -> None:
        self._raise_pending_signal()

    def _handle_signal(self, signum, _frame) -> None:
        name = signal.Signals(signum).name
        if self._recovery_started:
            logging.warning("Received %s, recovery already under way", name)
            return
        if self._pending_signal is not None:
            logging.warning("Received %s, already stopping after the current fsfreeze call", name)
            return
        if not self._armed:
            logging.warning("Received %s outside the freeze window, ignoring", name)
            return
        if self.report.phase in (Phase.FREEZING, Phase.UNFREEZING):
            # an interrupted fsfreeze call leaves the mount state unknown
            logging.warning(
                "Received %s while %s, stopping once that step completes",
                name,
                self.report.phase.value,
            )
            self._pending_signal = signum
            return
        logging.warning("Received %s, unfreezing filesystems before exit", name)
        self._raise_interrupt(signum)

    @contextmanager
    def _logging_deferred(self):
        """Buffer every root handler's records until the block exits."""
        root = logging.getLogger()
        original = list(root.handlers)
        targets = original or [logging.lastResort]
        buffers = []
        for target in targets:
            if target is None:
                continue
            buffer = logging.handlers.MemoryHandler(
                config.LOG_BUFFER_CAPACITY,
                flushLevel=logging.CRITICAL + 1,
                target=target,
            )
            buffer.setLevel(target.level)
            buffers.append(buffer)
        root.handlers = buffers
        try:
            yield
        finally:
            root.handlers = original
            for buffer in buffers:
                buffer.close()

    @contextmanager
    def _signals_trapped(self):
        if not self.trap_signals or threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = {}
        for name in TRAPPED_SIGNAL_NAMES:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            previous[signum] = signal.signal(signum, self._handle_signal)
        try:
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, signal.SIG_DFL if handler is None else handler)
