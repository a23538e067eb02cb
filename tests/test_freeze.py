"""Tests for consistent_snapshot/freeze.py"""

from __future__ import annotations

import subprocess
from unittest import mock

import pytest

from consistent_snapshot.exceptions import FreezeError, UnfreezeError
from consistent_snapshot.filesystems import MountTarget
from consistent_snapshot.freeze import FreezeController
from tests.assertions import assert_equal, assert_nothing_frozen


def test_freeze_runs_fsfreeze_for_each_target_in_order(freeze_controller, fake_fsfreeze, mount_targets):
    """Every target is frozen, in sequence order."""
    freeze_controller.freeze(mount_targets)

    assert_equal(fake_fsfreeze.commands("-f"), ["/data", "/var/lib/db", "/srv"])
    assert_equal(freeze_controller.frozen, tuple(mount_targets))
    assert_equal(fake_fsfreeze.calls[0], ("/sbin/fsfreeze", "-f", "/data"))


def test_freeze_passes_check_and_timeout_to_runner(mount_targets):
    """fsfreeze is run with check=True and the configured timeout."""
    runner = mock.Mock(return_value=subprocess.CompletedProcess([], 0))
    controller = FreezeController(fsfreeze_path="/usr/sbin/fsfreeze", runner=runner, timeout=5)

    controller.freeze(mount_targets[:1])

    runner.assert_called_once_with(
        ["/usr/sbin/fsfreeze", "-f", "/data"],
        check=True,
        capture_output=True,
        text=True,
        timeout=5,
    )


def test_freeze_stops_at_first_failure(freeze_controller, fake_fsfreeze, mount_targets):
    """A failure on the 2nd target leaves the 1st frozen and never touches the 3rd."""
    fake_fsfreeze.fail_freeze.add("/var/lib/db")

    with pytest.raises(FreezeError) as exc_info:
        freeze_controller.freeze(mount_targets)

    error = exc_info.value
    assert_equal(error.target, mount_targets[1])
    assert_equal(error.frozen, (mount_targets[0],))
    assert "Device or resource busy" in str(error)
    assert_equal(error.exit_code, 1)
    assert_equal(fake_fsfreeze.commands("-f"), ["/data", "/var/lib/db"])
    assert_equal(freeze_controller.frozen, (mount_targets[0],))
    assert_equal(fake_fsfreeze.commands("-u"), [])


def test_freeze_missing_binary_raises_freeze_error(mount_targets):
    """A missing fsfreeze binary is reported as a FreezeError."""
    runner = mock.Mock(side_effect=FileNotFoundError(2, "No such file or directory"))
    controller = FreezeController(fsfreeze_path="/nope/fsfreeze", runner=runner)

    with pytest.raises(FreezeError) as exc_info:
        controller.freeze(mount_targets)

    assert_equal(exc_info.value.frozen, ())
    assert_equal(exc_info.value.exit_code, 5)


def test_freeze_timeout_raises_freeze_error(mount_targets):
    """An fsfreeze call that times out is a FreezeError."""
    runner = mock.Mock(side_effect=subprocess.TimeoutExpired(["fsfreeze"], 30))
    controller = FreezeController(runner=runner)

    with pytest.raises(FreezeError):
        controller.freeze(mount_targets)


def test_freeze_refuses_root():
    """The root filesystem can never be frozen, even when passed explicitly."""
    runner = mock.Mock()
    controller = FreezeController(runner=runner)

    with pytest.raises(ValueError):
        controller.freeze([MountTarget("/", "ext4")])

    runner.assert_not_called()


def test_freeze_skips_already_frozen_targets(freeze_controller, fake_fsfreeze, mount_targets):
    """Freezing a target twice does not call fsfreeze twice."""
    freeze_controller.freeze(mount_targets[:1])
    freeze_controller.freeze(mount_targets[:1])

    assert_equal(fake_fsfreeze.commands("-f"), ["/data"])


def test_unfreeze_defaults_to_every_frozen_target(freeze_controller, fake_fsfreeze, mount_targets):
    """unfreeze() without arguments covers every known-frozen target."""
    freeze_controller.freeze(mount_targets)

    freeze_controller.unfreeze()

    assert_equal(fake_fsfreeze.commands("-u"), ["/data", "/var/lib/db", "/srv"])
    assert_nothing_frozen(freeze_controller, fake_fsfreeze)


def test_unfreeze_twice_is_a_no_op(freeze_controller, fake_fsfreeze, mount_targets):
    """A second unfreeze of the same targets raises nothing and calls nothing."""
    freeze_controller.freeze(mount_targets)
    freeze_controller.unfreeze(mount_targets)

    freeze_controller.unfreeze(mount_targets)

    assert_equal(len(fake_fsfreeze.commands("-u")), 3)
    assert_nothing_frozen(freeze_controller, fake_fsfreeze)


def test_unfreeze_ignores_targets_never_frozen(freeze_controller, fake_fsfreeze, mount_targets):
    """Only targets this controller froze are unfrozen."""
    freeze_controller.freeze(mount_targets[:1])

    freeze_controller.unfreeze(mount_targets)

    assert_equal(fake_fsfreeze.commands("-u"), ["/data"])


def test_unfreeze_attempts_all_targets_and_aggregates_errors(freeze_controller, fake_fsfreeze, mount_targets):
    """A failing target does not stop the loop; all failures are reported together."""
    freeze_controller.freeze(mount_targets)
    fake_fsfreeze.fail_unfreeze.update({"/data", "/srv"})

    with pytest.raises(UnfreezeError) as exc_info:
        freeze_controller.unfreeze()

    error = exc_info.value
    assert_equal(fake_fsfreeze.commands("-u"), ["/data", "/var/lib/db", "/srv"])
    assert_equal(error.still_frozen, [mount_targets[0], mount_targets[2]])
    assert_equal(freeze_controller.frozen, (mount_targets[0], mount_targets[2]))
    assert "Failed to unfreeze 2 filesystem(s)" in str(error)
    assert "/data: fsfreeze: /data: unfreeze failed: Invalid argument" in str(error)


def test_unfreeze_retry_after_failure_reaches_remaining_targets(freeze_controller, fake_fsfreeze, mount_targets):
    """Targets that failed to unfreeze stay tracked and can be retried."""
    freeze_controller.freeze(mount_targets)
    fake_fsfreeze.fail_unfreeze.add("/srv")
    with pytest.raises(UnfreezeError):
        freeze_controller.unfreeze()

    fake_fsfreeze.fail_unfreeze.clear()
    freeze_controller.unfreeze()

    assert_nothing_frozen(freeze_controller, fake_fsfreeze)


def test_dry_run_tracks_state_without_running_commands(mount_targets, caplog):
    """Dry run logs the commands and keeps FreezeState consistent."""
    runner = mock.Mock()
    controller = FreezeController(fsfreeze_path="/sbin/fsfreeze", runner=runner, dry_run=True)

    with caplog.at_level("INFO"):
        controller.freeze(mount_targets)
        assert_equal(controller.frozen, tuple(mount_targets))
        controller.unfreeze()

    runner.assert_not_called()
    assert_equal(controller.frozen, ())
    assert "[dry run] /sbin/fsfreeze -f /data" in caplog.text
    assert "[dry run] /sbin/fsfreeze -u /srv" in caplog.text


def test_fsfreeze_path_from_environment(monkeypatch):
    """CONSISTENT_SNAPSHOT_FSFREEZE overrides the default binary."""
    monkeypatch.setenv("CONSISTENT_SNAPSHOT_FSFREEZE", "/opt/bin/fsfreeze")

    assert_equal(FreezeController().fsfreeze_path, "/opt/bin/fsfreeze")


def test_freeze_after_each_can_stop_remaining_targets(freeze_controller, fake_fsfreeze, mount_targets):
    """An exception from the per-target callback leaves later targets untouched."""
    seen = []

    def _after_each(target):
        seen.append(target.path)
        if target.path == "/data":
            raise KeyError("stop")

    with pytest.raises(KeyError):
        freeze_controller.freeze(mount_targets, after_each=_after_each)

    assert_equal(seen, ["/data"])
    assert_equal(fake_fsfreeze.commands("-f"), ["/data"])
    assert_equal(freeze_controller.frozen, (mount_targets[0],))
