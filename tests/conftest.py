"""Shared pytest fixtures for test files."""

from __future__ import annotations

import copy
import subprocess
from unittest import mock

import pytest
from botocore.exceptions import ClientError

from consistent_snapshot.filesystems import MountTarget
from consistent_snapshot.freeze import FreezeController
from consistent_snapshot.instance_context import StaticInstanceContext
from consistent_snapshot.snapshots import SnapshotResult


class _DefaultResponse(dict):
    """Dict returning empty list for missing keys."""

    def __missing__(self, key):
        return []


_DEFAULT_RESPONSES: dict[str, dict] = {
    "describe_volumes": _DefaultResponse(Volumes=[]),
    "create_snapshot": _DefaultResponse(SnapshotId="snap-stub", State="pending"),
}


class _StubBotoClient:
    """Minimal stub for boto3 clients used in tests."""

    def __init__(self, service_name: str, **kwargs):
        self.service_name = service_name
        self.region_name = kwargs.get("region_name")
        self.kwargs = kwargs
        self.exceptions = ClientError

    def __getattr__(self, name: str):
        def _method(*args, **kwargs):
            del args, kwargs
            response = _DEFAULT_RESPONSES.get(name)
            if response is None:
                return _DefaultResponse()
            return copy.deepcopy(response)

        return _method


@pytest.fixture(autouse=True)
def stub_boto3_client(monkeypatch):
    """Replace boto3.client with a stub so tests don't call real AWS."""

    def fake_client(service_name, **kwargs):
        return _StubBotoClient(service_name, **kwargs)

    monkeypatch.setattr("boto3.client", fake_client)


class FakeFsfreeze:
    """Stands in for subprocess.run when invoking fsfreeze.

    Tracks which paths the fake kernel considers frozen and, like the real
    ioctl, rejects freezing a frozen path or thawing an unfrozen one.
    """

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.kernel_frozen: set[str] = set()
        self.fail_freeze: set[str] = set()
        self.fail_unfreeze: set[str] = set()
        self.on_call = None

    def _fail(self, command, message):
        raise subprocess.CalledProcessError(1, command, output="", stderr=f"fsfreeze: {message}\n")

    def __call__(self, command, **kwargs):
        del kwargs
        self.calls.append(tuple(command))
        if self.on_call is not None:
            self.on_call(command)
        _, flag, path = command
        if flag == "-f":
            if path in self.fail_freeze or path in self.kernel_frozen:
                self._fail(command, f"{path}: freeze failed: Device or resource busy")
            self.kernel_frozen.add(path)
        else:
            if path in self.fail_unfreeze or path not in self.kernel_frozen:
                self._fail(command, f"{path}: unfreeze failed: Invalid argument")
            self.kernel_frozen.discard(path)
        return subprocess.CompletedProcess(command, 0, "", "")

    def commands(self, flag: str) -> list[str]:
        """Paths passed with the given fsfreeze flag, in call order."""
        return [path for _, called_flag, path in self.calls if called_flag == flag]


@pytest.fixture(name="fake_fsfreeze")
def fixture_fake_fsfreeze():
    return FakeFsfreeze()


@pytest.fixture(name="freeze_controller")
def fixture_freeze_controller(fake_fsfreeze):
    return FreezeController(fsfreeze_path="/sbin/fsfreeze", runner=fake_fsfreeze)


@pytest.fixture(name="mount_targets")
def fixture_mount_targets():
    return [
        MountTarget("/data", "ext4"),
        MountTarget("/var/lib/db", "xfs"),
        MountTarget("/srv", "ext4"),
    ]


@pytest.fixture(name="static_context")
def fixture_static_context():
    return StaticInstanceContext(
        instance_id="i-0123456789abcdef0",
        region="us-east-1",
        volumes=["vol-111", "vol-222", "vol-333"],
    )


@pytest.fixture(name="snapshot_requester")
def fixture_snapshot_requester():
    """SnapshotRequester mock that succeeds for every volume."""
    requester = mock.Mock()

    def _request(volumes, description, tags, region):
        del description, tags, region
        return [SnapshotResult(volume_id=v, snapshot_id=f"snap-{v[4:]}") for v in volumes]

    requester.request_snapshots.side_effect = _request
    return requester
