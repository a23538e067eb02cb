"""
EBS Snapshot Request Module
Issues one CreateSnapshot call per volume and collects a result for each.

A failure on one volume never stops the others.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from consistent_snapshot import config
from consistent_snapshot.aws_client_factory import create_ec2_client
from consistent_snapshot.exceptions import ContextError, SnapshotError
from consistent_snapshot.tags import build_tag_specifications

DRY_RUN_ERROR_CODE = "DryRunOperation"


@dataclass(frozen=True)
class SnapshotRequest:
    """Metadata shared by every snapshot created in one run."""

    description: Optional[str] = None
    tags: List[Dict[str, str]] = field(default_factory=list)

    def to_api_kwargs(self, volume_id: str, dry_run: bool = False) -> dict:
        """Build CreateSnapshot keyword arguments for one volume."""
        kwargs = {"VolumeId": volume_id}
        if self.description:
            kwargs["Description"] = self.description
        tag_specifications = build_tag_specifications(self.tags)
        if tag_specifications:
            kwargs["TagSpecifications"] = tag_specifications
        if dry_run:
            kwargs["DryRun"] = True
        return kwargs


@dataclass(frozen=True)
class SnapshotResult:
    """Outcome of one volume's snapshot request."""

    volume_id: str
    snapshot_id: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


class SnapshotRequester:
    """Fans CreateSnapshot calls out over the instance's volumes."""

    def __init__(
        self,
        client_factory: Callable = create_ec2_client,
        max_workers: int = config.MAX_SNAPSHOT_WORKERS,
        dry_run: bool = False,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.client_factory = client_factory
        self.max_workers = max_workers
        self.dry_run = dry_run
        self._clients: Dict[str, object] = {}

    def prepare(self, region: str) -> None:
        """
        Build the EC2 client for a region ahead of the freeze window.

        Raises:
            ContextError: If botocore cannot build a client for the region
        """
        if region in self._clients:
            return
        try:
            self._clients[region] = self.client_factory(region)
        except BotoCoreError as exc:
            raise ContextError(f"EC2 client settings for {region}", exc) from exc
        logging.debug("EC2 client ready for %s", region)

    def _create_snapshot(self, ec2_client, request: SnapshotRequest, volume_id: str) -> SnapshotResult:
        try:
            response = ec2_client.create_snapshot(**request.to_api_kwargs(volume_id, self.dry_run))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == DRY_RUN_ERROR_CODE:
                logging.info("[dry run] Snapshot of %s would have succeeded", volume_id)
                return SnapshotResult(volume_id=volume_id, dry_run=True)
            error = SnapshotError(volume_id, exc)
            logging.error("%s", error)
            return SnapshotResult(volume_id=volume_id, error=str(error))
        except BotoCoreError as exc:
            error = SnapshotError(volume_id, exc)
            logging.error("%s", error)
            return SnapshotResult(volume_id=volume_id, error=str(error))

        snapshot_id = response["SnapshotId"]
        logging.info("Snapshot %s started for volume %s", snapshot_id, volume_id)
        return SnapshotResult(volume_id=volume_id, snapshot_id=snapshot_id)

    def request_snapshots(
        self,
        volumes: Sequence[str],
        description: Optional[str],
        tags: List[Dict[str, str]],
        region: str,
    ) -> List[SnapshotResult]:
        """
        Request a snapshot of every volume.

        Args:
            volumes: EBS volume IDs
            description: Optional snapshot description
            tags: Key/Value tag dicts applied to every snapshot
            region: Region the volumes live in

        Returns:
            One SnapshotResult per volume, in the order of ``volumes``
        """
        if not volumes:
            return []
        request = SnapshotRequest(description=description, tags=list(tags))
        if region not in self._clients:
            self.prepare(region)
        ec2_client = self._clients[region]

        workers = min(self.max_workers, len(volumes))
        if workers == 1:
            return [self._create_snapshot(ec2_client, request, volume_id) for volume_id in volumes]

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._create_snapshot, ec2_client, request, volume_id)
                for volume_id in volumes
            ]
            return [future.result() for future in futures]
