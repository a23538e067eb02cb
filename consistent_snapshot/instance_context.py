"""
Instance identity and attached volume lookup.

Ec2InstanceContext reads the instance metadata service (IMDSv2) and lists
the EBS volumes attached to the instance. Every failure surfaces as a
ContextError so the run aborts before anything is frozen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from botocore.exceptions import BotoCoreError, ClientError

from consistent_snapshot import config
from consistent_snapshot.aws_client_factory import create_ec2_client
from consistent_snapshot.exceptions import ContextError

TOKEN_PATH = "/latest/api/token"
INSTANCE_ID_PATH = "/latest/meta-data/instance-id"
AVAILABILITY_ZONE_PATH = "/latest/meta-data/placement/availability-zone"


class InstanceContext(Protocol):
    """What the orchestrator needs to know about the running instance."""

    def get_instance_id(self) -> str: ...

    def get_region(self) -> str: ...

    def get_attached_volumes(self, instance_id: str, region: str) -> List[str]: ...


def region_from_availability_zone(availability_zone: str) -> str:
    """Strip the trailing zone letter, e.g. us-east-1a -> us-east-1."""
    availability_zone = availability_zone.strip()
    if len(availability_zone) < 2 or not availability_zone[-1].isalpha():
        raise ValueError(f"Unexpected availability zone {availability_zone!r}")
    return availability_zone[:-1]


def list_attached_volumes(ec2_client, instance_id: str) -> List[str]:
    """Return the IDs of every EBS volume attached to the instance."""
    paginator = ec2_client.get_paginator("describe_volumes")
    volume_ids = []
    for page in paginator.paginate(Filters=[{"Name": "attachment.instance-id", "Values": [instance_id]}]):
        for volume in page.get("Volumes", []):
            volume_ids.append(volume["VolumeId"])
    return volume_ids


class Ec2InstanceContext:
    """InstanceContext backed by IMDSv2 and the EC2 API."""

    def __init__(
        self,
        endpoint: str = config.IMDS_ENDPOINT,
        timeout: float = config.IMDS_TIMEOUT_SECONDS,
        client_factory: Callable = create_ec2_client,
        opener: Optional[Callable] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.client_factory = client_factory
        self._open = opener or urllib_request.urlopen
        self._token: Optional[str] = None

    def _fetch_token(self) -> str:
        if self._token is None:
            token_request = urllib_request.Request(
                self.endpoint + TOKEN_PATH,
                method="PUT",
                headers={"X-aws-ec2-metadata-token-ttl-seconds": str(config.IMDS_TOKEN_TTL_SECONDS)},
            )
            with self._open(token_request, timeout=self.timeout) as response:
                self._token = response.read().decode("utf-8").strip()
        return self._token

    def _get_metadata(self, what: str, path: str) -> str:
        try:
            token = self._fetch_token()
            metadata_request = urllib_request.Request(
                self.endpoint + path,
                method="GET",
                headers={"X-aws-ec2-metadata-token": token},
            )
            with self._open(metadata_request, timeout=self.timeout) as response:
                value = response.read().decode("utf-8").strip()
        except (urllib_error.URLError, OSError, UnicodeDecodeError) as exc:
            raise ContextError(what, exc) from exc
        if not value:
            raise ContextError(what, ValueError("empty metadata response"))
        return value

    def get_instance_id(self) -> str:
        instance_id = self._get_metadata("instance id", INSTANCE_ID_PATH)
        logging.info("Instance ID: %s", instance_id)
        return instance_id

    def get_region(self) -> str:
        availability_zone = self._get_metadata("availability zone", AVAILABILITY_ZONE_PATH)
        try:
            region = region_from_availability_zone(availability_zone)
        except ValueError as exc:
            raise ContextError("region", exc) from exc
        logging.info("Region: %s", region)
        return region

    def get_attached_volumes(self, instance_id: str, region: str) -> List[str]:
        try:
            volume_ids = list_attached_volumes(self.client_factory(region), instance_id)
        except (ClientError, BotoCoreError) as exc:
            raise ContextError(f"volumes attached to {instance_id}", exc) from exc
        logging.info("Attached volumes: %s", ", ".join(volume_ids) or "none")
        return volume_ids


@dataclass
class StaticInstanceContext:
    """Instance context with some or all values supplied up front.

    Values left unset are delegated to ``fallback``.
    """

    instance_id: Optional[str] = None
    region: Optional[str] = None
    volumes: Optional[List[str]] = None
    fallback: Optional[InstanceContext] = field(default=None, repr=False)

    def _require_fallback(self, what: str) -> InstanceContext:
        if self.fallback is None:
            raise ContextError(what, ValueError("no value supplied"))
        return self.fallback

    def get_instance_id(self) -> str:
        if self.instance_id:
            return self.instance_id
        return self._require_fallback("instance id").get_instance_id()

    def get_region(self) -> str:
        if self.region:
            return self.region
        return self._require_fallback("region").get_region()

    def get_attached_volumes(self, instance_id: str, region: str) -> List[str]:
        if self.volumes is not None:
            return list(self.volumes)
        return self._require_fallback("attached volumes").get_attached_volumes(instance_id, region)
