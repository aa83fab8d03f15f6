"""Per-run AWS resources: the fleet security group and key pair."""

from __future__ import annotations

import contextlib
import os
import random
import string
import tempfile
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from burst.core.exceptions import ProvisioningError

from .clients import EC2ClientFactory
from .config import AWS

log = logger.bind(component="aws-infra")

SECURITY_GROUP_DESCRIPTION = "Temporary access groups for burst vms"


def _random_suffix(k: int = 10) -> str:
    return "".join(random.choices(string.ascii_letters + string.digits, k=k))


@dataclass(frozen=True, slots=True)
class FleetResources:
    """Identifiers shared read-only by every instance of a run."""

    security_group_id: str
    key_name: str
    key_path: str


class ResourceProvisioner:
    """Creates the security group and key pair for one run.

    Used as an async context manager: the private key lives in a temporary
    file for exactly as long as the block runs.

    Example:
        >>> async with ResourceProvisioner(ec2, AWS()) as resources:
        ...     print(resources.security_group_id, resources.key_path)

    Note:
        The security group and key pair are left in the account unless
        `AWS.delete_resources` is set; see `release_resources`.
    """

    def __init__(self, ec2: EC2ClientFactory, config: AWS, prefix: str = "burst") -> None:
        self.ec2 = ec2
        self.config = config
        self.prefix = prefix
        self._key_path: str | None = None

    async def __aenter__(self) -> FleetResources:
        return await self.provision()

    async def __aexit__(self, *_: object) -> None:
        self.discard_key()

    async def provision(self) -> FleetResources:
        """Create the security group and key pair, and write the private key locally."""
        async with self.ec2() as ec2:
            security_group_id = await self._create_security_group(ec2)
            key_name, key_material = await self._create_key_pair(ec2)

        key_path = self._write_key(key_material)
        return FleetResources(
            security_group_id=security_group_id,
            key_name=key_name,
            key_path=key_path,
        )

    def discard_key(self) -> None:
        """Remove the local private key file."""
        if self._key_path is None:
            return
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self._key_path)
        log.trace(f"removed private key file {self._key_path}")
        self._key_path = None

    async def _create_security_group(self, ec2: Any) -> str:
        group_name = f"{self.prefix}_security_{_random_suffix()}"
        log.trace(f"creating security group {group_name}")
        try:
            resp = await ec2.create_security_group(
                GroupName=group_name,
                Description=SECURITY_GROUP_DESCRIPTION,
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"failed to create security group for new machines: {e}") from e

        group_id = resp.get("GroupId")
        if not group_id:
            raise ProvisioningError("AWS created security group with no group id")
        log.trace(f"created security group {group_id}")

        port = self.config.ssh_port
        try:
            await ec2.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[
                    {
                        "IpProtocol": "tcp",
                        "FromPort": port,
                        "ToPort": port,
                        "IpRanges": [{"CidrIp": "0.0.0.0/0", "Description": "SSH"}],
                    },
                    {
                        "IpProtocol": "tcp",
                        "FromPort": 0,
                        "ToPort": 65535,
                        "IpRanges": [{"CidrIp": self.config.fleet_cidr, "Description": "Fleet"}],
                    },
                ],
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"failed to fill in security group {group_id}: {e}") from e

        return group_id

    async def _create_key_pair(self, ec2: Any) -> tuple[str, str]:
        key_name = f"{self.prefix}_key_{_random_suffix()}"
        log.trace(f"creating keypair {key_name}")
        try:
            resp = await ec2.create_key_pair(KeyName=key_name)
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"failed to generate new key pair: {e}") from e

        material = resp.get("KeyMaterial")
        if not material:
            raise ProvisioningError("AWS did not generate key material for new key")
        log.trace(f"created keypair {key_name} (fingerprint {resp.get('KeyFingerprint')})")
        return key_name, material

    def _write_key(self, material: str) -> str:
        try:
            # mkstemp-backed, so the file is created with mode 0600
            with tempfile.NamedTemporaryFile(
                "w", prefix=f"{self.prefix}-", suffix=".pem", delete=False,
            ) as f:
                self._key_path = f.name
                f.write(material)
        except OSError as e:
            self.discard_key()
            raise ProvisioningError(f"could not write private key to a temporary file: {e}") from e

        log.trace(f"wrote keypair to {self._key_path}")
        return self._key_path


async def release_resources(ec2: EC2ClientFactory, resources: FleetResources, instance_ids: list[str]) -> None:
    """Delete the key pair and security group of a run, best effort.

    The security group can only go once every instance using it is gone,
    so this waits for termination first.
    """
    async with ec2() as client:
        if instance_ids:
            try:
                waiter = client.get_waiter("instance_terminated")
                await waiter.wait(InstanceIds=instance_ids)
            except Exception as e:
                log.warning(f"instances did not terminate cleanly, keeping security group: {e}")
                return

        try:
            await client.delete_key_pair(KeyName=resources.key_name)
            log.trace(f"deleted keypair {resources.key_name}")
        except (ClientError, BotoCoreError) as e:
            log.warning(f"failed to delete key pair {resources.key_name}: {e}")

        try:
            await client.delete_security_group(GroupId=resources.security_group_id)
            log.trace(f"deleted security group {resources.security_group_id}")
        except (ClientError, BotoCoreError) as e:
            log.warning(f"failed to delete security group {resources.security_group_id}: {e}")
