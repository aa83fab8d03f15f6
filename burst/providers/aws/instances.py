"""Readiness polling: wait until every fulfilled instance has full addressing."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from burst.core.exceptions import ReadinessPollingError
from burst.providers.wait import wait_for_ready
from burst.types import Machine

from .clients import EC2ClientFactory
from .config import AWS
from .errors import is_instance_not_found

log = logger.bind(component="aws-instances")

TERMINAL_STATES = frozenset({"shutting-down", "terminated"})


def _machine(raw: dict[str, Any], group: str) -> Machine | None:
    """Build a Machine if the instance reports every address, else None."""
    fields = (
        raw.get("InstanceId"),
        raw.get("InstanceType"),
        raw.get("PrivateIpAddress"),
        raw.get("PublicDnsName"),
        raw.get("PublicIpAddress"),
    )
    if not all(fields):
        return None
    instance_id, instance_type, private_ip, public_dns, public_ip = fields
    return Machine(
        instance_id=instance_id,
        group=group,
        instance_type=instance_type,
        private_ip=private_ip,
        public_dns=public_dns,
        public_ip=public_ip,
    )


class InstanceReadinessWaiter:
    """Polls DescribeInstances until the whole fleet is addressable.

    Each round rebuilds the fleet from scratch; a single incomplete instance
    makes the round count as not ready.
    """

    def __init__(self, ec2: EC2ClientFactory, config: AWS) -> None:
        self.ec2 = ec2
        self.config = config

    async def wait(self, instances: Mapping[str, str]) -> dict[str, list[Machine]]:
        """Wait for readiness.

        Args:
            instances: instance id -> machine set name.

        Returns:
            machine set name -> ready machines.
        """
        if not instances:
            return {}

        instance_ids = list(instances)

        async def poll() -> list[dict[str, Any]] | None:
            async with self.ec2() as ec2:
                try:
                    resp = await ec2.describe_instances(InstanceIds=instance_ids)
                except (ClientError, BotoCoreError) as e:
                    if is_instance_not_found(e):
                        log.debug(f"instances not visible yet: {instance_ids}")
                        return None
                    raise ReadinessPollingError(f"failed to describe instances: {e}") from e
            return [
                raw
                for reservation in resp.get("Reservations", [])
                for raw in reservation.get("Instances", [])
                if raw.get("InstanceId") in instances
            ]

        def all_ready(described: list[dict[str, Any]]) -> bool:
            if {raw["InstanceId"] for raw in described} != set(instance_ids):
                return False
            return all(_machine(raw, instances[raw["InstanceId"]]) is not None for raw in described)

        def any_terminal(described: list[dict[str, Any]]) -> bool:
            return any(raw.get("State", {}).get("Name") in TERMINAL_STATES for raw in described)

        try:
            described = await wait_for_ready(
                poll_fn=poll,
                ready_check=all_ready,
                terminal_check=any_terminal,
                timeout=self.config.poll_timeout,
                interval=self.config.poll_interval,
                description=f"EC2 instances {instance_ids}",
            )
        except (TimeoutError, RuntimeError) as e:
            raise ReadinessPollingError(str(e)) from e

        machines: dict[str, list[Machine]] = {}
        for raw in described:
            group = instances[raw["InstanceId"]]
            machine = _machine(raw, group)
            assert machine is not None
            log.trace(f"instance ready: {group} {machine.public_ip}")
            machines.setdefault(group, []).append(machine)
        return machines
