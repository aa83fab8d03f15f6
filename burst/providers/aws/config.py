"""AWS provider configuration.

Immutable configuration dataclass for the EC2 control plane and the
remote shell used to set instances up.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from burst.core.exceptions import ConfigurationError


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    All fields have defaults; credentials come from the environment.

    Example:
        >>> from burst.providers.aws import AWS
        >>> config = AWS(region="us-west-2", poll_interval=2.0)

    Args:
        region: AWS region for every resource of the run.
        username: Login user of the machine images.
        ssh_port: Remote shell port opened in the security group.
        ssh_connect_attempts: TCP connect attempts before giving up on an instance.
        ssh_connect_delay: Seconds between TCP connect attempts.
        ssh_connect_timeout: Per-attempt connect timeout in seconds.
        poll_interval: Seconds between polling rounds.
        poll_timeout: Give up polling after this many seconds. None polls forever.
        fleet_cidr: Private range allowed to talk to every port inside the fleet.
        setup_concurrency: Maximum setup routines running at once.
        cleanup_grace: Seconds a blocking run waits for termination to go through.
        termination_max_delay: Backoff cap between termination retries.
        delete_resources: Also delete the security group and key pair on cleanup.
    """

    region: str = "us-east-1"
    username: str = "ec2-user"
    ssh_port: int = 22
    ssh_connect_attempts: int = 5
    ssh_connect_delay: float = 1.0
    ssh_connect_timeout: float = 30.0
    poll_interval: float = 1.0
    poll_timeout: float | None = None
    fleet_cidr: str = "172.31.0.0/16"
    setup_concurrency: int = 16
    cleanup_grace: float = 120.0
    termination_max_delay: float = 30.0
    delete_resources: bool = False

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> AWS:
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ConfigurationError(f"Unknown [aws] settings: {', '.join(sorted(unknown))}")
        return cls(**raw)
