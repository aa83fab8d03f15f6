"""Runtime records: spot requests in flight and the machines they become."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from burst.infra.ssh import RemoteSession

__all__ = [
    "FleetInstance",
    "Machine",
    "PendingRequest",
    "RequestState",
]


class RequestState(StrEnum):
    OPEN = "open"
    ACTIVE = "active"
    ACTIVE_WITH_INSTANCE = "active-with-instance"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class PendingRequest:
    """One spot instance request as seen on a single polling round."""

    request_id: str
    group: str
    state: RequestState
    instance_id: str | None = None

    @classmethod
    def from_api(cls, raw: dict, group: str) -> PendingRequest:
        """Build from a DescribeSpotInstanceRequests entry."""
        instance_id = raw.get("InstanceId") or None
        match raw.get("State"):
            case "open":
                state = RequestState.OPEN
            case "active" if instance_id is None:
                state = RequestState.ACTIVE
            case "active":
                state = RequestState.ACTIVE_WITH_INSTANCE
            case _:
                state = RequestState.REJECTED
        return cls(
            request_id=raw["SpotInstanceRequestId"],
            group=group,
            state=state,
            instance_id=instance_id,
        )

    @property
    def is_pending(self) -> bool:
        return self.state in (RequestState.OPEN, RequestState.ACTIVE)


@dataclass
class Machine:
    """A running instance with complete network addressing.

    `ssh` is filled in once the set's setup routine succeeded and stays
    usable until the fleet callback returns.
    """

    instance_id: str
    group: str
    instance_type: str
    private_ip: str
    public_dns: str
    public_ip: str
    ssh: RemoteSession | None = field(default=None, repr=False, compare=False)


FleetInstance = Machine
