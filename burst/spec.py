"""Fleet description: machine sets and the plan that groups them."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from burst.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from burst.infra.ssh import RemoteSession

type SetupRoutine = Callable[[RemoteSession], Awaitable[object]]
"""Runs once per instance over a live session. Raising marks the instance as failed."""


@dataclass(frozen=True, slots=True)
class MachineSetup:
    """Description of one machine set.

    Example:
        >>> async def install(session):
        ...     await session.cmd("sudo yum install -y git")
        >>> MachineSetup("t3.small", "ami-0abcdef1234567890", install)

    Args:
        instance_type: EC2 instance type, e.g. "t3.small".
        ami: Machine image every instance of the set boots from.
        setup: Async routine run against each instance before the fleet callback.
    """

    instance_type: str
    ami: str
    setup: SetupRoutine = field(repr=False)


@dataclass(frozen=True, slots=True)
class PlannedSet:
    setup: MachineSetup
    count: int


@dataclass(slots=True)
class FleetPlan:
    """Named machine sets and how many instances each one gets."""

    sets: dict[str, PlannedSet] = field(default_factory=dict)

    def add(self, name: str, count: int, setup: MachineSetup) -> None:
        if name in self.sets:
            raise ConfigurationError(f"Machine set {name!r} is already in the plan")
        if count < 1:
            raise ConfigurationError(f"Machine set {name!r} needs at least one instance, got {count}")
        self.sets[name] = PlannedSet(setup=setup, count=count)

    def setup_routines(self) -> Mapping[str, SetupRoutine]:
        return {name: planned.setup.setup for name, planned in self.sets.items()}

    @property
    def total(self) -> int:
        return sum(planned.count for planned in self.sets.values())

    def __iter__(self) -> Iterator[tuple[str, PlannedSet]]:
        return iter(self.sets.items())

    def __len__(self) -> int:
        return len(self.sets)

    def __contains__(self, name: object) -> bool:
        return name in self.sets
