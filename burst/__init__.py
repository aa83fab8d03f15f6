"""burst: transient EC2 spot fleets with guaranteed teardown.

Example:
    from burst import BurstBuilder, MachineSetup

    async def install(session):
        await session.cmd("sudo yum install -y iperf3")

    builder = BurstBuilder()
    builder.add_set("server", 1, MachineSetup("c5.large", "ami-0ff8a91507f77f867", install))
    builder.add_set("client", 4, MachineSetup("c5.large", "ami-0ff8a91507f77f867", install))
    builder.run(lambda fleet: ...)
"""

from burst.core.exceptions import (
    AuthenticationError,
    BurstError,
    CallbackError,
    CleanupError,
    ConfigurationError,
    ConnectionError,
    ProvisioningError,
    ReadinessPollingError,
    RequestRejectedError,
    RequestSubmissionError,
    ResolutionPollingError,
    SetupRoutineError,
)
from burst.infra.ssh import RemoteSession
from burst.logging import LogConfig
from burst.orchestrator import BurstBuilder, Orchestrator
from burst.providers.aws import AWS, wait_for_cleanup
from burst.spec import FleetPlan, MachineSetup, SetupRoutine
from burst.types import FleetInstance, Machine

__all__ = [
    "AWS",
    "AuthenticationError",
    "BurstBuilder",
    "BurstError",
    "CallbackError",
    "CleanupError",
    "ConfigurationError",
    "ConnectionError",
    "FleetInstance",
    "FleetPlan",
    "LogConfig",
    "Machine",
    "MachineSetup",
    "Orchestrator",
    "ProvisioningError",
    "ReadinessPollingError",
    "RemoteSession",
    "RequestRejectedError",
    "RequestSubmissionError",
    "ResolutionPollingError",
    "SetupRoutine",
    "SetupRoutineError",
    "wait_for_cleanup",
]
