"""Custom exception hierarchy for burst.

All burst-specific exceptions inherit from BurstError, enabling
users to catch all burst exceptions with a single except clause.
"""

from __future__ import annotations

from collections.abc import Mapping


class BurstError(Exception):
    """Base exception for all burst errors."""


class ConfigurationError(BurstError):
    """Raised for invalid configuration or an invalid fleet plan."""


class ProvisioningError(BurstError):
    """Raised when the security group or key pair cannot be set up."""


class RequestSubmissionError(BurstError):
    """Raised when a spot request for a machine set is refused."""

    def __init__(self, group: str, reason: str) -> None:
        self.group = group
        self.reason = reason
        super().__init__(f"Failed to request spot instances for {group}: {reason}")


class ResolutionPollingError(BurstError):
    """Raised when spot request status cannot be queried."""


class RequestRejectedError(ResolutionPollingError):
    """Raised when one or more spot requests resolved without an instance."""

    def __init__(self, rejected: Mapping[str, str]) -> None:
        self.rejected = dict(rejected)
        groups = ", ".join(sorted(set(self.rejected.values())))
        super().__init__(
            f"{len(self.rejected)} spot request(s) were not fulfilled (sets: {groups})"
        )


class ReadinessPollingError(BurstError):
    """Raised when instances cannot be described or die before becoming ready."""


class ConnectionError(BurstError):  # noqa: A001
    """Raised when the remote shell of an instance cannot be reached.

    `group` names the machine set once the failing instance is known to
    belong to one.
    """

    def __init__(self, host: str, port: int, reason: str, group: str | None = None) -> None:
        self.host = host
        self.port = port
        self.reason = reason
        self.group = group
        super().__init__(host, port, reason)

    def __str__(self) -> str:
        target = f"{self.host}:{self.port}"
        if self.group:
            target = f"{self.group} machine {target}"
        return f"Failed to ssh to {target}: {self.reason}"


class AuthenticationError(ConnectionError):
    """Raised when the remote shell rejects the fleet key."""

    def __init__(self, host: str, port: int, user: str, reason: str, group: str | None = None) -> None:
        self.user = user
        super().__init__(host, port, f"authentication failed for {user}: {reason}", group)


class SetupRoutineError(BurstError):
    """Raised when a machine set's setup routine fails on one instance."""

    def __init__(self, group: str, host: str, reason: str) -> None:
        self.group = group
        self.host = host
        super().__init__(f"Setup routine for {group} machine {host} failed: {reason}")


class CallbackError(BurstError):
    """Raised when the fleet callback fails. The callback's exception is the cause."""


class CleanupError(BurstError):
    """Raised inside cleanup only; logged and never surfaced to the caller."""
