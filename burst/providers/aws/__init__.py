"""AWS EC2 spot fleet provider."""

from .cleanup import CleanupGuard, wait_for_cleanup
from .clients import AWSModule, EC2ClientFactory
from .config import AWS
from .infra import FleetResources, ResourceProvisioner
from .instances import InstanceReadinessWaiter
from .spot import Resolution, SpotRequestScheduler

__all__ = [
    "AWS",
    "AWSModule",
    "CleanupGuard",
    "EC2ClientFactory",
    "FleetResources",
    "InstanceReadinessWaiter",
    "Resolution",
    "ResourceProvisioner",
    "SpotRequestScheduler",
    "wait_for_cleanup",
]
