"""EC2 client wiring through injector.

Every component takes an `EC2ClientFactory` and opens a short-lived client
per phase, so tests can hand in a fake control plane without touching
aioboto3 at all.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Any

import aioboto3
from injector import Binder, Module, provider, singleton

from .config import AWS

if TYPE_CHECKING:
    from types_aiobotocore_ec2 import EC2Client

type ClientContext = AbstractAsyncContextManager[Any]


class EC2ClientFactory:
    """Opens EC2 clients: `async with factory() as ec2: ...`."""

    def __init__(self, open_client: Callable[[], ClientContext]) -> None:
        self._open_client = open_client

    def __call__(self) -> ClientContext:
        return self._open_client()


class AWSModule(Module):
    """Binds the AWS config and an EC2ClientFactory for its region.

    Example:
        >>> from injector import Injector
        >>> ec2 = Injector([AWSModule(AWS(region="eu-west-1"))]).get(EC2ClientFactory)
        >>> async with ec2() as client:
        ...     await client.describe_spot_instance_requests()
    """

    def __init__(self, config: AWS | None = None) -> None:
        self._config = config or AWS()

    def configure(self, binder: Binder) -> None:
        binder.bind(AWS, to=self._config)

    @singleton
    @provider
    def aioboto3_session(self) -> aioboto3.Session:
        # credentials are resolved from the environment on first client use
        return aioboto3.Session()

    @singleton
    @provider
    def ec2_factory(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        @asynccontextmanager
        async def open_client() -> AsyncIterator[EC2Client]:
            async with session.client("ec2", region_name=config.region) as ec2:
                yield ec2

        return EC2ClientFactory(open_client)


__all__ = [
    "AWSModule",
    "EC2ClientFactory",
]
