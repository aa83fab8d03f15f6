"""Spot instance request lifecycle: submit, poll until resolved, cancel."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from burst.core.exceptions import RequestSubmissionError, ResolutionPollingError
from burst.providers.wait import wait_for_ready
from burst.retry import retry
from burst.spec import FleetPlan
from burst.types import PendingRequest, RequestState

from .clients import EC2ClientFactory
from .config import AWS
from .errors import is_request_not_found, is_transient
from .infra import FleetResources

log = logger.bind(component="aws-spot")


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of resolution polling.

    Attributes:
        active: instance id -> machine set, for every fulfilled request.
        rejected: request id -> machine set, for requests that closed without an instance.
    """

    active: dict[str, str] = field(default_factory=dict)
    rejected: dict[str, str] = field(default_factory=dict)

    @property
    def all_active(self) -> bool:
        return not self.rejected


class SpotRequestScheduler:
    """Drives the spot requests of one run.

    Flow:
        submit() -> one request per machine set, `count` instances each
        wait_resolved() -> poll until no request is open or waiting for an instance
        cancel() -> cancel the requests (never the instances)

    `on_instance` is called with every instance id the moment a request is
    first seen fulfilled, so cleanup knows about it before polling ends.
    """

    def __init__(
        self,
        ec2: EC2ClientFactory,
        config: AWS,
        resources: FleetResources,
        on_instance: Callable[[str], None] | None = None,
    ) -> None:
        self.ec2 = ec2
        self.config = config
        self.resources = resources
        self.on_instance = on_instance
        self.submitted: dict[str, str] = {}

    async def submit(self, plan: FleetPlan, max_duration: int | None = None) -> dict[str, str]:
        """Issue one spot request per machine set.

        Submission is not retried: a request that errored may still have
        been created, and a second one would double the fleet.

        Returns:
            request id -> machine set name.
        """
        log.debug("issuing spot requests")
        if max_duration is not None:
            log.debug(f"max duration of {max_duration} minutes is advisory and not enforced")

        async with self.ec2() as ec2:
            for name, planned in plan:
                launch = {
                    "ImageId": planned.setup.ami,
                    "InstanceType": planned.setup.instance_type,
                    "SecurityGroupIds": [self.resources.security_group_id],
                    "KeyName": self.resources.key_name,
                }
                try:
                    resp = await ec2.request_spot_instances(
                        InstanceCount=planned.count,
                        LaunchSpecification=launch,
                    )
                except (ClientError, BotoCoreError) as e:
                    raise RequestSubmissionError(name, str(e)) from e

                log.trace(f"issued spot request for {name} (#{planned.count})")
                for sir in resp.get("SpotInstanceRequests", []):
                    request_id = sir.get("SpotInstanceRequestId")
                    if request_id:
                        log.trace(f"activated spot request {request_id}")
                        self.submitted[request_id] = name

        return dict(self.submitted)

    async def wait_resolved(self) -> Resolution:
        """Poll until every submitted request is fulfilled or rejected."""
        if not self.submitted:
            return Resolution()

        request_ids = list(self.submitted)
        log.debug("waiting for instances to spawn")

        async def poll() -> list[PendingRequest] | None:
            log.trace("checking spot request status")
            async with self.ec2() as ec2:
                try:
                    resp = await ec2.describe_spot_instance_requests(
                        SpotInstanceRequestIds=request_ids,
                    )
                except (ClientError, BotoCoreError) as e:
                    if is_request_not_found(e):
                        log.trace("spot instance request not yet visible")
                        return None
                    raise ResolutionPollingError(f"failed to describe spot instance requests: {e}") from e

            requests = [self._parse(raw) for raw in resp.get("SpotInstanceRequests", [])]
            for request in requests:
                if request.state is RequestState.ACTIVE_WITH_INSTANCE and self.on_instance:
                    self.on_instance(request.instance_id)  # type: ignore[arg-type]
            return requests

        def resolved(requests: list[PendingRequest]) -> bool:
            seen = {r.request_id for r in requests}
            if seen != set(request_ids):
                return False
            pending = [r for r in requests if r.is_pending]
            for r in pending:
                log.trace(f"spot instance request {r.request_id} not yet ready ({r.state})")
            return not pending

        try:
            requests = await wait_for_ready(
                poll_fn=poll,
                ready_check=resolved,
                timeout=self.config.poll_timeout,
                interval=self.config.poll_interval,
                description=f"spot requests {request_ids}",
            )
        except TimeoutError as e:
            raise ResolutionPollingError(str(e)) from e

        resolution = Resolution()
        for request in requests:
            if request.state is RequestState.ACTIVE_WITH_INSTANCE:
                log.trace(f"spot request satisfied: {request.group} -> {request.instance_id}")
                resolution.active[request.instance_id] = request.group  # type: ignore[index]
            else:
                log.warning(f"spot request {request.request_id} for {request.group} was not fulfilled")
                resolution.rejected[request.request_id] = request.group
        return resolution

    async def cancel(self) -> None:
        """Cancel every submitted request so none is fulfilled again later.

        Failure is logged, not raised: fulfilled requests are already consumed
        by their instances.
        """
        if not self.submitted:
            return

        request_ids = list(self.submitted)

        @retry(on=is_transient, max_attempts=5, base_delay=0.5, max_delay=self.config.termination_max_delay)
        async def do_cancel() -> None:
            async with self.ec2() as ec2:
                await ec2.cancel_spot_instance_requests(SpotInstanceRequestIds=request_ids)

        log.trace("cancelling spot requests")
        try:
            await do_cancel()
        except (ClientError, BotoCoreError, OSError) as e:
            log.warning(f"failed to cancel spot instance requests: {e}")

    def _parse(self, raw: dict[str, Any]) -> PendingRequest:
        request_id = raw["SpotInstanceRequestId"]
        group = self.submitted.get(request_id)
        if group is None:
            raise ResolutionPollingError(f"spot request {request_id} was not issued by this run")
        return PendingRequest.from_api(raw, group)
