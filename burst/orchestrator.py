"""Fleet orchestration: provision, request, wait, set up, hand over, tear down.

The run is a straight line of phases:

1. ResourceProvisioner creates the security group and key pair
2. SpotRequestScheduler submits one spot request per machine set,
   polls until each is resolved, then cancels the requests
3. InstanceReadinessWaiter waits for full addressing
4. ParallelSetupExecutor runs each set's setup routine on its machines
5. The fleet callback receives machine set name -> machines

A CleanupGuard is armed right after provisioning and terminates every
instance ever seen fulfilled, whichever phase the run stops in.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

from injector import Injector
from loguru import logger

from burst.core.exceptions import CallbackError, ConfigurationError, RequestRejectedError
from burst.executor import ParallelSetupExecutor, close_sessions
from burst.logging import (
    LogConfig,
    LogLevel,
    _setup_logging,
    _setup_sink,
    _setup_term_logging,
    _teardown_logging,
)
from burst.providers.aws import (
    AWS,
    AWSModule,
    CleanupGuard,
    EC2ClientFactory,
    InstanceReadinessWaiter,
    ResourceProvisioner,
    SpotRequestScheduler,
    wait_for_cleanup,
)
from burst.spec import FleetPlan, MachineSetup
from burst.types import Machine

log = logger.bind(component="orchestrator")

type Fleet = dict[str, list[Machine]]
type FleetCallback[T] = Callable[[Fleet], T | Awaitable[T]]


class Orchestrator:
    """Runs one fleet from plan to teardown.

    Most callers go through BurstBuilder; this class is the async core.
    """

    def __init__(
        self,
        plan: FleetPlan,
        config: AWS,
        ec2: EC2ClientFactory,
        max_duration: int | None = None,
    ) -> None:
        self.plan = plan
        self.config = config
        self.ec2 = ec2
        self.max_duration = max_duration
        self.guard: CleanupGuard | None = None

    @property
    def cleanup_task(self) -> asyncio.Task[None] | None:
        return self.guard.task if self.guard else None

    async def run[T](self, callback: FleetCallback[T]) -> T:
        if not self.plan:
            raise ConfigurationError("No machine sets were added to the plan")

        log.debug("connecting to ec2")
        log.info(f"spinning up {self.plan.total} instance(s) in {len(self.plan)} set(s)")

        async with ResourceProvisioner(self.ec2, self.config) as resources:
            self.guard = CleanupGuard(self.ec2, self.config, resources)
            with self.guard:
                scheduler = SpotRequestScheduler(
                    self.ec2,
                    self.config,
                    resources,
                    on_instance=self.guard.track,
                )
                try:
                    await scheduler.submit(self.plan, self.max_duration)
                    resolution = await scheduler.wait_resolved()
                finally:
                    await scheduler.cancel()

                if not resolution.all_active:
                    raise RequestRejectedError(resolution.rejected)

                machines = await InstanceReadinessWaiter(self.ec2, self.config).wait(resolution.active)

                log.info("all machines instantiated; running setup routines")
                executor = ParallelSetupExecutor(self.config, resources.key_path)
                try:
                    errors = await executor.run(machines, self.plan.setup_routines())
                    if errors:
                        log.error(f"{len(errors)} machine(s) failed setup")
                        raise errors[0]
                    result = await self._invoke(callback, machines)
                finally:
                    await close_sessions(m for group in machines.values() for m in group)

        log.debug("all done")
        return result

    async def _invoke[T](self, callback: FleetCallback[T], machines: Fleet) -> T:
        start = time.monotonic()
        log.info("handing fleet to callback")
        try:
            result = callback(machines)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            log.critical(f"fleet callback failed: {e}")
            raise CallbackError("main routine failed") from e
        log.info(f"fleet callback finished in {time.monotonic() - start:.1f}s")
        return result  # type: ignore[return-value]


class BurstBuilder:
    """Builds and runs a transient spot fleet.

    Each machine set is identified by a unique name and has `count`
    instances launched from one MachineSetup.

    Example:
        >>> async def setup(session):
        ...     await session.cmd("sudo yum install -y htop")
        >>>
        >>> builder = BurstBuilder()
        >>> builder.add_set("workers", 2, MachineSetup("t3.small", "ami-0ff8a91507f77f867", setup))
        >>> builder.add_set("leader", 1, MachineSetup("t3.small", "ami-0ff8a91507f77f867", setup))
        >>> builder.use_term_logger()
        >>> builder.run(lambda fleet: print({k: len(v) for k, v in fleet.items()}))
        {'workers': 2, 'leader': 1}
    """

    def __init__(self, aws: AWS | None = None, ec2: EC2ClientFactory | None = None) -> None:
        self._aws = aws
        self._ec2 = ec2
        self.plan = FleetPlan()
        self.max_duration = 60
        self._log_setup: Callable[[], list[int]] | None = None

    @property
    def aws(self) -> AWS:
        if self._aws is None:
            from burst.config import resolve_aws

            self._aws = resolve_aws()
        return self._aws

    def add_set(self, name: str, count: int, setup: MachineSetup) -> BurstBuilder:
        """Add a machine set. Names must be unique."""
        self.plan.add(name, count, setup)
        return self

    def set_max_duration(self, hours: int) -> BurstBuilder:
        """Set how long the fleet may live, in hours. Advisory only."""
        self.max_duration = hours * 60
        return self

    def set_logger(self, sink: LogConfig | Any, level: LogLevel = "INFO") -> BurstBuilder:
        """Send logs to a LogConfig or to any loguru sink."""
        if isinstance(sink, LogConfig):
            self._log_setup = lambda: _setup_logging(sink)
        else:
            self._log_setup = lambda: _setup_sink(sink, level)
        return self

    def use_term_logger(self, level: LogLevel = "INFO") -> BurstBuilder:
        """Log to the terminal through rich."""
        self._log_setup = lambda: _setup_term_logging(level)
        return self

    def _client_factory(self) -> EC2ClientFactory:
        if self._ec2 is None:
            self._ec2 = Injector([AWSModule(self.aws)]).get(EC2ClientFactory)
        return self._ec2

    async def run_async[T](self, callback: FleetCallback[T]) -> T:
        """Run the fleet inside an existing event loop.

        Instance termination continues in the background after this returns;
        await `wait_for_cleanup()` before the loop shuts down.
        """
        handler_ids = self._log_setup() if self._log_setup else []
        orchestrator = Orchestrator(self.plan, self.aws, self._client_factory(), self.max_duration)
        try:
            return await orchestrator.run(callback)
        finally:
            task = orchestrator.cleanup_task
            if task is None or task.done():
                _teardown_logging(handler_ids)
            else:
                task.add_done_callback(lambda _: _teardown_logging(handler_ids))

    def run[T](self, callback: FleetCallback[T]) -> T:
        """Run the fleet and block until the callback's result is available.

        Termination of the fleet gets up to `AWS.cleanup_grace` seconds to go
        through before the event loop is closed.
        """
        grace = self.aws.cleanup_grace

        async def main() -> T:
            try:
                return await self.run_async(callback)
            finally:
                if not await wait_for_cleanup(grace):
                    log.warning(
                        f"cleanup still running after {grace:.0f}s and stops with the event loop; "
                        "check the account for anything it did not get to"
                    )

        return asyncio.run(main())
