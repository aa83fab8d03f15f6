"""Scope-exit termination of every instance a run ever obtained."""

from __future__ import annotations

import asyncio
from types import TracebackType

from loguru import logger

from burst.core.exceptions import CleanupError
from burst.retry import retry

from .clients import EC2ClientFactory
from .config import AWS
from .errors import is_transient
from .infra import FleetResources, release_resources

log = logger.bind(component="aws-cleanup")

# Strong references to detached cleanup tasks, so they are not collected mid-retry
_background: set[asyncio.Task[None]] = set()


class CleanupGuard:
    """Terminates tracked instances when the guarded block exits, however it exits.

    The guard is armed with an empty id set; the run adds ids in place as
    instances are discovered. Release hands termination to a background task
    and returns immediately.

    Example:
        >>> with CleanupGuard(ec2, config) as guard:
        ...     guard.track("i-0123456789abcdef0")
        ...     raise RuntimeError("boom")  # instance is still terminated
    """

    def __init__(
        self,
        ec2: EC2ClientFactory,
        config: AWS,
        resources: FleetResources | None = None,
    ) -> None:
        self.ec2 = ec2
        self.config = config
        self.resources = resources
        self.instance_ids: list[str] = []
        self.task: asyncio.Task[None] | None = None
        self._released = False

    def track(self, instance_id: str) -> None:
        if self._released:
            log.warning(f"instance {instance_id} discovered after cleanup started; it will not be terminated")
            return
        if instance_id not in self.instance_ids:
            self.instance_ids.append(instance_id)

    def __enter__(self) -> CleanupGuard:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def release(self) -> asyncio.Task[None] | None:
        """Start termination in the background. Only the first call does anything."""
        if self._released:
            return self.task
        self._released = True

        delete = self.config.delete_resources and self.resources is not None
        if not self.instance_ids and not delete:
            log.debug("no instances to terminate")
            return None

        if not delete and self.resources is not None:
            log.debug(
                f"leaving security group {self.resources.security_group_id} "
                f"and key pair {self.resources.key_name} in place"
            )

        instance_ids = list(self.instance_ids)
        task = asyncio.get_running_loop().create_task(self._cleanup(instance_ids))
        _background.add(task)
        task.add_done_callback(_background.discard)
        self.task = task
        return task

    async def _cleanup(self, instance_ids: list[str]) -> None:
        resources = self.resources if self.config.delete_resources else None
        if instance_ids and not await self._terminate(instance_ids):
            if resources is not None:
                log.warning(
                    f"keeping security group {resources.security_group_id} "
                    f"and key pair {resources.key_name}: instances may still be running"
                )
            return
        if resources is not None:
            log.debug("cleaning up temporary resources")
            await release_resources(self.ec2, resources, instance_ids)

    async def _terminate(self, instance_ids: list[str]) -> bool:
        """Terminate the instances. False means termination was abandoned."""
        log.debug(f"terminating {len(instance_ids)} instance(s)")

        @retry(
            on=is_transient,
            max_attempts=None,
            base_delay=0.5,
            max_delay=self.config.termination_max_delay,
        )
        async def do_terminate() -> None:
            async with self.ec2() as ec2:
                await ec2.terminate_instances(InstanceIds=instance_ids)

        try:
            await do_terminate()
        except Exception as e:
            error = CleanupError(f"failed to terminate instances {instance_ids}: {e}")
            log.warning(str(error))
            return False

        log.debug(f"terminated {', '.join(instance_ids)}")
        return True


async def wait_for_cleanup(timeout: float | None = None) -> bool:
    """Wait for detached cleanup tasks of the running loop.

    Returns:
        True if every cleanup task finished within the timeout.
    """
    loop = asyncio.get_running_loop()
    tasks = {t for t in _background if t.get_loop() is loop}
    if not tasks:
        return True
    _, pending = await asyncio.wait(tasks, timeout=timeout)
    return not pending
