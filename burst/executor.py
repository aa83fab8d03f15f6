"""Parallel setup of every machine in the fleet.

Each machine gets its own task: connect, authenticate with the fleet key,
run its set's setup routine. Failures are collected, never propagated to
siblings, so every machine is attempted exactly once.
"""

from __future__ import annotations

import asyncio
import ipaddress
from collections.abc import Iterable, Mapping

from loguru import logger

from burst.core.exceptions import BurstError, ConnectionError, SetupRoutineError
from burst.infra.ssh import RemoteSession
from burst.providers.aws.config import AWS
from burst.spec import SetupRoutine
from burst.types import Machine

log = logger.bind(component="setup")


class ParallelSetupExecutor:
    """Runs setup routines across the fleet with bounded concurrency.

    Example:
        >>> executor = ParallelSetupExecutor(AWS(), resources.key_path)
        >>> errors = await executor.run(machines, plan.setup_routines())
        >>> if not errors:
        ...     ...  # every machine has a live `ssh` session
    """

    def __init__(self, config: AWS, key_path: str) -> None:
        self.config = config
        self.key_path = key_path

    async def run(
        self,
        machines: Mapping[str, list[Machine]],
        setups: Mapping[str, SetupRoutine],
    ) -> list[BurstError]:
        """Set up every machine.

        Returns:
            One error per machine that failed, in no particular order.
            Empty means all clear.
        """
        semaphore = asyncio.Semaphore(max(1, self.config.setup_concurrency))
        jobs = [
            self._setup_one(name, machine, setups[name], semaphore)
            for name, group in machines.items()
            for machine in group
        ]
        if not jobs:
            return []

        log.info(f"running setup routines on {len(jobs)} machine(s)")
        results = await asyncio.gather(*jobs, return_exceptions=True)

        errors: list[BurstError] = []
        for result in results:
            if isinstance(result, BurstError):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
        return errors

    async def _setup_one(
        self,
        name: str,
        machine: Machine,
        setup: SetupRoutine,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            session = await self._connect(name, machine)

            log.debug(f"setting up {name} instance {machine.public_ip}")
            try:
                await setup(session)
            except Exception as e:
                log.error(f"setup for {name} machine {machine.public_ip} failed: {e}")
                await session.close()
                raise SetupRoutineError(name, machine.public_ip, str(e)) from e
            except BaseException:
                # cancelled mid-routine: the machine never gets the session
                await session.close()
                raise

            machine.ssh = session
            log.info(f"finished setting up {name} instance {machine.public_ip}")

    async def _connect(self, name: str, machine: Machine) -> RemoteSession:
        port = self.config.ssh_port
        try:
            address = str(ipaddress.ip_address(machine.public_ip))
        except ValueError as e:
            raise ConnectionError(machine.public_ip, port, "machine ip is not an ip address", name) from e

        try:
            return await RemoteSession.connect(
                address,
                self.key_path,
                user=self.config.username,
                port=port,
                attempts=self.config.ssh_connect_attempts,
                delay=self.config.ssh_connect_delay,
                timeout=self.config.ssh_connect_timeout,
            )
        except ConnectionError as e:
            log.error(f"failed to ssh to {name} machine {machine.public_ip}")
            e.group = name
            raise
        except Exception as e:
            log.error(f"failed to ssh to {name} machine {machine.public_ip}")
            raise ConnectionError(address, port, str(e), name) from e


async def close_sessions(machines: Iterable[Machine]) -> None:
    """Close and drop every session opened during setup."""
    machines = list(machines)
    sessions = [m.ssh for m in machines if m.ssh is not None]
    for machine in machines:
        machine.ssh = None
    if sessions:
        await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
