from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from burst.core.exceptions import ConnectionError, SetupRoutineError
from burst.executor import ParallelSetupExecutor, close_sessions
from burst.types import Machine

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def _machine(n: int, group: str = "workers") -> Machine:
    return Machine(
        instance_id=f"i-{n:04d}",
        group=group,
        instance_type="t3.small",
        private_ip=f"172.31.0.{n + 10}",
        public_dns=f"ec2-54-0-0-{n + 10}.compute-1.amazonaws.com",
        public_ip=f"54.0.0.{n + 10}",
    )


@pytest.fixture
def executor(aws_config, resources) -> ParallelSetupExecutor:
    return ParallelSetupExecutor(aws_config, resources.key_path)


class TestParallelSetupExecutor:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_siblings(self, executor, fake_ssh):
        a, b, c = _machine(0), _machine(1), _machine(2)
        ran: list[str] = []

        async def setup(session) -> None:
            ran.append(session.host)
            if session.host == b.public_ip:
                raise RuntimeError("yum exited with 1")
            await session.cmd("sudo yum install -y htop")

        errors = await executor.run({"workers": [a, b, c]}, {"workers": setup})

        assert sorted(ran) == sorted([a.public_ip, b.public_ip, c.public_ip])
        (error,) = errors
        assert isinstance(error, SetupRoutineError)
        assert error.host == b.public_ip
        assert error.group == "workers"
        assert isinstance(error.__cause__, RuntimeError)

        assert a.ssh is fake_ssh.sessions[a.public_ip]
        assert c.ssh is fake_ssh.sessions[c.public_ip]
        assert b.ssh is None
        assert fake_ssh.sessions[b.public_ip].closed

    @pytest.mark.asyncio
    async def test_each_set_gets_its_own_routine(self, executor, fake_ssh):
        workers, leader = [_machine(0), _machine(1)], [_machine(2, "leader")]

        async def worker_setup(session) -> None:
            await session.cmd("start-worker")

        async def leader_setup(session) -> None:
            await session.cmd("start-leader")

        errors = await executor.run(
            {"workers": workers, "leader": leader},
            {"workers": worker_setup, "leader": leader_setup},
        )

        assert errors == []
        assert fake_ssh.sessions["54.0.0.10"].commands == ["start-worker"]
        assert fake_ssh.sessions["54.0.0.12"].commands == ["start-leader"]

    @pytest.mark.asyncio
    async def test_unreachable_machine_is_reported(self, executor, fake_ssh):
        a, b = _machine(0), _machine(1)
        fake_ssh.refuse = {b.public_ip}

        async def setup(session) -> None:
            pass

        errors = await executor.run({"workers": [a, b]}, {"workers": setup})

        (error,) = errors
        assert isinstance(error, ConnectionError)
        assert error.host == b.public_ip
        assert error.group == "workers"
        assert f"workers machine {b.public_ip}" in str(error)
        assert a.ssh is not None

    @pytest.mark.asyncio
    async def test_invalid_address(self, executor, fake_ssh):
        machine = replace(_machine(0), public_ip="ec2-54-0-0-10")

        async def setup(session) -> None:
            pass

        (error,) = await executor.run({"workers": [machine]}, {"workers": setup})

        assert isinstance(error, ConnectionError)
        assert error.group == "workers"
        assert "not an ip address" in str(error)
        assert fake_ssh.connects == []

    @pytest.mark.asyncio
    async def test_connects_with_fleet_key_and_config(self, aws_config, resources, fake_ssh):
        config = replace(aws_config, username="ubuntu", ssh_port=2222, ssh_connect_attempts=3)
        executor = ParallelSetupExecutor(config, resources.key_path)

        async def setup(session) -> None:
            pass

        await executor.run({"workers": [_machine(0)]}, {"workers": setup})

        (connect,) = fake_ssh.connects
        assert connect["host"] == "54.0.0.10"
        assert connect["key_path"] == resources.key_path
        assert connect["user"] == "ubuntu"
        assert connect["port"] == 2222
        assert connect["attempts"] == 3

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, aws_config, resources, fake_ssh):
        executor = ParallelSetupExecutor(replace(aws_config, setup_concurrency=2), resources.key_path)
        running = 0
        peak = 0

        async def setup(session) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        errors = await executor.run({"workers": [_machine(n) for n in range(6)]}, {"workers": setup})

        assert errors == []
        assert peak == 2
        assert len(fake_ssh.sessions) == 6

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, executor, fake_ssh):
        async def setup(session) -> None:
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await executor.run({"workers": [_machine(0)]}, {"workers": setup})


class TestCloseSessions:
    @pytest.mark.asyncio
    async def test_closes_and_detaches(self, executor, fake_ssh):
        machines = [_machine(0), _machine(1)]

        async def setup(session) -> None:
            pass

        await executor.run({"workers": machines}, {"workers": setup})
        await close_sessions(machines)

        assert all(m.ssh is None for m in machines)
        assert all(s.closed for s in fake_ssh.sessions.values())


class TestCancelledSetup:
    @pytest.mark.asyncio
    async def test_session_closed_when_cancelled_mid_routine(self, executor, fake_ssh):
        machine = _machine(0)
        started = asyncio.Event()

        async def slow(session) -> None:
            started.set()
            await asyncio.sleep(3600)

        run = asyncio.create_task(executor.run({"workers": [machine]}, {"workers": slow}))
        await started.wait()
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run

        assert fake_ssh.sessions[machine.public_ip].closed
        assert machine.ssh is None

    @pytest.mark.asyncio
    async def test_finished_sessions_survive_for_close_sessions(self, executor, fake_ssh):
        done, stuck = _machine(0), _machine(1)
        started = asyncio.Event()

        async def setup(session) -> None:
            if session.host == stuck.public_ip:
                started.set()
                await asyncio.sleep(3600)

        run = asyncio.create_task(executor.run({"workers": [done, stuck]}, {"workers": setup}))
        await started.wait()
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run
        await close_sessions([done, stuck])

        assert all(s.closed for s in fake_ssh.sessions.values())
