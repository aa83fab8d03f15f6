"""Polling helper shared by spot resolution and instance readiness.

Rounds never overlap: the next poll starts only after the previous one
returned and the interval elapsed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable


async def wait_for_ready[T](
    poll_fn: Callable[[], Awaitable[T | None]],
    ready_check: Callable[[T], bool],
    *,
    terminal_check: Callable[[T], bool] | None = None,
    timeout: float | None = None,
    interval: float = 1.0,
    description: str = "resource",
) -> T:
    """Poll until a round passes `ready_check`, and return that round.

    `poll_fn` may return None when the resource is not visible yet; such a
    round is simply not ready. `terminal_check` runs only on rounds that
    are not ready.

    Raises:
        TimeoutError: `timeout` seconds passed without a ready round.
        RuntimeError: A round passed `terminal_check`.
    """
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout

    while True:
        snapshot = await poll_fn()
        if snapshot is not None and ready_check(snapshot):
            return snapshot
        if snapshot is not None and terminal_check is not None and terminal_check(snapshot):
            raise RuntimeError(f"{description} reached terminal state")

        if deadline is not None and loop.time() > deadline:
            raise TimeoutError(f"Timeout waiting for {description} after {timeout:.1f}s")
        await asyncio.sleep(interval)
