"""Retry with capped exponential backoff for control-plane calls.

Example:
    from burst.retry import on_exception_message, retry

    # keep terminating through dropped connections, at most 30s apart
    @retry(on=on_exception_message("broken pipe"), max_attempts=None, max_delay=30.0)
    async def terminate():
        ...
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import random
from collections.abc import Awaitable, Callable, Iterator
from typing import ParamSpec, TypeVar

from loguru import logger

P = ParamSpec("P")
T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]
RetryOn = type[Exception] | tuple[type[Exception], ...] | RetryPredicate


def _as_predicate(on: RetryOn) -> RetryPredicate:
    if isinstance(on, type | tuple):
        return lambda e: isinstance(e, on)
    return on


def backoff_delays(
    base_delay: float,
    exponential_base: float,
    max_delay: float,
    jitter: bool,
) -> Iterator[float]:
    """Yield base_delay * exponential_base**n, capped at max_delay, plus up to 10% jitter."""
    for n in itertools.count():
        # exponent clamped so an endless retry loop never overflows
        delay = min(base_delay * exponential_base ** min(n, 32), max_delay)
        yield delay + random.uniform(0, delay * 0.1) if jitter else delay


def retry(
    on: RetryOn = Exception,
    max_attempts: int | None = 5,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async function while its failures match `on`.

    Args:
        on: Exception class, tuple of classes, or predicate selecting the
            failures worth another attempt. Anything else is raised at once.
        max_attempts: Attempts in total, the first one included. None keeps
            going for as long as failures match.
        base_delay: Seconds before the first retry.
        exponential_base: Growth factor of the delay between retries.
        max_delay: Upper bound for a single delay.
        jitter: Add up to 10% random jitter to each delay.
    """
    should_retry = _as_predicate(on)
    limit = "inf" if max_attempts is None else str(max_attempts)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delays = backoff_delays(base_delay, exponential_base, max_delay, jitter)
            for attempt in itertools.count(1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    exhausted = max_attempts is not None and attempt >= max_attempts
                    if exhausted or not should_retry(e):
                        raise
                    delay = next(delays)
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{limit} failed with "
                        f"{type(e).__name__}: {e}; retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper

    return decorator


def on_exception_message(*patterns: str, case_sensitive: bool = False) -> RetryPredicate:
    """Match failures whose message contains any of `patterns`."""
    if not case_sensitive:
        patterns = tuple(p.lower() for p in patterns)

    def predicate(e: Exception) -> bool:
        message = str(e) if case_sensitive else str(e).lower()
        return any(p in message for p in patterns)

    return predicate


def any_of(*predicates: RetryPredicate) -> RetryPredicate:
    """Match failures that any of `predicates` matches."""
    return lambda e: any(p(e) for p in predicates)
