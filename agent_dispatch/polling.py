"""Polling primitives: a clock that tests can replace and a bounded poll policy."""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class Clock:
    """Monotonic time plus async sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FakeClock(Clock):
    """Clock whose sleep advances time instantly. Used in tests."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Let other tasks run, same as a real sleep would
        await asyncio.sleep(0)


@dataclass
class PollPolicy:
    """Poll every ``interval`` seconds, bounded by duration and/or attempt count."""
    interval: float = 0.5
    max_duration: Optional[float] = None
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.max_duration is None and self.max_attempts is None:
            raise ValueError("PollPolicy needs max_duration or max_attempts")
        if self.interval <= 0:
            raise ValueError("PollPolicy interval must be positive")

    def exhausted(self, attempts: int, elapsed: float) -> bool:
        if self.max_attempts is not None and attempts >= self.max_attempts:
            return True
        if self.max_duration is not None and elapsed >= self.max_duration:
            return True
        return False


async def poll_until(
    check: Callable[[float], Awaitable[Optional[T]]],
    policy: PollPolicy,
    clock: Clock,
) -> Optional[T]:
    """Call ``check(elapsed)`` until it returns non-None or the policy is exhausted.

    The first check happens after one interval. Returns None on exhaustion.
    """
    start = clock.monotonic()
    attempts = 0
    while True:
        await clock.sleep(policy.interval)
        attempts += 1
        elapsed = clock.monotonic() - start
        result = await check(elapsed)
        if result is not None:
            return result
        if policy.exhausted(attempts, elapsed):
            return None
