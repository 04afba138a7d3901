"""
Dependency injection interfaces for improved testability.

Provides lightweight protocols for time and random number generation so the
scheduler, pool store and sampling strategy can run against deterministic
providers in tests instead of the wall clock and the global RNG.
"""

import asyncio
import random
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class TimeProvider(Protocol):
    """Protocol for time-related operations."""

    def current_timestamp(self) -> float:
        """Get current Unix timestamp."""
        ...

    async def sleep(self, duration: float) -> None:
        """Suspend the calling task for the given duration in seconds."""
        ...


@runtime_checkable
class RandomProvider(Protocol):
    """Protocol for random number generation."""

    def randint(self, a: int, b: int) -> int:
        """Generate random integer between a and b (inclusive)."""
        ...


class SystemTimeProvider:
    """Production time provider using system time."""

    def current_timestamp(self) -> float:
        """Get current Unix timestamp."""
        return time.time()

    async def sleep(self, duration: float) -> None:
        """Sleep on the event loop for the given duration."""
        await asyncio.sleep(duration)


class SystemRandomProvider:
    """Production random provider using system random."""

    def __init__(self, seed: int = None):
        self._rng = random.Random(seed)

    def randint(self, a: int, b: int) -> int:
        """Generate random integer between a and b (inclusive)."""
        return self._rng.randint(a, b)


class DeterministicTimeProvider:
    """Deterministic time provider for testing."""

    def __init__(self, start_time: float = 1640995200.0):  # 2022-01-01
        self._current_time = start_time
        self.sleeps = []

    def current_timestamp(self) -> float:
        """Get current timestamp."""
        return self._current_time

    async def sleep(self, duration: float) -> None:
        """Advance time by duration instead of actually sleeping."""
        self.sleeps.append(duration)
        self._current_time += duration
        # Still yield so other tasks get a turn
        await asyncio.sleep(0)

    def advance_time(self, seconds: float) -> None:
        """Manually advance time by specified seconds."""
        self._current_time += seconds

    def set_time(self, timestamp: float) -> None:
        """Set current time to specific timestamp."""
        self._current_time = timestamp


class DeterministicRandomProvider:
    """Deterministic random provider for testing."""

    def __init__(self, seed: int = 42):
        self._rng = random.Random(seed)

    def randint(self, a: int, b: int) -> int:
        """Generate random integer between a and b (inclusive)."""
        return self._rng.randint(a, b)
