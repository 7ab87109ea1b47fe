"""Bounded fixed-interval polling."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.config import Settings, settings

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    interval_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds cannot be negative")

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "RetryPolicy":
        config = config or settings
        return cls(
            max_attempts=config.local_video_discovery_attempts,
            interval_seconds=config.local_video_discovery_interval_ms / 1000,
        )

    async def poll(self, probe: Callable[[int], Awaitable[Optional[T]]]) -> Optional[T]:
        """Call ``probe(attempt)`` until it returns a value or attempts run out.

        Sleeps ``interval_seconds`` between attempts, never after the last one.
        """

        for attempt in range(1, self.max_attempts + 1):
            result = await probe(attempt)
            if result is not None:
                return result
            if attempt < self.max_attempts:
                await asyncio.sleep(self.interval_seconds)
        return None
