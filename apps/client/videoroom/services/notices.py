"""In-memory observability feed of user-facing notices."""
from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Iterator, Optional, Set

logger = logging.getLogger(__name__)


class NoticeKind(str, enum.Enum):
    DISCONNECTED = "disconnected"
    LOCAL_VIDEO_UNAVAILABLE = "local_video_unavailable"
    OVER_CAPACITY = "over_capacity"
    RENDERER_ATTACH_FAILED = "renderer_attach_failed"
    DEVICE_TOGGLE_FAILED = "device_toggle_failed"


@dataclass(slots=True)
class Notice:
    kind: NoticeKind
    message: str
    identity: Optional[str] = None
    reason: Optional[str] = None
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoticeFeed:
    """Bounded history plus fan-out to live subscribers."""

    def __init__(self, history_size: int = 50) -> None:
        self._history: Deque[Notice] = deque(maxlen=history_size)
        self._subscribers: Set[asyncio.Queue[Notice]] = set()

    def publish(self, notice: Notice) -> None:
        self._history.append(notice)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(notice)
            except asyncio.QueueFull:
                logger.warning("Dropping %s notice for a slow subscriber", notice.kind.value)

    def recent(self, limit: int | None = None) -> list[Notice]:
        items = list(self._history)
        return items[-limit:] if limit else items

    @contextmanager
    def subscribe(self, maxsize: int = 100) -> Iterator[asyncio.Queue[Notice]]:
        """Yield a queue receiving every notice published while subscribed."""

        queue: asyncio.Queue[Notice] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)
