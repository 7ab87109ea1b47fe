"""Process-wide lobby wiring."""
from __future__ import annotations

from functools import lru_cache

from ..services.livekit_session import LiveKitMediaSession
from ..services.lobby import Lobby
from .config import settings


@lru_cache
def get_lobby() -> Lobby:
    """FastAPI dependency returning the single lobby of this process."""

    return Lobby.from_settings(LiveKitMediaSession.factory(settings), settings)


async def shutdown_lobby() -> None:
    if get_lobby.cache_info().currsize:
        await get_lobby().close()
        get_lobby.cache_clear()
