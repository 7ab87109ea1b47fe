"""Login, room listing and join flow in front of the coordinator."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from ..core.config import Settings, settings
from ..schemas.backend import RoomInfo
from .backend import BackendClient
from .coordinator import RoomSessionCoordinator
from .errors import AuthError, PermissionDeniedError
from .media import MediaSessionFactory
from .notices import NoticeFeed
from .retry import RetryPolicy
from .surfaces import RenderSurfacePool, RendererFactory

logger = logging.getLogger(__name__)

PermissionGate = Callable[[], Awaitable[bool]]


async def grant_all() -> bool:
    return True


class Lobby:
    """Holds the access token in memory and drives one coordinator."""

    def __init__(
        self,
        backend: BackendClient,
        coordinator: RoomSessionCoordinator,
        *,
        permission_gate: PermissionGate | None = None,
    ) -> None:
        self._backend = backend
        self._coordinator = coordinator
        self._permission_gate = permission_gate or grant_all
        self._access_token: Optional[str] = None
        self._username: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        session_factory: MediaSessionFactory,
        config: Settings | None = None,
        *,
        renderer_factory: RendererFactory | None = None,
        permission_gate: PermissionGate | None = None,
    ) -> "Lobby":
        config = config or settings
        backend = BackendClient.from_settings(config)
        pool = RenderSurfacePool(
            config.remote_surface_count,
            renderer_factory=renderer_factory,
            mirror_local=config.mirror_local_video,
            mirror_remote=config.mirror_remote_video,
        )
        coordinator = RoomSessionCoordinator(
            backend.fetch_room_token,
            session_factory,
            server_url=config.livekit_url,
            pool=pool,
            notices=NoticeFeed(config.notice_history_size),
            discovery=RetryPolicy.from_settings(config),
        )
        return cls(backend, coordinator, permission_gate=permission_gate)

    @property
    def coordinator(self) -> RoomSessionCoordinator:
        return self._coordinator

    @property
    def username(self) -> Optional[str]:
        return self._username

    @property
    def logged_in(self) -> bool:
        return self._access_token is not None

    async def login(self, username: str, password: str) -> None:
        self._access_token = await self._backend.login(username, password)
        self._username = username
        logger.info("Logged in as %s", username)

    async def logout(self) -> None:
        await self._coordinator.leave()
        self._access_token = None
        self._username = None

    async def rooms(self) -> list[RoomInfo]:
        return await self._backend.list_rooms(self._require_token())

    async def join(self, room: str) -> bool:
        token = self._require_token()
        if not await self._permission_gate():
            raise PermissionDeniedError("Camera and microphone permission are required to join a room")
        return await self._coordinator.join(room, token)

    async def leave(self) -> None:
        await self._coordinator.leave()

    async def toggle_camera(self) -> bool:
        return await self._coordinator.toggle_camera()

    async def toggle_microphone(self) -> bool:
        return await self._coordinator.toggle_microphone()

    async def close(self) -> None:
        await self._coordinator.close()
        await self._backend.aclose()

    def _require_token(self) -> str:
        if self._access_token is None:
            raise AuthError("Log in before listing or joining rooms")
        return self._access_token
