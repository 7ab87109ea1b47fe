"""HTTP client for login, room discovery and room token issuance."""
from __future__ import annotations

import logging
from typing import Any, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import Settings, settings
from ..schemas.backend import LoginRequest, LoginResponse, RoomInfo, RoomListResponse, RoomTokenResponse
from .errors import AuthError, TokenFetchError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class BackendClient:
    """Thin async wrapper around the backend's three endpoints."""

    def __init__(self, base_url: str, *, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "BackendClient":
        config = config or settings
        return cls(config.backend_url, timeout=config.http_timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def login(self, username: str, password: str) -> str:
        """Exchange credentials for an access token."""

        payload = LoginRequest(username=username, password=password)
        response = await self._request("POST", "/login", json=payload.model_dump())
        result = self._parse(response, LoginResponse)
        if not result.success or not result.access_token:
            raise AuthError("Invalid username or password")
        return result.access_token

    async def list_rooms(self, access_token: str) -> list[RoomInfo]:
        response = await self._request("GET", "/rooms", access_token=access_token)
        return self._parse(response, RoomListResponse).rooms

    async def fetch_room_token(self, room: str, access_token: str) -> str:
        """Return the media token for ``room``."""

        response = await self._request("GET", "/token", access_token=access_token, params={"room": room})
        return self._parse(response, RoomTokenResponse).token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Backend %s %s failed: %s", method, path, exc)
            raise TokenFetchError(f"Backend unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthError("Backend rejected the credentials")
        if response.is_error:
            logger.warning("Backend %s %s answered %s", method, path, response.status_code)
            raise TokenFetchError(f"Backend answered {response.status_code} for {path}")
        return response

    @staticmethod
    def _parse(response: httpx.Response, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TokenFetchError(f"Unexpected backend payload from {response.request.url.path}") from exc
