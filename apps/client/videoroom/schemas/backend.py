"""Wire contracts of the authentication and room backend."""
from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    success: bool
    access_token: str | None = None


class RoomInfo(BaseModel):
    name: str
    participant_count: int = Field(default=0, ge=0)
    is_private: bool = False


class RoomListResponse(BaseModel):
    rooms: list[RoomInfo] = Field(default_factory=list)


class RoomTokenResponse(BaseModel):
    token: str = Field(..., min_length=1, description="Room-scoped media token")
