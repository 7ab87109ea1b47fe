"""Data contracts for the presentation API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..services.coordinator import CoordinatorSnapshot, CoordinatorState
from ..services.notices import Notice, NoticeKind


class LoginResult(BaseModel):
    username: str


class JoinResult(BaseModel):
    room: str
    joined: bool = Field(..., description="False when a later join or leave superseded this one")


class ToggleResult(BaseModel):
    enabled: bool


class SessionState(BaseModel):
    state: CoordinatorState
    room: str | None = None
    local_identity: str | None = None
    camera_enabled: bool = False
    microphone_enabled: bool = False
    bindings: dict[str, int] = Field(default_factory=dict, description="Identity to surface index")
    mirror_local_video: bool = True
    mirror_remote_video: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: CoordinatorSnapshot, *, mirror_local: bool, mirror_remote: bool) -> "SessionState":
        return cls(
            state=snapshot.state,
            room=snapshot.room,
            local_identity=snapshot.local_identity,
            camera_enabled=snapshot.camera_enabled,
            microphone_enabled=snapshot.microphone_enabled,
            bindings=snapshot.bindings,
            mirror_local_video=mirror_local,
            mirror_remote_video=mirror_remote,
        )


class NoticeOut(BaseModel):
    kind: NoticeKind
    message: str
    identity: str | None = None
    reason: str | None = None
    ts: datetime

    @classmethod
    def from_notice(cls, notice: Notice) -> "NoticeOut":
        return cls(
            kind=notice.kind,
            message=notice.message,
            identity=notice.identity,
            reason=notice.reason,
            ts=notice.ts,
        )
