"""Login, room and in-call endpoints for the presentation layer."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, WebSocket, WebSocketDisconnect, status

from ..core.runtime import get_lobby
from ..schemas.backend import LoginRequest, RoomListResponse
from ..schemas.session import JoinResult, LoginResult, NoticeOut, SessionState, ToggleResult
from ..services.lobby import Lobby

router = APIRouter()


@router.post("/login", response_model=LoginResult)
async def login(payload: LoginRequest, lobby: Lobby = Depends(get_lobby)) -> LoginResult:
    """Exchange credentials for an access token kept in memory."""

    await lobby.login(payload.username, payload.password)
    return LoginResult(username=payload.username)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(lobby: Lobby = Depends(get_lobby)) -> Response:
    await lobby.logout()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/rooms", response_model=RoomListResponse)
async def list_rooms(lobby: Lobby = Depends(get_lobby)) -> RoomListResponse:
    return RoomListResponse(rooms=await lobby.rooms())


@router.post("/rooms/{name}/join", response_model=JoinResult)
async def join_room(name: str, lobby: Lobby = Depends(get_lobby)) -> JoinResult:
    """Leave any current room and join ``name``."""

    joined = await lobby.join(name)
    return JoinResult(room=name, joined=joined)


@router.post("/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_room(lobby: Lobby = Depends(get_lobby)) -> Response:
    await lobby.leave()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/camera/toggle", response_model=ToggleResult)
async def toggle_camera(lobby: Lobby = Depends(get_lobby)) -> ToggleResult:
    return ToggleResult(enabled=await lobby.toggle_camera())


@router.post("/microphone/toggle", response_model=ToggleResult)
async def toggle_microphone(lobby: Lobby = Depends(get_lobby)) -> ToggleResult:
    return ToggleResult(enabled=await lobby.toggle_microphone())


@router.get("/state", response_model=SessionState)
async def session_state(lobby: Lobby = Depends(get_lobby)) -> SessionState:
    """Current coordinator state and binding table."""

    pool = lobby.coordinator.pool
    return SessionState.from_snapshot(
        lobby.coordinator.snapshot(),
        mirror_local=pool.mirror_local,
        mirror_remote=pool.mirror_remote,
    )


@router.get("/notices", response_model=list[NoticeOut])
async def recent_notices(
    limit: int | None = Query(default=None, ge=1),
    lobby: Lobby = Depends(get_lobby),
) -> list[NoticeOut]:
    return [NoticeOut.from_notice(notice) for notice in lobby.coordinator.notices.recent(limit)]


@router.websocket("/notices/stream")
async def stream_notices(websocket: WebSocket, lobby: Lobby = Depends(get_lobby)) -> None:
    """Push every new notice to the connected client as JSON."""

    with lobby.coordinator.notices.subscribe() as queue:
        await websocket.accept()
        try:
            while True:
                notice = await queue.get()
                await websocket.send_json(NoticeOut.from_notice(notice).model_dump(mode="json"))
        except WebSocketDisconnect:
            pass
