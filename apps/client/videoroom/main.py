"""FastAPI application exposing the room client to a presentation layer."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .core.config import settings
from .core.runtime import shutdown_lobby
from .routers import session as session_router
from .services.errors import (
    AuthError,
    ConnectError,
    NotInRoomError,
    PermissionDeniedError,
    TokenFetchError,
    VideoRoomError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[VideoRoomError], int] = {
    AuthError: status.HTTP_401_UNAUTHORIZED,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    NotInRoomError: status.HTTP_409_CONFLICT,
    TokenFetchError: status.HTTP_502_BAD_GATEWAY,
    ConnectError: status.HTTP_502_BAD_GATEWAY,
}


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await shutdown_lobby()


app = FastAPI(title="Video Room Client API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(session_router.router, prefix="/api", tags=["session"])


@app.exception_handler(VideoRoomError)
async def room_error_handler(_: Request, exc: VideoRoomError) -> JSONResponse:
    """Translate client-side room errors into HTTP answers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.warning("%s: %s", type(exc).__name__, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    """Serve a minimal robots.txt to avoid 404 noise."""

    return PlainTextResponse("User-agent: *\nDisallow:")
