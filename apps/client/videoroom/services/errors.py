"""Exceptions raised by the room client services."""
from __future__ import annotations


class VideoRoomError(RuntimeError):
    """Base class for client-side room errors."""


class AuthError(VideoRoomError):
    """Raised when the backend rejects credentials or no login is present."""


class PermissionDeniedError(VideoRoomError):
    """Raised when camera or microphone permission was not granted."""


class NotInRoomError(VideoRoomError):
    """Raised when a room-scoped command arrives with no active room."""


class JoinError(VideoRoomError):
    """Raised when a join attempt is aborted."""


class TokenFetchError(JoinError):
    """Raised when the backend cannot deliver a token or the room list."""


class ConnectError(JoinError):
    """Raised when the media session fails to establish."""
