"""Contract between the room coordinator and a real-time media session."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol


class TrackKind(str, enum.Enum):
    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True, slots=True)
class Track:
    """Reference to a published stream owned by the media session.

    The coordinator never destroys a track; ``handle`` carries the SDK object
    so renderers can subscribe to frames.
    """

    sid: str
    kind: TrackKind
    participant: str
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def is_video(self) -> bool:
        return self.kind is TrackKind.VIDEO


class MediaEventType(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TRACK_PUBLISHED = "track_published"
    TRACK_SUBSCRIBED = "track_subscribed"
    TRACK_UNSUBSCRIBED = "track_unsubscribed"
    PARTICIPANT_DISCONNECTED = "participant_disconnected"


@dataclass(slots=True)
class MediaEvent:
    """One entry of the ordered event stream a media session emits."""

    type: MediaEventType | str
    participant: Optional[str] = None
    track: Optional[Track] = None
    reason: Optional[str] = None

    @classmethod
    def connected(cls) -> "MediaEvent":
        return cls(MediaEventType.CONNECTED)

    @classmethod
    def disconnected(cls, reason: str | None = None) -> "MediaEvent":
        return cls(MediaEventType.DISCONNECTED, reason=reason)

    @classmethod
    def track_published(cls, participant: str, track: Track) -> "MediaEvent":
        return cls(MediaEventType.TRACK_PUBLISHED, participant=participant, track=track)

    @classmethod
    def track_subscribed(cls, participant: str, track: Track) -> "MediaEvent":
        return cls(MediaEventType.TRACK_SUBSCRIBED, participant=participant, track=track)

    @classmethod
    def track_unsubscribed(cls, participant: str, track: Track) -> "MediaEvent":
        return cls(MediaEventType.TRACK_UNSUBSCRIBED, participant=participant, track=track)

    @classmethod
    def participant_disconnected(cls, participant: str) -> "MediaEvent":
        return cls(MediaEventType.PARTICIPANT_DISCONNECTED, participant=participant)


EventSink = Callable[[MediaEvent], None]


class MediaSession(Protocol):
    """Command surface of the SDK room object.

    Commands return once issued; confirmation arrives later on the event sink
    the session was created with.
    """

    @property
    def local_identity(self) -> str | None: ...

    async def connect(self, url: str, token: str) -> None: ...

    async def disconnect(self) -> None: ...

    async def set_camera_enabled(self, enabled: bool) -> None: ...

    async def set_microphone_enabled(self, enabled: bool) -> None: ...

    def local_video_track(self) -> Track | None: ...


MediaSessionFactory = Callable[[EventSink], MediaSession]
