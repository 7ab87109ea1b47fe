"""Media session backed by the LiveKit realtime SDK."""
from __future__ import annotations

import logging
from typing import Any, Optional

from livekit import rtc

from ..core.config import Settings, settings
from .media import EventSink, MediaEvent, MediaSessionFactory, Track, TrackKind

logger = logging.getLogger(__name__)

CAMERA_TRACK_NAME = "camera"
MICROPHONE_TRACK_NAME = "microphone"
AUDIO_SAMPLE_RATE = 48000


def _kind(value: Any) -> TrackKind:
    return TrackKind.VIDEO if value == rtc.TrackKind.KIND_VIDEO else TrackKind.AUDIO


def _reason_name(value: Any) -> str:
    if isinstance(value, int):
        try:
            return rtc.DisconnectReason.Name(value)
        except ValueError:
            logger.debug("Unknown disconnect reason %d", value)
    return str(value)


def _to_track(track: Any, participant: str, *, sid: str | None = None, kind: Any = None) -> Track:
    return Track(
        sid=sid or track.sid,
        kind=_kind(kind if kind is not None else track.kind),
        participant=participant,
        handle=track,
    )


class LiveKitMediaSession:
    """Translate ``rtc.Room`` callbacks into media events and expose device commands.

    Camera frames are pushed by the caller into ``camera_source``; the session
    only owns publication and mute state.
    """

    def __init__(
        self,
        sink: EventSink,
        *,
        video_width: int = 1280,
        video_height: int = 720,
        room: rtc.Room | None = None,
    ) -> None:
        self._sink = sink
        self._room = room if room is not None else rtc.Room()
        self._video_width = video_width
        self._video_height = video_height
        self._identity: Optional[str] = None

        self._camera_source: Optional[rtc.VideoSource] = None
        self._camera_track: Optional[rtc.LocalVideoTrack] = None
        self._microphone_source: Optional[rtc.AudioSource] = None
        self._microphone_track: Optional[rtc.LocalAudioTrack] = None

        self._room.on("local_track_published", self._on_local_track_published)
        self._room.on("track_published", self._on_track_published)
        self._room.on("track_subscribed", self._on_track_subscribed)
        self._room.on("track_unsubscribed", self._on_track_unsubscribed)
        self._room.on("participant_disconnected", self._on_participant_disconnected)
        self._room.on("disconnected", self._on_disconnected)

    @classmethod
    def factory(cls, config: Settings | None = None) -> MediaSessionFactory:
        config = config or settings

        def build(sink: EventSink) -> "LiveKitMediaSession":
            return cls(sink, video_width=config.video_width, video_height=config.video_height)

        return build

    @property
    def local_identity(self) -> Optional[str]:
        return self._identity

    @property
    def camera_source(self) -> Optional[rtc.VideoSource]:
        return self._camera_source

    @property
    def microphone_source(self) -> Optional[rtc.AudioSource]:
        return self._microphone_source

    async def connect(self, url: str, token: str) -> None:
        await self._room.connect(url, token)
        self._identity = self._room.local_participant.identity
        logger.info("LiveKit room %s connected as %s", self._room.name, self._identity)
        self._sink(MediaEvent.connected())

    async def disconnect(self) -> None:
        await self._room.disconnect()
        self._camera_track = None
        self._camera_source = None
        self._microphone_track = None
        self._microphone_source = None

    async def set_camera_enabled(self, enabled: bool) -> None:
        if self._camera_track is not None:
            if enabled:
                self._camera_track.unmute()
            else:
                self._camera_track.mute()
            return
        if not enabled:
            return

        self._camera_source = rtc.VideoSource(self._video_width, self._video_height)
        self._camera_track = rtc.LocalVideoTrack.create_video_track(CAMERA_TRACK_NAME, self._camera_source)
        await self._room.local_participant.publish_track(
            self._camera_track,
            rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_CAMERA),
        )

    async def set_microphone_enabled(self, enabled: bool) -> None:
        if self._microphone_track is not None:
            if enabled:
                self._microphone_track.unmute()
            else:
                self._microphone_track.mute()
            return
        if not enabled:
            return

        self._microphone_source = rtc.AudioSource(AUDIO_SAMPLE_RATE, 1)
        self._microphone_track = rtc.LocalAudioTrack.create_audio_track(
            MICROPHONE_TRACK_NAME, self._microphone_source
        )
        await self._room.local_participant.publish_track(
            self._microphone_track,
            rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE),
        )

    def local_video_track(self) -> Optional[Track]:
        if self._identity is None:
            return None
        for publication in self._room.local_participant.track_publications.values():
            if publication.kind == rtc.TrackKind.KIND_VIDEO and publication.track is not None:
                return _to_track(publication.track, self._identity, sid=publication.sid, kind=publication.kind)
        return None

    # ---- room callbacks ----

    def _on_local_track_published(self, publication: Any, track: Any) -> None:
        if self._identity is None:
            return
        self._sink(MediaEvent.track_published(self._identity, _to_track(track, self._identity, sid=publication.sid)))

    def _on_track_published(self, publication: Any, participant: Any) -> None:
        handle = publication.track if publication.track is not None else publication
        track = _to_track(handle, participant.identity, sid=publication.sid, kind=publication.kind)
        self._sink(MediaEvent.track_published(participant.identity, track))

    def _on_track_subscribed(self, track: Any, publication: Any, participant: Any) -> None:
        self._sink(MediaEvent.track_subscribed(participant.identity, _to_track(track, participant.identity, sid=publication.sid)))

    def _on_track_unsubscribed(self, track: Any, publication: Any, participant: Any) -> None:
        self._sink(
            MediaEvent.track_unsubscribed(participant.identity, _to_track(track, participant.identity, sid=publication.sid))
        )

    def _on_participant_disconnected(self, participant: Any) -> None:
        self._sink(MediaEvent.participant_disconnected(participant.identity))

    def _on_disconnected(self, *args: Any) -> None:
        reason = _reason_name(args[0]) if args else None
        self._sink(MediaEvent.disconnected(reason))
