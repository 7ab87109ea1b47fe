"""Room session coordinator.

Owns at most one room membership at a time and keeps the render surfaces in
step with the media session's event stream:

* ``join``/``leave`` drive the membership lifecycle. Each join bumps a
  generation counter; token responses, connect completions and media events
  tagged with an older generation are discarded.
* Media events are funnelled through a single queue and handled one at a time
  in arrival order.
* After ``Connected`` a bounded discovery loop looks for the local video
  track, because camera enable and track publication are confirmed
  asynchronously.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Optional, Tuple

from .bindings import TrackBindingTable
from .errors import AuthError, ConnectError, JoinError, NotInRoomError, TokenFetchError
from .media import MediaEvent, MediaEventType, MediaSession, MediaSessionFactory, Track
from .notices import Notice, NoticeFeed, NoticeKind
from .retry import RetryPolicy
from .surfaces import RenderSurfacePool, Surface

logger = logging.getLogger(__name__)

RoomTokenSource = Callable[[str, str], Awaitable[str]]

CLIENT_LEFT_REASON = "client_left"


class CoordinatorState(str, enum.Enum):
    IDLE = "idle"
    JOINING = "joining"
    ACTIVE = "active"
    LEAVING = "leaving"


@dataclass(slots=True)
class CoordinatorSnapshot:
    state: CoordinatorState
    room: Optional[str]
    local_identity: Optional[str]
    camera_enabled: bool
    microphone_enabled: bool
    bindings: dict[str, int] = field(default_factory=dict)


class RoomSessionCoordinator:
    """Single-owner state machine for one room membership."""

    def __init__(
        self,
        token_source: RoomTokenSource,
        session_factory: MediaSessionFactory,
        *,
        server_url: str,
        pool: RenderSurfacePool | None = None,
        notices: NoticeFeed | None = None,
        discovery: RetryPolicy | None = None,
    ) -> None:
        self._token_source = token_source
        self._session_factory = session_factory
        self._server_url = server_url
        self._pool = pool or RenderSurfacePool()
        self._bindings = TrackBindingTable()
        self._notices = notices or NoticeFeed()
        self._discovery = discovery or RetryPolicy()

        self._lock = asyncio.Lock()
        self._state = CoordinatorState.IDLE
        self._generation = 0
        self._room: Optional[str] = None
        self._session: Optional[MediaSession] = None
        self._local_track: Optional[Track] = None
        self._camera_enabled = False
        self._microphone_enabled = False

        self._discovery_task: Optional[asyncio.Task[None]] = None
        self._events: Optional[asyncio.Queue[Tuple[int, MediaEvent]]] = None
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def room(self) -> Optional[str]:
        return self._room

    @property
    def pool(self) -> RenderSurfacePool:
        return self._pool

    @property
    def bindings(self) -> TrackBindingTable:
        return self._bindings

    @property
    def notices(self) -> NoticeFeed:
        return self._notices

    @property
    def camera_enabled(self) -> bool:
        return self._camera_enabled

    @property
    def microphone_enabled(self) -> bool:
        return self._microphone_enabled

    def snapshot(self) -> CoordinatorSnapshot:
        return CoordinatorSnapshot(
            state=self._state,
            room=self._room,
            local_identity=self._session.local_identity if self._session else None,
            camera_enabled=self._camera_enabled,
            microphone_enabled=self._microphone_enabled,
            bindings=self._bindings.snapshot(),
        )

    # ---- lifecycle ----

    async def join(self, room: str, access_token: str) -> bool:
        """Join ``room``, leaving the current one first.

        Returns ``True`` once the media session is connected and ``False`` if
        a later ``join`` or ``leave`` superseded this call. Token and connect
        failures raise and return the coordinator to ``IDLE``.
        """

        async with self._lock:
            generation = self._advance_generation()
            if self._session is not None:
                logger.info("Leaving %s before joining %s", self._room, room)
                await self._teardown()
            self._state = CoordinatorState.JOINING
            self._room = room

        try:
            token = await self._token_source(room, access_token)
        except asyncio.CancelledError:
            async with self._lock:
                if generation == self._generation:
                    self._reset()
            raise
        except Exception as exc:
            async with self._lock:
                stale = generation != self._generation
                if not stale:
                    self._reset()
            if stale:
                logger.info("Ignoring token failure for superseded join of %s: %s", room, exc)
                return False
            if isinstance(exc, (JoinError, AuthError)):
                raise
            raise TokenFetchError(f"Could not fetch a token for room {room!r}") from exc

        async with self._lock:
            if generation != self._generation:
                logger.info("Discarding stale room token for %s", room)
                return False
            session = self._session_factory(partial(self._dispatch, generation))
            self._session = session

        try:
            await session.connect(self._server_url, token)
        except Exception as exc:
            async with self._lock:
                stale = generation != self._generation
                if not stale and self._session is session:
                    self._session = None
                    self._reset()
            await self._safe_disconnect(session)
            if stale:
                logger.info("Ignoring connect failure for superseded join of %s: %s", room, exc)
                return False
            raise ConnectError(f"Could not connect to room {room!r}") from exc

        async with self._lock:
            if generation != self._generation:
                stale = True
            elif self._session is not session:
                # Disconnected arrived while connect was still pending.
                raise ConnectError(f"Room {room!r} disconnected while connecting")
            else:
                stale = False
                self._state = CoordinatorState.ACTIVE
        if stale:
            logger.info("Dropping connection to superseded room %s", room)
            await self._safe_disconnect(session)
            return False

        logger.info("Joined room %s as %s", room, session.local_identity)
        return True

    async def leave(self) -> None:
        """Disconnect and release every binding. Safe to call in any state."""

        async with self._lock:
            self._advance_generation()
            if self._session is None:
                if self._state is not CoordinatorState.IDLE:
                    logger.info("Abandoning pending join of %s", self._room)
                self._reset()
                return
            room = self._room
            self._state = CoordinatorState.LEAVING
            await self._teardown()
            self._reset()
            self._publish(NoticeKind.DISCONNECTED, f"Left room {room}", reason=CLIENT_LEFT_REASON)

    async def close(self) -> None:
        """Leave, stop the event worker and retire all surfaces."""

        await self.leave()
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
            self._events = None
        self._pool.dispose()

    # ---- device toggles ----

    async def toggle_camera(self) -> bool:
        """Flip the camera and return the resulting enabled flag."""

        async with self._lock:
            session = self._require_session()
            target = not self._camera_enabled
            try:
                await session.set_camera_enabled(target)
            except Exception as exc:  # noqa: BLE001 - toggle failures are reported, not raised
                logger.warning("Camera toggle to %s failed: %s", target, exc)
                self._publish(NoticeKind.DEVICE_TOGGLE_FAILED, f"Could not turn camera {_on_off(target)}")
                return self._camera_enabled

            self._camera_enabled = target
            if target:
                track = self._local_track or self._find_local_video()
                if track is not None:
                    self._bind_local(track)
            else:
                # The track stays published server side; only the preview goes.
                self._release_identity(session.local_identity)
            return target

    async def toggle_microphone(self) -> bool:
        """Flip the microphone and return the resulting enabled flag."""

        async with self._lock:
            session = self._require_session()
            target = not self._microphone_enabled
            try:
                await session.set_microphone_enabled(target)
            except Exception as exc:  # noqa: BLE001 - toggle failures are reported, not raised
                logger.warning("Microphone toggle to %s failed: %s", target, exc)
                self._publish(NoticeKind.DEVICE_TOGGLE_FAILED, f"Could not turn microphone {_on_off(target)}")
                return self._microphone_enabled
            self._microphone_enabled = target
            return target

    # ---- events ----

    async def on_event(self, event: MediaEvent) -> None:
        """Apply one media event to the current session."""

        async with self._lock:
            await self._handle(event)

    async def drain_events(self) -> None:
        """Wait until queued media events and a running local video discovery finish."""

        if self._events is not None:
            await self._events.join()
        task = self._discovery_task
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    def _dispatch(self, generation: int, event: MediaEvent) -> None:
        if self._events is None:
            self._events = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run_events())
        self._events.put_nowait((generation, event))

    async def _run_events(self) -> None:
        events = self._events
        if events is None:
            return
        while True:
            generation, event = await events.get()
            try:
                async with self._lock:
                    if generation != self._generation:
                        logger.debug("Dropping %s event from a previous session", event.type)
                        continue
                    await self._handle(event)
            except Exception:  # noqa: BLE001 - one bad event must not stop the stream
                logger.exception("Failed handling media event %s", event.type)
            finally:
                events.task_done()

    async def _handle(self, event: MediaEvent) -> None:
        if self._session is None or self._state not in (CoordinatorState.JOINING, CoordinatorState.ACTIVE):
            logger.debug("Ignoring %s event with no active session", event.type)
            return

        if event.type is MediaEventType.CONNECTED:
            await self._on_connected()
        elif event.type is MediaEventType.DISCONNECTED:
            self._on_disconnected(event.reason)
        elif event.type is MediaEventType.TRACK_PUBLISHED:
            self._on_track_published(event.participant, event.track)
        elif event.type is MediaEventType.TRACK_SUBSCRIBED:
            self._on_track_subscribed(event.participant, event.track)
        elif event.type is MediaEventType.TRACK_UNSUBSCRIBED:
            self._on_track_unsubscribed(event.participant, event.track)
        elif event.type is MediaEventType.PARTICIPANT_DISCONNECTED:
            self._release_identity(event.participant)
        else:
            logger.info("Ignoring unrecognized media event %r", event.type)

    async def _on_connected(self) -> None:
        session = self._session
        if session is None:
            return
        try:
            await session.set_camera_enabled(True)
            self._camera_enabled = True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Enabling camera failed: %s", exc)
            self._publish(NoticeKind.DEVICE_TOGGLE_FAILED, "Could not turn camera on")
        try:
            await session.set_microphone_enabled(True)
            self._microphone_enabled = True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Enabling microphone failed: %s", exc)
            self._publish(NoticeKind.DEVICE_TOGGLE_FAILED, "Could not turn microphone on")

        self._cancel_discovery()
        self._discovery_task = asyncio.get_running_loop().create_task(
            self._discover_local_video(self._generation)
        )

    def _on_disconnected(self, reason: Optional[str]) -> None:
        room = self._room
        self._cancel_discovery()
        self._release_all()
        self._session = None
        self._reset()
        logger.info("Disconnected from %s: %s", room, reason)
        self._publish(NoticeKind.DISCONNECTED, f"Disconnected from room {room}", reason=reason)

    def _on_track_published(self, participant: Optional[str], track: Optional[Track]) -> None:
        if self._session is None or participant is None or track is None:
            return
        if participant != self._session.local_identity:
            return
        if track.is_video:
            self._bind_local(track)
            return
        # An audio publication can be the only confirmation that arrives, so
        # look for a video track that was published without its own event.
        if participant not in self._bindings:
            video = self._find_local_video()
            if video is not None:
                logger.info("Recovered local video track %s from audio publication", video.sid)
                self._bind_local(video)

    def _on_track_subscribed(self, participant: Optional[str], track: Optional[Track]) -> None:
        if self._session is None or participant is None or track is None or not track.is_video:
            return
        if participant == self._session.local_identity:
            return

        current = self._bindings.lookup(participant)
        if current is not None:
            if current.track != track:
                self._attach(participant, track, current.surface)
            return

        surface = self._pool.acquire_free()
        if surface is None:
            logger.info("No free surface for %s; dropping video track %s", participant, track.sid)
            self._publish(
                NoticeKind.OVER_CAPACITY,
                f"Not showing video for {participant}: all {self._pool.remote_count} slots are in use",
                identity=participant,
            )
            return
        self._attach(participant, track, surface)

    def _on_track_unsubscribed(self, participant: Optional[str], track: Optional[Track]) -> None:
        if participant is None:
            return
        if track is not None and not track.is_video:
            return
        binding = self._bindings.lookup(participant)
        if binding is None:
            return
        if track is not None and binding.track != track:
            logger.debug("Unsubscribed track %s is not the one shown for %s", track.sid, participant)
            return
        self._release_identity(participant)

    # ---- local video discovery ----

    async def _discover_local_video(self, generation: int) -> None:
        async def probe(attempt: int) -> Optional[bool]:
            async with self._lock:
                if generation != self._generation or self._session is None:
                    return True
                identity = self._session.local_identity
                if identity in self._bindings:
                    return True
                track = self._find_local_video()
                if track is None:
                    logger.debug(
                        "Local video not published yet (attempt %d/%d)", attempt, self._discovery.max_attempts
                    )
                    return None
                self._local_track = track
                if not self._camera_enabled:
                    return True
                return True if self._bind_local(track) else None

        try:
            found = await self._discovery.poll(probe)
        except Exception:  # noqa: BLE001 - discovery failures degrade to audio only
            logger.exception("Local video discovery failed")
            found = None
        if found is not None:
            return

        async with self._lock:
            if generation != self._generation or self._session is None:
                return
            if self._session.local_identity in self._bindings or self._find_local_video() is not None:
                return
            logger.warning("Local video unavailable after %d attempts", self._discovery.max_attempts)
            self._publish(
                NoticeKind.LOCAL_VIDEO_UNAVAILABLE,
                "Camera is unavailable; continuing with audio only",
                identity=self._session.local_identity,
            )

    def _find_local_video(self) -> Optional[Track]:
        if self._session is None:
            return None
        try:
            return self._session.local_video_track()
        except Exception:  # noqa: BLE001
            logger.exception("Looking up the local video publication failed")
            return None

    def _cancel_discovery(self) -> None:
        if self._discovery_task is not None and not self._discovery_task.done():
            self._discovery_task.cancel()
        self._discovery_task = None

    # ---- binding helpers ----

    def _bind_local(self, track: Track) -> bool:
        self._local_track = track
        if self._session is None or not self._camera_enabled:
            return False
        identity = self._session.local_identity or track.participant
        current = self._bindings.lookup(identity)
        if current is not None and current.track == track:
            return True
        return self._attach(identity, track, self._pool.reserve_local())

    def _attach(self, identity: str, track: Track, surface: Surface) -> bool:
        try:
            surface.attach(identity, track)
        except Exception as exc:  # noqa: BLE001 - renderer faults are reported, not raised
            logger.warning("Renderer attach failed for %s on surface %s: %s", identity, surface.index, exc)
            if self._bindings.lookup(identity) is not None:
                self._release_identity(identity)
            else:
                self._pool.release(surface)
            self._publish(
                NoticeKind.RENDERER_ATTACH_FAILED,
                f"Could not display video for {identity}",
                identity=identity,
                reason=str(exc),
            )
            return False
        self._bindings.bind(identity, track, surface)
        return True

    def _release_identity(self, identity: Optional[str]) -> None:
        if identity is None:
            return
        surface = self._bindings.unbind_by_identity(identity)
        if surface is not None:
            self._pool.release(surface)

    def _release_all(self) -> None:
        for surface in self._bindings.clear():
            self._pool.release(surface)
        self._pool.release_all()

    # ---- internals ----

    def _advance_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _require_session(self) -> MediaSession:
        if self._session is None or self._state is not CoordinatorState.ACTIVE:
            raise NotInRoomError("Not connected to a room")
        return self._session

    async def _teardown(self) -> None:
        self._cancel_discovery()
        session, self._session = self._session, None
        if session is not None:
            await self._safe_disconnect(session)
        self._release_all()
        self._local_track = None
        self._camera_enabled = False
        self._microphone_enabled = False

    def _reset(self) -> None:
        self._state = CoordinatorState.IDLE
        self._room = None
        self._local_track = None
        self._camera_enabled = False
        self._microphone_enabled = False

    async def _safe_disconnect(self, session: MediaSession) -> None:
        try:
            await session.disconnect()
        except Exception as exc:  # noqa: BLE001 - teardown continues regardless
            logger.warning("Media session disconnect failed: %s", exc)

    def _publish(
        self,
        kind: NoticeKind,
        message: str,
        *,
        identity: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self._notices.publish(Notice(kind=kind, message=message, identity=identity, reason=reason))


def _on_off(enabled: bool) -> str:
    return "on" if enabled else "off"
