"""Tests for the room session coordinator."""
from __future__ import annotations

import asyncio
import random

import pytest

from dummies import LOCAL, DummySessionFactory, DummyTokenSource, audio, make_coordinator, video
from videoroom.services.coordinator import CLIENT_LEFT_REASON, CoordinatorState
from videoroom.services.errors import AuthError, ConnectError, NotInRoomError, TokenFetchError
from videoroom.services.media import MediaEvent
from videoroom.services.notices import NoticeKind
from videoroom.services.surfaces import LOCAL_SURFACE_INDEX, RecordingRenderer, SurfaceState


def _kinds(coordinator) -> list[NoticeKind]:
    return [notice.kind for notice in coordinator.notices.recent()]


@pytest.mark.asyncio
async def test_join_connects_and_enables_devices():
    factory = DummySessionFactory(publish_on_camera=True)
    tokens = DummyTokenSource()
    coordinator = make_coordinator(factory, tokens)

    joined = await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    assert joined is True
    assert coordinator.state is CoordinatorState.ACTIVE
    assert coordinator.room == "room-a"
    assert tokens.calls == [("room-a", "access-1")]
    session = factory.last
    assert session.commands[0] == ("connect", "wss://media.test", "token-room-a")
    assert ("camera", True) in session.commands
    assert ("microphone", True) in session.commands
    assert coordinator.camera_enabled and coordinator.microphone_enabled
    assert coordinator.bindings.snapshot() == {LOCAL: LOCAL_SURFACE_INDEX}
    assert NoticeKind.LOCAL_VIDEO_UNAVAILABLE not in _kinds(coordinator)


@pytest.mark.asyncio
async def test_local_track_published_binds_local_surface():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)

    await coordinator.join("room-a", "access-1")
    camera = video(LOCAL)
    factory.last.emit(MediaEvent.track_published(LOCAL, camera))
    await coordinator.drain_events()

    assert coordinator.state is CoordinatorState.ACTIVE
    binding = coordinator.bindings.lookup(LOCAL)
    assert binding is not None
    assert binding.track == camera
    assert binding.surface is coordinator.pool.reserve_local()
    assert coordinator.pool.reserve_local().renderer.track == camera


@pytest.mark.asyncio
async def test_discovery_gives_up_with_local_video_warning():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)

    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    assert coordinator.state is CoordinatorState.ACTIVE
    assert LOCAL not in coordinator.bindings
    assert _kinds(coordinator).count(NoticeKind.LOCAL_VIDEO_UNAVAILABLE) == 1
    assert factory.last.polls >= 5


@pytest.mark.asyncio
async def test_discovery_finds_late_local_track():
    factory = DummySessionFactory(publish_on_camera=True, video_after_polls=3)
    coordinator = make_coordinator(factory)

    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    assert coordinator.bindings.snapshot() == {LOCAL: LOCAL_SURFACE_INDEX}
    assert factory.last.polls == 4
    assert NoticeKind.LOCAL_VIDEO_UNAVAILABLE not in _kinds(coordinator)


@pytest.mark.asyncio
async def test_failing_publication_lookup_degrades_to_audio_only(caplog):
    factory = DummySessionFactory(lookup_error=RuntimeError("publication lookup failed"))
    coordinator = make_coordinator(factory)

    with caplog.at_level("ERROR", logger="videoroom.services.coordinator"):
        await coordinator.join("room-a", "access-1")
        await coordinator.drain_events()

    assert coordinator.state is CoordinatorState.ACTIVE
    assert LOCAL not in coordinator.bindings
    assert _kinds(coordinator).count(NoticeKind.LOCAL_VIDEO_UNAVAILABLE) == 1
    assert factory.last.polls >= 5
    assert any(record.exc_info for record in caplog.records)


@pytest.mark.asyncio
async def test_audio_publication_recovers_local_video():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)

    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    assert LOCAL not in coordinator.bindings

    camera = video(LOCAL)
    factory.last.published_video = camera
    await coordinator.on_event(MediaEvent.track_published(LOCAL, audio(LOCAL)))

    assert coordinator.bindings.lookup(LOCAL).track == camera


@pytest.mark.asyncio
async def test_remote_subscriptions_beyond_capacity_are_dropped():
    coordinator = make_coordinator()
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    for name in ("alice", "bob", "carol", "dave"):
        await coordinator.on_event(MediaEvent.track_subscribed(name, video(name)))
    before = coordinator.bindings.snapshot()

    await coordinator.on_event(MediaEvent.track_subscribed("erin", video("erin")))

    assert coordinator.bindings.snapshot() == before
    assert before == {"alice": 1, "bob": 2, "carol": 3, "dave": 4}
    over = [notice for notice in coordinator.notices.recent() if notice.kind is NoticeKind.OVER_CAPACITY]
    assert len(over) == 1
    assert over[0].identity == "erin"


@pytest.mark.asyncio
async def test_participant_disconnect_frees_its_surface():
    coordinator = make_coordinator()
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice")))
    await coordinator.on_event(MediaEvent.track_subscribed("bob", video("bob")))
    surface = coordinator.bindings.lookup("alice").surface

    await coordinator.on_event(MediaEvent.participant_disconnected("alice"))

    assert "alice" not in coordinator.bindings
    assert surface.state is SurfaceState.FREE
    assert surface.renderer.track is None
    assert coordinator.pool.acquire_free() is surface


@pytest.mark.asyncio
async def test_unsubscribe_only_releases_the_shown_video_track():
    coordinator = make_coordinator()
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    shown = video("alice", "TR_1")
    await coordinator.on_event(MediaEvent.track_subscribed("alice", shown))

    await coordinator.on_event(MediaEvent.track_unsubscribed("alice", audio("alice")))
    await coordinator.on_event(MediaEvent.track_unsubscribed("alice", video("alice", "TR_other")))
    assert coordinator.bindings.lookup("alice").track == shown

    await coordinator.on_event(MediaEvent.track_unsubscribed("alice", shown))
    assert "alice" not in coordinator.bindings


@pytest.mark.asyncio
async def test_new_video_track_for_bound_identity_reuses_its_surface():
    coordinator = make_coordinator()
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice", "TR_1")))
    surface = coordinator.bindings.lookup("alice").surface

    replacement = video("alice", "TR_2")
    await coordinator.on_event(MediaEvent.track_subscribed("alice", replacement))

    binding = coordinator.bindings.lookup("alice")
    assert binding.surface is surface
    assert binding.track == replacement
    assert len(coordinator.bindings) == 1


@pytest.mark.asyncio
async def test_subscription_sequences_keep_bindings_one_to_one():
    coordinator = make_coordinator()
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    rng = random.Random(7)
    identities = ["alice", "bob", "carol", "dave", "erin", "frank", LOCAL]

    for step in range(300):
        name = rng.choice(identities)
        track = video(name, f"TR_{name}_{rng.randint(0, 2)}")
        if rng.random() < 0.6:
            event = MediaEvent.track_subscribed(name, track)
        else:
            event = MediaEvent.track_unsubscribed(name, track)
        await coordinator.on_event(event)

        snapshot = coordinator.bindings.snapshot()
        indexes = list(snapshot.values())
        assert len(indexes) == len(set(indexes)), f"shared surface at step {step}"
        for identity, index in snapshot.items():
            if identity != LOCAL:
                assert index != LOCAL_SURFACE_INDEX


@pytest.mark.asyncio
async def test_leave_then_join_leaves_no_stale_bindings():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice")))
    first = factory.last

    await coordinator.leave()
    assert coordinator.state is CoordinatorState.IDLE
    assert len(coordinator.bindings) == 0
    assert first.disconnected

    await coordinator.join("room-b", "access-1")
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent.track_subscribed("zoe", video("zoe")))

    assert coordinator.bindings.snapshot() == {"zoe": 1}
    disconnects = [n for n in coordinator.notices.recent() if n.kind is NoticeKind.DISCONNECTED]
    assert disconnects[-1].reason == CLIENT_LEFT_REASON


@pytest.mark.asyncio
async def test_join_while_active_tears_down_previous_room():
    factory = DummySessionFactory(publish_on_camera=True)
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice")))
    first = factory.last

    await coordinator.join("room-b", "access-1")
    await coordinator.drain_events()

    assert first.disconnected
    assert coordinator.room == "room-b"
    assert "alice" not in coordinator.bindings
    assert all(surface.identity != "alice" for surface in coordinator.pool.surfaces)


@pytest.mark.asyncio
async def test_events_from_previous_session_are_dropped():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    first = factory.last

    await coordinator.join("room-b", "access-1")
    first.emit(MediaEvent.track_subscribed("ghost", video("ghost")))
    await coordinator.drain_events()

    assert "ghost" not in coordinator.bindings


@pytest.mark.asyncio
async def test_stale_token_response_is_discarded():
    factory = DummySessionFactory()
    tokens = DummyTokenSource()
    tokens.gates["room-a"] = asyncio.Event()
    coordinator = make_coordinator(factory, tokens)

    pending = asyncio.create_task(coordinator.join("room-a", "access-1"))
    await asyncio.sleep(0)
    assert coordinator.state is CoordinatorState.JOINING

    assert await coordinator.join("room-b", "access-1") is True
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent.track_subscribed("zoe", video("zoe")))

    tokens.gates["room-a"].set()
    assert await pending is False

    assert coordinator.state is CoordinatorState.ACTIVE
    assert coordinator.room == "room-b"
    assert len(factory.sessions) == 1
    assert coordinator.bindings.snapshot() == {"zoe": 1}


@pytest.mark.asyncio
async def test_leave_supersedes_pending_connect():
    gate = asyncio.Event()
    factory = DummySessionFactory(connect_gate=gate)
    coordinator = make_coordinator(factory)

    pending = asyncio.create_task(coordinator.join("room-a", "access-1"))
    while not factory.sessions:
        await asyncio.sleep(0)

    await coordinator.leave()
    gate.set()

    assert await pending is False
    assert coordinator.state is CoordinatorState.IDLE
    assert factory.last.disconnected


@pytest.mark.asyncio
async def test_token_failure_returns_to_idle():
    tokens = DummyTokenSource()
    tokens.failures["room-a"] = RuntimeError("backend down")
    coordinator = make_coordinator(tokens=tokens)

    with pytest.raises(TokenFetchError):
        await coordinator.join("room-a", "access-1")

    assert coordinator.state is CoordinatorState.IDLE
    assert coordinator.room is None


@pytest.mark.asyncio
async def test_auth_failure_during_token_fetch_propagates():
    tokens = DummyTokenSource()
    tokens.failures["room-a"] = AuthError("expired")
    coordinator = make_coordinator(tokens=tokens)

    with pytest.raises(AuthError):
        await coordinator.join("room-a", "access-1")

    assert coordinator.state is CoordinatorState.IDLE


@pytest.mark.asyncio
async def test_connect_failure_returns_to_idle():
    factory = DummySessionFactory(connect_error=OSError("ice failed"))
    coordinator = make_coordinator(factory)

    with pytest.raises(ConnectError):
        await coordinator.join("room-a", "access-1")

    assert coordinator.state is CoordinatorState.IDLE
    assert factory.last.disconnected
    assert coordinator.snapshot().local_identity is None


@pytest.mark.asyncio
async def test_disconnected_event_releases_everything():
    factory = DummySessionFactory(publish_on_camera=True)
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice")))

    factory.last.emit(MediaEvent.disconnected("server_shutdown"))
    await coordinator.drain_events()

    assert coordinator.state is CoordinatorState.IDLE
    assert len(coordinator.bindings) == 0
    assert all(surface.state is SurfaceState.FREE for surface in coordinator.pool.surfaces)
    notice = coordinator.notices.recent()[-1]
    assert notice.kind is NoticeKind.DISCONNECTED
    assert notice.reason == "server_shutdown"


@pytest.mark.asyncio
async def test_toggle_camera_unbinds_and_rebinds_local_track():
    factory = DummySessionFactory(publish_on_camera=True)
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    camera = coordinator.bindings.lookup(LOCAL).track

    assert await coordinator.toggle_camera() is False
    assert LOCAL not in coordinator.bindings
    assert coordinator.pool.reserve_local().renderer.track is None

    assert await coordinator.toggle_camera() is True
    assert coordinator.bindings.lookup(LOCAL).track == camera
    assert factory.last.commands[-2:] == [("camera", False), ("camera", True)]


@pytest.mark.asyncio
async def test_toggle_failures_are_reported_not_raised():
    factory = DummySessionFactory(publish_on_camera=True)
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    factory.last.camera_error = RuntimeError("camera busy")

    assert await coordinator.toggle_camera() is True
    assert coordinator.state is CoordinatorState.ACTIVE
    assert LOCAL in coordinator.bindings
    assert _kinds(coordinator)[-1] is NoticeKind.DEVICE_TOGGLE_FAILED


@pytest.mark.asyncio
async def test_toggle_microphone():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    assert await coordinator.toggle_microphone() is False
    assert await coordinator.toggle_microphone() is True
    assert factory.last.commands[-2:] == [("microphone", False), ("microphone", True)]


@pytest.mark.asyncio
async def test_toggles_require_a_room():
    coordinator = make_coordinator()

    with pytest.raises(NotInRoomError):
        await coordinator.toggle_camera()
    with pytest.raises(NotInRoomError):
        await coordinator.toggle_microphone()


class BrokenRenderer(RecordingRenderer):
    def attach(self, track, *, mirror):
        raise RuntimeError("surface lost")


@pytest.mark.asyncio
async def test_renderer_attach_failure_is_non_fatal():
    def renderers(index):
        return BrokenRenderer() if index == 1 else RecordingRenderer()

    coordinator = make_coordinator(renderer_factory=renderers)
    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()

    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice")))

    assert coordinator.state is CoordinatorState.ACTIVE
    assert "alice" not in coordinator.bindings
    assert coordinator.pool.acquire_free().index == 1
    notice = coordinator.notices.recent()[-1]
    assert notice.kind is NoticeKind.RENDERER_ATTACH_FAILED
    assert notice.identity == "alice"


@pytest.mark.asyncio
async def test_unknown_events_and_idle_events_are_ignored():
    coordinator = make_coordinator()

    await coordinator.on_event(MediaEvent.track_subscribed("alice", video("alice")))
    assert len(coordinator.bindings) == 0

    await coordinator.join("room-a", "access-1")
    await coordinator.drain_events()
    await coordinator.on_event(MediaEvent("room_metadata_changed"))

    assert coordinator.state is CoordinatorState.ACTIVE


@pytest.mark.asyncio
async def test_leave_is_idempotent_and_close_disposes_surfaces():
    factory = DummySessionFactory()
    coordinator = make_coordinator(factory)

    await coordinator.leave()
    await coordinator.join("room-a", "access-1")
    await coordinator.leave()
    await coordinator.leave()

    assert factory.last.commands.count(("disconnect",)) == 1
    await coordinator.close()
    assert all(surface.state is SurfaceState.RELEASED for surface in coordinator.pool.surfaces)
