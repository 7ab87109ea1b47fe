"""Fixed pool of render surfaces: one local preview plus N remote slots."""
from __future__ import annotations

import enum
import logging
from typing import Callable, Optional, Protocol

from .media import Track

logger = logging.getLogger(__name__)

LOCAL_SURFACE_INDEX = 0


class SurfaceState(str, enum.Enum):
    FREE = "free"
    BOUND = "bound"
    RELEASED = "released"


class Renderer(Protocol):
    def attach(self, track: Track, *, mirror: bool) -> None: ...

    def detach(self, track: Track) -> None: ...


class RecordingRenderer:
    """In-process renderer that remembers what it currently shows."""

    def __init__(self) -> None:
        self.track: Optional[Track] = None
        self.mirror = False

    def attach(self, track: Track, *, mirror: bool) -> None:
        self.track = track
        self.mirror = mirror

    def detach(self, track: Track) -> None:
        if self.track == track:
            self.track = None


RendererFactory = Callable[[int], Renderer]


class Surface:
    """A render target that shows at most one identity's video."""

    def __init__(self, index: int, renderer: Renderer, *, local: bool, mirror: bool) -> None:
        self.index = index
        self.renderer = renderer
        self.local = local
        self.mirror = mirror
        self.state = SurfaceState.FREE
        self.identity: Optional[str] = None
        self.track: Optional[Track] = None

    def __repr__(self) -> str:
        return f"Surface(index={self.index}, state={self.state.value}, identity={self.identity!r})"

    @property
    def is_free(self) -> bool:
        return self.state is SurfaceState.FREE

    def attach(self, identity: str, track: Track) -> None:
        """Show ``track`` for ``identity``; renderer errors propagate unchanged."""

        if self.state is SurfaceState.RELEASED:
            raise RuntimeError(f"surface {self.index} has been released")
        if self.track is not None and self.track != track:
            self.renderer.detach(self.track)
        self.renderer.attach(track, mirror=self.mirror)
        self.state = SurfaceState.BOUND
        self.identity = identity
        self.track = track

    def detach(self) -> None:
        if self.track is not None:
            try:
                self.renderer.detach(self.track)
            except Exception:  # noqa: BLE001 - a broken renderer must not block teardown
                logger.exception("Renderer detach failed on surface %s", self.index)
        self.track = None
        self.identity = None
        if self.state is SurfaceState.BOUND:
            self.state = SurfaceState.FREE


class RenderSurfacePool:
    """Owns the reserved local surface and the remote slots.

    ``acquire_free`` only selects a slot; it becomes occupied once a track is
    attached to it, and returns to ``free`` through ``release``.
    """

    def __init__(
        self,
        remote_count: int = 4,
        *,
        renderer_factory: RendererFactory | None = None,
        mirror_local: bool = True,
        mirror_remote: bool = False,
    ) -> None:
        if remote_count < 1:
            raise ValueError("remote_count must be at least 1")
        factory = renderer_factory or (lambda _index: RecordingRenderer())
        self._local = Surface(LOCAL_SURFACE_INDEX, factory(LOCAL_SURFACE_INDEX), local=True, mirror=mirror_local)
        self._remote = [
            Surface(index, factory(index), local=False, mirror=mirror_remote)
            for index in range(1, remote_count + 1)
        ]

    @property
    def remote_count(self) -> int:
        return len(self._remote)

    @property
    def mirror_local(self) -> bool:
        return self._local.mirror

    @property
    def mirror_remote(self) -> bool:
        return self._remote[0].mirror

    @property
    def surfaces(self) -> list[Surface]:
        return [self._local, *self._remote]

    def reserve_local(self) -> Surface:
        return self._local

    def acquire_free(self) -> Optional[Surface]:
        """Return the first free remote surface in slot order, if any."""

        for surface in self._remote:
            if surface.is_free:
                return surface
        return None

    def release(self, surface: Surface) -> None:
        """Detach whatever ``surface`` shows and mark it free. Idempotent."""

        if surface.state is SurfaceState.RELEASED:
            return
        surface.detach()

    def release_all(self) -> None:
        for surface in self.surfaces:
            self.release(surface)

    def dispose(self) -> None:
        """Detach every renderer and retire all surfaces for good."""

        for surface in self.surfaces:
            surface.detach()
            surface.state = SurfaceState.RELEASED
