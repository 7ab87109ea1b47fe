"""Identity to (track, surface) bookkeeping."""
from __future__ import annotations

from typing import Dict, Iterator, NamedTuple, Optional

from .media import Track
from .surfaces import Surface


class Binding(NamedTuple):
    track: Track
    surface: Surface


class TrackBindingTable:
    """Keeps bound identities and bound surfaces in one-to-one correspondence."""

    def __init__(self) -> None:
        self._bindings: Dict[str, Binding] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, identity: object) -> bool:
        return identity in self._bindings

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._bindings))

    def bind(self, identity: str, track: Track, surface: Surface) -> None:
        """Record ``identity`` as shown on ``surface``.

        Rebinding an identity to its current surface swaps the track. Any
        other overlap raises ``ValueError`` and leaves the table untouched.
        """

        current = self._bindings.get(identity)
        if current is not None and current.surface is not surface:
            raise ValueError(f"{identity!r} is already bound to surface {current.surface.index}")
        for other, binding in self._bindings.items():
            if other != identity and binding.surface is surface:
                raise ValueError(f"surface {surface.index} is already bound to {other!r}")
        self._bindings[identity] = Binding(track=track, surface=surface)

    def unbind_by_identity(self, identity: str) -> Optional[Surface]:
        binding = self._bindings.pop(identity, None)
        return binding.surface if binding else None

    def lookup(self, identity: str) -> Optional[Binding]:
        return self._bindings.get(identity)

    def clear(self) -> list[Surface]:
        """Drop every binding and return the surfaces they held."""

        surfaces = [binding.surface for binding in self._bindings.values()]
        self._bindings.clear()
        return surfaces

    def snapshot(self) -> dict[str, int]:
        return {identity: binding.surface.index for identity, binding in self._bindings.items()}
