"""Bubble lookup table shared between the loading and reconstruction stages."""

import threading

from session_salvage.models import Bubble


class BubbleMap:
    """Bubbles keyed by id.

    Inserts take a lock while the bubble producer is still running. Once
    ``freeze()`` is called the map is read-only and lookups need no lock.
    """

    def __init__(self) -> None:
        self._bubbles: dict[str, Bubble] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def set(self, bubble: Bubble) -> None:
        """Insert a bubble; a later bubble with the same id replaces it."""
        with self._lock:
            if self._frozen:
                raise RuntimeError("bubble map is frozen")
            self._bubbles[bubble.bubble_id] = bubble

    def update(self, bubbles: dict[str, Bubble]) -> None:
        with self._lock:
            if self._frozen:
                raise RuntimeError("bubble map is frozen")
            self._bubbles.update(bubbles)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, bubble_id: str) -> Bubble | None:
        return self._bubbles.get(bubble_id)

    def values(self) -> list[Bubble]:
        return list(self._bubbles.values())

    def __contains__(self, bubble_id: object) -> bool:
        return bubble_id in self._bubbles

    def __len__(self) -> int:
        return len(self._bubbles)

    @classmethod
    def from_dict(cls, bubbles: dict[str, Bubble]) -> "BubbleMap":
        """Build a frozen map in one step."""
        bubble_map = cls()
        bubble_map.update(bubbles)
        bubble_map.freeze()
        return bubble_map
