"""ClosingGuard — in-process de-duplication of room closures.

Two schedule passes (or a pass and a manual end request) may race to close the
same room. Whoever inserts the room id first owns the closure; everyone else
skips it until the owner releases.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ClosingGuard:
    def __init__(self) -> None:
        self._room_ids: set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, room_id: str) -> bool:
        """Insert-if-absent. True if the caller now owns the closure."""
        with self._lock:
            if room_id in self._room_ids:
                return False
            self._room_ids.add(room_id)
            return True

    def release(self, room_id: str) -> None:
        with self._lock:
            self._room_ids.discard(room_id)

    def __contains__(self, room_id: object) -> bool:
        with self._lock:
            return room_id in self._room_ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._room_ids)

    @contextmanager
    def hold(self, room_id: str) -> Iterator[bool]:
        """Yield whether the guard was acquired; release on every exit path."""
        acquired = self.try_acquire(room_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(room_id)
