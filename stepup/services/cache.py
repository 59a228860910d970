import threading
from typing import Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ReadThroughCache(Generic[K, V]):
    """Process-local cache in front of the database.

    Entries are snapshots; the database stays authoritative and callers
    invalidate on every write.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self._entries: dict[K, V] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: K, value: V) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                # drop the oldest insertion
                self._entries.pop(next(iter(self._entries)))
            self._entries[key] = value

    def invalidate(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
