"""Fixed-capacity LRU cache of recently produced payloads."""

import threading
from collections import OrderedDict
from typing import Any, Hashable, Optional

DEFAULT_CAPACITY = 10


class PayloadCache:
    """Least-recently-used cache keyed by block hash.

    ``get`` refreshes recency; entries only leave on capacity-driven eviction.
    All access goes through an internal lock, so the relay's request handlers
    can share one instance without further synchronization.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.Lock()

    def put(self, key: Hashable, value: Any) -> bool:
        """Insert or refresh an entry. Returns True if another entry was evicted."""
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = value
            if len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                return True
            return False

    def get(self, key: Hashable) -> tuple[Optional[Any], bool]:
        """Look up an entry, returning ``(value, found)``."""
        with self._lock:
            if key not in self._entries:
                return None, False
            self._entries.move_to_end(key)
            return self._entries[key], True

    def keys(self) -> list:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries
