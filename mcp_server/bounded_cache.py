"""
Bounded LRU cache with an eviction listener.
Backs the MCP session table; generic so other read-through caches can reuse it.
"""
import logging
from collections import OrderedDict
from typing import Generic, Iterator, Protocol, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class EvictionListener(Protocol[V]):
    def on_evict(self, key: str, value: V) -> None:
        ...


class BoundedCache(Generic[V]):
    """
    OrderedDict-backed LRU. The last entry is the most recently used.
    get() and set() move the key to the end; set() past capacity evicts from the front.
    """

    def __init__(self, max_size: int, listener: EvictionListener[V] | None = None):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._listener = listener
        self._entries: OrderedDict[str, V] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> V | None:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def peek(self, key: str) -> V | None:
        """Read without touching recency."""
        return self._entries.get(key)

    def set(self, key: str, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
            self._entries[key] = value
            return
        self._entries[key] = value
        while len(self._entries) > self._max_size:
            evicted_key, evicted_value = self._entries.popitem(last=False)
            self._notify_evicted(evicted_key, evicted_value)

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        del self._entries[key]
        return True

    def has(self, key: str) -> bool:
        return key in self._entries

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def clear(self) -> None:
        self._entries.clear()

    def items(self) -> Iterator[tuple[str, V]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._entries.items()))

    def __iter__(self) -> Iterator[tuple[str, V]]:
        return self.items()

    def _notify_evicted(self, key: str, value: V) -> None:
        if self._listener is None:
            return
        try:
            self._listener.on_evict(key, value)
        except Exception:
            logger.exception("Eviction listener failed for key %s", key[:8])
