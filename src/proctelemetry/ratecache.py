"""Most-recent-sample store behind the "percent since your last call" mode."""

from collections.abc import Hashable
from typing import Any


class RateCache:
    """
    Holds the latest sample per key (metric family, or process identity).

    Entries are created on first use and overwritten by every later sample;
    nothing is ever evicted. There is no locking: one thread writes a given
    key. Callers sharing a cache across threads serialise access per key.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def put(self, key: Hashable, sample: Any) -> None:
        self._entries[key] = sample

    def exchange(self, key: Hashable, sample: Any, default: Any = None) -> Any:
        """Store ``sample`` as the latest for ``key`` and return the one it replaced."""
        previous = self._entries.get(key, default)
        self._entries[key] = sample
        return previous

    def keys(self) -> list[Hashable]:
        return list(self._entries)
