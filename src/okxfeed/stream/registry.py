"""
Reference-counted subscription registry.

Maps a key to the ordered set of callbacks interested in it. The boolean
results of ``add`` and ``remove`` tell the caller when a key's callback set
went 0 -> 1 or 1 -> 0, i.e. when a wire subscribe or unsubscribe frame is due.
A key is present only while its set is non-empty.
"""

from collections.abc import Hashable, Iterator
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V", bound=Hashable)


class SubscriptionRegistry(Generic[K, V]):
    """Key -> callback set, preserving insertion order of keys and callbacks."""

    def __init__(self) -> None:
        # dict used as an ordered set of callbacks
        self._entries: dict[K, dict[V, None]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))

    def __repr__(self) -> str:
        counts = {str(key): len(callbacks) for key, callbacks in self._entries.items()}
        return f"SubscriptionRegistry({counts})"

    def add(self, key: K, callback: V) -> bool:
        """Register ``callback`` for ``key``.

        Returns:
            True if this is the first callback for ``key``
        """
        callbacks = self._entries.get(key)
        if callbacks is None:
            self._entries[key] = {callback: None}
            return True
        callbacks[callback] = None
        return False

    def remove(self, key: K, callback: V) -> bool:
        """Unregister ``callback`` from ``key``.

        Returns:
            True if the callback set for ``key`` became empty and the key was
            dropped; False otherwise, including for unknown keys or callbacks
        """
        callbacks = self._entries.get(key)
        if callbacks is None or callback not in callbacks:
            return False
        del callbacks[callback]
        if not callbacks:
            del self._entries[key]
            return True
        return False

    def keys(self) -> list[K]:
        """Snapshot of all active keys."""
        return list(self._entries)

    def callbacks(self, key: K) -> tuple[V, ...]:
        """Snapshot of the callbacks for ``key``; empty for unknown keys."""
        return tuple(self._entries.get(key, ()))

    def all_callbacks(self) -> tuple[V, ...]:
        """Every distinct callback across all keys, in first-seen order."""
        seen: dict[V, None] = {}
        for callbacks in self._entries.values():
            for callback in callbacks:
                seen.setdefault(callback, None)
        return tuple(seen)

    def subscriber_count(self, key: K) -> int:
        return len(self._entries.get(key, ()))

    def clear(self) -> None:
        self._entries.clear()
