"""Per-process cache for computed entitlement payloads."""
from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterable, NamedTuple, Optional, Protocol, Set

from .models import EntitlementPayload


class EntitlementCache(Protocol):
    """Operations the entitlement service needs from a cache backend."""

    def get(self, key: str) -> Optional[EntitlementPayload]:
        ...

    def set(self, key: str, value: EntitlementPayload, expires_at: datetime, tags: Set[str]) -> None:
        ...

    def invalidate(self, tags: Iterable[str]) -> None:
        ...


class _Entry(NamedTuple):
    payload: EntitlementPayload
    expires_at: datetime
    tags: frozenset


class InMemoryEntitlementCache:
    """Dict-backed cache with a tag index.

    Safe to share between threadpool workers. Entries are keyed by
    ``user:<id>`` and tagged with the user and subscription they were
    computed from.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._keys_by_tag: Dict[str, Set[str]] = {}
        self._lock = Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, key: str) -> Optional[EntitlementPayload]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                self._drop(key)
                return None
            return entry.payload

    def set(
        self,
        key: str,
        value: EntitlementPayload,
        expires_at: datetime,
        tags: Set[str],
    ) -> None:
        if expires_at <= self._clock():
            return
        with self._lock:
            self._drop(key)
            entry = _Entry(payload=value, expires_at=expires_at, tags=frozenset(tags))
            self._entries[key] = entry
            for tag in entry.tags:
                self._keys_by_tag.setdefault(tag, set()).add(key)

    def invalidate(self, tags: Iterable[str]) -> None:
        with self._lock:
            for tag in set(tags):
                for key in list(self._keys_by_tag.get(tag, ())):
                    self._drop(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._keys_by_tag.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._keys_by_tag.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._keys_by_tag[tag]
