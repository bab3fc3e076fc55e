# ABOUTME: Provides a bounded in-process key/value store with per-entry expiry and oldest-first eviction.
# ABOUTME: Backs the pending-outline cache and the validation gate queues behind an injectable interface.

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import time
from typing import Callable, Generic, Iterator, Protocol, TypeVar


V = TypeVar("V")


class KeyedStore(Protocol[V]):
    def get(self, key: str) -> V | None:
        raise NotImplementedError

    def set(self, key: str, value: V) -> None:
        raise NotImplementedError

    def has(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def items_with_prefix(self, prefix: str) -> list[tuple[str, V]]:
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> int:
        raise NotImplementedError


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TtlStore(Generic[V]):
    """Insertion-ordered map whose entries expire lazily on access.

    When full, ``set`` evicts the oldest insertion before adding a new key.
    Overwriting an existing key refreshes both its expiry and its position.
    """

    def __init__(
        self,
        *,
        ttl_sec: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_sec <= 0:
            raise ValueError("ttl_sec must be > 0.")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1.")
        self._ttl_sec = float(ttl_sec)
        self._max_entries = int(max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[V]] = OrderedDict()

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)

    def _live_entry(self, key: str) -> _Entry[V] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> V | None:
        entry = self._live_entry(key)
        return entry.value if entry is not None else None

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def set(self, key: str, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + self._ttl_sec)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def _iter_prefix(self, prefix: str) -> Iterator[str]:
        return (key for key in list(self._entries) if key.startswith(prefix))

    def items_with_prefix(self, prefix: str) -> list[tuple[str, V]]:
        found: list[tuple[str, V]] = []
        for key in self._iter_prefix(prefix):
            entry = self._live_entry(key)
            if entry is not None:
                found.append((key, entry.value))
        return found

    def delete_prefix(self, prefix: str) -> int:
        removed = 0
        for key in self._iter_prefix(prefix):
            del self._entries[key]
            removed += 1
        return removed

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
