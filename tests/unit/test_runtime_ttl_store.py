# ABOUTME: Validates expiry, capacity eviction and prefix operations of the bounded TTL store.
# ABOUTME: Uses an injected clock so expiry is deterministic.

from __future__ import annotations

import pytest

from deckforge.runtime.ttl_store import TtlStore


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = _FakeClock()
    store: TtlStore[str] = TtlStore(ttl_sec=60, max_entries=10, clock=clock)
    store.set("outline:deck-1", "value")

    clock.now += 59
    assert store.get("outline:deck-1") == "value"
    clock.now += 1
    assert store.get("outline:deck-1") is None
    assert store.has("outline:deck-1") is False


def test_full_store_evicts_oldest_insertion() -> None:
    store: TtlStore[int] = TtlStore(ttl_sec=60, max_entries=2, clock=_FakeClock())
    store.set("a", 1)
    store.set("b", 2)
    store.set("a", 10)
    store.set("c", 3)

    assert store.get("b") is None
    assert store.get("a") == 10
    assert store.get("c") == 3
    assert len(store) == 2


def test_prefix_listing_and_deletion() -> None:
    clock = _FakeClock()
    store: TtlStore[int] = TtlStore(ttl_sec=60, max_entries=10, clock=clock)
    store.set("pending:deck-1:s1", 1)
    store.set("pending:deck-1:s2", 2)
    store.set("pending:deck-2:s1", 3)

    assert store.items_with_prefix("pending:deck-1:") == [("pending:deck-1:s1", 1), ("pending:deck-1:s2", 2)]
    assert store.delete_prefix("pending:deck-1:") == 2
    assert store.items_with_prefix("pending:") == [("pending:deck-2:s1", 3)]


def test_empty_store_reports_zero_length_and_missing_deletes() -> None:
    store: TtlStore[int] = TtlStore(ttl_sec=1, max_entries=1)

    assert len(store) == 0
    assert store.delete("missing") is False


def test_invalid_bounds_are_rejected() -> None:
    with pytest.raises(ValueError):
        TtlStore(ttl_sec=0, max_entries=1)
    with pytest.raises(ValueError):
        TtlStore(ttl_sec=1, max_entries=0)
