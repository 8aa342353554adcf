from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from adapters.memory_storage import MemoryStorage
from core.models import ALL_EVENT_KINDS, DEFAULT_MAX_PER_DAY, EventKind, PreferencePatch
from core.preferences import NotificationPreferenceStore


def test_missing_preference_returns_default() -> None:
    store = NotificationPreferenceStore(MemoryStorage())

    preference = store.get("u-7")

    assert preference.account_id == "u-7"
    assert preference.event_kinds_enabled == ALL_EVENT_KINDS
    assert preference.max_per_day == DEFAULT_MAX_PER_DAY == 10


def test_update_replaces_only_addressed_fields() -> None:
    store = NotificationPreferenceStore(MemoryStorage())
    store.update("u-7", PreferencePatch(max_per_day=3))

    updated = store.update(
        "u-7", PreferencePatch(event_kinds_enabled=frozenset({EventKind.NEW_CHAPTER}))
    )

    assert updated.max_per_day == 3
    assert updated.event_kinds_enabled == frozenset({EventKind.NEW_CHAPTER})
    assert store.get("u-7") == updated


def test_update_allows_zero_but_rejects_negative() -> None:
    store = NotificationPreferenceStore(MemoryStorage())

    assert store.update("u-7", PreferencePatch(max_per_day=0)).max_per_day == 0
    with pytest.raises(ValueError):
        store.update("u-7", PreferencePatch(max_per_day=-1))
    assert store.get("u-7").max_per_day == 0


def test_enable_and_disable_apply_on_top_of_stored_kinds() -> None:
    store = NotificationPreferenceStore(MemoryStorage())
    store.update("u-7", PreferencePatch(disable_kinds=frozenset({EventKind.NEW_CHAPTER})))

    updated = store.update(
        "u-7",
        PreferencePatch(
            enable_kinds=frozenset({EventKind.NEW_CHAPTER}),
            disable_kinds=frozenset({EventKind.SERIES_COMPLETED}),
        ),
    )

    assert updated.event_kinds_enabled == frozenset({EventKind.NEW_CHAPTER})
    assert updated.max_per_day == 10


def test_concurrent_toggles_from_two_devices_both_apply() -> None:
    store = NotificationPreferenceStore(MemoryStorage())
    kinds = [EventKind.NEW_CHAPTER, EventKind.SERIES_COMPLETED]
    barrier = threading.Barrier(len(kinds))

    def disable(kind: EventKind) -> None:
        barrier.wait()
        store.update("u-7", PreferencePatch(disable_kinds=frozenset({kind})))

    with ThreadPoolExecutor(max_workers=len(kinds)) as pool:
        list(pool.map(disable, kinds))

    assert store.get("u-7").event_kinds_enabled == frozenset()
