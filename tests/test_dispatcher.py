from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from adapters.memory_storage import MemoryStorage
from adapters.notification_formatting import PlainTextFormatter
from adapters.telegram_bot_transport import TelegramBotTransport
from core.clock import day_bucket
from core.config import DispatchConfig
from core.dispatcher import NotificationDispatcher
from core.errors import TransportFailure
from core.models import (
    DispatchStatus,
    EventKind,
    PreferencePatch,
    SessionRecord,
    UpstreamEvent,
)
from core.preferences import NotificationPreferenceStore


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2024, 5, 1, 23, 59, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current


class FakeTransport:
    def __init__(self, failing: set[int] | None = None, delay: float = 0.0) -> None:
        self.sent: list[tuple[int, str]] = []
        self._failing = failing or set()
        self._delay = delay

    async def send(self, external_id: int, text: str) -> None:
        # Yield to the loop so concurrent dispatches interleave.
        await asyncio.sleep(self._delay)
        if external_id in self._failing:
            raise TransportFailure("blocked by user")
        self.sent.append((external_id, text))


def _link(storage: MemoryStorage, account_id: str, *external_ids: int) -> None:
    for external_id in external_ids:
        storage.put(
            SessionRecord(
                external_id=external_id,
                account_id=account_id,
                credential="tok",
                linked_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        )


def _dispatcher(
    storage: MemoryStorage,
    transport,
    clock: FakeClock,
    send_timeout: float = 1.0,
) -> NotificationDispatcher:
    return NotificationDispatcher(
        sessions=storage,
        preferences=NotificationPreferenceStore(storage),
        quota=storage,
        formatter=PlainTextFormatter(),
        transport=transport,
        config=DispatchConfig(send_timeout_seconds=send_timeout),
        clock=clock,
    )


def _chapter(account_id: str = "u-7", chapter: str = "101") -> UpstreamEvent:
    return UpstreamEvent(
        kind=EventKind.NEW_CHAPTER,
        account_id=account_id,
        manga_ref="one-piece",
        chapter_ref=chapter,
        title="One Piece",
    )


def _statuses(outcomes) -> list[str]:
    return [outcome.status.value for outcome in outcomes]


def test_fan_out_shares_account_budget() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1, 2, 3, 4)
    NotificationPreferenceStore(storage).update("u-7", PreferencePatch(max_per_day=3))
    transport = FakeTransport()
    clock = FakeClock()

    outcomes = asyncio.run(_dispatcher(storage, transport, clock).dispatch(_chapter()))

    assert _statuses(outcomes) == ["sent", "sent", "sent", "suppressed"]
    assert outcomes[-1].reason == "quota_exceeded"
    assert [external_id for external_id, _ in transport.sent] == [1, 2, 3]
    assert storage.sent_count("u-7", day_bucket(clock.now())) == 3


def test_concurrent_events_cannot_bypass_quota() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1)
    NotificationPreferenceStore(storage).update("u-7", PreferencePatch(max_per_day=3))
    dispatcher = _dispatcher(storage, FakeTransport(delay=0.01), FakeClock())
    events = [_chapter(chapter=str(n)) for n in range(4)]

    results = asyncio.run(dispatcher.dispatch_batch(events))

    flat = [outcome for outcomes in results for outcome in outcomes]
    assert sum(o.status is DispatchStatus.SENT for o in flat) == 3
    assert sum(o.reason == "quota_exceeded" for o in flat) == 1


def test_disabled_kind_is_suppressed_other_kind_sent() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1)
    NotificationPreferenceStore(storage).update(
        "u-7", PreferencePatch(event_kinds_enabled=frozenset({EventKind.NEW_CHAPTER}))
    )
    transport = FakeTransport()
    clock = FakeClock()
    dispatcher = _dispatcher(storage, transport, clock)
    completed = UpstreamEvent(
        kind=EventKind.SERIES_COMPLETED, account_id="u-7", manga_ref="one-piece"
    )

    suppressed = asyncio.run(dispatcher.dispatch(completed))
    sent = asyncio.run(dispatcher.dispatch(_chapter()))

    assert _statuses(suppressed) == ["suppressed"]
    assert suppressed[0].reason == "preference_disabled"
    assert _statuses(sent) == ["sent"]
    # Suppressed-by-preference events never touch the budget.
    assert storage.sent_count("u-7", day_bucket(clock.now())) == 1


def test_transport_failure_still_consumes_quota() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1, 2)
    NotificationPreferenceStore(storage).update("u-7", PreferencePatch(max_per_day=2))
    clock = FakeClock()
    dispatcher = _dispatcher(storage, FakeTransport(failing={1}), clock)

    first = asyncio.run(dispatcher.dispatch(_chapter()))
    second = asyncio.run(dispatcher.dispatch(_chapter(chapter="102")))

    assert _statuses(first) == ["failed", "sent"]
    assert first[0].reason == "blocked by user"
    assert _statuses(second) == ["suppressed", "suppressed"]
    assert storage.sent_count("u-7", day_bucket(clock.now())) == 2


def test_slow_transport_times_out_as_failure() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1)
    dispatcher = _dispatcher(storage, FakeTransport(delay=1.0), FakeClock(), send_timeout=0.01)

    outcomes = asyncio.run(dispatcher.dispatch(_chapter()))

    assert _statuses(outcomes) == ["failed"]
    assert outcomes[0].reason == "timeout"


def test_quota_resets_on_next_utc_day() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1)
    NotificationPreferenceStore(storage).update("u-7", PreferencePatch(max_per_day=1))
    clock = FakeClock()
    dispatcher = _dispatcher(storage, FakeTransport(), clock)

    assert _statuses(asyncio.run(dispatcher.dispatch(_chapter()))) == ["sent"]
    assert _statuses(asyncio.run(dispatcher.dispatch(_chapter()))) == ["suppressed"]

    clock.current += timedelta(minutes=2)

    assert _statuses(asyncio.run(dispatcher.dispatch(_chapter()))) == ["sent"]


def test_zero_daily_limit_suppresses_everything() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1)
    NotificationPreferenceStore(storage).update("u-7", PreferencePatch(max_per_day=0))
    transport = FakeTransport()

    outcomes = asyncio.run(_dispatcher(storage, transport, FakeClock()).dispatch(_chapter()))

    assert outcomes[0].reason == "quota_exceeded"
    assert not transport.sent


def test_unlinked_account_has_no_outcomes() -> None:
    storage = MemoryStorage()
    _link(storage, "u-other", 1)
    transport = FakeTransport()

    outcomes = asyncio.run(_dispatcher(storage, transport, FakeClock()).dispatch(_chapter()))

    assert outcomes == []
    assert not transport.sent


def test_message_text_comes_from_formatter() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 5)
    transport = FakeTransport()

    asyncio.run(_dispatcher(storage, transport, FakeClock()).dispatch(_chapter()))

    assert transport.sent == [(5, "New chapter of One Piece (one-piece): 101")]


class DisconnectedClient:
    def __init__(self) -> None:
        self.attempts: list[int] = []

    async def send_message(self, entity, message, link_preview=True) -> None:
        self.attempts.append(entity)
        raise ConnectionError("Cannot send requests while disconnected")


def test_disconnected_client_fails_each_recipient_without_aborting() -> None:
    storage = MemoryStorage()
    _link(storage, "u-7", 1, 2)
    client = DisconnectedClient()
    clock = FakeClock()
    dispatcher = _dispatcher(storage, TelegramBotTransport(client), clock)

    outcomes = asyncio.run(dispatcher.dispatch(_chapter()))

    assert _statuses(outcomes) == ["failed", "failed"]
    assert outcomes[0].reason.startswith("connection error")
    assert client.attempts == [1, 2]
    assert storage.sent_count("u-7", day_bucket(clock.now())) == 2
