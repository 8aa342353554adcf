from __future__ import annotations

import asyncio
import re

from adapters.memory_storage import MemoryStorage
from adapters.telegram_commands import (
    NOT_LINKED_TEXT,
    NOTIFY_USAGE,
    UNAVAILABLE_TEXT,
    BotCommands,
    _command_pattern,
)
from core.coordinator import LinkingCoordinator
from core.errors import StoreUnavailable
from core.linking_codes import LinkingCodeRegistry
from core.models import EventKind
from core.preferences import NotificationPreferenceStore


def _commands(
    storage: MemoryStorage | None = None,
) -> tuple[BotCommands, LinkingCoordinator, NotificationPreferenceStore]:
    storage = storage or MemoryStorage()
    coordinator = LinkingCoordinator(storage, LinkingCodeRegistry(storage))
    preferences = NotificationPreferenceStore(storage)
    commands = BotCommands(coordinator, preferences, confirm_url="https://example.com/link")
    return commands, coordinator, preferences


def _linked() -> tuple[BotCommands, NotificationPreferenceStore]:
    commands, coordinator, preferences = _commands()
    begin = coordinator.begin_linking(42)
    coordinator.confirm_linking(begin.code, "u-7", "tok")
    return commands, preferences


def test_start_then_start_again_after_linking() -> None:
    commands, coordinator, _ = _commands()

    reply = commands.handle_start(42)
    code = reply.splitlines()[0].rsplit(" ", 1)[-1]
    assert coordinator.confirm_linking(code, "u-7", "tok").ok

    assert "already linked" in commands.handle_start(42)


def test_unlink_requires_a_link() -> None:
    commands, _ = _linked()

    assert "unlinked" in commands.handle_unlink(42)
    assert commands.handle_unlink(42) == NOT_LINKED_TEXT


def test_notify_requires_link() -> None:
    commands, _, _ = _commands()
    assert commands.handle_notify(42, []) == NOT_LINKED_TEXT


def test_notify_toggles_kind_and_sets_limit() -> None:
    commands, preferences = _linked()

    commands.handle_notify(42, ["off", "series_completed"])
    commands.handle_notify(42, ["limit", "4"])

    preference = preferences.get("u-7")
    assert preference.event_kinds_enabled == frozenset({EventKind.NEW_CHAPTER})
    assert preference.max_per_day == 4

    commands.handle_notify(42, ["on", "SERIES_COMPLETED"])
    assert EventKind.SERIES_COMPLETED in preferences.get("u-7").event_kinds_enabled


def test_notify_rejects_bad_arguments() -> None:
    commands, preferences = _linked()

    assert commands.handle_notify(42, ["off", "volumes"]) == NOTIFY_USAGE
    assert commands.handle_notify(42, ["limit", "many"]) == NOTIFY_USAGE
    assert "negative" in commands.handle_notify(42, ["limit", "-2"])
    assert preferences.get("u-7").max_per_day == 10


class FakeClient:
    def __init__(self) -> None:
        self.handlers: list = []

    def on(self, builder):
        def decorator(handler):
            self.handlers.append((builder, handler))
            return handler

        return decorator


class FakeEvent:
    def __init__(self, sender_id: int, raw_text: str) -> None:
        self.sender_id = sender_id
        self.raw_text = raw_text
        self.is_private = True
        self.replies: list[str] = []

    async def respond(self, text: str) -> None:
        self.replies.append(text)


class UnavailableStorage(MemoryStorage):
    def get(self, external_id: int):
        raise StoreUnavailable("database is gone")

    def delete(self, external_id: int) -> bool:
        raise StoreUnavailable("database is gone")


def _registered(commands: BotCommands) -> dict:
    client = FakeClient()
    commands.register(client)
    handlers = [handler for _, handler in client.handlers]
    return dict(zip(["start", "unlink", "notify"], handlers))


def test_command_pattern_accepts_bot_suffix_only() -> None:
    pattern = _command_pattern("start")

    assert re.match(pattern, "/start")
    assert re.match(pattern, "/start@MangaBot")
    assert re.match(pattern, "/start extra")
    assert not re.match(pattern, "/starting")


def test_register_attaches_three_handlers() -> None:
    commands, _, _ = _commands()
    client = FakeClient()

    commands.register(client)

    assert len(client.handlers) == 3


def test_registered_handlers_reply_to_sender() -> None:
    commands, coordinator, _ = _commands()
    handlers = _registered(commands)

    start = FakeEvent(42, "/start")
    asyncio.run(handlers["start"](start))
    code = start.replies[0].splitlines()[0].rsplit(" ", 1)[-1]
    assert coordinator.confirm_linking(code, "u-7", "tok").ok

    notify = FakeEvent(42, "/notify limit 2")
    asyncio.run(handlers["notify"](notify))
    assert notify.replies[0].endswith("daily limit: 2")

    unlink = FakeEvent(42, "/unlink")
    asyncio.run(handlers["unlink"](unlink))
    assert "unlinked" in unlink.replies[0]


def test_store_outage_replies_with_retry_text() -> None:
    commands, _, _ = _commands(UnavailableStorage())
    handlers = _registered(commands)

    for name in ("start", "unlink", "notify"):
        event = FakeEvent(42, f"/{name}")
        asyncio.run(handlers[name](event))
        assert event.replies == [UNAVAILABLE_TEXT]
