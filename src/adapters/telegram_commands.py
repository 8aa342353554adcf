"""Telegram bot command adapter.

Maps /start, /unlink and /notify to the core coordinator and preference store.
Command parsing is kept in plain methods so it can be tested without Telethon.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from telethon import events

from adapters.notification_formatting import format_begin_linking, format_preferences
from core.coordinator import LinkingCoordinator
from core.errors import StoreUnavailable
from core.models import EventKind, PreferencePatch
from core.preferences import NotificationPreferenceStore

LOGGER = logging.getLogger(__name__)

UNAVAILABLE_TEXT = "The service is temporarily unavailable. Please try again in a minute."
NOT_LINKED_TEXT = "Your account is not linked yet. Send /start to get a linking code."
NOTIFY_USAGE = (
    "Usage:\n"
    "/notify - show settings\n"
    "/notify on|off new_chapter|series_completed\n"
    "/notify limit <number>"
)


def _command_pattern(name: str) -> str:
    # Accept the /cmd@botname form used in group chats.
    return rf"^/{name}(?:@\w+)?(?:\s|$)"


class BotCommands:
    """Inbound trigger source: turns chat commands into core calls."""

    def __init__(
        self,
        coordinator: LinkingCoordinator,
        preferences: NotificationPreferenceStore,
        confirm_url: Optional[str] = None,
    ) -> None:
        self._coordinator = coordinator
        self._preferences = preferences
        self._confirm_url = confirm_url

    def handle_start(self, external_id: int) -> str:
        result = self._coordinator.begin_linking(external_id)
        return format_begin_linking(result, self._confirm_url)

    def handle_unlink(self, external_id: int) -> str:
        if self._coordinator.unlink(external_id):
            return "Your account was unlinked. You will no longer receive notifications."
        return NOT_LINKED_TEXT

    def handle_notify(self, external_id: int, args: List[str]) -> str:
        session = self._coordinator.session_for(external_id)
        if session is None:
            return NOT_LINKED_TEXT
        account_id = session.account_id

        if not args:
            return format_preferences(self._preferences.get(account_id))

        action = args[0].lower()
        if action in {"on", "off"} and len(args) == 2:
            try:
                kind = EventKind(args[1].lower())
            except ValueError:
                return NOTIFY_USAGE
            if action == "on":
                patch = PreferencePatch(enable_kinds=frozenset({kind}))
            else:
                patch = PreferencePatch(disable_kinds=frozenset({kind}))
            updated = self._preferences.update(account_id, patch)
            return format_preferences(updated)

        if action == "limit" and len(args) == 2:
            try:
                limit = int(args[1])
            except ValueError:
                return NOTIFY_USAGE
            if limit < 0:
                return "The daily limit cannot be negative."
            updated = self._preferences.update(account_id, PreferencePatch(max_per_day=limit))
            return format_preferences(updated)

        return NOTIFY_USAGE

    def register(self, client) -> None:
        """Attach Telethon handlers for private chats."""

        async def _reply(event, build) -> None:
            try:
                text = build()
            except StoreUnavailable:
                LOGGER.exception("Store unavailable while handling %s", event.raw_text)
                text = UNAVAILABLE_TEXT
            await event.respond(text)

        private = {"incoming": True, "func": lambda e: e.is_private}

        @client.on(events.NewMessage(pattern=_command_pattern("start"), **private))
        async def on_start(event) -> None:
            await _reply(event, lambda: self.handle_start(event.sender_id))

        @client.on(events.NewMessage(pattern=_command_pattern("unlink"), **private))
        async def on_unlink(event) -> None:
            await _reply(event, lambda: self.handle_unlink(event.sender_id))

        @client.on(events.NewMessage(pattern=_command_pattern("notify"), **private))
        async def on_notify(event) -> None:
            args = event.raw_text.split()[1:]
            await _reply(event, lambda: self.handle_notify(event.sender_id, args))
