"""Shared message formatting helpers.

Keeping formatting here prevents drift between the bot replies and the
notification bodies. Everything is plain text; the transport sends it without
a parse mode.
"""

from __future__ import annotations

from typing import Optional

from core.errors import ErrorKind
from core.models import (
    BeginLinkingResult,
    ConfirmLinkingResult,
    EventKind,
    NotificationPreference,
    UpstreamEvent,
)

KIND_LABELS = {
    EventKind.NEW_CHAPTER: "new chapters",
    EventKind.SERIES_COMPLETED: "completed series",
}

CONFIRM_ERROR_TEXT = {
    ErrorKind.NOT_FOUND: "This code does not exist. Check for typos or request a new one with /start.",
    ErrorKind.EXPIRED: "This code has expired. Send /start to the bot for a new one.",
    ErrorKind.SUPERSEDED: "A newer code was requested. Use the most recent code from the bot.",
    ErrorKind.ALREADY_CONSUMED: "This code was already used.",
}


def format_series_label(event: UpstreamEvent) -> str:
    """Prefer the human title, falling back to the upstream reference."""

    if event.title:
        return f"{event.title} ({event.manga_ref})"
    return event.manga_ref


def format_event(event: UpstreamEvent) -> str:
    """Return the notification body for an upstream event."""

    series = format_series_label(event)
    if event.kind is EventKind.NEW_CHAPTER:
        if event.chapter_ref:
            return f"New chapter of {series}: {event.chapter_ref}"
        return f"New chapter of {series} is out."
    if event.kind is EventKind.SERIES_COMPLETED:
        return f"{series} is completed."
    raise ValueError(f"Unsupported event kind: {event.kind}")


class PlainTextFormatter:
    """FormatterPort implementation used by the dispatcher."""

    def format_event(self, event: UpstreamEvent) -> str:
        return format_event(event)


def format_begin_linking(result: BeginLinkingResult, confirm_url: Optional[str] = None) -> str:
    """Reply text for /start."""

    if result.already_linked:
        return "Your account is already linked. Send /unlink first to link another account."

    minutes = max(1, result.expires_in_seconds // 60)
    lines = [
        f"Your linking code: {result.code}",
        f"It expires in {minutes} minutes.",
    ]
    if confirm_url:
        lines.append(f"Enter it at {confirm_url}")
    return "\n".join(lines)


def format_confirm_result(result: ConfirmLinkingResult) -> str:
    """Text for the confirming side (website or operator CLI)."""

    if result.error is None:
        return f"Linked chat {result.external_id}."
    return CONFIRM_ERROR_TEXT.get(result.error, f"Linking failed: {result.error.value}")


def format_preferences(preference: NotificationPreference) -> str:
    """Summary shown by /notify."""

    lines = ["Notification settings:"]
    for kind in EventKind:
        state = "on" if kind in preference.event_kinds_enabled else "off"
        lines.append(f"- {KIND_LABELS[kind]} ({kind.value}): {state}")
    lines.append(f"- daily limit: {preference.max_per_day}")
    return "\n".join(lines)
