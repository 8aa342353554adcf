"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional

from core.errors import ErrorKind

DEFAULT_MAX_PER_DAY = 10


class EventKind(str, Enum):
    """Upstream content events a user can subscribe to."""

    NEW_CHAPTER = "new_chapter"
    SERIES_COMPLETED = "series_completed"


ALL_EVENT_KINDS: FrozenSet[EventKind] = frozenset(EventKind)


@dataclass(frozen=True)
class SessionRecord:
    """Binding of one chat identity to one content-service account."""

    external_id: int
    account_id: str
    credential: str
    linked_at: datetime


@dataclass(frozen=True)
class LinkingCode:
    """Short-lived token waiting for confirmation from the website."""

    code: str
    external_id: int
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    superseded: bool = False

    def is_live(self, now: datetime) -> bool:
        return not self.consumed and not self.superseded and now <= self.expires_at


@dataclass(frozen=True)
class NotificationPreference:
    """Per-account notification settings."""

    account_id: str
    event_kinds_enabled: FrozenSet[EventKind]
    max_per_day: int

    @classmethod
    def default(cls, account_id: str) -> "NotificationPreference":
        return cls(
            account_id=account_id,
            event_kinds_enabled=ALL_EVENT_KINDS,
            max_per_day=DEFAULT_MAX_PER_DAY,
        )


@dataclass(frozen=True)
class PreferencePatch:
    """Partial preference update; None fields are left untouched.

    event_kinds_enabled replaces the whole set, while enable_kinds and
    disable_kinds are applied on top of whatever is stored at write time.
    """

    event_kinds_enabled: Optional[FrozenSet[EventKind]] = None
    enable_kinds: FrozenSet[EventKind] = frozenset()
    disable_kinds: FrozenSet[EventKind] = frozenset()
    max_per_day: Optional[int] = None


@dataclass(frozen=True)
class UpstreamEvent:
    """Content update reported by the upstream library service."""

    kind: EventKind
    account_id: str
    manga_ref: str
    chapter_ref: Optional[str] = None
    title: Optional[str] = None


class DispatchStatus(str, Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of delivering one event to one recipient."""

    external_id: int
    status: DispatchStatus
    reason: Optional[str] = None


@dataclass(frozen=True)
class BeginLinkingResult:
    """Reply for an inbound /start trigger."""

    code: Optional[str]
    expires_in_seconds: int
    already_linked: bool = False


@dataclass(frozen=True)
class ConfirmLinkingResult:
    """Reply for the external confirmation call."""

    external_id: Optional[int]
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None
