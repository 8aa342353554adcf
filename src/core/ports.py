"""Ports (interfaces) used by the core.

Ports define the minimal contracts for storage, formatting, and transport
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, List, Optional, Protocol

from core.models import LinkingCode, NotificationPreference, SessionRecord, UpstreamEvent


class SessionStorePort(Protocol):
    """Durable mapping from chat identity to linked account."""

    def get(self, external_id: int) -> Optional[SessionRecord]:
        ...

    def put(self, record: SessionRecord) -> None:
        ...

    def delete(self, external_id: int) -> bool:
        ...

    def list_by_account(self, account_id: str) -> List[SessionRecord]:
        ...


class LinkingCodeStorePort(Protocol):
    """Persistence for linking codes; conditional writes must be atomic."""

    def save_code(self, code: LinkingCode) -> None:
        """Insert a code and supersede every other live code for its identity.

        Raises DuplicateCode if the token is already stored.
        """

    def get_code(self, code: str) -> Optional[LinkingCode]:
        ...

    def consume_code(self, code: str, now: datetime) -> bool:
        """Mark a live code consumed; return False if it was not live."""

    def purge_codes(self, now: datetime) -> int:
        ...


class PreferenceStorePort(Protocol):
    def get_preference(self, account_id: str) -> Optional[NotificationPreference]:
        ...

    def modify_preference(
        self,
        account_id: str,
        change: Callable[[Optional[NotificationPreference]], NotificationPreference],
    ) -> NotificationPreference:
        """Read, change and write one account's preference atomically."""


class QuotaStorePort(Protocol):
    def try_consume(self, account_id: str, day: date, limit: int) -> bool:
        """Atomically increment the day counter if it is below limit."""

    def sent_count(self, account_id: str, day: date) -> int:
        ...

    def purge_quota_before(self, day: date) -> int:
        ...


class FormatterPort(Protocol):
    def format_event(self, event: UpstreamEvent) -> str:
        ...


class TransportPort(Protocol):
    """Chat-send interface; raises TransportFailure on delivery errors."""

    async def send(self, external_id: int, text: str) -> None:
        ...
