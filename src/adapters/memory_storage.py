"""In-process storage adapter.

Implements the same ports as SQLiteStorage with dictionaries. Useful for
ephemeral runs and tests. Atomic sections are guarded by one lock per key so
unrelated users never wait on each other.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from core.errors import DuplicateCode
from core.models import LinkingCode, NotificationPreference, SessionRecord


class _KeyedLocks:
    """Hands out one lock per key; the table itself has a short-lived guard."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}

    def __call__(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class MemoryStorage:
    """Dictionary-backed store satisfying every store port."""

    def __init__(self) -> None:
        self._sessions: Dict[int, SessionRecord] = {}
        self._codes: Dict[str, LinkingCode] = {}
        self._preferences: Dict[str, NotificationPreference] = {}
        self._quota: Dict[Tuple[str, date], int] = {}
        self._session_locks = _KeyedLocks()
        self._identity_locks = _KeyedLocks()
        self._code_locks = _KeyedLocks()
        self._quota_locks = _KeyedLocks()
        self._preference_locks = _KeyedLocks()

    def init_db(self) -> None:
        """Nothing to create; kept for parity with SQLiteStorage."""

    # sessions

    def get(self, external_id: int) -> Optional[SessionRecord]:
        return self._sessions.get(external_id)

    def put(self, record: SessionRecord) -> None:
        with self._session_locks(record.external_id):
            self._sessions[record.external_id] = record

    def delete(self, external_id: int) -> bool:
        with self._session_locks(external_id):
            return self._sessions.pop(external_id, None) is not None

    def list_by_account(self, account_id: str) -> List[SessionRecord]:
        records = [record for record in list(self._sessions.values()) if record.account_id == account_id]
        return sorted(records, key=lambda record: record.external_id)

    # linking codes

    def save_code(self, code: LinkingCode) -> None:
        # Lock order is always identity -> code, consume_code only takes the
        # code lock, so the two paths cannot deadlock. The token is claimed
        # (check and insert under one lock) before older codes are superseded.
        with self._identity_locks(code.external_id):
            with self._code_locks(code.code):
                if code.code in self._codes:
                    raise DuplicateCode(code.code)
                self._codes[code.code] = code
            older = [
                c.code
                for c in list(self._codes.values())
                if c.external_id == code.external_id and c.code != code.code
            ]
            for token in older:
                with self._code_locks(token):
                    current = self._codes.get(token)
                    if current and not current.consumed and not current.superseded:
                        self._codes[token] = replace(current, superseded=True)

    def get_code(self, code: str) -> Optional[LinkingCode]:
        return self._codes.get(code)

    def consume_code(self, code: str, now: datetime) -> bool:
        with self._code_locks(code):
            current = self._codes.get(code)
            if current is None or not current.is_live(now):
                return False
            self._codes[code] = replace(current, consumed=True)
            return True

    def purge_codes(self, now: datetime) -> int:
        removed = 0
        for token in list(self._codes):
            with self._code_locks(token):
                current = self._codes.get(token)
                if current is not None and not current.is_live(now):
                    del self._codes[token]
                    removed += 1
        return removed

    # preferences

    def get_preference(self, account_id: str) -> Optional[NotificationPreference]:
        return self._preferences.get(account_id)

    def modify_preference(
        self,
        account_id: str,
        change: Callable[[Optional[NotificationPreference]], NotificationPreference],
    ) -> NotificationPreference:
        with self._preference_locks(account_id):
            preference = change(self._preferences.get(account_id))
            self._preferences[account_id] = preference
            return preference

    # quota

    def try_consume(self, account_id: str, day: date, limit: int) -> bool:
        key = (account_id, day)
        with self._quota_locks(key):
            sent = self._quota.get(key, 0)
            if sent >= limit:
                return False
            self._quota[key] = sent + 1
            return True

    def sent_count(self, account_id: str, day: date) -> int:
        return self._quota.get((account_id, day), 0)

    def purge_quota_before(self, day: date) -> int:
        stale = [key for key in list(self._quota) if key[1] < day]
        for key in stale:
            with self._quota_locks(key):
                self._quota.pop(key, None)
        return len(stale)
