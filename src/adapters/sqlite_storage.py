"""SQLite storage adapter.

Implements the core session, linking-code, preference, and quota ports using
a single SQLite database. Every call opens its own connection, so the adapter
is safe to share between threads. Per-key atomicity comes from single-statement
conditional writes under SQLite's write lock, and preference merges run in a
BEGIN IMMEDIATE transaction.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Iterator, List, Optional

from core.errors import DuplicateCode, StoreTimeout, StoreUnavailable
from core.models import EventKind, LinkingCode, NotificationPreference, SessionRecord


def _encode_kinds(kinds: frozenset) -> str:
    return ",".join(sorted(kind.value for kind in kinds))


def _decode_kinds(raw: str) -> frozenset:
    return frozenset(EventKind(value) for value in raw.split(",") if value)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the store ports."""

    def __init__(self, db_path: str, timeout_seconds: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout_seconds

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, mapping lock waits to StoreTimeout."""

        try:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            # Constraint violations are caller-level signals (see save_code).
            raise
        except sqlite3.OperationalError as exc:
            message = str(exc).lower()
            if "locked" in message or "busy" in message:
                raise StoreTimeout(f"SQLite busy after {self._timeout}s: {exc}") from exc
            raise StoreUnavailable(f"SQLite error: {exc}") from exc
        except sqlite3.DatabaseError as exc:
            # Corrupt or non-SQLite files.
            raise StoreUnavailable(f"SQLite database error: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - sessions: one row per linked chat identity
        - linking_codes: issued codes with their lifecycle flags
        - preferences: per-account notification settings
        - daily_quota: per-account sent counters bucketed by UTC day
        """

        with self._connect() as conn:
            # sessions holds the identity pair plus credential material.
            # Re-linking replaces the row; account_id is indexed for fan-out.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    external_id INTEGER PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    credential TEXT NOT NULL,
                    linked_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_account ON sessions (account_id)"
            )
            # linking_codes keeps consumed/superseded rows until purge so that
            # a stale code reports why it failed instead of "not found".
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS linking_codes (
                    code TEXT PRIMARY KEY,
                    external_id INTEGER NOT NULL,
                    issued_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL,
                    consumed INTEGER NOT NULL DEFAULT 0,
                    superseded INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_codes_external ON linking_codes (external_id)"
            )
            # event_kinds is a comma-separated list of EventKind values.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    account_id TEXT PRIMARY KEY,
                    event_kinds TEXT NOT NULL,
                    max_per_day INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_quota (
                    account_id TEXT NOT NULL,
                    day_bucket TEXT NOT NULL,
                    sent_count INTEGER NOT NULL,
                    PRIMARY KEY (account_id, day_bucket)
                )
                """
            )

    # sessions

    def get(self, external_id: int) -> Optional[SessionRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE external_id = ?",
                (external_id,),
            ).fetchone()
        return self._session_from_row(row) if row else None

    def put(self, record: SessionRecord) -> None:
        """Upsert a session; the last writer wins."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions (external_id, account_id, credential, linked_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(external_id) DO UPDATE SET
                    account_id = excluded.account_id,
                    credential = excluded.credential,
                    linked_at = excluded.linked_at
                """,
                (
                    record.external_id,
                    record.account_id,
                    record.credential,
                    record.linked_at.isoformat(),
                ),
            )

    def delete(self, external_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE external_id = ?", (external_id,))
            return cur.rowcount > 0

    def list_by_account(self, account_id: str) -> List[SessionRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE account_id = ? ORDER BY external_id",
                (account_id,),
            ).fetchall()
        return [self._session_from_row(row) for row in rows]

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            external_id=int(row["external_id"]),
            account_id=row["account_id"],
            credential=row["credential"],
            linked_at=datetime.fromisoformat(row["linked_at"]),
        )

    # linking codes

    def save_code(self, code: LinkingCode) -> None:
        """Supersede live codes for the identity and insert the new one atomically."""

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE linking_codes SET superseded = 1
                    WHERE external_id = ? AND consumed = 0 AND superseded = 0
                    """,
                    (code.external_id,),
                )
                conn.execute(
                    """
                    INSERT INTO linking_codes (
                        code, external_id, issued_at, expires_at, consumed, superseded
                    ) VALUES (?, ?, ?, ?, 0, 0)
                    """,
                    (
                        code.code,
                        code.external_id,
                        code.issued_at.isoformat(),
                        code.expires_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateCode(code.code) from exc

    def get_code(self, code: str) -> Optional[LinkingCode]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM linking_codes WHERE code = ?", (code,)).fetchone()
        if not row:
            return None
        return LinkingCode(
            code=row["code"],
            external_id=int(row["external_id"]),
            issued_at=datetime.fromisoformat(row["issued_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            consumed=bool(row["consumed"]),
            superseded=bool(row["superseded"]),
        )

    def consume_code(self, code: str, now: datetime) -> bool:
        # ISO-8601 UTC strings compare chronologically, so expiry is checked
        # in the same statement that flips the flag.
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE linking_codes SET consumed = 1
                WHERE code = ? AND consumed = 0 AND superseded = 0 AND expires_at >= ?
                """,
                (code, now.isoformat()),
            )
            return cur.rowcount == 1

    def purge_codes(self, now: datetime) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                DELETE FROM linking_codes
                WHERE consumed = 1 OR superseded = 1 OR expires_at < ?
                """,
                (now.isoformat(),),
            )
            return cur.rowcount

    # preferences

    def get_preference(self, account_id: str) -> Optional[NotificationPreference]:
        with self._connect() as conn:
            return self._read_preference(conn, account_id)

    def modify_preference(
        self,
        account_id: str,
        change: Callable[[Optional[NotificationPreference]], NotificationPreference],
    ) -> NotificationPreference:
        """Read-modify-write under a reserved lock so concurrent updates serialize."""

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            preference = change(self._read_preference(conn, account_id))
            conn.execute(
                """
                INSERT INTO preferences (account_id, event_kinds, max_per_day)
                VALUES (?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    event_kinds = excluded.event_kinds,
                    max_per_day = excluded.max_per_day
                """,
                (
                    preference.account_id,
                    _encode_kinds(preference.event_kinds_enabled),
                    preference.max_per_day,
                ),
            )
        return preference

    @staticmethod
    def _read_preference(
        conn: sqlite3.Connection, account_id: str
    ) -> Optional[NotificationPreference]:
        row = conn.execute(
            "SELECT * FROM preferences WHERE account_id = ?",
            (account_id,),
        ).fetchone()
        if not row:
            return None
        return NotificationPreference(
            account_id=row["account_id"],
            event_kinds_enabled=_decode_kinds(row["event_kinds"]),
            max_per_day=int(row["max_per_day"]),
        )

    # quota

    def try_consume(self, account_id: str, day: date, limit: int) -> bool:
        """Increment the day counter only while it is below limit."""

        if limit <= 0:
            return False
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO daily_quota (account_id, day_bucket, sent_count)
                VALUES (?, ?, 1)
                ON CONFLICT(account_id, day_bucket) DO UPDATE SET
                    sent_count = daily_quota.sent_count + 1
                WHERE daily_quota.sent_count < ?
                """,
                (account_id, day.isoformat(), limit),
            )
            return cur.rowcount == 1

    def sent_count(self, account_id: str, day: date) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT sent_count FROM daily_quota WHERE account_id = ? AND day_bucket = ?",
                (account_id, day.isoformat()),
            ).fetchone()
        return int(row["sent_count"]) if row else 0

    def purge_quota_before(self, day: date) -> int:
        """Delete superseded day buckets and return the number removed."""

        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM daily_quota WHERE day_bucket < ?",
                (day.isoformat(),),
            )
            return cur.rowcount
