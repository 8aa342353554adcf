"""Linking-code generation, validation, and invalidation (core domain)."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from core.clock import Clock, SystemClock
from core.errors import (
    CodeAlreadyConsumed,
    CodeExpired,
    CodeNotFound,
    CodeSuperseded,
    DuplicateCode,
    StoreUnavailable,
)
from core.models import LinkingCode
from core.ports import LinkingCodeStorePort

LOGGER = logging.getLogger(__name__)

# 32 symbols without 0/O/1/I so codes survive being read aloud or retyped.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
CODE_TTL = timedelta(minutes=10)
MAX_ISSUE_ATTEMPTS = 5


def generate_code(length: int = CODE_LENGTH) -> str:
    """Return a random token; 8 symbols of a 32-symbol alphabet is 40 bits."""

    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: str) -> str:
    return raw.strip().upper()


def mask_code(code: str) -> str:
    """Keep enough of a code to correlate log lines without leaking it."""

    return f"{code[:2]}******" if code else ""


class LinkingCodeRegistry:
    """Issues and validates one-time linking codes."""

    def __init__(
        self,
        store: LinkingCodeStorePort,
        clock: Optional[Clock] = None,
        ttl: timedelta = CODE_TTL,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, external_id: int) -> LinkingCode:
        """Create a fresh code, superseding any live code for the identity."""

        for _ in range(MAX_ISSUE_ATTEMPTS):
            now = self._clock.now()
            code = LinkingCode(
                code=generate_code(),
                external_id=external_id,
                issued_at=now,
                expires_at=now + self._ttl,
            )
            try:
                self._store.save_code(code)
            except DuplicateCode:
                LOGGER.warning("Linking code collision for %s, regenerating", external_id)
                continue
            LOGGER.info("Issued linking code %s for %s", mask_code(code.code), external_id)
            return code
        raise StoreUnavailable(f"Could not allocate a unique linking code for {external_id}")

    def validate(self, code: str, account_id: str) -> int:
        """Consume a live code and return the chat identity it was issued to.

        Raises CodeNotFound, CodeSuperseded, CodeExpired or CodeAlreadyConsumed.
        The final consume is a conditional write in the store, so concurrent
        validations of one code produce a single winner.
        """

        token = normalize_code(code)
        now = self._clock.now()
        record = self._store.get_code(token)
        self._check(token, record, now)

        if not self._store.consume_code(token, now):
            # Lost a race: re-read to report what happened in between.
            self._check(token, self._store.get_code(token), now)
            raise CodeAlreadyConsumed(token)

        LOGGER.info(
            "Linking code %s consumed by account %s for %s",
            mask_code(token),
            account_id,
            record.external_id,
        )
        return record.external_id

    def purge(self) -> int:
        """Drop codes that can never validate again; optional housekeeping."""

        removed = self._store.purge_codes(self._clock.now())
        LOGGER.info("Purged %s dead linking codes", removed)
        return removed

    @staticmethod
    def _check(token: str, record: Optional[LinkingCode], now: datetime) -> None:
        if record is None:
            raise CodeNotFound(token)
        if record.superseded:
            raise CodeSuperseded(token)
        if now > record.expires_at:
            raise CodeExpired(token)
        if record.consumed:
            raise CodeAlreadyConsumed(token)
