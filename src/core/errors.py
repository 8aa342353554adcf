"""Error taxonomy shared by the core and adapters."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable identifiers surfaced to callers and written to logs."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"
    SUPERSEDED = "superseded"
    ALREADY_LINKED = "already_linked"
    QUOTA_EXCEEDED = "quota_exceeded"
    PREFERENCE_DISABLED = "preference_disabled"
    TRANSPORT_FAILURE = "transport_failure"
    STORE_UNAVAILABLE = "store_unavailable"
    STORE_TIMEOUT = "store_timeout"


class LinkingError(Exception):
    """Base class for linking-code lifecycle violations."""

    kind: ErrorKind = ErrorKind.NOT_FOUND

    def __init__(self, code: str) -> None:
        super().__init__(f"{self.kind.value}: {code}")
        self.code = code


class CodeNotFound(LinkingError):
    kind = ErrorKind.NOT_FOUND


class CodeExpired(LinkingError):
    kind = ErrorKind.EXPIRED


class CodeAlreadyConsumed(LinkingError):
    kind = ErrorKind.ALREADY_CONSUMED


class CodeSuperseded(LinkingError):
    kind = ErrorKind.SUPERSEDED


class DuplicateCode(Exception):
    """Raised by code stores when a freshly generated token already exists."""


class TransportFailure(Exception):
    """Delivery attempt failed (blocked bot, unknown chat, API error, timeout)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StoreUnavailable(Exception):
    """Underlying persistence is unreachable; fatal for the current request."""

    kind = ErrorKind.STORE_UNAVAILABLE


class StoreTimeout(StoreUnavailable):
    """A store call did not complete within its bounded timeout."""

    kind = ErrorKind.STORE_TIMEOUT
