"""Time source used for code expiry and quota day buckets."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC; all stored timestamps are timezone-aware."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def day_bucket(moment: datetime) -> date:
    """Return the UTC calendar day a timestamp falls into.

    Quotas reset on fixed UTC day boundaries rather than a rolling 24h window.
    """

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()
