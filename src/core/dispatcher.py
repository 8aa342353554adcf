"""Throttled notification dispatch.

This module is integration-agnostic. It only relies on ports for storage,
formatting, and transport, so delivery channels can change without touching
the quota and preference rules here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from core.clock import Clock, SystemClock, day_bucket
from core.config import DispatchConfig
from core.errors import ErrorKind, TransportFailure
from core.models import DispatchOutcome, DispatchStatus, UpstreamEvent
from core.ports import FormatterPort, QuotaStorePort, SessionStorePort, TransportPort
from core.preferences import NotificationPreferenceStore

LOGGER = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fans an upstream event out to every chat identity linked to the account."""

    def __init__(
        self,
        sessions: SessionStorePort,
        preferences: NotificationPreferenceStore,
        quota: QuotaStorePort,
        formatter: FormatterPort,
        transport: TransportPort,
        config: DispatchConfig,
        clock: Optional[Clock] = None,
    ) -> None:
        self._sessions = sessions
        self._preferences = preferences
        self._quota = quota
        self._formatter = formatter
        self._transport = transport
        self._config = config
        self._clock = clock or SystemClock()

    async def dispatch(self, event: UpstreamEvent) -> List[DispatchOutcome]:
        """Deliver one event; returns one outcome per linked recipient."""

        recipients = self._sessions.list_by_account(event.account_id)
        if not recipients:
            LOGGER.debug("No linked recipients for account %s", event.account_id)
            return []

        preference = self._preferences.get(event.account_id)
        outcomes: List[DispatchOutcome] = []
        for record in recipients:
            if event.kind not in preference.event_kinds_enabled:
                outcomes.append(
                    self._suppressed(record.external_id, event, ErrorKind.PREFERENCE_DISABLED)
                )
                continue

            # The budget is per account, so every linked device draws from it.
            # The day is recomputed per recipient so a batch spanning midnight
            # lands in the right bucket.
            day = day_bucket(self._clock.now())
            if not self._quota.try_consume(event.account_id, day, preference.max_per_day):
                outcomes.append(self._suppressed(record.external_id, event, ErrorKind.QUOTA_EXCEEDED))
                continue

            outcomes.append(await self._deliver(record.external_id, event))
        return outcomes

    async def dispatch_batch(self, events: Iterable[UpstreamEvent]) -> List[List[DispatchOutcome]]:
        """Dispatch several events concurrently, keeping input order."""

        return list(await asyncio.gather(*(self.dispatch(event) for event in events)))

    async def _deliver(self, external_id: int, event: UpstreamEvent) -> DispatchOutcome:
        # Quota is already spent at this point and is deliberately not refunded
        # on failure: the attempt itself is what the outbound rate limit counts.
        text = self._formatter.format_event(event)
        try:
            await asyncio.wait_for(
                self._transport.send(external_id, text),
                timeout=self._config.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Send to %s timed out (%s)", external_id, event.kind.value)
            return DispatchOutcome(external_id, DispatchStatus.FAILED, "timeout")
        except TransportFailure as exc:
            LOGGER.warning("Send to %s failed: %s", external_id, exc.reason)
            return DispatchOutcome(external_id, DispatchStatus.FAILED, exc.reason)

        LOGGER.info("Sent %s for %s to %s", event.kind.value, event.manga_ref, external_id)
        return DispatchOutcome(external_id, DispatchStatus.SENT)

    @staticmethod
    def _suppressed(external_id: int, event: UpstreamEvent, reason: ErrorKind) -> DispatchOutcome:
        LOGGER.info(
            "Suppressed %s for account %s to %s (%s)",
            event.kind.value,
            event.account_id,
            external_id,
            reason.value,
        )
        return DispatchOutcome(external_id, DispatchStatus.SUPPRESSED, reason.value)
