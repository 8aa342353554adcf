"""Account linking protocol.

Per chat identity the flow is Unlinked -> CodeIssued -> Linked. Re-issuing a
code restarts CodeIssued, and an unconfirmed code simply expires back to
Unlinked; nothing is stored for that transition.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.clock import Clock, SystemClock
from core.errors import LinkingError
from core.linking_codes import LinkingCodeRegistry
from core.models import BeginLinkingResult, ConfirmLinkingResult, SessionRecord
from core.ports import SessionStorePort

LOGGER = logging.getLogger(__name__)


class LinkingCoordinator:
    """Orchestrates code issuing and confirmation against the session store."""

    def __init__(
        self,
        sessions: SessionStorePort,
        registry: LinkingCodeRegistry,
        clock: Optional[Clock] = None,
    ) -> None:
        self._sessions = sessions
        self._registry = registry
        self._clock = clock or SystemClock()

    def begin_linking(self, external_id: int) -> BeginLinkingResult:
        """Issue a code unless the identity is already linked."""

        if self._sessions.get(external_id) is not None:
            LOGGER.info("Begin linking skipped for %s (already linked)", external_id)
            return BeginLinkingResult(code=None, expires_in_seconds=0, already_linked=True)

        code = self._registry.issue(external_id)
        return BeginLinkingResult(
            code=code.code,
            expires_in_seconds=int(self._registry.ttl.total_seconds()),
        )

    def confirm_linking(self, code: str, account_id: str, credential: str) -> ConfirmLinkingResult:
        """Validate a code and bind its identity to the account.

        This is the only path that creates a SessionRecord. Validation errors
        are returned as-is and leave the session store untouched.
        """

        try:
            external_id = self._registry.validate(code, account_id)
        except LinkingError as exc:
            LOGGER.info("Linking confirmation rejected (%s)", exc.kind.value)
            return ConfirmLinkingResult(external_id=None, error=exc.kind)

        self._sessions.put(
            SessionRecord(
                external_id=external_id,
                account_id=account_id,
                credential=credential,
                linked_at=self._clock.now(),
            )
        )
        LOGGER.info("Linked %s to account %s", external_id, account_id)
        return ConfirmLinkingResult(external_id=external_id)

    def unlink(self, external_id: int) -> bool:
        removed = self._sessions.delete(external_id)
        if removed:
            LOGGER.info("Unlinked %s", external_id)
        return removed

    def session_for(self, external_id: int) -> Optional[SessionRecord]:
        return self._sessions.get(external_id)
