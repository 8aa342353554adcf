"""Per-account notification preferences with defaults."""

from __future__ import annotations

import logging
from typing import Optional

from core.models import NotificationPreference, PreferencePatch
from core.ports import PreferenceStorePort

LOGGER = logging.getLogger(__name__)


def apply_patch(
    account_id: str,
    current: Optional[NotificationPreference],
    patch: PreferencePatch,
) -> NotificationPreference:
    """Return current (or the default) with the patch applied."""

    base = current or NotificationPreference.default(account_id)
    kinds = (
        frozenset(patch.event_kinds_enabled)
        if patch.event_kinds_enabled is not None
        else base.event_kinds_enabled
    )
    kinds = (kinds | patch.enable_kinds) - patch.disable_kinds
    return NotificationPreference(
        account_id=account_id,
        event_kinds_enabled=kinds,
        max_per_day=patch.max_per_day if patch.max_per_day is not None else base.max_per_day,
    )


class NotificationPreferenceStore:
    """Reads never fail on missing data; updates touch only the given fields."""

    def __init__(self, store: PreferenceStorePort) -> None:
        self._store = store

    def get(self, account_id: str) -> NotificationPreference:
        stored = self._store.get_preference(account_id)
        if stored is None:
            return NotificationPreference.default(account_id)
        return stored

    def update(self, account_id: str, patch: PreferencePatch) -> NotificationPreference:
        if patch.max_per_day is not None and patch.max_per_day < 0:
            raise ValueError(f"max_per_day must be >= 0, got {patch.max_per_day}")

        # The merge runs inside the store's per-account atomic section so two
        # concurrent toggles of different kinds both survive.
        updated = self._store.modify_preference(
            account_id, lambda current: apply_patch(account_id, current, patch)
        )
        LOGGER.info(
            "Preferences updated for %s: kinds=%s max_per_day=%s",
            account_id,
            sorted(kind.value for kind in updated.event_kinds_enabled),
            updated.max_per_day,
        )
        return updated
