"""Push of local progress state to the remote profile row."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .identity import IdentityProvider, IdentityStoreError
from .profile_store import ProfileStoreError, ProfileTable
from .telemetry import emit_event
from .user_state import LocalUserState, profile_row

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Upserts the full local state after every confirmed mutation.

    Two gates apply: ``ready`` stays false until the first successful
    reconciliation so default state never overwrites a real row, and
    ``is_suppressed`` reports whether a password update is in flight.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        profiles: ProfileTable,
        *,
        is_suppressed: Callable[[], bool] = lambda: False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._identity = identity
        self._profiles = profiles
        self._is_suppressed = is_suppressed
        self._clock = clock
        self.ready = False

    async def push(self, state: LocalUserState) -> bool:
        if not self.ready:
            logger.debug("Skipping profile sync: initial load not finished")
            return False
        if self._is_suppressed():
            logger.debug("Skipping profile sync: password recovery in progress")
            return False

        try:
            session = await self._identity.get_session()
            if session is None:
                logger.debug("Skipping profile sync: no active session")
                return False
            await self._profiles.upsert(profile_row(session.user.id, state, now=self._clock()))
        except (ProfileStoreError, IdentityStoreError) as exc:
            logger.error("Profile sync failed: %s", exc)
            emit_event("profile_sync_failed", error=str(exc), code=getattr(exc, "code", None))
            return False

        logger.debug("Profile synced for user_id=%s", session.user.id)
        return True


__all__ = ["SyncScheduler"]
