"""Fetch-or-create of the remote profile and conversion into local state."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Tuple

from .identity import Session
from .profile_store import ProfileTable, ProfileWriteError
from .telemetry import emit_event
from .user_state import LocalUserState, Profile, new_profile, state_from_profile

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileReconciler:
    def __init__(self, profiles: ProfileTable, *, clock: Clock = _utcnow) -> None:
        self._profiles = profiles
        self._clock = clock

    async def reconcile(self, session: Session) -> LocalUserState:
        """Return local state rebuilt from the session's profile row.

        A missing row is created with defaults. ``ProfileFetchError`` for any
        other read failure propagates to the caller.
        """
        _, state = await self.reconcile_profile(session)
        return state

    async def reconcile_profile(self, session: Session) -> Tuple[Profile, LocalUserState]:
        """Like ``reconcile`` but also returns the row as stored (or as created)."""
        user = session.user
        now = self._clock()
        profile = await self._profiles.fetch(user.id)

        if profile is None:
            profile = new_profile(user.id, email=user.email, now=now)
            try:
                await self._profiles.insert(profile)
            except ProfileWriteError as exc:
                # Local state still follows the defaults; the next sync retries the write.
                logger.error("Error creating profile for user_id=%s: %s", user.id, exc)
            else:
                emit_event("profile_created", user_id=user.id)

        return profile, state_from_profile(profile, email=user.email, now=now)


__all__ = ["ProfileReconciler"]
