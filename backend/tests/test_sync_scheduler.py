from __future__ import annotations

import asyncio
from datetime import timedelta

from noxus.identity import IdentityStoreError
from noxus.levels import LevelKey
from noxus.profile_store import ProfileWriteError
from noxus.sync import SyncScheduler
from noxus.telemetry import capture_events
from noxus.user_state import LocalUserState

from conftest import NOW, USER_ID, FakeIdentityProvider, FakeProfileTable, make_session


def _state() -> LocalUserState:
    return LocalUserState(
        has_onboarded=True,
        streak_days=8,
        current_level=LevelKey.SILVER,
        start_date=NOW - timedelta(days=8),
    )


def _scheduler(identity: FakeIdentityProvider, profiles: FakeProfileTable, suppressed: bool = False) -> SyncScheduler:
    return SyncScheduler(identity, profiles, is_suppressed=lambda: suppressed, clock=lambda: NOW)


def test_push_skipped_until_ready(identity: FakeIdentityProvider, profiles: FakeProfileTable) -> None:
    identity.session = make_session()
    scheduler = _scheduler(identity, profiles)

    assert asyncio.run(scheduler.push(_state())) is False
    assert profiles.upserts == []


def test_push_skipped_while_suppressed(identity: FakeIdentityProvider, profiles: FakeProfileTable) -> None:
    identity.session = make_session()
    scheduler = _scheduler(identity, profiles, suppressed=True)
    scheduler.ready = True

    assert asyncio.run(scheduler.push(_state())) is False
    assert profiles.upserts == []


def test_push_skipped_without_session(identity: FakeIdentityProvider, profiles: FakeProfileTable) -> None:
    scheduler = _scheduler(identity, profiles)
    scheduler.ready = True

    assert asyncio.run(scheduler.push(_state())) is False
    assert profiles.upserts == []


def test_push_upserts_full_row(identity: FakeIdentityProvider, profiles: FakeProfileTable) -> None:
    identity.session = make_session()
    scheduler = _scheduler(identity, profiles)
    scheduler.ready = True

    assert asyncio.run(scheduler.push(_state())) is True

    assert profiles.upserts == [
        {
            "id": USER_ID,
            "streak_days": 8,
            "current_level": "SILVER",
            "start_date": (NOW - timedelta(days=8)).isoformat(),
            "has_onboarded": True,
            "avatar_url": None,
            "updated_at": NOW.isoformat(),
        }
    ]


def test_push_failure_is_reported_not_raised(identity: FakeIdentityProvider, profiles: FakeProfileTable) -> None:
    identity.session = make_session()
    profiles.write_error = ProfileWriteError("denied", code="42501")
    scheduler = _scheduler(identity, profiles)
    scheduler.ready = True

    with capture_events() as events:
        assert asyncio.run(scheduler.push(_state())) is False

    assert [event.name for event in events] == ["profile_sync_failed"]
    assert events[0].payload["code"] == "42501"


def test_session_lookup_failure_is_reported(profiles: FakeProfileTable) -> None:
    class _BrokenIdentity(FakeIdentityProvider):
        async def get_session(self):
            raise IdentityStoreError("offline")

    scheduler = _scheduler(_BrokenIdentity(), profiles)
    scheduler.ready = True

    assert asyncio.run(scheduler.push(_state())) is False
    assert profiles.upserts == []
