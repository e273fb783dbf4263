from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from noxus.levels import LevelKey
from noxus.user_state import (
    LocalUserState,
    Profile,
    complete_onboarding,
    elapsed_days,
    new_profile,
    profile_row,
    reset_streak,
    resolve_timezone,
    state_from_profile,
    with_start_date,
    with_streak_days,
)

from conftest import NOW


def test_elapsed_days_floors_whole_days() -> None:
    assert elapsed_days(NOW - timedelta(days=3, hours=23), NOW) == 3
    assert elapsed_days(NOW, NOW) == 0


def test_elapsed_days_absorbs_future_start() -> None:
    assert elapsed_days(NOW + timedelta(days=2, hours=1), NOW) == 2


def test_state_from_profile_recomputes_streak_from_start_date() -> None:
    profile = Profile(
        id="u",
        start_date=NOW - timedelta(days=45),
        current_level=LevelKey.SILVER,
        has_onboarded=True,
        streak_days=3,
        avatar_url="https://cdn.example/a.png",
    )

    state = state_from_profile(profile, email="a@example.com", now=NOW)

    assert state.streak_days == 45
    assert state.current_level is LevelKey.SILVER
    assert state.email == "a@example.com"
    assert state.avatar_url == "https://cdn.example/a.png"


def test_state_from_profile_without_start_date_starts_today() -> None:
    state = state_from_profile(Profile(id="u"), email=None, now=NOW)
    assert state.streak_days == 0
    assert state.start_date == NOW
    assert state.has_onboarded is False


def test_profile_accepts_naive_timestamps_as_utc() -> None:
    profile = Profile.model_validate({"id": "u", "start_date": "2026-01-01T00:00:00"})
    assert profile.start_date == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_new_profile_defaults() -> None:
    profile = new_profile("u", email="a@example.com", now=NOW)
    assert profile.has_onboarded is True
    assert profile.current_level is LevelKey.BRONZE
    assert profile.streak_days == 0
    assert profile.start_date == NOW


def test_with_streak_days_moves_start_back() -> None:
    updated = with_streak_days(LocalUserState(start_date=NOW), 10, now=NOW)
    assert updated.streak_days == 10
    assert updated.start_date == NOW - timedelta(days=10)


def test_with_streak_days_rejects_negative() -> None:
    with pytest.raises(ValueError):
        with_streak_days(LocalUserState(start_date=NOW), -1, now=NOW)


def test_with_start_date_uses_local_midnight_and_ignores_future() -> None:
    tz = timezone(timedelta(hours=-3))
    state = LocalUserState(start_date=NOW)

    updated = with_start_date(state, date(2026, 2, 20), today=date(2026, 3, 1), tz=tz)
    assert updated.streak_days == 9
    assert updated.start_date == datetime(2026, 2, 20, tzinfo=tz)

    assert with_start_date(state, date(2026, 3, 5), today=date(2026, 3, 1), tz=tz) is state
    assert with_start_date(state, date(2026, 3, 1), today=date(2026, 3, 1), tz=tz).streak_days == 0


def test_reset_and_onboarding_helpers() -> None:
    state = LocalUserState(streak_days=12, start_date=NOW - timedelta(days=12))

    assert reset_streak(state, now=NOW).streak_days == 0
    assert reset_streak(state, now=NOW).start_date == NOW

    onboarded = complete_onboarding(state)
    assert onboarded.has_onboarded is True
    assert complete_onboarding(onboarded) is onboarded


def test_profile_row_carries_persisted_fields() -> None:
    state = LocalUserState(
        has_onboarded=True,
        streak_days=31,
        current_level=LevelKey.GOLD,
        start_date=NOW - timedelta(days=31),
        avatar_url="https://cdn.example/a.png",
    )

    row = profile_row("u", state, now=NOW)

    assert row == {
        "id": "u",
        "streak_days": 31,
        "current_level": "GOLD",
        "start_date": (NOW - timedelta(days=31)).isoformat(),
        "has_onboarded": True,
        "avatar_url": "https://cdn.example/a.png",
        "updated_at": NOW.isoformat(),
    }


def test_resolve_timezone_falls_back_to_utc() -> None:
    assert resolve_timezone(None) is timezone.utc
    assert resolve_timezone("Not/AZone") is timezone.utc
    assert resolve_timezone("   ") is timezone.utc
