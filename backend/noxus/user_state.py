"""Profile rows, local progress state and the streak mutation helpers."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .levels import LOWEST_LEVEL, LevelKey

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_timezone(raw: Optional[str]) -> tzinfo:
    if not raw or not raw.strip():
        return timezone.utc
    try:
        return ZoneInfo(raw.strip())
    except ZoneInfoNotFoundError:
        logger.warning("Ignoring unsupported timezone value: %s", raw)
        return timezone.utc


class AppView(str, Enum):
    AUTH = "AUTH"
    ONBOARDING = "ONBOARDING"
    DASHBOARD = "DASHBOARD"
    FOCUS = "FOCUS"
    MENTOR = "MENTOR"
    PROGRESSION = "PROGRESSION"
    PROFILE = "PROFILE"
    UPDATE_PASSWORD = "UPDATE_PASSWORD"


class Profile(BaseModel):
    """Remote profile row, one per identity user id."""

    id: str
    start_date: Optional[datetime] = None
    current_level: LevelKey = LOWEST_LEVEL
    has_onboarded: bool = False
    streak_days: Optional[int] = None
    avatar_url: Optional[str] = None
    email: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_date", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value) if value is not None else None


class LocalUserState(BaseModel):
    has_onboarded: bool = False
    streak_days: int = Field(default=0, ge=0)
    current_level: LevelKey = LOWEST_LEVEL
    start_date: datetime = Field(default_factory=_now)
    email: Optional[str] = None
    avatar_url: Optional[str] = None


def initial_state(now: Optional[datetime] = None) -> LocalUserState:
    return LocalUserState(start_date=now or _now())


def elapsed_days(start: datetime, now: datetime) -> int:
    """Whole days between two instants; absolute to absorb clock skew."""
    span = abs((_as_utc(now) - _as_utc(start)).total_seconds())
    return int(span // SECONDS_PER_DAY)


def new_profile(user_id: str, *, email: Optional[str] = None, now: Optional[datetime] = None) -> Profile:
    """Default row for an identity that has no profile yet."""
    return Profile(
        id=user_id,
        start_date=now or _now(),
        current_level=LOWEST_LEVEL,
        has_onboarded=True,
        streak_days=0,
        email=email,
    )


def state_from_profile(profile: Profile, *, email: Optional[str], now: datetime) -> LocalUserState:
    start = profile.start_date or now
    return LocalUserState(
        has_onboarded=profile.has_onboarded,
        streak_days=elapsed_days(start, now),
        current_level=profile.current_level,
        start_date=start,
        email=email if email is not None else profile.email,
        avatar_url=profile.avatar_url,
    )


def with_streak_days(state: LocalUserState, days: int, *, now: Optional[datetime] = None) -> LocalUserState:
    """Manual edit where the day count is authoritative."""
    if days < 0:
        raise ValueError("Streak days cannot be negative.")
    moment = now or _now()
    return state.model_copy(update={"streak_days": days, "start_date": moment - timedelta(days=days)})


def with_start_date(
    state: LocalUserState,
    start: date,
    *,
    today: Optional[date] = None,
    tz: tzinfo = timezone.utc,
) -> LocalUserState:
    """Manual edit where the calendar date is authoritative.

    A date after ``today`` is ignored and ``state`` is returned as is; a
    future start would later read back as a positive day count.
    """
    current_day = today or datetime.now(tz).date()
    days = (current_day - start).days
    if days < 0:
        logger.info("Ignoring start date %s after today %s", start.isoformat(), current_day.isoformat())
        return state
    midnight = datetime.combine(start, time.min, tzinfo=tz)
    return state.model_copy(update={"streak_days": days, "start_date": midnight})


def reset_streak(state: LocalUserState, *, now: Optional[datetime] = None) -> LocalUserState:
    return state.model_copy(update={"streak_days": 0, "start_date": now or _now()})


def complete_onboarding(state: LocalUserState) -> LocalUserState:
    if state.has_onboarded:
        return state
    return state.model_copy(update={"has_onboarded": True})


def profile_row(user_id: str, state: LocalUserState, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Full persisted payload for an upsert keyed by ``user_id``."""
    return {
        "id": user_id,
        "streak_days": state.streak_days,
        "current_level": state.current_level.value,
        "start_date": _as_utc(state.start_date).isoformat(),
        "has_onboarded": state.has_onboarded,
        "avatar_url": state.avatar_url,
        "updated_at": (now or _now()).isoformat(),
    }


__all__ = [
    "AppView",
    "LocalUserState",
    "Profile",
    "complete_onboarding",
    "elapsed_days",
    "initial_state",
    "new_profile",
    "profile_row",
    "reset_streak",
    "resolve_timezone",
    "state_from_profile",
    "with_start_date",
    "with_streak_days",
]
