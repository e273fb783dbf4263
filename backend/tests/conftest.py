from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from noxus.config import Settings
from noxus.identity import (
    AuthEventBus,
    AuthListener,
    AuthUser,
    CredentialError,
    Session,
    SignedInEvent,
    SignedOutEvent,
    TokenExchangeError,
)
from noxus.profile_store import ProfileFetchError, ProfileWriteError
from noxus.session_controller import AuthSessionController
from noxus.telemetry import clear_listeners
from noxus.user_state import Profile

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
USER_ID = "user-1"
EMAIL = "runner@example.com"


def make_session(
    user_id: str = USER_ID,
    email: Optional[str] = EMAIL,
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
) -> Session:
    return Session(
        access_token=access_token,
        refresh_token=refresh_token,
        user=AuthUser(id=user_id, email=email),
    )


def profile_row_days_ago(days: int, **overrides: Any) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": USER_ID,
        "start_date": (NOW - timedelta(days=days)).isoformat(),
        "streak_days": days,
        "current_level": "BRONZE",
        "has_onboarded": True,
        "avatar_url": "https://cdn.example/avatar.png",
    }
    row.update(overrides)
    return row


class FakeIdentityProvider:
    """In-memory identity store that publishes events like the real client."""

    def __init__(self, session: Optional[Session] = None) -> None:
        self.session = session
        self.bus = AuthEventBus()
        self.calls: List[tuple] = []
        self.reject_credentials = False
        self.reject_tokens = False
        self.before_set_session: Optional[Callable[[], None]] = None

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        return self.bus.subscribe(listener)

    def push(self, event) -> None:
        self.bus.publish(event)

    async def get_session(self) -> Optional[Session]:
        return self.session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        self.calls.append(("sign_in_with_password", email))
        await asyncio.sleep(0)
        if self.reject_credentials:
            raise CredentialError("Invalid login credentials", status_code=400)
        self.session = make_session(email=email)
        self.bus.publish(SignedInEvent(session=self.session))
        return self.session

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        self.calls.append(("sign_up", email))
        if self.reject_credentials:
            raise CredentialError("User already registered", status_code=422)
        return None

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:
        self.calls.append(("sign_in_with_oauth", provider, redirect_url))
        return f"https://auth.example/authorize?provider={provider}&redirect_to={redirect_url}"

    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:
        self.calls.append(("reset_password_for_email", email, redirect_url))

    async def update_user(self, password: str) -> AuthUser:
        self.calls.append(("update_user",))
        await asyncio.sleep(0)
        if self.session is None or self.reject_credentials:
            raise CredentialError("Auth session missing", status_code=401)
        return self.session.user

    async def set_session(self, access_token: str, refresh_token: str) -> Session:
        self.calls.append(("set_session", access_token, refresh_token))
        if self.before_set_session is not None:
            self.before_set_session()
        await asyncio.sleep(0)
        if self.reject_tokens:
            raise TokenExchangeError("Invalid or expired token", status_code=401)
        self.session = make_session(access_token=access_token, refresh_token=refresh_token)
        self.bus.publish(SignedInEvent(session=self.session))
        return self.session

    async def sign_out(self) -> None:
        self.calls.append(("sign_out",))
        self.session = None
        self.bus.publish(SignedOutEvent())


class FakeProfileTable:
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.inserts: List[Dict[str, Any]] = []
        self.upserts: List[Dict[str, Any]] = []
        self.updates: List[tuple] = []
        self.fetch_error: Optional[ProfileFetchError] = None
        self.write_error: Optional[ProfileWriteError] = None
        self.fetch_gate: Optional[asyncio.Event] = None

    async def fetch(self, user_id: str) -> Optional[Profile]:
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        await asyncio.sleep(0)
        if self.fetch_error is not None:
            raise self.fetch_error
        row = self.rows.get(user_id)
        return Profile.model_validate(row) if row is not None else None

    async def insert(self, profile: Profile) -> None:
        if self.write_error is not None:
            raise self.write_error
        row = profile.model_dump(mode="json", exclude_none=True)
        self.inserts.append(row)
        self.rows[profile.id] = row

    async def upsert(self, row: Dict[str, Any]) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.upserts.append(row)
        self.rows.setdefault(row["id"], {}).update(row)

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.updates.append((user_id, fields))
        self.rows.setdefault(user_id, {"id": user_id}).update(fields)


@pytest.fixture(autouse=True)
def _reset_telemetry():
    yield
    clear_listeners()


@pytest.fixture()
def settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        NOXUS_APP_SCHEME="scheme",
        NOXUS_SUPABASE_URL="https://project.supabase.test",
        NOXUS_SUPABASE_ANON_KEY="anon-key",
        NOXUS_TIMEZONE="UTC",
    )


@pytest.fixture()
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def profiles() -> FakeProfileTable:
    return FakeProfileTable()


@pytest.fixture()
def controller(settings: Settings, identity: FakeIdentityProvider, profiles: FakeProfileTable) -> AuthSessionController:
    return AuthSessionController(settings, identity, profiles, clock=lambda: NOW)
