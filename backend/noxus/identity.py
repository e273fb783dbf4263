"""Identity store contract: sessions, pushed auth events and errors."""

from __future__ import annotations

import logging
from datetime import datetime
from threading import RLock
from typing import Annotated, Callable, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter

logger = logging.getLogger(__name__)


class IdentityStoreError(RuntimeError):
    """Raised when the identity store cannot be reached or answers unexpectedly."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CredentialError(IdentityStoreError):
    """Wrong password, duplicate signup, expired recovery token and similar."""


class TokenExchangeError(IdentityStoreError):
    """A deep-link token pair could not be turned into a session."""


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None


class Session(BaseModel):
    access_token: str = Field(repr=False)
    refresh_token: str = Field(repr=False)
    expires_at: Optional[datetime] = None
    user: AuthUser


class SignedInEvent(BaseModel):
    kind: Literal["SIGNED_IN"] = "SIGNED_IN"
    session: Session


class SignedOutEvent(BaseModel):
    kind: Literal["SIGNED_OUT"] = "SIGNED_OUT"


class PasswordRecoveryEvent(BaseModel):
    kind: Literal["PASSWORD_RECOVERY"] = "PASSWORD_RECOVERY"
    session: Optional[Session] = None


AuthEvent = Annotated[
    Union[SignedInEvent, SignedOutEvent, PasswordRecoveryEvent],
    Field(discriminator="kind"),
]

AuthListener = Callable[[AuthEvent], None]

_auth_event_adapter: TypeAdapter = TypeAdapter(AuthEvent)


def parse_auth_event(payload: dict) -> AuthEvent:
    """Validate a raw provider payload into one of the three event kinds."""
    return _auth_event_adapter.validate_python(payload)


class IdentityProvider(Protocol):
    """Operations the session controller consumes from the identity store."""

    async def get_session(self) -> Optional[Session]:  # pragma: no cover - protocol definition
        ...

    async def sign_in_with_password(self, email: str, password: str) -> Session:  # pragma: no cover
        ...

    async def sign_up(self, email: str, password: str) -> Optional[Session]:  # pragma: no cover
        ...

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:  # pragma: no cover
        ...

    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:  # pragma: no cover
        ...

    async def update_user(self, password: str) -> AuthUser:  # pragma: no cover
        ...

    async def set_session(self, access_token: str, refresh_token: str) -> Session:  # pragma: no cover
        ...

    async def sign_out(self) -> None:  # pragma: no cover
        ...

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:  # pragma: no cover
        ...


class AuthEventBus:
    """Listener registry shared by identity provider implementations."""

    def __init__(self) -> None:
        self._listeners: List[AuthListener] = []
        self._lock = RLock()

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: AuthEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("Auth event %s -> %d listener(s)", event.kind, len(listeners))
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Auth listener failed for %s", event.kind)


__all__ = [
    "AuthEvent",
    "AuthEventBus",
    "AuthListener",
    "AuthUser",
    "CredentialError",
    "IdentityProvider",
    "IdentityStoreError",
    "PasswordRecoveryEvent",
    "Session",
    "SignedInEvent",
    "SignedOutEvent",
    "TokenExchangeError",
    "parse_auth_event",
]
