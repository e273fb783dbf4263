"""Supabase (GoTrue) identity provider over httpx."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Type

import httpx
from pydantic import ValidationError

from .config import Settings
from .identity import (
    AuthEventBus,
    AuthListener,
    AuthUser,
    CredentialError,
    IdentityStoreError,
    Session,
    SignedInEvent,
    SignedOutEvent,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)

# Seconds before expiry at which a cached session is refreshed instead of reused.
EXPIRY_MARGIN_SECONDS = 30


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def _parse_expiry(data: Dict[str, Any]) -> Optional[datetime]:
    expires_at = data.get("expires_at")
    if isinstance(expires_at, (int, float)):
        return datetime.fromtimestamp(expires_at, tz=timezone.utc)
    expires_in = data.get("expires_in")
    if isinstance(expires_in, (int, float)):
        return datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return None


def _parse_session(data: Dict[str, Any]) -> Session:
    try:
        return Session(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=_parse_expiry(data),
            user=AuthUser.model_validate(data["user"]),
        )
    except (KeyError, TypeError, ValidationError) as exc:
        raise IdentityStoreError(f"Identity store returned an invalid session payload: {exc}") from exc


class SupabaseAuthClient:
    """Holds the current session in memory and mirrors supabase-js auth events."""

    def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self._base_url = f"{settings.supabase_url.rstrip('/')}/auth/v1"
        self._api_key = settings.supabase_anon_key or ""
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._owns_client = client is None
        self._session: Optional[Session] = None
        self._events = AuthEventBus()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def current_session(self) -> Optional[Session]:
        return self._session

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        return self._events.subscribe(listener)

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
        rejection: Type[IdentityStoreError] = CredentialError,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                params=params,
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as exc:
            raise IdentityStoreError(f"Identity store request failed: {exc}") from exc

        if response.status_code >= 400:
            message = _error_message(response)
            # 4xx means the store understood and refused the credentials.
            error_cls = rejection if response.status_code < 500 else IdentityStoreError
            raise error_cls(message, status_code=response.status_code)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise IdentityStoreError(f"Identity store returned invalid JSON for {path}") from exc
        return data if isinstance(data, dict) else {}

    def _store(self, session: Session) -> Session:
        self._session = session
        self._events.publish(SignedInEvent(session=session))
        return session

    async def get_session(self) -> Optional[Session]:
        session = self._session
        if session is None or session.expires_at is None:
            return session
        remaining = (session.expires_at - datetime.now(timezone.utc)).total_seconds()
        if remaining > EXPIRY_MARGIN_SECONDS:
            return session
        try:
            data = await self._request(
                "POST",
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
        except IdentityStoreError as exc:
            logger.warning("Session refresh failed, dropping cached session: %s", exc)
            self._session = None
            return None
        self._session = _parse_session(data)
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._store(_parse_session(data))

    async def sign_up(self, email: str, password: str) -> Optional[Session]:
        data = await self._request("POST", "/signup", json={"email": email, "password": password})
        if "access_token" not in data:
            logger.info("Sign-up accepted, email confirmation pending")
            return None
        return self._store(_parse_session(data))

    async def sign_in_with_oauth(self, provider: str, redirect_url: str) -> str:
        url = httpx.URL(
            f"{self._base_url}/authorize",
            params={"provider": provider, "redirect_to": redirect_url},
        )
        return str(url)

    async def reset_password_for_email(self, email: str, redirect_url: str) -> None:
        await self._request("POST", "/recover", params={"redirect_to": redirect_url}, json={"email": email})

    async def update_user(self, password: str) -> AuthUser:
        session = self._session
        if session is None:
            raise CredentialError("No active session to update.")
        data = await self._request(
            "PUT",
            "/user",
            json={"password": password},
            access_token=session.access_token,
        )
        try:
            user = AuthUser.model_validate(data)
        except ValidationError as exc:
            raise IdentityStoreError(f"Identity store returned an invalid user payload: {exc}") from exc
        self._session = session.model_copy(update={"user": user})
        return user

    async def set_session(self, access_token: str, refresh_token: str) -> Session:
        try:
            data = await self._request("GET", "/user", access_token=access_token, rejection=TokenExchangeError)
            session = Session(
                access_token=access_token,
                refresh_token=refresh_token,
                user=AuthUser.model_validate(data),
            )
        except TokenExchangeError as exc:
            if exc.status_code not in (401, 403):
                raise
            logger.info("Access token rejected, exchanging refresh token instead")
            data = await self._request(
                "POST",
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
                rejection=TokenExchangeError,
            )
            session = _parse_session(data)
        except ValidationError as exc:
            raise TokenExchangeError(f"Identity store returned an invalid user payload: {exc}") from exc
        return self._store(session)

    async def sign_out(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            try:
                await self._request("POST", "/logout", access_token=session.access_token)
            except IdentityStoreError as exc:
                # The local session is gone either way; the remote one expires on its own.
                logger.warning("Remote sign-out failed: %s", exc)
        self._events.publish(SignedOutEvent())


__all__ = ["SupabaseAuthClient"]
