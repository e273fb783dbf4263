"""Profile table adapters: PostgREST over httpx and a local SQLAlchemy table."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .db.session import session_scope
from .identity import IdentityProvider
from .repositories.profiles import profiles as profile_repository
from .user_state import Profile

logger = logging.getLogger(__name__)

NOT_FOUND_CODE = "PGRST116"
MALFORMED_ROW_CODE = "malformed_row"
SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"


class ProfileStoreError(RuntimeError):
    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ProfileFetchError(ProfileStoreError):
    """Profile could not be read; "not found" is reported as ``None`` instead."""


class ProfileWriteError(ProfileStoreError):
    """Insert, upsert or update of a profile row failed."""


class ProfileTable(Protocol):
    async def fetch(self, user_id: str) -> Optional[Profile]:  # pragma: no cover - protocol definition
        ...

    async def insert(self, profile: Profile) -> None:  # pragma: no cover
        ...

    async def upsert(self, row: Dict[str, Any]) -> None:  # pragma: no cover
        ...

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:  # pragma: no cover
        ...


def _validate_row(payload: Any) -> Profile:
    try:
        return Profile.model_validate(payload)
    except ValidationError as exc:
        raise ProfileFetchError(f"Malformed profile row: {exc}", code=MALFORMED_ROW_CODE) from exc


def _error_code(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return str(response.status_code)
    if isinstance(data, dict) and isinstance(data.get("code"), str):
        return data["code"]
    return str(response.status_code)


class RestProfileTable:
    """``profiles`` table exposed through PostgREST."""

    def __init__(
        self,
        settings: Settings,
        identity: IdentityProvider,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = f"{settings.supabase_url.rstrip('/')}/rest/v1/{settings.profiles_table}"
        self._api_key = settings.supabase_anon_key or ""
        self._identity = identity
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _headers(self, **extra: str) -> Dict[str, str]:
        session = await self._identity.get_session()
        token = session.access_token if session else self._api_key
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            **extra,
        }

    async def fetch(self, user_id: str) -> Optional[Profile]:
        headers = await self._headers(Accept=SINGLE_OBJECT_MEDIA_TYPE)
        try:
            response = await self._client.get(
                self._url,
                params={"id": f"eq.{user_id}", "select": "*"},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ProfileFetchError(f"Profile store unreachable: {exc}") from exc

        if response.status_code >= 400:
            code = _error_code(response)
            if code == NOT_FOUND_CODE:
                return None
            raise ProfileFetchError(f"Profile fetch failed with HTTP {response.status_code}", code=code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProfileFetchError("Profile store returned invalid JSON", code=MALFORMED_ROW_CODE) from exc
        return _validate_row(payload)

    async def _write(self, method: str, *, json: Any, params: Optional[Dict[str, str]] = None, prefer: str) -> None:
        headers = await self._headers(Prefer=prefer)
        try:
            response = await self._client.request(method, self._url, json=json, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise ProfileWriteError(f"Profile store unreachable: {exc}") from exc
        if response.status_code >= 400:
            code = _error_code(response)
            raise ProfileWriteError(f"Profile {method} failed with HTTP {response.status_code}", code=code)

    async def insert(self, profile: Profile) -> None:
        row = profile.model_dump(mode="json", exclude_none=True)
        await self._write("POST", json=[row], prefer="return=minimal")

    async def upsert(self, row: Dict[str, Any]) -> None:
        await self._write("POST", json=[row], prefer="resolution=merge-duplicates,return=minimal")

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        await self._write("PATCH", json=fields, params={"id": f"eq.{user_id}"}, prefer="return=minimal")


class DatabaseProfileTable:
    """Same contract backed by SQLAlchemy; blocking work runs in a worker thread.

    ``settings`` selects the database; without it the environment settings apply.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings

    async def fetch(self, user_id: str) -> Optional[Profile]:
        try:
            row = await asyncio.to_thread(self._get, user_id)
        except SQLAlchemyError as exc:
            raise ProfileFetchError(f"Profile database read failed: {exc}") from exc
        return _validate_row(row) if row is not None else None

    async def insert(self, profile: Profile) -> None:
        row = profile.model_dump(mode="json", exclude_none=True)
        try:
            await asyncio.to_thread(self._insert, row)
        except (SQLAlchemyError, LookupError) as exc:
            raise ProfileWriteError(f"Profile insert failed: {exc}") from exc

    async def upsert(self, row: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._upsert, row)
        except (SQLAlchemyError, ValueError) as exc:
            raise ProfileWriteError(f"Profile upsert failed: {exc}") from exc

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        try:
            updated = await asyncio.to_thread(self._update, user_id, fields)
        except (SQLAlchemyError, ValueError) as exc:
            raise ProfileWriteError(f"Profile update failed: {exc}") from exc
        if updated is None:
            logger.warning("Profile update matched no row for user_id=%s", user_id)

    def _get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with session_scope(commit=False, settings=self._settings) as session:
            return profile_repository.get(session, user_id)

    def _insert(self, row: Dict[str, Any]) -> None:
        with session_scope(settings=self._settings) as session:
            profile_repository.insert(session, row)

    def _upsert(self, row: Dict[str, Any]) -> None:
        with session_scope(settings=self._settings) as session:
            profile_repository.upsert(session, row)

    def _update(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with session_scope(settings=self._settings) as session:
            return profile_repository.update(session, user_id, fields)


__all__ = [
    "DatabaseProfileTable",
    "ProfileFetchError",
    "ProfileStoreError",
    "ProfileTable",
    "ProfileWriteError",
    "RestProfileTable",
]
