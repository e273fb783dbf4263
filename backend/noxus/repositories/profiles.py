"""Database-backed profile repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import ProfileModel

_WRITABLE_FIELDS = (
    "start_date",
    "current_level",
    "has_onboarded",
    "streak_days",
    "avatar_url",
    "email",
    "updated_at",
)
_DATETIME_FIELDS = {"start_date", "updated_at"}


def _normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip()
    if not normalized:
        raise ValueError("User id cannot be empty.")
    return normalized


def _coerce(field: str, value: Any) -> Any:
    if field in _DATETIME_FIELDS and isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


def _to_row(model: ProfileModel) -> Dict[str, Any]:
    row: Dict[str, Any] = {"id": model.id}
    for field in _WRITABLE_FIELDS:
        row[field] = getattr(model, field)
    return row


class ProfileRepository:
    """Row-level operations mirroring the remote table's select/insert/upsert/update."""

    def get(self, session: Session, user_id: str) -> Optional[Dict[str, Any]]:
        stmt = select(ProfileModel).where(ProfileModel.id == _normalize_user_id(user_id))
        model = session.execute(stmt).scalar_one_or_none()
        return _to_row(model) if model is not None else None

    def insert(self, session: Session, row: Dict[str, Any]) -> Dict[str, Any]:
        user_id = _normalize_user_id(str(row.get("id", "")))
        if session.get(ProfileModel, user_id) is not None:
            raise LookupError(f"Profile '{user_id}' already exists.")
        model = ProfileModel(id=user_id)
        self._apply(model, row)
        session.add(model)
        session.flush()
        return _to_row(model)

    def upsert(self, session: Session, row: Dict[str, Any]) -> Dict[str, Any]:
        user_id = _normalize_user_id(str(row.get("id", "")))
        model = session.get(ProfileModel, user_id)
        if model is None:
            model = ProfileModel(id=user_id)
            session.add(model)
        self._apply(model, row)
        session.flush()
        return _to_row(model)

    def update(self, session: Session, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        model = session.get(ProfileModel, _normalize_user_id(user_id))
        if model is None:
            return None
        self._apply(model, fields)
        session.flush()
        return _to_row(model)

    @staticmethod
    def _apply(model: ProfileModel, row: Dict[str, Any]) -> None:
        for field in _WRITABLE_FIELDS:
            if field in row:
                setattr(model, field, _coerce(field, row[field]))


profiles = ProfileRepository()

__all__ = ["ProfileRepository", "profiles"]
