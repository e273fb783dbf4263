"""Engine and session helpers for the SQLAlchemy profile backend.

One engine is cached per process. Helpers that receive explicit ``Settings``
bind the cache to that database URL, rebuilding the engine when the URL
differs from the cached one. Helpers called without settings reuse whatever
engine is cached and only fall back to ``get_settings()`` when none exists.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from .base import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_engine_url: Optional[str] = None
_session_factory: Optional[sessionmaker[Session]] = None


def _build_engine(settings: Settings) -> Engine:
    database_url = settings.database_url
    if not database_url:
        raise RuntimeError("NOXUS_DATABASE_URL must be configured before using the database backend.")

    kwargs: dict[str, object] = {
        "echo": settings.database_echo,
        "future": True,
        "pool_pre_ping": True,
    }

    if database_url.startswith("sqlite"):
        # Profile reads and writes run in worker threads.
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow

    return create_engine(database_url, **kwargs)


def get_engine(settings: Optional[Settings] = None) -> Engine:
    global _engine, _engine_url, _session_factory
    if _engine is not None and settings is not None and settings.database_url != _engine_url:
        logger.info("Profile database URL changed, rebuilding engine")
        dispose_engine()
    if _engine is None:
        resolved = settings or get_settings()
        _engine = _build_engine(resolved)
        _engine_url = resolved.database_url
        _session_factory = sessionmaker(
            bind=_engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
    return _engine


def get_session_factory(settings: Optional[Settings] = None) -> sessionmaker[Session]:
    if _session_factory is None or settings is not None:
        get_engine(settings)
    assert _session_factory is not None
    return _session_factory


def ensure_schema(settings: Optional[Settings] = None) -> None:
    """Create missing tables; the profile schema has no migrations of its own."""
    from . import models  # noqa: F401

    Base.metadata.create_all(get_engine(settings))


@contextmanager
def session_scope(*, commit: bool = True, settings: Optional[Settings] = None) -> Generator[Session, None, None]:
    session = get_session_factory(settings)()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _engine_url, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    _session_factory = None


__all__ = [
    "dispose_engine",
    "ensure_schema",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
