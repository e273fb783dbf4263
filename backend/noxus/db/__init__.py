"""Database utilities for the local profile backend."""

from .session import (
    dispose_engine,
    ensure_schema,
    get_engine,
    get_session_factory,
    session_scope,
)

__all__ = [
    "dispose_engine",
    "ensure_schema",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
