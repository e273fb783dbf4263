"""Structured session telemetry with in-process listeners."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List

logger = logging.getLogger("noxus.telemetry")

# Never let credentials reach a log line, even if a caller passes them along.
_REDACTED_FIELDS = {"access_token", "refresh_token", "password"}


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> None:
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        if listener in _listeners:
            _listeners.remove(listener)


def clear_listeners() -> None:
    """Remove all registered listeners. Mainly used to reset test state."""
    with _lock:
        _listeners.clear()


@contextmanager
def capture_events() -> Iterator[List[TelemetryEvent]]:
    """Collect every event emitted inside the block."""
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)
    try:
        yield captured
    finally:
        unregister_listener(captured.append)


def emit_event(name: str, **fields: Any) -> None:
    """Emit a structured telemetry event and fan it out to listeners."""
    payload = _sanitize(fields)
    event = TelemetryEvent(name=name, payload=payload)

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, **payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=str))


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if key in _REDACTED_FIELDS:
            sanitized[key] = "***"
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        elif isinstance(value, (datetime, date)):
            sanitized[key] = value.isoformat()
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "TelemetryEvent",
    "capture_events",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
