"""Structured sync events fanned out to in-process listeners and the log."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger("lessonsync.telemetry")


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []


def register_listener(listener: Listener) -> None:
    """Register an in-process listener (progress aggregators, tests)."""
    _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    try:
        _listeners.remove(listener)
    except ValueError:
        pass


def clear_listeners() -> None:
    """Remove all registered listeners. Mainly used to reset test state."""
    _listeners.clear()


def emit_event(name: str, **fields: Any) -> None:
    """Emit a sync event and fan it out to listeners.

    A failing listener is logged and skipped; it never interrupts the caller.
    """
    payload = _sanitize(fields)
    event = TelemetryEvent(name=name, payload=payload)

    for listener in list(_listeners):
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, **payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=_json_default))


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        else:
            sanitized[key] = value
    return sanitized


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


__all__ = [
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
