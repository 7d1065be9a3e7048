"""In-process event bus for progression telemetry.

Completion commands, badge awards and authoring changes are published as
:class:`TelemetryEvent` objects. Listeners may subscribe to every event or to a
fixed set of names; a failing listener is logged and never breaks the command
that emitted the event.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel

logger = logging.getLogger("skillroads.telemetry")


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_id(self) -> Optional[str]:
        value = self.payload.get("user_id")
        return value if isinstance(value, str) and value.strip() else None


Listener = Callable[[TelemetryEvent], None]

_subscriptions: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []
_lock = RLock()


def register_listener(listener: Listener, *, events: Optional[Iterable[str]] = None) -> None:
    """Subscribe ``listener``; with ``events`` only those event names are delivered."""
    names = frozenset(events) if events is not None else None
    with _lock:
        _subscriptions.append((listener, names))


def unregister_listener(listener: Listener) -> None:
    with _lock:
        _subscriptions[:] = [entry for entry in _subscriptions if entry[0] != listener]


def clear_listeners() -> None:
    with _lock:
        _subscriptions.clear()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    """Publish an event to matching listeners and log it as one JSON line."""
    event = TelemetryEvent(name=name, payload={key: _sanitize(value) for key, value in fields.items()})

    with _lock:
        targets = [listener for listener, names in _subscriptions if names is None or name in names]

    for listener in targets:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **event.payload}, default=str))
    return event


def _sanitize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, tuple):
        return [_sanitize(item) for item in value]
    return value


__all__ = [
    "Listener",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
