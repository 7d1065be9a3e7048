"""Telemetry listener that persists reward events into the audit trail."""

from __future__ import annotations

import logging
from typing import Set

from .config import get_settings
from .repositories.progression import progression_repository
from .telemetry import TelemetryEvent, register_listener, unregister_listener

logger = logging.getLogger(__name__)

_MONITORED_EVENTS: Set[str] = {
    "module_completed",
    "badge_awarded",
    "badge_granted_manually",
}


def _persist_event(event: TelemetryEvent) -> None:
    if not get_settings().uses_database:
        return
    user_id = event.user_id
    if user_id is None:
        return
    try:
        progression_repository.record_telemetry_event(user_id, event.name, event.payload)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist telemetry event for user_id=%s", user_id)


def install() -> None:
    """Register the audit listener once, however often the app is imported."""
    unregister_listener(_persist_event)
    register_listener(_persist_event, events=_MONITORED_EVENTS)


__all__ = ["_MONITORED_EVENTS", "install"]
