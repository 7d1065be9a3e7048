"""Process-local cache of authored track definitions."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from ..roadmap import TrackDefinition


def _normalize_track_id(track_id: str) -> str:
    normalized = track_id.strip()
    if not normalized:
        raise ValueError("Track id cannot be empty when caching definitions.")
    return normalized


@dataclass
class _TrackEntry:
    track: TrackDefinition
    cached_at: datetime


class TrackDefinitionCache:
    """Definitions are immutable during an evaluation; authoring invalidates them."""

    def __init__(self) -> None:
        self._entries: Dict[str, _TrackEntry] = {}
        self._lock = threading.Lock()

    def get(self, track_id: str) -> Optional[TrackDefinition]:
        key = _normalize_track_id(track_id)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.track.model_copy(deep=True)

    def set(self, track: TrackDefinition) -> None:
        key = _normalize_track_id(track.track_id)
        entry = _TrackEntry(track=track.model_copy(deep=True), cached_at=datetime.now(timezone.utc))
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, track_id: str) -> None:
        key = _normalize_track_id(track_id)
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


track_cache = TrackDefinitionCache()

__all__ = ["TrackDefinitionCache", "track_cache"]
