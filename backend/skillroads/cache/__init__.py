"""In-memory caches shared across backend services."""

from .track_cache import TrackDefinitionCache, track_cache

__all__ = ["TrackDefinitionCache", "track_cache"]
