"""Database utilities for the progression service."""

from .base import Base
from .monitoring import get_pool_snapshot, probe_database
from .session import (
    dispose_engine,
    get_engine,
    get_session_factory,
    session_scope,
)

__all__ = [
    "Base",
    "dispose_engine",
    "get_engine",
    "get_pool_snapshot",
    "get_session_factory",
    "probe_database",
    "session_scope",
]
