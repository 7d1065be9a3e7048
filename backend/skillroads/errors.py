"""Error taxonomy shared by the progression engine and its HTTP surface."""

from __future__ import annotations

from typing import Iterable, List, Optional


class ProgressionError(Exception):
    """Base class for every error raised by the progression engine."""

    code = "progression_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(ProgressionError, LookupError):
    """Unknown user, track, module, sub-module or badge."""

    code = "not_found"


class LockedError(ProgressionError):
    """Completion attempted on a module whose prerequisites are unmet."""

    code = "module_locked"

    def __init__(
        self,
        message: str,
        *,
        module_id: str,
        missing_prerequisites: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message)
        self.module_id = module_id
        self.missing_prerequisites: List[str] = sorted(missing_prerequisites or [])

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["module_id"] = self.module_id
        detail["missing_prerequisites"] = list(self.missing_prerequisites)
        return detail


class ConflictError(ProgressionError):
    """Concurrent writes kept racing past the retry budget."""

    code = "write_conflict"


class DefinitionError(ProgressionError, ValueError):
    """An authored definition is rejected before it is stored."""

    code = "invalid_definition"


class TrackDefinitionError(DefinitionError):
    """A track definition violates the module graph rules."""

    code = "invalid_track_definition"


class BadgeDefinitionError(DefinitionError):
    code = "invalid_badge_definition"


class BadgeAlreadyEarnedError(ProgressionError):
    code = "badge_already_earned"


__all__ = [
    "BadgeAlreadyEarnedError",
    "BadgeDefinitionError",
    "ConflictError",
    "DefinitionError",
    "LockedError",
    "NotFoundError",
    "ProgressionError",
    "TrackDefinitionError",
]
