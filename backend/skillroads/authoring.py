"""Validation and publishing of administrator-authored definitions."""

from __future__ import annotations

import logging
from typing import Iterable, List

from .errors import BadgeDefinitionError
from .module_state import validate_track_definition, with_explicit_entry_point
from .roadmap import BadgeDef, TrackDefinition
from .stores import ProgressionStore
from .telemetry import emit_event

logger = logging.getLogger(__name__)


def publish_track(store: ProgressionStore, track: TrackDefinition, *, migrate_entry_point: bool = True) -> TrackDefinition:
    """Validate a track graph and store it.

    With ``migrate_entry_point`` the implicit first module is flagged as the
    explicit entry point before saving.
    """
    candidate = with_explicit_entry_point(track) if migrate_entry_point else track
    order = validate_track_definition(candidate)
    saved = store.save_track_def(candidate)
    emit_event(
        "track_definition_saved",
        track_id=candidate.track_id,
        module_count=len(candidate.modules),
        topological_order=order,
    )
    logger.info("Published track %s (%s modules)", candidate.track_id, len(candidate.modules))
    return saved


def validate_badge_definition(badge: BadgeDef, known_badge_ids: Iterable[str]) -> None:
    known = set(known_badge_ids) | {badge.badge_id}
    if badge.badge_id in badge.prerequisite_badge_ids:
        raise BadgeDefinitionError(f"Badge '{badge.badge_id}' lists itself as a prerequisite.")
    missing = sorted(set(badge.prerequisite_badge_ids) - known)
    if missing:
        raise BadgeDefinitionError(
            f"Badge '{badge.badge_id}' references unknown prerequisite badges: {', '.join(missing)}."
        )


def publish_badge(store: ProgressionStore, badge: BadgeDef) -> BadgeDef:
    known: List[str] = [existing.badge_id for existing in store.load_badge_defs()]
    validate_badge_definition(badge, known)
    saved = store.save_badge_def(badge)
    logger.info("Published badge %s", badge.badge_id)
    return saved


__all__ = ["publish_badge", "publish_track", "validate_badge_definition"]
