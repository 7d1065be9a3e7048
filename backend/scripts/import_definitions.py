"""Import authored track and badge definitions from a JSON export.

The export is a mapping with optional ``tracks`` and ``badges`` lists. Each
track is migrated to an explicit entry point, validated and upserted; badges
are published once the badges they depend on are known.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from skillroads.authoring import publish_badge, publish_track
from skillroads.db.base import Base
from skillroads.db.session import get_engine
from skillroads.errors import DefinitionError
from skillroads.logging_config import configure_logging
from skillroads.repositories.progression import progression_repository
from skillroads.roadmap import BadgeDef, TrackDefinition
from skillroads.stores import ProgressionStore


logger = logging.getLogger("skillroads.import")


def _ensure_database() -> None:
    Base.metadata.create_all(get_engine())


def _load_json(path: Path) -> Dict[str, object]:
    with path.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must contain a JSON object with 'tracks' and/or 'badges'.")
    return payload


def import_tracks(store: ProgressionStore, entries: Sequence[object], *, migrate_entry_point: bool = True) -> int:
    imported = 0
    for entry in entries:
        try:
            track = TrackDefinition.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping invalid track payload: %s", exc)
            continue
        try:
            publish_track(store, track, migrate_entry_point=migrate_entry_point)
        except DefinitionError as exc:
            logger.warning("Skipping track %s: %s", track.track_id, exc)
            continue
        imported += 1
    logger.info("Imported %d tracks", imported)
    return imported


def import_badges(store: ProgressionStore, entries: Sequence[object]) -> int:
    pending: List[BadgeDef] = []
    for entry in entries:
        try:
            pending.append(BadgeDef.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping invalid badge payload: %s", exc)

    known = {badge.badge_id for badge in store.load_badge_defs()}
    imported = 0
    while pending:
        ready = [badge for badge in pending if set(badge.prerequisite_badge_ids) <= known | {badge.badge_id}]
        if not ready:
            break
        for badge in ready:
            pending.remove(badge)
            try:
                publish_badge(store, badge)
            except DefinitionError as exc:
                logger.warning("Skipping badge %s: %s", badge.badge_id, exc)
                continue
            known.add(badge.badge_id)
            imported += 1

    for badge in pending:
        missing = sorted(set(badge.prerequisite_badge_ids) - known)
        logger.warning("Skipping badge %s; prerequisites never resolved: %s", badge.badge_id, ", ".join(missing))
    logger.info("Imported %d badges", imported)
    return imported


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import track and badge definitions into the progression database.")
    parser.add_argument("path", type=Path, help="JSON file with 'tracks' and/or 'badges'.")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before importing (development databases only).",
    )
    parser.add_argument(
        "--keep-implicit-entry-points",
        action="store_true",
        help="Store tracks as authored instead of flagging the implicit entry point.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    configure_logging()
    args = parse_args(argv)
    try:
        payload = _load_json(args.path)
        if args.create_schema:
            _ensure_database()
        tracks = import_tracks(
            progression_repository,
            list(payload.get("tracks") or []),
            migrate_entry_point=not args.keep_implicit_entry_points,
        )
        badges = import_badges(progression_repository, list(payload.get("badges") or []))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Definition import failed: %s", exc)
        return 1
    logger.info("Import completed: %d tracks, %d badges", tracks, badges)
    return 0


if __name__ == "__main__":
    sys.exit(main())
