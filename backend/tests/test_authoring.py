"""Definition publishing and the JSON definition importer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scripts import import_definitions
from skillroads.authoring import publish_badge, publish_track, validate_badge_definition
from skillroads.errors import BadgeDefinitionError, NotFoundError, TrackDefinitionError
from skillroads.roadmap import BadgeDef, ModuleDef, TrackDefinition
from skillroads.stores import InMemoryProgressionStore
from skillroads.telemetry import TelemetryEvent

from conftest import abc_track


def test_publish_track_flags_entry_point(telemetry_events: list[TelemetryEvent]) -> None:
    store = InMemoryProgressionStore()
    publish_track(store, abc_track())

    stored = store.load_track_def("python")
    assert [module.is_entry_point for module in stored.modules] == [True, False, False]
    saved = [event for event in telemetry_events if event.name == "track_definition_saved"]
    assert saved[0].payload["topological_order"] == ["A", "B", "C"]


def test_publish_track_can_keep_implicit_entry_point() -> None:
    store = InMemoryProgressionStore()
    publish_track(store, abc_track(), migrate_entry_point=False)
    assert not any(module.is_entry_point for module in store.load_track_def("python").modules)


def test_publish_track_rejects_unknown_prerequisite() -> None:
    store = InMemoryProgressionStore()
    track = TrackDefinition(
        track_id="broken",
        title="Broken",
        modules=[ModuleDef(module_id="A", title="A", prerequisites=["ghost"])],
    )
    with pytest.raises(TrackDefinitionError):
        publish_track(store, track)
    with pytest.raises(NotFoundError):
        store.load_track_def("broken")


def test_badge_prerequisites_must_exist() -> None:
    with pytest.raises(BadgeDefinitionError, match="unknown prerequisite"):
        validate_badge_definition(BadgeDef(badge_id="veteran", name="Veteran", prerequisite_badge_ids=["rookie"]), [])
    validate_badge_definition(BadgeDef(badge_id="veteran", name="Veteran", prerequisite_badge_ids=["rookie"]), ["rookie"])

    store = InMemoryProgressionStore()
    publish_badge(store, BadgeDef(badge_id="rookie", name="Rookie"))
    publish_badge(store, BadgeDef(badge_id="veteran", name="Veteran", prerequisite_badge_ids=["rookie"]))
    assert {badge.badge_id for badge in store.load_badge_defs()} == {"rookie", "veteran"}


def test_importer_orders_badges_by_prerequisites() -> None:
    store = InMemoryProgressionStore()
    imported = import_definitions.import_badges(
        store,
        [
            {"badge_id": "legend", "name": "Legend", "prerequisite_badge_ids": ["veteran"]},
            {"badge_id": "veteran", "name": "Veteran", "prerequisite_badge_ids": ["rookie"]},
            {"badge_id": "rookie", "name": "Rookie"},
            {"badge_id": "orphan", "name": "Orphan", "prerequisite_badge_ids": ["missing"]},
            {"name": "No id"},
        ],
    )
    assert imported == 3
    assert {badge.badge_id for badge in store.load_badge_defs()} == {"legend", "veteran", "rookie"}


def test_importer_migrates_and_skips_invalid_tracks() -> None:
    store = InMemoryProgressionStore()
    imported = import_definitions.import_tracks(
        store,
        [
            abc_track().model_dump(mode="json"),
            {
                "track_id": "cyclic",
                "title": "Cyclic",
                "modules": [
                    {"module_id": "x", "title": "X", "prerequisites": ["y"]},
                    {"module_id": "y", "title": "Y", "prerequisites": ["x"]},
                ],
            },
            {"title": "No id"},
        ],
    )
    assert imported == 1
    assert store.load_track_def("python").modules[0].is_entry_point is True


def test_importer_loads_export_file(tmp_path: Path) -> None:
    export = tmp_path / "definitions.json"
    export.write_text(json.dumps({"tracks": [], "badges": []}), encoding="utf-8")
    assert import_definitions._load_json(export) == {"tracks": [], "badges": []}

    export.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError):
        import_definitions._load_json(export)
