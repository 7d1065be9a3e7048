from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import func, select

from skillroads import telemetry_pipeline
from skillroads.config import get_settings
from skillroads.db.base import Base
from skillroads.db.models import PersistenceAuditEventModel
from skillroads.db.session import dispose_engine, get_engine, session_scope
from skillroads.repositories.progression import progression_repository
from skillroads.telemetry import emit_event, unregister_listener


@pytest.fixture
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SKILLROADS_DATABASE_URL", f"sqlite:///{tmp_path / 'telemetry.db'}")
    monkeypatch.setenv("SKILLROADS_PERSISTENCE_MODE", "database")
    get_settings.cache_clear()
    dispose_engine()
    Base.metadata.create_all(get_engine())
    telemetry_pipeline.install()
    try:
        yield
    finally:
        unregister_listener(telemetry_pipeline._persist_event)
        dispose_engine()
        get_settings.cache_clear()


def test_reward_events_persist(database) -> None:
    emit_event("badge_awarded", user_id="ada", track_id="python", badge_id="first-steps", source="criteria")
    emit_event("submodule_completed", user_id="ada", track_id="python", module_id="A", sub_module_id="a1")

    events = progression_repository.recent_audit_events("ada")
    assert [event.event_type for event in events] == ["badge_awarded"]
    assert events[0].payload["badge_id"] == "first-steps"
    assert events[0].actor == "telemetry"


def test_events_without_user_are_ignored(database) -> None:
    emit_event("module_completed", track_id="python", module_id="A")
    emit_event("module_completed", user_id="  ", track_id="python", module_id="A")

    with session_scope(read_only=True) as session:
        count = session.execute(select(func.count()).select_from(PersistenceAuditEventModel)).scalar_one()
    assert count == 0


def test_memory_mode_skips_persistence(database, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SKILLROADS_PERSISTENCE_MODE", "memory")
    get_settings.cache_clear()

    emit_event("module_completed", user_id="grace", track_id="python", module_id="A")

    monkeypatch.setenv("SKILLROADS_PERSISTENCE_MODE", "database")
    get_settings.cache_clear()
    assert progression_repository.recent_audit_events("grace") == []
