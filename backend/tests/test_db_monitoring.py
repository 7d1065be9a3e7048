from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.pool import QueuePool

from skillroads.db import monitoring


def test_health_check_publishes_pool_status(tmp_path, monkeypatch) -> None:
    emitted: list[tuple[str, dict[str, object]]] = []

    def record(event_name: str, **payload: object) -> None:
        emitted.append((event_name, payload))

    monkeypatch.setattr(monitoring, "emit_event", record)

    engine = create_engine(f"sqlite:///{tmp_path / 'pool.db'}", poolclass=QueuePool, pool_size=2)
    try:
        with engine.connect() as held:
            held.execute(text("SELECT 1"))
            busy = monitoring.get_pool_snapshot(engine)
        report = monitoring.probe_database(engine)
    finally:
        engine.dispose()

    assert busy["checked_out"] == 1
    assert report["pool"]["pool_class"] == "QueuePool"
    assert report["pool"]["checked_out"] == 0
    assert [name for name, _ in emitted] == ["db_pool_status"]
    assert emitted[0][1]["dialect"] == "sqlite"


def test_health_check_reports_latency_and_pool() -> None:
    engine = create_engine("sqlite:///:memory:", future=True)
    try:
        report = monitoring.probe_database(engine)
    finally:
        engine.dispose()
    assert report["latency_ms"] >= 0
    assert isinstance(report["pool"]["status"], str)


def test_db_metrics_snapshot_counts_rows(tmp_path, monkeypatch) -> None:
    from scripts import db_metrics
    from skillroads.config import get_settings
    from skillroads.db.base import Base
    from skillroads.db.session import dispose_engine, get_engine
    from skillroads.repositories.progression import ProgressionRepository
    from skillroads.stores import LearnerRecord

    monkeypatch.setenv("SKILLROADS_DATABASE_URL", f"sqlite:///{tmp_path / 'metrics.db'}")
    get_settings.cache_clear()
    dispose_engine()
    try:
        Base.metadata.create_all(get_engine())
        ProgressionRepository().upsert_learner(LearnerRecord(user_id="ada"))

        snapshot = db_metrics.collect_snapshot()
    finally:
        dispose_engine()
        get_settings.cache_clear()

    assert snapshot["rows"] == {"learners": 1, "learner_badges": 0, "track_progress": 0, "quiz_attempts": 0}
    assert "latency_ms" in snapshot


def test_db_package_exports_resolve() -> None:
    import skillroads.db as db

    missing = [name for name in db.__all__ if not hasattr(db, name)]
    assert missing == []
