"""Connection pool snapshots for the database health check and metrics script."""

from __future__ import annotations

import time
from typing import Dict

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool

from ..telemetry import emit_event


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    pool = engine.pool
    snapshot: Dict[str, object] = {"pool_class": type(pool).__name__, "status": pool.status()}
    if isinstance(pool, QueuePool):
        snapshot.update(
            size=pool.size(),
            checked_out=pool.checkedout(),
            checked_in=pool.checkedin(),
            overflow=pool.overflow(),
        )
    return snapshot


def probe_database(engine: Engine) -> Dict[str, object]:
    """Run ``SELECT 1``, publish a ``db_pool_status`` event and return latency plus pool state."""
    started = time.perf_counter()
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    latency_ms = round((time.perf_counter() - started) * 1000, 2)
    pool = get_pool_snapshot(engine)
    emit_event("db_pool_status", dialect=engine.dialect.name, latency_ms=latency_ms, **pool)
    return {"latency_ms": latency_ms, "pool": pool}


__all__ = ["get_pool_snapshot", "probe_database"]
