"""Print a one-off JSON snapshot of the progression database.

The snapshot holds the pool probe plus row counts for the tables that grow
with learner activity.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import func, select

from skillroads.db.models import LearnerBadgeModel, LearnerModel, QuizAttemptModel, TrackProgressModel
from skillroads.db.monitoring import probe_database
from skillroads.db.session import dispose_engine, get_engine, session_scope
from skillroads.logging_config import configure_logging

LOGGER = logging.getLogger("skillroads.db_metrics")

_COUNTED_MODELS = {
    "learners": LearnerModel,
    "learner_badges": LearnerBadgeModel,
    "track_progress": TrackProgressModel,
    "quiz_attempts": QuizAttemptModel,
}


def row_counts() -> Dict[str, int]:
    with session_scope(read_only=True) as session:
        return {
            name: session.execute(select(func.count()).select_from(model)).scalar_one()
            for name, model in _COUNTED_MODELS.items()
        }


def collect_snapshot() -> Dict[str, object]:
    probe = probe_database(get_engine())
    return {"timestamp": datetime.now(timezone.utc).isoformat(), **probe, "rows": row_counts()}


def main() -> int:
    configure_logging()
    try:
        snapshot = collect_snapshot()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to probe the progression database: %s", exc)
        return 1
    finally:
        dispose_engine()
    print(json.dumps(snapshot))
    return 0


if __name__ == "__main__":
    sys.exit(main())
