"""Persistence interfaces consumed by the completion orchestrator.

``InMemoryProgressionStore`` implements the same contract as the
SQLAlchemy repository and backs the ``memory`` persistence mode.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, Field

from .errors import ConflictError, NotFoundError
from .roadmap import (
    AwardedBadge,
    BadgeDef,
    QuizAttempt,
    TrackDefinition,
    TrackProgress,
    UserStatsSnapshot,
)

logger = logging.getLogger(__name__)

PERFECT_SCORE = 100.0


class LearnerRecord(BaseModel):
    """Learner totals owned by the user service and mutated by rewards."""

    user_id: str = Field(..., min_length=1)
    xp: int = Field(default=0, ge=0)
    coins: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=0)
    streak: int = Field(default=0, ge=0)
    total_attempts: int = Field(default=0, ge=0)
    total_score: float = Field(default=0, ge=0)
    friend_count: int = Field(default=0, ge=0)
    tournament_wins: int = Field(default=0, ge=0)
    power_ups: Dict[str, int] = Field(default_factory=dict)
    badges: List[AwardedBadge] = Field(default_factory=list)
    version: int = Field(default=0, ge=0)


class ProgressionStore(Protocol):
    def load_track_def(self, track_id: str) -> TrackDefinition:
        ...

    def load_track_progress(self, user_id: str, track_id: str) -> TrackProgress:
        ...

    def load_badge_defs(self) -> List[BadgeDef]:
        ...

    def load_badge_def(self, badge_id: str) -> BadgeDef:
        ...

    def load_user_stats(self, user_id: str) -> UserStatsSnapshot:
        ...

    def get_learner(self, user_id: str) -> LearnerRecord:
        ...

    def save_progress_and_rewards(
        self,
        user_id: str,
        track_id: str,
        progress: TrackProgress,
        *,
        xp_delta: int,
        coins_delta: int,
        new_badges: Sequence[AwardedBadge],
        power_ups_delta: Optional[Mapping[str, int]] = None,
        expected_learner_version: int,
    ) -> TrackProgress:
        ...

    def save_rewards(
        self,
        user_id: str,
        *,
        xp_delta: int,
        coins_delta: int,
        new_badges: Sequence[AwardedBadge],
        power_ups_delta: Optional[Mapping[str, int]] = None,
        expected_learner_version: int,
    ) -> None:
        ...

    def save_track_def(self, track: TrackDefinition) -> TrackDefinition:
        ...

    def save_badge_def(self, badge: BadgeDef) -> BadgeDef:
        ...


class QuizAttemptSource(Protocol):
    def get_attempts(self, user_id: str, quiz_id: str) -> List[QuizAttempt]:
        ...


class LearnerSeedStore(Protocol):
    """Learner maintenance used by the developer tools and the importer."""

    def upsert_learner(self, learner: LearnerRecord) -> LearnerRecord:
        ...

    def get_learner(self, user_id: str) -> LearnerRecord:
        ...

    def record_attempt(self, user_id: str, attempt: QuizAttempt) -> None:
        ...


def merge_power_ups(current: Mapping[str, int], delta: Optional[Mapping[str, int]]) -> Dict[str, int]:
    merged = dict(current)
    for kind, quantity in (delta or {}).items():
        merged[kind] = merged.get(kind, 0) + int(quantity)
    return merged


def build_stats_snapshot(
    learner: LearnerRecord,
    attempts: Iterable[QuizAttempt],
    progress_records: Iterable[Tuple[TrackProgress, Optional[TrackDefinition]]],
) -> UserStatsSnapshot:
    """Project learner totals, quiz history and track progress into a snapshot."""
    perfect = 0
    fastest: Optional[float] = None
    best_scores: Dict[str, float] = {}
    for attempt in attempts:
        if attempt.percentage >= PERFECT_SCORE:
            perfect += 1
        if attempt.time_taken_seconds is not None:
            fastest = attempt.time_taken_seconds if fastest is None else min(fastest, attempt.time_taken_seconds)
        previous = best_scores.get(attempt.quiz_id)
        if previous is None or attempt.percentage > previous:
            best_scores[attempt.quiz_id] = attempt.percentage

    completed_modules: Dict[str, set] = {}
    completed_tracks: set = set()
    for progress, track in progress_records:
        done = set(progress.completed_modules)
        completed_modules[progress.track_id] = done
        if track is not None and track.modules and set(track.module_ids()) <= done:
            completed_tracks.add(progress.track_id)

    return UserStatsSnapshot(
        user_id=learner.user_id,
        version=learner.version,
        xp=learner.xp,
        coins=learner.coins,
        level=learner.level,
        streak=learner.streak,
        total_attempts=learner.total_attempts,
        total_score=learner.total_score,
        friend_count=learner.friend_count,
        tournament_wins=learner.tournament_wins,
        perfect_score_count=perfect,
        fastest_quiz_seconds=fastest,
        best_quiz_scores=best_scores,
        power_ups=dict(learner.power_ups),
        earned_badge_ids={badge.badge_id for badge in learner.badges},
        completed_modules=completed_modules,
        completed_track_ids=completed_tracks,
    )


class InMemoryProgressionStore:
    """Process-local store with the same version checks as the database."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tracks: Dict[str, TrackDefinition] = {}
        self._badges: Dict[str, BadgeDef] = {}
        self._learners: Dict[str, LearnerRecord] = {}
        self._progress: Dict[Tuple[str, str], TrackProgress] = {}
        self._attempts: Dict[str, List[QuizAttempt]] = {}

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    def upsert_learner(self, learner: LearnerRecord) -> LearnerRecord:
        with self._lock:
            stored = learner.model_copy(deep=True)
            existing = self._learners.get(learner.user_id)
            if existing is not None:
                stored.version = existing.version + 1
                stored.badges = existing.badges
            self._learners[learner.user_id] = stored
            return stored.model_copy(deep=True)

    def get_learner(self, user_id: str) -> LearnerRecord:
        with self._lock:
            learner = self._learners.get(user_id)
            if learner is None:
                raise NotFoundError(f"User '{user_id}' was not found.")
            return learner.model_copy(deep=True)

    def record_attempt(self, user_id: str, attempt: QuizAttempt) -> None:
        with self._lock:
            self._attempts.setdefault(user_id, []).append(attempt.model_copy())

    def reset(self) -> None:
        with self._lock:
            self._tracks.clear()
            self._badges.clear()
            self._learners.clear()
            self._progress.clear()
            self._attempts.clear()

    # ------------------------------------------------------------------
    # ProgressionStore
    # ------------------------------------------------------------------

    def load_track_def(self, track_id: str) -> TrackDefinition:
        with self._lock:
            track = self._tracks.get(track_id)
            if track is None:
                raise NotFoundError(f"Track '{track_id}' was not found.")
            return track.model_copy(deep=True)

    def save_track_def(self, track: TrackDefinition) -> TrackDefinition:
        with self._lock:
            self._tracks[track.track_id] = track.model_copy(deep=True)
            return track

    def load_badge_defs(self) -> List[BadgeDef]:
        with self._lock:
            return [badge.model_copy(deep=True) for badge in self._badges.values()]

    def load_badge_def(self, badge_id: str) -> BadgeDef:
        with self._lock:
            badge = self._badges.get(badge_id)
            if badge is None:
                raise NotFoundError(f"Badge '{badge_id}' was not found.")
            return badge.model_copy(deep=True)

    def save_badge_def(self, badge: BadgeDef) -> BadgeDef:
        with self._lock:
            self._badges[badge.badge_id] = badge.model_copy(deep=True)
            return badge

    def load_track_progress(self, user_id: str, track_id: str) -> TrackProgress:
        with self._lock:
            progress = self._progress.get((user_id, track_id))
            if progress is None:
                return TrackProgress(user_id=user_id, track_id=track_id)
            return progress.model_copy(deep=True)

    def load_user_stats(self, user_id: str) -> UserStatsSnapshot:
        with self._lock:
            learner = self.get_learner(user_id)
            records = [
                (progress, self._tracks.get(progress.track_id))
                for (owner, _), progress in self._progress.items()
                if owner == user_id
            ]
            return build_stats_snapshot(learner, list(self._attempts.get(user_id, [])), records)

    def get_attempts(self, user_id: str, quiz_id: str) -> List[QuizAttempt]:
        with self._lock:
            return [attempt for attempt in self._attempts.get(user_id, []) if attempt.quiz_id == quiz_id]

    def save_progress_and_rewards(
        self,
        user_id: str,
        track_id: str,
        progress: TrackProgress,
        *,
        xp_delta: int,
        coins_delta: int,
        new_badges: Sequence[AwardedBadge],
        power_ups_delta: Optional[Mapping[str, int]] = None,
        expected_learner_version: int,
    ) -> TrackProgress:
        with self._lock:
            key = (user_id, track_id)
            stored = self._progress.get(key)
            stored_version = stored.version if stored is not None else 0
            if stored_version != progress.version:
                raise ConflictError(
                    f"Progress for '{user_id}' on '{track_id}' changed (expected v{progress.version}, found v{stored_version})."
                )
            learner = self._checked_learner(user_id, expected_learner_version)
            saved = progress.model_copy(
                update={"version": stored_version + 1, "last_accessed": datetime.now(timezone.utc)},
                deep=True,
            )
            self._progress[key] = saved
            self._apply_rewards(learner, xp_delta, coins_delta, new_badges, power_ups_delta)
            return saved.model_copy(deep=True)

    def save_rewards(
        self,
        user_id: str,
        *,
        xp_delta: int,
        coins_delta: int,
        new_badges: Sequence[AwardedBadge],
        power_ups_delta: Optional[Mapping[str, int]] = None,
        expected_learner_version: int,
    ) -> None:
        with self._lock:
            learner = self._checked_learner(user_id, expected_learner_version)
            self._apply_rewards(learner, xp_delta, coins_delta, new_badges, power_ups_delta)

    def _checked_learner(self, user_id: str, expected_version: int) -> LearnerRecord:
        learner = self._learners.get(user_id)
        if learner is None:
            raise NotFoundError(f"User '{user_id}' was not found.")
        if learner.version != expected_version:
            raise ConflictError(
                f"Learner '{user_id}' changed (expected v{expected_version}, found v{learner.version})."
            )
        return learner

    def _apply_rewards(
        self,
        learner: LearnerRecord,
        xp_delta: int,
        coins_delta: int,
        new_badges: Sequence[AwardedBadge],
        power_ups_delta: Optional[Mapping[str, int]],
    ) -> None:
        held = {badge.badge_id for badge in learner.badges}
        learner.xp += xp_delta
        learner.coins += coins_delta
        learner.power_ups = merge_power_ups(learner.power_ups, power_ups_delta)
        learner.badges.extend(badge for badge in new_badges if badge.badge_id not in held)
        learner.version += 1


__all__ = [
    "InMemoryProgressionStore",
    "LearnerRecord",
    "LearnerSeedStore",
    "ProgressionStore",
    "QuizAttemptSource",
    "build_stats_snapshot",
    "merge_power_ups",
]
