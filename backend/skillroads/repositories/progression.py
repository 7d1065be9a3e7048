"""Database-backed progression store with optimistic version checks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..cache import TrackDefinitionCache, track_cache
from ..criteria import parse_badge_definitions
from ..db.models import (
    BadgeDefinitionModel,
    LearnerBadgeModel,
    LearnerModel,
    PersistenceAuditEventModel,
    QuizAttemptModel,
    TrackDefinitionModel,
    TrackProgressModel,
)
from ..db.session import session_scope
from ..errors import ConflictError, NotFoundError
from ..roadmap import (
    AwardedBadge,
    BadgeDef,
    BadgeRewards,
    QuizAttempt,
    TrackDefinition,
    TrackProgress,
    UserStatsSnapshot,
)
from ..stores import LearnerRecord, build_stats_snapshot, merge_power_ups

logger = logging.getLogger(__name__)

MAX_AUDIT_EVENTS = 50


class AuditEvent(BaseModel):
    """Audit trail entry detached from its ORM row."""

    user_id: Optional[str] = None
    event_type: str
    actor: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


def _normalize_id(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} cannot be empty.")
    return normalized


class ProgressionRepository:
    """SQLAlchemy implementation of the progression store contract."""

    def __init__(self, cache: Optional[TrackDefinitionCache] = None) -> None:
        self._cache = cache or track_cache

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def load_track_def(self, track_id: str) -> TrackDefinition:
        normalized = _normalize_id(track_id, "Track id")
        cached = self._cache.get(normalized)
        if cached is not None:
            return cached
        with session_scope(read_only=True) as session:
            model = session.get(TrackDefinitionModel, normalized)
            if model is None:
                raise NotFoundError(f"Track '{track_id}' was not found.")
            track = self._track_to_domain(model)
        self._cache.set(track)
        return track

    def save_track_def(self, track: TrackDefinition) -> TrackDefinition:
        with session_scope() as session:
            model = session.get(TrackDefinitionModel, track.track_id)
            if model is None:
                model = TrackDefinitionModel(track_id=track.track_id, title=track.title)
                session.add(model)
            model.title = track.title
            model.description = track.description
            model.modules = [module.model_dump(mode="json") for module in track.modules]
            session.flush()
            self._record_audit(
                session,
                None,
                "track_definition_saved",
                {"track_id": track.track_id, "module_count": len(track.modules)},
            )
        self._cache.invalidate(track.track_id)
        return track

    def list_track_ids(self) -> List[str]:
        with session_scope(read_only=True) as session:
            stmt = select(TrackDefinitionModel.track_id).order_by(TrackDefinitionModel.track_id.asc())
            return list(session.execute(stmt).scalars().all())

    def load_badge_defs(self) -> List[BadgeDef]:
        with session_scope(read_only=True) as session:
            stmt = select(BadgeDefinitionModel).order_by(BadgeDefinitionModel.created_at.asc())
            payloads = [dict(model.payload or {}) for model in session.execute(stmt).scalars().all()]
        return parse_badge_definitions(payloads)

    def load_badge_def(self, badge_id: str) -> BadgeDef:
        with session_scope(read_only=True) as session:
            model = session.get(BadgeDefinitionModel, badge_id)
            if model is None:
                raise NotFoundError(f"Badge '{badge_id}' was not found.")
            payload = dict(model.payload or {})
        parsed = parse_badge_definitions([payload])
        if not parsed:
            raise NotFoundError(f"Badge '{badge_id}' has a malformed definition.")
        return parsed[0]

    def save_badge_def(self, badge: BadgeDef) -> BadgeDef:
        with session_scope() as session:
            model = session.get(BadgeDefinitionModel, badge.badge_id)
            if model is None:
                model = BadgeDefinitionModel(badge_id=badge.badge_id, name=badge.name)
                session.add(model)
            model.name = badge.name
            model.payload = badge.model_dump(mode="json")
            session.flush()
            self._record_audit(session, None, "badge_definition_saved", {"badge_id": badge.badge_id})
        return badge

    # ------------------------------------------------------------------
    # Learners and attempts
    # ------------------------------------------------------------------

    def upsert_learner(self, learner: LearnerRecord) -> LearnerRecord:
        with session_scope() as session:
            model = self._find_learner(session, learner.user_id)
            if model is None:
                model = LearnerModel(user_id=learner.user_id, version=0)
                session.add(model)
            else:
                model.version = model.version + 1
            model.xp = learner.xp
            model.coins = learner.coins
            model.level = learner.level
            model.streak = learner.streak
            model.total_attempts = learner.total_attempts
            model.total_score = learner.total_score
            model.friend_count = learner.friend_count
            model.tournament_wins = learner.tournament_wins
            model.power_ups = dict(learner.power_ups)
            session.flush()
            return self._learner_to_domain(model)

    def get_learner(self, user_id: str) -> LearnerRecord:
        with session_scope(read_only=True) as session:
            return self._learner_to_domain(self._require_learner(session, user_id))

    def record_attempt(self, user_id: str, attempt: QuizAttempt) -> None:
        with session_scope() as session:
            session.add(
                QuizAttemptModel(
                    user_id=user_id,
                    quiz_id=attempt.quiz_id,
                    percentage=attempt.percentage,
                    time_taken_seconds=attempt.time_taken_seconds,
                    completed_at=attempt.completed_at,
                )
            )

    def get_attempts(self, user_id: str, quiz_id: str) -> List[QuizAttempt]:
        with session_scope(read_only=True) as session:
            stmt = (
                select(QuizAttemptModel)
                .where(QuizAttemptModel.user_id == user_id, QuizAttemptModel.quiz_id == quiz_id)
                .order_by(QuizAttemptModel.completed_at.asc())
            )
            return [self._attempt_to_domain(model) for model in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def load_track_progress(self, user_id: str, track_id: str) -> TrackProgress:
        with session_scope(read_only=True) as session:
            model = self._find_progress(session, user_id, track_id)
            if model is None:
                return TrackProgress(user_id=user_id, track_id=track_id)
            return self._progress_to_domain(model)

    def load_user_stats(self, user_id: str) -> UserStatsSnapshot:
        with session_scope(read_only=True) as session:
            learner = self._learner_to_domain(self._require_learner(session, user_id))
            attempt_stmt = select(QuizAttemptModel).where(QuizAttemptModel.user_id == user_id)
            attempts = [self._attempt_to_domain(model) for model in session.execute(attempt_stmt).scalars().all()]
            progress_stmt = select(TrackProgressModel).where(TrackProgressModel.user_id == user_id)
            progress_records = [
                self._progress_to_domain(model) for model in session.execute(progress_stmt).scalars().all()
            ]

        records: List[Tuple[TrackProgress, Optional[TrackDefinition]]] = []
        for progress in progress_records:
            try:
                track: Optional[TrackDefinition] = self.load_track_def(progress.track_id)
            except NotFoundError:
                logger.warning("Progress for user=%s references missing track %s", user_id, progress.track_id)
                track = None
            records.append((progress, track))
        return build_stats_snapshot(learner, attempts, records)

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
        now = datetime.now(timezone.utc)
        with session_scope() as session:
            saved = self._write_progress(session, user_id, track_id, progress, now)
            learner_id = self._write_rewards(
                session,
                user_id,
                xp_delta=xp_delta,
                coins_delta=coins_delta,
                new_badges=new_badges,
                power_ups_delta=power_ups_delta,
                expected_version=expected_learner_version,
            )
            self._record_audit(
                session,
                user_id,
                "progress_saved",
                {
                    "learner_id": learner_id,
                    "track_id": track_id,
                    "version": saved.version,
                    "xp_delta": xp_delta,
                    "coins_delta": coins_delta,
                    "badge_ids": [badge.badge_id for badge in new_badges],
                },
            )
        return saved

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
        with session_scope() as session:
            self._write_rewards(
                session,
                user_id,
                xp_delta=xp_delta,
                coins_delta=coins_delta,
                new_badges=new_badges,
                power_ups_delta=power_ups_delta,
                expected_version=expected_learner_version,
            )
            self._record_audit(
                session,
                user_id,
                "rewards_saved",
                {"xp_delta": xp_delta, "badge_ids": [badge.badge_id for badge in new_badges]},
            )

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def record_telemetry_event(self, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        with session_scope() as session:
            self._record_audit(session, user_id, event_type, payload, actor="telemetry")

    def recent_audit_events(self, user_id: str, limit: int = MAX_AUDIT_EVENTS) -> List[AuditEvent]:
        with session_scope(read_only=True) as session:
            stmt = (
                select(PersistenceAuditEventModel)
                .where(PersistenceAuditEventModel.user_id == user_id)
                .order_by(PersistenceAuditEventModel.created_at.desc())
                .limit(limit)
            )
            return [self._audit_to_domain(model) for model in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_progress(
        self,
        session: Session,
        user_id: str,
        track_id: str,
        progress: TrackProgress,
        now: datetime,
    ) -> TrackProgress:
        values = {
            "completed_modules": list(progress.completed_modules),
            "unlocked_modules": list(progress.unlocked_modules),
            "completed_sub_modules": [list(pair) for pair in progress.completed_sub_modules],
            "last_accessed": now,
        }
        if progress.version == 0:
            if self._find_progress(session, user_id, track_id) is not None:
                raise ConflictError(f"Progress for '{user_id}' on '{track_id}' was created concurrently.")
            session.add(TrackProgressModel(user_id=user_id, track_id=track_id, version=1, **values))
            try:
                session.flush()
            except IntegrityError as exc:
                raise ConflictError(f"Progress for '{user_id}' on '{track_id}' was created concurrently.") from exc
        else:
            result = session.execute(
                update(TrackProgressModel)
                .where(
                    TrackProgressModel.user_id == user_id,
                    TrackProgressModel.track_id == track_id,
                    TrackProgressModel.version == progress.version,
                )
                .values(version=progress.version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    f"Progress for '{user_id}' on '{track_id}' changed since version {progress.version}."
                )
        return progress.model_copy(update={"version": progress.version + 1, "last_accessed": now}, deep=True)

    def _write_rewards(
        self,
        session: Session,
        user_id: str,
        *,
        xp_delta: int,
        coins_delta: int,
        new_badges: Sequence[AwardedBadge],
        power_ups_delta: Optional[Mapping[str, int]],
        expected_version: int,
    ) -> str:
        learner = self._require_learner(session, user_id)
        if learner.version != expected_version:
            raise ConflictError(
                f"Learner '{user_id}' changed (expected v{expected_version}, found v{learner.version})."
            )
        result = session.execute(
            update(LearnerModel)
            .where(LearnerModel.id == learner.id, LearnerModel.version == expected_version)
            .values(
                xp=LearnerModel.xp + xp_delta,
                coins=LearnerModel.coins + coins_delta,
                power_ups=merge_power_ups(learner.power_ups or {}, power_ups_delta),
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Learner '{user_id}' changed since version {expected_version}.")
        for badge in new_badges:
            session.add(
                LearnerBadgeModel(
                    learner_id=learner.id,
                    badge_id=badge.badge_id,
                    name=badge.name,
                    rarity=badge.rarity,
                    source=badge.source,
                    rewards=badge.rewards.model_dump(mode="json"),
                    earned_at=badge.earned_at,
                )
            )
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Badges for '{user_id}' were awarded concurrently.") from exc
        return learner.id

    def _find_learner(self, session: Session, user_id: str) -> Optional[LearnerModel]:
        normalized = _normalize_id(user_id, "User id")
        stmt = select(LearnerModel).where(LearnerModel.user_id == normalized)
        return session.execute(stmt).scalar_one_or_none()

    def _require_learner(self, session: Session, user_id: str) -> LearnerModel:
        model = self._find_learner(session, user_id)
        if model is None:
            raise NotFoundError(f"User '{user_id}' was not found.")
        return model

    def _find_progress(self, session: Session, user_id: str, track_id: str) -> Optional[TrackProgressModel]:
        stmt = select(TrackProgressModel).where(
            TrackProgressModel.user_id == user_id,
            TrackProgressModel.track_id == track_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _track_to_domain(self, model: TrackDefinitionModel) -> TrackDefinition:
        return TrackDefinition.model_validate(
            {
                "track_id": model.track_id,
                "title": model.title,
                "description": model.description or "",
                "modules": model.modules or [],
            }
        )

    def _progress_to_domain(self, model: TrackProgressModel) -> TrackProgress:
        return TrackProgress.model_validate(
            {
                "user_id": model.user_id,
                "track_id": model.track_id,
                "completed_modules": model.completed_modules or [],
                "unlocked_modules": model.unlocked_modules or [],
                "completed_sub_modules": [tuple(pair) for pair in model.completed_sub_modules or []],
                "version": model.version,
                "last_accessed": model.last_accessed,
            }
        )

    def _learner_to_domain(self, model: LearnerModel) -> LearnerRecord:
        return LearnerRecord(
            user_id=model.user_id,
            xp=model.xp,
            coins=model.coins,
            level=model.level,
            streak=model.streak,
            total_attempts=model.total_attempts,
            total_score=model.total_score,
            friend_count=model.friend_count,
            tournament_wins=model.tournament_wins,
            power_ups=dict(model.power_ups or {}),
            badges=[
                AwardedBadge(
                    badge_id=badge.badge_id,
                    name=badge.name,
                    rarity=badge.rarity,
                    source=badge.source,
                    rewards=BadgeRewards.model_validate(badge.rewards or {}),
                    earned_at=badge.earned_at,
                )
                for badge in model.badges
            ],
            version=model.version,
        )

    def _attempt_to_domain(self, model: QuizAttemptModel) -> QuizAttempt:
        return QuizAttempt(
            quiz_id=model.quiz_id,
            percentage=model.percentage,
            completed_at=model.completed_at,
            time_taken_seconds=model.time_taken_seconds,
        )

    def _audit_to_domain(self, model: PersistenceAuditEventModel) -> AuditEvent:
        return AuditEvent(
            user_id=model.user_id,
            event_type=model.event_type,
            actor=model.actor,
            payload=dict(model.payload or {}),
            created_at=model.created_at,
        )

    def _record_audit(
        self,
        session: Session,
        user_id: Optional[str],
        event_type: str,
        payload: Dict[str, Any],
        *,
        actor: str = "system",
    ) -> None:
        session.add(
            PersistenceAuditEventModel(
                user_id=user_id,
                event_type=event_type,
                payload=payload,
                actor=actor,
            )
        )


progression_repository = ProgressionRepository()

__all__ = ["AuditEvent", "ProgressionRepository", "progression_repository"]
