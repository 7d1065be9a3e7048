"""ORM models backing the progression persistence layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class LearnerModel(TimestampMixin, Base):
    __tablename__ = "learners"
    __table_args__ = (Index("ix_learners_user_id", "user_id", unique=True),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    coins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    friend_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tournament_wins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    power_ups: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    badges: Mapped[list["LearnerBadgeModel"]] = relationship(
        back_populates="learner", cascade="all, delete-orphan", order_by="LearnerBadgeModel.earned_at"
    )


class LearnerBadgeModel(Base):
    __tablename__ = "learner_badges"
    __table_args__ = (
        UniqueConstraint("learner_id", "badge_id", name="uq_learner_badge"),
        Index("ix_learner_badges_learner", "learner_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learners.id", ondelete="CASCADE"), nullable=False
    )
    badge_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), default="common", nullable=False)
    source: Mapped[str] = mapped_column(String(16), default="criteria", nullable=False)
    rewards: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    learner: Mapped[LearnerModel] = relationship(back_populates="badges")


class TrackDefinitionModel(TimestampMixin, Base):
    __tablename__ = "track_definitions"

    track_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    modules: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)


class BadgeDefinitionModel(TimestampMixin, Base):
    __tablename__ = "badge_definitions"

    badge_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)


class TrackProgressModel(TimestampMixin, Base):
    __tablename__ = "track_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "track_id", name="uq_track_progress_user_track"),
        Index("ix_track_progress_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    track_id: Mapped[str] = mapped_column(String(128), nullable=False)
    completed_modules: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    unlocked_modules: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    completed_sub_modules: Mapped[list[list[str]]] = mapped_column(JSONType, default=list, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_accessed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class QuizAttemptModel(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (Index("ix_quiz_attempts_user_quiz", "user_id", "quiz_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    quiz_id: Mapped[str] = mapped_column(String(128), nullable=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False)
    time_taken_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class PersistenceAuditEventModel(Base):
    __tablename__ = "persistence_audit_events"
    __table_args__ = (Index("ix_audit_events_user", "user_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


__all__ = [
    "BadgeDefinitionModel",
    "LearnerBadgeModel",
    "LearnerModel",
    "PersistenceAuditEventModel",
    "QuizAttemptModel",
    "TrackDefinitionModel",
    "TrackProgressModel",
]
