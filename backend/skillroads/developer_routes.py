"""Developer utilities for seeding learners and inspecting the audit trail.

Mounted only when ``SKILLROADS_DEBUG_ENDPOINTS`` is enabled.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from .api_models import LearnerPayload, learner_payload
from .completion import get_learner_store, memory_store, reset_orchestrator
from .config import Settings, get_settings
from .errors import ProgressionError
from .progress_routes import http_error
from .roadmap import QuizAttempt
from .stores import LearnerRecord, LearnerSeedStore


router = APIRouter(prefix="/api/developer", tags=["developer"])


class LearnerSeedRequest(BaseModel):
    xp: int = Field(default=0, ge=0)
    coins: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=0)
    streak: int = Field(default=0, ge=0)
    total_attempts: int = Field(default=0, ge=0)
    total_score: float = Field(default=0, ge=0)
    friend_count: int = Field(default=0, ge=0)
    tournament_wins: int = Field(default=0, ge=0)
    power_ups: Dict[str, int] = Field(default_factory=dict)


class QuizAttemptRequest(BaseModel):
    quiz_id: str = Field(..., min_length=1)
    percentage: float = Field(..., ge=0.0, le=100.0)
    time_taken_seconds: Optional[float] = Field(default=None, ge=0.0)
    completed_at: Optional[datetime] = None


class AuditEventPayload(BaseModel):
    event_type: str
    actor: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


@router.put(
    "/learners/{user_id}",
    response_model=LearnerPayload,
    status_code=status.HTTP_200_OK,
)
def seed_learner(
    user_id: str,
    payload: LearnerSeedRequest,
    store: LearnerSeedStore = Depends(get_learner_store),
) -> LearnerPayload:
    learner = store.upsert_learner(LearnerRecord(user_id=user_id, **payload.model_dump()))
    return learner_payload(learner)


@router.get(
    "/learners/{user_id}",
    response_model=LearnerPayload,
    status_code=status.HTTP_200_OK,
)
def get_learner(
    user_id: str,
    store: LearnerSeedStore = Depends(get_learner_store),
) -> LearnerPayload:
    try:
        return learner_payload(store.get_learner(user_id))
    except ProgressionError as exc:
        raise http_error(exc) from exc


@router.post(
    "/learners/{user_id}/attempts",
    status_code=status.HTTP_204_NO_CONTENT,
)
def record_quiz_attempt(
    user_id: str,
    payload: QuizAttemptRequest,
    store: LearnerSeedStore = Depends(get_learner_store),
) -> Response:
    try:
        store.get_learner(user_id)
    except ProgressionError as exc:
        raise http_error(exc) from exc
    store.record_attempt(
        user_id,
        QuizAttempt(
            quiz_id=payload.quiz_id,
            percentage=payload.percentage,
            time_taken_seconds=payload.time_taken_seconds,
            completed_at=payload.completed_at or datetime.now(timezone.utc),
        ),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/audit/{user_id}",
    response_model=List[AuditEventPayload],
    status_code=status.HTTP_200_OK,
)
def recent_audit_events(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    settings: Settings = Depends(get_settings),
) -> List[AuditEventPayload]:
    if not settings.uses_database:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The audit trail is only recorded in database persistence mode.",
        )
    from .repositories.progression import progression_repository

    return [
        AuditEventPayload(
            event_type=event.event_type,
            actor=event.actor,
            payload=dict(event.payload or {}),
            created_at=event.created_at,
        )
        for event in progression_repository.recent_audit_events(user_id, limit=limit)
    ]


@router.post("/reset", status_code=status.HTTP_204_NO_CONTENT)
def developer_reset(settings: Settings = Depends(get_settings)) -> Response:
    if settings.persistence_mode != "memory":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reset is only available in memory persistence mode.",
        )
    memory_store.reset()
    reset_orchestrator()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
