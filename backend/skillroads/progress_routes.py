"""Learner-facing progression endpoints consumed by the roadmap client."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .api_models import (
    BadgeEligibilityPayload,
    CompleteModuleRequest,
    CompleteSubModuleRequest,
    CompletionResponsePayload,
    TrackStatePayload,
    completion_payload,
    eligibility_payload,
    track_state_payload,
)
from .completion import CompletionOrchestrator, get_orchestrator
from .errors import (
    BadgeAlreadyEarnedError,
    ConflictError,
    DefinitionError,
    LockedError,
    NotFoundError,
    ProgressionError,
)


router = APIRouter(prefix="/api", tags=["progress"])
logger = logging.getLogger(__name__)


def http_error(exc: ProgressionError) -> HTTPException:
    """Translate an engine error into the HTTP status the client expects."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, (LockedError, ConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail())
    if isinstance(exc, DefinitionError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    if isinstance(exc, BadgeAlreadyEarnedError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    logger.error("Unmapped progression error %s: %s", exc.code, exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


@router.get(
    "/tracks/{track_id}/state",
    response_model=TrackStatePayload,
    status_code=status.HTTP_200_OK,
)
def get_track_state(
    track_id: str,
    user_id: str = Query(..., min_length=1, description="Learner whose roadmap should be rendered."),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> TrackStatePayload:
    try:
        view = orchestrator.track_state(user_id, track_id)
    except ProgressionError as exc:
        raise http_error(exc) from exc
    return track_state_payload(view)


@router.post(
    "/progress/complete-submodule",
    response_model=CompletionResponsePayload,
    status_code=status.HTTP_200_OK,
)
def complete_sub_module(
    payload: CompleteSubModuleRequest,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> CompletionResponsePayload:
    try:
        result = orchestrator.complete_sub_module(
            payload.user_id.strip(),
            payload.track_id.strip(),
            payload.module_id.strip(),
            payload.sub_module_id.strip(),
        )
    except ProgressionError as exc:
        raise http_error(exc) from exc
    return completion_payload(result)


@router.post(
    "/progress/complete-module",
    response_model=CompletionResponsePayload,
    status_code=status.HTTP_200_OK,
)
def complete_module(
    payload: CompleteModuleRequest,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> CompletionResponsePayload:
    try:
        result = orchestrator.complete_module(
            payload.user_id.strip(),
            payload.track_id.strip(),
            payload.module_id.strip(),
        )
    except ProgressionError as exc:
        raise http_error(exc) from exc
    return completion_payload(result)


@router.get(
    "/badges/{badge_id}/eligibility",
    response_model=BadgeEligibilityPayload,
    status_code=status.HTTP_200_OK,
)
def get_badge_eligibility(
    badge_id: str,
    user_id: str = Query(..., min_length=1),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> BadgeEligibilityPayload:
    try:
        verdict = orchestrator.badge_eligibility(user_id, badge_id)
    except ProgressionError as exc:
        raise http_error(exc) from exc
    return eligibility_payload(verdict)


__all__ = ["http_error", "router"]
