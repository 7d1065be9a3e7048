"""Administrator endpoints: definition authoring and manual badge grants."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from .api_models import AwardedBadgePayload, badge_payload
from .authoring import publish_badge, publish_track
from .completion import CompletionOrchestrator, get_orchestrator
from .errors import ProgressionError
from .module_state import topological_order
from .progress_routes import http_error
from .roadmap import BadgeDef, TrackDefinition


router = APIRouter(prefix="/api/admin", tags=["admin"])


class TrackOrderPayload(BaseModel):
    track_id: str
    order: List[str] = Field(default_factory=list)


def _ensure_matching_id(path_id: str, body_id: str, label: str) -> None:
    if path_id != body_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{label} id '{body_id}' does not match the request path '{path_id}'.",
        )


@router.put(
    "/tracks/{track_id}",
    response_model=TrackDefinition,
    status_code=status.HTTP_200_OK,
)
def put_track_definition(
    track_id: str,
    track: TrackDefinition,
    migrate_entry_point: bool = Query(
        default=True,
        description="Flag the implicit entry point explicitly before saving.",
    ),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> TrackDefinition:
    _ensure_matching_id(track_id, track.track_id, "Track")
    try:
        return publish_track(orchestrator.store, track, migrate_entry_point=migrate_entry_point)
    except ProgressionError as exc:
        raise http_error(exc) from exc


@router.get(
    "/tracks/{track_id}/order",
    response_model=TrackOrderPayload,
    status_code=status.HTTP_200_OK,
)
def get_track_order(
    track_id: str,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> TrackOrderPayload:
    try:
        track = orchestrator.store.load_track_def(track_id)
        order = topological_order(track.modules)
    except ProgressionError as exc:
        raise http_error(exc) from exc
    return TrackOrderPayload(track_id=track_id, order=order)


@router.put(
    "/badges/{badge_id}",
    response_model=BadgeDef,
    status_code=status.HTTP_200_OK,
)
def put_badge_definition(
    badge_id: str,
    badge: BadgeDef,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> BadgeDef:
    _ensure_matching_id(badge_id, badge.badge_id, "Badge")
    try:
        return publish_badge(orchestrator.store, badge)
    except ProgressionError as exc:
        raise http_error(exc) from exc


@router.post(
    "/users/{user_id}/badges/{badge_id}",
    response_model=AwardedBadgePayload,
    status_code=status.HTTP_201_CREATED,
)
def grant_badge(
    user_id: str,
    badge_id: str,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> AwardedBadgePayload:
    try:
        awarded = orchestrator.grant_badge(user_id, badge_id)
    except ProgressionError as exc:
        raise http_error(exc) from exc
    return badge_payload(awarded)


__all__ = ["router"]
