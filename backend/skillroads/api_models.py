"""Pydantic payloads exchanged with the roadmap client and the admin editor."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .completion import TrackStateView
from .criteria import BadgeEligibility
from .roadmap import AwardedBadge, CompletionResult, ModuleResolution, TrackProgress
from .stores import LearnerRecord


class CompleteSubModuleRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    track_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    sub_module_id: str = Field(..., min_length=1)


class CompleteModuleRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    track_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)


class PowerUpPayload(BaseModel):
    type: str
    quantity: int


class RewardsPayload(BaseModel):
    xp: int = 0
    coins: int = 0
    power_ups: List[PowerUpPayload] = Field(default_factory=list)


class AwardedBadgePayload(BaseModel):
    badge_id: str
    name: str
    rarity: str
    source: Literal["criteria", "module", "manual"]
    rewards: RewardsPayload
    earned_at: datetime


class TrackProgressPayload(BaseModel):
    user_id: str
    track_id: str
    completed_modules: List[str] = Field(default_factory=list)
    unlocked_modules: List[str] = Field(default_factory=list)
    completed_sub_modules: List[List[str]] = Field(default_factory=list)
    version: int = 0
    last_accessed: Optional[datetime] = None


class CompletionResponsePayload(BaseModel):
    user_id: str
    track_id: str
    progress: TrackProgressPayload
    new_badges: List[AwardedBadgePayload] = Field(default_factory=list)
    xp_awarded: int = 0
    coins_awarded: int = 0
    newly_unlocked_modules: List[str] = Field(default_factory=list)
    already_completed: bool = False


class ModuleStatePayload(BaseModel):
    module_id: str
    state: Literal["locked", "available", "completed"]
    progress_percent: float
    completed_sub_items: int
    total_sub_items: int
    missing_prerequisites: List[str] = Field(default_factory=list)


class TrackStatePayload(BaseModel):
    user_id: str
    track_id: str
    modules: Dict[str, ModuleStatePayload] = Field(default_factory=dict)
    available_modules: List[str] = Field(default_factory=list)
    progress_percent: float = 0.0


class BadgeEligibilityPayload(BaseModel):
    badge_id: str
    eligible: bool
    reason: str
    failed_criteria: List[Dict[str, Any]] = Field(default_factory=list)
    missing_prerequisites: List[str] = Field(default_factory=list)


class LearnerPayload(BaseModel):
    user_id: str
    xp: int
    coins: int
    level: int
    streak: int
    power_ups: Dict[str, int] = Field(default_factory=dict)
    badges: List[AwardedBadgePayload] = Field(default_factory=list)


def badge_payload(badge: AwardedBadge) -> AwardedBadgePayload:
    return AwardedBadgePayload(
        badge_id=badge.badge_id,
        name=badge.name,
        rarity=badge.rarity,
        source=badge.source,
        rewards=RewardsPayload(
            xp=badge.rewards.xp,
            coins=badge.rewards.coins,
            power_ups=[
                PowerUpPayload(type=power_up.type, quantity=power_up.quantity)
                for power_up in badge.rewards.power_ups
            ],
        ),
        earned_at=badge.earned_at,
    )


def progress_payload(progress: TrackProgress) -> TrackProgressPayload:
    return TrackProgressPayload(
        user_id=progress.user_id,
        track_id=progress.track_id,
        completed_modules=list(progress.completed_modules),
        unlocked_modules=list(progress.unlocked_modules),
        completed_sub_modules=[list(pair) for pair in progress.completed_sub_modules],
        version=progress.version,
        last_accessed=progress.last_accessed,
    )


def completion_payload(result: CompletionResult) -> CompletionResponsePayload:
    return CompletionResponsePayload(
        user_id=result.user_id,
        track_id=result.track_id,
        progress=progress_payload(result.progress),
        new_badges=[badge_payload(badge) for badge in result.new_badges],
        xp_awarded=result.xp_awarded,
        coins_awarded=result.coins_awarded,
        newly_unlocked_modules=list(result.newly_unlocked_modules),
        already_completed=result.already_completed,
    )


def _module_state_payload(resolution: ModuleResolution) -> ModuleStatePayload:
    return ModuleStatePayload(
        module_id=resolution.module_id,
        state=resolution.state,
        progress_percent=resolution.progress_percent,
        completed_sub_items=resolution.completed_sub_items,
        total_sub_items=resolution.total_sub_items,
        missing_prerequisites=list(resolution.missing_prerequisites),
    )


def track_state_payload(view: TrackStateView) -> TrackStatePayload:
    return TrackStatePayload(
        user_id=view.user_id,
        track_id=view.track_id,
        modules={module_id: _module_state_payload(resolution) for module_id, resolution in view.modules.items()},
        available_modules=list(view.available_modules),
        progress_percent=view.progress_percent,
    )


def eligibility_payload(verdict: BadgeEligibility) -> BadgeEligibilityPayload:
    return BadgeEligibilityPayload.model_validate(verdict.model_dump())


def learner_payload(learner: LearnerRecord) -> LearnerPayload:
    return LearnerPayload(
        user_id=learner.user_id,
        xp=learner.xp,
        coins=learner.coins,
        level=learner.level,
        streak=learner.streak,
        power_ups=dict(learner.power_ups),
        badges=[badge_payload(badge) for badge in learner.badges],
    )


__all__ = [
    "AwardedBadgePayload",
    "BadgeEligibilityPayload",
    "CompleteModuleRequest",
    "CompleteSubModuleRequest",
    "CompletionResponsePayload",
    "LearnerPayload",
    "ModuleStatePayload",
    "TrackProgressPayload",
    "TrackStatePayload",
    "badge_payload",
    "completion_payload",
    "eligibility_payload",
    "learner_payload",
    "progress_payload",
    "track_state_payload",
]
