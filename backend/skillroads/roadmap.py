"""Domain models for tracks, badges, learner progress and completion results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

ModuleStatus = Literal["locked", "available", "completed"]
ComparisonOperator = Literal[">=", ">", "=", "<", "<="]
BadgeRarity = Literal["common", "rare", "epic", "legendary"]
AwardSource = Literal["criteria", "module", "manual"]

COUNTER_CRITERIA = frozenset({"total_attempts", "total_score", "streak", "level", "friend_count"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SubModuleDef(BaseModel):
    """Lesson inside a module. Sub-modules inherit their parent's lock."""

    id: str = Field(..., min_length=1)
    title: str = "Untitled Lesson"
    xp_value: int = Field(default=0, ge=0)


class ModuleDef(BaseModel):
    """Node of a track's module graph."""

    module_id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    level: int = 0
    prerequisites: List[str] = Field(default_factory=list)
    sub_modules: List[SubModuleDef] = Field(default_factory=list)
    quiz_ids: List[str] = Field(default_factory=list)
    xp_reward: int = Field(default=100, ge=0)
    badge_id: Optional[str] = None
    is_entry_point: bool = False

    def sub_module(self, sub_module_id: str) -> Optional[SubModuleDef]:
        return next((entry for entry in self.sub_modules if entry.id == sub_module_id), None)


class TrackDefinition(BaseModel):
    """Authored roadmap for a single subject."""

    track_id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    modules: List[ModuleDef] = Field(default_factory=list)

    def module(self, module_id: str) -> Optional[ModuleDef]:
        return next((entry for entry in self.modules if entry.module_id == module_id), None)

    def module_ids(self) -> List[str]:
        return [entry.module_id for entry in self.modules]


class TrackProgress(BaseModel):
    """Per-user, per-track mutable progress record."""

    user_id: str
    track_id: str
    completed_modules: List[str] = Field(default_factory=list)
    unlocked_modules: List[str] = Field(default_factory=list)
    completed_sub_modules: List[Tuple[str, str]] = Field(default_factory=list)
    version: int = Field(default=0, ge=0)
    last_accessed: Optional[datetime] = None

    def is_module_completed(self, module_id: str) -> bool:
        return module_id in self.completed_modules

    def is_sub_module_completed(self, module_id: str, sub_module_id: str) -> bool:
        return (module_id, sub_module_id) in self.completed_sub_modules

    def completed_sub_modules_for(self, module_id: str) -> Set[str]:
        return {sub_id for owner, sub_id in self.completed_sub_modules if owner == module_id}


class QuizAttempt(BaseModel):
    quiz_id: str
    percentage: float = Field(ge=0.0, le=100.0)
    completed_at: datetime = Field(default_factory=_now)
    time_taken_seconds: Optional[float] = Field(default=None, ge=0.0)


# ----------------------------------------------------------------------
# Badge criteria
# ----------------------------------------------------------------------


class CounterCriterion(BaseModel):
    """Cumulative learner counter compared against a threshold."""

    type: Literal["total_attempts", "total_score", "streak", "level", "friend_count"]
    operator: ComparisonOperator = ">="
    threshold: float


class PerfectScoreCriterion(BaseModel):
    type: Literal["perfect_score"]
    operator: ComparisonOperator = ">="
    threshold: float = 1


class SpeedDemonCriterion(BaseModel):
    """Fastest recorded quiz must beat ``threshold`` seconds."""

    type: Literal["speed_demon"]
    threshold: float = Field(gt=0)


class TournamentWinCriterion(BaseModel):
    type: Literal["tournament_win"]
    operator: ComparisonOperator = ">="
    threshold: float = 1


class ExamPassCriterion(BaseModel):
    """Best attempt on ``quiz_id`` must reach ``threshold`` percent."""

    type: Literal["exam_pass"]
    quiz_id: str = Field(..., min_length=1)
    threshold: float = Field(default=70, ge=0, le=100)


class TrackCompletionCriterion(BaseModel):
    """Completed modules in ``track_id``, or completed tracks when unset, against ``threshold``."""

    type: Literal["track_completion"]
    track_id: Optional[str] = None
    operator: ComparisonOperator = ">="
    threshold: float = 1


class ModuleCompletionCriterion(BaseModel):
    type: Literal["module_completion"]
    module_id: Optional[str] = None
    track_id: Optional[str] = None
    operator: ComparisonOperator = ">="
    threshold: float = 1


class ManualCriterion(BaseModel):
    """Marks a badge as administrator-granted only."""

    type: Literal["manual"]


class UnknownCriterion(BaseModel):
    """Placeholder for criterion types this engine does not understand."""

    model_config = ConfigDict(extra="allow")

    type: str = ""


_CRITERION_TAGS = {
    "perfect_score": "perfect_score",
    "speed_demon": "speed_demon",
    "tournament_win": "tournament_win",
    "exam_pass": "exam_pass",
    "track_completion": "track_completion",
    "module_completion": "module_completion",
    "manual": "manual",
}


def _criterion_tag(value: Any) -> str:
    if isinstance(value, dict):
        raw_type = value.get("type")
    else:
        raw_type = getattr(value, "type", None)
    if isinstance(value, UnknownCriterion):
        return "unknown"
    if raw_type in COUNTER_CRITERIA:
        return "counter"
    return _CRITERION_TAGS.get(raw_type, "unknown") if isinstance(raw_type, str) else "unknown"


Criterion = Annotated[
    Union[
        Annotated[CounterCriterion, Tag("counter")],
        Annotated[PerfectScoreCriterion, Tag("perfect_score")],
        Annotated[SpeedDemonCriterion, Tag("speed_demon")],
        Annotated[TournamentWinCriterion, Tag("tournament_win")],
        Annotated[ExamPassCriterion, Tag("exam_pass")],
        Annotated[TrackCompletionCriterion, Tag("track_completion")],
        Annotated[ModuleCompletionCriterion, Tag("module_completion")],
        Annotated[ManualCriterion, Tag("manual")],
        Annotated[UnknownCriterion, Tag("unknown")],
    ],
    Discriminator(_criterion_tag),
]


class PowerUpReward(BaseModel):
    type: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)


class BadgeRewards(BaseModel):
    xp: int = Field(default=0, ge=0)
    coins: int = Field(default=0, ge=0)
    power_ups: List[PowerUpReward] = Field(default_factory=list)


class BadgeDef(BaseModel):
    """Badge definition. Every criterion must hold for the badge to be earned."""

    badge_id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    icon: str = ""
    rarity: BadgeRarity = "common"
    rewards: BadgeRewards = Field(default_factory=BadgeRewards)
    unlock_criteria: List[Criterion] = Field(default_factory=list)
    prerequisite_badge_ids: List[str] = Field(default_factory=list)

    def is_manual_only(self) -> bool:
        return any(isinstance(criterion, ManualCriterion) for criterion in self.unlock_criteria)


class AwardedBadge(BaseModel):
    """Badge earned during a single completion or grant event."""

    badge_id: str
    name: str
    rarity: BadgeRarity = "common"
    source: AwardSource = "criteria"
    rewards: BadgeRewards = Field(default_factory=BadgeRewards)
    earned_at: datetime = Field(default_factory=_now)


class UserStatsSnapshot(BaseModel):
    """Read-only projection of learner statistics used for badge evaluation."""

    user_id: str
    version: int = Field(default=0, ge=0)
    xp: int = 0
    coins: int = 0
    level: int = 1
    streak: int = 0
    total_attempts: int = 0
    total_score: float = 0
    friend_count: int = 0
    tournament_wins: int = 0
    perfect_score_count: int = 0
    fastest_quiz_seconds: Optional[float] = None
    best_quiz_scores: Dict[str, float] = Field(default_factory=dict)
    power_ups: Dict[str, int] = Field(default_factory=dict)
    earned_badge_ids: Set[str] = Field(default_factory=set)
    completed_modules: Dict[str, Set[str]] = Field(default_factory=dict)
    completed_track_ids: Set[str] = Field(default_factory=set)
    just_completed_module_id: Optional[str] = None
    just_completed_track_id: Optional[str] = None

    def completed_module_count(self) -> int:
        return sum(len(modules) for modules in self.completed_modules.values())

    def has_completed_module(self, module_id: str, track_id: Optional[str] = None) -> bool:
        if track_id is not None:
            return module_id in self.completed_modules.get(track_id, set())
        return any(module_id in modules for modules in self.completed_modules.values())

    def with_track_progress(
        self,
        track: TrackDefinition,
        progress: TrackProgress,
        *,
        just_completed_module_id: Optional[str] = None,
    ) -> "UserStatsSnapshot":
        """Overlay the in-flight progress record of ``track`` onto this snapshot."""
        completed = dict(self.completed_modules)
        completed[track.track_id] = set(progress.completed_modules)
        completed_tracks = set(self.completed_track_ids)
        just_completed_track_id: Optional[str] = None
        track_ids = set(track.module_ids())
        if track_ids and track_ids <= completed[track.track_id]:
            if track.track_id not in completed_tracks and just_completed_module_id:
                just_completed_track_id = track.track_id
            completed_tracks.add(track.track_id)
        return self.model_copy(
            update={
                "completed_modules": completed,
                "completed_track_ids": completed_tracks,
                "just_completed_module_id": just_completed_module_id,
                "just_completed_track_id": just_completed_track_id,
            },
            deep=True,
        )


class ModuleResolution(BaseModel):
    """Display state of a single module for one learner."""

    module_id: str
    state: ModuleStatus
    progress_percent: float = 0.0
    completed_sub_items: int = 0
    total_sub_items: int = 0
    missing_prerequisites: List[str] = Field(default_factory=list)


class CompletionResult(BaseModel):
    """Outcome of a completion command."""

    user_id: str
    track_id: str
    progress: TrackProgress
    new_badges: List[AwardedBadge] = Field(default_factory=list)
    xp_awarded: int = 0
    coins_awarded: int = 0
    newly_unlocked_modules: List[str] = Field(default_factory=list)
    already_completed: bool = False


__all__ = [
    "AwardSource",
    "AwardedBadge",
    "BadgeDef",
    "BadgeRarity",
    "BadgeRewards",
    "COUNTER_CRITERIA",
    "ComparisonOperator",
    "CompletionResult",
    "CounterCriterion",
    "Criterion",
    "ExamPassCriterion",
    "ManualCriterion",
    "ModuleCompletionCriterion",
    "ModuleDef",
    "ModuleResolution",
    "ModuleStatus",
    "PerfectScoreCriterion",
    "PowerUpReward",
    "QuizAttempt",
    "SpeedDemonCriterion",
    "SubModuleDef",
    "TournamentWinCriterion",
    "TrackCompletionCriterion",
    "TrackDefinition",
    "TrackProgress",
    "UnknownCriterion",
    "UserStatsSnapshot",
]
