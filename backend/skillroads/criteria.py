"""Badge criteria evaluation and badge resolution."""

from __future__ import annotations

import logging
import operator as _operator
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Type

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .roadmap import (
    BadgeDef,
    ComparisonOperator,
    CounterCriterion,
    Criterion,
    ExamPassCriterion,
    ManualCriterion,
    ModuleCompletionCriterion,
    PerfectScoreCriterion,
    SpeedDemonCriterion,
    TournamentWinCriterion,
    TrackCompletionCriterion,
    UnknownCriterion,
    UserStatsSnapshot,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">=": _operator.ge,
    ">": _operator.gt,
    "=": _operator.eq,
    "<": _operator.lt,
    "<=": _operator.le,
}

_criterion_adapter: TypeAdapter[Criterion] = TypeAdapter(Criterion)


def compare(value: float, threshold: float, operator: ComparisonOperator) -> bool:
    return _OPERATORS[operator](value, threshold)


def parse_criterion(payload: Any) -> Criterion:
    return _criterion_adapter.validate_python(payload)


def _counter(criterion: CounterCriterion, stats: UserStatsSnapshot) -> bool:
    return compare(getattr(stats, criterion.type), criterion.threshold, criterion.operator)


def _perfect_score(criterion: PerfectScoreCriterion, stats: UserStatsSnapshot) -> bool:
    return compare(stats.perfect_score_count, criterion.threshold, criterion.operator)


def _speed_demon(criterion: SpeedDemonCriterion, stats: UserStatsSnapshot) -> bool:
    if stats.fastest_quiz_seconds is None:
        return False
    return stats.fastest_quiz_seconds < criterion.threshold


def _tournament_win(criterion: TournamentWinCriterion, stats: UserStatsSnapshot) -> bool:
    return compare(stats.tournament_wins, criterion.threshold, criterion.operator)


def _exam_pass(criterion: ExamPassCriterion, stats: UserStatsSnapshot) -> bool:
    best = stats.best_quiz_scores.get(criterion.quiz_id)
    return best is not None and best >= criterion.threshold


def _track_completion(criterion: TrackCompletionCriterion, stats: UserStatsSnapshot) -> bool:
    if criterion.track_id is not None:
        completed = len(stats.completed_modules.get(criterion.track_id, set()))
        return compare(completed, criterion.threshold, criterion.operator)
    return compare(len(stats.completed_track_ids), criterion.threshold, criterion.operator)


def _module_completion(criterion: ModuleCompletionCriterion, stats: UserStatsSnapshot) -> bool:
    if criterion.module_id is not None:
        return stats.has_completed_module(criterion.module_id, criterion.track_id)
    if criterion.track_id is not None:
        count = len(stats.completed_modules.get(criterion.track_id, set()))
    else:
        count = stats.completed_module_count()
    return compare(count, criterion.threshold, criterion.operator)


def _manual(criterion: ManualCriterion, stats: UserStatsSnapshot) -> bool:
    return False


def _unknown(criterion: UnknownCriterion, stats: UserStatsSnapshot) -> bool:
    logger.warning("Unknown badge criterion type %r; failing closed.", criterion.type)
    return False


_EVALUATORS: Dict[Type[BaseModel], Callable[[Any, UserStatsSnapshot], bool]] = {
    CounterCriterion: _counter,
    PerfectScoreCriterion: _perfect_score,
    SpeedDemonCriterion: _speed_demon,
    TournamentWinCriterion: _tournament_win,
    ExamPassCriterion: _exam_pass,
    TrackCompletionCriterion: _track_completion,
    ModuleCompletionCriterion: _module_completion,
    ManualCriterion: _manual,
    UnknownCriterion: _unknown,
}


def evaluate_criterion(criterion: Criterion, stats: UserStatsSnapshot) -> bool:
    """Evaluate one criterion against a stats snapshot. Never raises for bad input."""
    evaluator = _EVALUATORS.get(type(criterion))
    if evaluator is None:
        logger.warning("No evaluator registered for %s; failing closed.", type(criterion).__name__)
        return False
    return evaluator(criterion, stats)


EligibilityReason = Literal[
    "eligible",
    "already_earned",
    "manual_only",
    "malformed",
    "missing_prerequisites",
    "criteria_not_met",
]


class BadgeEligibility(BaseModel):
    badge_id: str
    eligible: bool
    reason: EligibilityReason
    failed_criteria: List[Dict[str, Any]] = Field(default_factory=list)
    missing_prerequisites: List[str] = Field(default_factory=list)


def explain_badge(badge: BadgeDef, stats: UserStatsSnapshot) -> BadgeEligibility:
    """Decide whether ``badge`` would be auto-awarded and say why."""
    if badge.badge_id in stats.earned_badge_ids:
        return BadgeEligibility(badge_id=badge.badge_id, eligible=False, reason="already_earned")
    if badge.is_manual_only():
        return BadgeEligibility(badge_id=badge.badge_id, eligible=False, reason="manual_only")
    unknown = [criterion for criterion in badge.unlock_criteria if isinstance(criterion, UnknownCriterion)]
    if unknown:
        return BadgeEligibility(
            badge_id=badge.badge_id,
            eligible=False,
            reason="malformed",
            failed_criteria=[criterion.model_dump() for criterion in unknown],
        )
    missing = [
        prerequisite
        for prerequisite in badge.prerequisite_badge_ids
        if prerequisite not in stats.earned_badge_ids
    ]
    if missing:
        return BadgeEligibility(
            badge_id=badge.badge_id,
            eligible=False,
            reason="missing_prerequisites",
            missing_prerequisites=missing,
        )
    failed = [
        criterion.model_dump()
        for criterion in badge.unlock_criteria
        if not evaluate_criterion(criterion, stats)
    ]
    if failed:
        return BadgeEligibility(
            badge_id=badge.badge_id,
            eligible=False,
            reason="criteria_not_met",
            failed_criteria=failed,
        )
    return BadgeEligibility(badge_id=badge.badge_id, eligible=True, reason="eligible")


def evaluate_badge(badge: BadgeDef, stats: UserStatsSnapshot) -> bool:
    """True when every criterion holds and the learner does not hold the badge yet."""
    return explain_badge(badge, stats).eligible


def resolve_new_badges(badges: Iterable[BadgeDef], stats: UserStatsSnapshot) -> List[BadgeDef]:
    """Return the badges newly earned for ``stats``, in definition order per pass.

    Resolution repeats until no further badge unlocks, so a badge earned in
    this event can satisfy another badge's prerequisite in the same event.
    """
    earned = set(stats.earned_badge_ids)
    pending: List[BadgeDef] = []
    seen_ids = set(earned)
    for badge in badges:
        if badge.badge_id in seen_ids:
            continue
        seen_ids.add(badge.badge_id)
        pending.append(badge)

    awarded: List[BadgeDef] = []
    progressed = True
    while progressed and pending:
        progressed = False
        snapshot = stats.model_copy(update={"earned_badge_ids": set(earned)})
        remaining: List[BadgeDef] = []
        for badge in pending:
            verdict = explain_badge(badge, snapshot)
            if verdict.eligible:
                awarded.append(badge)
                earned.add(badge.badge_id)
                progressed = True
                continue
            if verdict.reason == "malformed":
                logger.warning("Skipping badge %s with malformed criteria.", badge.badge_id)
                emit_event("badge_skipped_malformed", badge_id=badge.badge_id, user_id=stats.user_id)
                continue
            remaining.append(badge)
        pending = remaining
    return awarded


def parse_badge_definitions(payloads: Iterable[Dict[str, Any]]) -> List[BadgeDef]:
    """Validate stored badge payloads, logging and skipping the broken ones."""
    badges: List[BadgeDef] = []
    for payload in payloads:
        badge_id: Optional[str] = payload.get("badge_id") if isinstance(payload, dict) else None
        try:
            badges.append(BadgeDef.model_validate(payload))
        except ValidationError as exc:
            logger.warning("Skipping malformed badge definition %s: %s", badge_id, exc)
            emit_event("badge_skipped_malformed", badge_id=badge_id, error=str(exc))
    return badges


__all__ = [
    "BadgeEligibility",
    "compare",
    "evaluate_badge",
    "evaluate_criterion",
    "explain_badge",
    "parse_badge_definitions",
    "parse_criterion",
    "resolve_new_badges",
]
