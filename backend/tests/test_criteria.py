from __future__ import annotations

from typing import get_args

import pytest

from skillroads import criteria
from skillroads.criteria import (
    compare,
    evaluate_badge,
    evaluate_criterion,
    explain_badge,
    parse_badge_definitions,
    parse_criterion,
    resolve_new_badges,
)
from skillroads.roadmap import (
    BadgeDef,
    CounterCriterion,
    Criterion,
    ExamPassCriterion,
    ManualCriterion,
    ModuleCompletionCriterion,
    SpeedDemonCriterion,
    TrackCompletionCriterion,
    UnknownCriterion,
    UserStatsSnapshot,
)
from skillroads.telemetry import TelemetryEvent


def _stats(**fields) -> UserStatsSnapshot:
    return UserStatsSnapshot(user_id="ada", **fields)


def _badge(badge_id: str, *criteria_payloads: dict, **fields) -> BadgeDef:
    return BadgeDef.model_validate(
        {"badge_id": badge_id, "name": badge_id.title(), "unlock_criteria": list(criteria_payloads), **fields}
    )


@pytest.mark.parametrize(
    "value, threshold, operator, expected",
    [
        (5, 5, ">=", True),
        (4, 5, ">=", False),
        (6, 5, ">", True),
        (5, 5, ">", False),
        (5, 5, "=", True),
        (4, 5, "<", True),
        (5, 5, "<=", True),
        (6, 5, "<=", False),
    ],
)
def test_compare_operators(value: float, threshold: float, operator: str, expected: bool) -> None:
    assert compare(value, threshold, operator) is expected


def test_speed_demon_badge_counts_attempts() -> None:
    badge = _badge("speed-demon", {"type": "total_attempts", "operator": ">=", "threshold": 5})

    assert evaluate_badge(badge, _stats(total_attempts=5)) is True
    assert evaluate_badge(badge, _stats(total_attempts=4)) is False


def test_all_criteria_must_hold() -> None:
    badge = _badge(
        "steady",
        {"type": "total_attempts", "operator": ">=", "threshold": 5},
        {"type": "level", "operator": ">=", "threshold": 2},
    )

    assert evaluate_badge(badge, _stats(total_attempts=5, level=1)) is False
    assert evaluate_badge(badge, _stats(total_attempts=1, level=2)) is False
    assert evaluate_badge(badge, _stats(total_attempts=5, level=2)) is True


def test_badge_is_earned_once() -> None:
    badge = _badge("steady", {"type": "total_attempts", "operator": ">=", "threshold": 5})
    stats = _stats(total_attempts=6)

    first = resolve_new_badges([badge], stats)
    assert [entry.badge_id for entry in first] == ["steady"]

    held = stats.model_copy(update={"earned_badge_ids": {"steady"}})
    assert resolve_new_badges([badge], held) == []
    assert resolve_new_badges([badge, badge], stats) == first
    assert explain_badge(badge, held).reason == "already_earned"


def test_criterion_parsing_dispatches_on_type() -> None:
    assert isinstance(parse_criterion({"type": "streak", "threshold": 3}), CounterCriterion)
    assert isinstance(parse_criterion({"type": "speed_demon", "threshold": 30}), SpeedDemonCriterion)
    assert isinstance(parse_criterion({"type": "exam_pass", "quiz_id": "final"}), ExamPassCriterion)
    assert isinstance(parse_criterion({"type": "manual"}), ManualCriterion)

    unknown = parse_criterion({"type": "moon_phase", "operator": ">=", "threshold": 1})
    assert isinstance(unknown, UnknownCriterion)
    assert unknown.type == "moon_phase"


def test_every_criterion_variant_has_an_evaluator() -> None:
    union = get_args(get_args(Criterion)[0])
    variants = {get_args(member)[0] for member in union}
    assert variants == set(criteria._EVALUATORS)


def test_manual_and_unknown_criteria_never_pass() -> None:
    generous = _stats(total_attempts=1000, level=99, streak=365)
    assert evaluate_criterion(ManualCriterion(type="manual"), generous) is False
    assert evaluate_criterion(UnknownCriterion(type="moon_phase"), generous) is False

    manual_badge = _badge("mentor", {"type": "manual"}, {"type": "level", "threshold": 1})
    assert explain_badge(manual_badge, generous).reason == "manual_only"
    assert resolve_new_badges([manual_badge], generous) == []


def test_unknown_criterion_fails_closed_and_is_reported(telemetry_events: list[TelemetryEvent]) -> None:
    badge = _badge(
        "mystery",
        {"type": "level", "threshold": 1},
        {"type": "moon_phase", "threshold": 1},
    )
    stats = _stats(level=5)

    verdict = explain_badge(badge, stats)
    assert verdict.reason == "malformed"
    assert verdict.failed_criteria[0]["type"] == "moon_phase"
    assert resolve_new_badges([badge], stats) == []
    assert any(event.name == "badge_skipped_malformed" for event in telemetry_events)


def test_badge_without_criteria_is_earned_on_first_evaluation() -> None:
    badge = _badge("welcome")
    assert evaluate_badge(badge, _stats()) is True
    assert resolve_new_badges([badge], _stats()) == [badge]
    assert explain_badge(badge, _stats(earned_badge_ids={"welcome"})).reason == "already_earned"


def test_event_flag_criteria() -> None:
    stats = _stats(
        perfect_score_count=2,
        fastest_quiz_seconds=42.0,
        tournament_wins=1,
        best_quiz_scores={"final": 85.0, "midterm": 60.0},
    )

    assert evaluate_criterion(parse_criterion({"type": "perfect_score", "threshold": 2}), stats)
    assert not evaluate_criterion(parse_criterion({"type": "perfect_score", "threshold": 3}), stats)
    assert evaluate_criterion(parse_criterion({"type": "speed_demon", "threshold": 60}), stats)
    assert not evaluate_criterion(parse_criterion({"type": "speed_demon", "threshold": 42}), stats)
    assert not evaluate_criterion(parse_criterion({"type": "speed_demon", "threshold": 60}), _stats())
    assert evaluate_criterion(parse_criterion({"type": "tournament_win"}), stats)
    assert evaluate_criterion(parse_criterion({"type": "exam_pass", "quiz_id": "final"}), stats)
    assert not evaluate_criterion(parse_criterion({"type": "exam_pass", "quiz_id": "midterm"}), stats)
    assert not evaluate_criterion(parse_criterion({"type": "exam_pass", "quiz_id": "unseen"}), stats)


def test_structural_criteria() -> None:
    stats = _stats(
        completed_modules={"python": {"A", "B"}, "rust": {"R1"}},
        completed_track_ids={"rust"},
    )

    assert evaluate_criterion(TrackCompletionCriterion(type="track_completion", track_id="rust"), stats)
    assert evaluate_criterion(
        TrackCompletionCriterion(type="track_completion", track_id="python", operator=">=", threshold=2), stats
    )
    assert not evaluate_criterion(
        TrackCompletionCriterion(type="track_completion", track_id="python", threshold=3), stats
    )
    assert not evaluate_criterion(
        TrackCompletionCriterion(type="track_completion", track_id="python", operator="<", threshold=2), stats
    )
    assert not evaluate_criterion(TrackCompletionCriterion(type="track_completion", track_id="go"), stats)
    assert evaluate_criterion(TrackCompletionCriterion(type="track_completion", threshold=1), stats)
    assert evaluate_criterion(ModuleCompletionCriterion(type="module_completion", module_id="B"), stats)
    assert not evaluate_criterion(
        ModuleCompletionCriterion(type="module_completion", module_id="B", track_id="rust"), stats
    )
    assert evaluate_criterion(ModuleCompletionCriterion(type="module_completion", threshold=3), stats)
    assert not evaluate_criterion(
        ModuleCompletionCriterion(type="module_completion", track_id="python", threshold=3), stats
    )


def test_prerequisite_badges_resolve_in_one_pass() -> None:
    veteran = _badge(
        "veteran",
        {"type": "total_attempts", "threshold": 1},
        prerequisite_badge_ids=["rookie"],
    )
    rookie = _badge("rookie", {"type": "total_attempts", "threshold": 1})
    stats = _stats(total_attempts=3)

    verdict = explain_badge(veteran, stats)
    assert verdict.reason == "missing_prerequisites"
    assert verdict.missing_prerequisites == ["rookie"]

    awarded = resolve_new_badges([veteran, rookie], stats)
    assert [badge.badge_id for badge in awarded] == ["rookie", "veteran"]


def test_criteria_not_met_lists_failures() -> None:
    badge = _badge(
        "climber",
        {"type": "level", "threshold": 2},
        {"type": "streak", "threshold": 7},
    )
    verdict = explain_badge(badge, _stats(level=3, streak=2))
    assert verdict.reason == "criteria_not_met"
    assert [entry["type"] for entry in verdict.failed_criteria] == ["streak"]


def test_parse_badge_definitions_skips_broken_payloads() -> None:
    badges = parse_badge_definitions(
        [
            {"badge_id": "ok", "name": "OK", "unlock_criteria": [{"type": "level", "threshold": 2}]},
            {"badge_id": "broken", "name": "Broken", "rarity": "mythic"},
            {"name": "No id"},
        ]
    )
    assert [badge.badge_id for badge in badges] == ["ok"]
