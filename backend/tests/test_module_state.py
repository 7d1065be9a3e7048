from __future__ import annotations

import pytest

from skillroads.errors import TrackDefinitionError
from skillroads.module_state import (
    available_module_ids,
    entry_point_ids,
    newly_available,
    resolve_track_state,
    topological_order,
    track_progress_percent,
    validate_track_definition,
    with_explicit_entry_point,
)
from skillroads.roadmap import ModuleDef, QuizAttempt, SubModuleDef, TrackDefinition, TrackProgress

from conftest import abc_track


def _progress(**fields) -> TrackProgress:
    return TrackProgress(user_id="ada", track_id="python", **fields)


def _states(track: TrackDefinition, progress: TrackProgress, **kwargs) -> dict[str, str]:
    return {module_id: entry.state for module_id, entry in resolve_track_state(track, progress, **kwargs).items()}


def test_prerequisite_chain_unlocks_step_by_step() -> None:
    track = abc_track()

    assert _states(track, _progress()) == {"A": "available", "B": "locked", "C": "locked"}
    assert _states(track, _progress(completed_modules=["A"])) == {
        "A": "completed",
        "B": "available",
        "C": "locked",
    }
    assert _states(track, _progress(completed_modules=["A", "B"]))["C"] == "available"


def test_locked_module_reports_missing_prerequisites() -> None:
    resolution = resolve_track_state(abc_track(), _progress(completed_modules=["A"]))["C"]
    assert resolution.state == "locked"
    assert resolution.missing_prerequisites == ["B"]


def test_unlocked_override_makes_module_available() -> None:
    states = _states(abc_track(), _progress(unlocked_modules=["C"]))
    assert states["C"] == "available"
    assert states["B"] == "locked"


def test_only_lowest_level_root_is_available_on_empty_progress() -> None:
    track = TrackDefinition(
        track_id="python",
        title="Linear",
        modules=[
            ModuleDef(module_id="intro", title="Intro", level=1),
            ModuleDef(module_id="warmup", title="Warm-up", level=0),
            ModuleDef(module_id="deep", title="Deep dive", level=2),
        ],
    )

    assert entry_point_ids(track) == {"warmup"}
    assert _states(track, _progress()) == {"intro": "locked", "warmup": "available", "deep": "locked"}


def test_root_modules_follow_linear_fallback() -> None:
    track = TrackDefinition(
        track_id="python",
        title="Linear",
        modules=[
            ModuleDef(module_id="m1", title="One", level=1),
            ModuleDef(module_id="m2", title="Two", level=1),
            ModuleDef(module_id="m3", title="Three", level=2),
        ],
    )

    states = _states(track, _progress(completed_modules=["m1"]))
    assert states == {"m1": "completed", "m2": "available", "m3": "locked"}
    assert resolve_track_state(track, _progress(completed_modules=["m1"]))["m3"].missing_prerequisites == ["m2"]


def test_explicit_entry_points_replace_implicit_one() -> None:
    track = TrackDefinition(
        track_id="python",
        title="Two doors",
        modules=[
            ModuleDef(module_id="web", title="Web", level=1, is_entry_point=True),
            ModuleDef(module_id="data", title="Data", level=1, is_entry_point=True),
            ModuleDef(module_id="ml", title="ML", level=2, prerequisites=["data"]),
        ],
    )

    assert _states(track, _progress()) == {"web": "available", "data": "available", "ml": "locked"}


def test_progress_percent_counts_sub_modules_and_passed_quizzes() -> None:
    track = TrackDefinition(
        track_id="python",
        title="Quizzes",
        modules=[
            ModuleDef(
                module_id="A",
                title="Basics",
                sub_modules=[SubModuleDef(id="a1"), SubModuleDef(id="a2"), SubModuleDef(id="a3")],
                quiz_ids=["quiz-a"],
            )
        ],
    )
    progress = _progress(completed_sub_modules=[("A", "a1"), ("A", "ghost")])

    failing = resolve_track_state(track, progress, attempts=[QuizAttempt(quiz_id="quiz-a", percentage=69.9)])["A"]
    assert failing.completed_sub_items == 1
    assert failing.total_sub_items == 4
    assert failing.progress_percent == 25.0

    passing = resolve_track_state(track, progress, attempts=[QuizAttempt(quiz_id="quiz-a", percentage=70)])["A"]
    assert passing.progress_percent == 50.0

    strict = resolve_track_state(
        track,
        progress,
        attempts=[QuizAttempt(quiz_id="quiz-a", percentage=75)],
        passing_threshold=80,
    )["A"]
    assert strict.completed_sub_items == 1


def test_module_without_sub_items_reports_zero_percent() -> None:
    track = TrackDefinition(track_id="python", title="Empty", modules=[ModuleDef(module_id="A", title="A")])
    resolution = resolve_track_state(track, _progress())["A"]
    assert resolution.total_sub_items == 0
    assert resolution.progress_percent == 0.0


def test_all_sub_modules_done_does_not_complete_module() -> None:
    progress = _progress(completed_sub_modules=[("A", "a1"), ("A", "a2")])
    resolution = resolve_track_state(abc_track(), progress)["A"]
    assert resolution.progress_percent == 100.0
    assert resolution.state == "available"


def test_resolver_does_not_mutate_progress() -> None:
    progress = _progress(completed_modules=["A"], completed_sub_modules=[("A", "a1")])
    snapshot = progress.model_dump()
    resolve_track_state(abc_track(), progress)
    assert progress.model_dump() == snapshot


def test_track_overview_helpers() -> None:
    track = abc_track()
    before = resolve_track_state(track, _progress())
    after = resolve_track_state(track, _progress(completed_modules=["A"]))

    assert newly_available(before, after) == ["B"]
    assert available_module_ids(after) == ["B"]
    assert track_progress_percent(after) == 33.33
    assert track_progress_percent({}) == 0.0


def test_topological_order_prefers_level_then_authoring_order() -> None:
    modules = [
        ModuleDef(module_id="C", title="C", level=3, prerequisites=["A", "B"]),
        ModuleDef(module_id="B", title="B", level=2, prerequisites=["A"]),
        ModuleDef(module_id="A", title="A", level=1),
        ModuleDef(module_id="Z", title="Z", level=1),
    ]
    assert topological_order(modules) == ["A", "Z", "B", "C"]


@pytest.mark.parametrize(
    "modules, message",
    [
        ([ModuleDef(module_id="A", title="A", prerequisites=["A"])], "itself"),
        ([ModuleDef(module_id="A", title="A", prerequisites=["missing"])], "unknown prerequisite"),
        (
            [
                ModuleDef(module_id="root", title="Root"),
                ModuleDef(module_id="A", title="A", prerequisites=["B"]),
                ModuleDef(module_id="B", title="B", prerequisites=["A"]),
            ],
            "cycle",
        ),
    ],
)
def test_topological_order_rejects_invalid_graphs(modules: list[ModuleDef], message: str) -> None:
    with pytest.raises(TrackDefinitionError, match=message):
        topological_order(modules)


def test_validate_track_definition_rejects_duplicates() -> None:
    duplicate_modules = TrackDefinition(
        track_id="python",
        title="Dupes",
        modules=[ModuleDef(module_id="A", title="A"), ModuleDef(module_id="A", title="Again")],
    )
    with pytest.raises(TrackDefinitionError, match="more than once"):
        validate_track_definition(duplicate_modules)

    duplicate_subs = TrackDefinition(
        track_id="python",
        title="Dupes",
        modules=[ModuleDef(module_id="A", title="A", sub_modules=[SubModuleDef(id="x"), SubModuleDef(id="x")])],
    )
    with pytest.raises(TrackDefinitionError, match="duplicate sub-module"):
        validate_track_definition(duplicate_subs)


def test_validate_track_definition_returns_order() -> None:
    assert validate_track_definition(abc_track()) == ["A", "B", "C"]


def test_explicit_entry_point_migration() -> None:
    track = abc_track()
    migrated = with_explicit_entry_point(track)

    assert [module.is_entry_point for module in migrated.modules] == [True, False, False]
    assert not any(module.is_entry_point for module in track.modules)
    assert with_explicit_entry_point(migrated) is migrated
    assert _states(migrated, _progress()) == _states(track, _progress())
