from __future__ import annotations

import threading
from typing import Iterator, List

import pytest

from skillroads.completion import CompletionOrchestrator
from skillroads.roadmap import ModuleDef, SubModuleDef, TrackDefinition
from skillroads.stores import InMemoryProgressionStore, LearnerRecord
from skillroads.telemetry import TelemetryEvent, register_listener, unregister_listener


def abc_track(track_id: str = "python") -> TrackDefinition:
    return TrackDefinition(
        track_id=track_id,
        title="Python Road",
        modules=[
            ModuleDef(
                module_id="A",
                title="Basics",
                level=1,
                sub_modules=[
                    SubModuleDef(id="a1", title="Variables", xp_value=20),
                    SubModuleDef(id="a2", title="Loops", xp_value=30),
                ],
                xp_reward=100,
            ),
            ModuleDef(module_id="B", title="Functions", level=2, prerequisites=["A"], xp_reward=100),
            ModuleDef(module_id="C", title="Classes", level=3, prerequisites=["A", "B"], xp_reward=100),
        ],
    )


def wide_track(width: int, track_id: str = "wide") -> TrackDefinition:
    """One entry module with ``width`` lessons worth 10 XP each."""
    return TrackDefinition(
        track_id=track_id,
        title="Wide Road",
        modules=[
            ModuleDef(
                module_id="A",
                title="Basics",
                is_entry_point=True,
                sub_modules=[SubModuleDef(id=f"s{index}", xp_value=10) for index in range(width)],
            )
        ],
    )


def complete_lessons_in_parallel(
    orchestrator: CompletionOrchestrator, user_id: str, track_id: str, width: int
) -> List[BaseException]:
    """Release ``width`` sub-module completions at once and collect their failures."""
    barrier = threading.Barrier(width)
    errors: List[BaseException] = []

    def _complete(index: int) -> None:
        barrier.wait()
        try:
            orchestrator.complete_sub_module(user_id, track_id, "A", f"s{index}")
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    workers = [threading.Thread(target=_complete, args=(index,)) for index in range(width)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=30)
    return errors


@pytest.fixture
def store() -> InMemoryProgressionStore:
    memory = InMemoryProgressionStore()
    memory.upsert_learner(LearnerRecord(user_id="ada"))
    memory.save_track_def(abc_track())
    return memory


@pytest.fixture
def orchestrator(store: InMemoryProgressionStore) -> CompletionOrchestrator:
    return CompletionOrchestrator(store, store, retry_limit=3)


@pytest.fixture
def telemetry_events() -> Iterator[List[TelemetryEvent]]:
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)
    try:
        yield captured
    finally:
        unregister_listener(captured.append)
