from __future__ import annotations

from typing import List

from skillroads.roadmap import BadgeRewards
from skillroads.telemetry import TelemetryEvent, emit_event, register_listener, unregister_listener


def test_listener_filters_by_event_name() -> None:
    received: List[TelemetryEvent] = []
    register_listener(received.append, events={"badge_awarded"})
    try:
        emit_event("module_completed", user_id="ada")
        emit_event("badge_awarded", user_id="ada", badge_id="first-steps")
    finally:
        unregister_listener(received.append)

    assert [event.name for event in received] == ["badge_awarded"]
    assert received[0].user_id == "ada"


def test_failing_listener_does_not_break_emitter() -> None:
    def explode(event: TelemetryEvent) -> None:
        raise RuntimeError("listener down")

    register_listener(explode)
    try:
        event = emit_event("modules_unlocked", user_id="ada", module_ids=("B", "C"))
    finally:
        unregister_listener(explode)

    assert event.payload["module_ids"] == ["B", "C"]


def test_payload_is_json_ready() -> None:
    event = emit_event("badge_granted_manually", user_id=" ", rewards=BadgeRewards(xp=5), badge_ids={"b", "a"})

    assert event.user_id is None
    assert event.payload["rewards"] == {"xp": 5, "coins": 0, "power_ups": []}
    assert event.payload["badge_ids"] == ["a", "b"]
