"""HTTP surface tests for the progression and admin routers."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from skillroads.completion import CompletionOrchestrator, get_orchestrator
from skillroads.main import app
from skillroads.roadmap import BadgeDef, BadgeRewards
from skillroads.stores import InMemoryProgressionStore


@pytest.fixture
def client(orchestrator: CompletionOrchestrator) -> Iterator[TestClient]:
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_orchestrator, None)


def test_track_state_endpoint(client: TestClient) -> None:
    response = client.get("/api/tracks/python/state", params={"user_id": "ada"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["available_modules"] == ["A"]
    assert payload["modules"]["B"]["state"] == "locked"
    assert payload["modules"]["B"]["missing_prerequisites"] == ["A"]
    assert payload["progress_percent"] == 0.0


def test_track_state_unknown_track_is_404(client: TestClient) -> None:
    response = client.get("/api/tracks/rust/state", params={"user_id": "ada"})
    assert response.status_code == 404


def test_complete_sub_module_endpoint(client: TestClient) -> None:
    body = {"user_id": "ada", "track_id": "python", "module_id": "A", "sub_module_id": "a1"}
    first = client.post("/api/progress/complete-submodule", json=body)
    repeat = client.post("/api/progress/complete-submodule", json=body)

    assert first.status_code == 200
    assert first.json()["xp_awarded"] == 20
    assert first.json()["progress"]["completed_sub_modules"] == [["A", "a1"]]
    assert repeat.status_code == 200
    assert repeat.json()["already_completed"] is True
    assert repeat.json()["xp_awarded"] == 0


def test_complete_module_locked_is_409(client: TestClient) -> None:
    response = client.post(
        "/api/progress/complete-module",
        json={"user_id": "ada", "track_id": "python", "module_id": "B"},
    )
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "module_locked"
    assert detail["missing_prerequisites"] == ["A"]


def test_complete_module_returns_unlocked_modules(client: TestClient) -> None:
    response = client.post(
        "/api/progress/complete-module",
        json={"user_id": "ada", "track_id": "python", "module_id": "A"},
    )
    assert response.status_code == 200
    assert response.json()["newly_unlocked_modules"] == ["B"]


def test_blank_identifiers_are_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/progress/complete-module",
        json={"user_id": "", "track_id": "python", "module_id": "A"},
    )
    assert response.status_code == 422


def test_badge_eligibility_endpoint(client: TestClient, store: InMemoryProgressionStore) -> None:
    store.save_badge_def(
        BadgeDef.model_validate(
            {"badge_id": "steady", "name": "Steady", "unlock_criteria": [{"type": "streak", "threshold": 3}]}
        )
    )
    response = client.get("/api/badges/steady/eligibility", params={"user_id": "ada"})
    assert response.status_code == 200
    assert response.json()["reason"] == "criteria_not_met"

    missing = client.get("/api/badges/nope/eligibility", params={"user_id": "ada"})
    assert missing.status_code == 404


def test_admin_track_publish_validates_graph(client: TestClient) -> None:
    cyclic = {
        "track_id": "loops",
        "title": "Loops",
        "modules": [
            {"module_id": "root", "title": "Root"},
            {"module_id": "x", "title": "X", "prerequisites": ["y"]},
            {"module_id": "y", "title": "Y", "prerequisites": ["x"]},
        ],
    }
    rejected = client.put("/api/admin/tracks/loops", json=cyclic)
    assert rejected.status_code == 422

    mismatched = client.put("/api/admin/tracks/other", json={**cyclic, "modules": []})
    assert mismatched.status_code == 422

    valid = {
        "track_id": "loops",
        "title": "Loops",
        "modules": [
            {"module_id": "x", "title": "X", "level": 1},
            {"module_id": "y", "title": "Y", "level": 2, "prerequisites": ["x"]},
        ],
    }
    accepted = client.put("/api/admin/tracks/loops", json=valid)
    assert accepted.status_code == 200
    assert accepted.json()["modules"][0]["is_entry_point"] is True

    order = client.get("/api/admin/tracks/loops/order")
    assert order.json()["order"] == ["x", "y"]


def test_admin_badge_publish_and_manual_grant(client: TestClient, store: InMemoryProgressionStore) -> None:
    self_referencing = {"badge_id": "loop", "name": "Loop", "prerequisite_badge_ids": ["loop"]}
    assert client.put("/api/admin/badges/loop", json=self_referencing).status_code == 422

    badge = BadgeDef(
        badge_id="mentor",
        name="Mentor",
        rewards=BadgeRewards(xp=25, coins=5),
        unlock_criteria=[{"type": "manual"}],
    )
    published = client.put("/api/admin/badges/mentor", json=badge.model_dump(mode="json"))
    assert published.status_code == 200

    granted = client.post("/api/admin/users/ada/badges/mentor")
    assert granted.status_code == 201
    assert granted.json()["source"] == "manual"
    assert store.get_learner("ada").xp == 25

    again = client.post("/api/admin/users/ada/badges/mentor")
    assert again.status_code == 400
