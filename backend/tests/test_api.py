from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("LESSONSYNC_LOCAL_STORE_MODE", "memory")

from fakes import FakeRemote, make_enrollment  # noqa: E402
from lessonsync.engine import ProgressSyncEngine, get_sync_engine  # noqa: E402
from lessonsync.main import app  # noqa: E402
from lessonsync.models import Identity  # noqa: E402
from lessonsync.storage import InMemoryLocalStore  # noqa: E402

LESSON_BODY = {
    "program_id": "COLLEGE",
    "sections": [
        {"index": 0, "requires_activity": False},
        {"index": 1, "requires_activity": True},
        {"index": 2, "requires_activity": True},
    ],
}


@pytest.fixture
def engine(remote: FakeRemote) -> ProgressSyncEngine:
    return ProgressSyncEngine(InMemoryLocalStore(), remote)


@pytest.fixture
def client(engine: ProgressSyncEngine):
    app.dependency_overrides[get_sync_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(engine.close)
    app.dependency_overrides.clear()


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_lesson_flow(client: TestClient, remote: FakeRemote) -> None:
    remote.identity = Identity(user_id="user-1")
    remote.enrollment = make_enrollment("user-1")

    session = client.post("/api/session/bootstrap").json()
    assert session["state"] == "ready"
    assert session["user_id"] == "user-1"
    assert session["enrollment"]["id"] == "enr-1"

    lesson = client.put("/api/lessons/1", json=LESSON_BODY)
    assert lesson.status_code == 200
    assert lesson.json()["sections"] == {"0": "unlocked", "1": "locked", "2": "locked"}

    assert client.post("/api/lessons/1/select", json={"index": 2}).status_code == 409
    advanced = client.post("/api/lessons/1/advance")
    assert advanced.json()["current_index"] == 1
    assert client.post("/api/lessons/1/advance").status_code == 409

    short = client.post("/api/lessons/1/sections/1/submission", json={"response_text": "too short"})
    assert short.status_code == 422
    assert short.json()["detail"]["reason"] == "too_short"

    submitted = client.post("/api/lessons/1/sections/1/submission", json={"response_text": "a" * 200})
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "accepted"
    assert submitted.json()["record"]["durability"] == "confirmed"

    again = client.post("/api/lessons/1/sections/1/submission", json={"response_text": "a" * 200})
    assert again.status_code == 409
    assert again.json()["detail"]["reason"] == "already_submitted"

    state = client.get("/api/lessons/1").json()
    assert state["sections"]["1"] == "completed"
    assert state["sections"]["2"] == "unlocked"
    assert state["submitted"] == {"1": True, "2": False}

    progress = client.get("/api/weeks/1/progress").json()
    assert progress["completed_sections"] == 1
    assert progress["quiz_unlocked"] is False

    assert client.delete("/api/lessons/1").status_code == 204
    assert client.get("/api/lessons/1").status_code == 404

    signed_out = client.post("/api/session/sign-out").json()
    assert signed_out["state"] == "checking"
    assert signed_out["user_id"] is None


def test_lessons_need_a_session(client: TestClient) -> None:
    assert client.post("/api/session/bootstrap").json()["state"] == "no_session"
    assert client.put("/api/lessons/1", json=LESSON_BODY).status_code == 401
    assert client.get("/api/weeks/1/progress").status_code == 404


def test_invalid_lesson_structure_is_rejected(client: TestClient, remote: FakeRemote) -> None:
    remote.identity = Identity(user_id="user-1")
    client.post("/api/session/bootstrap")
    body = {"program_id": "COLLEGE", "sections": [{"index": 1}]}
    assert client.put("/api/lessons/1", json=body).status_code == 422


def test_onboarding_endpoint_sets_flag(client: TestClient, remote: FakeRemote) -> None:
    remote.identity = Identity(user_id="user-1")
    remote.enrollment = make_enrollment("user-1")
    client.post("/api/session/bootstrap")

    payload = client.post("/api/session/onboarding").json()

    assert payload["onboarding_complete"] is True
    assert payload["state"] == "ready"
    assert client.get("/api/session").json()["onboarding_complete"] is True


def test_sign_in_endpoint(client: TestClient, remote: FakeRemote) -> None:
    assert client.post("/api/session/bootstrap").json()["state"] == "no_session"
    remote.token_identities = {"token-1": Identity(user_id="user-1")}
    remote.enrollment = make_enrollment("user-1")

    assert client.post("/api/session/sign-in", json={"access_token": "nope"}).status_code == 401
    assert client.post("/api/session/sign-in", json={"access_token": ""}).status_code == 422

    payload = client.post("/api/session/sign-in", json={"access_token": "token-1"}).json()
    assert payload["state"] == "ready"
    assert payload["user_id"] == "user-1"
    assert client.put("/api/lessons/1", json=LESSON_BODY).status_code == 200
