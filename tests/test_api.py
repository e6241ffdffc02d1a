import asyncio
import threading

import pytest
from conftest import FakeClient, sample_text
from fastapi.testclient import TestClient

from text_humanizer import config
from text_humanizer.api.main import _run_until_disconnect, app, get_orchestrator
from text_humanizer.poller import PollCancelled
from text_humanizer.undetectable import JobResult


@pytest.fixture
def api():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signup(api, username="writer") -> str:
    r = api.post("/v1/users", json={"username": username, "full_name": "Test Writer"})
    assert r.status_code == 200
    return r.json()["data"]["id"]


def _use_client(make_orchestrator, client) -> None:
    app.dependency_overrides[get_orchestrator] = lambda: make_orchestrator(client)


def test_signup_and_balance(api) -> None:
    user_id = _signup(api)

    r = api.get(f"/v1/credits/{user_id}")
    assert r.status_code == 200
    bal = r.json()["data"]["balance"]
    assert bal["credits_used"] == 0
    assert bal["max_credits"] == 100
    assert bal["available_credits"] == 100
    assert bal["subscription_tier"] == "free"


def test_duplicate_username_conflicts(api) -> None:
    _signup(api)
    r = api.post("/v1/users", json={"username": "writer"})
    assert r.status_code == 409


def test_subscription_change(api) -> None:
    user_id = _signup(api)

    r = api.post(f"/v1/users/{user_id}/subscription", json={"tier": "basic"}, headers={"x-user-id": user_id})
    assert r.status_code == 200
    assert r.json()["data"]["max_credits"] == 1000

    other = api.post(f"/v1/users/{user_id}/subscription", json={"tier": "enterprise"}, headers={"x-user-id": "intruder"})
    assert other.status_code == 403


def test_project_crud(api) -> None:
    user_id = _signup(api)
    headers = {"x-user-id": user_id}

    created = api.post("/v1/projects", json={"title": "Draft", "content": "hello"}, headers=headers)
    assert created.status_code == 200
    project_id = created.json()["data"]["id"]

    r = api.patch(f"/v1/projects/{project_id}", json={"title": "Renamed", "mode": "casual"}, headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["title"] == "Renamed"
    assert data["content"] == "hello"
    assert data["mode"] == "casual"

    listed = api.get("/v1/projects", headers=headers).json()["data"]
    assert [p["id"] for p in listed] == [project_id]

    assert api.get(f"/v1/projects/{project_id}", headers={"x-user-id": "intruder"}).status_code == 403
    assert api.delete(f"/v1/projects/{project_id}", headers=headers).status_code == 200
    assert api.get(f"/v1/projects/{project_id}", headers=headers).status_code == 404


def test_projects_require_login(api) -> None:
    assert api.get("/v1/projects").status_code == 401


def test_humanize_success(api, make_orchestrator) -> None:
    user_id = _signup(api)
    _use_client(make_orchestrator, FakeClient(job_id="abc", results=[JobResult(id="abc", output="humanized text")]))

    r = api.post("/v1/humanize", json={"text": sample_text(500), "mode": "creative"}, headers={"x-user-id": user_id})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["humanized_text"] == "humanized text"
    assert data["document_id"] == "abc"
    assert data["credits_charged"] == 5
    assert data["credits_used"] == 5
    assert data["project"]["humanization_document_id"] == "abc"

    job = api.get("/v1/humanize/jobs/abc", headers={"x-user-id": user_id})
    assert job.status_code == 200
    assert job.json()["data"]["status"] == "committed"


def test_humanize_insufficient_credits(api, make_orchestrator) -> None:
    user_id = _signup(api)
    client = FakeClient()
    _use_client(make_orchestrator, client)

    r = api.post("/v1/humanize", json={"text": sample_text(10001)}, headers={"x-user-id": user_id})
    assert r.status_code == 402
    detail = r.json()["detail"]
    assert detail["code"] == "INSUFFICIENT_CREDITS"
    assert detail["required"] == 101
    assert detail["shortfall"] == 1
    assert client.submitted == []


def test_humanize_validation_errors(api, make_orchestrator) -> None:
    user_id = _signup(api)
    _use_client(make_orchestrator, FakeClient())

    short = api.post("/v1/humanize", json={"text": "short text"}, headers={"x-user-id": user_id})
    assert short.status_code == 400
    assert short.json()["detail"]["code"] == "TOO_SHORT"

    anonymous = api.post("/v1/humanize", json={"text": sample_text(100)})
    assert anonymous.status_code == 401


def test_humanize_timeout_reports_job_id(api, make_orchestrator) -> None:
    user_id = _signup(api)
    _use_client(make_orchestrator, FakeClient(job_id="xyz"))

    r = api.post("/v1/humanize", json={"text": sample_text(200)}, headers={"x-user-id": user_id})
    assert r.status_code == 504
    assert r.json()["detail"]["job_id"] == "xyz"
    assert api.get(f"/v1/credits/{user_id}").json()["data"]["balance"]["credits_used"] == 0


def test_admin_reset_requires_token(api) -> None:
    assert api.post("/v1/admin/credits/reset", json={}).status_code == 401
    r = api.post("/v1/admin/credits/reset", json={}, headers={"x-admin-token": "test-admin-token"})
    assert r.status_code == 200
    assert r.json()["data"]["users_reset"] == 0


def test_patch_cannot_write_humanized_content(api) -> None:
    user_id = _signup(api)
    headers = {"x-user-id": user_id}
    project_id = api.post("/v1/projects", json={"content": "hello"}, headers=headers).json()["data"]["id"]

    r = api.patch(f"/v1/projects/{project_id}", json={"humanized_content": "forged"}, headers=headers)
    assert r.status_code == 422
    assert api.get(f"/v1/projects/{project_id}", headers=headers).json()["data"]["humanized_content"] is None


@pytest.mark.parametrize("field", ["title", "content"])
def test_patch_rejects_null_required_fields(api, field) -> None:
    user_id = _signup(api)
    headers = {"x-user-id": user_id}
    project_id = api.post("/v1/projects", json={"title": "Draft", "content": "hello"}, headers=headers).json()["data"]["id"]

    r = api.patch(f"/v1/projects/{project_id}", json={field: None}, headers=headers)
    assert r.status_code == 422
    data = api.get(f"/v1/projects/{project_id}", headers=headers).json()["data"]
    assert (data["title"], data["content"]) == ("Draft", "hello")


def test_humanize_unknown_project_is_404(api, make_orchestrator) -> None:
    user_id = _signup(api)
    client = FakeClient()
    _use_client(make_orchestrator, client)

    r = api.post(
        "/v1/humanize", json={"text": sample_text(100), "project_id": "missing"}, headers={"x-user-id": user_id}
    )
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "PROJECT_NOT_FOUND"
    assert client.submitted == []


class _GoneRequest:
    async def is_disconnected(self) -> bool:
        return True


class _ConnectedRequest:
    async def is_disconnected(self) -> bool:
        return False


def test_disconnect_sets_cancel_event(monkeypatch) -> None:
    monkeypatch.setattr(config.settings, "disconnect_check_sec", 0.01)
    cancel = threading.Event()

    def blocking_poll(event):
        if not event.wait(5):
            return "finished"
        raise PollCancelled("abc")

    with pytest.raises(PollCancelled):
        asyncio.run(_run_until_disconnect(_GoneRequest(), cancel, blocking_poll, cancel))
    assert cancel.is_set()


def test_connected_client_gets_result(monkeypatch) -> None:
    monkeypatch.setattr(config.settings, "disconnect_check_sec", 0.01)
    cancel = threading.Event()

    result = asyncio.run(_run_until_disconnect(_ConnectedRequest(), cancel, lambda: "done"))

    assert result == "done"
    assert not cancel.is_set()
