"""API-level tests for watcher, candidate and execution endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from doomsday_watcher.api import (
    app,
    get_credential_resolver,
    get_stream_registry,
    get_workflow_client,
)
from doomsday_watcher.db.base import get_db
from doomsday_watcher.db.models import CandidateModel, DecisionLogModel
from doomsday_watcher.errors import NotFoundError, UpstreamError
from doomsday_watcher.lifecycle import CredentialResolver, SessionCredentialCache
from doomsday_watcher.workflow import Execution, StreamRegistry

from conftest import make_registration, set_candidate

USER = {"X-User-Id": "user-1"}
INTRUDER = {"X-User-Id": "user-2"}


class FakeWorkflowClient:
    def __init__(self):
        self.submitted = []
        self.fail = False
        self.executions = {}

    async def submit_removal(self, **kwargs):
        if self.fail:
            raise UpstreamError("Workflow engine returned 500", {"status": 500})
        self.submitted.append(kwargs)
        return f"exec-{len(self.submitted)}"

    async def fetch_execution(self, execution_id):
        return self.executions[execution_id]


@pytest.fixture
def workflow():
    return FakeWorkflowClient()


@pytest.fixture
def registry():
    return StreamRegistry()


@pytest.fixture
def client(session_factory, workflow, registry):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    resolver = CredentialResolver(SessionCredentialCache(ttl_seconds=3600))
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_workflow_client] = lambda: workflow
    app.dependency_overrides[get_credential_resolver] = lambda: resolver
    app.dependency_overrides[get_stream_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registered(client):
    """Register the default watcher through the callback endpoint."""
    response = client.post("/watchers", json=make_registration().model_dump())
    assert response.status_code == 201
    detail = client.get("/watchers/watcher-1", headers=USER).json()
    return [c["candidate_id"] for c in sorted(detail["candidates"], key=lambda c: c["candidate_id"])]


def error_code(response):
    return response.json()["error"]["code"]


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestWatchers:
    def test_register_and_list(self, client, registered):
        response = client.get("/watchers", headers=USER)

        assert response.status_code == 200
        watchers = response.json()["watchers"]
        assert [w["watcher_id"] for w in watchers] == ["watcher-1"]
        assert watchers[0]["status"] == "pending_schedule"
        assert watchers[0]["confidence"] == 70

    def test_register_drops_unusable_sources(self, client):
        payload = make_registration(
            observability_urls=[
                {"type": "grafana", "url": ""},
                {"type": "prometheus", "url": "https://prom.example.com"},
            ]
        ).model_dump()

        response = client.post("/watchers", json=payload)

        assert response.status_code == 201
        assert response.json()["observability_sources"] == [
            {"type": "prometheus", "url": "https://prom.example.com", "has_token": False}
        ]
        sources = client.get("/watchers/watcher-1/sources", headers=USER).json()
        assert [s["type"] for s in sources["sources"]] == ["prometheus"]

    def test_duplicate_registration(self, client, registered):
        response = client.post("/watchers", json=make_registration().model_dump())
        assert response.status_code == 409
        assert error_code(response) == "CONFLICT"

    def test_invalid_registration(self, client):
        payload = make_registration().model_dump()
        payload["candidates"][0]["zombie_score"] = 150
        response = client.post("/watchers", json=payload)
        assert response.status_code == 422

    def test_missing_user_header(self, client, registered):
        response = client.get("/watchers")
        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"

    def test_detail(self, client, registered):
        body = client.get("/watchers/watcher-1", headers=USER).json()
        assert body["confidence"] == 70
        assert len(body["candidates"]) == 3
        assert "stored_credential" not in body

    def test_foreign_watcher(self, client, registered):
        response = client.get("/watchers/watcher-1", headers=INTRUDER)
        assert response.status_code == 403
        assert error_code(response) == "OWNERSHIP_VIOLATION"

    def test_missing_watcher(self, client, registered):
        assert client.get("/watchers/nope", headers=USER).status_code == 404

    def test_delete(self, client, registered):
        assert client.delete("/watchers/watcher-1", headers=INTRUDER).status_code == 403
        response = client.delete("/watchers/watcher-1", headers=USER)
        assert response.json() == {"deleted": True, "watcher_id": "watcher-1"}
        assert client.get("/watchers/watcher-1", headers=USER).status_code == 404


class TestSources:
    def test_add_and_remove(self, client, registered):
        response = client.patch(
            "/watchers/watcher-1/sources",
            headers=USER,
            json={
                "action": "add",
                "type": "sentry",
                "url": "https://acme.sentry.io",
                "token": "t",
            },
        )
        assert response.status_code == 200
        assert response.json()["sources"] == [
            {"type": "sentry", "url": "https://acme.sentry.io", "has_token": True}
        ]

        response = client.patch(
            "/watchers/watcher-1/sources", headers=USER, json={"action": "remove", "index": 0}
        )
        assert response.json()["sources"] == []
        assert client.get("/watchers/watcher-1/sources", headers=USER).json() == {"sources": []}

    def test_invalid_url(self, client, registered):
        response = client.patch(
            "/watchers/watcher-1/sources",
            headers=USER,
            json={"action": "add", "type": "sentry", "url": "nope"},
        )
        assert response.status_code == 400

    def test_url_for_wrong_platform(self, client, registered):
        response = client.patch(
            "/watchers/watcher-1/sources",
            headers=USER,
            json={"action": "add", "type": "sentry", "url": "https://s.example.com"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "url"

    def test_unknown_type(self, client, registered):
        response = client.patch(
            "/watchers/watcher-1/sources",
            headers=USER,
            json={"action": "add", "type": "x" * 65, "url": "https://x.example.com"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "type"

    def test_validate_endpoint(self, client):
        response = client.post(
            "/sources/validate",
            json={"type": "grafana", "url": "https://grafana.example.com/d/abc"},
        )
        assert response.json() == {"valid": True, "type": "grafana"}

        response = client.post(
            "/sources/validate", json={"type": "grafana", "url": "https://grafana.example.com"}
        )
        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"

    def test_remove_requires_index(self, client, registered):
        response = client.patch(
            "/watchers/watcher-1/sources", headers=USER, json={"action": "remove"}
        )
        assert response.status_code == 400


class TestScheduleEndpoints:
    def test_schedule_then_pause(self, client, registered):
        candidate_id = registered[0]
        response = client.post(
            f"/candidates/{candidate_id}/schedule",
            headers=USER,
            json={"action": "schedule", "scan_frequency_minutes": 5, "analysis_period_minutes": 60},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["action"] == "schedule"
        assert body["candidate"]["status"] == "active"

        response = client.post(
            f"/candidates/{candidate_id}/schedule",
            headers=USER,
            json={"action": "pause", "reason": "release week"},
        )
        assert response.json()["candidate"]["status"] == "paused"

    def test_bounds_violation(self, client, registered):
        response = client.post(
            f"/candidates/{registered[0]}/schedule",
            headers=USER,
            json={"scan_frequency_minutes": 2, "analysis_period_minutes": 60},
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "scan_frequency_minutes"

    def test_disallowed_transition(self, client, registered):
        response = client.post(
            f"/candidates/{registered[0]}/schedule", headers=USER, json={"action": "pause"}
        )
        assert response.status_code == 409

    def test_foreign_candidate(self, client, registered):
        response = client.post(
            f"/candidates/{registered[0]}/schedule",
            headers=INTRUDER,
            json={"scan_frequency_minutes": 5, "analysis_period_minutes": 60},
        )
        assert response.status_code == 403

    def test_bulk(self, client, registered):
        response = client.post(
            "/candidates/schedule/bulk",
            headers=USER,
            json={
                "candidate_ids": registered,
                "scan_frequency_minutes": 5,
                "analysis_period_minutes": 20,
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["scheduled_count"] == 3
        assert body["watcher_status"] == "active"

    def test_bulk_over_ceiling(self, client, registered):
        response = client.post(
            "/candidates/schedule/bulk",
            headers=USER,
            json={
                "candidate_ids": list(range(1, 102)),
                "scan_frequency_minutes": 5,
                "analysis_period_minutes": 20,
            },
        )
        assert response.status_code == 400

    def test_candidate_detail(self, client, registered):
        body = client.get(f"/candidates/{registered[0]}", headers=USER).json()
        assert body["candidate"]["watcher_name"] == "watcher-1 watcher"
        assert body["observation_stats"]["total_observations"] == 0
        assert body["recent_events"] == []


class TestKillEndpoint:
    def test_credential_required(self, client, registered, session_factory):
        with session_factory() as db:
            set_candidate(db, registered[0], status="pending_review")

        response = client.post(f"/candidates/{registered[0]}/kill", headers=USER)

        assert response.status_code == 428
        error = response.json()["error"]
        assert error["code"] == "CREDENTIAL_REQUIRED"
        assert error["recoverable"] is True

    def test_kill_and_decision_history(self, client, registered, session_factory, workflow):
        with session_factory() as db:
            set_candidate(db, registered[0], status="pending_review")

        response = client.post(
            f"/candidates/{registered[0]}/kill",
            headers=USER,
            json={"credential": "typed-token", "action_source": "email_link"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["execution_id"] == "exec-1"
        assert body["candidate"]["status"] == "confirmed_zombie"
        assert workflow.submitted[0]["credential"] == "typed-token"

        decisions = client.get(f"/candidates/{registered[0]}/decisions", headers=USER).json()
        assert len(decisions["decisions"]) == 1
        assert decisions["decisions"][0]["action_source"] == "email_link"

    def test_upstream_failure(self, client, registered, session_factory, workflow):
        with session_factory() as db:
            set_candidate(db, registered[0], status="pending_review")
        workflow.fail = True

        response = client.post(
            f"/candidates/{registered[0]}/kill", headers=USER, json={"credential": "t"}
        )

        assert response.status_code == 502
        with session_factory() as db:
            assert db.get(CandidateModel, registered[0]).status == "pending_review"
            assert db.query(DecisionLogModel).count() == 0


class TestStats:
    def test_stats(self, client, registered):
        body = client.get("/stats", headers=USER).json()
        assert body["stats"]["watchers"]["total"] == 1
        assert body["stats"]["candidates"]["total"] == 3


def sse_events(text):
    events = []
    for block in text.strip().split("\n\n"):
        event = {"event": "message"}
        for line in block.splitlines():
            field, _, value = line.partition(": ")
            event[field] = value
        event["data"] = json.loads(event["data"])
        events.append(event)
    return events


class TestExecutionStream:
    def test_streams_terminal_update(self, client, workflow, registry):
        workflow.executions["exec-9"] = Execution.model_validate(
            {"id": "exec-9", "state": {"current": "SUCCESS"}, "outputs": {"candidates_found": 4}}
        )

        response = client.get("/executions/exec-9/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert [e["data"]["state"] for e in events] == ["SUCCESS", "SUCCESS"]
        assert events[-1]["data"]["candidates_found"] == 4
        assert not registry.is_active("exec-9")

    def test_second_subscriber_conflicts(self, client, registry):
        registry.acquire("exec-9")
        response = client.get("/executions/exec-9/stream")
        assert response.status_code == 409

    def test_error_event(self, client, workflow):
        async def missing(execution_id):
            raise NotFoundError("Execution not found")

        workflow.fetch_execution = missing

        response = client.get("/executions/exec-404/stream")

        events = sse_events(response.text)
        assert events[-1]["event"] == "error"
        assert events[-1]["data"]["error"]["code"] == "NOT_FOUND"
