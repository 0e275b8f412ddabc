from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from adept.dependencies import get_approval_store, get_assistant_pipeline, get_handoff_monitor
from adept.main import app
from adept.services.approvals import InMemoryApprovalStore
from tests.helpers.stubs import PipelineHarness

NEEDS_INFO_HANDOFF = """EXECUTION_HANDOFF
Status: needs_info
Actions:
- none
Data:
- none
Errors:
- none
Missing:
- Repository
Follow-up:
- Which repository?
Draft:
- none
"""


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_root_health(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "Adept assistant running"}


def test_metrics_endpoint_exposes_prometheus_text(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "adept_pipeline_runs_total" in response.text


def test_respond_runs_pipeline_and_returns_reply(client):
    harness = PipelineHarness(executor_replies=[NEEDS_INFO_HANDOFF], presenter_replies=["Which **repository**?"])
    app.dependency_overrides[get_assistant_pipeline] = lambda: harness.pipeline
    app.dependency_overrides[get_handoff_monitor] = lambda: harness.monitor

    response = client.post(
        "/api/v1/assistant/respond",
        json={
            "text": "Open a PR for the fix",
            "history": [{"role": "user", "content": "The login bug"}, {"role": "assistant", "content": "Noted."}],
            "workspace_id": "T1",
            "user_id": "U1",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "Which *repository*?"
    assert body["status_updates"] == ["is thinking..."]
    assert len(harness.executor_model.calls[0]) == 4

    metrics = client.get("/api/v1/handoff/metrics").json()
    assert metrics["total"] == 1
    assert metrics["parse_failures"] == 0


def test_respond_returns_apology_when_pipeline_fails(client):
    def _explode(_messages):
        raise RuntimeError("model offline")

    harness = PipelineHarness(executor_replies=[_explode])
    app.dependency_overrides[get_assistant_pipeline] = lambda: harness.pipeline

    response = client.post("/api/v1/assistant/respond", json={"text": "hi"})

    assert response.status_code == 200
    assert response.json()["reply"] == "_Sorry, I encountered an error processing your request._"


def test_respond_rejects_empty_text(client):
    response = client.post("/api/v1/assistant/respond", json={"text": ""})

    assert response.status_code == 422


def test_approval_endpoints_list_and_resolve(client):
    store = InMemoryApprovalStore()
    request = asyncio.run(store.request_approval("tool_call", "stripe_refund", "stripe", {"charge": "ch_1"}, "U1"))
    app.dependency_overrides[get_approval_store] = lambda: store

    pending = client.get("/api/v1/approvals").json()
    assert [item["id"] for item in pending] == [request.id]

    resolved = client.post(f"/api/v1/approvals/{request.id}/resolve", json={"approved": False, "reviewer": "ops"})
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "rejected"

    again = client.post(f"/api/v1/approvals/{request.id}/resolve", json={"approved": True})
    assert again.status_code == 409
    missing = client.post("/api/v1/approvals/unknown/resolve", json={"approved": True})
    assert missing.status_code == 404
