from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import FakeCommitManager, ScriptedChatModel, auto_task, create_file_call, verify_task
from plan_executor.agent.events import TextChunk
from plan_executor.api.main import create_app
from plan_executor.config.settings import Settings
from plan_executor.storage import SessionStateStore

PLAN_PATH = ".planning/phases/02-api/02-01-PLAN.md"


@pytest.fixture
def model() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def client(settings: Settings, store: SessionStateStore, model: ScriptedChatModel) -> TestClient:
    app = create_app(
        store=store,
        settings_override=settings,
        model=model,
        commit_manager=FakeCommitManager(),
    )
    return TestClient(app)


def _plan_payload(*tasks: dict) -> dict:
    return {"phase": "02-api", "planNumber": 1, "objective": "Expose API", "tasks": list(tasks)}


def test_health_and_tools(client: TestClient) -> None:
    health = client.get("/health")
    tools = client.get("/tools")

    assert health.status_code == 200
    assert health.json() == {"status": "ok", "service": "plan-executor"}
    assert "create_file" in tools.json()["tools"]
    assert "unknown" not in tools.json()["tools"]


def test_run_pause_inspect_and_resume(
    client: TestClient, model: ScriptedChatModel, tmp_path: Path
) -> None:
    model.turns.extend([[create_file_call(tmp_path / "api.py")], [TextChunk("done")]])
    plan = _plan_payload(verify_task(1), auto_task(2, "Create api", files=["api.py"]))

    paused = client.post("/plans/run", json={"plan": plan, "planPath": PLAN_PATH})

    assert paused.status_code == 200
    body = paused.json()
    assert body["status"] == "paused"
    assert body["taskIndex"] == 0
    assert body["checkpointType"] == "human-verify"

    state = client.get("/plans/state", params={"plan_path": PLAN_PATH})
    assert state.status_code == 200
    assert state.json()["executionState"]["pausedAtCheckpoint"] is True
    assert state.json()["running"] is False
    assert state.json()["cancelled"] is None

    resumed = client.post(
        "/plans/run", json={"plan": plan, "planPath": PLAN_PATH, "resumeSignal": "approved"}
    )

    assert resumed.status_code == 200
    body = resumed.json()
    assert body["status"] == "completed"
    assert [result["taskId"] for result in body["results"]] == [1, 2]
    assert body["results"][1]["commitHash"] == "c0ffee1"
    assert client.get("/plans/state", params={"plan_path": PLAN_PATH}).json()["executionState"] is None


def test_invalid_plan_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/plans/run", json={"plan": {"tasks": []}, "planPath": PLAN_PATH}
    )

    assert response.status_code == 422
    assert "no tasks" in response.json()["detail"]


def test_reset_clears_saved_state(client: TestClient) -> None:
    plan = _plan_payload(verify_task(1))
    client.post("/plans/run", json={"plan": plan, "planPath": PLAN_PATH})

    reset = client.delete("/plans/state", params={"plan_path": PLAN_PATH})

    assert reset.json() == {"planPath": PLAN_PATH, "deleted": True}
    assert client.get("/plans/state", params={"plan_path": PLAN_PATH}).json()["executionState"] is None


def test_cancel_without_running_plan_returns_404(client: TestClient) -> None:
    response = client.post("/plans/cancel", json={"planPath": PLAN_PATH})

    assert response.status_code == 404


def test_cancel_registry_reaches_running_plan(client: TestClient) -> None:
    registry = client.app.state.cancellations
    token = registry.open(PLAN_PATH)

    response = client.post("/plans/cancel", json={"planPath": PLAN_PATH})
    state = client.get("/plans/state", params={"plan_path": PLAN_PATH}).json()

    assert response.status_code == 200
    assert token.is_cancelled is True
    assert state["running"] is True
    registry.close(PLAN_PATH, token)


def test_state_reports_cancelled_info_inside_window(
    client: TestClient, store: SessionStateStore
) -> None:
    store.save_cancelled(PLAN_PATH, 2)

    state = client.get("/plans/state", params={"plan_path": PLAN_PATH}).json()
    other = client.get("/plans/state", params={"plan_path": "other.md"}).json()

    assert state["cancelled"]["taskIndex"] == 2
    assert state["executionState"] is None
    assert other["cancelled"] is None
