from __future__ import annotations

import json
from typing import Any

import pytest

from conftest import auto_task, decision_task, make_plan, verify_task
from plan_executor.agent.events import ChatMessage, TextChunk, ToolCallRequest, ToolResultPart
from plan_executor.agent.model import OpenAIChatModel, parse_completion, to_openai_messages
from plan_executor.errors import ModelProviderError
from plan_executor.execution import render
from plan_executor.graph.nodes.prompt import build_task_prompt
from plan_executor.plan.models import TaskResult


def test_parse_completion_returns_text_and_tool_calls() -> None:
    events = parse_completion(
        {
            "choices": [
                {
                    "message": {
                        "content": "Creating the file.",
                        "tool_calls": [
                            {
                                "id": "call_a",
                                "type": "function",
                                "function": {
                                    "name": "create_file",
                                    "arguments": json.dumps({"file_path": "/w/a.py", "content": ""}),
                                },
                            },
                            {"function": {"name": "run_command", "arguments": "not json"}},
                        ],
                    }
                }
            ]
        }
    )

    assert events[0] == TextChunk("Creating the file.")
    assert events[1] == ToolCallRequest(
        call_id="call_a", name="create_file", arguments={"file_path": "/w/a.py", "content": ""}
    )
    assert events[2].call_id == "call_1"
    assert events[2].arguments == {"_raw": "not json"}


def test_parse_completion_rejects_malformed_response() -> None:
    with pytest.raises(ModelProviderError):
        parse_completion({"choices": []})


def test_openai_messages_carry_tool_calls_and_results() -> None:
    call = ToolCallRequest(call_id="c1", name="read_file", arguments={"file_path": "/w/a.py"})
    payload = to_openai_messages(
        [
            ChatMessage.system("sys"),
            ChatMessage(role="assistant", tool_calls=(call,)),
            ChatMessage(role="user", tool_results=(ToolResultPart("c1", "read_file", "body"),)),
        ]
    )

    assert payload[0] == {"role": "system", "content": "sys"}
    assert payload[1]["tool_calls"][0]["function"]["name"] == "read_file"
    assert json.loads(payload[1]["tool_calls"][0]["function"]["arguments"]) == {"file_path": "/w/a.py"}
    assert payload[2] == {"role": "tool", "tool_call_id": "c1", "content": "body"}


def test_openai_model_wraps_request_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    model = OpenAIChatModel(
        api_key="sk-test", model="gpt-test", base_url="http://model.local/v1", max_retries=1, backoff_s=0
    )
    attempts: list[dict[str, Any]] = []

    def _fail(request_body: dict[str, Any]) -> dict[str, Any]:
        attempts.append(request_body)
        raise RuntimeError("Model request failed with status 500: boom")

    monkeypatch.setattr(model, "_request_once", _fail)

    with pytest.raises(ModelProviderError, match="status 500"):
        list(model.stream([ChatMessage.user("hi")], [{"type": "function"}]))
    assert len(attempts) == 2
    assert attempts[0]["tool_choice"] == "auto"


def test_openai_model_requires_api_key() -> None:
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        OpenAIChatModel(api_key="", model="m", base_url="http://x")


def test_task_prompt_includes_task_details_and_context() -> None:
    plan = make_plan(auto_task(1, "Create user model", files=["src/model.py"]))

    prompt = build_task_prompt(
        plan.tasks[0],
        plan=plan,
        workspace_root="/work/project",
        execution_context="Use SQLAlchemy 2.0 style",
    )

    assert "Create user model" in prompt
    assert "src/model.py" in prompt
    assert "/work/project" in prompt
    assert "Use SQLAlchemy 2.0 style" in prompt
    assert "pytest -q" in prompt


def test_task_prompt_without_context_has_no_context_block() -> None:
    plan = make_plan(auto_task(1, "Create user model"))

    prompt = build_task_prompt(plan.tasks[0], plan=plan, workspace_root="/work")

    assert "Additional context from the user" not in prompt


def test_checkpoint_rendering_is_deterministic() -> None:
    plan = make_plan(verify_task(1), decision_task(2))

    verify = render.render_checkpoint(plan.tasks[0], 0, 2)
    decision = render.render_checkpoint(plan.tasks[1], 1, 2)

    assert verify == render.render_checkpoint(plan.tasks[0], 0, 2)
    assert verify.startswith("### Task 1/2: Checkpoint - Verify Implementation")
    assert "1. Open /login" in verify
    assert "**redis: Redis**" in decision
    assert "- *Cons:* slower" in decision


def test_final_report_counts_outcomes() -> None:
    plan = make_plan(auto_task(1, "A"), auto_task(2, "B"), auto_task(3, "C"))
    results = [
        TaskResult(task_id=1, success=True, name="A", files=["a.py"], commit_hash="abc"),
        TaskResult(task_id=2, success=False, name="B", skipped=True),
    ]

    report = render.render_final_report(plan, results, decisions={}, mode="manual")

    assert "**Tasks:** 1/3 completed, 1 skipped, 1 not executed" in report
    assert "+ **Task 1:** A *(completed)* [`abc`]" in report
    assert "- **Task 3:** C *(not executed)*" in report
    assert "- `a.py`" in report
    assert "- [ ] Users can sign in" in report
