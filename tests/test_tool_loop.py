from __future__ import annotations

from pathlib import Path

import pytest

from conftest import ScriptedChatModel, create_file_call
from plan_executor.agent.events import ChatMessage, TextChunk, ToolCallRequest
from plan_executor.agent.tool_loop import run_tool_loop
from plan_executor.errors import ModelProviderError


def _messages() -> list[ChatMessage]:
    return [ChatMessage.system("system"), ChatMessage.user("do the task")]


def test_loop_feeds_tool_results_back_until_model_stops(invoker, tmp_path: Path) -> None:
    chunks: list[str] = []
    model = ScriptedChatModel([[TextChunk("Creating."), create_file_call(tmp_path / "a.py")]])

    result = run_tool_loop(
        model=model, messages=_messages(), invoker=invoker, tools=[], emit=chunks.append
    )

    assert result.iterations == 2
    assert result.hit_iteration_cap is False
    assert len(result.tool_calls) == 1
    assert "Successfully created file" in result.tool_output
    follow_up = model.calls[1]
    assert follow_up[2].role == "assistant"
    assert follow_up[2].tool_calls[0].name == "create_file"
    assert follow_up[3].tool_results[0].call_id == "call-1"
    assert follow_up[3].tool_results[0].is_error is False
    assert "Creating." in "".join(chunks)


def test_tool_errors_are_fed_back_not_raised(invoker) -> None:
    model = ScriptedChatModel(
        [[ToolCallRequest(call_id="c1", name="read_file", arguments={"file_path": "relative.txt"})]]
    )

    result = run_tool_loop(model=model, messages=_messages(), invoker=invoker, tools=[])

    assert result.failed_tool_calls == 1
    part = model.calls[1][3].tool_results[0]
    assert part.is_error is True
    assert part.content.startswith("Error: file_path must be absolute")
    assert result.tool_output == ""


def test_failed_tool_results_are_not_classified_output(invoker, tmp_path: Path) -> None:
    target = tmp_path / "app.py"
    model = ScriptedChatModel(
        [
            [
                create_file_call(target, content="x = 1\n"),
                ToolCallRequest(
                    call_id="c2",
                    name="edit_file",
                    arguments={"file_path": str(target), "old_text": "missing", "new_text": "y"},
                ),
            ]
        ]
    )

    result = run_tool_loop(model=model, messages=_messages(), invoker=invoker, tools=[])

    assert result.failed_tool_calls == 1
    assert "Successfully created file" in result.tool_output
    assert "old_text must match" not in result.tool_output
    assert model.calls[1][3].tool_results[1].is_error is True


def test_read_file_content_is_not_classified_output(invoker, tmp_path: Path) -> None:
    source = tmp_path / "errors.py"
    source.write_text("raise ValueError('bad')\n", encoding="utf-8")
    model = ScriptedChatModel(
        [[ToolCallRequest(call_id="c1", name="read_file", arguments={"file_path": str(source)})]]
    )

    result = run_tool_loop(model=model, messages=_messages(), invoker=invoker, tools=[])

    assert result.tool_output == ""
    assert "ValueError" in model.calls[1][3].tool_results[0].content


def test_iteration_cap_stops_loop(invoker, tmp_path: Path) -> None:
    chunks: list[str] = []
    model = ScriptedChatModel(
        [[create_file_call(tmp_path / f"f{index}.py", call_id=f"c{index}")] for index in range(5)]
    )

    result = run_tool_loop(
        model=model,
        messages=_messages(),
        invoker=invoker,
        tools=[],
        max_iterations=3,
        emit=chunks.append,
    )

    assert result.iterations == 3
    assert result.hit_iteration_cap is True
    assert len(model.calls) == 3
    assert "Maximum tool iterations reached" in "".join(chunks)


def test_cancellation_is_observed_before_first_turn(invoker) -> None:
    model = ScriptedChatModel()

    result = run_tool_loop(
        model=model, messages=_messages(), invoker=invoker, tools=[], is_cancelled=lambda: True
    )

    assert result.cancelled is True
    assert result.iterations == 0
    assert model.calls == []


def test_activity_callback_runs_per_tool_call(invoker, tmp_path: Path) -> None:
    beats: list[int] = []
    model = ScriptedChatModel(
        [[create_file_call(tmp_path / "a.py"), create_file_call(tmp_path / "b.py", call_id="c2")]]
    )

    run_tool_loop(
        model=model,
        messages=_messages(),
        invoker=invoker,
        tools=[],
        on_activity=lambda: beats.append(1),
    )

    assert len(beats) == 2


def test_model_failures_surface_as_provider_errors(invoker) -> None:
    model = ScriptedChatModel([RuntimeError("socket closed")])

    with pytest.raises(ModelProviderError, match="socket closed"):
        run_tool_loop(model=model, messages=_messages(), invoker=invoker, tools=[])
