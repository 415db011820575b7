from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from plan_executor.agent.events import ChatMessage, ModelEvent, TextChunk, ToolCallRequest
from plan_executor.config.settings import Settings
from plan_executor.execution.coordinator import ExecutionCoordinator
from plan_executor.integrations.git import CommitResult
from plan_executor.integrations.issues import IssueLogResult, TaskFailure
from plan_executor.plan.loader import load_plan
from plan_executor.plan.models import Plan
from plan_executor.storage import InMemoryKeyValueStore, SessionStateStore
from plan_executor.tools import BuiltinTools, ToolInvoker, build_registry, tool_declarations

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class ScriptedChatModel:
    """Test-only chat model that replays one scripted turn per ``stream`` call.

    A turn is a list of events or an exception instance to raise. Once the
    script runs out every turn answers with plain text and no tool calls.
    """

    def __init__(self, turns: Sequence[Any] = ()) -> None:
        self.turns: list[Any] = list(turns)
        self.calls: list[list[ChatMessage]] = []

    def stream(self, messages: Sequence[ChatMessage], tools: Sequence[dict[str, Any]]) -> Iterator[ModelEvent]:
        self.calls.append(list(messages))
        if not self.turns:
            return iter([TextChunk("Done.")])
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return iter(turn)


class FakeCommitManager:
    def __init__(self, *, repository: bool = True) -> None:
        self.repository = repository
        self.staged: list[list[str]] = []
        self.messages: list[str] = []

    def is_repository(self) -> bool:
        return self.repository

    def stage(self, files: Sequence[str]) -> None:
        self.staged.append(list(files))

    def commit(self, message: str) -> CommitResult:
        self.messages.append(message)
        return CommitResult(success=True, hash=f"c0ffee{len(self.messages)}")


class FakeIssueLogger:
    def __init__(self) -> None:
        self.failures: list[TaskFailure] = []

    def log_failure(self, failure: TaskFailure) -> IssueLogResult:
        self.failures.append(failure)
        return IssueLogResult(success=True, issue_id=f"EXE-01-{failure.task_id:02d}")


def create_file_call(path: Path, content: str = "x = 1\n", call_id: str = "call-1") -> ToolCallRequest:
    return ToolCallRequest(
        call_id=call_id,
        name="create_file",
        arguments={"file_path": str(path), "content": content},
    )


def run_command_call(command: str, call_id: str = "call-cmd") -> ToolCallRequest:
    return ToolCallRequest(call_id=call_id, name="run_command", arguments={"command": command})


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        workspace_root=str(tmp_path),
        state_backend="memory",
        execution_mode="guided",
        tool_retry_base_delay_s=0.0,
        cancel_resume_window_s=300.0,
        auto_commit=True,
    )


@pytest.fixture
def store() -> SessionStateStore:
    return SessionStateStore(InMemoryKeyValueStore())


@pytest.fixture
def invoker(tmp_path: Path) -> ToolInvoker:
    tools = BuiltinTools(workspace_root=tmp_path, log_dir=tmp_path / "logs", command_timeout_s=30)
    return ToolInvoker(registry=build_registry(tools), max_retries=2, sleep=lambda _delay: None)


@pytest.fixture
def make_coordinator(
    settings: Settings,
    store: SessionStateStore,
    invoker: ToolInvoker,
) -> Callable[..., ExecutionCoordinator]:
    def _make(
        model: ScriptedChatModel | None = None,
        *,
        commit_manager: FakeCommitManager | None = None,
        issue_logger: FakeIssueLogger | None = None,
        confirm_task: Callable[[str], bool] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ExecutionCoordinator:
        return ExecutionCoordinator(
            store=store,
            model=model if model is not None else ScriptedChatModel(),
            invoker=invoker,
            tools=tool_declarations(invoker.registry),
            settings=settings,
            commit_manager=commit_manager,
            issue_logger=issue_logger,
            confirm_task=confirm_task,
            clock=clock or (lambda: FIXED_NOW),
        )

    return _make


def auto_task(task_id: int, name: str, files: Sequence[str] = ()) -> dict[str, Any]:
    return {
        "id": task_id,
        "type": "auto",
        "name": name,
        "action": f"Implement {name.lower()}",
        "files": list(files),
        "verify": "pytest -q",
        "done": f"{name} works",
    }


def verify_task(task_id: int) -> dict[str, Any]:
    return {
        "id": task_id,
        "type": "checkpoint:human-verify",
        "whatBuilt": "Login form",
        "howToVerify": ["Open /login", "Submit valid credentials"],
        "resumeSignal": "Type approved or describe issues",
    }


def decision_task(task_id: int) -> dict[str, Any]:
    return {
        "id": task_id,
        "type": "checkpoint:decision",
        "decision": "Session storage",
        "context": "Sessions must survive restarts",
        "options": [
            {"id": "redis", "name": "Redis", "pros": "fast", "cons": "extra service"},
            {"id": "postgres", "name": "Postgres", "pros": "already deployed", "cons": "slower"},
        ],
        "resumeSignal": "Select redis or postgres",
    }


def make_plan(*tasks: dict[str, Any], phase: str = "01-foundation", plan_number: int = 2) -> Plan:
    return load_plan(
        {
            "phase": phase,
            "planNumber": plan_number,
            "objective": "Build the login flow",
            "tasks": list(tasks),
            "verification": ["Login works end to end"],
            "successCriteria": ["Users can sign in"],
        }
    )
