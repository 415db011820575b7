"""Typed state contract for the auto-task LangGraph pipeline."""

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypedDict

from plan_executor.agent.events import ChatMessage
from plan_executor.agent.model import ChatModel
from plan_executor.integrations.git import CommitManager
from plan_executor.plan.models import AutoTask, Plan
from plan_executor.tools.gateway import ToolInvoker
from plan_executor.verify.classifier import FailureClassifier


@dataclass
class AutoTaskRuntime:
    """Collaborators shared by every node of one coordinator run."""

    model: ChatModel
    invoker: ToolInvoker
    tools: list[dict[str, Any]]
    classifier: FailureClassifier
    workspace_root: Path
    commit_manager: CommitManager | None = None
    auto_commit: bool = True
    max_iterations: int = 50
    emit: Callable[[str], None] | None = None
    is_cancelled: Callable[[], bool] | None = None
    on_activity: Callable[[], None] | None = None
    scaffold_timeout_s: float = 120.0


class AutoTaskState(TypedDict, total=False):
    plan: Plan
    plan_path: str
    task: AutoTask
    task_index: int
    execution_context: str | None
    messages: list[ChatMessage]
    tool_output: str
    tool_loop: dict[str, Any]
    cancelled: bool
    verification: dict[str, Any]
    commit: dict[str, Any]
    scaffolding: dict[str, Any]


def initial_state(
    *,
    plan: Plan,
    plan_path: str,
    task: AutoTask,
    task_index: int,
    execution_context: str | None = None,
) -> AutoTaskState:
    return {
        "plan": plan,
        "plan_path": plan_path,
        "task": task,
        "task_index": task_index,
        "execution_context": execution_context,
        "messages": [],
        "tool_output": "",
        "tool_loop": {},
        "cancelled": False,
        "verification": {},
        "commit": {},
        "scaffolding": {},
    }
