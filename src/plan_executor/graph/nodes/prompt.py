"""Prompt node: build the conversation that drives one auto task."""

from __future__ import annotations

from plan_executor.agent.events import ChatMessage
from plan_executor.graph.state import AutoTaskRuntime, AutoTaskState
from plan_executor.plan.models import AutoTask, Plan

SYSTEM_PROMPT = (
    "You are an engineering agent executing one task of a plan inside a software project. "
    "Use the provided tools to make real changes. Do not just describe what to do."
)


def run(state: AutoTaskState, *, runtime: AutoTaskRuntime) -> AutoTaskState:
    prompt = build_task_prompt(
        state["task"],
        plan=state["plan"],
        workspace_root=str(runtime.workspace_root),
        execution_context=state.get("execution_context"),
    )
    return {"messages": [ChatMessage.system(SYSTEM_PROMPT), ChatMessage.user(prompt)]}


def build_task_prompt(
    task: AutoTask,
    *,
    plan: Plan,
    workspace_root: str,
    execution_context: str | None = None,
) -> str:
    files_line = f"**Files to modify:** {', '.join(task.files)}\n\n" if task.files else ""
    context_block = ""
    if execution_context:
        context_block = (
            "**Additional context from the user (the previous run was cancelled):**\n"
            f"{execution_context}\n\n"
        )

    return (
        "**CRITICAL: File Path Requirements**\n"
        f"All file paths MUST be absolute paths. The workspace root is: {workspace_root}\n"
        "When creating or modifying files, always use the full absolute path.\n"
        f'Example: Instead of "src/app.py", use "{workspace_root}/src/app.py"\n\n'
        "**Tools**\n"
        "- create_file / create_directory / edit_file / read_file for file operations\n"
        "- run_command for builds, tests and installs (returns exit code and output)\n"
        "- run_in_terminal for processes that never exit (dev servers, watchers); "
        "it returns immediately\n"
        "- wait_for_port (port, host, timeout_ms) and http_health_check "
        "(url, expected_status, timeout_ms) to confirm a background process is ready\n\n"
        f"**Task:** {task.name}\n\n"
        f"{files_line}"
        f"**Action to perform:**\n{task.action}\n\n"
        f"**Done when:**\n{task.done}\n\n"
        f"**Verification:**\n{task.verify}\n\n"
        f"**Project context:**\n{_plan_context(plan)}\n\n"
        f"{context_block}"
        "Execute this task by making the necessary file changes, then run the "
        "verification. Do not just describe what to do - actually implement it."
    )


def _plan_context(plan: Plan) -> str:
    lines = [f"Phase: {plan.phase}, plan {plan.plan_number:02d}"]
    if plan.objective:
        lines.append(f"Objective: {plan.objective}")
    if plan.purpose:
        lines.append(f"Purpose: {plan.purpose}")
    return "\n".join(lines)
