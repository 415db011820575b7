"""Scaffold node: run project generators directly instead of through the model."""

from __future__ import annotations

import logging

from plan_executor.graph.state import AutoTaskRuntime, AutoTaskState
from plan_executor.integrations.scaffolding import run_scaffolding, scaffolding_command

logger = logging.getLogger(__name__)


def run(state: AutoTaskState, *, runtime: AutoTaskRuntime) -> AutoTaskState:
    task = state["task"]
    command = scaffolding_command(task.action)
    if command is None:
        return {"scaffolding": {"detected": False}}

    logger.info("task_scaffold event=start task_id=%s command=%s", task.id, command)
    if runtime.emit is not None:
        runtime.emit("**Scaffolding detected** - protecting .planning/ directory\n\n")
    result = run_scaffolding(
        runtime.workspace_root,
        command,
        timeout_s=runtime.scaffold_timeout_s,
        emit=runtime.emit,
    )
    return {
        "scaffolding": {
            "detected": True,
            "command": command,
            "success": result.success,
            "error": result.error,
        },
        "tool_output": result.output,
        "verification": {"passed": result.success, "reason": result.error, "signature": None},
    }
