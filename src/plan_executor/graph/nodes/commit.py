"""Commit node: stage the task's files and create one commit per task."""

from __future__ import annotations

import logging

from plan_executor.graph.state import AutoTaskRuntime, AutoTaskState
from plan_executor.integrations.git import committable_files, generate_commit_message

logger = logging.getLogger(__name__)


def run(state: AutoTaskState, *, runtime: AutoTaskRuntime) -> AutoTaskState:
    task = state["task"]
    plan = state["plan"]
    manager = runtime.commit_manager
    if not runtime.auto_commit or manager is None:
        return {"commit": {"attempted": False, "reason": "auto-commit disabled"}}

    files = committable_files(task.files, runtime.workspace_root)
    if not files:
        return {"commit": {"attempted": False, "reason": "no files to commit"}}
    if not manager.is_repository():
        return {"commit": {"attempted": False, "reason": "not a git repository"}}

    message = generate_commit_message(plan.phase, plan.plan_number, task.name, task.action)
    try:
        manager.stage(files)
        result = manager.commit(message)
    except Exception as exc:  # noqa: BLE001
        logger.warning("task_commit event=failed task_id=%s error=%s", task.id, exc)
        return {"commit": {"attempted": True, "success": False, "error": str(exc)}}

    if not result.success:
        logger.warning("task_commit event=failed task_id=%s error=%s", task.id, result.error)
    else:
        logger.info("task_commit event=committed task_id=%s hash=%s", task.id, result.hash)
    return {
        "commit": {
            "attempted": True,
            "success": result.success,
            "hash": result.hash,
            "error": result.error,
            "message": message,
            "files": files,
        }
    }
