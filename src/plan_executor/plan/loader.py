"""Load plans given as JSON task records.

Parsing the human-authored plan document is done upstream; this module only
validates the task-record shape handed over at the loader boundary:

    {"phase": "04-execution", "planNumber": 2, "objective": "...",
     "tasks": [{"id": 1, "type": "auto", "name": "...", ...}, ...]}

A bare list of task records is accepted as well.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from plan_executor.errors import PlanLoadError
from plan_executor.plan.models import TASK_LIST_ADAPTER, Plan


def load_plan(payload: dict[str, Any] | list[Any]) -> Plan:
    try:
        if isinstance(payload, list):
            return Plan(tasks=tuple(TASK_LIST_ADAPTER.validate_python(payload)))
        plan = Plan.model_validate(payload)
    except ValidationError as exc:
        raise PlanLoadError(f"Invalid plan: {exc}") from exc
    _validate_task_ids(plan)
    return plan


def load_plan_file(path: str | Path) -> Plan:
    plan_path = Path(path)
    try:
        raw = plan_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PlanLoadError(f"Could not read plan file {plan_path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PlanLoadError(f"Plan file {plan_path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, (dict, list)):
        raise PlanLoadError(f"Plan file {plan_path} must contain an object or a list")
    return load_plan(payload)


def _validate_task_ids(plan: Plan) -> None:
    if not plan.tasks:
        raise PlanLoadError("Plan contains no tasks")
    seen: set[int] = set()
    for task in plan.tasks:
        if task.id in seen:
            raise PlanLoadError(f"Duplicate task id: {task.id}")
        seen.add(task.id)
