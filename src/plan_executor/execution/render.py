"""Markdown rendering of checkpoints, pauses, cancellations and the final report.

Every function is a pure function of its inputs so a paused checkpoint renders
identically after a restart.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from plan_executor.config.modes import mode_description
from plan_executor.plan.models import (
    AutoTask,
    CheckpointDecisionTask,
    CheckpointVerifyTask,
    Plan,
    Task,
    TaskResult,
)


def render_checkpoint_verify(task: CheckpointVerifyTask, index: int, total: int) -> str:
    lines = [
        f"### Task {index + 1}/{total}: Checkpoint - Verify Implementation",
        "",
        "---",
        "",
        f"**What was built:** {task.what_built}",
        "",
    ]
    if task.how_to_verify:
        lines.append("**Please verify:**")
        lines.extend(f"{number}. {step}" for number, step in enumerate(task.how_to_verify, 1))
        lines.append("")
    lines.extend(
        [
            "---",
            "",
            "Reply `approved` to continue or `issue` to report a problem.",
            "",
            f"*{task.resume_signal}*",
            "",
        ]
    )
    return "\n".join(lines)


def render_checkpoint_decision(task: CheckpointDecisionTask, index: int, total: int) -> str:
    lines = [
        f"### Task {index + 1}/{total}: Checkpoint - Decision Required",
        "",
        "---",
        "",
        f"**Decision:** {task.decision}",
        "",
    ]
    if task.context:
        lines.extend([f"**Context:** {task.context}", ""])
    if task.options:
        lines.extend(["**Options:**", ""])
        for option in task.options:
            lines.append(f"**{option.id}: {option.name}**")
            if option.pros:
                lines.append(f"- *Pros:* {option.pros}")
            if option.cons:
                lines.append(f"- *Cons:* {option.cons}")
            lines.append("")
    lines.extend(["---", ""])
    if task.options:
        choices = ", ".join(f"`decision:{option.id}`" for option in task.options)
        lines.extend([f"Reply with one of: {choices}", ""])
    lines.extend([f"*{task.resume_signal}*", ""])
    return "\n".join(lines)


def render_checkpoint(task: Task, index: int, total: int) -> str:
    if isinstance(task, CheckpointVerifyTask):
        return render_checkpoint_verify(task, index, total)
    if isinstance(task, CheckpointDecisionTask):
        return render_checkpoint_decision(task, index, total)
    return f"### Task {index + 1}/{total}: {task.name}\n"


def render_paused(task: Task, index: int, total: int) -> str:
    return (
        "## Execution Paused\n\n"
        f"Paused at task {index + 1} (checkpoint).\n\n"
        + render_checkpoint(task, index, total)
    )


def render_issue_reported(task: Task, index: int, total: int) -> str:
    return (
        "## Issue Reported\n\n"
        "Describe the issue, fix it, then resume with `approved`.\n\n"
        + render_checkpoint(task, index, total)
    )


def render_auto_resolved(task: Task, index: int, total: int, selected: str | None = None) -> str:
    if isinstance(task, CheckpointDecisionTask):
        return (
            f"### Task {index + 1}/{total}: Decision (auto-selected)\n\n"
            f"**Decision:** {task.decision}\n"
            f"**Selected:** {selected or 'first option'} (auto-selected in yolo mode)\n\n---\n\n"
        )
    return (
        f"### Task {index + 1}/{total}: Checkpoint (auto-approved)\n\n"
        f"**What was built:** {task.name}\n\n"
        "*Auto-approved in yolo mode.*\n\n---\n\n"
    )


def render_task_header(task: AutoTask, index: int, total: int) -> str:
    header = f"### Task {index + 1}/{total}: {task.name}\n\n"
    if task.files:
        header += f"**Files:** {', '.join(task.files)}\n\n"
    return header


def render_task_preview(task: AutoTask) -> str:
    lines = [f"**{task.name}**"]
    if task.files:
        lines.append(f"Files: {', '.join(task.files)}")
    if task.action:
        lines.append(task.action)
    return "\n".join(lines)


def render_cancelled(results: Sequence[TaskResult], total: int) -> str:
    completed = sum(1 for result in results if result.success)
    lines = [
        "",
        "---",
        "",
        "## Execution Cancelled",
        "",
        f"Completed {completed} of {total} tasks before cancellation.",
        "",
    ]
    lines.extend(
        f"- **Task {result.task_id}:** {result.name} - {_status_label(result).capitalize()}"
        for result in results
    )
    lines.extend(
        [
            "",
            "Resume with additional context within the resume window to continue "
            "from the cancelled task.",
            "",
        ]
    )
    return "\n".join(lines)


def render_final_report(
    plan: Plan,
    results: Sequence[TaskResult],
    *,
    decisions: Mapping[str, str],
    mode: str,
) -> str:
    by_id = {result.task_id: result for result in results}
    succeeded = sum(1 for result in results if result.success)
    failed = sum(1 for result in results if not result.success and not result.skipped)
    skipped = sum(1 for result in results if result.skipped)
    not_executed = len(plan.tasks) - len(results)
    files = sorted({path for result in results for path in (result.files or [])})

    counts = f"**Tasks:** {succeeded}/{len(plan.tasks)} completed"
    if failed:
        counts += f", {failed} failed"
    if skipped:
        counts += f", {skipped} skipped"
    if not_executed:
        counts += f", {not_executed} not executed"

    lines = [
        "## Execution Complete",
        "",
        f"**Plan:** {plan.phase} - Plan {plan.plan_number}",
        f"**Execution mode:** {mode_description(mode)}",
        counts,
        f"**Files touched:** {len(files)}",
        "",
        "### Task Summary",
        "",
    ]
    for task in plan.tasks:
        result = by_id.get(task.id)
        if result is None:
            icon, status, commit = "-", "not executed", ""
        else:
            icon = "+" if result.success else "x"
            status = _status_label(result)
            commit = f" [`{result.commit_hash}`]" if result.commit_hash else ""
        line = f"{icon} **Task {task.id}:** {task.name} *({status})*{commit}"
        if result is not None and result.error:
            line += f"\n  - {result.error}"
        lines.append(line)
    lines.append("")

    if decisions:
        lines.extend(["### Decisions Made", ""])
        lines.extend(f"- **{key}:** {value}" for key, value in decisions.items())
        lines.append("")
    if files:
        lines.extend(["### Files Modified", ""])
        lines.extend(f"- `{path}`" for path in files)
        lines.append("")
    if plan.verification:
        lines.extend(["### Plan Verification", "", "*Verify manually:*", ""])
        lines.extend(f"- [ ] {item}" for item in plan.verification)
        lines.append("")
    if plan.success_criteria:
        lines.extend(["### Success Criteria", ""])
        lines.extend(f"- [ ] {item}" for item in plan.success_criteria)
        lines.append("")
    return "\n".join(lines)


def _status_label(result: TaskResult) -> str:
    if result.skipped:
        return "skipped"
    return "completed" if result.success else "failed"
