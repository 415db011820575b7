"""Run summary document written after a fully successful plan run."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Sequence

from plan_executor.integrations.git import detect_commit_type, phase_number
from plan_executor.plan.models import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCommitInfo:
    task_id: int
    hash: str
    message: str = ""


@dataclass
class SummaryConfig:
    phase: str
    plan_number: int
    objective: str
    started_at: datetime
    finished_at: datetime
    tasks: Sequence[Task]
    commits: Sequence[TaskCommitInfo] = ()
    files_modified: Sequence[str] = ()
    decisions: dict[str, str] = field(default_factory=dict)
    issues: Sequence[str] = ()
    deviations: Sequence[str] = ()

    @property
    def duration_ms(self) -> int:
        return max(0, int((self.finished_at - self.started_at).total_seconds() * 1000))


@dataclass(frozen=True)
class SummaryResult:
    success: bool
    path: Path | None = None
    error: str | None = None


def format_duration(duration_ms: int) -> str:
    seconds = duration_ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}min"
    if minutes > 0:
        return f"{minutes}min"
    return f"{seconds}s"


def create_summary_md(config: SummaryConfig) -> str:
    phase_num = phase_number(config.phase) or "00"
    plan_num = f"{config.plan_number:02d}"
    duration = format_duration(config.duration_ms)
    completed = config.finished_at.date().isoformat()

    front_matter = [
        "---",
        f"phase: {config.phase}",
        f"plan: {plan_num}",
        "",
        "requires:",
        (
            f"  - phase: {phase_num}-{config.plan_number - 1:02d}"
            if config.plan_number > 1
            else "  - none"
        ),
        "provides:",
        *(f"  - {task.name}" for task in config.tasks),
        "",
        "key-files:",
        "  modified:",
        *(f"    - {path}" for path in config.files_modified),
        "",
        "key-decisions:",
        *(f'  - "{key}: {value}"' for key, value in config.decisions.items()),
        "",
        f"duration: {duration}",
        f"completed: {completed}",
        "---",
        "",
    ]

    commits_by_task = {commit.task_id: commit for commit in config.commits}
    body = [
        f"# Phase {phase_num} Plan {plan_num}: Summary",
        "",
        f"**{config.objective or 'Plan executed'}**",
        "",
        "## Performance",
        "",
        f"- **Duration:** {duration}",
        f"- **Started:** {config.started_at.isoformat()}",
        f"- **Completed:** {config.finished_at.isoformat()}",
        f"- **Tasks:** {len(config.tasks)}",
        f"- **Files modified:** {len(config.files_modified)}",
        "",
        "## Accomplishments",
        "",
        *(f"- {task.name}" for task in config.tasks),
        "",
        "## Task Commits",
        "",
        "Each task was committed atomically:",
        "",
    ]
    for task in config.tasks:
        commit = commits_by_task.get(task.id)
        if commit is None:
            body.append(f"{task.id}. **{task.name}** - *no commit*")
        else:
            body.append(
                f"{task.id}. **{task.name}** - `{commit.hash}` ({detect_commit_type(task.name)})"
            )
    body.extend(["", "## Files Created/Modified", ""])
    if config.files_modified:
        body.append("**Modified:**")
        body.extend(f"- `{path}`" for path in config.files_modified)
        body.append("")
    if config.decisions:
        body.extend(["## Decisions Made", ""])
        body.extend(f"- **{key}:** {value}" for key, value in config.decisions.items())
        body.append("")

    body.extend(["## Deviations from Plan", ""])
    if config.deviations:
        body.extend(f"- {item}" for item in config.deviations)
    else:
        body.append("None - plan executed as written.")
    body.extend(["", "## Issues Encountered", ""])
    if config.issues:
        body.extend(f"- {item}" for item in config.issues)
    else:
        body.append("None")
    body.extend(["", "---", f"*Phase: {config.phase}*", f"*Completed: {completed}*", ""])

    return "\n".join(front_matter) + "\n".join(body)


def summary_path(workspace_root: str | Path, phase_dir: str, plan_number: int) -> Path:
    match = re.match(r"^(\d+)", phase_dir)
    phase_num = match.group(1) if match else "00"
    file_name = f"{phase_num}-{plan_number:02d}-SUMMARY.md"
    return Path(workspace_root) / ".planning" / "phases" / phase_dir / file_name


def save_summary(
    workspace_root: str | Path,
    phase_dir: str,
    plan_number: int,
    config: SummaryConfig,
) -> SummaryResult:
    path = summary_path(workspace_root, phase_dir, plan_number)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(create_summary_md(config), encoding="utf-8")
    except OSError as exc:
        logger.warning("plan_summary event=write_failed path=%s error=%s", path, exc)
        return SummaryResult(success=False, error=str(exc))
    logger.info("plan_summary event=written path=%s", path)
    return SummaryResult(success=True, path=path)
