"""Markdown issue log for task failures during unattended runs."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

OPEN_HEADER = "## Open Enhancements"
OUTPUT_EXCERPT_CHARS = 1500


@dataclass(frozen=True)
class TaskFailure:
    plan_path: str
    task_id: int
    task_name: str
    error: str
    phase: str
    plan_number: int
    timestamp: datetime
    full_output: str = ""
    verify_output: str | None = None
    files: tuple[str, ...] = ()


@dataclass(frozen=True)
class IssueLogResult:
    success: bool
    issue_id: str | None = None
    error: str | None = None


class IssueLogger(Protocol):
    def log_failure(self, failure: TaskFailure) -> IssueLogResult: ...


def issue_id_for(phase: str, task_id: int) -> str:
    match = re.match(r"^(\d+(?:\.\d+)*)", phase)
    phase_num = match.group(1) if match else "00"
    return f"EXE-{phase_num}-{task_id:02d}"


def issues_template(today: str) -> str:
    return (
        "# Project Issues Log\n\n"
        "Enhancements discovered during execution. Not critical - address in future phases.\n\n"
        f"{OPEN_HEADER}\n\n"
        "## Closed Enhancements\n\n"
        "---\n\n"
        f"*Last updated: {today}*\n"
    )


class MarkdownIssueLogger:
    """Append failure entries to ``.planning/ISSUES.md`` under the open section."""

    def __init__(self, workspace_root: str | Path) -> None:
        self.workspace_root = Path(workspace_root)
        self.issues_path = self.workspace_root / ".planning" / "ISSUES.md"

    def log_failure(self, failure: TaskFailure) -> IssueLogResult:
        issue_id = issue_id_for(failure.phase, failure.task_id)
        today = failure.timestamp.astimezone(UTC).date().isoformat()
        try:
            if self.issues_path.exists():
                content = self.issues_path.read_text(encoding="utf-8")
            else:
                content = issues_template(today)

            if issue_id in content:
                return IssueLogResult(success=False, error=f"Issue {issue_id} already exists")

            entry = format_issue_entry(failure, issue_id)
            header_index = content.find(OPEN_HEADER)
            if header_index == -1:
                content = content.rstrip("\n") + f"\n\n{OPEN_HEADER}\n\n{entry}"
            else:
                insert_at = header_index + len(OPEN_HEADER)
                content = content[:insert_at] + "\n\n" + entry.rstrip("\n") + content[insert_at:]

            content = re.sub(r"\*Last updated:.*\*", f"*Last updated: {today}*", content)
            self.issues_path.parent.mkdir(parents=True, exist_ok=True)
            self.issues_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.warning("issue_log event=write_failed issue_id=%s error=%s", issue_id, exc)
            return IssueLogResult(success=False, error=f"Failed to log issue: {exc}")

        logger.info("issue_log event=logged issue_id=%s plan_path=%s", issue_id, failure.plan_path)
        return IssueLogResult(success=True, issue_id=issue_id)


def format_issue_entry(failure: TaskFailure, issue_id: str) -> str:
    date_str = failure.timestamp.astimezone(UTC).date().isoformat()
    plan_file = failure.plan_path.rstrip("/").split("/")[-1] or failure.plan_path
    lines = [
        f"### {issue_id}: Task failure in {plan_file}",
        "",
        f"- **Discovered:** Execution of {plan_file} ({date_str})",
        "- **Type:** Execution Failure",
        f'- **Description:** Task "{failure.task_name}" failed: {failure.error}',
        "- **Impact:** Blocking (task did not complete)",
        "- **Suggested fix:** Review error, adjust plan or retry manually",
        f"- **Phase:** {failure.phase}",
        f"- **Plan:** {failure.plan_number:02d}",
        f"- **Task ID:** {failure.task_id}",
    ]
    if failure.files:
        lines.append(f"- **Files:** {', '.join(f'`{path}`' for path in failure.files)}")
    if failure.verify_output:
        lines.append(f"- **Verify:** {failure.verify_output}")
    excerpt = _tail(failure.full_output, OUTPUT_EXCERPT_CHARS)
    if excerpt:
        lines.extend(
            ["", "<details><summary>Output</summary>", "", "```", excerpt, "```", "", "</details>"]
        )
    return "\n".join(lines) + "\n\n"


def _tail(text: str, limit: int) -> str:
    value = (text or "").strip()
    if len(value) <= limit:
        return value
    return "..." + value[-limit:]

