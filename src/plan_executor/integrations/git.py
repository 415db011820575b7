"""Git commit manager used for per-task and summary commits."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

COMMIT_HASH_PATTERN = re.compile(r"\[[\w./-]+(?: \([^)]*\))? ([a-f0-9]+)\]")


@dataclass(frozen=True)
class CommitResult:
    success: bool
    hash: str | None = None
    error: str | None = None


class CommitManager(Protocol):
    def is_repository(self) -> bool: ...

    def stage(self, files: Sequence[str]) -> None: ...

    def commit(self, message: str) -> CommitResult: ...


class GitCommitManager:
    """Stage and commit through the ``git`` executable in the workspace root."""

    def __init__(self, workspace_root: str | Path, *, timeout_s: float = 60.0) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.timeout_s = timeout_s

    def is_repository(self) -> bool:
        try:
            completed = self._git("rev-parse", "--git-dir")
        except OSError:
            return False
        return completed.returncode == 0

    def stage(self, files: Sequence[str]) -> None:
        if not files:
            return
        completed = self._git("add", "--", *files)
        if completed.returncode != 0:
            raise RuntimeError(f"Failed to stage files: {completed.stderr.strip()}")

    def commit(self, message: str) -> CommitResult:
        completed = self._git("commit", "-m", message)
        combined = f"{completed.stdout}\n{completed.stderr}"
        if "nothing to commit" in combined or "no changes added to commit" in combined:
            return CommitResult(success=False, error="Nothing to commit")
        if completed.returncode != 0:
            return CommitResult(
                success=False,
                error=completed.stderr.strip() or completed.stdout.strip() or "git commit failed",
            )
        match = COMMIT_HASH_PATTERN.search(completed.stdout)
        return CommitResult(success=True, hash=match.group(1) if match else None)

    def _git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=self.workspace_root,
            capture_output=True,
            text=True,
            timeout=self.timeout_s,
        )


def detect_commit_type(task_name: str, action: str | None = None) -> str:
    combined = f"{task_name} {action or ''}".lower()
    if any(word in combined for word in ("fix", "bug", "error", "issue")):
        return "fix"
    if any(word in combined for word in ("refactor", "restructure", "reorganize", "rename")):
        return "refactor"
    if any(word in combined for word in ("document", "readme", "summary", "comment")):
        return "docs"
    return "feat"


def phase_number(phase: str) -> str:
    match = re.match(r"^(\d+)", phase)
    return match.group(1) if match else phase[:2]


def generate_commit_message(
    phase: str, plan_number: int, task_name: str, action: str | None = None
) -> str:
    commit_type = detect_commit_type(task_name, action)
    description = re.sub(r"^Task\s*\d+:\s*", "", task_name, flags=re.IGNORECASE).strip()
    if description:
        description = description[0].lower() + description[1:]
    return f"{commit_type}({phase_number(phase)}-{plan_number:02d}): {description}"


def summary_commit_message(phase: str, plan_number: int) -> str:
    return f"docs({phase_number(phase)}-{plan_number:02d}): complete plan summary"


def committable_files(files: Sequence[str], workspace_root: str | Path) -> list[str]:
    """Drop empty paths and paths outside the workspace; return workspace-relative paths."""
    root = Path(workspace_root).resolve()
    result: list[str] = []
    for raw in files:
        value = (raw or "").strip()
        if not value:
            continue
        candidate = Path(value)
        resolved = (candidate if candidate.is_absolute() else root / candidate).resolve()
        try:
            relative = resolved.relative_to(root)
        except ValueError:
            logger.warning("git_commit event=path_outside_workspace path=%s", value)
            continue
        if str(relative) in {"", "."}:
            continue
        result.append(relative.as_posix())
    return list(dict.fromkeys(result))
