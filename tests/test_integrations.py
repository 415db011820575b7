from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from conftest import FIXED_NOW, auto_task, make_plan, verify_task
from plan_executor.integrations.git import (
    GitCommitManager,
    committable_files,
    detect_commit_type,
    generate_commit_message,
    summary_commit_message,
)
from plan_executor.integrations.issues import MarkdownIssueLogger, TaskFailure, issue_id_for
from plan_executor.integrations.summary import (
    SummaryConfig,
    TaskCommitInfo,
    create_summary_md,
    format_duration,
    save_summary,
)


@pytest.mark.parametrize(
    ("name", "action", "expected"),
    [
        ("Task 3: Create login route", "", "feat(04-02): create login route"),
        ("Fix session bug", "", "fix(04-02): fix session bug"),
        ("Restructure handlers", "", "refactor(04-02): restructure handlers"),
        ("Write README", "", "docs(04-02): write README"),
    ],
)
def test_generate_commit_message(name: str, action: str, expected: str) -> None:
    assert generate_commit_message("04-auth", 2, name, action) == expected


def test_commit_type_reads_action_too() -> None:
    assert detect_commit_type("Update handler", "resolve the error path") == "fix"
    assert summary_commit_message("4.1-hotfix", 3) == "docs(4-03): complete plan summary"


def test_committable_files_keeps_workspace_relative_paths(tmp_path: Path) -> None:
    files = committable_files(
        ["src/a.py", str(tmp_path / "src" / "a.py"), "", "../outside.py", "docs/b.md"],
        tmp_path,
    )

    assert files == ["src/a.py", "docs/b.md"]


def test_git_commit_manager_parses_hash(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[list[str]] = []

    def _fake_run(args: list[str], **_kwargs: Any) -> SimpleNamespace:
        calls.append(args)
        if args[1] == "commit":
            return SimpleNamespace(
                returncode=0, stdout="[main 1a2b3c4] feat(01-01): add model\n 1 file changed", stderr=""
            )
        return SimpleNamespace(returncode=0, stdout="", stderr="")

    monkeypatch.setattr("plan_executor.integrations.git.subprocess.run", _fake_run)
    manager = GitCommitManager(tmp_path)

    manager.stage(["src/a.py"])
    result = manager.commit("feat(01-01): add model")

    assert result.success is True
    assert result.hash == "1a2b3c4"
    assert calls[0] == ["git", "add", "--", "src/a.py"]


def test_git_commit_manager_reports_nothing_to_commit(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setattr(
        "plan_executor.integrations.git.subprocess.run",
        lambda *_args, **_kwargs: SimpleNamespace(
            returncode=1, stdout="nothing to commit, working tree clean", stderr=""
        ),
    )

    result = GitCommitManager(tmp_path).commit("feat(01-01): add model")

    assert result.success is False
    assert result.error == "Nothing to commit"


def _failure(task_id: int = 2, **overrides: Any) -> TaskFailure:
    values: dict[str, Any] = {
        "plan_path": ".planning/phases/01-foundation/01-02-PLAN.md",
        "task_id": task_id,
        "task_name": "Create login route",
        "error": "Verification failed: 2 tests failed",
        "phase": "01-foundation",
        "plan_number": 2,
        "timestamp": FIXED_NOW,
        "full_output": "$ pytest\n2 tests failed",
        "files": ("src/routes.py",),
    }
    values.update(overrides)
    return TaskFailure(**values)


def test_issue_logger_creates_log_and_rejects_duplicates(tmp_path: Path) -> None:
    logger = MarkdownIssueLogger(tmp_path)

    first = logger.log_failure(_failure())
    duplicate = logger.log_failure(_failure())
    second = logger.log_failure(_failure(task_id=3, timestamp=FIXED_NOW + timedelta(days=1)))

    assert first.success is True
    assert first.issue_id == "EXE-01-02"
    assert duplicate.success is False
    assert duplicate.error == "Issue EXE-01-02 already exists"
    assert second.issue_id == "EXE-01-03"
    content = (tmp_path / ".planning" / "ISSUES.md").read_text(encoding="utf-8")
    assert content.index("## Open Enhancements") < content.index("EXE-01-03")
    assert content.index("EXE-01-03") < content.index("EXE-01-02")
    assert "*Last updated: 2026-03-02*" in content
    assert "`src/routes.py`" in content
    assert "<details><summary>Output</summary>" in content


def test_issue_id_defaults_phase_number() -> None:
    assert issue_id_for("2.1-patch", 7) == "EXE-2.1-07"
    assert issue_id_for("setup", 1) == "EXE-00-01"


def _summary_config() -> SummaryConfig:
    plan = make_plan(auto_task(1, "Create user model", files=["src/model.py"]), verify_task(2))
    return SummaryConfig(
        phase=plan.phase,
        plan_number=plan.plan_number,
        objective=plan.objective,
        started_at=FIXED_NOW,
        finished_at=FIXED_NOW + timedelta(minutes=12, seconds=5),
        tasks=plan.tasks,
        commits=[TaskCommitInfo(task_id=1, hash="abc1234", message="feat(01-02): create user model")],
        files_modified=["src/model.py"],
        decisions={"task-2": "redis"},
    )


def test_summary_document_sections() -> None:
    document = create_summary_md(_summary_config())

    assert document.startswith("---\nphase: 01-foundation\nplan: 02\n")
    assert "  - phase: 01-01" in document
    assert "# Phase 01 Plan 02: Summary" in document
    assert "- **Duration:** 12min" in document
    assert "1. **Create user model** - `abc1234` (feat)" in document
    assert "2. **Login form** - *no commit*" in document
    assert "- **task-2:** redis" in document
    assert "None - plan executed as written." in document


def test_save_summary_writes_into_phase_directory(tmp_path: Path) -> None:
    result = save_summary(tmp_path, "01-foundation", 2, _summary_config())

    assert result.success is True
    assert result.path == tmp_path / ".planning" / "phases" / "01-foundation" / "01-02-SUMMARY.md"
    assert result.path.read_text(encoding="utf-8").startswith("---")


@pytest.mark.parametrize(
    ("duration_ms", "expected"),
    [(45_000, "45s"), (180_000, "3min"), (3_900_000, "1h 5min")],
)
def test_format_duration(duration_ms: int, expected: str) -> None:
    assert format_duration(duration_ms) == expected
