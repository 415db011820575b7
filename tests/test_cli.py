from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest

from conftest import verify_task
from plan_executor import cli
from plan_executor.config.settings import get_settings


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    monkeypatch.setenv("PLAN_EXECUTOR_WORKSPACE_ROOT", str(tmp_path))
    monkeypatch.setenv("PLAN_EXECUTOR_STATE_BACKEND", "file")
    monkeypatch.setenv("PLAN_EXECUTOR_OPENAI_API_KEY", "")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def test_run_status_and_reset(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    plan_file = workspace / "plan.json"
    plan_file.write_text(json.dumps({"tasks": [verify_task(1)]}), encoding="utf-8")

    assert cli.main(["run", str(plan_file), "--plan-path", "plans/01.md"]) == 0
    assert "Checkpoint - Verify Implementation" in capsys.readouterr().out

    assert cli.main(["status", "plans/01.md"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["pausedAtCheckpoint"] is True

    assert cli.main(["run", str(plan_file), "--plan-path", "plans/01.md", "--signal", "approved"]) == 0
    assert "## Execution Complete" in capsys.readouterr().out
    assert cli.main(["status", "plans/01.md"]) == 1


def test_reset_removes_state(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    plan_file = workspace / "plan.json"
    plan_file.write_text(json.dumps({"tasks": [verify_task(1)]}), encoding="utf-8")
    cli.main(["run", str(plan_file), "--plan-path", "plans/01.md"])

    assert cli.main(["reset", "plans/01.md"]) == 0
    assert cli.main(["status", "plans/01.md"]) == 1


def test_invalid_plan_file_exits_with_error(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["run", str(workspace / "missing.json")]) == 2
    assert "Could not read plan file" in capsys.readouterr().err
