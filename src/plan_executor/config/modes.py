"""Execution-mode policy: when to pause at checkpoints and when to confirm tasks.

- ``yolo``: never pause, never confirm. Checkpoints auto-resolve.
- ``guided``: pause at every checkpoint, run auto tasks without confirmation.
- ``manual``: pause at every checkpoint and confirm every auto task.

Unknown modes fall back to guided behaviour.
"""

from __future__ import annotations

from typing import Literal

ExecutionMode = Literal["yolo", "guided", "manual"]
CheckpointKind = Literal["human-verify", "decision"]

EXECUTION_MODES: tuple[str, ...] = ("yolo", "guided", "manual")


def normalize_mode(mode: str | None) -> str:
    value = (mode or "").strip().lower()
    return value if value in EXECUTION_MODES else "guided"


def should_pause_at_checkpoint(mode: str, checkpoint_kind: CheckpointKind) -> bool:
    # Both checkpoint kinds share the same policy today.
    return normalize_mode(mode) != "yolo"


def should_confirm_task(mode: str, task_type: str) -> bool:
    normalized = normalize_mode(mode)
    if normalized == "yolo":
        return False
    if normalized == "manual":
        return True
    return task_type != "auto"


def is_fully_automated(mode: str) -> bool:
    return normalize_mode(mode) == "yolo"


def mode_description(mode: str) -> str:
    normalized = (mode or "").strip().lower()
    if normalized == "yolo":
        return "Auto-executing all tasks without confirmation"
    if normalized == "guided":
        return "Pausing at checkpoints for review"
    if normalized == "manual":
        return "Confirming each task before execution"
    return "Unknown mode"
