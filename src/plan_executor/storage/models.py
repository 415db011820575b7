"""Durable session records shared by the coordinator and storage backends."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CheckpointType = Literal["human-verify", "decision"]


class StateRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExecutionState(StateRecord):
    """Per-plan progress used for checkpoint pause/resume and crash recovery."""

    plan_path: str
    # Next task to run, or the checkpoint awaiting a resume signal when paused.
    current_task_index: int = Field(default=0, ge=0)
    completed_tasks: list[int] = Field(default_factory=list)
    failed_tasks: list[int] = Field(default_factory=list)
    skipped_tasks: list[int] = Field(default_factory=list)
    decisions: dict[str, str] = Field(default_factory=dict)
    paused_at_checkpoint: bool = False
    checkpoint_type: CheckpointType | None = None
    saved_at: datetime


class ActiveExecutionInfo(StateRecord):
    """Heartbeat of the run currently in flight."""

    plan_path: str
    task_index: int
    last_activity_timestamp: datetime


class CancelledExecutionInfo(StateRecord):
    """Soft-stopped run that may be resumed with extra context for a short window."""

    plan_path: str
    task_index: int
    cancelled_at: datetime
