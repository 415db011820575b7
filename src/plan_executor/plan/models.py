"""Typed task records consumed from the plan loader, plus per-run task results.

Wire format uses camelCase keys (``whatBuilt``, ``howToVerify``, ``resumeSignal``);
Python attributes are snake_case. Task records are frozen: the engine never
mutates a loaded task, it only produces ``TaskResult`` values alongside them.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

TaskType = Literal["auto", "checkpoint:human-verify", "checkpoint:decision"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenWireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class AutoTask(FrozenWireModel):
    """A unit of work the agent performs with tools."""

    id: int
    type: Literal["auto"] = "auto"
    name: str
    action: str = ""
    files: tuple[str, ...] = ()
    verify: str = ""
    done: str = ""


class CheckpointVerifyTask(FrozenWireModel):
    """Requires a human ``approved`` / ``issue`` response before continuing."""

    id: int
    type: Literal["checkpoint:human-verify"] = "checkpoint:human-verify"
    what_built: str
    how_to_verify: tuple[str, ...] = ()
    resume_signal: str = "Type 'approved' to continue, or describe the issue."

    @property
    def name(self) -> str:
        return self.what_built


class DecisionOption(FrozenWireModel):
    id: str
    name: str
    pros: str | None = None
    cons: str | None = None


class CheckpointDecisionTask(FrozenWireModel):
    """Requires a human (or the auto policy) to pick one option."""

    id: int
    type: Literal["checkpoint:decision"] = "checkpoint:decision"
    decision: str
    context: str | None = None
    options: tuple[DecisionOption, ...] = ()
    resume_signal: str = "Select an option to continue."

    @property
    def name(self) -> str:
        return self.decision


Task = Annotated[
    Union[AutoTask, CheckpointVerifyTask, CheckpointDecisionTask],
    Field(discriminator="type"),
]

TASK_LIST_ADAPTER: TypeAdapter[list[Task]] = TypeAdapter(list[Task])


class Plan(FrozenWireModel):
    """Ordered task list toward one objective."""

    phase: str = "00-plan"
    plan_number: int = Field(default=1, ge=1)
    objective: str = ""
    purpose: str = ""
    tasks: tuple[Task, ...] = ()
    verification: tuple[str, ...] = ()
    success_criteria: tuple[str, ...] = ()


class TaskResult(WireModel):
    """Outcome of one task within a single coordinator run."""

    task_id: int
    success: bool
    name: str
    files: list[str] | None = None
    commit_hash: str | None = None
    skipped: bool = False
    error: str | None = None
    retryable: bool = False
