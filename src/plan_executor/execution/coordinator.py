"""Execution coordinator: the task-dispatch state machine.

One ``run`` call:
1. reconstructs progress from the session store (the process may have
   restarted since the previous call) and applies the resume signal,
2. executes tasks strictly in order, pausing at checkpoints when the
   execution mode asks for it and soft-stopping on cancellation,
3. on completion clears durable state and writes the run summary when every
   task succeeded.

``ExecutionState`` is saved after every finished task, so a crash loses at
most the in-flight task.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import Field

from plan_executor.agent.model import ChatModel
from plan_executor.config.modes import (
    is_fully_automated,
    normalize_mode,
    should_confirm_task,
    should_pause_at_checkpoint,
)
from plan_executor.config.settings import Settings
from plan_executor.errors import ModelProviderError, PersistenceError
from plan_executor.execution import render
from plan_executor.execution.signals import ResumeSignal, parse_resume_signal
from plan_executor.graph.state import AutoTaskRuntime, initial_state
from plan_executor.graph.workflow import build_auto_task_graph
from plan_executor.integrations.git import (
    CommitManager,
    GitCommitManager,
    committable_files,
    summary_commit_message,
)
from plan_executor.integrations.issues import IssueLogger, MarkdownIssueLogger, TaskFailure
from plan_executor.integrations.scaffolding import scaffolding_command
from plan_executor.integrations.summary import SummaryConfig, TaskCommitInfo, save_summary
from plan_executor.plan.models import (
    AutoTask,
    CheckpointDecisionTask,
    CheckpointVerifyTask,
    Plan,
    Task,
    TaskResult,
    WireModel,
)
from plan_executor.storage.models import CheckpointType, ExecutionState
from plan_executor.storage.session import SessionStateStore
from plan_executor.tools.builtin import BuiltinTools
from plan_executor.tools.gateway import ToolInvoker
from plan_executor.tools.registry import build_registry, tool_declarations
from plan_executor.verify.classifier import FailureClassifier

logger = logging.getLogger(__name__)

RunStatus = Literal["completed", "paused", "cancelled", "issue", "noop"]


class RunOutcome(WireModel):
    status: RunStatus
    plan_path: str
    task_index: int | None = None
    checkpoint_type: CheckpointType | None = None
    rendered: str = ""
    results: list[TaskResult] = Field(default_factory=list)
    decisions: dict[str, str] = Field(default_factory=dict)
    summary_path: str | None = None
    summary_commit: str | None = None


@dataclass
class _Output:
    forward: Callable[[str], None] | None = None
    parts: list[str] = field(default_factory=list)

    def write(self, chunk: str) -> None:
        self.parts.append(chunk)
        if self.forward is not None:
            self.forward(chunk)

    def text(self) -> str:
        return "".join(self.parts)


@dataclass
class _Run:
    plan: Plan
    plan_path: str
    mode: str
    state: ExecutionState
    results: list[TaskResult]
    out: _Output
    started_at: datetime
    is_cancelled: Callable[[], bool]
    commits: list[TaskCommitInfo] = field(default_factory=list)


class ExecutionCoordinator:
    def __init__(
        self,
        *,
        store: SessionStateStore,
        model: ChatModel | None,
        invoker: ToolInvoker,
        tools: list[dict[str, Any]],
        settings: Settings,
        classifier: FailureClassifier | None = None,
        commit_manager: CommitManager | None = None,
        issue_logger: IssueLogger | None = None,
        confirm_task: Callable[[str], bool] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.model = model
        self.invoker = invoker
        self.tools = tools
        self.settings = settings
        self.classifier = classifier or FailureClassifier(
            excerpt_chars=settings.failure_excerpt_chars
        )
        self.commit_manager = commit_manager
        self.issue_logger = issue_logger
        self.confirm_task = confirm_task
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self.workspace_root = settings.resolved_workspace_root()

    def run(
        self,
        plan: Plan,
        plan_path: str,
        *,
        mode: str | None = None,
        resume_signal: str | None = None,
        resume_context: str | None = None,
        is_cancelled: Callable[[], bool] | None = None,
        emit: Callable[[str], None] | None = None,
    ) -> RunOutcome:
        effective_mode = normalize_mode(mode or self.settings.execution_mode)
        signal = parse_resume_signal(resume_signal)
        out = _Output(forward=emit)
        now = self._clock()
        logger.info(
            "plan_run event=start plan_path=%s mode=%s signal=%s tasks=%s",
            plan_path,
            effective_mode,
            signal,
            len(plan.tasks),
        )

        state = self.store.get_execution_state(plan_path)
        start_index: int | None = None

        if resume_context:
            cancelled = self.store.get_cancelled(
                plan_path, window_s=self.settings.cancel_resume_window_s, now=now
            )
            if cancelled is not None and not _resumable(cancelled.task_index, state):
                logger.warning(
                    "plan_run event=cancelled_stale plan_path=%s task_index=%s",
                    plan_path,
                    cancelled.task_index,
                )
                self.store.clear_cancelled()
                cancelled = None
            if cancelled is not None:
                self.store.store_execution_context(plan_path, resume_context)
                self.store.clear_cancelled()
                start_index = cancelled.task_index
                out.write(
                    f"**Resuming from task {cancelled.task_index + 1} with additional context.**\n\n"
                )
                logger.info(
                    "plan_run event=resume_with_context plan_path=%s task_index=%s",
                    plan_path,
                    cancelled.task_index,
                )
            else:
                logger.warning(
                    "plan_run event=context_ignored plan_path=%s reason=no_live_cancelled_run",
                    plan_path,
                )
                out.write("*No cancelled run to resume within the resume window; context ignored.*\n\n")

        if start_index is None and state is not None and state.paused_at_checkpoint:
            return self._resume_from_checkpoint(
                plan, plan_path, effective_mode, state, signal, out, now, is_cancelled
            )

        if start_index is None and signal is not None:
            logger.info("plan_run event=noop plan_path=%s signal=%s", plan_path, signal)
            out.write(f"Nothing is paused for `{plan_path}`; `{signal}` was ignored.\n")
            return RunOutcome(
                status="noop",
                plan_path=plan_path,
                rendered=out.text(),
                decisions=dict(state.decisions) if state else {},
            )

        if state is None:
            state = ExecutionState(plan_path=plan_path, saved_at=now)
        if start_index is None:
            start_index = state.current_task_index
        run = _Run(
            plan=plan,
            plan_path=plan_path,
            mode=effective_mode,
            state=state,
            results=_seed_results(plan, state),
            out=out,
            started_at=now,
            is_cancelled=is_cancelled or (lambda: False),
        )
        return self._execute_from(run, start_index)

    def _resume_from_checkpoint(
        self,
        plan: Plan,
        plan_path: str,
        mode: str,
        state: ExecutionState,
        signal: ResumeSignal | None,
        out: _Output,
        now: datetime,
        is_cancelled: Callable[[], bool] | None,
    ) -> RunOutcome:
        index = state.current_task_index
        total = len(plan.tasks)
        if index >= total or not _is_checkpoint(plan.tasks[index]):
            raise PersistenceError(
                f"Paused state for {plan_path} points at task index {index}, "
                "which is not a checkpoint of this plan"
            )
        task = plan.tasks[index]

        def _paused(status: RunStatus, text: str) -> RunOutcome:
            out.write(text)
            return RunOutcome(
                status=status,
                plan_path=plan_path,
                task_index=index,
                checkpoint_type=state.checkpoint_type,
                rendered=out.text(),
                results=_seed_results(plan, state),
                decisions=dict(state.decisions),
            )

        if signal is None:
            return _paused("paused", render.render_paused(task, index, total))
        if signal.kind == "issue":
            logger.info("plan_run event=issue_reported plan_path=%s task_index=%s", plan_path, index)
            return _paused("issue", render.render_issue_reported(task, index, total))

        decisions = dict(state.decisions)
        if signal.kind == "decision":
            valid = isinstance(task, CheckpointDecisionTask) and any(
                option.id == signal.option_id for option in task.options
            )
            if not valid:
                out.write(f"**Unknown option:** `{signal.option_id}`\n\n")
                return _paused("paused", render.render_paused(task, index, total))
            decisions[decision_key(index)] = signal.option_id or ""
            out.write(f"**Decision recorded:** {signal.option_id}\n\nResuming execution...\n\n")
        else:
            out.write("**Approved.** Resuming execution...\n\n")

        results = _seed_results(plan, state)
        results.append(TaskResult(task_id=task.id, success=True, name=task.name))
        state = state.model_copy(
            update={
                "completed_tasks": [*state.completed_tasks, task.id],
                "current_task_index": index + 1,
                "decisions": decisions,
                "paused_at_checkpoint": False,
                "checkpoint_type": None,
                "saved_at": now,
            }
        )
        self.store.save_execution_state(state)
        logger.info("plan_run event=resumed plan_path=%s task_index=%s", plan_path, index)

        run = _Run(
            plan=plan,
            plan_path=plan_path,
            mode=mode,
            state=state,
            results=results,
            out=out,
            started_at=now,
            is_cancelled=is_cancelled or (lambda: False),
        )
        return self._execute_from(run, index + 1)

    def _execute_from(self, run: _Run, start_index: int) -> RunOutcome:
        total = len(run.plan.tasks)
        runtime = AutoTaskRuntime(
            model=self.model,  # type: ignore[arg-type]
            invoker=self.invoker,
            tools=self.tools,
            classifier=self.classifier,
            workspace_root=self.workspace_root,
            commit_manager=self.commit_manager,
            auto_commit=self.settings.auto_commit,
            max_iterations=self.settings.max_tool_iterations,
            emit=run.out.write,
            is_cancelled=run.is_cancelled,
            on_activity=self.store.touch_active,
            scaffold_timeout_s=self.settings.tool_timeout_s,
        )
        graph = build_auto_task_graph(runtime)

        try:
            for index in range(start_index, total):
                task = run.plan.tasks[index]
                self.store.set_active(run.plan_path, index, now=self._clock())
                if run.is_cancelled():
                    return self._soft_cancel(run, index)

                if isinstance(task, (CheckpointVerifyTask, CheckpointDecisionTask)):
                    kind: CheckpointType = (
                        "human-verify" if isinstance(task, CheckpointVerifyTask) else "decision"
                    )
                    if should_pause_at_checkpoint(run.mode, kind):
                        return self._pause(run, index, kind)
                    result = self._auto_resolve(run, task, index)
                else:
                    result = self._run_auto_task(run, task, index, graph)
                    if result is None:
                        return self._soft_cancel(run, index)

                run.results.append(result)
                self._record_finished(run, task, index, result)

            return self._complete(run)
        except BaseException:
            self._release_active(run.plan_path)
            raise

    def _release_active(self, plan_path: str) -> None:
        try:
            self.store.clear_active()
        except Exception as exc:  # noqa: BLE001
            logger.warning("plan_run event=clear_active_failed plan_path=%s error=%s", plan_path, exc)

    def _pause(self, run: _Run, index: int, kind: CheckpointType) -> RunOutcome:
        task = run.plan.tasks[index]
        run.state = run.state.model_copy(
            update={
                "current_task_index": index,
                "paused_at_checkpoint": True,
                "checkpoint_type": kind,
                "saved_at": self._clock(),
            }
        )
        self.store.save_execution_state(run.state)
        self.store.discard_cancelled(run.plan_path)
        self.store.clear_active()
        logger.info(
            "plan_run event=paused plan_path=%s task_index=%s checkpoint=%s",
            run.plan_path,
            index,
            kind,
        )
        run.out.write(render.render_checkpoint(task, index, len(run.plan.tasks)))
        return RunOutcome(
            status="paused",
            plan_path=run.plan_path,
            task_index=index,
            checkpoint_type=kind,
            rendered=run.out.text(),
            results=list(run.results),
            decisions=dict(run.state.decisions),
        )

    def _auto_resolve(self, run: _Run, task: Task, index: int) -> TaskResult:
        selected: str | None = None
        if isinstance(task, CheckpointDecisionTask) and task.options:
            first = task.options[0]
            selected = first.name
            decisions = dict(run.state.decisions)
            decisions[decision_key(index)] = first.id
            run.state = run.state.model_copy(update={"decisions": decisions})
        logger.info(
            "plan_run event=checkpoint_auto_resolved plan_path=%s task_index=%s",
            run.plan_path,
            index,
        )
        run.out.write(render.render_auto_resolved(task, index, len(run.plan.tasks), selected))
        return TaskResult(task_id=task.id, success=True, name=task.name)

    def _run_auto_task(self, run: _Run, task: AutoTask, index: int, graph: Any) -> TaskResult | None:
        total = len(run.plan.tasks)
        if should_confirm_task(run.mode, task.type) and self.confirm_task is not None:
            if not self.confirm_task(render.render_task_preview(task)):
                logger.info("plan_run event=task_skipped plan_path=%s task_id=%s", run.plan_path, task.id)
                run.out.write(f"*Skipped task {task.id}: {task.name}*\n\n---\n\n")
                return TaskResult(
                    task_id=task.id,
                    success=False,
                    name=task.name,
                    files=list(task.files),
                    skipped=True,
                )

        logger.info(
            "plan_run event=task_start plan_path=%s task_index=%s task_id=%s",
            run.plan_path,
            index,
            task.id,
        )
        run.out.write(render.render_task_header(task, index, total))
        execution_context = self.store.peek_execution_context(run.plan_path)

        final_state: dict[str, Any] = {}
        error: str | None = None
        retryable = False
        try:
            if self.model is None and scaffolding_command(task.action) is None:
                raise ModelProviderError("No chat model is configured")
            final_state = graph.invoke(
                initial_state(
                    plan=run.plan,
                    plan_path=run.plan_path,
                    task=task,
                    task_index=index,
                    execution_context=execution_context,
                )
            )
        except PersistenceError:
            raise
        except ModelProviderError as exc:
            logger.error("plan_run event=model_error task_id=%s error=%s", task.id, exc)
            error = f"Model error: {exc}"
            retryable = True
        except Exception as exc:  # noqa: BLE001
            logger.exception("plan_run event=task_error task_id=%s", task.id)
            error = f"Task error: {exc}"

        if final_state.get("cancelled", False):
            logger.info("plan_run event=cancelled_mid_task plan_path=%s task_id=%s", run.plan_path, task.id)
            return None
        if execution_context is not None:
            self.store.clear_execution_context(run.plan_path)

        scaffolding = final_state.get("scaffolding", {})
        if error is None and scaffolding.get("detected") and not scaffolding.get("success"):
            error = scaffolding.get("error") or "Scaffolding command failed"
        verification = final_state.get("verification", {})
        if error is None and not verification.get("passed", False):
            error = f"Verification failed: {verification.get('reason') or 'unknown failure'}"

        if error is not None:
            run.out.write(f"**Error:** {error}\n\n**Status:** Task {index + 1}/{total} failed\n\n---\n\n")
            self._log_issue(run, task, error, final_state.get("tool_output", ""))
            logger.info("plan_run event=task_failed plan_path=%s task_id=%s", run.plan_path, task.id)
            return TaskResult(
                task_id=task.id,
                success=False,
                name=task.name,
                files=list(task.files),
                error=error,
                retryable=retryable,
            )

        commit = final_state.get("commit", {})
        commit_hash = commit.get("hash") if commit.get("success") else None
        if commit_hash:
            run.commits.append(
                TaskCommitInfo(task_id=task.id, hash=commit_hash, message=commit.get("message", ""))
            )
            run.out.write(f"**Committed:** `{commit_hash}` - {commit.get('message', '')}\n\n")
        elif commit.get("attempted"):
            run.out.write(f"*Commit skipped: {commit.get('error')}*\n\n")
        run.out.write(f"**Status:** Task {index + 1}/{total} completed\n\n---\n\n")
        logger.info("plan_run event=task_completed plan_path=%s task_id=%s", run.plan_path, task.id)
        return TaskResult(
            task_id=task.id,
            success=True,
            name=task.name,
            files=list(task.files),
            commit_hash=commit_hash,
        )

    def _log_issue(self, run: _Run, task: AutoTask, error: str, output: str) -> None:
        if self.issue_logger is None or not is_fully_automated(run.mode):
            return
        result = self.issue_logger.log_failure(
            TaskFailure(
                plan_path=run.plan_path,
                task_id=task.id,
                task_name=task.name,
                error=error,
                phase=run.plan.phase,
                plan_number=run.plan.plan_number,
                timestamp=self._clock(),
                full_output=output,
                verify_output=task.verify or None,
                files=tuple(task.files),
            )
        )
        if result.success:
            run.out.write(f"*Logged issue {result.issue_id}*\n\n")
        else:
            logger.warning("plan_run event=issue_log_failed task_id=%s error=%s", task.id, result.error)

    def _record_finished(self, run: _Run, task: Task, index: int, result: TaskResult) -> None:
        state = run.state
        update: dict[str, Any] = {
            "completed_tasks": [*state.completed_tasks, task.id],
            "current_task_index": index + 1,
            "paused_at_checkpoint": False,
            "checkpoint_type": None,
            "saved_at": self._clock(),
        }
        if result.skipped:
            update["skipped_tasks"] = [*state.skipped_tasks, task.id]
        elif not result.success:
            update["failed_tasks"] = [*state.failed_tasks, task.id]
        run.state = state.model_copy(update=update)
        self.store.save_execution_state(run.state)
        # The run is past any earlier cancellation point of this plan.
        self.store.discard_cancelled(run.plan_path)

    def _soft_cancel(self, run: _Run, index: int) -> RunOutcome:
        run.state = run.state.model_copy(
            update={"current_task_index": index, "paused_at_checkpoint": False, "saved_at": self._clock()}
        )
        self.store.save_execution_state(run.state)
        self.store.save_cancelled(run.plan_path, index, now=self._clock())
        self.store.clear_active()
        logger.info("plan_run event=cancelled plan_path=%s task_index=%s", run.plan_path, index)
        run.out.write(render.render_cancelled(run.results, len(run.plan.tasks)))
        return RunOutcome(
            status="cancelled",
            plan_path=run.plan_path,
            task_index=index,
            rendered=run.out.text(),
            results=list(run.results),
            decisions=dict(run.state.decisions),
        )

    def _complete(self, run: _Run) -> RunOutcome:
        decisions = dict(run.state.decisions)
        self.store.delete_execution_state(run.plan_path)
        self.store.discard_cancelled(run.plan_path)
        self.store.clear_active()
        run.out.write(
            render.render_final_report(run.plan, run.results, decisions=decisions, mode=run.mode)
        )

        summary_path: str | None = None
        summary_commit: str | None = None
        all_succeeded = len(run.results) == len(run.plan.tasks) and all(
            result.success for result in run.results
        )
        if all_succeeded:
            summary_path, summary_commit = self._write_summary(run, decisions)

        logger.info(
            "plan_run event=completed plan_path=%s succeeded=%s total=%s summary=%s",
            run.plan_path,
            sum(1 for result in run.results if result.success),
            len(run.plan.tasks),
            summary_path,
        )
        return RunOutcome(
            status="completed",
            plan_path=run.plan_path,
            rendered=run.out.text(),
            results=list(run.results),
            decisions=decisions,
            summary_path=summary_path,
            summary_commit=summary_commit,
        )

    def _write_summary(self, run: _Run, decisions: dict[str, str]) -> tuple[str | None, str | None]:
        files = sorted({path for result in run.results for path in (result.files or [])})
        config = SummaryConfig(
            phase=run.plan.phase,
            plan_number=run.plan.plan_number,
            objective=run.plan.objective,
            started_at=run.started_at,
            finished_at=self._clock(),
            tasks=run.plan.tasks,
            commits=run.commits,
            files_modified=files,
            decisions=decisions,
        )
        phase_dir = Path(run.plan_path).parent.name or run.plan.phase
        saved = save_summary(self.workspace_root, phase_dir, run.plan.plan_number, config)
        if not saved.success or saved.path is None:
            run.out.write(f"*Summary generation failed: {saved.error}*\n\n")
            return None, None

        relative = saved.path.relative_to(self.workspace_root).as_posix()
        run.out.write(f"### Summary Generated\n\nCreated: `{relative}`\n\n")
        manager = self.commit_manager
        if not self.settings.auto_commit or manager is None or not manager.is_repository():
            return relative, None

        message = summary_commit_message(run.plan.phase, run.plan.plan_number)
        try:
            manager.stage(committable_files([relative], self.workspace_root))
            result = manager.commit(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("plan_summary event=commit_failed error=%s", exc)
            run.out.write(f"*Summary commit failed: {exc}*\n\n")
            return relative, None
        if result.success and result.hash:
            run.out.write(f"**Summary committed:** `{result.hash}` - {message}\n\n")
            return relative, result.hash
        logger.warning("plan_summary event=commit_failed error=%s", result.error)
        return relative, None


def decision_key(task_index: int) -> str:
    return f"task-{task_index + 1}"


def _resumable(cancelled_index: int, state: ExecutionState | None) -> bool:
    """A cancelled record is live only while saved progress still sits at its task."""
    return (
        state is not None
        and not state.paused_at_checkpoint
        and state.current_task_index == cancelled_index
    )


def _is_checkpoint(task: Task) -> bool:
    return isinstance(task, (CheckpointVerifyTask, CheckpointDecisionTask))


def _seed_results(plan: Plan, state: ExecutionState) -> list[TaskResult]:
    by_id = {task.id: task for task in plan.tasks}
    failed = set(state.failed_tasks)
    skipped = set(state.skipped_tasks)
    results: list[TaskResult] = []
    for task_id in state.completed_tasks:
        task = by_id.get(task_id)
        if task is None:
            continue
        results.append(
            TaskResult(
                task_id=task_id,
                success=task_id not in failed and task_id not in skipped,
                name=task.name,
                files=list(task.files) if isinstance(task, AutoTask) else None,
                skipped=task_id in skipped,
            )
        )
    return results


def build_coordinator(
    settings: Settings,
    *,
    store: SessionStateStore,
    model: ChatModel | None = None,
    confirm_task: Callable[[str], bool] | None = None,
    builtin_tools: BuiltinTools | None = None,
) -> ExecutionCoordinator:
    workspace_root = settings.resolved_workspace_root()
    tools = builtin_tools or BuiltinTools(
        workspace_root=workspace_root,
        log_dir=workspace_root / settings.state_dir / "terminals",
        command_timeout_s=settings.tool_timeout_s,
    )
    registry = build_registry(tools)
    invoker = ToolInvoker(
        registry=registry,
        tool_timeout_s=settings.tool_timeout_s,
        max_retries=settings.tool_max_retries,
        base_delay_s=settings.tool_retry_base_delay_s,
    )
    return ExecutionCoordinator(
        store=store,
        model=model,
        invoker=invoker,
        tools=tool_declarations(registry),
        settings=settings,
        commit_manager=GitCommitManager(workspace_root) if settings.auto_commit else None,
        issue_logger=MarkdownIssueLogger(workspace_root),
        confirm_task=confirm_task,
    )
