"""FastAPI app entrypoint for plan-executor."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import Field

from plan_executor.agent.model import ChatModel, build_chat_model
from plan_executor.config.settings import Settings, get_settings
from plan_executor.errors import ModelProviderError, PersistenceError, PlanLoadError
from plan_executor.execution.cancellation import CancellationRegistry
from plan_executor.execution.coordinator import RunOutcome, build_coordinator
from plan_executor.integrations.git import CommitManager
from plan_executor.integrations.issues import IssueLogger
from plan_executor.plan.loader import load_plan
from plan_executor.plan.models import WireModel
from plan_executor.storage import SessionStateStore, build_store
from plan_executor.tools import list_tools


class RunPlanRequest(WireModel):
    plan: dict[str, Any]
    plan_path: str = Field(min_length=1)
    resume_signal: str | None = None
    resume_context: str | None = None
    execution_mode: str | None = None


class CancelPlanRequest(WireModel):
    plan_path: str = Field(min_length=1)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    store_override: SessionStateStore | None,
) -> None:
    if not hasattr(app.state, "store"):
        app.state.store = store_override or build_store(settings)

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "cancellations"):
        app.state.cancellations = CancellationRegistry()


def create_app(
    *,
    store: SessionStateStore | None = None,
    settings_override: Settings | None = None,
    model: ChatModel | None = None,
    commit_manager: CommitManager | None = None,
    issue_logger: IssueLogger | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(app, settings=settings, store_override=store)
        yield

    app_lifespan = lifespan if store is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if store is not None:
        _ensure_runtime_state(app, settings=settings, store_override=store)

    def _get_store(request: Request) -> SessionStateStore:
        if not hasattr(request.app.state, "store"):
            _ensure_runtime_state(request.app, settings=settings, store_override=store)
        return request.app.state.store

    def _get_model() -> ChatModel | None:
        if model is not None:
            return model
        if not settings.resolved_openai_api_key():
            return None
        return build_chat_model(settings)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/tools")
    def tools() -> dict[str, list[str]]:
        return {"tools": list_tools()}

    @app.post("/plans/run", response_model=RunOutcome, response_model_by_alias=True)
    def run_plan(payload: RunPlanRequest, request: Request) -> RunOutcome:
        session_store = _get_store(request)
        try:
            plan = load_plan(payload.plan)
        except PlanLoadError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        try:
            chat_model = _get_model()
        except ModelProviderError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

        coordinator = build_coordinator(settings, store=session_store, model=chat_model)
        if commit_manager is not None:
            coordinator.commit_manager = commit_manager
        if issue_logger is not None:
            coordinator.issue_logger = issue_logger

        registry: CancellationRegistry = request.app.state.cancellations
        token = registry.open(payload.plan_path)
        try:
            return coordinator.run(
                plan,
                payload.plan_path,
                mode=payload.execution_mode,
                resume_signal=payload.resume_signal,
                resume_context=payload.resume_context,
                is_cancelled=token,
            )
        except PersistenceError as exc:
            raise HTTPException(status_code=500, detail=f"State persistence failed: {exc}") from exc
        finally:
            registry.close(payload.plan_path, token)

    @app.post("/plans/cancel")
    def cancel_plan(payload: CancelPlanRequest, request: Request) -> dict[str, Any]:
        registry: CancellationRegistry = request.app.state.cancellations
        if not registry.cancel(payload.plan_path):
            raise HTTPException(status_code=404, detail="No running execution for plan")
        return {"planPath": payload.plan_path, "cancelled": True}

    @app.get("/plans/state")
    def get_plan_state(plan_path: str, request: Request) -> dict[str, Any]:
        session_store = _get_store(request)
        state = session_store.get_execution_state(plan_path)
        active = session_store.get_active()
        cancelled = session_store.get_cancelled(
            plan_path, window_s=settings.cancel_resume_window_s
        )
        return {
            "planPath": plan_path,
            "running": plan_path in request.app.state.cancellations.active(),
            "executionState": state.to_json() if state else None,
            "active": active.to_json() if active and active.plan_path == plan_path else None,
            "cancelled": cancelled.to_json() if cancelled else None,
        }

    @app.delete("/plans/state")
    def reset_plan_state(plan_path: str, request: Request) -> dict[str, Any]:
        session_store = _get_store(request)
        existed = session_store.get_execution_state(plan_path) is not None
        session_store.delete_execution_state(plan_path)
        session_store.clear_execution_context(plan_path)
        cancelled = session_store.get_cancelled(
            plan_path, window_s=settings.cancel_resume_window_s
        )
        if cancelled is not None:
            session_store.clear_cancelled()
        return {"planPath": plan_path, "deleted": existed}

    return app


app = create_app()
