"""Typed, namespaced access to durable session state.

Key layout:
- ``executionState.<planPath>``: per-plan ``ExecutionState``
- ``activeExecution``: singleton ``ActiveExecutionInfo`` heartbeat
- ``cancelledExecution``: singleton ``CancelledExecutionInfo``
- ``executionContext.<planPath>``: pending context string, consumed once
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from plan_executor.config.settings import Settings
from plan_executor.errors import PersistenceError
from plan_executor.storage.base import KeyValueStore
from plan_executor.storage.models import (
    ActiveExecutionInfo,
    CancelledExecutionInfo,
    ExecutionState,
)

logger = logging.getLogger(__name__)

EXECUTION_STATE_PREFIX = "executionState."
EXECUTION_CONTEXT_PREFIX = "executionContext."
ACTIVE_EXECUTION_KEY = "activeExecution"
CANCELLED_EXECUTION_KEY = "cancelledExecution"

RecordT = TypeVar("RecordT", bound=BaseModel)


def execution_state_key(plan_path: str) -> str:
    return f"{EXECUTION_STATE_PREFIX}{plan_path}"


def execution_context_key(plan_path: str) -> str:
    return f"{EXECUTION_CONTEXT_PREFIX}{plan_path}"


class SessionStateStore:
    """Owns every persisted record of the engine.

    All backend and decoding failures surface as ``PersistenceError`` so the
    coordinator never continues on stale or partially read state.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend

    def migrate(self) -> None:
        try:
            self.backend.migrate()
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(f"State store migration failed: {exc}") from exc

    # Execution state

    def get_execution_state(self, plan_path: str) -> ExecutionState | None:
        return self._get_record(execution_state_key(plan_path), ExecutionState)

    def save_execution_state(self, state: ExecutionState) -> None:
        self._set(execution_state_key(state.plan_path), state.to_json())

    def delete_execution_state(self, plan_path: str) -> None:
        self._delete(execution_state_key(plan_path))

    # Active heartbeat

    def get_active(self) -> ActiveExecutionInfo | None:
        return self._get_record(ACTIVE_EXECUTION_KEY, ActiveExecutionInfo)

    def set_active(self, plan_path: str, task_index: int, *, now: datetime | None = None) -> None:
        info = ActiveExecutionInfo(
            plan_path=plan_path,
            task_index=task_index,
            last_activity_timestamp=now or datetime.now(tz=UTC),
        )
        self._set(ACTIVE_EXECUTION_KEY, info.to_json())

    def touch_active(self, *, now: datetime | None = None) -> None:
        current = self.get_active()
        if current is None:
            return
        self.set_active(current.plan_path, current.task_index, now=now)

    def clear_active(self) -> None:
        self._delete(ACTIVE_EXECUTION_KEY)

    # Cancelled run

    def save_cancelled(
        self, plan_path: str, task_index: int, *, now: datetime | None = None
    ) -> CancelledExecutionInfo:
        info = CancelledExecutionInfo(
            plan_path=plan_path,
            task_index=task_index,
            cancelled_at=now or datetime.now(tz=UTC),
        )
        self._set(CANCELLED_EXECUTION_KEY, info.to_json())
        return info

    def get_cancelled(
        self,
        plan_path: str | None = None,
        *,
        window_s: float,
        now: datetime | None = None,
    ) -> CancelledExecutionInfo | None:
        """Return the cancelled record if it is still inside the resume window.

        Expired records stay in the backend and are simply ignored here.
        """
        info = self._get_record(CANCELLED_EXECUTION_KEY, CancelledExecutionInfo)
        if info is None:
            return None
        if plan_path is not None and info.plan_path != plan_path:
            return None
        current = now or datetime.now(tz=UTC)
        if current - _aware(info.cancelled_at) > timedelta(seconds=window_s):
            logger.info(
                "session_state event=cancelled_expired plan_path=%s task_index=%s",
                info.plan_path,
                info.task_index,
            )
            return None
        return info

    def clear_cancelled(self) -> None:
        self._delete(CANCELLED_EXECUTION_KEY)

    def discard_cancelled(self, plan_path: str) -> bool:
        """Delete the cancelled record if it belongs to ``plan_path``, expired or not."""
        info = self._get_record(CANCELLED_EXECUTION_KEY, CancelledExecutionInfo)
        if info is None or info.plan_path != plan_path:
            return False
        self._delete(CANCELLED_EXECUTION_KEY)
        logger.info(
            "session_state event=cancelled_discarded plan_path=%s task_index=%s",
            plan_path,
            info.task_index,
        )
        return True

    # Execution context

    def store_execution_context(self, plan_path: str, context: str) -> None:
        self._set(execution_context_key(plan_path), context)

    def peek_execution_context(self, plan_path: str) -> str | None:
        value = self._get(execution_context_key(plan_path))
        return value if isinstance(value, str) else None

    def consume_execution_context(self, plan_path: str) -> str | None:
        key = execution_context_key(plan_path)
        value = self._get(key)
        if value is None:
            return None
        self._delete(key)
        return value if isinstance(value, str) else None

    def clear_execution_context(self, plan_path: str) -> None:
        self._delete(execution_context_key(plan_path))

    def _get_record(self, key: str, model: type[RecordT]) -> RecordT | None:
        raw = self._get(key)
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            raise PersistenceError(f"Stored record {key!r} is invalid: {exc}") from exc

    def _get(self, key: str) -> Any | None:
        try:
            return self.backend.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.exception("session_state event=read_failed key=%s", key)
            raise PersistenceError(f"Failed to read {key!r}: {exc}") from exc

    def _set(self, key: str, value: Any) -> None:
        try:
            self.backend.set(key, value)
        except Exception as exc:  # noqa: BLE001
            logger.exception("session_state event=write_failed key=%s", key)
            raise PersistenceError(f"Failed to write {key!r}: {exc}") from exc

    def _delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as exc:  # noqa: BLE001
            logger.exception("session_state event=delete_failed key=%s", key)
            raise PersistenceError(f"Failed to delete {key!r}: {exc}") from exc


def build_store(settings: Settings) -> SessionStateStore:
    backend_name = settings.state_backend.strip().lower()
    backend: KeyValueStore
    if backend_name == "memory":
        from plan_executor.storage.memory import InMemoryKeyValueStore

        backend = InMemoryKeyValueStore()
    elif backend_name == "file":
        from plan_executor.storage.file import JsonFileKeyValueStore

        state_dir = settings.resolved_workspace_root() / settings.state_dir
        backend = JsonFileKeyValueStore(state_dir)
    elif backend_name == "postgres":
        from plan_executor.storage.postgres import PostgresKeyValueStore

        database_url = settings.resolved_database_url()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set PLAN_EXECUTOR_DATABASE_URL or DATABASE_URL "
                "when PLAN_EXECUTOR_STATE_BACKEND=postgres."
            )
        backend = PostgresKeyValueStore(database_url)
    else:
        raise ValueError(f"Unknown state backend: {settings.state_backend}")

    store = SessionStateStore(backend)
    store.migrate()
    return store


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
