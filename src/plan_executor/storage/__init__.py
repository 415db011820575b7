"""Durable session state: records, key-value backends and the typed store."""

from plan_executor.storage.base import KeyValueStore
from plan_executor.storage.file import JsonFileKeyValueStore
from plan_executor.storage.memory import InMemoryKeyValueStore
from plan_executor.storage.models import (
    ActiveExecutionInfo,
    CancelledExecutionInfo,
    ExecutionState,
)
from plan_executor.storage.postgres import PostgresKeyValueStore
from plan_executor.storage.session import SessionStateStore, build_store

__all__ = [
    "ActiveExecutionInfo",
    "CancelledExecutionInfo",
    "ExecutionState",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "PostgresKeyValueStore",
    "SessionStateStore",
    "build_store",
]
