"""In-memory storage backend for tests only."""

from __future__ import annotations

import copy
from typing import Any


class InMemoryKeyValueStore:
    """Simple in-memory implementation for unit tests."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def migrate(self) -> None:
        return None

    def get(self, key: str) -> Any | None:
        value = self._values.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._values)
