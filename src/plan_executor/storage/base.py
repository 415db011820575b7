"""Storage interface for durable session state."""

from __future__ import annotations

from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Namespaced durable key-value store.

    Every ``set``/``delete`` must be durable when it returns.
    """

    def migrate(self) -> None: ...

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...
