"""Cooperative cancellation tokens shared between a run and its controller."""

from __future__ import annotations

import threading


class CancellationToken:
    """Set once by a controller (signal handler, HTTP request), polled by the run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()


class CancellationRegistry:
    """One live token per plan path."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def open(self, plan_path: str) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            self._tokens[plan_path] = token
        return token

    def cancel(self, plan_path: str) -> bool:
        with self._lock:
            token = self._tokens.get(plan_path)
        if token is None:
            return False
        token.cancel()
        return True

    def close(self, plan_path: str, token: CancellationToken) -> None:
        with self._lock:
            if self._tokens.get(plan_path) is token:
                del self._tokens[plan_path]

    def active(self) -> list[str]:
        with self._lock:
            return sorted(self._tokens)
