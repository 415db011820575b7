"""Exception types shared across the engine."""

from __future__ import annotations


class PlanExecutorError(RuntimeError):
    """Base class for engine errors."""


class PlanLoadError(PlanExecutorError):
    """Plan document or task records could not be loaded."""


class ModelProviderError(PlanExecutorError):
    """The language model call itself failed (not a tool)."""

    retryable = True


class PersistenceError(PlanExecutorError):
    """Durable session state could not be read or written."""
