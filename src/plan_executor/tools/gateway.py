"""Schema-enforcing tool invocation gateway with timeout and transient-error retry."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from plan_executor.tools.registry import ToolSpec

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"rate[\s_-]?limit", re.IGNORECASE),
    re.compile(r"too many requests", re.IGNORECASE),
    re.compile(r"time[\s_-]?d?\s?out", re.IGNORECASE),
    re.compile(r"ECONNRESET|ETIMEDOUT|ECONNREFUSED|EPIPE", re.IGNORECASE),
    re.compile(r"connection (?:reset|aborted|refused)", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"\b(?:429|503)\b"),
    re.compile(r"service unavailable", re.IGNORECASE),
)


# Slack on top of a tool's own timeout before the gateway abandons the worker.
DEADLINE_MARGIN_S = 5.0


class ToolDeadlineExceeded(TimeoutError):
    """The gateway stopped waiting; the abandoned call may still be running."""


def is_transient_error(message: str) -> bool:
    return any(pattern.search(message) for pattern in TRANSIENT_ERROR_PATTERNS)


@dataclass(frozen=True)
class ToolInvocationResult:
    """Explicit outcome of one tool call; errors are values, never raised."""

    tool: str
    ok: bool
    content: str = ""
    error: str | None = None
    attempts: int = 1
    duration_ms: float = 0.0
    transient: bool = False
    implementation: str = "unknown"

    @property
    def text(self) -> str:
        return self.content if self.ok else f"Error: {self.error}"


class ToolInvoker:
    """Invoke registered tools with strict validation and bounded retry.

    Only errors matching ``TRANSIENT_ERROR_PATTERNS`` are retried; the delay
    before retry ``n`` is ``n * base_delay_s``. A call that outlives the
    gateway deadline is reported once and never retried, because its worker
    cannot be stopped.
    """

    def __init__(
        self,
        *,
        registry: dict[str, ToolSpec],
        tool_timeout_s: float = 120.0,
        max_retries: int = 2,
        base_delay_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.tool_timeout_s = tool_timeout_s
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self._sleep = sleep

    def invoke(self, tool_name: str, args: dict[str, Any]) -> ToolInvocationResult:
        started_at = time.perf_counter()
        spec = self.registry.get(tool_name)
        if spec is None:
            return ToolInvocationResult(
                tool=tool_name,
                ok=False,
                error=f"Unknown tool: {tool_name}",
                duration_ms=_duration_ms(started_at),
            )

        try:
            payload = spec.input_model.model_validate(args)
        except ValidationError as exc:
            return ToolInvocationResult(
                tool=tool_name,
                ok=False,
                error=f"Invalid input for {tool_name}: {_validation_summary(exc)}",
                duration_ms=_duration_ms(started_at),
                implementation=spec.implementation,
            )

        attempts = 0
        final_error = "unknown error"
        transient = False
        for attempt in range(self.max_retries + 1):
            attempts = attempt + 1
            try:
                output = self._execute_once(tool_name, spec, payload)
            except ToolDeadlineExceeded as exc:
                # Retrying would start a second copy next to the one still running.
                final_error = str(exc)
                transient = False
                break
            except Exception as exc:  # noqa: BLE001
                final_error = str(exc) or exc.__class__.__name__
                transient = is_transient_error(final_error)
                if not transient or attempt >= self.max_retries:
                    break
                delay_s = attempts * self.base_delay_s
                logger.warning(
                    "tool_invoke event=retry tool=%s attempt=%s delay_s=%s error=%s",
                    tool_name,
                    attempts,
                    delay_s,
                    final_error,
                )
                if delay_s > 0:
                    self._sleep(delay_s)
                continue
            return ToolInvocationResult(
                tool=tool_name,
                ok=True,
                content=output,
                attempts=attempts,
                duration_ms=_duration_ms(started_at),
                implementation=spec.implementation,
            )

        logger.warning(
            "tool_invoke event=failed tool=%s attempts=%s transient=%s error=%s",
            tool_name,
            attempts,
            transient,
            final_error,
        )
        return ToolInvocationResult(
            tool=tool_name,
            ok=False,
            error=final_error,
            attempts=attempts,
            duration_ms=_duration_ms(started_at),
            transient=transient,
            implementation=spec.implementation,
        )

    def deadline_for(self, payload: Any) -> float:
        """Gateway wait for one call, never shorter than the tool's own timeout."""
        own_timeout_s = getattr(payload, "timeout_s", None)
        if own_timeout_s is None and getattr(payload, "timeout_ms", None) is not None:
            own_timeout_s = payload.timeout_ms / 1000.0
        if own_timeout_s is None:
            return self.tool_timeout_s
        return max(self.tool_timeout_s, own_timeout_s + DEADLINE_MARGIN_S)

    def _execute_once(self, tool_name: str, spec: ToolSpec, payload: Any) -> str:
        deadline_s = self.deadline_for(payload)
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(spec.fn, payload)
            try:
                raw_output = future.result(timeout=deadline_s)
            except TimeoutError as exc:
                if future.done():
                    # The tool raised its own TimeoutError, e.g. a killed command.
                    raise
                raise ToolDeadlineExceeded(
                    f"Tool '{tool_name}' timed out after {deadline_s:.2f}s"
                ) from exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        validated = spec.output_model.model_validate(raw_output)
        return str(getattr(validated, "text", "") or validated.model_dump_json())


def _validation_summary(exc: ValidationError) -> str:
    parts = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "input"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


def _duration_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
