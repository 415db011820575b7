"""Bounded multi-turn tool-calling loop.

Each turn sends the conversation plus tool declarations to the model and
consumes its events. Text is forwarded to ``emit``; tool calls are invoked one
at a time through the gateway and their results are fed back on the next turn.
The loop ends when a turn requests no tools, the iteration cap is hit, or
cancellation is observed between events.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from plan_executor.agent.events import (
    ChatMessage,
    ModelEvent,
    TextChunk,
    ToolCallRequest,
    ToolResultPart,
)
from plan_executor.agent.model import ChatModel
from plan_executor.errors import ModelProviderError
from plan_executor.tools.gateway import ToolInvocationResult, ToolInvoker
from plan_executor.tools.registry import ToolKind, format_tool_message

logger = logging.getLogger(__name__)


@dataclass
class ToolLoopResult:
    tool_output: str = ""
    text: str = ""
    iterations: int = 0
    hit_iteration_cap: bool = False
    cancelled: bool = False
    tool_calls: list[ToolInvocationResult] = field(default_factory=list)

    @property
    def failed_tool_calls(self) -> int:
        return sum(1 for call in self.tool_calls if not call.ok)


def run_tool_loop(
    *,
    model: ChatModel,
    messages: Sequence[ChatMessage],
    invoker: ToolInvoker,
    tools: Sequence[dict[str, Any]],
    max_iterations: int = 50,
    is_cancelled: Callable[[], bool] | None = None,
    emit: Callable[[str], None] | None = None,
    on_activity: Callable[[], None] | None = None,
    workspace_root: str | Path | None = None,
) -> ToolLoopResult:
    conversation = list(messages)
    result = ToolLoopResult()
    output_parts: list[str] = []
    text_parts: list[str] = []
    cancelled = is_cancelled or (lambda: False)
    write = emit or (lambda _chunk: None)

    while result.iterations < max_iterations:
        if cancelled():
            result.cancelled = True
            break
        result.iterations += 1

        turn_text: list[str] = []
        calls: list[ToolCallRequest] = []
        results: list[ToolResultPart] = []
        for event in _model_events(model, conversation, tools):
            if isinstance(event, TextChunk):
                write(event.text)
                turn_text.append(event.text)
            elif isinstance(event, ToolCallRequest):
                calls.append(event)
                invocation = _invoke(invoker, event, write, workspace_root)
                result.tool_calls.append(invocation)
                if on_activity is not None:
                    on_activity()
                # Classifier input: successful, non-read_file output only (see DESIGN.md).
                if (
                    invocation.ok
                    and invocation.content
                    and ToolKind.from_name(event.name) is not ToolKind.READ_FILE
                ):
                    output_parts.append(invocation.content)
                results.append(
                    ToolResultPart(
                        call_id=event.call_id,
                        name=event.name,
                        content=invocation.text,
                        is_error=not invocation.ok,
                    )
                )
            if cancelled():
                result.cancelled = True
                break
        text_parts.extend(turn_text)

        if result.cancelled or not calls:
            break

        conversation.append(
            ChatMessage(role="assistant", text="".join(turn_text), tool_calls=tuple(calls))
        )
        conversation.append(ChatMessage(role="user", tool_results=tuple(results)))
    else:
        result.hit_iteration_cap = True
        logger.warning("tool_loop event=iteration_cap iterations=%s", result.iterations)
        write("\n\n*Maximum tool iterations reached.*\n\n")

    result.tool_output = "\n".join(output_parts)
    result.text = "".join(text_parts)
    logger.info(
        "tool_loop event=finished iterations=%s tool_calls=%s failed_tool_calls=%s cancelled=%s",
        result.iterations,
        len(result.tool_calls),
        result.failed_tool_calls,
        result.cancelled,
    )
    return result


def _model_events(
    model: ChatModel,
    conversation: Sequence[ChatMessage],
    tools: Sequence[dict[str, Any]],
) -> Iterator[ModelEvent]:
    try:
        stream = iter(model.stream(conversation, tools))
    except ModelProviderError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ModelProviderError(f"Model request failed: {exc}") from exc
    while True:
        try:
            event = next(stream)
        except StopIteration:
            return
        except ModelProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ModelProviderError(f"Model stream failed: {exc}") from exc
        yield event


def _invoke(
    invoker: ToolInvoker,
    call: ToolCallRequest,
    write: Callable[[str], None],
    workspace_root: str | Path | None,
) -> ToolInvocationResult:
    message = format_tool_message(call.name, call.arguments, workspace_root)
    write(f"\n\n{message.start}\n\n")
    invocation = invoker.invoke(call.name, call.arguments)
    if invocation.ok:
        write(f"{message.complete}\n\n")
    else:
        write(f"**Failed:** {call.name} - {invocation.error}\n\n")
    return invocation
