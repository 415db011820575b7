"""Typed conversation parts exchanged with the chat model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


ModelEvent = Union[TextChunk, ToolCallRequest]


@dataclass(frozen=True)
class ToolResultPart:
    call_id: str
    name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    text: str = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_results: tuple[ToolResultPart, ...] = ()

    @classmethod
    def system(cls, text: str) -> ChatMessage:
        return cls(role="system", text=text)

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(role="user", text=text)
