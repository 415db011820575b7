"""Tooling layer for schema-validated execution."""

from plan_executor.tools.builtin import BuiltinTools
from plan_executor.tools.gateway import (
    ToolInvocationResult,
    ToolInvoker,
    is_transient_error,
)
from plan_executor.tools.registry import (
    ToolKind,
    ToolMessage,
    ToolSpec,
    build_registry,
    format_tool_message,
    list_tools,
    tool_declarations,
)

__all__ = [
    "BuiltinTools",
    "ToolInvocationResult",
    "ToolInvoker",
    "ToolKind",
    "ToolMessage",
    "ToolSpec",
    "build_registry",
    "format_tool_message",
    "is_transient_error",
    "list_tools",
    "tool_declarations",
]
