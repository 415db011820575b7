"""Tool registry, model-facing declarations, and per-kind progress messages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel

from plan_executor.tools.builtin import BuiltinTools
from plan_executor.tools.schemas import (
    CreateDirectoryInput,
    CreateFileInput,
    EditFileInput,
    HttpHealthCheckInput,
    ReadFileInput,
    RunCommandInput,
    RunCommandOutput,
    RunInTerminalInput,
    ToolOutput,
    WaitForPortInput,
)


class ToolKind(str, Enum):
    CREATE_FILE = "create_file"
    CREATE_DIRECTORY = "create_directory"
    READ_FILE = "read_file"
    EDIT_FILE = "edit_file"
    RUN_COMMAND = "run_command"
    RUN_IN_TERMINAL = "run_in_terminal"
    WAIT_FOR_PORT = "wait_for_port"
    HTTP_HEALTH_CHECK = "http_health_check"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, tool_name: str) -> ToolKind:
        try:
            kind = cls(tool_name)
        except ValueError:
            return cls.UNKNOWN
        return kind


@dataclass(frozen=True)
class ToolSpec:
    kind: ToolKind
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    fn: Callable[[BaseModel], BaseModel]
    implementation: str = "builtin"


@dataclass(frozen=True)
class ToolMessage:
    start: str
    complete: str


TOOL_DESCRIPTIONS: dict[ToolKind, str] = {
    ToolKind.CREATE_FILE: (
        "Create or overwrite a file with the given content. file_path must be absolute; "
        "parent directories are created."
    ),
    ToolKind.CREATE_DIRECTORY: "Create a directory (recursively). dir_path must be absolute.",
    ToolKind.READ_FILE: "Read a text file. file_path must be absolute.",
    ToolKind.EDIT_FILE: (
        "Replace old_text with new_text in a file. old_text must match exactly once."
    ),
    ToolKind.RUN_COMMAND: (
        "Run a shell command to completion and return its exit code, stdout and stderr. "
        "Use for builds, tests and installs; not for servers."
    ),
    ToolKind.RUN_IN_TERMINAL: (
        "Start a long-running command (dev server, watcher) in the background. "
        "Follow with wait_for_port or http_health_check."
    ),
    ToolKind.WAIT_FOR_PORT: "Wait until a TCP port accepts connections.",
    ToolKind.HTTP_HEALTH_CHECK: "Poll a URL until it returns the expected HTTP status.",
}

FILE_TYPES: dict[str, str] = {
    "ts": "TypeScript",
    "tsx": "TypeScript React",
    "js": "JavaScript",
    "jsx": "JavaScript React",
    "json": "JSON",
    "md": "Markdown",
    "css": "CSS",
    "scss": "SCSS",
    "html": "HTML",
    "yaml": "YAML",
    "yml": "YAML",
    "toml": "TOML",
    "py": "Python",
    "go": "Go",
    "rs": "Rust",
    "java": "Java",
    "sql": "SQL",
    "sh": "Shell script",
    "bash": "Bash script",
}


def build_registry(tools: BuiltinTools) -> dict[str, ToolSpec]:
    def _spec(
        kind: ToolKind,
        input_model: type[BaseModel],
        fn: Callable[[Any], BaseModel],
        output_model: type[BaseModel] = ToolOutput,
    ) -> ToolSpec:
        return ToolSpec(
            kind=kind,
            description=TOOL_DESCRIPTIONS[kind],
            input_model=input_model,
            output_model=output_model,
            fn=fn,
        )

    specs = [
        _spec(ToolKind.CREATE_FILE, CreateFileInput, tools.create_file),
        _spec(ToolKind.CREATE_DIRECTORY, CreateDirectoryInput, tools.create_directory),
        _spec(ToolKind.READ_FILE, ReadFileInput, tools.read_file),
        _spec(ToolKind.EDIT_FILE, EditFileInput, tools.edit_file),
        _spec(ToolKind.RUN_COMMAND, RunCommandInput, tools.run_command, RunCommandOutput),
        _spec(ToolKind.RUN_IN_TERMINAL, RunInTerminalInput, tools.run_in_terminal),
        _spec(ToolKind.WAIT_FOR_PORT, WaitForPortInput, tools.wait_for_port),
        _spec(ToolKind.HTTP_HEALTH_CHECK, HttpHealthCheckInput, tools.http_health_check),
    ]
    return {spec.kind.value: spec for spec in specs}


def list_tools() -> list[str]:
    return sorted(kind.value for kind in ToolKind if kind is not ToolKind.UNKNOWN)


def tool_declarations(registry: dict[str, ToolSpec]) -> list[dict[str, Any]]:
    """Function-calling declarations in the OpenAI ``tools`` shape."""
    declarations: list[dict[str, Any]] = []
    for name in sorted(registry):
        spec = registry[name]
        declarations.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": spec.description,
                    "parameters": spec.input_model.model_json_schema(),
                },
            }
        )
    return declarations


def format_tool_message(
    tool_name: str,
    args: dict[str, Any],
    workspace_root: str | Path | None = None,
) -> ToolMessage:
    kind = ToolKind.from_name(tool_name)
    root = str(Path(workspace_root).resolve()) if workspace_root is not None else None

    def rel(value: Any) -> str:
        path = str(value or "unknown")
        if root and path.startswith(root.rstrip("/") + "/"):
            return path[len(root.rstrip("/")) + 1 :]
        return path

    if kind is ToolKind.CREATE_FILE:
        file_path = str(args.get("file_path") or "unknown")
        content = str(args.get("content") or "")
        return ToolMessage(
            start=(
                f"**Creating {file_type(file_path)}:** `{rel(file_path)}` "
                f"({_line_count(content)})"
            ),
            complete=f"Created `{rel(file_path)}`",
        )
    if kind is ToolKind.CREATE_DIRECTORY:
        path = rel(args.get("dir_path"))
        return ToolMessage(
            start=f"**Creating directory:** `{path}/`",
            complete=f"Created directory `{path}/`",
        )
    if kind is ToolKind.EDIT_FILE:
        path = rel(args.get("file_path"))
        return ToolMessage(start=f"**Editing:** `{path}`", complete=f"Edited `{path}`")
    if kind is ToolKind.READ_FILE:
        path = rel(args.get("file_path"))
        return ToolMessage(start=f"*Reading `{path}`...*", complete=f"*Read `{path}`*")
    if kind is ToolKind.RUN_COMMAND:
        command = str(args.get("command") or "unknown")
        return ToolMessage(start=f"**Running:** `{command}`", complete=f"Finished `{command}`")
    if kind is ToolKind.RUN_IN_TERMINAL:
        command = str(args.get("command") or "unknown")
        display_name = str(args.get("name") or command.split(" ")[0])
        return ToolMessage(
            start=f"**Starting terminal:** `{display_name}`\n   Command: `{command}`",
            complete=f"Terminal `{display_name}` started (running in background)",
        )
    if kind is ToolKind.WAIT_FOR_PORT:
        host = str(args.get("host") or "localhost")
        port = args.get("port") or 0
        return ToolMessage(
            start=f"**Waiting for port:** {host}:{port}",
            complete=f"Port {host}:{port} is ready",
        )
    if kind is ToolKind.HTTP_HEALTH_CHECK:
        url = str(args.get("url") or "unknown")
        return ToolMessage(
            start=f"**Health check:** {url}",
            complete=f"Health check passed: {url}",
        )
    return ToolMessage(
        start=f"*Executing tool: {tool_name}...*",
        complete=f"*Tool {tool_name} completed.*",
    )


def file_type(file_path: str) -> str:
    suffix = Path(file_path).suffix.lstrip(".").lower()
    return FILE_TYPES.get(suffix, "file")


def _line_count(content: str) -> str:
    lines = len(content.split("\n"))
    return "1 line" if lines == 1 else f"{lines} lines"
