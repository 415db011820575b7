"""Input/output contracts for built-in agent tools."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ToolOutput(StrictModel):
    """Every tool reports plain text; this is what the failure classifier reads."""

    text: str


class CreateFileInput(StrictModel):
    file_path: str = Field(min_length=1, description="Absolute path of the file to create")
    content: str = Field(description="Full file content")


class CreateDirectoryInput(StrictModel):
    dir_path: str = Field(min_length=1, description="Absolute path of the directory to create")


class ReadFileInput(StrictModel):
    file_path: str = Field(min_length=1, description="Absolute path of the file to read")


class EditFileInput(StrictModel):
    file_path: str = Field(min_length=1, description="Absolute path of the file to edit")
    old_text: str = Field(min_length=1, description="Exact text to replace; must match once")
    new_text: str = Field(description="Replacement text")


class RunCommandInput(StrictModel):
    command: str = Field(min_length=1, description="Shell command to run to completion")
    cwd: str | None = Field(default=None, description="Working directory (absolute)")
    timeout_s: float | None = Field(default=None, gt=0, description="Command timeout in seconds")


class RunCommandOutput(ToolOutput):
    exit_code: int
    stdout: str
    stderr: str


class RunInTerminalInput(StrictModel):
    command: str = Field(min_length=1, description="Long-running command, e.g. a dev server")
    name: str | None = Field(default=None, description="Name of the managed background process")
    cwd: str | None = Field(default=None, description="Working directory (absolute)")


class WaitForPortInput(StrictModel):
    port: int = Field(ge=1, le=65535)
    host: str = "localhost"
    timeout_ms: int = Field(default=30000, ge=1)
    interval_ms: int = Field(default=500, ge=1)


class HttpHealthCheckInput(StrictModel):
    url: str = Field(min_length=1)
    expected_status: int = Field(default=200, ge=100, le=599)
    timeout_ms: int = Field(default=30000, ge=1)
    interval_ms: int = Field(default=1000, ge=1)
    max_retries: int = Field(default=30, ge=1)
