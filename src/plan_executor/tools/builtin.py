"""Built-in tool implementations: files, commands, background processes, readiness probes."""

from __future__ import annotations

import logging
import re
import socket
import subprocess
import threading
import time
from collections.abc import Callable
from pathlib import Path
from urllib import error, parse, request

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

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 20000


class BuiltinTools:
    """Tool implementations bound to one workspace.

    Background processes started with ``run_in_terminal`` are tracked by name
    so a second start with the same name replaces the first.
    """

    def __init__(
        self,
        *,
        workspace_root: str | Path,
        log_dir: str | Path,
        command_timeout_s: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.workspace_root = Path(workspace_root).resolve()
        self.log_dir = Path(log_dir)
        self.command_timeout_s = command_timeout_s
        self._sleep = sleep
        self._clock = clock
        self._processes: dict[str, subprocess.Popen] = {}
        self._lock = threading.Lock()

    def create_file(self, payload: CreateFileInput) -> ToolOutput:
        path = _require_absolute(payload.file_path, field="file_path")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(payload.content, encoding="utf-8")
        return ToolOutput(text=f"Successfully created file: {path}")

    def create_directory(self, payload: CreateDirectoryInput) -> ToolOutput:
        path = _require_absolute(payload.dir_path, field="dir_path")
        path.mkdir(parents=True, exist_ok=True)
        return ToolOutput(text=f"Successfully created directory: {path}")

    def read_file(self, payload: ReadFileInput) -> ToolOutput:
        path = _require_absolute(payload.file_path, field="file_path")
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return ToolOutput(text=path.read_text(encoding="utf-8", errors="replace"))

    def edit_file(self, payload: EditFileInput) -> ToolOutput:
        path = _require_absolute(payload.file_path, field="file_path")
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        original = path.read_text(encoding="utf-8")
        matches = original.count(payload.old_text)
        if matches != 1:
            raise ValueError(
                f"old_text must match exactly once in {path}; found {matches} matches"
            )
        path.write_text(original.replace(payload.old_text, payload.new_text, 1), encoding="utf-8")
        return ToolOutput(text=f"Successfully edited file: {path}")

    def run_command(self, payload: RunCommandInput) -> RunCommandOutput:
        cwd = self._resolve_cwd(payload.cwd)
        timeout_s = payload.timeout_s or self.command_timeout_s
        logger.info("tool_run event=command cwd=%s command=%s", cwd, payload.command)
        try:
            completed = subprocess.run(
                payload.command,
                shell=True,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            raise TimeoutError(
                f"Command timed out after {timeout_s:.0f}s: {payload.command}"
            ) from exc

        stdout = _truncate(completed.stdout or "")
        stderr = _truncate(completed.stderr or "")
        sections = [f"$ {payload.command}", f"Exit code: {completed.returncode}"]
        if stdout:
            sections.append(f"stdout:\n{stdout}")
        if stderr:
            sections.append(f"stderr:\n{stderr}")
        if completed.returncode != 0:
            sections.append(f"Command failed with exit code {completed.returncode}")
        return RunCommandOutput(
            text="\n".join(sections),
            exit_code=completed.returncode,
            stdout=stdout,
            stderr=stderr,
        )

    def run_in_terminal(self, payload: RunInTerminalInput) -> ToolOutput:
        name = payload.name or payload.command.split()[0]
        cwd = self._resolve_cwd(payload.cwd)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_dir / f"{_safe_name(name)}.log"

        with self._lock:
            existing = self._processes.pop(name, None)
            if existing is not None and existing.poll() is None:
                logger.info("tool_run event=terminal_replaced name=%s pid=%s", name, existing.pid)
                existing.terminate()
            with log_path.open("ab") as log_file:
                process = subprocess.Popen(
                    payload.command,
                    shell=True,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,
                )
            self._processes[name] = process

        logger.info("tool_run event=terminal_started name=%s pid=%s", name, process.pid)
        return ToolOutput(
            text=(
                f'Terminal "{name}" started with command: {payload.command}\n\n'
                "The command is running in the background. Use wait_for_port or "
                "http_health_check to verify the process is ready before proceeding.\n"
                f"Output is written to {log_path}"
            )
        )

    def wait_for_port(self, payload: WaitForPortInput) -> ToolOutput:
        started = self._clock()
        deadline = started + payload.timeout_ms / 1000.0
        while self._clock() < deadline:
            if _port_open(payload.host, payload.port):
                elapsed_ms = int((self._clock() - started) * 1000)
                return ToolOutput(
                    text=(
                        f"Port {payload.port} on {payload.host} is now accepting connections "
                        f"(waited {elapsed_ms}ms)."
                    )
                )
            self._sleep(payload.interval_ms / 1000.0)
        raise TimeoutError(
            f"Timeout waiting for port {payload.port} on {payload.host} "
            f"after {payload.timeout_ms}ms"
        )

    def http_health_check(self, payload: HttpHealthCheckInput) -> ToolOutput:
        parsed = parse.urlparse(payload.url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Invalid URL: {payload.url}")

        started = self._clock()
        deadline = started + payload.timeout_ms / 1000.0
        attempt = 0
        last_status: int | None = None
        last_error: str | None = None
        while attempt < payload.max_retries and self._clock() < deadline:
            attempt += 1
            try:
                status = _http_status(payload.url, timeout_s=5.0)
            except OSError as exc:
                last_error = str(exc)
            else:
                if status == payload.expected_status:
                    elapsed_ms = int((self._clock() - started) * 1000)
                    return ToolOutput(
                        text=(
                            f"Health check passed for {payload.url}\n"
                            f"- Status: {status}\n"
                            f"- Attempts: {attempt}\n"
                            f"- Time: {elapsed_ms}ms"
                        )
                    )
                last_status = status
                last_error = f"Unexpected status {status} (expected {payload.expected_status})"
            self._sleep(payload.interval_ms / 1000.0)

        message = f"Health check failed for {payload.url} after {attempt} attempts."
        if last_status is not None:
            message += f" Last status: {last_status}."
        if last_error:
            message += f" Error: {last_error}"
        raise RuntimeError(message)

    def managed_processes(self) -> list[str]:
        with self._lock:
            return sorted(self._processes)

    def stop_all(self) -> None:
        with self._lock:
            processes = list(self._processes.values())
            self._processes.clear()
        for process in processes:
            if process.poll() is None:
                process.terminate()

    def _resolve_cwd(self, cwd: str | None) -> Path:
        if cwd is None:
            return self.workspace_root
        return _require_absolute(cwd, field="cwd")


def _require_absolute(raw_path: str, *, field: str) -> Path:
    path = Path(raw_path).expanduser()
    if not path.is_absolute():
        raise ValueError(f"{field} must be absolute. Received: {raw_path}")
    return path


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    # Keep the tail: build and test failures are reported last.
    return "...[truncated]...\n" + text[-MAX_OUTPUT_CHARS:]


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "-", name).strip("-") or "terminal"


def _port_open(host: str, port: int) -> bool:
    try:
        with socket.create_connection((host, port), timeout=1.0):
            return True
    except OSError:
        return False


def _http_status(url: str, *, timeout_s: float) -> int:
    req = request.Request(url=url, method="GET")
    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            return int(response.status)
    except error.HTTPError as exc:
        return int(exc.code)
