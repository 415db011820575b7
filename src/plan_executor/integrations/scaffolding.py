"""Project scaffolding commands run with ``.planning/`` moved out of the way.

Generators such as ``create-next-app`` refuse to run in a non-empty directory,
so the planning tree is stashed in a temp directory for the duration of the
command and restored afterwards, whatever the outcome.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

PLANNING_DIR = ".planning"
MAX_OUTPUT_CHARS = 2000

SCAFFOLDING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # JavaScript / TypeScript
        r"\bcreate-next-app\b",
        r"\bcreate-react-app\b",
        r"\bcreate-vue\b",
        r"\bcreate-svelte\b",
        r"\bcreate-astro\b",
        r"\bcreate-remix\b",
        r"\bcreate-t3-app\b",
        r"\bnpm\s+init\b",
        r"\bnpx\s+init\b",
        r"\byarn\s+create\b",
        r"\bpnpm\s+create\b",
        r"\bbun\s+create\b",
        r"\bnpm\s+create\b",
        # Rust
        r"\bcargo\s+(?:init|new)\b",
        # Go
        r"\bgo\s+mod\s+init\b",
        # Python
        r"\bpoetry\s+new\b",
        r"\bdjango-admin\s+startproject\b",
        r"\bflask\b.*\binit\b",
        # .NET
        r"\bdotnet\s+new\b",
        # Ruby
        r"\brails\s+new\b",
        r"\bbundle\s+init\b",
        # PHP
        r"\bcomposer\s+create-project\b",
        r"\blaravel\s+new\b",
        # Mobile
        r"\bnpx\s+react-native\s+init\b",
        r"\bflutter\s+create\b",
        r"\bexpo\s+init\b",
    )
)

_LAUNCHERS = r"(?:npx|npm|yarn|pnpm|bun|cargo|go|dotnet|rails|composer|flutter|expo)"

_QUOTED_COMMANDS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"'({_LAUNCHERS}\s+[^']+)'", re.IGNORECASE),
    re.compile(rf"`({_LAUNCHERS}\s+[^`]+)`", re.IGNORECASE),
)

# Unquoted commands run to the end of the line.
_BARE_COMMANDS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(npx\s+create-[\w-]+(?:@[\w.]+)?(?:[ \t]+\S+)*)",
        r"(npm\s+(?:init|create)\s+[\w@/-]+(?:[ \t]+\S+)*)",
        r"(yarn\s+create\s+[\w@/-]+(?:[ \t]+\S+)*)",
        r"(pnpm\s+create\s+[\w@/-]+(?:[ \t]+\S+)*)",
        r"(bun\s+create\s+[\w@/-]+(?:[ \t]+\S+)*)",
        r"(cargo\s+(?:init|new)(?:[ \t]+\S+)*)",
        r"(go\s+mod\s+init(?:[ \t]+\S+)*)",
        r"(dotnet\s+new\s+\w+(?:[ \t]+\S+)*)",
        r"(rails\s+new(?:[ \t]+\S+)*)",
        r"(composer\s+create-project(?:[ \t]+\S+)*)",
        r"(flutter\s+create(?:[ \t]+\S+)*)",
        r"(expo\s+init(?:[ \t]+\S+)*)",
    )
)

DEFAULT_GITIGNORE = """# Dependencies
node_modules/
.pnp
.pnp.js

# Build outputs
dist/
build/
.next/
out/

# Environment
.env
.env.local
.env.*.local

# Logs
*.log
npm-debug.log*

# IDE
.idea/
.vscode/
*.swp

# OS
.DS_Store
Thumbs.db
"""

REQUIRED_GITIGNORE_ENTRIES: tuple[str, ...] = ("node_modules/", ".env", "dist/", "build/", ".next/")


@dataclass(frozen=True)
class ScaffoldingResult:
    success: bool
    output: str = ""
    error: str | None = None


def is_scaffolding_task(action: str) -> bool:
    return any(pattern.search(action) for pattern in SCAFFOLDING_PATTERNS)


def extract_scaffolding_command(action: str) -> str | None:
    """Pull the runnable command out of a task action.

    Quoted and backticked commands win over bare ones, since bare matches
    swallow the rest of the line.
    """
    for pattern in (*_QUOTED_COMMANDS, *_BARE_COMMANDS):
        match = pattern.search(action)
        if match:
            return match.group(1).strip()
    return None


def scaffolding_command(action: str) -> str | None:
    """The command to run for a scaffolding task, or None for any other task."""
    if not is_scaffolding_task(action):
        return None
    return extract_scaffolding_command(action)


def ensure_gitignore(workspace_root: str | Path) -> str | None:
    """Create ``.gitignore`` or append missing required entries.

    Returns a short description of what changed, or None when nothing did.
    """
    path = Path(workspace_root) / ".gitignore"
    try:
        if not path.exists():
            path.write_text(DEFAULT_GITIGNORE, encoding="utf-8")
            return "Created .gitignore with default entries"
        existing = path.read_text(encoding="utf-8")
        present = {line.strip() for line in existing.splitlines()}
        missing = [entry for entry in REQUIRED_GITIGNORE_ENTRIES if entry not in present]
        if not missing:
            return None
        prefix = "" if existing.endswith("\n") or not existing else "\n"
        with path.open("a", encoding="utf-8") as handle:
            handle.write(prefix + "\n# Added by plan-executor\n" + "\n".join(missing) + "\n")
        return f"Added missing entries to .gitignore: {', '.join(missing)}"
    except OSError as exc:
        logger.warning("scaffold event=gitignore_failed path=%s error=%s", path, exc)
        return f"Could not update .gitignore: {exc}"


def run_scaffolding(
    workspace_root: str | Path,
    command: str,
    *,
    timeout_s: float = 120.0,
    emit: Callable[[str], None] | None = None,
) -> ScaffoldingResult:
    root = Path(workspace_root)
    planning = root / PLANNING_DIR
    write = emit or (lambda _chunk: None)

    stash: Path | None = None
    if planning.is_dir():
        stash = Path(tempfile.mkdtemp(prefix="plan-executor-planning-")) / PLANNING_DIR
        shutil.move(str(planning), str(stash))
        logger.info("scaffold event=planning_stashed stash=%s", stash)
        write("*Moved .planning/ aside while scaffolding.*\n\n")

    restore_error: str | None = None
    try:
        result = _run_command(root, command, timeout_s=timeout_s, write=write)
    finally:
        if stash is not None:
            restore_error = _restore_planning(stash, planning, write)

    if restore_error is not None:
        return ScaffoldingResult(success=False, output=result.output, error=restore_error)
    if result.success:
        change = ensure_gitignore(root)
        if change:
            write(f"*{change}*\n\n")
    return result


def _run_command(
    root: Path, command: str, *, timeout_s: float, write: Callable[[str], None]
) -> ScaffoldingResult:
    logger.info("scaffold event=run command=%s cwd=%s", command, root)
    write(f"**Running:** `{command}`\n\n")
    try:
        completed = subprocess.run(
            command,
            shell=True,
            cwd=root,
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired:
        logger.warning("scaffold event=timeout command=%s timeout_s=%s", command, timeout_s)
        return ScaffoldingResult(
            success=False, error=f"Scaffolding command failed: timed out after {timeout_s:g}s"
        )
    except OSError as exc:
        logger.warning("scaffold event=failed command=%s error=%s", command, exc)
        return ScaffoldingResult(success=False, error=f"Scaffolding command failed: {exc}")

    stdout = (completed.stdout or "")[:MAX_OUTPUT_CHARS]
    stderr = (completed.stderr or "").strip()
    if stdout.strip():
        write(f"```\n{stdout.rstrip()}\n```\n\n")
    if completed.returncode != 0:
        detail = stderr or stdout.strip() or f"exit code {completed.returncode}"
        logger.warning(
            "scaffold event=failed command=%s returncode=%s", command, completed.returncode
        )
        return ScaffoldingResult(
            success=False,
            output=stdout + stderr,
            error=f"Scaffolding command failed: {detail[:500]}",
        )
    if stderr and "npm WARN" not in stderr:
        write(f"*{stderr[:500]}*\n\n")
    write("**Scaffolding completed successfully**\n\n")
    return ScaffoldingResult(success=True, output=stdout)


def _restore_planning(stash: Path, planning: Path, write: Callable[[str], None]) -> str | None:
    if planning.exists():
        message = f"Could not restore .planning/: {planning} already exists, original kept at {stash}"
        logger.error("scaffold event=restore_blocked planning=%s stash=%s", planning, stash)
        write(f"**Warning:** {message}\n\n")
        return message
    try:
        shutil.move(str(stash), str(planning))
    except OSError as exc:
        logger.error("scaffold event=restore_failed stash=%s error=%s", stash, exc)
        message = f"Could not restore .planning/ from {stash}: {exc}"
        write(f"**Warning:** {message}\n\n")
        return message
    shutil.rmtree(stash.parent, ignore_errors=True)
    logger.info("scaffold event=planning_restored planning=%s", planning)
    write("*Restored .planning/.*\n\n")
    return None
