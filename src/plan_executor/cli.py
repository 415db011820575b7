"""Command-line entrypoint: run plans, inspect or reset their state, serve the API."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from plan_executor.agent.model import build_chat_model
from plan_executor.config.settings import Settings, get_settings
from plan_executor.errors import PlanExecutorError
from plan_executor.execution.cancellation import CancellationToken
from plan_executor.execution.coordinator import build_coordinator
from plan_executor.plan.loader import load_plan_file
from plan_executor.storage import build_store

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="plan-executor",
        description="Execute phase plans task by task with checkpoints and durable resume.",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    run = subcommands.add_parser("run", help="Run or resume a plan.")
    run.add_argument("plan_file", type=Path, help="Plan JSON file (task records).")
    run.add_argument(
        "--plan-path",
        default=None,
        help="Plan identity used as the state key. Defaults to the plan file path.",
    )
    run.add_argument(
        "--signal",
        default=None,
        help="Resume signal: approved, issue or decision:<optionId>.",
    )
    run.add_argument(
        "--context",
        default=None,
        help="Additional guidance for resuming a cancelled run.",
    )
    run.add_argument(
        "--mode",
        choices=("yolo", "guided", "manual"),
        default=None,
        help="Execution mode. Defaults to PLAN_EXECUTOR_EXECUTION_MODE.",
    )

    status = subcommands.add_parser("status", help="Show saved execution state for a plan.")
    status.add_argument("plan_path")

    reset = subcommands.add_parser("reset", help="Delete saved execution state for a plan.")
    reset.add_argument("plan_path")

    serve = subcommands.add_parser("serve", help="Start the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _confirm_from_stdin(preview: str) -> bool:
    if not sys.stdin.isatty():
        return True
    print(preview)
    answer = input("Run this task? [Y/n] ").strip().lower()
    return answer in ("", "y", "yes")


def _run(args: argparse.Namespace, settings: Settings) -> int:
    plan = load_plan_file(args.plan_file)
    plan_path = args.plan_path or args.plan_file.as_posix()
    store = build_store(settings)
    model = build_chat_model(settings) if settings.resolved_openai_api_key() else None
    coordinator = build_coordinator(
        settings, store=store, model=model, confirm_task=_confirm_from_stdin
    )

    token = CancellationToken()

    def _on_sigint(_signum: int, _frame: object) -> None:
        logger.info("plan_run event=cancel_requested plan_path=%s", plan_path)
        token.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        outcome = coordinator.run(
            plan,
            plan_path,
            mode=args.mode,
            resume_signal=args.signal,
            resume_context=args.context,
            is_cancelled=token,
            emit=lambda chunk: print(chunk, end="", flush=True),
        )
    finally:
        signal.signal(signal.SIGINT, previous)
    print()
    if outcome.status == "completed" and not all(result.success for result in outcome.results):
        return 1
    return 0


def _status(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(settings)
    state = store.get_execution_state(args.plan_path)
    if state is None:
        print(f"No saved execution state for {args.plan_path}")
        return 1
    print(json.dumps(state.to_json(), indent=2))
    return 0


def _reset(args: argparse.Namespace, settings: Settings) -> int:
    store = build_store(settings)
    store.delete_execution_state(args.plan_path)
    store.clear_execution_context(args.plan_path)
    print(f"Cleared execution state for {args.plan_path}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("plan_executor.api.main:app", host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        if args.command == "run":
            return _run(args, settings)
        if args.command == "status":
            return _status(args, settings)
        if args.command == "reset":
            return _reset(args, settings)
        return _serve(args)
    except PlanExecutorError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
