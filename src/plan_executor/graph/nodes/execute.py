"""Execute node: drive the tool-calling loop for the task conversation."""

from __future__ import annotations

from plan_executor.agent.tool_loop import run_tool_loop
from plan_executor.graph.state import AutoTaskRuntime, AutoTaskState


def run(state: AutoTaskState, *, runtime: AutoTaskRuntime) -> AutoTaskState:
    result = run_tool_loop(
        model=runtime.model,
        messages=state.get("messages", []),
        invoker=runtime.invoker,
        tools=runtime.tools,
        max_iterations=runtime.max_iterations,
        is_cancelled=runtime.is_cancelled,
        emit=runtime.emit,
        on_activity=runtime.on_activity,
        workspace_root=runtime.workspace_root,
    )
    return {
        "tool_output": result.tool_output,
        "cancelled": result.cancelled,
        "tool_loop": {
            "iterations": result.iterations,
            "hit_iteration_cap": result.hit_iteration_cap,
            "tool_calls": len(result.tool_calls),
            "failed_tool_calls": result.failed_tool_calls,
            "events": [
                {
                    "tool": call.tool,
                    "status": "ok" if call.ok else "failed",
                    "attempts": call.attempts,
                    "duration_ms": call.duration_ms,
                    "transient": call.transient,
                }
                for call in result.tool_calls
            ],
        },
    }
