"""Verify node: classify the accumulated tool output."""

from __future__ import annotations

from plan_executor.graph.state import AutoTaskRuntime, AutoTaskState


def run(state: AutoTaskState, *, runtime: AutoTaskRuntime) -> AutoTaskState:
    classification = runtime.classifier.classify(state.get("tool_output", ""))
    return {
        "verification": {
            "passed": not classification.failed,
            "reason": classification.reason,
            "signature": classification.signature,
        }
    }
