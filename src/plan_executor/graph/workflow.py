"""LangGraph pipeline for one auto task.

scaffold -> prompt -> execute -> verify -> commit; a scaffolding task that
ran its generator skips the model and goes straight to commit.
"""

from langgraph.graph import END, StateGraph

from plan_executor.graph.nodes import commit, execute, prompt, scaffold, verify
from plan_executor.graph.state import AutoTaskRuntime, AutoTaskState


def build_auto_task_graph(runtime: AutoTaskRuntime):
    def _scaffold(state: AutoTaskState) -> AutoTaskState:
        return scaffold.run(state, runtime=runtime)

    def _prompt(state: AutoTaskState) -> AutoTaskState:
        return prompt.run(state, runtime=runtime)

    def _execute(state: AutoTaskState) -> AutoTaskState:
        return execute.run(state, runtime=runtime)

    def _verify(state: AutoTaskState) -> AutoTaskState:
        return verify.run(state, runtime=runtime)

    def _commit(state: AutoTaskState) -> AutoTaskState:
        return commit.run(state, runtime=runtime)

    def _after_scaffold(state: AutoTaskState) -> str:
        scaffolding = state.get("scaffolding", {})
        if not scaffolding.get("detected", False):
            return "prompt"
        return "commit" if scaffolding.get("success", False) else "stop"

    def _after_execute(state: AutoTaskState) -> str:
        return "stop" if state.get("cancelled", False) else "verify"

    def _after_verify(state: AutoTaskState) -> str:
        verification = state.get("verification", {})
        if verification.get("passed", False) and not state.get("cancelled", False):
            return "commit"
        return "stop"

    graph = StateGraph(AutoTaskState)

    graph.add_node("scaffold", _scaffold)
    graph.add_node("prompt", _prompt)
    graph.add_node("execute", _execute)
    graph.add_node("verify", _verify)
    graph.add_node("commit", _commit)

    graph.set_entry_point("scaffold")
    graph.add_conditional_edges(
        "scaffold", _after_scaffold, {"prompt": "prompt", "commit": "commit", "stop": END}
    )
    graph.add_edge("prompt", "execute")
    graph.add_conditional_edges("execute", _after_execute, {"verify": "verify", "stop": END})
    graph.add_conditional_edges("verify", _after_verify, {"commit": "commit", "stop": END})
    graph.add_edge("commit", END)

    return graph.compile()
