from __future__ import annotations

import posixpath
from typing import Optional

from langchain_core.messages import ToolMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from devteam.config import Settings, get_settings

from .nodes import (
    decode_result,
    last_message,
    make_agent_node,
    make_human_wait_node,
    tool_dispatch,
)
from .roles import ARCHITECT, DEVELOPER, PM, QA, ROLES, next_role, pipeline
from .state import State
from .turns import classify_turn

TOOL_DISPATCH = "tool_dispatch"
HUMAN_WAIT = "human_wait"

# Writing one of these files hands the project from its owner to the next stage.
HANDOFF_ARTIFACTS: dict[str, tuple[str, str]] = {
    "requirements.md": (PM, ARCHITECT),
    "architecture.md": (ARCHITECT, DEVELOPER),
}


def route_after_agent(
    state: State,
    role_key: str,
    *,
    enable_qa: bool,
    pause_on_complete: bool,
) -> str:
    """pm / architect / developer: tools first, then sentinels, then hand-off."""
    turn = classify_turn(last_message(state))
    if turn.kind == "tool_call":
        return TOOL_DISPATCH
    if turn.kind == "clarify":
        return HUMAN_WAIT
    if turn.kind == "complete":
        return HUMAN_WAIT if pause_on_complete else END
    # The last pipeline stage handing off means end of cycle review.
    return next_role(role_key, enable_qa) or HUMAN_WAIT


def route_after_qa(state: State, *, max_rework: int, pause_on_complete: bool) -> str:
    turn = classify_turn(last_message(state))
    if turn.kind == "tool_call":
        return TOOL_DISPATCH
    if turn.kind == "clarify":
        return HUMAN_WAIT
    if turn.kind == "complete":
        return HUMAN_WAIT if pause_on_complete else END
    rework = int(state.get("rework_count") or 0)
    if rework >= max_rework:
        return HUMAN_WAIT
    return DEVELOPER


def _written_paths(state: State) -> list[str]:
    # Tool results of the latest dispatch sit at the tail of the history.
    paths: list[str] = []
    for msg in reversed(state.get("messages") or []):
        if not isinstance(msg, ToolMessage):
            break
        content = msg.content if isinstance(msg.content, str) else ""
        if '"file_created"' not in content:
            continue
        payload = decode_result(content)
        if payload.get("status") == "file_created" and payload.get("path"):
            paths.append(str(payload["path"]))
    return paths


def route_after_tools(state: State) -> str:
    """Back to the caller unless it wrote the artifact that ends its stage."""
    caller = state.get("active_role") or PM
    for path in _written_paths(state):
        owner_and_target = HANDOFF_ARTIFACTS.get(posixpath.basename(path))
        if owner_and_target and owner_and_target[0] == caller:
            return owner_and_target[1]
    return caller


def build_graph(settings: Optional[Settings] = None) -> StateGraph:
    settings = settings or get_settings()
    roles = pipeline(settings.enable_qa)
    builder = StateGraph(State)

    for key in roles:
        builder.add_node(key, make_agent_node(ROLES[key]))
    builder.add_node(TOOL_DISPATCH, tool_dispatch)
    builder.add_node(HUMAN_WAIT, make_human_wait_node(settings.max_qa_rework))

    builder.add_edge(START, PM)
    # Every human reply is re-triaged by the PM.
    builder.add_edge(HUMAN_WAIT, PM)

    for key in roles:
        if key == QA:
            continue
        successor = next_role(key, settings.enable_qa) or HUMAN_WAIT
        builder.add_conditional_edges(
            key,
            _agent_router(key, settings),
            sorted({TOOL_DISPATCH, HUMAN_WAIT, successor, END}),
        )

    if settings.enable_qa:
        builder.add_conditional_edges(
            QA,
            _qa_router(settings),
            [TOOL_DISPATCH, HUMAN_WAIT, DEVELOPER, END],
        )

    builder.add_conditional_edges(TOOL_DISPATCH, route_after_tools, list(roles))
    return builder


def _agent_router(role_key: str, settings: Settings):
    def route(state: State) -> str:
        return route_after_agent(
            state,
            role_key,
            enable_qa=settings.enable_qa,
            pause_on_complete=settings.pause_on_complete,
        )

    route.__name__ = f"route_from_{role_key}"
    return route


def _qa_router(settings: Settings):
    def route_from_qa(state: State) -> str:
        return route_after_qa(
            state,
            max_rework=settings.max_qa_rework,
            pause_on_complete=settings.pause_on_complete,
        )

    return route_from_qa


_checkpointer: Optional[MemorySaver] = None
_compiled: Optional[CompiledStateGraph] = None


def get_checkpointer() -> MemorySaver:
    global _checkpointer
    if _checkpointer is None:
        _checkpointer = MemorySaver()
    return _checkpointer


def get_compiled_graph() -> CompiledStateGraph:
    """Graph compiled with the process-wide in-memory checkpointer."""
    global _compiled
    if _compiled is None:
        _compiled = build_graph().compile(checkpointer=get_checkpointer())
    return _compiled


def reset_compiled_graph() -> None:
    global _checkpointer, _compiled
    _checkpointer = None
    _compiled = None
