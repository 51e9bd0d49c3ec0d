from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langgraph.types import interrupt

from devteam.config import get_settings

from .roles import QA, AgentRole, invoke_agent
from .state import State
from .tools import FILE_WRITE, ToolRegistry, Workspace, encode_result, error_result
from .turns import classify_turn, log_line, message_text, tool_label

logger = logging.getLogger(__name__)

DEFAULT_REVIEW_QUESTION = "The team finished this cycle. Do you want to change anything?"


def workspace_for(session_id: Optional[str]) -> Workspace:
    root = Path(get_settings().workspace_root)
    return Workspace(root / (session_id or "default"))


def registry_for(state: State) -> ToolRegistry:
    return ToolRegistry(
        workspace_for(state.get("session_id")),
        tavily_api_key=get_settings().tavily_api_key,
    )


def last_message(state: State) -> Optional[BaseMessage]:
    messages = state.get("messages") or []
    return messages[-1] if messages else None


def last_agent_turn(state: State) -> Optional[AIMessage]:
    for msg in reversed(state.get("messages") or []):
        if isinstance(msg, AIMessage):
            return msg
    return None


def make_agent_node(role: AgentRole) -> Callable[[State], Awaitable[Dict[str, Any]]]:
    async def agent_node(state: State) -> Dict[str, Any]:
        turn = await invoke_agent(role, state.get("messages") or [], registry_for(state))
        updates: Dict[str, Any] = {"messages": [turn], "active_role": role.key}

        text = message_text(turn).strip()
        if text:
            updates["log"] = [log_line(role.display_name, text)]

        if role.key == QA:
            kind = classify_turn(turn).kind
            if kind == "handoff":
                updates["rework_count"] = int(state.get("rework_count") or 0) + 1
            elif kind == "complete":
                updates["rework_count"] = 0

        logger.debug(
            "%s turn: %d chars, %d tool calls",
            role.key,
            len(text),
            len(turn.tool_calls or []),
        )
        return updates

    agent_node.__name__ = f"{role.key}_agent"
    return agent_node


def decode_result(output: str) -> dict[str, Any]:
    try:
        payload = json.loads(output)
    except (TypeError, ValueError):
        return {}
    return payload if isinstance(payload, dict) else {}


def run_tool_call(registry: ToolRegistry, name: str, args: Any) -> str:
    tool = registry.get(name)
    if tool is None:
        logger.warning("unknown tool requested: %s", name)
        return error_result(f"Tool not found: {name}")
    try:
        output = tool.invoke(args if isinstance(args, dict) else {})
    except Exception as exc:
        logger.warning("tool %s failed: %s", name, exc)
        return error_result(f"Error in {name}: {exc}")
    if isinstance(output, str):
        return output
    return encode_result({"status": "ok", "result": output})


def tool_dispatch(state: State) -> Dict[str, Any]:
    turn = last_message(state)
    if not isinstance(turn, AIMessage) or not turn.tool_calls:
        return {}

    registry = registry_for(state)
    tool_messages: list[ToolMessage] = []
    log: list[str] = []
    files: dict[str, str] = {}

    for call in turn.tool_calls:
        name = call.get("name") or ""
        output = run_tool_call(registry, name, call.get("args"))
        tool_messages.append(ToolMessage(content=output, tool_call_id=call.get("id") or "", name=name))

        payload = decode_result(output)
        status = payload.get("status")
        if status == "file_created":
            files[str(payload.get("path"))] = str(payload.get("content") or "")
        if name == FILE_WRITE or status == "error":
            log.append(log_line(tool_label(name), output))

    return {"messages": tool_messages, "log": log, "files": files}


def close_unanswered_tool_calls(messages: list[BaseMessage]) -> list[ToolMessage]:
    """Error results for tool calls of the latest agent turn that never ran.

    A run that fails between an agent turn and ``tool_dispatch`` leaves calls
    without results; they must be answered before any further turn.
    """
    for idx in range(len(messages) - 1, -1, -1):
        turn = messages[idx]
        if not isinstance(turn, AIMessage):
            continue
        answered = {m.tool_call_id for m in messages[idx + 1 :] if isinstance(m, ToolMessage)}
        return [
            ToolMessage(
                content=error_result("Tool call was not executed: the run stopped before dispatch."),
                tool_call_id=call.get("id") or "",
                name=call.get("name") or "",
            )
            for call in turn.tool_calls or []
            if call.get("id") not in answered
        ]
    return []


def pending_question(state: State, *, max_rework: int) -> str:
    """Text shown to the human when the graph parks in human_wait."""
    turn = last_agent_turn(state)
    classified = classify_turn(turn)
    if classified.kind in ("clarify", "complete") and classified.text:
        return classified.text

    rework = int(state.get("rework_count") or 0)
    if turn is not None and turn.name == QA and rework >= max_rework:
        note = classified.text or "no details"
        return (
            f"QA rejected the work {rework} times in a row and the team is stuck. "
            f"Last QA note: {note}\nHow should we proceed?"
        )
    return classified.text or DEFAULT_REVIEW_QUESTION


def make_human_wait_node(max_rework: int) -> Callable[[State], Dict[str, Any]]:
    def human_wait(state: State) -> Dict[str, Any]:
        question = pending_question(state, max_rework=max_rework)
        reply = interrupt({"question": question})
        return {
            "messages": [HumanMessage(content=str(reply or ""))],
            "rework_count": 0,
        }

    return human_wait
