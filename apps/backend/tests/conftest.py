from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest
from langchain_core.messages import AIMessage, BaseMessage
from langgraph.checkpoint.memory import MemorySaver

from devteam.agent import llm as llm_module
from devteam.agent.graph import build_graph, reset_compiled_graph
from devteam.agent.roles import display_name_from_prompt
from devteam.config import get_settings
from devteam.services.runs import RunDriver
from devteam.storage.memory import InMemorySessionStore


class ScriptedLLM:
    """Stands in for the chat model: replies are queued per agent display name."""

    def __init__(self, script: dict[str, list[Any]], on_call: Optional[Callable[[str], None]] = None) -> None:
        self.script = {name: list(turns) for name, turns in script.items()}
        self.on_call = on_call
        self.calls: list[tuple[str, list[BaseMessage]]] = []
        self.bound_tools: list[list[str]] = []
        # When set, every call blocks until the event fires.
        self.gate: Optional[asyncio.Event] = None

    def bind_tools(self, tools):
        self.bound_tools.append([t.name for t in tools])
        return self

    async def ainvoke(self, messages):
        name = display_name_from_prompt(messages[0].content)
        self.calls.append((name, list(messages)))
        if self.on_call is not None:
            self.on_call(name)
        if self.gate is not None:
            await self.gate.wait()
        queue = self.script.get(name) or []
        if not queue:
            raise AssertionError(f"no scripted turn left for {name}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def called(self) -> list[str]:
        return [name for name, _ in self.calls]


def tool_turn(*calls: tuple[str, dict], content: str = "") -> AIMessage:
    return AIMessage(
        content=content,
        tool_calls=[
            {"name": name, "args": args, "id": f"call_{i}"}
            for i, (name, args) in enumerate(calls, start=1)
        ],
    )


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DEVTEAM_WORKSPACE_ROOT", str(tmp_path / "workspace"))
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    get_settings.cache_clear()
    reset_compiled_graph()
    yield tmp_path / "workspace"
    get_settings.cache_clear()
    reset_compiled_graph()


@pytest.fixture
def workspace_root(isolated_settings):
    return isolated_settings


@pytest.fixture
def tool_call_turn():
    return tool_turn


@pytest.fixture
def use_llm(monkeypatch):
    def install(script: dict[str, list[Any]], on_call: Optional[Callable[[str], None]] = None) -> ScriptedLLM:
        llm = ScriptedLLM(script, on_call=on_call)
        monkeypatch.setattr(llm_module, "make_llm", lambda model=None: llm)
        return llm

    return install


@pytest.fixture
def make_driver():
    def factory() -> RunDriver:
        get_settings.cache_clear()
        graph = build_graph().compile(checkpointer=MemorySaver())
        return RunDriver(InMemorySessionStore(), graph=graph)

    return factory
