from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import sentry_sdk
from langchain_core.messages import BaseMessage, HumanMessage
from langgraph.graph.state import CompiledStateGraph
from langgraph.types import Command

from devteam.agent.graph import get_compiled_graph
from devteam.agent.nodes import close_unanswered_tool_calls
from devteam.agent.state import State
from devteam.agent.turns import ERROR_LABEL, HUMAN_LABEL, SYSTEM_LABEL, log_line, tool_label
from devteam.config import Settings, get_settings
from devteam.schemas.runs import RunEvent
from devteam.services.errors import (
    InvalidStateError,
    ModelInvocationError,
    SessionBusyError,
    SessionNotFoundError,
    ValidationError,
)
from devteam.storage.memory import InMemorySessionStore, Session, SessionStatus, SessionStore

logger = logging.getLogger(__name__)

INTERRUPT_KEY = "__interrupt__"
RESUMABLE_STATUSES = ("waiting_for_human", "error")


def _ts_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


def _event(level: str, message: str, *, node: Optional[str] = None, data: Optional[dict] = None) -> RunEvent:
    return RunEvent(ts_ms=_ts_ms(), level=level, message=message, node=node, data=data)


def _interrupt_question(update: Any) -> str:
    interrupts = update if isinstance(update, (list, tuple)) else [update]
    for item in interrupts:
        value = getattr(item, "value", item)
        if isinstance(value, dict) and value.get("question"):
            return str(value["question"])
        if isinstance(value, str) and value.strip():
            return value
    return ""


@dataclass(frozen=True)
class RunClaim:
    """Exclusive right to advance one session, handed out by start_run/respond."""

    session_id: str
    graph_input: Any
    token: str


class RunDriver:
    """Advances one session's graph between suspension points.

    ``start_run`` and ``respond`` claim the session synchronously, so a
    second caller is rejected before any graph work is scheduled. The
    returned :class:`RunClaim` is the only way into ``advance``, which
    releases the claim when it stops.
    """

    def __init__(
        self,
        store: SessionStore,
        graph: Optional[CompiledStateGraph] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self._graph = graph
        self.settings = settings or get_settings()
        self._advancing: set[str] = set()

    @property
    def graph(self) -> CompiledStateGraph:
        if self._graph is None:
            self._graph = get_compiled_graph()
        return self._graph

    def _require(self, session_id: Optional[str]) -> Session:
        if not session_id:
            raise ValidationError("sessionId is required")
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def start_run(self, prompt: Optional[str]) -> RunClaim:
        text = (prompt or "").strip()
        if not text:
            raise ValidationError("prompt is required")

        qa = "with QA" if self.settings.enable_qa else "without QA"
        session = self.store.create(log=[log_line(SYSTEM_LABEL, f"Starting the AI team {qa}...")])
        token = self.store.try_acquire(session.session_id)
        logger.info("session %s created", session.session_id)

        graph_input: State = {
            "session_id": session.session_id,
            "messages": [HumanMessage(content=text)],
            "rework_count": 0,
        }
        return RunClaim(session.session_id, graph_input, token)

    def respond(self, session_id: Optional[str], response: Optional[str]) -> RunClaim:
        session = self._require(session_id)
        text = (response or "").strip()
        if not text:
            raise ValidationError("response is required")

        token = self.store.try_acquire(session.session_id)
        if token is None:
            raise SessionBusyError(f"Session {session.session_id} is already running")
        # Re-read under ownership: the status may have moved since the first read.
        session = self.store.get(session.session_id) or session
        if session.status not in RESUMABLE_STATUSES:
            self.store.release(session.session_id, token)
            raise InvalidStateError(
                f"Session {session.session_id} is {session.status}, not waiting for a response"
            )

        log: list[str] = []
        if session.status == "waiting_for_human":
            graph_input: Any = Command(resume=text)
        else:
            # After a failure there is no pending question: restart at the PM,
            # answering any tool calls the failed run never dispatched.
            closing = close_unanswered_tool_calls(self._checkpoint_messages(session.session_id))
            log.extend(log_line(tool_label(m.name or ""), str(m.content)) for m in closing)
            graph_input = {
                "session_id": session.session_id,
                "messages": [*closing, HumanMessage(content=text)],
            }

        log.append(log_line(HUMAN_LABEL, text))
        self.store.append(
            session.session_id,
            log=log,
            events=[_event("info", "human response received")],
        )
        self.store.update(session.session_id, status="running")
        return RunClaim(session.session_id, graph_input, token)

    def _checkpoint_messages(self, session_id: str) -> list[BaseMessage]:
        snapshot = self.graph.get_state({"configurable": {"thread_id": session_id}})
        values = snapshot.values if isinstance(snapshot.values, dict) else {}
        return list(values.get("messages") or [])

    def _config(self, session_id: str) -> Dict[str, Any]:
        return {
            "configurable": {"thread_id": session_id},
            "metadata": {"session_id": session_id},
            "recursion_limit": self.settings.recursion_limit,
        }

    def _apply_update(self, session_id: str, node: str, update: Any) -> None:
        if not isinstance(update, dict):
            update = {}
        log = [line for line in (update.get("log") or []) if line]
        files = update.get("files") or {}
        self.store.append(
            session_id,
            log=log,
            files=files,
            events=[
                _event(
                    "info",
                    f"{node} completed",
                    node=node,
                    data={"log_lines": len(log), "files": sorted(files)},
                )
            ],
        )

    def _fail(self, session_id: str, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        self.store.append(
            session_id,
            log=[log_line(ERROR_LABEL, message)],
            events=[_event("error", message, data={"error_type": exc.__class__.__name__})],
        )
        self.store.update(session_id, status="error")
        try:
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("session_id", session_id)
                sentry_sdk.capture_exception(exc)
        except Exception as report_exc:
            logger.debug("sentry capture failed: %s", report_exc)

    async def advance(self, claim: RunClaim) -> SessionStatus:
        """Run the graph until it suspends, ends or fails, publishing every node update."""
        session_id = claim.session_id
        if session_id in self._advancing or not self.store.holds(session_id, claim.token):
            raise SessionBusyError(f"Session {session_id} is not claimed by this caller")
        self._advancing.add(session_id)

        suspended = False
        try:
            async for chunk in self.graph.astream(
                claim.graph_input,
                config=self._config(session_id),
                stream_mode="updates",
            ):
                for node, update in chunk.items():
                    if node == INTERRUPT_KEY:
                        question = _interrupt_question(update)
                        self.store.update(session_id, status="waiting_for_human", question=question)
                        self.store.append(
                            session_id,
                            events=[_event("info", "waiting for human", node="human_wait")],
                        )
                        suspended = True
                        continue
                    self._apply_update(session_id, node, update)

            if not suspended:
                self.store.update(session_id, status="finished")
                self.store.append(session_id, events=[_event("info", "run finished")])
        except ModelInvocationError as exc:
            logger.warning("session %s: model invocation failed: %s", session_id, exc)
            self._fail(session_id, exc)
        except Exception as exc:
            logger.exception("session %s: run failed", session_id)
            self._fail(session_id, exc)
        finally:
            self._advancing.discard(session_id)
            self.store.release(session_id, claim.token)

        session = self.store.get(session_id)
        return session.status if session else "error"

    def get_status(self, session_id: str) -> Dict[str, Any]:
        session = self._require(session_id)
        snapshot: Dict[str, Any] = {"status": session.status, "log": list(session.log)}
        if session.status == "waiting_for_human" and session.question is not None:
            snapshot["question"] = session.question
        return snapshot

    def get_files(self, session_id: str) -> Dict[str, str]:
        return dict(self._require(session_id).files)

    def get_trace(self, session_id: str) -> list[RunEvent]:
        return list(self._require(session_id).events)


_driver: Optional[RunDriver] = None


def get_driver() -> RunDriver:
    global _driver
    if _driver is None:
        _driver = RunDriver(InMemorySessionStore())
    return _driver


def set_driver(driver: Optional[RunDriver]) -> None:
    global _driver
    _driver = driver
