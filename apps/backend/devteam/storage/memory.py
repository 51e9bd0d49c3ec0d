"""Process-local session storage.

Writers (the run driver owning a session) go through a lock and replace the
stored :class:`Session` with a new frozen copy. Readers just fetch the current
object, so a status poll never waits on an in-flight run.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, Literal, Mapping, Optional
from uuid import uuid4

from devteam.schemas.runs import RunEvent
from devteam.services.errors import SessionNotFoundError

SessionStatus = Literal["running", "waiting_for_human", "finished", "error"]

MAX_EVENTS = 250


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Session:
    session_id: str
    status: SessionStatus = "running"
    log: tuple[str, ...] = ()
    question: Optional[str] = None
    files: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    events: tuple[RunEvent, ...] = ()
    # Claim token of the caller currently allowed to advance the session.
    owner: Optional[str] = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def busy(self) -> bool:
        return self.owner is not None


class SessionStore(ABC):
    """Single writer per session id, any number of lock-free readers."""

    @abstractmethod
    def create(self, *, log: Iterable[str] = ()) -> Session: ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]: ...

    @abstractmethod
    def update(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        question: Optional[str] = None,
    ) -> Session: ...

    @abstractmethod
    def append(
        self,
        session_id: str,
        *,
        log: Iterable[str] = (),
        files: Optional[Mapping[str, str]] = None,
        events: Iterable[RunEvent] = (),
    ) -> Session: ...

    @abstractmethod
    def try_acquire(self, session_id: str) -> Optional[str]:
        """Claim the session; returns the claim token, or None when already claimed."""

    @abstractmethod
    def holds(self, session_id: str, token: str) -> bool: ...

    @abstractmethod
    def release(self, session_id: str, token: str) -> bool: ...


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def _put(self, session: Session, **changes) -> Session:
        updated = replace(session, updated_at=_utc_now(), **changes)
        self._sessions[session.session_id] = updated
        return updated

    def create(self, *, log: Iterable[str] = ()) -> Session:
        session = Session(session_id=uuid4().hex, log=tuple(log))
        with self._write_lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def update(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        question: Optional[str] = None,
    ) -> Session:
        with self._write_lock:
            session = self._require(session_id)
            new_status = status or session.status
            # A question only exists while the session waits for the human.
            new_question = question if question is not None else session.question
            if new_status != "waiting_for_human":
                new_question = None
            return self._put(session, status=new_status, question=new_question)

    def append(
        self,
        session_id: str,
        *,
        log: Iterable[str] = (),
        files: Optional[Mapping[str, str]] = None,
        events: Iterable[RunEvent] = (),
    ) -> Session:
        with self._write_lock:
            session = self._require(session_id)
            changes: dict = {}
            new_lines = tuple(log)
            if new_lines:
                changes["log"] = session.log + new_lines
            if files:
                merged = dict(session.files)
                merged.update(files)
                changes["files"] = MappingProxyType(merged)
            new_events = tuple(events)
            if new_events:
                changes["events"] = (session.events + new_events)[-MAX_EVENTS:]
            if not changes:
                return session
            return self._put(session, **changes)

    def try_acquire(self, session_id: str) -> Optional[str]:
        with self._write_lock:
            session = self._require(session_id)
            if session.busy:
                return None
            token = uuid4().hex
            self._put(session, owner=token)
            return token

    def holds(self, session_id: str, token: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and bool(token) and session.owner == token

    def release(self, session_id: str, token: str) -> bool:
        """Drop the claim if ``token`` still owns it; a stale token is a no-op."""
        with self._write_lock:
            session = self._sessions.get(session_id)
            if session is None or not token or session.owner != token:
                return False
            self._put(session, owner=None)
            return True
