"""Session registry: the one shared map of session id → handle and status.

All reads and writes of a session's status go through this object's lock.
Terminal transitions only succeed from RUNNING, which is what lets natural
exit, timeout and an explicit stop race without producing two outcomes.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path

from fuzzctl.core.exceptions import RegistryError
from fuzzctl.core.schema import SessionStatus
from fuzzctl.execution.process import ProcessHandle

log = logging.getLogger(__name__)


@dataclass
class Session:
    """One in-flight or finished fuzzing session."""

    session_id: str
    engine_name: str
    session_dir: Path
    handle: ProcessHandle | None
    status: SessionStatus = SessionStatus.RUNNING
    finished: bool = False


class SessionRegistry:
    """Lock-protected session map shared by all engine adapters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._issued: set[str] = set()

    def new_session_id(self) -> str:
        """Return an id that has never been handed out by this registry."""
        with self._lock:
            while True:
                sid = str(uuid.uuid4())
                if sid not in self._issued:
                    self._issued.add(sid)
                    return sid

    def register(self, session: Session) -> None:
        with self._lock:
            if session.session_id in self._sessions:
                raise RegistryError(f"Session already registered: {session.session_id}")
            if session.session_id not in self._issued:
                raise RegistryError(f"Session id was not issued by this registry: {session.session_id}")
            self._sessions[session.session_id] = session

    def transition(self, session_id: str, new_status: SessionStatus) -> SessionStatus:
        """Move a RUNNING session to ``new_status``.

        Returns the status the session ends up in, which differs from
        ``new_status`` if another path already made the terminal transition.
        Returns UNKNOWN for an absent session.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return SessionStatus.UNKNOWN
            if session.status is SessionStatus.RUNNING:
                session.status = new_status
            return session.status

    def request_stop(self, session_id: str) -> ProcessHandle | None:
        """Mark a RUNNING session STOPPED and hand back its process to kill.

        Returns None (nothing to do) for unknown or already terminal sessions.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status is not SessionStatus.RUNNING or session.handle is None:
                return None
            session.status = SessionStatus.STOPPED
            return session.handle

    def status(self, session_id: str) -> SessionStatus:
        """Current status; UNKNOWN if absent.

        A finished session's terminal status is reported once, then the
        session is reaped.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return SessionStatus.UNKNOWN
            status = session.status
            if session.finished and status.is_terminal:
                del self._sessions[session_id]
                log.debug("Reaped session %s (%s)", session_id, status.value)
            return status

    def mark_finished(self, session_id: str) -> None:
        """Record that monitoring is over and the handle has been released."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.finished = True
                session.handle = None

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def clear(self, engine_name: str | None = None) -> list[Session]:
        """Drop all sessions (or those of one engine) and return them."""
        with self._lock:
            if engine_name is None:
                removed = list(self._sessions.values())
                self._sessions.clear()
            else:
                key = engine_name.lower()
                removed = [s for s in self._sessions.values() if s.engine_name == key]
                for s in removed:
                    del self._sessions[s.session_id]
        return removed

    def running_ids(self, engine_name: str | None = None) -> list[str]:
        with self._lock:
            return [
                s.session_id
                for s in self._sessions.values()
                if s.status is SessionStatus.RUNNING
                and (engine_name is None or s.engine_name == engine_name.lower())
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
