from dataclasses import dataclass
from threading import RLock
from typing import Dict, List, Optional

from speech_gateway.core.errors import SessionConflictError
from speech_gateway.services.session import StreamingSession


@dataclass
class SessionEntry:
    session: StreamingSession
    connection_id: str


class SessionRegistry:
    """
    Thread-safe in-memory registry of live streaming sessions keyed by session id.
    """

    def __init__(self):
        self._sessions: Dict[str, SessionEntry] = {}
        self._lock = RLock()

    def register(self, session: StreamingSession, connection_id: str):
        with self._lock:
            existing = self._sessions.get(session.session_id)
            if existing is not None and existing.session.is_active:
                raise SessionConflictError(f"Session {session.session_id} is already active")
            self._sessions[session.session_id] = SessionEntry(session=session, connection_id=connection_id)

    def get(self, session_id: str) -> Optional[StreamingSession]:
        with self._lock:
            entry = self._sessions.get(session_id)
            return entry.session if entry else None

    def owner_of(self, session_id: str) -> Optional[str]:
        with self._lock:
            entry = self._sessions.get(session_id)
            return entry.connection_id if entry else None

    def remove(self, session: StreamingSession):
        """Drop ``session`` if it is still the one registered under its id."""
        with self._lock:
            entry = self._sessions.get(session.session_id)
            if entry is not None and entry.session is session:
                del self._sessions[session.session_id]

    def sessions_for(self, connection_id: str) -> List[StreamingSession]:
        with self._lock:
            return [e.session for e in self._sessions.values() if e.connection_id == connection_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
