"""
Session registry - maps session ids to their live transport and handler.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


class DuplicateSessionError(Exception):
    def __init__(self, session_id: str):
        super().__init__(f"Session already registered: {session_id}")
        self.session_id = session_id


@dataclass(frozen=True)
class Session:
    id: str
    transport: Any
    handler: Any


class SessionRegistry:
    """Thread-safe id -> Session map.

    Ids are generated by the transports and never reused, so a duplicate
    insert means something upstream is broken.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, session_id: str, transport: Any, handler: Any) -> Session:
        session = Session(id=session_id, transport=transport, handler=handler)
        with self._lock:
            if session_id in self._sessions:
                logger.error("Refusing to register duplicate session %s", session_id)
                raise DuplicateSessionError(session_id)
            self._sessions[session_id] = session
        return session

    def lookup(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.pop(session_id, None)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
