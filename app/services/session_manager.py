from functools import lru_cache
from typing import Any, Optional

from app.models.session import Session, make_session_id


class SessionManager:
    """Index of live relay sessions by session id.

    Relays own their sessions; this only lets them be found and counted.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def create(self, pin: str, name: str, client: Any) -> Session:
        session_id = make_session_id(pin, name)
        # Two tabs joining in the same millisecond still get distinct ids
        suffix = 1
        while session_id in self._sessions:
            session_id = f"{make_session_id(pin, name)}-{suffix}"
            suffix += 1

        session = Session(session_id=session_id, pin=pin, name=name, client=client)
        self._sessions[session_id] = session
        return session

    def lookup(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[Session]:
        return self._sessions.pop(session_id, None)

    def list_session_ids(self) -> list[str]:
        return list(self._sessions.keys())

    def __len__(self) -> int:
        return len(self._sessions)


@lru_cache
def get_session_manager() -> SessionManager:
    return SessionManager()
