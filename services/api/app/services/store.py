from __future__ import annotations

import threading

from services.api.app.services.checkout import CheckoutSession


class InMemoryStore:
    """Open checkout sessions for this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, CheckoutSession] = {}

    def save_session(self, session: CheckoutSession) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def get_session(self, session_id: str) -> CheckoutSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def discard_session(self, session_id: str) -> CheckoutSession | None:
        with self._lock:
            return self._sessions.pop(session_id, None)


store = InMemoryStore()
