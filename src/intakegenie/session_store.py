"""Per-call conversation sessions kept in process memory.

Turns for one call arrive strictly in sequence, so only the map itself is
guarded. Sessions idle longer than the TTL are evicted by sweep(), which
also runs opportunistically on get_or_create(). Sessions do not survive a
process restart.
"""

import logging
import threading
import time

from intakegenie.session import CallSession

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 30 * 60


class SessionStore:
    def __init__(self, ttl_seconds: float = SESSION_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, CallSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._sessions

    def get(self, call_id: str) -> CallSession | None:
        with self._lock:
            return self._sessions.get(call_id)

    def get_or_create(self, call_id: str, **defaults) -> CallSession:
        self.sweep()
        with self._lock:
            session = self._sessions.get(call_id)
            if session is None:
                session = CallSession(call_id=call_id, **defaults)
                session.last_activity = self._clock()
                self._sessions[call_id] = session
                logger.info("[%s] session created", call_id)
            return session

    def update(self, call_id: str, session: CallSession) -> None:
        session.last_activity = self._clock()
        with self._lock:
            self._sessions[call_id] = session

    def delete(self, call_id: str) -> None:
        with self._lock:
            if self._sessions.pop(call_id, None) is not None:
                logger.info("[%s] session deleted", call_id)

    def sweep(self) -> list[str]:
        """Evict sessions idle past the TTL. Returns the evicted call ids."""
        cutoff = self._clock() - self.ttl_seconds
        with self._lock:
            expired = [cid for cid, s in self._sessions.items() if s.last_activity < cutoff]
            for cid in expired:
                del self._sessions[cid]
        for cid in expired:
            logger.warning("[%s] session abandoned, evicted after %.0fs idle", cid, self.ttl_seconds)
        return expired
