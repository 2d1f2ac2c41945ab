"""In-memory, time-expiring storage for draw sessions.

Sessions are ephemeral: nothing is written to disk and a restart drops
them all. Every mutation goes through `SessionStore.update`, which
serializes mutators per session id.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from .config import DEFAULT_DRAW_TTL_SECONDS, DEFAULT_MAX_SESSIONS
from .errors import DuplicateIdError, ErrorKind
from .models import DrawSession

log = logging.getLogger("cosmo_tarot.storage")

Mutator = Callable[[DrawSession], DrawSession]


class SessionStore:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_DRAW_TTL_SECONDS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, DrawSession] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        # Guards _sessions and _key_locks; never held while a mutator runs.
        self._lock = threading.Lock()
        self._expired_evictions = 0
        self._capacity_evictions = 0

    def now(self) -> float:
        return self._clock()

    def expiry_for(self, created_at: float) -> float:
        return created_at + self.ttl_seconds

    def _is_expired(self, s: DrawSession, now: float) -> bool:
        return s.expires_at <= now

    def _drop_locked(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._key_locks.pop(session_id, None)

    def _key_lock(self, session_id: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(session_id)
            if lock is None:
                lock = self._key_locks[session_id] = threading.Lock()
            return lock

    def _forget_lock(self, session_id: str) -> None:
        # Ids are never reused, so a lock for an absent id guards nothing.
        with self._lock:
            if session_id not in self._sessions:
                self._key_locks.pop(session_id, None)

    def _sweep_locked(self, now: float) -> int:
        deleted = 0
        for sid, s in list(self._sessions.items()):
            if self._is_expired(s, now):
                self._drop_locked(sid)
                deleted += 1
        self._expired_evictions += deleted
        return deleted + self._trim_locked()

    def _trim_locked(self, keep: Optional[str] = None) -> int:
        # Oldest-created first; access time plays no part.
        overflow = len(self._sessions) - self.max_sessions
        if overflow <= 0:
            return 0
        candidates = (s for s in self._sessions.values() if s.session_id != keep)
        oldest = sorted(candidates, key=lambda s: s.created_at)[:overflow]
        for s in oldest:
            self._drop_locked(s.session_id)
        self._capacity_evictions += len(oldest)
        log.warning(
            "%s: evicted %d oldest sessions (cap=%d)",
            ErrorKind.CAPACITY_EXCEEDED.value, len(oldest), self.max_sessions,
        )
        return len(oldest)

    def sweep(self) -> int:
        """Drop expired sessions, then the oldest-created ones while over capacity.

        Returns the number of sessions removed.
        """
        with self._lock:
            return self._sweep_locked(self.now())

    def create(self, session: DrawSession) -> DrawSession:
        with self._lock:
            self._sweep_locked(self.now())
            if session.session_id in self._sessions:
                raise DuplicateIdError(session.session_id)
            self._sessions[session.session_id] = session
            self._trim_locked(keep=session.session_id)
        return session

    def get(self, session_id: str) -> Optional[DrawSession]:
        """Return the live session, or None if it is missing or expired."""
        with self._lock:
            s = self._sessions.get(session_id)
            if s is None:
                return None
            if self._is_expired(s, self.now()):
                self._drop_locked(session_id)
                self._expired_evictions += 1
                return None
            return s

    def update(self, session_id: str, mutator: Mutator) -> Optional[DrawSession]:
        """Apply `mutator` to the current session and commit the result.

        Calls for the same id are serialized: a mutator always sees the
        latest committed state. Exceptions raised by the mutator abort the
        update with nothing committed. Returns None if the session is
        missing or expired (including expiry while the mutator ran).
        """
        with self._key_lock(session_id):
            current = self.get(session_id)
            if current is None:
                self._forget_lock(session_id)
                return None

            nxt = mutator(current)
            if nxt is current:
                return current
            if nxt.session_id != session_id:
                raise ValueError("mutator must not change session_id")

            with self._lock:
                if session_id not in self._sessions or self._is_expired(nxt, self.now()):
                    # Never revive an expired or evicted draw.
                    self._drop_locked(session_id)
                    return None
                self._sessions[session_id] = nxt
            return nxt

    def delete(self, session_id: str) -> bool:
        with self._lock:
            existed = session_id in self._sessions
            self._drop_locked(session_id)
            return existed

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "live_sessions": len(self._sessions),
                "max_sessions": self.max_sessions,
                "expired_evictions": self._expired_evictions,
                "capacity_evictions": self._capacity_evictions,
            }
