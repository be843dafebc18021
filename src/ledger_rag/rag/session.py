"""
Chat-session de-duplication.

Tracks which transaction codes have already been sent to a conversation so
follow-up questions only return deltas. State lives in an injected
SessionCache with TTL expiry; expiry is evaluated lazily on access, and
sweep() reclaims abandoned sessions when a caller schedules it.

Concurrency: each session id maps to one of a fixed set of lock stripes, so
read-modify-write on a session is atomic without locking the whole map.
"""

from __future__ import annotations

import logging
import threading
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from ledger_rag.rag.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=4)


@dataclass
class SessionState:
    last_seen: datetime
    sent: set[str] = field(default_factory=set)
    hit_count: int = 0

    def mark_if_new(self, code: str) -> bool:
        if code in self.sent:
            return False
        self.sent.add(code)
        return True


@dataclass(frozen=True)
class SessionSnapshot:
    hit_count: int
    sent_codes: frozenset[str]


class SessionCache(Protocol):
    """Storage for session state. Callers hold lock(session_id) around get/put."""

    def lock(self, session_id: str) -> threading.Lock:
        ...

    def get(self, session_id: str) -> SessionState | None:
        """Live state, or None when absent or expired."""
        ...

    def put(self, session_id: str, state: SessionState) -> None:
        ...

    def sweep(self) -> int:
        """Drop expired sessions, returning how many were removed."""
        ...


class InMemorySessionCache:
    """Process-local session cache. Lost on restart, which only causes a resend."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock | None = None,
        stripes: int = 64,
    ):
        self.ttl = ttl
        self.clock = clock or SystemClock()
        self._states: dict[str, SessionState] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]

    def lock(self, session_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(session_id.encode("utf-8")) % len(self._locks)]

    def _is_expired(self, state: SessionState, now: datetime) -> bool:
        return state.last_seen + self.ttl < now

    def get(self, session_id: str) -> SessionState | None:
        state = self._states.get(session_id)
        if state is None or self._is_expired(state, self.clock.now()):
            return None
        return state

    def put(self, session_id: str, state: SessionState) -> None:
        self._states[session_id] = state

    def sweep(self) -> int:
        removed = 0
        for session_id in list(self._states):
            with self.lock(session_id):
                state = self._states.get(session_id)
                if state is not None and self._is_expired(state, self.clock.now()):
                    del self._states[session_id]
                    removed += 1
        if removed:
            logger.debug(f"Swept {removed} expired chat sessions")
        return removed

    def __len__(self) -> int:
        return len(self._states)


class SessionDiffTracker:
    """Filters transaction codes down to the ones a session has not seen yet."""

    def __init__(self, cache: SessionCache | None = None, clock: Clock | None = None):
        if cache is None:
            cache = InMemorySessionCache(clock=clock)
        self._cache = cache
        self._clock = clock or getattr(cache, "clock", None) or SystemClock()

    def _live_state(self, session_id: str) -> SessionState:
        """Return the session's state, substituting a fresh one if absent or expired.

        Must be called with the session's lock held.
        """
        now = self._clock.now()
        state = self._cache.get(session_id)
        if state is None:
            state = SessionState(last_seen=now)
            self._cache.put(session_id, state)
        state.last_seen = now
        return state

    def filter_new(self, session_id: str, codes: list[str]) -> list[str]:
        """Return the subsequence of `codes` not previously sent to this session."""
        if not codes:
            return []
        with self._cache.lock(session_id):
            state = self._live_state(session_id)
            return [code for code in codes if state.mark_if_new(code)]

    def record_hit(self, session_id: str) -> int:
        """Increment and return the session's hit counter."""
        with self._cache.lock(session_id):
            state = self._live_state(session_id)
            state.hit_count += 1
            return state.hit_count

    def snapshot(self, session_id: str) -> SessionSnapshot | None:
        with self._cache.lock(session_id):
            state = self._cache.get(session_id)
            if state is None:
                return None
            return SessionSnapshot(state.hit_count, frozenset(state.sent))

    def sweep(self) -> int:
        return self._cache.sweep()
