"""Audit logging for served RAG requests."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Callable
from uuid import UUID

logger = logging.getLogger(__name__)


class LoggingAuditSink:
    """
    Writes one structured INFO line per request.

    hit_counter defaults to a per-session counter kept here; the service
    passes SessionDiffTracker.record_hit so hits share the session's TTL.
    """

    def __init__(self, hit_counter: Callable[[str], int] | None = None):
        self._hit_counter = hit_counter or self._count_locally
        self._hits: Counter[str] = Counter()
        self._lock = threading.Lock()

    def _count_locally(self, session_id: str) -> int:
        with self._lock:
            self._hits[session_id] += 1
            return self._hits[session_id]

    def record(
        self,
        endpoint: str,
        user_id: UUID,
        session_id: str | None,
        row_count: int,
        token_estimate: int,
    ) -> None:
        hits = self._hit_counter(session_id) if session_id else 0
        logger.info(
            f"rag_audit endpoint={endpoint} userId={user_id} sessionId={session_id} "
            f"hits={hits} rows={row_count} tokens={token_estimate}"
        )
