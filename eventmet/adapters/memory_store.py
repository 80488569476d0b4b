"""In-process event store used when no database is configured."""

import bisect
import itertools
import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import AnalyticsEvent, SessionMetrics, decode_event_payloads, event_to_json

logger = logging.getLogger("eventmet.store.memory")


class InMemoryEventStore:
    """Sorted event log and session table guarded by a single lock.

    Entries are kept as ``(timestamp, sequence, payload)`` so events sharing a
    millisecond are all retained, in insertion order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sequence = itertools.count()
        self._entries: List[Tuple[int, int, str]] = []
        self._sessions: Dict[str, Tuple[SessionMetrics, int]] = {}

    def append(self, event: AnalyticsEvent) -> None:
        self._insert_payload(event.timestamp, event_to_json(event))

    def fetch_events(self, start_ms: int, end_ms: int) -> Sequence[AnalyticsEvent]:
        with self._lock:
            low = bisect.bisect_left(self._entries, (start_ms,))
            high = bisect.bisect_left(self._entries, (end_ms + 1,))
            payloads = [payload for _, _, payload in self._entries[low:high]]
        return decode_event_payloads(payloads)

    def get_session(self, session_id: str, now_ms: int) -> Optional[SessionMetrics]:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            session, expires_at = record
            if expires_at <= now_ms:
                del self._sessions[session_id]
                return None
            return SessionMetrics.from_dict(session.to_dict())

    def save_session(self, session: SessionMetrics, expires_at_ms: int) -> None:
        stored = SessionMetrics.from_dict(session.to_dict())
        with self._lock:
            self._sessions[session.session_id] = (stored, expires_at_ms)

    def fetch_sessions(self, now_ms: int) -> Sequence[SessionMetrics]:
        with self._lock:
            return [
                SessionMetrics.from_dict(session.to_dict())
                for session, expires_at in self._sessions.values()
                if expires_at > now_ms
            ]

    def delete_events_before(self, cutoff_ms: int) -> int:
        with self._lock:
            index = bisect.bisect_left(self._entries, (cutoff_ms,))
            del self._entries[:index]
        logger.debug("Removed %d events older than %d", index, cutoff_ms)
        return index

    def delete_sessions_before(self, cutoff_ms: int) -> int:
        with self._lock:
            stale = [
                session_id
                for session_id, (session, _) in self._sessions.items()
                if session.last_activity < cutoff_ms
            ]
            for session_id in stale:
                del self._sessions[session_id]
        return len(stale)

    def _insert_payload(self, timestamp: int, payload: str) -> None:
        with self._lock:
            bisect.insort(self._entries, (int(timestamp), next(self._sequence), payload))
