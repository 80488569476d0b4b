"""Port definitions for event storage and request gating."""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .models import AnalyticsEvent, SessionMetrics


class EventStore(Protocol):
    """Append-only event log plus a TTL'd session side-table.

    Adapters implement this for any backend; every aggregate is computed from
    what these methods return, so the analytics code path is the same for all
    of them.
    """

    def append(self, event: AnalyticsEvent) -> None:
        """Atomically record one event. Same-timestamp events must all be kept."""

    def fetch_events(self, start_ms: int, end_ms: int) -> Sequence[AnalyticsEvent]:
        """Return events with start_ms <= timestamp <= end_ms, oldest first."""

    def get_session(self, session_id: str, now_ms: int) -> Optional[SessionMetrics]:
        """Return the session record unless it is missing or expired."""

    def save_session(self, session: SessionMetrics, expires_at_ms: int) -> None:
        """Create or replace a session record and reset its expiry."""

    def fetch_sessions(self, now_ms: int) -> Sequence[SessionMetrics]:
        """Return every non-expired session record."""

    def delete_events_before(self, cutoff_ms: int) -> int:
        """Remove events with timestamp < cutoff_ms; returns the number removed."""

    def delete_sessions_before(self, cutoff_ms: int) -> int:
        """Remove sessions whose last activity is < cutoff_ms; returns the number removed."""


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_ms: int
    retry_after_seconds: int = 0


class RateLimiter(Protocol):
    """Gate placed in front of the HTTP handlers."""

    def check(self, identifier: str) -> RateLimitDecision:
        """Record a hit for identifier and say whether it is allowed."""
