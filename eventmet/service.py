"""Application service orchestrating the event store and pure analytics."""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from .analytics import (
    compute_daily_metrics,
    compute_device_analytics,
    compute_realtime_stats,
    compute_user_metrics,
    recent_queries,
)
from .billing import DEFAULT_MODEL, compute_billing_metrics, compute_cost_efficiency
from .models import DAY_MS, AnalyticsEvent, SessionMetrics, event_to_dict, now_ms
from .ports import EventStore

logger = logging.getLogger("eventmet.service")

RETENTION_DAYS = 30


class AnalyticsService:
    """Facade exposing dashboard views independent of web frameworks.

    Store failures never escape: reads degrade to an empty event list so every
    view returns its zero-valued structure.
    """

    def __init__(
        self,
        store: EventStore,
        default_model: str = DEFAULT_MODEL,
        retention_days: int = RETENTION_DAYS,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.default_model = default_model
        self.retention_days = retention_days
        self.clock = clock

    def get_events(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> List[Dict]:
        end = self.clock() if end_ms is None else end_ms
        start = 0 if start_ms is None else start_ms
        return [event_to_dict(event) for event in self._fetch_events(start, end)]

    def get_realtime_stats(self, now: Optional[int] = None) -> Dict:
        now = self.clock() if now is None else now
        events = self._fetch_events(now - DAY_MS, now)
        return compute_realtime_stats(events, self._fetch_sessions(now), now)

    def get_daily_metrics(self, days: int = 7, now: Optional[int] = None) -> List[Dict]:
        now = self.clock() if now is None else now
        events = self._fetch_events(now - days * DAY_MS, now)
        return compute_daily_metrics(events, days, now)

    def get_session_metrics(self, now: Optional[int] = None) -> List[Dict]:
        now = self.clock() if now is None else now
        return [session.to_dict() for session in self._fetch_sessions(now)]

    def get_user_metrics(self, now: Optional[int] = None) -> Dict:
        now = self.clock() if now is None else now
        return compute_user_metrics(self._fetch_events(0, now), now)

    def get_billing_metrics(self, monthly_budget: Optional[float] = None, now: Optional[int] = None) -> Dict:
        now = self.clock() if now is None else now
        events = self._fetch_events(now - 30 * DAY_MS, now)
        return compute_billing_metrics(events, now, monthly_budget, self.default_model)

    def get_cost_efficiency(self, days: int = 30, now: Optional[int] = None) -> Dict:
        now = self.clock() if now is None else now
        events = self._fetch_events(now - days * DAY_MS, now)
        return compute_cost_efficiency(events, self.default_model)

    def get_device_analytics(self, days: int = 30, now: Optional[int] = None) -> Dict:
        now = self.clock() if now is None else now
        return compute_device_analytics(self._fetch_events(now - days * DAY_MS, now))

    def get_recent_queries(self, limit: int = 10, now: Optional[int] = None) -> List[Dict]:
        now = self.clock() if now is None else now
        return recent_queries(self._fetch_events(now - self.retention_days * DAY_MS, now), limit)

    def cleanup_old_analytics(self, now: Optional[int] = None) -> Dict:
        """Retention sweep: drop events and sessions older than the retention window."""
        now = self.clock() if now is None else now
        cutoff = now - self.retention_days * DAY_MS
        result = {"events_deleted": 0, "sessions_deleted": 0, "cutoff": cutoff}
        try:
            result["events_deleted"] = self.store.delete_events_before(cutoff)
            result["sessions_deleted"] = self.store.delete_sessions_before(cutoff)
        except Exception:
            logger.exception("Analytics cleanup failed (cutoff=%d)", cutoff)
            return result

        logger.info(
            "Analytics cleanup removed %d events and %d sessions older than %d",
            result["events_deleted"],
            result["sessions_deleted"],
            cutoff,
        )
        return result

    def _fetch_events(self, start: int, end: int) -> Sequence[AnalyticsEvent]:
        try:
            return self.store.fetch_events(start, end)
        except Exception:
            logger.exception("Failed to read analytics events [%d, %d]", start, end)
            return []

    def _fetch_sessions(self, now: int) -> Sequence[SessionMetrics]:
        try:
            return self.store.fetch_sessions(now)
        except Exception:
            logger.exception("Failed to read session metrics")
            return []
