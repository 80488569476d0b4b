from conftest import NOW

from eventmet.adapters import InMemoryEventStore
from eventmet.analytics import empty_device_analytics, empty_realtime_stats, empty_user_metrics
from eventmet.models import DAY_MS, ChatRequestEvent, ChatResponseEvent, SessionMetrics, TokenUsage
from eventmet.service import AnalyticsService


class FakeStore:
    def __init__(self):
        self.ranges = []
        self.session_now = None

    def fetch_events(self, start_ms, end_ms):
        self.ranges.append((start_ms, end_ms))
        return [
            ChatRequestEvent(
                timestamp=end_ms,
                session_id="s1",
                user_query="when is the firkin",
                query_category="schedule",
                user_id="u1",
            ),
            ChatResponseEvent(
                timestamp=end_ms,
                session_id="s1",
                response_time_ms=400,
                tokens_used=TokenUsage(input=100, output=20),
                model_used="claude-3-5-haiku-20241022",
                relevant_chunks=2,
            ),
        ]

    def fetch_sessions(self, now_ms):
        self.session_now = now_ms
        return [SessionMetrics(session_id="s1", start_time=now_ms, last_activity=now_ms, message_count=1)]


class BrokenStore:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ConnectionError("database unreachable")

        return fail


def test_service_queries_the_expected_windows():
    store = FakeStore()
    service = AnalyticsService(store, clock=lambda: NOW)

    realtime = service.get_realtime_stats()
    daily = service.get_daily_metrics(7)
    service.get_billing_metrics()

    assert store.ranges == [(NOW - DAY_MS, NOW), (NOW - 7 * DAY_MS, NOW), (NOW - 30 * DAY_MS, NOW)]
    assert store.session_now == NOW
    assert realtime["total_messages"] == 1
    assert realtime["total_sessions"] == 1
    assert daily[0]["total_messages"] == 1


def test_explicit_now_overrides_the_clock():
    store = FakeStore()
    service = AnalyticsService(store, clock=lambda: 0)

    service.get_user_metrics(now=NOW)

    assert store.ranges == [(0, NOW)]


def test_events_view_serialises_events():
    service = AnalyticsService(FakeStore(), clock=lambda: NOW)

    events = service.get_events(NOW - 10, NOW)

    assert [event["event_type"] for event in events] == ["chat_request", "chat_response"]
    assert events[1]["tokens_used"] == {"input": 100, "output": 20}


def test_store_failures_degrade_to_empty_views(caplog):
    service = AnalyticsService(BrokenStore(), clock=lambda: NOW)

    with caplog.at_level("ERROR", logger="eventmet.service"):
        assert service.get_realtime_stats() == empty_realtime_stats()
        assert service.get_user_metrics() == empty_user_metrics()
        assert service.get_device_analytics() == empty_device_analytics()
        assert service.get_session_metrics() == []
        assert service.get_recent_queries() == []
        daily = service.get_daily_metrics(3)
        billing = service.get_billing_metrics(monthly_budget=10)
        cleanup = service.cleanup_old_analytics()

    assert [day["total_messages"] for day in daily] == [0, 0, 0]
    assert billing["last_30_days"]["total_cost"] == 0
    assert billing["budget_status"]["percent_used"] == 0
    assert cleanup == {"events_deleted": 0, "sessions_deleted": 0, "cutoff": NOW - 30 * DAY_MS}
    assert "Analytics cleanup failed" in caplog.text


def test_cleanup_sweeps_events_and_sessions_older_than_retention():
    store = InMemoryEventStore()
    cutoff = NOW - 30 * DAY_MS
    for timestamp in (cutoff - 1, cutoff + 1):
        store.append(
            ChatRequestEvent(timestamp=timestamp, session_id=f"s{timestamp}", user_query="hi", query_category="other")
        )
    store.save_session(SessionMetrics(session_id="old", start_time=cutoff - 5, last_activity=cutoff - 1), NOW + DAY_MS)
    store.save_session(SessionMetrics(session_id="new", start_time=cutoff, last_activity=NOW), NOW + DAY_MS)

    result = AnalyticsService(store, clock=lambda: NOW).cleanup_old_analytics()

    assert result == {"events_deleted": 1, "sessions_deleted": 1, "cutoff": cutoff}
    assert [event.timestamp for event in store.fetch_events(0, NOW)] == [cutoff + 1]
    assert [session.session_id for session in store.fetch_sessions(NOW)] == ["new"]


def test_retention_window_is_configurable():
    store = InMemoryEventStore()
    store.append(ChatRequestEvent(timestamp=NOW - 2 * DAY_MS, session_id="s1", user_query="hi", query_category="other"))

    result = AnalyticsService(store, retention_days=1, clock=lambda: NOW).cleanup_old_analytics()

    assert result["events_deleted"] == 1
