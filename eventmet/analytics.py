"""Pure analytics functions that fold stored events into dashboard views."""

from math import floor
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    DAY_MS,
    HOUR_MS,
    AnalyticsEvent,
    ChatRequestEvent,
    ChatResponseEvent,
    ErrorEvent,
    SessionMetrics,
    utc_datetime,
    utc_day,
)

RETENTION_WINDOWS_DAYS = {"day_one": 1, "day_three": 3, "day_seven": 7}
QUERY_PREVIEW_CHARS = 200


def compute_realtime_stats(
    events: Iterable[AnalyticsEvent],
    sessions: Sequence[SessionMetrics],
    now_ms: int,
) -> Dict:
    """Last-hour and last-24-hour activity from a slice of recent events."""
    day_ago = now_ms - DAY_MS
    hour_ago = now_ms - HOUR_MS
    recent = [event for event in events if day_ago <= event.timestamp <= now_ms]
    hourly = [event for event in recent if event.timestamp >= hour_ago]

    requests = [event for event in recent if isinstance(event, ChatRequestEvent)]
    responses = [event for event in recent if isinstance(event, ChatResponseEvent)]
    error_count = sum(1 for event in recent if isinstance(event, ErrorEvent))

    total_messages = len(requests)
    response_times = [event.response_time_ms for event in responses if event.response_time_ms]
    avg_response_time = sum(response_times) / len(response_times) if response_times else 0
    active_sessions = len({event.session_id for event in hourly})

    category_breakdown: Dict[str, int] = {}
    for event in requests:
        if event.query_category:
            category_breakdown[event.query_category] = category_breakdown.get(event.query_category, 0) + 1

    return {
        "active_sessions": active_sessions,
        "total_sessions": len(sessions),
        "total_messages": total_messages,
        "avg_response_time": round(avg_response_time),
        "response_time_percentiles_ms": _compute_percentiles(response_times),
        "error_count": error_count,
        "error_rate": _format_rate(error_count, total_messages),
        "total_tokens": sum(event.tokens_used.total for event in responses),
        "category_breakdown": category_breakdown,
        "last_24_hours": {
            "messages": total_messages,
            "sessions": len({event.session_id for event in recent}),
        },
        "last_hour": {
            "messages": sum(1 for event in hourly if isinstance(event, ChatRequestEvent)),
            "sessions": active_sessions,
        },
    }


def compute_daily_metrics(events: Iterable[AnalyticsEvent], days: int, now_ms: int) -> List[Dict]:
    """
    Per-UTC-day rollups for the last ``days`` days.

    Every day in the range is present, newest first, even when it saw no events.
    """
    buckets: Dict[str, Dict] = {}
    for offset in range(days):
        date = utc_day(now_ms - offset * DAY_MS)
        buckets[date] = {
            "date": date,
            "sessions": set(),
            "response_times": [],
            **_empty_day(date),
        }

    for event in events:
        day = buckets.get(utc_day(event.timestamp))
        if day is None:
            continue

        if isinstance(event, ChatRequestEvent):
            day["sessions"].add(event.session_id)
            day["total_messages"] += 1
            if event.query_category:
                counts = day["category_counts"]
                counts[event.query_category] = counts.get(event.query_category, 0) + 1
        elif isinstance(event, ChatResponseEvent):
            day["total_tokens_input"] += event.tokens_used.input
            day["total_tokens_output"] += event.tokens_used.output
            if event.response_time_ms:
                day["response_times"].append(event.response_time_ms)
        elif isinstance(event, ErrorEvent):
            day["error_count"] += 1

    result = []
    for day in buckets.values():
        response_times = day.pop("response_times")
        sessions = day.pop("sessions")
        day["total_sessions"] = len(sessions)
        day["avg_response_time"] = sum(response_times) / len(response_times) if response_times else 0
        result.append(day)
    return sorted(result, key=lambda day: day["date"], reverse=True)


def compute_user_metrics(events: Iterable[AnalyticsEvent], now_ms: int) -> Dict:
    """
    Unique-user, new-vs-returning, engagement, retention and conversion figures.

    A user is "returning" when more than 24 hours separate their first and last
    event. That also counts one long session spanning a day, so treat it as an
    approximation of multi-day return visits.
    """
    user_events = [event for event in events if event.user_id]
    if not user_events:
        return empty_user_metrics()

    today = now_ms - DAY_MS
    last_7_days = now_ms - 7 * DAY_MS
    last_30_days = now_ms - 30 * DAY_MS

    def unique_since(start: int) -> int:
        return len({event.user_id for event in user_events if event.timestamp >= start})

    unique_today = unique_since(today)
    unique_30_days = unique_since(last_30_days)
    unique_all_time = len({event.user_id for event in user_events})

    first_seen: Dict[str, int] = {}
    last_seen: Dict[str, int] = {}
    for event in user_events:
        user_id = event.user_id
        if user_id not in first_seen or event.timestamp < first_seen[user_id]:
            first_seen[user_id] = event.timestamp
        if user_id not in last_seen or event.timestamp > last_seen[user_id]:
            last_seen[user_id] = event.timestamp

    new_users = 0
    returning_users = 0
    for user_id, first in first_seen.items():
        last = last_seen[user_id]
        if last < last_30_days:
            continue
        if last - first > DAY_MS:
            returning_users += 1
        else:
            new_users += 1
    active_users = new_users + returning_users

    sessions_by_user: Dict[str, set] = {}
    messages_by_user: Dict[str, int] = {}
    for event in user_events:
        if event.timestamp < last_30_days:
            continue
        sessions_by_user.setdefault(event.user_id, set()).add(event.session_id)
        if isinstance(event, ChatRequestEvent):
            messages_by_user[event.user_id] = messages_by_user.get(event.user_id, 0) + 1

    total_sessions = sum(len(sessions) for sessions in sessions_by_user.values())
    total_messages = sum(messages_by_user.values())

    return {
        "unique_users": {
            "today": unique_today,
            "last_7_days": unique_since(last_7_days),
            "last_30_days": unique_30_days,
            "all_time": unique_all_time,
        },
        "new_vs_returning": {
            "new_users": new_users,
            "returning_users": returning_users,
            "return_rate": round(_percent(returning_users, active_users), 1),
        },
        "engagement": {
            "avg_sessions_per_user": round(_ratio(total_sessions, unique_30_days), 2),
            "avg_messages_per_user": round(_ratio(total_messages, unique_30_days), 2),
            "active_users_24h": unique_today,
        },
        "retention": _compute_retention(first_seen, last_seen, now_ms),
        "conversion_rate": round(_percent(len(messages_by_user), unique_30_days), 1),
    }


def compute_device_analytics(events: Iterable[AnalyticsEvent]) -> Dict:
    """Device, locale and client-performance breakdowns from event context blocks."""
    with_context = [
        event for event in events if event.device or event.location or event.performance
    ]
    if not with_context:
        return empty_device_analytics()

    device_types: Dict[str, int] = {}
    browsers: Dict[str, int] = {}
    operating_systems: Dict[str, int] = {}
    screen_sizes: Dict[str, int] = {}
    pixel_ratios: Dict[str, int] = {}
    timezones: Dict[str, int] = {}
    languages: Dict[str, int] = {}
    connection_types: Dict[str, int] = {}
    effective_types: Dict[str, int] = {}
    touch_devices = 0
    desktop_devices = 0
    page_load_times: List[float] = []
    downlinks: List[float] = []
    rtts: List[float] = []
    save_data_count = 0

    for event in with_context:
        device = event.device
        if device:
            _increment(device_types, device.type)
            _increment(browsers, device.browser)
            _increment(operating_systems, device.os)
            _increment(screen_sizes, device.screen_size)
            if device.touch_enabled:
                touch_devices += 1
            else:
                desktop_devices += 1
            if device.pixel_ratio:
                _increment(pixel_ratios, f"{device.pixel_ratio:.1f}")

        location = event.location
        if location:
            if location.timezone != "unknown":
                _increment(timezones, location.timezone)
            if location.language != "unknown":
                _increment(languages, location.language)

        performance = event.performance
        if performance:
            if performance.page_load_time:
                page_load_times.append(performance.page_load_time)
            _increment(connection_types, performance.connection_type)
            _increment(effective_types, performance.effective_type)
            if performance.downlink is not None:
                downlinks.append(performance.downlink)
            if performance.rtt is not None:
                rtts.append(performance.rtt)
            if performance.save_data:
                save_data_count += 1

    total = len(with_context)
    return {
        "device": {
            "device_types": device_types,
            "browsers": browsers,
            "operating_systems": operating_systems,
            "screen_sizes": screen_sizes,
            "touch_vs_desktop": {"touch": touch_devices, "desktop": desktop_devices},
            "pixel_ratios": pixel_ratios,
        },
        "location": {
            "timezones": timezones,
            "languages": languages,
            "top_timezones": _top_entries(timezones, "timezone"),
            "top_languages": _top_entries(languages, "language"),
        },
        "performance": {
            "avg_page_load_time": _mean_or_none(page_load_times),
            "connection_types": connection_types,
            "effective_types": effective_types,
            "avg_downlink": _mean_or_none(downlinks),
            "avg_rtt": _mean_or_none(rtts),
            "save_data_users": save_data_count,
            "total_users": total,
        },
        "summary": {
            "total_sessions": total,
            "mobile_percentage": round(_percent(device_types.get("mobile", 0), total), 1),
            "tablet_percentage": round(_percent(device_types.get("tablet", 0), total), 1),
            "desktop_percentage": round(_percent(device_types.get("desktop", 0), total), 1),
            "top_device": _top_key(device_types),
            "top_browser": _top_key(browsers),
            "top_os": _top_key(operating_systems),
            "top_timezone": _top_key(timezones),
            "top_language": _top_key(languages),
        },
    }


def recent_queries(events: Iterable[AnalyticsEvent], limit: int = 10) -> List[Dict]:
    """Newest user queries first."""
    requests = [event for event in events if isinstance(event, ChatRequestEvent)]
    requests.sort(key=lambda event: event.timestamp, reverse=True)
    return [
        {
            "text": event.user_query[:QUERY_PREVIEW_CHARS],
            "timestamp": utc_datetime(event.timestamp).isoformat(),
            "session_id": event.session_id,
            "category": event.query_category,
        }
        for event in requests[: max(limit, 0)]
    ]


def empty_realtime_stats() -> Dict:
    """Return empty real-time stats structure."""
    return compute_realtime_stats([], [], 0)


def empty_user_metrics() -> Dict:
    """Return empty user metrics structure."""
    return {
        "unique_users": {"today": 0, "last_7_days": 0, "last_30_days": 0, "all_time": 0},
        "new_vs_returning": {"new_users": 0, "returning_users": 0, "return_rate": 0.0},
        "engagement": {
            "avg_sessions_per_user": 0.0,
            "avg_messages_per_user": 0.0,
            "active_users_24h": 0,
        },
        "retention": {
            **{name: 0 for name in RETENTION_WINDOWS_DAYS},
            "rates": {name: 0.0 for name in RETENTION_WINDOWS_DAYS},
        },
        "conversion_rate": 0.0,
    }


def empty_device_analytics() -> Dict:
    """Return empty device analytics structure."""
    return {
        "device": {
            "device_types": {},
            "browsers": {},
            "operating_systems": {},
            "screen_sizes": {},
            "touch_vs_desktop": {"touch": 0, "desktop": 0},
            "pixel_ratios": {},
        },
        "location": {"timezones": {}, "languages": {}, "top_timezones": [], "top_languages": []},
        "performance": {
            "avg_page_load_time": None,
            "connection_types": {},
            "effective_types": {},
            "avg_downlink": None,
            "avg_rtt": None,
            "save_data_users": 0,
            "total_users": 0,
        },
        "summary": {
            "total_sessions": 0,
            "mobile_percentage": 0.0,
            "tablet_percentage": 0.0,
            "desktop_percentage": 0.0,
            "top_device": "unknown",
            "top_browser": "unknown",
            "top_os": "unknown",
            "top_timezone": "unknown",
            "top_language": "unknown",
        },
    }


def _empty_day(date: str) -> Dict:
    return {
        "date": date,
        "total_sessions": 0,
        "total_messages": 0,
        "total_tokens_input": 0,
        "total_tokens_output": 0,
        "avg_response_time": 0,
        "error_count": 0,
        "category_counts": {},
    }


def _compute_retention(first_seen: Dict[str, int], last_seen: Dict[str, int], now_ms: int) -> Dict:
    counts = {name: 0 for name in RETENTION_WINDOWS_DAYS}
    eligible = {name: 0 for name in RETENTION_WINDOWS_DAYS}

    for user_id, first in first_seen.items():
        last = last_seen[user_id]
        for name, window_days in RETENTION_WINDOWS_DAYS.items():
            window_ms = window_days * DAY_MS
            # Only users old enough to have come back inside the window count.
            if now_ms - first < window_ms:
                continue
            eligible[name] += 1
            # A return needs at least a day between first and last activity.
            if first + DAY_MS <= last <= first + window_ms:
                counts[name] += 1

    return {
        **counts,
        "rates": {name: round(_percent(counts[name], eligible[name]), 1) for name in counts},
    }


def _compute_percentiles(values: Iterable[float]) -> Dict[str, float]:
    points = [50, 90, 95, 99]
    sorted_values = sorted(float(value) for value in values)
    if not sorted_values:
        return _empty_percentiles()

    return {f"p{point}": _percentile(sorted_values, point / 100) for point in points}


def _percentile(sorted_values: List[float], quantile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return sorted_values[0]

    position = quantile * (len(sorted_values) - 1)
    lower_index = floor(position)
    upper_index = min(lower_index + 1, len(sorted_values) - 1)
    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]
    weight = position - lower_index
    return lower_value + (upper_value - lower_value) * weight


def _empty_percentiles() -> Dict[str, float]:
    return {"p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}


def _format_rate(numerator: int, denominator: int) -> str:
    return f"{_percent(numerator, denominator):.2f}"


def _percent(numerator: float, denominator: float) -> float:
    return numerator / denominator * 100 if denominator > 0 else 0.0


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _mean_or_none(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _increment(counts: Dict[str, int], key: Optional[str]) -> None:
    if key:
        counts[key] = counts.get(key, 0) + 1


def _top_key(counts: Dict[str, int]) -> str:
    if not counts:
        return "unknown"
    return max(counts.items(), key=lambda item: item[1])[0]


def _top_entries(counts: Dict[str, int], label: str, limit: int = 10) -> List[Dict]:
    total = sum(counts.values())
    entries = [
        {label: key, "count": count, "percentage": _percent(count, total)}
        for key, count in counts.items()
    ]
    entries.sort(key=lambda entry: entry["count"], reverse=True)
    return entries[:limit]
