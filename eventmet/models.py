"""Core domain models shared by retrieval, tracking and analytics."""

import json
import logging
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

logger = logging.getLogger("eventmet.models")

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def utc_datetime(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def utc_day(timestamp_ms: int) -> str:
    """Calendar day (YYYY-MM-DD, UTC) containing the timestamp."""
    return utc_datetime(timestamp_ms).date().isoformat()


# ----------------------------
# Corpus
# ----------------------------
@dataclass(frozen=True)
class Page:
    """A single content page of the knowledge base."""

    source: str
    category: str
    title: str
    content: Any
    keywords: Tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_event(self) -> bool:
        return self.source == "event"

    @property
    def is_venue(self) -> bool:
        return self.source == "venue"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "source": self.source,
            "category": self.category,
            "title": self.title,
            "content": self.content,
            "keywords": list(self.keywords),
        }
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data


@dataclass(frozen=True)
class CorpusMetadata:
    event_name: str = "the event"
    event_location: str = "unknown location"
    event_dates: str = "dates to be announced"
    description: str = ""
    sources: Mapping[str, int] = field(default_factory=dict)
    categories: Mapping[str, Sequence[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class Corpus:
    metadata: CorpusMetadata
    pages: Tuple[Page, ...]


# ----------------------------
# Event context blocks
# ----------------------------
@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass(frozen=True)
class DeviceInfo:
    type: str = "unknown"
    os: str = ""
    browser: str = ""
    browser_version: str = ""
    screen_size: str = ""
    viewport_size: str = ""
    touch_enabled: bool = False
    pixel_ratio: Optional[float] = None


@dataclass(frozen=True)
class LocationInfo:
    timezone: str = "unknown"
    timezone_offset: int = 0
    language: str = "unknown"
    languages: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PerformanceInfo:
    page_load_time: Optional[float] = None
    connection_type: Optional[str] = None
    effective_type: Optional[str] = None
    downlink: Optional[float] = None
    rtt: Optional[float] = None
    save_data: bool = False


# ----------------------------
# Analytics events
# ----------------------------
@dataclass(frozen=True)
class SessionStartEvent:
    """A browser tab opened a new chat session."""

    event_type: ClassVar[str] = "session_start"

    timestamp: int
    session_id: str
    user_id: Optional[str] = None
    device: Optional[DeviceInfo] = None
    location: Optional[LocationInfo] = None
    performance: Optional[PerformanceInfo] = None


@dataclass(frozen=True)
class ChatRequestEvent:
    """A user query was received."""

    event_type: ClassVar[str] = "chat_request"

    timestamp: int
    session_id: str
    user_query: str
    query_category: str
    user_id: Optional[str] = None
    device: Optional[DeviceInfo] = None
    location: Optional[LocationInfo] = None
    performance: Optional[PerformanceInfo] = None


@dataclass(frozen=True)
class ChatResponseEvent:
    """A completion finished and reported its token usage."""

    event_type: ClassVar[str] = "chat_response"

    timestamp: int
    session_id: str
    response_time_ms: float
    tokens_used: TokenUsage
    model_used: str
    relevant_chunks: int
    status_code: int = 200
    user_id: Optional[str] = None
    device: Optional[DeviceInfo] = None
    location: Optional[LocationInfo] = None
    performance: Optional[PerformanceInfo] = None


@dataclass(frozen=True)
class ErrorEvent:
    """The chat path failed for a session."""

    event_type: ClassVar[str] = "error"

    timestamp: int
    session_id: str
    error_details: str
    status_code: int
    user_id: Optional[str] = None
    device: Optional[DeviceInfo] = None
    location: Optional[LocationInfo] = None
    performance: Optional[PerformanceInfo] = None


AnalyticsEvent = Union[SessionStartEvent, ChatRequestEvent, ChatResponseEvent, ErrorEvent]

EVENT_TYPES = {
    cls.event_type: cls
    for cls in (SessionStartEvent, ChatRequestEvent, ChatResponseEvent, ErrorEvent)
}


@dataclass
class SessionMetrics:
    """Rolling per-session aggregate, refreshed on every request and response."""

    session_id: str
    start_time: int
    last_activity: int
    message_count: int = 0
    categories: List[str] = field(default_factory=list)
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionMetrics":
        return cls(
            session_id=str(data["session_id"]),
            start_time=int(data["start_time"]),
            last_activity=int(data["last_activity"]),
            message_count=int(data.get("message_count", 0)),
            categories=list(data.get("categories") or []),
            total_tokens=int(data.get("total_tokens", 0)),
        )


@dataclass(frozen=True)
class CostBreakdown:
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    model: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ----------------------------
# Event codec
# ----------------------------
def event_to_dict(event: AnalyticsEvent) -> Dict[str, Any]:
    data: Dict[str, Any] = {"event_type": event.event_type}
    for key, value in asdict(event).items():
        if value is None:
            continue
        if isinstance(value, tuple):
            value = list(value)
        data[key] = value
    return data


def event_to_json(event: AnalyticsEvent) -> str:
    return json.dumps(event_to_dict(event), ensure_ascii=False, separators=(",", ":"))


def event_from_dict(data: Mapping[str, Any]) -> AnalyticsEvent:
    """Rebuild a typed event; raises ValueError/KeyError/TypeError on bad input."""
    event_type = data.get("event_type")
    event_cls = EVENT_TYPES.get(event_type)
    if event_cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")

    common = {
        "timestamp": int(data["timestamp"]),
        "session_id": str(data["session_id"]),
        "user_id": data.get("user_id"),
        "device": _optional_block(DeviceInfo, data.get("device")),
        "location": _optional_block(LocationInfo, data.get("location")),
        "performance": _optional_block(PerformanceInfo, data.get("performance")),
    }

    if event_cls is ChatRequestEvent:
        return ChatRequestEvent(
            user_query=str(data["user_query"]),
            query_category=str(data.get("query_category") or "other"),
            **common,
        )
    if event_cls is ChatResponseEvent:
        tokens = data.get("tokens_used") or {}
        return ChatResponseEvent(
            response_time_ms=float(data.get("response_time_ms") or 0),
            tokens_used=TokenUsage(input=int(tokens.get("input", 0)), output=int(tokens.get("output", 0))),
            model_used=str(data.get("model_used") or ""),
            relevant_chunks=int(data.get("relevant_chunks") or 0),
            status_code=int(data.get("status_code", 200)),
            **common,
        )
    if event_cls is ErrorEvent:
        return ErrorEvent(
            error_details=str(data.get("error_details") or ""),
            status_code=int(data["status_code"]),
            **common,
        )
    return SessionStartEvent(**common)


def event_from_json(payload: Union[str, bytes]) -> AnalyticsEvent:
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Event payload must be a JSON object")
    return event_from_dict(data)


def decode_event_payloads(payloads: Iterable[Union[str, bytes]]) -> List[AnalyticsEvent]:
    """Decode stored payloads, skipping (and logging) entries that do not parse."""
    events: List[AnalyticsEvent] = []
    for payload in payloads:
        try:
            events.append(event_from_json(payload))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping malformed analytics event: %s", exc)
    return events


def _optional_block(block_cls, raw):
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise TypeError(f"{block_cls.__name__} must be an object")
    values = dict(raw)
    if block_cls is LocationInfo and "languages" in values:
        values["languages"] = tuple(values["languages"] or ())
    block = block_cls(**values)
    _check_block_types(block)
    return block


def _check_block_types(block) -> None:
    """Reject context blocks whose fields do not have their declared types."""
    for block_field in fields(block):
        value = getattr(block, block_field.name)
        if not _matches_type(value, block_field.type):
            raise TypeError(
                f"{type(block).__name__}.{block_field.name} has invalid value {value!r}"
            )


def _matches_type(value, annotation) -> bool:
    if annotation is bool:
        return isinstance(value, bool)
    if annotation is str:
        return isinstance(value, str)
    if annotation is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if annotation == Optional[str]:
        return value is None or isinstance(value, str)
    if annotation == Optional[float]:
        return value is None or (isinstance(value, (int, float)) and not isinstance(value, bool))
    if annotation == Tuple[str, ...]:
        return all(isinstance(item, str) for item in value)
    return True
