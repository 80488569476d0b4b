"""Fire-and-forget recording of chat activity into an EventStore."""

import logging
import random
import string
from concurrent.futures import Executor
from typing import Callable, Mapping, Optional, Union

from .categories import categorize_query
from .models import (
    DAY_MS,
    ChatRequestEvent,
    ChatResponseEvent,
    DeviceInfo,
    ErrorEvent,
    LocationInfo,
    PerformanceInfo,
    SessionMetrics,
    SessionStartEvent,
    TokenUsage,
    now_ms,
)
from .ports import EventStore

logger = logging.getLogger("eventmet.tracking")

SESSION_TTL_MS = 30 * DAY_MS
_BASE36 = string.digits + string.ascii_lowercase


def generate_session_id(timestamp_ms: Optional[int] = None) -> str:
    timestamp_ms = now_ms() if timestamp_ms is None else timestamp_ms
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"session_{timestamp_ms}_{suffix}"


class EventTracker:
    """Records request/response/error events without ever failing the caller.

    With an executor, store writes run in the background and the track_* calls
    return immediately; without one they run inline. Either way any storage
    error is logged and swallowed.

    A multi-worker executor may run a response job before the request job that
    creates its session record; the response event is still stored but its
    tokens are not added to the session. Use a single worker to keep order.
    """

    def __init__(
        self,
        store: EventStore,
        executor: Optional[Executor] = None,
        session_ttl_ms: int = SESSION_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.executor = executor
        self.session_ttl_ms = session_ttl_ms
        self.clock = clock

    def track_session_start(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        device: Optional[DeviceInfo] = None,
        location: Optional[LocationInfo] = None,
        performance: Optional[PerformanceInfo] = None,
    ) -> None:
        event = SessionStartEvent(
            timestamp=self.clock(),
            session_id=session_id,
            user_id=user_id,
            device=device,
            location=location,
            performance=performance,
        )
        self._dispatch(self.store.append, event)

    def track_request(
        self,
        session_id: str,
        query: str,
        user_id: Optional[str] = None,
        device: Optional[DeviceInfo] = None,
        location: Optional[LocationInfo] = None,
        performance: Optional[PerformanceInfo] = None,
    ) -> None:
        event = ChatRequestEvent(
            timestamp=self.clock(),
            session_id=session_id,
            user_query=query,
            query_category=categorize_query(query),
            user_id=user_id,
            device=device,
            location=location,
            performance=performance,
        )
        self._dispatch(self._record_request, event)

    def track_response(
        self,
        session_id: str,
        response_time_ms: float,
        tokens_used: Union[TokenUsage, Mapping[str, int]],
        model: str,
        relevant_chunks: int,
        user_id: Optional[str] = None,
    ) -> None:
        if not isinstance(tokens_used, TokenUsage):
            tokens_used = TokenUsage(
                input=int(tokens_used.get("input", 0)),
                output=int(tokens_used.get("output", 0)),
            )
        event = ChatResponseEvent(
            timestamp=self.clock(),
            session_id=session_id,
            response_time_ms=float(response_time_ms),
            tokens_used=tokens_used,
            model_used=model,
            relevant_chunks=int(relevant_chunks),
            user_id=user_id,
        )
        self._dispatch(self._record_response, event)

    def track_error(
        self,
        session_id: str,
        error_details: str,
        status_code: int,
        user_id: Optional[str] = None,
    ) -> None:
        event = ErrorEvent(
            timestamp=self.clock(),
            session_id=session_id,
            error_details=error_details,
            status_code=int(status_code),
            user_id=user_id,
        )
        self._dispatch(self.store.append, event)

    def _record_request(self, event: ChatRequestEvent) -> None:
        self.store.append(event)

        # Read-modify-write: concurrent requests in one session may lose a count.
        session = self.store.get_session(event.session_id, event.timestamp)
        if session is None:
            session = SessionMetrics(
                session_id=event.session_id,
                start_time=event.timestamp,
                last_activity=event.timestamp,
            )
        session.last_activity = max(session.last_activity, event.timestamp)
        session.message_count += 1
        if event.query_category and event.query_category not in session.categories:
            session.categories.append(event.query_category)
        self.store.save_session(session, session.last_activity + self.session_ttl_ms)

    def _record_response(self, event: ChatResponseEvent) -> None:
        self.store.append(event)

        session = self.store.get_session(event.session_id, event.timestamp)
        if session is None:
            logger.warning("Session not found for response tracking: %s", event.session_id)
            return
        # Same benign race as above for concurrent responses in one session.
        session.total_tokens += event.tokens_used.total
        session.last_activity = max(session.last_activity, event.timestamp)
        self.store.save_session(session, session.last_activity + self.session_ttl_ms)

    def _dispatch(self, action, event) -> None:
        if self.executor is None:
            self._run_safely(action, event)
            return
        try:
            self.executor.submit(self._run_safely, action, event)
        except RuntimeError:
            logger.exception("Could not schedule %s tracking", event.event_type)

    def _run_safely(self, action, event) -> None:
        try:
            action(event)
        except Exception:
            logger.exception(
                "Failed to track %s event for session %s", event.event_type, event.session_id
            )
