"""SQLAlchemy event store adapter for EventMet."""

import json
import logging
from typing import Callable, List, Optional, Sequence

from sqlalchemy import BigInteger, Column, Integer, MetaData, String, Table, Text, create_engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import AnalyticsEvent, SessionMetrics, decode_event_payloads, event_to_json

logger = logging.getLogger("eventmet.store.sqlalchemy")

metadata = MetaData()

analytics_events = Table(
    "analytics_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ts", BigInteger, nullable=False, index=True),
    Column("event_type", String(32), nullable=False),
    Column("session_id", String(255), nullable=False),
    Column("payload", Text, nullable=False),
)

analytics_sessions = Table(
    "analytics_sessions",
    metadata,
    Column("session_id", String(255), primary_key=True),
    Column("start_time", BigInteger, nullable=False),
    Column("last_activity", BigInteger, nullable=False, index=True),
    Column("message_count", Integer, nullable=False, default=0),
    Column("categories", Text, nullable=False, default="[]"),
    Column("total_tokens", BigInteger, nullable=False, default=0),
    Column("expires_at", BigInteger, nullable=False, index=True),
)


class SQLAlchemyEventStore:
    """Persists events as one row each; ordering is (ts, id) so ties are never merged."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, create_schema: bool = True) -> "SQLAlchemyEventStore":
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(database_url, pool_pre_ping=True)
        if create_schema:
            metadata.create_all(engine)
        return cls(sessionmaker(bind=engine))

    def append(self, event: AnalyticsEvent) -> None:
        self._insert_payload(
            event.timestamp,
            event_to_json(event),
            event_type=event.event_type,
            session_id=event.session_id,
        )

    def fetch_events(self, start_ms: int, end_ms: int) -> Sequence[AnalyticsEvent]:
        with self.session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT payload
                    FROM analytics_events
                    WHERE ts >= :start_ms AND ts <= :end_ms
                    ORDER BY ts, id
                    """
                ),
                {"start_ms": int(start_ms), "end_ms": int(end_ms)},
            ).fetchall()

        return decode_event_payloads(row.payload for row in rows)

    def get_session(self, session_id: str, now_ms: int) -> Optional[SessionMetrics]:
        with self.session_factory() as db:
            row = db.execute(
                text(
                    """
                    SELECT session_id, start_time, last_activity, message_count, categories, total_tokens
                    FROM analytics_sessions
                    WHERE session_id = :session_id AND expires_at > :now_ms
                    """
                ),
                {"session_id": session_id, "now_ms": int(now_ms)},
            ).first()

        return _session_from_row(row) if row else None

    def save_session(self, session: SessionMetrics, expires_at_ms: int) -> None:
        params = {
            "session_id": session.session_id,
            "start_time": int(session.start_time),
            "last_activity": int(session.last_activity),
            "message_count": int(session.message_count),
            "categories": json.dumps(list(session.categories)),
            "total_tokens": int(session.total_tokens),
            "expires_at": int(expires_at_ms),
        }
        update_sql = text(
            """
            UPDATE analytics_sessions
            SET start_time = :start_time,
                last_activity = :last_activity,
                message_count = :message_count,
                categories = :categories,
                total_tokens = :total_tokens,
                expires_at = :expires_at
            WHERE session_id = :session_id
            """
        )
        insert_sql = text(
            """
            INSERT INTO analytics_sessions (
                session_id, start_time, last_activity, message_count,
                categories, total_tokens, expires_at
            )
            VALUES (
                :session_id, :start_time, :last_activity, :message_count,
                :categories, :total_tokens, :expires_at
            )
            """
        )

        with self.session_factory() as db:
            result = db.execute(update_sql, params)
            if result.rowcount:
                db.commit()
                return
            try:
                db.execute(insert_sql, params)
                db.commit()
            except IntegrityError:
                # Another writer created the row first; last writer wins.
                db.rollback()
                db.execute(update_sql, params)
                db.commit()

    def fetch_sessions(self, now_ms: int) -> Sequence[SessionMetrics]:
        with self.session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT session_id, start_time, last_activity, message_count, categories, total_tokens
                    FROM analytics_sessions
                    WHERE expires_at > :now_ms
                    ORDER BY start_time
                    """
                ),
                {"now_ms": int(now_ms)},
            ).fetchall()

        return [_session_from_row(row) for row in rows]

    def delete_events_before(self, cutoff_ms: int) -> int:
        with self.session_factory() as db:
            result = db.execute(
                text("DELETE FROM analytics_events WHERE ts < :cutoff_ms"),
                {"cutoff_ms": int(cutoff_ms)},
            )
            db.commit()
            return int(result.rowcount or 0)

    def delete_sessions_before(self, cutoff_ms: int) -> int:
        with self.session_factory() as db:
            result = db.execute(
                text("DELETE FROM analytics_sessions WHERE last_activity < :cutoff_ms"),
                {"cutoff_ms": int(cutoff_ms)},
            )
            db.commit()
            return int(result.rowcount or 0)

    def _insert_payload(
        self,
        timestamp: int,
        payload: str,
        event_type: str = "unknown",
        session_id: str = "",
    ) -> None:
        with self.session_factory() as db:
            db.execute(
                text(
                    """
                    INSERT INTO analytics_events (ts, event_type, session_id, payload)
                    VALUES (:ts, :event_type, :session_id, :payload)
                    """
                ),
                {
                    "ts": int(timestamp),
                    "event_type": event_type,
                    "session_id": session_id,
                    "payload": payload,
                },
            )
            db.commit()


def _session_from_row(row) -> SessionMetrics:
    return SessionMetrics(
        session_id=row.session_id,
        start_time=int(row.start_time),
        last_activity=int(row.last_activity),
        message_count=int(row.message_count or 0),
        categories=_parse_categories(row.categories),
        total_tokens=int(row.total_tokens or 0),
    )


def _parse_categories(raw_categories) -> List[str]:
    if raw_categories is None:
        return []
    if isinstance(raw_categories, str):
        try:
            raw_categories = json.loads(raw_categories)
        except json.JSONDecodeError:
            return []
    if isinstance(raw_categories, list):
        return [str(value) for value in raw_categories]
    return []
