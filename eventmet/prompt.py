"""System prompt assembly around the retrieved context block."""

from typing import Optional

from .models import CorpusMetadata

PERSONA = """You are the {event_name} Assistant, a warm and knowledgeable guide to the event \
and the venue that hosts it ({event_location}, {event_dates}).

When guests ask about the event, focus on event details. When they ask about the venue, \
dining or amenities, draw from venue information. Often you will combine both.

GUIDELINES:
- Base every answer on the reference information below.
- If something is not covered there, say so honestly.
- Use specific names, times and locations when they are available.
- Format schedules and lists so they are easy to scan."""


def build_system_prompt(context: str, metadata: Optional[CorpusMetadata] = None) -> str:
    metadata = metadata or CorpusMetadata()
    persona = PERSONA.format(
        event_name=metadata.event_name,
        event_location=metadata.event_location,
        event_dates=metadata.event_dates,
    )
    return f"{persona}\n\nRELEVANT INFORMATION:\n{context}"
