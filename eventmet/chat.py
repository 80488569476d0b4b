"""Chat request handling: retrieval, prompt assembly, completion and tracking."""

import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

from .models import DeviceInfo, LocationInfo, PerformanceInfo
from .prompt import build_system_prompt
from .search import Retriever
from .tracking import EventTracker

logger = logging.getLogger("eventmet.chat")


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int
    output_tokens: int
    model: str


class CompletionClient(Protocol):
    """Black-box LLM: takes a system prompt and the conversation, returns text plus usage."""

    def complete(self, system_prompt: str, messages: Sequence[Mapping[str, str]]) -> Completion:
        """Return the assistant reply for the conversation."""


class ChatHandler:
    def __init__(
        self,
        retriever: Retriever,
        tracker: EventTracker,
        client: CompletionClient,
        search_limit: int = 5,
    ):
        self.retriever = retriever
        self.tracker = tracker
        self.client = client
        self.search_limit = search_limit

    def handle(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, str]],
        user_id: Optional[str] = None,
        device: Optional[DeviceInfo] = None,
        location: Optional[LocationInfo] = None,
        performance: Optional[PerformanceInfo] = None,
    ) -> Completion:
        if not messages:
            raise ValueError("messages must not be empty")

        query = latest_user_message(messages)
        started = time.monotonic()
        self.tracker.track_request(session_id, query, user_id, device, location, performance)

        results = self.retriever.search(query, self.search_limit)
        context = self.retriever.format(results)
        system_prompt = build_system_prompt(context, self.retriever.corpus.metadata)

        try:
            completion = self.client.complete(system_prompt, messages)
        except Exception as exc:
            logger.exception("Completion failed for session %s", session_id)
            self.tracker.track_error(session_id, str(exc) or exc.__class__.__name__, 500, user_id)
            raise

        elapsed_ms = (time.monotonic() - started) * 1000
        self.tracker.track_response(
            session_id,
            elapsed_ms,
            {"input": completion.input_tokens, "output": completion.output_tokens},
            completion.model,
            len(results),
            user_id,
        )
        return completion


def latest_user_message(messages: Sequence[Mapping[str, str]]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return str(message.get("content") or "")
    return str(messages[-1].get("content") or "")
