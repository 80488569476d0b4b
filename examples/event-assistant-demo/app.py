"""Event assistant demo: FastAPI admin API over seeded in-memory analytics."""

import logging
from pathlib import Path
from random import Random

from eventmet.adapters import InMemoryEventStore
from eventmet.adapters.fastapi_app import create_app
from eventmet.chat import Completion
from eventmet.corpus import load_corpus
from eventmet.models import DAY_MS, MINUTE_MS, DeviceInfo, LocationInfo, now_ms
from eventmet.settings import Settings
from eventmet.tracking import EventTracker

APP_DIR = Path(__file__).parent
RNG = Random(42)

DEMO_QUERIES = [
    "When is the Firkin Fête?",
    "Where can I eat near the beach?",
    "Do I need a ticket for the workshops?",
    "Tell me about Caliza Pool",
    "What time does the makers market open on Sunday?",
    "Is there tennis at ZUMA?",
]

settings = Settings(
    corpus_path=str(APP_DIR / "combined_data.json"),
    admin_password="demo",
    monthly_budget=25.0,
)
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))


class EchoCompletionClient:
    """Stand-in for the LLM: replies with the first line of retrieved context."""

    def complete(self, system_prompt, messages):
        context = system_prompt.split("RELEVANT INFORMATION:\n", 1)[-1]
        reply = context.splitlines()[0] if context else "I'm not sure."
        return Completion(
            text=reply,
            input_tokens=len(system_prompt) // 4,
            output_tokens=len(reply) // 4,
            model=settings.default_model,
        )


def _seed_demo_events(store: InMemoryEventStore) -> None:
    now = now_ms()
    for idx in range(240):
        timestamp = now - idx * 45 * MINUTE_MS
        clock = lambda timestamp=timestamp: timestamp  # noqa: E731
        tracker = EventTracker(store, clock=clock)
        session_id = f"session_demo_{idx // 4}"
        user_id = f"user_{idx % 25}"
        query = DEMO_QUERIES[idx % len(DEMO_QUERIES)]
        device = DeviceInfo(
            type="mobile" if idx % 3 else "desktop",
            os="iOS" if idx % 3 else "macOS",
            browser="Safari",
            touch_enabled=bool(idx % 3),
            pixel_ratio=3.0 if idx % 3 else 2.0,
        )
        location = LocationInfo(timezone="America/Chicago", language="en-US")

        tracker.track_request(session_id, query, user_id=user_id, device=device, location=location)
        if idx % 29 == 0:
            tracker.track_error(session_id, "upstream timeout", 504, user_id=user_id)
            continue
        tracker.track_response(
            session_id,
            max(300, int(RNG.gauss(1800, 400))),
            {"input": max(200, int(RNG.gauss(2400, 300))), "output": max(40, int(RNG.gauss(320, 80)))},
            settings.default_model,
            RNG.randint(1, 5),
            user_id=user_id,
        )

    # Old enough to be removed by the retention sweep.
    EventTracker(store, clock=lambda: now - 45 * DAY_MS).track_request("session_stale", "old query")


STORE = InMemoryEventStore()
_seed_demo_events(STORE)

app = create_app(
    settings=settings,
    store=STORE,
    corpus=load_corpus(settings.corpus_path),
    completion_client=EchoCompletionClient(),
)
