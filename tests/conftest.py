from datetime import datetime, timezone

import pytest

from eventmet.adapters import InMemoryEventStore, SQLAlchemyEventStore
from eventmet.corpus import corpus_from_dict


def ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


NOW = ms(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def corpus():
    return corpus_from_dict(
        {
            "metadata": {
                "event_name": "CRAFTED 2025",
                "event_location": "Alys Beach, Florida",
                "event_dates": "November 12-16, 2025",
            },
            "pages": [
                {
                    "source": "event",
                    "category": "event-signature",
                    "title": "Firkin Fête",
                    "content": "Friday evening in Central Park: every brewer taps a firkin of cask ale.",
                    "keywords": ["firkin", "beer"],
                },
                {
                    "source": "venue",
                    "category": "venue-dining",
                    "title": "George's",
                    "content": "A coastal restaurant with an open-air courtyard.",
                    "keywords": ["george's", "restaurant"],
                },
            ],
        }
    )


@pytest.fixture(params=["memory", "sqlalchemy"])
def store(request):
    if request.param == "memory":
        return InMemoryEventStore()
    return SQLAlchemyEventStore.from_url("sqlite://")
