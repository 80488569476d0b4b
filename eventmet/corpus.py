"""Static knowledge-base loading."""

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Union

from .models import Corpus, CorpusMetadata, Page

logger = logging.getLogger("eventmet.corpus")

PAGE_FIELDS = ("source", "category", "title", "content", "keywords")
DEFAULT_DESCRIPTION = (
    "This is a multi-day celebration featuring culinary experiences, workshops, and makers markets."
)


def load_corpus(path: Union[str, Path]) -> Corpus:
    """Load the pre-built corpus JSON document from disk."""
    corpus_path = Path(path)
    if not corpus_path.exists():
        raise FileNotFoundError(f"No corpus file at {corpus_path}")

    with corpus_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    corpus = corpus_from_dict(data)
    logger.info("Loaded corpus from %s (%d pages)", corpus_path, len(corpus.pages))
    return corpus


def corpus_from_dict(data: Mapping[str, Any]) -> Corpus:
    if not isinstance(data, Mapping):
        raise ValueError("Corpus document must be a JSON object")

    raw_pages = data.get("pages")
    if not isinstance(raw_pages, list):
        raise ValueError("Corpus document must contain a 'pages' array")

    pages = tuple(_page_from_dict(raw, index) for index, raw in enumerate(raw_pages))
    return Corpus(metadata=_metadata_from_dict(data.get("metadata") or {}), pages=pages)


def fallback_summary(metadata: CorpusMetadata) -> str:
    """Generic context used when no page is relevant to a query."""
    return (
        f"Event: {metadata.event_name}\n"
        f"Location: {metadata.event_location}\n"
        f"Dates: {metadata.event_dates}\n"
        "\n"
        f"{metadata.description or DEFAULT_DESCRIPTION}"
    )


def _page_from_dict(raw: Any, index: int) -> Page:
    if not isinstance(raw, Mapping):
        raise ValueError(f"Page {index} is not an object")
    source = raw.get("source")
    if source not in ("event", "venue"):
        raise ValueError(f"Page {index} has invalid source {source!r}")

    keywords = raw.get("keywords") or []
    if not isinstance(keywords, list):
        raise ValueError(f"Page {index} keywords must be an array")

    return Page(
        source=source,
        category=str(raw.get("category") or "general"),
        title=str(raw.get("title") or "Page"),
        content=raw.get("content", ""),
        keywords=tuple(str(keyword).lower() for keyword in keywords),
        extra={key: value for key, value in raw.items() if key not in PAGE_FIELDS},
    )


def _metadata_from_dict(raw: Mapping[str, Any]) -> CorpusMetadata:
    defaults = CorpusMetadata()
    return CorpusMetadata(
        event_name=raw.get("event_name") or defaults.event_name,
        event_location=raw.get("event_location") or defaults.event_location,
        event_dates=raw.get("event_dates") or defaults.event_dates,
        description=raw.get("description") or "",
        sources=dict(raw.get("sources") or {}),
        categories=dict(raw.get("categories") or {}),
    )
