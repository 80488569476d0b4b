"""Text-search retrieval over the static corpus.

Pages are scored against the user query with keyword matching, an
exact-phrase bonus, curated-keyword bonuses, domain-term boosts and a
source-aware multiplier. Only the best scoring pages are formatted into the
context block handed to the prompt assembler.
"""

import json
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .corpus import fallback_summary
from .models import Corpus, Page

STOP_WORDS = frozenset(
    {
        "what", "when", "where", "who", "how", "is", "are", "the", "a", "an",
        "about", "for", "on", "at", "to", "in", "with", "tell", "me", "can",
        "you", "do", "does", "will", "would", "could", "should", "i", "my",
        "there", "any", "some", "this", "that", "these", "those",
    }
)

EVENT_INDICATORS = (
    "firkin", "fête", "fete", "soirée", "soiree", "pickleball", "picklebacks",
    "workshop", "maker", "market", "schedule", "ticket", "register",
    "speaker", "chef", "saturday", "sunday", "friday", "thursday",
    "what time", "when is", "crafted event", "happening", "activity",
)

VENUE_INDICATORS = (
    "restaurant", "dining", "eat", "food", "drink", "bar",
    "pool", "beach", "caliza", "zuma", "wellness", "gym", "fitness",
    "tennis", "racquet", "pickleball court",
    "architecture", "building", "design", "villa", "courtyard",
    "rental", "stay", "accommodation", "real estate", "property",
    "merchant", "shop", "store", "buy",
    "george's", "o-ku", "citizen", "fonville", "neat",
    "beach club", "amenity", "amenities", "facility",
)

EVENT_TERM_BOOSTS = {
    "firkin": 50,
    "fête": 50,
    "fete": 50,
    "spirited": 40,
    "soirée": 50,
    "soiree": 50,
    "makers": 30,
    "market": 30,
    "pickleball": 40,
    "picklebacks": 40,
    "workshop": 30,
    "dinner": 25,
    "experiential": 30,
    "songwriter": 35,
    "architectural": 30,
    "tour": 20,
    "friday": 20,
    "saturday": 20,
    "sunday": 20,
    "thursday": 20,
    "wednesday": 20,
    "schedule": 25,
    "time": 15,
    "location": 15,
    "ticket": 20,
    "price": 20,
    "cost": 20,
}

VENUE_TERM_BOOSTS = {
    "caliza": 45,
    "zuma": 45,
    "beach club": 40,
    "pool": 30,
    "wellness": 30,
    "racquet": 30,
    "tennis": 30,
    "george's": 40,
    "o-ku": 40,
    "citizen": 40,
    "fonville": 40,
    "neat": 35,
    "restaurant": 25,
    "dining": 25,
    "food": 20,
    "bar": 20,
    "merchant": 25,
    "shop": 20,
    "architecture": 30,
    "design": 25,
    "villa": 25,
    "courtyard": 25,
    "rental": 25,
    "vacation": 25,
    "amenity": 25,
    "amenities": 25,
}

EXACT_PHRASE_BONUS = 100
KEYWORD_OCCURRENCE_POINTS = 10
CURATED_KEYWORD_BONUS = 15
MATCHING_SOURCE_MULTIPLIER = 1.5
OPPOSING_SOURCE_MULTIPLIER = 0.7

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class QueryIntent:
    is_event_query: bool
    is_venue_query: bool


@dataclass(frozen=True)
class SearchResult:
    page: Page
    score: float
    position: int

    @property
    def source_tag(self) -> str:
        return "[EVENT DATA]" if self.page.is_event else "[VENUE DATA]"

    @property
    def label(self) -> str:
        kind = "Event" if self.page.is_event else "Venue"
        return f"{kind}: {self.page.title or 'Page'}"


def extract_keywords(query: str) -> List[str]:
    """Split a query into distinct, stop-word free, alphanumeric keywords."""
    keywords: List[str] = []
    for word in query.lower().split():
        if len(word) <= 2 or word in STOP_WORDS:
            continue
        keyword = _NON_ALNUM.sub("", word)
        if keyword and keyword not in keywords:
            keywords.append(keyword)
    return keywords


def detect_query_intent(query: str) -> QueryIntent:
    query_lower = query.lower()
    return QueryIntent(
        is_event_query=any(term in query_lower for term in EVENT_INDICATORS),
        is_venue_query=any(term in query_lower for term in VENUE_INDICATORS),
    )


def source_multiplier(intent: QueryIntent, source: Optional[str]) -> float:
    """Boost pages whose source matches the query intent; dampen the other source."""
    if intent.is_event_query == intent.is_venue_query:
        return 1.0
    if source == "event":
        return MATCHING_SOURCE_MULTIPLIER if intent.is_event_query else OPPOSING_SOURCE_MULTIPLIER
    if source == "venue":
        return MATCHING_SOURCE_MULTIPLIER if intent.is_venue_query else OPPOSING_SOURCE_MULTIPLIER
    return 1.0


def score_content(
    content: str,
    query: str,
    page_keywords: Iterable[str] = (),
    source: Optional[str] = None,
) -> float:
    """Relevance of one page text to a query; 0 means the page is not relevant."""
    content_lower = content.lower()
    query_lower = query.lower()
    keywords = extract_keywords(query_lower)

    score = float(_query_match_score(content_lower, query_lower, keywords, page_keywords))
    if score <= 0:
        return 0.0

    score += _domain_term_boost(content_lower)
    return score * source_multiplier(detect_query_intent(query_lower), source)


def score_page(page: Page, query: str) -> float:
    return score_content(page_search_text(page), query, page.keywords, page.source)


def page_search_text(page: Page) -> str:
    return json.dumps(page.to_dict(), ensure_ascii=False).lower()


def format_results(results: Sequence[SearchResult]) -> str:
    blocks = []
    for result in results:
        body = json.dumps(result.page.to_dict(), indent=2, ensure_ascii=False)
        blocks.append(
            f"--- {result.source_tag} {result.label} (Relevance: {result.score:.0f}) ---\n{body}"
        )
    return "\n\n".join(blocks)


class Retriever:
    """Selects and formats the corpus pages most relevant to a query."""

    def __init__(self, corpus: Corpus):
        self.corpus = corpus
        self._search_texts = tuple(page_search_text(page) for page in corpus.pages)

    def search(self, query: str, limit: int = 5) -> List[SearchResult]:
        results = []
        for position, (page, text) in enumerate(zip(self.corpus.pages, self._search_texts)):
            score = score_content(text, query, page.keywords, page.source)
            if score > 0:
                results.append(SearchResult(page=page, score=score, position=position))

        # sorted() is stable, so equal scores keep corpus order
        results = sorted(results, key=lambda result: result.score, reverse=True)
        return results[: max(limit, 0)]

    def format(self, results: Sequence[SearchResult]) -> str:
        """Context block for the prompt; never empty."""
        if not results:
            return fallback_summary(self.corpus.metadata)
        return format_results(results)

    def retrieve(self, query: str, limit: int = 5) -> str:
        return self.format(self.search(query, limit))


def _query_match_score(
    content: str,
    query: str,
    keywords: Sequence[str],
    page_keywords: Iterable[str],
) -> int:
    score = 0
    if query and query in content:
        score += EXACT_PHRASE_BONUS

    for keyword in keywords:
        if not keyword:
            continue
        matches = re.findall(rf"\b{re.escape(keyword)}\b", content)
        score += len(matches) * KEYWORD_OCCURRENCE_POINTS

    curated = {keyword.lower() for keyword in page_keywords}
    score += sum(CURATED_KEYWORD_BONUS for keyword in keywords if keyword in curated)
    return score


def _domain_term_boost(content: str) -> int:
    boost = 0
    for table in (EVENT_TERM_BOOSTS, VENUE_TERM_BOOSTS):
        for term, points in table.items():
            if term in content:
                boost += points
    return boost
