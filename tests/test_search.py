import pytest

from eventmet.corpus import corpus_from_dict
from eventmet.models import Page
from eventmet.search import (
    Retriever,
    detect_query_intent,
    extract_keywords,
    score_content,
    score_page,
)


def _page(source, title, content, keywords=()):
    return Page(source=source, category="general", title=title, content=content, keywords=tuple(keywords))


def test_extract_keywords_drops_short_and_stop_words():
    assert extract_keywords("When is the Firkin event?") == ["firkin", "event"]
    assert extract_keywords("what ??? firkin firkin") == ["firkin"]


def test_event_query_ignores_unrelated_venue_page(corpus):
    retriever = Retriever(corpus)
    firkin, georges = corpus.pages

    results = retriever.search("when is the firkin event", 5)

    assert [result.page for result in results] == [firkin]
    assert score_page(georges, "when is the firkin event") == 0

    context = retriever.retrieve("when is the firkin event", 1)
    assert context.startswith("--- [EVENT DATA] Event: Firkin Fête (Relevance: ")
    assert "George's" not in context


def test_unmatched_query_falls_back_to_event_summary(corpus):
    context = Retriever(corpus).retrieve("xyzzy plugh", 5)

    assert context.startswith("Event: CRAFTED 2025\nLocation: Alys Beach, Florida\nDates: November 12-16, 2025")
    assert "--- [" not in context


def test_context_block_count_is_bounded_by_limit_and_matches():
    corpus = corpus_from_dict(
        {
            "pages": [
                {"source": "event", "title": "Morning", "content": "Pottery workshop at nine"},
                {"source": "event", "title": "Noon", "content": "Leather workshop at noon"},
                {"source": "venue", "title": "Courtyard", "content": "Open lawn by the chapel"},
                {"source": "event", "title": "Evening", "content": "Candle workshop at dusk"},
            ]
        }
    )
    retriever = Retriever(corpus)

    for limit in range(1, 6):
        context = retriever.retrieve("workshop", limit)
        assert context.count("--- [") == min(limit, 3)


def test_matching_source_outweighs_opposing_source():
    event_page = _page("event", "Firkin night", "firkin schedule details", ["firkin"])
    venue_page = _page("venue", "Firkin night", "firkin schedule details", ["firkin"])

    event_score = score_page(event_page, "firkin schedule")
    venue_score = score_page(venue_page, "firkin schedule")

    assert venue_score > 0
    assert event_score / venue_score == pytest.approx(1.5 / 0.7)


def test_mixed_intent_query_applies_no_multiplier():
    intent = detect_query_intent("firkin at the restaurant")
    assert intent.is_event_query and intent.is_venue_query

    text = "firkin tasting at the restaurant"
    assert score_content(text, "firkin at the restaurant", source="event") == score_content(
        text, "firkin at the restaurant", source=None
    )


def test_more_keyword_occurrences_never_lower_the_score():
    once = score_content("the firkin tent", "firkin")
    twice = score_content("the firkin tent, another firkin", "firkin")

    assert 0 < once < twice


def test_equal_scores_keep_corpus_order():
    corpus = corpus_from_dict(
        {
            "pages": [
                {"source": "event", "title": "Alpha", "content": "gallery walk"},
                {"source": "event", "title": "Beta", "content": "gallery walk"},
            ]
        }
    )

    results = Retriever(corpus).search("gallery", 5)

    assert [result.page.title for result in results] == ["Alpha", "Beta"]
    assert results[0].score == results[1].score


def test_scores_are_never_negative(corpus):
    for page in corpus.pages:
        for query in ("", "zzz", "restaurant", "firkin schedule"):
            assert score_page(page, query) >= 0


def test_exact_phrase_uses_the_query_as_typed():
    content = "friday brings the firkin fête"

    assert score_content(content, "firkin fête") - score_content(content, "firkin fête ") == 100
