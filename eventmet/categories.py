"""Topic classification for user queries."""

# Order matters: the first category with a matching keyword wins.
QUERY_CATEGORIES = (
    ("schedule", ("schedule", "when", "time", "calendar", "day", "date")),
    ("events", ("event", "activity", "happening", "what to do")),
    ("dining", ("food", "restaurant", "dining", "meal", "eat", "drink", "wine", "firkin")),
    ("workshops", ("workshop", "class", "learn", "session", "hands-on")),
    ("speakers", ("speaker", "talk", "presentation", "who is")),
    ("location", ("where", "location", "venue", "place", "find")),
    ("general", ("what is", "tell me about", "crafted", "alys beach")),
)

OTHER_CATEGORY = "other"


def categorize_query(query: str) -> str:
    lower_query = query.lower()
    for category, keywords in QUERY_CATEGORIES:
        if any(keyword in lower_query for keyword in keywords):
            return category
    return OTHER_CATEGORY
