"""EventMet - retrieval and usage analytics for an event chat assistant."""

from .analytics import (
    compute_daily_metrics,
    compute_device_analytics,
    compute_realtime_stats,
    compute_user_metrics,
    recent_queries,
)
from .billing import (
    calculate_budget_status,
    calculate_cost,
    calculate_cost_efficiency,
    calculate_projected_monthly_cost,
)
from .categories import categorize_query
from .corpus import load_corpus
from .search import Retriever, score_page
from .service import AnalyticsService
from .tracking import EventTracker

__all__ = [
    "AnalyticsService",
    "EventTracker",
    "Retriever",
    "load_corpus",
    "score_page",
    "categorize_query",
    "compute_realtime_stats",
    "compute_daily_metrics",
    "compute_user_metrics",
    "compute_device_analytics",
    "recent_queries",
    "calculate_cost",
    "calculate_projected_monthly_cost",
    "calculate_budget_status",
    "calculate_cost_efficiency",
]

__version__ = "0.1.0"
