"""Token cost calculation, projections and budget tracking."""

from typing import Dict, Iterable, List, Optional, Sequence

from .models import DAY_MS, AnalyticsEvent, ChatRequestEvent, ChatResponseEvent, CostBreakdown, utc_datetime, utc_day

DEFAULT_MODEL = "claude-3-5-haiku-20241022"
DAYS_IN_MONTH = 30

# USD per 1M tokens
PRICING: Dict[str, Dict[str, float]] = {
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
}


def get_pricing(model: Optional[str]) -> Dict[str, float]:
    """Price table entry for a model, falling back to the default model's rates."""
    return PRICING.get(model or DEFAULT_MODEL, PRICING[DEFAULT_MODEL])


def calculate_cost(input_tokens: int, output_tokens: int, model: str = DEFAULT_MODEL) -> CostBreakdown:
    pricing = get_pricing(model)
    input_cost = (input_tokens / 1_000_000) * pricing["input"]
    output_cost = (output_tokens / 1_000_000) * pricing["output"]

    return CostBreakdown(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        input_cost=round(input_cost, 6),
        output_cost=round(output_cost, 6),
        total_cost=round(input_cost + output_cost, 6),
        model=model,
    )


def format_cost(cost: float) -> str:
    """Human readable cost, e.g. $0.0024 or $1.25."""
    if cost < 0.01:
        return f"${cost:.4f}"
    if cost < 1:
        return f"${cost:.3f}"
    return f"${cost:.2f}"


def calculate_projected_monthly_cost(daily_costs: Sequence[float], days_elapsed: int) -> float:
    if not daily_costs or days_elapsed <= 0:
        return 0.0
    average_daily_cost = sum(daily_costs) / days_elapsed
    return average_daily_cost * DAYS_IN_MONTH


def calculate_budget_status(current_spend: float, monthly_budget: float, days_elapsed: int) -> Dict:
    """
    Budget consumption for the current month.

    Precondition: monthly_budget must be positive; callers omit budget status
    entirely when no budget is configured.
    """
    if monthly_budget <= 0:
        raise ValueError("monthly_budget must be positive")

    percent_used = current_spend / monthly_budget * 100
    projected_monthly_cost = calculate_projected_monthly_cost([current_spend], days_elapsed)
    projected_overage = max(0.0, projected_monthly_cost - monthly_budget)

    return {
        "monthly_budget": monthly_budget,
        "percent_used": round(percent_used, 2),
        "days_remaining": DAYS_IN_MONTH - days_elapsed,
        "projected_monthly_cost": round(projected_monthly_cost, 2),
        "projected_overage": round(projected_overage, 2),
        "is_over_budget": current_spend > monthly_budget,
    }


def calculate_cost_efficiency(total_messages: int, total_cost: float) -> Dict[str, float]:
    cost_per_message = total_cost / total_messages if total_messages > 0 else 0
    messages_per_dollar = total_messages / total_cost if total_cost > 0 else 0
    return {
        "cost_per_message": round(cost_per_message, 4),
        "messages_per_dollar": round(messages_per_dollar, 2),
    }


def compute_period_cost(events: Iterable[AnalyticsEvent], default_model: str = DEFAULT_MODEL) -> CostBreakdown:
    """Sum response token usage, priced per model, into one breakdown."""
    tokens_by_model: Dict[str, List[int]] = {}
    model = default_model
    for event in events:
        if not isinstance(event, ChatResponseEvent):
            continue
        model = event.model_used or default_model
        totals = tokens_by_model.setdefault(model, [0, 0])
        totals[0] += event.tokens_used.input
        totals[1] += event.tokens_used.output

    input_tokens = sum(totals[0] for totals in tokens_by_model.values())
    output_tokens = sum(totals[1] for totals in tokens_by_model.values())
    input_cost = 0.0
    output_cost = 0.0
    for model_name, (model_input, model_output) in tokens_by_model.items():
        pricing = get_pricing(model_name)
        input_cost += (model_input / 1_000_000) * pricing["input"]
        output_cost += (model_output / 1_000_000) * pricing["output"]

    return CostBreakdown(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        input_cost=round(input_cost, 6),
        output_cost=round(output_cost, 6),
        total_cost=round(input_cost + output_cost, 6),
        model=model,
    )


def compute_daily_costs(
    events: Iterable[AnalyticsEvent],
    days: int,
    now_ms: int,
    default_model: str = DEFAULT_MODEL,
) -> List[Dict]:
    """Cost per UTC day for the last ``days`` days, newest first, zero-filled."""
    by_day: Dict[str, List[AnalyticsEvent]] = {}
    for offset in range(days):
        by_day[utc_day(now_ms - offset * DAY_MS)] = []

    for event in events:
        if isinstance(event, ChatResponseEvent):
            bucket = by_day.get(utc_day(event.timestamp))
            if bucket is not None:
                bucket.append(event)

    daily_costs = []
    for date, day_events in by_day.items():
        cost = compute_period_cost(day_events, default_model=default_model)
        daily_costs.append({"date": date, "cost": cost.total_cost, "tokens": cost.total_tokens})
    return sorted(daily_costs, key=lambda day: day["date"], reverse=True)


def compute_billing_metrics(
    events: Sequence[AnalyticsEvent],
    now_ms: int,
    monthly_budget: Optional[float] = None,
    default_model: str = DEFAULT_MODEL,
) -> Dict:
    """Billing view over a 30-day event slice ending at now_ms."""

    def window(start: int, end: int) -> List[AnalyticsEvent]:
        return [event for event in events if start <= event.timestamp <= end]

    today = compute_period_cost(window(now_ms - DAY_MS, now_ms), default_model)
    yesterday = compute_period_cost(window(now_ms - 2 * DAY_MS, now_ms - DAY_MS), default_model)
    last_7_days = compute_period_cost(window(now_ms - 7 * DAY_MS, now_ms), default_model)
    last_30_days = compute_period_cost(window(now_ms - 30 * DAY_MS, now_ms), default_model)

    daily_costs = compute_daily_costs(events, DAYS_IN_MONTH, now_ms, default_model)
    costs = [day["cost"] for day in daily_costs]
    average_daily_cost = sum(costs) / len(costs) if costs else 0
    projected_monthly_cost = calculate_projected_monthly_cost(costs, len(costs))

    result = {
        "today": today.to_dict(),
        "yesterday": yesterday.to_dict(),
        "last_7_days": last_7_days.to_dict(),
        "last_30_days": last_30_days.to_dict(),
        "daily_costs": daily_costs,
        "average_daily_cost": round(average_daily_cost, 4),
        "projected_monthly_cost": round(projected_monthly_cost, 2),
    }
    if monthly_budget and monthly_budget > 0:
        days_elapsed = utc_datetime(now_ms).day
        result["budget_status"] = calculate_budget_status(
            last_30_days.total_cost, monthly_budget, days_elapsed
        )
    return result


def compute_cost_efficiency(events: Sequence[AnalyticsEvent], default_model: str = DEFAULT_MODEL) -> Dict:
    total_messages = sum(1 for event in events if isinstance(event, ChatRequestEvent))
    breakdown = compute_period_cost(events, default_model)
    return {
        **calculate_cost_efficiency(total_messages, breakdown.total_cost),
        "total_messages": total_messages,
        "total_cost": breakdown.total_cost,
        "total_tokens": breakdown.total_tokens,
    }
