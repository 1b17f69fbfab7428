"""Spending analytics over an in-memory expense list.

Every function here is pure: same expenses, budget and ``today`` give the
same output. Results are plain dicts ready for JSON rendering.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from .schemas import Category, Expense


CURRENCY_SYMBOL = "₹"

DAILY_WINDOWS = (7, 30)

# Insight thresholds (percentages are of total spent unless stated)
BUDGET_WARNING_PCT = 90
BUDGET_INFO_PCT = 70
CONCENTRATION_PCT = 50
DOMINANCE_RATIO = 2.0
NON_ESSENTIAL_SHARE_PCT = 40
NON_ESSENTIAL_CATEGORIES = (Category.entertainment, Category.clothing)
HIGH_FREQUENCY_CATEGORY = Category.food
HIGH_FREQUENCY_SHARE_PCT = 30
WEEKEND_RATIO = 1.5
MIN_ZERO_SPEND_STREAK = 2
SAVINGS_CATEGORY_PCT = 20
SAVINGS_REDUCTION = 0.10
TREND_ALERT_PCT = 20
PROJECTION_DAYS = 30


@dataclass(frozen=True)
class InsightThresholds:
    """Tunable limits for :func:`generate_insights`."""

    budget_warning_pct: float = BUDGET_WARNING_PCT
    budget_info_pct: float = BUDGET_INFO_PCT
    concentration_pct: float = CONCENTRATION_PCT
    dominance_ratio: float = DOMINANCE_RATIO
    non_essential_share_pct: float = NON_ESSENTIAL_SHARE_PCT
    non_essential_categories: tuple[Category, ...] = NON_ESSENTIAL_CATEGORIES
    high_frequency_category: Category = HIGH_FREQUENCY_CATEGORY
    high_frequency_share_pct: float = HIGH_FREQUENCY_SHARE_PCT
    weekend_ratio: float = WEEKEND_RATIO
    min_zero_spend_streak: int = MIN_ZERO_SPEND_STREAK
    savings_category_pct: float = SAVINGS_CATEGORY_PCT
    savings_reduction: float = SAVINGS_REDUCTION
    trend_alert_pct: float = TREND_ALERT_PCT
    projection_days: int = PROJECTION_DAYS
    currency_symbol: str = CURRENCY_SYMBOL


DEFAULT_THRESHOLDS = InsightThresholds()


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def format_money(amount: float, symbol: str = CURRENCY_SYMBOL) -> str:
    if float(amount).is_integer():
        return f"{symbol}{int(amount):,}"
    return f"{symbol}{amount:,.2f}"


# =============================================================================
# Totals
# =============================================================================


def total_spent(expenses: Iterable[Expense]) -> float:
    return sum(e.amount for e in expenses)


def budget_status(expenses: Sequence[Expense], monthly_budget: float) -> dict[str, Any]:
    """Budget usage figures.

    ``remaining_budget`` may be negative. ``percent_used`` and ``progress``
    are 0 when no budget is set; ``progress`` is capped at 100.
    """
    spent = total_spent(expenses)
    remaining = monthly_budget - spent

    if monthly_budget > 0:
        ratio = spent / monthly_budget * 100
        percent_used = round_half_up(ratio)
        progress = round(min(100.0, ratio), 2)
    else:
        percent_used = 0
        progress = 0.0

    return {
        "total_spent": round(spent, 2),
        "monthly_budget": monthly_budget,
        "remaining_budget": round(remaining, 2),
        "percent_used": percent_used,
        "progress": progress,
        "over_budget_by": round(-remaining, 2) if remaining < 0 else 0.0,
        "has_budget": monthly_budget > 0,
    }


def dashboard_stats(expenses: Sequence[Expense]) -> dict[str, Any]:
    """Count, top category and highest single expense."""
    summary = category_summary(expenses)
    highest = max(expenses, key=lambda e: e.amount, default=None)

    return {
        "count": len(expenses),
        "total_spent": round(total_spent(expenses), 2),
        "top_category": summary[0] if summary else None,
        "highest_expense": (
            {
                "expense_id": highest.expense_id,
                "amount": highest.amount,
                "category": highest.category.value,
                "date": highest.date.isoformat(),
                "description": highest.description,
            }
            if highest is not None
            else None
        ),
    }


# =============================================================================
# Category summary
# =============================================================================


def category_summary(expenses: Sequence[Expense]) -> list[dict[str, Any]]:
    """Per-category totals, largest first.

    Equal totals keep the order in which their category first appears in
    ``expenses``. Percentages are of total spent, rounded half up, and 0
    when nothing was spent.
    """
    totals: dict[Category, float] = {}
    counts: dict[Category, int] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, 0.0) + expense.amount
        counts[expense.category] = counts.get(expense.category, 0) + 1

    spent = sum(totals.values())
    summary = [
        {
            "category": category.value,
            "amount": amount,
            "count": counts[category],
            "percentage": round_half_up(amount / spent * 100) if spent > 0 else 0,
        }
        for category, amount in totals.items()
    ]
    summary.sort(key=lambda row: row["amount"], reverse=True)
    return summary


# =============================================================================
# Time series
# =============================================================================


def daily_spending(
    expenses: Iterable[Expense],
    days: int = 30,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Exactly ``days`` consecutive calendar-day buckets ending today.

    Expenses dated outside the window are ignored.
    """
    if days < 1:
        raise ValueError("days must be positive")
    today = today or date.today()
    start = today - timedelta(days=days - 1)

    buckets: dict[date, float] = {start + timedelta(days=i): 0.0 for i in range(days)}
    for expense in expenses:
        if expense.date in buckets:
            buckets[expense.date] += expense.amount

    return [{"date": day.isoformat(), "amount": amount} for day, amount in buckets.items()]


def weekly_spending(
    expenses: Iterable[Expense],
    weeks: int = 4,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Rolling 7-day buckets, oldest first; the last one ends today."""
    if weeks < 1:
        raise ValueError("weeks must be positive")
    today = today or date.today()
    daily = daily_spending(expenses, days=weeks * 7, today=today)

    result = []
    for i in range(weeks):
        chunk = daily[i * 7:(i + 1) * 7]
        result.append({
            "start": chunk[0]["date"],
            "end": chunk[-1]["date"],
            "amount": sum(day["amount"] for day in chunk),
        })
    return result


def monthly_spending(
    expenses: Iterable[Expense],
    months: int = 6,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Calendar-month totals for the last ``months`` months, current one last."""
    if months < 1:
        raise ValueError("months must be positive")
    today = today or date.today()

    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    keys.reverse()

    totals = {key: 0.0 for key in keys}
    for expense in expenses:
        key = expense.date.strftime("%Y-%m")
        if key in totals:
            totals[key] += expense.amount

    return [
        {"month": key, "amount": amount, "is_partial": key == keys[-1]}
        for key, amount in totals.items()
    ]


def trend_comparison(
    expenses: Iterable[Expense],
    today: date | None = None,
) -> dict[str, Any]:
    """Most recent 7 days against the 7 days before them.

    With nothing spent in the previous week there is no baseline: the change
    is reported as 0 with direction ``"no_data"``.
    """
    daily = daily_spending(expenses, days=14, today=today)
    previous = sum(day["amount"] for day in daily[:7])
    recent = sum(day["amount"] for day in daily[7:])

    if previous > 0:
        change_pct = round((recent - previous) / previous * 100, 1)
        if change_pct > 0:
            direction = "up"
        elif change_pct < 0:
            direction = "down"
        else:
            direction = "flat"
    else:
        change_pct = 0.0
        direction = "no_data"

    return {
        "recent_total": recent,
        "previous_total": previous,
        "change_pct": change_pct,
        "direction": direction,
        "has_previous": previous > 0,
    }


# =============================================================================
# Insights
# =============================================================================


def _insight(rule: str, kind: str, title: str, description: str, value: Any = None) -> dict[str, Any]:
    insight = {"rule": rule, "kind": kind, "title": title, "description": description}
    if value is not None:
        insight["value"] = value
    return insight


def _longest_zero_streak(daily: Sequence[dict[str, Any]]) -> int:
    # Days before the first recorded expense are not no-spend days.
    amounts = [day["amount"] for day in daily]
    first = next((i for i, amount in enumerate(amounts) if amount > 0), None)
    if first is None:
        return 0

    longest = current = 0
    for amount in amounts[first:]:
        if amount == 0:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def generate_insights(
    expenses: Sequence[Expense],
    monthly_budget: float = 0,
    today: date | None = None,
    thresholds: InsightThresholds | None = None,
) -> list[dict[str, Any]]:
    """Rule-based observations about spending, in a fixed rule order.

    An empty expense list yields a single welcome insight. The budget tier
    rules only run when a budget is set.

    Args:
        expenses: All of the user's expenses.
        monthly_budget: Budget, 0 when unset.
        today: Reference day for the trailing windows.
        thresholds: Overrides for the rule limits.

    Returns:
        List of ``{"rule", "kind", "title", "description"[, "value"]}`` dicts,
        ``kind`` being ``info``, ``warning`` or ``success``.
    """
    t = thresholds or DEFAULT_THRESHOLDS
    today = today or date.today()

    if not expenses:
        return [_insight(
            "welcome",
            "info",
            "Welcome",
            "Add your first expenses to start getting personalized spending insights.",
        )]

    spent = total_spent(expenses)
    summary = category_summary(expenses)
    by_category = {row["category"]: row for row in summary}
    daily = daily_spending(expenses, days=30, today=today)
    last_week = [day["amount"] for day in daily[-7:]]
    insights: list[dict[str, Any]] = []

    # Budget usage tiers: exactly one fires when a budget is set
    if monthly_budget > 0:
        used = round_half_up(spent / monthly_budget * 100)
        if used > t.budget_warning_pct:
            insights.append(_insight(
                "budget_usage", "warning", "Budget Alert",
                f"You've used {used}% of your monthly budget. "
                "Consider reducing expenses for the rest of the month.",
                used,
            ))
        elif used > t.budget_info_pct:
            insights.append(_insight(
                "budget_usage", "info", "Budget Status",
                f"You've used {used}% of your monthly budget. "
                "You're on track but be mindful of your spending.",
                used,
            ))
        else:
            insights.append(_insight(
                "budget_usage", "success", "Budget On Track",
                f"You've only used {used}% of your monthly budget. You're doing great!",
                used,
            ))

    top = summary[0]
    if top["percentage"] > t.concentration_pct:
        insights.append(_insight(
            "concentration", "warning", "Spending Concentration",
            f"{top['percentage']}% of your spending is on {top['category']}. "
            "Consider diversifying your expenses.",
            top["percentage"],
        ))

    if len(summary) >= 2:
        second = summary[1]
        if top["percentage"] > t.dominance_ratio * second["percentage"]:
            insights.append(_insight(
                "dominance", "info", "Dominant Category",
                f"You spend more than {t.dominance_ratio:g}x as much on {top['category']} "
                f"({top['percentage']}%) as on {second['category']} ({second['percentage']}%).",
                top["category"],
            ))

    non_essential = sum(
        by_category[c.value]["amount"] for c in t.non_essential_categories if c.value in by_category
    )
    non_essential_pct = round_half_up(non_essential / spent * 100) if spent > 0 else 0
    if non_essential_pct > t.non_essential_share_pct:
        names = ", ".join(c.value for c in t.non_essential_categories)
        insights.append(_insight(
            "non_essential", "warning", "Discretionary Spending",
            f"{non_essential_pct}% of your spending goes to non-essentials ({names}).",
            non_essential_pct,
        ))

    frequent = by_category.get(t.high_frequency_category.value)
    if frequent and frequent["percentage"] > t.high_frequency_share_pct:
        insights.append(_insight(
            "high_frequency_category", "info",
            f"{t.high_frequency_category.value} Expenses",
            f"You're spending {frequent['percentage']}% of your budget on "
            f"{t.high_frequency_category.value.lower()}. Consider planning ahead to reduce costs.",
            frequent["percentage"],
        ))

    average_daily = sum(last_week) / 7
    if monthly_budget > 0 and average_daily > 0:
        projected = average_daily * t.projection_days
        if projected > monthly_budget:
            insights.append(_insight(
                "projected_overspend", "warning", "Spending Trend",
                "Based on your recent spending, you're on track to exceed your "
                f"monthly budget ({format_money(round(projected, 2), t.currency_symbol)} projected). "
                "Try to reduce daily expenses.",
                round(projected, 2),
            ))

    trend = trend_comparison(expenses, today=today)
    if trend["has_previous"]:
        if trend["change_pct"] >= t.trend_alert_pct:
            insights.append(_insight(
                "week_over_week", "warning", "Spending Up",
                f"You spent {trend['change_pct']:g}% more this week than the week before.",
                trend["change_pct"],
            ))
        elif trend["change_pct"] <= -t.trend_alert_pct:
            insights.append(_insight(
                "week_over_week", "success", "Spending Down",
                f"You spent {abs(trend['change_pct']):g}% less this week than the week before.",
                trend["change_pct"],
            ))

    weekend = [d["amount"] for d in daily if date.fromisoformat(d["date"]).weekday() >= 5]
    weekday = [d["amount"] for d in daily if date.fromisoformat(d["date"]).weekday() < 5]
    weekend_avg = sum(weekend) / len(weekend) if weekend else 0.0
    weekday_avg = sum(weekday) / len(weekday) if weekday else 0.0
    if weekday_avg > 0 and weekend_avg / weekday_avg > t.weekend_ratio:
        ratio = round(weekend_avg / weekday_avg, 1)
        insights.append(_insight(
            "weekend_spending", "warning", "Weekend Spending",
            f"You spend {ratio:g}x more per day on weekends than on weekdays.",
            ratio,
        ))

    mean = sum(last_week) / len(last_week)
    variance = sum((x - mean) ** 2 for x in last_week) / len(last_week)
    if mean > 0 and variance > mean ** 2:
        insights.append(_insight(
            "inconsistent_spending", "info", "Inconsistent Spending",
            "Your daily spending varied a lot this week. "
            "Spreading purchases out makes your budget easier to manage.",
            round(variance, 2),
        ))

    streak = _longest_zero_streak(daily)
    if streak >= t.min_zero_spend_streak:
        insights.append(_insight(
            "zero_spend_streak", "success", "No-Spend Streak",
            f"You went {streak} days in a row without spending. Nice work!",
            streak,
        ))

    savings = sum(
        row["amount"] * t.savings_reduction
        for row in summary
        if row["percentage"] > t.savings_category_pct
    )
    savings = round(savings, 2)
    if savings > 0:
        insights.append(_insight(
            "potential_savings", "success", "Savings Opportunity",
            f"Cutting your largest categories by {round_half_up(t.savings_reduction * 100)}% "
            f"could save {format_money(savings, t.currency_symbol)}.",
            savings,
        ))

    return insights


# =============================================================================
# Views
# =============================================================================


def filter_expenses(
    expenses: Iterable[Expense],
    search: str | None = None,
    category: Category | str | None = None,
) -> list[Expense]:
    """Expense table view: description search and category filter, newest first."""
    needle = search.lower() if search else None
    category_value = category.value if isinstance(category, Category) else category

    result = [
        e for e in expenses
        if (needle is None or needle in e.description.lower())
        and (category_value in (None, "all") or e.category.value == category_value)
    ]
    result.sort(key=lambda e: e.date, reverse=True)
    return result


def build_dashboard(
    expenses: Sequence[Expense],
    monthly_budget: float = 0,
    window_days: int = 30,
    today: date | None = None,
    thresholds: InsightThresholds | None = None,
) -> dict[str, Any]:
    """All derived views for one render of the dashboard."""
    today = today or date.today()
    return {
        "as_of": today.isoformat(),
        "budget": budget_status(expenses, monthly_budget),
        "stats": dashboard_stats(expenses),
        "categories": category_summary(expenses),
        "daily": daily_spending(expenses, days=window_days, today=today),
        "weekly": weekly_spending(expenses, today=today),
        "monthly": monthly_spending(expenses, today=today),
        "trend": trend_comparison(expenses, today=today),
        "insights": generate_insights(expenses, monthly_budget, today=today, thresholds=thresholds),
    }
