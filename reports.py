"""
Read-side reports, rebuilt on every request by replaying the user's full
activity history. There is no pagination: cost grows with history length.
"""
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

from activities import list_categories
from aggregates import ACTIVITIES
from schemas import ActivityRecord, Amount

# avg_daily_emissions divides by a flat 30 regardless of the month's length
DAYS_PER_MONTH = 30


class MonthlyStat(BaseModel):
    month: str
    total_emissions: Amount
    activity_count: int
    total_points: int
    avg_daily_emissions: Amount


class CategoryStat(BaseModel):
    category_name: str
    total_emissions: Amount
    percentage: float


class CurrentMonth(BaseModel):
    total_emissions: Amount = Decimal("0")
    total_points: int = 0
    activity_count: int = 0


class ReportSummary(BaseModel):
    total_emissions: Amount
    total_activities: int
    avg_monthly_emissions: Amount
    best_month: str
    worst_month: str


class Report(BaseModel):
    monthly: List[MonthlyStat]
    by_category: List[CategoryStat]
    current_month: CurrentMonth
    summary: ReportSummary


def month_key(moment: datetime) -> str:
    return f"{moment.year}-{moment.month:02d}"


def build_report(store, user_id: str, today: Optional[date] = None) -> Report:
    today = today or datetime.now(timezone.utc).date()
    current_key = f"{today.year}-{today.month:02d}"
    names = {c.id: c.name for c in list_categories(store)}

    months: Dict[str, Dict] = {}
    by_category: Dict[str, Decimal] = OrderedDict()
    current = CurrentMonth()
    total = Decimal("0")
    records = [ActivityRecord(**d) for d in store.find(ACTIVITIES, {"user_id": user_id})]

    for record in records:
        key = month_key(record.logged_at)
        bucket = months.setdefault(key, {"total": Decimal("0"), "count": 0, "points": 0})
        bucket["total"] += record.carbon_amount
        bucket["count"] += 1
        bucket["points"] += record.green_points_earned

        if key == current_key:
            current.total_emissions += record.carbon_amount
            current.total_points += record.green_points_earned
            current.activity_count += 1

        name = names.get(record.category_id, "Unknown")
        by_category[name] = by_category.get(name, Decimal("0")) + record.carbon_amount
        total += record.carbon_amount

    monthly = [
        MonthlyStat(
            month=key,
            total_emissions=b["total"],
            activity_count=b["count"],
            total_points=b["points"],
            avg_daily_emissions=b["total"] / DAYS_PER_MONTH,
        )
        for key, b in sorted(months.items())
    ]
    categories = sorted(
        (
            CategoryStat(
                category_name=name,
                total_emissions=amount,
                percentage=float(amount / total * 100) if total else 0.0,
            )
            for name, amount in by_category.items()
        ),
        key=lambda c: c.total_emissions,
        reverse=True,
    )

    # labels rank by footprint magnitude: the lowest total is "best" even when negative
    best = worst = None
    for stat in monthly:
        if best is None or stat.total_emissions < best.total_emissions:
            best = stat
        if worst is None or stat.total_emissions > worst.total_emissions:
            worst = stat

    summary = ReportSummary(
        total_emissions=total,
        total_activities=len(records),
        avg_monthly_emissions=total / len(monthly) if monthly else Decimal("0"),
        best_month=best.month if best else "",
        worst_month=worst.month if worst else "",
    )
    return Report(monthly=monthly, by_category=categories, current_month=current, summary=summary)
