"""Report aggregation over complaints created inside a date window."""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from models import DEPARTMENTS, Complaint, utcnow

REPORT_PERIODS: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly")


class ReportRangeError(ValueError):
    """Raised for an unusable report window or filter."""


def _shift_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp the day so 31 March minus one month lands on the last day of February.
    for day in range(moment.day, 27, -1):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return moment.replace(year=year, month=month, day=min(moment.day, 28))


def period_range(period: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Window for a named period ending now: today, last 7 days, last month or last year."""
    end = now or utcnow()
    if period == "daily":
        start = end.replace(hour=0, minute=0, second=0, microsecond=0)
    elif period == "weekly":
        start = end - timedelta(days=7)
    elif period == "monthly":
        start = _shift_months(end, -1)
    elif period == "yearly":
        start = _shift_months(end, -12)
    else:
        raise ReportRangeError(f"Unknown report period: {period}")
    # Half-open window: nudge the end forward so a complaint filed "now" is included.
    return start, end + timedelta(microseconds=1)


def complaints_in_range(start: datetime, end: datetime, department: Optional[str] = None) -> List[Complaint]:
    if start >= end:
        raise ReportRangeError("Report start must be before its end")
    if department and department not in DEPARTMENTS:
        raise ReportRangeError(f"Unknown department: {department}")
    query = Complaint.query.filter(Complaint.created_at >= start, Complaint.created_at < end)
    if department:
        query = query.filter(Complaint.assigned_department == department)
    return query.order_by(Complaint.created_at.asc()).all()


def _count_by(values: Iterable[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return counts


def summarize(complaints: List[Complaint]) -> Dict:
    """Reduce a complaint list to report figures. Pure: no queries, no writes."""
    total = len(complaints)
    solved = sum(1 for c in complaints if c.status == "completed")

    resolution_hours = [
        (c.resolved_at - c.created_at).total_seconds() / 3600
        for c in complaints
        if c.resolved_at is not None and c.created_at is not None
    ]
    average = 0
    if resolution_hours:
        # Half-up to one decimal.
        average = math.floor(sum(resolution_hours) / len(resolution_hours) * 10 + 0.5) / 10

    locations = _count_by(c.location for c in complaints)
    location_distribution = [
        {"location": location, "count": count}
        for location, count in sorted(locations.items(), key=lambda item: item[1], reverse=True)
    ]

    categories = _count_by(c.category or "other" for c in complaints)
    category_distribution = [{"category": category, "count": count} for category, count in categories.items()]

    days = _count_by(c.created_at.date().isoformat() for c in complaints)
    daily_trends = [{"date": day, "count": count} for day, count in sorted(days.items())]

    return {
        "total_complaints": total,
        "solved_issues": solved,
        "pending_issues": total - solved,
        "average_resolution_time": average,
        "location_distribution": location_distribution,
        "category_distribution": category_distribution,
        "daily_trends": daily_trends,
    }


def generate_report(start: datetime, end: datetime, department: Optional[str] = None) -> Dict:
    report = summarize(complaints_in_range(start, end, department))
    report["range"] = {"start": start.isoformat(), "end": end.isoformat(), "department": department}
    return report
