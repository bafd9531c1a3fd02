"""Report aggregation tests."""

from datetime import datetime, timedelta

import pytest

from conftest import add_complaint, at
from models import Complaint
from utils.reports import ReportRangeError, generate_report, period_range, summarize


def _complaint(created, resolved=None, status="new", category="water", location="MG Road"):
    return Complaint(
        title="t",
        description="d",
        status=status,
        progress_stage="completed" if status == "completed" else None,
        category=category,
        location=location,
        created_at=created,
        resolved_at=resolved,
    )


class TestSummarize:
    def test_empty(self):
        report = summarize([])
        assert report["total_complaints"] == 0
        assert report["solved_issues"] == 0
        assert report["pending_issues"] == 0
        assert report["average_resolution_time"] == 0
        assert report["location_distribution"] == []
        assert report["daily_trends"] == []

    def test_figures(self):
        complaints = [
            _complaint(at(2024, 5, 1, 8), at(2024, 5, 1, 10), status="completed", location="MG Road"),
            _complaint(at(2024, 5, 1, 9), at(2024, 5, 1, 13), status="completed", category=None, location="Fort"),
            _complaint(at(2024, 5, 3, 12), category="pwd", location="MG Road"),
            _complaint(at(2024, 5, 2, 7), category=None, location="MG Road"),
        ]
        report = summarize(complaints)

        assert report["total_complaints"] == 4
        assert report["solved_issues"] == 2
        assert report["pending_issues"] == 2
        assert report["solved_issues"] + report["pending_issues"] == report["total_complaints"]
        assert report["average_resolution_time"] == 3.0
        assert report["location_distribution"] == [
            {"location": "MG Road", "count": 3},
            {"location": "Fort", "count": 1},
        ]
        categories = {row["category"]: row["count"] for row in report["category_distribution"]}
        assert categories == {"water": 1, "other": 2, "pwd": 1}
        assert [row["date"] for row in report["daily_trends"]] == ["2024-05-01", "2024-05-02", "2024-05-03"]
        for key in ("location_distribution", "category_distribution", "daily_trends"):
            assert sum(row["count"] for row in report[key]) == report["total_complaints"]

    def test_average_rounds_to_one_decimal(self):
        created = at(2024, 1, 1)
        complaints = [_complaint(created, created + timedelta(minutes=100), status="completed")]
        assert summarize(complaints)["average_resolution_time"] == 1.7

    def test_average_rounds_halves_up(self):
        created = at(2024, 1, 1)
        complaints = [_complaint(created, created + timedelta(minutes=75), status="completed")]
        assert summarize(complaints)["average_resolution_time"] == 1.3


class TestGenerateReport:
    def test_window_is_half_open(self, ctx):
        add_complaint(title="at start", created_at=at(2024, 6, 1))
        add_complaint(title="inside", created_at=at(2024, 6, 15, 12))
        add_complaint(title="at end", created_at=at(2024, 7, 1))
        add_complaint(title="before", created_at=at(2024, 5, 31, 23, 59))

        report = generate_report(at(2024, 6, 1), at(2024, 7, 1))
        assert report["total_complaints"] == 2

    def test_department_filter(self, ctx):
        add_complaint(created_at=at(2024, 6, 2), assigned_department="water")
        add_complaint(created_at=at(2024, 6, 3), assigned_department="municipal")
        add_complaint(created_at=at(2024, 6, 4))

        report = generate_report(at(2024, 6, 1), at(2024, 7, 1), department="water")
        assert report["total_complaints"] == 1
        assert report["range"]["department"] == "water"

    def test_bad_window(self, ctx):
        with pytest.raises(ReportRangeError):
            generate_report(at(2024, 7, 1), at(2024, 6, 1))
        with pytest.raises(ReportRangeError):
            generate_report(at(2024, 6, 1), at(2024, 7, 1), department="fire")


class TestPeriodRange:
    NOW = datetime(2024, 3, 31, 15, 30)

    def test_daily_starts_at_midnight(self):
        start, end = period_range("daily", self.NOW)
        assert start == datetime(2024, 3, 31)
        assert end > self.NOW

    def test_weekly(self):
        start, _ = period_range("weekly", self.NOW)
        assert start == self.NOW - timedelta(days=7)

    def test_monthly_clamps_day(self):
        start, _ = period_range("monthly", self.NOW)
        assert start == datetime(2024, 2, 29, 15, 30)

    def test_yearly(self):
        start, _ = period_range("yearly", self.NOW)
        assert start == datetime(2023, 3, 31, 15, 30)

    def test_unknown_period(self):
        with pytest.raises(ReportRangeError):
            period_range("hourly", self.NOW)
