# tests/test_report_service.py
"""Unit tests for report generation, storage and retention."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json
import pytest
from unittest.mock import AsyncMock, patch
from datetime import datetime, timedelta
from loanwatch.models.report import ScheduledReport
from loanwatch.services.overdue_service import scan_overdue_loans
from loanwatch.services.report_service import (
    cleanup_old_reports,
    ensure_report_exists,
    export_report_to_json,
    generate_daily_summary,
    generate_weekly_utilization,
    get_latest_report,
    get_report,
    get_report_history,
    get_report_summary,
    increment_download_count,
    mark_report_viewed,
    report_exists,
    store_report,
)
from loanwatch.utils.errors import NotFoundError, ValidationError
from conftest import db_failure, make_equipment, make_loan, make_reservation, make_user

DAY = datetime(2026, 1, 13, 18, 0)   # Tuesday, ISO week 2026-W03


class TestDailySummary:
    @pytest.mark.asyncio
    async def test_counts_activity_for_the_day(self, db):
        today = datetime(2026, 1, 13, 10, 0)
        make_loan(db, "loan-new", status="pending", created_at=today, updated_at=today)
        make_loan(db, "loan-ok", status="approved", created_at=today - timedelta(days=1), updated_at=today)
        make_loan(db, "loan-back", status="returned", updated_at=today)
        make_loan(db, "loan-old", status="returned", updated_at=today - timedelta(days=3))
        make_reservation(db, "res-1", status="ready", created_at=today, updated_at=today)
        make_reservation(db, "res-2", status="no_show", updated_at=today)

        report = await generate_daily_summary(db, DAY)

        assert report.id == "daily_summary_2026-01-13"
        assert report.period == "2026-01-13"
        loans = report.data["loans"]
        assert loans["total"] == 3
        assert loans["new_requests"] == 1
        assert loans["approved"] == 1
        assert loans["returned"] == 1
        reservations = report.data["reservations"]
        assert reservations["total"] == 2
        assert reservations["new_reservations"] == 1
        assert reservations["approved"] == 1
        assert reservations["no_shows"] == 1

    @pytest.mark.asyncio
    async def test_includes_alert_and_overdue_snapshot(self, db):
        make_loan(db, "loan-1", status="borrowed", expected_return_date=datetime(2026, 1, 10))
        await scan_overdue_loans(db, now=DAY)

        report = await generate_daily_summary(db, DAY)

        assert report.data["alerts"]["total"] == 1
        assert report.data["alerts"]["critical"] == 1
        assert report.data["overdue"] == {"total": 1, "critical": 1, "high": 0, "medium": 0, "total_days_overdue": 3}

    @pytest.mark.asyncio
    async def test_failing_sub_aggregate_falls_back_to_zero(self, db):
        with patch("loanwatch.services.report_service.get_alert_stats",
                   new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            report = await generate_daily_summary(db, DAY)

        assert report.data["alerts"] == {
            "total": 0, "critical": 0, "high": 0, "medium": 0, "low": 0, "resolved_today": 0,
        }

    @pytest.mark.asyncio
    async def test_database_error_in_sub_aggregate_still_stores_report(self, db, abort_transaction):
        today = datetime(2026, 1, 13, 10, 0)
        make_reservation(db, "res-1", status="no_show", updated_at=today)

        def failing_activity(session, start, end):
            abort_transaction()
            raise db_failure()

        with patch("loanwatch.services.report_service.get_daily_loan_activity", side_effect=failing_activity):
            report = await generate_daily_summary(db, DAY)

        assert report.data["loans"]["total"] == 0
        assert report.data["reservations"]["no_shows"] == 1
        assert get_report(db, "daily_summary", "2026-01-13") is not None


class TestWeeklyUtilization:
    @pytest.mark.asyncio
    async def test_weekly_report(self, db):
        make_user(db, "user-1")
        make_equipment(db, "eq-1")
        monday = datetime(2026, 1, 12, 9, 0)
        make_loan(db, "loan-1", status="approved", created_at=monday, approved_at=monday + timedelta(hours=3))
        make_loan(db, "loan-2", status="rejected", created_at=monday, rejected_at=monday + timedelta(hours=2))
        make_loan(db, "loan-prev", status="approved", created_at=monday - timedelta(days=1))
        make_reservation(db, "res-1", status="completed", created_at=monday)
        make_reservation(db, "res-2", status="completed", created_at=monday)
        make_reservation(db, "res-3", status="no_show", created_at=monday + timedelta(days=1))

        report = await generate_weekly_utilization(db, DAY)

        assert report.id == "weekly_utilization_2026-W03"
        assert report.data["week_start"] == "2026-01-12T00:00:00"
        assert report.data["week_end"].startswith("2026-01-18T23:59:59")
        loans = report.data["loans"]
        assert loans["total_requests"] == 2
        assert loans["by_status"] == {"approved": 1, "rejected": 1}
        assert loans["by_day"] == {"2026-01-12": 2}
        assert loans["average_processing_time"] == 2.5
        reservations = report.data["reservations"]
        assert reservations["total_reservations"] == 3
        assert reservations["no_show_rate"] == 0.33
        assert report.data["equipment"]["summary"]["total_equipment"] == 1
        assert report.data["users"]["summary"]["total_users"] == 1

    @pytest.mark.asyncio
    async def test_utilization_failure_falls_back(self, db):
        with patch("loanwatch.services.report_service.calculate_all_equipment_utilization",
                   side_effect=RuntimeError("boom")):
            report = await generate_weekly_utilization(db, DAY)

        assert report.data["equipment"]["summary"]["total_equipment"] == 0
        assert report.data["equipment"]["high_demand"] == []

    @pytest.mark.asyncio
    async def test_database_error_in_user_reliability_still_stores_report(self, db, abort_transaction):
        make_equipment(db, "eq-1")

        def failing_reliability(session, now=None):
            abort_transaction()
            raise db_failure()

        with patch("loanwatch.services.report_service.calculate_all_user_reliability",
                   side_effect=failing_reliability):
            report = await generate_weekly_utilization(db, DAY)

        assert report.data["users"]["summary"]["total_users"] == 0
        assert report.data["equipment"]["summary"]["total_equipment"] == 1
        assert get_report(db, "weekly_utilization", "2026-W03") is not None


class TestStorage:
    def test_regenerating_overwrites(self, db):
        store_report(db, "daily_summary", "2026-01-13", {"v": 1}, now=DAY)
        mark_report_viewed(db, "daily_summary_2026-01-13", "admin-1")
        store_report(db, "daily_summary", "2026-01-13", {"v": 2}, now=DAY + timedelta(hours=1))

        assert db.query(ScheduledReport).count() == 1
        report = get_report(db, "daily_summary", "2026-01-13")
        assert report.data == {"v": 2}
        assert report.viewed_by == []
        assert report.download_count == 0

    def test_history_unique_and_newest_first(self, db):
        store_report(db, "daily_summary", "2026-01-12", {}, now=DAY - timedelta(days=1))
        store_report(db, "daily_summary", "2026-01-13", {}, now=DAY)
        store_report(db, "weekly_utilization", "2026-W03", {}, now=DAY - timedelta(hours=1))
        store_report(db, "daily_summary", "2026-01-12", {}, now=DAY + timedelta(hours=1))

        history = get_report_history(db)
        keys = [(r.report_type, r.period) for r in history]
        assert len(keys) == len(set(keys)) == 3
        assert keys[0] == ("daily_summary", "2026-01-12")
        assert [r.period for r in get_report_history(db, report_type="daily_summary", limit=1)] == ["2026-01-12"]
        assert get_latest_report(db, "weekly_utilization").period == "2026-W03"
        assert report_exists(db, "daily_summary", "2026-01-13") is True
        assert report_exists(db, "daily_summary", "2026-01-14") is False

    def test_viewed_by_is_a_set(self, db):
        store_report(db, "daily_summary", "2026-01-13", {"v": 1}, now=DAY)
        mark_report_viewed(db, "daily_summary_2026-01-13", "admin-1")
        mark_report_viewed(db, "daily_summary_2026-01-13", "admin-1")
        report = mark_report_viewed(db, "daily_summary_2026-01-13", "admin-2")
        assert report.viewed_by == ["admin-1", "admin-2"]
        assert report.data == {"v": 1}

    def test_export_serialises_data_and_counts_download(self, db):
        store_report(db, "daily_summary", "2026-01-13", {"loans": {"total": 4}}, now=DAY)

        payload = export_report_to_json(db, "daily_summary_2026-01-13")

        assert json.loads(payload) == {"loans": {"total": 4}}
        assert get_report(db, "daily_summary", "2026-01-13").download_count == 1
        increment_download_count(db, "daily_summary_2026-01-13")
        assert get_report(db, "daily_summary", "2026-01-13").download_count == 2

    def test_unknown_report_id(self, db):
        with pytest.raises(NotFoundError):
            mark_report_viewed(db, "daily_summary_1999-01-01", "admin-1")
        with pytest.raises(NotFoundError):
            increment_download_count(db, "nope")
        with pytest.raises(NotFoundError):
            export_report_to_json(db, "nope")

    def test_cleanup_deletes_only_old_reports(self, db):
        store_report(db, "daily_summary", "2025-09-01", {}, now=DAY - timedelta(days=120))
        store_report(db, "daily_summary", "2025-12-01", {}, now=DAY - timedelta(days=43))
        store_report(db, "daily_summary", "2026-01-13", {}, now=DAY)

        assert cleanup_old_reports(db, now=DAY) == 1
        assert cleanup_old_reports(db, days_to_keep=30, now=DAY) == 1
        assert [r.period for r in get_report_history(db)] == ["2026-01-13"]


class TestEnsureAndSummary:
    @pytest.mark.asyncio
    async def test_ensure_generates_once(self, db):
        first = await ensure_report_exists(db, "daily_summary", now=DAY)
        first_generated = first.generated_at
        again = await ensure_report_exists(db, "daily_summary", now=DAY)
        assert again.id == first.id
        assert again.generated_at == first_generated

    @pytest.mark.asyncio
    async def test_ensure_unknown_type(self, db):
        with pytest.raises(ValidationError):
            await ensure_report_exists(db, "monthly", now=DAY)

    def test_summary(self, db):
        store_report(db, "daily_summary", "2026-01-13", {}, now=DAY)
        store_report(db, "daily_summary", "2026-01-12", {}, now=DAY)
        summary = get_report_summary(db, now=DAY)
        assert summary["has_today_report"] is True
        assert summary["has_this_week_report"] is False
        assert summary["total_daily_reports"] == 2
        assert summary["total_weekly_reports"] == 0
